"""
Block range pagination.

Etherscan caps every call at 10,000 rows, so instead of one huge query we walk
the chain in fixed block windows. Windows are fetched one after another with a
short pause between them to stay under the provider's rate limit.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from fee_tracker.core.config import settings
from fee_tracker.services.etherscan import PAGE_SIZE_CAP, EtherscanClient
from fee_tracker.services.models import Network, PaginationResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WindowConfig:
    window_blocks: int
    max_empty_windows: int   # stop once data was seen and this many windows in a row were empty


def window_config_for(network: Network) -> WindowConfig:
    # HyperEVM produces ~1 block/sec, so it gets smaller windows but tolerates a longer empty streak
    if network == Network.HYPEREVM:
        return WindowConfig(settings.hyperevm_window_blocks, settings.hyperevm_max_empty_windows)
    return WindowConfig(settings.ethereum_window_blocks, settings.ethereum_max_empty_windows)


class RangePaginator:
    def __init__(
        self,
        fetcher: EtherscanClient,
        window_timeout: Optional[float] = None,
        window_delay: Optional[float] = None,
        max_retries: Optional[int] = None,
        bisect_truncated: Optional[bool] = None,
        sleep: Callable = asyncio.sleep,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.fetcher = fetcher
        self.window_timeout = settings.window_timeout_seconds if window_timeout is None else window_timeout
        self.window_delay = settings.window_delay_seconds if window_delay is None else window_delay
        self.max_retries = max_retries
        self.bisect_truncated = settings.bisect_truncated_windows if bisect_truncated is None else bisect_truncated
        self.sleep = sleep
        self.clock = clock or time.monotonic

    async def fetch_all(
        self,
        params: Dict[str, Any],
        start_block: int,
        end_block: int,
        network: Network,
        window: Optional[WindowConfig] = None,
        deadline: Optional[float] = None,
        result: Optional[PaginationResult] = None,
    ) -> PaginationResult:
        """
        Fetch every record between start_block and end_block (inclusive).

        Args:
            params: base query without startblock/endblock
            start_block: first block to scan
            end_block: last block to scan
            network: selects window size and empty-window threshold
            window: override for the network's window settings
            deadline: clock() value after which no new window is started
            result: collect into this object, so a caller that gets cancelled
                mid-walk still holds every window finished so far

        Returns:
            PaginationResult with the collected rows and notes on skipped or
            truncated windows. Raises if a window fails before any row was collected.
        """
        config = window or window_config_for(network)
        result = result if result is not None else PaginationResult()
        consecutive_empty = 0
        current_start = max(0, start_block)

        logger.info(
            f"[{network.value}] Paginating blocks {current_start}..{end_block} "
            f"in windows of {config.window_blocks}"
        )

        while current_start <= end_block:
            if deadline is not None and self.clock() >= deadline:
                logger.warning(
                    f"[{network.value}] Time budget exhausted at block {current_start}; "
                    f"returning {len(result.records)} records collected so far"
                )
                result.deadline_reached = True
                break

            current_end = min(current_start + config.window_blocks - 1, end_block)

            try:
                records = await self._fetch_window(params, current_start, current_end, result, network)
            except Exception as e:
                if not result.records:
                    logger.error(
                        f"[{network.value}] Window {current_start}-{current_end} failed before any data "
                        f"was collected: {type(e).__name__}: {e}"
                    )
                    raise
                logger.warning(
                    f"[{network.value}] Skipping window {current_start}-{current_end} after error: "
                    f"{type(e).__name__}: {e}"
                )
                result.failed_windows.append((current_start, current_end))
            else:
                result.last_block = current_end
                if records:
                    result.records.extend(records)
                    consecutive_empty = 0
                    logger.info(
                        f"[{network.value}] Window {current_start}-{current_end}: {len(records)} records "
                        f"(total {len(result.records)})"
                    )
                else:
                    # An empty window says nothing about the blocks after it
                    consecutive_empty += 1

            if result.records and consecutive_empty > config.max_empty_windows:
                logger.info(
                    f"[{network.value}] {consecutive_empty} consecutive empty windows after data; "
                    f"assuming no more transfers past block {current_end}"
                )
                result.stopped_early = True
                break

            current_start = current_end + 1
            if current_start <= end_block:
                await self.sleep(self.window_delay)

        return result

    async def _fetch_window(
        self,
        params: Dict[str, Any],
        start: int,
        end: int,
        result: PaginationResult,
        network: Network,
    ) -> List[Dict[str, Any]]:
        page = await self.fetcher.fetch(
            {**params, "startblock": start, "endblock": end},
            max_retries=self.max_retries,
            timeout=self.window_timeout,
        )
        if not page.possibly_truncated:
            return list(page.records)

        if self.bisect_truncated and end > start:
            mid = (start + end) // 2
            logger.info(f"[{network.value}] Window {start}-{end} hit the row cap, splitting at {mid}")
            left = await self._fetch_window(params, start, mid, result, network)
            await self.sleep(self.window_delay)
            right = await self._fetch_window(params, mid + 1, end, result, network)
            return left + right

        logger.warning(
            f"[{network.value}] Window {start}-{end} returned exactly {PAGE_SIZE_CAP} rows; "
            f"transfers past the cap in this range are missing"
        )
        result.truncated_windows.append((start, end))
        return list(page.records)
