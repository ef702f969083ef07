"""
Base collector: turns explorer token-transfer rows for one chain into
Transactions. Chain-specific subclasses only decide which tokens count and
what they are called.
"""

import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Any, Dict, List, Optional

from fee_tracker.core.errors import ConfigurationError, ErrorCode, FeeTrackerError
from fee_tracker.services.aggregate import native_value
from fee_tracker.services.etherscan import MAX_BLOCK, EtherscanClient
from fee_tracker.services.models import (
    CollectionResult,
    CollectionStatus,
    Network,
    PaginationResult,
    Transaction,
)
from fee_tracker.services.pagination import RangePaginator, WindowConfig, window_config_for
from fee_tracker.services.symbols import STABLE_SYMBOLS

logger = logging.getLogger(__name__)

STABLE_DECIMALS = 6
DEFAULT_DECIMALS = 18


class NetworkCollector(ABC):
    """Collects fee transfers for one network's fee-collection address"""

    def __init__(
        self,
        fetcher: EtherscanClient,
        fee_address: str,
        chain_id: int,
        paginator: Optional[RangePaginator] = None,
        window: Optional[WindowConfig] = None,
    ):
        self.fetcher = fetcher
        self.fee_address = fee_address.lower()
        self.chain_id = chain_id
        self.paginator = paginator or RangePaginator(fetcher)
        self.window = window

    @property
    @abstractmethod
    def network(self) -> Network:
        """Network identifier"""
        pass

    @abstractmethod
    def normalize_symbol(self, symbol: str, token_name: str) -> Optional[str]:
        """Map an upper-cased explorer symbol to a canonical one, or None to drop the row"""
        pass

    def default_decimals(self, symbol: str) -> int:
        return STABLE_DECIMALS if symbol in STABLE_SYMBOLS else DEFAULT_DECIMALS

    def base_params(self) -> Dict[str, Any]:
        return {
            "chainid": self.chain_id,
            "module": "account",
            "action": "tokentx",
            "address": self.fee_address,
            "sort": "asc",
        }

    async def end_block(self) -> int:
        """Chain head, or the max-block sentinel when the head can't be read"""
        try:
            return await self.fetcher.latest_block(self.chain_id)
        except Exception as e:
            logger.warning(f"[{self.network.value}] Could not read chain head, scanning to {MAX_BLOCK}: {e}")
            return MAX_BLOCK

    async def paginate(self, params: Dict[str, Any], start_block: int, end_block: int,
                       deadline: Optional[float], into: Optional[PaginationResult] = None) -> PaginationResult:
        return await self.paginator.fetch_all(
            params,
            start_block,
            end_block,
            self.network,
            window=self.window or window_config_for(self.network),
            deadline=deadline,
            result=into,
        )

    async def fetch_records(self, start_block: int, end_block: int, deadline: Optional[float],
                            result: CollectionResult) -> List[Transaction]:
        result.pagination = PaginationResult()
        await self.paginate(self.base_params(), start_block, end_block, deadline, into=result.pagination)
        return self.normalize(result.pagination.records)

    def salvage(self, result: CollectionResult) -> List[Transaction]:
        """Transfers from every window a cancelled collection had already finished"""
        if result.pagination is None:
            return []
        return self.normalize(result.pagination.records)

    async def collect(self, start_block: int = 0, deadline: Optional[float] = None,
                      result: Optional[CollectionResult] = None) -> CollectionResult:
        """
        Collect fee transfers from start_block to the chain head.

        Never raises: a broken collection comes back with status FAILED and the
        error attached, so the other network can still be reported. Pass
        `result` to keep hold of the partial pagination if the call is cancelled.
        """
        start_block = start_block or 0
        if result is None:
            result = CollectionResult(network=self.network)
        result.start_block = start_block

        if not self.fetcher.api_key:
            error = ConfigurationError("ETHERSCAN_API_KEY")
            logger.error(f"[{self.network.value}] {error.details}; skipping live fetch")
            result.status = CollectionStatus.FAILED
            result.error = error.details
            result.error_code = error.code.value
            return result

        try:
            end_block = await self.end_block()
            if start_block > end_block:
                logger.info(f"[{self.network.value}] Already at block {end_block}, nothing to fetch")
                return result
            transactions = await self.fetch_records(start_block, end_block, deadline, result)
        except Exception as e:
            logger.error(f"[{self.network.value}] Collection failed: {type(e).__name__}: {e}")
            result.status = CollectionStatus.FAILED
            if isinstance(e, FeeTrackerError):
                result.error = e.details or e.user_msg
                result.error_code = e.code.value
            else:
                result.error = str(e) or type(e).__name__
                result.error_code = ErrorCode.NETWORK_ERROR.value
            return result

        result.transactions = transactions
        pagination = result.pagination
        if not pagination.complete:
            result.status = CollectionStatus.INCOMPLETE
            logger.warning(
                f"[{self.network.value}] Incomplete collection: {len(pagination.failed_windows)} failed, "
                f"{len(pagination.truncated_windows)} truncated windows, "
                f"deadline reached: {pagination.deadline_reached}"
            )

        logger.info(
            f"[{self.network.value}] {len(transactions)} fee transfers to {self.fee_address} "
            f"(out of {len(pagination.records)} token transfers)"
        )
        self._log_breakdown(transactions)
        return result

    def normalize(self, records: List[Dict[str, Any]]) -> List[Transaction]:
        transactions = []
        for record in records:
            tx = self.to_transaction(record)
            if tx is not None:
                transactions.append(tx)
        return transactions

    def to_transaction(self, record: Dict[str, Any]) -> Optional[Transaction]:
        """Filter and normalize one explorer row; None means the row is not a fee transfer"""
        if (record.get("to") or "").lower() != self.fee_address:
            return None

        raw_value = str(record.get("value") or "0")
        try:
            amount = int(raw_value)
        except ValueError:
            logger.warning(f"[{self.network.value}] Skipping {record.get('hash')}: malformed value {raw_value!r}")
            return None
        if amount <= 0:
            return None

        symbol = self.normalize_symbol(
            (record.get("tokenSymbol") or "").strip().upper(),
            (record.get("tokenName") or "").strip().upper(),
        )
        if symbol is None:
            return None

        try:
            decimals = int(record["tokenDecimal"]) if record.get("tokenDecimal") not in (None, "") \
                else self.default_decimals(symbol)
            timestamp = int(record.get("timeStamp") or 0) * 1000
            block_number = int(record["blockNumber"]) if record.get("blockNumber") not in (None, "") else None
        except (TypeError, ValueError) as e:
            logger.warning(f"[{self.network.value}] Skipping {record.get('hash')}: {e}")
            return None

        return Transaction(
            hash=record.get("hash", ""),
            timestamp=timestamp,
            value=str(amount),
            token_symbol=symbol,
            token_decimal=decimals,
            from_address=record.get("from", ""),
            to_address=record.get("to", ""),
            network=self.network,
            block_number=block_number,
        )

    def _log_breakdown(self, transactions: List[Transaction]):
        totals: Dict[str, int] = defaultdict(int)
        counts: Dict[str, int] = defaultdict(int)
        decimals: Dict[str, int] = {}
        for tx in transactions:
            totals[tx.token_symbol] += int(tx.value)
            counts[tx.token_symbol] += 1
            decimals[tx.token_symbol] = tx.token_decimal
        for symbol, total in totals.items():
            amount = native_value(str(total), decimals[symbol])
            logger.info(f"[{self.network.value}]   {symbol}: {counts[symbol]} transfers, {amount:.6f} tokens")
