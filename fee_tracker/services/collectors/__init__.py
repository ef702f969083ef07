"""
Collector registry: one collector per monitored network, run concurrently.
"""

import asyncio
import logging
import time
from typing import Callable, Dict, List, Optional

from fee_tracker.core.config import settings
from fee_tracker.core.errors import InvalidNetworkError
from fee_tracker.services.etherscan import EtherscanClient
from fee_tracker.services.models import CollectionResult, CollectionStatus, Network

from .base import NetworkCollector
from .ethereum import EthereumCollector
from .hyperevm import HyperEVMCollector

logger = logging.getLogger(__name__)

# Extra time allowed past the budget before an in-flight window is cancelled
BUDGET_GRACE_SECONDS = 5.0


class CollectorRegistry:
    """Registry for network collectors"""

    def __init__(self, collectors: Optional[List[NetworkCollector]] = None,
                 clock: Optional[Callable[[], float]] = None):
        self._collectors: Dict[Network, NetworkCollector] = {}
        self.clock = clock or time.monotonic
        for collector in collectors or []:
            self.register(collector)

    def register(self, collector: NetworkCollector) -> None:
        """Register a collector"""
        self._collectors[collector.network] = collector

    def get(self, network) -> NetworkCollector:
        """Get collector by network name"""
        try:
            return self._collectors[Network(network)]
        except (ValueError, KeyError):
            raise InvalidNetworkError(str(getattr(network, "value", network)))

    @property
    def networks(self) -> List[Network]:
        return list(self._collectors.keys())

    async def _run(self, collector: NetworkCollector, start_block: int,
                   deadline: Optional[float], budget: Optional[float]) -> CollectionResult:
        result = CollectionResult(network=collector.network, start_block=start_block)
        try:
            if budget is None:
                return await collector.collect(start_block, deadline=deadline, result=result)
            return await asyncio.wait_for(
                collector.collect(start_block, deadline=deadline, result=result),
                budget + BUDGET_GRACE_SECONDS,
            )
        except asyncio.TimeoutError:
            result.transactions = collector.salvage(result)
            result.status = CollectionStatus.INCOMPLETE
            result.error = "Time budget exhausted"
            if result.pagination is not None:
                result.pagination.deadline_reached = True
            logger.error(
                f"[{collector.network.value}] Collection cancelled after {budget:.0f}s budget; "
                f"keeping {len(result.transactions)} transfers from finished windows"
            )
            return result

    async def collect_all(
        self,
        start_blocks: Optional[Dict[Network, int]] = None,
        budget_seconds: Optional[float] = None,
    ) -> Dict[Network, CollectionResult]:
        """
        Run every collector concurrently within a shared wall-clock budget.
        One network failing never affects the other's result.
        """
        start_blocks = start_blocks or {}
        deadline = self.clock() + budget_seconds if budget_seconds is not None else None

        networks = list(self._collectors.keys())
        results = await asyncio.gather(*(
            self._run(self._collectors[n], start_blocks.get(n, 0), deadline, budget_seconds)
            for n in networks
        ))
        return dict(zip(networks, results))


def build_default_registry(fetcher: EtherscanClient, include_internal: Optional[bool] = None) -> CollectorRegistry:
    """Collectors for every monitored network using configured addresses"""
    if include_internal is None:
        include_internal = settings.ethereum_include_internal
    return CollectorRegistry([
        EthereumCollector(fetcher, include_internal=include_internal),
        HyperEVMCollector(fetcher),
    ])


__all__ = [
    'CollectorRegistry',
    'NetworkCollector',
    'EthereumCollector',
    'HyperEVMCollector',
    'build_default_registry',
]
