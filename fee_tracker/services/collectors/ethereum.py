"""
Ethereum mainnet fee collector.

Token fees arrive as USDC and WETH transfers. Sale proceeds paid out in native
ETH only show up in internal call traces (txlistinternal), which are collected
as ETH transfers when include_internal is set.
"""

import logging
from typing import Any, Dict, List, Optional

from fee_tracker.core.config import settings
from fee_tracker.services.collectors.base import NetworkCollector
from fee_tracker.services.etherscan import EtherscanClient
from fee_tracker.services.models import CollectionResult, Network, PaginationResult, Transaction
from fee_tracker.services.pagination import RangePaginator, WindowConfig
from fee_tracker.services.symbols import ETHEREUM_INTERNAL_SYMBOL, normalize_symbol

logger = logging.getLogger(__name__)


class EthereumCollector(NetworkCollector):

    def __init__(
        self,
        fetcher: EtherscanClient,
        fee_address: Optional[str] = None,
        chain_id: Optional[int] = None,
        paginator: Optional[RangePaginator] = None,
        window: Optional[WindowConfig] = None,
        include_internal: bool = False,
    ):
        super().__init__(
            fetcher,
            fee_address or settings.ethereum_fee_address,
            chain_id or settings.ethereum_chain_id,
            paginator=paginator,
            window=window,
        )
        self.include_internal = include_internal

    @property
    def network(self) -> Network:
        return Network.ETHEREUM

    def normalize_symbol(self, symbol: str, token_name: str) -> Optional[str]:
        return normalize_symbol(self.network.value, symbol, token_name)

    async def fetch_records(self, start_block: int, end_block: int, deadline: Optional[float],
                            result: CollectionResult) -> List[Transaction]:
        transactions = await super().fetch_records(start_block, end_block, deadline, result)
        if not self.include_internal:
            return transactions

        pagination = result.pagination
        params = {**self.base_params(), "action": "txlistinternal"}
        result.internal_pagination = PaginationResult()
        try:
            internal = await self.paginate(params, start_block, end_block, deadline, into=result.internal_pagination)
        except Exception as e:
            # Token transfers are still usable; mark the range as not fully covered
            logger.warning(f"[{self.network.value}] Internal transfer fetch failed: {e}")
            pagination.failed_windows.append((start_block, end_block))
            return transactions

        internal_txs = self.normalize_internal(internal.records)
        logger.info(f"[{self.network.value}] {len(internal_txs)} internal ETH fee transfers")

        pagination.failed_windows.extend(internal.failed_windows)
        pagination.truncated_windows.extend(internal.truncated_windows)
        pagination.deadline_reached = pagination.deadline_reached or internal.deadline_reached
        return transactions + internal_txs

    def salvage(self, result: CollectionResult) -> List[Transaction]:
        transactions = super().salvage(result)
        if result.internal_pagination is not None:
            transactions += self.normalize_internal(result.internal_pagination.records)
        return transactions

    def normalize_internal(self, records: List[Dict[str, Any]]) -> List[Transaction]:
        transactions = []
        for record in records:
            if (record.get("to") or "").lower() != self.fee_address:
                continue
            if str(record.get("isError", "0")) == "1":
                continue
            try:
                amount = int(record.get("value") or 0)
                timestamp = int(record.get("timeStamp") or 0) * 1000
                block_number = int(record["blockNumber"]) if record.get("blockNumber") else None
            except (TypeError, ValueError) as e:
                logger.warning(f"[{self.network.value}] Skipping internal transfer {record.get('hash')}: {e}")
                continue
            if amount <= 0:
                continue
            transactions.append(Transaction(
                hash=record.get("hash", ""),
                timestamp=timestamp,
                value=str(amount),
                token_symbol=ETHEREUM_INTERNAL_SYMBOL,
                token_decimal=18,
                from_address=record.get("from", ""),
                to_address=record.get("to", ""),
                network=self.network,
                block_number=block_number,
                is_internal_eth=True,
            ))
        return transactions
