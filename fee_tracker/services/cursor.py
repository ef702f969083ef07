"""
Incremental fetch cursor.

Remembers, per network, the highest block whose transfers have been fully
processed so the next run only scans newer blocks. The cursor never moves
backwards: a write with a lower block than the stored one is ignored.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, Optional

from fee_tracker.core.cache import KeyValueStore, cursor_key
from fee_tracker.services.models import Cursor, Network, Transaction

logger = logging.getLogger(__name__)


class IncrementalCursor:
    def __init__(self, store: KeyValueStore):
        self.store = store
        self._locks: Dict[Network, asyncio.Lock] = {}

    def _lock(self, network: Network) -> asyncio.Lock:
        if network not in self._locks:
            self._locks[network] = asyncio.Lock()
        return self._locks[network]

    async def read(self, network: Network) -> Optional[Cursor]:
        """Get the last processed transfer for a network"""
        data = await self.store.get(cursor_key(Network(network).value))
        if not data:
            return None
        try:
            return Cursor.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Ignoring unreadable cursor for {network}: {e}")
            return None

    async def write(self, network: Network, block_number: int, timestamp: int, hash: str) -> bool:
        """
        Store the last processed transfer for a network.

        Only call this after a collection that covered its whole block range.
        Returns False when the stored cursor is already at or past block_number.
        """
        network = Network(network)
        async with self._lock(network):
            current = await self.read(network)
            if current is not None and block_number <= current.block_number:
                if block_number < current.block_number:
                    logger.warning(
                        f"Refusing to move {network.value} cursor back from block "
                        f"{current.block_number} to {block_number}"
                    )
                return False

            cursor = Cursor(
                network=network,
                block_number=int(block_number),
                timestamp=int(timestamp),
                hash=hash,
                last_updated=datetime.now(timezone.utc).isoformat(),
            )
            saved = await self.store.set(cursor_key(network.value), cursor.to_dict())
            if saved:
                logger.info(f"Updated {network.value} cursor: block {block_number}, hash {hash[:10]}...")
            return saved

    async def start_block_for(self, network: Network) -> int:
        """Block after the last processed one, or 0 when nothing was processed yet"""
        cursor = await self.read(network)
        if cursor is None:
            logger.info(f"No cursor for {Network(network).value}, starting from block 0")
            return 0
        start_block = cursor.block_number + 1
        logger.info(
            f"Last processed {cursor.network.value} transfer at block {cursor.block_number}, "
            f"starting from block {start_block}"
        )
        return start_block

    async def clear(self, network: Optional[Network] = None):
        """Forget cursors (all networks unless one is given) to force a full refetch"""
        networks = [Network(network)] if network else list(Network)
        for n in networks:
            async with self._lock(n):
                await self.store.delete(cursor_key(n.value))
        logger.info(f"Cleared cursors for {', '.join(n.value for n in networks)}")


def find_latest_transaction(transactions: Iterable[Transaction]) -> Optional[Transaction]:
    """Transfer with the highest block number; transfers without a block are ignored"""
    latest = None
    for tx in transactions:
        if tx.block_number is None:
            continue
        if latest is None or tx.block_number > latest.block_number:
            latest = tx
    return latest
