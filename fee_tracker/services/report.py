"""
Fee report orchestration.

Ties the pipeline together: cursor -> collectors -> merge with previously
collected transfers -> method resolution -> classification -> aggregation.
When live data can't be produced the report degrades to the last good
cached report, then to the demo dataset, and says which one it is.
"""

import asyncio
import logging
from collections import Counter
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from fee_tracker.core.cache import REPORT_CACHE_KEY, KeyValueStore, transactions_key
from fee_tracker.core.config import settings
from fee_tracker.core.errors import CollectionError, ConfigurationError, FeeTrackerError
from fee_tracker.services.aggregate import Aggregator, parse_start_date, usd_value
from fee_tracker.services.classifier import Classifier
from fee_tracker.services.collectors import CollectorRegistry, build_default_registry
from fee_tracker.services.csv_import import load_csv_file
from fee_tracker.services.cursor import IncrementalCursor, find_latest_transaction
from fee_tracker.services.demo_data import generate_demo_data
from fee_tracker.services.etherscan import EtherscanClient
from fee_tracker.services.models import (
    CollectionResult,
    CollectionStatus,
    FeeCategory,
    FeeReport,
    Network,
    NetworkStatus,
    RecentTransaction,
    Transaction,
    TransactionType,
)
from fee_tracker.services.prices import PriceOracle
from fee_tracker.services.state_store import build_store
from fee_tracker.services.symbols import RECOGNIZED_SYMBOLS

logger = logging.getLogger(__name__)


def merge_transactions(existing: Iterable[Transaction],
                       new: Iterable[Transaction]) -> Tuple[List[Transaction], int]:
    """
    Append newly collected transfers to previously stored ones.

    One on-chain transaction can carry several identical transfers, so rows
    are only matched against stored rows, one for one: a new transfer is
    dropped when an unmatched stored transfer with the same identity exists.
    Returns the merged list and how many transfers were actually added.
    """
    merged = list(existing)
    unmatched = Counter(tx.identity() for tx in merged)

    added = 0
    for tx in new:
        key = tx.identity()
        if unmatched[key]:
            unmatched[key] -= 1
            continue
        merged.append(tx)
        added += 1
    return merged, added


def recent_transactions(transactions: List[Transaction], prices: Dict[str, float],
                        limit: int) -> List[RecentTransaction]:
    """The `limit` newest transfers with their USD value at current prices"""
    newest = sorted(transactions, key=lambda tx: tx.timestamp, reverse=True)[:limit]
    return [
        RecentTransaction(
            hash=tx.hash,
            timestamp=tx.timestamp,
            token_symbol=tx.token_symbol,
            value=tx.value,
            token_decimal=tx.token_decimal,
            from_address=tx.from_address,
            to_address=tx.to_address,
            network=tx.network,
            usd_value=usd_value(tx, prices),
            transaction_type=tx.transaction_type or TransactionType.UNKNOWN,
            fee_category=tx.fee_category or FeeCategory.UNCATEGORIZED,
            method=tx.method,
        )
        for tx in newest
    ]


class FeeReportService:
    """
    Builds the fee report.

    Modes:
        default: fresh cached report if there is one, otherwise an incremental fetch
        force_full: forget cursors and stored transfers, refetch everything
        force_incremental: skip the report cache, fetch from the cursors
        demo: generated data, nothing fetched or cached
    """

    def __init__(
        self,
        store: KeyValueStore,
        fetcher: EtherscanClient,
        registry: Optional[CollectorRegistry] = None,
        oracle: Optional[PriceOracle] = None,
        classifier: Optional[Classifier] = None,
        cursor: Optional[IncrementalCursor] = None,
        budget_seconds: Optional[float] = None,
        method_resolution_limit: Optional[int] = None,
        method_resolution_delay: Optional[float] = None,
        start_date: Optional[str] = None,
        recognized_symbols: Optional[Iterable[str]] = RECOGNIZED_SYMBOLS,
        csv_paths: Optional[Dict[Network, str]] = None,
        demo_seed: Optional[int] = None,
        sleep=asyncio.sleep,
    ):
        self.store = store
        self.fetcher = fetcher
        self.registry = registry or build_default_registry(fetcher)
        self.oracle = oracle or PriceOracle(store)
        self.classifier = classifier or Classifier(settings.classifier_magnitude_heuristic)
        self.cursor = cursor or IncrementalCursor(store)
        self.budget_seconds = budget_seconds if budget_seconds is not None else settings.collection_budget_seconds
        self.method_resolution_limit = (
            method_resolution_limit if method_resolution_limit is not None else settings.method_resolution_limit
        )
        self.method_resolution_delay = (
            method_resolution_delay if method_resolution_delay is not None
            else settings.method_resolution_delay_seconds
        )
        self.start_timestamp = parse_start_date(start_date or settings.fee_start_date)
        self.recognized_symbols = recognized_symbols
        self.csv_paths = csv_paths if csv_paths is not None else _configured_csv_paths()
        self.demo_seed = demo_seed
        self.sleep = sleep
        self._refresh_lock = asyncio.Lock()

    async def close(self):
        await self.fetcher.close()
        await self.oracle.close()
        await self.store.close()

    # ===== Public entry points =====

    async def get_report(self, demo: bool = False, force_full: bool = False,
                         force_incremental: bool = False) -> FeeReport:
        if demo:
            return await self.demo_report()

        use_cache = not (force_full or force_incremental)
        if use_cache:
            cached = await self._cached_report()
            if cached is not None:
                return cached

        try:
            async with self._refresh_lock:
                # Another request may have refreshed while we waited
                if use_cache:
                    cached = await self._cached_report()
                    if cached is not None:
                        return cached
                if self.csv_paths:
                    return await self.import_report()
                return await self.live_report(force_full=force_full)
        except FeeTrackerError as e:
            logger.error(f"Live report unavailable ({e.code.value}): {e.details or e.user_msg}")
            return await self.fallback_report(e)

    async def reset_state(self, network: Optional[Network] = None):
        """Forget cursors, stored transfers and the cached report"""
        networks = [Network(network)] if network else self.registry.networks
        for n in networks:
            await self.cursor.clear(n)
            await self.store.delete(transactions_key(n.value))
        await self.store.delete(REPORT_CACHE_KEY)
        logger.info(f"Reset fee state for {', '.join(n.value for n in networks)}")

    # ===== Report tiers =====

    async def live_report(self, force_full: bool = False) -> FeeReport:
        if not self.fetcher.api_key:
            raise ConfigurationError("ETHERSCAN_API_KEY")

        if force_full:
            logger.info("Full refetch requested, clearing incremental state")
            await self.reset_state()

        start_blocks = {n: await self.cursor.start_block_for(n) for n in self.registry.networks}
        results = await self.registry.collect_all(start_blocks, budget_seconds=self.budget_seconds)

        per_network: Dict[Network, List[Transaction]] = {}
        statuses: Dict[str, NetworkStatus] = {}
        new_total = 0
        for network, result in results.items():
            stored = await self._load_transactions(network)
            if result.status == CollectionStatus.FAILED:
                # Keep what we had; a broken fetch says nothing about the past
                merged, added = stored, 0
            else:
                merged, added = merge_transactions(stored, result.transactions)
            per_network[network] = merged
            new_total += added
            statuses[network.value] = NetworkStatus(
                status=result.status,
                transactions=len(merged),
                new_transactions=added,
                start_block=result.start_block,
                last_block=result.pagination.last_block if result.pagination else None,
                error=result.error,
            )

        all_failed = all(r.status == CollectionStatus.FAILED for r in results.values())
        if all_failed and not any(per_network.values()):
            raise CollectionError("; ".join(
                f"{n.value}: {r.error}" for n, r in results.items()
            ))

        transactions = [tx for txs in per_network.values() for tx in txs]
        transactions = await self.resolve_methods(transactions)

        for network in per_network:
            per_network[network] = [tx for tx in transactions if tx.network == network]
            await self._save_transactions(network, per_network[network])
        await self._advance_cursors(results)

        report = await self.build_report(transactions, source="live")
        report.networks = statuses
        report.stats["new_transactions"] = new_total
        report.incomplete = any(r.status != CollectionStatus.OK for r in results.values())
        if report.incomplete:
            report.warning = "Some networks returned partial data."

        await self.store.set_with_stale(
            REPORT_CACHE_KEY,
            report.model_dump(mode="json"),
            settings.report_cache_ttl_seconds,
            settings.report_stale_ttl_seconds,
        )
        logger.info(f"Live report: {report.data.transaction_count} transactions, {new_total} new")
        return report

    async def import_report(self) -> FeeReport:
        """Report built from explorer CSV exports instead of live fetching"""
        transactions: List[Transaction] = []
        for network, path in self.csv_paths.items():
            transactions.extend(load_csv_file(path, network))
        if not transactions:
            raise CollectionError("CSV import produced no fee transfers")
        return await self.build_report(transactions, source="import")

    async def fallback_report(self, error: FeeTrackerError) -> FeeReport:
        cached, is_stale = await self.store.get_with_stale(REPORT_CACHE_KEY)
        if cached is not None:
            logger.warning(f"Serving {'stale ' if is_stale else ''}cached report")
            report = FeeReport.model_validate(cached)
            report.source = "cached"
            report.is_stale = is_stale
            report.warning = error.user_msg
            return report

        logger.warning("No cached report, serving demo data")
        return await self.demo_report(warning=error.user_msg)

    async def demo_report(self, warning: Optional[str] = None) -> FeeReport:
        transactions = generate_demo_data(seed=self.demo_seed)
        report = await self.build_report(transactions, source="demo", apply_start_date=False)
        report.is_demo = True
        report.warning = warning
        return report

    # ===== Pipeline steps =====

    async def resolve_methods(self, transactions: List[Transaction]) -> List[Transaction]:
        """
        Decode method names for the most recent transfers that don't have one.
        Only the newest `method_resolution_limit` distinct hashes are looked up.
        """
        if self.method_resolution_limit <= 0:
            return transactions

        pending: List[Tuple[Network, str]] = []
        for tx in sorted(transactions, key=lambda t: t.timestamp, reverse=True):
            if tx.method or tx.is_internal_eth:
                continue
            key = (tx.network, tx.hash.lower())
            if key not in pending:
                pending.append(key)
            if len(pending) >= self.method_resolution_limit:
                break
        if not pending:
            return transactions

        logger.info(f"Resolving methods for {len(pending)} transactions")
        methods: Dict[Tuple[Network, str], str] = {}
        for i, (network, tx_hash) in enumerate(pending):
            if i > 0 and self.method_resolution_delay > 0:
                await self.sleep(self.method_resolution_delay)
            method = await self.fetcher.resolve_method(tx_hash, self.registry.get(network).chain_id)
            if method:
                methods[(network, tx_hash)] = method

        logger.info(f"Resolved {len(methods)}/{len(pending)} methods")
        return [
            replace(tx, method=methods[(tx.network, tx.hash.lower())])
            if not tx.method and (tx.network, tx.hash.lower()) in methods else tx
            for tx in transactions
        ]

    async def build_report(self, transactions: List[Transaction], source: str,
                           apply_start_date: bool = True) -> FeeReport:
        start_timestamp = self.start_timestamp if apply_start_date else None
        classified = self.classifier.classify_all(transactions)
        aggregator = Aggregator(self.oracle, self.recognized_symbols, start_timestamp)
        data = await aggregator.aggregate(classified)

        visible = [tx for tx in classified if start_timestamp is None or tx.timestamp >= start_timestamp]
        stats = {"total_transactions": len(visible)}
        for network in Network:
            stats[f"{network.value}_transactions"] = sum(1 for tx in visible if tx.network == network)

        return FeeReport(
            data=data,
            recent_transactions=recent_transactions(visible, data.prices, settings.recent_transactions_limit),
            source=source,
            stats=stats,
            generated_at=datetime.now(timezone.utc).isoformat(),
        )

    async def _advance_cursors(self, results: Dict[Network, CollectionResult]):
        for network, result in results.items():
            # A partial scan may have skipped blocks below its newest transfer
            if not result.complete or not result.transactions:
                continue
            latest = find_latest_transaction(result.transactions)
            if latest is not None:
                await self.cursor.write(network, latest.block_number, latest.timestamp, latest.hash)

    async def _cached_report(self) -> Optional[FeeReport]:
        cached = await self.store.get(REPORT_CACHE_KEY)
        if cached is None:
            return None
        report = FeeReport.model_validate(cached)
        report.source = "cached"
        return report

    async def _load_transactions(self, network: Network) -> List[Transaction]:
        data = await self.store.get(transactions_key(network.value)) or []
        transactions = []
        for item in data:
            try:
                transactions.append(Transaction.from_dict(item))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Dropping unreadable stored {network.value} transaction: {e}")
        return transactions

    async def _save_transactions(self, network: Network, transactions: List[Transaction]):
        await self.store.set(transactions_key(network.value), [tx.to_dict() for tx in transactions])


def _configured_csv_paths() -> Dict[Network, str]:
    paths = {}
    if settings.ethereum_csv_path:
        paths[Network.ETHEREUM] = settings.ethereum_csv_path
    if settings.hyperevm_csv_path:
        paths[Network.HYPEREVM] = settings.hyperevm_csv_path
    return paths


# Global service instance
_report_service: Optional[FeeReportService] = None


async def get_report_service() -> FeeReportService:
    global _report_service
    if _report_service is None:
        store = build_store(settings.state_backend, settings.redis_url, settings.state_db_path)
        _report_service = FeeReportService(store=store, fetcher=EtherscanClient())
    return _report_service


async def close_report_service():
    global _report_service
    if _report_service:
        await _report_service.close()
        _report_service = None
