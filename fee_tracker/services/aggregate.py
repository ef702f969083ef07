"""
Fee aggregation.

Folds classified transfers into daily / weekly / monthly buckets plus currency
and category breakdowns in a single pass. Period keys use UTC; weeks start on
Sunday.
"""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from fee_tracker.services.models import (
    AggregatedFees,
    CategoryAmount,
    CategoryBreakdown,
    CurrencyBreakdown,
    FeeCategory,
    PeriodData,
    Transaction,
)
from fee_tracker.services.symbols import RECOGNIZED_SYMBOLS, pricing_symbol

logger = logging.getLogger(__name__)


def native_value(value: str, decimals: int) -> float:
    """
    Convert a raw integer amount to token units.

    The whole-unit part comes from exact integer division; only the sub-unit
    remainder goes through floating point. Raises ValueError for anything that
    isn't a non-negative integer string.
    """
    raw = int(str(value).strip())
    if raw < 0:
        raise ValueError(f"Negative amount: {value}")
    if decimals < 0:
        raise ValueError(f"Negative decimals: {decimals}")
    divisor = 10 ** decimals
    whole, remainder = divmod(raw, divisor)
    return float(whole) + remainder / divisor


def period_keys(timestamp_ms: int) -> Tuple[str, str, str]:
    """(day, start-of-week, month) keys for a millisecond timestamp, in UTC"""
    day = datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).date()
    week_start = day - timedelta(days=(day.weekday() + 1) % 7)
    return day.isoformat(), week_start.isoformat(), f"{day.year:04d}-{day.month:02d}"


def parse_start_date(value: Optional[str]) -> Optional[int]:
    """ISO date/datetime string to a millisecond timestamp (UTC when no zone is given)"""
    if not value:
        return None
    if len(value) == 10:
        parsed = datetime.combine(date.fromisoformat(value), datetime.min.time())
    else:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)


def usd_value(tx: Transaction, prices: Dict[str, float]) -> float:
    """
    USD value of one transfer at the given prices; 0 when it can't be valued.
    `prices` may be keyed by display symbol (AggregatedFees.prices) or by
    pricing symbol (PriceOracle.price_of_many).
    """
    try:
        amount = native_value(tx.value, tx.token_decimal)
    except ValueError:
        return 0.0
    symbol = (tx.token_symbol or "").upper()
    price = prices.get(symbol)
    if price is None:
        price = prices.get(pricing_symbol(symbol), 0.0)
    return amount * price


def _add(period: PeriodData, currency: str, category: str, value: float, value_usd: float):
    period.total += value
    period.total_usd += value_usd
    period.currencies[currency] = period.currencies.get(currency, 0.0) + value
    period.currencies_usd[currency] = period.currencies_usd.get(currency, 0.0) + value_usd
    bucket = period.by_category.setdefault(category, CategoryAmount())
    bucket.total += value
    bucket.total_usd += value_usd


def _percentage(part: float, whole: float) -> float:
    return (part / whole) * 100 if whole > 0 else 0.0


class Aggregator:
    """
    Args:
        oracle: anything with `async price_of_many(symbols) -> {symbol: price}`
        recognized_symbols: currencies to include; None accepts any non-empty symbol
        start_timestamp: ignore transfers before this millisecond timestamp
    """

    def __init__(
        self,
        oracle,
        recognized_symbols: Optional[Iterable[str]] = RECOGNIZED_SYMBOLS,
        start_timestamp: Optional[int] = None,
    ):
        self.oracle = oracle
        self.recognized_symbols = (
            frozenset(s.upper() for s in recognized_symbols) if recognized_symbols is not None else None
        )
        self.start_timestamp = start_timestamp

    def _accepts(self, symbol: str) -> bool:
        if not symbol:
            return False
        return self.recognized_symbols is None or symbol in self.recognized_symbols

    async def aggregate(self, transactions: List[Transaction]) -> AggregatedFees:
        result = AggregatedFees()

        eligible: List[Transaction] = []
        for tx in transactions:
            currency = (tx.token_symbol or "").upper()
            if not self._accepts(currency):
                logger.warning(f"Skipping transaction {tx.hash} with unrecognized currency: {tx.token_symbol!r}")
                result.skipped_count += 1
                continue
            if self.start_timestamp is not None and tx.timestamp < self.start_timestamp:
                continue
            eligible.append(tx)

        # Display symbol is kept; only the price lookup uses the pricing symbol
        currencies = {(tx.token_symbol or "").upper() for tx in eligible}
        logger.info(f"Currencies found: {sorted(currencies)}")
        prices = await self.oracle.price_of_many({pricing_symbol(c) for c in currencies})
        result.prices = {c: prices.get(pricing_symbol(c), 0.0) for c in currencies}

        currency_totals: Dict[str, float] = {}
        currency_totals_usd: Dict[str, float] = {}
        category_totals: Dict[str, CategoryBreakdown] = {}
        missing_prices = set()

        for tx in eligible:
            currency = tx.token_symbol.upper()
            try:
                value = native_value(tx.value, tx.token_decimal)
            except (TypeError, ValueError) as e:
                logger.warning(f"Skipping transaction {tx.hash}: unparseable value {tx.value!r} ({e})")
                result.skipped_count += 1
                continue

            price = result.prices.get(currency, 0.0)
            if price == 0 and currency not in missing_prices:
                missing_prices.add(currency)
                logger.warning(f"Price not found for currency: {currency}")
            value_usd = value * price

            category = (tx.fee_category or FeeCategory.UNCATEGORIZED).value
            day_key, week_key, month_key = period_keys(tx.timestamp)

            _add(result.daily.setdefault(day_key, PeriodData()), currency, category, value, value_usd)
            _add(result.weekly.setdefault(week_key, PeriodData()), currency, category, value, value_usd)
            _add(result.monthly.setdefault(month_key, PeriodData()), currency, category, value, value_usd)

            currency_totals[currency] = currency_totals.get(currency, 0.0) + value
            currency_totals_usd[currency] = currency_totals_usd.get(currency, 0.0) + value_usd

            entry = category_totals.setdefault(category, CategoryBreakdown())
            entry.total += value
            entry.total_usd += value_usd
            entry.count += 1

            result.transaction_count += 1

        grand_total_usd = sum(currency_totals_usd.values())
        for currency, total in currency_totals.items():
            total_usd = currency_totals_usd.get(currency, 0.0)
            result.currency_breakdown[currency] = CurrencyBreakdown(
                total=total,
                total_usd=total_usd,
                percentage=_percentage(total_usd, grand_total_usd),
            )

        category_grand_total = sum(c.total_usd for c in category_totals.values())
        for category, entry in category_totals.items():
            entry.percentage = _percentage(entry.total_usd, category_grand_total)
            result.category_breakdown[category] = entry

        logger.info(
            f"Aggregated {result.transaction_count} transactions "
            f"({result.skipped_count} skipped), total ${grand_total_usd:,.2f}"
        )
        for currency, breakdown in sorted(result.currency_breakdown.items()):
            logger.info(
                f"  {currency}: {breakdown.total:.6f} tokens @ ${result.prices.get(currency, 0):.2f} = "
                f"${breakdown.total_usd:,.2f} ({breakdown.percentage:.1f}%)"
            )
        return result
