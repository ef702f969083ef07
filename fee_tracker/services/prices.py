import asyncio
import logging
from typing import Dict, Iterable, Optional

import httpx

from fee_tracker.core.cache import KeyValueStore, price_cache_key
from fee_tracker.core.config import settings
from fee_tracker.core.retry import CircuitBreaker, RetryPolicy

logger = logging.getLogger(__name__)

# Tokens without a reliable public feed are priced at a fixed rate
FIXED_PRICES = {
    "WHYPE": 27.86,  # $1,007.64 / 36.16807881 WHYPE
}

# Symbol to CoinGecko ID mapping; network aliases share their asset's feed
SYMBOL_TO_COINGECKO = {
    "WETH": "weth",
    "ETH": "ethereum",
    "USDC": "usd-coin",
    "HUSDC": "usd-coin",  # HyperEVM USDC is priced as USDC
    "USDT": "tether",
    "DAI": "dai",
}

# Used when the feed can't be reached
FALLBACK_PRICES = {
    "WETH": 3189.05,
    "ETH": 3189.05,
    "USDC": 1.00,
    "HUSDC": 1.00,
    "WHYPE": 27.86,
    "USDT": 1.00,
    "DAI": 1.00,
}


class PriceNotFoundError(LookupError):
    pass


class PriceOracle:
    """
    Current USD spot prices by token symbol.

    Successful lookups are cached in the injected store for `ttl_seconds`.
    Lookups never raise: on failure the fallback table is used, and a symbol
    nobody knows is priced at 0.
    """

    def __init__(
        self,
        store: KeyValueStore,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        ttl_seconds: Optional[int] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        policy: Optional[RetryPolicy] = None,
    ):
        api_key = settings.coingecko_api_key if api_key is None else api_key
        self.store = store
        self.client = client or httpx.AsyncClient(
            base_url=base_url or settings.coingecko_base_url,
            headers={"x-cg-demo-api-key": api_key} if api_key else {},
            timeout=10.0
        )
        self.ttl_seconds = ttl_seconds or settings.price_cache_ttl_seconds
        self.circuit_breaker = circuit_breaker or CircuitBreaker(failure_threshold=3, timeout_seconds=60)
        self.policy = policy or RetryPolicy(max_attempts=2, base_delay=0.5, name="coingecko")
        self._locks: Dict[str, asyncio.Lock] = {}

    async def close(self):
        await self.client.aclose()

    def _lock(self, feed_id: str) -> asyncio.Lock:
        # One lookup per feed at a time; concurrent callers wait and then hit the cache
        if feed_id not in self._locks:
            self._locks[feed_id] = asyncio.Lock()
        return self._locks[feed_id]

    def fallback_price(self, symbol: str) -> float:
        price = FALLBACK_PRICES.get(symbol, 0.0)
        if price == 0.0:
            logger.warning(f"No price available for {symbol}, using 0")
        return price

    async def _fetch_price(self, coingecko_id: str) -> float:
        response = await self.client.get(
            "/simple/price",
            params={"ids": coingecko_id, "vs_currencies": "usd"}
        )
        response.raise_for_status()
        data = response.json()

        price = (data.get(coingecko_id) or {}).get("usd")
        if price is None:
            raise PriceNotFoundError(f"No USD price for {coingecko_id}")
        return float(price)

    async def price_of(self, symbol: str) -> float:
        """
        Get the current USD price of one token.

        Args:
            symbol: token symbol (e.g. "WETH", "HUSDC")

        Returns:
            USD per token; fallback or 0 when no live price is available
        """
        symbol = (symbol or "").strip().upper()
        if not symbol:
            return 0.0
        if symbol in FIXED_PRICES:
            return FIXED_PRICES[symbol]

        coingecko_id = SYMBOL_TO_COINGECKO.get(symbol)
        if not coingecko_id:
            logger.warning(f"No price feed mapping for {symbol}")
            return self.fallback_price(symbol)

        try:
            async with self._lock(coingecko_id):
                cached = await self.store.get(price_cache_key(coingecko_id))
                if cached is not None:
                    return float(cached)

                if not self.circuit_breaker.can_attempt():
                    logger.warning(f"Price feed circuit open, using fallback for {symbol}")
                    return self.fallback_price(symbol)

                try:
                    price = await self.policy.call(self._fetch_price, coingecko_id)
                except PriceNotFoundError as e:
                    logger.warning(f"{e}; using fallback for {symbol}")
                    return self.fallback_price(symbol)
                except Exception as e:
                    self.circuit_breaker.record_failure()
                    logger.error(f"Error fetching price for {symbol}: {e}")
                    return self.fallback_price(symbol)

                self.circuit_breaker.record_success()
                await self.store.set(price_cache_key(coingecko_id), price, self.ttl_seconds)
                logger.info(f"Current price for {symbol}: ${price}")
                return price
        except Exception as e:
            logger.error(f"Price cache error for {symbol}: {e}")
            return self.fallback_price(symbol)

    async def price_of_many(self, symbols: Iterable[str]) -> Dict[str, float]:
        """Resolve every distinct symbol concurrently; keys are upper-cased symbols"""
        unique = sorted({s.strip().upper() for s in symbols if s and s.strip()})
        if not unique:
            return {}
        prices = await asyncio.gather(*(self.price_of(s) for s in unique))
        return dict(zip(unique, prices))
