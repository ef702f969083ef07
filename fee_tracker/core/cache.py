import json
import logging
import time
from typing import Any, Callable, Optional

import redis.asyncio as redis

logger = logging.getLogger(__name__)


class KeyValueStore:
    """
    Keyed JSON store shared by the price cache, the incremental cursor and
    the report cache. Values must be JSON serializable.
    """
    default_ttl: Optional[int] = None

    async def get(self, key: str) -> Optional[Any]:
        raise NotImplementedError

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        raise NotImplementedError

    async def delete(self, key: str) -> bool:
        raise NotImplementedError

    async def has(self, key: str) -> bool:
        return await self.get(key) is not None

    async def get_with_stale(self, key: str) -> tuple[Optional[Any], bool]:
        """Get value, returning stale data if main cache miss but stale exists"""
        # Try main cache
        value = await self.get(key)
        if value is not None:
            return value, False

        # Try stale cache
        stale_value = await self.get(f"{key}:stale")
        if stale_value is not None:
            return stale_value, True

        return None, False

    async def set_with_stale(self, key: str, value: Any, ttl: Optional[int] = None, stale_ttl: int = 3600):
        """Set value in both main and stale cache"""
        await self.set(key, value, ttl)
        # Keep stale copy for longer (used when API fails)
        await self.set(f"{key}:stale", value, stale_ttl)

    async def close(self):
        pass


class InMemoryStore(KeyValueStore):
    """Process-local store. Values round-trip through JSON like the other backends."""

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self.clock = clock or time.monotonic
        self._data: dict[str, tuple[str, Optional[float]]] = {}

    async def get(self, key: str) -> Optional[Any]:
        entry = self._data.get(key)
        if entry is None:
            return None
        raw, expires_at = entry
        if expires_at is not None and self.clock() >= expires_at:
            del self._data[key]
            return None
        return json.loads(raw)

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        ttl = ttl or self.default_ttl
        expires_at = self.clock() + ttl if ttl else None
        self._data[key] = (json.dumps(value), expires_at)
        return True

    async def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None


class RedisStore(KeyValueStore):
    def __init__(self, redis_url: str, namespace: str = "fees"):
        self.redis = redis.from_url(redis_url, decode_responses=True)
        self.namespace = namespace

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    async def get(self, key: str) -> Optional[Any]:
        """Get cached value"""
        try:
            value = await self.redis.get(self._key(key))
            if value:
                return json.loads(value)
            return None
        except Exception as e:
            # Fail gracefully - cache miss is better than crash
            logger.warning(f"Cache get error for {key}: {e}")
            return None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Set cached value, with TTL when one is given"""
        try:
            ttl = ttl or self.default_ttl
            if ttl:
                await self.redis.setex(self._key(key), ttl, json.dumps(value))
            else:
                await self.redis.set(self._key(key), json.dumps(value))
            return True
        except Exception as e:
            logger.warning(f"Cache set error for {key}: {e}")
            return False

    async def delete(self, key: str) -> bool:
        try:
            return bool(await self.redis.delete(self._key(key)))
        except Exception as e:
            logger.warning(f"Cache delete error for {key}: {e}")
            return False

    async def close(self):
        """Close Redis connection"""
        await self.redis.aclose()


def price_cache_key(symbol: str) -> str:
    return f"price:{symbol.upper()}"


def cursor_key(network: str) -> str:
    return f"cursor:{network}"


def transactions_key(network: str) -> str:
    return f"transactions:{network}"


REPORT_CACHE_KEY = "report:latest"
