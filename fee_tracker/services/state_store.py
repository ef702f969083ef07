"""
SQLite State Store

Durable KeyValueStore for cursors, collected transfers, cached prices and the
last good report. Survives process restarts, unlike InMemoryStore.

Storage: one SQLite file, single `state` table keyed by string.
"""

import json
import logging
import sqlite3
import time
from pathlib import Path
from typing import Any, Optional

from fee_tracker.core.cache import InMemoryStore, KeyValueStore, RedisStore

logger = logging.getLogger(__name__)


class SQLiteStore(KeyValueStore):
    """
    SQLite-backed key/value store with optional per-key expiry.
    """

    def __init__(self, db_path: str):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self):
        """Initialize database schema"""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS state (
                    key TEXT PRIMARY KEY,
                    value JSON NOT NULL,
                    expires_at REAL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_state_expires ON state(expires_at)
            """)
            conn.commit()

    async def get(self, key: str) -> Optional[Any]:
        with sqlite3.connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT value, expires_at FROM state WHERE key = ?", (key,)
            ).fetchone()
        if not row:
            return None
        value, expires_at = row
        if expires_at is not None and time.time() >= expires_at:
            await self.delete(key)
            return None
        return json.loads(value)

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        ttl = ttl or self.default_ttl
        expires_at = time.time() + ttl if ttl else None
        try:
            with sqlite3.connect(self.db_path) as conn:
                conn.execute("""
                    INSERT OR REPLACE INTO state (key, value, expires_at, updated_at)
                    VALUES (?, ?, ?, CURRENT_TIMESTAMP)
                """, (key, json.dumps(value), expires_at))
                conn.commit()
            return True
        except sqlite3.Error as e:
            logger.error(f"State store write failed for {key}: {e}")
            return False

    async def delete(self, key: str) -> bool:
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.execute("DELETE FROM state WHERE key = ?", (key,))
            conn.commit()
            return cursor.rowcount > 0


def build_store(backend: str, redis_url: str = "", db_path: str = "") -> KeyValueStore:
    """Create the configured state backend"""
    if backend == "redis":
        return RedisStore(redis_url)
    if backend == "sqlite":
        return SQLiteStore(db_path)
    return InMemoryStore()
