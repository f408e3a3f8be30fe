"""Key/value caches with TTL used in front of market-data fetches.

Two interchangeable backends satisfy the same get/set contract:
  - MemoryCache: process-local dict with an injectable clock (tests, single runs)
  - DataCache: SQLite file with WAL journal mode, survives restarts

Values must be JSON-serializable; DataFrames go through df_to_json first.
"""

from __future__ import annotations

import io
import json
import logging
import sqlite3
import time
from datetime import date
from pathlib import Path
from typing import Any, Awaitable, Callable, Protocol

import pandas as pd

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
DEFAULT_DB_PATH = PROJECT_ROOT / "data_cache.sqlite"

# ---------------------------------------------------------------------------
# Defaults (seconds)
# ---------------------------------------------------------------------------
DEFAULT_TTL = 10 * 60


class Cache(Protocol):
    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None: ...


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def df_to_json(df: pd.DataFrame) -> str:
    """Serialize a DataFrame to JSON, handling date columns."""
    data = df.copy()
    for col in data.columns:
        if pd.api.types.is_datetime64_any_dtype(data[col]):
            data[col] = data[col].astype(str)
        elif data[col].apply(lambda x: isinstance(x, date)).any():
            data[col] = data[col].astype(str)
    return data.to_json(orient="split", date_format="iso", double_precision=15)


def json_to_df(json_str: str) -> pd.DataFrame:
    """Deserialize a DataFrame from JSON, restoring date columns."""
    df = pd.read_json(io.StringIO(json_str), orient="split")
    if "date" in df.columns:
        df["date"] = pd.to_datetime(df["date"]).dt.date
    return df


def build_key(namespace: str, symbol: str = "", **params) -> str:
    """Readable cache key, e.g. history:AAPL or history:AAPL:interval=1d:range=3mo."""
    parts = [namespace]
    if symbol:
        parts.append(symbol)
    parts.extend(f"{k}={v}" for k, v in sorted(params.items()))
    return ":".join(parts)


async def get_or_fetch(
    cache: Cache,
    key: str,
    fetch_fn: Callable[[], Awaitable[Any]],
    ttl_seconds: int | None = None,
) -> Any:
    """Return the cached value for `key`, or await fetch_fn() and cache its result.

    A None result is returned as-is and not cached.
    """
    cached = cache.get(key)
    if cached is not None:
        logger.debug("Cache hit: %s", key)
        return cached

    logger.debug("Cache miss - fetching %s", key)
    value = await fetch_fn()
    if value is not None:
        cache.set(key, value, ttl_seconds)
    return value


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------

class MemoryCache:
    """Dict-backed TTL cache. `clock` returns seconds and defaults to time.time."""

    def __init__(
        self,
        default_ttl: int = DEFAULT_TTL,
        max_keys: int = 500,
        clock: Callable[[], float] = time.time,
    ):
        self._store: dict[str, tuple[Any, float]] = {}
        self._default_ttl = default_ttl
        self._max_keys = max_keys
        self._clock = clock
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> Any | None:
        entry = self._store.get(key)
        if entry is None:
            self._misses += 1
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._store[key]
            logger.debug("Cache key expired: %s", key)
            self._misses += 1
            return None
        self._hits += 1
        return value

    def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        if key not in self._store and len(self._store) >= self._max_keys:
            self._evict_oldest()
        ttl = self._default_ttl if ttl_seconds is None else ttl_seconds
        self._store[key] = (value, self._clock() + ttl)

    def _evict_oldest(self) -> None:
        oldest = min(self._store, key=lambda k: self._store[k][1])
        del self._store[oldest]

    def get_stats(self) -> dict:
        total = self._hits + self._misses
        return {
            "keys": len(self._store),
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self._hits / total * 100) if total > 0 else 0,
        }


# ---------------------------------------------------------------------------
# SQLite backend
# ---------------------------------------------------------------------------

class DataCache:
    """SQLite response cache with TTL expiry and hit/miss tracking."""

    def __init__(
        self,
        db_path: Path | str | None = None,
        default_ttl: int = DEFAULT_TTL,
        clock: Callable[[], float] = time.time,
    ):
        self._db_path = str(db_path or DEFAULT_DB_PATH)
        self._conn = sqlite3.connect(
            self._db_path,
            check_same_thread=False,
            timeout=5,
        )
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")
        self._create_table()
        self._default_ttl = default_ttl
        self._clock = clock

        # Stats tracking
        self._hits = 0
        self._misses = 0
        self._stores = 0
        self._evictions = 0

    def _create_table(self) -> None:
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS cache_entries (
                key         TEXT PRIMARY KEY,
                value_json  TEXT    NOT NULL,
                ttl_seconds INTEGER NOT NULL,
                created_at  REAL    NOT NULL,
                expires_at  REAL    NOT NULL
            )
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_cache_expires
            ON cache_entries(expires_at)
        """)
        self._conn.commit()

    def get(self, key: str) -> Any | None:
        """Return the cached value if within TTL, else None (deletes expired)."""
        now = self._clock()
        row = self._conn.execute(
            "SELECT value_json, expires_at FROM cache_entries WHERE key = ?",
            (key,),
        ).fetchone()

        if row is None:
            self._misses += 1
            return None

        value_json, expires_at = row
        if now >= expires_at:
            self._conn.execute("DELETE FROM cache_entries WHERE key = ?", (key,))
            self._conn.commit()
            self._misses += 1
            self._evictions += 1
            return None

        self._hits += 1
        return json.loads(value_json)

    def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        ttl = self._default_ttl if ttl_seconds is None else ttl_seconds
        now = self._clock()
        self._conn.execute(
            """INSERT OR REPLACE INTO cache_entries
               (key, value_json, ttl_seconds, created_at, expires_at)
               VALUES (?, ?, ?, ?, ?)""",
            (key, json.dumps(value), ttl, now, now + ttl),
        )
        self._conn.commit()
        self._stores += 1

    def get_stats(self) -> dict:
        """Return cache performance statistics."""
        total_requests = self._hits + self._misses
        row = self._conn.execute("SELECT COUNT(*) FROM cache_entries").fetchone()
        total_entries = row[0] if row else 0

        return {
            "hits": self._hits,
            "misses": self._misses,
            "stores": self._stores,
            "evictions": self._evictions,
            "hit_rate": round(self._hits / total_requests, 4) if total_requests > 0 else 0.0,
            "total_entries": total_entries,
        }

    def clear_expired(self) -> int:
        """Bulk eviction of stale entries. Returns number of rows deleted."""
        cursor = self._conn.execute(
            "DELETE FROM cache_entries WHERE expires_at <= ?", (self._clock(),)
        )
        self._conn.commit()
        deleted = cursor.rowcount
        self._evictions += deleted
        return deleted

    def close(self) -> None:
        """Close the underlying SQLite connection."""
        self._conn.close()
