# src/dossierforge/cache/sqlite_store.py - v1
"""SQLite-based cache store (CACHE_BACKEND=sqlite).

Uses stdlib sqlite3, no external dependency. Kind and timestamp are
indexed columns so eviction and job sweeps do not parse every payload.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path

from pydantic import ValidationError

from dossierforge.cache.base_cache_store import BaseCacheStore
from dossierforge.cache.models import CacheEntry

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS cache_entries (
    key TEXT PRIMARY KEY,
    data TEXT NOT NULL,
    kind TEXT NOT NULL DEFAULT 'step',
    cached_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_kind_cached_at ON cache_entries(kind, cached_at);
"""


class SqliteCacheStore(BaseCacheStore):
    """SQLite-backed cache store for better performance at scale."""

    def __init__(self, db_path: Path | str, max_entries: int | None = None) -> None:
        self._db_path = Path(db_path).expanduser()
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self.max_entries = max_entries
        self._conn = sqlite3.connect(str(self._db_path))
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA)

    async def get(self, key: str) -> CacheEntry | None:
        """Retrieve cache entry by key."""
        try:
            row = self._conn.execute(
                "SELECT data FROM cache_entries WHERE key = ?", (key,)
            ).fetchone()
        except sqlite3.Error as e:
            logger.warning("Cache read failed for %s: %s", key, e)
            return None
        if row is None:
            return None
        try:
            return CacheEntry(**json.loads(row[0]))
        except (json.JSONDecodeError, ValidationError, TypeError) as e:
            logger.warning("Failed to deserialize cache entry %s: %s", key, e)
            return None

    async def put(self, key: str, entry: CacheEntry) -> None:
        """Store a cache entry (upsert)."""
        self._conn.execute(
            """INSERT OR REPLACE INTO cache_entries (key, data, kind, cached_at)
               VALUES (?, ?, ?, ?)""",
            (key, entry.model_dump_json(), entry.kind, entry.cached_at.isoformat()),
        )
        self._conn.commit()

    async def delete(self, key: str) -> None:
        """Remove a cache entry."""
        self._conn.execute("DELETE FROM cache_entries WHERE key = ?", (key,))
        self._conn.commit()

    async def list_entries(self) -> list[CacheEntry]:
        """List all cached entries."""
        cursor = self._conn.execute("SELECT data FROM cache_entries")
        entries: list[CacheEntry] = []
        for row in cursor.fetchall():
            try:
                entries.append(CacheEntry(**json.loads(row[0])))
            except (json.JSONDecodeError, ValidationError, TypeError):
                continue
        return entries

    async def evict_overflow(self, max_entries: int) -> int:
        """Evict oldest step entries with a single indexed query."""
        (count,) = self._conn.execute(
            "SELECT COUNT(*) FROM cache_entries WHERE kind = 'step'"
        ).fetchone()
        overflow = count - max_entries
        if overflow <= 0:
            return 0
        self._conn.execute(
            """DELETE FROM cache_entries WHERE key IN (
                   SELECT key FROM cache_entries WHERE kind = 'step'
                   ORDER BY cached_at ASC LIMIT ?)""",
            (overflow,),
        )
        self._conn.commit()
        logger.info("Evicted %d cache entries over capacity %d", overflow, max_entries)
        return overflow

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()
