# src/dossierforge/cache/redis_store.py - v1
"""Redis-based cache store (CACHE_BACKEND=redis).

Requires 'redis' package: pip install redis.
Suitable when several worker processes share one cache.
"""

from __future__ import annotations

import json
import logging

from pydantic import ValidationError

from dossierforge.cache.base_cache_store import BaseCacheStore
from dossierforge.cache.models import CacheEntry

logger = logging.getLogger(__name__)

_KEY_PREFIX = "dossierforge:cache:"
_INDEX_KEY = "dossierforge:cache:__index__"


class RedisCacheStore(BaseCacheStore):
    """Redis-backed cache store for distributed deployments."""

    def __init__(self, redis_url: str, max_entries: int | None = None) -> None:
        try:
            import redis
        except ImportError as e:
            raise ImportError(
                "redis package required: pip install redis"
            ) from e

        self._redis = redis
        self._client = redis.Redis.from_url(redis_url, decode_responses=True)
        self.max_entries = max_entries

    async def get(self, key: str) -> CacheEntry | None:
        """Retrieve cache entry by key."""
        try:
            data = self._client.get(f"{_KEY_PREFIX}{key}")
        except self._redis.RedisError as e:
            logger.warning("Cache read failed for %s: %s", key, e)
            return None
        if data is None:
            return None
        try:
            return CacheEntry(**json.loads(data))
        except (json.JSONDecodeError, ValidationError, TypeError) as e:
            logger.warning("Failed to deserialize cache entry %s: %s", key, e)
            return None

    async def put(self, key: str, entry: CacheEntry) -> None:
        """Store a cache entry."""
        self._client.set(f"{_KEY_PREFIX}{key}", entry.model_dump_json())
        # Index of all keys for list_entries / eviction scans
        self._client.sadd(_INDEX_KEY, key)

    async def delete(self, key: str) -> None:
        """Remove a cache entry."""
        self._client.delete(f"{_KEY_PREFIX}{key}")
        self._client.srem(_INDEX_KEY, key)

    async def list_entries(self) -> list[CacheEntry]:
        """List all cached entries."""
        keys = self._client.smembers(_INDEX_KEY)
        entries: list[CacheEntry] = []
        for key in keys:
            entry = await self.get(key)
            if entry is not None:
                entries.append(entry)
        return entries

    async def entry_count(self) -> int:
        return int(self._client.scard(_INDEX_KEY))

    def close(self) -> None:
        """Close the Redis connection."""
        self._client.close()
