# src/dossierforge/cache/cache_factory.py - v1
"""Factory for cache store instantiation."""

from __future__ import annotations

from dossierforge.cache.base_cache_store import BaseCacheStore
from dossierforge.config.settings import Settings


def create_cache_store(settings: Settings | None = None) -> BaseCacheStore:
    """Instantiate the configured cache backend.

    Args:
        settings: Application settings. Defaults to JSON backend.

    Returns:
        Configured BaseCacheStore implementation.
    """
    backend = "json" if settings is None else settings.cache_backend
    max_entries = None if settings is None else settings.cache_max_entries
    cache_root = "output/.cache" if settings is None else str(settings.cache_root)

    if backend == "json":
        from dossierforge.cache.json_store import JsonCacheStore
        return JsonCacheStore(cache_root=cache_root, max_entries=max_entries)

    if backend == "sqlite":
        from dossierforge.cache.sqlite_store import SqliteCacheStore
        db_path = f"{cache_root}/dossierforge_cache.db"
        return SqliteCacheStore(db_path=db_path, max_entries=max_entries)

    if backend == "redis":
        from dossierforge.cache.redis_store import RedisCacheStore
        if settings is None or not settings.cache_redis_url:
            raise ValueError(
                "CACHE_REDIS_URL must be set when CACHE_BACKEND=redis"
            )
        return RedisCacheStore(
            redis_url=settings.cache_redis_url, max_entries=max_entries
        )

    raise ValueError(f"Unsupported cache backend: {backend!r}")
