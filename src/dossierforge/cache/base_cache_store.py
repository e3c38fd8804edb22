# src/dossierforge/cache/base_cache_store.py - v1
"""Abstract cache store interface.

Backends implement the four primitive operations. Capacity eviction,
prefix clearing and job-record retention are written once here on top
of those primitives.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any

from dossierforge.cache.models import CacheEntry, JobRecord, utc_now

logger = logging.getLogger(__name__)

_SWEEPABLE_JOB_STATUSES = frozenset({"completed", "failed"})


class BaseCacheStore(ABC):
    """Unified interface for cache storage backends.

    Reads never raise for corrupt or unreadable records; backends log
    and report a miss instead.
    """

    max_entries: int | None = None

    @abstractmethod
    async def get(self, key: str) -> CacheEntry | None:
        """Retrieve cache entry by key."""

    @abstractmethod
    async def put(self, key: str, entry: CacheEntry) -> None:
        """Store cache entry (last writer wins)."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove cache entry."""

    @abstractmethod
    async def list_entries(self) -> list[CacheEntry]:
        """List all readable entries."""

    async def entry_count(self) -> int:
        """Number of stored records of any kind (steps and jobs)."""
        return len(await self.list_entries())

    def close(self) -> None:
        """Release backend resources."""

    # --- Step results ---

    async def set(
        self, key: str, value: Any, metadata: dict[str, Any] | None = None
    ) -> CacheEntry:
        """Store a step result, then enforce the capacity bound."""
        entry = CacheEntry(key=key, data=value, metadata=metadata or {})
        await self.put(key, entry)
        if self.max_entries is not None:
            await self.evict_overflow(self.max_entries)
        return entry

    async def has(self, key: str) -> bool:
        return await self.get(key) is not None

    async def clear(self, prefix: str = "") -> int:
        """Delete step entries whose key starts with prefix.

        Returns:
            Number of entries removed.
        """
        removed = 0
        for entry in await self.list_entries():
            if entry.kind == "step" and entry.key.startswith(prefix):
                await self.delete(entry.key)
                removed += 1
        if removed:
            logger.info("Cleared %d cache entries (prefix=%r)", removed, prefix)
        return removed

    async def evict_overflow(self, max_entries: int) -> int:
        """Evict the oldest step entries beyond max_entries.

        Job records are never counted or evicted here. The total record
        count bounds the step count from above, so a store under capacity
        returns without loading any entry.
        """
        if await self.entry_count() <= max_entries:
            return 0
        steps = [e for e in await self.list_entries() if e.kind == "step"]
        overflow = len(steps) - max_entries
        if overflow <= 0:
            return 0
        steps.sort(key=lambda e: e.cached_at)
        for entry in steps[:overflow]:
            await self.delete(entry.key)
        logger.info("Evicted %d cache entries over capacity %d", overflow, max_entries)
        return overflow

    # --- Job records ---

    async def put_job(self, record: JobRecord) -> None:
        record = record.model_copy(update={"updated_at": utc_now()})
        await self.put(
            _job_key(record.job_id),
            CacheEntry(
                key=_job_key(record.job_id),
                data=record.model_dump(mode="json"),
                metadata={"status": record.status},
                cached_at=record.updated_at,
                kind="job",
            ),
        )

    async def get_job(self, job_id: str) -> JobRecord | None:
        entry = await self.get(_job_key(job_id))
        if entry is None or entry.kind != "job":
            return None
        return JobRecord.model_validate(entry.data)

    async def sweep_jobs(
        self, retention: timedelta, now: datetime | None = None
    ) -> int:
        """Delete completed/failed job records older than retention."""
        cutoff = (now or datetime.now(timezone.utc)) - retention
        removed = 0
        for entry in await self.list_entries():
            if entry.kind != "job":
                continue
            if entry.metadata.get("status") not in _SWEEPABLE_JOB_STATUSES:
                continue
            if entry.cached_at < cutoff:
                await self.delete(entry.key)
                removed += 1
        if removed:
            logger.info("Swept %d job records older than %s", removed, retention)
        return removed


def _job_key(job_id: str) -> str:
    return f"job_{job_id}"
