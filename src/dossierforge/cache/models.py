# src/dossierforge/cache/models.py - v1
"""Cache domain models: CacheEntry and job records stored alongside it."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field

CacheKind = Literal["step", "job"]
JobStatus = Literal["queued", "running", "completed", "failed"]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CacheEntry(BaseModel):
    """One immutable cached payload.

    Step results are keyed by create_step_cache_key(); job records use
    the job identifier and are only removed by the retention sweep.
    """

    key: str
    data: Any = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    cached_at: datetime = Field(default_factory=utc_now)
    kind: CacheKind = "step"


class JobRecord(BaseModel):
    """Result record of a job handed to the engine by an outer queue."""

    job_id: str
    status: JobStatus = "queued"
    run_id: str | None = None
    result: Any = None
    error: str | None = None
    updated_at: datetime = Field(default_factory=utc_now)
