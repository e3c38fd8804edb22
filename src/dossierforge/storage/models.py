# src/dossierforge/storage/models.py - v1
"""Persisted records: Checkpoint, BuildState, artifact index."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field

from dossierforge.core.models import RebuildPlan
from dossierforge.pipeline.state import PipelineState

BUILD_HISTORY_LIMIT = 20

CheckpointReason = Literal["critical", "periodic", "error", "timeout"]


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Checkpoint(BaseModel):
    """Snapshot of an in-progress run, keyed by run_id."""

    run_id: str
    created_at: datetime = Field(default_factory=_now)
    reason: CheckpointReason = "periodic"
    state: PipelineState
    plan: RebuildPlan | None = None
    input: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None


class BuildRecord(BaseModel):
    """One entry of the build history."""

    timestamp: datetime = Field(default_factory=_now)
    run_id: str | None = None
    changed_components: list[str] = Field(default_factory=list)
    affected_steps: list[str] = Field(default_factory=list)
    reason: str = ""


class BuildState(BaseModel):
    """Content hashes of the last successful build.

    step_output_keys maps each step to the cache key its output was
    stored under, so a later build can reload skipped steps. Those keys
    only hold while environment_hash matches.
    """

    pitch_hash: str = ""
    environment_hash: str = ""
    sources_hash: str = ""
    brief_hash: str = ""
    section_hashes: dict[str, str] = Field(default_factory=dict)
    validation_hash: str = ""
    score_hash: str = ""
    dossier_hash: str = ""
    step_output_keys: dict[str, str] = Field(default_factory=dict)
    last_build: datetime = Field(default_factory=_now)
    history: list[BuildRecord] = Field(default_factory=list)

    def with_record(self, record: BuildRecord) -> BuildState:
        """Return a copy with record appended and history capped."""
        history = (self.history + [record])[-BUILD_HISTORY_LIMIT:]
        return self.model_copy(update={"history": history, "last_build": record.timestamp})


class ArtifactEntry(BaseModel):
    """Index line for one logged step result."""

    name: str
    path: str
    hash: str
    timestamp: datetime = Field(default_factory=_now)
    size: int
    step: str


class ArtifactIndex(BaseModel):
    run_id: str
    entries: dict[str, ArtifactEntry] = Field(default_factory=dict)
    updated_at: datetime = Field(default_factory=_now)
