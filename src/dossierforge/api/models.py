# src/dossierforge/api/models.py - v1
"""API-level models: PipelineInput, PipelineOptions, PipelineResult."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, model_validator

from dossierforge.core.models import RebuildPlan
from dossierforge.pipeline.state import PipelineState
from dossierforge.tracking.models import CallStats


class PipelineInput(BaseModel):
    """What the caller wants a dossier for.

    sources, when given, is pre-harvested evidence; the evidence step is
    then skipped and changes to it drive incremental rebuilds.
    """

    title: str = Field(min_length=1)
    pitch_text: str = Field(min_length=1)
    language: str = "de"
    target_audience: str | None = None
    geo: str | None = None
    sources: list[Any] | dict[str, Any] | None = None

    def to_run_input(self) -> dict[str, Any]:
        options = {"language": self.language}
        if self.target_audience:
            options["target_audience"] = self.target_audience
        if self.geo:
            options["geo"] = self.geo
        run_input: dict[str, Any] = {
            "project_title": self.title,
            "elevator_pitch": self.pitch_text,
            "input_options": options,
        }
        if self.sources is not None:
            run_input["sources"] = self.sources
        return run_input


class PipelineOptions(BaseModel):
    """Per-run options. Unset values fall back to Settings."""

    skip_cache: bool = False
    parallel_limit: int | None = Field(default=None, ge=1)
    timeout_s: float | None = Field(default=None, gt=0)
    run_id: str | None = None
    resume_from_checkpoint: bool = False

    @model_validator(mode="after")
    def _resume_needs_run_id(self) -> PipelineOptions:
        if self.resume_from_checkpoint and not self.run_id:
            raise ValueError("resume_from_checkpoint requires run_id")
        return self


class PipelineResult(BaseModel):
    """Return value of execute_pipeline() and resume()."""

    success: bool
    run_id: str
    data: Any = None
    error: str | None = None
    error_type: str | None = None
    failed_step: str | None = None
    resumable: bool = False
    state: PipelineState
    plan: RebuildPlan
    stats: CallStats = Field(default_factory=CallStats)
