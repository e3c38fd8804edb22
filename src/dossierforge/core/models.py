# src/dossierforge/core/models.py - v1
"""Core domain models shared across pipeline layers.

StepDefinition is static (compiled into config/steps.py). StepResult is
what the executor hands back to the scheduler. RebuildPlan is computed
once per run by the rebuild analyzer and never mutated afterwards.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

StepStatus = Literal["pending", "running", "completed", "failed", "skipped"]


class StepDefinition(BaseModel):
    """Immutable declaration of one node in the step graph.

    Inputs and outputs are artifact addresses: a top-level key ("brief")
    or a one-level dotted path ("sections.market").
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    dependencies: tuple[str, ...] = ()
    inputs: tuple[str, ...] = ()
    outputs: tuple[str, ...] = ()
    external: bool = False
    model_preference: str | None = None
    critical: bool = False
    tolerant: bool = False


class StepResult(BaseModel):
    """Outcome of a single executor invocation."""

    success: bool
    data: Any = None
    error: str | None = None
    error_type: str | None = None
    duration_ms: int = 0
    cache_hit: bool = False
    hash: str = ""
    cache_key: str = ""
    attempts: int = 0
    rate_gate_wait_ms: int = 0


class RebuildPlan(BaseModel):
    """Partition of the step graph into steps to re-run and steps to skip.

    reuse_keys maps a skippable step to the cache key its output was
    stored under in the previous successful build.
    """

    model_config = ConfigDict(frozen=True)

    to_rebuild: frozenset[str] = Field(default_factory=frozenset)
    to_skip: frozenset[str] = Field(default_factory=frozenset)
    reason: str = ""
    estimated_duration_ms: int = 0
    changed_components: tuple[str, ...] = ()
    reuse_keys: dict[str, str] = Field(default_factory=dict)
