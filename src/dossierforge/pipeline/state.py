# src/dossierforge/pipeline/state.py - v1
"""Per-run mutable state: step statuses and the artifact store.

A PipelineState belongs to exactly one scheduler invocation. Artifacts
are addressed by a top-level key or a one-level dotted path
("sections.market" lives at artifacts["sections"]["market"]).
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Iterable

from pydantic import BaseModel, Field

from dossierforge.core.models import StepDefinition, StepStatus

_DONE_STATUSES = frozenset({"completed", "skipped"})


def _now() -> datetime:
    return datetime.now(timezone.utc)


class StepRuntimeStatus(BaseModel):
    """Runtime status of one step within one run."""

    status: StepStatus = "pending"
    started_at: datetime | None = None
    ended_at: datetime | None = None
    duration_ms: int | None = None
    hash: str | None = None
    error: str | None = None
    error_type: str | None = None
    cache_hit: bool = False
    attempts: int = 0
    fallback: bool = False


class PipelineState(BaseModel):
    """Step statuses, artifact store and counters for one run."""

    run_id: str
    steps: dict[str, StepRuntimeStatus] = Field(default_factory=dict)
    artifacts: dict[str, Any] = Field(default_factory=dict)
    cache_hits: int = 0
    # step_id -> cache key its current output is stored under
    output_keys: dict[str, str] = Field(default_factory=dict)
    started_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)
    total_duration_ms: int = 0

    @classmethod
    def initial(cls, run_id: str, step_ids: Iterable[str]) -> PipelineState:
        return cls(run_id=run_id, steps={sid: StepRuntimeStatus() for sid in step_ids})

    def status_of(self, step_id: str) -> StepStatus:
        return self.steps[step_id].status

    def done_ids(self) -> set[str]:
        """Steps that are completed or skipped."""
        return {sid for sid, s in self.steps.items() if s.status in _DONE_STATUSES}

    def mark_running(self, step_id: str) -> None:
        entry = self.steps[step_id]
        entry.status = "running"
        entry.started_at = _now()
        entry.error = None
        entry.error_type = None
        self._touch()

    def mark_completed(
        self,
        step_id: str,
        *,
        duration_ms: int,
        hash: str,
        cache_hit: bool = False,
        attempts: int = 0,
        fallback: bool = False,
    ) -> None:
        entry = self.steps[step_id]
        entry.status = "completed"
        entry.ended_at = _now()
        entry.duration_ms = duration_ms
        entry.hash = hash
        entry.cache_hit = cache_hit
        entry.attempts = attempts
        entry.fallback = fallback
        if cache_hit:
            self.cache_hits += 1
        self._touch()

    def mark_skipped(self, step_id: str, hash: str | None = None) -> None:
        entry = self.steps[step_id]
        entry.status = "skipped"
        entry.ended_at = _now()
        entry.hash = hash
        entry.cache_hit = True
        self.cache_hits += 1
        self._touch()

    def mark_failed(
        self, step_id: str, error: str, error_type: str | None = None, attempts: int = 0
    ) -> None:
        entry = self.steps[step_id]
        entry.status = "failed"
        entry.ended_at = _now()
        entry.error = error
        entry.error_type = error_type
        entry.attempts = attempts
        if entry.started_at is not None:
            entry.duration_ms = int((entry.ended_at - entry.started_at).total_seconds() * 1000)
        self._touch()

    def reset_unfinished(self) -> list[str]:
        """Return running/failed steps to pending (used on resume)."""
        reset: list[str] = []
        for sid, entry in self.steps.items():
            if entry.status in ("running", "failed"):
                self.steps[sid] = StepRuntimeStatus()
                reset.append(sid)
        return reset

    def failed_step(self) -> str | None:
        for sid, entry in self.steps.items():
            if entry.status == "failed":
                return sid
        return None

    def _touch(self) -> None:
        self.updated_at = _now()


# --- Artifact addressing ---


def _split(address: str) -> tuple[str, str | None]:
    head, _, tail = address.partition(".")
    if "." in tail:
        raise ValueError(f"Artifact address nests more than one level: {address!r}")
    return head, (tail or None)


def has_artifact(artifacts: dict[str, Any], address: str) -> bool:
    head, tail = _split(address)
    if head not in artifacts:
        return False
    if tail is None:
        return True
    container = artifacts[head]
    return isinstance(container, dict) and tail in container


def get_artifact(artifacts: dict[str, Any], address: str) -> Any:
    """Read an artifact. Raises KeyError when absent."""
    head, tail = _split(address)
    value = artifacts[head]
    if tail is None:
        return value
    if not isinstance(value, dict):
        raise KeyError(address)
    return value[tail]


def put_artifact(artifacts: dict[str, Any], address: str, value: Any) -> None:
    head, tail = _split(address)
    if tail is None:
        artifacts[head] = value
        return
    container = artifacts.setdefault(head, {})
    if not isinstance(container, dict):
        raise ValueError(f"Artifact {head!r} is not a mapping; cannot set {address!r}")
    container[tail] = value


def collect_inputs(step: StepDefinition, artifacts: dict[str, Any]) -> dict[str, Any]:
    """Gather a step's declared inputs. Raises KeyError on a missing input."""
    return {address: get_artifact(artifacts, address) for address in step.inputs}


def missing_inputs(step: StepDefinition, artifacts: dict[str, Any]) -> list[str]:
    return [a for a in step.inputs if not has_artifact(artifacts, a)]


def split_outputs(step: StepDefinition, data: Any) -> dict[str, Any]:
    """Map a step result to its declared output addresses.

    Single-output steps store the whole result. Multi-output steps must
    return a mapping keyed by each output's last path segment.
    """
    if len(step.outputs) == 1:
        return {step.outputs[0]: data}
    if not isinstance(data, dict):
        raise ValueError(f"Step {step.id!r} declares several outputs but returned {type(data).__name__}")
    return {out: data.get(out.rsplit(".", 1)[-1]) for out in step.outputs}


def outputs_present(step: StepDefinition, artifacts: dict[str, Any]) -> bool:
    return bool(step.outputs) and all(has_artifact(artifacts, o) for o in step.outputs)
