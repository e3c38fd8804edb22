# src/dossierforge/pipeline/errors.py - v1
"""Run-level failures raised by the scheduler."""

from __future__ import annotations

from dossierforge.config.settings import ConfigurationError


class StepFailure(Exception):
    """A non-tolerant step failed; the run is aborted."""

    def __init__(
        self,
        step_id: str,
        message: str,
        error_type: str | None = None,
        attempts: int = 0,
    ) -> None:
        self.step_id = step_id
        self.error_type = error_type or "unknown"
        self.attempts = attempts
        super().__init__(f"Step '{step_id}' failed ({self.error_type}): {message}")


class PipelineTimeout(Exception):
    """The run's wall-clock budget elapsed; the last checkpoint is kept."""

    def __init__(self, run_id: str, timeout_s: float) -> None:
        self.run_id = run_id
        self.timeout_s = timeout_s
        super().__init__(f"Pipeline run {run_id} exceeded its {timeout_s:g}s timeout")


class CheckpointNotFoundError(Exception):
    def __init__(self, run_id: str) -> None:
        self.run_id = run_id
        super().__init__(f"No checkpoint found for run {run_id}")


class DependencyDeadlockError(ConfigurationError):
    """No step is ready although some are still outstanding."""

    def __init__(self, stuck_steps: list[str]) -> None:
        self.stuck_steps = stuck_steps
        super().__init__(f"Dependency deadlock: no runnable step among {stuck_steps}")
