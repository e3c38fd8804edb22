# src/dossierforge/logging/context.py - v1
"""Contextual logging support: attach run_id and step to log records.

Each step runs in its own asyncio task, which copies the context, so a
step context set inside the task never leaks into sibling steps.
"""

from __future__ import annotations

import contextlib
import contextvars
from dataclasses import dataclass
from typing import Any, Iterator

_run_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "run_id", default=None
)
_step: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "step", default=None
)


@dataclass
class LogContext:
    """Immutable snapshot of current logging context."""

    run_id: str | None = None
    step: str | None = None

    def as_dict(self) -> dict[str, Any]:
        """Return non-None fields as dict for JSON log injection."""
        return {k: v for k, v in self.__dict__.items() if v is not None}


def get_context() -> LogContext:
    """Snapshot current context variables."""
    return LogContext(run_id=_run_id.get(), step=_step.get())


def set_run_context(run_id: str) -> None:
    """Set run-level context (called once per scheduler invocation)."""
    _run_id.set(run_id)


def set_step_context(step: str | None) -> None:
    _step.set(step)


@contextlib.contextmanager
def step_context(step: str) -> Iterator[None]:
    """Scope the step context to a block."""
    token = _step.set(step)
    try:
        yield
    finally:
        _step.reset(token)


def clear_context() -> None:
    """Reset all context variables."""
    _run_id.set(None)
    _step.set(None)
