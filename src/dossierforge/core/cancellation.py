# src/dossierforge/core/cancellation.py - v1
"""Cooperative cancellation shared by one pipeline run.

The scheduler arms a CancellationSignal with the run's wall-clock budget.
Suspension points (rate-gate waits, retry backoff, in-flight external
calls) go through run_or_cancel so that a tripped signal abandons them
immediately.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import Any, Awaitable, Callable

SleepFn = Callable[[float], Awaitable[None]]


class Cancelled(Exception):
    """Raised at a suspension point after the run's signal has fired."""


class CancellationSignal:
    """One-shot signal, optionally tripped by a deadline timer."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._timer: asyncio.TimerHandle | None = None
        self.reason = ""

    def arm(self, timeout_s: float, reason: str = "deadline exceeded") -> None:
        """Trip the signal after timeout_s seconds on the running loop."""
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(timeout_s, self.trip, reason)

    def trip(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def disarm(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    @property
    def is_set(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_set(self) -> None:
        if self._event.is_set():
            raise Cancelled(self.reason)


async def run_or_cancel(
    awaitable: Awaitable[Any], signal: CancellationSignal | None = None
) -> Any:
    """Await awaitable, abandoning it with Cancelled if signal fires first."""
    if signal is None:
        return await awaitable

    task = asyncio.ensure_future(awaitable)
    watcher = asyncio.ensure_future(signal.wait())
    try:
        await asyncio.wait({task, watcher}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for pending in (task, watcher):
            if not pending.done():
                pending.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await pending
    if task.cancelled():
        raise Cancelled(signal.reason)
    return task.result()


async def sleep_or_cancel(
    delay_s: float,
    signal: CancellationSignal | None = None,
    sleep: SleepFn = asyncio.sleep,
) -> None:
    """Sleep for delay_s, waking early with Cancelled if signal fires."""
    await run_or_cancel(sleep(delay_s), signal)
    if signal is not None:
        signal.raise_if_set()
