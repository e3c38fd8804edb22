# src/dossierforge/llm/retry.py - v1
"""Per-call timeout and bounded retry with exponential backoff.

Only transient failures (timeouts, rate limits, server errors) are
retried. Anything classified non-retryable, or not recognisable as a
service failure at all, is raised on the first attempt.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from dossierforge.core.cancellation import (
    CancellationSignal,
    Cancelled,
    SleepFn,
    run_or_cancel,
    sleep_or_cancel,
)
from dossierforge.llm.errors import ExternalTimeoutError, classify_error, is_retryable

logger = logging.getLogger(__name__)


class RetryExhausted(Exception):
    """All attempts failed with transient errors."""

    def __init__(self, step: str, error_type: str, attempts: int, last_error: BaseException):
        self.step = step
        self.error_type = error_type
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Step '{step}' failed after {attempts} attempts ({error_type}): {last_error}"
        )


@dataclass(frozen=True)
class RetryPolicy:
    """Retry settings for external calls."""

    max_retries: int = 2
    base_delay_s: float = 2.0
    max_delay_s: float = 30.0
    backoff_factor: float = 2.0
    call_timeout_s: float | None = 25.0
    jitter: bool = False


@dataclass
class RetryOutcome:
    result: Any
    attempts: int


def compute_delay(policy: RetryPolicy, attempt: int) -> float:
    """Delay before the retry following `attempt` (1-based), capped."""
    delay = policy.base_delay_s * (policy.backoff_factor ** (attempt - 1))
    if policy.jitter:
        delay *= 0.5 + random.random()  # noqa: S311
    return min(delay, policy.max_delay_s)


async def with_retry(
    fn: Callable[[], Awaitable[Any]],
    policy: RetryPolicy,
    step: str = "unknown",
    signal: CancellationSignal | None = None,
    sleep: SleepFn = asyncio.sleep,
    prepare: Callable[[], Awaitable[None]] | None = None,
) -> RetryOutcome:
    """Run fn under a per-call timeout, retrying transient failures.

    prepare, when given, runs before every attempt outside the timeout
    (rate-gate admission). Its failures are classified like fn's.

    Raises:
        RetryExhausted: transient failures used up every retry.
        Exception: the original error, for non-retryable failures.
        Cancelled: the run's signal fired during a call or a backoff sleep.
    """
    attempts = 0
    while True:
        attempts += 1
        try:
            if prepare is not None:
                await prepare()
            call = fn()
            if policy.call_timeout_s is not None:
                call = asyncio.wait_for(call, timeout=policy.call_timeout_s)
            result = await run_or_cancel(call, signal)
            return RetryOutcome(result=result, attempts=attempts)
        except Cancelled:
            raise
        except asyncio.TimeoutError as e:
            error: BaseException = ExternalTimeoutError(
                f"call exceeded {policy.call_timeout_s}s"
            )
            error.__cause__ = e
        except Exception as e:
            error = e

        if not is_retryable(error):
            raise error

        cls = classify_error(error)
        error_type = cls.error_type if cls is not None else "unknown"
        if attempts > policy.max_retries:
            raise RetryExhausted(step, error_type, attempts, error) from error

        delay = compute_delay(policy, attempts)
        logger.warning(
            "Step '%s': %s (attempt %d/%d), retrying in %.1fs",
            step, error_type, attempts, policy.max_retries + 1, delay,
        )
        await sleep_or_cancel(delay, signal, sleep)
