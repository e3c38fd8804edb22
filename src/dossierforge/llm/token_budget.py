# src/dossierforge/llm/token_budget.py - v1
"""Token budget gate: per-model fixed-window admission control.

Every external call reserves its estimated token count before it is
sent. When the current window cannot absorb the reservation the caller
sleeps until the window resets and tries again against the fresh window,
up to a bounded number of attempts.

One gate instance is created per process and injected into the step
executor; budgets are created lazily per model on first use.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from typing import Callable

from dossierforge.core.cancellation import CancellationSignal, SleepFn, sleep_or_cancel
from dossierforge.llm.errors import NonRetryableExternalError, RateLimitError

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4


class TokenBudgetExceeded(NonRetryableExternalError):
    """A single reservation is larger than the model's whole window limit."""

    error_type = "token_budget_exceeded"


class TokenBudgetExhausted(RateLimitError):
    """The bounded re-reservation loop gave up under sustained contention."""

    error_type = "token_budget_exhausted"


@dataclass
class TokenBudget:
    """Usage of one model within its current window."""

    used: int
    reset_at: float
    limit: int


@dataclass(frozen=True)
class TokenEstimate:
    input_tokens: int
    output_tokens: int

    @property
    def total(self) -> int:
        return self.input_tokens + self.output_tokens


def estimate_tokens(prompt: str, max_output_tokens: int = 1200) -> TokenEstimate:
    """Cheap, conservative estimate: ~4 characters per input token plus
    the full output allowance."""
    input_tokens = math.ceil(len(prompt or "") / CHARS_PER_TOKEN)
    return TokenEstimate(input_tokens=input_tokens, output_tokens=max_output_tokens)


class TokenBudgetGate:
    """Serializes access to rate-limited models.

    Args:
        window_s: Window length in seconds.
        safety_buffer_s: Extra wait past the reset time.
        max_attempts: Re-reservation attempts before TokenBudgetExhausted.
        clock: Monotonic time source (injectable for tests).
        sleep: Async sleep function (injectable for tests).
    """

    def __init__(
        self,
        window_s: float = 60.0,
        safety_buffer_s: float = 0.1,
        max_attempts: int = 5,
        clock: Callable[[], float] = time.monotonic,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._window_s = window_s
        self._safety_buffer_s = safety_buffer_s
        self._max_attempts = max_attempts
        self._clock = clock
        self._sleep = sleep
        self._budgets: dict[str, TokenBudget] = {}

    async def reserve(
        self,
        model: str,
        estimated_tokens: int,
        limit: int,
        signal: CancellationSignal | None = None,
    ) -> int:
        """Reserve tokens for one call, waiting for window resets as needed.

        Returns:
            Total milliseconds spent waiting.

        Raises:
            TokenBudgetExceeded: estimated_tokens can never fit in limit.
            TokenBudgetExhausted: still no room after max_attempts windows.
            Cancelled: the run's signal fired while waiting.
        """
        if estimated_tokens > limit:
            raise TokenBudgetExceeded(
                f"Reservation of {estimated_tokens} tokens exceeds the "
                f"{limit}-token window limit for {model}"
            )

        waited_s = 0.0
        for attempt in range(1, self._max_attempts + 1):
            # Check-and-increment has no await in between, so concurrent
            # callers on one event loop cannot both take the last slot.
            wait_s = self._try_admit(model, estimated_tokens, limit)
            if wait_s is None:
                if waited_s > 0:
                    logger.info(
                        "Rate gate admitted %d tokens for %s after %.0fms",
                        estimated_tokens, model, waited_s * 1000,
                    )
                return int(waited_s * 1000)
            if attempt == self._max_attempts:
                break

            logger.info(
                "Rate gate full for %s (attempt %d/%d), waiting %.0fms",
                model, attempt, self._max_attempts, wait_s * 1000,
            )
            await sleep_or_cancel(wait_s, signal, self._sleep)
            waited_s += wait_s

        raise TokenBudgetExhausted(
            f"No token budget for {model} after {self._max_attempts} windows"
        )

    def _try_admit(self, model: str, needed: int, limit: int) -> float | None:
        """Admit and return None, or return seconds until the window resets."""
        now = self._clock()
        budget = self._budgets.get(model)
        if budget is None or now >= budget.reset_at:
            budget = TokenBudget(used=0, reset_at=now + self._window_s, limit=limit)
            self._budgets[model] = budget

        if budget.used + needed <= budget.limit:
            budget.used += needed
            return None

        return max(0.0, budget.reset_at - now) + self._safety_buffer_s

    def stats(self) -> dict[str, dict[str, float]]:
        """Return used/limit/reset_in_s per model."""
        now = self._clock()
        return {
            model: {
                "used": budget.used,
                "limit": budget.limit,
                "reset_in_s": max(0.0, budget.reset_at - now),
            }
            for model, budget in self._budgets.items()
        }

    def reset(self) -> None:
        self._budgets.clear()
