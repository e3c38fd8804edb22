# tests/unit/llm/test_token_budget.py - v1
"""Tests for llm/token_budget.py - fixed-window admission with a fake clock."""

from __future__ import annotations

import asyncio

import pytest

from dossierforge.core.cancellation import CancellationSignal, Cancelled
from dossierforge.llm.errors import NonRetryableExternalError, RateLimitError
from dossierforge.llm.token_budget import (
    TokenBudgetExceeded,
    TokenBudgetExhausted,
    TokenBudgetGate,
    estimate_tokens,
)


@pytest.fixture
def gate(fake_clock):
    return TokenBudgetGate(
        window_s=60.0, safety_buffer_s=0.1, max_attempts=5,
        clock=fake_clock, sleep=fake_clock.sleep,
    )


class TestEstimateTokens:
    def test_four_chars_per_token_plus_output(self):
        est = estimate_tokens("a" * 400, max_output_tokens=1000)
        assert est.input_tokens == 100
        assert est.total == 1100

    def test_empty_prompt(self):
        assert estimate_tokens("", 0).total == 0


class TestTokenBudgetGate:
    @pytest.mark.asyncio
    async def test_admits_within_limit(self, gate, fake_clock):
        waited = await gate.reserve("gpt-4o", 400, limit=1000)
        waited += await gate.reserve("gpt-4o", 600, limit=1000)
        assert waited == 0
        assert fake_clock.sleeps == []
        assert gate.stats()["gpt-4o"]["used"] == 1000

    @pytest.mark.asyncio
    async def test_waits_for_window_reset(self, gate, fake_clock):
        await gate.reserve("gpt-4o", 800, limit=1000)
        waited = await gate.reserve("gpt-4o", 300, limit=1000)
        assert fake_clock.sleeps == [pytest.approx(60.1)]
        assert waited == pytest.approx(60100, abs=1)
        assert gate.stats()["gpt-4o"]["used"] == 300

    @pytest.mark.asyncio
    async def test_sequential_half_limit_reservations(self, gate, fake_clock):
        limit, window_ms, n = 1000, 60_000, 6
        admitted: list[tuple[float, int]] = []
        waits: list[int] = []
        for _ in range(n):
            remaining_ms = gate.stats().get("gpt-4o", {}).get("reset_in_s", 0.0) * 1000
            waits.append(await gate.reserve("gpt-4o", limit // 2, limit=limit))
            admitted.append((fake_clock.now, limit // 2))
            if len(waits) == n // 2:
                assert waits[-1] >= remaining_ms

        assert waits[:2] == [0, 0]
        assert waits[n // 2 - 1] >= window_ms
        for start, _ in admitted:
            in_window = sum(
                tokens for at, tokens in admitted if start <= at < start + window_ms / 1000
            )
            assert in_window <= limit

    @pytest.mark.asyncio
    async def test_models_have_independent_budgets(self, gate, fake_clock):
        await gate.reserve("gpt-4o", 1000, limit=1000)
        await gate.reserve("claude-3-5-sonnet-latest", 1000, limit=1000)
        assert fake_clock.sleeps == []

    @pytest.mark.asyncio
    async def test_oversized_request_fails_immediately(self, gate, fake_clock):
        with pytest.raises(TokenBudgetExceeded):
            await gate.reserve("gpt-4o", 1001, limit=1000)
        assert fake_clock.sleeps == []
        assert issubclass(TokenBudgetExceeded, NonRetryableExternalError)

    @pytest.mark.asyncio
    async def test_exhausted_after_max_attempts(self, fake_clock):
        gate = TokenBudgetGate(
            window_s=60.0, max_attempts=3, clock=fake_clock, sleep=fake_clock.sleep,
        )
        await gate.reserve("m", 1000, limit=1000)

        # Keep refilling the window from "another caller" on every wake-up.
        async def greedy_sleep(delay):
            await fake_clock.sleep(delay)
            gate._try_admit("m", 1000, 1000)

        gate._sleep = greedy_sleep
        with pytest.raises(TokenBudgetExhausted):
            await gate.reserve("m", 500, limit=1000)
        assert len(fake_clock.sleeps) == 2
        assert issubclass(TokenBudgetExhausted, RateLimitError)

    @pytest.mark.asyncio
    async def test_concurrent_callers_never_exceed_limit(self, gate, fake_clock):
        results = await asyncio.gather(
            *(gate.reserve("gpt-4o", 400, limit=1000) for _ in range(5))
        )
        assert results[:2] == [0, 0]
        assert results[2] > 0
        assert gate.stats()["gpt-4o"]["used"] <= 1000

    @pytest.mark.asyncio
    async def test_cancelled_while_waiting(self, fake_clock):
        gate = TokenBudgetGate(window_s=60.0, clock=fake_clock)
        await gate.reserve("m", 1000, limit=1000)
        signal = CancellationSignal()
        signal.trip("timeout")
        with pytest.raises(Cancelled):
            await gate.reserve("m", 10, limit=1000, signal=signal)

    @pytest.mark.asyncio
    async def test_stats_and_reset(self, gate, fake_clock):
        await gate.reserve("gpt-4o", 100, limit=1000)
        fake_clock.now += 20
        stats = gate.stats()["gpt-4o"]
        assert stats["limit"] == 1000
        assert stats["reset_in_s"] == pytest.approx(40.0)
        gate.reset()
        assert gate.stats() == {}
