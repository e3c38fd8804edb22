# tests/unit/core/test_cancellation.py - v1
"""Tests for core/cancellation.py - run-scoped cooperative cancellation."""

from __future__ import annotations

import asyncio

import pytest

from dossierforge.core.cancellation import (
    CancellationSignal,
    Cancelled,
    run_or_cancel,
    sleep_or_cancel,
)


class TestCancellationSignal:
    @pytest.mark.asyncio
    async def test_trip_sets_reason(self):
        signal = CancellationSignal()
        assert not signal.is_set
        signal.trip("operator abort")
        assert signal.is_set
        assert signal.reason == "operator abort"
        with pytest.raises(Cancelled, match="operator abort"):
            signal.raise_if_set()

    @pytest.mark.asyncio
    async def test_first_reason_wins(self):
        signal = CancellationSignal()
        signal.trip("first")
        signal.trip("second")
        assert signal.reason == "first"

    @pytest.mark.asyncio
    async def test_arm_trips_after_deadline(self):
        signal = CancellationSignal()
        signal.arm(0.01, reason="deadline")
        await asyncio.wait_for(signal.wait(), timeout=1.0)
        assert signal.reason == "deadline"

    @pytest.mark.asyncio
    async def test_disarm_prevents_trip(self):
        signal = CancellationSignal()
        signal.arm(0.01)
        signal.disarm()
        await asyncio.sleep(0.03)
        assert not signal.is_set


class TestRunOrCancel:
    @pytest.mark.asyncio
    async def test_returns_result_without_signal(self):
        async def work():
            return 42

        assert await run_or_cancel(work()) == 42

    @pytest.mark.asyncio
    async def test_returns_result_when_not_tripped(self):
        async def work():
            return "done"

        assert await run_or_cancel(work(), CancellationSignal()) == "done"

    @pytest.mark.asyncio
    async def test_abandons_hanging_work(self):
        signal = CancellationSignal()
        signal.arm(0.01, reason="timeout")
        with pytest.raises(Cancelled, match="timeout"):
            await run_or_cancel(asyncio.sleep(3600), signal)

    @pytest.mark.asyncio
    async def test_propagates_work_errors(self):
        async def boom():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError, match="boom"):
            await run_or_cancel(boom(), CancellationSignal())


class TestSleepOrCancel:
    @pytest.mark.asyncio
    async def test_uses_injected_sleep(self):
        slept: list[float] = []

        async def fake_sleep(delay):
            slept.append(delay)

        await sleep_or_cancel(2.5, None, fake_sleep)
        await sleep_or_cancel(1.0, CancellationSignal(), fake_sleep)
        assert slept == [2.5, 1.0]

    @pytest.mark.asyncio
    async def test_already_tripped_raises(self):
        signal = CancellationSignal()
        signal.trip("gone")

        async def fake_sleep(delay):
            return None

        with pytest.raises(Cancelled):
            await sleep_or_cancel(1.0, signal, fake_sleep)

    @pytest.mark.asyncio
    async def test_wakes_early_when_tripped(self):
        signal = CancellationSignal()
        signal.arm(0.01)
        loop = asyncio.get_running_loop()
        started = loop.time()
        with pytest.raises(Cancelled):
            await sleep_or_cancel(60.0, signal)
        assert loop.time() - started < 5.0
