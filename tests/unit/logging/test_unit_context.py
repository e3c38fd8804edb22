# tests/unit/logging/test_unit_context.py - v1
"""Tests for logging/context.py - run and step context variables."""

from __future__ import annotations

import asyncio

import pytest

from dossierforge.logging.context import (
    LogContext,
    clear_context,
    get_context,
    set_run_context,
    set_step_context,
    step_context,
)


class TestContext:
    def setup_method(self):
        clear_context()

    def teardown_method(self):
        clear_context()

    def test_empty_by_default(self):
        assert get_context().as_dict() == {}

    def test_run_and_step(self):
        set_run_context("r1")
        set_step_context("market")
        assert get_context() == LogContext(run_id="r1", step="market")

    def test_step_context_restores(self):
        set_step_context("outer")
        with step_context("inner"):
            assert get_context().step == "inner"
        assert get_context().step == "outer"

    @pytest.mark.asyncio
    async def test_sibling_tasks_isolated(self):
        seen: dict[str, str | None] = {}

        async def step(name: str) -> None:
            with step_context(name):
                await asyncio.sleep(0)
                seen[name] = get_context().step

        await asyncio.gather(step("team"), step("market"))
        assert seen == {"team": "team", "market": "market"}
        assert get_context().step is None
