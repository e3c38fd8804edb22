# tests/conftest.py - v1
"""Shared test fixtures for all unit tests.

Provides isolated settings, a scripted fake LLM client, a fake clock for
the rate gate, and a fully wired pipeline on temp directories.
No network access: every external call goes to ScriptedClient.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any

import pytest

from dossierforge.api.facade import Pipeline, build_pipeline
from dossierforge.config.settings import Settings
from dossierforge.config.steps import STEP_DEFINITIONS
from dossierforge.llm.base_client import BaseLLMClient
from dossierforge.llm.models import LLMResponse, Message

_STEP_ID_BY_NAME = {step.name: step.id for step in STEP_DEFINITIONS}


def step_of(messages: list[Message]) -> str:
    """Step id of a rendered prompt (its first line is '# <step name>')."""
    first_line = messages[-1].content.split("\n", 1)[0]
    return _STEP_ID_BY_NAME.get(first_line.lstrip("# ").strip(), "unknown")


class ScriptedClient(BaseLLMClient):
    """Fake provider scripted per step id.

    failures: step id -> exception raised on every call, or a list of
        exceptions (None = succeed) consumed one per call.
    hang: step ids whose calls never return.
    payloads: step id -> JSON-serializable response body.
    """

    def __init__(
        self,
        failures: dict[str, Any] | None = None,
        hang: set[str] | None = None,
        payloads: dict[str, Any] | None = None,
        delay_s: float = 0.0,
    ) -> None:
        self.failures = dict(failures or {})
        self.hang = set(hang or ())
        self.payloads = dict(payloads or {})
        self.delay_s = delay_s
        self.calls: list[str] = []
        self.active = 0
        self.max_active = 0

    async def complete(
        self,
        messages: list[Message],
        system: str | None = None,
        max_tokens: int = 4000,
        temperature: float = 0.1,
    ) -> LLMResponse:
        step_id = step_of(messages)
        self.calls.append(step_id)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            script = self.failures.get(step_id)
            if isinstance(script, list):
                error = script.pop(0) if script else None
                if error is not None:
                    raise error
            elif isinstance(script, BaseException):
                raise script
            if step_id in self.hang:
                await asyncio.sleep(3600)
            if self.delay_s:
                await asyncio.sleep(self.delay_s)
        finally:
            self.active -= 1

        body = self.payloads.get(step_id, {"headline": step_id, "data": {}, "sources": []})
        return LLMResponse(
            content=json.dumps(body),
            input_tokens=100,
            output_tokens=50,
            model="fake-model",
            provider="fake",
            latency_ms=1,
        )

    def calls_for(self, step_id: str) -> int:
        return self.calls.count(step_id)

    @property
    def provider_name(self) -> str:
        return "fake"

    @property
    def model(self) -> str:
        return "fake-model"


class FakeClock:
    """Monotonic clock advanced only by the fake sleep."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, delay_s: float) -> None:
        self.sleeps.append(delay_s)
        self.now += delay_s
        await asyncio.sleep(0)


async def no_sleep(delay_s: float) -> None:
    await asyncio.sleep(0)


SAMPLE_PITCH = (
    "Cargo bikes as a service for inner-city bakeries: a monthly "
    "subscription covering bike, insurance, maintenance and routing software."
)


def run_input(pitch: str = SAMPLE_PITCH, sources: Any = None) -> dict[str, Any]:
    data: dict[str, Any] = {
        "project_title": "BakeRide",
        "elevator_pitch": pitch,
        "input_options": {"language": "en"},
    }
    if sources is not None:
        data["sources"] = sources
    return data


# === FIXTURES: Settings & dirs ===


@pytest.fixture
def tmp_output_dir(tmp_path: Path) -> Path:
    out = tmp_path / "output"
    out.mkdir()
    return out


@pytest.fixture
def tmp_cache_dir(tmp_path: Path) -> Path:
    cache = tmp_path / "cache"
    cache.mkdir()
    return cache


@pytest.fixture
def settings(tmp_cache_dir: Path, tmp_output_dir: Path) -> Settings:
    """Isolated settings: no .env, temp dirs, short call timeout."""
    return Settings(
        _env_file=None,
        cache_root=tmp_cache_dir,
        output_path=tmp_output_dir,
        llm_call_timeout_s=5.0,
        llm_retry_base_delay_s=0.01,
        llm_retry_max_delay_s=0.05,
    )


# === FIXTURES: Fakes ===


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def scripted_client() -> ScriptedClient:
    return ScriptedClient()


@pytest.fixture
def make_pipeline(settings: Settings):
    """Factory wiring a Pipeline around a ScriptedClient."""

    def _make(
        client: ScriptedClient | None = None, settings_override: Settings | None = None
    ) -> Pipeline:
        client = client or ScriptedClient()
        return build_pipeline(
            settings_override or settings,
            clients=lambda assignment: client,
            sleep=no_sleep,
        )

    return _make


@pytest.fixture
def make_client():
    """ScriptedClient constructor, for tests that script failures."""
    return ScriptedClient


@pytest.fixture
def make_run_input():
    """run_input(pitch=..., sources=...) builder."""
    return run_input


@pytest.fixture
def instant_sleep():
    return no_sleep
