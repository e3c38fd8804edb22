# tests/unit/pipeline/test_executor.py - v1
"""Tests for pipeline/executor.py - cache lookup, external calls, retry."""

from __future__ import annotations

import json

import pytest

from dossierforge.cache.json_store import JsonCacheStore
from dossierforge.config.settings import Settings
from dossierforge.config.steps import STEP_DEFINITIONS, get_step
from dossierforge.core.cancellation import CancellationSignal, Cancelled
from dossierforge.llm.base_client import BaseLLMClient
from dossierforge.llm.config import LLMAssignment, resolve_all
from dossierforge.llm.errors import AuthenticationError, ServerError
from dossierforge.llm.models import LLMResponse
from dossierforge.llm.token_budget import TokenBudgetGate
from dossierforge.pipeline.executor import StepExecutor
from dossierforge.storage import layout
from dossierforge.storage.artifact_log import ArtifactLog
from dossierforge.storage.local_writer import LocalWriter

PITCH = {"project_title": "BakeRide", "language": "en", "text": "Cargo bikes"}


class ProseClient(BaseLLMClient):
    """Answers with prose instead of JSON."""

    def __init__(self) -> None:
        self.calls = 0

    async def complete(self, messages, system=None, max_tokens=4000, temperature=0.1):
        self.calls += 1
        return LLMResponse(content="Sure! Here is your market analysis.", model="m", provider="fake")

    @property
    def provider_name(self) -> str:
        return "fake"

    @property
    def model(self) -> str:
        return "m"


class BrokenCache(JsonCacheStore):
    async def get(self, key):
        raise OSError("disk gone")


@pytest.fixture
def make_executor(settings, tmp_cache_dir, instant_sleep):
    def _make(client, settings_override=None, cache=None, assignments=None):
        s = settings_override or settings
        return StepExecutor(
            settings=s,
            cache=cache if cache is not None else JsonCacheStore(tmp_cache_dir / "steps"),
            gate=TokenBudgetGate(sleep=instant_sleep),
            clients=lambda assignment: client,
            assignments=assignments or resolve_all(STEP_DEFINITIONS, s),
            sleep=instant_sleep,
        )

    return _make


class TestPureSteps:
    @pytest.mark.asyncio
    async def test_input_step_runs_and_caches(self, make_executor, make_client):
        executor = make_executor(make_client())
        step = get_step("input")
        inputs = {"project_title": "BakeRide", "elevator_pitch": "Cargo bikes as a service."}

        first = await executor.run_step(step, inputs)
        second = await executor.run_step(step, inputs)

        assert first.success and not first.cache_hit
        assert first.data["word_count"] == 5
        assert len(first.hash) == 16
        assert second.cache_hit
        assert second.data == first.data
        assert second.cache_key == first.cache_key


class TestExternalSteps:
    @pytest.mark.asyncio
    async def test_success_parses_json_and_logs_call(self, make_executor, make_client):
        client = make_client(payloads={"market": {"headline": "big", "data": {"tam": 1}}})
        executor = make_executor(client)

        result = await executor.run_step(get_step("market"), {"pitch": PITCH})

        assert result.success
        assert result.data == {"headline": "big", "data": {"tam": 1}}
        assert result.attempts == 1
        assert client.calls == ["market"]
        records = executor.call_logger.records
        assert len(records) == 1
        assert records[0].status == "success"
        assert records[0].step == "market"

    @pytest.mark.asyncio
    async def test_cache_hit_skips_call(self, make_executor, make_client):
        client = make_client()
        executor = make_executor(client)
        inputs = {"pitch": PITCH}

        await executor.run_step(get_step("market"), inputs)
        hit = await executor.run_step(get_step("market"), inputs)

        assert hit.cache_hit
        assert client.calls_for("market") == 1

    @pytest.mark.asyncio
    async def test_skip_cache_calls_again(self, make_executor, make_client):
        client = make_client()
        executor = make_executor(client)
        inputs = {"pitch": PITCH}

        await executor.run_step(get_step("market"), inputs)
        again = await executor.run_step(get_step("market"), inputs, skip_cache=True)

        assert not again.cache_hit
        assert client.calls_for("market") == 2

    @pytest.mark.asyncio
    async def test_different_inputs_miss(self, make_executor, make_client):
        client = make_client()
        executor = make_executor(client)

        await executor.run_step(get_step("market"), {"pitch": PITCH})
        await executor.run_step(get_step("market"), {"pitch": {**PITCH, "text": "Scooters"}})

        assert client.calls_for("market") == 2

    @pytest.mark.asyncio
    async def test_transient_errors_retried(self, make_executor, make_client):
        client = make_client(failures={"market": [ServerError("503"), ServerError("503"), None]})
        executor = make_executor(client)

        result = await executor.run_step(get_step("market"), {"pitch": PITCH})

        assert result.success
        assert result.attempts == 3
        assert executor.call_logger.records[0].attempts == 3

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, make_executor, make_client):
        client = make_client(failures={"market": ServerError("503 overloaded")})
        executor = make_executor(client)

        result = await executor.run_step(get_step("market"), {"pitch": PITCH})

        assert not result.success
        assert result.error_type == "server_error"
        assert result.attempts == 3
        assert executor.call_logger.records[0].status == "failed"
        assert await executor.load_cached(result.cache_key) is None

    @pytest.mark.asyncio
    async def test_non_retryable_fails_immediately(self, make_executor, make_client):
        client = make_client(failures={"market": AuthenticationError("invalid api key")})
        executor = make_executor(client)

        result = await executor.run_step(get_step("market"), {"pitch": PITCH})

        assert not result.success
        assert result.error_type == "authentication"
        assert result.attempts == 1
        assert client.calls_for("market") == 1

    @pytest.mark.asyncio
    async def test_unparseable_response_not_retried(self, make_executor):
        client = ProseClient()
        executor = make_executor(client)

        result = await executor.run_step(get_step("market"), {"pitch": PITCH})

        assert not result.success
        assert result.error_type == "invalid_response"
        assert client.calls == 1

    @pytest.mark.asyncio
    async def test_reservation_over_limit(self, make_executor, make_client):
        client = make_client()
        assignments = {"market": LLMAssignment("openai", "gpt-4o", 10, "step")}
        executor = make_executor(client, assignments=assignments)

        result = await executor.run_step(get_step("market"), {"pitch": PITCH})

        assert not result.success
        assert result.error_type == "token_budget_exceeded"
        assert client.calls == []

    @pytest.mark.asyncio
    async def test_missing_assignment(self, make_executor, make_client):
        executor = make_executor(make_client(), assignments={"brief": LLMAssignment("openai", "gpt-4o", 50_000, "step")})

        result = await executor.run_step(get_step("market"), {"pitch": PITCH})

        assert not result.success
        assert result.error_type == "configuration"

    @pytest.mark.asyncio
    async def test_cancelled_propagates(self, make_executor, make_client):
        client = make_client(hang={"market"})
        executor = make_executor(client)
        signal = CancellationSignal()
        signal.arm(0.05)

        with pytest.raises(Cancelled):
            await executor.run_step(get_step("market"), {"pitch": PITCH}, signal=signal)


class TestCacheBehaviour:
    @pytest.mark.asyncio
    async def test_cache_disabled(self, make_executor, make_client, settings):
        client = make_client()
        disabled = settings.model_copy(update={"cache_enabled": False})
        executor = make_executor(client, settings_override=disabled)

        await executor.run_step(get_step("market"), {"pitch": PITCH})
        await executor.run_step(get_step("market"), {"pitch": PITCH})

        assert executor.cache is None
        assert client.calls_for("market") == 2

    @pytest.mark.asyncio
    async def test_read_failure_treated_as_miss(self, make_executor, make_client, tmp_cache_dir):
        client = make_client()
        executor = make_executor(client, cache=BrokenCache(tmp_cache_dir / "broken"))

        result = await executor.run_step(get_step("market"), {"pitch": PITCH})

        assert result.success
        assert not result.cache_hit
        assert client.calls_for("market") == 1

    def test_key_depends_on_dry_run(self, make_executor, make_client, settings, tmp_cache_dir):
        step = get_step("market")
        live = make_executor(make_client())
        dry = make_executor(
            make_client(),
            settings_override=Settings(_env_file=None, cache_root=tmp_cache_dir, dry_run=True),
        )
        assert live.cache_key_for(step, {"pitch": PITCH}) != dry.cache_key_for(step, {"pitch": PITCH})
        assert live.cache_key_for(step, {"pitch": PITCH}).startswith("step_market_")

    def test_environment_hash_tracks_key_flags(self, make_executor, make_client, settings):
        base = make_executor(make_client()).environment_hash(STEP_DEFINITIONS)
        same = make_executor(make_client()).environment_hash(STEP_DEFINITIONS)
        dry = make_executor(
            make_client(), settings_override=settings.model_copy(update={"dry_run": True})
        ).environment_hash(STEP_DEFINITIONS)
        bumped = make_executor(
            make_client(), settings_override=settings.model_copy(update={"prompt_version": "2.0"})
        ).environment_hash(STEP_DEFINITIONS)
        rerouted = make_executor(
            make_client(),
            assignments={
                **resolve_all(STEP_DEFINITIONS, settings),
                "market": LLMAssignment("anthropic", "claude-3-5-haiku-latest", 50_000, "step"),
            },
        ).environment_hash(STEP_DEFINITIONS)

        assert base == same
        assert len({base, dry, bumped, rerouted}) == 4


class TestArtifactLog:
    @pytest.mark.asyncio
    async def test_result_written(self, make_executor, make_client, tmp_output_dir):
        executor = make_executor(make_client())
        log = ArtifactLog(LocalWriter(tmp_output_dir), "run-1")

        result = await executor.run_step(get_step("market"), {"pitch": PITCH}, artifact_log=log)

        path = tmp_output_dir / layout.step_result_path("run-1", "market")
        assert json.loads(path.read_text()) == result.data
        index = await log.index()
        assert index.entries["market"].hash == result.hash
