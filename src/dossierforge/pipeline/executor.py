# src/dossierforge/pipeline/executor.py - v1
"""Step executor: run one step with cache, rate gate, timeout and retry.

Sequence per step: look up the cache; on a miss run the pure computation
or the external call (admission at the token budget gate, per-call
timeout, bounded retry on transient failures); write the result to the
cache under the same key and to the run's artifact log.

The executor never raises for a step failure. It returns a StepResult
with success=False and leaves the abort/fallback decision to the
scheduler. Cancelled is the one exception that propagates.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Iterable

from dossierforge.cache.base_cache_store import BaseCacheStore
from dossierforge.cache.fingerprint import content_hash, create_step_cache_key
from dossierforge.config.settings import Settings
from dossierforge.core.cancellation import CancellationSignal, Cancelled, SleepFn
from dossierforge.core.models import StepDefinition, StepResult
from dossierforge.llm.base_client import BaseLLMClient
from dossierforge.llm.config import LLMAssignment
from dossierforge.llm.errors import (
    ExternalServiceError,
    InvalidResponseError,
    classify_error,
)
from dossierforge.llm.models import Message, LLMResponse
from dossierforge.llm.retry import RetryExhausted, RetryPolicy, with_retry
from dossierforge.llm.token_budget import TokenBudgetGate, estimate_tokens
from dossierforge.pipeline import computations, prompts
from dossierforge.storage.artifact_log import ArtifactLog
from dossierforge.tracking.call_logger import CallLogger

logger = logging.getLogger(__name__)

ClientProvider = Callable[[LLMAssignment], BaseLLMClient]


def retry_policy_from(settings: Settings) -> RetryPolicy:
    return RetryPolicy(
        max_retries=settings.llm_max_retries,
        base_delay_s=settings.llm_retry_base_delay_s,
        max_delay_s=settings.llm_retry_max_delay_s,
        call_timeout_s=settings.llm_call_timeout_s,
    )


class StepExecutor:
    """Runs single steps on behalf of the scheduler.

    Args:
        settings: Resolved settings (cache toggle, prompt version, limits).
        cache: Step result cache; None disables caching.
        gate: Shared token budget gate.
        clients: Callable returning a client for an LLMAssignment.
        assignments: Resolved model routing per external step.
        call_logger: Receives one record per external call.
        retry_policy: Overrides the policy derived from settings.
        sleep: Backoff sleep (injectable for tests).
    """

    def __init__(
        self,
        settings: Settings,
        cache: BaseCacheStore | None,
        gate: TokenBudgetGate,
        clients: ClientProvider,
        assignments: dict[str, LLMAssignment],
        call_logger: CallLogger | None = None,
        retry_policy: RetryPolicy | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._settings = settings
        self._cache = cache if settings.cache_enabled else None
        self._gate = gate
        self._clients = clients
        self._assignments = assignments
        self._call_logger = call_logger or CallLogger()
        self._policy = retry_policy or retry_policy_from(settings)
        self._sleep = sleep

    @property
    def call_logger(self) -> CallLogger:
        return self._call_logger

    @property
    def cache(self) -> BaseCacheStore | None:
        return self._cache

    def cache_key_for(self, step: StepDefinition, inputs: dict[str, Any]) -> str:
        assignment = self._assignments.get(step.id)
        env_flags = {
            "dry_run": self._settings.dry_run,
            "model": assignment.key if assignment is not None else None,
        }
        return create_step_cache_key(
            step.id,
            inputs,
            prompts.prompt_tag(step.id, self._settings.prompt_version),
            env_flags,
        )

    def environment_hash(self, steps: Iterable[StepDefinition]) -> str:
        """Digest of the non-input parts of every step's cache key."""
        external = [s.id for s in steps if s.external]
        return content_hash({
            "dry_run": self._settings.dry_run,
            "prompts": {sid: prompts.prompt_tag(sid, self._settings.prompt_version) for sid in external},
            "models": {
                sid: self._assignments[sid].key for sid in external if sid in self._assignments
            },
        })

    async def load_cached(self, key: str) -> Any | None:
        """Cached payload for key, or None. Read failures count as a miss."""
        if self._cache is None:
            return None
        try:
            entry = await self._cache.get(key)
        except Exception as e:
            logger.warning("Cache read failed for %s, treating as miss: %s", key, e)
            return None
        return None if entry is None else entry.data

    async def run_step(
        self,
        step: StepDefinition,
        inputs: dict[str, Any],
        skip_cache: bool = False,
        signal: CancellationSignal | None = None,
        artifact_log: ArtifactLog | None = None,
        call_logger: CallLogger | None = None,
    ) -> StepResult:
        started = time.monotonic()
        key = self.cache_key_for(step, inputs)

        if not skip_cache:
            cached = await self.load_cached(key)
            if cached is not None:
                logger.info("Step '%s': cache hit", step.id)
                await self._log_artifact(artifact_log, step, cached)
                return StepResult(
                    success=True,
                    data=cached,
                    duration_ms=_elapsed_ms(started),
                    cache_hit=True,
                    hash=content_hash(cached),
                    cache_key=key,
                )

        if step.id in computations.PURE_STEPS:
            result = self._run_pure(step, inputs)
        elif step.external:
            result = await self._run_external(
                step, inputs, signal, call_logger or self._call_logger
            )
        else:
            result = StepResult(
                success=False,
                error=f"Step '{step.id}' has no computation and no external call",
                error_type="configuration",
            )

        result.duration_ms = _elapsed_ms(started)
        result.cache_key = key
        if not result.success:
            logger.warning(
                "Step '%s' failed after %d attempt(s): %s",
                step.id, result.attempts, result.error,
            )
            return result

        result.hash = content_hash(result.data)
        await self._store(key, step, result)
        await self._log_artifact(artifact_log, step, result.data)
        logger.info(
            "Step '%s' completed in %dms (%d attempt(s))",
            step.id, result.duration_ms, result.attempts,
        )
        return result

    def _run_pure(self, step: StepDefinition, inputs: dict[str, Any]) -> StepResult:
        try:
            data = computations.PURE_STEPS[step.id](inputs)
        except (ValueError, TypeError, KeyError) as e:
            return StepResult(
                success=False, error=str(e), error_type="computation_error", attempts=1
            )
        return StepResult(success=True, data=data, attempts=1)

    async def _run_external(
        self,
        step: StepDefinition,
        inputs: dict[str, Any],
        signal: CancellationSignal | None,
        call_logger: CallLogger,
    ) -> StepResult:
        assignment = self._assignments.get(step.id)
        if assignment is None:
            return StepResult(
                success=False,
                error=f"No model assignment for step '{step.id}'",
                error_type="configuration",
            )

        prompt = prompts.render_prompt(step, inputs)
        max_tokens = self._settings.llm_max_output_tokens
        estimated = estimate_tokens(prompts.SYSTEM_PROMPT + prompt, max_tokens).total
        client = self._clients(assignment)
        calls = 0
        waited_ms = 0

        async def admit() -> None:
            nonlocal waited_ms
            waited_ms += await self._gate.reserve(
                assignment.model, estimated, assignment.token_limit, signal
            )

        async def call() -> Any:
            nonlocal calls
            calls += 1
            response = await client.complete(
                [Message(role="user", content=prompt)],
                system=prompts.SYSTEM_PROMPT,
                max_tokens=max_tokens,
                temperature=self._settings.llm_temperature,
            )
            return response, _parse(response)

        try:
            outcome = await with_retry(
                call,
                self._policy,
                step=step.id,
                signal=signal,
                sleep=self._sleep,
                prepare=admit,
            )
        except Cancelled:
            raise
        except RetryExhausted as e:
            call_logger.record_failure(
                step.id, assignment.provider, assignment.model, e.error_type,
                estimated, e.attempts, waited_ms,
            )
            return StepResult(
                success=False,
                error=str(e.last_error),
                error_type=e.error_type,
                attempts=e.attempts,
                rate_gate_wait_ms=waited_ms,
            )
        except Exception as e:
            cls = classify_error(e)
            error_type = cls.error_type if cls is not None else type(e).__name__
            call_logger.record_failure(
                step.id, assignment.provider, assignment.model, error_type,
                estimated, max(calls, 1), waited_ms,
            )
            if not isinstance(e, ExternalServiceError):
                logger.error("Step '%s' raised unexpected %s", step.id, type(e).__name__, exc_info=True)
            return StepResult(
                success=False,
                error=str(e),
                error_type=error_type,
                attempts=max(calls, 1),
                rate_gate_wait_ms=waited_ms,
            )

        response, data = outcome.result
        call_logger.record(
            step.id, response, estimated, outcome.attempts, waited_ms
        )
        return StepResult(
            success=True,
            data=data,
            attempts=outcome.attempts,
            rate_gate_wait_ms=waited_ms,
        )

    async def _store(self, key: str, step: StepDefinition, result: StepResult) -> None:
        if self._cache is None:
            return
        assignment = self._assignments.get(step.id)
        try:
            await self._cache.set(
                key,
                result.data,
                {
                    "step_id": step.id,
                    "model": assignment.key if assignment is not None else None,
                    "attempts": result.attempts,
                    "duration_ms": result.duration_ms,
                },
            )
        except Exception as e:
            logger.warning("Cache write failed for step '%s': %s", step.id, e)

    async def _log_artifact(
        self, artifact_log: ArtifactLog | None, step: StepDefinition, data: Any
    ) -> None:
        if artifact_log is not None:
            await artifact_log.record(step.id, step.name, data)


def _parse(response: LLMResponse) -> Any:
    try:
        return prompts.parse_json_response(response.content)
    except ValueError as e:
        raise InvalidResponseError(str(e)) from e


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
