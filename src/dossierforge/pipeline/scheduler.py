# src/dossierforge/pipeline/scheduler.py - v1
"""Pipeline scheduler: dependency-ordered execution with bounded parallelism.

One execute() or resume() call owns one PipelineState. The loop:

1. Settle skips: steps outside the rebuild set whose dependencies are
   done are marked skipped with their previous output reloaded from the
   cache. A skip whose output cannot be reloaded is promoted to run.
2. Pick ready steps: pending, dependencies done, scheduled to run.
   None ready while steps remain is a dependency deadlock.
3. Launch up to parallel_limit ready steps and wait for all of them.
   Any non-tolerant failure fails the run once the batch has finished.
4. Merge outputs, checkpoint before critical steps and every N steps.

The run's timeout trips a cancellation signal that is checked before
each batch and at every suspension point inside a step.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Mapping, Union

from dossierforge.config.settings import ConfigurationError, Settings
from dossierforge.config.steps import REBUILD_DEPENDENTS, STEP_DEFINITIONS
from dossierforge.core.cancellation import CancellationSignal, Cancelled
from dossierforge.core.models import RebuildPlan, StepDefinition, StepResult
from dossierforge.logging.context import set_run_context, step_context
from dossierforge.pipeline.dag_builder import validate_step_graph
from dossierforge.pipeline.errors import (
    CheckpointNotFoundError,
    DependencyDeadlockError,
    PipelineTimeout,
    StepFailure,
)
from dossierforge.pipeline.executor import StepExecutor
from dossierforge.pipeline.fallbacks import fallback_payload
from dossierforge.pipeline.rebuild import (
    IncrementalRebuildAnalyzer,
    InputDigest,
    compute_digest,
    normalize_sources,
)
from dossierforge.pipeline.state import (
    PipelineState,
    StepRuntimeStatus,
    collect_inputs,
    missing_inputs,
    outputs_present,
    put_artifact,
    split_outputs,
)
from dossierforge.storage import layout
from dossierforge.storage.artifact_log import ArtifactLog
from dossierforge.storage.base_output_writer import BaseOutputWriter
from dossierforge.storage.checkpoint_store import CheckpointStore
from dossierforge.storage.models import BuildState, Checkpoint, CheckpointReason
from dossierforge.tracking.call_logger import CallLogger
from dossierforge.tracking.models import CallStats

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[PipelineState], Union[None, Awaitable[None]]]


@dataclass
class RunOptions:
    parallel_limit: int = 2
    timeout_s: float = 300.0
    skip_cache: bool = False
    run_id: str | None = None
    progress: ProgressCallback | None = None


@dataclass
class RunOutcome:
    """What one scheduler invocation hands back to the facade."""

    success: bool
    run_id: str
    state: PipelineState
    plan: RebuildPlan
    dossier: Any = None
    error: str | None = None
    error_type: str | None = None
    failed_step: str | None = None
    resumable: bool = False
    stats: CallStats = field(default_factory=CallStats)
    exception: BaseException | None = None


@dataclass
class _RunContext:
    state: PipelineState
    plan: RebuildPlan
    digest: InputDigest
    run_input: dict[str, Any]
    options: RunOptions
    previous: BuildState | None
    signal: CancellationSignal
    artifact_log: ArtifactLog
    calls: CallLogger = field(default_factory=CallLogger)
    promoted: set[str] = field(default_factory=set)
    done_since_checkpoint: int = 0


def seed_artifacts(run_input: dict[str, Any]) -> dict[str, Any]:
    """Initial artifact store built from the pipeline input."""
    artifacts: dict[str, Any] = {
        "project_title": run_input["project_title"],
        "elevator_pitch": run_input["elevator_pitch"],
        "input_options": dict(run_input.get("input_options") or {}),
    }
    sources = normalize_sources(run_input.get("sources"))
    if sources is not None:
        artifacts["sources"] = sources
    return artifacts


class PipelineScheduler:
    """Owns the step graph and drives runs to completion or checkpoint."""

    def __init__(
        self,
        executor: StepExecutor,
        checkpoints: CheckpointStore,
        analyzer: IncrementalRebuildAnalyzer,
        writer: BaseOutputWriter,
        settings: Settings,
        steps: tuple[StepDefinition, ...] = STEP_DEFINITIONS,
        rebuild_dependents: Mapping[str, Iterable[str]] | None = REBUILD_DEPENDENTS,
    ) -> None:
        self._stage_plan = validate_step_graph(steps, rebuild_dependents)
        self._executor = executor
        self._checkpoints = checkpoints
        self._analyzer = analyzer
        self._writer = writer
        self._settings = settings
        self._steps = steps

    @property
    def stages(self) -> list[list[str]]:
        """Topological levels of the graph, for reporting."""
        return self._stage_plan.stages

    def _digest(self, run_input: dict[str, Any]) -> InputDigest:
        return compute_digest(
            run_input["elevator_pitch"],
            run_input.get("sources"),
            self._executor.environment_hash(self._steps),
        )

    async def plan(self, run_input: dict[str, Any], skip_cache: bool = False) -> RebuildPlan:
        """Compute the rebuild plan for run_input without executing."""
        previous = await self._analyzer.load_previous()
        digest = self._digest(run_input)
        return self._analyzer.analyze(digest, previous, skip_cache)

    async def execute(self, run_input: dict[str, Any], options: RunOptions) -> RunOutcome:
        """Run the pipeline from scratch (modulo the rebuild plan)."""
        run_id = options.run_id or layout.generate_run_id()
        set_run_context(run_id)

        previous = await self._analyzer.load_previous()
        digest = self._digest(run_input)
        plan = self._analyzer.analyze(digest, previous, options.skip_cache)

        state = PipelineState.initial(run_id, (s.id for s in self._steps))
        state.artifacts = seed_artifacts(run_input)
        logger.info(
            "Starting run %s: %d steps, parallel=%d, timeout=%gs",
            run_id, len(self._steps), options.parallel_limit, options.timeout_s,
        )
        return await self._run(run_id, state, plan, digest, run_input, options, previous)

    async def resume(
        self,
        run_id: str,
        options: RunOptions,
        run_input: dict[str, Any] | None = None,
    ) -> RunOutcome:
        """Continue a checkpointed run.

        Raises:
            CheckpointNotFoundError: no loadable checkpoint for run_id.
        """
        checkpoint = await self._checkpoints.load(run_id)
        if checkpoint is None:
            raise CheckpointNotFoundError(run_id)
        set_run_context(run_id)

        state = checkpoint.state
        reset = state.reset_unfinished()
        run_input = run_input or checkpoint.input
        previous = await self._analyzer.load_previous()
        digest = self._digest(run_input)
        plan = checkpoint.plan or self._analyzer.analyze(digest, previous, options.skip_cache)

        logger.info(
            "Resuming run %s from %s checkpoint: %d steps done, %d reset to pending",
            run_id, checkpoint.reason, len(state.done_ids()), len(reset),
        )
        return await self._run(run_id, state, plan, digest, run_input, options, previous)

    # --- Main loop ---

    async def _run(
        self,
        run_id: str,
        state: PipelineState,
        plan: RebuildPlan,
        digest: InputDigest,
        run_input: dict[str, Any],
        options: RunOptions,
        previous: BuildState | None,
    ) -> RunOutcome:
        signal = CancellationSignal()
        signal.arm(options.timeout_s, reason=f"timeout after {options.timeout_s:g}s")
        ctx = _RunContext(
            state=state,
            plan=plan,
            digest=digest,
            run_input=run_input,
            options=options,
            previous=previous,
            signal=signal,
            artifact_log=ArtifactLog(self._writer, run_id),
        )
        loop = asyncio.get_running_loop()
        started = loop.time()

        try:
            await self._loop(ctx)
        except Cancelled:
            error = PipelineTimeout(run_id, options.timeout_s)
            logger.error("%s", error)
            await self._checkpoint(ctx, "timeout", error=str(error))
            return self._failure(ctx, error, "timeout", resumable=True)
        except StepFailure as e:
            await self._checkpoint(ctx, "error", error=str(e))
            return self._failure(ctx, e, e.error_type, failed_step=e.step_id, resumable=True)
        except ConfigurationError as e:
            logger.error("Run %s aborted by configuration error: %s", run_id, e)
            await self._checkpoint(ctx, "error", error=str(e))
            error_type = (
                "dependency_deadlock" if isinstance(e, DependencyDeadlockError) else "configuration"
            )
            return self._failure(ctx, e, error_type, resumable=False)
        finally:
            signal.disarm()
            state.total_duration_ms += int((loop.time() - started) * 1000)

        dossier = state.artifacts.get("dossier")
        await self._finalize(ctx, dossier)
        logger.info(
            "Run %s completed: %d cache hits, %dms",
            run_id, state.cache_hits, state.total_duration_ms,
        )
        return RunOutcome(
            success=True,
            run_id=run_id,
            state=state,
            plan=plan,
            dossier=dossier,
            stats=ctx.calls.stats(),
        )

    async def _loop(self, ctx: _RunContext) -> None:
        state = ctx.state
        total = len(self._steps)

        while len(state.done_ids()) < total:
            ctx.signal.raise_if_set()
            await self._settle_skips(ctx)
            done = state.done_ids()
            if len(done) == total:
                break

            ready = [
                step for step in self._steps
                if state.status_of(step.id) == "pending"
                and self._scheduled(ctx, step.id)
                and set(step.dependencies) <= done
            ]
            if not ready:
                stuck = [s.id for s in self._steps if s.id not in done]
                raise DependencyDeadlockError(stuck)

            batch = ready[: ctx.options.parallel_limit]
            for step in batch:
                missing = missing_inputs(step, state.artifacts)
                if missing:
                    raise ConfigurationError(
                        f"Step '{step.id}' is ready but inputs {missing} are absent"
                    )

            critical = [s.id for s in batch if s.critical]
            if critical:
                await self._checkpoint(ctx, "critical")

            for step in batch:
                state.mark_running(step.id)
            await self._notify(ctx)

            results = await asyncio.gather(
                *(self._execute_one(ctx, step) for step in batch),
                return_exceptions=True,
            )
            await self._merge_batch(ctx, batch, results)

            if ctx.done_since_checkpoint >= self._settings.checkpoint_every_n_steps:
                await self._checkpoint(ctx, "periodic")

    def _scheduled(self, ctx: _RunContext, step_id: str) -> bool:
        return step_id in ctx.plan.to_rebuild or step_id in ctx.promoted

    async def _execute_one(self, ctx: _RunContext, step: StepDefinition) -> StepResult:
        with step_context(step.id):
            inputs = collect_inputs(step, ctx.state.artifacts)
            return await self._executor.run_step(
                step,
                inputs,
                skip_cache=ctx.options.skip_cache,
                signal=ctx.signal,
                artifact_log=ctx.artifact_log,
                call_logger=ctx.calls,
            )

    async def _merge_batch(
        self,
        ctx: _RunContext,
        batch: list[StepDefinition],
        results: list[StepResult | BaseException],
    ) -> None:
        state = ctx.state
        failures: list[StepFailure] = []
        cancelled = False

        for step, result in zip(batch, results):
            if isinstance(result, Cancelled):
                state.steps[step.id] = StepRuntimeStatus()
                cancelled = True
                continue
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.error("Step '%s' raised %s", step.id, type(result).__name__, exc_info=result)
                result = StepResult(
                    success=False, error=str(result), error_type=type(result).__name__
                )

            if result.success:
                self._apply_outputs(state, step, result.data)
                state.mark_completed(
                    step.id,
                    duration_ms=result.duration_ms,
                    hash=result.hash,
                    cache_hit=result.cache_hit,
                    attempts=result.attempts,
                )
                if result.cache_key:
                    state.output_keys[step.id] = result.cache_key
                ctx.done_since_checkpoint += 1
            elif step.tolerant:
                previous_output = await self._previous_output(ctx, step.id)
                payload = fallback_payload(step.id, result.error or "unknown error", previous_output)
                logger.warning(
                    "Step '%s' failed (%s), substituting %s fallback",
                    step.id, result.error_type, payload["source"],
                )
                self._apply_outputs(state, step, payload)
                state.mark_completed(
                    step.id,
                    duration_ms=result.duration_ms,
                    hash="",
                    attempts=result.attempts,
                    fallback=True,
                )
                state.output_keys.pop(step.id, None)
                ctx.done_since_checkpoint += 1
            else:
                state.mark_failed(step.id, result.error or "", result.error_type, result.attempts)
                failures.append(
                    StepFailure(step.id, result.error or "", result.error_type, result.attempts)
                )
        await self._notify(ctx)

        if cancelled:
            raise Cancelled(ctx.signal.reason or "cancelled")
        if failures:
            raise failures[0]

    @staticmethod
    def _apply_outputs(state: PipelineState, step: StepDefinition, data: Any) -> None:
        for address, value in split_outputs(step, data).items():
            put_artifact(state.artifacts, address, value)

    # --- Skips ---

    async def _settle_skips(self, ctx: _RunContext) -> None:
        """Mark every skippable step whose dependencies are done.

        Repeats until nothing changes, since one skip can unblock another.
        """
        state = ctx.state
        changed = True
        while changed:
            changed = False
            done = state.done_ids()
            for step in self._steps:
                if state.status_of(step.id) != "pending" or step.id in ctx.promoted:
                    continue
                if not set(step.dependencies) <= done:
                    continue

                if outputs_present(step, state.artifacts):
                    state.mark_skipped(step.id)
                    logger.info("Step '%s' skipped: outputs supplied by caller", step.id)
                elif step.id in ctx.plan.to_skip:
                    key = ctx.plan.reuse_keys.get(step.id)
                    data = await self._executor.load_cached(key) if key else None
                    if data is None:
                        ctx.promoted.add(step.id)
                        logger.warning(
                            "Step '%s' was planned as skipped but has no reusable output; running it",
                            step.id,
                        )
                        continue
                    self._apply_outputs(state, step, data)
                    state.mark_skipped(step.id)
                    state.output_keys[step.id] = key
                    logger.info("Step '%s' skipped: reloaded previous output", step.id)
                else:
                    continue
                done.add(step.id)
                changed = True
        await self._notify(ctx)

    async def _previous_output(self, ctx: _RunContext, step_id: str) -> Any:
        if ctx.previous is None:
            return None
        key = ctx.previous.step_output_keys.get(step_id)
        return await self._executor.load_cached(key) if key else None

    # --- Persistence ---

    async def _checkpoint(
        self, ctx: _RunContext, reason: CheckpointReason, error: str | None = None
    ) -> None:
        saved = await self._checkpoints.save(
            Checkpoint(
                run_id=ctx.state.run_id,
                reason=reason,
                state=ctx.state,
                plan=ctx.plan,
                input=ctx.run_input,
                error=error,
            )
        )
        if saved:
            ctx.done_since_checkpoint = 0

    async def _finalize(self, ctx: _RunContext, dossier: Any) -> None:
        run_id = ctx.state.run_id
        await self._checkpoints.delete(run_id)
        try:
            await self._writer.write(
                layout.dossier_path(run_id),
                json.dumps(dossier, indent=2, ensure_ascii=False, default=str),
            )
        except OSError as e:
            logger.warning("Failed to persist dossier for run %s: %s", run_id, e)
        await ctx.calls.save(self._writer, layout.calls_log_path(run_id))
        await self._analyzer.save_current_state(
            ctx.digest,
            ctx.state.artifacts,
            ctx.state.output_keys,
            ctx.plan,
            ctx.previous,
            run_id,
        )

    def _failure(
        self,
        ctx: _RunContext,
        error: Exception,
        error_type: str,
        failed_step: str | None = None,
        resumable: bool = False,
    ) -> RunOutcome:
        return RunOutcome(
            success=False,
            run_id=ctx.state.run_id,
            state=ctx.state,
            plan=ctx.plan,
            error=str(error),
            error_type=error_type,
            failed_step=failed_step or ctx.state.failed_step(),
            resumable=resumable,
            stats=ctx.calls.stats(),
            exception=error,
        )

    async def _notify(self, ctx: _RunContext) -> None:
        callback = ctx.options.progress
        if callback is None:
            return
        try:
            result = callback(ctx.state)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning("Progress callback failed: %s", e)
