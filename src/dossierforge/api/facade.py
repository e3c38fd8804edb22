# src/dossierforge/api/facade.py - v1
"""Public API facade: build the engine once, run pipelines through it.

Usage:
    from dossierforge.api.facade import build_pipeline, execute_pipeline
    pipeline = build_pipeline(settings)
    result = await execute_pipeline(PipelineInput(...), pipeline=pipeline)

The cache store and the token budget gate are process-wide resources:
build one Pipeline at startup and pass it to every call.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import timedelta

from dossierforge.api.models import PipelineInput, PipelineOptions, PipelineResult
from dossierforge.cache.base_cache_store import BaseCacheStore
from dossierforge.cache.cache_factory import create_cache_store
from dossierforge.config.settings import Settings
from dossierforge.config.steps import STEP_DEFINITIONS
from dossierforge.core.cancellation import SleepFn
from dossierforge.core.models import RebuildPlan
from dossierforge.llm.client_factory import ClientPool
from dossierforge.llm.config import resolve_all
from dossierforge.llm.token_budget import TokenBudgetGate
from dossierforge.pipeline.executor import ClientProvider, StepExecutor
from dossierforge.pipeline.rebuild import IncrementalRebuildAnalyzer
from dossierforge.pipeline.scheduler import (
    PipelineScheduler,
    ProgressCallback,
    RunOptions,
    RunOutcome,
)
from dossierforge.storage.base_output_writer import BaseOutputWriter
from dossierforge.storage.build_state_store import BuildStateStore
from dossierforge.storage.checkpoint_store import CheckpointStore
from dossierforge.storage.local_writer import LocalWriter

logger = logging.getLogger(__name__)


@dataclass
class Pipeline:
    """Explicitly constructed engine: shared resources plus the scheduler."""

    settings: Settings
    cache: BaseCacheStore | None
    gate: TokenBudgetGate
    executor: StepExecutor
    scheduler: PipelineScheduler
    checkpoints: CheckpointStore
    analyzer: IncrementalRebuildAnalyzer

    def run_options(
        self, options: PipelineOptions, progress: ProgressCallback | None = None
    ) -> RunOptions:
        return RunOptions(
            parallel_limit=options.parallel_limit or self.settings.pipeline_parallel_limit,
            timeout_s=options.timeout_s or self.settings.pipeline_timeout_s,
            skip_cache=options.skip_cache,
            run_id=options.run_id,
            progress=progress,
        )

    async def sweep(self) -> int:
        """Apply job-record retention to the cache store."""
        if self.cache is None:
            return 0
        return await self.cache.sweep_jobs(
            timedelta(hours=self.settings.job_retention_hours)
        )

    def close(self) -> None:
        if self.cache is not None:
            self.cache.close()


def build_pipeline(
    settings: Settings | None = None,
    cache_store: BaseCacheStore | None = None,
    gate: TokenBudgetGate | None = None,
    clients: ClientProvider | None = None,
    writer: BaseOutputWriter | None = None,
    sleep: SleepFn = asyncio.sleep,
) -> Pipeline:
    """Wire the engine from settings, accepting injected collaborators.

    Args:
        settings: Global settings. Loaded from .env if None.
        cache_store: Cache backend. Created from settings if None.
        gate: Token budget gate. Created from settings if None.
        clients: LLM client provider. A ClientPool if None.
        writer: Output writer for dossiers and artifact logs.
        sleep: Backoff sleep function (tests pass a no-op).
    """
    settings = settings or Settings()
    if cache_store is None and settings.cache_enabled:
        cache_store = create_cache_store(settings)
    gate = gate or TokenBudgetGate(
        window_s=settings.rate_gate_window_s,
        safety_buffer_s=settings.rate_gate_safety_buffer_s,
        max_attempts=settings.rate_gate_max_attempts,
        sleep=sleep,
    )
    assignments = resolve_all(STEP_DEFINITIONS, settings)
    for step_id, assignment in assignments.items():
        logger.debug(
            "Step %s -> %s (%s, %d tokens/window)",
            step_id, assignment.key, assignment.source, assignment.token_limit,
        )

    executor = StepExecutor(
        settings=settings,
        cache=cache_store,
        gate=gate,
        clients=clients or ClientPool(settings),
        assignments=assignments,
        sleep=sleep,
    )
    checkpoints = CheckpointStore(settings.cache_root)
    analyzer = IncrementalRebuildAnalyzer(store=BuildStateStore(settings.cache_root))
    scheduler = PipelineScheduler(
        executor=executor,
        checkpoints=checkpoints,
        analyzer=analyzer,
        writer=writer or LocalWriter(settings.output_path),
        settings=settings,
    )
    return Pipeline(
        settings=settings,
        cache=executor.cache,
        gate=gate,
        executor=executor,
        scheduler=scheduler,
        checkpoints=checkpoints,
        analyzer=analyzer,
    )


async def execute_pipeline(
    pipeline_input: PipelineInput,
    options: PipelineOptions | None = None,
    settings: Settings | None = None,
    pipeline: Pipeline | None = None,
    progress: ProgressCallback | None = None,
) -> PipelineResult:
    """Generate a dossier, or continue a checkpointed run.

    With options.resume_from_checkpoint set, the run options.run_id
    continues from its checkpoint instead of starting over (PipelineOptions
    rejects resume_from_checkpoint without a run_id).

    Raises:
        CheckpointNotFoundError: resume requested but no checkpoint exists.
    """
    options = options or PipelineOptions()
    pipeline = pipeline or build_pipeline(settings)
    run_options = pipeline.run_options(options, progress)
    run_input = pipeline_input.to_run_input()

    if options.resume_from_checkpoint:
        outcome = await pipeline.scheduler.resume(options.run_id, run_options, run_input)
    else:
        outcome = await pipeline.scheduler.execute(run_input, run_options)
    return _to_result(outcome)


async def resume(
    run_id: str,
    pipeline_input: PipelineInput | None = None,
    options: PipelineOptions | None = None,
    settings: Settings | None = None,
    pipeline: Pipeline | None = None,
    progress: ProgressCallback | None = None,
) -> PipelineResult:
    """Continue the checkpointed run run_id.

    Raises:
        CheckpointNotFoundError: no checkpoint exists for run_id.
    """
    options = options or PipelineOptions()
    pipeline = pipeline or build_pipeline(settings)
    run_options = pipeline.run_options(options, progress)
    run_input = pipeline_input.to_run_input() if pipeline_input is not None else None
    outcome = await pipeline.scheduler.resume(run_id, run_options, run_input)
    return _to_result(outcome)


async def plan(
    pipeline_input: PipelineInput,
    skip_cache: bool = False,
    settings: Settings | None = None,
    pipeline: Pipeline | None = None,
) -> RebuildPlan:
    """Rebuild plan the next run would follow, without running it."""
    pipeline = pipeline or build_pipeline(settings)
    return await pipeline.scheduler.plan(pipeline_input.to_run_input(), skip_cache)


def _to_result(outcome: RunOutcome) -> PipelineResult:
    return PipelineResult(
        success=outcome.success,
        run_id=outcome.run_id,
        data=outcome.dossier,
        error=outcome.error,
        error_type=outcome.error_type,
        failed_step=outcome.failed_step,
        resumable=outcome.resumable,
        state=outcome.state,
        plan=outcome.plan,
        stats=outcome.stats,
    )
