# src/dossierforge/main.py - v1
"""CLI entry point: run, resume, plan and cache maintenance commands.

Usage:
    dossierforge run --title T --pitch-file F [options]
    dossierforge resume RUN_ID
    dossierforge plan --pitch-file F [--sources F]
    dossierforge cache clear [--prefix P]
    dossierforge cache sweep
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

from dossierforge.version import __version__

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    from dossierforge.config.settings import ConfigurationError, Settings
    from dossierforge.logging.logger import setup_logging

    try:
        settings = Settings()
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 1

    setup_logging(
        level="DEBUG" if args.verbose else settings.log_level,
        log_format=settings.log_format,
        log_file=settings.log_file,
        rotation=settings.log_rotation,
        retention=settings.log_retention,
    )

    try:
        return asyncio.run(args.func(args, settings))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except Exception as exc:
        logger.error("Fatal error: %s", exc, exc_info=args.verbose)
        return 1


def _build_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="dossierforge",
        description=f"dossierforge v{__version__} - incremental dossier pipeline",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command")

    # --- run ---
    p_run = subparsers.add_parser("run", help="Generate a dossier")
    p_run.add_argument("--title", required=True, help="Project title")
    p_run.add_argument(
        "--pitch-file", type=Path, required=True, help="Text file with the pitch",
    )
    p_run.add_argument(
        "--sources", type=Path, default=None,
        help="JSON file with pre-harvested evidence (skips the evidence step)",
    )
    p_run.add_argument("--language", default="de", help="Dossier language (default: de)")
    p_run.add_argument(
        "--parallel", type=int, default=None,
        help="Max concurrently running steps (default: from settings)",
    )
    p_run.add_argument(
        "--timeout", type=float, default=None,
        help="Run timeout in seconds (default: from settings)",
    )
    p_run.add_argument("--skip-cache", action="store_true", help="Ignore cached results")
    p_run.add_argument("--run-id", default=None, help="Explicit run ID")
    p_run.set_defaults(func=_cmd_run)

    # --- resume ---
    p_resume = subparsers.add_parser("resume", help="Continue a checkpointed run")
    p_resume.add_argument("run_id", help="Run ID to resume")
    p_resume.add_argument("--timeout", type=float, default=None)
    p_resume.set_defaults(func=_cmd_resume)

    # --- plan ---
    p_plan = subparsers.add_parser("plan", help="Print the rebuild plan only")
    p_plan.add_argument("--title", default="untitled", help="Project title")
    p_plan.add_argument("--pitch-file", type=Path, required=True)
    p_plan.add_argument("--sources", type=Path, default=None)
    p_plan.add_argument("--skip-cache", action="store_true")
    p_plan.set_defaults(func=_cmd_plan)

    # --- cache ---
    p_cache = subparsers.add_parser("cache", help="Cache maintenance")
    cache_sub = p_cache.add_subparsers(dest="cache_command")
    p_clear = cache_sub.add_parser("clear", help="Delete cached step results")
    p_clear.add_argument("--prefix", default="", help="Only keys starting with this")
    p_clear.set_defaults(func=_cmd_cache_clear)
    p_sweep = cache_sub.add_parser("sweep", help="Drop expired job records")
    p_sweep.set_defaults(func=_cmd_cache_sweep)

    return parser


async def _cmd_run(args: argparse.Namespace, settings: Any) -> int:
    """Execute a full (or incremental) pipeline run."""
    from dossierforge.api.facade import execute_pipeline
    from dossierforge.api.models import PipelineOptions

    pipeline_input = _load_input(args.title, args.pitch_file, args.sources, args.language)
    if pipeline_input is None:
        return 1
    options = PipelineOptions(
        skip_cache=args.skip_cache,
        parallel_limit=args.parallel,
        timeout_s=args.timeout,
        run_id=args.run_id,
    )
    result = await execute_pipeline(pipeline_input, options, settings=settings)
    _print_result_summary(result)
    return 0 if result.success else 1


async def _cmd_resume(args: argparse.Namespace, settings: Any) -> int:
    """Continue a run from its checkpoint."""
    from dossierforge.api.facade import resume
    from dossierforge.api.models import PipelineOptions
    from dossierforge.pipeline.errors import CheckpointNotFoundError

    try:
        result = await resume(
            args.run_id, options=PipelineOptions(timeout_s=args.timeout), settings=settings,
        )
    except CheckpointNotFoundError as exc:
        logger.error("%s", exc)
        return 1
    _print_result_summary(result)
    return 0 if result.success else 1


async def _cmd_plan(args: argparse.Namespace, settings: Any) -> int:
    """Print which steps the next run would execute."""
    from dossierforge.api.facade import plan

    pipeline_input = _load_input(args.title, args.pitch_file, args.sources, "de")
    if pipeline_input is None:
        return 1
    rebuild = await plan(pipeline_input, skip_cache=args.skip_cache, settings=settings)
    print(f"\n{rebuild.reason}")
    print(f"  Rebuild ({len(rebuild.to_rebuild)}): {', '.join(sorted(rebuild.to_rebuild))}")
    print(f"  Skip    ({len(rebuild.to_skip)}): {', '.join(sorted(rebuild.to_skip))}")
    print(f"  Estimated: {rebuild.estimated_duration_ms / 1000:.1f}s")
    return 0


async def _cmd_cache_clear(args: argparse.Namespace, settings: Any) -> int:
    """Delete cached step results."""
    from dossierforge.cache.cache_factory import create_cache_store

    store = create_cache_store(settings)
    try:
        removed = await store.clear(args.prefix)
    finally:
        store.close()
    print(f"Removed {removed} cache entries")
    return 0


async def _cmd_cache_sweep(args: argparse.Namespace, settings: Any) -> int:
    """Apply job-record retention."""
    from datetime import timedelta

    from dossierforge.cache.cache_factory import create_cache_store

    store = create_cache_store(settings)
    try:
        removed = await store.sweep_jobs(timedelta(hours=settings.job_retention_hours))
    finally:
        store.close()
    print(f"Removed {removed} expired job records")
    return 0


def _load_input(
    title: str, pitch_file: Path, sources_file: Path | None, language: str
) -> Any:
    """Build a PipelineInput from files, or None after logging why not."""
    from dossierforge.api.models import PipelineInput

    if not pitch_file.exists():
        logger.error("Pitch file not found: %s", pitch_file)
        return None
    sources = None
    if sources_file is not None:
        try:
            sources = json.loads(sources_file.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.error("Cannot read sources from %s: %s", sources_file, exc)
            return None
    return PipelineInput(
        title=title,
        pitch_text=pitch_file.read_text(encoding="utf-8"),
        language=language,
        sources=sources,
    )


def _print_result_summary(result: Any) -> None:
    """Print a human-readable summary of a PipelineResult."""
    counts: dict[str, int] = {}
    for status in result.state.steps.values():
        counts[status.status] = counts.get(status.status, 0) + 1

    print(f"\nRun {'complete' if result.success else 'FAILED'}:")
    print(f"  Run ID:      {result.run_id}")
    print(f"  Steps:       {', '.join(f'{k}={v}' for k, v in sorted(counts.items()))}")
    print(f"  Cache hits:  {result.state.cache_hits}")
    print(f"  LLM calls:   {result.stats.total_calls}")
    print(f"  Duration:    {result.state.total_duration_ms / 1000:.1f}s")
    if not result.success:
        print(f"  Error:       {result.error_type}: {result.error}")
        if result.failed_step:
            print(f"  Failed step: {result.failed_step}")
        if result.resumable:
            print(f"  Resume with: dossierforge resume {result.run_id}")


if __name__ == "__main__":
    sys.exit(main())
