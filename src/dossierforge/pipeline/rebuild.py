# src/dossierforge/pipeline/rebuild.py - v1
"""Incremental rebuild analyzer.

Compares the current input digest with the last successful BuildState
and partitions the step graph into steps to re-run and steps to skip.
Dirtiness propagates through the static REBUILD_DEPENDENTS table with a
single lookup per changed root; the DAG is never re-derived here.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from dossierforge.cache.fingerprint import content_hash
from dossierforge.config.steps import (
    CHANGE_ROOTS,
    DEFAULT_DURATION_ESTIMATE_MS,
    INCREMENTAL_STRATEGIES,
    REBUILD_DEPENDENTS,
    SECTION_NAMES,
    STEP_DURATION_ESTIMATES_MS,
    STEP_IDS,
    ChangeRoot,
)
from dossierforge.core.models import RebuildPlan
from dossierforge.storage.build_state_store import BuildStateStore
from dossierforge.storage.models import BuildRecord, BuildState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InputDigest:
    """Content hashes of the run's change-tracked inputs.

    sources_hash is None when the caller did not supply sources; the
    sources component is then treated as unchanged. environment_hash
    covers everything besides the inputs that feeds a step cache key
    (dry-run flag, prompt tags, model routing).
    """

    pitch_hash: str
    sources_hash: str | None = None
    environment_hash: str = ""


def normalize_sources(sources: Any) -> dict[str, Any] | None:
    """Caller-supplied evidence in the shape the evidence step produces."""
    if sources is None:
        return None
    if isinstance(sources, list):
        return {"sources": sources}
    if isinstance(sources, dict):
        return sources
    raise TypeError(f"sources must be a list or mapping, got {type(sources).__name__}")


def compute_digest(
    pitch_text: str, sources: Any = None, environment_hash: str = ""
) -> InputDigest:
    normalized = normalize_sources(sources)
    return InputDigest(
        pitch_hash=content_hash(pitch_text or ""),
        sources_hash=None if normalized is None else content_hash(normalized),
        environment_hash=environment_hash,
    )


class IncrementalRebuildAnalyzer:
    """Compute RebuildPlans and persist BuildState after successful runs.

    Args:
        store: Build state persistence; optional for pure analysis.
        step_ids: All steps of the graph, in declaration order.
        rebuild_dependents: Static table of the steps each root invalidates.
        change_roots: Input component -> root step it dirties.
        duration_estimates: Per-step estimates for reporting only.
    """

    def __init__(
        self,
        store: BuildStateStore | None = None,
        step_ids: Iterable[str] = STEP_IDS,
        rebuild_dependents: Mapping[str, Iterable[str]] = REBUILD_DEPENDENTS,
        change_roots: Mapping[str, ChangeRoot] = CHANGE_ROOTS,
        duration_estimates: Mapping[str, int] = STEP_DURATION_ESTIMATES_MS,
    ) -> None:
        self._store = store
        self._step_ids = tuple(step_ids)
        self._dependents = {k: tuple(v) for k, v in rebuild_dependents.items()}
        self._change_roots = dict(change_roots)
        self._durations = dict(duration_estimates)

    # --- Analysis ---

    def analyze(
        self,
        digest: InputDigest,
        previous: BuildState | None,
        skip_cache: bool = False,
    ) -> RebuildPlan:
        all_steps = frozenset(self._step_ids)

        if skip_cache:
            return self._full_plan("Cache skipped: full rebuild requested")
        if previous is None:
            return self._full_plan("Initial build: no previous build state found")
        if digest.environment_hash != previous.environment_hash:
            # Previous reuse keys are only valid under the same flags.
            return self._full_plan(
                "Environment changed: dry-run mode, prompt tags or model routing "
                "differ from the previous build"
            )

        changed: list[str] = []
        if digest.pitch_hash != previous.pitch_hash:
            changed.append("pitch")
        if digest.sources_hash is not None and digest.sources_hash != previous.sources_hash:
            changed.append("sources")

        to_rebuild: set[str] = set()
        for component in changed:
            to_rebuild |= self.closure(component)

        to_skip = all_steps - to_rebuild
        if changed:
            affected = ", ".join(s for s in self._step_ids if s in to_rebuild)
            reason = f"Changed: {', '.join(changed)} -> affects: {affected}"
        else:
            reason = "No changes detected: full cache hit possible"

        plan = RebuildPlan(
            to_rebuild=frozenset(to_rebuild),
            to_skip=frozenset(to_skip),
            reason=reason,
            estimated_duration_ms=self.estimate(to_rebuild),
            changed_components=tuple(changed),
            reuse_keys={
                sid: previous.step_output_keys[sid]
                for sid in to_skip
                if sid in previous.step_output_keys
            },
        )
        logger.info(
            "Rebuild plan: %d to rebuild, %d to skip (%s)",
            len(plan.to_rebuild), len(plan.to_skip), plan.reason,
        )
        return plan

    def closure(self, component: str) -> set[str]:
        """Steps dirtied by a change to one input component."""
        root = self._change_roots.get(component)
        if root is None:
            raise KeyError(f"Unknown input component '{component}'")
        return self._closure_of_step(root.step, include_root=root.rerun_root)

    def _closure_of_step(self, step_id: str, include_root: bool = True) -> set[str]:
        dirty = set(self._dependents.get(step_id, ()))
        if include_root:
            dirty.add(step_id)
        return dirty

    def _full_plan(self, reason: str) -> RebuildPlan:
        everything = frozenset(self._step_ids)
        logger.info("Rebuild plan: full rebuild of %d steps (%s)", len(everything), reason)
        return RebuildPlan(
            to_rebuild=everything,
            to_skip=frozenset(),
            reason=reason,
            estimated_duration_ms=self.estimate(everything),
        )

    def estimate(self, step_ids: Iterable[str]) -> int:
        """Operator-facing duration estimate in ms."""
        return sum(self._durations.get(s, DEFAULT_DURATION_ESTIMATE_MS) for s in step_ids)

    def strategies(self) -> dict[str, frozenset[str]]:
        """Named single-component edits and the steps each re-runs."""
        result: dict[str, frozenset[str]] = {}
        for name, root_step in INCREMENTAL_STRATEGIES.items():
            include_root = all(
                cr.rerun_root for cr in self._change_roots.values() if cr.step == root_step
            )
            result[name] = frozenset(self._closure_of_step(root_step, include_root))
        return result

    # --- Persistence ---

    async def load_previous(self) -> BuildState | None:
        if self._store is None:
            return None
        return await self._store.load()

    def build_state_for(
        self,
        digest: InputDigest,
        artifacts: Mapping[str, Any],
        step_output_keys: Mapping[str, str],
        plan: RebuildPlan,
        previous: BuildState | None = None,
        run_id: str | None = None,
    ) -> BuildState:
        """Derive the BuildState recording a finished run."""
        sections = artifacts.get("sections") or {}
        state = BuildState(
            pitch_hash=digest.pitch_hash,
            environment_hash=digest.environment_hash,
            sources_hash=content_hash(artifacts.get("sources")),
            brief_hash=content_hash(artifacts.get("brief")),
            section_hashes={name: content_hash(sections.get(name)) for name in SECTION_NAMES},
            validation_hash=content_hash(artifacts.get("validation")),
            score_hash=content_hash(artifacts.get("investor_score")),
            dossier_hash=content_hash(artifacts.get("dossier")),
            step_output_keys=dict(step_output_keys),
            history=list(previous.history) if previous is not None else [],
        )
        record = BuildRecord(
            run_id=run_id,
            changed_components=list(plan.changed_components),
            affected_steps=[s for s in self._step_ids if s in plan.to_rebuild],
            reason=plan.reason,
        )
        return state.with_record(record)

    async def save_current_state(
        self,
        digest: InputDigest,
        artifacts: Mapping[str, Any],
        step_output_keys: Mapping[str, str],
        plan: RebuildPlan,
        previous: BuildState | None = None,
        run_id: str | None = None,
    ) -> BuildState:
        state = self.build_state_for(
            digest, artifacts, step_output_keys, plan, previous, run_id
        )
        if self._store is not None:
            await self._store.save(state)
            logger.info(
                "Saved build state with %d rebuilt steps", len(plan.to_rebuild)
            )
        return state
