# tests/unit/config/test_steps.py - v1
"""Tests for config/steps.py - the static step graph and its tables."""

from __future__ import annotations

import pytest

from dossierforge.config.steps import (
    CHANGE_ROOTS,
    REBUILD_DEPENDENTS,
    STEP_DEFINITIONS,
    STEP_DURATION_ESTIMATES_MS,
    STEP_IDS,
    dependency_map,
    get_step,
)
from dossierforge.pipeline.dag_builder import descendants, validate_step_graph


class TestStepGraph:
    def test_fifteen_steps(self):
        assert len(STEP_DEFINITIONS) == 15
        assert len(set(STEP_IDS)) == 15

    def test_graph_validates(self):
        plan = validate_step_graph(STEP_DEFINITIONS, REBUILD_DEPENDENTS)
        assert plan.stages[0] == ["input"]
        assert plan.flat_order[-1] == "assemble"

    def test_critical_and_tolerant_steps(self):
        critical = {s.id for s in STEP_DEFINITIONS if s.critical}
        tolerant = {s.id for s in STEP_DEFINITIONS if s.tolerant}
        assert critical == {"evidence", "brief", "market", "business_model", "investor_score"}
        assert tolerant == {"team", "competition", "status_quo"}

    def test_pure_steps_have_no_model(self):
        for step_id in ("input", "validate", "assemble"):
            step = get_step(step_id)
            assert not step.external
            assert step.model_preference is None

    def test_get_step_unknown(self):
        with pytest.raises(KeyError):
            get_step("nope")


class TestRebuildTables:
    def test_every_step_has_entry(self):
        assert set(REBUILD_DEPENDENTS) == set(STEP_IDS)

    def test_input_dependents_match_graph(self):
        assert set(REBUILD_DEPENDENTS["input"]) == descendants(dependency_map(), "input")

    def test_evidence_lists_eight_steps(self):
        assert len(REBUILD_DEPENDENTS["evidence"]) == 8
        assert "team" not in REBUILD_DEPENDENTS["evidence"]

    def test_transitively_closed_except_evidence(self):
        for root, listed in REBUILD_DEPENDENTS.items():
            if root == "evidence":
                continue
            for dependent in listed:
                assert set(REBUILD_DEPENDENTS[dependent]) <= set(listed), (root, dependent)

    def test_change_roots(self):
        assert CHANGE_ROOTS["pitch"].step == "input"
        assert CHANGE_ROOTS["pitch"].rerun_root
        assert CHANGE_ROOTS["sources"].step == "evidence"
        assert not CHANGE_ROOTS["sources"].rerun_root

    def test_duration_estimates_cover_graph(self):
        assert set(STEP_DURATION_ESTIMATES_MS) == set(STEP_IDS)
