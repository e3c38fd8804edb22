# tests/unit/pipeline/test_dag_builder.py - v1
"""Tests for pipeline/dag_builder.py - staging and static graph checks."""

from __future__ import annotations

import pytest

from dossierforge.config.settings import ConfigurationError
from dossierforge.core.models import StepDefinition
from dossierforge.pipeline.dag_builder import (
    DAGError,
    build_dag,
    descendants,
    validate_inputs,
    validate_rebuild_table,
    validate_step_graph,
)


class TestBuildDAG:
    def test_empty_map(self):
        plan = build_dag({})
        assert plan.total_steps == 0
        assert plan.flat_order == []

    def test_linear_chain(self):
        plan = build_dag({"a": [], "b": ["a"], "c": ["b"]})
        assert plan.flat_order == ["a", "b", "c"]
        assert len(plan.stages) == 3

    def test_diamond_dependency(self):
        plan = build_dag({"a": [], "b": ["a"], "c": ["a"], "d": ["b", "c"]})
        assert plan.stages == [["a"], ["b", "c"], ["d"]]
        assert plan.total_steps == 4

    def test_cycle_raises(self):
        with pytest.raises(DAGError, match="Cycle"):
            build_dag({"a": ["b"], "b": ["a"]})

    def test_self_loop_raises(self):
        with pytest.raises(DAGError, match="Cycle"):
            build_dag({"a": ["a"]})

    def test_missing_dependency_raises(self):
        with pytest.raises(DAGError, match="not defined"):
            build_dag({"a": ["ghost"]})

    def test_dag_error_is_configuration_error(self):
        assert issubclass(DAGError, ConfigurationError)


class TestDescendants:
    def test_transitive(self):
        dep_map = {"a": [], "b": ["a"], "c": ["b"], "d": []}
        assert descendants(dep_map, "a") == {"b", "c"}
        assert descendants(dep_map, "d") == set()


class TestValidateRebuildTable:
    def test_accepts_subset_of_descendants(self):
        validate_rebuild_table({"a": [], "b": ["a"], "c": ["b"]}, {"a": ["c"]})

    def test_rejects_non_descendant(self):
        with pytest.raises(DAGError, match="not downstream"):
            validate_rebuild_table({"a": [], "b": []}, {"a": ["b"]})

    def test_rejects_unknown_root(self):
        with pytest.raises(DAGError, match="unknown step"):
            validate_rebuild_table({"a": []}, {"zzz": []})


class TestValidateInputs:
    def test_input_from_non_ancestor_rejected(self):
        steps = [
            StepDefinition(id="a", name="A", inputs=("project_title",), outputs=("x",)),
            StepDefinition(id="b", name="B", inputs=("project_title",), outputs=("y",)),
            StepDefinition(id="c", name="C", dependencies=("a",), inputs=("y",), outputs=("z",)),
        ]
        with pytest.raises(DAGError, match="reads 'y'"):
            validate_inputs(steps)

    def test_dotted_outputs_satisfy_whole_mapping(self):
        steps = [
            StepDefinition(id="a", name="A", outputs=("sections.a",)),
            StepDefinition(id="b", name="B", dependencies=("a",), inputs=("sections",)),
        ]
        validate_inputs(steps)

    def test_validate_step_graph_returns_plan(self):
        steps = [
            StepDefinition(id="a", name="A", inputs=("elevator_pitch",), outputs=("x",)),
            StepDefinition(id="b", name="B", dependencies=("a",), inputs=("x",)),
        ]
        assert validate_step_graph(steps).flat_order == ["a", "b"]
