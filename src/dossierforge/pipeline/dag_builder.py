# src/dossierforge/pipeline/dag_builder.py - v1
"""DAG builder: validate the step graph and stage it for reporting.

Produces a topologically staged execution plan, detects cycles and
missing dependencies, and checks the static rebuild table and declared
inputs against real graph reachability.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Mapping

import networkx as nx

from dossierforge.config.settings import ConfigurationError
from dossierforge.core.models import StepDefinition

logger = logging.getLogger(__name__)

# Artifacts seeded from the pipeline input rather than produced by a step.
SEED_ARTIFACTS = frozenset({"project_title", "elevator_pitch", "input_options"})


class DAGError(ConfigurationError):
    """Raised when DAG construction fails (cycle, missing dep)."""


@dataclass
class ExecutionPlan:
    """Ordered execution plan for pipeline steps.

    stages is a list of "levels": steps within the same level have no
    mutual dependencies. Levels execute sequentially.
    """

    stages: list[list[str]] = field(default_factory=list)
    total_steps: int = 0

    @property
    def flat_order(self) -> list[str]:
        """Return a flat topological ordering (no concurrency info)."""
        return [step for stage in self.stages for step in stage]


def build_dag(dependency_map: Mapping[str, list[str]]) -> ExecutionPlan:
    """Build a staged plan from step dependency declarations.

    Uses Kahn's algorithm with level detection. Each level contains
    steps whose dependencies are fully resolved by previous levels.

    Raises:
        DAGError: If a cycle is detected or a dependency is missing.
    """
    if not dependency_map:
        return ExecutionPlan()

    all_steps = set(dependency_map.keys())
    for step, deps in dependency_map.items():
        for dep in deps:
            if dep not in all_steps:
                raise DAGError(
                    f"Step '{step}' depends on '{dep}' which is not defined"
                )

    in_degree: dict[str, int] = {s: 0 for s in all_steps}
    dependents: dict[str, list[str]] = {s: [] for s in all_steps}
    for step, deps in dependency_map.items():
        for dep in deps:
            dependents[dep].append(step)
            in_degree[step] += 1

    stages: list[list[str]] = []
    queue: list[str] = sorted(s for s, d in in_degree.items() if d == 0)
    processed = 0

    while queue:
        stages.append(queue)
        next_queue: list[str] = []
        for step in queue:
            processed += 1
            for dependent in dependents[step]:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    next_queue.append(dependent)
        queue = sorted(next_queue)

    if processed != len(all_steps):
        remaining = sorted(s for s in all_steps if in_degree[s] > 0)
        raise DAGError(f"Cycle detected involving steps: {remaining}")

    plan = ExecutionPlan(stages=stages, total_steps=processed)
    logger.debug(
        "DAG built: %d steps in %d stages -> %s",
        plan.total_steps, len(plan.stages), plan.flat_order,
    )
    return plan


def to_digraph(dependency_map: Mapping[str, list[str]]) -> nx.DiGraph:
    """Directed graph with an edge dependency -> dependent."""
    graph = nx.DiGraph()
    graph.add_nodes_from(dependency_map)
    for step, deps in dependency_map.items():
        graph.add_edges_from((dep, step) for dep in deps)
    return graph


def descendants(dependency_map: Mapping[str, list[str]], step_id: str) -> set[str]:
    """Every step transitively downstream of step_id."""
    return set(nx.descendants(to_digraph(dependency_map), step_id))


def validate_rebuild_table(
    dependency_map: Mapping[str, list[str]],
    rebuild_dependents: Mapping[str, Iterable[str]],
) -> None:
    """Every listed dependent must really be downstream of its root."""
    graph = to_digraph(dependency_map)
    for root, listed in rebuild_dependents.items():
        if root not in graph:
            raise DAGError(f"Rebuild table names unknown step '{root}'")
        reachable = nx.descendants(graph, root)
        stray = sorted(set(listed) - reachable)
        if stray:
            raise DAGError(
                f"Rebuild table lists {stray} under '{root}' but they are not downstream of it"
            )


def validate_inputs(steps: Iterable[StepDefinition]) -> None:
    """Every declared input must be seeded or produced by an upstream step."""
    steps = list(steps)
    graph = to_digraph({s.id: list(s.dependencies) for s in steps})
    by_id = {s.id: s for s in steps}
    for step in steps:
        upstream_outputs: set[str] = set()
        for ancestor in nx.ancestors(graph, step.id):
            for out in by_id[ancestor].outputs:
                upstream_outputs.add(out)
                upstream_outputs.add(out.split(".", 1)[0])
        for address in step.inputs:
            if address in SEED_ARTIFACTS or address in upstream_outputs:
                continue
            raise DAGError(
                f"Step '{step.id}' reads '{address}' which no upstream step produces"
            )


def validate_step_graph(
    steps: Iterable[StepDefinition],
    rebuild_dependents: Mapping[str, Iterable[str]] | None = None,
) -> ExecutionPlan:
    """Run every static check and return the staged plan."""
    steps = list(steps)
    dependency_map = {s.id: list(s.dependencies) for s in steps}
    plan = build_dag(dependency_map)
    validate_inputs(steps)
    if rebuild_dependents is not None:
        validate_rebuild_table(dependency_map, rebuild_dependents)
    return plan
