# src/dossierforge/config/steps.py - v1
"""Declarative step graph and the static tables derived from it.

The graph is fixed at import time. Rebuild tables are hand-maintained
and list every step a root invalidates, so the rebuild analyzer needs a
single lookup per changed root.
"""

from __future__ import annotations

from dataclasses import dataclass

from dossierforge.core.models import StepDefinition

SECTION_NAMES: tuple[str, ...] = (
    "problem",
    "solution",
    "team",
    "market",
    "business_model",
    "competition",
    "status_quo",
    "gtm",
    "financial_plan",
)


def _section(
    step_id: str,
    name: str,
    dependencies: tuple[str, ...],
    inputs: tuple[str, ...],
    model: str,
    *,
    critical: bool = False,
    tolerant: bool = False,
) -> StepDefinition:
    return StepDefinition(
        id=step_id,
        name=name,
        dependencies=dependencies,
        inputs=inputs,
        outputs=(f"sections.{step_id}",),
        external=True,
        model_preference=model,
        critical=critical,
        tolerant=tolerant,
    )


STEP_DEFINITIONS: tuple[StepDefinition, ...] = (
    StepDefinition(
        id="input",
        name="Input Processing",
        inputs=("project_title", "elevator_pitch", "input_options"),
        outputs=("pitch",),
    ),
    StepDefinition(
        id="evidence",
        name="Evidence Harvester",
        dependencies=("input",),
        inputs=("pitch",),
        outputs=("sources",),
        external=True,
        model_preference="gpt-4o",
        critical=True,
    ),
    StepDefinition(
        id="brief",
        name="Brief Extraction",
        dependencies=("input", "evidence"),
        inputs=("pitch", "sources"),
        outputs=("brief",),
        external=True,
        model_preference="claude-3-5-sonnet-latest",
        critical=True,
    ),
    _section("problem", "Problem Section", ("brief", "evidence"),
             ("brief", "sources"), "claude-3-5-sonnet-latest"),
    _section("solution", "Solution Section", ("brief", "evidence"),
             ("brief", "sources"), "claude-3-5-sonnet-latest"),
    _section("team", "Team Section", ("brief",), ("brief",),
             "claude-3-5-sonnet-latest", tolerant=True),
    _section("market", "Market Section", ("brief", "evidence"),
             ("pitch", "brief", "sources"), "gpt-4o", critical=True),
    _section("business_model", "Business Model Section",
             ("brief", "evidence", "market"),
             ("brief", "sources", "sections.market"), "gpt-4o", critical=True),
    _section("competition", "Competition Section", ("brief", "evidence"),
             ("brief", "sources"), "gpt-4o", tolerant=True),
    _section("status_quo", "Status Quo Section", ("brief",), ("brief",),
             "claude-3-5-sonnet-latest", tolerant=True),
    _section("gtm", "Go-To-Market Section", ("brief", "market", "business_model"),
             ("brief", "sections.market", "sections.business_model"), "gpt-4o"),
    _section("financial_plan", "Financial Plan Section",
             ("market", "business_model", "gtm"),
             ("sections.market", "sections.business_model", "sections.gtm"),
             "gpt-4o"),
    StepDefinition(
        id="validate",
        name="Number Validation",
        dependencies=("business_model", "financial_plan"),
        inputs=("sections.market", "sections.business_model", "sections.financial_plan"),
        outputs=("validation",),
    ),
    StepDefinition(
        id="investor_score",
        name="Investor Scoring",
        dependencies=SECTION_NAMES + ("validate",),
        inputs=("sections", "brief", "validation"),
        outputs=("investor_score",),
        external=True,
        model_preference="gpt-4o",
        critical=True,
    ),
    StepDefinition(
        id="assemble",
        name="Final Assembly",
        dependencies=("investor_score", "validate"),
        inputs=("pitch", "sources", "brief", "sections", "investor_score", "validation"),
        outputs=("dossier",),
    ),
)

STEP_IDS: tuple[str, ...] = tuple(step.id for step in STEP_DEFINITIONS)

# Everything a step's re-run invalidates downstream, closed under
# transitivity except for "evidence", which lists only the number-heavy
# consumers of harvested sources.
REBUILD_DEPENDENTS: dict[str, tuple[str, ...]] = {
    "input": STEP_IDS[1:],
    "evidence": (
        "brief",
        "market",
        "business_model",
        "gtm",
        "financial_plan",
        "validate",
        "investor_score",
        "assemble",
    ),
    "brief": SECTION_NAMES + ("validate", "investor_score", "assemble"),
    "market": (
        "business_model",
        "gtm",
        "financial_plan",
        "validate",
        "investor_score",
        "assemble",
    ),
    "business_model": ("gtm", "financial_plan", "validate", "investor_score", "assemble"),
    "gtm": ("financial_plan", "validate", "investor_score", "assemble"),
    "financial_plan": ("validate", "investor_score", "assemble"),
    "problem": ("investor_score", "assemble"),
    "solution": ("investor_score", "assemble"),
    "team": ("investor_score", "assemble"),
    "competition": ("investor_score", "assemble"),
    "status_quo": ("investor_score", "assemble"),
    "validate": ("investor_score", "assemble"),
    "investor_score": ("assemble",),
    "assemble": (),
}


@dataclass(frozen=True)
class ChangeRoot:
    """Where a changed input component enters the step graph.

    rerun_root is False when the changed content is the root step's own
    output (it was supplied from outside), so only its dependents re-run.
    """

    step: str
    rerun_root: bool = True


CHANGE_ROOTS: dict[str, ChangeRoot] = {
    "pitch": ChangeRoot(step="input"),
    "sources": ChangeRoot(step="evidence", rerun_root=False),
}

# Operator-facing estimates only, never used for scheduling decisions.
STEP_DURATION_ESTIMATES_MS: dict[str, int] = {
    "input": 100,
    "evidence": 30_000,
    "brief": 8_000,
    "problem": 10_000,
    "solution": 10_000,
    "team": 8_000,
    "market": 12_000,
    "business_model": 15_000,
    "competition": 10_000,
    "status_quo": 8_000,
    "gtm": 12_000,
    "financial_plan": 18_000,
    "validate": 2_000,
    "investor_score": 12_000,
    "assemble": 1_000,
}
DEFAULT_DURATION_ESTIMATE_MS = 5_000

# Named single-component edits and the steps each one re-runs.
INCREMENTAL_STRATEGIES: dict[str, str] = {
    "pitch_only_change": "input",
    "sources_only_change": "evidence",
    "market_params_change": "market",
    "business_model_change": "business_model",
    "gtm_budget_change": "gtm",
    "team_only_change": "team",
    "competition_only_change": "competition",
}


def get_step(step_id: str) -> StepDefinition:
    for step in STEP_DEFINITIONS:
        if step.id == step_id:
            return step
    raise KeyError(step_id)


def dependency_map(
    steps: tuple[StepDefinition, ...] = STEP_DEFINITIONS,
) -> dict[str, list[str]]:
    """Return step_id -> list of dependency ids."""
    return {step.id: list(step.dependencies) for step in steps}
