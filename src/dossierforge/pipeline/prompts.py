# src/dossierforge/pipeline/prompts.py - v1
"""Prompt templates for external steps and response parsing.

Templates are versioned by content: prompt_tag() folds a short digest of
the template into the configured prompt version, so editing a template
invalidates that step's cache entries without a manual version bump.
"""

from __future__ import annotations

import hashlib
import json
import string
from typing import Any

from dossierforge.core.models import StepDefinition

SYSTEM_PROMPT = (
    "You are an analyst preparing an investor dossier for an early-stage venture. "
    "Be concrete and conservative. Label every number you cannot source as an "
    "assumption. Answer with a single JSON object and nothing else."
)

_SECTION_SCHEMA = (
    'Return JSON: {{"headline": str, "bullets": [str], "narrative": str, '
    '"data": object, "assumptions": [str], "open_questions": [str], '
    '"sources": [str]}}.'
)

_TEMPLATES: dict[str, str] = {
    "evidence": (
        "Collect public evidence for the venture '{project_title}' ({geo}). "
        "List market studies, statistics, competitor facts and regulatory notes "
        "with source, year and the figure it supports.\n"
        'Return JSON: {{"sources": [{{"title": str, "publisher": str, "year": int, '
        '"url": str, "claim": str, "figure": str}}]}}.'
    ),
    "brief": (
        "Extract a structured brief for '{project_title}' in {language} for "
        "{target_audience}: problem, solution, customer segments, business model "
        "hypothesis, traction and open questions.\n"
        'Return JSON: {{"problem": str, "solution": str, "segments": [str], '
        '"business_model": str, "traction": [str], "open_questions": [str]}}.'
    ),
    "problem": "Write the Problem section: who hurts, how often, what it costs today.\n" + _SECTION_SCHEMA,
    "solution": "Write the Solution section: product, core workflow, differentiation.\n" + _SECTION_SCHEMA,
    "team": "Write the Team section: founders, key hires, gaps. Put org_chart in data.\n" + _SECTION_SCHEMA,
    "market": (
        "Write the Market section with TAM, SAM and SOM in EUR for {geo}. "
        "Put tam_eur, sam_eur, som_eur and the derivation in data.\n" + _SECTION_SCHEMA
    ),
    "business_model": (
        "Write the Business Model section. Put arpu, gross_margin, churn_monthly, "
        "CAC, CLV, contribution_per_month and payback_months in data.\n" + _SECTION_SCHEMA
    ),
    "competition": "Write the Competition section: direct, indirect, positioning matrix.\n" + _SECTION_SCHEMA,
    "status_quo": "Write the Status Quo section: how customers solve the problem today.\n" + _SECTION_SCHEMA,
    "gtm": (
        "Write the Go-To-Market section. Put channels (name, budget_eur_month) and "
        "kpis (CAC, Subscribers) in data.\n" + _SECTION_SCHEMA
    ),
    "financial_plan": (
        "Write the Financial Plan section. Put a yearly forecast (revenue, ebitda) "
        "and break_even_month in data.\n" + _SECTION_SCHEMA
    ),
    "investor_score": (
        "Score the dossier as a seed investor would, 0-10 per dimension "
        "(team, market, product, traction, economics), taking the validation "
        "findings into account.\n"
        'Return JSON: {{"total": float, "dimensions": {{str: float}}, '
        '"strengths": [str], "risks": [str], "verdict": str}}.'
    ),
}


def has_template(step_id: str) -> bool:
    return step_id in _TEMPLATES


def template_fields(step_id: str) -> set[str]:
    """Pitch fields a step's template interpolates."""
    template = _TEMPLATES.get(step_id, "")
    return {name for _, name, _, _ in string.Formatter().parse(template) if name}


def prompt_tag(step_id: str, prompt_version: str) -> str:
    """Version tag used in cache keys: configured version + template digest."""
    template = _TEMPLATES.get(step_id, "")
    digest = hashlib.sha256(template.encode("utf-8")).hexdigest()[:8]
    return f"{prompt_version}:{digest}"


def render_prompt(step: StepDefinition, inputs: dict[str, Any]) -> str:
    """Fill the step template and append the input artifacts as JSON."""
    try:
        template = _TEMPLATES[step.id]
    except KeyError:
        raise KeyError(f"No prompt template for step '{step.id}'") from None

    if template_fields(step.id) and "pitch" not in step.inputs:
        raise KeyError(f"Step '{step.id}' template reads pitch fields but 'pitch' is not an input")

    pitch = inputs.get("pitch") or {}
    header = template.format(
        project_title=pitch.get("project_title", ""),
        language=pitch.get("language", "de"),
        geo=pitch.get("geo", "EU/DE"),
        target_audience=pitch.get("target_audience", ""),
    )
    parts = [f"# {step.name}", header]
    for address in step.inputs:
        if address in inputs:
            body = json.dumps(inputs[address], indent=2, ensure_ascii=False, default=str)
            parts.append(f"## {address.upper()}\n{body}")
    parts.append("Return ONLY valid JSON. No additional text or explanations.")
    return "\n\n".join(parts)


def parse_json_response(content: str) -> Any:
    """Parse a JSON response, tolerating markdown code fences.

    Raises:
        ValueError: the content is not JSON.
    """
    text = content.strip()
    if text.startswith("```"):
        lines = [line for line in text.split("\n") if not line.strip().startswith("```")]
        text = "\n".join(lines)
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError(f"Response is not valid JSON: {e}") from e
