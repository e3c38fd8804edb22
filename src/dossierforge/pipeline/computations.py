# src/dossierforge/pipeline/computations.py - v1
"""Pure steps: input normalization, number validation, final assembly.

These run in-process with no external call. Their outputs feed the
cache keys of downstream steps, so they must be deterministic in their
inputs (no timestamps except in the final assembly).
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Literal

from pydantic import BaseModel, Field

from dossierforge.cache.fingerprint import content_hash

Severity = Literal["critical", "warning", "info"]

# Relative tolerance when recomputing a derived metric.
_TOLERANCE = 0.05
_MAX_PAYBACK_MONTHS = 24
_MIN_CLV_CAC_RATIO = 3.0
_MIN_GROSS_MARGIN = 0.6
_MAX_SOM_SHARE_OF_SAM = 0.1
_MAX_REVENUE_SHARE_OF_SOM = 0.5


class ValidationIssue(BaseModel):
    severity: Severity
    section: str
    field: str
    issue: str
    expected: float | str
    actual: float | str
    formula: str | None = None
    suggestion: str | None = None


class ValidationFix(BaseModel):
    path: str
    current_value: float | str
    new_value: float | str
    reason: str
    confidence: Literal["high", "medium", "low"] = "high"


class ValidationReport(BaseModel):
    validation_passed: bool
    issues: list[ValidationIssue] = Field(default_factory=list)
    fixes: list[ValidationFix] = Field(default_factory=list)
    summary: dict[str, int] = Field(default_factory=dict)


def process_input(inputs: dict[str, Any]) -> dict[str, Any]:
    """Normalize the raw pitch into the `pitch` artifact."""
    title = (inputs.get("project_title") or "").strip()
    text = (inputs.get("elevator_pitch") or "").strip()
    if not title or not text:
        raise ValueError("Missing required fields: project_title or elevator_pitch")
    options = inputs.get("input_options") or {}
    return {
        "project_title": title,
        "pitch_text": text,
        "pitch_hash": content_hash(text),
        "language": options.get("language", "de"),
        "target_audience": options.get("target_audience", "Pre-Seed/Seed VCs"),
        "geo": options.get("geo", "EU/DE"),
        "word_count": len(text.split()),
    }


def gather_sections(inputs: dict[str, Any]) -> dict[str, Any]:
    """Merge a whole `sections` input with any `sections.<name>` inputs."""
    sections = dict(inputs.get("sections") or {})
    for address, value in inputs.items():
        head, _, name = address.partition(".")
        if head == "sections" and name:
            sections[name] = value
    return sections


def _data(sections: dict[str, Any], name: str) -> dict[str, Any]:
    section = sections.get(name)
    if not isinstance(section, dict):
        return {}
    data = section.get("data", section)
    return data if isinstance(data, dict) else {}


def _num(value: Any) -> float | None:
    if isinstance(value, list) and value:
        value = value[0]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _off_by(actual: float, expected: float, tolerance: float) -> bool:
    return abs(actual - expected) > abs(expected) * tolerance


def _check_business_model(
    biz: dict[str, Any], issues: list[ValidationIssue], fixes: list[ValidationFix]
) -> None:
    arpu = _num(biz.get("arpu"))
    margin = _num(biz.get("gross_margin"))
    churn = _num(biz.get("churn_monthly"))
    cac = _num(biz.get("CAC"))
    clv = _num(biz.get("CLV"))
    payback = _num(biz.get("payback_months"))
    contribution = _num(biz.get("contribution_per_month"))

    if arpu and margin and churn:
        expected_clv = round(arpu * margin / churn, 2)
        if clv and _off_by(clv, expected_clv, _TOLERANCE):
            issues.append(ValidationIssue(
                severity="critical", section="business_model", field="CLV",
                issue="CLV does not match ARPU x gross margin / churn",
                expected=expected_clv, actual=clv,
                formula="CLV = ARPU x Gross Margin / churn_monthly",
                suggestion="Recalculate CLV using the standard formula",
            ))
            fixes.append(ValidationFix(
                path="sections.business_model.data.CLV", current_value=clv,
                new_value=expected_clv, reason="Recompute CLV from its inputs",
            ))

    if arpu and margin:
        expected_contribution = round(arpu * margin, 2)
        if contribution and _off_by(contribution, expected_contribution, _TOLERANCE):
            issues.append(ValidationIssue(
                severity="warning", section="business_model",
                field="contribution_per_month",
                issue="Contribution per month inconsistent with ARPU x gross margin",
                expected=expected_contribution, actual=contribution,
                formula="Contribution = ARPU x Gross Margin",
            ))
            fixes.append(ValidationFix(
                path="sections.business_model.data.contribution_per_month",
                current_value=contribution, new_value=expected_contribution,
                reason="Recompute contribution from ARPU and margin",
            ))

    if cac and contribution:
        expected_payback = round(cac / contribution, 1)
        if payback and abs(payback - expected_payback) > max(expected_payback * 0.1, 1):
            issues.append(ValidationIssue(
                severity="warning", section="business_model", field="payback_months",
                issue="Payback period does not match CAC / contribution",
                expected=expected_payback, actual=payback,
                formula="Payback = CAC / Contribution per Month",
            ))
            fixes.append(ValidationFix(
                path="sections.business_model.data.payback_months",
                current_value=payback, new_value=expected_payback,
                reason="Recompute payback from CAC and contribution",
            ))

    if payback and payback > _MAX_PAYBACK_MONTHS:
        issues.append(ValidationIssue(
            severity="warning", section="business_model", field="payback_months",
            issue=f"Payback period above {_MAX_PAYBACK_MONTHS} months",
            expected=f"< {_MAX_PAYBACK_MONTHS}", actual=payback,
            suggestion="Lower CAC or improve unit economics",
        ))

    if clv and cac and clv / cac < _MIN_CLV_CAC_RATIO:
        issues.append(ValidationIssue(
            severity="critical", section="business_model", field="CLV_CAC_ratio",
            issue=f"CLV:CAC ratio below {_MIN_CLV_CAC_RATIO:g}:1",
            expected=f"> {_MIN_CLV_CAC_RATIO:g}", actual=round(clv / cac, 1),
            suggestion="Increase CLV or reduce CAC",
        ))

    if margin is not None and margin < _MIN_GROSS_MARGIN:
        issues.append(ValidationIssue(
            severity="info", section="business_model", field="gross_margin",
            issue="Gross margin below 60%", expected=f"> {_MIN_GROSS_MARGIN}",
            actual=margin,
        ))


def _check_market(market: dict[str, Any], issues: list[ValidationIssue]) -> None:
    tam = _num(market.get("tam_eur"))
    sam = _num(market.get("sam_eur"))
    som = _num(market.get("som_eur"))
    if not (tam and sam and som):
        return
    if sam > tam:
        issues.append(ValidationIssue(
            severity="critical", section="market", field="sam_eur",
            issue="SAM cannot be larger than TAM", expected=f"<= {tam:g}", actual=sam,
        ))
    if som > sam:
        issues.append(ValidationIssue(
            severity="critical", section="market", field="som_eur",
            issue="SOM cannot be larger than SAM", expected=f"<= {sam:g}", actual=som,
        ))
    elif som > sam * _MAX_SOM_SHARE_OF_SAM:
        issues.append(ValidationIssue(
            severity="warning", section="market", field="som_eur",
            issue="SOM above 10% of SAM is optimistic for an early stage",
            expected=f"<= {sam * _MAX_SOM_SHARE_OF_SAM:g}", actual=som,
        ))


def _check_financials(
    financial: dict[str, Any], market: dict[str, Any], issues: list[ValidationIssue]
) -> None:
    forecast = financial.get("forecast")
    som = _num(market.get("som_eur"))
    if not isinstance(forecast, dict) or not forecast or not som:
        return
    last_period = list(forecast.values())[-1]
    revenue = _num(last_period.get("revenue")) if isinstance(last_period, dict) else None
    if revenue and revenue > som * _MAX_REVENUE_SHARE_OF_SOM:
        issues.append(ValidationIssue(
            severity="warning", section="financial_plan", field="revenue_projection",
            issue="Final-year revenue exceeds 50% of SOM",
            expected=f"<= {som * _MAX_REVENUE_SHARE_OF_SOM:g}", actual=revenue,
        ))


def validate_numbers(inputs: dict[str, Any]) -> dict[str, Any]:
    """Cross-check unit economics, market sizing and forecast plausibility."""
    sections = gather_sections(inputs)
    issues: list[ValidationIssue] = []
    fixes: list[ValidationFix] = []

    _check_business_model(_data(sections, "business_model"), issues, fixes)
    _check_market(_data(sections, "market"), issues)
    _check_financials(_data(sections, "financial_plan"), _data(sections, "market"), issues)

    summary = {
        "critical_count": sum(i.severity == "critical" for i in issues),
        "warning_count": sum(i.severity == "warning" for i in issues),
        "info_count": sum(i.severity == "info" for i in issues),
        "auto_fixable": sum(f.confidence == "high" for f in fixes),
    }
    report = ValidationReport(
        validation_passed=summary["critical_count"] == 0 and summary["warning_count"] == 0,
        issues=issues,
        fixes=fixes,
        summary=summary,
    )
    return report.model_dump(mode="json")


def assemble_dossier(inputs: dict[str, Any]) -> dict[str, Any]:
    """Merge every artifact into the final dossier."""
    sections = gather_sections(inputs)
    fallback_sections = sorted(
        name for name, body in sections.items()
        if isinstance(body, dict) and body.get("fallback")
    )
    return {
        "pitch": inputs.get("pitch"),
        "sources": inputs.get("sources") or {"sources": []},
        "brief": inputs.get("brief"),
        "sections": sections,
        "investor_score": inputs.get("investor_score"),
        "validation": inputs.get("validation"),
        "meta": {
            "version": "1.0",
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "fallback_sections": fallback_sections,
        },
    }


PURE_STEPS: dict[str, Callable[[dict[str, Any]], dict[str, Any]]] = {
    "input": process_input,
    "validate": validate_numbers,
    "assemble": assemble_dossier,
}
