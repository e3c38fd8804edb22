# src/dossierforge/pipeline/fallbacks.py - v1
"""Labeled stand-in payloads for tolerant steps that failed.

A fallback always carries fallback=True and names the failure so the
assembled dossier can show which sections are assumptions.
"""

from __future__ import annotations

import copy
from typing import Any

_ASSUMPTIONS: dict[str, dict[str, Any]] = {
    "team": {
        "headline": "Team details pending",
        "bullets": ["Founding team to be detailed", "Key hires: product, growth"],
        "data": {"org_chart": []},
        "assumptions": ["Assumption: founding team covers product and go-to-market."],
    },
    "competition": {
        "headline": "Competitive landscape pending",
        "bullets": ["Direct and indirect competitors to be mapped"],
        "data": {"competitors": []},
        "assumptions": ["Assumption: fragmented market without a dominant incumbent."],
    },
    "status_quo": {
        "headline": "Status quo pending",
        "bullets": ["Customers rely on manual workarounds today"],
        "data": {},
        "assumptions": ["Assumption: current solutions are manual or generic tools."],
    },
}

_GENERIC = {
    "headline": "Section pending",
    "bullets": [],
    "data": {},
    "assumptions": ["Assumption: content could not be generated for this run."],
}


def fallback_payload(
    step_id: str, error: str, previous: Any = None
) -> dict[str, Any]:
    """Build the stand-in for a failed tolerant step.

    The previous build's output is preferred over the static assumptions.
    """
    if isinstance(previous, dict) and not previous.get("fallback"):
        payload = copy.deepcopy(previous)
        payload["source"] = "previous_build"
    else:
        payload = copy.deepcopy(_ASSUMPTIONS.get(step_id, _GENERIC))
        payload["source"] = "assumptions"
    payload["fallback"] = True
    payload["fallback_reason"] = error
    return payload
