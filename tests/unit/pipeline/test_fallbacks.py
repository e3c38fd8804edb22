# tests/unit/pipeline/test_fallbacks.py - v1
"""Tests for pipeline/fallbacks.py."""

from __future__ import annotations

from dossierforge.pipeline.fallbacks import fallback_payload


class TestFallbackPayload:
    def test_assumption_payload(self):
        payload = fallback_payload("team", "server_error: 503")
        assert payload["fallback"] is True
        assert payload["source"] == "assumptions"
        assert payload["fallback_reason"] == "server_error: 503"
        assert payload["assumptions"]

    def test_prefers_previous_build(self):
        previous = {"headline": "Strong founding team", "data": {"org_chart": ["CEO"]}}
        payload = fallback_payload("team", "timeout", previous)
        assert payload["source"] == "previous_build"
        assert payload["headline"] == "Strong founding team"
        assert "fallback" not in previous

    def test_previous_fallback_not_reused(self):
        previous = fallback_payload("team", "earlier failure")
        payload = fallback_payload("team", "again", previous)
        assert payload["source"] == "assumptions"

    def test_unknown_step_generic(self):
        payload = fallback_payload("problem", "x")
        assert payload["headline"] == "Section pending"
        assert payload["fallback"] is True

    def test_returned_payloads_are_independent(self):
        first = fallback_payload("competition", "x")
        first["bullets"].append("mutated")
        assert "mutated" not in fallback_payload("competition", "x")["bullets"]
