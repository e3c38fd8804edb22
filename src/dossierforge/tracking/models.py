# src/dossierforge/tracking/models.py - v1
"""Tracking domain models: LLMCallRecord, StepCallStats, CallStats."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class LLMCallRecord(BaseModel):
    """One external call made by a step (after retries)."""

    call_id: str
    timestamp: datetime
    step: str
    provider: str
    model: str
    estimated_tokens: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    latency_ms: int = 0
    attempts: int = 1
    rate_gate_wait_ms: int = 0
    status: Literal["success", "failed"]
    error_type: str | None = None


class StepCallStats(BaseModel):
    step: str
    calls: int = 0
    total_tokens: int = 0
    retries: int = 0
    failures: int = 0
    max_latency_ms: int = 0


class CallStats(BaseModel):
    """Aggregate of all calls in one run, returned with the result."""

    total_calls: int = 0
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    total_tokens: int = 0
    estimated_tokens: int = 0
    total_retries: int = 0
    failed_calls: int = 0
    rate_gate_wait_ms: int = 0
    avg_latency_ms: float = 0.0
    by_step: dict[str, StepCallStats] = Field(default_factory=dict)
