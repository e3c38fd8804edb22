# src/dossierforge/tracking/call_logger.py - v1
"""External call logging: one record per step call, for post-run analysis."""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timezone

from dossierforge.llm.models import LLMResponse
from dossierforge.storage.base_output_writer import BaseOutputWriter
from dossierforge.tracking.models import CallStats, LLMCallRecord, StepCallStats

logger = logging.getLogger(__name__)


class CallLogger:
    """Accumulates call records during a pipeline run."""

    def __init__(self) -> None:
        self._records: list[LLMCallRecord] = []

    def record(
        self,
        step: str,
        response: LLMResponse,
        estimated_tokens: int = 0,
        attempts: int = 1,
        rate_gate_wait_ms: int = 0,
    ) -> LLMCallRecord:
        """Record a successful call.

        Args:
            step: Step identifier.
            response: Provider response with token usage.
            estimated_tokens: Tokens reserved at the rate gate.
            attempts: Attempts used, including the successful one.
            rate_gate_wait_ms: Time spent waiting for admission.
        """
        record = LLMCallRecord(
            call_id=str(uuid.uuid4()),
            timestamp=datetime.now(timezone.utc),
            step=step,
            provider=response.provider,
            model=response.model,
            estimated_tokens=estimated_tokens,
            input_tokens=response.input_tokens,
            output_tokens=response.output_tokens,
            total_tokens=response.input_tokens + response.output_tokens,
            latency_ms=response.latency_ms,
            attempts=attempts,
            rate_gate_wait_ms=rate_gate_wait_ms,
            status="success",
        )
        self._records.append(record)
        return record

    def record_failure(
        self,
        step: str,
        provider: str,
        model: str,
        error_type: str,
        estimated_tokens: int = 0,
        attempts: int = 1,
        rate_gate_wait_ms: int = 0,
    ) -> LLMCallRecord:
        record = LLMCallRecord(
            call_id=str(uuid.uuid4()),
            timestamp=datetime.now(timezone.utc),
            step=step,
            provider=provider,
            model=model,
            estimated_tokens=estimated_tokens,
            attempts=attempts,
            rate_gate_wait_ms=rate_gate_wait_ms,
            status="failed",
            error_type=error_type,
        )
        self._records.append(record)
        return record

    @property
    def records(self) -> list[LLMCallRecord]:
        """All recorded calls."""
        return list(self._records)

    @property
    def total_tokens(self) -> int:
        return sum(r.total_tokens for r in self._records)

    @property
    def total_calls(self) -> int:
        return len(self._records)

    def stats(self) -> CallStats:
        """Aggregate the records collected so far."""
        stats = CallStats()
        latencies: list[int] = []
        for r in self._records:
            stats.total_calls += 1
            stats.total_input_tokens += r.input_tokens
            stats.total_output_tokens += r.output_tokens
            stats.total_tokens += r.total_tokens
            stats.estimated_tokens += r.estimated_tokens
            stats.total_retries += max(0, r.attempts - 1)
            stats.rate_gate_wait_ms += r.rate_gate_wait_ms
            if r.status == "failed":
                stats.failed_calls += 1
            else:
                latencies.append(r.latency_ms)

            per_step = stats.by_step.setdefault(r.step, StepCallStats(step=r.step))
            per_step.calls += 1
            per_step.total_tokens += r.total_tokens
            per_step.retries += max(0, r.attempts - 1)
            per_step.failures += r.status == "failed"
            per_step.max_latency_ms = max(per_step.max_latency_ms, r.latency_ms)

        if latencies:
            stats.avg_latency_ms = sum(latencies) / len(latencies)
        return stats

    async def save(self, writer: BaseOutputWriter, path: str) -> None:
        """Write all records as JSON Lines through the output writer."""
        lines = "".join(
            json.dumps(r.model_dump(), default=str) + "\n" for r in self._records
        )
        try:
            await writer.write(path, lines)
        except OSError as e:
            logger.warning("Failed to write call log %s: %s", path, e)
