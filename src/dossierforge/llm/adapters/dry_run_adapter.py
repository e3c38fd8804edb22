# src/dossierforge/llm/adapters/dry_run_adapter.py - v1
"""Offline adapter returning deterministic JSON without network access.

Used when DRY_RUN is enabled. Output depends only on the prompt, so
repeated dry runs are reproducible; dry-run results live in their own
cache namespace and never mix with live results.
"""

from __future__ import annotations

import hashlib
import json

from dossierforge.llm.base_client import BaseLLMClient
from dossierforge.llm.models import LLMResponse, Message


class DryRunAdapter(BaseLLMClient):
    """Deterministic stand-in for a real provider."""

    def __init__(self, model: str = "dry-run", **kwargs: object) -> None:
        self._model = model

    async def complete(
        self,
        messages: list[Message],
        system: str | None = None,
        max_tokens: int = 4000,
        temperature: float = 0.1,
    ) -> LLMResponse:
        prompt = "\n".join([system or ""] + [m.content for m in messages])
        digest = hashlib.sha256(prompt.encode("utf-8")).hexdigest()[:12]
        payload = {
            "dry_run": True,
            "prompt_sha": digest,
            "headline": f"[dry-run {digest}]",
            "bullets": [],
            "narrative": "",
            "data": {},
            "assumptions": ["Generated in dry-run mode; no model was called."],
            "open_questions": [],
            "sources": [],
        }
        content = json.dumps(payload, sort_keys=True)
        return LLMResponse(
            content=content,
            input_tokens=len(prompt) // 4,
            output_tokens=len(content) // 4,
            model=self._model,
            provider="dry_run",
        )

    @property
    def provider_name(self) -> str:
        return "dry_run"

    @property
    def model(self) -> str:
        return self._model
