# src/dossierforge/llm/base_client.py - v1
"""Abstract LLM client interface.

Implementations must raise exceptions from dossierforge.llm.errors so the
step executor's retry policy can tell transient failures from fatal ones.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from dossierforge.llm.models import LLMResponse, Message


class BaseLLMClient(ABC):
    """Unified interface for all LLM providers."""

    @abstractmethod
    async def complete(
        self,
        messages: list[Message],
        system: str | None = None,
        max_tokens: int = 4000,
        temperature: float = 0.1,
    ) -> LLMResponse:
        """Text completion."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Provider identifier (anthropic, openai, dry_run)."""

    @property
    @abstractmethod
    def model(self) -> str:
        """Model identifier this client sends requests to."""
