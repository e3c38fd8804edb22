# src/dossierforge/llm/adapters/anthropic_adapter.py - v1
"""Anthropic Claude adapter implementing BaseLLMClient.

Uses the official anthropic SDK. SDK exceptions are translated into the
dossierforge.llm.errors taxonomy before they leave the adapter.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from dossierforge.llm import errors
from dossierforge.llm.base_client import BaseLLMClient
from dossierforge.llm.models import LLMResponse, Message

logger = logging.getLogger(__name__)


class AnthropicAdapter(BaseLLMClient):
    """Adapter for Anthropic Claude models."""

    def __init__(
        self,
        model: str = "claude-3-5-sonnet-latest",
        api_key: str | None = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self.__client = None  # Lazy initialization

    @property
    def _client(self):
        """Lazy-init Anthropic client (only on first API call)."""
        if self.__client is None:
            import anthropic

            self.__client = anthropic.AsyncAnthropic(api_key=self._api_key or "")
        return self.__client

    async def complete(
        self,
        messages: list[Message],
        system: str | None = None,
        max_tokens: int = 4000,
        temperature: float = 0.1,
    ) -> LLMResponse:
        """Text completion via Anthropic Messages API."""
        kwargs: dict[str, Any] = {
            "model": self._model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
        }
        if system:
            kwargs["system"] = system

        start = time.monotonic()
        try:
            response = await self._client.messages.create(**kwargs)
        except Exception as exc:
            raise translate_error(exc) from exc
        latency_ms = int((time.monotonic() - start) * 1000)

        return LLMResponse(
            content=_extract_text(response).strip(),
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            model=response.model,
            provider="anthropic",
            latency_ms=latency_ms,
            raw_response=response,
        )

    @property
    def provider_name(self) -> str:
        return "anthropic"

    @property
    def model(self) -> str:
        return self._model


def _extract_text(response: Any) -> str:
    for block in response.content:
        if getattr(block, "type", None) == "text":
            return block.text
    return ""


def translate_error(exc: Exception) -> Exception:
    """Map an anthropic SDK exception onto the error taxonomy."""
    import anthropic

    if isinstance(exc, anthropic.RateLimitError):
        return errors.RateLimitError(str(exc))
    if isinstance(exc, (anthropic.APITimeoutError, anthropic.APIConnectionError)):
        return errors.ExternalTimeoutError(str(exc))
    if isinstance(exc, anthropic.InternalServerError):
        return errors.ServerError(str(exc))
    if isinstance(exc, (anthropic.AuthenticationError, anthropic.PermissionDeniedError)):
        return errors.AuthenticationError(str(exc))
    if isinstance(exc, (anthropic.BadRequestError, anthropic.NotFoundError)):
        cls = errors.classify_error(exc)
        if cls is not None and issubclass(cls, errors.NonRetryableExternalError):
            return cls(str(exc))
        return errors.InvalidRequestError(str(exc))
    if isinstance(exc, anthropic.APIStatusError) and exc.status_code >= 500:
        return errors.ServerError(str(exc))
    return exc
