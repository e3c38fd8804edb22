# src/dossierforge/llm/adapters/openai_adapter.py - v1
"""OpenAI GPT adapter implementing BaseLLMClient.

Uses the official openai SDK. Some model families reject an explicit
temperature, so it is only sent where supported.
"""

from __future__ import annotations

import time
from typing import Any

from dossierforge.llm import errors
from dossierforge.llm.base_client import BaseLLMClient
from dossierforge.llm.models import LLMResponse, Message

_NO_TEMPERATURE_PREFIXES = ("o1-", "o3-")
_NO_TEMPERATURE_MODELS = {"gpt-4o-mini"}


class OpenAIAdapter(BaseLLMClient):
    """OpenAI GPT adapter."""

    def __init__(self, model: str = "gpt-4o", api_key: str = "", **kwargs: Any):
        self._model = model
        self._api_key = api_key
        self.__client = None

    @property
    def _client(self):
        if self.__client is None:
            import openai

            self.__client = openai.AsyncOpenAI(api_key=self._api_key)
        return self.__client

    async def complete(
        self,
        messages: list[Message],
        system: str | None = None,
        max_tokens: int = 4000,
        temperature: float = 0.1,
    ) -> LLMResponse:
        oai_messages: list[dict[str, Any]] = []
        if system:
            oai_messages.append({"role": "system", "content": system})
        for m in messages:
            oai_messages.append({"role": m.role, "content": m.content})

        kwargs: dict[str, Any] = {
            "model": self._model,
            "messages": oai_messages,
            "max_tokens": max_tokens,
        }
        if self.supports_temperature:
            kwargs["temperature"] = temperature

        t0 = time.monotonic()
        try:
            resp = await self._client.chat.completions.create(**kwargs)
        except Exception as exc:
            raise translate_error(exc) from exc
        latency = int((time.monotonic() - t0) * 1000)

        choice = resp.choices[0]
        usage = resp.usage
        return LLMResponse(
            content=(choice.message.content or "").strip(),
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
            model=self._model,
            provider="openai",
            latency_ms=latency,
            raw_response=resp,
        )

    @property
    def supports_temperature(self) -> bool:
        return (
            not self._model.startswith(_NO_TEMPERATURE_PREFIXES)
            and self._model not in _NO_TEMPERATURE_MODELS
        )

    @property
    def provider_name(self) -> str:
        return "openai"

    @property
    def model(self) -> str:
        return self._model


def translate_error(exc: Exception) -> Exception:
    """Map an openai SDK exception onto the error taxonomy."""
    import openai

    if isinstance(exc, openai.RateLimitError):
        cls = errors.classify_error(exc)
        # Quota exhaustion is reported as 429 but never clears by waiting.
        if cls is errors.AuthenticationError:
            return errors.AuthenticationError(str(exc))
        return errors.RateLimitError(str(exc))
    if isinstance(exc, (openai.APITimeoutError, openai.APIConnectionError)):
        return errors.ExternalTimeoutError(str(exc))
    if isinstance(exc, openai.InternalServerError):
        return errors.ServerError(str(exc))
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return errors.AuthenticationError(str(exc))
    if isinstance(exc, (openai.BadRequestError, openai.NotFoundError)):
        cls = errors.classify_error(exc)
        if cls is not None and issubclass(cls, errors.NonRetryableExternalError):
            return cls(str(exc))
        return errors.InvalidRequestError(str(exc))
    if isinstance(exc, openai.APIStatusError) and exc.status_code >= 500:
        return errors.ServerError(str(exc))
    return exc
