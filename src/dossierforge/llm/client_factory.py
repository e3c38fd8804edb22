# src/dossierforge/llm/client_factory.py - v1
"""Factory: instantiate LLM client from provider name.

The step executor asks for one client per resolved LLMAssignment and
reuses it for the lifetime of the pipeline.
"""

from __future__ import annotations

import importlib
import logging

from dossierforge.config.settings import Settings
from dossierforge.llm.base_client import BaseLLMClient
from dossierforge.llm.config import LLMAssignment

logger = logging.getLogger(__name__)

# Registry of provider name → adapter class path (lazy import).
_PROVIDER_REGISTRY: dict[str, str] = {
    "anthropic": "dossierforge.llm.adapters.anthropic_adapter.AnthropicAdapter",
    "openai": "dossierforge.llm.adapters.openai_adapter.OpenAIAdapter",
    "dry_run": "dossierforge.llm.adapters.dry_run_adapter.DryRunAdapter",
}


class UnsupportedProviderError(ValueError):
    """Raised when a provider is not registered."""


def create_llm_client(
    provider: str,
    model: str,
    settings: Settings | None = None,
    **kwargs: object,
) -> BaseLLMClient:
    """Instantiate the correct adapter from provider name.

    Raises:
        UnsupportedProviderError: If provider is not registered.
    """
    if provider not in _PROVIDER_REGISTRY:
        raise UnsupportedProviderError(
            f"Unsupported LLM provider: {provider!r}. "
            f"Available: {', '.join(sorted(_PROVIDER_REGISTRY))}"
        )

    adapter_cls = _import_class(_PROVIDER_REGISTRY[provider])

    init_kwargs = dict(kwargs)
    init_kwargs["model"] = model
    if settings is not None:
        if provider == "anthropic":
            init_kwargs.setdefault("api_key", settings.anthropic_api_key)
        elif provider == "openai":
            init_kwargs.setdefault("api_key", settings.openai_api_key)

    logger.debug("Creating LLM client: provider=%s, model=%s", provider, model)
    return adapter_cls(**init_kwargs)


class ClientPool:
    """Lazily creates and caches one client per provider:model."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings
        self._clients: dict[str, BaseLLMClient] = {}

    def __call__(self, assignment: LLMAssignment) -> BaseLLMClient:
        client = self._clients.get(assignment.key)
        if client is None:
            client = create_llm_client(
                assignment.provider, assignment.model, self._settings
            )
            self._clients[assignment.key] = client
        return client


def register_provider(name: str, class_path: str) -> None:
    """Register a custom provider adapter."""
    _PROVIDER_REGISTRY[name] = class_path
    logger.info("Registered LLM provider: %s → %s", name, class_path)


def _import_class(class_path: str) -> type:
    """Dynamically import a class from its fully qualified path."""
    module_path, class_name = class_path.rsplit(".", 1)
    module = importlib.import_module(module_path)
    return getattr(module, class_name)
