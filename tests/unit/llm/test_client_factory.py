# tests/unit/llm/test_client_factory.py - v1
"""Tests for llm/client_factory.py - adapter instantiation and pooling."""

from __future__ import annotations

import pytest

from dossierforge.config.settings import Settings
from dossierforge.llm.adapters.dry_run_adapter import DryRunAdapter
from dossierforge.llm.client_factory import (
    ClientPool,
    UnsupportedProviderError,
    create_llm_client,
    register_provider,
)
from dossierforge.llm.config import LLMAssignment


class TestCreateLLMClient:
    def test_dry_run(self):
        client = create_llm_client("dry_run", "gpt-4o")
        assert isinstance(client, DryRunAdapter)
        assert client.model == "gpt-4o"

    def test_openai_gets_api_key(self):
        settings = Settings(_env_file=None, openai_api_key="sk-test")
        client = create_llm_client("openai", "gpt-4o", settings)
        assert client.provider_name == "openai"
        assert client._api_key == "sk-test"

    def test_anthropic(self):
        client = create_llm_client("anthropic", "claude-3-5-sonnet-latest")
        assert client.provider_name == "anthropic"

    def test_unsupported(self):
        with pytest.raises(UnsupportedProviderError, match="Unsupported"):
            create_llm_client("carrier-pigeon", "v1")

    def test_register_provider(self):
        register_provider(
            "offline", "dossierforge.llm.adapters.dry_run_adapter.DryRunAdapter"
        )
        assert isinstance(create_llm_client("offline", "m"), DryRunAdapter)


class TestClientPool:
    def test_reuses_client_per_key(self):
        pool = ClientPool()
        a = LLMAssignment(provider="dry_run", model="gpt-4o", token_limit=1000, source="step")
        b = LLMAssignment(provider="dry_run", model="gpt-4o", token_limit=1000, source="default")
        c = LLMAssignment(provider="dry_run", model="claude-x", token_limit=1000, source="step")
        assert pool(a) is pool(b)
        assert pool(a) is not pool(c)
