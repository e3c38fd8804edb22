# src/dossierforge/llm/config.py - v1
"""Per-step LLM routing with cascade resolution.

Resolution order:
  1. Per-step setting (LLM_MARKET=openai:gpt-4o)
  2. The step's declared model preference
  3. Default provider + model (LLM_DEFAULT_PROVIDER + LLM_DEFAULT_MODEL)
  4. Hardcoded fallback

Dry-run mode routes every step to the dry_run provider but keeps the
resolved model name, so rate-gate accounting stays per model.
The routing table is resolved once when the pipeline is constructed.
"""

from __future__ import annotations

from dataclasses import dataclass

from dossierforge.config.settings import Settings
from dossierforge.core.models import StepDefinition

_FALLBACK_PROVIDER = "openai"
_FALLBACK_MODEL = "gpt-4o-mini"


@dataclass(frozen=True)
class LLMAssignment:
    """Resolved provider:model and token budget for one step."""

    provider: str
    model: str
    token_limit: int
    source: str  # "step", "preference", "default", or "fallback"

    @property
    def key(self) -> str:
        """Return 'provider:model' string."""
        return f"{self.provider}:{self.model}"


def _parse_assignment(value: str) -> tuple[str, str] | None:
    """Parse 'provider:model' string. Returns None if empty."""
    if not value or ":" not in value:
        return None
    provider, model = value.split(":", 1)
    return (provider.strip(), model.strip())


def infer_provider(model: str) -> str:
    return "anthropic" if model.startswith("claude") else "openai"


def token_limit_for(model: str, settings: Settings) -> int:
    """Tokens-per-window limit for a model, most specific match first."""
    if "gpt-4o-mini" in model:
        return settings.tpm_gpt4o_mini
    if "gpt-4o" in model:
        return settings.tpm_gpt4o
    if "gpt-4" in model:
        return settings.tpm_gpt4
    if "claude-3-5-sonnet" in model or "claude-3.5-sonnet" in model or "sonnet" in model:
        return settings.tpm_claude_sonnet
    if "claude" in model:
        return settings.tpm_claude
    return settings.tpm_default


def resolve_llm(step: StepDefinition, settings: Settings) -> LLMAssignment:
    """Resolve the LLM assignment for one external step."""
    resolved: tuple[str, str, str]
    parsed = _parse_assignment(getattr(settings, f"llm_{step.id}", ""))
    if parsed:
        resolved = (parsed[0], parsed[1], "step")
    elif step.model_preference:
        model = step.model_preference
        resolved = (infer_provider(model), model, "preference")
    elif settings.llm_default_provider and settings.llm_default_model:
        resolved = (settings.llm_default_provider, settings.llm_default_model, "default")
    else:
        resolved = (_FALLBACK_PROVIDER, _FALLBACK_MODEL, "fallback")

    provider, model, source = resolved
    if settings.dry_run:
        provider = "dry_run"
    return LLMAssignment(
        provider=provider,
        model=model,
        token_limit=token_limit_for(model, settings),
        source=source,
    )


def resolve_all(
    steps: tuple[StepDefinition, ...], settings: Settings
) -> dict[str, LLMAssignment]:
    """Resolve assignments for every external step.

    Returns:
        Dict mapping step id to resolved LLMAssignment.
    """
    return {step.id: resolve_llm(step, settings) for step in steps if step.external}
