# src/dossierforge/config/settings.py - v1
"""Typed configuration loaded from .env via pydantic-settings.

Single source of truth for all deployment-specific settings. The pipeline
resolves one Settings instance at construction time and passes it down;
nothing below the facade reads environment variables directly.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when configuration or the static step graph is inconsistent."""


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === LLM PROVIDERS ===
    llm_default_provider: str = "openai"
    llm_default_model: str = "gpt-4o"
    llm_max_output_tokens: int = 4000
    llm_temperature: float = 0.1

    anthropic_api_key: str = ""
    openai_api_key: str = ""

    # Per-step LLM assignment, "provider:model" (highest priority)
    llm_evidence: str = ""
    llm_brief: str = ""
    llm_problem: str = ""
    llm_solution: str = ""
    llm_team: str = ""
    llm_market: str = ""
    llm_business_model: str = ""
    llm_competition: str = ""
    llm_status_quo: str = ""
    llm_gtm: str = ""
    llm_financial_plan: str = ""
    llm_investor_score: str = ""

    # Offline mode: deterministic responses, separate cache namespace
    dry_run: bool = False
    prompt_version: str = "1.0"

    # === Retry ===
    llm_call_timeout_s: float = 25.0
    llm_max_retries: int = 2
    llm_retry_base_delay_s: float = 2.0
    llm_retry_max_delay_s: float = 30.0

    # === Rate gate (tokens per window, per model) ===
    rate_gate_window_s: float = 60.0
    rate_gate_safety_buffer_s: float = 0.1
    rate_gate_max_attempts: int = 5
    tpm_gpt4o_mini: int = 200_000
    tpm_gpt4o: int = 50_000
    tpm_gpt4: int = 30_000
    tpm_claude_sonnet: int = 80_000
    tpm_claude: int = 150_000
    tpm_default: int = 30_000

    # === Pipeline ===
    pipeline_parallel_limit: int = 2
    pipeline_timeout_s: float = 300.0
    checkpoint_every_n_steps: int = 2

    # === Cache ===
    cache_enabled: bool = True
    cache_backend: Literal["json", "sqlite", "redis"] = "json"
    cache_root: Path = Path("~/.dossierforge/cache")
    cache_redis_url: str = ""
    cache_max_entries: int = 5000
    job_retention_hours: float = 24.0

    # === Output ===
    output_path: Path = Path("./output")

    # === Logging ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: Path | None = None
    log_rotation: str = "10MB"
    log_retention: int = 30

    # --- Validators ---

    @field_validator("llm_max_retries")
    @classmethod
    def validate_max_retries(cls, v: int) -> int:  # noqa: N805
        if v < 0:
            raise ValueError("llm_max_retries must be >= 0")
        return v

    @model_validator(mode="after")
    def validate_config_consistency(self) -> Settings:
        """Validate cross-field consistency rules."""
        errors: list[str] = []

        if self.pipeline_parallel_limit < 1:
            errors.append("PIPELINE_PARALLEL_LIMIT must be >= 1")

        if self.pipeline_timeout_s <= 0 or self.llm_call_timeout_s <= 0:
            errors.append("PIPELINE_TIMEOUT_S and LLM_CALL_TIMEOUT_S must be > 0")

        if self.llm_retry_base_delay_s > self.llm_retry_max_delay_s:
            errors.append(
                "LLM_RETRY_BASE_DELAY_S must be <= LLM_RETRY_MAX_DELAY_S"
            )

        if self.cache_backend == "redis" and not self.cache_redis_url:
            errors.append("CACHE_REDIS_URL must be set when CACHE_BACKEND=redis")

        if self.checkpoint_every_n_steps < 1:
            errors.append("CHECKPOINT_EVERY_N_STEPS must be >= 1")

        if self.cache_max_entries < 1:
            errors.append("CACHE_MAX_ENTRIES must be >= 1")

        if self.rate_gate_window_s <= 0 or self.rate_gate_max_attempts < 1:
            errors.append("Rate gate window must be > 0 and max attempts >= 1")

        if errors:
            raise ConfigurationError("; ".join(errors))

        return self


def load_settings(**overrides: object) -> Settings:
    """Load settings from .env with optional overrides.

    Args:
        **overrides: Field-level overrides (for testing or per-run config).

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If configuration is internally inconsistent.
    """
    return Settings(**overrides)  # type: ignore[arg-type]
