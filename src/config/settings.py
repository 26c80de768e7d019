# src/config/settings.py — v1
"""Typed configuration loaded from .env via pydantic-settings.

Single source of truth for all deployment-specific settings: queue
retry policy, workflow checkpoints, cache backend and TTL tiers,
progress actor lifetimes, scoring model selection and logging.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when configuration is internally inconsistent."""


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === Queue consumer ===
    queue_max_attempts: int = 3
    queue_base_delay_s: float = 10.0
    queue_batch_size: int = 10
    queue_poll_interval_s: float = 1.0

    # === Workflow ===
    workflow_retry_base_delay_s: float = 0.5
    checkpoint_backend: Literal["memory", "json"] = "memory"
    checkpoint_root: Path = Path("~/.fitscore/checkpoints")

    # === Cache ===
    cache_backend: Literal["json", "sqlite", "redis"] = "json"
    cache_root: Path = Path("~/.fitscore/cache")
    cache_redis_url: str = ""
    cache_schema_version: int = 1
    cache_ttl_light_s: int = 24 * 60 * 60
    cache_ttl_deep_s: int = 12 * 60 * 60
    cache_ttl_xray_s: int = 6 * 60 * 60
    cache_count_change_threshold: float = 0.10
    cache_text_similarity_threshold: float = 0.7
    cache_stale_warning_s: int = 72_000

    # === Progress actor ===
    progress_ttl_s: float = 24 * 60 * 60
    progress_heartbeat_s: float = 15.0

    # === Pre-analysis checks ===
    checks_continue_on_failure: bool = False

    # === Scoring ===
    anthropic_api_key: str = ""
    scoring_model_light: str = "claude-3-5-haiku-20241022"
    scoring_model_deep: str = "claude-sonnet-4-20250514"
    scoring_model_xray: str = "claude-sonnet-4-20250514"
    scoring_max_tokens: int = 1200
    scoring_temperature: float = 0.2

    # === Logging ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: Path | None = None
    log_rotation: str = "10MB"
    log_retention: int = 30

    # --- Validators ---

    @field_validator("queue_max_attempts")
    @classmethod
    def validate_max_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("queue_max_attempts must be >= 1")
        return v

    @field_validator("cache_ttl_light_s", "cache_ttl_deep_s", "cache_ttl_xray_s")
    @classmethod
    def validate_ttl(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("cache TTLs must be > 0 seconds")
        return v

    @model_validator(mode="after")
    def validate_config_consistency(self) -> Settings:
        """Validate cross-field consistency rules."""
        errors: list[str] = []

        if self.cache_backend == "redis" and not self.cache_redis_url:
            errors.append("CACHE_BACKEND=redis requires CACHE_REDIS_URL")

        if self.cache_count_change_threshold <= 0:
            errors.append("CACHE_COUNT_CHANGE_THRESHOLD must be > 0")

        if not 0 < self.cache_text_similarity_threshold <= 1:
            errors.append("CACHE_TEXT_SIMILARITY_THRESHOLD must be in (0, 1]")

        if self.progress_heartbeat_s >= self.progress_ttl_s:
            errors.append("PROGRESS_HEARTBEAT_S must be < PROGRESS_TTL_S")

        if errors:
            raise ConfigurationError("; ".join(errors))

        return self

    # --- Helpers ---

    @property
    def cache_ttl_table(self) -> dict[str, int]:
        """TTL seconds keyed by analysis depth."""
        return {
            "light": self.cache_ttl_light_s,
            "deep": self.cache_ttl_deep_s,
            "xray": self.cache_ttl_xray_s,
        }

    @property
    def scoring_models(self) -> dict[str, str]:
        """Scoring model name keyed by analysis depth."""
        return {
            "light": self.scoring_model_light,
            "deep": self.scoring_model_deep,
            "xray": self.scoring_model_xray,
        }


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
