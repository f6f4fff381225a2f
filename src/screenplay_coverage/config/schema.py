"""Configuration schema and validation using Pydantic.

This module defines the settings schema that validates and coerces configuration
values from the environment, TOML files and programmatic overrides into the
correct types with proper defaults.
"""

from typing import Any

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from screenplay_coverage.constants import (
    CALL_TIMEOUT,
    DEFAULT_BATCH_SIZE,
    MAX_RETRIES,
    RETRY_BASE_DELAY,
    WEBHOOK_TIMEOUT,
)
from screenplay_coverage.core.types import Tier
from screenplay_coverage.llm.tiers import DEFAULT_MODEL_IDS


class CoverageSettings(BaseSettings):
    """Pydantic settings schema for the coverage engine.

    Integrates with environment variables using the COVERAGE_ prefix.
    """

    model_config = SettingsConfigDict(
        env_prefix="COVERAGE_",
        env_file=None,  # Only used when explicitly requested
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Provider ---

    api_key: str | None = Field(
        default=None,
        description="Google Gemini API key",
    )

    use_real_api: bool = Field(
        default=False,
        description="Call the real Gemini API instead of the deterministic mock",
    )

    # --- Calls ---

    max_retries: int = Field(
        default=MAX_RETRIES,
        description="Retries per model call after the first attempt",
        ge=0,
    )

    timeout_s: float = Field(
        default=CALL_TIMEOUT,
        description="Per-attempt model call timeout in seconds",
        gt=0,
    )

    base_delay_s: float = Field(
        default=RETRY_BASE_DELAY,
        description="Base delay of the exponential retry backoff",
        ge=0,
    )

    # --- Tier models ---

    model_nano: str = Field(default=DEFAULT_MODEL_IDS[Tier.NANO], min_length=1)
    model_mini: str = Field(default=DEFAULT_MODEL_IDS[Tier.MINI], min_length=1)
    model_base: str = Field(default=DEFAULT_MODEL_IDS[Tier.BASE], min_length=1)
    model_thinking: str = Field(
        default=DEFAULT_MODEL_IDS[Tier.THINKING], min_length=1
    )

    # --- Pipeline ---

    enable_telemetry: bool = Field(
        default=True,
        description="Enable scoped timing telemetry",
    )

    batch_size: int = Field(
        default=DEFAULT_BATCH_SIZE,
        description="Maximum flagged spans or risk candidates sent per task",
        ge=1,
    )

    webhook_timeout_s: float = Field(
        default=WEBHOOK_TIMEOUT,
        description="Completion webhook timeout in seconds",
        gt=0,
    )

    @model_validator(mode="after")
    def validate_api_key_requirement(self) -> "CoverageSettings":
        """Ensure api_key is provided when use_real_api is True."""
        if self.use_real_api and not self.api_key:
            raise ValueError(
                "api_key is required when use_real_api=True. "
                "Set COVERAGE_API_KEY, provide it in a config file, "
                "or pass it programmatically."
            )
        return self

    def model_ids(self) -> dict[Tier, str]:
        return {
            Tier.NANO: self.model_nano,
            Tier.MINI: self.model_mini,
            Tier.BASE: self.model_base,
            Tier.THINKING: self.model_thinking,
        }

    def to_dict(self) -> dict[str, Any]:
        """Plain dictionary of every field, suitable for SourceMap annotation."""
        return {name: getattr(self, name) for name in CONFIG_FIELDS}


CONFIG_FIELDS: tuple[str, ...] = tuple(CoverageSettings.model_fields)
