"""Settings for the candidate extraction (OpenAI LLM) stage."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, PositiveFloat, PositiveInt, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ExtractionSettings(BaseSettings):
    """Environment-driven configuration for the extraction stage."""

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
        populate_by_name=True,
    )

    openai_api_key: str = Field(..., alias="OPENAI_API_KEY", description="OpenAI API key")
    extraction_model: str = Field("gpt-4o-mini", alias="EXTRACTION_MODEL", description="OpenAI model name")
    extraction_max_tokens: PositiveInt = Field(4096, alias="EXTRACTION_MAX_TOKENS", description="Max completion tokens")
    extraction_temperature: PositiveFloat = Field(0.2, alias="EXTRACTION_TEMPERATURE", description="Sampling temperature")
    extraction_cost_limit_usd: PositiveFloat = Field(
        0.05, alias="EXTRACTION_COST_LIMIT_USD", description="Per-request cost cap (USD)"
    )
    extraction_request_timeout_seconds: PositiveInt = Field(
        60,
        alias="EXTRACTION_REQUEST_TIMEOUT_SECONDS",
        description="HTTP request timeout in seconds",
    )
    extraction_retry_max_attempts: PositiveInt = Field(
        2, alias="EXTRACTION_RETRY_MAX_ATTEMPTS", description="Max retry attempts"
    )
    extraction_max_chars: PositiveInt = Field(
        15000, alias="EXTRACTION_MAX_CHARS", description="Article characters sent to the model"
    )

    @field_validator("openai_api_key")
    @classmethod
    def _non_empty_api_key(cls, v: str) -> str:
        s = v.strip()
        if not s:
            raise ValueError("OPENAI_API_KEY must not be blank")
        return s


@lru_cache()
def get_extraction_settings() -> ExtractionSettings:
    try:
        return ExtractionSettings()
    except ValidationError as exc:
        raise RuntimeError(f"extraction settings validation failed: {exc}") from exc


def reset_extraction_settings_cache() -> None:
    get_extraction_settings.cache_clear()  # type: ignore[attr-defined]
