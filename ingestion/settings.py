"""Configuration models for the ingestion service."""

from __future__ import annotations

import json
from functools import lru_cache
from typing import Any, List, Optional, Set

from pydantic import (
    BaseModel,
    Field,
    PositiveFloat,
    PositiveInt,
    SecretStr,
    ValidationError,
    field_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

SOURCE_KINDS = ("feed", "page")
PARK_SCOPES = ("disney", "universal", "seaworld", "all")

DEFAULT_PROXY_DOMAINS = [
    "wdwnt.com",
    "blogmickey.com",
    "chipandco.com",
    "attractionsmagazine.com",
    "disneyfoodblog.com",
    "allears.net",
]

DEFAULT_MERCH_KEYWORDS = [
    "merchandise", "merch", "loungefly", "spirit jersey", "ears",
    "popcorn bucket", "sipper", "pin", "plush", "mug", "tumbler",
    "collection", "exclusive", "limited", "release", "arriving",
    "now available", "coming soon", "new at", "shop", "store",
]

DEFAULT_EXCLUDED_REGION_KEYWORDS = [
    "disneyland", "california adventure", "dca", "anaheim",
    "universal hollywood", "universal studios hollywood",
    "70th anniversary", "disneyland 70", "times square", "nyc", "new york",
]

DEFAULT_DISCOUNT_KEYWORDS = [
    "discount", "sale", "bogo", "buy one get one", "% off", "clearance",
    "markdown", "price cut", "deal", "save on",
]

DEFAULT_EXCLUDED_LOCATIONS = ["disneyland_ca", "dca_ca", "universal_hollywood"]


class SourceConfig(BaseModel):
    """A content source declared in configuration."""

    name: str = Field(..., description="Display name of the blog/feed.")
    url: str = Field(..., description="Feed or listing page URL.")
    kind: str = Field("feed", description="feed | page")
    park_scope: str = Field("all", description="disney | universal | seaworld | all")
    polling_interval_minutes: PositiveInt = Field(360, description="Minimum minutes between polls.")
    active: bool = Field(True, description="Whether the source is polled.")

    @field_validator("name", "url")
    @classmethod
    def _strip_nonempty(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("source name/url must not be blank")
        return stripped

    @field_validator("url")
    @classmethod
    def _require_http(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError(f"source url must be http(s): {value}")
        return value

    @field_validator("kind")
    @classmethod
    def _validate_kind(cls, value: str) -> str:
        kind = value.strip().lower()
        if kind not in SOURCE_KINDS:
            raise ValueError(f"unsupported source kind: {value}")
        return kind

    @field_validator("park_scope")
    @classmethod
    def _validate_park_scope(cls, value: str) -> str:
        scope = value.strip().lower()
        if scope not in PARK_SCOPES:
            raise ValueError(f"unsupported park scope: {value}")
        return scope


def _parse_json_list(value: Any, name: str) -> List[Any]:
    if value in (None, "", []):
        return []
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError as exc:
            raise ValueError(f"{name} must be a JSON array") from exc
        if not isinstance(parsed, list):
            raise ValueError(f"{name} must be a JSON array")
        return parsed
    if isinstance(value, (list, tuple)):
        return list(value)
    raise ValueError(f"{name} must be a list")


class Settings(BaseSettings):
    """Environment settings for ingestion, dedup and the processing run."""

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
        populate_by_name=True,
    )

    redis_url: str = Field(..., alias="INGESTION_REDIS_URL", description="Redis DSN for Celery broker/backend and park locks.")
    postgres_dsn: str = Field(..., alias="POSTGRES_DSN", description="Relational store DSN.")
    structlog_level: str = Field("INFO", alias="STRUCTLOG_LEVEL", description="Log level.")
    log_json: bool = Field(False, alias="LOG_JSON", description="Emit logs as JSON lines.")

    source_registry: List[SourceConfig] = Field(
        default_factory=list,
        alias="SOURCE_REGISTRY",
        description="JSON array of configured content sources.",
    )

    fetch_timeout_seconds: PositiveFloat = Field(30.0, alias="FETCH_TIMEOUT_SECONDS", description="Per-request network timeout.")
    fetch_max_attempts: PositiveInt = Field(2, alias="FETCH_MAX_ATTEMPTS", description="Direct attempts for transient failures.")
    fetch_user_agent: str = Field(
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
        alias="FETCH_USER_AGENT",
        description="Browser identity sent with every direct request.",
    )
    fetch_proxy_endpoint: str = Field(
        "http://api.scraperapi.com",
        alias="FETCH_PROXY_ENDPOINT",
        description="Fetch-proxy endpoint used for blocking domains.",
    )
    fetch_proxy_api_key: Optional[SecretStr] = Field(None, alias="FETCH_PROXY_API_KEY", description="Fetch-proxy API key.")
    fetch_proxy_domains: List[str] = Field(
        default_factory=lambda: list(DEFAULT_PROXY_DOMAINS),
        alias="FETCH_PROXY_DOMAINS",
        description="Hosts known to refuse direct fetches.",
    )

    dedup_similarity_threshold: float = Field(
        0.7, alias="DEDUP_SIMILARITY_THRESHOLD", gt=0.0, le=1.0, description="Word-overlap ratio treated as same product."
    )
    dedup_min_token_length: PositiveInt = Field(3, alias="DEDUP_MIN_TOKEN_LENGTH", description="Shortest token used for fuzzy matching.")
    dedup_record_merged_rows: bool = Field(
        False, alias="DEDUP_RECORD_MERGED_ROWS", description="Write an audit row for merged duplicates."
    )
    park_lock_timeout_seconds: PositiveInt = Field(60, alias="PARK_LOCK_TIMEOUT_SECONDS", description="Park lock lease.")

    run_max_workers: PositiveInt = Field(4, alias="RUN_MAX_WORKERS", description="Sources processed concurrently.")
    max_articles_per_source: PositiveInt = Field(50, alias="MAX_ARTICLES_PER_SOURCE", description="Feed entries examined per run.")
    process_interval_minutes: PositiveInt = Field(30, alias="PROCESS_INTERVAL_MINUTES", description="Beat cadence of the run.")
    notify_interval_minutes: PositiveInt = Field(60, alias="NOTIFY_INTERVAL_MINUTES", description="Beat cadence of the notification sweep.")
    notify_lookback_hours: PositiveInt = Field(24, alias="NOTIFY_LOOKBACK_HOURS", description="Approved releases considered by the sweep.")

    merch_keywords: List[str] = Field(default_factory=lambda: list(DEFAULT_MERCH_KEYWORDS), alias="MERCH_KEYWORDS")
    excluded_region_keywords: List[str] = Field(
        default_factory=lambda: list(DEFAULT_EXCLUDED_REGION_KEYWORDS), alias="EXCLUDED_REGION_KEYWORDS"
    )
    discount_keywords: List[str] = Field(default_factory=lambda: list(DEFAULT_DISCOUNT_KEYWORDS), alias="DISCOUNT_KEYWORDS")
    excluded_locations: List[str] = Field(default_factory=lambda: list(DEFAULT_EXCLUDED_LOCATIONS), alias="EXCLUDED_LOCATIONS")

    process_trigger_secret: Optional[SecretStr] = Field(
        None, alias="PROCESS_TRIGGER_SECRET", description="Shared secret for the HTTP trigger."
    )

    celery_worker_concurrency: PositiveInt = Field(4, alias="CELERY_WORKER_CONCURRENCY", description="Celery worker concurrency.")
    celery_task_soft_time_limit: PositiveInt = Field(
        1800, alias="CELERY_TASK_SOFT_TIME_LIMIT", description="Celery soft time limit (seconds)."
    )

    @field_validator("source_registry", mode="before")
    @classmethod
    def _parse_source_registry(cls, value: Any) -> List[Any]:
        return _parse_json_list(value, "SOURCE_REGISTRY")

    @field_validator("source_registry")
    @classmethod
    def _validate_unique_sources(cls, value: List[SourceConfig]) -> List[SourceConfig]:
        seen: Set[str] = set()
        for source in value:
            key = source.url.rstrip("/").lower()
            if key in seen:
                raise ValueError(f"duplicate source url in SOURCE_REGISTRY: {source.url}")
            seen.add(key)
        return value

    @field_validator(
        "fetch_proxy_domains",
        "merch_keywords",
        "excluded_region_keywords",
        "discount_keywords",
        "excluded_locations",
        mode="before",
    )
    @classmethod
    def _parse_keyword_list(cls, value: Any) -> List[Any]:
        return _parse_json_list(value, "keyword list")

    @field_validator(
        "fetch_proxy_domains",
        "merch_keywords",
        "excluded_region_keywords",
        "discount_keywords",
        "excluded_locations",
    )
    @classmethod
    def _lower_keywords(cls, value: List[str]) -> List[str]:
        return [str(item).strip().lower() for item in value if str(item).strip()]

    @field_validator("postgres_dsn")
    @classmethod
    def _validate_postgres_dsn(cls, value: str) -> str:
        if "://" not in value:
            raise ValueError("POSTGRES_DSN must be a DSN string")
        return value


@lru_cache()
def get_settings() -> Settings:
    """Return settings loaded from the environment."""
    try:
        return Settings()
    except ValidationError as exc:
        raise RuntimeError(f"environment validation failed: {exc}") from exc


def reset_settings_cache() -> None:
    """Clear the settings cache (tests)."""
    get_settings.cache_clear()  # type: ignore[attr-defined]
