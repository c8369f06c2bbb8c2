"""Pydantic models and helper utilities for configuration values."""
from __future__ import annotations

from typing import Any, Dict, Literal, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    ValidationError,
    ValidationInfo,
    field_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from bookhub import logging_manager

from .constants import (
    DEFAULT_CACHE_DIR,
    DEFAULT_CACHE_TTL_HOURS,
    DEFAULT_EMBEDDING_DIMENSION,
    DEFAULT_GOOGLE_BOOKS_URL,
    DEFAULT_INFLIGHT_TIMEOUT_SECONDS,
    DEFAULT_NYT_URL,
    DEFAULT_OPENLIBRARY_URL,
    DEFAULT_PROVIDER_TIMEOUT_SECONDS,
    DEFAULT_RECENTLY_VIEWED_CAPACITY,
    DEFAULT_REDIS_NAMESPACE,
    DEFAULT_S3_PREFIX,
    DEFAULT_SEARCH_RESULT_LIMIT,
    DEFAULT_TIER_TIMEOUT_SECONDS,
)

logger = logging_manager.get_logger().getChild("config")


class ProviderSettings(BaseModel):
    """Per-provider HTTP, rate limit and circuit breaker settings."""

    model_config = ConfigDict(extra="ignore")

    enabled: bool = True
    base_url: str
    timeout_seconds: float = DEFAULT_PROVIDER_TIMEOUT_SECONDS
    requests_per_second: Optional[float] = None
    requests_per_minute: Optional[int] = None
    rate_limit_wait_seconds: float = 1.0
    failure_threshold: int = 5
    # 0 keeps the breaker open until the next UTC midnight.
    cooldown_seconds: float = 0.0


def _google_defaults() -> ProviderSettings:
    return ProviderSettings(
        base_url=DEFAULT_GOOGLE_BOOKS_URL, requests_per_second=5.0, requests_per_minute=100
    )


def _openlibrary_defaults() -> ProviderSettings:
    return ProviderSettings(
        base_url=DEFAULT_OPENLIBRARY_URL, requests_per_second=2.0, cooldown_seconds=300.0
    )


def _nyt_defaults() -> ProviderSettings:
    return ProviderSettings(
        base_url=DEFAULT_NYT_URL, requests_per_minute=10, cooldown_seconds=600.0
    )


_PROVIDER_DEFAULTS = {
    "google_books": _google_defaults,
    "openlibrary": _openlibrary_defaults,
    "nyt": _nyt_defaults,
}


class BookHubSettings(BaseModel):
    """Typed representation of the application configuration."""

    model_config = ConfigDict(extra="allow")

    debug: bool = False
    log_dir: Optional[str] = None

    cache_dir: str = str(DEFAULT_CACHE_DIR)
    cache_ttl_hours: float = DEFAULT_CACHE_TTL_HOURS
    disk_cache_enabled: bool = True

    database_url: Optional[SecretStr] = None
    database_cache_enabled: bool = True

    redis_url: Optional[SecretStr] = None
    redis_namespace: str = DEFAULT_REDIS_NAMESPACE
    redis_ttl_seconds: Optional[int] = 24 * 3600

    s3_bucket: Optional[str] = None
    s3_prefix: str = DEFAULT_S3_PREFIX
    s3_endpoint_url: Optional[str] = None
    s3_region: Optional[str] = None

    google_books_api_key: Optional[SecretStr] = None
    nyt_api_key: Optional[SecretStr] = None
    google_books: ProviderSettings = Field(default_factory=_google_defaults)
    openlibrary: ProviderSettings = Field(default_factory=_openlibrary_defaults)
    nyt: ProviderSettings = Field(default_factory=_nyt_defaults)
    external_fallback_enabled: bool = True

    tier_timeout_seconds: float = DEFAULT_TIER_TIMEOUT_SECONDS
    inflight_timeout_seconds: float = DEFAULT_INFLIGHT_TIMEOUT_SECONDS

    embedding_enabled: bool = False
    embedding_url: Optional[str] = None
    # "ollama" posts to /api/embeddings, "openai" to /v1/embeddings.
    embedding_provider: Literal["ollama", "openai"] = "ollama"
    embedding_api_key: Optional[SecretStr] = None
    embedding_model: str = "nomic-embed-text"
    embedding_dimension: int = Field(default=DEFAULT_EMBEDDING_DIMENSION, gt=0)

    recently_viewed_capacity: int = Field(default=DEFAULT_RECENTLY_VIEWED_CAPACITY, gt=0)
    search_result_limit: int = Field(default=DEFAULT_SEARCH_RESULT_LIMIT, gt=0)

    @field_validator("google_books", "openlibrary", "nyt", mode="before")
    @classmethod
    def _merge_provider_defaults(cls, value: Any, info: ValidationInfo) -> Any:
        if isinstance(value, dict):
            defaults = _PROVIDER_DEFAULTS[info.field_name]().model_dump()
            defaults.update(value)
            return defaults
        return value


class EnvironmentOverrides(BaseSettings):
    """Configuration overrides sourced from environment variables."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    debug: Optional[bool] = Field(default=None, validation_alias=AliasChoices("BOOKHUB_DEBUG"))
    log_dir: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("BOOKHUB_LOG_DIR")
    )
    cache_dir: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("BOOKHUB_CACHE_DIR")
    )
    cache_ttl_hours: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("BOOKHUB_CACHE_TTL_HOURS")
    )
    database_url: Optional[SecretStr] = Field(
        default=None, validation_alias=AliasChoices("DATABASE_URL", "BOOKHUB_DATABASE_URL")
    )
    redis_url: Optional[SecretStr] = Field(
        default=None, validation_alias=AliasChoices("REDIS_URL", "BOOKHUB_REDIS_URL")
    )
    s3_bucket: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("S3_BUCKET", "BOOKHUB_S3_BUCKET")
    )
    s3_prefix: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("BOOKHUB_S3_PREFIX")
    )
    s3_endpoint_url: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("S3_ENDPOINT_URL", "BOOKHUB_S3_ENDPOINT_URL")
    )
    s3_region: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("AWS_REGION", "BOOKHUB_S3_REGION")
    )
    google_books_api_key: Optional[SecretStr] = Field(
        default=None,
        validation_alias=AliasChoices("GOOGLE_BOOKS_API_KEY", "BOOKHUB_GOOGLE_BOOKS_API_KEY"),
    )
    nyt_api_key: Optional[SecretStr] = Field(
        default=None, validation_alias=AliasChoices("NYT_API_KEY", "BOOKHUB_NYT_API_KEY")
    )
    external_fallback_enabled: Optional[bool] = Field(
        default=None, validation_alias=AliasChoices("BOOKHUB_EXTERNAL_FALLBACK_ENABLED")
    )
    embedding_enabled: Optional[bool] = Field(
        default=None, validation_alias=AliasChoices("BOOKHUB_EMBEDDING_ENABLED")
    )
    embedding_url: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("EMBEDDING_SERVICE_URL", "BOOKHUB_EMBEDDING_URL")
    )
    embedding_api_key: Optional[SecretStr] = Field(
        default=None, validation_alias=AliasChoices("OPENAI_API_KEY", "BOOKHUB_EMBEDDING_API_KEY")
    )
    embedding_provider: Optional[Literal["ollama", "openai"]] = Field(
        default=None, validation_alias=AliasChoices("BOOKHUB_EMBEDDING_PROVIDER")
    )


def load_environment_overrides() -> Dict[str, Any]:
    """Return configuration overrides sourced from environment variables."""

    try:
        overrides = EnvironmentOverrides()
    except ValidationError as exc:
        logger.warning(
            "Invalid environment configuration detected; using defaults.",
            extra={"event": "config.env.validation_error", "error": str(exc)},
        )
        return {}
    return overrides.model_dump(exclude_none=True)


def apply_settings_updates(
    settings: BookHubSettings, updates: Dict[str, Any]
) -> BookHubSettings:
    """Return a copy of ``settings`` updated with ``updates`` if any values exist."""

    if not updates:
        return settings
    return settings.model_copy(update=updates)


def secret_value(secret: Optional[SecretStr]) -> Optional[str]:
    """Unwrap an optional secret, mapping blank values to ``None``."""

    if secret is None:
        return None
    value = secret.get_secret_value().strip()
    return value or None


__all__ = [
    "BookHubSettings",
    "EnvironmentOverrides",
    "ProviderSettings",
    "apply_settings_updates",
    "load_environment_overrides",
    "secret_value",
]
