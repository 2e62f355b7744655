"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
Klyro ingestion pipeline, loading and validating environment variables
at startup.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Annotated, Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"


def _split_pool(value: object, *, name: str) -> tuple[str, ...]:
    """Parse a comma-separated credential pool into a non-empty tuple."""
    if value is None:
        raise ValueError(f"{name} must be set")
    if isinstance(value, str):
        parts = tuple(p.strip() for p in value.split(",") if p.strip())
    elif isinstance(value, (list, tuple)):
        parts = tuple(str(x).strip() for x in value if str(x).strip())
    else:
        raise TypeError(f"Invalid {name} type")
    if not parts:
        raise ValueError(f"{name} must contain at least one credential")
    return parts


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        alias="DATABASE_URL",
        description="PostgreSQL connection string",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith(("postgresql://", "postgresql+asyncpg://")):
            raise ValueError("DATABASE_URL must be a PostgreSQL connection string")
        return v


class RedisSettings(BaseSettings):
    """Redis connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        default="redis://localhost:6379",
        alias="REDIS_URL",
        description="Redis connection string",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate Redis URL format."""
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v


class CredentialSettings(BaseSettings):
    """API token pools rotated across callers."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    github_tokens: Annotated[tuple[str, ...], NoDecode] = Field(
        alias="GITHUB_ACCESS_TOKEN",
        description="GitHub access tokens (comma-separated)",
    )
    alchemy_keys: Annotated[tuple[str, ...], NoDecode] = Field(
        alias="ALCHEMY_API_KEY",
        description="Alchemy API keys (comma-separated)",
    )

    @field_validator("github_tokens", mode="before")
    @classmethod
    def _parse_github_tokens(cls, v: object) -> tuple[str, ...]:
        return _split_pool(v, name="GITHUB_ACCESS_TOKEN")

    @field_validator("alchemy_keys", mode="before")
    @classmethod
    def _parse_alchemy_keys(cls, v: object) -> tuple[str, ...]:
        return _split_pool(v, name="ALCHEMY_API_KEY")


class PriceFeedSettings(BaseSettings):
    """Spot price feed settings."""

    model_config = SettingsConfigDict(env_prefix="PRICE_", extra="ignore")

    api_key: SecretStr | None = Field(
        default=None,
        alias="CRYPTO_COMPARE_API_KEY",
        description="CryptoCompare API key",
    )
    url: str = Field(
        default="https://min-api.cryptocompare.com/data/price",
        alias="PRICE_FEED_URL",
        description="Spot price endpoint",
    )
    cache_ttl_seconds: int = Field(
        default=1800,
        alias="PRICE_CACHE_TTL_SECONDS",
        ge=1,
        le=7 * 24 * 3600,
        description="How long a cached spot price is considered fresh",
    )


class FetchSettings(BaseSettings):
    """Retry and backoff policy for external calls."""

    model_config = SettingsConfigDict(env_prefix="FETCH_", extra="ignore")

    max_attempts: int = Field(
        default=10,
        alias="FETCH_MAX_ATTEMPTS",
        ge=1,
        le=50,
        description="Attempts for general external calls",
    )
    initial_delay_seconds: float = Field(
        default=1.0,
        alias="FETCH_INITIAL_DELAY_SECONDS",
        ge=0.0,
        le=60.0,
        description="Initial backoff delay (doubles on every attempt)",
    )
    block_max_attempts: int = Field(
        default=4,
        alias="FETCH_BLOCK_MAX_ATTEMPTS",
        ge=1,
        le=50,
        description="Attempts for single-block lookups",
    )
    block_fallback: Literal["synthetic_timestamp", "raise"] = Field(
        default="synthetic_timestamp",
        alias="FETCH_BLOCK_FALLBACK",
        description="What a block lookup does once its attempts are exhausted",
    )
    rate_limit_cooldown_seconds: float = Field(
        default=10.0,
        alias="FETCH_RATE_LIMIT_COOLDOWN_SECONDS",
        ge=0.0,
        le=600.0,
        description="Fixed cooldown after an HTTP 429/403 response",
    )
    request_timeout_seconds: float = Field(
        default=30.0,
        alias="FETCH_REQUEST_TIMEOUT_SECONDS",
        ge=1.0,
        le=600.0,
        description="Per-request HTTP timeout",
    )


class GitHubSettings(BaseSettings):
    """GitHub API settings."""

    model_config = SettingsConfigDict(env_prefix="GITHUB_", extra="ignore")

    api_url: str = Field(
        default="https://api.github.com",
        alias="GITHUB_API_URL",
        description="GitHub REST API base URL",
    )
    graphql_url: str = Field(
        default="https://api.github.com/graphql",
        alias="GITHUB_GRAPHQL_URL",
        description="GitHub GraphQL endpoint",
    )
    page_delay_seconds: float = Field(
        default=1.0,
        alias="GITHUB_PAGE_DELAY_SECONDS",
        ge=0.0,
        le=60.0,
        description="Pause between repository pages",
    )
    contribution_years: int = Field(
        default=4,
        alias="GITHUB_CONTRIBUTION_YEARS",
        ge=1,
        le=20,
        description="Number of one-year contribution windows to merge",
    )

    @field_validator("api_url", "graphql_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("GitHub URL must be an HTTP(S) endpoint")
        return v.rstrip("/")


class PoapSettings(BaseSettings):
    """Proof-of-attendance token API settings."""

    model_config = SettingsConfigDict(env_prefix="POAP_", extra="ignore")

    graphql_url: str = Field(
        default="https://public.compass.poap.tech/v1/graphql",
        alias="POAP_GRAPHQL_URL",
        description="POAP compass GraphQL endpoint",
    )
    page_size: int = Field(
        default=100,
        alias="POAP_PAGE_SIZE",
        ge=1,
        le=1000,
        description="POAPs fetched per page",
    )
    max_pages: int = Field(
        default=3,
        alias="POAP_MAX_PAGES",
        ge=1,
        le=100,
        description="Maximum pages fetched per address",
    )
    max_attempts: int = Field(
        default=3,
        alias="POAP_MAX_ATTEMPTS",
        ge=1,
        le=20,
        description="Attempts per page request",
    )


class QueueSettings(BaseSettings):
    """Durable work queue settings."""

    model_config = SettingsConfigDict(env_prefix="QUEUE_", extra="ignore")

    name: str = Field(
        default="fbi-processing",
        alias="QUEUE_NAME",
        description="Queue key prefix in Redis",
    )
    concurrency: int = Field(
        default=5,
        alias="QUEUE_CONCURRENCY",
        ge=1,
        le=100,
        description="Concurrent job slots per worker",
    )
    max_attempts: int = Field(
        default=6,
        alias="QUEUE_MAX_ATTEMPTS",
        ge=1,
        le=50,
        description="Delivery attempts before a job is moved to the failed list",
    )
    backoff_seconds: float = Field(
        default=10.0,
        alias="QUEUE_BACKOFF_SECONDS",
        ge=0.0,
        le=3600.0,
        description="Base delay for exponential job retry backoff",
    )
    poll_timeout_seconds: int = Field(
        default=1,
        alias="QUEUE_POLL_TIMEOUT_SECONDS",
        ge=1,
        le=60,
        description="Blocking pop timeout for idle consumers",
    )


class IngestionSettings(BaseSettings):
    """Orchestration settings."""

    model_config = SettingsConfigDict(env_prefix="INGESTION_", extra="ignore")

    staleness_hours: float = Field(
        default=24.0,
        alias="INGESTION_STALENESS_HOURS",
        ge=0.0,
        le=24 * 365,
        description="Completed data older than this is re-fetched",
    )


class IssuerSettings(BaseSettings):
    """External credential issuer settings."""

    model_config = SettingsConfigDict(env_prefix="AIR_", extra="ignore")

    api_url: str = Field(
        default="https://credential.api.sandbox.air3.com",
        alias="AIR_ISSUER_API_URL",
        description="Issuer API base URL",
    )
    issuer_did: str | None = Field(
        default=None,
        alias="AIR_ISSUER_DID",
        description="Issuer DID",
    )
    api_key: SecretStr | None = Field(
        default=None,
        alias="AIR_ISSUER_API_KEY",
        description="Issuer API key",
    )
    credential_id: str | None = Field(
        default=None,
        alias="AIR_CREDENTIAL_ID",
        description="Credential schema/program id",
    )

    @property
    def enabled(self) -> bool:
        """Check if credential issuance is configured."""
        return bool(self.issuer_did and self.api_key and self.credential_id)


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from klyro_pipeline.config import get_settings

        settings = get_settings()
        print(settings.database.url)
        print(settings.queue.concurrency)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # Each nested BaseSettings is given the same env_file so it reads `.env` too.
    database: DatabaseSettings = Field(
        default_factory=lambda: DatabaseSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    redis: RedisSettings = Field(
        default_factory=lambda: RedisSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    credentials: CredentialSettings = Field(
        default_factory=lambda: CredentialSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    price_feed: PriceFeedSettings = Field(
        default_factory=lambda: PriceFeedSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    fetch: FetchSettings = Field(
        default_factory=lambda: FetchSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    github: GitHubSettings = Field(
        default_factory=lambda: GitHubSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    poap: PoapSettings = Field(
        default_factory=lambda: PoapSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    queue: QueueSettings = Field(
        default_factory=lambda: QueueSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    ingestion: IngestionSettings = Field(
        default_factory=lambda: IngestionSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    issuer: IssuerSettings = Field(
        default_factory=lambda: IssuerSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "database_url": self._redact_url(self.database.url),
            "redis_url": self._redact_url(self.redis.url),
            "credentials": {
                "github_tokens": f"({len(self.credentials.github_tokens)} configured)",
                "alchemy_keys": f"({len(self.credentials.alchemy_keys)} configured)",
            },
            "price_feed": {
                "url": self.price_feed.url,
                "api_key": "(set)" if self.price_feed.api_key else "(not set)",
                "cache_ttl_seconds": str(self.price_feed.cache_ttl_seconds),
            },
            "fetch": {
                "max_attempts": str(self.fetch.max_attempts),
                "block_max_attempts": str(self.fetch.block_max_attempts),
                "block_fallback": self.fetch.block_fallback,
            },
            "queue": {
                "name": self.queue.name,
                "concurrency": str(self.queue.concurrency),
                "max_attempts": str(self.queue.max_attempts),
            },
            "staleness_hours": str(self.ingestion.staleness_hours),
            "issuer_enabled": str(self.issuer.enabled),
            "log_level": self.log_level,
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Uses LRU cache to ensure settings are loaded only once and
    reused across the application.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If required environment variables are missing
            or have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
