"""Tests for environment-driven settings."""

import logging

import pytest
from pydantic import ValidationError

from klyro_pipeline.config import (
    CredentialSettings,
    DatabaseSettings,
    IssuerSettings,
    RedisSettings,
    Settings,
    clear_settings_cache,
    get_settings,
)


@pytest.fixture
def env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    """Minimal required environment, isolated from any local .env file."""
    monkeypatch.chdir("/")
    monkeypatch.setenv("DATABASE_URL", "postgresql+asyncpg://klyro:s3cret@db:5432/klyro")
    monkeypatch.setenv("GITHUB_ACCESS_TOKEN", "ghp_one, ghp_two ,")
    monkeypatch.setenv("ALCHEMY_API_KEY", "alchemy-key")
    for name in ("AIR_ISSUER_DID", "AIR_ISSUER_API_KEY", "AIR_CREDENTIAL_ID", "LOG_LEVEL", "REDIS_URL"):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestSettings:
    def test_defaults(self, env: pytest.MonkeyPatch) -> None:
        settings = Settings()

        assert settings.credentials.github_tokens == ("ghp_one", "ghp_two")
        assert settings.credentials.alchemy_keys == ("alchemy-key",)
        assert settings.redis.url == "redis://localhost:6379"
        assert settings.fetch.max_attempts == 10
        assert settings.fetch.block_max_attempts == 4
        assert settings.fetch.block_fallback == "synthetic_timestamp"
        assert settings.queue.name == "fbi-processing"
        assert settings.ingestion.staleness_hours == 24.0
        assert settings.issuer.enabled is False
        assert settings.get_logging_level() == logging.INFO

    def test_overrides(self, env: pytest.MonkeyPatch) -> None:
        env.setenv("QUEUE_CONCURRENCY", "2")
        env.setenv("FETCH_BLOCK_FALLBACK", "raise")
        env.setenv("LOG_LEVEL", "DEBUG")

        settings = Settings()

        assert settings.queue.concurrency == 2
        assert settings.fetch.block_fallback == "raise"
        assert settings.get_logging_level() == logging.DEBUG

    def test_redacted_summary(self, env: pytest.MonkeyPatch) -> None:
        summary = Settings().redacted_summary()

        assert summary["database_url"] == "postgresql+asyncpg://klyro:***@db:5432/klyro"
        assert summary["credentials"] == {"github_tokens": "(2 configured)", "alchemy_keys": "(1 configured)"}
        assert "s3cret" not in str(summary)

    def test_cached(self, env: pytest.MonkeyPatch) -> None:
        clear_settings_cache()
        try:
            assert get_settings() is get_settings()
        finally:
            clear_settings_cache()


class TestValidation:
    def test_empty_token_pool(self, env: pytest.MonkeyPatch) -> None:
        env.setenv("GITHUB_ACCESS_TOKEN", " , ")
        with pytest.raises(ValidationError):
            CredentialSettings()

    def test_missing_token_pool(self, env: pytest.MonkeyPatch) -> None:
        env.delenv("ALCHEMY_API_KEY")
        with pytest.raises(ValidationError):
            CredentialSettings()

    def test_database_url_must_be_postgres(self, env: pytest.MonkeyPatch) -> None:
        env.setenv("DATABASE_URL", "mysql://db/klyro")
        with pytest.raises(ValidationError):
            DatabaseSettings()

    def test_redis_url_scheme(self, env: pytest.MonkeyPatch) -> None:
        env.setenv("REDIS_URL", "http://localhost:6379")
        with pytest.raises(ValidationError):
            RedisSettings()

    def test_issuer_enabled_needs_all_fields(self, env: pytest.MonkeyPatch) -> None:
        env.setenv("AIR_ISSUER_DID", "did:air:issuer")
        env.setenv("AIR_ISSUER_API_KEY", "key")
        assert IssuerSettings().enabled is False

        env.setenv("AIR_CREDENTIAL_ID", "cred")
        assert IssuerSettings().enabled is True
