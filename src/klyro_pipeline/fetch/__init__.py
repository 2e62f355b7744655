"""Fetch layer - credential rotation and resilient retry for external calls."""

from klyro_pipeline.fetch.retry import (
    BLOCK_RETRY_POLICY,
    DEFAULT_RETRY_POLICY,
    FallbackPolicy,
    RateLimitedError,
    RetryExhaustedError,
    RetryPolicy,
    retry_with_backoff,
)
from klyro_pipeline.fetch.rotator import (
    ALCHEMY_POOL,
    GITHUB_POOL,
    CredentialPoolError,
    CredentialRotator,
)

__all__ = [
    "ALCHEMY_POOL",
    "BLOCK_RETRY_POLICY",
    "DEFAULT_RETRY_POLICY",
    "GITHUB_POOL",
    "CredentialPoolError",
    "CredentialRotator",
    "FallbackPolicy",
    "RateLimitedError",
    "RetryExhaustedError",
    "RetryPolicy",
    "retry_with_backoff",
]
