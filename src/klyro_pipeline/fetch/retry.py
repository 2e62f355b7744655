"""Retry with exponential backoff for flaky external calls."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 10
DEFAULT_INITIAL_DELAY = 1.0
BLOCK_MAX_ATTEMPTS = 4
DEFAULT_RATE_LIMIT_COOLDOWN = 10.0


class FallbackPolicy(str, Enum):
    """What happens once every attempt has failed."""

    RAISE = "raise"
    SYNTHETIC_TIMESTAMP = "synthetic_timestamp"


class RetryExhaustedError(Exception):
    """Raised when all retry attempts are exhausted."""

    def __init__(self, message: str, last_exception: BaseException | None = None) -> None:
        super().__init__(message)
        self.last_exception = last_exception


class RateLimitedError(Exception):
    """Raised by an operation that hit a 429/403 rate limit response.

    The retry loop waits a fixed cooldown instead of the backoff delay.
    """

    def __init__(self, message: str, cooldown: float | None = None) -> None:
        super().__init__(message)
        self.cooldown = cooldown


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt budget and delay schedule for one kind of call.

    The delay before attempt ``n + 1`` is ``initial_delay * 2**(n - 1)``.
    """

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    initial_delay: float = DEFAULT_INITIAL_DELAY
    fallback: FallbackPolicy = FallbackPolicy.RAISE
    rate_limit_cooldown: float = DEFAULT_RATE_LIMIT_COOLDOWN

    def delay_for(self, attempt: int) -> float:
        """Backoff delay after the given 1-based failed attempt."""
        return self.initial_delay * (2 ** (attempt - 1))


DEFAULT_RETRY_POLICY = RetryPolicy()
BLOCK_RETRY_POLICY = RetryPolicy(
    max_attempts=BLOCK_MAX_ATTEMPTS,
    fallback=FallbackPolicy.SYNTHETIC_TIMESTAMP,
)


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    *,
    operation_name: str,
    policy: RetryPolicy = DEFAULT_RETRY_POLICY,
    synthetic: Callable[[], T] | None = None,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run an async operation, retrying failures with exponential backoff.

    Args:
        operation: Zero-argument coroutine factory; called once per attempt.
        operation_name: Human-readable label used in log messages.
        policy: Attempt budget, delay schedule and exhaustion behaviour.
        synthetic: Producer of a stand-in value, used only when the policy
            falls back to a synthetic value after exhausting attempts.
        retry_on: Exception types that are retried. Anything else propagates.
        sleep: Awaitable sleep, injectable for tests.

    Returns:
        The operation's result, or the synthetic value on fallback.

    Raises:
        RetryExhaustedError: If every attempt failed and no fallback applies.
    """
    last_exception: BaseException | None = None

    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await operation()
        except retry_on as e:
            last_exception = e
            if isinstance(e, RateLimitedError):
                delay = e.cooldown if e.cooldown is not None else policy.rate_limit_cooldown
            else:
                delay = policy.delay_for(attempt)

            if attempt == policy.max_attempts:
                logger.warning(
                    "%s attempt %d/%d failed: %s. Giving up.",
                    operation_name,
                    attempt,
                    policy.max_attempts,
                    str(e),
                )
                break

            logger.warning(
                "%s attempt %d/%d failed: %s. Retrying in %.1f seconds...",
                operation_name,
                attempt,
                policy.max_attempts,
                str(e),
                delay,
            )
            await sleep(delay)

    if policy.fallback is FallbackPolicy.SYNTHETIC_TIMESTAMP and synthetic is not None:
        logger.warning(
            "%s exhausted %d attempts; using synthetic fallback value",
            operation_name,
            policy.max_attempts,
        )
        return synthetic()

    raise RetryExhaustedError(
        f"All {policy.max_attempts} attempts failed for {operation_name}",
        last_exception=last_exception,
    ) from last_exception
