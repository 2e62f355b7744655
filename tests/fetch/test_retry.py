"""Tests for retry with exponential backoff."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from klyro_pipeline.fetch.retry import (
    BLOCK_RETRY_POLICY,
    FallbackPolicy,
    RateLimitedError,
    RetryExhaustedError,
    RetryPolicy,
    retry_with_backoff,
)


@pytest.fixture
def sleep() -> AsyncMock:
    return AsyncMock()


class TestRetryPolicy:
    def test_delay_doubles(self) -> None:
        policy = RetryPolicy(initial_delay=1.0)
        assert [policy.delay_for(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 8.0]

    def test_block_policy_defaults(self) -> None:
        assert BLOCK_RETRY_POLICY.max_attempts == 4
        assert BLOCK_RETRY_POLICY.fallback is FallbackPolicy.SYNTHETIC_TIMESTAMP


class TestRetryWithBackoff:
    async def test_first_success_does_not_sleep(self, sleep: AsyncMock) -> None:
        operation = AsyncMock(return_value=42)

        result = await retry_with_backoff(operation, operation_name="op", sleep=sleep)

        assert result == 42
        operation.assert_awaited_once()
        sleep.assert_not_awaited()

    async def test_succeeds_after_failures(self, sleep: AsyncMock) -> None:
        operation = AsyncMock(side_effect=[ValueError("a"), ValueError("b"), "ok"])

        result = await retry_with_backoff(
            operation,
            operation_name="op",
            policy=RetryPolicy(max_attempts=5, initial_delay=0.5),
            sleep=sleep,
        )

        assert result == "ok"
        assert [c.args[0] for c in sleep.await_args_list] == [0.5, 1.0]

    async def test_exhaustion_raises_with_last_exception(self, sleep: AsyncMock) -> None:
        last = ValueError("third")
        operation = AsyncMock(side_effect=[ValueError("1"), ValueError("2"), last])

        with pytest.raises(RetryExhaustedError) as exc_info:
            await retry_with_backoff(
                operation, operation_name="op", policy=RetryPolicy(max_attempts=3), sleep=sleep
            )

        assert exc_info.value.last_exception is last
        assert exc_info.value.__cause__ is last
        assert operation.await_count == 3
        # No sleep after the final attempt.
        assert sleep.await_count == 2

    async def test_synthetic_fallback_after_four_block_failures(self, sleep: AsyncMock) -> None:
        operation = AsyncMock(side_effect=RuntimeError("block unavailable"))

        result = await retry_with_backoff(
            operation,
            operation_name="block",
            policy=BLOCK_RETRY_POLICY,
            synthetic=lambda: "synthetic",
            sleep=sleep,
        )

        assert result == "synthetic"
        assert operation.await_count == 4

    async def test_raise_policy_ignores_synthetic(self, sleep: AsyncMock) -> None:
        operation = AsyncMock(side_effect=RuntimeError("boom"))

        with pytest.raises(RetryExhaustedError):
            await retry_with_backoff(
                operation,
                operation_name="block",
                policy=RetryPolicy(max_attempts=2, fallback=FallbackPolicy.RAISE),
                synthetic=lambda: "synthetic",
                sleep=sleep,
            )

    async def test_rate_limit_uses_cooldown(self, sleep: AsyncMock) -> None:
        operation = AsyncMock(side_effect=[RateLimitedError("429", cooldown=7.0), "ok"])

        await retry_with_backoff(operation, operation_name="op", sleep=sleep)

        sleep.assert_awaited_once_with(7.0)

    async def test_rate_limit_without_cooldown_uses_policy_default(self, sleep: AsyncMock) -> None:
        operation = AsyncMock(side_effect=[RateLimitedError("429"), "ok"])

        await retry_with_backoff(
            operation, operation_name="op", policy=RetryPolicy(rate_limit_cooldown=3.0), sleep=sleep
        )

        sleep.assert_awaited_once_with(3.0)

    async def test_non_retryable_propagates(self, sleep: AsyncMock) -> None:
        operation = AsyncMock(side_effect=KeyError("missing"))

        with pytest.raises(KeyError):
            await retry_with_backoff(
                operation, operation_name="op", retry_on=(ValueError,), sleep=sleep
            )
        operation.assert_awaited_once()
