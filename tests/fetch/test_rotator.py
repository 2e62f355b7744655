"""Tests for the credential rotator."""

from __future__ import annotations

import asyncio
from collections import Counter

import pytest

from klyro_pipeline.fetch.rotator import ALCHEMY_POOL, GITHUB_POOL, CredentialPoolError, CredentialRotator


class TestCredentialRotatorInit:
    def test_rejects_no_pools(self) -> None:
        with pytest.raises(CredentialPoolError):
            CredentialRotator({})

    def test_rejects_empty_pool(self) -> None:
        with pytest.raises(CredentialPoolError, match="alchemy"):
            CredentialRotator({GITHUB_POOL: ("t1",), ALCHEMY_POOL: ()})

    def test_pool_size(self) -> None:
        rotator = CredentialRotator({GITHUB_POOL: ("t1", "t2", "t3")})
        assert rotator.size(GITHUB_POOL) == 3
        assert rotator.pool_names == (GITHUB_POOL,)


class TestCredentialRotatorNext:
    async def test_round_robin_wraps(self) -> None:
        rotator = CredentialRotator({GITHUB_POOL: ("t1", "t2")})
        assert [await rotator.next(GITHUB_POOL) for _ in range(5)] == ["t1", "t2", "t1", "t2", "t1"]

    async def test_pools_rotate_independently(self) -> None:
        rotator = CredentialRotator({GITHUB_POOL: ("t1", "t2"), ALCHEMY_POOL: ("k1", "k2", "k3")})
        assert await rotator.next(GITHUB_POOL) == "t1"
        assert await rotator.next(ALCHEMY_POOL) == "k1"
        assert await rotator.next(ALCHEMY_POOL) == "k2"
        assert await rotator.next(GITHUB_POOL) == "t2"

    async def test_unknown_pool(self) -> None:
        rotator = CredentialRotator({GITHUB_POOL: ("t1",)})
        with pytest.raises(CredentialPoolError, match="Unknown"):
            await rotator.next("etherscan")

    async def test_concurrent_callers_share_pool_evenly(self) -> None:
        rotator = CredentialRotator({ALCHEMY_POOL: ("k1", "k2", "k3", "k4")})

        results = await asyncio.gather(*(rotator.next(ALCHEMY_POOL) for _ in range(40)))

        assert Counter(results) == {"k1": 10, "k2": 10, "k3": 10, "k4": 10}
