"""Round-robin distribution of API credentials across callers."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence

logger = logging.getLogger(__name__)

GITHUB_POOL = "github"
ALCHEMY_POOL = "alchemy"


class CredentialPoolError(Exception):
    """Raised when a credential pool is missing or empty."""


class CredentialRotator:
    """Hands out credentials from named pools in strict round-robin order.

    One cursor is kept per pool. Access to the cursors is serialized so that
    concurrent callers never observe the same index twice and never skip one.
    State lives for the lifetime of the process only.

    Example:
        ```python
        rotator = CredentialRotator({"github": ("t1", "t2"), "alchemy": ("k1",)})
        token = await rotator.next("github")  # "t1"
        token = await rotator.next("github")  # "t2"
        token = await rotator.next("github")  # "t1"
        ```
    """

    def __init__(self, pools: Mapping[str, Sequence[str]]) -> None:
        """Initialize the rotator.

        Args:
            pools: Mapping of pool name to its ordered credentials.

        Raises:
            CredentialPoolError: If no pools are given or any pool is empty.
        """
        if not pools:
            raise CredentialPoolError("At least one credential pool is required")
        empty = [name for name, creds in pools.items() if not creds]
        if empty:
            raise CredentialPoolError(f"Credential pools are empty: {', '.join(sorted(empty))}")

        self._pools: dict[str, tuple[str, ...]] = {name: tuple(creds) for name, creds in pools.items()}
        self._cursors: dict[str, int] = {name: 0 for name in self._pools}
        self._lock = asyncio.Lock()

    @property
    def pool_names(self) -> tuple[str, ...]:
        return tuple(self._pools)

    def size(self, pool: str) -> int:
        """Number of credentials in a pool."""
        return len(self._get_pool(pool))

    def _get_pool(self, pool: str) -> tuple[str, ...]:
        try:
            return self._pools[pool]
        except KeyError:
            raise CredentialPoolError(f"Unknown credential pool: {pool}") from None

    async def next(self, pool: str) -> str:
        """Return the next credential of a pool and advance its cursor."""
        creds = self._get_pool(pool)
        async with self._lock:
            index = self._cursors[pool]
            self._cursors[pool] = (index + 1) % len(creds)
        logger.debug("Using %s credential %d/%d", pool, index + 1, len(creds))
        return creds[index]
