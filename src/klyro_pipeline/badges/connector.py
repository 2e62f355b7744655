"""Credential-Badge Connector: merge every badge source for a set of addresses."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from klyro_pipeline.badges.models import BadgeCredentials
from klyro_pipeline.badges.packs import COMMUNITY_PACKS, FINALIST_PACKS
from klyro_pipeline.badges.sources import (
    BadgeSource,
    ClientFactory,
    DevfolioPackSource,
    EthGlobalPackSource,
    PoapSource,
)

logger = logging.getLogger(__name__)


class BadgeConnector:
    """Runs badge sources in parallel and merges what they find.

    A source that fails contributes nothing; it never aborts the merge.
    """

    def __init__(self, sources: Sequence[BadgeSource]) -> None:
        self._sources = list(sources)

    @classmethod
    def default(cls, client_factory: ClientFactory, poap: PoapSource) -> BadgeConnector:
        return cls(
            [
                EthGlobalPackSource(client_factory, packs=COMMUNITY_PACKS, wins=False, name="ethglobal-community"),
                EthGlobalPackSource(client_factory, packs=FINALIST_PACKS, wins=True, name="ethglobal-finalist"),
                poap,
                DevfolioPackSource(client_factory),
            ]
        )

    async def get_badge_credentials(self, address: str) -> BadgeCredentials:
        results = await asyncio.gather(
            *(source.fetch(address) for source in self._sources),
            return_exceptions=True,
        )
        merged = BadgeCredentials()
        for source, result in zip(self._sources, results, strict=True):
            if isinstance(result, BaseException):
                logger.warning("Badge source %s failed for %s: %s", source.name, address, result)
                continue
            merged = merged.merge(result)
        return merged

    async def collect(self, addresses: Sequence[str]) -> BadgeCredentials:
        """Merge badge credentials across all of a user's addresses."""
        per_address = await asyncio.gather(*(self.get_badge_credentials(a) for a in addresses))
        merged = BadgeCredentials()
        for result in per_address:
            merged = merged.merge(result)
        logger.info(
            "Badge summary: %d wins, %d hacker experience, %d POAPs",
            merged.wins.count,
            merged.hacker.count,
            merged.total_poaps,
        )
        return merged
