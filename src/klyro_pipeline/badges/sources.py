"""Independent badge sources: NFT packs and proof-of-attendance tokens."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

import httpx

from klyro_pipeline.badges.models import Badge, BadgeCredentials
from klyro_pipeline.badges.packs import (
    DEVFOLIO_WIN_MARKER,
    ETHGLOBAL_NETWORK,
    HACKER_PACK_IMAGE,
    IPFS_GATEWAY,
    IPFS_GATEWAY_REPLACEMENT,
    PACK_IMAGE_OVERRIDES,
    POAP_WIN_KEYWORDS,
    contract_index,
    devfolio_by_network,
)
from klyro_pipeline.chain.alchemy import AlchemyClient
from klyro_pipeline.chain.networks import Network
from klyro_pipeline.fetch.retry import RetryPolicy, retry_with_backoff

logger = logging.getLogger(__name__)

ClientFactory = Callable[[Network], AlchemyClient]

DEFAULT_POAP_URL = "https://public.compass.poap.tech/v1/graphql"
DEFAULT_POAP_PAGE_SIZE = 100
DEFAULT_POAP_MAX_PAGES = 3
DEFAULT_POAP_POLICY = RetryPolicy(max_attempts=3, initial_delay=1.0)

POAP_QUERY = """
query PaginatedPOAPsForCollector($order_by: [poaps_order_by!], $limit: Int!, $offset: Int!, $where: poaps_bool_exp!) {
  poaps(limit: $limit, offset: $offset, order_by: $order_by, where: $where) {
    id
    chain
    drop {
      id
      name
      image_url
      start_date
      end_date
    }
  }
}
"""


class BadgeSourceError(Exception):
    """Raised when a badge source cannot be queried."""


class BadgeSource(Protocol):
    name: str

    async def fetch(self, address: str) -> BadgeCredentials: ...


def _nft_image(nft: dict[str, Any]) -> str:
    image = nft.get("image") or {}
    return str(image.get("originalUrl") or image.get("cachedUrl") or "")


def _nft_contract(nft: dict[str, Any]) -> str:
    return str((nft.get("contract") or {}).get("address") or "").lower()


class EthGlobalPackSource:
    """Ownership of ETHGlobal pack NFTs.

    Community packs count as participation; finalist packs count as wins.
    """

    def __init__(
        self,
        client_factory: ClientFactory,
        *,
        packs: dict[str, str],
        wins: bool,
        name: str,
    ) -> None:
        self._client_factory = client_factory
        self._index = contract_index(packs)
        self._wins = wins
        self.name = name

    async def fetch(self, address: str) -> BadgeCredentials:
        client = self._client_factory(ETHGLOBAL_NETWORK)
        try:
            nfts = await client.get_nfts_for_owner(address, list(self._index))
        except Exception as e:
            raise BadgeSourceError(f"{self.name} lookup failed for {address}: {e}") from e

        result = BadgeCredentials()
        bucket = result.wins if self._wins else result.hacker
        for nft in nfts:
            pack_name = self._index.get(_nft_contract(nft))
            if pack_name is None:
                continue
            image = PACK_IMAGE_OVERRIDES.get(pack_name) or _nft_image(nft)
            if not image and nft.get("name") == "Hacker Pack":
                image = HACKER_PACK_IMAGE
            bucket.add(Badge(name=pack_name, image_url=image))
        return result


class DevfolioPackSource:
    """Devfolio hackathon NFTs across several networks.

    Each network is queried independently; an NFT whose name or description
    mentions a winner counts as a win.
    """

    name = "devfolio"

    def __init__(self, client_factory: ClientFactory) -> None:
        self._client_factory = client_factory
        self._packs = {network: contract_index(packs) for network, packs in devfolio_by_network().items()}

    async def _fetch_network(self, network: Network, address: str) -> BadgeCredentials:
        index = self._packs[network]
        nfts = await self._client_factory(network).get_nfts_for_owner(address, list(index))
        result = BadgeCredentials()
        for nft in nfts:
            pack_name = index.get(_nft_contract(nft))
            if pack_name is None:
                continue
            image = _nft_image(nft).replace(IPFS_GATEWAY, IPFS_GATEWAY_REPLACEMENT)
            text = f"{nft.get('name') or ''} {nft.get('description') or ''}".lower()
            bucket = result.wins if DEVFOLIO_WIN_MARKER in text else result.hacker
            bucket.add(Badge(name=pack_name, image_url=image))
        return result

    async def fetch(self, address: str) -> BadgeCredentials:
        networks = list(self._packs)
        results = await asyncio.gather(
            *(self._fetch_network(n, address) for n in networks),
            return_exceptions=True,
        )
        merged = BadgeCredentials()
        for network, result in zip(networks, results, strict=True):
            if isinstance(result, BaseException):
                logger.warning("Devfolio lookup on %s failed for %s: %s", network.value, address, result)
                continue
            merged = merged.merge(result)
        return merged


def categorize_poaps(poaps: list[dict[str, Any]]) -> BadgeCredentials:
    """Every POAP counts as experience; keyword matches also count as wins."""
    result = BadgeCredentials(total_poaps=len(poaps))
    for poap in poaps:
        drop = poap.get("drop") or {}
        name = str(drop.get("name") or "")
        badge = Badge(name=name, image_url=str(drop.get("image_url") or ""))
        lowered = name.lower()
        if any(keyword in lowered for keyword in POAP_WIN_KEYWORDS):
            result.wins.add(badge)
        result.hacker.add(badge)
    return result


class PoapSource:
    """Proof-of-attendance tokens from the POAP compass GraphQL API."""

    name = "poap"

    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        url: str = DEFAULT_POAP_URL,
        page_size: int = DEFAULT_POAP_PAGE_SIZE,
        max_pages: int = DEFAULT_POAP_MAX_PAGES,
        policy: RetryPolicy = DEFAULT_POAP_POLICY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._http = http
        self._url = url
        self._page_size = page_size
        self._max_pages = max_pages
        self._policy = policy
        self._sleep = sleep

    async def _fetch_page(self, address: str, offset: int) -> list[dict[str, Any]]:
        variables = {
            "where": {"collector_address": {"_eq": address.lower()}},
            "order_by": [{"id": "desc"}, {"minted_on": "desc"}],
            "limit": self._page_size,
            "offset": offset,
        }
        response = await self._http.post(
            self._url,
            json={"query": POAP_QUERY, "variables": variables},
            headers={
                "Origin": "https://collectors.poap.xyz",
                "Referer": "https://collectors.poap.xyz/",
            },
        )
        response.raise_for_status()
        body = response.json()
        if body.get("errors"):
            raise BadgeSourceError(f"POAP query errors: {body['errors']}")
        return list((body.get("data") or {}).get("poaps") or [])

    async def fetch_poaps(self, address: str) -> list[dict[str, Any]]:
        poaps: list[dict[str, Any]] = []
        for page in range(self._max_pages):
            try:
                batch = await retry_with_backoff(
                    lambda page=page: self._fetch_page(address, page * self._page_size),
                    operation_name=f"poap-page-{page}-{address}",
                    policy=self._policy,
                    retry_on=(httpx.HTTPError, BadgeSourceError, ValueError),
                    sleep=self._sleep,
                )
            except Exception as e:
                raise BadgeSourceError(f"POAP lookup failed for {address}: {e}") from e
            if not batch:
                break
            poaps.extend(batch)
        logger.info("Found %d POAPs for %s", len(poaps), address)
        return poaps

    async def fetch(self, address: str) -> BadgeCredentials:
        return categorize_poaps(await self.fetch_poaps(address))
