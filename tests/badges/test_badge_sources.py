"""Tests for the individual badge sources."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from klyro_pipeline.badges.packs import (
    COMMUNITY_PACKS,
    DEVFOLIO_PACKS,
    FINALIST_PACKS,
    HACKER_PACK_IMAGE,
    contract_index,
    devfolio_by_network,
)
from klyro_pipeline.badges.sources import (
    BadgeSourceError,
    DevfolioPackSource,
    EthGlobalPackSource,
    PoapSource,
    categorize_poaps,
)
from klyro_pipeline.chain.networks import Network
from klyro_pipeline.fetch.retry import RetryPolicy

ADDRESS = "0x1111111111111111111111111111111111111111"


def _nft(contract: str, name: str = "", *, image: str = "", description: str = "") -> dict:
    return {
        "contract": {"address": contract},
        "name": name,
        "description": description,
        "image": {"originalUrl": image} if image else {},
    }


def _factory(nfts_by_network: dict[Network, object]) -> MagicMock:
    clients: dict[Network, MagicMock] = {}
    for network, nfts in nfts_by_network.items():
        client = MagicMock()
        if isinstance(nfts, Exception):
            client.get_nfts_for_owner = AsyncMock(side_effect=nfts)
        else:
            client.get_nfts_for_owner = AsyncMock(return_value=nfts)
        clients[network] = client
    factory = MagicMock(side_effect=lambda network: clients[network])
    return factory


class TestPacks:
    def test_contract_index_is_lowercase(self) -> None:
        index = contract_index(COMMUNITY_PACKS)
        assert index["0x37c6fe4049c95f80e18c9cddaa8481742456520b"] == "OG Pack"
        assert all(address == address.lower() for address in index)

    def test_malformed_devfolio_address_is_skipped(self) -> None:
        base_packs = devfolio_by_network()[Network.BASE_MAINNET]
        assert "EthIndia 2024" in base_packs
        assert "EthIndia 2024" not in contract_index(base_packs).values()

    def test_devfolio_grouped_by_network(self) -> None:
        grouped = devfolio_by_network()
        assert sum(len(packs) for packs in grouped.values()) == len(DEVFOLIO_PACKS)
        assert set(grouped) == {Network.BASE_MAINNET, Network.ARB_MAINNET, Network.POLYGON_MAINNET}


class TestEthGlobalPackSource:
    async def test_community_packs_count_as_hacker(self) -> None:
        factory = _factory(
            {
                Network.OPT_MAINNET: [
                    _nft(COMMUNITY_PACKS["OG Pack"].upper().replace("0X", "0x"), "OG Pack", image="https://img/og"),
                    _nft(COMMUNITY_PACKS["Hacker Pack"], "Hacker Pack"),
                    _nft("0x9999999999999999999999999999999999999999", "Unrelated"),
                ]
            }
        )
        source = EthGlobalPackSource(factory, packs=COMMUNITY_PACKS, wins=False, name="community")

        result = await source.fetch(ADDRESS)

        assert result.hacker.count == 2
        assert result.wins.count == 0
        images = {badge.name: badge.image_url for badge in result.hacker.items}
        assert images["OG Pack"] == "https://img/og"
        assert images["Hacker Pack"] == HACKER_PACK_IMAGE
        factory.assert_called_with(Network.OPT_MAINNET)

    async def test_finalist_packs_count_as_wins(self) -> None:
        factory = _factory(
            {Network.OPT_MAINNET: [_nft(FINALIST_PACKS["ETHGlobal Singapore 2025 Finalist"], "x")]}
        )
        source = EthGlobalPackSource(factory, packs=FINALIST_PACKS, wins=True, name="finalist")

        result = await source.fetch(ADDRESS)

        assert result.wins.count == 1
        assert result.wins.items[0].image_url.startswith("https://ethglobal.b-cdn.net/")

    async def test_provider_failure_raises_source_error(self) -> None:
        factory = _factory({Network.OPT_MAINNET: RuntimeError("boom")})
        source = EthGlobalPackSource(factory, packs=FINALIST_PACKS, wins=True, name="finalist")

        with pytest.raises(BadgeSourceError, match="finalist"):
            await source.fetch(ADDRESS)


class TestDevfolioPackSource:
    async def test_winner_marker_and_gateway_rewrite(self) -> None:
        eth_sf = DEVFOLIO_PACKS["EthSF Hackathon"][1]
        eth_denver = DEVFOLIO_PACKS["EthDenver 2024"][1]
        factory = _factory(
            {
                Network.BASE_MAINNET: [
                    _nft(eth_sf, "EthSF", description="Track Winner", image="https://ipfs.io/ipfs/abc"),
                ],
                Network.ARB_MAINNET: [_nft(eth_denver, "EthDenver Hacker")],
                Network.POLYGON_MAINNET: [],
            }
        )

        result = await DevfolioPackSource(factory).fetch(ADDRESS)

        assert result.wins.count == 1
        assert result.wins.items[0].image_url == "https://gateway.pinata.cloud/ipfs/abc"
        assert result.hacker.count == 1
        assert result.hacker.items[0].name == "EthDenver 2024"

    async def test_failed_network_is_skipped(self) -> None:
        eth_sf = DEVFOLIO_PACKS["EthSF Hackathon"][1]
        factory = _factory(
            {
                Network.BASE_MAINNET: [_nft(eth_sf, "EthSF")],
                Network.ARB_MAINNET: RuntimeError("arb down"),
                Network.POLYGON_MAINNET: [],
            }
        )

        result = await DevfolioPackSource(factory).fetch(ADDRESS)

        assert result.hacker.count == 1
        assert result.wins.count == 0


def _poap(name: str, image: str = "") -> dict:
    return {"id": name, "chain": "xdai", "drop": {"name": name, "image_url": image}}


class TestCategorizePoaps:
    def test_every_poap_is_experience(self) -> None:
        result = categorize_poaps(
            [
                _poap("ETHGlobal Bangkok Finalist"),
                _poap("Devcon 7 Attendee"),
                _poap("Hackathon 1st Place"),
            ]
        )

        assert result.total_poaps == 3
        assert result.hacker.count == 3
        assert [b.name for b in result.wins.items] == ["ETHGlobal Bangkok Finalist", "Hackathon 1st Place"]

    def test_keyword_substring_matches(self) -> None:
        # "windsurf" contains "win"
        result = categorize_poaps([_poap("Windsurf Meetup")])
        assert result.wins.count == 1

    def test_empty(self) -> None:
        result = categorize_poaps([])
        assert result.total_poaps == 0
        assert result.total_badges == 0


class TestPoapSource:
    @staticmethod
    def _client(pages: dict[int, list[dict]], seen: list[dict]) -> httpx.AsyncClient:
        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            seen.append(body["variables"])
            return httpx.Response(200, json={"data": {"poaps": pages.get(body["variables"]["offset"], [])}})

        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    async def test_paginates_until_empty_page(self) -> None:
        seen: list[dict] = []
        pages = {0: [_poap("a"), _poap("b")], 2: [_poap("c winner")]}
        async with self._client(pages, seen) as http:
            source = PoapSource(http, page_size=2, max_pages=5, sleep=AsyncMock())
            result = await source.fetch(ADDRESS.upper().replace("0X", "0x"))

        assert result.total_poaps == 3
        assert result.wins.count == 1
        assert [v["offset"] for v in seen] == [0, 2, 4]
        assert seen[0]["where"] == {"collector_address": {"_eq": ADDRESS}}

    async def test_stops_at_max_pages(self) -> None:
        seen: list[dict] = []
        pages = {0: [_poap("a")], 1: [_poap("b")], 2: [_poap("c")]}
        async with self._client(pages, seen) as http:
            source = PoapSource(http, page_size=1, max_pages=2, sleep=AsyncMock())
            poaps = await source.fetch_poaps(ADDRESS)

        assert len(poaps) == 2
        assert len(seen) == 2

    async def test_exhausted_retries_raise(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(500)

        sleep = AsyncMock()
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            source = PoapSource(http, policy=RetryPolicy(max_attempts=3, initial_delay=0.1), sleep=sleep)
            with pytest.raises(BadgeSourceError):
                await source.fetch(ADDRESS)

        assert calls == 3
        assert sleep.await_count == 2

    async def test_graphql_errors_are_retried(self) -> None:
        responses = iter(
            [
                httpx.Response(200, json={"errors": [{"message": "busy"}]}),
                httpx.Response(200, json={"data": {"poaps": [_poap("a")]}}),
                httpx.Response(200, json={"data": {"poaps": []}}),
            ]
        )
        async with httpx.AsyncClient(transport=httpx.MockTransport(lambda r: next(responses))) as http:
            source = PoapSource(http, page_size=1, sleep=AsyncMock())
            poaps = await source.fetch_poaps(ADDRESS)

        assert len(poaps) == 1
