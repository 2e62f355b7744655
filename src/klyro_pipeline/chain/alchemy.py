"""Chain-data provider client (Alchemy JSON-RPC, NFT API and ENS).

Each request draws the next API key from the credential rotator, so
concurrent fetches spread across every configured key.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from web3 import AsyncWeb3, Web3
from web3.providers import AsyncHTTPProvider

from klyro_pipeline.chain.networks import Network
from klyro_pipeline.fetch.retry import RateLimitedError
from klyro_pipeline.fetch.rotator import ALCHEMY_POOL, CredentialRotator

logger = logging.getLogger(__name__)

MAX_TRANSFERS_PER_PAGE = "0x3e8"
MAX_TRANSFER_PAGES = 50
RATE_LIMIT_STATUS_CODES = (429,)


class ChainProviderError(Exception):
    """Base exception for chain-data provider errors."""


class ChainRPCError(ChainProviderError):
    """Raised when the provider returns a JSON-RPC error object."""


def rpc_url(network: Network, api_key: str) -> str:
    return f"https://{network.value}.g.alchemy.com/v2/{api_key}"


def nft_url(network: Network, api_key: str) -> str:
    return f"https://{network.value}.g.alchemy.com/nft/v3/{api_key}"


def normalize_address(address: str) -> str:
    """Lowercase a hex address after validating it."""
    if not Web3.is_address(address.lower()):
        raise ValueError(f"Invalid address: {address}")
    return address.lower()


class AlchemyClient:
    """Thin async client for one network of the chain-data provider.

    Example:
        ```python
        client = AlchemyClient(Network.ETH_MAINNET, rotator=rotator, http=http)
        latest = await client.get_block_number()
        transfers = await client.get_asset_transfers(from_address="0x...")
        ```
    """

    def __init__(
        self,
        network: Network,
        *,
        rotator: CredentialRotator,
        http: httpx.AsyncClient,
    ) -> None:
        self._network = network
        self._rotator = rotator
        self._http = http
        self._request_id = 0

    @property
    def network(self) -> Network:
        return self._network

    async def _post(self, url: str, payload: dict[str, Any]) -> Any:
        try:
            response = await self._http.post(url, json=payload)
        except httpx.HTTPError as e:
            raise ChainProviderError(f"{self._network.value} request failed: {e}") from e

        if response.status_code in RATE_LIMIT_STATUS_CODES:
            raise RateLimitedError(f"{self._network.value} rate limited")
        if response.status_code >= 400:
            raise ChainProviderError(f"{self._network.value} returned HTTP {response.status_code}")
        return response.json()

    async def _rpc(self, method: str, params: list[Any]) -> Any:
        """Execute one JSON-RPC call and return its ``result``."""
        api_key = await self._rotator.next(ALCHEMY_POOL)
        self._request_id += 1
        body = await self._post(
            rpc_url(self._network, api_key),
            {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params},
        )
        if body.get("error"):
            error = body["error"]
            raise ChainRPCError(f"{method} failed on {self._network.value}: {error.get('message', error)}")
        return body.get("result")

    async def get_block_number(self) -> int:
        return int(await self._rpc("eth_blockNumber", []), 16)

    async def get_block(self, block: int | str) -> dict[str, Any]:
        """Fetch a block header by number (int or hex string)."""
        tag = hex(block) if isinstance(block, int) else block
        result = await self._rpc("eth_getBlockByNumber", [tag, False])
        if result is None:
            raise ChainRPCError(f"Block {tag} not found on {self._network.value}")
        return dict(result)

    async def get_transaction_receipt(self, tx_hash: str) -> dict[str, Any] | None:
        result = await self._rpc("eth_getTransactionReceipt", [tx_hash])
        return dict(result) if result else None

    async def get_asset_transfers(
        self,
        *,
        from_block: str = "0x0",
        to_block: str = "latest",
        from_address: str | None = None,
        to_address: str | None = None,
        categories: list[str] | None = None,
        with_metadata: bool = False,
    ) -> list[dict[str, Any]]:
        """Fetch every asset transfer matching the filter, following page keys."""
        params: dict[str, Any] = {
            "fromBlock": from_block,
            "toBlock": to_block,
            "category": categories or ["external"],
            "excludeZeroValue": False,
            "withMetadata": with_metadata,
            "maxCount": MAX_TRANSFERS_PER_PAGE,
        }
        if from_address:
            params["fromAddress"] = from_address
        if to_address:
            params["toAddress"] = to_address

        transfers: list[dict[str, Any]] = []
        for _ in range(MAX_TRANSFER_PAGES):
            result = await self._rpc("alchemy_getAssetTransfers", [params]) or {}
            transfers.extend(result.get("transfers") or [])
            page_key = result.get("pageKey")
            if not page_key:
                break
            params = {**params, "pageKey": page_key}
        else:
            logger.warning(
                "Transfer pagination stopped after %d pages on %s",
                MAX_TRANSFER_PAGES,
                self._network.value,
            )
        return transfers

    async def get_nfts_for_owner(
        self, owner: str, contract_addresses: list[str]
    ) -> list[dict[str, Any]]:
        """Fetch NFTs held by an owner, restricted to the given contracts."""
        api_key = await self._rotator.next(ALCHEMY_POOL)
        params: list[tuple[str, str]] = [("owner", owner), ("withMetadata", "true")]
        params.extend(("contractAddresses[]", addr) for addr in contract_addresses)

        nfts: list[dict[str, Any]] = []
        page_key: str | None = None
        while True:
            query = list(params)
            if page_key:
                query.append(("pageKey", page_key))
            try:
                response = await self._http.get(
                    f"{nft_url(self._network, api_key)}/getNFTsForOwner", params=query
                )
            except httpx.HTTPError as e:
                raise ChainProviderError(f"NFT lookup failed on {self._network.value}: {e}") from e
            if response.status_code in RATE_LIMIT_STATUS_CODES:
                raise RateLimitedError(f"{self._network.value} NFT API rate limited")
            if response.status_code >= 400:
                raise ChainProviderError(
                    f"NFT lookup on {self._network.value} returned HTTP {response.status_code}"
                )
            body = response.json()
            nfts.extend(body.get("ownedNfts") or [])
            page_key = body.get("pageKey")
            if not page_key:
                return nfts


class EnsResolver:
    """Resolves ``*.eth`` names through the provider's RPC endpoint."""

    def __init__(self, rotator: CredentialRotator) -> None:
        self._rotator = rotator

    async def resolve(self, name: str, network: Network = Network.ETH_MAINNET) -> str | None:
        """Resolve a name to a lowercase address, or None if it has no record."""
        api_key = await self._rotator.next(ALCHEMY_POOL)
        w3 = AsyncWeb3(AsyncHTTPProvider(rpc_url(network, api_key)))
        try:
            address = await w3.ens.address(name)  # type: ignore[union-attr]
        except Exception as e:
            logger.warning("ENS resolution for %s on %s failed: %s", name, network.value, e)
            return None
        return address.lower() if address else None

    async def resolve_any(self, name: str) -> str | None:
        """Try mainnet first, then base."""
        for network in (Network.ETH_MAINNET, Network.BASE_MAINNET):
            address = await self.resolve(name, network)
            if address:
                return address
        return None
