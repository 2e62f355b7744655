"""EVM networks, transfer categories and the default TVL allow-list."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class Network(str, Enum):
    """Supported networks, valued by their chain-data provider host prefix."""

    ETH_MAINNET = "eth-mainnet"
    ETH_SEPOLIA = "eth-sepolia"
    BASE_MAINNET = "base-mainnet"
    BASE_SEPOLIA = "base-sepolia"
    ARB_MAINNET = "arb-mainnet"
    ARB_SEPOLIA = "arb-sepolia"
    OPT_MAINNET = "opt-mainnet"
    OPT_SEPOLIA = "opt-sepolia"
    POLYGON_MAINNET = "polygon-mainnet"

    @property
    def is_testnet(self) -> bool:
        return "sepolia" in self.value

    @property
    def supports_internal_transfers(self) -> bool:
        """Whether the provider can trace internal (call) transfers here."""
        return not self.is_testnet and self is not Network.BASE_MAINNET

    @classmethod
    def parse(cls, value: str) -> Network | None:
        """Return the network for a value, or None when unknown."""
        try:
            return cls(value)
        except ValueError:
            return None


class TransferCategory(str, Enum):
    """Asset transfer categories reported by the provider."""

    EXTERNAL = "external"
    INTERNAL = "internal"
    ERC20 = "erc20"
    ERC721 = "erc721"
    ERC1155 = "erc1155"
    SPECIALNFT = "specialnft"


NFT_CATEGORIES = frozenset(
    {
        TransferCategory.ERC721.value,
        TransferCategory.ERC1155.value,
        TransferCategory.SPECIALNFT.value,
    }
)


def history_categories(network: Network) -> list[str]:
    """Transfer categories queried for an address's history."""
    categories = [
        TransferCategory.EXTERNAL,
        TransferCategory.ERC1155,
        TransferCategory.ERC20,
        TransferCategory.ERC721,
    ]
    if network.supports_internal_transfers:
        categories.append(TransferCategory.INTERNAL)
    return [c.value for c in categories]


def tvl_categories(network: Network) -> list[str]:
    """Transfer categories that feed a contract's TVL and usage metrics."""
    if network.is_testnet:
        return [TransferCategory.EXTERNAL.value]
    return [TransferCategory.EXTERNAL.value, TransferCategory.ERC20.value]


@dataclass(frozen=True)
class TvlToken:
    """A token whose inbound transfers count toward contract TVL."""

    symbol: str
    address: str
    price_symbol: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TvlToken:
        symbol = str(data["symbol"])
        return cls(
            symbol=symbol,
            address=str(data["address"]).lower(),
            price_symbol=str(data.get("price_symbol") or symbol),
        )

    def to_dict(self) -> dict[str, str]:
        return {"symbol": self.symbol, "address": self.address, "price_symbol": self.price_symbol}


NATIVE_ASSET = "ETH"

DEFAULT_TVL_TOKENS: dict[str, tuple[TvlToken, ...]] = {
    Network.BASE_MAINNET.value: (
        TvlToken("USDC", "0x833589fcd6edb6e08f4c7c32d4f71b54bda02913", "USDC"),
        TvlToken("WETH", "0x4200000000000000000000000000000000000006", "ETH"),
    ),
    Network.ETH_MAINNET.value: (
        TvlToken("USDC", "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48", "USDC"),
        TvlToken("WETH", "0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2", "ETH"),
        TvlToken("USDT", "0xdac17f958d2ee523a2206206994597c13d831ec7", "USDT"),
    ),
}

DEFAULT_ENABLED_CHAINS: dict[str, bool] = {
    Network.ETH_MAINNET.value: True,
    Network.ETH_SEPOLIA.value: True,
    Network.BASE_MAINNET.value: True,
    Network.BASE_SEPOLIA.value: True,
    Network.ARB_MAINNET.value: False,
    Network.OPT_MAINNET.value: False,
    Network.POLYGON_MAINNET.value: False,
}
