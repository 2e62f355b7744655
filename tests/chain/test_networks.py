"""Tests for network classification and transfer categories."""

from __future__ import annotations

import pytest

from klyro_pipeline.chain.networks import (
    DEFAULT_ENABLED_CHAINS,
    DEFAULT_TVL_TOKENS,
    Network,
    TvlToken,
    history_categories,
    tvl_categories,
)


class TestNetwork:
    @pytest.mark.parametrize(
        ("network", "is_testnet"),
        [
            (Network.ETH_MAINNET, False),
            (Network.ETH_SEPOLIA, True),
            (Network.BASE_SEPOLIA, True),
            (Network.POLYGON_MAINNET, False),
        ],
    )
    def test_testnet_classification(self, network: Network, is_testnet: bool) -> None:
        assert network.is_testnet is is_testnet

    def test_internal_transfers_unsupported_on_sepolia_and_base(self) -> None:
        assert Network.ETH_MAINNET.supports_internal_transfers
        assert Network.ARB_MAINNET.supports_internal_transfers
        assert not Network.BASE_MAINNET.supports_internal_transfers
        assert not Network.ETH_SEPOLIA.supports_internal_transfers
        assert not Network.OPT_SEPOLIA.supports_internal_transfers

    def test_parse_unknown(self) -> None:
        assert Network.parse("eth-mainnet") is Network.ETH_MAINNET
        assert Network.parse("solana-mainnet") is None


class TestCategories:
    def test_history_categories(self) -> None:
        assert history_categories(Network.ETH_MAINNET) == [
            "external",
            "erc1155",
            "erc20",
            "erc721",
            "internal",
        ]
        assert "internal" not in history_categories(Network.BASE_MAINNET)

    def test_tvl_categories(self) -> None:
        assert tvl_categories(Network.ETH_SEPOLIA) == ["external"]
        assert tvl_categories(Network.BASE_MAINNET) == ["external", "erc20"]


class TestDefaults:
    def test_default_tvl_tokens(self) -> None:
        assert [t.symbol for t in DEFAULT_TVL_TOKENS["base-mainnet"]] == ["USDC", "WETH"]
        assert [t.symbol for t in DEFAULT_TVL_TOKENS["eth-mainnet"]] == ["USDC", "WETH", "USDT"]

    def test_weth_priced_as_eth(self) -> None:
        weth = next(t for t in DEFAULT_TVL_TOKENS["eth-mainnet"] if t.symbol == "WETH")
        assert weth.price_symbol == "ETH"

    def test_default_enabled_chains(self) -> None:
        enabled = {name for name, on in DEFAULT_ENABLED_CHAINS.items() if on}
        assert enabled == {"eth-mainnet", "eth-sepolia", "base-mainnet", "base-sepolia"}

    def test_token_from_dict_defaults_price_symbol(self) -> None:
        token = TvlToken.from_dict({"symbol": "DAI", "address": "0xABC"})
        assert token == TvlToken("DAI", "0xabc", "DAI")
