"""Tests for per-network fan-out and rollup."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

from klyro_pipeline.chain.aggregate import collect_chain_data
from klyro_pipeline.chain.models import DeployedContract, Transfer
from klyro_pipeline.chain.networks import Network

ADDRESS = "0x1111111111111111111111111111111111111111"


def _contract(address: str, *, is_testnet: bool) -> DeployedContract:
    return DeployedContract(
        address=address,
        block_number=1,
        deployment_date="2024-01-01T00:00:00Z",
        unique_users=2,
        tvl=10.0,
        total_transactions=5,
        is_testnet=is_testnet,
    )


def _transfer(category: str, *, is_testnet: bool) -> Transfer:
    return Transfer(
        block_num="0x1",
        hash="0xh",
        from_address=ADDRESS,
        to_address=None,
        value=None,
        asset=None,
        category=category,
        token_address=None,
        timestamp=0,
        date="",
        is_testnet=is_testnet,
    )


def _connector(network: Network, *, fail: bool = False) -> MagicMock:
    connector = MagicMock()
    connector.network = network
    connector.get_half_block = AsyncMock(return_value="0x10")
    if fail:
        connector.get_contracts_deployed_by = AsyncMock(side_effect=RuntimeError("provider down"))
    else:
        connector.get_contracts_deployed_by = AsyncMock(
            return_value=[_contract(f"0x{network.value}", is_testnet=network.is_testnet)]
        )
    connector.get_transfer_history = AsyncMock(
        return_value=[
            _transfer("external", is_testnet=network.is_testnet),
            _transfer("erc721", is_testnet=network.is_testnet),
        ]
    )
    return connector


class TestCollectChainData:
    async def test_rollup_totals_across_networks(self) -> None:
        networks = [Network.ETH_MAINNET, Network.BASE_MAINNET, Network.ETH_SEPOLIA]
        connectors = {n: _connector(n) for n in networks}

        snapshot = await collect_chain_data(networks, [ADDRESS], connectors.__getitem__)

        assert not snapshot.has_failures
        assert set(snapshot.contracts) == {"eth-mainnet", "base-mainnet", "eth-sepolia"}
        total = snapshot.contract_stats["total"]
        assert (total.mainnet, total.testnet, total.total) == (2, 1, 3)
        tx_total = snapshot.transaction_stats["total"]
        assert tx_total.mainnet.total == 4
        assert tx_total.mainnet.nft == 2
        assert tx_total.testnet.external == 1
        connectors[Network.ETH_MAINNET].get_contracts_deployed_by.assert_awaited_once_with(ADDRESS, "0x10")

    async def test_one_network_failure_is_isolated(self) -> None:
        networks = [Network.ETH_MAINNET, Network.BASE_MAINNET]
        connectors = {
            Network.ETH_MAINNET: _connector(Network.ETH_MAINNET),
            Network.BASE_MAINNET: _connector(Network.BASE_MAINNET, fail=True),
        }

        snapshot = await collect_chain_data(networks, [ADDRESS], connectors.__getitem__)

        assert snapshot.failed_networks == ["base-mainnet"]
        assert snapshot.contracts["base-mainnet"] == []
        assert snapshot.contract_stats["base-mainnet"].total == 0
        assert len(snapshot.contracts["eth-mainnet"]) == 1
        assert snapshot.contract_stats["total"].total == 1

    async def test_no_networks(self) -> None:
        snapshot = await collect_chain_data([], [ADDRESS], MagicMock())

        assert snapshot.contract_stats["total"].total == 0
        assert snapshot.transaction_stats["total"].mainnet.total == 0
