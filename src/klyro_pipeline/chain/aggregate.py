"""Fan chain processing out across networks and roll the results up."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence

from klyro_pipeline.chain.connector import ChainDataConnector
from klyro_pipeline.chain.models import (
    TOTAL_KEY,
    ChainResult,
    ChainSnapshot,
    ContractStats,
    DeployedContract,
    Transfer,
    TransactionStats,
)
from klyro_pipeline.chain.networks import Network

logger = logging.getLogger(__name__)

ConnectorFactory = Callable[[Network], ChainDataConnector]


async def process_network(connector: ChainDataConnector, addresses: Sequence[str]) -> ChainResult:
    """Collect contracts and history for every address on one network."""
    network = connector.network.value
    start_block = await connector.get_half_block()
    logger.info("Using start block %s for %s", start_block, network)

    contracts: list[DeployedContract] = []
    for address in addresses:
        contracts.extend(await connector.get_contracts_deployed_by(address, start_block))

    history: list[Transfer] = await connector.get_transfer_history(addresses, start_block)

    logger.info(
        "Processed %s: %d contracts, %d transfers", network, len(contracts), len(history)
    )
    return ChainResult(
        network=network,
        contracts=contracts,
        history=history,
        contract_stats=ContractStats.from_contracts(contracts),
        transaction_stats=TransactionStats.from_transfers(history),
    )


def rollup(results: Sequence[ChainResult]) -> ChainSnapshot:
    """Organize per-network results and add the cross-network ``total``."""
    snapshot = ChainSnapshot()
    total_contracts = ContractStats()
    total_transactions = TransactionStats()

    for result in results:
        snapshot.contracts[result.network] = result.contracts
        snapshot.history[result.network] = result.history
        snapshot.contract_stats[result.network] = result.contract_stats
        snapshot.transaction_stats[result.network] = result.transaction_stats
        total_contracts.add(result.contract_stats)
        total_transactions.add(result.transaction_stats)
        if result.failed:
            snapshot.failed_networks.append(result.network)

    snapshot.contract_stats[TOTAL_KEY] = total_contracts
    snapshot.transaction_stats[TOTAL_KEY] = total_transactions
    return snapshot


async def collect_chain_data(
    networks: Sequence[Network],
    addresses: Sequence[str],
    connector_factory: ConnectorFactory,
) -> ChainSnapshot:
    """Process every network concurrently; one network failing never drops another.

    A failed network contributes a zero-valued result and is listed in
    ``failed_networks``.
    """
    results = await asyncio.gather(
        *(process_network(connector_factory(n), addresses) for n in networks),
        return_exceptions=True,
    )

    settled: list[ChainResult] = []
    for network, result in zip(networks, results, strict=True):
        if isinstance(result, BaseException):
            logger.error("Error processing chain %s: %s", network.value, result)
            settled.append(ChainResult.failure(network.value))
        else:
            settled.append(result)
    return rollup(settled)
