"""Chain-data connector - EVM contracts, transfers and pricing."""

from klyro_pipeline.chain.aggregate import collect_chain_data
from klyro_pipeline.chain.alchemy import (
    AlchemyClient,
    ChainProviderError,
    ChainRPCError,
    EnsResolver,
)
from klyro_pipeline.chain.connector import ChainDataConnector
from klyro_pipeline.chain.models import ChainSnapshot, DeployedContract, Transfer
from klyro_pipeline.chain.networks import Network, TvlToken
from klyro_pipeline.chain.prices import CryptoComparePriceFeed, PriceCache, PriceFeedError

__all__ = [
    "AlchemyClient",
    "ChainDataConnector",
    "ChainProviderError",
    "ChainRPCError",
    "ChainSnapshot",
    "CryptoComparePriceFeed",
    "DeployedContract",
    "EnsResolver",
    "Network",
    "PriceCache",
    "PriceFeedError",
    "Transfer",
    "TvlToken",
    "collect_chain_data",
]
