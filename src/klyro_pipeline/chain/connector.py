"""Chain-Data Connector: deployed contracts and transfer history per network."""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, TypeVar

import httpx

from klyro_pipeline.chain.alchemy import AlchemyClient, ChainProviderError
from klyro_pipeline.chain.models import BlockInfo, DeployedContract, Transfer
from klyro_pipeline.chain.networks import (
    NATIVE_ASSET,
    Network,
    TvlToken,
    history_categories,
    tvl_categories,
)
from klyro_pipeline.chain.prices import PriceCache
from klyro_pipeline.fetch.retry import (
    BLOCK_RETRY_POLICY,
    DEFAULT_RETRY_POLICY,
    RateLimitedError,
    RetryPolicy,
    retry_with_backoff,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

SYNTHETIC_WINDOW_SECONDS = 2 * 365 * 24 * 60 * 60
RETRYABLE_ERRORS: tuple[type[Exception], ...] = (ChainProviderError, RateLimitedError, httpx.HTTPError)


def synthetic_block_info(now: float | None = None) -> BlockInfo:
    """A random timestamp from the past two years, flagged as synthetic."""
    current = int(now if now is not None else time.time())
    timestamp = random.randint(current - SYNTHETIC_WINDOW_SECONDS, current)
    return BlockInfo(timestamp=timestamp, is_synthetic=True)


class ChainDataConnector:
    """Fetches contract inventories and transfer histories on one network.

    Every provider call runs under the general retry policy; single-block
    lookups use the stricter block policy, which may substitute a synthetic
    timestamp once its attempts are exhausted.
    """

    def __init__(
        self,
        client: AlchemyClient,
        prices: PriceCache,
        *,
        tvl_tokens: Sequence[TvlToken] = (),
        policy: RetryPolicy = DEFAULT_RETRY_POLICY,
        block_policy: RetryPolicy = BLOCK_RETRY_POLICY,
    ) -> None:
        self._client = client
        self._prices = prices
        self._tvl_tokens = {t.address.lower(): t for t in tvl_tokens}
        self._policy = policy
        self._block_policy = block_policy

    @property
    def network(self) -> Network:
        return self._client.network

    async def _call(self, operation: Callable[[], Awaitable[T]], name: str) -> T:
        return await retry_with_backoff(
            operation,
            operation_name=f"{self.network.value}:{name}",
            policy=self._policy,
            retry_on=RETRYABLE_ERRORS,
        )

    async def get_half_block(self) -> str:
        """Return half the current block height as a hex string.

        Only the more recent half of chain history is scanned.
        """
        block_number = await self._call(self._client.get_block_number, "getBlockNumber")
        return hex(block_number // 2)

    async def get_block_info(self, block: int | str) -> BlockInfo:
        async def fetch() -> BlockInfo:
            header = await self._client.get_block(block)
            return BlockInfo(timestamp=int(str(header["timestamp"]), 0))

        return await retry_with_backoff(
            fetch,
            operation_name=f"{self.network.value}:getBlock-{block}",
            policy=self._block_policy,
            synthetic=synthetic_block_info,
            retry_on=RETRYABLE_ERRORS + (KeyError, ValueError),
        )

    async def _with_blocks(self, raw: list[dict[str, Any]]) -> list[Transfer]:
        block_nums = list(dict.fromkeys(str(t.get("blockNum", "")) for t in raw))
        infos = await asyncio.gather(*(self.get_block_info(b) for b in block_nums))
        by_block = dict(zip(block_nums, infos, strict=True))
        is_testnet = self.network.is_testnet
        return [
            Transfer.from_alchemy(t, block=by_block[str(t.get("blockNum", ""))], is_testnet=is_testnet)
            for t in raw
        ]

    async def get_transfer_history(
        self,
        addresses: Sequence[str],
        from_block: str,
        to_block: str = "latest",
    ) -> list[Transfer]:
        """Fetch outgoing and incoming transfers for each address, dated by block."""
        categories = history_categories(self.network)
        history: list[Transfer] = []
        for address in addresses:
            outgoing = await self._call(
                lambda address=address: self._client.get_asset_transfers(
                    from_block=from_block,
                    to_block=to_block,
                    from_address=address,
                    categories=categories,
                ),
                f"getAssetTransfers-outgoing-{address}",
            )
            incoming = await self._call(
                lambda address=address: self._client.get_asset_transfers(
                    from_block=from_block,
                    to_block=to_block,
                    to_address=address,
                    categories=categories,
                ),
                f"getAssetTransfers-incoming-{address}",
            )
            logger.info(
                "Found %d outgoing and %d incoming transfers for %s on %s",
                len(outgoing),
                len(incoming),
                address,
                self.network.value,
            )
            history.extend(await self._with_blocks(outgoing))
            history.extend(await self._with_blocks(incoming))
        return history

    async def get_contracts_deployed_by(
        self,
        deployer: str,
        from_block: str,
        to_block: str = "latest",
    ) -> list[DeployedContract]:
        """Find contracts created by a deployer and measure their usage."""
        transfers = await self._call(
            lambda: self._client.get_asset_transfers(
                from_block=from_block,
                to_block=to_block,
                from_address=deployer,
                categories=["external"],
                with_metadata=True,
            ),
            f"getAssetTransfers-deployer-{deployer}",
        )
        creation_hashes = [t["hash"] for t in transfers if t.get("to") is None and t.get("hash")]
        receipts = await asyncio.gather(
            *(
                self._call(
                    lambda h=h: self._client.get_transaction_receipt(h),
                    f"getTransactionReceipt-{h}",
                )
                for h in creation_hashes
            )
        )

        created: list[tuple[str, int]] = []
        for receipt in receipts:
            if receipt and receipt.get("contractAddress"):
                created.append(
                    (str(receipt["contractAddress"]).lower(), int(str(receipt["blockNumber"]), 0))
                )
        logger.info(
            "Found %d contracts deployed by %s on %s", len(created), deployer, self.network.value
        )

        results = await asyncio.gather(
            *(self._contract_metrics(address, block) for address, block in created),
            return_exceptions=True,
        )
        contracts: list[DeployedContract] = []
        for (address, block), result in zip(created, results, strict=True):
            if isinstance(result, BaseException):
                logger.warning("Metrics for contract %s failed: %s", address, result)
                contracts.append(
                    DeployedContract.empty(address, block, is_testnet=self.network.is_testnet)
                )
            else:
                contracts.append(result)
        return contracts

    async def _contract_metrics(self, address: str, block_number: int) -> DeployedContract:
        deployment = await self.get_block_info(block_number)
        inbound = await self._call(
            lambda: self._client.get_asset_transfers(
                from_block=hex(block_number),
                to_block="latest",
                to_address=address,
                categories=tvl_categories(self.network),
            ),
            f"getAssetTransfers-contract-{address}",
        )
        unique_users = len({str(t.get("from", "")).lower() for t in inbound})
        return DeployedContract(
            address=address,
            block_number=block_number,
            deployment_date=deployment.date,
            unique_users=unique_users,
            tvl=await self._tvl_usd(inbound),
            total_transactions=len(inbound),
            is_testnet=self.network.is_testnet,
        )

    async def _tvl_usd(self, inbound: list[dict[str, Any]]) -> float:
        """Sum inbound value of native ETH and allow-listed tokens in USD."""
        amounts: dict[str, float] = {}
        for transfer in inbound:
            value = transfer.get("value")
            if not value:
                continue
            if transfer.get("asset") == NATIVE_ASSET and transfer.get("category") != "erc20":
                amounts[NATIVE_ASSET] = amounts.get(NATIVE_ASSET, 0.0) + float(value)
                continue
            if self.network.is_testnet:
                continue
            token_address = str((transfer.get("rawContract") or {}).get("address") or "").lower()
            token = self._tvl_tokens.get(token_address)
            if token is not None:
                amounts[token.price_symbol] = amounts.get(token.price_symbol, 0.0) + float(value)

        total = 0.0
        for symbol, amount in amounts.items():
            total += await self._prices.convert_to_usd(amount, symbol)
        return total
