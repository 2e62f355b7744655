"""Typed records for chain data."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any

from klyro_pipeline.chain.networks import NFT_CATEGORIES


def _to_float(value: Any) -> float:
    if value is None:
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


@dataclass(frozen=True)
class BlockInfo:
    """Timestamp of a block. Synthetic values are flagged."""

    timestamp: int
    is_synthetic: bool = False

    @property
    def date(self) -> str:
        return datetime.fromtimestamp(self.timestamp, tz=UTC).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class Transfer:
    """A single asset transfer touching one of the user's addresses."""

    block_num: str
    hash: str
    from_address: str
    to_address: str | None
    value: float | None
    asset: str | None
    category: str
    token_address: str | None
    timestamp: int
    date: str
    is_testnet: bool
    timestamp_is_synthetic: bool = False

    @classmethod
    def from_alchemy(cls, data: dict[str, Any], *, block: BlockInfo, is_testnet: bool) -> Transfer:
        """Create a Transfer from a provider transfer object and its block."""
        raw_contract = data.get("rawContract") or {}
        value = data.get("value")
        return cls(
            block_num=str(data.get("blockNum", "")),
            hash=str(data.get("hash", "")),
            from_address=str(data.get("from", "")).lower(),
            to_address=str(data["to"]).lower() if data.get("to") else None,
            value=float(value) if value is not None else None,
            asset=data.get("asset"),
            category=str(data.get("category", "")),
            token_address=str(raw_contract["address"]).lower() if raw_contract.get("address") else None,
            timestamp=block.timestamp,
            date=block.date,
            is_testnet=is_testnet,
            timestamp_is_synthetic=block.is_synthetic,
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Transfer:
        value = data.get("value")
        return cls(
            block_num=str(data.get("block_num", "")),
            hash=str(data.get("hash", "")),
            from_address=str(data.get("from_address", "")),
            to_address=data.get("to_address"),
            value=float(value) if value is not None else None,
            asset=data.get("asset"),
            category=str(data.get("category", "")),
            token_address=data.get("token_address"),
            timestamp=int(data.get("timestamp", 0)),
            date=str(data.get("date", "")),
            is_testnet=bool(data.get("is_testnet", False)),
            timestamp_is_synthetic=bool(data.get("timestamp_is_synthetic", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class DeployedContract:
    """A contract created by one of the user's addresses, with usage metrics."""

    address: str
    block_number: int
    deployment_date: str
    unique_users: int
    tvl: float
    total_transactions: int
    is_testnet: bool

    @classmethod
    def empty(cls, address: str, block_number: int, *, is_testnet: bool) -> DeployedContract:
        """A zeroed record used when a contract's metrics cannot be fetched."""
        return cls(
            address=address,
            block_number=block_number,
            deployment_date="",
            unique_users=0,
            tvl=0.0,
            total_transactions=0,
            is_testnet=is_testnet,
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DeployedContract:
        return cls(
            address=str(data.get("address", "")),
            block_number=int(data.get("block_number", 0)),
            deployment_date=str(data.get("deployment_date", "")),
            unique_users=int(data.get("unique_users", 0)),
            tvl=_to_float(data.get("tvl")),
            total_transactions=int(data.get("total_transactions", 0)),
            is_testnet=bool(data.get("is_testnet", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ContractStats:
    """Contract counts split by network class."""

    mainnet: int = 0
    testnet: int = 0
    total: int = 0

    @classmethod
    def from_contracts(cls, contracts: list[DeployedContract]) -> ContractStats:
        testnet = sum(1 for c in contracts if c.is_testnet)
        return cls(mainnet=len(contracts) - testnet, testnet=testnet, total=len(contracts))

    def add(self, other: ContractStats) -> None:
        self.mainnet += other.mainnet
        self.testnet += other.testnet
        self.total += other.total

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ContractStats:
        return cls(
            mainnet=int(data.get("mainnet", 0)),
            testnet=int(data.get("testnet", 0)),
            total=int(data.get("total", 0)),
        )


@dataclass
class TransactionBucket:
    """Transfer counts by category for one network class."""

    external: int = 0
    internal: int = 0
    nft: int = 0
    erc20: int = 0
    total: int = 0

    @classmethod
    def from_transfers(cls, transfers: list[Transfer]) -> TransactionBucket:
        bucket = cls(total=len(transfers))
        for t in transfers:
            if t.category == "external":
                bucket.external += 1
            elif t.category == "internal":
                bucket.internal += 1
            elif t.category == "erc20":
                bucket.erc20 += 1
            elif t.category in NFT_CATEGORIES:
                bucket.nft += 1
        return bucket

    def add(self, other: TransactionBucket) -> None:
        self.external += other.external
        self.internal += other.internal
        self.nft += other.nft
        self.erc20 += other.erc20
        self.total += other.total

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TransactionBucket:
        return cls(
            external=int(data.get("external", 0)),
            internal=int(data.get("internal", 0)),
            nft=int(data.get("nft", 0)),
            erc20=int(data.get("erc20", 0)),
            total=int(data.get("total", 0)),
        )


@dataclass
class TransactionStats:
    """Transfer counts for mainnet and testnet traffic."""

    mainnet: TransactionBucket = field(default_factory=TransactionBucket)
    testnet: TransactionBucket = field(default_factory=TransactionBucket)

    @classmethod
    def from_transfers(cls, transfers: list[Transfer]) -> TransactionStats:
        return cls(
            mainnet=TransactionBucket.from_transfers([t for t in transfers if not t.is_testnet]),
            testnet=TransactionBucket.from_transfers([t for t in transfers if t.is_testnet]),
        )

    def add(self, other: TransactionStats) -> None:
        self.mainnet.add(other.mainnet)
        self.testnet.add(other.testnet)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TransactionStats:
        return cls(
            mainnet=TransactionBucket.from_dict(data.get("mainnet") or {}),
            testnet=TransactionBucket.from_dict(data.get("testnet") or {}),
        )


@dataclass
class ChainResult:
    """Outcome of processing one network."""

    network: str
    contracts: list[DeployedContract] = field(default_factory=list)
    history: list[Transfer] = field(default_factory=list)
    contract_stats: ContractStats = field(default_factory=ContractStats)
    transaction_stats: TransactionStats = field(default_factory=TransactionStats)
    failed: bool = False

    @classmethod
    def failure(cls, network: str) -> ChainResult:
        """A zero-valued result for a network that could not be processed."""
        return cls(network=network, failed=True)


TOTAL_KEY = "total"


@dataclass
class ChainSnapshot:
    """Per-network chain data plus a cross-network rollup under ``total``."""

    contracts: dict[str, list[DeployedContract]] = field(default_factory=dict)
    history: dict[str, list[Transfer]] = field(default_factory=dict)
    contract_stats: dict[str, ContractStats] = field(default_factory=dict)
    transaction_stats: dict[str, TransactionStats] = field(default_factory=dict)
    failed_networks: list[str] = field(default_factory=list)

    @property
    def has_failures(self) -> bool:
        return bool(self.failed_networks)

    def all_contracts(self) -> list[DeployedContract]:
        return [c for contracts in self.contracts.values() for c in contracts]

    def contracts_to_dict(self) -> dict[str, Any]:
        return {network: [c.to_dict() for c in items] for network, items in self.contracts.items()}

    def onchain_to_dict(self) -> dict[str, Any]:
        return {
            "history": {network: [t.to_dict() for t in items] for network, items in self.history.items()},
            "contract_stats": {k: asdict(v) for k, v in self.contract_stats.items()},
            "transaction_stats": {k: asdict(v) for k, v in self.transaction_stats.items()},
            "failed_networks": list(self.failed_networks),
        }

    @classmethod
    def from_records(
        cls, contracts: dict[str, Any] | None, onchain: dict[str, Any] | None
    ) -> ChainSnapshot:
        """Rebuild a snapshot from stored contracts and on-chain records."""
        contracts = contracts or {}
        onchain = onchain or {}
        return cls(
            contracts={
                network: [DeployedContract.from_dict(c) for c in items or []]
                for network, items in contracts.items()
            },
            history={
                network: [Transfer.from_dict(t) for t in items or []]
                for network, items in (onchain.get("history") or {}).items()
            },
            contract_stats={
                k: ContractStats.from_dict(v or {})
                for k, v in (onchain.get("contract_stats") or {}).items()
            },
            transaction_stats={
                k: TransactionStats.from_dict(v or {})
                for k, v in (onchain.get("transaction_stats") or {}).items()
            },
            failed_networks=list(onchain.get("failed_networks") or []),
        )
