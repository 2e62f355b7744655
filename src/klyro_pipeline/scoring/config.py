"""Platform configuration for scoring: thresholds, weights, multipliers.

Stored configuration is overlaid on hardcoded defaults one field at a time.
A field that fails validation falls back to its default instead of failing
the whole computation.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from klyro_pipeline.chain.networks import (
    DEFAULT_ENABLED_CHAINS,
    DEFAULT_TVL_TOKENS,
    Network,
    TvlToken,
)

logger = logging.getLogger(__name__)

WEB3_METRICS = (
    "hackerExperience",
    "hackathonWins",
    "mainnetContracts",
    "testnetContracts",
    "mainnetTVL",
    "uniqueUsers",
    "transactions",
    "web3Languages",
    "cryptoRepoContributions",
)
WEB2_METRICS = (
    "prs",
    "contributions",
    "forks",
    "stars",
    "issues",
    "totalLinesOfCode",
    "accountAge",
    "followers",
)

DEFAULT_THRESHOLDS: dict[str, float] = {
    "mainnetContracts": 5,
    "testnetContracts": 3,
    "mainnetTVL": 1_000_000,
    "uniqueUsers": 100,
    "transactions": 100,
    "web3Languages": 10_000,
    "cryptoRepoContributions": 50,
    "hackathonWins": 10,
    "hackerExperience": 10,
    "prs": 20,
    "contributions": 1000,
    "forks": 50,
    "stars": 100,
    "issues": 30,
    "totalLinesOfCode": 50_000,
    "accountAge": 365,
    "followers": 100,
}

# Each composite's weights sum to 100.
DEFAULT_WEIGHTS: dict[str, float] = {
    "hackerExperience": 5,
    "mainnetContracts": 5,
    "testnetContracts": 3,
    "mainnetTVL": 3,
    "uniqueUsers": 3,
    "transactions": 37,
    "web3Languages": 24,
    "cryptoRepoContributions": 10,
    "hackathonWins": 10,
    "prs": 15,
    "contributions": 20,
    "forks": 10,
    "stars": 10,
    "issues": 5,
    "totalLinesOfCode": 20,
    "accountAge": 10,
    "followers": 10,
}

DEFAULT_WORTH_MULTIPLIERS: dict[str, dict[str, dict[str, float]]] = {
    "web3": {
        "experience": {
            "mainnetContract": 2000,
            "testnetContract": 500,
            "cryptoRepoContribution": 200,
            "hackathonWin": 1000,
            "hackerExperience": 100,
        },
        "skill": {"solidity": 0.02, "rust": 0.03, "move": 0.025, "cadence": 0.025},
        "influence": {"tvlMultiplier": 0.0001, "uniqueUser": 20, "transaction": 2},
    },
    "web2": {
        "experience": {"accountAge": 20, "pr": 100, "contribution": 10},
        "skill": {"lineOfCode": 0.00001},
        "influence": {"star": 20, "fork": 40, "follower": 10},
    },
}

TVL_WORTH_CAP = 50_000.0

DEFAULT_NOTABLE_REPOSITORIES: tuple[str, ...] = (
    "ethereum/go-ethereum",
    "ethereum/solidity",
    "bitcoin/bitcoin",
    "solana-labs/solana",
    "cosmos/cosmos-sdk",
    "paritytech/substrate",
    "near/nearcore",
    "aptos-labs/aptos-core",
    "matter-labs/zksync",
    "starkware-libs/starkex-contracts",
    "Uniswap/v3-core",
    "aave/aave-v3-core",
    "compound-finance/compound-protocol",
    "makerdao/dss",
    "curvefi/curve-contract",
    "0xPARC/zk-bug-tracker",
    "0xPARC/zkrepl",
    "0xPolygonZero/plonky2",
    "AztecProtocol/barretenberg",
    "ConsenSys/gnark",
    "Zokrates/ZoKrates",
    "microsoft/Nova",
    "noir-lang/noir",
    "privacy-scaling-explorations/zk-kit",
    "scipr-lab/libsnark",
    "semaphore-protocol/semaphore",
    "zcash/halo2",
    "zcash/zcash",
    "zkcrypto/bellman",
    "OpenZeppelin/openzeppelin-contracts",
    "OpenZeppelin/openzeppelin-contracts-upgradeable",
    "Vectorized/solady",
    "foundry-rs/foundry",
    "ethereum/web3.py",
    "ethereum/solc-js",
    "ethereum/c-kzg-4844",
    "rainbow-me/rainbowkit",
    "thirdweb-dev/contracts",
    "transmissions11/solmate",
    "Consensys/teku",
    "hyperledger/besu",
    "hyperledger/web3j",
    "ipfs/kubo",
    "libp2p/go-libp2p",
    "libp2p/rust-libp2p",
    "prysmaticlabs/prysm",
    "crytic/echidna",
    "crytic/slither",
    "protofire/solhint",
    "sc-forks/solidity-coverage",
    "Cyfrin/foundry-devops",
    "Dapp-Learning-DAO/Dapp-Learning",
    "arkworks-rs/algebra",
    "arkworks-rs/groth16",
    "dalek-cryptography/bulletproofs",
    "lambdaclass/lambdaworks",
    "ApeWorX/ape",
    "blockchain-etl/ethereum-etl",
    "bluealloy/revm",
    "eth-infinitism/account-abstraction",
    "iden3/circom",
    "iden3/snarkjs",
    "paradigmxyz/cryo",
    "pcaversaccio/snekmate",
    "rust-ethereum/evm",
    "scaffold-eth/scaffold-eth-2",
    "starkware-libs/cairo-lang",
)

PositiveNumber = Annotated[float, Field(gt=0)]
NonNegativeNumber = Annotated[float, Field(ge=0)]


class TvlTokenSchema(BaseModel):
    model_config = ConfigDict(extra="ignore")

    symbol: str
    address: str
    price_symbol: str | None = None


class PlatformConfig(BaseModel):
    """Externally editable configuration consumed per computation."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    enabled_chains: dict[str, bool] = Field(default_factory=lambda: dict(DEFAULT_ENABLED_CHAINS))
    thresholds: dict[str, PositiveNumber] = Field(default_factory=lambda: dict(DEFAULT_THRESHOLDS))
    weights: dict[str, NonNegativeNumber] = Field(default_factory=lambda: dict(DEFAULT_WEIGHTS))
    worth_multipliers: dict[str, dict[str, dict[str, NonNegativeNumber]]] = Field(
        default_factory=lambda: {d: {c: dict(m) for c, m in cats.items()} for d, cats in DEFAULT_WORTH_MULTIPLIERS.items()}
    )
    notable_repositories: tuple[str, ...] = DEFAULT_NOTABLE_REPOSITORIES
    tvl_tokens: dict[str, list[TvlTokenSchema]] = Field(
        default_factory=lambda: {
            network: [TvlTokenSchema(**t.to_dict()) for t in tokens]
            for network, tokens in DEFAULT_TVL_TOKENS.items()
        }
    )

    @classmethod
    def from_overrides(cls, raw: Mapping[str, Any] | None) -> PlatformConfig:
        """Overlay stored configuration on the defaults.

        Dict-valued fields merge key-wise with their defaults; worth
        multipliers merge per domain and category. Invalid fields are
        logged and replaced by their defaults.
        """
        defaults = cls()
        if not raw:
            return defaults

        candidates: dict[str, Any] = {}
        for name in ("enabled_chains", "thresholds", "weights", "tvl_tokens"):
            override = raw.get(name)
            if isinstance(override, Mapping):
                candidates[name] = {**getattr(defaults, name), **override}
            elif override is not None:
                candidates[name] = override

        multipliers = raw.get("worth_multipliers")
        if isinstance(multipliers, Mapping):
            merged = {d: {c: dict(m) for c, m in cats.items()} for d, cats in defaults.worth_multipliers.items()}
            for domain, categories in multipliers.items():
                if not isinstance(categories, Mapping):
                    candidates["worth_multipliers"] = multipliers
                    break
                for category, values in categories.items():
                    if isinstance(values, Mapping):
                        merged.setdefault(domain, {}).setdefault(category, {}).update(values)
            else:
                candidates["worth_multipliers"] = merged

        repos = raw.get("notable_repositories")
        if repos:
            candidates["notable_repositories"] = repos

        values: dict[str, Any] = {}
        for name, candidate in candidates.items():
            adapter: TypeAdapter[Any] = TypeAdapter(cls.model_fields[name].annotation)
            try:
                values[name] = adapter.validate_python(candidate)
            except ValidationError as e:
                logger.warning("Ignoring invalid platform config field %s: %s", name, e.errors()[:1])
        return cls(**values)

    def enabled_networks(self) -> list[Network]:
        networks = []
        for name, enabled in self.enabled_chains.items():
            if not enabled:
                continue
            network = Network.parse(name)
            if network is None:
                logger.warning("Ignoring unknown chain in platform config: %s", name)
                continue
            networks.append(network)
        return networks

    def tvl_tokens_for(self, network: Network) -> tuple[TvlToken, ...]:
        return tuple(TvlToken.from_dict(t.model_dump()) for t in self.tvl_tokens.get(network.value, []))

    def threshold(self, metric: str) -> float:
        return float(self.thresholds.get(metric, DEFAULT_THRESHOLDS[metric]))

    def weight(self, metric: str) -> float:
        return float(self.weights.get(metric, DEFAULT_WEIGHTS[metric]))

    def multiplier(self, domain: str, category: str, metric: str) -> float:
        value = self.worth_multipliers.get(domain, {}).get(category, {}).get(metric)
        if value is None:
            value = DEFAULT_WORTH_MULTIPLIERS[domain][category][metric]
        return float(value)

    def to_record(self) -> dict[str, Any]:
        """JSON-ready field values for persistence."""
        data = self.model_dump()
        data["notable_repositories"] = list(self.notable_repositories)
        return data
