"""Developer score and worth computation.

Both computations are pure functions over a typed ``ScoringInput`` and a
``PlatformConfig``. They never perform I/O and never raise on missing
upstream data; absent domains contribute zeros.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from klyro_pipeline.badges.models import BadgeCredentials
from klyro_pipeline.chain.models import TOTAL_KEY, ChainSnapshot, ContractStats, TransactionBucket
from klyro_pipeline.codehost.models import GitHubSnapshot
from klyro_pipeline.scoring.config import TVL_WORTH_CAP, PlatformConfig

WEB3_LANGUAGES = ("Rust", "Solidity", "Move", "Cadence")


@dataclass
class ScoringInput:
    """Everything the engine reads for one user.

    Built from persisted domain records; any domain may be missing.
    """

    github: GitHubSnapshot | None = None
    chain: ChainSnapshot = field(default_factory=ChainSnapshot)
    badges: BadgeCredentials = field(default_factory=BadgeCredentials)

    @classmethod
    def from_records(
        cls,
        *,
        github: dict[str, Any] | None,
        contracts: dict[str, Any] | None,
        onchain: dict[str, Any] | None,
    ) -> ScoringInput:
        onchain = onchain or {}
        return cls(
            github=GitHubSnapshot.from_dict(github) if github else None,
            chain=ChainSnapshot.from_records(contracts or {}, onchain),
            badges=BadgeCredentials.from_dict(onchain.get("hackathon")),
        )

    @property
    def contract_totals(self) -> ContractStats:
        return self.chain.contract_stats.get(TOTAL_KEY, ContractStats())

    @property
    def mainnet_transactions(self) -> TransactionBucket:
        totals = self.chain.transaction_stats.get(TOTAL_KEY)
        return totals.mainnet if totals else TransactionBucket()

    def mainnet_tvl(self) -> float:
        return sum(c.tvl for c in self.chain.all_contracts() if not c.is_testnet)

    def mainnet_unique_users(self) -> int:
        return sum(c.unique_users for c in self.chain.all_contracts() if not c.is_testnet)

    def language_bytes(self) -> dict[str, int]:
        if self.github is None:
            return {}
        return self.github.repositories.language_totals

    def web3_language_breakdown(self) -> dict[str, int]:
        totals = self.language_bytes()
        return {lang: int(totals.get(lang, 0)) for lang in WEB3_LANGUAGES}

    def notable_contributions(self, notable: tuple[str, ...]) -> dict[str, int]:
        """Contribution counts limited to notable repositories.

        Repository names compare case-insensitively.
        """
        if self.github is None:
            return {}
        wanted = {name.lower() for name in notable}
        return {
            repo: count
            for repo, count in self.github.contributions.repo_contributions.items()
            if repo.lower() in wanted
        }


def metric_score(value: float, threshold: float, weight: float) -> float:
    """Capped linear score: ``min(value / threshold, 1) * weight``."""
    if threshold <= 0 or value <= 0:
        return 0.0
    return min(value / threshold, 1.0) * weight


@dataclass(frozen=True)
class MetricScore:
    value: float
    threshold: float
    weight: float
    score: float
    breakdown: dict[str, float] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "value": self.value,
            "threshold": self.threshold,
            "weight": self.weight,
            "score": self.score,
        }
        if self.breakdown is not None:
            data["breakdown"] = dict(self.breakdown)
        return data


@dataclass
class ScoreResult:
    """Composite score with the full per-metric tree."""

    web3: dict[str, MetricScore]
    web2: dict[str, MetricScore]

    @property
    def web3_total(self) -> float:
        return sum(m.score for m in self.web3.values())

    @property
    def web2_total(self) -> float:
        return sum(m.score for m in self.web2.values())

    @property
    def total_score(self) -> float:
        return (self.web3_total + self.web2_total) / 2

    def metrics_to_dict(self) -> dict[str, Any]:
        return {
            "web3": {**{k: m.to_dict() for k, m in self.web3.items()}, "total": self.web3_total},
            "web2": {**{k: m.to_dict() for k, m in self.web2.items()}, "total": self.web2_total},
        }


def _metric(
    config: PlatformConfig,
    name: str,
    value: float,
    breakdown: dict[str, float] | None = None,
) -> MetricScore:
    threshold = config.threshold(name)
    weight = config.weight(name)
    return MetricScore(
        value=value,
        threshold=threshold,
        weight=weight,
        score=metric_score(value, threshold, weight),
        breakdown=breakdown,
    )


def compute_score(inputs: ScoringInput, config: PlatformConfig) -> ScoreResult:
    """Compute the web3 and web2 composite scores.

    Scoring Formula:
        metric = min(value / threshold, 1) * weight
        web3 = sum(web3 metrics)          # 0-100 with default weights
        web2 = sum(web2 metrics)          # 0-100 with default weights
        total_score = (web3 + web2) / 2

    Example:
        ```python
        config = PlatformConfig.from_overrides(stored_config)
        result = compute_score(ScoringInput(github=snapshot), config)
        result.total_score
        result.metrics_to_dict()["web2"]["prs"]["score"]
        ```
    """
    contracts = inputs.contract_totals
    transactions = inputs.mainnet_transactions
    languages = inputs.web3_language_breakdown()
    notable = inputs.notable_contributions(config.notable_repositories)

    web3 = {
        "hackerExperience": _metric(config, "hackerExperience", inputs.badges.hacker.count),
        "hackathonWins": _metric(config, "hackathonWins", inputs.badges.wins.count),
        "mainnetContracts": _metric(config, "mainnetContracts", contracts.mainnet),
        "testnetContracts": _metric(config, "testnetContracts", contracts.testnet),
        "mainnetTVL": _metric(config, "mainnetTVL", inputs.mainnet_tvl()),
        "uniqueUsers": _metric(config, "uniqueUsers", inputs.mainnet_unique_users()),
        "transactions": _metric(
            config,
            "transactions",
            transactions.total,
            {"external": transactions.external, "internal": transactions.internal},
        ),
        "web3Languages": _metric(config, "web3Languages", sum(languages.values()), dict(languages)),
        "cryptoRepoContributions": _metric(
            config, "cryptoRepoContributions", sum(notable.values()), dict(notable)
        ),
    }

    web2: dict[str, MetricScore] = {}
    github = inputs.github
    if github is not None:
        stats = github.contributions
        repos = github.repositories
        web2 = {
            "prs": _metric(config, "prs", stats.total_prs),
            "contributions": _metric(config, "contributions", stats.total_contributions),
            "forks": _metric(config, "forks", repos.total_forks),
            "stars": _metric(config, "stars", repos.total_stars),
            "issues": _metric(config, "issues", stats.total_issues),
            "totalLinesOfCode": _metric(
                config,
                "totalLinesOfCode",
                repos.total_lines_of_code,
                {k: float(v) for k, v in repos.language_totals.items()},
            ),
            "accountAge": _metric(config, "accountAge", github.profile.account_age),
            "followers": _metric(config, "followers", github.profile.followers),
        }

    return ScoreResult(web3=web3, web2=web2)


@dataclass(frozen=True)
class WorthItem:
    value: float
    multiplier: float
    worth: float

    def to_dict(self) -> dict[str, float]:
        return {"value": self.value, "multiplier": self.multiplier, "worth": self.worth}


@dataclass
class WorthDomain:
    experience: dict[str, WorthItem] = field(default_factory=dict)
    skill: dict[str, WorthItem] = field(default_factory=dict)
    influence: dict[str, WorthItem] = field(default_factory=dict)

    @property
    def total(self) -> float:
        return sum(
            item.worth
            for category in (self.experience, self.skill, self.influence)
            for item in category.values()
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        for name in ("experience", "skill", "influence"):
            items = getattr(self, name)
            data[name] = {
                **{k: v.to_dict() for k, v in items.items()},
                "total": sum(v.worth for v in items.values()),
            }
        data["total"] = self.total
        return data


@dataclass
class WorthResult:
    web3: WorthDomain
    web2: WorthDomain

    @property
    def total_worth(self) -> float:
        return self.web3.total + self.web2.total

    def breakdown_to_dict(self) -> dict[str, Any]:
        return {"web3": self.web3.to_dict(), "web2": self.web2.to_dict()}


def _worth(config: PlatformConfig, domain: str, category: str, name: str, value: float) -> WorthItem:
    multiplier = config.multiplier(domain, category, name)
    return WorthItem(value=value, multiplier=multiplier, worth=max(value, 0.0) * multiplier)


def compute_worth(inputs: ScoringInput, config: PlatformConfig) -> WorthResult:
    """Estimate developer worth from linear multipliers.

    Each leaf is ``value * multiplier``. The TVL leaf is capped at
    ``TVL_WORTH_CAP`` so a single large deployment cannot dominate.
    """
    contracts = inputs.contract_totals
    languages = inputs.web3_language_breakdown()
    notable = inputs.notable_contributions(config.notable_repositories)
    tvl = inputs.mainnet_tvl()
    tvl_multiplier = config.multiplier("web3", "influence", "tvlMultiplier")

    web3 = WorthDomain(
        experience={
            "mainnetContract": _worth(config, "web3", "experience", "mainnetContract", contracts.mainnet),
            "testnetContract": _worth(config, "web3", "experience", "testnetContract", contracts.testnet),
            "cryptoRepoContribution": _worth(
                config, "web3", "experience", "cryptoRepoContribution", sum(notable.values())
            ),
            "hackathonWin": _worth(config, "web3", "experience", "hackathonWin", inputs.badges.wins.count),
            "hackerExperience": _worth(
                config, "web3", "experience", "hackerExperience", inputs.badges.hacker.count
            ),
        },
        skill={
            lang.lower(): _worth(config, "web3", "skill", lang.lower(), languages[lang])
            for lang in WEB3_LANGUAGES
        },
        influence={
            "tvl": WorthItem(
                value=tvl,
                multiplier=tvl_multiplier,
                worth=min(max(tvl, 0.0) * tvl_multiplier, TVL_WORTH_CAP),
            ),
            "uniqueUser": _worth(
                config, "web3", "influence", "uniqueUser", inputs.mainnet_unique_users()
            ),
            "transaction": _worth(
                config, "web3", "influence", "transaction", inputs.mainnet_transactions.total
            ),
        },
    )

    web2 = WorthDomain()
    github = inputs.github
    if github is not None:
        web2 = WorthDomain(
            experience={
                "accountAge": _worth(config, "web2", "experience", "accountAge", github.profile.account_age),
                "pr": _worth(config, "web2", "experience", "pr", github.contributions.total_prs),
                "contribution": _worth(
                    config, "web2", "experience", "contribution", github.contributions.total_contributions
                ),
            },
            skill={
                "lineOfCode": _worth(
                    config, "web2", "skill", "lineOfCode", github.repositories.total_lines_of_code
                ),
            },
            influence={
                "star": _worth(config, "web2", "influence", "star", github.repositories.total_stars),
                "fork": _worth(config, "web2", "influence", "fork", github.repositories.total_forks),
                "follower": _worth(config, "web2", "influence", "follower", github.profile.followers),
            },
        )

    return WorthResult(web3=web3, web2=web2)
