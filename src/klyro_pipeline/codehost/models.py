"""Data models for the code-host connector."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any


def _parse_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def account_age_days(created_at: str | None, now: datetime | None = None) -> int:
    """Whole days since the account was created."""
    created = _parse_datetime(created_at)
    if created is None:
        return 0
    now = now or datetime.now(UTC)
    return max((now - created).days, 0)


@dataclass(frozen=True)
class Profile:
    """Public profile of a code-host user."""

    login: str
    name: str | None = None
    avatar_url: str | None = None
    bio: str | None = None
    location: str | None = None
    created_at: str | None = None
    html_url: str | None = None
    twitter_username: str | None = None
    email: str | None = None
    blog: str | None = None
    followers: int = 0
    public_repos: int = 0
    account_age: int = 0

    @classmethod
    def from_graphql(cls, user: dict[str, Any], now: datetime | None = None) -> Profile:
        """Create a Profile from a GraphQL ``user`` node."""
        return cls(
            login=str(user.get("login", "")),
            name=user.get("name"),
            avatar_url=user.get("avatarUrl"),
            bio=user.get("bio"),
            location=user.get("location"),
            created_at=user.get("createdAt"),
            html_url=user.get("url"),
            twitter_username=user.get("twitterUsername"),
            email=user.get("email") or None,
            blog=user.get("websiteUrl") or None,
            followers=int((user.get("followers") or {}).get("totalCount", 0)),
            public_repos=int((user.get("repositories") or {}).get("totalCount", 0)),
            account_age=account_age_days(user.get("createdAt"), now),
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Profile:
        known = {k: data[k] for k in cls.__dataclass_fields__ if k in data}
        known.setdefault("login", "")
        return cls(**known)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Repository:
    """A public repository with its language byte breakdown."""

    name: str
    full_name: str
    description: str | None = None
    html_url: str | None = None
    forks_count: int = 0
    stargazers_count: int = 0
    watchers_count: int = 0
    open_issues_count: int = 0
    topics: tuple[str, ...] = ()
    created_at: str | None = None
    updated_at: str | None = None
    pushed_at: str | None = None
    default_branch: str | None = None
    languages: dict[str, int] = field(default_factory=dict)
    is_fork: bool = False
    parent_repo: str | None = None
    # Raw fork count, kept separately since forks_count is zeroed for forked repos.
    fork_count_raw: int = 0

    @classmethod
    def from_graphql(cls, node: dict[str, Any]) -> Repository:
        """Create a Repository from a GraphQL repository node."""
        is_fork = bool(node.get("isFork", False))
        fork_count = int(node.get("forkCount", 0))
        languages = {
            str(edge["node"]["name"]): int(edge.get("size", 0))
            for edge in (node.get("languages") or {}).get("edges") or []
        }
        topics = tuple(
            str(t["topic"]["name"]) for t in (node.get("repositoryTopics") or {}).get("nodes") or []
        )
        return cls(
            name=str(node.get("name", "")),
            full_name=str(node.get("fullName") or node.get("nameWithOwner") or ""),
            description=node.get("description"),
            html_url=node.get("url"),
            forks_count=0 if is_fork else fork_count,
            stargazers_count=int(node.get("stargazerCount", 0)),
            watchers_count=int((node.get("watchers") or {}).get("totalCount", 0)),
            open_issues_count=int((node.get("issues") or {}).get("totalCount", 0)),
            topics=topics,
            created_at=node.get("createdAt"),
            updated_at=node.get("updatedAt"),
            pushed_at=node.get("pushedAt"),
            default_branch=(node.get("defaultBranchRef") or {}).get("name"),
            languages=languages,
            is_fork=is_fork,
            parent_repo=(node.get("parent") or {}).get("nameWithOwner"),
            fork_count_raw=fork_count,
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Repository:
        known = {k: data[k] for k in cls.__dataclass_fields__ if k in data}
        known["topics"] = tuple(known.get("topics") or ())
        known.setdefault("name", "")
        known.setdefault("full_name", "")
        return cls(**known)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["topics"] = list(self.topics)
        return data


@dataclass
class RepositorySummary:
    """Repositories plus per-user aggregates derived from them."""

    repositories: list[Repository] = field(default_factory=list)
    total_forks: int = 0
    total_stars: int = 0
    language_totals: dict[str, int] = field(default_factory=dict)

    @property
    def total_lines_of_code(self) -> int:
        return sum(self.language_totals.values())

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RepositorySummary:
        return cls(
            repositories=[Repository.from_dict(r) for r in data.get("repositories") or []],
            total_forks=int(data.get("total_forks", 0)),
            total_stars=int(data.get("total_stars", 0)),
            language_totals={str(k): int(v) for k, v in (data.get("language_totals") or {}).items()},
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "repositories": [r.to_dict() for r in self.repositories],
            "total_forks": self.total_forks,
            "total_stars": self.total_stars,
            "language_totals": dict(self.language_totals),
        }


@dataclass
class ContributionStats:
    """Contribution statistics over one or more windows."""

    total_contributions: int = 0
    calendar_total: int = 0
    weeks: list[dict[str, Any]] = field(default_factory=list)
    total_prs: int = 0
    total_issues: int = 0
    repo_contributions: dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_graphql(cls, collection: dict[str, Any]) -> ContributionStats:
        """Create stats from a GraphQL ``contributionsCollection``."""
        calendar = collection.get("contributionCalendar") or {}
        total = int(calendar.get("totalContributions", 0))
        repo_contributions: dict[str, int] = {}
        for entry in collection.get("commitContributionsByRepository") or []:
            name = str(entry["repository"]["nameWithOwner"])
            repo_contributions[name] = int((entry.get("contributions") or {}).get("totalCount", 0))
        return cls(
            total_contributions=total,
            calendar_total=total,
            weeks=list(calendar.get("weeks") or []),
            total_prs=int((collection.get("pullRequestContributions") or {}).get("totalCount", 0)),
            total_issues=int((collection.get("issueContributions") or {}).get("totalCount", 0)),
            repo_contributions=repo_contributions,
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ContributionStats:
        return cls(
            total_contributions=int(data.get("total_contributions", 0)),
            calendar_total=int(data.get("calendar_total", 0)),
            weeks=list(data.get("weeks") or []),
            total_prs=int(data.get("total_prs", 0)),
            total_issues=int(data.get("total_issues", 0)),
            repo_contributions={str(k): int(v) for k, v in (data.get("repo_contributions") or {}).items()},
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class GitHubSnapshot:
    """Everything fetched for one user from the code host."""

    profile: Profile
    repositories: RepositorySummary = field(default_factory=RepositorySummary)
    organizations: list[dict[str, Any]] = field(default_factory=list)
    contributions: ContributionStats = field(default_factory=ContributionStats)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> GitHubSnapshot:
        """Rebuild a snapshot from a stored record, filling defaults."""
        data = data or {}
        return cls(
            profile=Profile.from_dict(data.get("profile") or {}),
            repositories=RepositorySummary.from_dict(data.get("repositories") or {}),
            organizations=list(data.get("organizations") or []),
            contributions=ContributionStats.from_dict(data.get("contributions") or {}),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "profile": self.profile.to_dict(),
            "repositories": self.repositories.to_dict(),
            "organizations": list(self.organizations),
            "contributions": self.contributions.to_dict(),
        }
