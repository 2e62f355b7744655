"""GitHub connector over the GraphQL and REST APIs."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

import httpx

from klyro_pipeline.codehost.contributions import (
    merge_contribution_windows,
    summarize_repositories,
    yearly_windows,
)
from klyro_pipeline.codehost.models import (
    ContributionStats,
    GitHubSnapshot,
    Profile,
    Repository,
    RepositorySummary,
)
from klyro_pipeline.fetch.retry import (
    DEFAULT_RETRY_POLICY,
    RateLimitedError,
    RetryPolicy,
    retry_with_backoff,
)
from klyro_pipeline.fetch.rotator import GITHUB_POOL, CredentialRotator

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.github.com"
DEFAULT_GRAPHQL_URL = "https://api.github.com/graphql"
DEFAULT_PAGE_DELAY_SECONDS = 1.0
DEFAULT_RATE_LIMIT_COOLDOWN_SECONDS = 10.0
DEFAULT_CONTRIBUTION_YEARS = 4
REPOSITORY_PAGE_SIZE = 100
RATE_LIMIT_STATUS_CODES = (403, 429)

PROFILE_QUERY = """
query($username: String!) {
  user(login: $username) {
    avatarUrl
    name
    login
    bio
    location
    createdAt
    url
    twitterUsername
    email
    websiteUrl
    followers { totalCount }
    repositories(privacy: PUBLIC) { totalCount }
  }
}
"""

REPOSITORIES_QUERY = """
query($username: String!, $first: Int!, $after: String) {
  user(login: $username) {
    repositories(first: $first, after: $after, privacy: PUBLIC) {
      pageInfo { hasNextPage endCursor }
      nodes {
        name
        fullName: nameWithOwner
        description
        url
        forkCount
        stargazerCount
        watchers { totalCount }
        issues { totalCount }
        repositoryTopics(first: 10) { nodes { topic { name } } }
        createdAt
        updatedAt
        pushedAt
        defaultBranchRef { name }
        isPrivate
        languages(first: 20) { edges { size node { name } } }
        isFork
        parent { nameWithOwner }
      }
    }
  }
}
"""

CONTRIBUTIONS_QUERY = """
query($login: String!, $from: DateTime, $to: DateTime) {
  user(login: $login) {
    contributionsCollection(from: $from, to: $to) {
      contributionCalendar {
        totalContributions
        weeks { contributionDays { date contributionCount color weekday } }
      }
      pullRequestContributions(first: 100) { totalCount }
      issueContributions(first: 100) { totalCount }
      commitContributionsByRepository(maxRepositories: 100) {
        repository { nameWithOwner }
        contributions { totalCount }
      }
    }
  }
}
"""

USERNAME_QUERY = """
query($username: String!) {
  user(login: $username) { login }
}
"""


class GitHubClientError(Exception):
    """Base exception for GitHub client errors."""


class GitHubNotFoundError(GitHubClientError):
    """Raised when a user or resource does not exist."""


class GitHubServerError(GitHubClientError):
    """Raised on a 5xx response; retried with backoff."""


class GitHubRateLimitError(GitHubClientError, RateLimitedError):
    """Raised when a request is still rate limited after the cooldown."""


class GitHubClient:
    """Code-host connector for one GitHub deployment.

    Each request takes the next token from the rotator. A 403/429 response
    waits a fixed cooldown and retries once; if still limited the request is
    handed back to the retry loop as a rate-limit failure.

    Example:
        ```python
        client = GitHubClient(rotator=rotator, http=http)
        if await client.is_valid_username("octocat"):
            snapshot = await client.fetch_snapshot("octocat")
        ```
    """

    def __init__(
        self,
        *,
        rotator: CredentialRotator,
        http: httpx.AsyncClient,
        api_url: str = DEFAULT_API_URL,
        graphql_url: str = DEFAULT_GRAPHQL_URL,
        page_delay_seconds: float = DEFAULT_PAGE_DELAY_SECONDS,
        rate_limit_cooldown_seconds: float = DEFAULT_RATE_LIMIT_COOLDOWN_SECONDS,
        contribution_years: int = DEFAULT_CONTRIBUTION_YEARS,
        policy: RetryPolicy = DEFAULT_RETRY_POLICY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._rotator = rotator
        self._http = http
        self._api_url = api_url.rstrip("/")
        self._graphql_url = graphql_url
        self._page_delay = page_delay_seconds
        self._cooldown = rate_limit_cooldown_seconds
        self._contribution_years = contribution_years
        self._policy = policy
        self._sleep = sleep

    async def _headers(self) -> dict[str, str]:
        token = await self._rotator.next(GITHUB_POOL)
        return {
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {token}",
        }

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        response = await self._http.request(method, url, headers=await self._headers(), **kwargs)
        if response.status_code in RATE_LIMIT_STATUS_CODES:
            logger.warning(
                "GitHub rate limit reached (remaining=%s). Waiting %.0f seconds...",
                response.headers.get("x-ratelimit-remaining"),
                self._cooldown,
            )
            await self._sleep(self._cooldown)
            response = await self._http.request(method, url, headers=await self._headers(), **kwargs)
            if response.status_code in RATE_LIMIT_STATUS_CODES:
                raise GitHubRateLimitError(
                    f"GitHub rate limited: HTTP {response.status_code}", cooldown=self._cooldown
                )
        if response.status_code == 404:
            raise GitHubNotFoundError(f"GitHub resource not found: {url}")
        if response.status_code >= 500:
            raise GitHubServerError(f"GitHub server error: HTTP {response.status_code}")
        if response.status_code >= 400:
            raise GitHubClientError(f"GitHub request failed: HTTP {response.status_code}")
        return response

    async def _request(self, method: str, url: str, *, name: str, **kwargs: Any) -> Any:
        response = await retry_with_backoff(
            lambda: self._send(method, url, **kwargs),
            operation_name=f"github:{name}",
            policy=self._policy,
            retry_on=(RateLimitedError, GitHubServerError, httpx.TransportError),
            sleep=self._sleep,
        )
        return response.json()

    async def _graphql(self, query: str, variables: dict[str, Any], *, name: str) -> dict[str, Any]:
        body = await self._request(
            "POST", self._graphql_url, name=name, json={"query": query, "variables": variables}
        )
        errors = body.get("errors")
        if errors:
            if any(e.get("type") == "NOT_FOUND" for e in errors):
                raise GitHubNotFoundError(f"GitHub {name}: {errors[0].get('message')}")
            raise GitHubClientError(f"GraphQL errors in {name}: {errors}")
        return dict(body.get("data") or {})

    async def fetch_profile(self, username: str) -> Profile:
        data = await self._graphql(PROFILE_QUERY, {"username": username}, name="fetchProfile")
        user = data.get("user")
        if not user:
            raise GitHubNotFoundError(f"GitHub user not found: {username}")
        return Profile.from_graphql(user)

    async def fetch_repositories_with_details(self, username: str) -> RepositorySummary:
        """Fetch every public repository, following the page cursor."""
        repos: list[Repository] = []
        cursor: str | None = None
        while True:
            data = await self._graphql(
                REPOSITORIES_QUERY,
                {"username": username, "first": REPOSITORY_PAGE_SIZE, "after": cursor},
                name="fetchRepositories",
            )
            user = data.get("user")
            if not user:
                raise GitHubNotFoundError(f"GitHub user not found: {username}")
            page = user["repositories"]
            repos.extend(Repository.from_graphql(node) for node in page.get("nodes") or [])
            page_info = page.get("pageInfo") or {}
            if not page_info.get("hasNextPage"):
                break
            cursor = page_info.get("endCursor")
            await self._sleep(self._page_delay)

        logger.info("Fetched %d repositories for %s", len(repos), username)
        return summarize_repositories(repos, username)

    async def fetch_organizations(self, username: str) -> list[dict[str, Any]]:
        orgs = await self._request(
            "GET", f"{self._api_url}/users/{username}/orgs", name="fetchOrganizations"
        )
        return list(orgs or [])

    async def fetch_contributions(self, username: str, start: str, end: str) -> ContributionStats:
        data = await self._graphql(
            CONTRIBUTIONS_QUERY,
            {"login": username, "from": start, "to": end},
            name="fetchContributions",
        )
        user = data.get("user")
        if not user:
            raise GitHubNotFoundError(f"GitHub user not found: {username}")
        return ContributionStats.from_graphql(user.get("contributionsCollection") or {})

    async def fetch_merged_contributions(
        self, username: str, now: datetime | None = None
    ) -> ContributionStats:
        """Fetch each yearly window and merge them chronologically."""
        windows = []
        for start, end in yearly_windows(self._contribution_years, now):
            logger.info("Fetching contributions for %s: %s to %s", username, start, end)
            windows.append(await self.fetch_contributions(username, start, end))
        return merge_contribution_windows(windows)

    async def is_valid_username(self, username: str) -> bool:
        """Existence probe; any failure means invalid."""
        try:
            data = await self._graphql(USERNAME_QUERY, {"username": username}, name="isValidUsername")
        except Exception as e:
            logger.info("Username check for %s failed: %s", username, e)
            return False
        return bool(data.get("user"))

    async def fetch_snapshot(self, username: str) -> GitHubSnapshot:
        """Fetch profile, repositories, organizations and merged contributions."""
        profile = await self.fetch_profile(username)
        repositories = await self.fetch_repositories_with_details(username)
        organizations = await self.fetch_organizations(username)
        contributions = await self.fetch_merged_contributions(username)
        return GitHubSnapshot(
            profile=profile,
            repositories=repositories,
            organizations=organizations,
            contributions=contributions,
        )
