"""Code-host connector - GitHub profile, repositories and contributions."""

from klyro_pipeline.codehost.github import (
    GitHubClient,
    GitHubClientError,
    GitHubNotFoundError,
    GitHubRateLimitError,
    GitHubServerError,
)
from klyro_pipeline.codehost.models import GitHubSnapshot

__all__ = [
    "GitHubClient",
    "GitHubClientError",
    "GitHubNotFoundError",
    "GitHubRateLimitError",
    "GitHubServerError",
    "GitHubSnapshot",
]
