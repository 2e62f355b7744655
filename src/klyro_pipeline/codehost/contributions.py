"""Multi-year contribution merging and repository aggregation."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import UTC, datetime

from klyro_pipeline.codehost.models import ContributionStats, Repository, RepositorySummary


def _years_before(moment: datetime, years: int) -> datetime:
    try:
        return moment.replace(year=moment.year - years)
    except ValueError:
        # Feb 29 in a non-leap target year
        return moment.replace(year=moment.year - years, day=28)


def _iso_seconds(moment: datetime) -> str:
    return moment.astimezone(UTC).replace(microsecond=0, tzinfo=None).isoformat() + "Z"


def yearly_windows(years: int, now: datetime | None = None) -> list[tuple[str, str]]:
    """Return one-year ``(start, end)`` windows, most recent first.

    Window ``i`` ends ``i`` years before ``now`` and starts a year earlier.
    Bounds are UTC ISO-8601 strings without fractional seconds.
    """
    now = now or datetime.now(UTC)
    windows = []
    for i in range(years):
        end = _years_before(now, i)
        start = _years_before(end, 1)
        windows.append((_iso_seconds(start), _iso_seconds(end)))
    return windows


def merge_contribution_windows(windows: Sequence[ContributionStats]) -> ContributionStats:
    """Merge per-year stats given most recent first.

    Totals are summed, repository counts are added key-wise, and each older
    year's calendar weeks are prepended so the result reads earliest first.
    """
    merged = ContributionStats()
    for window in windows:
        merged.total_contributions += window.total_contributions
        merged.calendar_total += window.calendar_total
        merged.total_prs += window.total_prs
        merged.total_issues += window.total_issues
        merged.weeks = list(window.weeks) + merged.weeks
        for repo, count in window.repo_contributions.items():
            merged.repo_contributions[repo] = merged.repo_contributions.get(repo, 0) + count
    return merged


def is_authored_by(repo: Repository, username: str) -> bool:
    """Heuristic for repositories whose forks/stars count toward the user."""
    return repo.is_fork or username.lower() in repo.full_name.lower()


def summarize_repositories(repos: Iterable[Repository], username: str) -> RepositorySummary:
    """Sum language bytes over all repos and forks/stars over authored ones."""
    summary = RepositorySummary()
    for repo in repos:
        summary.repositories.append(repo)
        if is_authored_by(repo, username):
            summary.total_forks += repo.fork_count_raw
            summary.total_stars += repo.stargazers_count
        for language, size in repo.languages.items():
            summary.language_totals[language] = summary.language_totals.get(language, 0) + size
    return summary
