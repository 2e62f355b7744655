"""Analysis entry points called from request handlers.

Rejections a caller can act on (unknown username, unresolvable ENS name,
malformed address, nothing to reprocess) come back as an
``AnalysisResult`` with ``ok=False`` rather than as exceptions.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Protocol

from klyro_pipeline.chain.alchemy import normalize_address
from klyro_pipeline.orchestrator import DEFAULT_STALENESS, is_fresh
from klyro_pipeline.queue import IngestionJob, job_for
from klyro_pipeline.storage.models import DataStatus, Domain
from klyro_pipeline.storage.repos import UserDTO
from klyro_pipeline.storage.store import RecordStore, UserNotFoundError, UserRecords

logger = logging.getLogger(__name__)

ENS_SUFFIX = ".eth"


class UsernameValidator(Protocol):
    async def is_valid_username(self, username: str) -> bool: ...


class NameResolver(Protocol):
    async def resolve_any(self, name: str) -> str | None: ...


class JobQueue(Protocol):
    async def enqueue(self, job: IngestionJob) -> str: ...


@dataclass
class AnalysisResult:
    ok: bool
    status: DataStatus | None = None
    message: str = ""
    error: str | None = None
    user: UserDTO | None = None
    records: UserRecords | None = None
    job_id: str | None = None

    @classmethod
    def rejection(cls, error: str) -> AnalysisResult:
        return cls(ok=False, error=error, message=error)


@dataclass
class ProcessingStatus:
    github_username: str
    status: DataStatus
    domains: dict[str, DataStatus | None] = field(default_factory=dict)
    last_fetched_at: datetime | None = None

    @property
    def progress(self) -> int:
        """Percentage of domains that are COMPLETED."""
        if not self.domains:
            return 0
        done = sum(1 for s in self.domains.values() if s == DataStatus.COMPLETED)
        return round(100 * done / len(self.domains))


class AnalysisService:
    """Validates analysis requests and hands work to the queue."""

    def __init__(
        self,
        store: RecordStore,
        queue: JobQueue,
        *,
        usernames: UsernameValidator,
        names: NameResolver,
        staleness: timedelta = DEFAULT_STALENESS,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._store = store
        self._queue = queue
        self._usernames = usernames
        self._names = names
        self._staleness = staleness
        self._clock = clock

    async def _resolve_addresses(self, addresses: Sequence[str]) -> list[str] | AnalysisResult:
        resolved: list[str] = []
        for raw in addresses:
            value = raw.strip()
            if not value:
                continue
            if value.lower().endswith(ENS_SUFFIX):
                address = await self._names.resolve_any(value.lower())
                if address is None:
                    return AnalysisResult.rejection(f"Could not resolve ENS name: {value}")
                logger.info("Resolved %s to %s", value, address)
                resolved.append(address)
                continue
            try:
                resolved.append(normalize_address(value))
            except ValueError:
                return AnalysisResult.rejection(f"Invalid wallet address: {value}")
        return list(dict.fromkeys(resolved))

    async def analyze_user(
        self,
        github_username: str,
        addresses: Sequence[str],
        email: str | None = None,
        force_refresh: bool = False,
    ) -> AnalysisResult:
        """Start (or short-circuit) analysis for a user.

        New users are created PENDING and queued. Existing users with
        complete, fresh data get their cached records back without
        queueing anything unless ``force_refresh`` is set.
        """
        username = github_username.strip().lower()
        if not username:
            return AnalysisResult.rejection("GitHub username is required")
        if not await self._usernames.is_valid_username(username):
            return AnalysisResult.rejection(f"GitHub user not found: {username}")

        resolved = await self._resolve_addresses(addresses)
        if isinstance(resolved, AnalysisResult):
            return resolved

        records = await self._store.get_user_with_records(username)
        if records is None:
            user = await self._store.create_user_with_records(username, resolved, email=email)
            job_id = await self._queue.enqueue(
                job_for(username, resolved, email=email, force_refresh=force_refresh)
            )
            return AnalysisResult(
                ok=True,
                status=DataStatus.PENDING,
                message="Processing started",
                user=user,
                job_id=job_id,
            )

        if resolved:
            await self._store.add_wallets(records.user, resolved)

        if not force_refresh and is_fresh(records, now=self._clock(), staleness=self._staleness):
            logger.info("Returning cached data for %s", username)
            return AnalysisResult(
                ok=True,
                status=DataStatus.COMPLETED,
                message="Data is up to date",
                user=records.user,
                records=records,
            )

        wallets = list(dict.fromkeys([*records.wallets, *resolved]))
        await self._store.set_user_status(records.user.id, DataStatus.PROCESSING)
        job_id = await self._queue.enqueue(
            job_for(username, wallets, email=email, force_refresh=force_refresh)
        )
        return AnalysisResult(
            ok=True,
            status=DataStatus.PROCESSING,
            message="Processing started",
            user=records.user,
            job_id=job_id,
        )

    async def check_processing_status(self, github_username: str) -> ProcessingStatus:
        """Aggregate and per-domain statuses for a user.

        Raises:
            UserNotFoundError: If the user does not exist.
        """
        records = await self._store.get_user_with_records(github_username.strip().lower())
        if records is None:
            raise UserNotFoundError(f"User not found: {github_username}")
        return ProcessingStatus(
            github_username=records.user.github_username or records.user.id,
            status=records.user.status,
            domains={domain.value: status for domain, status in records.statuses().items()},
            last_fetched_at=records.user.last_fetched_at,
        )

    async def reprocess_user(self, github_username: str) -> AnalysisResult:
        """Queue a force-refresh using the user's stored wallets."""
        username = github_username.strip().lower()
        records = await self._store.get_user_with_records(username)
        if records is None:
            return AnalysisResult.rejection(f"User not found: {username}")
        if not records.wallets:
            return AnalysisResult.rejection(f"No wallet addresses linked to {username}")

        await self._store.set_user_status(records.user.id, DataStatus.PROCESSING)
        job_id = await self._queue.enqueue(
            job_for(username, records.wallets, email=records.user.email, force_refresh=True)
        )
        logger.info("Queued reprocessing for %s", username)
        return AnalysisResult(
            ok=True,
            status=DataStatus.PROCESSING,
            message="Reprocessing started",
            user=records.user,
            job_id=job_id,
        )

    async def get_score(self, github_username: str) -> dict[str, object] | None:
        """Stored score and worth totals, or None before the first scoring pass."""
        records = await self._store.get_user_with_records(github_username.strip().lower())
        if records is None:
            raise UserNotFoundError(f"User not found: {github_username}")
        score = records.record(Domain.SCORE)
        worth = records.record(Domain.WORTH)
        if score is None or score.status != DataStatus.COMPLETED:
            return None
        return {
            "total_score": score.total,
            "last_score": score.last,
            "metrics": score.data,
            "total_worth": worth.total if worth else None,
            "last_worth": worth.last if worth else None,
            "worth_breakdown": worth.data if worth else None,
        }
