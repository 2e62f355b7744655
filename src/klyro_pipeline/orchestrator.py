"""Ingestion orchestrator: the per-user state machine.

For one user this decides which domains are missing, failed, or stale,
fetches them concurrently, rescoring when anything changed, and derives
the user's aggregate status from the statuses persisted afterwards.

Each domain moves ``PENDING -> PROCESSING -> COMPLETED | FAILED``. The
PROCESSING write is committed before the fetch starts, and a failing
domain never touches a sibling's record, so a retried run only redoes
what is still missing, failed, or stale.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from datetime import UTC, datetime, timedelta
from typing import Protocol

from klyro_pipeline.badges.models import BadgeCredentials
from klyro_pipeline.chain.models import ChainSnapshot
from klyro_pipeline.chain.networks import Network
from klyro_pipeline.codehost.models import GitHubSnapshot
from klyro_pipeline.issuer import CredentialIssuer, issue_credential_for_user
from klyro_pipeline.queue import IngestionJob
from klyro_pipeline.scoring.config import PlatformConfig
from klyro_pipeline.scoring.engine import ScoringInput, compute_score, compute_worth
from klyro_pipeline.storage.models import DataStatus, Domain
from klyro_pipeline.storage.repos import DomainRecordDTO, UserDTO
from klyro_pipeline.storage.store import RecordStore, UserNotFoundError, UserRecords

logger = logging.getLogger(__name__)

DEFAULT_STALENESS = timedelta(hours=24)

DOMAIN_LABELS: dict[Domain, str] = {
    Domain.GITHUB: "GitHub Data",
    Domain.CONTRACTS: "Contracts Data",
    Domain.ONCHAIN: "Onchain Data",
    Domain.SCORE: "User Score",
    Domain.WORTH: "Developer Worth",
}

CHAIN_DOMAINS = (Domain.CONTRACTS, Domain.ONCHAIN)
SCORING_DOMAINS = (Domain.SCORE, Domain.WORTH)


class IngestionError(Exception):
    """One or more domains did not reach COMPLETED."""

    def __init__(self, failed: Sequence[str]) -> None:
        self.failed = list(failed)
        super().__init__(f"The following services failed to complete: {', '.join(self.failed)}")


class GitHubFetcher(Protocol):
    async def fetch_snapshot(self, username: str) -> GitHubSnapshot: ...


class BadgeCollector(Protocol):
    async def collect(self, addresses: Sequence[str]) -> BadgeCredentials: ...


ChainCollector = Callable[[Sequence[Network], Sequence[str], PlatformConfig], Awaitable[ChainSnapshot]]


def needs_processing(
    record: DomainRecordDTO | None,
    *,
    now: datetime,
    staleness: timedelta = DEFAULT_STALENESS,
    force_refresh: bool = False,
) -> bool:
    """A domain is refetched when missing, not COMPLETED, or stale."""
    if force_refresh or record is None or record.status != DataStatus.COMPLETED:
        return True
    if record.last_fetched_at is None:
        return True
    return now - record.last_fetched_at > staleness


def is_fresh(records: UserRecords, *, now: datetime, staleness: timedelta = DEFAULT_STALENESS) -> bool:
    """True when every domain is COMPLETED and the user was fetched recently."""
    user = records.user
    if user.status != DataStatus.COMPLETED or user.last_fetched_at is None:
        return False
    if now - user.last_fetched_at > staleness:
        return False
    return all(status == DataStatus.COMPLETED for status in records.statuses().values())


class IngestionOrchestrator:
    """Runs one user's ingestion end to end.

    Example:
        ```python
        orchestrator = IngestionOrchestrator(
            store, github=github_client, chain=collect_chain, badges=badge_connector
        )
        await orchestrator.process_user("alice", ["0xabc..."])
        ```
    """

    def __init__(
        self,
        store: RecordStore,
        *,
        github: GitHubFetcher,
        chain: ChainCollector,
        badges: BadgeCollector,
        issuer: CredentialIssuer | None = None,
        staleness: timedelta = DEFAULT_STALENESS,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._store = store
        self._github = github
        self._chain = chain
        self._badges = badges
        self._issuer = issuer
        self._staleness = staleness
        self._clock = clock

    async def process_job(self, job: IngestionJob) -> None:
        """Queue handler entry point."""
        await self.process_user(
            job.github_username,
            list(job.addresses),
            email=job.email,
            force_refresh=job.force_refresh,
        )

    async def process_user(
        self,
        github_username: str,
        addresses: Sequence[str],
        *,
        email: str | None = None,
        force_refresh: bool = False,
    ) -> None:
        """Bring one user's records up to date.

        Raises:
            UserNotFoundError: If no user exists for the username.
            IngestionError: If any required domain ends up not COMPLETED.
        """
        records = await self._store.get_user_with_records(github_username.lower())
        if records is None:
            raise UserNotFoundError(f"User not found: {github_username}")
        user = records.user
        try:
            if addresses:
                await self._store.add_wallets(user, list(addresses))
            wallets = await self._store.get_wallets(user.id) or [a.lower() for a in addresses]
        except Exception as e:
            logger.error("Linking wallets failed for %s: %s", user.github_username, e)
            await self._store.set_user_status(user.id, DataStatus.FAILED)
            raise

        now = self._clock()
        fetch_github = user.github_username is not None and needs_processing(
            records.record(Domain.GITHUB),
            now=now,
            staleness=self._staleness,
            force_refresh=force_refresh,
        )
        fetch_chain = any(
            needs_processing(
                records.record(domain),
                now=now,
                staleness=self._staleness,
                force_refresh=force_refresh,
            )
            for domain in CHAIN_DOMAINS
        )
        rescore = (
            fetch_github
            or fetch_chain
            or any(
                (r := records.record(d)) is None or r.status != DataStatus.COMPLETED
                for d in SCORING_DOMAINS
            )
        )

        if not rescore:
            logger.info("All data is fresh for %s; nothing to process", user.github_username)
            if user.status != DataStatus.COMPLETED:
                await self._store.set_user_status(user.id, DataStatus.COMPLETED)
            return

        try:
            await self._store.set_user_status(user.id, DataStatus.PROCESSING)
            config = PlatformConfig.from_overrides(await self._store.load_platform_config())

            branches: dict[str, Awaitable[None]] = {}
            if fetch_github:
                branches["github"] = self._process_github(user)
            if fetch_chain:
                branches["chain"] = self._process_chain(user, wallets, config)
            if branches:
                logger.info("Processing %s for %s", ", ".join(branches), user.github_username)
            results = await asyncio.gather(*branches.values(), return_exceptions=True)
            for name, result in zip(branches, results, strict=True):
                if isinstance(result, BaseException):
                    logger.error("%s processing failed for %s: %s", name, user.github_username, result)

            await self._process_scores(user.id, config)

            statuses = await self._store.get_domain_statuses(user.id)
            failed = [
                DOMAIN_LABELS[domain]
                for domain, status in statuses.items()
                if status != DataStatus.COMPLETED
                and not (domain is Domain.GITHUB and user.github_username is None)
            ]
            if failed:
                raise IngestionError(failed)

            await self._store.set_user_status(
                user.id, DataStatus.COMPLETED, last_fetched_at=self._clock(), email=email
            )
            logger.info("Completed ingestion for %s", user.github_username)
        except Exception as e:
            logger.error("Ingestion failed for %s: %s", user.github_username, e)
            await self._store.set_user_status(user.id, DataStatus.FAILED)
            raise

        if self._issuer is not None:
            await issue_credential_for_user(self._store, self._issuer, user.id)

    async def _process_github(self, user: UserDTO) -> None:
        username = user.github_username or ""
        await self._store.set_domain_status(user.id, Domain.GITHUB, DataStatus.PROCESSING)
        try:
            snapshot = await self._github.fetch_snapshot(username)
        except Exception:
            await self._store.set_domain_status(user.id, Domain.GITHUB, DataStatus.FAILED)
            raise
        await self._store.save_domain(user.id, Domain.GITHUB, snapshot.to_dict(), fetched_at=self._clock())

    async def _process_chain(self, user: UserDTO, addresses: Sequence[str], config: PlatformConfig) -> None:
        """Fetch chain data and badges together; both land in the chain records.

        Per-network failures still persist the networks that succeeded, with
        both records marked FAILED so the next run retries them.
        """
        for domain in CHAIN_DOMAINS:
            await self._store.set_domain_status(user.id, domain, DataStatus.PROCESSING)
        try:
            chain_result, badge_result = await asyncio.gather(
                self._chain(config.enabled_networks(), addresses, config),
                self._badges.collect(addresses),
                return_exceptions=True,
            )
            if isinstance(chain_result, BaseException):
                raise chain_result
            if isinstance(badge_result, BaseException):
                logger.warning("Badge lookup failed for %s: %s", user.github_username, badge_result)
                badge_result = BadgeCredentials()

            status = DataStatus.FAILED if chain_result.has_failures else DataStatus.COMPLETED
            if chain_result.has_failures:
                logger.error(
                    "Chain data incomplete for %s; failed networks: %s",
                    user.github_username,
                    ", ".join(chain_result.failed_networks),
                )
            onchain = chain_result.onchain_to_dict()
            onchain["hackathon"] = badge_result.to_dict()

            fetched_at = self._clock()
            await self._store.save_domain(
                user.id, Domain.CONTRACTS, chain_result.contracts_to_dict(), status=status, fetched_at=fetched_at
            )
            await self._store.save_domain(user.id, Domain.ONCHAIN, onchain, status=status, fetched_at=fetched_at)
        except Exception:
            for domain in CHAIN_DOMAINS:
                await self._store.set_domain_status(user.id, domain, DataStatus.FAILED)
            raise

    async def _process_scores(self, user_id: str, config: PlatformConfig) -> None:
        records = await self._store.get_user_with_records(user_id=user_id)
        if records is None:
            raise UserNotFoundError(f"User not found: {user_id}")
        inputs = ScoringInput.from_records(
            github=records.data(Domain.GITHUB),
            contracts=records.data(Domain.CONTRACTS),
            onchain=records.data(Domain.ONCHAIN),
        )
        results = await asyncio.gather(
            self._score(records, inputs, config),
            self._worth(records, inputs, config),
            return_exceptions=True,
        )
        for domain, result in zip(SCORING_DOMAINS, results, strict=True):
            if isinstance(result, BaseException):
                logger.error("%s computation failed for user %s: %s", DOMAIN_LABELS[domain], user_id, result)

    async def _score(self, records: UserRecords, inputs: ScoringInput, config: PlatformConfig) -> None:
        user_id = records.user.id
        previous = records.record(Domain.SCORE)
        await self._store.set_domain_status(user_id, Domain.SCORE, DataStatus.PROCESSING)
        try:
            result = compute_score(inputs, config)
            await self._store.save_score(
                user_id,
                total_score=result.total_score,
                metrics=result.metrics_to_dict(),
                last_score=previous.total if previous and previous.last_fetched_at else None,
            )
        except Exception:
            await self._store.set_domain_status(user_id, Domain.SCORE, DataStatus.FAILED)
            raise

    async def _worth(self, records: UserRecords, inputs: ScoringInput, config: PlatformConfig) -> None:
        user_id = records.user.id
        previous = records.record(Domain.WORTH)
        await self._store.set_domain_status(user_id, Domain.WORTH, DataStatus.PROCESSING)
        try:
            result = compute_worth(inputs, config)
            await self._store.save_worth(
                user_id,
                total_worth=result.total_worth,
                breakdown=result.breakdown_to_dict(),
                last_worth=previous.total if previous and previous.last_fetched_at else None,
            )
        except Exception:
            await self._store.set_domain_status(user_id, Domain.WORTH, DataStatus.FAILED)
            raise
