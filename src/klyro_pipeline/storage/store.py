"""Record store used by the orchestrator, service, and gates.

Every call runs in its own transaction, so a status write is committed and
visible to concurrent readers as soon as the call returns.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from klyro_pipeline.storage.models import DataStatus, Domain, VerificationStatus
from klyro_pipeline.storage.repos import (
    CredentialDTO,
    CredentialRepository,
    DomainRecordDTO,
    DomainRepository,
    GateDTO,
    GateRepository,
    GateVerificationDTO,
    PlatformConfigRepository,
    UserDTO,
    UserRepository,
    WalletRepository,
)

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


class UserNotFoundError(Exception):
    """Raised when a user lookup finds nothing."""


@dataclass
class UserRecords:
    """A user with its wallets and every domain record."""

    user: UserDTO
    wallets: list[str] = field(default_factory=list)
    records: dict[Domain, DomainRecordDTO] = field(default_factory=dict)
    credential: CredentialDTO | None = None

    def record(self, domain: Domain) -> DomainRecordDTO | None:
        return self.records.get(domain)

    def data(self, domain: Domain) -> dict[str, Any] | None:
        record = self.records.get(domain)
        return record.data if record else None

    def statuses(self) -> dict[Domain, DataStatus | None]:
        return {domain: (r.status if (r := self.records.get(domain)) else None) for domain in Domain}


class RecordStore:
    """Keyed find/upsert operations over users and their domain records."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session = session_factory

    # Users and wallets

    async def get_user(self, github_username: str) -> UserDTO | None:
        async with self._session() as session:
            return await UserRepository(session).get_by_username(github_username)

    async def get_user_by_id(self, user_id: str) -> UserDTO | None:
        async with self._session() as session:
            return await UserRepository(session).get(user_id)

    async def get_user_with_records(
        self,
        github_username: str | None = None,
        *,
        user_id: str | None = None,
    ) -> UserRecords | None:
        """Load a user with wallets, domain records, and credential in one transaction."""
        async with self._session() as session:
            users = UserRepository(session)
            if user_id is not None:
                user = await users.get(user_id)
            elif github_username is not None:
                user = await users.get_by_username(github_username)
            else:
                raise ValueError("github_username or user_id is required")
            if user is None:
                return None

            records: dict[Domain, DomainRecordDTO] = {}
            for domain in Domain:
                record = await DomainRepository(session, domain).get(user.id)
                if record is not None:
                    records[domain] = record
            return UserRecords(
                user=user,
                wallets=await WalletRepository(session).list_addresses(user.id),
                records=records,
                credential=await CredentialRepository(session).get(user.id),
            )

    async def create_user_with_records(
        self,
        github_username: str | None,
        addresses: list[str],
        *,
        email: str | None = None,
        air_user_id: str | None = None,
        air_did: str | None = None,
    ) -> UserDTO:
        """Create a PENDING user with PENDING domain records and linked wallets."""
        async with self._session() as session:
            user = await UserRepository(session).create(
                github_username=github_username,
                email=email,
                air_user_id=air_user_id,
                air_did=air_did,
            )
            for domain in Domain:
                await DomainRepository(session, domain).upsert(
                    user.id, status=DataStatus.PENDING.value
                )
            await WalletRepository(session).add(
                user.id, addresses, label=user.github_username or user.id
            )
        logger.info("Created user %s with %d wallet(s)", user.github_username or user.id, len(addresses))
        return user

    async def create_user(
        self,
        *,
        github_username: str | None = None,
        email: str | None = None,
        air_user_id: str | None = None,
        air_did: str | None = None,
    ) -> UserDTO:
        """Create a bare user without domain records."""
        async with self._session() as session:
            return await UserRepository(session).create(
                github_username=github_username,
                email=email,
                air_user_id=air_user_id,
                air_did=air_did,
            )

    async def add_wallets(self, user: UserDTO, addresses: list[str]) -> list[str]:
        async with self._session() as session:
            return await WalletRepository(session).add(
                user.id, addresses, label=user.github_username or user.id
            )

    async def get_wallets(self, user_id: str) -> list[str]:
        async with self._session() as session:
            return await WalletRepository(session).list_addresses(user_id)

    async def set_user_status(
        self,
        user_id: str,
        status: DataStatus,
        *,
        last_fetched_at: datetime | None = None,
        email: str | None = None,
    ) -> None:
        values: dict[str, Any] = {"status": status.value}
        if last_fetched_at is not None:
            values["last_fetched_at"] = last_fetched_at
        if email is not None:
            values["email"] = email
        async with self._session() as session:
            await UserRepository(session).update(user_id, **values)

    async def update_user(self, user_id: str, **values: Any) -> None:
        async with self._session() as session:
            await UserRepository(session).update(user_id, **values)

    async def find_user_by_any(
        self,
        *,
        air_did: str | None = None,
        air_user_id: str | None = None,
        email: str | None = None,
    ) -> UserDTO | None:
        async with self._session() as session:
            return await UserRepository(session).find_by_any(
                air_did=air_did, air_user_id=air_user_id, email=email
            )

    # Domain records

    async def get_domain(self, user_id: str, domain: Domain) -> DomainRecordDTO | None:
        async with self._session() as session:
            return await DomainRepository(session, domain).get(user_id)

    async def get_domain_statuses(self, user_id: str) -> dict[Domain, DataStatus | None]:
        async with self._session() as session:
            statuses: dict[Domain, DataStatus | None] = {}
            for domain in Domain:
                record = await DomainRepository(session, domain).get(user_id)
                statuses[domain] = record.status if record else None
            return statuses

    async def set_domain_status(self, user_id: str, domain: Domain, status: DataStatus) -> None:
        async with self._session() as session:
            await DomainRepository(session, domain).upsert(user_id, status=status.value)
        logger.debug("User %s %s -> %s", user_id, domain.value, status.value)

    async def save_domain(
        self,
        user_id: str,
        domain: Domain,
        data: dict[str, Any],
        *,
        status: DataStatus = DataStatus.COMPLETED,
        fetched_at: datetime | None = None,
    ) -> None:
        """Replace a domain record's data wholesale."""
        async with self._session() as session:
            await DomainRepository(session, domain).upsert(
                user_id,
                status=status.value,
                data=data,
                last_fetched_at=fetched_at or datetime.now(UTC),
            )

    async def save_score(
        self,
        user_id: str,
        *,
        total_score: float,
        metrics: dict[str, Any],
        last_score: float | None,
    ) -> None:
        async with self._session() as session:
            await DomainRepository(session, Domain.SCORE).upsert(
                user_id,
                status=DataStatus.COMPLETED.value,
                data=metrics,
                total_score=total_score,
                last_score=last_score,
                last_fetched_at=datetime.now(UTC),
            )

    async def save_worth(
        self,
        user_id: str,
        *,
        total_worth: float,
        breakdown: dict[str, Any],
        last_worth: float | None,
    ) -> None:
        async with self._session() as session:
            await DomainRepository(session, Domain.WORTH).upsert(
                user_id,
                status=DataStatus.COMPLETED.value,
                data=breakdown,
                total_worth=total_worth,
                last_worth=last_worth,
                last_fetched_at=datetime.now(UTC),
            )

    # Configuration

    async def load_platform_config(self, name: str = "default") -> dict[str, Any] | None:
        async with self._session() as session:
            return await PlatformConfigRepository(session).get(name)

    async def seed_platform_config(self, values: dict[str, Any], name: str = "default") -> bool:
        async with self._session() as session:
            created = await PlatformConfigRepository(session).seed(values, name)
        if created:
            logger.info("Seeded platform config %r with defaults", name)
        return created

    # Credentials

    async def get_credential(self, user_id: str) -> CredentialDTO | None:
        async with self._session() as session:
            return await CredentialRepository(session).get(user_id)

    async def save_credential(self, dto: CredentialDTO) -> CredentialDTO:
        async with self._session() as session:
            return await CredentialRepository(session).upsert(dto)

    # Gates

    async def get_gate(self, slug: str) -> GateDTO | None:
        async with self._session() as session:
            return await GateRepository(session).get_by_slug(slug)

    async def create_gate(self, dto: GateDTO) -> GateDTO:
        async with self._session() as session:
            return await GateRepository(session).create(dto)

    async def get_gate_verification(self, gate_id: str, user_id: str) -> GateVerificationDTO | None:
        async with self._session() as session:
            return await GateRepository(session).get_verification(gate_id, user_id)

    async def create_gate_verification(
        self,
        *,
        gate_id: str,
        user_id: str,
        status: VerificationStatus,
        rejection_reason: str | None = None,
        credential_results: dict[str, Any] | None = None,
        verified_at: datetime | None = None,
    ) -> GateVerificationDTO:
        async with self._session() as session:
            return await GateRepository(session).create_verification(
                gate_id=gate_id,
                user_id=user_id,
                status=status,
                rejection_reason=rejection_reason,
                credential_results=credential_results,
                verified_at=verified_at,
            )
