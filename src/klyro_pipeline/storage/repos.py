"""Repository pattern implementations for data access.

Each repository wraps an ``AsyncSession`` and returns dataclass DTOs so
callers never hold ORM instances outside a session.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from klyro_pipeline.storage.models import (
    DOMAIN_MODELS,
    CredentialStatus,
    DataStatus,
    DeveloperWorthModel,
    Domain,
    DomainRecordMixin,
    GateVerificationModel,
    KlyroGateModel,
    PlatformConfigModel,
    UserCredentialModel,
    UserModel,
    UserScoreModel,
    VerificationStatus,
    WalletModel,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

PLATFORM_CONFIG_FIELDS = (
    "enabled_chains",
    "thresholds",
    "weights",
    "worth_multipliers",
    "notable_repositories",
    "tvl_tokens",
)


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on the way back.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _insert(session: AsyncSession, model: type[Any]) -> Any:
    """Dialect-specific INSERT supporting ON CONFLICT clauses."""
    if session.get_bind().dialect.name == "postgresql":
        return pg_insert(model)
    return sqlite_insert(model)


@dataclass
class UserDTO:
    """Data transfer object for users."""

    id: str
    github_username: str | None
    status: DataStatus
    email: str | None = None
    air_user_id: str | None = None
    air_did: str | None = None
    last_fetched_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, model: UserModel) -> UserDTO:
        return cls(
            id=model.id,
            github_username=model.github_username,
            status=DataStatus(model.status),
            email=model.email,
            air_user_id=model.air_user_id,
            air_did=model.air_did,
            last_fetched_at=_as_utc(model.last_fetched_at),
            created_at=_as_utc(model.created_at),
            updated_at=_as_utc(model.updated_at),
        )


@dataclass
class DomainRecordDTO:
    """One per-user domain record (github, contracts, onchain, score, worth)."""

    domain: Domain
    user_id: str
    status: DataStatus
    data: dict[str, Any] | None = None
    last_fetched_at: datetime | None = None
    updated_at: datetime | None = None
    total: float | None = None
    last: float | None = None

    @classmethod
    def from_model(cls, domain: Domain, model: DomainRecordMixin) -> DomainRecordDTO:
        total = last = None
        if isinstance(model, UserScoreModel):
            total, last = model.total_score, model.last_score
        elif isinstance(model, DeveloperWorthModel):
            total, last = model.total_worth, model.last_worth
        return cls(
            domain=domain,
            user_id=model.user_id,
            status=DataStatus(model.status),
            data=model.data,
            last_fetched_at=_as_utc(model.last_fetched_at),
            updated_at=_as_utc(model.updated_at),
            total=total,
            last=last,
        )


@dataclass
class CredentialDTO:
    user_id: str
    status: CredentialStatus
    credential_id: str | None = None
    issuer_did: str | None = None
    credential_hash: str | None = None
    subject: dict[str, Any] | None = None
    issued_at: datetime | None = None

    @classmethod
    def from_model(cls, model: UserCredentialModel) -> CredentialDTO:
        return cls(
            user_id=model.user_id,
            status=CredentialStatus(model.status),
            credential_id=model.credential_id,
            issuer_did=model.issuer_did,
            credential_hash=model.credential_hash,
            subject=model.subject,
            issued_at=_as_utc(model.issued_at),
        )


@dataclass
class GateDTO:
    id: str
    slug: str
    name: str
    is_active: bool = True
    requires_approval: bool = False
    expires_at: datetime | None = None

    @classmethod
    def from_model(cls, model: KlyroGateModel) -> GateDTO:
        return cls(
            id=model.id,
            slug=model.slug,
            name=model.name,
            is_active=model.is_active,
            requires_approval=model.requires_approval,
            expires_at=_as_utc(model.expires_at),
        )


@dataclass
class GateVerificationDTO:
    id: str
    gate_id: str
    user_id: str
    status: VerificationStatus
    rejection_reason: str | None = None
    credential_results: dict[str, Any] = field(default_factory=dict)
    verified_at: datetime | None = None
    created_at: datetime | None = None

    @classmethod
    def from_model(cls, model: GateVerificationModel) -> GateVerificationDTO:
        return cls(
            id=model.id,
            gate_id=model.gate_id,
            user_id=model.user_id,
            status=VerificationStatus(model.status),
            rejection_reason=model.rejection_reason,
            credential_results=dict(model.credential_results or {}),
            verified_at=_as_utc(model.verified_at),
            created_at=_as_utc(model.created_at),
        )


class UserRepository:
    """Repository for users."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, user_id: str) -> UserDTO | None:
        model = await self.session.get(UserModel, user_id)
        return UserDTO.from_model(model) if model else None

    async def get_by_username(self, github_username: str) -> UserDTO | None:
        result = await self.session.execute(
            select(UserModel).where(UserModel.github_username == github_username.lower())
        )
        model = result.scalar_one_or_none()
        return UserDTO.from_model(model) if model else None

    async def find_by_any(
        self,
        *,
        air_did: str | None = None,
        air_user_id: str | None = None,
        email: str | None = None,
    ) -> UserDTO | None:
        """Find the first user matching any of the given identifiers."""
        conditions = []
        if air_did:
            conditions.append(UserModel.air_did == air_did)
        if air_user_id:
            conditions.append(UserModel.air_user_id == air_user_id)
        if email:
            conditions.append(UserModel.email == email)
        if not conditions:
            return None
        result = await self.session.execute(
            select(UserModel).where(or_(*conditions)).order_by(UserModel.created_at).limit(1)
        )
        model = result.scalar_one_or_none()
        return UserDTO.from_model(model) if model else None

    async def create(
        self,
        *,
        github_username: str | None,
        email: str | None = None,
        air_user_id: str | None = None,
        air_did: str | None = None,
        status: DataStatus = DataStatus.PENDING,
    ) -> UserDTO:
        model = UserModel(
            id=str(uuid.uuid4()),
            github_username=github_username.lower() if github_username else None,
            email=email,
            air_user_id=air_user_id,
            air_did=air_did,
            status=status.value,
        )
        self.session.add(model)
        await self.session.flush()
        return UserDTO.from_model(model)

    async def update(self, user_id: str, **values: Any) -> None:
        values["updated_at"] = datetime.now(UTC)
        await self.session.execute(update(UserModel).where(UserModel.id == user_id).values(**values))


class WalletRepository:
    """Repository for linked wallet addresses."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def list_addresses(self, user_id: str) -> list[str]:
        result = await self.session.execute(
            select(WalletModel.address).where(WalletModel.user_id == user_id).order_by(WalletModel.created_at)
        )
        return list(result.scalars().all())

    async def owners(self, addresses: list[str]) -> dict[str, str]:
        """Map already-linked addresses to their owning user id."""
        if not addresses:
            return {}
        result = await self.session.execute(
            select(WalletModel.address, WalletModel.user_id).where(WalletModel.address.in_(addresses))
        )
        return {address: user_id for address, user_id in result.all()}

    async def add(self, user_id: str, addresses: list[str], *, label: str) -> list[str]:
        """Link addresses to a user.

        An address already linked to any user is left untouched, so each
        address maps to at most one user.

        Returns:
            The addresses newly linked by this call.
        """
        normalized = list(dict.fromkeys(a.lower() for a in addresses))
        owners = await self.owners(normalized)
        added: list[str] = []
        now = datetime.now(UTC)
        for address in normalized:
            owner = owners.get(address)
            if owner is not None:
                if owner != user_id:
                    logger.warning("Wallet %s already linked to another user; skipping", address)
                continue
            stmt = _insert(self.session, WalletModel).values(
                id=f"{label}-{address}", user_id=user_id, address=address, created_at=now
            )
            await self.session.execute(stmt.on_conflict_do_nothing())
            added.append(address)
        await self.session.flush()
        return added


class DomainRepository:
    """Repository for one kind of per-user domain record."""

    def __init__(self, session: AsyncSession, domain: Domain) -> None:
        self.session = session
        self.domain = domain
        self.model = DOMAIN_MODELS[domain]

    async def get(self, user_id: str) -> DomainRecordDTO | None:
        model = await self.session.get(self.model, user_id)
        return DomainRecordDTO.from_model(self.domain, model) if model else None

    async def upsert(self, user_id: str, **values: Any) -> None:
        """Insert or partially update the record keyed by ``user_id``."""
        now = datetime.now(UTC)
        values["updated_at"] = now
        stmt = _insert(self.session, self.model).values(user_id=user_id, created_at=now, **values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id"],
            set_={name: getattr(stmt.excluded, name) for name in values},
        )
        await self.session.execute(stmt)
        await self.session.flush()


class CredentialRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, user_id: str) -> CredentialDTO | None:
        model = await self.session.get(UserCredentialModel, user_id)
        return CredentialDTO.from_model(model) if model else None

    async def upsert(self, dto: CredentialDTO) -> CredentialDTO:
        now = datetime.now(UTC)
        values = {
            "credential_id": dto.credential_id,
            "issuer_did": dto.issuer_did,
            "credential_hash": dto.credential_hash,
            "status": dto.status.value,
            "subject": dto.subject,
            "issued_at": dto.issued_at,
            "updated_at": now,
        }
        stmt = _insert(self.session, UserCredentialModel).values(
            user_id=dto.user_id, created_at=now, **values
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id"],
            set_={name: getattr(stmt.excluded, name) for name in values},
        )
        await self.session.execute(stmt)
        await self.session.flush()
        return dto


class PlatformConfigRepository:
    """Repository for the named platform configuration rows."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, name: str = "default") -> dict[str, Any] | None:
        result = await self.session.execute(
            select(PlatformConfigModel).where(PlatformConfigModel.name == name)
        )
        model = result.scalar_one_or_none()
        if model is None:
            return None
        return {
            field_name: getattr(model, field_name)
            for field_name in PLATFORM_CONFIG_FIELDS
            if getattr(model, field_name) is not None
        }

    async def seed(self, values: dict[str, Any], name: str = "default") -> bool:
        """Insert the row if it does not exist yet.

        Returns:
            True when a new row was written.
        """
        if await self.get(name) is not None:
            return False
        stmt = _insert(self.session, PlatformConfigModel).values(
            name=name,
            updated_at=datetime.now(UTC),
            **{k: values.get(k) for k in PLATFORM_CONFIG_FIELDS},
        )
        await self.session.execute(stmt.on_conflict_do_nothing())
        await self.session.flush()
        return True


class GateRepository:
    """Repository for gates and their verifications."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_slug(self, slug: str) -> GateDTO | None:
        result = await self.session.execute(select(KlyroGateModel).where(KlyroGateModel.slug == slug))
        model = result.scalar_one_or_none()
        return GateDTO.from_model(model) if model else None

    async def create(self, dto: GateDTO) -> GateDTO:
        self.session.add(
            KlyroGateModel(
                id=dto.id,
                slug=dto.slug,
                name=dto.name,
                is_active=dto.is_active,
                requires_approval=dto.requires_approval,
                expires_at=dto.expires_at,
            )
        )
        await self.session.flush()
        return dto

    async def get_verification(self, gate_id: str, user_id: str) -> GateVerificationDTO | None:
        result = await self.session.execute(
            select(GateVerificationModel).where(
                GateVerificationModel.gate_id == gate_id,
                GateVerificationModel.user_id == user_id,
            )
        )
        model = result.scalar_one_or_none()
        return GateVerificationDTO.from_model(model) if model else None

    async def create_verification(
        self,
        *,
        gate_id: str,
        user_id: str,
        status: VerificationStatus,
        rejection_reason: str | None = None,
        credential_results: dict[str, Any] | None = None,
        verified_at: datetime | None = None,
    ) -> GateVerificationDTO:
        model = GateVerificationModel(
            id=str(uuid.uuid4()),
            gate_id=gate_id,
            user_id=user_id,
            status=status.value,
            rejection_reason=rejection_reason,
            credential_results=credential_results or {},
            verified_at=verified_at,
            created_at=datetime.now(UTC),
        )
        self.session.add(model)
        await self.session.flush()
        return GateVerificationDTO.from_model(model)
