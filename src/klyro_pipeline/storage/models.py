"""SQLAlchemy models for users, their domain records, and gates."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(UTC)


class DataStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class CredentialStatus(str, Enum):
    PENDING = "PENDING"
    ISSUED = "ISSUED"


class VerificationStatus(str, Enum):
    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    REJECTED = "REJECTED"


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class UserModel(Base):
    """Identity anchor for a developer."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    github_username: Mapped[str | None] = mapped_column(String(100), unique=True, nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    air_user_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    air_did: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=DataStatus.PENDING.value)
    last_fetched_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        Index("idx_users_air_user_id", "air_user_id"),
        Index("idx_users_air_did", "air_did"),
        Index("idx_users_email", "email"),
    )


class WalletModel(Base):
    """A wallet address linked to exactly one user."""

    __tablename__ = "wallets"

    id: Mapped[str] = mapped_column(String(200), primary_key=True)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    address: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (Index("idx_wallets_user_id", "user_id"),)


class DomainRecordMixin:
    """Columns shared by every per-user domain record."""

    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=DataStatus.PENDING.value)
    data: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    last_fetched_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )


class GitHubDataModel(DomainRecordMixin, Base):
    __tablename__ = "github_data"


class ContractsDataModel(DomainRecordMixin, Base):
    __tablename__ = "contracts_data"


class OnchainDataModel(DomainRecordMixin, Base):
    """Transfer history, stats, and embedded badge credentials."""

    __tablename__ = "onchain_data"


class UserScoreModel(DomainRecordMixin, Base):
    __tablename__ = "user_scores"

    total_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    last_score: Mapped[float | None] = mapped_column(Float, nullable=True)


class DeveloperWorthModel(DomainRecordMixin, Base):
    __tablename__ = "developer_worth"

    total_worth: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    last_worth: Mapped[float | None] = mapped_column(Float, nullable=True)


class UserCredentialModel(Base):
    """Credential issued (or pending issuance) for a user."""

    __tablename__ = "user_credentials"

    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    credential_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    issuer_did: Mapped[str | None] = mapped_column(String(255), nullable=True)
    credential_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=CredentialStatus.PENDING.value
    )
    subject: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    issued_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )


class PlatformConfigModel(Base):
    """Operator-editable scoring configuration; absent fields use defaults."""

    __tablename__ = "platform_config"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, default="default")
    enabled_chains: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    thresholds: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    weights: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    worth_multipliers: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    notable_repositories: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    tvl_tokens: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )


class KlyroGateModel(Base):
    """A partner-defined verification flow."""

    __tablename__ = "klyro_gates"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    requires_approval: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class GateVerificationModel(Base):
    __tablename__ = "gate_verifications"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    gate_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("klyro_gates.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=VerificationStatus.PENDING.value
    )
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    credential_results: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        UniqueConstraint("gate_id", "user_id", name="uq_gate_verifications_gate_user"),
        Index("idx_gate_verifications_user", "user_id"),
    )


class Domain(str, Enum):
    """Independently fetched and stored per-user record kinds."""

    GITHUB = "github"
    CONTRACTS = "contracts"
    ONCHAIN = "onchain"
    SCORE = "score"
    WORTH = "worth"


DOMAIN_MODELS: dict[Domain, type[DomainRecordMixin]] = {
    Domain.GITHUB: GitHubDataModel,
    Domain.CONTRACTS: ContractsDataModel,
    Domain.ONCHAIN: OnchainDataModel,
    Domain.SCORE: UserScoreModel,
    Domain.WORTH: DeveloperWorthModel,
}
