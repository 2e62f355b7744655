"""Gate verification: record a partner gate's verdict for a user.

A verification arrives with an outcome from the credential verifier and
whatever identifies the user (issuer user id, DID, email, or the
credential subject). The user is found or created, and at most one
verification is stored per gate and user.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from klyro_pipeline.storage.models import VerificationStatus
from klyro_pipeline.storage.repos import GateVerificationDTO, UserDTO
from klyro_pipeline.storage.store import RecordStore

logger = logging.getLogger(__name__)

FALLBACK_EMAIL_DOMAIN = "air.klyro.dev"


class GateError(Exception):
    """Base exception for gate verification."""


class GateNotFoundError(GateError):
    pass


class GateInactiveError(GateError):
    pass


class GateExpiredError(GateError):
    pass


class VerificationOutcome(str, Enum):
    VERIFIED = "verified"
    FAILED = "failed"
    NON_COMPLIANT = "non-compliant"
    NOT_FOUND = "not-found"


REJECTION_REASONS: dict[VerificationOutcome, str] = {
    VerificationOutcome.FAILED: "Credential verification failed",
    VerificationOutcome.NON_COMPLIANT: "User credentials do not meet verification requirements",
    VerificationOutcome.NOT_FOUND: "User credentials not found - profile creation required",
}


@dataclass(frozen=True)
class GateRejection:
    """Structured rejection returned instead of raising."""

    message: str


@dataclass(frozen=True)
class VerificationRequest:
    outcome: VerificationOutcome
    user_info: dict[str, Any] = field(default_factory=dict)
    credential_data: dict[str, Any] = field(default_factory=dict)
    verification_result: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> VerificationRequest:
        return cls(
            outcome=VerificationOutcome(data["status"]),
            user_info=dict(data.get("userInfo") or {}),
            credential_data=dict(data.get("credentialData") or {}),
            verification_result=dict(data.get("verificationResult") or {}),
            error=data.get("error"),
        )


@dataclass(frozen=True)
class UserIdentity:
    air_user_id: str | None = None
    air_did: str | None = None
    email: str | None = None


def identify_user(request: VerificationRequest, now: float | None = None) -> UserIdentity:
    """Extract identifiers from user info, falling back to the credential subject.

    When neither carries a user id, an anonymous id is generated.
    """
    air_user_id = air_did = email = None

    info = request.user_info
    if info:
        user = info.get("user") or info
        air_user_id = user.get("id") or info.get("userId")
        air_did = user.get("abstractAccountAddress") or info.get("did") or info.get("globalId")
        email = user.get("email") or info.get("email")

    if not air_user_id:
        subject = request.credential_data.get("credentialSubject") or {}
        if subject:
            air_user_id = subject.get("id") or subject.get("githubUsername")
            email = email or subject.get("email")

    if not air_user_id:
        stamp = int((now if now is not None else time.time()) * 1000)
        air_user_id = f"anonymous-user-{stamp}"
        logger.warning("No user identification found, using fallback %s", air_user_id)

    return UserIdentity(air_user_id=air_user_id, air_did=air_did, email=email)


async def _find_or_create_user(store: RecordStore, identity: UserIdentity) -> UserDTO:
    user = await store.find_user_by_any(
        air_did=identity.air_did, air_user_id=identity.air_user_id, email=identity.email
    )
    if user is None:
        user = await store.create_user(
            air_user_id=identity.air_user_id,
            air_did=identity.air_did,
            email=identity.email or f"{identity.air_user_id}@{FALLBACK_EMAIL_DOMAIN}",
        )
        logger.info("Created user %s for gate verification", user.id)
        return user

    updates: dict[str, Any] = {}
    if not user.air_did and identity.air_did:
        updates["air_did"] = identity.air_did
    if not user.air_user_id and identity.air_user_id:
        updates["air_user_id"] = identity.air_user_id
    if not user.email and identity.email:
        updates["email"] = identity.email
    if updates:
        await store.update_user(user.id, **updates)
        logger.info("Updated user %s with %s", user.id, ", ".join(sorted(updates)))
    return user


async def verify_user_for_gate(
    store: RecordStore,
    slug: str,
    request: VerificationRequest,
    *,
    now: datetime | None = None,
) -> GateVerificationDTO | GateRejection:
    """Record a gate verification for the user behind ``request``.

    Raises:
        GateNotFoundError: No gate has this slug.
        GateInactiveError: The gate is switched off.
        GateExpiredError: The gate's expiry has passed.
    """
    now = now or datetime.now(UTC)
    logger.info("Processing %s verification for gate %s", request.outcome.value, slug)

    gate = await store.get_gate(slug)
    if gate is None:
        raise GateNotFoundError(f"KlyroGate not found: {slug}")
    if not gate.is_active:
        raise GateInactiveError(f"KlyroGate is not active: {slug}")
    if gate.expires_at is not None and gate.expires_at < now:
        raise GateExpiredError(f"KlyroGate has expired: {slug}")

    identity = identify_user(request, now.timestamp())
    try:
        user = await _find_or_create_user(store, identity)
    except Exception as e:
        logger.error("Could not find or create user for gate %s: %s", slug, e)
        if request.outcome != VerificationOutcome.VERIFIED:
            return GateRejection(
                f"Verification {request.outcome.value}: {request.error or 'Unknown error'}"
            )
        raise

    existing = await store.get_gate_verification(gate.id, user.id)
    if existing is not None:
        logger.info("User %s already has a verification for gate %s", user.id, slug)
        return existing

    verified_at = None
    rejection_reason = None
    if request.outcome == VerificationOutcome.VERIFIED:
        if gate.requires_approval:
            status = VerificationStatus.PENDING
        else:
            status = VerificationStatus.VERIFIED
            verified_at = now
    else:
        status = VerificationStatus.REJECTED
        if request.outcome == VerificationOutcome.FAILED and request.error:
            rejection_reason = request.error
        else:
            rejection_reason = REJECTION_REASONS[request.outcome]

    return await store.create_gate_verification(
        gate_id=gate.id,
        user_id=user.id,
        status=status,
        rejection_reason=rejection_reason,
        credential_results=request.verification_result or request.credential_data,
        verified_at=verified_at,
    )
