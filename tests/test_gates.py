"""Tests for gate verification."""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from klyro_pipeline.gates import (
    FALLBACK_EMAIL_DOMAIN,
    GateExpiredError,
    GateInactiveError,
    GateNotFoundError,
    GateRejection,
    VerificationOutcome,
    VerificationRequest,
    identify_user,
    verify_user_for_gate,
)
from klyro_pipeline.storage.models import VerificationStatus
from klyro_pipeline.storage.repos import GateDTO, GateVerificationDTO
from klyro_pipeline.storage.store import RecordStore

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)


def _request(status: str = "verified", **kwargs) -> VerificationRequest:
    return VerificationRequest.from_dict({"status": status, **kwargs})


@pytest.fixture
async def gate(store: RecordStore) -> GateDTO:
    return await store.create_gate(GateDTO(id="gate-1", slug="builders", name="Builders"))


class TestIdentifyUser:
    def test_nested_user_info(self) -> None:
        request = _request(
            userInfo={"user": {"id": "air-1", "abstractAccountAddress": "0xdid", "email": "dev@example.com"}}
        )

        identity = identify_user(request)

        assert identity.air_user_id == "air-1"
        assert identity.air_did == "0xdid"
        assert identity.email == "dev@example.com"

    def test_flat_user_info(self) -> None:
        identity = identify_user(_request(userInfo={"userId": "air-2", "globalId": "did:g"}))

        assert identity.air_user_id == "air-2"
        assert identity.air_did == "did:g"

    def test_falls_back_to_credential_subject(self) -> None:
        request = _request(
            credentialData={"credentialSubject": {"githubUsername": "alice", "email": "a@x.io"}}
        )

        identity = identify_user(request)

        assert identity.air_user_id == "alice"
        assert identity.email == "a@x.io"

    def test_anonymous_fallback(self) -> None:
        identity = identify_user(_request("failed"), now=1.5)
        assert identity.air_user_id == "anonymous-user-1500"

    def test_unknown_outcome_rejected(self) -> None:
        with pytest.raises(ValueError):
            _request("maybe")


class TestGateChecks:
    async def test_missing_gate(self, store: RecordStore) -> None:
        with pytest.raises(GateNotFoundError):
            await verify_user_for_gate(store, "nope", _request(), now=NOW)

    async def test_inactive_gate(self, store: RecordStore) -> None:
        await store.create_gate(GateDTO(id="g", slug="off", name="Off", is_active=False))

        with pytest.raises(GateInactiveError):
            await verify_user_for_gate(store, "off", _request(), now=NOW)

    async def test_expired_gate(self, store: RecordStore) -> None:
        await store.create_gate(GateDTO(id="g", slug="old", name="Old", expires_at=NOW - timedelta(days=1)))

        with pytest.raises(GateExpiredError):
            await verify_user_for_gate(store, "old", _request(), now=NOW)


class TestVerifyUserForGate:
    async def test_verified_creates_user(self, store: RecordStore, gate: GateDTO) -> None:
        result = await verify_user_for_gate(
            store,
            "builders",
            _request(userInfo={"userId": "air-1"}, verificationResult={"score": {"passed": True}}),
            now=NOW,
        )

        assert isinstance(result, GateVerificationDTO)
        assert result.status == VerificationStatus.VERIFIED
        assert result.verified_at == NOW
        assert result.credential_results == {"score": {"passed": True}}
        user = await store.find_user_by_any(air_user_id="air-1")
        assert user is not None
        assert user.email == f"air-1@{FALLBACK_EMAIL_DOMAIN}"

    async def test_approval_required(self, store: RecordStore) -> None:
        await store.create_gate(GateDTO(id="g", slug="vip", name="VIP", requires_approval=True))

        result = await verify_user_for_gate(store, "vip", _request(userInfo={"userId": "air-1"}), now=NOW)

        assert result.status == VerificationStatus.PENDING
        assert result.verified_at is None

    async def test_failed_uses_verifier_error(self, store: RecordStore, gate: GateDTO) -> None:
        result = await verify_user_for_gate(
            store, "builders", _request("failed", userInfo={"userId": "air-1"}, error="signature invalid"), now=NOW
        )

        assert result.status == VerificationStatus.REJECTED
        assert result.rejection_reason == "signature invalid"

    async def test_non_compliant_reason(self, store: RecordStore, gate: GateDTO) -> None:
        result = await verify_user_for_gate(
            store,
            "builders",
            _request("non-compliant", credentialData={"credentialSubject": {"id": "did:klyro:alice"}}),
            now=NOW,
        )

        assert result.status == VerificationStatus.REJECTED
        assert result.rejection_reason == "User credentials do not meet verification requirements"
        assert result.credential_results == {"credentialSubject": {"id": "did:klyro:alice"}}

    async def test_one_verification_per_user(self, store: RecordStore, gate: GateDTO) -> None:
        first = await verify_user_for_gate(store, "builders", _request(userInfo={"userId": "air-1"}), now=NOW)
        second = await verify_user_for_gate(
            store, "builders", _request("failed", userInfo={"userId": "air-1"}), now=NOW
        )

        assert second.id == first.id
        assert second.status == VerificationStatus.VERIFIED

    async def test_existing_user_is_enriched(self, store: RecordStore, gate: GateDTO) -> None:
        existing = await store.create_user(github_username="alice", email="dev@example.com")

        result = await verify_user_for_gate(
            store,
            "builders",
            _request(userInfo={"user": {"id": "air-9", "email": "dev@example.com"}, "did": "did:air:9"}),
            now=NOW,
        )

        assert result.user_id == existing.id
        user = await store.get_user("alice")
        assert user is not None
        assert user.air_user_id == "air-9"
        assert user.air_did == "did:air:9"

    async def test_user_lookup_failure_is_a_rejection(self, store: RecordStore, gate: GateDTO) -> None:
        store.find_user_by_any = AsyncMock(side_effect=RuntimeError("db down"))

        result = await verify_user_for_gate(
            store, "builders", _request("not-found", error="no credential"), now=NOW
        )

        assert result == GateRejection("Verification not-found: no credential")

    async def test_user_lookup_failure_propagates_when_verified(self, store: RecordStore, gate: GateDTO) -> None:
        store.find_user_by_any = AsyncMock(side_effect=RuntimeError("db down"))

        with pytest.raises(RuntimeError):
            await verify_user_for_gate(store, "builders", _request(userInfo={"userId": "air-1"}), now=NOW)
