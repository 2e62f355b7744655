"""Tests for the record store against SQLite."""

from datetime import UTC, datetime, timedelta

import pytest

from klyro_pipeline.storage.models import CredentialStatus, DataStatus, Domain, VerificationStatus
from klyro_pipeline.storage.repos import CredentialDTO, GateDTO
from klyro_pipeline.storage.store import RecordStore


class TestUsers:
    async def test_create_user_with_records(self, store: RecordStore, wallet_a: str) -> None:
        user = await store.create_user_with_records("Alice", [wallet_a.upper().replace("0X", "0x")])

        assert user.github_username == "alice"
        assert user.status == DataStatus.PENDING

        records = await store.get_user_with_records("alice")
        assert records is not None
        assert records.wallets == [wallet_a]
        assert records.statuses() == {domain: DataStatus.PENDING for domain in Domain}
        assert records.credential is None

    async def test_lookup_is_case_insensitive(self, store: RecordStore) -> None:
        await store.create_user_with_records("alice", [])

        assert await store.get_user("ALICE") is not None
        assert await store.get_user_with_records("bob") is None

    async def test_lookup_by_id(self, store: RecordStore) -> None:
        user = await store.create_user_with_records("alice", [])

        records = await store.get_user_with_records(user_id=user.id)
        assert records is not None
        assert records.user.github_username == "alice"
        assert (await store.get_user_by_id(user.id)) == records.user

    async def test_lookup_requires_identifier(self, store: RecordStore) -> None:
        with pytest.raises(ValueError):
            await store.get_user_with_records()

    async def test_bare_user_has_no_records(self, store: RecordStore) -> None:
        user = await store.create_user(email="dev@example.com", air_did="did:air:1")

        records = await store.get_user_with_records(user_id=user.id)
        assert records is not None
        assert records.records == {}
        assert records.statuses()[Domain.GITHUB] is None

    async def test_set_user_status(self, store: RecordStore) -> None:
        user = await store.create_user_with_records("alice", [])
        fetched = datetime(2026, 1, 2, 3, 4, 5, tzinfo=UTC)

        await store.set_user_status(user.id, DataStatus.COMPLETED, last_fetched_at=fetched, email="a@x.io")

        updated = await store.get_user("alice")
        assert updated is not None
        assert updated.status == DataStatus.COMPLETED
        assert updated.last_fetched_at == fetched
        assert updated.email == "a@x.io"

    async def test_find_user_by_any(self, store: RecordStore) -> None:
        user = await store.create_user(email="dev@example.com", air_user_id="air-1")

        assert (await store.find_user_by_any(air_user_id="air-1")).id == user.id
        assert (await store.find_user_by_any(air_did="did:nope", email="dev@example.com")).id == user.id
        assert await store.find_user_by_any(air_did="did:nope") is None
        assert await store.find_user_by_any() is None


class TestWallets:
    async def test_add_wallets_returns_new_links_only(
        self, store: RecordStore, wallet_a: str, wallet_b: str
    ) -> None:
        user = await store.create_user_with_records("alice", [wallet_a])

        added = await store.add_wallets(user, [wallet_a, wallet_b, wallet_b])

        assert added == [wallet_b]
        assert sorted(await store.get_wallets(user.id)) == [wallet_a, wallet_b]

    async def test_wallet_belongs_to_one_user(
        self, store: RecordStore, wallet_a: str, wallet_b: str
    ) -> None:
        alice = await store.create_user_with_records("alice", [wallet_a])
        bob = await store.create_user_with_records("bob", [wallet_a, wallet_b])

        assert await store.get_wallets(alice.id) == [wallet_a]
        assert await store.get_wallets(bob.id) == [wallet_b]


class TestDomainRecords:
    async def test_save_domain_replaces_data(self, store: RecordStore) -> None:
        user = await store.create_user_with_records("alice", [])
        fetched = datetime.now(UTC) - timedelta(hours=1)

        await store.save_domain(user.id, Domain.GITHUB, {"profile": {"login": "alice"}}, fetched_at=fetched)
        await store.save_domain(user.id, Domain.GITHUB, {"profile": {"login": "alice2"}}, fetched_at=fetched)

        record = await store.get_domain(user.id, Domain.GITHUB)
        assert record is not None
        assert record.status == DataStatus.COMPLETED
        assert record.data == {"profile": {"login": "alice2"}}
        assert record.last_fetched_at is not None
        assert record.last_fetched_at.tzinfo is not None
        assert abs(record.last_fetched_at - fetched) < timedelta(seconds=1)

    async def test_status_update_keeps_data(self, store: RecordStore) -> None:
        user = await store.create_user_with_records("alice", [])
        await store.save_domain(user.id, Domain.CONTRACTS, {"eth-mainnet": []})

        await store.set_domain_status(user.id, Domain.CONTRACTS, DataStatus.PROCESSING)

        record = await store.get_domain(user.id, Domain.CONTRACTS)
        assert record is not None
        assert record.status == DataStatus.PROCESSING
        assert record.data == {"eth-mainnet": []}
        statuses = await store.get_domain_statuses(user.id)
        assert statuses[Domain.CONTRACTS] == DataStatus.PROCESSING
        assert statuses[Domain.GITHUB] == DataStatus.PENDING

    async def test_failed_status_with_data(self, store: RecordStore) -> None:
        user = await store.create_user_with_records("alice", [])

        await store.save_domain(
            user.id, Domain.ONCHAIN, {"failed_networks": ["base-mainnet"]}, status=DataStatus.FAILED
        )

        records = await store.get_user_with_records("alice")
        assert records is not None
        assert records.record(Domain.ONCHAIN).status == DataStatus.FAILED
        assert records.data(Domain.ONCHAIN) == {"failed_networks": ["base-mainnet"]}

    async def test_score_and_worth(self, store: RecordStore) -> None:
        user = await store.create_user_with_records("alice", [])

        await store.save_score(user.id, total_score=42.5, metrics={"web3": {}}, last_score=None)
        await store.save_score(user.id, total_score=50.0, metrics={"web3": {"total": 1}}, last_score=42.5)
        await store.save_worth(user.id, total_worth=1200.0, breakdown={"web2": {}}, last_worth=None)

        records = await store.get_user_with_records("alice")
        assert records is not None
        score = records.record(Domain.SCORE)
        assert score is not None
        assert (score.total, score.last) == (50.0, 42.5)
        assert score.status == DataStatus.COMPLETED
        assert score.data == {"web3": {"total": 1}}
        worth = records.record(Domain.WORTH)
        assert worth is not None
        assert (worth.total, worth.last) == (1200.0, None)
        assert records.record(Domain.GITHUB).total is None


class TestPlatformConfig:
    async def test_seed_once(self, store: RecordStore) -> None:
        values = {"thresholds": {"prs": 20}, "notable_repositories": ["ethereum/solidity"]}

        assert await store.seed_platform_config(values) is True
        assert await store.seed_platform_config({"thresholds": {"prs": 99}}) is False

        loaded = await store.load_platform_config()
        assert loaded == values

    async def test_missing_config(self, store: RecordStore) -> None:
        assert await store.load_platform_config("other") is None


class TestCredentials:
    async def test_upsert(self, store: RecordStore) -> None:
        user = await store.create_user_with_records("alice", [])
        await store.save_credential(CredentialDTO(user_id=user.id, status=CredentialStatus.PENDING))

        issued_at = datetime(2026, 5, 1, tzinfo=UTC)
        await store.save_credential(
            CredentialDTO(
                user_id=user.id,
                status=CredentialStatus.ISSUED,
                credential_id="cred-1",
                issuer_did="did:air:issuer",
                subject={"score": 50},
                issued_at=issued_at,
            )
        )

        credential = await store.get_credential(user.id)
        assert credential is not None
        assert credential.status == CredentialStatus.ISSUED
        assert credential.credential_id == "cred-1"
        assert credential.subject == {"score": 50}
        assert credential.issued_at == issued_at
        records = await store.get_user_with_records("alice")
        assert records is not None
        assert records.credential == credential


class TestGates:
    async def test_gate_and_verification(self, store: RecordStore) -> None:
        user = await store.create_user_with_records("alice", [])
        gate = await store.create_gate(GateDTO(id="gate-1", slug="builders", name="Builders"))

        assert await store.get_gate("builders") == gate
        assert await store.get_gate("nope") is None
        assert await store.get_gate_verification(gate.id, user.id) is None

        created = await store.create_gate_verification(
            gate_id=gate.id,
            user_id=user.id,
            status=VerificationStatus.REJECTED,
            rejection_reason="score below threshold",
            credential_results={"score": {"passed": False}},
        )

        fetched = await store.get_gate_verification(gate.id, user.id)
        assert fetched is not None
        assert fetched.id == created.id
        assert fetched.status == VerificationStatus.REJECTED
        assert fetched.credential_results == {"score": {"passed": False}}
