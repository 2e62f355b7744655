"""Tests for the per-user ingestion state machine."""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from klyro_pipeline.badges.models import Badge, BadgeBucket, BadgeCredentials
from klyro_pipeline.chain.models import TOTAL_KEY, ChainSnapshot, ContractStats, DeployedContract
from klyro_pipeline.codehost.models import ContributionStats, GitHubSnapshot, Profile
from klyro_pipeline.issuer import IssueResult
from klyro_pipeline.orchestrator import IngestionError, IngestionOrchestrator, is_fresh, needs_processing
from klyro_pipeline.queue import IngestionJob
from klyro_pipeline.scoring.config import PlatformConfig
from klyro_pipeline.storage.models import CredentialStatus, DataStatus, Domain
from klyro_pipeline.storage.repos import DomainRecordDTO
from klyro_pipeline.storage.store import RecordStore, UserNotFoundError


class Clock:
    def __init__(self) -> None:
        self.now = datetime.now(UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


def _github_snapshot() -> GitHubSnapshot:
    return GitHubSnapshot(
        profile=Profile(login="alice", followers=10, account_age=400),
        contributions=ContributionStats(total_contributions=300, total_prs=4),
    )


def _chain_snapshot(*, failed: list[str] | None = None) -> ChainSnapshot:
    contract = DeployedContract(
        address="0xc0ffee",
        block_number=10,
        deployment_date="2024-01-01T00:00:00Z",
        unique_users=3,
        tvl=2500.0,
        total_transactions=7,
        is_testnet=False,
    )
    return ChainSnapshot(
        contracts={"eth-mainnet": [contract]},
        contract_stats={"eth-mainnet": ContractStats(mainnet=1, total=1), TOTAL_KEY: ContractStats(mainnet=1, total=1)},
        failed_networks=failed or [],
    )


def _badges() -> BadgeCredentials:
    return BadgeCredentials(
        hacker=BadgeBucket(count=1, items=[Badge("Hacker Pack")]),
        wins=BadgeBucket(count=1, items=[Badge("ETHOnline 2024 Finalist")]),
    )


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def github() -> MagicMock:
    client = MagicMock()
    client.fetch_snapshot = AsyncMock(return_value=_github_snapshot())
    return client


@pytest.fixture
def chain() -> AsyncMock:
    return AsyncMock(return_value=_chain_snapshot())


@pytest.fixture
def badges() -> MagicMock:
    connector = MagicMock()
    connector.collect = AsyncMock(return_value=_badges())
    return connector


@pytest.fixture
def orchestrator(store: RecordStore, github: MagicMock, chain: AsyncMock, badges: MagicMock, clock: Clock):
    return IngestionOrchestrator(store, github=github, chain=chain, badges=badges, clock=clock)


class TestNeedsProcessing:
    def _record(self, status: DataStatus, fetched: datetime | None) -> DomainRecordDTO:
        return DomainRecordDTO(domain=Domain.GITHUB, user_id="u", status=status, last_fetched_at=fetched)

    def test_missing_or_incomplete(self) -> None:
        now = datetime.now(UTC)
        assert needs_processing(None, now=now)
        assert needs_processing(self._record(DataStatus.FAILED, now), now=now)
        assert needs_processing(self._record(DataStatus.COMPLETED, None), now=now)

    def test_staleness_window(self) -> None:
        now = datetime.now(UTC)
        assert not needs_processing(self._record(DataStatus.COMPLETED, now - timedelta(hours=1)), now=now)
        assert needs_processing(self._record(DataStatus.COMPLETED, now - timedelta(hours=30)), now=now)
        assert needs_processing(
            self._record(DataStatus.COMPLETED, now - timedelta(hours=1)), now=now, force_refresh=True
        )


class TestProcessUser:
    async def test_new_user_runs_every_domain(
        self,
        store: RecordStore,
        orchestrator: IngestionOrchestrator,
        github: MagicMock,
        chain: AsyncMock,
        badges: MagicMock,
        clock: Clock,
        wallet_a: str,
    ) -> None:
        await store.create_user_with_records("alice", [wallet_a])

        await orchestrator.process_user("alice", [wallet_a])

        records = await store.get_user_with_records("alice")
        assert records is not None
        assert records.user.status == DataStatus.COMPLETED
        assert records.statuses() == {domain: DataStatus.COMPLETED for domain in Domain}
        assert records.user.last_fetched_at is not None
        assert abs(records.user.last_fetched_at - clock.now) < timedelta(seconds=1)
        assert is_fresh(records, now=clock.now)

        github.fetch_snapshot.assert_awaited_once_with("alice")
        networks, addresses, config = chain.await_args.args
        assert networks == PlatformConfig().enabled_networks()
        assert list(addresses) == [wallet_a]
        assert isinstance(config, PlatformConfig)
        badges.collect.assert_awaited_once()

        onchain = records.data(Domain.ONCHAIN)
        assert onchain is not None
        assert onchain["hackathon"]["WINS"]["count"] == 1
        assert records.data(Domain.CONTRACTS)["eth-mainnet"][0]["tvl"] == 2500.0
        score = records.record(Domain.SCORE)
        assert score is not None
        assert score.total > 0
        assert score.last is None
        assert records.record(Domain.WORTH).total > 0

    async def test_fresh_rerun_is_a_no_op(
        self,
        store: RecordStore,
        orchestrator: IngestionOrchestrator,
        github: MagicMock,
        chain: AsyncMock,
        clock: Clock,
        wallet_a: str,
    ) -> None:
        await store.create_user_with_records("alice", [wallet_a])
        await orchestrator.process_user("alice", [wallet_a])
        before = await store.get_user_with_records("alice")

        clock.advance(hours=1)
        await orchestrator.process_user("alice", [wallet_a])

        after = await store.get_user_with_records("alice")
        assert after == before
        assert github.fetch_snapshot.await_count == 1
        assert chain.await_count == 1

    async def test_stale_data_is_refetched(
        self,
        store: RecordStore,
        orchestrator: IngestionOrchestrator,
        github: MagicMock,
        chain: AsyncMock,
        clock: Clock,
        wallet_a: str,
    ) -> None:
        await store.create_user_with_records("alice", [wallet_a])
        await orchestrator.process_user("alice", [wallet_a])
        first = await store.get_user_with_records("alice")

        clock.advance(hours=30)
        await orchestrator.process_user("alice", [wallet_a])

        assert github.fetch_snapshot.await_count == 2
        assert chain.await_count == 2
        second = await store.get_user_with_records("alice")
        assert second is not None
        assert second.record(Domain.SCORE).last == pytest.approx(first.record(Domain.SCORE).total)
        assert second.record(Domain.WORTH).last == pytest.approx(first.record(Domain.WORTH).total)

    async def test_force_refresh(
        self,
        store: RecordStore,
        orchestrator: IngestionOrchestrator,
        github: MagicMock,
        chain: AsyncMock,
        wallet_a: str,
    ) -> None:
        await store.create_user_with_records("alice", [wallet_a])
        await orchestrator.process_user("alice", [wallet_a])

        await orchestrator.process_user("alice", [wallet_a], force_refresh=True)

        assert github.fetch_snapshot.await_count == 2
        assert chain.await_count == 2

    async def test_github_failure_leaves_chain_records_intact(
        self,
        store: RecordStore,
        orchestrator: IngestionOrchestrator,
        github: MagicMock,
        chain: AsyncMock,
        wallet_a: str,
    ) -> None:
        await store.create_user_with_records("alice", [wallet_a])
        github.fetch_snapshot.side_effect = RuntimeError("github down")

        with pytest.raises(IngestionError) as exc_info:
            await orchestrator.process_user("alice", [wallet_a])

        assert exc_info.value.failed == ["GitHub Data"]
        assert "GitHub Data" in str(exc_info.value)
        records = await store.get_user_with_records("alice")
        assert records is not None
        assert records.user.status == DataStatus.FAILED
        statuses = records.statuses()
        assert statuses[Domain.GITHUB] == DataStatus.FAILED
        assert statuses[Domain.CONTRACTS] == DataStatus.COMPLETED
        assert statuses[Domain.SCORE] == DataStatus.COMPLETED

        # A retry only redoes the failed domain.
        github.fetch_snapshot.side_effect = None
        await orchestrator.process_user("alice", [wallet_a])

        assert github.fetch_snapshot.await_count == 2
        assert chain.await_count == 1
        assert (await store.get_user("alice")).status == DataStatus.COMPLETED

    async def test_partial_chain_failure_persists_data_as_failed(
        self,
        store: RecordStore,
        orchestrator: IngestionOrchestrator,
        chain: AsyncMock,
        wallet_a: str,
    ) -> None:
        await store.create_user_with_records("alice", [wallet_a])
        chain.return_value = _chain_snapshot(failed=["base-mainnet"])

        with pytest.raises(IngestionError) as exc_info:
            await orchestrator.process_user("alice", [wallet_a])

        assert exc_info.value.failed == ["Contracts Data", "Onchain Data"]
        records = await store.get_user_with_records("alice")
        assert records is not None
        assert records.record(Domain.CONTRACTS).status == DataStatus.FAILED
        assert records.data(Domain.CONTRACTS)["eth-mainnet"]
        assert records.data(Domain.ONCHAIN)["failed_networks"] == ["base-mainnet"]
        assert records.record(Domain.GITHUB).status == DataStatus.COMPLETED

    async def test_chain_exception_marks_both_chain_domains_failed(
        self,
        store: RecordStore,
        orchestrator: IngestionOrchestrator,
        chain: AsyncMock,
        wallet_a: str,
    ) -> None:
        await store.create_user_with_records("alice", [wallet_a])
        chain.side_effect = RuntimeError("rpc down")

        with pytest.raises(IngestionError):
            await orchestrator.process_user("alice", [wallet_a])

        statuses = await store.get_domain_statuses((await store.get_user("alice")).id)
        assert statuses[Domain.CONTRACTS] == DataStatus.FAILED
        assert statuses[Domain.ONCHAIN] == DataStatus.FAILED
        assert statuses[Domain.GITHUB] == DataStatus.COMPLETED

    async def test_badge_failure_counts_as_no_badges(
        self,
        store: RecordStore,
        orchestrator: IngestionOrchestrator,
        badges: MagicMock,
        wallet_a: str,
    ) -> None:
        await store.create_user_with_records("alice", [wallet_a])
        badges.collect.side_effect = RuntimeError("poap down")

        await orchestrator.process_user("alice", [wallet_a])

        records = await store.get_user_with_records("alice")
        assert records is not None
        assert records.user.status == DataStatus.COMPLETED
        assert records.data(Domain.ONCHAIN)["hackathon"]["totalBadges"] == 0

    async def test_new_addresses_are_linked(
        self,
        store: RecordStore,
        orchestrator: IngestionOrchestrator,
        chain: AsyncMock,
        wallet_a: str,
        wallet_b: str,
    ) -> None:
        await store.create_user_with_records("alice", [wallet_a])

        await orchestrator.process_user("alice", [wallet_b])

        _, addresses, _ = chain.await_args.args
        assert sorted(addresses) == [wallet_a, wallet_b]

    async def test_wallet_link_failure_marks_user_failed(
        self,
        store: RecordStore,
        orchestrator: IngestionOrchestrator,
        github: MagicMock,
        wallet_a: str,
        wallet_b: str,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        user = await store.create_user_with_records("alice", [wallet_a])
        await store.set_user_status(user.id, DataStatus.PROCESSING)
        monkeypatch.setattr(store, "add_wallets", AsyncMock(side_effect=RuntimeError("db down")))

        with pytest.raises(RuntimeError, match="db down"):
            await orchestrator.process_user("alice", [wallet_b])

        assert (await store.get_user("alice")).status == DataStatus.FAILED
        github.fetch_snapshot.assert_not_awaited()

    async def test_uses_stored_platform_config(
        self,
        store: RecordStore,
        orchestrator: IngestionOrchestrator,
        chain: AsyncMock,
        wallet_a: str,
    ) -> None:
        await store.seed_platform_config({"enabled_chains": {"eth-sepolia": False, "base-sepolia": False}})
        await store.create_user_with_records("alice", [wallet_a])

        await orchestrator.process_user("alice", [wallet_a])

        networks, _, _ = chain.await_args.args
        assert [n.value for n in networks] == ["eth-mainnet", "base-mainnet"]

    async def test_unknown_user(self, orchestrator: IngestionOrchestrator) -> None:
        with pytest.raises(UserNotFoundError):
            await orchestrator.process_user("ghost", [])

    async def test_process_job(
        self, store: RecordStore, orchestrator: IngestionOrchestrator, github: MagicMock, wallet_a: str
    ) -> None:
        await store.create_user_with_records("alice", [wallet_a])

        await orchestrator.process_job(IngestionJob("alice", (wallet_a,), email="a@x.io"))

        github.fetch_snapshot.assert_awaited_once_with("alice")
        assert (await store.get_user("alice")).email == "a@x.io"


class TestIssuance:
    async def test_credential_issued_after_completion(
        self,
        store: RecordStore,
        github: MagicMock,
        chain: AsyncMock,
        badges: MagicMock,
        clock: Clock,
        wallet_a: str,
    ) -> None:
        issuer = MagicMock()
        issuer.issue_credential = AsyncMock(
            return_value=IssueResult(success=True, credential_id="cred-1", issuer_did="did:air:x", credential_hash="h")
        )
        orchestrator = IngestionOrchestrator(
            store, github=github, chain=chain, badges=badges, issuer=issuer, clock=clock
        )
        user = await store.create_user_with_records("alice", [wallet_a])

        await orchestrator.process_user("alice", [wallet_a])

        credential = await store.get_credential(user.id)
        assert credential is not None
        assert credential.status == CredentialStatus.ISSUED
        subject = issuer.issue_credential.await_args.args[0]
        assert subject["githubUsername"] == "alice"
        assert subject["walletAddress"] == wallet_a

    async def test_no_issuance_when_ingestion_fails(
        self,
        store: RecordStore,
        github: MagicMock,
        chain: AsyncMock,
        badges: MagicMock,
        wallet_a: str,
    ) -> None:
        issuer = MagicMock()
        issuer.issue_credential = AsyncMock()
        orchestrator = IngestionOrchestrator(store, github=github, chain=chain, badges=badges, issuer=issuer)
        await store.create_user_with_records("alice", [wallet_a])
        github.fetch_snapshot.side_effect = RuntimeError("down")

        with pytest.raises(IngestionError):
            await orchestrator.process_user("alice", [wallet_a])

        issuer.issue_credential.assert_not_awaited()
