"""External credential issuer.

After a user's pipeline completes, a verifiable credential summarizing
their records is issued through the issuer service. Issuance is best
effort: failures are stored as PENDING and logged, never raised.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Protocol

import httpx

from klyro_pipeline.scoring.engine import ScoringInput
from klyro_pipeline.storage.models import CredentialStatus, Domain
from klyro_pipeline.storage.repos import CredentialDTO
from klyro_pipeline.storage.store import RecordStore, UserRecords

logger = logging.getLogger(__name__)

SUCCESS_CODE = 80000000

PREMIUM_SCORE = 70.0
VERIFIED_SCORE = 40.0


@dataclass(frozen=True)
class IssueResult:
    success: bool
    credential_id: str | None = None
    issuer_did: str | None = None
    credential_hash: str | None = None
    error: str | None = None


class CredentialIssuer(Protocol):
    async def issue_credential(self, subject: dict[str, Any]) -> IssueResult: ...


def _text(value: Any, default: str) -> str:
    if value is None:
        return default
    text = str(value).strip()
    return text or default


def _count(value: Any) -> int:
    try:
        return max(0, int(float(value)))
    except (TypeError, ValueError):
        return 0


def verification_level(total_score: float) -> str:
    if total_score >= PREMIUM_SCORE:
        return "PREMIUM"
    if total_score >= VERIFIED_SCORE:
        return "VERIFIED"
    return "BASIC"


def build_credential_subject(records: UserRecords, now: datetime | None = None) -> dict[str, Any]:
    """Flatten a user's stored records into the credential subject schema."""
    now = now or datetime.now(UTC)
    inputs = ScoringInput.from_records(
        github=records.data(Domain.GITHUB),
        contracts=records.data(Domain.CONTRACTS),
        onchain=records.data(Domain.ONCHAIN),
    )
    score = records.record(Domain.SCORE)
    worth = records.record(Domain.WORTH)
    total_score = score.total if score and score.total is not None else 0.0
    web3_score = ((score.data or {}).get("web3") or {}).get("total", 0) if score else 0

    username = records.user.github_username
    github = inputs.github
    profile = github.profile if github else None
    repos = github.repositories if github else None
    stats = github.contributions if github else None
    contracts = inputs.contract_totals

    return {
        "id": f"did:klyro:{_text(username, 'Unknown')}",
        "githubUsername": _text(username, "Unknown"),
        "name": _text(profile.name if profile else None, "N/A"),
        "email": _text(records.user.email or (profile.email if profile else None), "No Email"),
        "location": _text(profile.location if profile else None, "None"),
        "walletAddress": records.wallets[0] if records.wallets else None,
        "followers": _count(profile.followers if profile else 0),
        "totalRepositories": _count(profile.public_repos if profile else 0),
        "totalStars": _count(repos.total_stars if repos else 0),
        "totalForks": _count(repos.total_forks if repos else 0),
        "totalContributions": _count(stats.total_contributions if stats else 0),
        "totalPullRequests": _count(stats.total_prs if stats else 0),
        "totalIssues": _count(stats.total_issues if stats else 0),
        "totalLinesOfCode": _count(repos.total_lines_of_code if repos else 0),
        "solidityLinesOfCode": _count(inputs.web3_language_breakdown().get("Solidity", 0)),
        "accountAge": _count(profile.account_age if profile else 0),
        "KlyroScore": _count(total_score),
        "web3Score": _count(web3_score),
        "developerWorth": _count(worth.total if worth and worth.total is not None else 0),
        "totalTransactions": _count(inputs.mainnet_transactions.total),
        "mainnetContracts": _count(contracts.mainnet),
        "testnetContracts": _count(contracts.testnet),
        "hackathonParticipations": str(inputs.badges.hacker.count),
        "hackathonWins": _count(inputs.badges.wins.count),
        "totalTVL": _count(inputs.mainnet_tvl()),
        "uniqueUsers": _count(inputs.mainnet_unique_users()),
        "lastUpdated": now.isoformat().replace("+00:00", "Z"),
        "verificationLevel": verification_level(total_score),
    }


class AirCredentialIssuer:
    """Issuer service client: log in for a bearer token, then issue.

    When the issuer DID, API key, or credential id is missing the client
    reports ``success=False`` without touching the network.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        api_url: str,
        issuer_did: str | None,
        api_key: str | None,
        credential_id: str | None,
    ) -> None:
        self._http = http
        self._api_url = api_url.rstrip("/")
        self._issuer_did = issuer_did
        self._api_key = api_key
        self._credential_id = credential_id
        if not self.is_configured:
            logger.warning("Issuer configuration missing; credential issuing is disabled")

    @property
    def is_configured(self) -> bool:
        return bool(self._issuer_did and self._api_key and self._credential_id)

    async def _login(self) -> str | None:
        response = await self._http.post(
            f"{self._api_url}/issuer/login",
            json={"issuerDid": self._issuer_did, "authToken": self._api_key},
            headers={"accept": "*/*"},
        )
        response.raise_for_status()
        body = response.json()
        token = (body.get("data") or {}).get("token")
        if body.get("code") != SUCCESS_CODE or not token:
            logger.error("Issuer login rejected: %s", body.get("msg", "Unknown error"))
            return None
        return token

    async def issue_credential(self, subject: dict[str, Any]) -> IssueResult:
        if not self.is_configured:
            return IssueResult(success=False, error="Issuer configuration missing")

        try:
            token = await self._login()
            if token is None:
                return IssueResult(success=False, error="Failed to get issuer auth token")

            response = await self._http.post(
                f"{self._api_url}/issuer/issue",
                json={"credentialId": self._credential_id, "credentialSubject": subject},
                headers={"Authorization": f"Bearer {token}", "accept": "*/*"},
            )
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Error issuing credential: %s", e)
            return IssueResult(success=False, error=str(e))

        data = body.get("data")
        if body.get("code") != SUCCESS_CODE or not data:
            error = body.get("msg", "Unknown error")
            logger.error("Failed to issue credential: %s", error)
            return IssueResult(success=False, error=error)

        logger.info("Issued credential %s", self._credential_id)
        return IssueResult(
            success=True,
            credential_id=self._credential_id,
            issuer_did=self._issuer_did,
            credential_hash=data.get("credentialHash"),
        )


async def issue_credential_for_user(
    store: RecordStore,
    issuer: CredentialIssuer,
    user_id: str,
) -> CredentialDTO | None:
    """Issue a credential once per user. Never raises.

    Returns:
        The stored credential record, or None when issuance was skipped or
        errored before anything could be stored.
    """
    try:
        existing = await store.get_credential(user_id)
        if existing is not None and existing.status == CredentialStatus.ISSUED:
            logger.debug("Credential already issued for user %s", user_id)
            return existing

        records = await store.get_user_with_records(user_id=user_id)
        if records is None:
            logger.warning("Cannot issue credential: user %s not found", user_id)
            return None

        subject = build_credential_subject(records)
        result = await issuer.issue_credential(subject)
        if result.success:
            dto = CredentialDTO(
                user_id=user_id,
                status=CredentialStatus.ISSUED,
                credential_id=result.credential_id,
                issuer_did=result.issuer_did,
                credential_hash=result.credential_hash,
                subject=subject,
                issued_at=datetime.now(UTC),
            )
        else:
            logger.warning("Credential issuance failed for user %s: %s", user_id, result.error)
            dto = CredentialDTO(user_id=user_id, status=CredentialStatus.PENDING, subject=subject)
        return await store.save_credential(dto)
    except Exception as e:
        logger.error("Error during credential issuance for user %s: %s", user_id, e)
        return None
