"""Worker pipeline for the Klyro ingestion service.

This module provides the Pipeline class that wires the fetchers, store,
queue, and orchestrator together from settings and runs the queue
consumer until stopped.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

import httpx
from redis.asyncio import Redis

from klyro_pipeline.badges.connector import BadgeConnector
from klyro_pipeline.badges.sources import PoapSource
from klyro_pipeline.chain.aggregate import collect_chain_data
from klyro_pipeline.chain.alchemy import AlchemyClient, EnsResolver
from klyro_pipeline.chain.connector import ChainDataConnector
from klyro_pipeline.chain.models import ChainSnapshot
from klyro_pipeline.chain.networks import Network
from klyro_pipeline.chain.prices import CryptoComparePriceFeed, PriceCache
from klyro_pipeline.codehost.github import GitHubClient
from klyro_pipeline.config import Settings, get_settings
from klyro_pipeline.fetch.retry import FallbackPolicy, RetryPolicy
from klyro_pipeline.fetch.rotator import ALCHEMY_POOL, GITHUB_POOL, CredentialRotator
from klyro_pipeline.issuer import AirCredentialIssuer
from klyro_pipeline.orchestrator import IngestionOrchestrator
from klyro_pipeline.queue import QueueConsumer, RedisJobQueue
from klyro_pipeline.scoring.config import PlatformConfig
from klyro_pipeline.service import AnalysisService
from klyro_pipeline.storage.database import DatabaseManager
from klyro_pipeline.storage.store import RecordStore

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    """Pipeline lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class PipelineStats:
    """Statistics for the pipeline."""

    started_at: datetime | None = None
    jobs_completed: int = 0
    jobs_failed: int = 0
    last_error: str | None = None


class Pipeline:
    """Ingestion worker for the Klyro pipeline.

    Pipeline flow:
        Queue -> Orchestrator -> (GitHub | Chain + Badges) -> Score/Worth -> Issuer

    Example:
        ```python
        from klyro_pipeline.config import get_settings
        from klyro_pipeline.pipeline import Pipeline

        pipeline = Pipeline(get_settings())

        await pipeline.start()
        result = await pipeline.service.analyze_user("octocat", ["vitalik.eth"])
        await pipeline.stop()
        ```
    """

    def __init__(self, settings: Settings | None = None, *, consume: bool = True) -> None:
        """Initialize the pipeline.

        Args:
            settings: Application settings. If not provided, uses get_settings().
            consume: If False, components are built but no queue consumer runs
                (useful for processes that only enqueue).
        """
        self._settings = settings or get_settings()
        self._consume = consume

        self._state = PipelineState.STOPPED
        self._stats = PipelineStats()

        # Components (initialized in start())
        self._redis: Redis | None = None
        self._db_manager: DatabaseManager | None = None
        self._http: httpx.AsyncClient | None = None
        self._store: RecordStore | None = None
        self._queue: RedisJobQueue | None = None
        self._orchestrator: IngestionOrchestrator | None = None
        self._service: AnalysisService | None = None
        self._consumer: QueueConsumer | None = None

        # Synchronization
        self._stop_event: asyncio.Event | None = None
        self._consumer_task: asyncio.Task[None] | None = None

    @property
    def state(self) -> PipelineState:
        """Current pipeline state."""
        return self._state

    @property
    def stats(self) -> PipelineStats:
        """Current pipeline statistics."""
        if self._consumer is not None:
            self._stats.jobs_completed = self._consumer.stats.jobs_completed
            self._stats.jobs_failed = self._consumer.stats.jobs_failed
            self._stats.last_error = self._consumer.stats.last_error or self._stats.last_error
        return self._stats

    @property
    def is_running(self) -> bool:
        """Check if pipeline is running."""
        return self._state == PipelineState.RUNNING

    @property
    def service(self) -> AnalysisService:
        if self._service is None:
            raise RuntimeError("Pipeline is not started")
        return self._service

    @property
    def store(self) -> RecordStore:
        if self._store is None:
            raise RuntimeError("Pipeline is not started")
        return self._store

    async def start(self) -> None:
        """Start the pipeline.

        Raises:
            RuntimeError: If pipeline is already running.
            Exception: If any component fails to initialize.
        """
        if self._state != PipelineState.STOPPED:
            raise RuntimeError(f"Cannot start pipeline in state {self._state}")

        self._state = PipelineState.STARTING
        self._stop_event = asyncio.Event()
        logger.info("Starting pipeline...")

        try:
            await self._initialize_components()
            await self._seed_platform_config()
            self._start_background_services()
            self._stats.started_at = datetime.now(UTC)
            self._state = PipelineState.RUNNING
            logger.info("Pipeline started successfully")
        except Exception as e:
            self._state = PipelineState.ERROR
            self._stats.last_error = str(e)
            logger.error("Failed to start pipeline: %s", e)
            await self._cleanup()
            raise

    async def stop(self) -> None:
        """Stop the pipeline, letting in-flight jobs finish."""
        if self._state == PipelineState.STOPPED:
            return

        self._state = PipelineState.STOPPING
        logger.info("Stopping pipeline...")

        if self._stop_event:
            self._stop_event.set()

        await self._stop_background_services()
        await self._cleanup()

        self._state = PipelineState.STOPPED
        logger.info("Pipeline stopped")

    def _retry_policies(self) -> tuple[RetryPolicy, RetryPolicy]:
        fetch = self._settings.fetch
        policy = RetryPolicy(
            max_attempts=fetch.max_attempts,
            initial_delay=fetch.initial_delay_seconds,
            rate_limit_cooldown=fetch.rate_limit_cooldown_seconds,
        )
        block_policy = RetryPolicy(
            max_attempts=fetch.block_max_attempts,
            initial_delay=fetch.initial_delay_seconds,
            fallback=FallbackPolicy(fetch.block_fallback),
            rate_limit_cooldown=fetch.rate_limit_cooldown_seconds,
        )
        return policy, block_policy

    async def _initialize_components(self) -> None:
        """Initialize all pipeline components."""
        settings = self._settings

        logger.debug("Initializing Redis connection...")
        self._redis = Redis.from_url(settings.redis.url)

        logger.debug("Initializing database manager...")
        self._db_manager = DatabaseManager(settings.database.url)
        self._store = RecordStore(self._db_manager.session)

        self._http = httpx.AsyncClient(timeout=settings.fetch.request_timeout_seconds)
        http = self._http

        rotator = CredentialRotator(
            {
                GITHUB_POOL: settings.credentials.github_tokens,
                ALCHEMY_POOL: settings.credentials.alchemy_keys,
            }
        )
        policy, block_policy = self._retry_policies()

        logger.debug("Initializing price feed...")
        price_key = settings.price_feed.api_key
        prices = PriceCache(
            CryptoComparePriceFeed(
                http,
                url=settings.price_feed.url,
                api_key=price_key.get_secret_value() if price_key else None,
            ),
            ttl_seconds=settings.price_feed.cache_ttl_seconds,
        )

        logger.debug("Initializing GitHub client...")
        github = GitHubClient(
            rotator=rotator,
            http=http,
            api_url=settings.github.api_url,
            graphql_url=settings.github.graphql_url,
            page_delay_seconds=settings.github.page_delay_seconds,
            rate_limit_cooldown_seconds=settings.fetch.rate_limit_cooldown_seconds,
            contribution_years=settings.github.contribution_years,
            policy=policy,
        )

        def client_for(network: Network) -> AlchemyClient:
            return AlchemyClient(network, rotator=rotator, http=http)

        async def collect_chain(
            networks: Sequence[Network], addresses: Sequence[str], config: PlatformConfig
        ) -> ChainSnapshot:
            def connector_for(network: Network) -> ChainDataConnector:
                return ChainDataConnector(
                    client_for(network),
                    prices,
                    tvl_tokens=config.tvl_tokens_for(network),
                    policy=policy,
                    block_policy=block_policy,
                )

            return await collect_chain_data(networks, addresses, connector_for)

        logger.debug("Initializing badge connector...")
        badges = BadgeConnector.default(
            client_for,
            PoapSource(
                http,
                url=settings.poap.graphql_url,
                page_size=settings.poap.page_size,
                max_pages=settings.poap.max_pages,
                policy=RetryPolicy(
                    max_attempts=settings.poap.max_attempts,
                    initial_delay=settings.fetch.initial_delay_seconds,
                ),
            ),
        )

        issuer = None
        if settings.issuer.enabled:
            api_key = settings.issuer.api_key
            issuer = AirCredentialIssuer(
                http,
                api_url=settings.issuer.api_url,
                issuer_did=settings.issuer.issuer_did,
                api_key=api_key.get_secret_value() if api_key else None,
                credential_id=settings.issuer.credential_id,
            )
        else:
            logger.warning("Credential issuer not configured; issuance disabled")

        staleness = timedelta(hours=settings.ingestion.staleness_hours)
        self._queue = RedisJobQueue(
            self._redis,
            name=settings.queue.name,
            max_attempts=settings.queue.max_attempts,
            backoff_seconds=settings.queue.backoff_seconds,
        )
        self._orchestrator = IngestionOrchestrator(
            self._store,
            github=github,
            chain=collect_chain,
            badges=badges,
            issuer=issuer,
            staleness=staleness,
        )
        self._service = AnalysisService(
            self._store,
            self._queue,
            usernames=github,
            names=EnsResolver(rotator),
            staleness=staleness,
        )

    async def _seed_platform_config(self) -> None:
        if self._store is None:
            return
        await self._store.seed_platform_config(PlatformConfig().to_record())

    def _start_background_services(self) -> None:
        if not self._consume or self._queue is None or self._orchestrator is None:
            return
        logger.debug("Starting queue consumer...")
        self._consumer = self._queue.register_consumer(
            self._orchestrator.process_job,
            concurrency=self._settings.queue.concurrency,
            poll_timeout=self._settings.queue.poll_timeout_seconds,
        )
        self._consumer_task = asyncio.create_task(self._run_consumer())

    async def _run_consumer(self) -> None:
        if self._consumer is None:
            return
        try:
            await self._consumer.run()
        except Exception as e:
            self._stats.last_error = str(e)
            logger.error("Queue consumer crashed: %s", e)
            if self._stop_event:
                self._stop_event.set()

    async def _stop_background_services(self) -> None:
        if self._consumer:
            logger.debug("Stopping queue consumer...")
            self._consumer.stop()

        if self._consumer_task:
            try:
                await asyncio.wait_for(
                    asyncio.shield(self._consumer_task),
                    timeout=self._settings.queue.poll_timeout_seconds + 60,
                )
            except TimeoutError:
                logger.warning("Queue consumer did not drain in time; cancelling")
                self._consumer_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await self._consumer_task
            self._consumer_task = None

    async def _cleanup(self) -> None:
        """Clean up resources."""
        if self._db_manager:
            await self._db_manager.dispose()
            self._db_manager = None

        if self._redis:
            await self._redis.aclose()
            self._redis = None

        if self._http:
            await self._http.aclose()
            self._http = None

        logger.debug("Resources cleaned up")

    async def run(self) -> None:
        """Start the pipeline and run until interrupted.

        Example:
            ```python
            pipeline = Pipeline()
            try:
                await pipeline.run()
            except KeyboardInterrupt:
                pass
            ```
        """
        await self.start()

        try:
            if self._stop_event:
                await self._stop_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

    async def __aenter__(self) -> Pipeline:
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.stop()
