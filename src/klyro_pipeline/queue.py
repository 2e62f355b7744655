"""Durable ingestion work queue backed by Redis lists.

Layout for a queue named ``fbi-processing``:

- ``fbi-processing:waiting``  jobs ready to run (list)
- ``fbi-processing:active``   jobs handed to a consumer (list)
- ``fbi-processing:delayed``  jobs waiting out a retry backoff (zset, score = ready time)
- ``fbi-processing:failed``   jobs that ran out of attempts (list)

Delivery is at least once: a consumer that dies mid-job leaves it in
``active``, and the next consumer start moves it back to ``waiting``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from redis.asyncio import Redis

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_NAME = "fbi-processing"
DEFAULT_MAX_ATTEMPTS = 6
DEFAULT_BACKOFF_SECONDS = 10.0
DEFAULT_CONCURRENCY = 5


@dataclass(frozen=True)
class IngestionJob:
    """Request to (re)build one user's records."""

    github_username: str
    addresses: tuple[str, ...] = ()
    email: str | None = None
    force_refresh: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "github_username": self.github_username,
            "addresses": list(self.addresses),
            "email": self.email,
            "force_refresh": self.force_refresh,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> IngestionJob:
        return cls(
            github_username=data["github_username"],
            addresses=tuple(data.get("addresses") or ()),
            email=data.get("email"),
            force_refresh=bool(data.get("force_refresh", False)),
        )


@dataclass(frozen=True)
class QueuedJob:
    """A job as stored in Redis: payload plus delivery bookkeeping."""

    id: str
    job: IngestionJob
    attempts: int = 0
    last_error: str | None = None

    def to_json(self) -> str:
        return json.dumps(
            {
                "id": self.id,
                "data": self.job.to_dict(),
                "attempts": self.attempts,
                "last_error": self.last_error,
            }
        )

    @classmethod
    def from_json(cls, raw: str | bytes) -> QueuedJob:
        if isinstance(raw, bytes):
            raw = raw.decode()
        data = json.loads(raw)
        return cls(
            id=data["id"],
            job=IngestionJob.from_dict(data["data"]),
            attempts=int(data.get("attempts", 0)),
            last_error=data.get("last_error"),
        )


JobHandler = Callable[[IngestionJob], Awaitable[None]]


class RedisJobQueue:
    """Enqueue ingestion jobs and move them through their lifecycle.

    Failed jobs are retried up to ``max_attempts`` in total, waiting
    ``backoff_seconds * 2 ** (attempts - 1)`` between tries.

    Example:
        ```python
        queue = RedisJobQueue(Redis.from_url("redis://localhost:6379"))
        await queue.enqueue(IngestionJob("alice", ("0xabc...",)))

        consumer = queue.register_consumer(orchestrator.process_job, concurrency=5)
        await consumer.run()
        ```
    """

    def __init__(
        self,
        redis: Redis,
        *,
        name: str = DEFAULT_QUEUE_NAME,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._redis = redis
        self.name = name
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self._clock = clock

    @property
    def waiting_key(self) -> str:
        return f"{self.name}:waiting"

    @property
    def active_key(self) -> str:
        return f"{self.name}:active"

    @property
    def delayed_key(self) -> str:
        return f"{self.name}:delayed"

    @property
    def failed_key(self) -> str:
        return f"{self.name}:failed"

    def retry_delay(self, attempts: int) -> float:
        return self.backoff_seconds * 2 ** max(attempts - 1, 0)

    async def enqueue(self, job: IngestionJob) -> str:
        """Add a job to the waiting list.

        Returns:
            The new job's id.
        """
        queued = QueuedJob(id=uuid.uuid4().hex, job=job)
        await self._redis.rpush(self.waiting_key, queued.to_json())
        logger.info("Queued job %s for %s", queued.id, job.github_username)
        return queued.id

    async def recover_active(self) -> int:
        """Move jobs abandoned in ``active`` back to ``waiting``."""
        recovered = 0
        while await self._redis.lmove(self.active_key, self.waiting_key, "RIGHT", "LEFT") is not None:
            recovered += 1
        if recovered:
            logger.warning("Recovered %d abandoned job(s) in %s", recovered, self.name)
        return recovered

    async def promote_delayed(self) -> int:
        """Move delayed jobs whose backoff has elapsed into ``waiting``."""
        ready = await self._redis.zrangebyscore(self.delayed_key, 0, self._clock())
        promoted = 0
        for raw in ready:
            # Only the consumer that removes the entry gets to requeue it.
            if await self._redis.zrem(self.delayed_key, raw):
                await self._redis.rpush(self.waiting_key, raw)
                promoted += 1
        return promoted

    async def reserve(self, timeout: float = 1.0) -> tuple[Any, QueuedJob] | None:
        """Block up to ``timeout`` seconds for the next job.

        Returns:
            The raw stored entry (needed to acknowledge it) and the parsed
            job, or None when nothing arrived.
        """
        await self.promote_delayed()
        raw = await self._redis.blmove(self.waiting_key, self.active_key, timeout, "LEFT", "RIGHT")
        if raw is None:
            return None
        return raw, QueuedJob.from_json(raw)

    async def complete(self, raw: Any) -> None:
        await self._redis.lrem(self.active_key, 1, raw)

    async def fail(self, raw: Any, queued: QueuedJob, error: BaseException) -> bool:
        """Record a failed attempt.

        Returns:
            True if the job was scheduled for another attempt, False if it
            was moved to the failed list.
        """
        await self._redis.lrem(self.active_key, 1, raw)
        attempts = queued.attempts + 1
        retried = QueuedJob(id=queued.id, job=queued.job, attempts=attempts, last_error=str(error))

        if attempts >= self.max_attempts:
            await self._redis.rpush(self.failed_key, retried.to_json())
            logger.error(
                "Job %s for %s failed permanently after %d attempts: %s",
                queued.id,
                queued.job.github_username,
                attempts,
                error,
            )
            return False

        delay = self.retry_delay(attempts)
        await self._redis.zadd(self.delayed_key, {retried.to_json(): self._clock() + delay})
        logger.warning(
            "Job %s for %s failed (attempt %d/%d): %s. Retrying in %.1f seconds...",
            queued.id,
            queued.job.github_username,
            attempts,
            self.max_attempts,
            error,
            delay,
        )
        return True

    async def counts(self) -> dict[str, int]:
        return {
            "waiting": await self._redis.llen(self.waiting_key),
            "active": await self._redis.llen(self.active_key),
            "delayed": await self._redis.zcard(self.delayed_key),
            "failed": await self._redis.llen(self.failed_key),
        }

    def register_consumer(
        self,
        handler: JobHandler,
        *,
        concurrency: int = DEFAULT_CONCURRENCY,
        poll_timeout: float = 1.0,
    ) -> QueueConsumer:
        return QueueConsumer(self, handler, concurrency=concurrency, poll_timeout=poll_timeout)


@dataclass
class ConsumerStats:
    """Statistics for a queue consumer."""

    started_at: datetime | None = None
    jobs_completed: int = 0
    jobs_failed: int = 0
    last_error: str | None = None
    in_flight: set[str] = field(default_factory=set)


class QueueConsumer:
    """Runs a handler over queued jobs with bounded concurrency."""

    def __init__(
        self,
        queue: RedisJobQueue,
        handler: JobHandler,
        *,
        concurrency: int = DEFAULT_CONCURRENCY,
        poll_timeout: float = 1.0,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._queue = queue
        self._handler = handler
        self._concurrency = concurrency
        self._poll_timeout = poll_timeout
        self._stop_event = asyncio.Event()
        self._tasks: set[asyncio.Task[None]] = set()
        self.stats = ConsumerStats()

    @property
    def is_stopping(self) -> bool:
        return self._stop_event.is_set()

    def stop(self) -> None:
        self._stop_event.set()

    async def run(self) -> None:
        """Consume until ``stop()`` is called, then drain in-flight jobs."""
        await self._queue.recover_active()
        slots = asyncio.Semaphore(self._concurrency)
        self.stats.started_at = datetime.now(UTC)
        logger.info(
            "Consumer started on %s with concurrency %d", self._queue.name, self._concurrency
        )

        while not self._stop_event.is_set():
            await slots.acquire()
            try:
                reserved = await self._queue.reserve(self._poll_timeout)
            except Exception:
                slots.release()
                raise
            if reserved is None:
                slots.release()
                continue
            raw, queued = reserved
            task = asyncio.create_task(self._handle(raw, queued, slots))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        await self.drain()
        logger.info("Consumer on %s stopped", self._queue.name)

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def run_once(self) -> bool:
        """Process at most one job inline. Returns False when the queue was empty."""
        reserved = await self._queue.reserve(self._poll_timeout)
        if reserved is None:
            return False
        raw, queued = reserved
        await self._handle(raw, queued, None)
        return True

    async def _handle(self, raw: Any, queued: QueuedJob, slots: asyncio.Semaphore | None) -> None:
        self.stats.in_flight.add(queued.id)
        logger.info(
            "Processing job %s for %s (attempt %d)",
            queued.id,
            queued.job.github_username,
            queued.attempts + 1,
        )
        try:
            await self._handler(queued.job)
        except Exception as e:
            self.stats.jobs_failed += 1
            self.stats.last_error = str(e)
            await self._queue.fail(raw, queued, e)
        else:
            self.stats.jobs_completed += 1
            await self._queue.complete(raw)
            logger.info("Completed job %s for %s", queued.id, queued.job.github_username)
        finally:
            self.stats.in_flight.discard(queued.id)
            if slots is not None:
                slots.release()


def job_for(
    github_username: str,
    addresses: Sequence[str],
    *,
    email: str | None = None,
    force_refresh: bool = False,
) -> IngestionJob:
    """Build a job with a normalized username and addresses."""
    return IngestionJob(
        github_username=github_username.lower(),
        addresses=tuple(dict.fromkeys(a.lower() for a in addresses)),
        email=email,
        force_refresh=force_refresh,
    )
