"""Mail job queues and the worker that drains them.

Two backends share one contract: ``enqueue(key, payload)`` returns as soon
as the job is accepted and delivery happens later, out of the request path.

* ``InMemoryMailQueue`` + ``MailWorker`` run inside the API process (mock mode).
* ``ArqMailDispatcher`` pushes jobs to Redis where ``app.worker`` consumes them.

Both apply the same policy: bounded retries with exponential backoff, then
the dead-letter list.
"""

from __future__ import annotations

import asyncio
import contextlib
import copy
import itertools
import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Protocol

from arq import create_pool
from arq.connections import ArqRedis, RedisSettings
from redis.exceptions import RedisError

from app.schemas.mail import MailJob
from app.services.clock import Clock, SystemClock
from app.services.exceptions import InfrastructureError, ServiceError

logger = logging.getLogger(__name__)

MailHandler = Callable[[Dict[str, Any]], Awaitable[None]]

PROCESS_MAIL_JOB = "process_mail_job"
DEAD_LETTER_KEY = "mail:dead-letter"


class InvalidMailPayload(ServiceError):
    """Raised by a handler when a payload can never be delivered; not retried."""


def retry_delay(attempt: int, backoff: float) -> float:
    """Seconds to wait after failed ``attempt`` (1-based): backoff, 2x, 4x, ..."""
    return backoff * (2 ** max(attempt - 1, 0))


class MailDispatcher(Protocol):
    async def enqueue(self, key: str, payload: Dict[str, Any]) -> str:
        ...


class InMemoryMailQueue:
    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or SystemClock()
        self._counter = itertools.count(1)
        self._jobs: List[MailJob] = []
        self.dead_letters: List[MailJob] = []

    async def enqueue(self, key: str, payload: Dict[str, Any]) -> str:
        now = self._clock.now()
        job = MailJob(
            job_id=f"JOB-{next(self._counter):05d}",
            key=key,
            payload=copy.deepcopy(dict(payload)),
            enqueued_at=now,
            available_at=now,
        )
        self._jobs.append(job)
        logger.info("Enqueued mail job %s (%s)", job.job_id, key)
        return job.job_id

    def reserve(self, now: datetime) -> Optional[MailJob]:
        for index, job in enumerate(self._jobs):
            if job.available_at <= now:
                return self._jobs.pop(index)
        return None

    def schedule_retry(self, job: MailJob, available_at: datetime) -> None:
        job.available_at = available_at
        self._jobs.append(job)

    def dead_letter(self, job: MailJob) -> None:
        self.dead_letters.append(job)

    def pending(self) -> List[MailJob]:
        return list(self._jobs)


class MailWorker:
    """Polls an ``InMemoryMailQueue`` and dispatches each job by key."""

    def __init__(
        self,
        queue: InMemoryMailQueue,
        handlers: Mapping[str, MailHandler],
        *,
        clock: Clock | None = None,
        max_tries: int = 3,
        backoff: float = 5.0,
        poll_interval: float = 0.5,
    ) -> None:
        self._queue = queue
        self._handlers = dict(handlers)
        self._clock = clock or SystemClock()
        self._max_tries = max_tries
        self._backoff = backoff
        self._poll_interval = poll_interval
        self._task: Optional[asyncio.Task] = None

    async def process_next(self) -> Optional[MailJob]:
        """Handle one ready job, if any, and return it."""
        now = self._clock.now()
        job = self._queue.reserve(now)
        if job is None:
            return None

        handler = self._handlers.get(job.key)
        if handler is None:
            job.last_error = f"No handler registered for {job.key!r}"
            logger.error("Dead-lettering mail job %s: %s", job.job_id, job.last_error)
            self._queue.dead_letter(job)
            return job

        job.attempts += 1
        try:
            await handler(job.payload)
        except InvalidMailPayload as exc:
            job.last_error = str(exc)
            logger.error("Dead-lettering mail job %s: %s", job.job_id, exc)
            self._queue.dead_letter(job)
            return job
        except Exception as exc:
            job.last_error = str(exc) or exc.__class__.__name__
            if job.attempts >= self._max_tries:
                logger.exception(
                    "Mail job %s failed after %s attempts, moving to dead letters",
                    job.job_id,
                    job.attempts,
                )
                self._queue.dead_letter(job)
            else:
                delay = retry_delay(job.attempts, self._backoff)
                logger.warning(
                    "Mail job %s failed (attempt %s/%s), retrying in %.1fs: %s",
                    job.job_id,
                    job.attempts,
                    self._max_tries,
                    delay,
                    job.last_error,
                )
                self._queue.schedule_retry(job, now + timedelta(seconds=delay))
            return job

        logger.info("Mail job %s (%s) delivered", job.job_id, job.key)
        return job

    async def run(self) -> None:
        while True:
            job = await self.process_next()
            if job is None:
                await asyncio.sleep(self._poll_interval)
            else:
                await asyncio.sleep(0)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="mail-worker")
            logger.info("Mail worker started")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Mail worker stopped")


class ArqMailDispatcher:
    """Enqueues mail jobs on Redis for the ARQ worker in ``app.worker``."""

    def __init__(self, redis_settings: RedisSettings, *, pool: ArqRedis | None = None) -> None:
        self._redis_settings = redis_settings
        self._pool = pool

    async def _ensure_pool(self) -> ArqRedis:
        if self._pool is None:
            self._pool = await create_pool(self._redis_settings)
        return self._pool

    async def enqueue(self, key: str, payload: Dict[str, Any]) -> str:
        try:
            pool = await self._ensure_pool()
            job = await pool.enqueue_job(PROCESS_MAIL_JOB, key, payload)
        except (RedisError, OSError, asyncio.TimeoutError) as exc:
            logger.exception("Unable to enqueue mail job %s", key)
            raise InfrastructureError("Unable to enqueue mail job", cause=exc) from exc

        if job is None:
            raise InfrastructureError(f"Mail job {key} was not accepted by the queue")
        logger.info("Enqueued mail job %s (%s)", job.job_id, key)
        return job.job_id

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.aclose()
            self._pool = None
