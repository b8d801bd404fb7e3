"""Queue consumer with bounded concurrency, exponential backoff and parking"""

import asyncio
import logging
import uuid
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, Optional

from microlend_gateway.infrastructure.database.repositories import JobRepository
from microlend_gateway.infrastructure.database.session import SessionFactory, session_scope
from microlend_gateway.infrastructure.observability.metrics import job_outcome_counter
from microlend_gateway.utils.date_utils import utcnow

logger = logging.getLogger(__name__)

JobHandler = Callable[[Dict[str, Any]], Awaitable[None]]


def backoff_delay(backoff_seconds: float, attempt: int) -> float:
    """Delay before the next try: base, 2×base, 4×base, ..."""
    return backoff_seconds * (2 ** (attempt - 1))


class QueueWorker:
    """
    Pulls jobs for one queue and runs them through a handler.

    Retry strategy:
    - Handler raises → job goes back to pending after base × 2^(attempt-1) seconds
    - After max_attempts failures the job is parked with its last error for
      manual inspection; it is never dropped
    - A job left running past the visibility timeout (crashed worker) becomes
      claimable again
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        queue: str,
        handler: JobHandler,
        concurrency: int = 3,
        poll_interval_seconds: float = 1.0,
        visibility_timeout_seconds: int = 300,
    ):
        self.session_factory = session_factory
        self.queue = queue
        self.handler = handler
        self.concurrency = concurrency
        self.poll_interval_seconds = poll_interval_seconds
        self.visibility_timeout_seconds = visibility_timeout_seconds
        self._semaphore: Optional[asyncio.Semaphore] = None

    def _stale_before(self, now):
        return now - timedelta(seconds=self.visibility_timeout_seconds)

    async def run_once(self) -> int:
        """Run every currently due job (up to the concurrency limit); returns how many ran"""
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.concurrency)

        now = utcnow()
        with session_scope(self.session_factory) as db:
            job_ids = JobRepository(db).due_job_ids([self.queue], now, self._stale_before(now), self.concurrency)

        results = await asyncio.gather(*(self._run_job(job_id) for job_id in job_ids))
        return sum(1 for ran in results if ran)

    async def run_forever(self, stop: asyncio.Event) -> None:
        logger.info("Queue worker started", extra={"queue": self.queue, "concurrency": self.concurrency})
        while not stop.is_set():
            processed = await self.run_once()
            if processed:
                continue
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.poll_interval_seconds)
            except asyncio.TimeoutError:
                pass
        logger.info("Queue worker stopped", extra={"queue": self.queue})

    async def _run_job(self, job_id: uuid.UUID) -> bool:
        async with self._semaphore:
            with session_scope(self.session_factory) as db:
                jobs = JobRepository(db)
                now = utcnow()
                if not jobs.claim(job_id, now, self._stale_before(now)):
                    db.rollback()
                    return False
                db.commit()
                job = jobs.get(job_id)
                payload = dict(job.payload)
                attempt = job.attempts

            logger.info("Processing job", extra={"queue": self.queue, "job_id": str(job_id), "attempt": attempt})
            try:
                await self.handler(payload)
            except Exception as e:
                self._record_failure(job_id, e)
                return True

            self._record_success(job_id)
            return True

    def _record_success(self, job_id: uuid.UUID) -> None:
        with session_scope(self.session_factory) as db:
            job = JobRepository(db).get(job_id)
            job.status = "completed"
            job.completed_at = utcnow()
            job.locked_at = None
            job.last_error = None
            db.commit()
        job_outcome_counter.labels(queue=self.queue, outcome="completed").inc()
        logger.debug("Job completed", extra={"queue": self.queue, "job_id": str(job_id)})

    def _record_failure(self, job_id: uuid.UUID, error: Exception) -> None:
        with session_scope(self.session_factory) as db:
            job = JobRepository(db).get(job_id)
            job.last_error = f"{type(error).__name__}: {error}"
            job.locked_at = None

            if job.attempts >= job.max_attempts:
                job.status = "parked"
                outcome = "parked"
                logger.error(
                    "Job failed permanently and was parked",
                    extra={
                        "queue": self.queue,
                        "job_id": str(job_id),
                        "attempts": job.attempts,
                        "error": str(error),
                    },
                )
            else:
                delay = backoff_delay(job.backoff_seconds, job.attempts)
                job.status = "pending"
                job.next_attempt_at = utcnow() + timedelta(seconds=delay)
                outcome = "retry"
                logger.warning(
                    "Job failed, scheduled for retry",
                    extra={
                        "queue": self.queue,
                        "job_id": str(job_id),
                        "attempts": job.attempts,
                        "retry_in_seconds": delay,
                        "error": str(error),
                    },
                )
            db.commit()
        job_outcome_counter.labels(queue=self.queue, outcome=outcome).inc()
