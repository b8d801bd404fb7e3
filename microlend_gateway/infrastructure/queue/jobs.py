"""Durable job queue backed by the queued_job table"""

import logging
import uuid
from datetime import timedelta
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from microlend_gateway.infrastructure.database.models import QueuedJob
from microlend_gateway.infrastructure.database.repositories import JobRepository
from microlend_gateway.utils.date_utils import utcnow

logger = logging.getLogger(__name__)

DISBURSEMENT_QUEUE = "loan-disbursement"
CREDIT_SCORE_AWARD_QUEUE = "credit-score-award"


class JobQueue:
    """Producer side of the queue; the caller owns the commit"""

    def __init__(self, db: Session):
        self.jobs = JobRepository(db)

    def enqueue(
        self,
        queue: str,
        payload: Dict[str, Any],
        max_attempts: int = 3,
        backoff_seconds: float = 2.0,
        dedupe_key: Optional[str] = None,
        dedupe_window_seconds: int = 0,
    ) -> QueuedJob:
        """
        Add a job, or return the live job already queued under the same
        dedupe key within the dedupe window.
        """
        now = utcnow()
        if dedupe_key and dedupe_window_seconds > 0:
            existing = self.jobs.find_recent_by_dedupe_key(dedupe_key, now - timedelta(seconds=dedupe_window_seconds))
            if existing is not None:
                logger.info(
                    "Job already queued inside dedupe window",
                    extra={"queue": queue, "dedupe_key": dedupe_key, "job_id": str(existing.id)},
                )
                return existing

        job = self.jobs.add(
            QueuedJob(
                queue=queue,
                payload=payload,
                status="pending",
                attempts=0,
                max_attempts=max_attempts,
                backoff_seconds=backoff_seconds,
                dedupe_key=dedupe_key,
                next_attempt_at=now,
            )
        )
        logger.info("Job enqueued", extra={"queue": queue, "job_id": str(job.id)})
        return job

    def requeue(self, job_id: uuid.UUID) -> Optional[QueuedJob]:
        """Return a parked job to the queue with a fresh attempt budget"""
        job = self.jobs.get(job_id)
        if job is None or job.status != "parked":
            return None
        job.status = "pending"
        job.attempts = 0
        job.next_attempt_at = utcnow()
        job.locked_at = None
        return job
