"""Background worker process - drains the disbursement and credit-score queues"""

import asyncio
import logging
import signal
from typing import Any, Dict, List, Optional

from microlend_gateway.config import settings
from microlend_gateway.infrastructure.cache.client import CacheClient, cache_client
from microlend_gateway.infrastructure.clients.disbursement import DisbursementClient
from microlend_gateway.infrastructure.clients.notifications import NotificationClient
from microlend_gateway.infrastructure.database.session import SessionFactory, SessionLocal, session_scope
from microlend_gateway.infrastructure.observability.logging import setup_logging
from microlend_gateway.infrastructure.queue.jobs import CREDIT_SCORE_AWARD_QUEUE, DISBURSEMENT_QUEUE
from microlend_gateway.infrastructure.queue.worker import QueueWorker
from microlend_gateway.services.disbursement import DisbursementService
from microlend_gateway.services.score_updates import ScoreUpdatePipeline

logger = logging.getLogger(__name__)


def build_workers(
    session_factory: SessionFactory = SessionLocal,
    cache: CacheClient = cache_client,
    disbursement_client: Optional[DisbursementClient] = None,
    notifier: Optional[NotificationClient] = None,
) -> List[QueueWorker]:
    """One consumer per queue, each with its own concurrency limit"""
    disbursement_client = disbursement_client or DisbursementClient()
    notifier = notifier or NotificationClient()

    async def handle_disbursement(payload: Dict[str, Any]) -> None:
        with session_scope(session_factory) as db:
            await DisbursementService(db, cache, disbursement_client, notifier).disburse(payload["loan_id"])

    async def handle_credit_award(payload: Dict[str, Any]) -> None:
        with session_scope(session_factory) as db:
            ScoreUpdatePipeline(db, cache).record_repayment(
                payload["transaction_id"],
                payload["loan_id"],
                payload.get("phone_number"),
            )

    return [
        QueueWorker(
            session_factory,
            DISBURSEMENT_QUEUE,
            handle_disbursement,
            concurrency=settings.disbursement_concurrency,
            poll_interval_seconds=settings.queue_poll_interval_seconds,
            visibility_timeout_seconds=settings.job_visibility_timeout_seconds,
        ),
        QueueWorker(
            session_factory,
            CREDIT_SCORE_AWARD_QUEUE,
            handle_credit_award,
            concurrency=settings.credit_award_concurrency,
            poll_interval_seconds=settings.queue_poll_interval_seconds,
            visibility_timeout_seconds=settings.job_visibility_timeout_seconds,
        ),
    ]


async def run(stop: Optional[asyncio.Event] = None) -> None:
    stop = stop or asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    workers = build_workers()
    logger.info("Worker process started", extra={"queues": [w.queue for w in workers]})
    await asyncio.gather(*(worker.run_forever(stop) for worker in workers))


def main() -> None:
    setup_logging(settings.log_level, component="worker")
    asyncio.run(run())


if __name__ == "__main__":
    main()
