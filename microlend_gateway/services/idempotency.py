"""Duplicate-request protection for loan issuance"""

import logging
import uuid
from contextlib import contextmanager
from datetime import timedelta
from decimal import Decimal
from typing import Callable, Iterator, Optional, Tuple

import redis
from sqlalchemy.orm import Session

from microlend_gateway.config import settings as default_settings, Settings
from microlend_gateway.domain.exceptions import LoanCooldownError, LoanRequestInProgressError
from microlend_gateway.domain.loan_terms import to_money
from microlend_gateway.domain.models import COOLDOWN_LOAN_STATUSES
from microlend_gateway.infrastructure.cache.client import CacheClient
from microlend_gateway.infrastructure.cache.locks import DistributedLock, LockNotAcquiredError
from microlend_gateway.infrastructure.database.models import Loan
from microlend_gateway.infrastructure.database.repositories import LoanRepository
from microlend_gateway.infrastructure.observability.metrics import (
    cooldown_rejection_counter,
    idempotent_replay_counter,
    lock_contention_counter,
)
from microlend_gateway.utils.date_utils import utcnow

logger = logging.getLogger(__name__)


class IdempotencyGuard:
    """
    Makes repeated accept-offer requests resolve to a single loan.

    Protocol for one request:
    1. Fast path: cached idempotency key → loan id
    2. Durable path: a loan whose metadata carries the key
    3. Phone cooldown: a recent live loan for the same number rejects the
       request, unless that loan carries the same key (then it is the answer)
    4. Per-(borrower, session) lock, then a second durable lookup and cooldown
       check, then create

    Two sessions for one number racing inside the same instant can still
    both pass the cooldown; it is best-effort across sessions.
    """

    def __init__(self, db: Session, cache: CacheClient, app_settings: Settings = default_settings):
        self.loans = LoanRepository(db)
        self.cache = cache
        self.settings = app_settings

    @staticmethod
    def build_key(borrower_id, session_key: str, amount: Decimal) -> str:
        return f"ussd:loan:{borrower_id}:{session_key}:{to_money(amount)}"

    @staticmethod
    def cache_key(idempotency_key: str) -> str:
        return f"idempotency:{idempotency_key}"

    def find_existing(self, borrower_id: uuid.UUID, idempotency_key: str) -> Tuple[Optional[Loan], Optional[str]]:
        """Previously created loan for the key and which path found it"""
        loan_id = None
        try:
            loan_id = self.cache.get(self.cache_key(idempotency_key))
        except redis.RedisError as e:
            logger.warning("Idempotency cache read failed", extra={"error": str(e)})

        if loan_id:
            try:
                loan = self.loans.get(uuid.UUID(loan_id))
            except ValueError:
                loan = None
            if loan is not None and loan.borrower_id == borrower_id:
                return loan, "cache"

        loan = self.loans.find_by_idempotency_key(borrower_id, idempotency_key)
        if loan is not None:
            return loan, "database"
        return None, None

    def ensure_no_recent_loan(self, phone: str, idempotency_key: str) -> Optional[Loan]:
        """
        Enforce the per-phone cooldown.

        Returns:
            The recent loan when it was created by this same request

        Raises:
            LoanCooldownError: a different recent loan exists for the phone
        """
        since = utcnow() - timedelta(minutes=self.settings.loan_cooldown_minutes)
        recent = self.loans.find_recent_for_phone(phone, since, COOLDOWN_LOAN_STATUSES)
        if recent is None:
            return None

        if (recent.metadata_ or {}).get("idempotency_key") == idempotency_key:
            return recent

        cooldown_rejection_counter.inc()
        logger.warning(
            "Loan request rejected by cooldown",
            extra={"loan_id": str(recent.id), "cooldown_minutes": self.settings.loan_cooldown_minutes},
        )
        raise LoanCooldownError(
            f"A loan was issued to this number recently. "
            f"Please wait {self.settings.loan_cooldown_minutes} minutes between loan requests."
        )

    def remember(self, idempotency_key: str, loan_id: uuid.UUID) -> None:
        try:
            self.cache.set(self.cache_key(idempotency_key), str(loan_id), self.settings.idempotency_ttl_seconds)
        except redis.RedisError as e:
            # Durable metadata path still finds the loan
            logger.warning("Failed to cache idempotency key", extra={"loan_id": str(loan_id), "error": str(e)})

    @contextmanager
    def lock(self, borrower_id, session_key: str) -> Iterator[None]:
        key = f"ussd:loan:lock:{borrower_id}:{session_key}"
        try:
            with DistributedLock(
                self.cache,
                key,
                ttl_seconds=self.settings.loan_lock_ttl_seconds,
                wait_attempts=self.settings.loan_lock_wait_attempts,
                wait_interval_seconds=self.settings.loan_lock_wait_interval_seconds,
            ):
                yield
        except LockNotAcquiredError:
            lock_contention_counter.inc()
            logger.warning("Loan lock busy", extra={"borrower_id": str(borrower_id), "lock_key": key})
            raise LoanRequestInProgressError("A loan request is already being processed. Please wait.")

    def execute(
        self,
        borrower_id: uuid.UUID,
        phone: Optional[str],
        session_key: str,
        amount: Decimal,
        create_loan: Callable[[str], Loan],
    ) -> Tuple[Loan, bool]:
        """
        Run the full protocol around `create_loan`.

        `create_loan` receives the idempotency key and must commit the loan
        before returning, so it is durable while the lock is still held.

        Returns:
            (loan, created) where created is False for a replay
        """
        idempotency_key = self.build_key(borrower_id, session_key, amount)

        existing, path = self.find_existing(borrower_id, idempotency_key)
        if existing is not None:
            idempotent_replay_counter.labels(path=path).inc()
            logger.info("Returning existing loan for repeated request", extra={"loan_id": str(existing.id), "path": path})
            return existing, False

        if phone:
            recent = self.ensure_no_recent_loan(phone, idempotency_key)
            if recent is not None:
                idempotent_replay_counter.labels(path="cooldown_match").inc()
                return recent, False

        with self.lock(borrower_id, session_key):
            existing = self.loans.find_by_idempotency_key(borrower_id, idempotency_key)
            if existing is not None:
                idempotent_replay_counter.labels(path="after_lock").inc()
                return existing, False

            # The lock is per session; another session may have issued a loan meanwhile
            if phone:
                self.ensure_no_recent_loan(phone, idempotency_key)

            loan = create_loan(idempotency_key)
            self.remember(idempotency_key, loan.id)
            return loan, True
