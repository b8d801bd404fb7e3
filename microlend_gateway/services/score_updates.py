"""Score update pipeline - applies confirmed repayments to loans and credit scores"""

import logging
import uuid
from decimal import Decimal
from typing import Optional, Union

from sqlalchemy.orm import Session

from microlend_gateway.config import settings as default_settings, Settings
from microlend_gateway.domain.eligibility import clamp
from microlend_gateway.domain.exceptions import (
    BorrowerNotFoundError,
    InvalidTransactionError,
    LoanNotFoundError,
    TransactionNotFoundError,
)
from microlend_gateway.domain.loan_state import advance
from microlend_gateway.domain.loan_terms import apply_repayment, to_money
from microlend_gateway.domain.models import (
    LoanStatus,
    RepaymentStatus,
    ScoreAward,
    ScoreChangeReason,
    TransactionStatus,
    TransactionType,
)
from microlend_gateway.domain.scoring import calculate_points
from microlend_gateway.infrastructure.cache.borrower_cache import BorrowerCache
from microlend_gateway.infrastructure.cache.client import CacheClient
from microlend_gateway.infrastructure.database.models import Borrower, Loan, QueuedJob, RepaymentTransaction
from microlend_gateway.infrastructure.database.repositories import (
    BorrowerRepository,
    CreditScoreHistoryRepository,
    LoanRepository,
    TransactionRepository,
)
from microlend_gateway.infrastructure.observability.metrics import record_points_awarded
from microlend_gateway.infrastructure.queue.jobs import CREDIT_SCORE_AWARD_QUEUE, JobQueue
from microlend_gateway.services.config_store import SystemConfigService
from microlend_gateway.services.eligibility import EligibilityCalculator
from microlend_gateway.utils.date_utils import utcnow
from microlend_gateway.utils.phone import normalize_phone

logger = logging.getLogger(__name__)


def _as_uuid(value: Union[str, uuid.UUID]) -> uuid.UUID:
    return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))


def resync_limit_from_score(borrower: Borrower, score: int, calculator: EligibilityCalculator) -> Decimal:
    """Set an auto-synced credit limit to the threshold amount for the new score"""
    previous_limit = borrower.credit_limit
    new_limit = calculator.amount_from_score(borrower, score)
    borrower.credit_limit = new_limit
    logger.info(
        "Credit limit resynced from score",
        extra={
            "borrower_id": str(borrower.id),
            "credit_score": score,
            "previous_credit_limit": str(previous_limit),
            "new_credit_limit": str(new_limit),
        },
    )
    return new_limit


def enqueue_award(
    db: Session,
    transaction_id: Union[str, uuid.UUID],
    loan_id: Union[str, uuid.UUID],
    phone_number: Optional[str] = None,
    app_settings: Settings = default_settings,
) -> QueuedJob:
    """Queue a score update for a confirmed repayment; the caller commits"""
    return JobQueue(db).enqueue(
        CREDIT_SCORE_AWARD_QUEUE,
        {"transaction_id": str(transaction_id), "loan_id": str(loan_id), "phone_number": phone_number},
        max_attempts=app_settings.credit_award_max_attempts,
        backoff_seconds=app_settings.credit_award_backoff_seconds,
        dedupe_key=f"credit-award:{transaction_id}",
        dedupe_window_seconds=app_settings.job_visibility_timeout_seconds,
    )


class ScoreUpdatePipeline:
    """
    Applies one confirmed repayment exactly once.

    A transaction is recognised as processed either by its credit score
    history row (points were awarded) or by its credit_processed_at stamp
    (zero points). Either way a repeat delivery returns the earlier result
    without touching the loan, the borrower or the ledger.
    """

    def __init__(self, db: Session, cache: CacheClient, app_settings: Settings = default_settings):
        self.db = db
        self.transactions = TransactionRepository(db)
        self.loans = LoanRepository(db)
        self.borrowers = BorrowerRepository(db)
        self.history = CreditScoreHistoryRepository(db)
        self.config = SystemConfigService(db)
        self.borrower_cache = BorrowerCache(
            cache,
            amount_ttl_seconds=app_settings.eligibility_cache_ttl_seconds,
            terms_ttl_seconds=app_settings.terms_cache_ttl_seconds,
        )
        self.eligibility = EligibilityCalculator(db, self.borrower_cache, self.config)

    def record_repayment(
        self,
        transaction_id: Union[str, uuid.UUID],
        loan_id: Union[str, uuid.UUID],
        phone_number: Optional[str] = None,
    ) -> ScoreAward:
        transaction = self.transactions.get(_as_uuid(transaction_id))
        if transaction is None:
            raise TransactionNotFoundError(f"Transaction {transaction_id} not found")

        if (
            transaction.type != TransactionType.REPAYMENT.value
            or transaction.status != TransactionStatus.COMPLETED.value
        ):
            raise InvalidTransactionError("Transaction must be a completed repayment")

        loan = self.loans.get(_as_uuid(loan_id))
        if loan is None:
            raise LoanNotFoundError(f"Loan {loan_id} not found")
        if transaction.loan_id is not None and transaction.loan_id != loan.id:
            raise InvalidTransactionError("Transaction does not belong to this loan")

        borrower = self._resolve_borrower(transaction, phone_number)

        previous = self.history.find_by_transaction_id(transaction.id)
        if previous:
            logger.warning(
                "Credit score already awarded for transaction, skipping",
                extra={"transaction_id": str(transaction.id)},
            )
            return ScoreAward(points_awarded=previous[0].points_awarded, new_score=previous[0].new_score)

        if transaction.credit_processed_at is not None:
            logger.warning("Repayment already processed, skipping", extra={"transaction_id": str(transaction.id)})
            return ScoreAward(points_awarded=0, new_score=borrower.credit_score)

        try:
            award = self._apply(transaction, loan, borrower)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self._invalidate_caches(borrower.id)
        return award

    def _resolve_borrower(self, transaction: RepaymentTransaction, phone_number: Optional[str]) -> Borrower:
        borrower = None
        phone = normalize_phone(phone_number)
        if phone:
            borrower = self.borrowers.find_by_phone(phone)
        if borrower is None and transaction.borrower_id is not None:
            borrower = self.borrowers.get(transaction.borrower_id)
        if borrower is None:
            raise BorrowerNotFoundError(f"User not found for transaction {transaction.id}")
        return borrower

    @staticmethod
    def _next_status(current: str, outstanding: Decimal) -> LoanStatus:
        if outstanding <= 0 and current != LoanStatus.COMPLETED.value:
            return LoanStatus.COMPLETED
        if current in (LoanStatus.DISBURSED.value, LoanStatus.PENDING.value):
            return LoanStatus.REPAYING
        return LoanStatus(current)

    def _apply(self, transaction: RepaymentTransaction, loan: Loan, borrower: Borrower) -> ScoreAward:
        repayment = to_money(transaction.amount)
        amount_due = to_money(loan.amount_due)
        was_completed = loan.status == LoanStatus.COMPLETED.value

        new_paid, outstanding, clamped = apply_repayment(amount_due, loan.amount_paid or 0, repayment)
        target = self._next_status(loan.status, outstanding)
        status_changed = advance(loan.status, target)

        if clamped:
            logger.warning(
                "Repayment exceeds amount due, clamping amount paid",
                extra={
                    "loan_id": str(loan.id),
                    "transaction_id": str(transaction.id),
                    "amount_due": str(amount_due),
                    "repayment": str(repayment),
                },
            )

        now = utcnow()
        loan.amount_paid = new_paid
        loan.outstanding_amount = outstanding
        if status_changed:
            loan.status = target.value
            if target == LoanStatus.COMPLETED:
                loan.completed_at = now

        is_full_repayment = outstanding <= 0
        borrower.total_repaid = to_money(borrower.total_repaid or 0) + repayment
        if is_full_repayment:
            borrower.repayment_status = RepaymentStatus.COMPLETED.value
        elif new_paid > 0:
            borrower.repayment_status = RepaymentStatus.PARTIAL.value

        calculation = calculate_points(
            repayment,
            amount_due,
            loan.disbursed_at or loan.created_at,
            transaction.reconciled_at or transaction.updated_at or now,
            is_full_repayment,
            self.config.scoring_config(),
        )
        transaction.credit_processed_at = now

        if calculation.points <= 0:
            logger.info(
                "No credit score points for repayment",
                extra={"transaction_id": str(transaction.id), "reason": calculation.reason},
            )
            return ScoreAward(points_awarded=0, new_score=borrower.credit_score)

        previous_score = borrower.credit_score or 0
        new_score = clamp(previous_score + calculation.points, 0, self.config.max_score())
        borrower.credit_score = new_score

        if borrower.auto_limit_enabled:
            resync_limit_from_score(borrower, new_score, self.eligibility)

        reason = (
            ScoreChangeReason.LOAN_COMPLETED
            if is_full_repayment and not was_completed
            else ScoreChangeReason.PARTIAL_REPAYMENT
        )
        self.history.append(
            borrower_id=borrower.id,
            previous_score=previous_score,
            new_score=new_score,
            points_awarded=calculation.points,
            reason=reason.value,
            loan_id=loan.id,
            transaction_id=transaction.id,
            metadata=calculation.metadata,
        )
        record_points_awarded(calculation.points)

        logger.info(
            "Credit score awarded for repayment",
            extra={
                "borrower_id": str(borrower.id),
                "loan_id": str(loan.id),
                "transaction_id": str(transaction.id),
                "points_awarded": calculation.points,
                "previous_score": previous_score,
                "new_score": new_score,
                "reason": reason.value,
            },
        )
        return ScoreAward(points_awarded=calculation.points, new_score=new_score)

    def _invalidate_caches(self, borrower_id: uuid.UUID) -> None:
        self.borrower_cache.invalidate_borrower(borrower_id)
        self.borrower_cache.invalidate_lists()
        self.borrower_cache.invalidate_stats()
