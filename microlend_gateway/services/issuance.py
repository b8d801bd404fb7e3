"""Loan issuance orchestrator - offers, acceptance and disbursement hand-off"""

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from microlend_gateway.config import settings as default_settings, Settings
from microlend_gateway.domain.eligibility import build_offer_bands
from microlend_gateway.domain.exceptions import (
    BorrowerNotFoundError,
    CreditLimitExceededError,
    InvalidLoanStateError,
    InvalidRequestError,
    InvalidSelectionError,
    LoanNotFoundError,
    NotEligibleError,
)
from microlend_gateway.domain.loan_terms import price_loan, to_money
from microlend_gateway.domain.models import ACTIVE_LOAN_STATUSES, LoanStatus, OfferSession
from microlend_gateway.infrastructure.cache.borrower_cache import BorrowerCache
from microlend_gateway.infrastructure.cache.client import CacheClient
from microlend_gateway.infrastructure.cache.offer_sessions import OfferSessionStore
from microlend_gateway.infrastructure.database.models import Borrower, Loan, QueuedJob
from microlend_gateway.infrastructure.database.repositories import BorrowerRepository, LoanRepository
from microlend_gateway.infrastructure.observability.metrics import loan_issuance_counter, offers_counter
from microlend_gateway.infrastructure.queue.jobs import DISBURSEMENT_QUEUE, JobQueue
from microlend_gateway.services.eligibility import EligibilityCalculator
from microlend_gateway.services.idempotency import IdempotencyGuard
from microlend_gateway.utils.date_utils import utcnow
from microlend_gateway.utils.phone import normalize_phone

logger = logging.getLogger(__name__)

CHANNEL = "USSD"


def generate_loan_reference(issued_at=None) -> str:
    """Human-readable loan reference, e.g. USS-2026-3F9A1C07B2"""
    issued_at = issued_at or utcnow()
    return f"USS-{issued_at.year}-{uuid.uuid4().hex[:10].upper()}"


@dataclass
class IssuanceResult:
    loan: Loan
    created: bool
    status: str  # success | processing


class LoanIssuanceOrchestrator:
    """
    Turns an accepted offer into exactly one approved loan and hands it to
    the disbursement queue.
    """

    def __init__(self, db: Session, cache: CacheClient, app_settings: Settings = default_settings):
        self.db = db
        self.settings = app_settings
        self.borrowers = BorrowerRepository(db)
        self.loans = LoanRepository(db)
        self.borrower_cache = BorrowerCache(
            cache,
            amount_ttl_seconds=app_settings.eligibility_cache_ttl_seconds,
            terms_ttl_seconds=app_settings.terms_cache_ttl_seconds,
        )
        self.eligibility = EligibilityCalculator(db, self.borrower_cache)
        self.sessions = OfferSessionStore(cache, app_settings.offer_session_ttl_seconds)
        self.guard = IdempotencyGuard(db, cache, app_settings)
        self.queue = JobQueue(db)

    def _resolve_borrower(self, phone_number: Optional[str]) -> Tuple[Borrower, str]:
        phone = normalize_phone(phone_number)
        if not phone:
            raise InvalidRequestError("phoneNumber is required")

        borrower = self.borrowers.find_by_phone(phone)
        if borrower is None:
            raise BorrowerNotFoundError("User not found. Please register first.")
        return borrower, phone

    def _build_session(self, borrower: Borrower, phone: str, session_key: str, network: Optional[str]) -> OfferSession:
        snapshot = self.eligibility.snapshot(borrower)
        offers = build_offer_bands(
            snapshot.eligible_amount,
            snapshot.interest_rate,
            snapshot.repayment_period_days,
            self.settings.currency,
        )
        return OfferSession(
            session_key=session_key,
            borrower_id=str(borrower.id),
            msisdn=phone,
            eligible_amount=snapshot.eligible_amount,
            network=network,
            offers=offers,
        )

    def compute_offer(
        self,
        phone_number: Optional[str],
        network: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> OfferSession:
        """Offers for a borrower; zero eligibility yields an empty offer list"""
        borrower, phone = self._resolve_borrower(phone_number)
        session = self._build_session(borrower, phone, session_id or phone, network)

        if not session.offers:
            offers_counter.labels(outcome="not_eligible").inc()
            logger.info("No eligible amount for borrower", extra={"borrower_id": str(borrower.id)})
            return session

        self.sessions.save(session)
        offers_counter.labels(outcome="offered").inc()
        logger.info(
            "Loan offers generated",
            extra={
                "borrower_id": str(borrower.id),
                "eligible_amount": str(session.eligible_amount),
                "offer_count": len(session.offers),
            },
        )
        return session

    def _resolve_amount(
        self,
        session: OfferSession,
        selected_option: Optional[int],
        selected_amount: Optional[Decimal],
    ) -> Decimal:
        if selected_option is not None:
            for offer in session.offers:
                if offer.option == selected_option:
                    return offer.amount
            raise InvalidSelectionError("Invalid loan option selected")

        amount = to_money(selected_amount)
        if amount <= 0:
            raise InvalidSelectionError("Selected amount must be greater than zero")
        if amount > session.eligible_amount:
            raise InvalidSelectionError("Selected amount exceeds eligible loan amount")
        for offer in session.offers:
            if offer.amount == amount:
                return offer.amount
        raise InvalidSelectionError("Selected amount does not match any loan offer")

    def accept_offer(
        self,
        phone_number: Optional[str],
        network: Optional[str] = None,
        session_id: Optional[str] = None,
        selected_option: Optional[int] = None,
        selected_amount: Optional[Decimal] = None,
    ) -> IssuanceResult:
        """
        Accept an offer and issue the loan at most once per request identity.

        The offer session is reloaded, or recomputed when it expired or belongs
        to another number. Repeats of the same request (same borrower, session
        and amount) return the loan created the first time.
        """
        if selected_option is None and selected_amount is None:
            raise InvalidRequestError("Selected option or amount is required")

        borrower, phone = self._resolve_borrower(phone_number)
        session_key = session_id or phone

        session = self.sessions.get(session_key)
        if session is None or session.msisdn != phone or session.borrower_id != str(borrower.id):
            session = self._build_session(borrower, phone, session_key, network)
            if session.offers:
                self.sessions.save(session)

        if not session.offers or session.eligible_amount <= 0:
            loan_issuance_counter.labels(outcome="rejected").inc()
            raise NotEligibleError("User not eligible for any amount")

        amount = self._resolve_amount(session, selected_option, selected_amount)
        loan_network = session.network or network

        try:
            loan, created = self.guard.execute(
                borrower.id,
                phone,
                session_key,
                amount,
                lambda key: self._create_loan(borrower, amount, key, session_key, loan_network),
            )
        except SQLAlchemyError:
            self.db.rollback()
            raise

        if created:
            self.borrower_cache.invalidate_eligible_amount(borrower.id)
        loan_issuance_counter.labels(outcome="created" if created else "replayed").inc()

        if loan.status == LoanStatus.APPROVED.value:
            self.enqueue_disbursement(loan)

        status = "success" if loan.status == LoanStatus.DISBURSED.value else "processing"
        return IssuanceResult(loan=loan, created=created, status=status)

    def _validate_credit(self, borrower: Borrower, amount: Decimal) -> None:
        """Amount must fit both the credit limit and the headroom left by open loans"""
        credit_limit = to_money(borrower.credit_limit or 0)
        outstanding = self.loans.total_outstanding(borrower.id, ACTIVE_LOAN_STATUSES)
        available = max(Decimal("0.00"), credit_limit - outstanding)

        if amount > credit_limit:
            loan_issuance_counter.labels(outcome="rejected").inc()
            raise CreditLimitExceededError(
                f"Loan amount exceeds credit limit. Maximum allowed: {credit_limit}, Requested: {amount}",
                available_credit=available,
            )

        if outstanding + amount > credit_limit:
            loan_issuance_counter.labels(outcome="rejected").inc()
            raise CreditLimitExceededError(
                f"Insufficient credit available. Available credit: {available}, Requested: {amount}",
                available_credit=available,
            )

    def _create_loan(
        self,
        borrower: Borrower,
        amount: Decimal,
        idempotency_key: str,
        session_key: str,
        network: Optional[str],
    ) -> Loan:
        self._validate_credit(borrower, amount)

        now = utcnow()
        rate = self.eligibility.interest_rate(borrower)
        period = self.eligibility.repayment_period(borrower)
        terms = price_loan(amount, rate, period, now)

        loan = self.loans.add(
            Loan(
                reference=generate_loan_reference(now),
                borrower_id=borrower.id,
                borrower_phone=borrower.phone,
                amount=terms.principal,
                disbursed_amount=terms.principal,
                interest_rate=Decimal(str(rate)),
                repayment_period_days=period,
                amount_due=terms.amount_due,
                amount_paid=Decimal("0.00"),
                outstanding_amount=terms.amount_due,
                status=LoanStatus.APPROVED.value,
                network=network,
                due_date=terms.due_date,
                approved_at=now,
                metadata_={
                    "idempotency_key": idempotency_key,
                    "session_key": session_key,
                    "loan_key": f"{session_key}:{borrower.phone}:{terms.principal}",
                    "network": network,
                    "channel": CHANNEL,
                },
            )
        )
        borrower.loan_count = (borrower.loan_count or 0) + 1
        self.db.commit()

        logger.info(
            "Loan created",
            extra={
                "loan_id": str(loan.id),
                "borrower_id": str(borrower.id),
                "amount": str(terms.principal),
                "amount_due": str(terms.amount_due),
                "interest_rate": rate,
                "repayment_period_days": period,
            },
        )
        return loan

    def _enqueue(self, loan: Loan) -> QueuedJob:
        job = self.queue.enqueue(
            DISBURSEMENT_QUEUE,
            {"loan_id": str(loan.id), "borrower_id": str(loan.borrower_id)},
            max_attempts=self.settings.disbursement_max_attempts,
            backoff_seconds=self.settings.disbursement_backoff_seconds,
            dedupe_key=f"disburse:{loan.id}",
            dedupe_window_seconds=self.settings.disbursement_dedupe_window_seconds,
        )
        self.db.commit()
        return job

    def enqueue_disbursement(self, loan: Loan) -> Optional[QueuedJob]:
        """Hand the loan to the disbursement queue; failures are logged, never raised"""
        try:
            return self._enqueue(loan)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Failed to enqueue loan disbursement", extra={"loan_id": str(loan.id), "error": str(e)})
            return None

    def request_disbursement(self, loan_id: uuid.UUID) -> Optional[QueuedJob]:
        """
        Out-of-band (re-)enqueue for an approved loan.

        Returns None when the loan is already disbursed.
        """
        loan = self.loans.get(loan_id)
        if loan is None:
            raise LoanNotFoundError(f"Loan {loan_id} not found")
        if loan.status == LoanStatus.DISBURSED.value:
            return None
        if loan.status != LoanStatus.APPROVED.value:
            raise InvalidLoanStateError("Loan must be approved before disbursement")
        try:
            return self._enqueue(loan)
        except SQLAlchemyError:
            self.db.rollback()
            raise
