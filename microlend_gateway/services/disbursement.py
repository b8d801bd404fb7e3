"""Disbursement of approved loans through the telco provider"""

import logging
import uuid
from typing import Optional, Union

from sqlalchemy.orm import Session

from microlend_gateway.config import settings as default_settings, Settings
from microlend_gateway.domain.exceptions import InvalidLoanStateError, LoanNotFoundError, NotificationError
from microlend_gateway.domain.loan_state import advance
from microlend_gateway.domain.models import LoanStatus
from microlend_gateway.infrastructure.cache.client import CacheClient
from microlend_gateway.infrastructure.cache.offer_sessions import OfferSessionStore
from microlend_gateway.infrastructure.clients.disbursement import DisbursementClient
from microlend_gateway.infrastructure.clients.notifications import NotificationClient
from microlend_gateway.infrastructure.database.models import Loan
from microlend_gateway.infrastructure.database.repositories import LoanRepository
from microlend_gateway.utils.date_utils import utcnow

logger = logging.getLogger(__name__)


class DisbursementService:
    """
    Pays out an approved loan once.

    Safe to run more than once for the same loan: a loan that is already
    disbursed is left untouched, and the provider call carries the loan
    reference as its idempotency key so a retry after a failed commit does not
    pay twice.
    """

    def __init__(
        self,
        db: Session,
        cache: CacheClient,
        client: DisbursementClient,
        notifier: Optional[NotificationClient] = None,
        app_settings: Settings = default_settings,
    ):
        self.db = db
        self.loans = LoanRepository(db)
        self.sessions = OfferSessionStore(cache, app_settings.offer_session_ttl_seconds)
        self.client = client
        self.notifier = notifier

    async def disburse(self, loan_id: Union[str, uuid.UUID]) -> Loan:
        loan = self.loans.get(uuid.UUID(str(loan_id)))
        if loan is None:
            raise LoanNotFoundError(f"Loan {loan_id} not found")

        if loan.status == LoanStatus.DISBURSED.value:
            logger.info("Loan already disbursed, skipping", extra={"loan_id": str(loan.id)})
            return loan

        if loan.status != LoanStatus.APPROVED.value:
            raise InvalidLoanStateError(f"Loan must be approved before disbursement, current status: {loan.status}")

        advance(loan.status, LoanStatus.DISBURSED)
        telco_reference = await self.client.disburse(
            loan.reference,
            loan.borrower_phone,
            loan.disbursed_amount or loan.amount,
            loan.network,
        )

        loan.status = LoanStatus.DISBURSED.value
        loan.disbursed_at = utcnow()
        loan.telco_reference = telco_reference
        self.db.commit()

        logger.info(
            "Loan disbursed",
            extra={"loan_id": str(loan.id), "telco_reference": telco_reference, "amount": str(loan.amount)},
        )

        session_key = (loan.metadata_ or {}).get("session_key")
        if session_key:
            self.sessions.invalidate(session_key)

        await self._notify(loan)
        return loan

    async def _notify(self, loan: Loan) -> None:
        if self.notifier is None:
            return
        try:
            await self.notifier.send_event(
                "LOAN_DISBURSED",
                {
                    "loan_id": str(loan.id),
                    "reference": loan.reference,
                    "msisdn": loan.borrower_phone,
                    "amount": str(loan.amount),
                    "amount_due": str(loan.amount_due),
                    "due_date": loan.due_date.isoformat() if loan.due_date else None,
                },
            )
        except NotificationError as e:
            logger.warning("Disbursement notification failed", extra={"loan_id": str(loan.id), "error": str(e)})
