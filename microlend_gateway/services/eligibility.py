"""Eligibility calculator - how much a borrower may take, at what price, for how long"""

import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from microlend_gateway.domain.eligibility import (
    base_amount,
    cap_to_credit_limit,
    interest_rate_for_score,
    repayment_period_for_score,
    subtract_outstanding,
)
from microlend_gateway.domain.loan_terms import to_money
from microlend_gateway.domain.models import ACTIVE_LOAN_STATUSES, EligibilitySnapshot
from microlend_gateway.infrastructure.cache.borrower_cache import BorrowerCache
from microlend_gateway.infrastructure.database.models import Borrower
from microlend_gateway.infrastructure.database.repositories import LoanRepository
from microlend_gateway.services.config_store import SystemConfigService

logger = logging.getLogger(__name__)


class EligibilityCalculator:
    """
    Derives eligibility values from the borrower's score, limit and open debt.

    Values are read from the borrower cache first and recomputed on a miss;
    configuration tables are re-read on every computation.
    """

    def __init__(
        self,
        db: Session,
        borrower_cache: BorrowerCache,
        config_service: Optional[SystemConfigService] = None,
    ):
        self.loans = LoanRepository(db)
        self.cache = borrower_cache
        self.config = config_service or SystemConfigService(db)

    def eligible_amount(self, borrower: Borrower) -> Decimal:
        """
        Amount the borrower can take right now.

        Steps:
        1. First-time borrowers get the starter amount, others the highest
           score threshold they meet
        2. Capped at the static credit limit (auto-synced limits are not a cap)
        3. Outstanding debt on active loans is subtracted, floored at zero
        """
        cached = self.cache.get_eligible_amount(borrower.id)
        if cached is not None:
            return cached

        config = self.config.eligibility_config()
        amount = base_amount(borrower.loan_count, borrower.credit_score, config)
        amount = cap_to_credit_limit(amount, to_money(borrower.credit_limit or 0), bool(borrower.auto_limit_enabled))
        outstanding = self.loans.total_outstanding(borrower.id, ACTIVE_LOAN_STATUSES)
        amount = to_money(subtract_outstanding(amount, outstanding))

        logger.debug(
            "Calculated eligible amount",
            extra={
                "borrower_id": str(borrower.id),
                "credit_score": borrower.credit_score,
                "outstanding": str(outstanding),
                "eligible_amount": str(amount),
            },
        )
        self.cache.set_eligible_amount(borrower.id, amount)
        return amount

    def amount_from_score(self, borrower: Borrower, score: int) -> Decimal:
        """Threshold amount for a score, without limit or debt adjustments"""
        return to_money(base_amount(borrower.loan_count, score, self.config.eligibility_config()))

    def interest_rate(self, borrower: Borrower) -> float:
        cached = self.cache.get_interest_rate(borrower.id)
        if cached is not None:
            return cached

        rate = interest_rate_for_score(borrower.credit_score, self.config.eligibility_config())
        self.cache.set_interest_rate(borrower.id, rate)
        return rate

    def repayment_period(self, borrower: Borrower) -> int:
        cached = self.cache.get_repayment_period(borrower.id)
        if cached is not None:
            return cached

        period = repayment_period_for_score(borrower.credit_score, self.config.eligibility_config())
        self.cache.set_repayment_period(borrower.id, period)
        return period

    def snapshot(self, borrower: Borrower) -> EligibilitySnapshot:
        return EligibilitySnapshot(
            eligible_amount=self.eligible_amount(borrower),
            interest_rate=self.interest_rate(borrower),
            repayment_period_days=self.repayment_period(borrower),
        )
