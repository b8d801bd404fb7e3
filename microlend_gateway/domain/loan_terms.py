"""Loan pricing and repayment arithmetic"""

from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Tuple, Union

from microlend_gateway.domain.models import LoanTerms
from microlend_gateway.utils.date_utils import add_days

CENT = Decimal("0.01")


def to_money(value: Union[int, float, str, Decimal]) -> Decimal:
    """Coerce to a two-decimal Decimal, going through str to avoid float noise"""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def price_loan(
    principal: Decimal,
    interest_rate: float,
    repayment_period_days: int,
    issued_at: datetime,
) -> LoanTerms:
    """
    Price a loan with simple interest over the whole repayment period.

    Example:
        5000 at 10% for 30 days → interest 500.00, amount due 5500.00,
        due 30 days after issue
    """
    principal = to_money(principal)
    interest = to_money(principal * Decimal(str(interest_rate)) / Decimal("100"))

    return LoanTerms(
        principal=principal,
        interest_rate=interest_rate,
        interest=interest,
        amount_due=principal + interest,
        repayment_period_days=repayment_period_days,
        due_date=add_days(issued_at, repayment_period_days),
    )


def apply_repayment(amount_due: Decimal, amount_paid: Decimal, repayment: Decimal) -> Tuple[Decimal, Decimal, bool]:
    """
    Add a repayment to a loan's paid amount.

    The paid amount never exceeds the amount due and the outstanding amount
    never drops below zero.

    Returns:
        (new amount paid, new outstanding amount, whether the payment was clamped)
    """
    attempted = to_money(amount_paid) + to_money(repayment)
    new_paid = min(attempted, to_money(amount_due))
    outstanding = max(Decimal("0.00"), to_money(amount_due) - new_paid)
    return new_paid, outstanding, new_paid < attempted
