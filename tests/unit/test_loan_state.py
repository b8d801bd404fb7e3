"""Unit tests for the loan status state machine"""

import pytest

from microlend_gateway.domain.exceptions import InvalidLoanStateError
from microlend_gateway.domain.loan_state import advance, can_transition
from microlend_gateway.domain.models import LoanStatus


@pytest.mark.parametrize(
    "current,target",
    [
        (LoanStatus.PENDING, LoanStatus.APPROVED),
        (LoanStatus.PENDING, LoanStatus.REJECTED),
        (LoanStatus.APPROVED, LoanStatus.DISBURSED),
        (LoanStatus.DISBURSED, LoanStatus.REPAYING),
        (LoanStatus.DISBURSED, LoanStatus.COMPLETED),
        (LoanStatus.REPAYING, LoanStatus.COMPLETED),
        (LoanStatus.REPAYING, LoanStatus.DEFAULTED),
        (LoanStatus.DEFAULTED, LoanStatus.COMPLETED),
    ],
)
def test_forward_transitions_allowed(current, target):
    assert advance(current, target) is True


def test_same_state_is_noop():
    """Re-entering disbursed from disbursed does nothing"""
    assert advance(LoanStatus.DISBURSED, LoanStatus.DISBURSED) is False
    assert advance("completed", "completed") is False


@pytest.mark.parametrize(
    "current,target",
    [
        (LoanStatus.DISBURSED, LoanStatus.APPROVED),
        (LoanStatus.COMPLETED, LoanStatus.REPAYING),
        (LoanStatus.REJECTED, LoanStatus.APPROVED),
        (LoanStatus.APPROVED, LoanStatus.COMPLETED),
    ],
)
def test_backward_or_skipping_transitions_rejected(current, target):
    with pytest.raises(InvalidLoanStateError):
        advance(current, target)


def test_can_transition_accepts_raw_strings():
    assert can_transition("approved", "disbursed") is True
    assert can_transition("disbursed", "approved") is False
