"""Loan status state machine - forward-only transitions"""

from typing import Dict, FrozenSet, Union

from microlend_gateway.domain.exceptions import InvalidLoanStateError
from microlend_gateway.domain.models import LoanStatus

ALLOWED_TRANSITIONS: Dict[LoanStatus, FrozenSet[LoanStatus]] = {
    LoanStatus.PENDING: frozenset(
        {
            LoanStatus.APPROVED,
            LoanStatus.REJECTED,
            LoanStatus.REPAYING,
            LoanStatus.COMPLETED,
            LoanStatus.DEFAULTED,
        }
    ),
    LoanStatus.APPROVED: frozenset({LoanStatus.DISBURSED, LoanStatus.DEFAULTED}),
    LoanStatus.DISBURSED: frozenset({LoanStatus.REPAYING, LoanStatus.COMPLETED, LoanStatus.DEFAULTED}),
    LoanStatus.REPAYING: frozenset({LoanStatus.COMPLETED, LoanStatus.DEFAULTED}),
    LoanStatus.DEFAULTED: frozenset({LoanStatus.COMPLETED}),
    LoanStatus.REJECTED: frozenset(),
    LoanStatus.COMPLETED: frozenset(),
}


def can_transition(current: Union[str, LoanStatus], target: Union[str, LoanStatus]) -> bool:
    current, target = LoanStatus(current), LoanStatus(target)
    return current == target or target in ALLOWED_TRANSITIONS[current]


def advance(current: Union[str, LoanStatus], target: Union[str, LoanStatus]) -> bool:
    """
    Validate a status change.

    Returns True when the status actually changes and False for a same-state
    no-op (e.g. disbursed → disbursed).

    Raises:
        InvalidLoanStateError: backward or otherwise disallowed transition
    """
    current, target = LoanStatus(current), LoanStatus(target)
    if current == target:
        return False
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidLoanStateError(f"Loan cannot move from {current.value} to {target.value}")
    return True
