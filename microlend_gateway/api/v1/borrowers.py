"""GET /v1/borrowers/{borrower_id}/... - eligibility and credit score ledger"""

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from microlend_gateway.api.v1.schemas import EligibilityResponse, HistoryItem, HistoryResponse
from microlend_gateway.config import settings
from microlend_gateway.domain.exceptions import BorrowerNotFoundError
from microlend_gateway.infrastructure.cache.borrower_cache import BorrowerCache
from microlend_gateway.infrastructure.cache.client import CacheClient, get_cache
from microlend_gateway.infrastructure.database.models import Borrower
from microlend_gateway.infrastructure.database.repositories import BorrowerRepository, CreditScoreHistoryRepository
from microlend_gateway.infrastructure.database.session import get_db
from microlend_gateway.services.eligibility import EligibilityCalculator

router = APIRouter()


def _load_borrower(borrower_id: str, db: Session) -> Borrower:
    try:
        borrower_uuid = uuid.UUID(borrower_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid borrower ID format")

    borrower = BorrowerRepository(db).get(borrower_uuid)
    if borrower is None:
        raise BorrowerNotFoundError("User not found")
    return borrower


@router.get("/borrowers/{borrower_id}/eligibility", response_model=EligibilityResponse)
def get_eligibility(
    borrower_id: str,
    db: Session = Depends(get_db),
    cache: CacheClient = Depends(get_cache),
):
    """Current eligible amount, interest rate and repayment period"""
    borrower = _load_borrower(borrower_id, db)
    calculator = EligibilityCalculator(
        db,
        BorrowerCache(cache, settings.eligibility_cache_ttl_seconds, settings.terms_cache_ttl_seconds),
    )
    snapshot = calculator.snapshot(borrower)

    return EligibilityResponse(
        borrower_id=str(borrower.id),
        credit_score=borrower.credit_score,
        eligible_amount=snapshot.eligible_amount,
        interest_rate=snapshot.interest_rate,
        repayment_period_days=snapshot.repayment_period_days,
        currency=settings.currency,
    )


@router.get("/borrowers/{borrower_id}/credit-score/history", response_model=HistoryResponse)
def get_credit_score_history(
    borrower_id: str,
    limit: int = Query(100, ge=1, le=500, description="Maximum entries to return"),
    db: Session = Depends(get_db),
):
    """
    Retrieve the borrower's credit score ledger, newest first.

    Returns:
        Entries with points awarded, the score before and after, and the
        scoring breakdown stored at the time
    """
    borrower = _load_borrower(borrower_id, db)
    entries = CreditScoreHistoryRepository(db).find_by_borrower_id(borrower.id, limit=limit)

    history_items = [
        HistoryItem(
            entry_id=str(e.id),
            previous_score=e.previous_score,
            new_score=e.new_score,
            points_awarded=e.points_awarded,
            reason=e.reason,
            loan_id=str(e.loan_id) if e.loan_id else None,
            transaction_id=str(e.transaction_id) if e.transaction_id else None,
            metadata=e.metadata_,
            created_at=e.created_at.isoformat(),
        )
        for e in entries
    ]

    return HistoryResponse(borrower_id=str(borrower.id), entries=history_items)
