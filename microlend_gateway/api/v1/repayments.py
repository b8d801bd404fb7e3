"""POST /v1/repayments/{transaction_id}/credit-score - award points for a confirmed repayment"""

import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from microlend_gateway.api.dependencies import get_score_pipeline
from microlend_gateway.api.v1.schemas import CreditScoreAwardRequest, CreditScoreAwardResponse, QueuedJobResponse
from microlend_gateway.infrastructure.database.session import get_db
from microlend_gateway.services.score_updates import ScoreUpdatePipeline, enqueue_award

router = APIRouter()


def _parse_id(value: str, label: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {label} ID format")


@router.post("/repayments/{transaction_id}/credit-score", response_model=CreditScoreAwardResponse)
def award_credit_score(
    transaction_id: str,
    request_body: CreditScoreAwardRequest,
    pipeline: ScoreUpdatePipeline = Depends(get_score_pipeline),
):
    """
    Apply a completed repayment to its loan and the borrower's score.

    Repeated calls for the same transaction return the first result.
    """
    award = pipeline.record_repayment(
        _parse_id(transaction_id, "transaction"),
        _parse_id(request_body.loan_id, "loan"),
        request_body.phone_number,
    )
    return CreditScoreAwardResponse(
        transaction_id=transaction_id,
        points_awarded=award.points_awarded,
        new_score=award.new_score,
    )


@router.post("/repayments/{transaction_id}/credit-score/jobs", response_model=QueuedJobResponse, status_code=202)
def queue_credit_score_award(
    transaction_id: str,
    request_body: CreditScoreAwardRequest,
    db: Session = Depends(get_db),
):
    """Same as the synchronous award, processed by the background worker"""
    transaction_uuid = _parse_id(transaction_id, "transaction")
    loan_uuid = _parse_id(request_body.loan_id, "loan")

    job = enqueue_award(db, transaction_uuid, loan_uuid, request_body.phone_number)
    db.commit()
    logging.info("Credit score award queued", extra={"transaction_id": transaction_id, "job_id": str(job.id)})
    return QueuedJobResponse(job_id=str(job.id), queue=job.queue, status=job.status)
