"""POST /v1/loans/{loan_id}/disbursement - re-queue a loan for payout"""

import uuid

from fastapi import APIRouter, Depends, HTTPException

from microlend_gateway.api.dependencies import get_issuance_orchestrator
from microlend_gateway.api.v1.schemas import DisbursementResponse
from microlend_gateway.services.issuance import LoanIssuanceOrchestrator

router = APIRouter()


@router.post("/loans/{loan_id}/disbursement", response_model=DisbursementResponse, status_code=202)
def request_disbursement(
    loan_id: str,
    orchestrator: LoanIssuanceOrchestrator = Depends(get_issuance_orchestrator),
):
    """Queue an approved loan for disbursement (deduplicated within the dedupe window)"""
    try:
        loan_uuid = uuid.UUID(loan_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid loan ID format")

    job = orchestrator.request_disbursement(loan_uuid)
    if job is None:
        return DisbursementResponse(loan_id=loan_id, status="already_disbursed")
    return DisbursementResponse(loan_id=loan_id, status="queued", job_id=str(job.id))
