"""POST /v1/loan-offers and /v1/loan-offers/accept - USSD loan offer flow"""

import logging
import time

from fastapi import APIRouter, Depends, HTTPException, Request

from microlend_gateway.api.dependencies import get_issuance_orchestrator, get_request_id
from microlend_gateway.api.v1.schemas import (
    AcceptOfferRequest,
    AcceptOfferResponse,
    LoanOfferRequest,
    LoanOfferResponse,
    LoanOfferSchema,
)
from microlend_gateway.domain.exceptions import DomainException
from microlend_gateway.infrastructure.observability.logging import log_issuance
from microlend_gateway.services.issuance import LoanIssuanceOrchestrator

router = APIRouter()


@router.post("/loan-offers", response_model=LoanOfferResponse)
def create_loan_offers(
    request_body: LoanOfferRequest,
    orchestrator: LoanIssuanceOrchestrator = Depends(get_issuance_orchestrator),
):
    """
    Compute the offers a borrower can choose from.

    An empty offer list means the borrower has no credit available right now.
    """
    session = orchestrator.compute_offer(
        request_body.phone_number,
        network=request_body.network,
        session_id=request_body.session_id,
    )
    return LoanOfferResponse(
        session_id=session.session_key,
        borrower_id=session.borrower_id,
        eligible_amount=session.eligible_amount,
        offers=[
            LoanOfferSchema(
                option=o.option,
                amount=o.amount,
                currency=o.currency,
                interest_rate=o.interest_rate,
                repayment_period_days=o.repayment_period_days,
            )
            for o in session.offers
        ],
    )


@router.post("/loan-offers/accept", response_model=AcceptOfferResponse)
def accept_loan_offer(
    request_body: AcceptOfferRequest,
    request: Request,
    orchestrator: LoanIssuanceOrchestrator = Depends(get_issuance_orchestrator),
):
    """
    Accept an offer and issue the loan.

    Flow:
    1. Reload (or recompute) the offer session and resolve the selection
    2. Return the existing loan if this request was already served
    3. Otherwise validate credit, create the loan and queue disbursement
    4. Respond with "processing" until the payout lands
    """
    start_time = time.time()
    request_id = get_request_id(request)

    try:
        result = orchestrator.accept_offer(
            request_body.phone_number,
            network=request_body.network,
            session_id=request_body.session_id,
            selected_option=request_body.selected_option,
            selected_amount=request_body.selected_amount,
        )
    except DomainException as e:
        logging.warning(f"Loan acceptance refused: {e.message}", extra={"request_id": request_id, "code": e.code})
        raise
    except Exception as e:
        orchestrator.db.rollback()
        logging.error(f"Unexpected error: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")

    loan = result.loan
    duration_ms = (time.time() - start_time) * 1000
    log_issuance(request_id, str(loan.borrower_id), str(loan.id), result.status, result.created, duration_ms)

    return AcceptOfferResponse(
        status=result.status,
        created=result.created,
        loan_id=str(loan.id),
        reference=loan.reference,
        loan_status=loan.status,
        amount=loan.amount,
        amount_due=loan.amount_due,
        interest_rate=float(loan.interest_rate),
        repayment_period_days=loan.repayment_period_days,
        due_date=loan.due_date,
    )
