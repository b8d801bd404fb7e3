"""Pydantic schemas for API request/response validation"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Body of every non-2xx response"""

    status: str = "error"
    code: str
    message: str
    retryable: bool = False
    available_credit: Optional[Decimal] = None


class LoanOfferRequest(BaseModel):
    """Request body for POST /v1/loan-offers"""

    phone_number: str = Field(..., min_length=1, description="Borrower MSISDN, any Nigerian format")
    network: Optional[str] = Field(None, description="Mobile network operator")
    session_id: Optional[str] = Field(None, description="USSD session identifier")


class LoanOfferSchema(BaseModel):
    """Single selectable offer"""

    option: int
    amount: Decimal
    currency: str
    interest_rate: float
    repayment_period_days: int


class LoanOfferResponse(BaseModel):
    """Response for POST /v1/loan-offers"""

    session_id: str
    borrower_id: str
    eligible_amount: Decimal
    offers: List[LoanOfferSchema]


class AcceptOfferRequest(BaseModel):
    """Request body for POST /v1/loan-offers/accept; one of option or amount is required"""

    phone_number: str = Field(..., min_length=1)
    network: Optional[str] = None
    session_id: Optional[str] = None
    selected_option: Optional[int] = Field(None, ge=1)
    selected_amount: Optional[Decimal] = Field(None, gt=0)


class AcceptOfferResponse(BaseModel):
    """Response for POST /v1/loan-offers/accept"""

    status: str  # processing | success
    created: bool
    loan_id: str
    reference: str
    loan_status: str
    amount: Decimal
    amount_due: Decimal
    interest_rate: float
    repayment_period_days: int
    due_date: datetime


class DisbursementResponse(BaseModel):
    """Response for POST /v1/loans/{loan_id}/disbursement"""

    loan_id: str
    status: str  # queued | already_disbursed
    job_id: Optional[str] = None


class CreditScoreAwardRequest(BaseModel):
    """Request body for POST /v1/repayments/{transaction_id}/credit-score"""

    loan_id: str = Field(..., min_length=1)
    phone_number: Optional[str] = None


class CreditScoreAwardResponse(BaseModel):
    """Points granted for one repayment"""

    transaction_id: str
    points_awarded: int
    new_score: int


class QueuedJobResponse(BaseModel):
    """Acknowledgement for work handed to the queue"""

    job_id: str
    queue: str
    status: str


class EligibilityResponse(BaseModel):
    """Response for GET /v1/borrowers/{borrower_id}/eligibility"""

    borrower_id: str
    credit_score: int
    eligible_amount: Decimal
    interest_rate: float
    repayment_period_days: int
    currency: str


class HistoryItem(BaseModel):
    """Single credit score ledger entry"""

    entry_id: str
    previous_score: int
    new_score: int
    points_awarded: int
    reason: Optional[str]
    loan_id: Optional[str]
    transaction_id: Optional[str]
    metadata: Optional[Dict[str, Any]] = None
    created_at: str


class HistoryResponse(BaseModel):
    """Response for GET /v1/borrowers/{borrower_id}/credit-score/history"""

    borrower_id: str
    entries: List[HistoryItem]
