"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class LoanStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    DISBURSED = "disbursed"
    REPAYING = "repaying"
    COMPLETED = "completed"
    DEFAULTED = "defaulted"


# Loans still carrying debt; used for outstanding-amount sums
ACTIVE_LOAN_STATUSES = (
    LoanStatus.PENDING,
    LoanStatus.APPROVED,
    LoanStatus.DISBURSED,
    LoanStatus.REPAYING,
    LoanStatus.DEFAULTED,
)

# Loans that count against the phone-number cooldown window
COOLDOWN_LOAN_STATUSES = (
    LoanStatus.PENDING,
    LoanStatus.APPROVED,
    LoanStatus.DISBURSED,
    LoanStatus.REPAYING,
)


class RepaymentStatus(str, Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    COMPLETED = "completed"
    OVERDUE = "overdue"


class ScoreChangeReason(str, Enum):
    PARTIAL_REPAYMENT = "partial_repayment"
    LOAN_COMPLETED = "loan_completed"


class TransactionType(str, Enum):
    REPAYMENT = "repayment"
    DISBURSEMENT = "disbursement"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class Network(str, Enum):
    MTN = "MTN"
    AIRTEL = "Airtel"
    GLO = "Glo"
    NINEMOBILE = "9mobile"


@dataclass(frozen=True)
class MultiplierTier:
    """Inclusive [lower, upper] range mapped to a points multiplier"""

    lower: float
    upper: float
    multiplier: float


@dataclass(frozen=True)
class RepaymentScoringConfig:
    """Tiered points model applied to every confirmed repayment"""

    base_points: float = 50
    amount_tiers: Tuple[MultiplierTier, ...] = ()
    duration_tiers: Tuple[MultiplierTier, ...] = ()
    max_points_per_transaction: float = 500
    enable_partial_repayments: bool = True
    min_points_for_partial_repayment: Optional[float] = 5
    full_repayment_bonus: Optional[float] = None
    full_repayment_fixed_bonus: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RepaymentScoringConfig":
        return cls(
            base_points=data.get("base_points", 50),
            amount_tiers=tuple(
                MultiplierTier(t["min_amount"], t["max_amount"], t["multiplier"])
                for t in data.get("amount_multipliers", [])
            ),
            duration_tiers=tuple(
                MultiplierTier(t["min_days"], t["max_days"], t["multiplier"])
                for t in data.get("duration_multipliers", [])
            ),
            max_points_per_transaction=data.get("max_points_per_transaction", 500),
            enable_partial_repayments=data.get("enable_partial_repayments", True),
            min_points_for_partial_repayment=data.get("min_points_for_partial_repayment"),
            full_repayment_bonus=data.get("full_repayment_bonus"),
            full_repayment_fixed_bonus=data.get("full_repayment_fixed_bonus"),
        )


DEFAULT_REPAYMENT_SCORING = {
    "base_points": 50,
    "amount_multipliers": [
        {"min_amount": 0, "max_amount": 1000, "multiplier": 0.5},
        {"min_amount": 1001, "max_amount": 5000, "multiplier": 1.0},
        {"min_amount": 5001, "max_amount": 10000, "multiplier": 1.5},
        {"min_amount": 10001, "max_amount": 999999, "multiplier": 2.0},
    ],
    "duration_multipliers": [
        {"min_days": 0, "max_days": 7, "multiplier": 2.0},
        {"min_days": 8, "max_days": 14, "multiplier": 1.5},
        {"min_days": 15, "max_days": 30, "multiplier": 1.0},
        {"min_days": 31, "max_days": 60, "multiplier": 0.75},
        {"min_days": 61, "max_days": 999, "multiplier": 0.5},
    ],
    "max_points_per_transaction": 500,
    "enable_partial_repayments": True,
    "min_points_for_partial_repayment": 5,
}


@dataclass
class PointsCalculation:
    """Output of the scoring engine with its full derivation"""

    points: int
    metadata: Dict[str, Any]
    reason: Optional[str] = None


@dataclass(frozen=True)
class ScoreThreshold:
    """Minimum score required for an eligible amount"""

    score: int
    amount: Decimal


@dataclass(frozen=True)
class ScoreBand:
    """Inclusive score range mapped to a rate or period"""

    min_score: int
    max_score: int
    value: float


@dataclass(frozen=True)
class EligibilityConfig:
    """Tables driving amount, interest rate and repayment period"""

    first_time_user_amount: Decimal
    thresholds: Tuple[ScoreThreshold, ...]
    fallback_amount: Decimal
    default_rate: float
    rate_bands: Tuple[ScoreBand, ...]
    min_rate: float
    max_rate: float
    default_period: int
    period_bands: Tuple[ScoreBand, ...]
    min_period: int
    max_period: int


@dataclass
class EligibilitySnapshot:
    """Eligible amount with the terms that go with it"""

    eligible_amount: Decimal
    interest_rate: float
    repayment_period_days: int


@dataclass
class LoanOffer:
    """Single selectable offer shown to a borrower"""

    option: int
    amount: Decimal
    currency: str
    interest_rate: float
    repayment_period_days: int


@dataclass
class OfferSession:
    """Short-lived set of pre-computed offers for one borrower session"""

    session_key: str
    borrower_id: str
    msisdn: str
    eligible_amount: Decimal
    network: Optional[str]
    offers: List[LoanOffer] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_key": self.session_key,
            "borrower_id": self.borrower_id,
            "msisdn": self.msisdn,
            "eligible_amount": str(self.eligible_amount),
            "network": self.network,
            "offers": [
                {
                    "option": o.option,
                    "amount": str(o.amount),
                    "currency": o.currency,
                    "interest_rate": o.interest_rate,
                    "repayment_period_days": o.repayment_period_days,
                }
                for o in self.offers
            ],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OfferSession":
        return cls(
            session_key=data["session_key"],
            borrower_id=data["borrower_id"],
            msisdn=data["msisdn"],
            eligible_amount=Decimal(data["eligible_amount"]),
            network=data.get("network"),
            offers=[
                LoanOffer(
                    option=o["option"],
                    amount=Decimal(o["amount"]),
                    currency=o["currency"],
                    interest_rate=o["interest_rate"],
                    repayment_period_days=o["repayment_period_days"],
                )
                for o in data.get("offers", [])
            ],
        )


@dataclass
class LoanTerms:
    """Pricing of a loan at issuance"""

    principal: Decimal
    interest_rate: float
    interest: Decimal
    amount_due: Decimal
    repayment_period_days: int
    due_date: datetime


@dataclass
class ScoreAward:
    """Result of applying a repayment to a borrower's score"""

    points_awarded: int
    new_score: int
