"""SQLAlchemy ORM models for borrowers, loans, the credit ledger and the job queue"""

import uuid
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    event,
)
from sqlalchemy.orm import declarative_base, relationship

from microlend_gateway.domain.exceptions import AppendOnlyViolationError
from microlend_gateway.utils.date_utils import utcnow

Base = declarative_base()

Money = Numeric(15, 2)


class Borrower(Base):
    """Individual being scored and lent to"""

    __tablename__ = "borrower"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    phone = Column(String(20), nullable=False, unique=True, index=True)
    email = Column(String(255), nullable=True)
    full_name = Column(Text, nullable=True)
    credit_score = Column(Integer, nullable=False, default=0)
    credit_limit = Column(Money, nullable=False, default=0)
    auto_limit_enabled = Column(Boolean, nullable=False, default=False)
    total_repaid = Column(Money, nullable=False, default=0)
    repayment_status = Column(String(20), nullable=False, default="pending")
    loan_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    loans = relationship("Loan", back_populates="borrower")


class Loan(Base):
    """Loan issued against an accepted offer"""

    __tablename__ = "loan"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    reference = Column(String(64), nullable=False, unique=True)
    borrower_id = Column(Uuid(as_uuid=True), ForeignKey("borrower.id"), nullable=False, index=True)
    borrower_phone = Column(String(20), nullable=False, index=True)
    amount = Column(Money, nullable=False)
    disbursed_amount = Column(Money, nullable=True)
    interest_rate = Column(Numeric(5, 2), nullable=False)
    repayment_period_days = Column(Integer, nullable=False)
    amount_due = Column(Money, nullable=False)
    amount_paid = Column(Money, nullable=False, default=0)
    outstanding_amount = Column(Money, nullable=False)
    status = Column(String(20), nullable=False, default="pending", index=True)
    network = Column(String(20), nullable=True)
    due_date = Column(DateTime(timezone=True), nullable=False)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    disbursed_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    defaulted_at = Column(DateTime(timezone=True), nullable=True)
    telco_reference = Column(String(255), nullable=True)
    # "metadata" is reserved on declarative classes
    metadata_ = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    borrower = relationship("Borrower", back_populates="loans")


class RepaymentTransaction(Base):
    """Money movement reconciled against a loan"""

    __tablename__ = "repayment_transaction"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    borrower_id = Column(Uuid(as_uuid=True), ForeignKey("borrower.id"), nullable=True, index=True)
    loan_id = Column(Uuid(as_uuid=True), ForeignKey("loan.id"), nullable=True, index=True)
    type = Column(String(20), nullable=False, default="repayment")
    status = Column(String(20), nullable=False, default="pending")
    amount = Column(Money, nullable=False)
    reference = Column(String(255), nullable=True)
    reconciled_at = Column(DateTime(timezone=True), nullable=True)
    credit_processed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


class CreditScoreHistory(Base):
    """Append-only ledger of score changes"""

    __tablename__ = "credit_score_history"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    borrower_id = Column(Uuid(as_uuid=True), ForeignKey("borrower.id"), nullable=False, index=True)
    previous_score = Column(Integer, nullable=False)
    new_score = Column(Integer, nullable=False)
    points_awarded = Column(Integer, nullable=False)
    reason = Column(String(64), nullable=True)
    loan_id = Column(Uuid(as_uuid=True), ForeignKey("loan.id"), nullable=True, index=True)
    transaction_id = Column(Uuid(as_uuid=True), ForeignKey("repayment_transaction.id"), nullable=True, index=True)
    metadata_ = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)


@event.listens_for(CreditScoreHistory, "before_update")
def _refuse_history_update(mapper, connection, target):
    raise AppendOnlyViolationError("Credit score history entries cannot be updated")


@event.listens_for(CreditScoreHistory, "before_delete")
def _refuse_history_delete(mapper, connection, target):
    raise AppendOnlyViolationError("Credit score history entries cannot be deleted")


class SystemConfig(Base):
    """Typed business configuration keyed by (category, key)"""

    __tablename__ = "system_config"
    __table_args__ = (UniqueConstraint("category", "key", name="uq_system_config_category_key"),)

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    category = Column(String(64), nullable=False)
    key = Column(String(128), nullable=False)
    value = Column(JSON, nullable=True)
    description = Column(Text, nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


class QueuedJob(Base):
    """Durable work queue entry with retry tracking"""

    __tablename__ = "queued_job"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    queue = Column(String(64), nullable=False, index=True)
    payload = Column(JSON, nullable=False)
    status = Column(String(20), nullable=False, default="pending", index=True)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    backoff_seconds = Column(Float, nullable=False, default=2.0)
    dedupe_key = Column(String(255), nullable=True, index=True)
    next_attempt_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    locked_at = Column(DateTime(timezone=True), nullable=True)
    last_attempt_at = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    completed_at = Column(DateTime(timezone=True), nullable=True)
