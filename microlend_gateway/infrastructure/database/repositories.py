"""Data access layer for borrowers, loans, transactions, the credit ledger and jobs"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import and_, func, or_
from sqlalchemy.orm import Session

from microlend_gateway.domain.models import LoanStatus
from microlend_gateway.infrastructure.database.models import (
    Borrower,
    CreditScoreHistory,
    Loan,
    QueuedJob,
    RepaymentTransaction,
    SystemConfig,
)


def _status_values(statuses: Iterable[LoanStatus]) -> List[str]:
    return [LoanStatus(s).value for s in statuses]


class BorrowerRepository:
    """Repository for borrowers"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, borrower_id: uuid.UUID) -> Optional[Borrower]:
        return self.db.get(Borrower, borrower_id)

    def find_by_phone(self, phone: str) -> Optional[Borrower]:
        return self.db.query(Borrower).filter(Borrower.phone == phone).first()


class LoanRepository:
    """Repository for loans"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, loan_id: uuid.UUID) -> Optional[Loan]:
        return self.db.get(Loan, loan_id)

    def find_by_idempotency_key(self, borrower_id: uuid.UUID, idempotency_key: str) -> Optional[Loan]:
        """Latest loan of the borrower whose metadata carries the key"""
        return (
            self.db.query(Loan)
            .filter(Loan.borrower_id == borrower_id)
            .filter(Loan.metadata_["idempotency_key"].as_string() == idempotency_key)
            .order_by(Loan.created_at.desc())
            .first()
        )

    def find_recent_for_phone(
        self,
        phone: str,
        since: datetime,
        statuses: Iterable[LoanStatus],
    ) -> Optional[Loan]:
        return (
            self.db.query(Loan)
            .filter(Loan.borrower_phone == phone)
            .filter(Loan.created_at >= since)
            .filter(Loan.status.in_(_status_values(statuses)))
            .order_by(Loan.created_at.desc())
            .first()
        )

    def total_outstanding(self, borrower_id: uuid.UUID, statuses: Iterable[LoanStatus]) -> Decimal:
        """Sum of outstanding amounts over the borrower's loans in the given statuses"""
        query = (
            self.db.query(func.coalesce(func.sum(Loan.outstanding_amount), 0))
            .filter(Loan.borrower_id == borrower_id)
            .filter(Loan.status.in_(_status_values(statuses)))
        )
        return Decimal(str(query.scalar() or 0))

    def add(self, loan: Loan) -> Loan:
        self.db.add(loan)
        self.db.flush()  # Get ID without committing
        return loan


class TransactionRepository:
    """Repository for repayment transactions"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, transaction_id: uuid.UUID) -> Optional[RepaymentTransaction]:
        return self.db.get(RepaymentTransaction, transaction_id)


class CreditScoreHistoryRepository:
    """
    Write-only access to the credit score ledger.

    Entries can be appended and read, never updated or deleted; the ORM hooks
    on the model refuse both as well.
    """

    def __init__(self, db: Session):
        self.db = db

    def append(
        self,
        borrower_id: uuid.UUID,
        previous_score: int,
        new_score: int,
        points_awarded: int,
        reason: str,
        loan_id: Optional[uuid.UUID],
        transaction_id: Optional[uuid.UUID],
        metadata: Optional[Dict[str, Any]],
    ) -> CreditScoreHistory:
        entry = CreditScoreHistory(
            borrower_id=borrower_id,
            previous_score=previous_score,
            new_score=new_score,
            points_awarded=points_awarded,
            reason=reason,
            loan_id=loan_id,
            transaction_id=transaction_id,
            metadata_=metadata,
        )
        self.db.add(entry)
        self.db.flush()
        return entry

    def find_by_transaction_id(self, transaction_id: uuid.UUID) -> List[CreditScoreHistory]:
        return (
            self.db.query(CreditScoreHistory)
            .filter(CreditScoreHistory.transaction_id == transaction_id)
            .order_by(CreditScoreHistory.created_at.desc())
            .all()
        )

    def find_by_borrower_id(self, borrower_id: uuid.UUID, limit: int = 100) -> List[CreditScoreHistory]:
        return (
            self.db.query(CreditScoreHistory)
            .filter(CreditScoreHistory.borrower_id == borrower_id)
            .order_by(CreditScoreHistory.created_at.desc())
            .limit(limit)
            .all()
        )


class SystemConfigRepository:
    """Repository for (category, key) configuration values"""

    def __init__(self, db: Session):
        self.db = db

    def find(self, category: str, key: str) -> Optional[SystemConfig]:
        return (
            self.db.query(SystemConfig)
            .filter(SystemConfig.category == category, SystemConfig.key == key)
            .first()
        )

    def upsert(self, category: str, key: str, value: Any, description: Optional[str] = None) -> SystemConfig:
        config = self.find(category, key)
        if config is None:
            config = SystemConfig(category=category, key=key)
            self.db.add(config)
        config.value = value
        if description is not None:
            config.description = description
        self.db.flush()
        return config


class JobRepository:
    """Repository for durable queue jobs"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, job_id: uuid.UUID) -> Optional[QueuedJob]:
        return self.db.get(QueuedJob, job_id)

    def add(self, job: QueuedJob) -> QueuedJob:
        self.db.add(job)
        self.db.flush()
        return job

    def find_recent_by_dedupe_key(self, dedupe_key: str, since: datetime) -> Optional[QueuedJob]:
        """Live (not parked) job with the key created at or after `since`"""
        return (
            self.db.query(QueuedJob)
            .filter(QueuedJob.dedupe_key == dedupe_key)
            .filter(QueuedJob.created_at >= since)
            .filter(QueuedJob.status != "parked")
            .order_by(QueuedJob.created_at.desc())
            .first()
        )

    def _claimable(self, now: datetime, stale_before: datetime):
        return or_(
            and_(QueuedJob.status == "pending", QueuedJob.next_attempt_at <= now),
            and_(QueuedJob.status == "running", QueuedJob.locked_at < stale_before),
        )

    def due_job_ids(
        self,
        queues: Iterable[str],
        now: datetime,
        stale_before: datetime,
        limit: int,
    ) -> List[uuid.UUID]:
        rows = (
            self.db.query(QueuedJob.id)
            .filter(QueuedJob.queue.in_(list(queues)))
            .filter(self._claimable(now, stale_before))
            .order_by(QueuedJob.next_attempt_at.asc())
            .limit(limit)
            .all()
        )
        return [row.id for row in rows]

    def claim(self, job_id: uuid.UUID, now: datetime, stale_before: datetime) -> bool:
        """Atomically take ownership of a due job; False if another worker won"""
        updated = (
            self.db.query(QueuedJob)
            .filter(QueuedJob.id == job_id)
            .filter(self._claimable(now, stale_before))
            .update(
                {
                    QueuedJob.status: "running",
                    QueuedJob.locked_at: now,
                    QueuedJob.last_attempt_at: now,
                    QueuedJob.attempts: QueuedJob.attempts + 1,
                },
                synchronize_session=False,
            )
        )
        return updated == 1
