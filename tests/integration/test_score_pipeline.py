"""Integration tests for applying repayments to loans and credit scores"""

import uuid
from decimal import Decimal

import pytest

from microlend_gateway.domain.exceptions import (
    AppendOnlyViolationError,
    InvalidLoanStateError,
    InvalidTransactionError,
    LoanNotFoundError,
    TransactionNotFoundError,
)
from microlend_gateway.infrastructure.database.models import CreditScoreHistory, QueuedJob
from microlend_gateway.infrastructure.database.repositories import CreditScoreHistoryRepository
from microlend_gateway.services.config_store import SystemConfigService
from microlend_gateway.services.score_updates import ScoreUpdatePipeline, enqueue_award
from microlend_gateway.worker import build_workers


@pytest.fixture
def pipeline(db, cache) -> ScoreUpdatePipeline:
    return ScoreUpdatePipeline(db, cache)


def history_for(db, borrower):
    return db.query(CreditScoreHistory).filter(CreditScoreHistory.borrower_id == borrower.id).all()


def test_partial_repayment_moves_loan_to_repaying(db, pipeline, borrower, make_loan, make_repayment):
    loan = make_loan(borrower, amount=Decimal("1000"))  # 1100 due
    transaction = make_repayment(loan, Decimal("550"))

    award = pipeline.record_repayment(transaction.id, loan.id, borrower.phone)

    # 50 × 0.5 (amount) × 2.0 (same day) × 50% repaid
    assert award.points_awarded == 25
    assert award.new_score == 275
    assert loan.status == "repaying"
    assert loan.amount_paid == Decimal("550.00")
    assert loan.outstanding_amount == Decimal("550.00")
    assert borrower.credit_score == 275
    assert borrower.total_repaid == Decimal("550.00")
    assert borrower.repayment_status == "partial"
    assert transaction.credit_processed_at is not None

    [entry] = history_for(db, borrower)
    assert entry.previous_score == 250
    assert entry.new_score == 275
    assert entry.points_awarded == 25
    assert entry.reason == "partial_repayment"
    assert entry.transaction_id == transaction.id
    assert entry.metadata_["repayment_percentage"] == 0.5
    assert entry.metadata_["duration_days"] == 0


def test_full_repayment_completes_loan(db, pipeline, borrower, make_loan, make_repayment):
    loan = make_loan(borrower, amount=Decimal("1000"))
    transaction = make_repayment(loan, Decimal("1100"))

    award = pipeline.record_repayment(transaction.id, loan.id)

    assert award.points_awarded == 100
    assert award.new_score == 350
    assert loan.status == "completed"
    assert loan.completed_at is not None
    assert loan.outstanding_amount == Decimal("0.00")
    assert borrower.repayment_status == "completed"
    assert history_for(db, borrower)[0].reason == "loan_completed"


def test_final_installment_completes_repaying_loan(db, pipeline, borrower, make_loan, make_repayment):
    loan = make_loan(borrower, amount=Decimal("1000"))
    first = make_repayment(loan, Decimal("550"))
    pipeline.record_repayment(first.id, loan.id)
    second = make_repayment(loan, Decimal("550"))

    award = pipeline.record_repayment(second.id, loan.id)

    # Completion is not scaled by the repaid share
    assert award.points_awarded == 50
    assert award.new_score == 325
    assert loan.status == "completed"
    assert [e.reason for e in sorted(history_for(db, borrower), key=lambda e: e.new_score)] == [
        "partial_repayment",
        "loan_completed",
    ]


def test_duplicate_delivery_returns_first_result(db, pipeline, borrower, make_loan, make_repayment):
    loan = make_loan(borrower, amount=Decimal("1000"))
    transaction = make_repayment(loan, Decimal("550"))

    first = pipeline.record_repayment(transaction.id, loan.id)
    second = pipeline.record_repayment(str(transaction.id), str(loan.id))

    assert second == first
    assert borrower.credit_score == 275
    assert borrower.total_repaid == Decimal("550.00")
    assert loan.amount_paid == Decimal("550.00")
    assert len(history_for(db, borrower)) == 1


def test_small_partial_repayment_awards_nothing(db, pipeline, borrower, make_loan, make_repayment):
    loan = make_loan(borrower, amount=Decimal("10000"))  # 11000 due
    transaction = make_repayment(loan, Decimal("100"))

    award = pipeline.record_repayment(transaction.id, loan.id)

    assert award.points_awarded == 0
    assert award.new_score == 250
    assert history_for(db, borrower) == []
    # The repayment itself still counts
    assert loan.amount_paid == Decimal("100.00")
    assert loan.status == "repaying"
    assert borrower.total_repaid == Decimal("100.00")
    assert transaction.credit_processed_at is not None


def test_zero_point_repayment_is_not_applied_twice(db, pipeline, borrower, make_loan, make_repayment):
    loan = make_loan(borrower, amount=Decimal("10000"))
    transaction = make_repayment(loan, Decimal("100"))

    pipeline.record_repayment(transaction.id, loan.id)
    award = pipeline.record_repayment(transaction.id, loan.id)

    assert award.points_awarded == 0
    assert loan.amount_paid == Decimal("100.00")
    assert borrower.total_repaid == Decimal("100.00")


def test_score_is_capped_at_maximum(pipeline, make_borrower, make_loan, make_repayment):
    borrower = make_borrower(credit_score=990, loan_count=1)
    loan = make_loan(borrower, amount=Decimal("1000"))
    transaction = make_repayment(loan, Decimal("1100"))

    award = pipeline.record_repayment(transaction.id, loan.id)

    assert award.points_awarded == 100
    assert award.new_score == 1000
    assert borrower.credit_score == 1000


def test_auto_synced_limit_follows_new_score(pipeline, make_borrower, make_loan, make_repayment):
    borrower = make_borrower(credit_score=950, loan_count=1, credit_limit=Decimal("500"), auto_limit_enabled=True)
    loan = make_loan(borrower, amount=Decimal("1000"))
    transaction = make_repayment(loan, Decimal("1100"))

    pipeline.record_repayment(transaction.id, loan.id)

    assert borrower.credit_score == 1000
    assert borrower.credit_limit == Decimal("1000.00")


def test_static_limit_is_left_alone(pipeline, make_borrower, make_loan, make_repayment):
    borrower = make_borrower(credit_score=950, loan_count=1, credit_limit=Decimal("500"))
    loan = make_loan(borrower, amount=Decimal("1000"))
    transaction = make_repayment(loan, Decimal("1100"))

    pipeline.record_repayment(transaction.id, loan.id)

    assert borrower.credit_limit == Decimal("500")


def test_overpayment_is_clamped_to_amount_due(pipeline, borrower, make_loan, make_repayment):
    loan = make_loan(borrower, amount=Decimal("1000"))
    transaction = make_repayment(loan, Decimal("1500"))

    pipeline.record_repayment(transaction.id, loan.id)

    assert loan.amount_paid == Decimal("1100.00")
    assert loan.outstanding_amount == Decimal("0.00")
    assert loan.status == "completed"


def test_configured_max_score(db, pipeline, make_borrower, make_loan, make_repayment):
    SystemConfigService(db).set_value("credit_score", "max_score", 300)
    db.commit()
    borrower = make_borrower(credit_score=250, loan_count=1)
    loan = make_loan(borrower, amount=Decimal("1000"))
    transaction = make_repayment(loan, Decimal("1100"))

    assert pipeline.record_repayment(transaction.id, loan.id).new_score == 300


def test_full_repayment_on_undisbursed_loan_is_refused(db, pipeline, borrower, make_loan, make_repayment):
    loan = make_loan(borrower, amount=Decimal("1000"), status="approved")
    transaction = make_repayment(loan, Decimal("1100"))

    with pytest.raises(InvalidLoanStateError):
        pipeline.record_repayment(transaction.id, loan.id)

    db.expire_all()
    assert loan.status == "approved"
    assert loan.amount_paid == Decimal("0")
    assert borrower.credit_score == 250
    assert transaction.credit_processed_at is None


def test_partial_repayment_moves_pending_loan_to_repaying(pipeline, borrower, make_loan, make_repayment):
    loan = make_loan(borrower, amount=Decimal("1000"), status="pending")
    transaction = make_repayment(loan, Decimal("100"))

    pipeline.record_repayment(transaction.id, loan.id, borrower.phone)

    assert loan.status == "repaying"
    assert loan.amount_paid == Decimal("100.00")
    assert loan.outstanding_amount == Decimal("1000.00")


@pytest.mark.parametrize(
    "overrides",
    [{"type": "disbursement"}, {"status": "pending"}, {"status": "failed"}],
)
def test_only_completed_repayments_are_scored(pipeline, borrower, make_loan, make_repayment, overrides):
    loan = make_loan(borrower)
    transaction = make_repayment(loan, Decimal("100"), **overrides)

    with pytest.raises(InvalidTransactionError):
        pipeline.record_repayment(transaction.id, loan.id)


def test_transaction_for_another_loan(pipeline, borrower, make_loan, make_repayment):
    loan = make_loan(borrower)
    other = make_loan(borrower)
    transaction = make_repayment(other, Decimal("100"))

    with pytest.raises(InvalidTransactionError):
        pipeline.record_repayment(transaction.id, loan.id)


def test_unknown_transaction(pipeline, borrower, make_loan):
    with pytest.raises(TransactionNotFoundError):
        pipeline.record_repayment(uuid.uuid4(), make_loan(borrower).id)


def test_unknown_loan(pipeline, borrower, make_loan, make_repayment):
    transaction = make_repayment(make_loan(borrower), Decimal("100"))

    with pytest.raises(LoanNotFoundError):
        pipeline.record_repayment(transaction.id, uuid.uuid4())


def test_award_invalidates_borrower_caches(pipeline, cache, borrower, make_loan, make_repayment):
    cache.set(f"borrowers:{borrower.id}:eligible_amount", "500.00")
    cache.set(f"borrowers:{borrower.id}:interest_rate", "10.0")
    cache.set("borrowers:list:page1", "[]")
    cache.set("borrowers:stats", "{}")
    loan = make_loan(borrower)
    transaction = make_repayment(loan, Decimal("550"))

    pipeline.record_repayment(transaction.id, loan.id)

    assert cache.get(f"borrowers:{borrower.id}:eligible_amount") is None
    assert cache.get(f"borrowers:{borrower.id}:interest_rate") is None
    assert cache.get("borrowers:list:page1") is None
    assert cache.get("borrowers:stats") is None


def test_history_entries_cannot_be_changed(db, pipeline, borrower, make_loan, make_repayment):
    loan = make_loan(borrower)
    pipeline.record_repayment(make_repayment(loan, Decimal("550")).id, loan.id)
    [entry] = history_for(db, borrower)

    entry.points_awarded = 9999
    with pytest.raises(AppendOnlyViolationError):
        db.commit()
    db.rollback()

    db.delete(entry)
    with pytest.raises(AppendOnlyViolationError):
        db.commit()
    db.rollback()

    assert history_for(db, borrower)[0].points_awarded == 25


def test_history_is_listed_newest_first(db, pipeline, borrower, make_loan, make_repayment):
    loan = make_loan(borrower, amount=Decimal("1000"))
    pipeline.record_repayment(make_repayment(loan, Decimal("550")).id, loan.id)
    pipeline.record_repayment(make_repayment(loan, Decimal("550")).id, loan.id)

    entries = CreditScoreHistoryRepository(db).find_by_borrower_id(borrower.id)

    assert [e.new_score for e in entries] == [325, 275]


async def test_award_job_is_processed_by_worker(db, session_factory, cache, telco, notifier, borrower, make_loan, make_repayment):
    loan = make_loan(borrower, amount=Decimal("1000"))
    transaction = make_repayment(loan, Decimal("1100"))
    job = enqueue_award(db, transaction.id, loan.id, borrower.phone)
    again = enqueue_award(db, transaction.id, loan.id, borrower.phone)
    db.commit()

    award_worker = build_workers(session_factory, cache, telco, notifier)[1]
    assert await award_worker.run_once() == 1

    db.expire_all()
    assert again.id == job.id
    assert db.query(QueuedJob).one().status == "completed"
    assert loan.status == "completed"
    assert borrower.credit_score == 350
