"""Pytest fixtures for testing"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")

import fakeredis
import pytest
from datetime import datetime
from decimal import Decimal
from typing import Callable, Generator, List, Optional
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from microlend_gateway.api.main import create_app
from microlend_gateway.domain.exceptions import DisbursementProviderError, NotificationError
from microlend_gateway.domain.loan_terms import price_loan
from microlend_gateway.infrastructure.cache.client import CacheClient, get_cache
from microlend_gateway.infrastructure.database.models import Base, Borrower, Loan, RepaymentTransaction
from microlend_gateway.infrastructure.database.session import get_db
from microlend_gateway.utils.date_utils import utcnow


# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory(db: Session) -> Callable[[], Session]:
    """Factory for extra sessions (workers, concurrent callers) on the test database"""
    return TestingSessionLocal


@pytest.fixture
def redis_server() -> fakeredis.FakeServer:
    return fakeredis.FakeServer()


@pytest.fixture
def cache(redis_server: fakeredis.FakeServer) -> CacheClient:
    """Cache client on an in-memory Redis; clients on the same server share data"""
    return CacheClient(fakeredis.FakeRedis(server=redis_server, decode_responses=True))


@pytest.fixture
def client(db: Session, cache: CacheClient) -> TestClient:
    """Create FastAPI test client with test database and cache"""
    app = create_app()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_cache] = lambda: cache
    return TestClient(app)


@pytest.fixture
def make_borrower(db: Session) -> Callable[..., Borrower]:
    """Create borrowers with sensible defaults"""
    counter = {"n": 0}

    def _make(
        phone: Optional[str] = None,
        credit_score: int = 0,
        credit_limit: Decimal = Decimal("5000"),
        loan_count: int = 0,
        auto_limit_enabled: bool = False,
    ) -> Borrower:
        counter["n"] += 1
        borrower = Borrower(
            phone=phone or f"0803000{counter['n']:04d}",
            credit_score=credit_score,
            credit_limit=credit_limit,
            loan_count=loan_count,
            auto_limit_enabled=auto_limit_enabled,
            total_repaid=Decimal("0"),
        )
        db.add(borrower)
        db.commit()
        return borrower

    return _make


@pytest.fixture
def borrower(make_borrower) -> Borrower:
    """Returning borrower with a 5000 static limit"""
    return make_borrower(phone="08031234567", credit_score=250, loan_count=1)


@pytest.fixture
def make_loan(db: Session) -> Callable[..., Loan]:
    """Create loans directly in a given status"""
    counter = {"n": 0}

    def _make(
        borrower: Borrower,
        amount: Decimal = Decimal("1000"),
        status: str = "disbursed",
        interest_rate: float = 10.0,
        created_at: Optional[datetime] = None,
        disbursed_at: Optional[datetime] = None,
        metadata: Optional[dict] = None,
    ) -> Loan:
        counter["n"] += 1
        created_at = created_at or utcnow()
        terms = price_loan(amount, interest_rate, 30, created_at)
        loan = Loan(
            reference=f"USS-TEST-{counter['n']:04d}",
            borrower_id=borrower.id,
            borrower_phone=borrower.phone,
            amount=terms.principal,
            disbursed_amount=terms.principal,
            interest_rate=Decimal(str(interest_rate)),
            repayment_period_days=30,
            amount_due=terms.amount_due,
            amount_paid=Decimal("0"),
            outstanding_amount=terms.amount_due,
            status=status,
            network="MTN",
            due_date=terms.due_date,
            approved_at=created_at,
            disbursed_at=disbursed_at or (created_at if status != "approved" else None),
            metadata_=metadata,
            created_at=created_at,
        )
        db.add(loan)
        db.commit()
        return loan

    return _make


@pytest.fixture
def make_repayment(db: Session) -> Callable[..., RepaymentTransaction]:
    """Create confirmed repayment transactions"""

    def _make(
        loan: Loan,
        amount: Decimal,
        status: str = "completed",
        type: str = "repayment",
        reconciled_at: Optional[datetime] = None,
    ) -> RepaymentTransaction:
        transaction = RepaymentTransaction(
            borrower_id=loan.borrower_id,
            loan_id=loan.id,
            type=type,
            status=status,
            amount=amount,
            reference=f"RPY-{loan.reference}",
            reconciled_at=reconciled_at or utcnow(),
        )
        db.add(transaction)
        db.commit()
        return transaction

    return _make


class StubTelcoClient:
    """Disbursement client double; fails the first `failures` calls"""

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.calls: List[str] = []

    async def disburse(self, loan_reference, phone_number, amount, network) -> str:
        self.calls.append(loan_reference)
        if self.failures > 0:
            self.failures -= 1
            raise DisbursementProviderError("Telco API timeout after 5.0s")
        return f"TEL-{loan_reference}"


class StubNotifier:
    """Notification client double recording sent events"""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.events: List[tuple] = []

    async def send_event(self, event, payload) -> None:
        if self.fail:
            raise NotificationError("Notification delivery failed: 503")
        self.events.append((event, payload))


@pytest.fixture
def telco() -> StubTelcoClient:
    return StubTelcoClient()


@pytest.fixture
def notifier() -> StubNotifier:
    return StubNotifier()
