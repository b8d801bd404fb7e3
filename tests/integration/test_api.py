"""Integration tests for API endpoints"""

import uuid
from decimal import Decimal

from fastapi.testclient import TestClient

from microlend_gateway.infrastructure.database.models import Loan, QueuedJob

PHONE = "08031234567"


def accept(client: TestClient, **overrides):
    body = {"phone_number": PHONE, "network": "MTN", "session_id": "sess-1", "selected_option": 2}
    body.update(overrides)
    return client.post("/v1/loan-offers/accept", json=body)


def test_health_endpoint(client: TestClient):
    """Test health check endpoint"""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_metrics_endpoint(client: TestClient):
    """Test Prometheus metrics endpoint"""
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "microlend_loan_issuance_total" in response.text


def test_request_id_is_echoed(client: TestClient):
    response = client.get("/health", headers={"X-Request-ID": "ussd-abc-123"})
    assert response.headers["X-Request-ID"] == "ussd-abc-123"


def test_loan_offers(client: TestClient, borrower):
    """Test POST /v1/loan-offers"""
    response = client.post("/v1/loan-offers", json={"phone_number": "2348031234567", "session_id": "sess-1"})

    assert response.status_code == 200
    data = response.json()
    assert data["session_id"] == "sess-1"
    assert data["borrower_id"] == str(borrower.id)
    assert Decimal(data["eligible_amount"]) == Decimal("500")
    assert [o["option"] for o in data["offers"]] == [1, 2, 3]
    assert [Decimal(o["amount"]) for o in data["offers"]] == [Decimal("250"), Decimal("375"), Decimal("500")]
    assert data["offers"][0]["currency"] == "NGN"


def test_loan_offers_unknown_borrower(client: TestClient):
    response = client.post("/v1/loan-offers", json={"phone_number": "08099999999"})

    assert response.status_code == 404
    assert response.json() == {
        "status": "error",
        "code": "USER_NOT_FOUND",
        "message": "User not found. Please register first.",
        "retryable": False,
    }


def test_accept_offer(client: TestClient, db, borrower):
    """Test POST /v1/loan-offers/accept creates a loan awaiting payout"""
    response = accept(client)

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "processing"
    assert data["created"] is True
    assert data["loan_status"] == "approved"
    assert Decimal(data["amount"]) == Decimal("375")
    assert Decimal(data["amount_due"]) == Decimal("412.50")
    assert data["interest_rate"] == 10.0
    assert data["repayment_period_days"] == 14
    assert data["reference"].startswith("USS-")
    assert db.query(QueuedJob).count() == 1


def test_accept_offer_twice_returns_same_loan(client: TestClient, db, borrower):
    first = accept(client).json()
    second = accept(client).json()

    assert second["loan_id"] == first["loan_id"]
    assert second["created"] is False
    assert db.query(Loan).count() == 1


def test_accept_offer_cooldown(client: TestClient, borrower):
    accept(client)

    response = accept(client, session_id="sess-2")

    assert response.status_code == 422
    assert response.json()["code"] == "LOAN_COOLDOWN"
    assert response.json()["retryable"] is False


def test_accept_offer_while_locked(client: TestClient, cache, borrower):
    cache.set(f"ussd:loan:lock:{borrower.id}:sess-1", "other-request", 30)

    response = accept(client)

    assert response.status_code == 409
    assert response.json()["code"] == "REQUEST_IN_PROGRESS"
    assert response.json()["retryable"] is True
    assert response.headers["Retry-After"] == "1"


def test_accept_offer_over_credit_limit(client: TestClient, make_borrower):
    make_borrower(phone="08036660000", credit_score=1000, loan_count=1, credit_limit=Decimal("300"), auto_limit_enabled=True)

    response = accept(client, phone_number="08036660000", selected_option=None, selected_amount="500")

    assert response.status_code == 422
    data = response.json()
    assert data["code"] == "CREDIT_LIMIT_EXCEEDED"
    assert Decimal(data["available_credit"]) == Decimal("300")


def test_accept_offer_invalid_option(client: TestClient, borrower):
    response = accept(client, selected_option=7)

    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_SELECTION"


def test_accept_offer_requires_selection(client: TestClient, borrower):
    response = accept(client, selected_option=None)

    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_REQUEST"


def test_accept_offer_rejects_non_positive_option(client: TestClient, borrower):
    response = accept(client, selected_option=0)

    assert response.status_code == 422


def test_request_disbursement(client: TestClient, borrower, make_loan):
    loan = make_loan(borrower, status="approved")

    response = client.post(f"/v1/loans/{loan.id}/disbursement")

    assert response.status_code == 202
    assert response.json()["status"] == "queued"
    assert response.json()["job_id"]


def test_request_disbursement_already_disbursed(client: TestClient, borrower, make_loan):
    loan = make_loan(borrower, status="disbursed")

    response = client.post(f"/v1/loans/{loan.id}/disbursement")

    assert response.status_code == 202
    assert response.json()["status"] == "already_disbursed"
    assert response.json()["job_id"] is None


def test_request_disbursement_wrong_state(client: TestClient, borrower, make_loan):
    loan = make_loan(borrower, status="completed")

    response = client.post(f"/v1/loans/{loan.id}/disbursement")

    assert response.status_code == 409
    assert response.json()["code"] == "INVALID_LOAN_STATE"


def test_request_disbursement_invalid_id(client: TestClient):
    response = client.post("/v1/loans/invalid-id/disbursement")

    assert response.status_code == 400
    assert response.json()["code"] == "HTTP_400"


def test_request_disbursement_not_found(client: TestClient):
    response = client.post(f"/v1/loans/{uuid.uuid4()}/disbursement")

    assert response.status_code == 404
    assert response.json()["code"] == "LOAN_NOT_FOUND"


def test_credit_score_award(client: TestClient, borrower, make_loan, make_repayment):
    """Test POST /v1/repayments/{transaction_id}/credit-score"""
    loan = make_loan(borrower, amount=Decimal("1000"))
    transaction = make_repayment(loan, Decimal("1100"))

    url = f"/v1/repayments/{transaction.id}/credit-score"
    body = {"loan_id": str(loan.id), "phone_number": PHONE}
    first = client.post(url, json=body)
    second = client.post(url, json=body)

    assert first.status_code == 200
    assert first.json() == {"transaction_id": str(transaction.id), "points_awarded": 100, "new_score": 350}
    assert second.json() == first.json()


def test_credit_score_award_invalid_transaction(client: TestClient, borrower, make_loan, make_repayment):
    loan = make_loan(borrower)
    transaction = make_repayment(loan, Decimal("100"), status="pending")

    response = client.post(f"/v1/repayments/{transaction.id}/credit-score", json={"loan_id": str(loan.id)})

    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_TRANSACTION"


def test_credit_score_award_unknown_transaction(client: TestClient, borrower, make_loan):
    loan = make_loan(borrower)

    response = client.post(f"/v1/repayments/{uuid.uuid4()}/credit-score", json={"loan_id": str(loan.id)})

    assert response.status_code == 404
    assert response.json()["code"] == "TRANSACTION_NOT_FOUND"


def test_credit_score_award_job(client: TestClient, db, borrower, make_loan, make_repayment):
    loan = make_loan(borrower)
    transaction = make_repayment(loan, Decimal("550"))

    url = f"/v1/repayments/{transaction.id}/credit-score/jobs"
    first = client.post(url, json={"loan_id": str(loan.id)})
    second = client.post(url, json={"loan_id": str(loan.id)})

    assert first.status_code == 202
    assert first.json()["queue"] == "credit-score-award"
    assert first.json()["status"] == "pending"
    assert second.json()["job_id"] == first.json()["job_id"]
    assert db.query(QueuedJob).count() == 1


def test_eligibility(client: TestClient, borrower):
    """Test GET /v1/borrowers/{borrower_id}/eligibility"""
    response = client.get(f"/v1/borrowers/{borrower.id}/eligibility")

    assert response.status_code == 200
    data = response.json()
    assert data["credit_score"] == 250
    assert Decimal(data["eligible_amount"]) == Decimal("500")
    assert data["interest_rate"] == 10.0
    assert data["repayment_period_days"] == 14
    assert data["currency"] == "NGN"


def test_credit_score_history(client: TestClient, borrower, make_loan, make_repayment):
    """Test GET /v1/borrowers/{borrower_id}/credit-score/history"""
    loan = make_loan(borrower, amount=Decimal("1000"))
    transaction = make_repayment(loan, Decimal("550"))
    client.post(f"/v1/repayments/{transaction.id}/credit-score", json={"loan_id": str(loan.id)})

    response = client.get(f"/v1/borrowers/{borrower.id}/credit-score/history")

    assert response.status_code == 200
    [entry] = response.json()["entries"]
    assert entry["previous_score"] == 250
    assert entry["new_score"] == 275
    assert entry["points_awarded"] == 25
    assert entry["reason"] == "partial_repayment"
    assert entry["transaction_id"] == str(transaction.id)
    assert entry["metadata"]["base_points"] == 50


def test_history_invalid_id(client: TestClient):
    response = client.get("/v1/borrowers/invalid-id/credit-score/history")
    assert response.status_code == 400


def test_history_unknown_borrower(client: TestClient):
    response = client.get(f"/v1/borrowers/{uuid.uuid4()}/credit-score/history")
    assert response.status_code == 404
