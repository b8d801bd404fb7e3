from fastapi import FastAPI, Header, HTTPException
from pydantic import BaseModel
from typing import Any, Dict, Optional
import os
import uuid

app = FastAPI(title="Mock Telco Server", version="1.0.0")
# Comma-separated MSISDNs whose payouts always fail, to exercise worker retries
FAIL_MSISDNS = {m for m in os.getenv("MOCK_TELCO_FAIL_MSISDNS", "").split(",") if m}
# Payouts already made, keyed by idempotency key
PAYOUTS: Dict[str, Dict[str, Any]] = {}
NOTIFICATIONS: list = []


class DisbursementRequest(BaseModel):
    reference: str
    msisdn: str
    amount: str
    network: Optional[str] = None


@app.get("/health")
def health(): return {"status": "ok"}

@app.post("/telco/disbursements")
def disburse(body: DisbursementRequest, idempotency_key: Optional[str] = Header(None)):
    key = idempotency_key or body.reference
    if key in PAYOUTS:
        return PAYOUTS[key]
    if body.msisdn in FAIL_MSISDNS:
        raise HTTPException(status_code=503, detail="network unavailable")
    PAYOUTS[key] = {"telco_reference": f"TEL-{uuid.uuid4().hex[:12].upper()}", "reference": body.reference, "status": "successful"}
    return PAYOUTS[key]

@app.post("/mock-notifications")
def notify(event: Dict[str, Any]):
    NOTIFICATIONS.append(event)
    return {"received": True}
