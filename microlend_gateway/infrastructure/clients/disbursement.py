"""Telco disbursement API HTTP client"""

import httpx
from decimal import Decimal
from typing import Optional
from microlend_gateway.domain.exceptions import DisbursementProviderError
from microlend_gateway.config import settings
from microlend_gateway.infrastructure.observability.metrics import disbursement_latency_histogram


class DisbursementClient:
    """Client for the external telco disbursement API"""

    def __init__(self, base_url: str | None = None, timeout: float | None = None):
        self.base_url = base_url or settings.telco_api_base
        self.timeout = timeout or settings.http_timeout_seconds

    async def disburse(
        self,
        loan_reference: str,
        phone_number: str,
        amount: Decimal,
        network: Optional[str],
    ) -> str:
        """
        Credit the borrower's wallet with the loan amount.

        The loan reference doubles as the provider idempotency key, so a
        retried call for the same loan cannot pay out twice.

        Returns:
            Provider transaction reference

        Raises:
            DisbursementProviderError: On timeout, HTTP errors, or invalid response
        """
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                with disbursement_latency_histogram.time():
                    response = await client.post(
                        f"{self.base_url}/telco/disbursements",
                        json={
                            "reference": loan_reference,
                            "msisdn": phone_number,
                            "amount": str(amount),
                            "network": network,
                        },
                        headers={"Idempotency-Key": loan_reference},
                    )
                response.raise_for_status()
                return response.json()["telco_reference"]

            except httpx.TimeoutException as e:
                raise DisbursementProviderError(f"Telco API timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                raise DisbursementProviderError(f"Telco API error: {e.response.status_code}") from e
            except httpx.RequestError as e:
                raise DisbursementProviderError(f"Telco API unreachable: {e}") from e
            except (KeyError, ValueError, TypeError) as e:
                raise DisbursementProviderError(f"Invalid disbursement response: {e}") from e
