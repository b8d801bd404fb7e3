"""Notification webhook client with exponential backoff retry logic"""

import httpx
import asyncio
from typing import Dict, Any
from microlend_gateway.config import settings
from microlend_gateway.domain.exceptions import NotificationError
from microlend_gateway.infrastructure.observability.metrics import notification_failure_counter


class NotificationClient:
    """Client for sending borrower-facing events to the messaging sink"""

    def __init__(self, webhook_url: str | None = None):
        self.webhook_url = webhook_url or settings.notification_webhook_url
        self.max_retries = settings.webhook_max_retries
        self.backoff_base = settings.webhook_backoff_base

    async def send_event(self, event: str, payload: Dict[str, Any]) -> None:
        """
        Deliver an event to the notification sink with retry logic.

        Retry strategy:
        - Exponential backoff: 1s, 2s, 4s, 8s (base * 2^(attempt-1))
        - Retries on HTTP errors and network failures

        Raises:
            NotificationError: after the final attempt fails
        """
        attempt = 0
        async with httpx.AsyncClient() as client:
            while attempt < self.max_retries:
                try:
                    response = await client.post(
                        self.webhook_url,
                        json={"event": event, **payload},
                        timeout=settings.http_timeout_seconds,
                    )
                    response.raise_for_status()
                    return

                except (httpx.HTTPStatusError, httpx.RequestError) as e:
                    attempt += 1
                    notification_failure_counter.inc()

                    if attempt >= self.max_retries:
                        raise NotificationError(f"Notification delivery failed: {e}") from e

                    backoff = self.backoff_base * (2 ** (attempt - 1))
                    await asyncio.sleep(backoff)
