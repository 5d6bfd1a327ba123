"""Notification webhook client with exponential backoff retry logic"""

import httpx
import asyncio
from typing import Dict, Any
from workspace_refunds.config import settings
from workspace_refunds.domain.exceptions import NotificationError


class NotificationClient:
    """Client for posting notification events to the delivery webhook"""

    def __init__(self, webhook_url: str | None = None):
        self.webhook_url = webhook_url if webhook_url is not None else settings.notification_webhook_url
        self.max_retries = settings.notification_max_retries
        self.backoff_base = settings.notification_backoff_base

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    async def send_event(self, payload: Dict[str, Any]) -> None:
        """
        Deliver one notification event with retry logic.

        Retry strategy:
        - Exponential backoff: base, 2*base, 4*base ...
        - Retries on HTTP error statuses and network failures

        Raises:
            NotificationError: delivery still failing after max_retries
        """
        attempt = 0
        async with httpx.AsyncClient() as client:
            while attempt < self.max_retries:
                try:
                    response = await client.post(
                        self.webhook_url,
                        json=payload,
                        timeout=settings.http_timeout_seconds,
                    )
                    response.raise_for_status()
                    return  # Success

                except (httpx.HTTPStatusError, httpx.RequestError) as e:
                    attempt += 1

                    if attempt >= self.max_retries:
                        raise NotificationError(f"Notification delivery failed after {attempt} attempts: {e}") from e

                    backoff = self.backoff_base * (2 ** (attempt - 1))
                    await asyncio.sleep(backoff)
