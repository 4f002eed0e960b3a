"""
Publish-notification delivery.

Posts a JSON payload describing a newly published article to the configured
webhook (site rebuild hook, social scheduler, ...). Delivery is fire-and-forget
from the publish stage's point of view: `deliver()` reports ok/err and never
raises, and a failed delivery does not roll back the publish.
"""

from __future__ import annotations

from typing import Any, Protocol

import httpx

from newsdesk.core.config import Settings
from newsdesk.core.logging import get_logger

logger = get_logger(__name__)


class Deliverer(Protocol):
    async def deliver(self, payload: dict[str, Any]) -> bool: ...


class WebhookDeliverer:
    def __init__(
        self,
        url: str,
        *,
        secret: str = "",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url
        self.secret = secret
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> WebhookDeliverer:
        return cls(
            settings.publish_webhook_url,
            secret=settings.publish_webhook_secret,
            timeout=settings.webhook_timeout_seconds,
        )

    @property
    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "User-Agent": "Newsdesk-Webhook/1.0"}
        if self.secret:
            headers["X-Newsdesk-Secret"] = self.secret
        return headers

    async def deliver(self, payload: dict[str, Any]) -> bool:
        if not self.url:
            logger.info("webhook_skipped", reason="no webhook URL configured")
            return False

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(self.url, headers=self._headers, json=payload)
                resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("webhook_delivery_failed", url=self.url, error=str(e))
            return False

        logger.info("webhook_delivered", status_code=resp.status_code, payload_event=payload.get("event"))
        return True
