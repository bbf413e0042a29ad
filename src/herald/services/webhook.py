"""Outgoing webhook delivery — one POST per notification, no retries.

Learn: Delivery is deliberately fire-once. A non-2xx response or a
transport error is logged and reported as False; the caller moves on to
the next notification. There is no timeout unless one is configured, so
a hung endpoint stalls only the sink while the queue keeps filling.
"""

import json
from typing import Optional

import httpx
import structlog

logger = structlog.get_logger()


class WebhookDelivery:
    """POSTs JSON payloads to a single webhook URL."""

    def __init__(
        self,
        url: str,
        *,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def deliver(self, payload: dict) -> bool:
        """Send one payload. Returns True on a 2xx response."""
        try:
            response = await self._client.post(
                self.url,
                content=json.dumps(payload),
                headers={"Content-Type": "application/json"},
            )
        except httpx.HTTPError as e:
            logger.warning(
                "webhook.delivery_failed",
                error=str(e) or e.__class__.__name__,
            )
            return False

        if not response.is_success:
            logger.warning(
                "webhook.delivery_failed",
                status=response.status_code,
                body=response.text[:200],
            )
            return False
        return True

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def build_delivery(
    url: str, timeout: Optional[float] = None
) -> Optional[WebhookDelivery]:
    """Return a delivery for `url`, or None when no webhook is configured."""
    if not url:
        return None
    return WebhookDelivery(url, timeout=timeout)
