"""Party notification dispatch.

After each successful delivery mutation the lifecycle service signals that
badge and unread counters of the trainer and the client must be recomputed.
Dispatch is best-effort: the caller logs and swallows any failure raised
here, so a notification outage never rolls back a delivery transition.

Dispatchers:
- LoggingNotificationDispatcher: records the signal in the application log
- WebhookNotificationDispatcher: POSTs a JSON payload to a configured endpoint
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol

import httpx

if TYPE_CHECKING:
    from uuid import UUID

    from locofit.core.config import NotificationSettings
    from locofit.db.models.deliveries import ProductDelivery

logger = logging.getLogger(__name__)


class NotificationError(Exception):
    """Raised when a notification could not be delivered."""


class NotificationDispatcher(Protocol):
    """Interface the lifecycle service calls after each mutation."""

    async def notify_parties(self, trainer_id: UUID, client_id: UUID) -> None:
        """Signal that both parties' counters should be recomputed."""
        ...

    async def notify_dispute_reported(self, delivery: ProductDelivery) -> None:
        """Signal managers that a client disputed a delivery."""
        ...

    async def close(self) -> None:
        """Release any held resources."""
        ...


class LoggingNotificationDispatcher:
    """Dispatcher that only logs notification signals.

    Used when no webhook is configured and in development.
    """

    async def notify_parties(self, trainer_id: UUID, client_id: UUID) -> None:
        logger.info(
            "Delivery parties notified",
            extra={"trainer_id": str(trainer_id), "client_id": str(client_id)},
        )

    async def notify_dispute_reported(self, delivery: ProductDelivery) -> None:
        logger.info(
            "Delivery dispute reported",
            extra={
                "delivery_id": str(delivery.delivery_id),
                "trainer_id": str(delivery.trainer_id),
                "client_id": str(delivery.client_id),
            },
        )

    async def close(self) -> None:
        return None


class WebhookNotificationDispatcher:
    """Dispatcher pushing notification signals to an HTTP endpoint.

    Payloads are JSON objects with an ``event`` key:

        {"event": "delivery.parties_changed", "trainer_id": "...", "client_id": "...",
         "sent_at": "..."}
        {"event": "delivery.dispute_reported", "delivery_id": "...", ...}
    """

    def __init__(
        self,
        webhook_url: str,
        *,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            webhook_url: Endpoint receiving notification payloads.
            timeout: Request timeout in seconds.
            transport: Optional httpx transport (used by tests).
        """
        self._webhook_url = webhook_url
        self._timeout = timeout
        self._transport = transport
        self._http_client: httpx.AsyncClient | None = None

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client for webhook delivery."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._http_client

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def notify_parties(self, trainer_id: UUID, client_id: UUID) -> None:
        await self._post(
            {
                "event": "delivery.parties_changed",
                "trainer_id": str(trainer_id),
                "client_id": str(client_id),
            }
        )

    async def notify_dispute_reported(self, delivery: ProductDelivery) -> None:
        await self._post(
            {
                "event": "delivery.dispute_reported",
                "delivery_id": str(delivery.delivery_id),
                "order_id": str(delivery.order_id),
                "trainer_id": str(delivery.trainer_id),
                "client_id": str(delivery.client_id),
                "product_name": delivery.product_name,
                "dispute_reason": delivery.dispute_reason,
            }
        )

    async def _post(self, payload: dict[str, Any]) -> None:
        """Send one payload to the webhook.

        Raises:
            NotificationError: On transport failure or a non-2xx response.
        """
        payload["sent_at"] = datetime.now(UTC).isoformat()
        body = json.dumps(payload, default=str)

        client = await self._get_http_client()
        try:
            response = await client.post(
                self._webhook_url,
                content=body,
                headers={"Content-Type": "application/json"},
            )
        except httpx.HTTPError as e:
            msg = f"Webhook request failed: {e}"
            raise NotificationError(msg) from e

        if not response.is_success:
            msg = f"Webhook returned status {response.status_code}"
            raise NotificationError(msg)

        logger.debug(
            "Webhook notification delivered: event=%s, status=%d",
            payload["event"],
            response.status_code,
        )


def build_notification_dispatcher(
    settings: NotificationSettings | None,
) -> NotificationDispatcher:
    """Create the dispatcher matching the notification settings.

    Args:
        settings: Notification settings, or None for the logging dispatcher.

    Returns:
        A webhook dispatcher when a webhook is configured and enabled,
        otherwise a logging dispatcher.
    """
    if settings is not None and settings.uses_webhook:
        return WebhookNotificationDispatcher(
            str(settings.webhook_url),
            timeout=settings.timeout,
        )
    return LoggingNotificationDispatcher()
