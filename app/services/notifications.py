"""
Notification Sender - Best-effort fan-out of core events.

The core only invokes a sender; delivery (sockets, email, push) happens elsewhere.
"""

from typing import Protocol

import httpx

from app.config import Settings
from app.models.domain import NotificationEvent
from app.observability.logging import get_logger
from app.observability.metrics import metrics

logger = get_logger(__name__)


class NotificationSender(Protocol):
    """Accepts typed events; may fail, callers never depend on success."""

    async def send(self, event: NotificationEvent) -> None: ...


class LogNotificationSender:
    """Writes events to the structured log only."""

    async def send(self, event: NotificationEvent) -> None:
        logger.info("notification_emitted", **event.to_payload())


class WebhookNotificationSender:
    """POSTs each event as JSON to the delivery service."""

    def __init__(
        self, url: str, timeout: float = 5.0, client: httpx.AsyncClient | None = None
    ) -> None:
        self.url = url
        self.timeout = timeout
        self._client = client

    async def send(self, event: NotificationEvent) -> None:
        if self._client is not None:
            response = await self._client.post(
                self.url, json=event.to_payload(), timeout=self.timeout
            )
            response.raise_for_status()
            return

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(self.url, json=event.to_payload())
            response.raise_for_status()


def build_notification_sender(settings: Settings) -> NotificationSender:
    """Pick the sender for this process from configuration."""
    if settings.notification_webhook_url:
        logger.info("notification_webhook_enabled", url=settings.notification_webhook_url)
        return WebhookNotificationSender(
            settings.notification_webhook_url,
            timeout=settings.notification_timeout_seconds,
        )
    return LogNotificationSender()


async def dispatch_notification(sender: NotificationSender, event: NotificationEvent) -> bool:
    """
    Send one event, never raising.

    Called after the triggering write has committed; a failure is logged,
    counted and discarded. Returns whether delivery succeeded.
    """
    try:
        await sender.send(event)
    except Exception as e:
        logger.warning(
            "notification_dispatch_failed",
            event_type=event.event_type.value,
            recipient_id=str(event.recipient_id),
            error=str(e),
            error_type=type(e).__name__,
        )
        metrics.record_notification(event.event_type.value, success=False)
        return False

    metrics.record_notification(event.event_type.value, success=True)
    return True
