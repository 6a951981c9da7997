"""Lifecycle notifications.

The pipeline tells a ``NotificationDispatcher`` what happened; delivery
(email, push, websocket fan-out) belongs to the notifications service. A
dispatcher must never raise into the pipeline: an unreachable recipient is
not an order failure.
"""

import enum
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from typing import Optional

import httpx
from libs.common.config import get_settings
from libs.common.logging import get_logger

logger = get_logger(__name__)


class OrderEvent(str, enum.Enum):
    CONFIRMED = "order.confirmed"
    STATUS_CHANGED = "order.status_changed"
    CANCELLED = "order.cancelled"
    PAYMENT_FAILED = "order.payment_failed"
    REFUNDED = "order.refunded"
    REFUND_FAILED = "order.refund_failed"


@dataclass(frozen=True)
class OrderNotification:
    event: OrderEvent
    order_id: str
    order_number: str
    order_status: str
    payment_status: str
    final_amount: str
    previous_status: Optional[str] = None
    message: Optional[str] = None
    extra: dict = field(default_factory=dict)

    def to_payload(self) -> dict:
        payload = asdict(self)
        payload["event"] = self.event.value
        return payload


class NotificationDispatcher(ABC):
    @abstractmethod
    async def notify(self, user_id: str, event: OrderNotification) -> None: ...


class LoggingNotificationDispatcher(NotificationDispatcher):
    """Used when no notifications service is configured."""

    async def notify(self, user_id, event):
        logger.info(
            "Notification %s for user %s (order %s)",
            event.event.value,
            user_id,
            event.order_number,
        )


class HttpNotificationDispatcher(NotificationDispatcher):
    """Hands events to the notifications service over HTTP, best effort."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def notify(self, user_id, event):
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.post(
                    f"{self.base_url}/internal/notifications",
                    json={"user_id": user_id, **event.to_payload()},
                )
            if response.status_code >= 400:
                logger.error(
                    "Notification %s for order %s rejected (http %d): %s",
                    event.event.value,
                    event.order_number,
                    response.status_code,
                    response.text,
                )
        except httpx.HTTPError as e:
            logger.error(
                "Failed to deliver notification %s for order %s: %s",
                event.event.value,
                event.order_number,
                e,
            )


def get_notification_dispatcher() -> NotificationDispatcher:
    url = get_settings().NOTIFICATIONS_SERVICE_URL
    if url:
        return HttpNotificationDispatcher(url)
    return LoggingNotificationDispatcher()
