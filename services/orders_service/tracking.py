"""Read-only projections: status messages, tracking timeline, delivery estimates."""

import re
from datetime import datetime, timedelta
from typing import Optional

from libs.common.datetime_utils import utc_now
from services.orders_service.models import Order, OrderStatus

PINCODE_PATTERN = re.compile(r"^[1-9][0-9]{5}$")

# Pincode prefixes of metro sorting hubs; everything else ships on the slower lane
METRO_PINCODE_PREFIXES = ("400", "110", "560", "600", "700", "500")
METRO_DELIVERY_DAYS = 2
STANDARD_DELIVERY_DAYS = 4

STATUS_MESSAGES = {
    OrderStatus.PENDING: "Your order is being processed",
    OrderStatus.CONFIRMED: "Your order has been confirmed",
    OrderStatus.PROCESSING: "Your order is being prepared",
    OrderStatus.SHIPPED: "Your order has been shipped",
    OrderStatus.DELIVERED: "Your order has been delivered",
    OrderStatus.CANCELLED: "Your order has been cancelled",
    OrderStatus.REFUNDED: "Your order has been refunded",
}

TIMELINE = (
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
)


def is_valid_pincode(pincode: str) -> bool:
    return bool(PINCODE_PATTERN.match(pincode or ""))


def estimate_delivery(pincode: str, now: Optional[datetime] = None) -> datetime:
    now = now or utc_now()
    days = (
        METRO_DELIVERY_DAYS
        if pincode.startswith(METRO_PINCODE_PREFIXES)
        else STANDARD_DELIVERY_DAYS
    )
    return now + timedelta(days=days)


def status_message(status: OrderStatus) -> str:
    return STATUS_MESSAGES.get(status, "Order status unknown")


def tracking_timeline(order: Order) -> list[dict]:
    """Fulfilment steps with completion flags.

    Cancelled and refunded orders show only the steps they actually reached:
    PENDING always, CONFIRMED when they were confirmed before leaving the happy path.
    """
    status = order.order_status
    if status in TIMELINE:
        reached = TIMELINE.index(status)
    elif order.confirmed_at is not None:
        reached = TIMELINE.index(OrderStatus.CONFIRMED)
    else:
        reached = TIMELINE.index(OrderStatus.PENDING)

    timeline = []
    for index, step in enumerate(TIMELINE):
        timestamp = None
        if step == OrderStatus.PENDING:
            timestamp = order.created_at
        elif step == OrderStatus.CONFIRMED:
            timestamp = order.confirmed_at
        elif step == OrderStatus.DELIVERED:
            timestamp = order.delivered_at
        timeline.append(
            {
                "status": step,
                "completed": index <= reached,
                "timestamp": timestamp if index <= reached else None,
            }
        )
    return timeline
