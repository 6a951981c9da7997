"""Refund workflow for orders whose payment was captured.

Full refunds only. Before the gateway is called the order is claimed
(``refund_requested_at``) and saved, so a second refunder in another process
fails the version check before any money moves. A stored ``refund_id`` makes
retries return without calling the gateway again. A gateway failure releases
the claim, leaves the order's status as the caller left it (typically
CANCELLED) and is returned as ``RefundFailed`` for manual reconciliation.
"""

from datetime import datetime, timedelta
from typing import Optional

from libs.common.currency import to_minor_units
from libs.common.datetime_utils import ensure_aware, utc_now
from libs.common.logging import get_logger
from services.orders_service.errors import (
    ConcurrentModification,
    GatewayError,
    GatewayUnavailable,
    InvalidStateTransition,
    PersistenceFailed,
    RefundFailed,
)
from services.orders_service.gateway import PaymentGateway
from services.orders_service.models import Order, OrderStatus, Payment, PaymentStatus
from services.orders_service.repository import OrderRepository
from services.orders_service.results import Err, Ok, Result

logger = get_logger(__name__)


class RefundWorkflow:
    def __init__(
        self,
        repository: OrderRepository,
        gateway: PaymentGateway,
        claim_timeout_seconds: int = 300,
    ):
        self.repository = repository
        self.gateway = gateway
        self.claim_timeout = timedelta(seconds=claim_timeout_seconds)

    def in_progress(self, order: Order, now: Optional[datetime] = None) -> bool:
        """True while another refunder holds a live claim on ``order``."""
        if order.refund_id or order.refund_requested_at is None:
            return False
        age = (now or utc_now()) - ensure_aware(order.refund_requested_at)
        return age < self.claim_timeout

    async def run(
        self,
        order: Order,
        payment: Payment,
        reason: str = "Order cancelled",
        settle_order: bool = True,
        order_status: Optional[OrderStatus] = None,
    ) -> Result[Order, RefundFailed]:
        """Refund ``payment`` in full and record it on ``order``.

        The caller holds the order's lock and has already saved the
        cancellation status the order should keep, or passes ``order_status``
        to have it set in the same save as the refund. With
        ``settle_order=False`` only the attempt is refunded (a second capture
        on an order that is already paid); the order's own payment status and
        ``refund_id`` are left alone.
        """
        if settle_order and order.refund_id:
            logger.info(
                "Order %s already refunded (%s); skipping gateway call",
                order.order_number,
                order.refund_id,
            )
            return Ok(order)

        if payment.status != PaymentStatus.COMPLETED or not payment.gateway_payment_id:
            return Err(InvalidStateTransition(order.payment_status, PaymentStatus.REFUNDED))

        receipt = order.order_number
        if settle_order:
            if self.in_progress(order):
                return Err(
                    ConcurrentModification(
                        f"Refund for order {order.order_number} is already in progress"
                    )
                )
            order.refund_requested_at = utc_now()
            # Raises ConcurrentModification for the loser of a cross-process race
            await self.repository.save_order(order)
        else:
            receipt = f"{order.order_number}-{payment.gateway_payment_id}"

        amount = min(order.final_amount, payment.amount)
        try:
            refund = await self.gateway.refund(
                payment.gateway_payment_id,
                to_minor_units(amount),
                notes={"order_number": order.order_number, "reason": reason},
                receipt=receipt,
            )
        except (GatewayUnavailable, GatewayError) as e:
            logger.error(
                "Refund failed for order %s (payment %s, amount %s): %s",
                order.order_number,
                payment.gateway_payment_id,
                amount,
                e.message,
                extra={
                    "extra_fields": {
                        "order_id": str(order.id),
                        "order_number": order.order_number,
                        "gateway_payment_id": payment.gateway_payment_id,
                        "amount": str(amount),
                        "needs_manual_refund": True,
                    }
                },
            )
            if settle_order:
                await self._release_claim(order)
            return Err(
                RefundFailed(
                    order.order_number,
                    e.message,
                    order_status=order.order_status.value,
                    retryable=isinstance(e, GatewayUnavailable),
                )
            )

        now = utc_now()
        payment.status = PaymentStatus.REFUNDED
        payment.updated_at = now
        if settle_order:
            if order_status is not None:
                order.order_status = order_status
                order.append_note(f"Refunded: {reason}")
            order.refund_id = refund.refund_id
            order.payment_status = PaymentStatus.REFUNDED
            order.refunded_at = now
            order.append_note(f"Refund ID: {refund.refund_id}")
        else:
            order.append_note(
                f"Duplicate payment {payment.gateway_payment_id} refunded. "
                f"Refund ID: {refund.refund_id}"
            )

        try:
            await self.repository.save_order(order)
        except Exception:
            # Money has moved; the claim stays until someone reconciles the refund
            logger.exception(
                "Refund %s for order %s issued but not recorded",
                refund.refund_id,
                order.order_number,
                extra={
                    "extra_fields": {
                        "order_id": str(order.id),
                        "order_number": order.order_number,
                        "refund_id": refund.refund_id,
                        "needs_reconciliation": True,
                    }
                },
            )
            return Err(
                PersistenceFailed(
                    "Refund issued but could not be recorded",
                    order_number=order.order_number,
                    refund_id=refund.refund_id,
                )
            )

        logger.info(
            "Refunded %s for order %s (refund %s, order status %s)",
            amount,
            order.order_number,
            refund.refund_id,
            order.order_status.value,
        )
        return Ok(order)

    async def _release_claim(self, order: Order) -> None:
        order.refund_requested_at = None
        try:
            await self.repository.save_order(order)
        except Exception:
            logger.exception(
                "Could not release refund claim on order %s; it lapses after %s",
                order.order_number,
                self.claim_timeout,
            )
