"""Order state machine.

    PENDING -> CONFIRMED -> PROCESSING -> SHIPPED -> DELIVERED
    PENDING | CONFIRMED -> CANCELLED
    CONFIRMED (paid) -> REFUNDED

Every transition of one order runs under that order's key in a ``KeyedLock``
and is persisted through ``save_order``, whose version check rejects writers
that raced us from another process. Stock moves only through the
``InventoryLedger``; the gateway is never called while stock is being
reserved, and notifications go out after the new state is saved.
"""

import asyncio
import functools
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Optional

from libs.common.config import Settings, get_settings
from libs.common.currency import to_minor_units
from libs.common.datetime_utils import minutes_ago, utc_now
from libs.common.logging import get_logger
from services.orders_service.errors import (
    ConcurrentModification,
    GatewayError,
    GatewayUnavailable,
    InvalidSignature,
    InvalidStateTransition,
    NotFound,
    OrderPipelineError,
    PersistenceFailed,
    ValidationError,
)
from services.orders_service.gateway import GatewayIntent, PaymentGateway
from services.orders_service.inventory_ledger import InventoryLedger
from services.orders_service.locks import KeyedLock
from services.orders_service.models import (
    AddressType,
    Order,
    OrderAddress,
    OrderItem,
    OrderStatus,
    Payment,
    PaymentMethod,
    PaymentStatus,
)
from services.orders_service.notifications import (
    NotificationDispatcher,
    OrderEvent,
    OrderNotification,
)
from services.orders_service.pricing import (
    CartLine,
    PriceQuote,
    PricingCalculator,
    merge_lines,
)
from services.orders_service.refunds import RefundWorkflow
from services.orders_service.repository import OrderRepository
from services.orders_service.results import Err, Ok, Result
from services.orders_service.tracking import (
    estimate_delivery,
    is_valid_pincode,
    status_message,
    tracking_timeline,
)

logger = get_logger(__name__)

FULFILMENT_SEQUENCE = (
    OrderStatus.CONFIRMED,
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
)
CANCELLABLE = (OrderStatus.PENDING, OrderStatus.CONFIRMED)


# ============================================================================
# INPUTS / OUTPUTS
# ============================================================================


@dataclass
class OrderDraft:
    """A validated checkout request."""

    user_id: str
    lines: list[CartLine]
    shipping_address: Mapping[str, Any]
    payment_method: PaymentMethod
    billing_address: Optional[Mapping[str, Any]] = None
    coupon_code: Optional[str] = None
    notes: Optional[str] = None


@dataclass
class PlacedOrder:
    order: Order
    intent: Optional[GatewayIntent] = None


@dataclass
class OrderPage:
    orders: list[Order]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_prev(self) -> bool:
        return self.page > 1


@dataclass
class TrackingView:
    order_number: str
    order_status: OrderStatus
    payment_status: PaymentStatus
    status_message: str
    tracking_number: Optional[str]
    estimated_delivery: Optional[datetime]
    timeline: list[dict] = field(default_factory=list)


def _conflicts_as_results(method):
    """Return a lost optimistic-version race as ``Err`` instead of raising."""

    @functools.wraps(method)
    async def wrapper(self, *args, **kwargs):
        try:
            return await method(self, *args, **kwargs)
        except ConcurrentModification as e:
            logger.warning("%s lost a concurrent update: %s", method.__name__, e)
            return Err(e)

    return wrapper


# ============================================================================
# STATE MACHINE
# ============================================================================


class OrderStateMachine:
    def __init__(
        self,
        repository: OrderRepository,
        gateway: PaymentGateway,
        dispatcher: NotificationDispatcher,
        locks: Optional[KeyedLock] = None,
        pricing: Optional[PricingCalculator] = None,
        settings: Optional[Settings] = None,
    ):
        self.repository = repository
        self.gateway = gateway
        self.dispatcher = dispatcher
        self.locks = locks or KeyedLock()
        self.settings = settings or get_settings()
        self.pricing = pricing or PricingCalculator.from_settings(self.settings)
        self.ledger = InventoryLedger(repository)
        self.refunds = RefundWorkflow(
            repository,
            gateway,
            claim_timeout_seconds=self.settings.REFUND_CLAIM_TIMEOUT_SECONDS,
        )

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------

    @_conflicts_as_results
    async def place_order(
        self, draft: OrderDraft, now: Optional[datetime] = None
    ) -> Result[PlacedOrder, OrderPipelineError]:
        now = now or utc_now()
        lines = merge_lines(draft.lines)

        pincode = str(draft.shipping_address.get("pincode", ""))
        if not is_valid_pincode(pincode):
            return Err(ValidationError("Invalid pincode", pincode=pincode))

        products = await self.repository.get_products(line.product_id for line in lines)
        coupon = None
        if draft.coupon_code:
            coupon = await self.repository.get_coupon(draft.coupon_code)

        quoted = self.pricing.quote(
            lines, products, coupon=coupon, coupon_code=draft.coupon_code, now=now
        )
        if isinstance(quoted, Err):
            return quoted
        quote = quoted.value

        order_id = uuid.uuid4()
        reserved = await self.ledger.reserve(lines, order_id=order_id)
        if isinstance(reserved, Err):
            return reserved

        order = self._build_order(order_id, draft, quote, reserved.value, now)
        try:
            await self.repository.add_order(order)
        except Exception:
            logger.exception(
                "Could not persist order %s; releasing its reservation",
                order.order_number,
            )
            await self.ledger.release(reserved.value)
            return Err(PersistenceFailed("Could not save order"))

        logger.info(
            "Order %s created for user %s (%s, %s)",
            order.order_number,
            draft.user_id,
            draft.payment_method.value,
            order.final_amount,
        )

        if draft.payment_method.is_online:
            return await self._open_payment(order, now)
        return await self._confirm_cod(order, now)

    async def _confirm_cod(self, order: Order, now: datetime):
        async with self.locks.hold(order.id):
            order.order_status = OrderStatus.CONFIRMED
            order.confirmed_at = now
            try:
                await self.repository.save_order(order)
            except Exception:
                logger.exception(
                    "Could not confirm COD order %s; releasing its reservation",
                    order.order_number,
                )
                await self.ledger.release(order.reservation_id)
                return Err(
                    PersistenceFailed(
                        "Could not confirm order", order_number=order.order_number
                    )
                )
            await self.ledger.commit(order.reservation_id)

        await self._notify(order, OrderEvent.CONFIRMED, previous=OrderStatus.PENDING)
        return Ok(PlacedOrder(order=order))

    async def _open_payment(self, order: Order, now: datetime):
        # Order is durable before the gateway knows about it, so callbacks can find it.
        try:
            intent = await self.gateway.create_intent(
                to_minor_units(order.final_amount),
                order.order_number,
                {"order_id": str(order.id), "user_id": order.user_id},
            )
        except (GatewayUnavailable, GatewayError) as e:
            logger.warning(
                "Payment intent failed for order %s: %s", order.order_number, e.message
            )
            e.details.update(order_id=str(order.id), order_number=order.order_number)
            return Err(e)

        async with self.locks.hold(order.id):
            order.payments.append(self._new_payment(order, intent, now))
            try:
                await self.repository.save_order(order)
            except ConcurrentModification:
                raise
            except Exception:
                logger.exception(
                    "Could not record payment attempt for order %s; releasing stock",
                    order.order_number,
                )
                await self.ledger.release(order.reservation_id)
                return Err(
                    PersistenceFailed(
                        "Could not record payment", order_number=order.order_number
                    )
                )

        return Ok(PlacedOrder(order=order, intent=intent))

    @_conflicts_as_results
    async def retry_payment(
        self, order_id: uuid.UUID, user_id: str, staff: bool = False
    ) -> Result[PlacedOrder, OrderPipelineError]:
        """New gateway intent for a PENDING online order; older attempts are superseded."""
        order = await self._visible_order(order_id, user_id, staff)
        if order is None:
            return Err(NotFound("Order not found"))
        if (
            order.order_status != OrderStatus.PENDING
            or not order.payment_method.is_online
            or order.payment_status == PaymentStatus.COMPLETED
        ):
            return Err(InvalidStateTransition(order.order_status, OrderStatus.CONFIRMED))

        try:
            intent = await self.gateway.create_intent(
                to_minor_units(order.final_amount),
                order.order_number,
                {"order_id": str(order.id), "user_id": order.user_id, "retry": "true"},
            )
        except (GatewayUnavailable, GatewayError) as e:
            logger.warning(
                "Payment retry failed for order %s: %s", order.order_number, e.message
            )
            return Err(e)

        async with self.locks.hold(order.id):
            order = await self.repository.get_order(order_id)
            if order.order_status != OrderStatus.PENDING:
                return Err(
                    InvalidStateTransition(order.order_status, OrderStatus.CONFIRMED)
                )
            now = utc_now()
            self._fail_open_attempts(order, "Superseded by retry", now)
            order.payment_status = PaymentStatus.PENDING
            order.payments.append(self._new_payment(order, intent, now))
            await self.repository.save_order(order)

        logger.info(
            "New payment attempt %s for order %s",
            intent.gateway_order_id,
            order.order_number,
        )
        return Ok(PlacedOrder(order=order, intent=intent))

    # ------------------------------------------------------------------
    # Gateway callbacks
    # ------------------------------------------------------------------

    @_conflicts_as_results
    async def confirm_payment(
        self, gateway_order_id: str, gateway_payment_id: str, signature: str
    ) -> Result[Order, OrderPipelineError]:
        if not self.gateway.verify_callback(gateway_order_id, gateway_payment_id, signature):
            logger.warning(
                "Rejected payment callback for %s: signature mismatch",
                gateway_order_id,
            )
            return Err(InvalidSignature(gateway_order_id))

        found = await self._find_for_callback(gateway_order_id)
        if found is None:
            return Err(NotFound(f"No order for payment {gateway_order_id}"))

        events: list[tuple[OrderEvent, Optional[OrderStatus]]] = []
        async with self.locks.hold(found.id):
            order = await self.repository.get_order(found.id)
            payment = order.payment_for(gateway_order_id)

            if payment.gateway_payment_id == gateway_payment_id and payment.status in (
                PaymentStatus.COMPLETED,
                PaymentStatus.REFUNDED,
            ):
                logger.info(
                    "Payment %s for order %s already applied",
                    gateway_payment_id,
                    order.order_number,
                )
                if order.order_status in (OrderStatus.CANCELLED, OrderStatus.REFUNDED):
                    return Err(
                        InvalidStateTransition(order.order_status, OrderStatus.CONFIRMED)
                    )
                return Ok(order)

            if payment.status == PaymentStatus.COMPLETED:
                return Err(
                    ValidationError(
                        "Payment attempt already settled by another payment",
                        gateway_order_id=gateway_order_id,
                    )
                )

            now = utc_now()
            already_paid = order.completed_payment
            payment.status = PaymentStatus.COMPLETED
            payment.gateway_payment_id = gateway_payment_id
            payment.gateway_signature = signature
            payment.failure_reason = None
            payment.paid_at = now
            payment.updated_at = now

            if order.order_status == OrderStatus.PENDING and already_paid is None:
                order.order_status = OrderStatus.CONFIRMED
                order.payment_status = PaymentStatus.COMPLETED
                order.confirmed_at = now
                self._fail_open_attempts(order, "Superseded by completed payment", now)
                await self.repository.save_order(order)
                await self.ledger.commit(order.reservation_id)
                events.append((OrderEvent.CONFIRMED, OrderStatus.PENDING))
                logger.info(
                    "Payment %s confirmed order %s",
                    gateway_payment_id,
                    order.order_number,
                )
                result: Result = Ok(order)
            else:
                result = await self._refund_stray_capture(order, payment, already_paid)
                if isinstance(result, Ok):
                    result = Err(
                        InvalidStateTransition(order.order_status, OrderStatus.CONFIRMED)
                    )
                    if already_paid is None:
                        events.append((OrderEvent.REFUNDED, None))
                else:
                    events.append((OrderEvent.REFUND_FAILED, None))

        for event, previous in events:
            await self._notify(order, event, previous=previous)
        return result

    async def _refund_stray_capture(
        self, order: Order, payment: Payment, already_paid: Optional[Payment]
    ):
        """Money arrived for an order that can no longer take it. Give it back."""
        logger.warning(
            "Payment %s captured for order %s in state %s; refunding",
            payment.gateway_payment_id,
            order.order_number,
            order.order_status.value,
        )
        if already_paid is None:
            # Late capture on a cancelled order: the order now owes this money back.
            order.payment_status = PaymentStatus.COMPLETED
            await self.repository.save_order(order)
            return await self.refunds.run(order, payment, reason="Late payment capture")
        await self.repository.save_order(order)
        return await self.refunds.run(
            order, payment, reason="Duplicate payment capture", settle_order=False
        )

    @_conflicts_as_results
    async def fail_payment(
        self,
        gateway_order_id: str,
        reason: str,
        gateway_payment_id: Optional[str] = None,
        user_id: Optional[str] = None,
        staff: bool = False,
    ) -> Result[Order, OrderPipelineError]:
        """Record a failed attempt. Cancels the order when it was the live attempt.

        With ``user_id`` set (a customer reporting from checkout) only that
        customer's orders are touched unless ``staff`` is true; other orders
        look like they do not exist.
        """
        found = await self._find_for_callback(gateway_order_id)
        if found is None or not (user_id is None or staff or found.user_id == user_id):
            return Err(NotFound(f"No order for payment {gateway_order_id}"))

        async with self.locks.hold(found.id):
            order = await self.repository.get_order(found.id)
            payment = order.payment_for(gateway_order_id)

            if payment.status == PaymentStatus.FAILED:
                return Ok(order)
            if payment.status in (PaymentStatus.COMPLETED, PaymentStatus.REFUNDED):
                return Err(InvalidStateTransition(payment.status, PaymentStatus.FAILED))

            now = utc_now()
            payment.status = PaymentStatus.FAILED
            payment.failure_reason = reason
            payment.updated_at = now
            if gateway_payment_id:
                payment.gateway_payment_id = gateway_payment_id

            live_attempt = order.latest_payment is payment
            cancelled = live_attempt and order.order_status == OrderStatus.PENDING
            if cancelled:
                order.order_status = OrderStatus.CANCELLED
                order.payment_status = PaymentStatus.FAILED
                order.cancelled_at = now
                order.append_note(f"Payment failed: {reason}")
            await self.repository.save_order(order)
            if cancelled:
                await self.ledger.release(order.reservation_id)

        logger.info(
            "Payment %s failed for order %s: %s%s",
            gateway_order_id,
            order.order_number,
            reason,
            " (order cancelled)" if cancelled else "",
        )
        if cancelled:
            await self._notify(
                order, OrderEvent.PAYMENT_FAILED, previous=OrderStatus.PENDING, message=reason
            )
        return Ok(order)

    async def _find_for_callback(self, gateway_order_id: str) -> Optional[Order]:
        """Look the order up, backing off while its creation may still be committing."""
        attempts = max(1, self.settings.CALLBACK_LOOKUP_ATTEMPTS)
        delay = self.settings.CALLBACK_BACKOFF_SECONDS
        for attempt in range(1, attempts + 1):
            order = await self.repository.find_order_by_gateway_order_id(gateway_order_id)
            if order is not None:
                return order
            if attempt < attempts:
                logger.info(
                    "Order for %s not found yet (attempt %d/%d); retrying in %.2fs",
                    gateway_order_id,
                    attempt,
                    attempts,
                    delay,
                )
                await asyncio.sleep(delay)
                delay = min(delay * 2, self.settings.CALLBACK_BACKOFF_MAX_SECONDS)

        logger.warning(
            "No order for gateway order %s after %d lookups", gateway_order_id, attempts
        )
        return None

    # ------------------------------------------------------------------
    # Customer / staff transitions
    # ------------------------------------------------------------------

    @_conflicts_as_results
    async def cancel(
        self,
        order_id: uuid.UUID,
        user_id: str,
        reason: str,
        staff: bool = False,
    ) -> Result[Order, OrderPipelineError]:
        """Cancel a PENDING/CONFIRMED order, return its stock and refund it if paid.

        A failed refund leaves the order CANCELLED and comes back as
        ``RefundFailed``; the cancellation is never undone.
        """
        refund_result = None
        async with self.locks.hold(order_id):
            order = await self._visible_order(order_id, user_id, staff)
            if order is None:
                return Err(NotFound("Order not found"))
            if order.order_status not in CANCELLABLE:
                return Err(InvalidStateTransition(order.order_status, OrderStatus.CANCELLED))
            if self.refunds.in_progress(order):
                return Err(
                    ConcurrentModification(
                        f"Refund for order {order.order_number} is already in progress"
                    )
                )

            previous = order.order_status
            now = utc_now()
            order.order_status = OrderStatus.CANCELLED
            order.cancelled_at = now
            actor = "customer" if order.user_id == user_id else "seller"
            order.append_note(f"Cancelled by {actor}. Reason: {reason}")
            self._fail_open_attempts(order, "Order cancelled", now)
            await self.repository.save_order(order)
            await self.ledger.revert(order.reservation_id)

            if order.payment_status == PaymentStatus.COMPLETED:
                try:
                    refund_result = await self.refunds.run(
                        order, order.completed_payment, reason=reason
                    )
                except ConcurrentModification as e:
                    refund_result = Err(e)

        logger.info(
            "Order %s cancelled by %s (was %s)", order.order_number, user_id, previous.value
        )
        await self._notify(order, OrderEvent.CANCELLED, previous=previous, message=reason)
        if refund_result is None:
            return Ok(order)
        if isinstance(refund_result, Err):
            if isinstance(refund_result.error, ConcurrentModification):
                # Another worker claimed the refund and will report it
                logger.info(
                    "Refund for cancelled order %s left to the worker holding its claim",
                    order.order_number,
                )
                return Ok(order)
            await self._notify(order, OrderEvent.REFUND_FAILED)
            return refund_result
        await self._notify(order, OrderEvent.REFUNDED)
        return Ok(order)

    @_conflicts_as_results
    async def refund(
        self, order_id: uuid.UUID, reason: str
    ) -> Result[Order, OrderPipelineError]:
        """Staff refund of a paid order.

        CONFIRMED orders move to REFUNDED, in the same save that records the
        refund, and then get their stock back. CANCELLED orders whose earlier
        refund failed are retried. Orders that already carry a refund id only
        have any unfinished transition or stock return completed.
        """
        async with self.locks.hold(order_id):
            order = await self.repository.get_order(order_id)
            if order is None:
                return Err(NotFound("Order not found"))
            if order.refund_id:
                await self._finish_refund(order, reason)
                return Ok(order)
            if order.payment_status != PaymentStatus.COMPLETED or order.order_status not in (
                OrderStatus.CONFIRMED,
                OrderStatus.CANCELLED,
            ):
                return Err(InvalidStateTransition(order.order_status, OrderStatus.REFUNDED))
            if self.refunds.in_progress(order):
                return Err(
                    ConcurrentModification(
                        f"Refund for order {order.order_number} is already in progress"
                    )
                )

            previous = order.order_status
            result = await self.refunds.run(
                order,
                order.completed_payment,
                reason=reason,
                order_status=(
                    OrderStatus.REFUNDED if previous == OrderStatus.CONFIRMED else None
                ),
            )
            if isinstance(result, Ok):
                await self.ledger.revert(order.reservation_id)

        if isinstance(result, Err):
            await self._notify(order, OrderEvent.REFUND_FAILED)
            return result
        await self._notify(order, OrderEvent.REFUNDED, previous=previous, message=reason)
        return Ok(order)

    async def _finish_refund(self, order: Order, reason: str) -> None:
        """Complete what an interrupted refund left behind. Safe to repeat."""
        if order.order_status == OrderStatus.CONFIRMED:
            order.order_status = OrderStatus.REFUNDED
            order.append_note(f"Refunded: {reason}")
            await self.repository.save_order(order)
            logger.info(
                "Order %s moved to refunded for recorded refund %s",
                order.order_number,
                order.refund_id,
            )
        if order.order_status in (OrderStatus.REFUNDED, OrderStatus.CANCELLED):
            await self.ledger.revert(order.reservation_id)

    @_conflicts_as_results
    async def advance(
        self,
        order_id: uuid.UUID,
        status: OrderStatus,
        tracking_number: Optional[str] = None,
    ) -> Result[Order, OrderPipelineError]:
        """Move a confirmed order forward through fulfilment (steps may be skipped)."""
        async with self.locks.hold(order_id):
            order = await self.repository.get_order(order_id)
            if order is None:
                return Err(NotFound("Order not found"))

            previous = order.order_status
            if (
                previous not in FULFILMENT_SEQUENCE
                or status not in FULFILMENT_SEQUENCE
                or FULFILMENT_SEQUENCE.index(status) <= FULFILMENT_SEQUENCE.index(previous)
            ):
                return Err(InvalidStateTransition(previous, status))

            order.order_status = status
            if tracking_number:
                order.tracking_number = tracking_number
            if status == OrderStatus.DELIVERED:
                order.delivered_at = utc_now()
                if order.payment_method == PaymentMethod.COD:
                    order.payment_status = PaymentStatus.COMPLETED
            await self.repository.save_order(order)

        logger.info(
            "Order %s moved %s -> %s", order.order_number, previous.value, status.value
        )
        await self._notify(order, OrderEvent.STATUS_CHANGED, previous=previous)
        return Ok(order)

    async def expire_stale_orders(self, now: Optional[datetime] = None) -> int:
        """Cancel PENDING unpaid orders older than the payment window; return the count."""
        cutoff = minutes_ago(self.settings.PENDING_ORDER_TIMEOUT_MINUTES, now)
        stale = await self.repository.list_stale_pending_orders(
            cutoff, limit=self.settings.EXPIRY_BATCH_SIZE
        )

        expired = 0
        for candidate in stale:
            try:
                async with self.locks.hold(candidate.id):
                    order = await self.repository.get_order(candidate.id)
                    if (
                        order.order_status != OrderStatus.PENDING
                        or order.payment_status == PaymentStatus.COMPLETED
                    ):
                        continue
                    stamp = utc_now()
                    order.order_status = OrderStatus.CANCELLED
                    order.cancelled_at = stamp
                    order.append_note("Payment window expired")
                    self._fail_open_attempts(order, "Payment window expired", stamp)
                    await self.repository.save_order(order)
                    await self.ledger.release(order.reservation_id)
            except ConcurrentModification:
                logger.info("Order %s changed while expiring; skipped", candidate.id)
                continue

            expired += 1
            await self._notify(
                order,
                OrderEvent.CANCELLED,
                previous=OrderStatus.PENDING,
                message="Payment window expired",
            )

        if expired:
            logger.info("Expired %d abandoned order(s) older than %s", expired, cutoff)
        return expired

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_order(
        self, order_id: uuid.UUID, user_id: str, staff: bool = False
    ) -> Result[Order, NotFound]:
        order = await self._visible_order(order_id, user_id, staff)
        if order is None:
            return Err(NotFound("Order not found"))
        return Ok(order)

    async def list_orders(
        self,
        user_id: str,
        status: Optional[OrderStatus] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Result[OrderPage, ValidationError]:
        if page < 1 or not 1 <= limit <= 100:
            return Err(ValidationError("page must be >= 1 and limit between 1 and 100"))
        orders, total = await self.repository.list_orders(
            user_id, status=status, offset=(page - 1) * limit, limit=limit
        )
        return Ok(OrderPage(orders=orders, total=total, page=page, limit=limit))

    async def tracking(
        self, order_id: uuid.UUID, user_id: str, staff: bool = False
    ) -> Result[TrackingView, NotFound]:
        order = await self._visible_order(order_id, user_id, staff)
        if order is None:
            return Err(NotFound("Order not found"))
        return Ok(
            TrackingView(
                order_number=order.order_number,
                order_status=order.order_status,
                payment_status=order.payment_status,
                status_message=status_message(order.order_status),
                tracking_number=order.tracking_number,
                estimated_delivery=order.estimated_delivery,
                timeline=tracking_timeline(order),
            )
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _visible_order(
        self, order_id: uuid.UUID, user_id: str, staff: bool
    ) -> Optional[Order]:
        order = await self.repository.get_order(order_id)
        if order is None or not (staff or order.user_id == user_id):
            return None
        return order

    def _build_order(
        self,
        order_id: uuid.UUID,
        draft: OrderDraft,
        quote: PriceQuote,
        reservation_id: uuid.UUID,
        now: datetime,
    ) -> Order:
        shipping = self._address(draft.user_id, draft.shipping_address, AddressType.SHIPPING, now)
        billing = self._address(
            draft.user_id,
            draft.billing_address or draft.shipping_address,
            AddressType.BILLING,
            now,
        )
        return Order(
            id=order_id,
            order_number=Order.generate_order_number(),
            user_id=draft.user_id,
            shipping_address_id=shipping.id,
            shipping_address=shipping,
            billing_address_id=billing.id,
            billing_address=billing,
            subtotal=quote.subtotal,
            discount=quote.discount,
            shipping_cost=quote.shipping_cost,
            tax=quote.tax,
            final_amount=quote.final_amount,
            coupon_code=quote.coupon_code,
            order_status=OrderStatus.PENDING,
            payment_status=PaymentStatus.PENDING,
            payment_method=draft.payment_method,
            reservation_id=reservation_id,
            estimated_delivery=estimate_delivery(shipping.pincode, now),
            notes=draft.notes,
            created_at=now,
            updated_at=now,
            items=[
                OrderItem(
                    id=uuid.uuid4(),
                    order_id=order_id,
                    product_id=line.product_id,
                    variant_id=line.variant_id,
                    product_name=line.product_name,
                    price=line.price,
                    quantity=line.quantity,
                )
                for line in quote.lines
            ],
            payments=[],
        )

    @staticmethod
    def _address(
        user_id: str, details: Mapping[str, Any], address_type: AddressType, now: datetime
    ) -> OrderAddress:
        return OrderAddress(
            id=uuid.uuid4(),
            user_id=user_id,
            address_type=address_type,
            created_at=now,
            **dict(details),
        )

    def _new_payment(self, order: Order, intent: GatewayIntent, now: datetime) -> Payment:
        return Payment(
            id=uuid.uuid4(),
            order_id=order.id,
            amount=order.final_amount,
            currency=intent.currency,
            method=order.payment_method,
            status=PaymentStatus.PENDING,
            gateway_order_id=intent.gateway_order_id,
            created_at=now,
            updated_at=now,
        )

    @staticmethod
    def _fail_open_attempts(order: Order, reason: str, now: datetime) -> None:
        for payment in order.payments:
            if payment.status == PaymentStatus.PENDING:
                payment.status = PaymentStatus.FAILED
                payment.failure_reason = reason
                payment.updated_at = now

    async def _notify(
        self,
        order: Order,
        event: OrderEvent,
        previous: Optional[OrderStatus] = None,
        message: Optional[str] = None,
    ) -> None:
        await self.dispatcher.notify(
            order.user_id,
            OrderNotification(
                event=event,
                order_id=str(order.id),
                order_number=order.order_number,
                order_status=order.order_status.value,
                payment_status=order.payment_status.value,
                final_amount=str(order.final_amount),
                previous_status=previous.value if previous else None,
                message=message or status_message(order.order_status),
            ),
        )
