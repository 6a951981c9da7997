"""Customer order routes: checkout, order history, tracking, cancellation."""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from libs.auth.dependencies import get_current_user
from libs.auth.models import AuthUser
from libs.common.config import get_settings
from services.orders_service.dependencies import get_state_machine
from services.orders_service.models import OrderStatus
from services.orders_service.pricing import CartLine
from services.orders_service.schemas import (
    CancelOrderRequest,
    CreateOrderRequest,
    CreateOrderResponse,
    OrderListResponse,
    OrderResponse,
    PaginationResponse,
    PaymentIntentResponse,
    PrefillResponse,
    TrackingResponse,
)
from services.orders_service.state_machine import (
    OrderDraft,
    OrderStateMachine,
    PlacedOrder,
)

router = APIRouter(prefix="/orders", tags=["orders"])


def _payment_block(placed: PlacedOrder, machine: OrderStateMachine, user: AuthUser):
    order, intent = placed.order, placed.intent
    address = order.shipping_address
    return PaymentIntentResponse(
        gateway_order_id=intent.gateway_order_id,
        amount=intent.amount_minor,
        currency=intent.currency,
        key=machine.gateway.key_id,
        name=get_settings().STORE_NAME,
        description=f"Order {order.order_number}",
        prefill=PrefillResponse(
            name=address.full_name,
            email=address.email or user.email,
            contact=address.phone,
        ),
    )


# ============================================================================
# CHECKOUT
# ============================================================================


@router.post("", response_model=CreateOrderResponse, status_code=status.HTTP_201_CREATED)
async def create_order(
    request: CreateOrderRequest,
    current_user: AuthUser = Depends(get_current_user),
    machine: OrderStateMachine = Depends(get_state_machine),
):
    """Price the cart, reserve stock and open the order.

    COD orders come back CONFIRMED. Online orders come back PENDING with the
    gateway details the client needs to collect payment.
    """
    draft = OrderDraft(
        user_id=current_user.user_id,
        lines=[
            CartLine(
                product_id=item.product_id,
                quantity=item.quantity,
                variant_id=item.variant_id,
            )
            for item in request.items
        ],
        shipping_address=request.shipping_address.model_dump(),
        billing_address=(
            request.billing_address.model_dump() if request.billing_address else None
        ),
        payment_method=request.payment_method,
        coupon_code=request.coupon_code,
        notes=request.notes,
    )
    placed = (await machine.place_order(draft)).unwrap()

    if placed.intent is None:
        return CreateOrderResponse(
            order=OrderResponse.model_validate(placed.order),
            message="Order placed successfully",
        )
    return CreateOrderResponse(
        order=OrderResponse.model_validate(placed.order),
        payment=_payment_block(placed, machine, current_user),
        message="Order created. Complete payment to confirm.",
    )


@router.post("/{order_id}/payment/retry", response_model=CreateOrderResponse)
async def retry_payment(
    order_id: uuid.UUID,
    current_user: AuthUser = Depends(get_current_user),
    machine: OrderStateMachine = Depends(get_state_machine),
):
    """Open a fresh payment attempt for an order still waiting on payment."""
    placed = (
        await machine.retry_payment(
            order_id, current_user.user_id, staff=current_user.is_staff
        )
    ).unwrap()
    return CreateOrderResponse(
        order=OrderResponse.model_validate(placed.order),
        payment=_payment_block(placed, machine, current_user),
        message="Payment attempt created",
    )


# ============================================================================
# ORDER HISTORY
# ============================================================================


@router.get("", response_model=OrderListResponse)
async def list_my_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status_filter: Optional[OrderStatus] = Query(None, alias="status"),
    current_user: AuthUser = Depends(get_current_user),
    machine: OrderStateMachine = Depends(get_state_machine),
):
    result = (
        await machine.list_orders(
            current_user.user_id, status=status_filter, page=page, limit=limit
        )
    ).unwrap()
    return OrderListResponse(
        orders=[OrderResponse.model_validate(order) for order in result.orders],
        pagination=PaginationResponse(
            current_page=result.page,
            total_pages=result.total_pages,
            total_orders=result.total,
            has_next=result.has_next,
            has_prev=result.has_prev,
        ),
    )


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: uuid.UUID,
    current_user: AuthUser = Depends(get_current_user),
    machine: OrderStateMachine = Depends(get_state_machine),
):
    order = (
        await machine.get_order(order_id, current_user.user_id, staff=current_user.is_staff)
    ).unwrap()
    return OrderResponse.model_validate(order)


@router.get("/{order_id}/tracking", response_model=TrackingResponse)
async def track_order(
    order_id: uuid.UUID,
    current_user: AuthUser = Depends(get_current_user),
    machine: OrderStateMachine = Depends(get_state_machine),
):
    view = (
        await machine.tracking(order_id, current_user.user_id, staff=current_user.is_staff)
    ).unwrap()
    return TrackingResponse.model_validate(view)


@router.post("/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(
    order_id: uuid.UUID,
    request: CancelOrderRequest,
    current_user: AuthUser = Depends(get_current_user),
    machine: OrderStateMachine = Depends(get_state_machine),
):
    """Cancel an order; paid orders are refunded."""
    order = (
        await machine.cancel(
            order_id,
            current_user.user_id,
            request.reason,
            staff=current_user.is_staff,
        )
    ).unwrap()
    return OrderResponse.model_validate(order)
