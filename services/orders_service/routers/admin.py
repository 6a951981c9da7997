"""Seller/admin order management: fulfilment status and refunds."""

import uuid

from fastapi import APIRouter, Depends
from libs.auth.dependencies import require_staff
from libs.auth.models import AuthUser
from services.orders_service.dependencies import get_state_machine
from services.orders_service.models import OrderStatus
from services.orders_service.schemas import (
    OrderResponse,
    RefundOrderRequest,
    UpdateOrderStatusRequest,
)
from services.orders_service.state_machine import OrderStateMachine

router = APIRouter(prefix="/orders", tags=["admin-orders"])


@router.put("/{order_id}/status", response_model=OrderResponse)
async def update_order_status(
    order_id: uuid.UUID,
    request: UpdateOrderStatusRequest,
    current_user: AuthUser = Depends(require_staff),
    machine: OrderStateMachine = Depends(get_state_machine),
):
    """Move an order forward (CONFIRMED -> PROCESSING -> SHIPPED -> DELIVERED).

    CANCELLED is accepted too and runs the normal cancellation path.
    """
    if request.status == OrderStatus.CANCELLED:
        result = await machine.cancel(
            order_id,
            current_user.user_id,
            request.reason or "Cancelled by seller",
            staff=True,
        )
    else:
        result = await machine.advance(
            order_id, request.status, tracking_number=request.tracking_number
        )
    return OrderResponse.model_validate(result.unwrap())


@router.post("/{order_id}/refund", response_model=OrderResponse)
async def refund_order(
    order_id: uuid.UUID,
    request: RefundOrderRequest,
    current_user: AuthUser = Depends(require_staff),
    machine: OrderStateMachine = Depends(get_state_machine),
):
    """Refund a paid order in full, or retry a refund that failed earlier."""
    order = (await machine.refund(order_id, request.reason)).unwrap()
    return OrderResponse.model_validate(order)
