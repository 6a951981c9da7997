"""Gateway callback routes relayed by the checkout client."""

from fastapi import APIRouter, Depends
from libs.auth.dependencies import get_current_user
from libs.auth.models import AuthUser
from services.orders_service.dependencies import get_state_machine
from services.orders_service.schemas import (
    OrderResponse,
    PaymentFailureRequest,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
)
from services.orders_service.state_machine import OrderStateMachine

router = APIRouter(prefix="/orders/payment", tags=["payments"])


@router.post("/verify", response_model=VerifyPaymentResponse)
async def verify_payment(
    request: VerifyPaymentRequest,
    current_user: AuthUser = Depends(get_current_user),
    machine: OrderStateMachine = Depends(get_state_machine),
):
    """Verify the checkout signature and confirm the order. Safe to replay."""
    order = (
        await machine.confirm_payment(
            request.gateway_order_id,
            request.gateway_payment_id,
            request.signature,
        )
    ).unwrap()
    return VerifyPaymentResponse(
        message="Payment verified successfully",
        order=OrderResponse.model_validate(order),
    )


@router.post("/failure", response_model=VerifyPaymentResponse)
async def record_payment_failure(
    request: PaymentFailureRequest,
    current_user: AuthUser = Depends(get_current_user),
    machine: OrderStateMachine = Depends(get_state_machine),
):
    order = (
        await machine.fail_payment(
            request.gateway_order_id,
            request.reason,
            gateway_payment_id=request.gateway_payment_id,
            user_id=current_user.user_id,
            staff=current_user.is_staff,
        )
    ).unwrap()
    return VerifyPaymentResponse(
        success=False,
        message="Payment failure recorded",
        order=OrderResponse.model_validate(order),
    )
