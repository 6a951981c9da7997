"""Pydantic schemas for the orders service."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from services.orders_service.models import OrderStatus, PaymentMethod, PaymentStatus
from services.orders_service.tracking import is_valid_pincode

# Request bodies reject unknown fields outright.
_STRICT = ConfigDict(extra="forbid")


# ============================================================================
# CHECKOUT
# ============================================================================


class CartItemIn(BaseModel):
    model_config = _STRICT

    product_id: uuid.UUID
    variant_id: Optional[uuid.UUID] = None
    quantity: int = Field(..., ge=1, le=100)


class AddressIn(BaseModel):
    model_config = _STRICT

    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: Optional[EmailStr] = None
    phone: str = Field(..., min_length=10, max_length=20)
    address_line1: str = Field(..., min_length=1, max_length=255)
    address_line2: Optional[str] = Field(None, max_length=255)
    city: str = Field(..., min_length=1, max_length=100)
    state: str = Field(..., min_length=1, max_length=100)
    pincode: str
    country: str = Field("India", max_length=100)

    @field_validator("pincode")
    @classmethod
    def validate_pincode(cls, value: str) -> str:
        value = value.strip()
        if not is_valid_pincode(value):
            raise ValueError("pincode must be a 6-digit Indian postal code")
        return value


class CreateOrderRequest(BaseModel):
    model_config = _STRICT

    items: list[CartItemIn] = Field(..., min_length=1)
    shipping_address: AddressIn
    billing_address: Optional[AddressIn] = None
    payment_method: PaymentMethod
    coupon_code: Optional[str] = Field(None, max_length=50)
    notes: Optional[str] = Field(None, max_length=1000)


class VerifyPaymentRequest(BaseModel):
    model_config = _STRICT

    gateway_order_id: str = Field(..., min_length=1, max_length=100)
    gateway_payment_id: str = Field(..., min_length=1, max_length=100)
    signature: str = Field(..., min_length=1, max_length=255)


class PaymentFailureRequest(BaseModel):
    model_config = _STRICT

    gateway_order_id: str = Field(..., min_length=1, max_length=100)
    gateway_payment_id: Optional[str] = Field(None, max_length=100)
    reason: str = Field("Payment failed", max_length=500)


class CancelOrderRequest(BaseModel):
    model_config = _STRICT

    reason: str = Field(..., min_length=1, max_length=500)


class RefundOrderRequest(BaseModel):
    model_config = _STRICT

    reason: str = Field("Refund requested", min_length=1, max_length=500)


class UpdateOrderStatusRequest(BaseModel):
    model_config = _STRICT

    status: OrderStatus
    tracking_number: Optional[str] = Field(None, max_length=100)
    reason: Optional[str] = Field(None, max_length=500)


# ============================================================================
# RESPONSES
# ============================================================================


class AddressResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    first_name: str
    last_name: str
    email: Optional[str] = None
    phone: str
    address_line1: str
    address_line2: Optional[str] = None
    city: str
    state: str
    pincode: str
    country: str


class OrderItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    product_id: uuid.UUID
    variant_id: Optional[uuid.UUID] = None
    product_name: str
    price: Decimal
    quantity: int
    line_total: Decimal


class PaymentAttemptResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    gateway_order_id: str
    gateway_payment_id: Optional[str] = None
    amount: Decimal
    currency: str
    status: PaymentStatus
    failure_reason: Optional[str] = None
    paid_at: Optional[datetime] = None
    created_at: datetime


class OrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    order_number: str
    user_id: str
    order_status: OrderStatus
    payment_status: PaymentStatus
    payment_method: PaymentMethod

    subtotal: Decimal
    discount: Decimal
    shipping_cost: Decimal
    tax: Decimal
    final_amount: Decimal
    coupon_code: Optional[str] = None

    tracking_number: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    refund_id: Optional[str] = None
    notes: Optional[str] = None

    items: list[OrderItemResponse] = []
    payments: list[PaymentAttemptResponse] = []
    shipping_address: Optional[AddressResponse] = None

    confirmed_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    created_at: datetime


class PrefillResponse(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    contact: Optional[str] = None


class PaymentIntentResponse(BaseModel):
    """What the client needs to open the gateway checkout."""

    gateway_order_id: str
    amount: int  # minor units
    currency: str
    key: Optional[str] = None
    name: str
    description: str
    prefill: PrefillResponse


class CreateOrderResponse(BaseModel):
    order: OrderResponse
    payment: Optional[PaymentIntentResponse] = None
    message: str


class VerifyPaymentResponse(BaseModel):
    success: bool = True
    message: str
    order: OrderResponse


class PaginationResponse(BaseModel):
    current_page: int
    total_pages: int
    total_orders: int
    has_next: bool
    has_prev: bool


class OrderListResponse(BaseModel):
    orders: list[OrderResponse]
    pagination: PaginationResponse


class TimelineStep(BaseModel):
    status: OrderStatus
    completed: bool
    timestamp: Optional[datetime] = None


class TrackingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    order_number: str
    order_status: OrderStatus
    payment_status: PaymentStatus
    status_message: str
    tracking_number: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    timeline: list[TimelineStep]
