"""Orders Service models package."""

from services.orders_service.models.catalog import Coupon, Product
from services.orders_service.models.commerce import (
    Order,
    OrderAddress,
    OrderItem,
    Payment,
)
from services.orders_service.models.enums import (
    AddressType,
    DiscountType,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    ReservationStatus,
)
from services.orders_service.models.inventory import ReservationLine, StockReservation

__all__ = [
    "AddressType",
    "Coupon",
    "DiscountType",
    "Order",
    "OrderAddress",
    "OrderItem",
    "OrderStatus",
    "Payment",
    "PaymentMethod",
    "PaymentStatus",
    "Product",
    "ReservationLine",
    "ReservationStatus",
    "StockReservation",
]
