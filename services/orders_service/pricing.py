"""Pricing calculator: cart lines -> subtotal, shipping, tax, discount, final amount.

The stock check here is advisory. Price and stock can change between quoting
and reserving; the inventory ledger's atomic reservation is authoritative.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Mapping, Optional

from libs.common.config import Settings, get_settings
from libs.common.currency import round_money
from libs.common.datetime_utils import ensure_aware, utc_now
from services.orders_service.errors import ValidationError
from services.orders_service.models import Coupon, DiscountType, Product
from services.orders_service.results import Err, Ok, Result

ZERO = Decimal("0.00")


@dataclass(frozen=True)
class CartLine:
    product_id: uuid.UUID
    quantity: int
    variant_id: Optional[uuid.UUID] = None


@dataclass(frozen=True)
class PricedLine:
    product_id: uuid.UUID
    variant_id: Optional[uuid.UUID]
    product_name: str
    price: Decimal
    quantity: int

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity


@dataclass(frozen=True)
class PriceQuote:
    lines: tuple[PricedLine, ...]
    subtotal: Decimal
    shipping_cost: Decimal
    tax: Decimal
    discount: Decimal
    final_amount: Decimal
    coupon_code: Optional[str] = None


def merge_lines(lines: Iterable[CartLine]) -> list[CartLine]:
    """Collapse repeated (product, variant) lines, keeping first-seen order."""
    merged: dict[tuple, int] = {}
    for line in lines:
        key = (line.product_id, line.variant_id)
        merged[key] = merged.get(key, 0) + line.quantity
    return [
        CartLine(product_id=product_id, variant_id=variant_id, quantity=quantity)
        for (product_id, variant_id), quantity in merged.items()
    ]


class PricingCalculator:
    def __init__(
        self,
        free_shipping_threshold: Decimal = Decimal("499"),
        flat_shipping_rate: Decimal = Decimal("50"),
        gst_rate: Decimal = Decimal("0.18"),
    ):
        self.free_shipping_threshold = Decimal(free_shipping_threshold)
        self.flat_shipping_rate = round_money(flat_shipping_rate)
        self.gst_rate = Decimal(gst_rate)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "PricingCalculator":
        settings = settings or get_settings()
        return cls(
            free_shipping_threshold=settings.FREE_SHIPPING_THRESHOLD,
            flat_shipping_rate=settings.FLAT_SHIPPING_RATE,
            gst_rate=settings.GST_RATE,
        )

    def shipping_for(self, subtotal: Decimal) -> Decimal:
        if subtotal >= self.free_shipping_threshold:
            return ZERO
        return self.flat_shipping_rate

    def tax_for(self, subtotal: Decimal) -> Decimal:
        return round_money(subtotal * self.gst_rate)

    def quote(
        self,
        lines: Iterable[CartLine],
        products: Mapping[uuid.UUID, Product],
        coupon: Optional[Coupon] = None,
        coupon_code: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Result[PriceQuote, ValidationError]:
        """Price a cart against current product snapshots.

        ``coupon_code`` is the code the customer typed; ``coupon`` is what the
        lookup found for it (``None`` when unknown).
        """
        lines = merge_lines(lines)
        if not lines:
            return Err(ValidationError("Cart is empty"))

        # Stock is per product, so variants of one product share it.
        requested: dict[uuid.UUID, int] = {}
        priced: list[PricedLine] = []
        for line in lines:
            if line.quantity <= 0:
                return Err(
                    ValidationError(
                        f"Invalid quantity for product {line.product_id}",
                        product_id=str(line.product_id),
                    )
                )
            product = products.get(line.product_id)
            if product is None or not product.is_active:
                return Err(
                    ValidationError(
                        f"Product {line.product_id} is not available",
                        product_id=str(line.product_id),
                    )
                )
            requested[line.product_id] = requested.get(line.product_id, 0) + line.quantity
            if product.stock < requested[line.product_id]:
                return Err(
                    ValidationError(
                        f"Insufficient stock for {product.name}. Available: {product.stock}",
                        product_id=str(product.id),
                        available=product.stock,
                    )
                )
            priced.append(
                PricedLine(
                    product_id=product.id,
                    variant_id=line.variant_id,
                    product_name=product.name,
                    price=round_money(product.price),
                    quantity=line.quantity,
                )
            )

        subtotal = round_money(sum((p.line_total for p in priced), ZERO))
        shipping_cost = self.shipping_for(subtotal)
        tax = self.tax_for(subtotal)

        discount = ZERO
        if coupon_code:
            discount_result = self.coupon_discount(coupon, coupon_code, subtotal, now)
            if isinstance(discount_result, Err):
                return discount_result
            discount = discount_result.value

        return Ok(
            PriceQuote(
                lines=tuple(priced),
                subtotal=subtotal,
                shipping_cost=shipping_cost,
                tax=tax,
                discount=discount,
                final_amount=subtotal + shipping_cost + tax - discount,
                coupon_code=coupon.code if coupon and discount > ZERO else None,
            )
        )

    def coupon_discount(
        self,
        coupon: Optional[Coupon],
        coupon_code: str,
        subtotal: Decimal,
        now: Optional[datetime] = None,
    ) -> Result[Decimal, ValidationError]:
        now = now or utc_now()
        if coupon is None or not coupon.is_active:
            return Err(ValidationError(f"Coupon {coupon_code} is not valid"))
        if coupon.valid_from and ensure_aware(coupon.valid_from) > now:
            return Err(ValidationError(f"Coupon {coupon.code} is not active yet"))
        if coupon.valid_to and ensure_aware(coupon.valid_to) < now:
            return Err(ValidationError(f"Coupon {coupon.code} has expired"))
        if subtotal < (coupon.min_order_amount or ZERO):
            return Err(
                ValidationError(
                    f"Coupon {coupon.code} requires a minimum order of {coupon.min_order_amount}",
                    min_order_amount=str(coupon.min_order_amount),
                )
            )

        if coupon.discount_type == DiscountType.PERCENTAGE:
            discount = round_money(subtotal * Decimal(coupon.discount_value) / 100)
            if coupon.max_discount_amount is not None:
                discount = min(discount, round_money(coupon.max_discount_amount))
        else:
            discount = round_money(coupon.discount_value)

        return Ok(max(ZERO, min(discount, subtotal)))
