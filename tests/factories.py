"""
Factories for valid test data.

Model factories return SQLAlchemy instances with every column the pipeline
reads filled in. Override any field via kwargs.

Usage:
    product = ProductFactory.create(price=Decimal("100"), stock=5)
    repo.add_product(product)
"""

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _uuid() -> uuid.UUID:
    return uuid.uuid4()


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


class ProductFactory:
    @staticmethod
    def create(**overrides):
        from services.orders_service.models import Product

        defaults = {
            "id": _uuid(),
            "name": f"Handloom Saree {uuid.uuid4().hex[:4]}",
            "price": Decimal("100.00"),
            "stock": 5,
            "is_active": True,
            "updated_at": _now(),
        }
        defaults.update(overrides)
        return Product(**defaults)


class CouponFactory:
    @staticmethod
    def create(**overrides):
        from services.orders_service.models import Coupon, DiscountType

        defaults = {
            "id": _uuid(),
            "code": f"SAVE{uuid.uuid4().hex[:4].upper()}",
            "discount_type": DiscountType.PERCENTAGE,
            "discount_value": Decimal("10"),
            "max_discount_amount": None,
            "min_order_amount": Decimal("0"),
            "valid_from": _now() - timedelta(days=1),
            "valid_to": _now() + timedelta(days=30),
            "is_active": True,
        }
        defaults.update(overrides)
        return Coupon(**defaults)


# ---------------------------------------------------------------------------
# Checkout payloads
# ---------------------------------------------------------------------------


class AddressFactory:
    @staticmethod
    def create(**overrides) -> dict:
        defaults = {
            "first_name": "Asha",
            "last_name": "Rao",
            "email": "asha@example.com",
            "phone": "9876543210",
            "address_line1": "12 MG Road",
            "address_line2": None,
            "city": "Bengaluru",
            "state": "Karnataka",
            "pincode": "560001",
            "country": "India",
        }
        defaults.update(overrides)
        return defaults


class DraftFactory:
    @staticmethod
    def create(products_and_quantities, **overrides):
        """Build an OrderDraft from ``[(product, qty), ...]``."""
        from services.orders_service.models import PaymentMethod
        from services.orders_service.pricing import CartLine
        from services.orders_service.state_machine import OrderDraft

        defaults = {
            "user_id": "customer-1",
            "lines": [
                CartLine(product_id=product.id, quantity=quantity)
                for product, quantity in products_and_quantities
            ],
            "shipping_address": AddressFactory.create(),
            "payment_method": PaymentMethod.COD,
        }
        defaults.update(overrides)
        return OrderDraft(**defaults)
