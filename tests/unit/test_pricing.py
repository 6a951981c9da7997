"""Unit tests for the pricing calculator."""

from datetime import timedelta
from decimal import Decimal

import pytest
from libs.common.datetime_utils import utc_now
from services.orders_service.errors import ValidationError
from services.orders_service.models import DiscountType
from services.orders_service.pricing import CartLine, PricingCalculator, merge_lines
from services.orders_service.results import Err, Ok
from tests.factories import CouponFactory, ProductFactory


@pytest.fixture
def calculator():
    return PricingCalculator(
        free_shipping_threshold=Decimal("499"),
        flat_shipping_rate=Decimal("50"),
        gst_rate=Decimal("0.18"),
    )


def _catalog(*products):
    return {product.id: product for product in products}


def _assert_balanced(quote):
    assert quote.final_amount == (
        quote.subtotal + quote.shipping_cost + quote.tax - quote.discount
    )
    assert quote.discount <= quote.subtotal


# ---------------------------------------------------------------------------
# Totals
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_small_cart_pays_flat_shipping_and_gst(calculator):
    product = ProductFactory.create(price=Decimal("100"), stock=5)

    result = calculator.quote([CartLine(product.id, 2)], _catalog(product))

    assert isinstance(result, Ok)
    quote = result.value
    assert quote.subtotal == Decimal("200.00")
    assert quote.shipping_cost == Decimal("50.00")
    assert quote.tax == Decimal("36.00")
    assert quote.discount == Decimal("0.00")
    assert quote.final_amount == Decimal("286.00")
    _assert_balanced(quote)


@pytest.mark.unit
def test_shipping_is_free_at_threshold(calculator):
    product = ProductFactory.create(price=Decimal("499"), stock=5)

    quote = calculator.quote([CartLine(product.id, 1)], _catalog(product)).unwrap()

    assert quote.shipping_cost == Decimal("0.00")
    assert quote.final_amount == Decimal("588.82")


@pytest.mark.unit
def test_tax_rounds_half_up(calculator):
    product = ProductFactory.create(price=Decimal("10.05"), stock=5)

    quote = calculator.quote([CartLine(product.id, 1)], _catalog(product)).unwrap()

    # 10.05 * 0.18 = 1.809
    assert quote.tax == Decimal("1.81")
    _assert_balanced(quote)


@pytest.mark.unit
def test_repeated_lines_are_merged():
    product_id = ProductFactory.create().id

    merged = merge_lines([CartLine(product_id, 1), CartLine(product_id, 2)])

    assert merged == [CartLine(product_id, 3)]


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_empty_cart_is_rejected(calculator):
    result = calculator.quote([], {})

    assert isinstance(result, Err)
    assert isinstance(result.error, ValidationError)


@pytest.mark.unit
def test_inactive_product_is_rejected(calculator):
    product = ProductFactory.create(is_active=False)

    result = calculator.quote([CartLine(product.id, 1)], _catalog(product))

    assert isinstance(result, Err)
    assert result.error.details["product_id"] == str(product.id)


@pytest.mark.unit
def test_unknown_product_is_rejected(calculator):
    product = ProductFactory.create()

    result = calculator.quote([CartLine(product.id, 1)], {})

    assert isinstance(result, Err)
    assert "not available" in result.error.message


@pytest.mark.unit
def test_quantity_above_stock_is_rejected_across_lines(calculator):
    product = ProductFactory.create(stock=5)

    result = calculator.quote(
        [CartLine(product.id, 3), CartLine(product.id, 3)], _catalog(product)
    )

    assert isinstance(result, Err)
    assert result.error.details["available"] == 5


@pytest.mark.unit
def test_non_positive_quantity_is_rejected(calculator):
    product = ProductFactory.create()

    result = calculator.quote([CartLine(product.id, 0)], _catalog(product))

    assert isinstance(result, Err)


# ---------------------------------------------------------------------------
# Coupons
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_percentage_coupon_is_capped(calculator):
    product = ProductFactory.create(price=Decimal("1000"), stock=5)
    coupon = CouponFactory.create(
        discount_type=DiscountType.PERCENTAGE,
        discount_value=Decimal("20"),
        max_discount_amount=Decimal("150"),
    )

    quote = calculator.quote(
        [CartLine(product.id, 1)],
        _catalog(product),
        coupon=coupon,
        coupon_code=coupon.code,
    ).unwrap()

    assert quote.discount == Decimal("150.00")
    assert quote.coupon_code == coupon.code
    _assert_balanced(quote)


@pytest.mark.unit
def test_fixed_coupon_never_exceeds_subtotal(calculator):
    product = ProductFactory.create(price=Decimal("100"), stock=5)
    coupon = CouponFactory.create(
        discount_type=DiscountType.FIXED, discount_value=Decimal("500")
    )

    quote = calculator.quote(
        [CartLine(product.id, 2)],
        _catalog(product),
        coupon=coupon,
        coupon_code=coupon.code,
    ).unwrap()

    assert quote.discount == Decimal("200.00")
    assert quote.final_amount == Decimal("86.00")
    _assert_balanced(quote)


@pytest.mark.unit
def test_coupon_below_minimum_order_is_rejected(calculator):
    product = ProductFactory.create(price=Decimal("100"), stock=5)
    coupon = CouponFactory.create(min_order_amount=Decimal("500"))

    result = calculator.quote(
        [CartLine(product.id, 1)],
        _catalog(product),
        coupon=coupon,
        coupon_code=coupon.code,
    )

    assert isinstance(result, Err)
    assert result.error.details["min_order_amount"] == "500"


@pytest.mark.unit
def test_expired_coupon_is_rejected(calculator):
    product = ProductFactory.create()
    coupon = CouponFactory.create(
        valid_from=utc_now() - timedelta(days=10),
        valid_to=utc_now() - timedelta(days=1),
    )

    result = calculator.quote(
        [CartLine(product.id, 1)],
        _catalog(product),
        coupon=coupon,
        coupon_code=coupon.code,
    )

    assert isinstance(result, Err)
    assert "expired" in result.error.message


@pytest.mark.unit
def test_unknown_coupon_code_is_rejected(calculator):
    product = ProductFactory.create()

    result = calculator.quote(
        [CartLine(product.id, 1)], _catalog(product), coupon=None, coupon_code="NOPE"
    )

    assert isinstance(result, Err)
    assert "NOPE" in result.error.message
