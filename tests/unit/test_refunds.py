"""Unit tests for the refund workflow in isolation."""

from datetime import timedelta
from decimal import Decimal

import pytest
from libs.common.datetime_utils import utc_now
from services.orders_service.errors import (
    ConcurrentModification,
    GatewayError,
    InvalidStateTransition,
    PersistenceFailed,
    RefundFailed,
)
from services.orders_service.models import OrderStatus, PaymentMethod, PaymentStatus
from services.orders_service.refunds import RefundWorkflow
from services.orders_service.results import Err, Ok
from tests.factories import DraftFactory, ProductFactory


async def _captured_order(machine, repo, gateway):
    product = repo.add_product(ProductFactory.create(price=Decimal("100"), stock=5))
    placed = (
        await machine.place_order(
            DraftFactory.create([(product, 2)], payment_method=PaymentMethod.WALLET)
        )
    ).unwrap()
    gid = placed.intent.gateway_order_id
    return (await machine.confirm_payment(gid, "pay_1", gateway.sign(gid, "pay_1"))).unwrap()


@pytest.mark.asyncio
@pytest.mark.unit
async def test_refund_records_gateway_refund(machine, repo, gateway):
    order = await _captured_order(machine, repo, gateway)
    workflow = RefundWorkflow(repo, gateway)

    result = await workflow.run(order, order.completed_payment)

    assert isinstance(result, Ok)
    assert order.payment_status == PaymentStatus.REFUNDED
    assert order.payments[0].status == PaymentStatus.REFUNDED
    assert order.refund_id == gateway.refunds[0]["refund_id"]
    assert gateway.refunds[0]["notes"]["order_number"] == order.order_number
    assert gateway.refunds[0]["receipt"] == order.order_number
    # Status is the caller's business
    assert order.order_status == OrderStatus.CONFIRMED


@pytest.mark.asyncio
@pytest.mark.unit
async def test_rejected_refund_is_not_retryable(machine, repo, gateway):
    order = await _captured_order(machine, repo, gateway)
    gateway.refund_error = GatewayError("Payment already refunded")
    version = order.version

    result = await RefundWorkflow(repo, gateway).run(order, order.completed_payment)

    assert isinstance(result, Err)
    assert isinstance(result.error, RefundFailed)
    assert result.error.details["retryable"] is False
    assert result.error.reason == "Payment already refunded"
    assert order.payment_status == PaymentStatus.COMPLETED
    # Claim taken and released again
    assert order.version == version + 2
    assert order.refund_requested_at is None


@pytest.mark.asyncio
@pytest.mark.unit
async def test_uncaptured_payment_cannot_be_refunded(machine, repo, gateway):
    product = repo.add_product(ProductFactory.create(stock=5))
    placed = (
        await machine.place_order(
            DraftFactory.create([(product, 1)], payment_method=PaymentMethod.UPI)
        )
    ).unwrap()
    order = placed.order

    result = await RefundWorkflow(repo, gateway).run(order, order.payments[0])

    assert isinstance(result.error, InvalidStateTransition)
    assert gateway.refunds == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_duplicate_capture_refund_leaves_order_paid(machine, repo, gateway):
    order = await _captured_order(machine, repo, gateway)

    result = await RefundWorkflow(repo, gateway).run(
        order, order.completed_payment, settle_order=False
    )

    assert isinstance(result, Ok)
    assert order.payment_status == PaymentStatus.COMPLETED
    assert order.refund_id is None
    assert "Duplicate payment pay_1 refunded" in order.notes


@pytest.mark.asyncio
@pytest.mark.unit
async def test_live_claim_blocks_second_refund(machine, repo, gateway):
    order = await _captured_order(machine, repo, gateway)
    order.refund_requested_at = utc_now()

    result = await RefundWorkflow(repo, gateway).run(order, order.completed_payment)

    assert isinstance(result.error, ConcurrentModification)
    assert gateway.refunds == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_abandoned_claim_is_taken_over(machine, repo, gateway):
    order = await _captured_order(machine, repo, gateway)
    order.refund_requested_at = utc_now() - timedelta(seconds=301)

    result = await RefundWorkflow(repo, gateway, claim_timeout_seconds=300).run(
        order, order.completed_payment
    )

    assert isinstance(result, Ok)
    assert len(gateway.refunds) == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_claim_is_saved_before_gateway_call(machine, repo, gateway):
    order = await _captured_order(machine, repo, gateway)
    # Another process updated the row since this copy was loaded
    repo._versions[order.id] += 1

    with pytest.raises(ConcurrentModification):
        await RefundWorkflow(repo, gateway).run(order, order.completed_payment)

    assert gateway.refunds == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unrecorded_refund_keeps_claim(machine, repo, gateway, monkeypatch):
    order = await _captured_order(machine, repo, gateway)
    save_order = repo.save_order
    saves = []

    async def flaky_save(order):
        saves.append(order.version)
        if len(saves) == 2:
            raise RuntimeError("connection reset")
        await save_order(order)

    monkeypatch.setattr(repo, "save_order", flaky_save)

    result = await RefundWorkflow(repo, gateway).run(order, order.completed_payment)

    assert isinstance(result.error, PersistenceFailed)
    assert result.error.details["refund_id"] == gateway.refunds[0]["refund_id"]
    assert order.refund_requested_at is not None
    assert len(gateway.refunds) == 1
