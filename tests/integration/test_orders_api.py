"""Integration tests for the orders service HTTP API.

The app runs in-process over ASGITransport with the repository, gateway,
dispatcher and current user overridden.
"""

import uuid
from decimal import Decimal

import pytest
from tests.factories import AddressFactory, ProductFactory

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _order_payload(product, quantity=2, payment_method="cod", **overrides):
    payload = {
        "items": [{"product_id": str(product.id), "quantity": quantity}],
        "shipping_address": AddressFactory.create(),
        "payment_method": payment_method,
    }
    payload.update(overrides)
    return payload


def _stocked(repo, stock=5, price="100"):
    return repo.add_product(ProductFactory.create(price=Decimal(price), stock=stock))


async def _create(client, repo, **kwargs):
    product = _stocked(repo)
    response = await client.post("/orders", json=_order_payload(product, **kwargs))
    assert response.status_code == 201, response.text
    return product, response.json()


async def _pay(client, gateway, gateway_order_id, payment_id="pay_100"):
    return await client.post(
        "/orders/payment/verify",
        json={
            "gateway_order_id": gateway_order_id,
            "gateway_payment_id": payment_id,
            "signature": gateway.sign(gateway_order_id, payment_id),
        },
    )


# ---------------------------------------------------------------------------
# Checkout
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "orders"}


@pytest.mark.asyncio
@pytest.mark.integration
async def test_cod_checkout(client, repo):
    product, data = await _create(client, repo)

    order = data["order"]
    assert data["payment"] is None
    assert order["order_status"] == "confirmed"
    assert order["payment_method"] == "cod"
    assert order["final_amount"] == "286.00"
    assert order["items"][0]["line_total"] == "200.00"
    assert repo.stock_of(product.id) == 3


@pytest.mark.asyncio
@pytest.mark.integration
async def test_online_checkout_returns_gateway_details(client, repo):
    _, data = await _create(client, repo, payment_method="upi")

    payment = data["payment"]
    assert data["order"]["order_status"] == "pending"
    assert payment["gateway_order_id"] == "order_test0001"
    assert payment["amount"] == 28600
    assert payment["currency"] == "INR"
    assert payment["key"] == "rzp_test_key"
    assert payment["description"] == f"Order {data['order']['order_number']}"
    assert payment["prefill"] == {
        "name": "Asha Rao",
        "email": "asha@example.com",
        "contact": "9876543210",
    }


@pytest.mark.asyncio
@pytest.mark.integration
async def test_unknown_fields_are_rejected(client, repo):
    product = _stocked(repo)

    response = await client.post(
        "/orders", json=_order_payload(product, discount_override="100")
    )

    assert response.status_code == 422
    assert repo.stock_of(product.id) == 5


@pytest.mark.asyncio
@pytest.mark.integration
async def test_bad_pincode_is_rejected(client, repo):
    product = _stocked(repo)

    response = await client.post(
        "/orders",
        json=_order_payload(
            product, shipping_address=AddressFactory.create(pincode="1234")
        ),
    )

    assert response.status_code == 422


@pytest.mark.asyncio
@pytest.mark.integration
async def test_over_ordering_is_rejected(client, repo):
    product = _stocked(repo, stock=5)

    response = await client.post("/orders", json=_order_payload(product, quantity=6))

    assert response.status_code == 400
    body = response.json()
    assert body["code"] == "validation_error"
    assert body["available"] == 5
    assert repo.stock_of(product.id) == 5


@pytest.mark.asyncio
@pytest.mark.integration
async def test_gateway_outage_is_503_with_order_reference(client, repo, gateway):
    gateway.go_down()
    product = _stocked(repo)

    response = await client.post(
        "/orders", json=_order_payload(product, payment_method="card")
    )

    assert response.status_code == 503
    body = response.json()
    assert body["code"] == "gateway_unavailable"
    order_id = body["order_id"]

    gateway.intent_error = None
    retried = await client.post(f"/orders/{order_id}/payment/retry")

    assert retried.status_code == 200, retried.text
    assert retried.json()["payment"]["gateway_order_id"] == "order_test0001"


# ---------------------------------------------------------------------------
# Payment callbacks
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_verify_payment_confirms_order(client, repo, gateway):
    _, data = await _create(client, repo, payment_method="upi")

    response = await _pay(client, gateway, data["payment"]["gateway_order_id"])

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["success"] is True
    assert body["order"]["order_status"] == "confirmed"
    assert body["order"]["payment_status"] == "completed"
    assert body["order"]["payments"][0]["gateway_payment_id"] == "pay_100"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_verify_payment_with_bad_signature(client, repo):
    _, data = await _create(client, repo, payment_method="upi")

    response = await client.post(
        "/orders/payment/verify",
        json={
            "gateway_order_id": data["payment"]["gateway_order_id"],
            "gateway_payment_id": "pay_100",
            "signature": "deadbeef",
        },
    )

    assert response.status_code == 400
    assert response.json()["code"] == "invalid_signature"

    order = await client.get(f"/orders/{data['order']['id']}")
    assert order.json()["order_status"] == "pending"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_payment_failure_cancels_order(client, repo):
    product, data = await _create(client, repo, payment_method="net_banking")

    response = await client.post(
        "/orders/payment/failure",
        json={
            "gateway_order_id": data["payment"]["gateway_order_id"],
            "reason": "User closed the bank page",
        },
    )

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["success"] is False
    assert body["order"]["order_status"] == "cancelled"
    assert body["order"]["payment_status"] == "failed"
    assert repo.stock_of(product.id) == 5


@pytest.mark.asyncio
@pytest.mark.integration
async def test_payment_failure_for_another_users_order_is_404(app, client, repo):
    product, data = await _create(client, repo, payment_method="upi")
    app.state.current_user = app.state.current_user.model_copy(
        update={"user_id": "someone-else"}
    )

    response = await client.post(
        "/orders/payment/failure",
        json={
            "gateway_order_id": data["payment"]["gateway_order_id"],
            "reason": "User closed the bank page",
        },
    )

    assert response.status_code == 404
    assert response.json()["code"] == "not_found"
    assert repo.orders[uuid.UUID(data["order"]["id"])].order_status.value == "pending"
    assert repo.stock_of(product.id) == 3


@pytest.mark.asyncio
@pytest.mark.integration
async def test_seller_can_record_payment_failure(app, client, repo, seller):
    _, data = await _create(client, repo, payment_method="upi")
    app.state.current_user = seller

    response = await client.post(
        "/orders/payment/failure",
        json={
            "gateway_order_id": data["payment"]["gateway_order_id"],
            "reason": "Bank declined",
        },
    )

    assert response.status_code == 200, response.text
    assert response.json()["order"]["order_status"] == "cancelled"


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_order_history_is_paginated(client, repo):
    for _ in range(3):
        await _create(client, repo)

    response = await client.get("/orders", params={"page": 2, "limit": 2})

    assert response.status_code == 200
    body = response.json()
    assert len(body["orders"]) == 1
    assert body["pagination"] == {
        "current_page": 2,
        "total_pages": 2,
        "total_orders": 3,
        "has_next": False,
        "has_prev": True,
    }

    filtered = await client.get("/orders", params={"status": "cancelled"})
    assert filtered.json()["pagination"]["total_orders"] == 0


@pytest.mark.asyncio
@pytest.mark.integration
async def test_orders_are_private(app, client, repo):
    _, data = await _create(client, repo)
    app.state.current_user = app.state.current_user.model_copy(
        update={"user_id": "someone-else"}
    )

    response = await client.get(f"/orders/{data['order']['id']}")

    assert response.status_code == 404
    assert response.json()["code"] == "not_found"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_missing_order_is_404(client):
    response = await client.get(f"/orders/{uuid.uuid4()}")

    assert response.status_code == 404


@pytest.mark.asyncio
@pytest.mark.integration
async def test_tracking(client, repo):
    _, data = await _create(client, repo)

    response = await client.get(f"/orders/{data['order']['id']}/tracking")

    assert response.status_code == 200
    body = response.json()
    assert body["status_message"] == "Your order has been confirmed"
    assert [step["status"] for step in body["timeline"]] == [
        "pending",
        "confirmed",
        "processing",
        "shipped",
        "delivered",
    ]
    assert [step["completed"] for step in body["timeline"]][:3] == [True, True, False]


# ---------------------------------------------------------------------------
# Cancellation, fulfilment, refunds
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_cancel_paid_order_refunds(client, repo, gateway):
    product, data = await _create(client, repo, payment_method="upi")
    await _pay(client, gateway, data["payment"]["gateway_order_id"])

    response = await client.post(
        f"/orders/{data['order']['id']}/cancel", json={"reason": "Wrong size"}
    )

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["order_status"] == "cancelled"
    assert body["payment_status"] == "refunded"
    assert body["refund_id"] == "rfnd_test0001"
    assert repo.stock_of(product.id) == 5


@pytest.mark.asyncio
@pytest.mark.integration
async def test_cancel_with_refund_outage_surfaces_failure(client, repo, gateway):
    _, data = await _create(client, repo, payment_method="upi")
    await _pay(client, gateway, data["payment"]["gateway_order_id"])
    gateway.go_down()

    response = await client.post(
        f"/orders/{data['order']['id']}/cancel", json={"reason": "Wrong size"}
    )

    assert response.status_code == 502
    body = response.json()
    assert body["code"] == "refund_failed"
    assert body["order_status"] == "cancelled"

    order = (await client.get(f"/orders/{data['order']['id']}")).json()
    assert order["order_status"] == "cancelled"
    assert order["payment_status"] == "completed"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_customer_cannot_update_status(client, repo):
    _, data = await _create(client, repo)

    response = await client.put(
        f"/orders/{data['order']['id']}/status", json={"status": "shipped"}
    )

    assert response.status_code == 403


@pytest.mark.asyncio
@pytest.mark.integration
async def test_seller_ships_and_delivers(app, client, repo, seller):
    _, data = await _create(client, repo)
    order_id = data["order"]["id"]
    app.state.current_user = seller

    shipped = await client.put(
        f"/orders/{order_id}/status",
        json={"status": "shipped", "tracking_number": "AWB42"},
    )
    delivered = await client.put(f"/orders/{order_id}/status", json={"status": "delivered"})
    backwards = await client.put(f"/orders/{order_id}/status", json={"status": "processing"})

    assert shipped.status_code == 200
    assert shipped.json()["tracking_number"] == "AWB42"
    assert delivered.json()["payment_status"] == "completed"
    assert backwards.status_code == 409
    assert backwards.json() == {
        "code": "invalid_state_transition",
        "detail": "Cannot move order from DELIVERED to PROCESSING",
        "current": "DELIVERED",
        "requested": "PROCESSING",
    }


@pytest.mark.asyncio
@pytest.mark.integration
async def test_seller_cancel_through_status_route(app, client, repo, seller):
    product, data = await _create(client, repo)
    app.state.current_user = seller

    response = await client.put(
        f"/orders/{data['order']['id']}/status",
        json={"status": "cancelled", "reason": "Supplier shortage"},
    )

    assert response.status_code == 200
    assert response.json()["notes"] == "Cancelled by seller. Reason: Supplier shortage"
    assert repo.stock_of(product.id) == 5


@pytest.mark.asyncio
@pytest.mark.integration
async def test_admin_refund(app, client, repo, gateway, seller):
    product, data = await _create(client, repo, payment_method="card")
    await _pay(client, gateway, data["payment"]["gateway_order_id"])
    app.state.current_user = seller

    response = await client.post(
        f"/orders/{data['order']['id']}/refund", json={"reason": "Damaged parcel"}
    )

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["order_status"] == "refunded"
    assert body["payment_status"] == "refunded"
    assert repo.stock_of(product.id) == 5
