import asyncio
import hmac
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from libs.auth.dependencies import get_current_user
from libs.auth.models import AuthUser
from libs.common.config import get_settings
from services.orders_service.dependencies import get_order_repository
from services.orders_service.errors import GatewayUnavailable
from services.orders_service.gateway import (
    GatewayIntent,
    GatewayRefund,
    PaymentGateway,
    get_payment_gateway,
    sign_callback,
)
from services.orders_service.locks import KeyedLock
from services.orders_service.memory import InMemoryOrderRepository
from services.orders_service.notifications import (
    NotificationDispatcher,
    get_notification_dispatcher,
)
from services.orders_service.state_machine import OrderStateMachine

TEST_KEY_ID = "rzp_test_key"
TEST_KEY_SECRET = "rzp_test_secret"


# ---------------------------------------------------------------------------
# Collaborator fakes
# ---------------------------------------------------------------------------


class FakeGateway(PaymentGateway):
    """Gateway double: real signature checks, scripted intents and refunds.

    ``latency`` makes intent and refund calls yield for that many seconds, so
    concurrent callers overlap inside the gateway call like they would over
    the network.
    """

    def __init__(self):
        self.key_id = TEST_KEY_ID
        self.currency = "INR"
        self.intents: list[dict] = []
        self.refunds: list[dict] = []
        self.intent_error: Optional[Exception] = None
        self.refund_error: Optional[Exception] = None
        self.latency = 0.0

    async def create_intent(self, amount_minor, order_number, metadata):
        if self.latency:
            await asyncio.sleep(self.latency)
        if self.intent_error is not None:
            raise self.intent_error
        gateway_order_id = f"order_test{len(self.intents) + 1:04d}"
        self.intents.append(
            {
                "gateway_order_id": gateway_order_id,
                "amount_minor": amount_minor,
                "order_number": order_number,
                "metadata": metadata,
            }
        )
        return GatewayIntent(gateway_order_id, amount_minor, self.currency)

    def verify_callback(self, gateway_order_id, gateway_payment_id, signature):
        expected = sign_callback(TEST_KEY_SECRET, gateway_order_id, gateway_payment_id)
        return hmac.compare_digest(expected, signature or "")

    async def refund(self, gateway_payment_id, amount_minor, notes, receipt=None):
        if self.latency:
            await asyncio.sleep(self.latency)
        if self.refund_error is not None:
            raise self.refund_error
        refund_id = f"rfnd_test{len(self.refunds) + 1:04d}"
        self.refunds.append(
            {
                "refund_id": refund_id,
                "gateway_payment_id": gateway_payment_id,
                "amount_minor": amount_minor,
                "notes": notes,
                "receipt": receipt,
            }
        )
        return GatewayRefund(refund_id, amount_minor, "processed")

    @staticmethod
    def sign(gateway_order_id: str, gateway_payment_id: str) -> str:
        return sign_callback(TEST_KEY_SECRET, gateway_order_id, gateway_payment_id)

    def go_down(self):
        self.intent_error = GatewayUnavailable("Payment gateway unavailable")
        self.refund_error = GatewayUnavailable("Payment gateway unavailable")


class RecordingDispatcher(NotificationDispatcher):
    def __init__(self):
        self.sent = []

    async def notify(self, user_id, event):
        self.sent.append((user_id, event))

    def events(self, order_number=None):
        return [
            event.event
            for _, event in self.sent
            if order_number is None or event.order_number == order_number
        ]


# ---------------------------------------------------------------------------
# Pipeline fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def test_settings():
    return get_settings().model_copy(
        update={
            "CALLBACK_LOOKUP_ATTEMPTS": 3,
            "CALLBACK_BACKOFF_SECONDS": 0.0,
            "CALLBACK_BACKOFF_MAX_SECONDS": 0.0,
        }
    )


@pytest.fixture
def repo():
    return InMemoryOrderRepository()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def machine(repo, gateway, dispatcher, test_settings):
    return OrderStateMachine(
        repo, gateway, dispatcher, locks=KeyedLock(), settings=test_settings
    )


# ---------------------------------------------------------------------------
# HTTP fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def customer():
    return AuthUser(sub="customer-1", email="asha@example.com", role="customer")


@pytest.fixture
def seller():
    return AuthUser(sub="seller-1", email="seller@example.com", role="seller")


@pytest_asyncio.fixture
async def app(repo, gateway, dispatcher, customer):
    from services.orders_service.app.main import create_app

    application = create_app()
    application.state.current_user = customer

    async def override_repository():
        return repo

    async def override_current_user():
        return application.state.current_user

    application.dependency_overrides[get_order_repository] = override_repository
    application.dependency_overrides[get_payment_gateway] = lambda: gateway
    application.dependency_overrides[get_notification_dispatcher] = lambda: dispatcher
    application.dependency_overrides[get_current_user] = override_current_user
    yield application
    application.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac
