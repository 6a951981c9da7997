"""
Payment gateway adapter (Razorpay Orders/Refunds API).

Provides:
- Creating a gateway order ("intent") the client completes in Checkout
- Verifying the checkout callback signature
- Refunding a captured payment

Amounts cross this boundary in minor units (paise) only.
"""

import hashlib
import hmac
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import httpx
from libs.common.config import get_settings
from libs.common.logging import get_logger
from services.orders_service.errors import GatewayError, GatewayUnavailable

logger = get_logger(__name__)


@dataclass(frozen=True)
class GatewayIntent:
    """A remote order the customer pays against."""

    gateway_order_id: str
    amount_minor: int
    currency: str


@dataclass(frozen=True)
class GatewayRefund:
    refund_id: str
    amount_minor: int
    status: str  # pending, processed, failed


def sign_callback(secret: str, gateway_order_id: str, gateway_payment_id: str) -> str:
    """HMAC-SHA256 hex digest of ``order_id|payment_id``, as the gateway signs it."""
    message = f"{gateway_order_id}|{gateway_payment_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


class PaymentGateway(ABC):
    """Payment gateway port."""

    currency: str = "INR"
    key_id: Optional[str] = None

    @abstractmethod
    async def create_intent(
        self, amount_minor: int, order_number: str, metadata: dict
    ) -> GatewayIntent:
        """Create a remote payment intent. Raises GatewayUnavailable/GatewayError."""

    @abstractmethod
    def verify_callback(
        self, gateway_order_id: str, gateway_payment_id: str, signature: str
    ) -> bool:
        """Constant-time check of the checkout callback signature."""

    @abstractmethod
    async def refund(
        self,
        gateway_payment_id: str,
        amount_minor: int,
        notes: dict,
        receipt: Optional[str] = None,
    ) -> GatewayRefund:
        """Refund a captured payment. Raises GatewayUnavailable/GatewayError.

        ``receipt`` is our stable reference for the refund, the same on every
        retry of one order's refund.
        """


class RazorpayGateway(PaymentGateway):
    """Async client for the Razorpay Orders and Refunds APIs."""

    def __init__(
        self,
        key_id: Optional[str] = None,
        key_secret: Optional[str] = None,
        base_url: Optional[str] = None,
        currency: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.key_id = key_id or settings.RAZORPAY_KEY_ID
        self._key_secret = key_secret or settings.RAZORPAY_KEY_SECRET
        if not self.key_id or not self._key_secret:
            raise ValueError("RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET are required")
        self.base_url = (base_url or settings.RAZORPAY_BASE_URL).rstrip("/")
        self.currency = currency or settings.CURRENCY
        self.timeout = timeout or settings.RAZORPAY_TIMEOUT_SECONDS
        self._transport = transport

    async def _request(self, method: str, endpoint: str, json_data: dict) -> dict:
        """Make an authenticated request, translating failures into pipeline errors."""
        url = f"{self.base_url}{endpoint}"

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                auth=(self.key_id, self._key_secret),
                transport=self._transport,
            ) as client:
                response = await client.request(method, url, json=json_data)
        except httpx.TimeoutException as exc:
            logger.warning("Razorpay timeout on %s %s", method, endpoint)
            raise GatewayUnavailable("Payment gateway timed out") from exc
        except httpx.RequestError as exc:
            logger.warning("Razorpay unreachable on %s %s: %s", method, endpoint, exc)
            raise GatewayUnavailable("Payment gateway unavailable") from exc

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code >= 500:
            logger.error("Razorpay %s on %s %s", response.status_code, method, endpoint)
            raise GatewayUnavailable(
                "Payment gateway unavailable", status_code=response.status_code
            )
        if not response.is_success:
            error = data.get("error") or {}
            logger.error(
                "Razorpay API error: %s - %s", response.status_code, error or data
            )
            raise GatewayError(
                error.get("description", "Payment gateway rejected the request"),
                gateway_code=error.get("code"),
                status_code=response.status_code,
            )
        return data

    async def create_intent(self, amount_minor, order_number, metadata):
        data = await self._request(
            "POST",
            "/orders",
            json_data={
                "amount": amount_minor,
                "currency": self.currency,
                "receipt": order_number,
                "notes": {key: str(value) for key, value in metadata.items()},
            },
        )
        return GatewayIntent(
            gateway_order_id=data["id"],
            amount_minor=data.get("amount", amount_minor),
            currency=data.get("currency", self.currency),
        )

    def verify_callback(self, gateway_order_id, gateway_payment_id, signature):
        if not (gateway_order_id and gateway_payment_id and signature):
            return False
        expected = sign_callback(self._key_secret, gateway_order_id, gateway_payment_id)
        return hmac.compare_digest(expected, signature)

    async def refund(self, gateway_payment_id, amount_minor, notes, receipt=None):
        body = {
            "amount": amount_minor,
            "notes": {key: str(value) for key, value in notes.items()},
        }
        if receipt:
            body["receipt"] = receipt
        data = await self._request(
            "POST", f"/payments/{gateway_payment_id}/refund", json_data=body
        )
        return GatewayRefund(
            refund_id=data["id"],
            amount_minor=data.get("amount", amount_minor),
            status=data.get("status", "pending"),
        )


def get_payment_gateway() -> PaymentGateway:
    """Get a gateway client configured from settings."""
    return RazorpayGateway()
