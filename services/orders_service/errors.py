"""Error taxonomy for the order pipeline.

Each error carries the HTTP status it maps to and a stable machine-readable
``code``. Components return them inside ``Err`` results; the app's exception
handler turns them into JSON responses.
"""

from typing import Any, Optional


class OrderPipelineError(Exception):
    status_code: int = 400
    code: str = "order_error"

    def __init__(self, message: str, **details: Any):
        self.message = message
        self.details = details
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"code": self.code, "detail": self.message, **self.details}


class ValidationError(OrderPipelineError):
    """Malformed or unacceptable input. Nothing was changed."""

    status_code = 400
    code = "validation_error"


class NotFound(OrderPipelineError):
    status_code = 404
    code = "not_found"


class InsufficientStock(OrderPipelineError):
    """A reservation line could not be satisfied; the whole reservation was rolled back."""

    status_code = 409
    code = "insufficient_stock"

    def __init__(self, product_id: Any, available: int, requested: Optional[int] = None):
        self.product_id = product_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock for product {product_id}. Available: {available}",
            product_id=str(product_id),
            available=available,
            requested=requested,
        )


class InvalidSignature(OrderPipelineError):
    """Gateway callback failed HMAC verification. No state was changed."""

    status_code = 400
    code = "invalid_signature"

    def __init__(self, gateway_order_id: str):
        self.gateway_order_id = gateway_order_id
        super().__init__(
            "Invalid payment signature", gateway_order_id=gateway_order_id
        )


class InvalidStateTransition(OrderPipelineError):
    status_code = 409
    code = "invalid_state_transition"

    def __init__(self, current: Any, requested: Any):
        self.current = _label(current)
        self.requested = _label(requested)
        super().__init__(
            f"Cannot move order from {self.current} to {self.requested}",
            current=self.current,
            requested=self.requested,
        )


class ConcurrentModification(OrderPipelineError):
    """The order row changed underneath us; the caller may retry."""

    status_code = 409
    code = "concurrent_modification"


class GatewayUnavailable(OrderPipelineError):
    """Gateway timed out or answered 5xx. Safe to retry."""

    status_code = 503
    code = "gateway_unavailable"


class GatewayError(OrderPipelineError):
    """Gateway rejected the request (4xx)."""

    status_code = 502
    code = "gateway_error"


class RefundFailed(OrderPipelineError):
    """Refund did not go through; the order keeps its cancellation and needs manual retry."""

    status_code = 502
    code = "refund_failed"

    def __init__(self, order_number: str, reason: str, **details: Any):
        self.order_number = order_number
        self.reason = reason
        super().__init__(
            f"Refund for order {order_number} failed: {reason}",
            order_number=order_number,
            **details,
        )


class PersistenceFailed(OrderPipelineError):
    status_code = 500
    code = "persistence_failed"


def _label(status: Any) -> str:
    value = getattr(status, "value", status)
    return str(value).upper()
