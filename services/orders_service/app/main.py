"""FastAPI application for the Orders Service."""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from libs.common.logging import get_logger
from libs.common.middleware import add_observability_middleware
from services.orders_service.errors import OrderPipelineError
from services.orders_service.locks import KeyedLock
from services.orders_service.routers import (
    admin_router,
    orders_router,
    payments_router,
)

logger = get_logger(__name__)


async def pipeline_error_handler(request: Request, exc: OrderPipelineError):
    if exc.status_code >= 500:
        logger.error("%s: %s", exc.code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_app() -> FastAPI:
    """Create and configure the Orders Service FastAPI app."""
    app = FastAPI(
        title="Orders Service",
        version="0.1.0",
        description="Checkout, payment confirmation, fulfilment and refunds.",
    )
    add_observability_middleware(app)
    app.add_exception_handler(OrderPipelineError, pipeline_error_handler)

    # Serializes transitions of one order within this process
    app.state.order_locks = KeyedLock()

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "service": "orders"}

    # Payment callbacks first: /orders/payment/* must not fall into /orders/{order_id}
    app.include_router(payments_router)
    app.include_router(orders_router)
    app.include_router(admin_router)

    return app


app = create_app()
