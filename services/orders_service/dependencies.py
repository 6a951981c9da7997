"""FastAPI dependencies wiring the order pipeline per request."""

from fastapi import Depends, Request
from libs.db.session import get_async_db
from services.orders_service.gateway import PaymentGateway, get_payment_gateway
from services.orders_service.locks import KeyedLock
from services.orders_service.notifications import (
    NotificationDispatcher,
    get_notification_dispatcher,
)
from services.orders_service.repository import (
    OrderRepository,
    SqlAlchemyOrderRepository,
)
from services.orders_service.state_machine import OrderStateMachine
from sqlalchemy.ext.asyncio import AsyncSession


async def get_order_repository(
    db: AsyncSession = Depends(get_async_db),
) -> OrderRepository:
    return SqlAlchemyOrderRepository(db)


def get_order_locks(request: Request) -> KeyedLock:
    """Process-wide per-order locks, created with the app."""
    return request.app.state.order_locks


async def get_state_machine(
    repository: OrderRepository = Depends(get_order_repository),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
    locks: KeyedLock = Depends(get_order_locks),
) -> OrderStateMachine:
    return OrderStateMachine(repository, gateway, dispatcher, locks=locks)
