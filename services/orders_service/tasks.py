"""Background tasks for the orders service."""

from datetime import datetime
from typing import Optional

from libs.common.logging import get_logger
from libs.db.session import session_scope
from services.orders_service.gateway import get_payment_gateway
from services.orders_service.locks import KeyedLock
from services.orders_service.notifications import get_notification_dispatcher
from services.orders_service.repository import SqlAlchemyOrderRepository
from services.orders_service.state_machine import OrderStateMachine

logger = get_logger(__name__)

# One lock map per worker process
_locks = KeyedLock()


async def expire_abandoned_checkouts(now: Optional[datetime] = None) -> int:
    """Cancel PENDING orders whose payment window lapsed and return their stock."""
    async with session_scope() as db:
        machine = OrderStateMachine(
            SqlAlchemyOrderRepository(db),
            get_payment_gateway(),
            get_notification_dispatcher(),
            locks=_locks,
        )
        expired = await machine.expire_stale_orders(now=now)

    logger.info("Abandoned checkout sweep finished: %d order(s) expired", expired)
    return expired
