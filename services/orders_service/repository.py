"""Order repository: the storage port the pipeline is written against.

Components receive a repository explicitly; nothing in the pipeline reaches
for a global database client. ``SqlAlchemyOrderRepository`` is the production
implementation (one per request session); ``memory.InMemoryOrderRepository``
backs unit tests and local experiments.

Mutating methods commit immediately. Stock is the only shared resource, and a
stock row lock must never be held across a gateway round trip.
"""

import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable, Optional

from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.orders_service.errors import ConcurrentModification
from services.orders_service.models import (
    Coupon,
    Order,
    OrderStatus,
    Payment,
    PaymentStatus,
    Product,
    ReservationStatus,
    StockReservation,
)
from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

logger = get_logger(__name__)


class OrderRepository(ABC):
    # ------------------------------------------------------------------
    # Catalog reads (collaborator data)
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_products(
        self, product_ids: Iterable[uuid.UUID]
    ) -> dict[uuid.UUID, Product]: ...

    @abstractmethod
    async def get_coupon(self, code: str) -> Optional[Coupon]: ...

    # ------------------------------------------------------------------
    # Stock primitives (inventory ledger only)
    # ------------------------------------------------------------------

    @abstractmethod
    async def decrement_stock(self, product_id: uuid.UUID, quantity: int) -> tuple[bool, int]:
        """Subtract ``quantity`` only if ``stock >= quantity``, atomically.

        Returns ``(applied, stock)``: the new level when applied, otherwise the
        level that was available (0 for unknown products).
        """

    @abstractmethod
    async def increment_stock(self, product_id: uuid.UUID, quantity: int) -> int:
        """Add ``quantity`` back atomically and return the new level."""

    # ------------------------------------------------------------------
    # Reservations
    # ------------------------------------------------------------------

    @abstractmethod
    async def add_reservation(self, reservation: StockReservation) -> None: ...

    @abstractmethod
    async def get_reservation(
        self, reservation_id: uuid.UUID
    ) -> Optional[StockReservation]: ...

    @abstractmethod
    async def transition_reservation(
        self,
        reservation_id: uuid.UUID,
        expected: ReservationStatus,
        new: ReservationStatus,
    ) -> bool:
        """Compare-and-set the reservation status. True only for the caller that won."""

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    @abstractmethod
    async def add_order(self, order: Order) -> None: ...

    @abstractmethod
    async def save_order(self, order: Order) -> None:
        """Persist changes to a loaded order.

        Raises ``ConcurrentModification`` when another writer got there first.
        """

    @abstractmethod
    async def get_order(self, order_id: uuid.UUID) -> Optional[Order]: ...

    @abstractmethod
    async def get_order_by_number(self, order_number: str) -> Optional[Order]: ...

    @abstractmethod
    async def find_order_by_gateway_order_id(
        self, gateway_order_id: str
    ) -> Optional[Order]: ...

    @abstractmethod
    async def list_orders(
        self,
        user_id: str,
        status: Optional[OrderStatus] = None,
        offset: int = 0,
        limit: int = 10,
    ) -> tuple[list[Order], int]: ...

    @abstractmethod
    async def list_stale_pending_orders(
        self, cutoff: datetime, limit: int = 200
    ) -> list[Order]:
        """PENDING, unpaid orders created at or before ``cutoff``, oldest first."""


class SqlAlchemyOrderRepository(OrderRepository):
    """Repository over one ``AsyncSession`` (one per request or task)."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _commit(self) -> None:
        try:
            await self.session.commit()
        except StaleDataError as exc:
            await self.session.rollback()
            raise ConcurrentModification("Order was modified concurrently") from exc
        except SQLAlchemyError:
            await self.session.rollback()
            raise

    # Catalog ----------------------------------------------------------

    async def get_products(self, product_ids):
        ids = list(set(product_ids))
        if not ids:
            return {}
        result = await self.session.execute(
            select(Product)
            .where(Product.id.in_(ids))
            .execution_options(populate_existing=True)
        )
        return {product.id: product for product in result.scalars().all()}

    async def get_coupon(self, code):
        result = await self.session.execute(
            select(Coupon).where(func.upper(Coupon.code) == code.upper())
        )
        return result.scalar_one_or_none()

    # Stock ------------------------------------------------------------

    async def decrement_stock(self, product_id, quantity):
        result = await self.session.execute(
            update(Product)
            .where(Product.id == product_id, Product.stock >= quantity)
            .values(stock=Product.stock - quantity, updated_at=utc_now())
            .returning(Product.stock)
            .execution_options(synchronize_session=False)
        )
        new_stock = result.scalar_one_or_none()
        if new_stock is not None:
            await self._commit()
            return True, new_stock

        available = await self.session.scalar(
            select(Product.stock).where(Product.id == product_id)
        )
        await self._commit()
        return False, available or 0

    async def increment_stock(self, product_id, quantity):
        result = await self.session.execute(
            update(Product)
            .where(Product.id == product_id)
            .values(stock=Product.stock + quantity, updated_at=utc_now())
            .returning(Product.stock)
            .execution_options(synchronize_session=False)
        )
        new_stock = result.scalar_one_or_none()
        await self._commit()
        if new_stock is None:
            logger.error(
                "Stock increment for unknown product %s (qty=%d)", product_id, quantity
            )
            return 0
        return new_stock

    # Reservations -----------------------------------------------------

    async def add_reservation(self, reservation):
        self.session.add(reservation)
        await self._commit()

    async def get_reservation(self, reservation_id):
        result = await self.session.execute(
            select(StockReservation)
            .where(StockReservation.id == reservation_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def transition_reservation(self, reservation_id, expected, new):
        result = await self.session.execute(
            update(StockReservation)
            .where(
                StockReservation.id == reservation_id,
                StockReservation.status == expected,
            )
            .values(status=new, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        await self._commit()
        return result.rowcount == 1

    # Orders -----------------------------------------------------------

    async def add_order(self, order):
        self.session.add(order)
        await self._commit()

    async def save_order(self, order):
        self.session.add(order)
        await self._commit()

    async def get_order(self, order_id):
        result = await self.session.execute(
            select(Order)
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_order_by_number(self, order_number):
        result = await self.session.execute(
            select(Order)
            .where(Order.order_number == order_number)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def find_order_by_gateway_order_id(self, gateway_order_id):
        result = await self.session.execute(
            select(Order)
            .join(Payment, Payment.order_id == Order.id)
            .where(Payment.gateway_order_id == gateway_order_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_orders(self, user_id, status=None, offset=0, limit=10):
        filters = [Order.user_id == user_id]
        if status is not None:
            filters.append(Order.order_status == status)

        total = await self.session.scalar(
            select(func.count()).select_from(Order).where(*filters)
        )
        result = await self.session.execute(
            select(Order)
            .where(*filters)
            .order_by(Order.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all()), total or 0

    async def list_stale_pending_orders(self, cutoff, limit=200):
        result = await self.session.execute(
            select(Order)
            .where(
                Order.order_status == OrderStatus.PENDING,
                Order.payment_status != PaymentStatus.COMPLETED,
                Order.created_at <= cutoff,
            )
            .order_by(Order.created_at.asc())
            .limit(limit)
        )
        return list(result.scalars().all())
