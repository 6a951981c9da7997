"""Inventory ledger: the only code allowed to change ``Product.stock``.

reserve()  per-product compare-and-decrement, all-or-nothing per call
commit()   HELD -> COMMITTED, stock stays out (order confirmed)
release()  HELD -> RELEASED, stock goes back
restock()  COMMITTED -> RESTOCKED, stock goes back (cancel/refund after confirm)

Every increment is gated by a compare-and-set on the reservation's status,
so replays (retried webhooks, double cancels) can't credit stock twice.
"""

import uuid
from typing import Iterable, Optional

from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.orders_service.errors import InsufficientStock
from services.orders_service.models import (
    ReservationLine,
    ReservationStatus,
    StockReservation,
)
from services.orders_service.pricing import CartLine
from services.orders_service.repository import OrderRepository
from services.orders_service.results import Err, Ok, Result

logger = get_logger(__name__)


def _per_product(lines: Iterable[CartLine]) -> list[tuple[uuid.UUID, int]]:
    totals: dict[uuid.UUID, int] = {}
    for line in lines:
        totals[line.product_id] = totals.get(line.product_id, 0) + line.quantity
    # Fixed order keeps concurrent multi-line reservations from deadlocking on row locks.
    return sorted(totals.items(), key=lambda item: str(item[0]))


class InventoryLedger:
    def __init__(self, repository: OrderRepository):
        self.repository = repository

    async def reserve(
        self,
        lines: Iterable[CartLine],
        order_id: Optional[uuid.UUID] = None,
    ) -> Result[uuid.UUID, InsufficientStock]:
        applied: list[tuple[uuid.UUID, int]] = []

        for product_id, quantity in _per_product(lines):
            ok, stock = await self.repository.decrement_stock(product_id, quantity)
            if not ok:
                await self._undo(applied)
                logger.warning(
                    "Reservation refused for product %s: requested %d, available %d",
                    product_id,
                    quantity,
                    stock,
                )
                return Err(
                    InsufficientStock(product_id, available=stock, requested=quantity)
                )
            applied.append((product_id, quantity))

        now = utc_now()
        reservation = StockReservation(
            id=uuid.uuid4(),
            order_id=order_id,
            status=ReservationStatus.HELD,
            created_at=now,
            updated_at=now,
            lines=[
                ReservationLine(id=uuid.uuid4(), product_id=product_id, quantity=quantity)
                for product_id, quantity in applied
            ],
        )
        try:
            await self.repository.add_reservation(reservation)
        except Exception:
            logger.exception("Could not record reservation; returning stock")
            await self._undo(applied)
            raise

        logger.info(
            "Reserved %d product line(s) as %s (order=%s)",
            len(applied),
            reservation.id,
            order_id,
        )
        return Ok(reservation.id)

    async def commit(self, reservation_id: uuid.UUID) -> bool:
        committed = await self.repository.transition_reservation(
            reservation_id, ReservationStatus.HELD, ReservationStatus.COMMITTED
        )
        if committed:
            logger.info("Committed reservation %s", reservation_id)
        return committed

    async def release(self, reservation_id: uuid.UUID) -> bool:
        """Return HELD stock. No-op (False) when already released or committed."""
        return await self._give_back(
            reservation_id, ReservationStatus.HELD, ReservationStatus.RELEASED
        )

    async def restock(self, reservation_id: uuid.UUID) -> bool:
        """Return COMMITTED stock. No-op (False) when already restocked."""
        return await self._give_back(
            reservation_id, ReservationStatus.COMMITTED, ReservationStatus.RESTOCKED
        )

    async def revert(self, reservation_id: Optional[uuid.UUID]) -> bool:
        """Release if still held, otherwise restock if committed."""
        if reservation_id is None:
            return False
        if await self.release(reservation_id):
            return True
        return await self.restock(reservation_id)

    async def _give_back(
        self,
        reservation_id: uuid.UUID,
        expected: ReservationStatus,
        new: ReservationStatus,
    ) -> bool:
        won = await self.repository.transition_reservation(reservation_id, expected, new)
        if not won:
            return False

        reservation = await self.repository.get_reservation(reservation_id)
        for line in reservation.lines:
            await self.repository.increment_stock(line.product_id, line.quantity)
        logger.info(
            "Returned stock for reservation %s (%s -> %s)",
            reservation_id,
            expected.value,
            new.value,
        )
        return True

    async def _undo(self, applied: list[tuple[uuid.UUID, int]]) -> None:
        for product_id, quantity in reversed(applied):
            await self.repository.increment_stock(product_id, quantity)
