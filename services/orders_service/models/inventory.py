"""Stock reservation records.

A reservation is the durable record of decrements the ledger has applied.
Every later increment (release, restock) is keyed to it, so a replayed
cancellation or refund cannot credit stock twice.
"""

import uuid
from datetime import datetime
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from services.orders_service.models.enums import ReservationStatus, enum_values
from sqlalchemy import CheckConstraint, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey, Integer
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship


class StockReservation(Base):
    """One reserve() call: a set of per-product decrements."""

    __tablename__ = "stock_reservations"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    # No FK: the reservation is written before its order row exists.
    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), index=True, nullable=True
    )

    status: Mapped[ReservationStatus] = mapped_column(
        SAEnum(
            ReservationStatus,
            values_callable=enum_values,
            name="stock_reservation_status_enum",
        ),
        default=ReservationStatus.HELD,
        server_default="held",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    lines = relationship(
        "ReservationLine",
        back_populates="reservation",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self):
        return f"<StockReservation {self.id} status={self.status}>"


class ReservationLine(Base):
    """A single applied decrement."""

    __tablename__ = "stock_reservation_lines"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    reservation_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("stock_reservations.id", ondelete="CASCADE"),
        nullable=False,
    )
    product_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), index=True, nullable=False
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        CheckConstraint("quantity > 0", name="reservation_line_positive_quantity"),
    )

    reservation = relationship("StockReservation", back_populates="lines")

    def __repr__(self):
        return f"<ReservationLine product={self.product_id} qty={self.quantity}>"
