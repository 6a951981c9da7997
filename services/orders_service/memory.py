"""In-memory OrderRepository for tests and local experiments.

Every method yields to the event loop once before touching state, the way a
database round trip would, so concurrent callers genuinely interleave. The
check-and-set blocks after that point contain no ``await`` and are therefore
atomic with respect to other tasks.
"""

import asyncio
import uuid
from typing import Optional

from libs.common.datetime_utils import ensure_aware, utc_now
from services.orders_service.errors import ConcurrentModification
from services.orders_service.models import (
    Coupon,
    Order,
    OrderStatus,
    PaymentStatus,
    Product,
    StockReservation,
)
from services.orders_service.repository import OrderRepository


class InMemoryOrderRepository(OrderRepository):
    def __init__(self) -> None:
        self.products: dict[uuid.UUID, Product] = {}
        self.coupons: dict[str, Coupon] = {}
        self.reservations: dict[uuid.UUID, StockReservation] = {}
        self.orders: dict[uuid.UUID, Order] = {}
        self._versions: dict[uuid.UUID, int] = {}

    # Seeding ------------------------------------------------------------

    def add_product(self, product: Product) -> Product:
        if product.id is None:
            product.id = uuid.uuid4()
        if product.is_active is None:
            product.is_active = True
        self.products[product.id] = product
        return product

    def add_coupon(self, coupon: Coupon) -> Coupon:
        self.coupons[coupon.code.upper()] = coupon
        return coupon

    # Catalog ------------------------------------------------------------

    async def get_products(self, product_ids):
        await asyncio.sleep(0)
        return {pid: self.products[pid] for pid in set(product_ids) if pid in self.products}

    async def get_coupon(self, code):
        await asyncio.sleep(0)
        return self.coupons.get(code.upper())

    # Stock --------------------------------------------------------------

    async def decrement_stock(self, product_id, quantity):
        await asyncio.sleep(0)
        product = self.products.get(product_id)
        if product is None:
            return False, 0
        if product.stock < quantity:
            return False, product.stock
        product.stock -= quantity
        return True, product.stock

    async def increment_stock(self, product_id, quantity):
        await asyncio.sleep(0)
        product = self.products.get(product_id)
        if product is None:
            return 0
        product.stock += quantity
        return product.stock

    # Reservations -------------------------------------------------------

    async def add_reservation(self, reservation):
        await asyncio.sleep(0)
        self.reservations[reservation.id] = reservation

    async def get_reservation(self, reservation_id):
        await asyncio.sleep(0)
        return self.reservations.get(reservation_id)

    async def transition_reservation(self, reservation_id, expected, new):
        await asyncio.sleep(0)
        reservation = self.reservations.get(reservation_id)
        if reservation is None or reservation.status != expected:
            return False
        reservation.status = new
        reservation.updated_at = utc_now()
        return True

    # Orders -------------------------------------------------------------

    async def add_order(self, order):
        await asyncio.sleep(0)
        if order.order_number in {o.order_number for o in self.orders.values()}:
            raise ValueError(f"Duplicate order number {order.order_number}")
        order.version = 1
        self.orders[order.id] = order
        self._versions[order.id] = 1

    async def save_order(self, order):
        await asyncio.sleep(0)
        if self._versions.get(order.id) != order.version:
            raise ConcurrentModification("Order was modified concurrently")
        order.version += 1
        order.updated_at = utc_now()
        self._versions[order.id] = order.version

    async def get_order(self, order_id):
        await asyncio.sleep(0)
        return self.orders.get(order_id)

    async def get_order_by_number(self, order_number):
        await asyncio.sleep(0)
        for order in self.orders.values():
            if order.order_number == order_number:
                return order
        return None

    async def find_order_by_gateway_order_id(self, gateway_order_id):
        await asyncio.sleep(0)
        for order in self.orders.values():
            if order.payment_for(gateway_order_id) is not None:
                return order
        return None

    async def list_orders(self, user_id, status=None, offset=0, limit=10):
        await asyncio.sleep(0)
        matching = [
            order
            for order in self.orders.values()
            if order.user_id == user_id
            and (status is None or order.order_status == status)
        ]
        matching.sort(key=lambda o: o.created_at, reverse=True)
        return matching[offset : offset + limit], len(matching)

    async def list_stale_pending_orders(self, cutoff, limit=200):
        await asyncio.sleep(0)
        stale = [
            order
            for order in self.orders.values()
            if order.order_status == OrderStatus.PENDING
            and order.payment_status != PaymentStatus.COMPLETED
            and ensure_aware(order.created_at) <= cutoff
        ]
        stale.sort(key=lambda o: o.created_at)
        return stale[:limit]

    def stock_of(self, product_id: uuid.UUID) -> Optional[int]:
        product = self.products.get(product_id)
        return product.stock if product else None
