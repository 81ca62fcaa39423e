"""
Stock reservation management.

Reservations are short-lived database rows that hold product units for a
pending order between checkout and payment confirmation. Availability for a
product is its committed ``stock_quantity`` minus the quantity held by live
(unexpired) reservations. Stock itself is decremented only by ``commit``.

All methods run inside the caller's session and leave the transaction open;
callers decide when to commit.
"""

import asyncio
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.core.config import get_settings
from storefront.core.logging import get_logger
from storefront.database.base import utc_now
from storefront.database.models import OrderItem, Product, StockReservation

logger = get_logger(__name__)


class ReservationError(Exception):
    """Base exception for reservation operations."""

    def __init__(self, message: str, code: str, **context: Any):
        super().__init__(message)
        self.code = code
        self.context = context


class InsufficientStockError(ReservationError):
    """Raised when a product cannot cover the requested quantity."""

    def __init__(self, product_id: uuid.UUID, requested: int, available: int, **context: Any):
        super().__init__(
            f"Insufficient stock for product {product_id}",
            code="INSUFFICIENT_STOCK",
            product_id=str(product_id),
            requested=requested,
            available=available,
            **context,
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class ReservationProductNotFoundError(ReservationError):
    def __init__(self, product_ids: Iterable[uuid.UUID]):
        ids = sorted(str(pid) for pid in product_ids)
        super().__init__(
            "Products not found for reservation",
            code="PRODUCT_NOT_FOUND",
            product_ids=ids,
        )


@dataclass
class CommitResult:
    """Outcome of converting an order's reservations into a stock decrement."""

    order_id: uuid.UUID
    committed: dict[uuid.UUID, int] = field(default_factory=dict)
    shortfalls: dict[uuid.UUID, int] = field(default_factory=dict)
    from_order_items: bool = False

    @property
    def complete(self) -> bool:
        return not self.shortfalls


def _merge_quantities(items: Iterable[tuple[uuid.UUID, int]]) -> dict[uuid.UUID, int]:
    merged: dict[uuid.UUID, int] = defaultdict(int)
    for product_id, quantity in items:
        if quantity <= 0:
            raise ValueError(f"Reservation quantity must be positive, got {quantity}")
        merged[product_id] += quantity
    return dict(merged)


class StockReservationManager:
    """
    Reserve, commit and release stock for orders.

    ``reserve`` locks the affected product rows (``SELECT ... FOR UPDATE`` on
    PostgreSQL, an immediate write transaction on SQLite) so two concurrent
    checkouts cannot both see the same free units.
    """

    def __init__(self, session: AsyncSession, ttl: Optional[timedelta] = None):
        self.session = session
        self.ttl = ttl or timedelta(minutes=get_settings().reservation_ttl_minutes)

    async def _reserved_quantities(
        self,
        product_ids: Iterable[uuid.UUID],
        now: datetime,
    ) -> dict[uuid.UUID, int]:
        stmt = (
            select(StockReservation.product_id, func.sum(StockReservation.quantity))
            .where(
                StockReservation.product_id.in_(list(product_ids)),
                StockReservation.expires_at > now,
            )
            .group_by(StockReservation.product_id)
        )
        result = await self.session.execute(stmt)
        return {product_id: int(total or 0) for product_id, total in result.all()}

    async def available_quantity(self, product_id: uuid.UUID) -> int:
        """Committed stock minus live reservations for one product."""
        product = await self.session.get(Product, product_id)
        if product is None:
            raise ReservationProductNotFoundError([product_id])
        reserved = await self._reserved_quantities([product_id], utc_now())
        return max(product.stock_quantity - reserved.get(product_id, 0), 0)

    async def reserve(
        self,
        order_id: Optional[uuid.UUID],
        items: Iterable[tuple[uuid.UUID, int]],
        user_id: uuid.UUID,
        ttl: Optional[timedelta] = None,
    ) -> list[StockReservation]:
        """
        Reserve every line of an order or none of them.

        Args:
            order_id: Order the reservation backs, may be None before the
                order exists
            items: (product_id, quantity) pairs, duplicates are merged
            user_id: Reserving user
            ttl: Lifetime override, defaults to the configured TTL

        Returns:
            Created reservation rows, one per distinct product

        Raises:
            InsufficientStockError: If any product lacks free units
            ReservationProductNotFoundError: If a product does not exist
        """
        requested = _merge_quantities(items)
        if not requested:
            raise ValueError("Cannot reserve an empty item list")

        now = utc_now()
        expires_at = now + (ttl or self.ttl)

        locked = await self.session.execute(
            select(Product)
            .where(Product.id.in_(list(requested)))
            .order_by(Product.id)
            .with_for_update()
        )
        products = {product.id: product for product in locked.scalars().all()}

        missing = set(requested) - set(products)
        if missing:
            raise ReservationProductNotFoundError(missing)

        reserved = await self._reserved_quantities(requested, now)

        shortages = []
        for product_id, quantity in requested.items():
            available = products[product_id].stock_quantity - reserved.get(product_id, 0)
            if available < quantity:
                shortages.append((product_id, quantity, max(available, 0)))

        if shortages:
            product_id, quantity, available = shortages[0]
            logger.info(
                "Reservation rejected",
                order_id=str(order_id) if order_id else None,
                shortages=[
                    {"product_id": str(pid), "requested": q, "available": a}
                    for pid, q, a in shortages
                ],
            )
            raise InsufficientStockError(
                product_id,
                requested=quantity,
                available=available,
                shortages=len(shortages),
            )

        reservations = [
            StockReservation(
                product_id=product_id,
                user_id=user_id,
                order_id=order_id,
                quantity=quantity,
                expires_at=expires_at,
            )
            for product_id, quantity in requested.items()
        ]
        self.session.add_all(reservations)
        await self.session.flush()

        logger.info(
            "Stock reserved",
            order_id=str(order_id) if order_id else None,
            products=len(reservations),
            expires_at=expires_at.isoformat(),
        )
        return reservations

    async def commit(self, order_id: uuid.UUID) -> CommitResult:
        """
        Permanently decrement stock for an order and drop its reservations.

        Each decrement is a guarded ``UPDATE ... WHERE stock_quantity >= q``
        so stock never goes negative. When the reservations have already
        been swept, the order's items are used instead. Lines that cannot be
        covered are returned as shortfalls rather than raised.
        """
        rows = await self.session.execute(
            select(StockReservation.product_id, StockReservation.quantity).where(
                StockReservation.order_id == order_id
            )
        )
        pairs = [(product_id, quantity) for product_id, quantity in rows.all()]

        result = CommitResult(order_id=order_id)
        if not pairs:
            items = await self.session.execute(
                select(OrderItem.product_id, OrderItem.quantity).where(
                    OrderItem.order_id == order_id
                )
            )
            pairs = [(product_id, quantity) for product_id, quantity in items.all()]
            result.from_order_items = True
            logger.warning(
                "No reservations found at commit, using order items",
                order_id=str(order_id),
            )

        for product_id, quantity in sorted(_merge_quantities(pairs).items()):
            outcome = await self.session.execute(
                update(Product)
                .where(Product.id == product_id, Product.stock_quantity >= quantity)
                .values(stock_quantity=Product.stock_quantity - quantity)
                .execution_options(synchronize_session=False)
            )
            if outcome.rowcount == 1:
                result.committed[product_id] = quantity
            else:
                result.shortfalls[product_id] = quantity

        await self.session.execute(
            delete(StockReservation)
            .where(StockReservation.order_id == order_id)
            .execution_options(synchronize_session=False)
        )

        if result.shortfalls:
            logger.error(
                "Stock commit shortfall",
                order_id=str(order_id),
                shortfalls={str(k): v for k, v in result.shortfalls.items()},
                alert=True,
            )
        else:
            logger.info(
                "Stock committed",
                order_id=str(order_id),
                products=len(result.committed),
            )
        return result

    async def release(self, order_id: uuid.UUID) -> int:
        """Delete an order's reservations without touching stock."""
        outcome = await self.session.execute(
            delete(StockReservation)
            .where(StockReservation.order_id == order_id)
            .execution_options(synchronize_session=False)
        )
        released = outcome.rowcount or 0
        logger.info("Reservations released", order_id=str(order_id), released=released)
        return released

    async def sweep_expired(self, now: Optional[datetime] = None) -> int:
        """
        Delete reservations whose TTL has elapsed.

        Expired rows already stop counting against availability, so the sweep
        only reclaims storage. It never touches stock, which makes
        overlapping sweeps harmless.
        """
        outcome = await self.session.execute(
            delete(StockReservation)
            .where(StockReservation.expires_at <= (now or utc_now()))
            .execution_options(synchronize_session=False)
        )
        swept = outcome.rowcount or 0
        if swept:
            logger.info("Expired reservations swept", swept=swept)
        return swept


class ReservationSweeper:
    """
    Background task that periodically removes expired reservations.

    Each run uses its own session from the supplied factory.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        interval_seconds: Optional[int] = None,
    ):
        self._session_factory = session_factory
        self.interval_seconds = (
            interval_seconds or get_settings().reservation_sweep_interval_seconds
        )
        self._task: Optional[asyncio.Task] = None

    async def run_once(self) -> int:
        async with self._session_factory() as session:
            try:
                swept = await StockReservationManager(session).sweep_expired()
                await session.commit()
                return swept
            except SQLAlchemyError:
                await session.rollback()
                raise

    async def start(self) -> None:
        if self._task is not None and not self._task.done():
            logger.warning("Reservation sweeper already running")
            return

        async def sweep_loop():
            logger.info(
                "Starting reservation sweeper",
                interval_seconds=self.interval_seconds,
            )
            while True:
                try:
                    await asyncio.sleep(self.interval_seconds)
                    await self.run_once()
                except asyncio.CancelledError:
                    logger.info("Reservation sweeper cancelled")
                    break
                except Exception as e:
                    logger.error(
                        "Error in reservation sweeper",
                        error=str(e),
                        error_type=type(e).__name__,
                    )

        self._task = asyncio.create_task(sweep_loop())

    async def stop(self) -> None:
        if self._task is None or self._task.done():
            return

        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass

        self._task = None
        logger.info("Reservation sweeper stopped")

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()
