"""
Order queries and customer cancellation.
"""

import uuid
from typing import Any, Optional, Sequence

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.logging import get_logger
from storefront.core.security import SessionContext
from storefront.database.base import utc_now
from storefront.database.models import Order, OrderStatus, PaymentStatus
from storefront.services.audit import record_audit
from storefront.services.orders.repository import OrderRepository
from storefront.services.reservations import StockReservationManager

logger = get_logger(__name__)


class OrderServiceError(Exception):
    """Base exception for order service errors."""

    def __init__(self, message: str, code: str = "ORDER_ERROR", **context: Any):
        super().__init__(message)
        self.code = code
        self.context = context


class OrderNotFoundError(OrderServiceError):
    def __init__(self, order_id: uuid.UUID):
        super().__init__(
            f"Order {order_id} not found",
            code="ORDER_NOT_FOUND",
            order_id=str(order_id),
        )


class InvalidOrderStateError(OrderServiceError):
    def __init__(self, message: str, current_status: Optional[str] = None, **context: Any):
        super().__init__(
            message,
            code="INVALID_ORDER_STATE",
            current_status=current_status,
            **context,
        )


class OrderService:
    """
    Customer-facing order operations.

    Owners see their own orders; admins see every order.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.repository = OrderRepository(session)
        self.reservations = StockReservationManager(session)

    async def get_order(self, ctx: SessionContext, order_id: uuid.UUID) -> Order:
        """
        Fetch one order visible to the caller.

        Raises:
            OrderNotFoundError: If missing or owned by another user
        """
        order = await self.repository.get_order_by_id(order_id)
        if order is None or (order.user_id != ctx.user_id and not ctx.is_admin):
            raise OrderNotFoundError(order_id)
        return order

    async def list_orders(
        self,
        ctx: SessionContext,
        status: Optional[OrderStatus] = None,
        skip: int = 0,
        limit: int = 20,
        all_users: bool = False,
    ) -> tuple[Sequence[Order], int]:
        user_id = None if (all_users and ctx.is_admin) else ctx.user_id
        return await self.repository.list_orders(
            user_id=user_id, status=status, skip=skip, limit=limit
        )

    async def cancel_order(self, ctx: SessionContext, order_id: uuid.UUID) -> Order:
        """
        Cancel an order that has not been paid and release its stock hold.

        Raises:
            OrderNotFoundError: If missing or not visible to the caller
            InvalidOrderStateError: If the order is no longer awaiting payment
        """
        order = await self.get_order(ctx, order_id)
        current_status = order.status.value

        outcome = await self.session.execute(
            update(Order)
            .where(
                Order.id == order_id,
                Order.status == OrderStatus.PENDING,
                Order.payment_status == PaymentStatus.PENDING,
            )
            .values(status=OrderStatus.CANCELLED, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        if outcome.rowcount != 1:
            await self.session.rollback()
            raise InvalidOrderStateError(
                "Only orders awaiting payment can be cancelled",
                current_status=current_status,
                order_id=str(order_id),
            )

        released = await self.reservations.release(order_id)
        await record_audit(
            self.session,
            action="order_cancelled",
            entity_type="order",
            entity_id=order_id,
            user_id=ctx.user_id,
            changes={"released_reservations": released},
        )
        await self.session.commit()
        await self.session.refresh(order)

        logger.info(
            "Order cancelled",
            order_id=str(order_id),
            order_number=order.order_number,
            released_reservations=released,
        )
        return order
