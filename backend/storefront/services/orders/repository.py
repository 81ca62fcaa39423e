"""
Order data access.

Read paths shared by the order, fraud and dispatch services.
"""

import uuid
from datetime import datetime
from typing import Any, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.logging import get_logger
from storefront.database.models import Order, OrderStatus, PaymentStatus

logger = get_logger(__name__)


class OrderRepositoryError(Exception):
    """Base exception for order repository errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class OrderRepository:
    """Query helpers over ``orders`` bound to one session."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_order_by_id(
        self,
        order_id: uuid.UUID,
        for_update: bool = False,
    ) -> Optional[Order]:
        """
        Get order by ID with its items.

        Args:
            order_id: Order identifier
            for_update: Lock the row until the transaction ends

        Returns:
            Order if found, None otherwise

        Raises:
            OrderRepositoryError: If query fails
        """
        try:
            stmt = select(Order).where(Order.id == order_id)
            if for_update:
                stmt = stmt.with_for_update()
            result = await self.session.execute(stmt)
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("Failed to fetch order", order_id=str(order_id), error=str(e))
            raise OrderRepositoryError(
                "Failed to fetch order",
                order_id=str(order_id),
                error=str(e),
            ) from e

    async def list_orders(
        self,
        user_id: Optional[uuid.UUID] = None,
        status: Optional[OrderStatus] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> tuple[Sequence[Order], int]:
        """
        List orders newest first with pagination.

        Args:
            user_id: Restrict to one user, None lists every user's orders
            status: Optional status filter
            skip: Number of records to skip
            limit: Maximum number of records to return

        Returns:
            Tuple of (orders, total_count)
        """
        conditions = []
        if user_id is not None:
            conditions.append(Order.user_id == user_id)
        if status is not None:
            conditions.append(Order.status == status)

        try:
            result = await self.session.execute(
                select(Order)
                .where(*conditions)
                .order_by(Order.created_at.desc())
                .offset(skip)
                .limit(limit)
            )
            total = await self.session.execute(
                select(func.count()).select_from(Order).where(*conditions)
            )
            return result.scalars().all(), total.scalar_one()
        except SQLAlchemyError as e:
            logger.error("Failed to list orders", error=str(e))
            raise OrderRepositoryError("Failed to list orders", error=str(e)) from e

    async def count_orders_since(self, user_id: uuid.UUID, since: datetime) -> int:
        """Orders created by a user at or after ``since``."""
        result = await self.session.execute(
            select(func.count())
            .select_from(Order)
            .where(Order.user_id == user_id, Order.created_at >= since)
        )
        return result.scalar_one()

    async def recent_paid_orders(
        self,
        user_id: uuid.UUID,
        exclude_order_id: Optional[uuid.UUID] = None,
        created_before: Optional[datetime] = None,
        limit: int = 5,
    ) -> Sequence[Order]:
        """
        A user's most recent orders whose payment completed.

        Args:
            user_id: Order owner
            exclude_order_id: Order to leave out, usually the one being scored
            created_before: Only orders placed strictly before this time
            limit: Maximum number of orders to return
        """
        conditions = [
            Order.user_id == user_id,
            Order.payment_status == PaymentStatus.COMPLETED,
        ]
        if exclude_order_id is not None:
            conditions.append(Order.id != exclude_order_id)
        if created_before is not None:
            conditions.append(Order.created_at < created_before)

        result = await self.session.execute(
            select(Order)
            .where(*conditions)
            .order_by(Order.created_at.desc())
            .limit(limit)
        )
        return result.scalars().all()

    async def count_paid_orders(
        self,
        user_id: uuid.UUID,
        exclude_order_id: Optional[uuid.UUID] = None,
        created_before: Optional[datetime] = None,
    ) -> int:
        conditions = [
            Order.user_id == user_id,
            Order.payment_status == PaymentStatus.COMPLETED,
        ]
        if exclude_order_id is not None:
            conditions.append(Order.id != exclude_order_id)
        if created_before is not None:
            conditions.append(Order.created_at < created_before)

        result = await self.session.execute(
            select(func.count()).select_from(Order).where(*conditions)
        )
        return result.scalar_one()
