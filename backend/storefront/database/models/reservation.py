"""Stock reservation model."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from storefront.database.base import BaseModel, UTCDateTime


class StockReservation(BaseModel):
    """
    Temporary claim on product stock for a pending order.

    A row counts against availability only while ``expires_at`` is in the
    future. Rows are removed on stock commit, on release and by the expiry
    sweep.
    """

    __tablename__ = "stock_reservations"

    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=True,
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_stock_reservations_quantity_positive"),
        Index("ix_stock_reservations_product_expires", "product_id", "expires_at"),
        Index("ix_stock_reservations_order", "order_id"),
    )
