"""Shopping cart model."""

import uuid

from sqlalchemy import CheckConstraint, ForeignKey, Integer, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from storefront.database.base import BaseModel


class CartItem(BaseModel):
    """Server-side cart line, cleared once the user's order is paid."""

    __tablename__ = "shopping_cart"

    user_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, index=True)
    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __table_args__ = (
        UniqueConstraint("user_id", "product_id", name="uq_shopping_cart_user_product"),
        CheckConstraint("quantity > 0", name="ck_shopping_cart_quantity_positive"),
    )
