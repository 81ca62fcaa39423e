"""Discount code model."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Enum as SQLEnum,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column

from storefront.database.base import BaseModel, UTCDateTime


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class DiscountCode(BaseModel):
    """
    Promotional code redeemable at checkout.

    ``used_count`` is incremented once per order that completes payment,
    never when the code is merely validated.
    """

    __tablename__ = "discount_codes"

    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    discount_type: Mapped[DiscountType] = mapped_column(
        SQLEnum(
            DiscountType,
            name="discount_type",
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
    )
    discount_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    valid_from: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    valid_until: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    max_uses: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    used_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    min_purchase_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(12, 2), nullable=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint("discount_value >= 0", name="ck_discount_codes_value_non_negative"),
        CheckConstraint("used_count >= 0", name="ck_discount_codes_used_non_negative"),
        CheckConstraint("valid_until > valid_from", name="ck_discount_codes_window"),
    )
