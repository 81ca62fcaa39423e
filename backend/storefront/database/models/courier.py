"""Courier rider model."""

from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import Boolean, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from storefront.database.base import BaseModel, JSONType


class CourierRider(BaseModel):
    """
    Delivery courier.

    ``current_location`` is ``{"lat": float, "lng": float}`` or null when the
    rider has not reported a position. ``is_available`` is false while the
    rider holds an assigned order.
    """

    __tablename__ = "courier_riders"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone_number: Mapped[str] = mapped_column(String(50), nullable=False)
    license_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    vehicle_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    current_location: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSONType, nullable=True
    )
    rating: Mapped[Optional[Decimal]] = mapped_column(Numeric(3, 2), nullable=True)
    total_deliveries: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
