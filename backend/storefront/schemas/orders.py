"""
Order response schemas.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from storefront.database.models import OrderStatus, PaymentStatus


class OrderItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    product_id: UUID
    quantity: int
    unit_price: Decimal
    subtotal: Decimal


class OrderResponse(BaseModel):
    """Order as returned to customers and back-office users."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_number: str
    user_id: UUID
    status: OrderStatus
    payment_status: PaymentStatus
    total_amount: Decimal
    discount_amount: Decimal
    discount_code_used: Optional[str] = None
    shipping_address: dict[str, Any]
    payment_reference: Optional[str] = None
    assigned_courier_id: Optional[UUID] = None
    fraud_risk_score: Optional[int] = None
    fraud_flags: Optional[list[str]] = None
    items: list[OrderItemResponse] = []
    created_at: datetime
    updated_at: datetime


class OrderListResponse(BaseModel):
    orders: list[OrderResponse]
    total: int
    skip: int
    limit: int
