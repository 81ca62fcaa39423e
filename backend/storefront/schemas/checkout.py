"""
Checkout request/response schemas.
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from storefront.schemas.orders import OrderResponse


class CartItemRequest(BaseModel):
    product_id: UUID = Field(..., description="Product identifier")
    quantity: int = Field(..., gt=0, le=1000, description="Units to purchase")


class ShippingAddress(BaseModel):
    """Delivery address captured at checkout."""

    model_config = ConfigDict(str_strip_whitespace=True)

    full_name: str = Field(..., min_length=1, max_length=255)
    phone: str = Field(..., min_length=5, max_length=30)
    address: str = Field(..., min_length=1, max_length=500, description="Street address")
    city: str = Field(..., min_length=1, max_length=100)
    state: str = Field(..., min_length=1, max_length=100, description="State or region")
    postal_code: Optional[str] = Field(None, max_length=20)
    country: str = Field(..., min_length=2, max_length=100)


class CheckoutRequest(BaseModel):
    cart_items: list[CartItemRequest] = Field(..., min_length=1)
    shipping_address: ShippingAddress
    discount_code: Optional[str] = Field(None, max_length=50)
    callback_url: Optional[str] = Field(
        None,
        max_length=500,
        description="Post-payment redirect, defaults to the storefront success page",
    )


class PaymentSessionResponse(BaseModel):
    authorization_url: str
    access_code: str
    reference: str


class CheckoutResponse(BaseModel):
    order: OrderResponse
    payment: PaymentSessionResponse
    subtotal_amount: Decimal
    discount_amount: Decimal
    final_amount: Decimal
