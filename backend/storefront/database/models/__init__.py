"""
Database models package.

Importing this package registers every table with ``Base.metadata`` for
Alembic and for test schema creation.
"""

from storefront.database.base import Base, BaseModel
from storefront.database.models.audit_log import AuditLog
from storefront.database.models.cart import CartItem
from storefront.database.models.courier import CourierRider
from storefront.database.models.discount_code import DiscountCode, DiscountType
from storefront.database.models.invoice import Invoice, InvoiceStatus
from storefront.database.models.order import Order, OrderItem, OrderStatus, PaymentStatus
from storefront.database.models.product import Product
from storefront.database.models.reservation import StockReservation
from storefront.database.models.webhook_event import WebhookEvent, WebhookEventStatus

__all__ = [
    "Base",
    "BaseModel",
    "AuditLog",
    "CartItem",
    "CourierRider",
    "DiscountCode",
    "DiscountType",
    "Invoice",
    "InvoiceStatus",
    "Order",
    "OrderItem",
    "OrderStatus",
    "PaymentStatus",
    "Product",
    "StockReservation",
    "WebhookEvent",
    "WebhookEventStatus",
]
