"""Order queries and cancellation."""

from storefront.services.orders.repository import OrderRepository, OrderRepositoryError
from storefront.services.orders.service import (
    InvalidOrderStateError,
    OrderNotFoundError,
    OrderService,
    OrderServiceError,
)

__all__ = [
    "InvalidOrderStateError",
    "OrderNotFoundError",
    "OrderRepository",
    "OrderRepositoryError",
    "OrderService",
    "OrderServiceError",
]
