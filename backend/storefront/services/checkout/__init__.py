"""Checkout orchestration and cart pricing."""

from storefront.services.checkout.service import (
    CartLine,
    CheckoutError,
    CheckoutOrchestrator,
    CheckoutResult,
    CheckoutValidationError,
    InsufficientStockError,
    PaymentInitializationError,
    ProductUnavailableError,
    ReservationFailedError,
)

__all__ = [
    "CartLine",
    "CheckoutError",
    "CheckoutOrchestrator",
    "CheckoutResult",
    "CheckoutValidationError",
    "InsufficientStockError",
    "PaymentInitializationError",
    "ProductUnavailableError",
    "ReservationFailedError",
]
