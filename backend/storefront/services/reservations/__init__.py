"""Stock reservation management."""

from storefront.services.reservations.service import (
    CommitResult,
    InsufficientStockError,
    ReservationError,
    ReservationSweeper,
    StockReservationManager,
)

__all__ = [
    "CommitResult",
    "InsufficientStockError",
    "ReservationError",
    "ReservationSweeper",
    "StockReservationManager",
]
