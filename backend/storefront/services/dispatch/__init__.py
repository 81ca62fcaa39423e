"""Courier matching and dispatch."""

from storefront.services.dispatch.matcher import (
    CourierCandidate,
    CourierDispatchMatcher,
    CourierNotFoundError,
    CourierUnavailableError,
    DispatchError,
    haversine_km,
)

__all__ = [
    "CourierCandidate",
    "CourierDispatchMatcher",
    "CourierNotFoundError",
    "CourierUnavailableError",
    "DispatchError",
    "haversine_km",
]
