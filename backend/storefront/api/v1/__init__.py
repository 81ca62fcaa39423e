"""
API v1 routers.
"""

from fastapi import APIRouter

from storefront.api.v1.checkout import router as checkout_router
from storefront.api.v1.dispatch import router as dispatch_router
from storefront.api.v1.fraud import router as fraud_router
from storefront.api.v1.orders import router as orders_router
from storefront.api.v1.payments import router as payments_router
from storefront.api.v1.reservations import router as reservations_router

api_router = APIRouter()
api_router.include_router(checkout_router)
api_router.include_router(payments_router)
api_router.include_router(orders_router)
api_router.include_router(fraud_router)
api_router.include_router(dispatch_router)
api_router.include_router(reservations_router)

__all__ = ["api_router"]
