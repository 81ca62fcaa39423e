"""
Back-office courier dispatch endpoints.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, status

from storefront.api.deps import AdminContext, DatabaseSession
from storefront.core.logging import get_logger
from storefront.schemas.dispatch import (
    AssignCourierRequest,
    CourierCandidateResponse,
    CourierCandidatesResponse,
)
from storefront.schemas.orders import OrderResponse
from storefront.services.dispatch import (
    CourierDispatchMatcher,
    CourierNotFoundError,
    CourierUnavailableError,
)
from storefront.services.orders import InvalidOrderStateError, OrderNotFoundError

logger = get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["admin", "dispatch"])


def _dispatch_http_error(error: Exception) -> HTTPException:
    if isinstance(error, (OrderNotFoundError, CourierNotFoundError)):
        status_code = status.HTTP_404_NOT_FOUND
    else:
        status_code = status.HTTP_409_CONFLICT
    return HTTPException(
        status_code=status_code,
        detail={"message": str(error), "code": error.code, "context": error.context},
    )


@router.get(
    "/couriers/candidates",
    response_model=CourierCandidatesResponse,
    summary="Rank available couriers for a drop-off point",
)
async def find_courier_candidates(
    ctx: AdminContext,
    db: DatabaseSession,
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
    radius_km: Optional[float] = Query(None, gt=0, le=500),
    limit: int = Query(5, ge=1, le=50),
) -> CourierCandidatesResponse:
    candidates = await CourierDispatchMatcher(db).find_candidates(
        lat, lng, radius_km=radius_km, limit=limit
    )
    return CourierCandidatesResponse(
        couriers=[
            CourierCandidateResponse.model_validate(candidate.to_dict())
            for candidate in candidates
        ]
    )


@router.post(
    "/orders/{order_id}/assign-courier",
    response_model=OrderResponse,
    summary="Dispatch an order with a courier",
)
async def assign_courier(
    order_id: UUID,
    payload: AssignCourierRequest,
    ctx: AdminContext,
    db: DatabaseSession,
) -> OrderResponse:
    try:
        order = await CourierDispatchMatcher(db).assign(order_id, payload.courier_id, ctx=ctx)
    except (
        OrderNotFoundError,
        CourierNotFoundError,
        CourierUnavailableError,
        InvalidOrderStateError,
    ) as e:
        logger.warning("Courier assignment rejected", error=str(e), error_code=e.code)
        raise _dispatch_http_error(e) from e
    return OrderResponse.model_validate(order)


@router.post(
    "/orders/{order_id}/complete-delivery",
    response_model=OrderResponse,
    summary="Mark an order delivered",
)
async def complete_delivery(
    order_id: UUID,
    ctx: AdminContext,
    db: DatabaseSession,
) -> OrderResponse:
    try:
        order = await CourierDispatchMatcher(db).complete_delivery(order_id, ctx=ctx)
    except (OrderNotFoundError, InvalidOrderStateError) as e:
        raise _dispatch_http_error(e) from e
    return OrderResponse.model_validate(order)
