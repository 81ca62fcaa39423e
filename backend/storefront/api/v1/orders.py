"""
Order API endpoints for customers.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, status

from storefront.api.deps import CurrentContext, DatabaseSession
from storefront.core.logging import get_logger
from storefront.database.models import OrderStatus
from storefront.schemas.orders import OrderListResponse, OrderResponse
from storefront.services.orders import (
    InvalidOrderStateError,
    OrderNotFoundError,
    OrderService,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])


@router.get("", response_model=OrderListResponse, summary="List orders")
async def list_orders(
    ctx: CurrentContext,
    db: DatabaseSession,
    status_filter: Optional[OrderStatus] = Query(None, alias="status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    all_users: bool = Query(False, description="Admins only: include every user's orders"),
) -> OrderListResponse:
    orders, total = await OrderService(db).list_orders(
        ctx, status=status_filter, skip=skip, limit=limit, all_users=all_users
    )
    return OrderListResponse(
        orders=[OrderResponse.model_validate(order) for order in orders],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.get("/{order_id}", response_model=OrderResponse, summary="Get order")
async def get_order(order_id: UUID, ctx: CurrentContext, db: DatabaseSession) -> OrderResponse:
    try:
        order = await OrderService(db).get_order(ctx, order_id)
    except OrderNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"message": str(e), "code": e.code},
        ) from e
    return OrderResponse.model_validate(order)


@router.post(
    "/{order_id}/cancel",
    response_model=OrderResponse,
    summary="Cancel an unpaid order",
)
async def cancel_order(
    order_id: UUID, ctx: CurrentContext, db: DatabaseSession
) -> OrderResponse:
    """
    Cancel an order still awaiting payment and release its reserved stock.

    Raises:
        HTTPException: 404 unknown order, 409 order already paid or closed
    """
    service = OrderService(db)
    try:
        order = await service.cancel_order(ctx, order_id)
    except OrderNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"message": str(e), "code": e.code},
        ) from e
    except InvalidOrderStateError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": str(e), "code": e.code, "context": e.context},
        ) from e
    return OrderResponse.model_validate(order)
