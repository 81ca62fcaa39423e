"""
Back-office fraud scoring endpoint.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, HTTPException, status

from storefront.api.deps import AdminContext, DatabaseSession
from storefront.schemas.fraud import FraudCheckRequest, FraudCheckResponse
from storefront.services.fraud import FraudRiskScorer
from storefront.services.orders import OrderNotFoundError

router = APIRouter(prefix="/admin/orders", tags=["admin", "fraud"])


@router.post(
    "/{order_id}/fraud-check",
    response_model=FraudCheckResponse,
    summary="Score an order for fraud risk",
)
async def fraud_check(
    order_id: UUID,
    ctx: AdminContext,
    db: DatabaseSession,
    payload: Optional[FraudCheckRequest] = None,
) -> FraudCheckResponse:
    payload = payload or FraudCheckRequest()
    try:
        assessment = await FraudRiskScorer(db).score(
            order_id,
            ctx=ctx,
            device_fingerprint=payload.device_fingerprint,
            ip_address=payload.ip_address,
        )
    except OrderNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"message": str(e), "code": e.code},
        ) from e
    return FraudCheckResponse(**assessment.to_dict())
