"""Back-office reservation maintenance."""

from fastapi import APIRouter

from storefront.api.deps import AdminContext, DatabaseSession
from storefront.schemas.dispatch import SweepResponse
from storefront.services.reservations import StockReservationManager

router = APIRouter(prefix="/admin/reservations", tags=["admin", "reservations"])


@router.post("/sweep", response_model=SweepResponse, summary="Remove expired reservations")
async def sweep_reservations(ctx: AdminContext, db: DatabaseSession) -> SweepResponse:
    swept = await StockReservationManager(db).sweep_expired()
    await db.commit()
    return SweepResponse(swept=swept)
