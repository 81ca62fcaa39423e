"""
Checkout API endpoint.
"""

from fastapi import APIRouter, HTTPException, Request, status

from storefront.api.deps import CurrentContext, DatabaseSession, Paystack
from storefront.core.config import get_settings
from storefront.core.logging import get_logger
from storefront.core.rate_limit import limiter
from storefront.schemas.checkout import (
    CheckoutRequest,
    CheckoutResponse,
    PaymentSessionResponse,
)
from storefront.schemas.orders import OrderResponse
from storefront.services.checkout import (
    CartLine,
    CheckoutError,
    CheckoutOrchestrator,
    CheckoutValidationError,
    InsufficientStockError,
    PaymentInitializationError,
    ProductUnavailableError,
    ReservationFailedError,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/checkout", tags=["checkout"])

_STATUS_BY_ERROR = (
    (CheckoutValidationError, status.HTTP_400_BAD_REQUEST),
    (ProductUnavailableError, status.HTTP_400_BAD_REQUEST),
    (InsufficientStockError, status.HTTP_409_CONFLICT),
    (ReservationFailedError, status.HTTP_409_CONFLICT),
    (PaymentInitializationError, status.HTTP_502_BAD_GATEWAY),
)


def _status_for(error: CheckoutError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@router.post(
    "",
    response_model=CheckoutResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Place an order",
    description="Price the cart, reserve stock and open a Paystack payment session",
)
@limiter.limit(get_settings().checkout_rate_limit)
async def create_checkout(
    request: Request,
    payload: CheckoutRequest,
    ctx: CurrentContext,
    db: DatabaseSession,
    paystack: Paystack,
) -> CheckoutResponse:
    """
    Start checkout for the authenticated user.

    Raises:
        HTTPException: 400 invalid cart or product, 409 stock conflict,
            502 payment gateway failure
    """
    orchestrator = CheckoutOrchestrator(db, paystack)

    try:
        result = await orchestrator.checkout(
            ctx,
            cart_items=[
                CartLine(product_id=item.product_id, quantity=item.quantity)
                for item in payload.cart_items
            ],
            shipping_address=payload.shipping_address.model_dump(),
            discount_code=payload.discount_code,
            callback_url=payload.callback_url,
        )
    except CheckoutError as e:
        status_code = _status_for(e)
        log = logger.error if status_code >= 500 else logger.warning
        log("Checkout failed", error=str(e), error_code=e.code, context=e.context)
        raise HTTPException(
            status_code=status_code,
            detail={"message": str(e), "code": e.code, "context": e.context},
        ) from e

    return CheckoutResponse(
        order=OrderResponse.model_validate(result.order),
        payment=PaymentSessionResponse(
            authorization_url=result.payment.authorization_url,
            access_code=result.payment.access_code,
            reference=result.payment.reference,
        ),
        subtotal_amount=result.pricing.total_amount,
        discount_amount=result.pricing.discount_amount,
        final_amount=result.pricing.final_amount,
    )
