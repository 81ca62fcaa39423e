"""
Paystack webhook endpoint.
"""

from fastapi import APIRouter, HTTPException, Request, status

from storefront.api.deps import DatabaseSession, Paystack
from storefront.core.config import get_settings
from storefront.core.logging import get_logger
from storefront.schemas.payments import WebhookAckResponse
from storefront.services.payments import (
    OrderNotFoundForReferenceError,
    PaymentWebhookReconciler,
    ReconciliationError,
    SignatureInvalidError,
    VerificationFailedError,
    WebhookPayloadError,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])

FALLBACK_SIGNATURE_HEADER = "x-signature"


@router.post(
    "/webhook",
    response_model=WebhookAckResponse,
    status_code=status.HTTP_200_OK,
    summary="Handle Paystack webhook",
    description="Verify, de-duplicate and apply a payment notification",
)
async def handle_webhook(
    request: Request,
    db: DatabaseSession,
    paystack: Paystack,
) -> WebhookAckResponse:
    """
    Handle a Paystack webhook delivery.

    Any non-2xx response makes the gateway redeliver, so only failures that
    a retry could fix return 5xx.

    Raises:
        HTTPException: 401 bad signature, 400 malformed event, 502 payment not
            verified, 500 reconciliation failure
    """
    payload = await request.body()
    signature = request.headers.get(
        get_settings().webhook_signature_header
    ) or request.headers.get(FALLBACK_SIGNATURE_HEADER)

    reconciler = PaymentWebhookReconciler(db, paystack)
    try:
        result = await reconciler.handle(payload, signature)
    except SignatureInvalidError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"message": str(e), "code": e.code},
        ) from e
    except WebhookPayloadError as e:
        logger.warning("Malformed webhook payload", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": str(e), "code": e.code},
        ) from e
    except VerificationFailedError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"message": str(e), "code": e.code, "context": e.context},
        ) from e
    except (OrderNotFoundForReferenceError, ReconciliationError) as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"message": str(e), "code": e.code, "context": e.context},
        ) from e

    return WebhookAckResponse(**result.to_dict())
