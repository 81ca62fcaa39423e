"""
Paystack webhook reconciliation.

Inbound notifications are at-least-once and may be redelivered at any time.
Handling proceeds in this order:

1. HMAC-SHA512 signature check over the raw body.
2. Claim the event id in ``webhook_events``. The unique constraint on the id
   is the idempotency guard; a processed event, or one another worker holds
   a fresh claim on, is acknowledged without further work.
3. Verify the transaction with Paystack's server-to-server endpoint.
4. In one transaction: mark the order paid, count the discount use, commit
   reserved stock, clear the user's cart, issue the invoice and mark the
   event processed.

An event whose verification or reconciliation fails is marked ``failed``
and the error is returned to the gateway, so its own redelivery re-claims
the event and retries it. The order update is conditional on the order
still awaiting payment, so a retried event can never be applied twice.
"""

import json
import uuid
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import get_settings
from storefront.core.logging import get_logger, log_performance
from storefront.database.base import utc_now
from storefront.database.models import (
    CartItem,
    DiscountCode,
    Invoice,
    InvoiceStatus,
    Order,
    OrderStatus,
    PaymentStatus,
    WebhookEvent,
    WebhookEventStatus,
)
from storefront.services.audit import record_audit
from storefront.services.payments.paystack_client import (
    PaystackClient,
    PaystackClientError,
    TransactionVerification,
    to_minor_units,
)
from storefront.services.reservations import StockReservationManager

logger = get_logger(__name__)

CHARGE_SUCCESS = "charge.success"


class ReconciliationError(Exception):
    """Base exception for webhook reconciliation."""

    def __init__(self, message: str, code: str = "RECONCILIATION_FAILED", **context: Any):
        super().__init__(message)
        self.code = code
        self.context = context


class SignatureInvalidError(ReconciliationError):
    def __init__(self, **context: Any):
        super().__init__("Invalid webhook signature", code="INVALID_SIGNATURE", **context)


class WebhookPayloadError(ReconciliationError):
    def __init__(self, message: str, **context: Any):
        super().__init__(message, code="INVALID_PAYLOAD", **context)


class VerificationFailedError(ReconciliationError):
    def __init__(self, message: str, **context: Any):
        super().__init__(message, code="VERIFICATION_FAILED", **context)


class OrderNotFoundForReferenceError(ReconciliationError):
    def __init__(self, reference: str, **context: Any):
        super().__init__(
            f"No order matches payment reference {reference}",
            code="ORDER_NOT_FOUND_FOR_REFERENCE",
            reference=reference,
            **context,
        )


class WebhookOutcome(str, Enum):
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    ALREADY_APPLIED = "already_applied"


@dataclass(frozen=True)
class WebhookResult:
    event_id: str
    event_type: str
    outcome: WebhookOutcome
    order_number: Optional[str] = None
    invoice_number: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.outcome.value,
            "event_id": self.event_id,
            "event_type": self.event_type,
            "order_number": self.order_number,
            "invoice_number": self.invoice_number,
        }


def generate_invoice_number() -> str:
    timestamp = int(utc_now().timestamp() * 1000)
    return f"INV-{timestamp}-{uuid.uuid4().hex[:9].upper()}"


def _event_identity(event: dict[str, Any]) -> tuple[str, str]:
    event_type = event.get("event")
    data = event.get("data")
    if not isinstance(event_type, str) or not isinstance(data, dict):
        raise WebhookPayloadError("Webhook payload is missing 'event' or 'data'")

    if event.get("id") is not None:
        return str(event["id"]), event_type
    if data.get("id") is not None:
        return f"{event_type}:{data['id']}", event_type
    if data.get("reference"):
        return f"{event_type}:{data['reference']}", event_type
    raise WebhookPayloadError("Webhook payload carries no event identifier")


class PaymentWebhookReconciler:
    """
    Applies verified Paystack payment notifications to orders exactly once.

    Args:
        session: Database session; this class owns its transaction boundaries
        paystack: Gateway client for signature and transaction verification
    """

    def __init__(self, session: AsyncSession, paystack: PaystackClient):
        self.session = session
        self.paystack = paystack
        self.reservations = StockReservationManager(session)
        self.settings = get_settings()

    async def handle(self, raw_body: bytes, signature: Optional[str]) -> WebhookResult:
        """
        Process one webhook delivery.

        Returns:
            WebhookResult describing what was done

        Raises:
            SignatureInvalidError: Signature mismatch, nothing written
            WebhookPayloadError: Body is not a usable event
            VerificationFailedError: Gateway did not confirm the payment
            OrderNotFoundForReferenceError: Verified payment with no order
            ReconciliationError: Order could not be updated
        """
        if not self.paystack.verify_webhook_signature(raw_body, signature):
            logger.warning(
                "Webhook signature verification failed",
                security_event=True,
                signature_present=bool(signature),
            )
            raise SignatureInvalidError()

        try:
            event = json.loads(raw_body)
        except ValueError as e:
            raise WebhookPayloadError("Webhook body is not valid JSON") from e
        if not isinstance(event, dict):
            raise WebhookPayloadError("Webhook body must be a JSON object")

        event_id, event_type = _event_identity(event)

        if not await self._claim_event(event_id, event_type, event):
            logger.info("Duplicate webhook delivery", event_id=event_id, event_type=event_type)
            return WebhookResult(event_id, event_type, WebhookOutcome.DUPLICATE)

        if event_type != CHARGE_SUCCESS:
            await self._finish_event(event_id)
            logger.info("Webhook event ignored", event_id=event_id, event_type=event_type)
            return WebhookResult(event_id, event_type, WebhookOutcome.IGNORED)

        reference = event["data"].get("reference")
        if not reference:
            await self._fail_event(event_id, "missing reference")
            raise WebhookPayloadError("charge.success event has no reference", event_id=event_id)

        with log_performance(logger, "reconcile_payment", event_id=event_id, reference=reference):
            verification = await self._verify(event_id, reference)
            return await self._apply_payment(event_id, event_type, reference, verification)

    async def _claim_event(
        self,
        event_id: str,
        event_type: str,
        payload: dict[str, Any],
    ) -> bool:
        """
        Take ownership of an event id.

        Returns:
            True if this delivery should process the event
        """
        now = utc_now()
        self.session.add(
            WebhookEvent(
                event_id=event_id,
                event_type=event_type,
                payload=payload,
                status=WebhookEventStatus.RECEIVED,
                attempts=1,
                claimed_at=now,
            )
        )
        try:
            await self.session.commit()
            return True
        except IntegrityError:
            await self.session.rollback()

        existing = (
            await self.session.execute(
                select(WebhookEvent).where(WebhookEvent.event_id == event_id)
            )
        ).scalar_one()
        await self.session.commit()

        if existing.status == WebhookEventStatus.PROCESSED:
            return False

        lease = timedelta(seconds=self.settings.webhook_claim_lease_seconds)
        if existing.status == WebhookEventStatus.RECEIVED and existing.claimed_at > now - lease:
            return False

        # Failed, or abandoned by a worker that never finished: retake it,
        # using the attempt counter as a version check.
        outcome = await self.session.execute(
            update(WebhookEvent)
            .where(
                WebhookEvent.event_id == event_id,
                WebhookEvent.status == existing.status,
                WebhookEvent.attempts == existing.attempts,
            )
            .values(
                status=WebhookEventStatus.RECEIVED,
                attempts=existing.attempts + 1,
                claimed_at=now,
                payload=payload,
            )
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()

        reclaimed = outcome.rowcount == 1
        if reclaimed:
            logger.info(
                "Webhook event reclaimed for retry",
                event_id=event_id,
                previous_status=existing.status.value,
                attempt=existing.attempts + 1,
            )
        return reclaimed

    async def _finish_event(self, event_id: str) -> None:
        await self.session.execute(
            update(WebhookEvent)
            .where(WebhookEvent.event_id == event_id)
            .values(status=WebhookEventStatus.PROCESSED, processed_at=utc_now(), last_error=None)
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()

    async def _fail_event(self, event_id: str, error: str) -> None:
        await self.session.execute(
            update(WebhookEvent)
            .where(WebhookEvent.event_id == event_id)
            .values(status=WebhookEventStatus.FAILED, last_error=error[:1000])
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()

    async def _verify(self, event_id: str, reference: str) -> TransactionVerification:
        try:
            verification = await self.paystack.verify_transaction(reference)
        except PaystackClientError as e:
            await self._fail_event(event_id, f"verification error: {e.code}")
            logger.error(
                "Payment verification unavailable",
                event_id=event_id,
                reference=reference,
                error_code=e.code,
                alert=True,
            )
            raise VerificationFailedError(
                "Could not verify transaction with gateway",
                reference=reference,
                gateway_code=e.code,
            ) from e

        if not verification.successful:
            await self._fail_event(event_id, f"transaction status {verification.status}")
            logger.error(
                "Payment verification failed",
                event_id=event_id,
                reference=reference,
                gateway_status=verification.status,
                alert=True,
            )
            raise VerificationFailedError(
                "Gateway did not confirm the transaction",
                reference=reference,
                gateway_status=verification.status,
            )

        return verification

    async def _apply_payment(
        self,
        event_id: str,
        event_type: str,
        reference: str,
        verification: TransactionVerification,
    ) -> WebhookResult:
        try:
            order = (
                await self.session.execute(
                    select(Order).where(Order.order_number == reference).with_for_update()
                )
            ).scalar_one_or_none()

            if order is None:
                await self.session.rollback()
                await self._fail_event(event_id, "order not found")
                logger.error(
                    "Verified payment has no matching order",
                    event_id=event_id,
                    reference=reference,
                    alert=True,
                )
                raise OrderNotFoundForReferenceError(reference, event_id=event_id)

            # A rollback expires ``order``; keep plain copies for the failure paths.
            order_id, order_total = order.id, order.total_amount

            if verification.amount_minor_units is not None and (
                verification.amount_minor_units != to_minor_units(order_total)
            ):
                await self.session.rollback()
                await self._fail_event(event_id, "amount mismatch")
                logger.error(
                    "Verified amount does not match order total",
                    event_id=event_id,
                    reference=reference,
                    verified_amount=verification.amount_minor_units,
                    order_total=str(order_total),
                    alert=True,
                )
                raise VerificationFailedError(
                    "Verified amount does not match order total",
                    reference=reference,
                    verified_amount=verification.amount_minor_units,
                )

            transitioned = await self.session.execute(
                update(Order)
                .where(
                    Order.id == order_id,
                    Order.status == OrderStatus.PENDING,
                    Order.payment_status == PaymentStatus.PENDING,
                )
                .values(
                    payment_status=PaymentStatus.COMPLETED,
                    payment_reference=reference,
                    status=OrderStatus.PROCESSING,
                    updated_at=utc_now(),
                )
                .execution_options(synchronize_session=False)
            )

            if transitioned.rowcount != 1:
                await self.session.rollback()
                return await self._handle_unpayable_order(
                    event_id, event_type, reference, order_id
                )

            if order.discount_code_used:
                await self.session.execute(
                    update(DiscountCode)
                    .where(DiscountCode.code == order.discount_code_used)
                    .values(used_count=DiscountCode.used_count + 1)
                    .execution_options(synchronize_session=False)
                )

            commit_result = await self.reservations.commit(order.id)
            if not commit_result.complete:
                await record_audit(
                    self.session,
                    action="stock_shortfall",
                    entity_type="order",
                    entity_id=order.id,
                    changes={
                        "shortfalls": {
                            str(product_id): quantity
                            for product_id, quantity in commit_result.shortfalls.items()
                        },
                        "from_order_items": commit_result.from_order_items,
                    },
                )

            await self.session.execute(
                delete(CartItem)
                .where(CartItem.user_id == order.user_id)
                .execution_options(synchronize_session=False)
            )

            issued_at = utc_now()
            invoice = Invoice(
                order_id=order.id,
                invoice_number=generate_invoice_number(),
                amount=order.total_amount,
                issue_date=issued_at,
                due_date=issued_at + timedelta(days=self.settings.invoice_due_days),
                status=InvoiceStatus.PAID,
            )
            self.session.add(invoice)

            await record_audit(
                self.session,
                action="payment_reconciled",
                entity_type="order",
                entity_id=order.id,
                changes={
                    "reference": reference,
                    "event_id": event_id,
                    "invoice_number": invoice.invoice_number,
                    "discount_code": order.discount_code_used,
                },
            )

            await self.session.execute(
                update(WebhookEvent)
                .where(WebhookEvent.event_id == event_id)
                .values(status=WebhookEventStatus.PROCESSED, processed_at=issued_at, last_error=None)
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()

        except SQLAlchemyError as e:
            await self.session.rollback()
            await self._fail_event(event_id, f"database error: {type(e).__name__}")
            logger.error(
                "Payment reconciliation failed",
                event_id=event_id,
                reference=reference,
                error=str(e),
                alert=True,
            )
            raise ReconciliationError(
                "Payment reconciliation failed",
                reference=reference,
                event_id=event_id,
            ) from e

        logger.info(
            "Payment reconciled",
            event_id=event_id,
            order_id=str(order.id),
            order_number=reference,
            invoice_number=invoice.invoice_number,
        )
        return WebhookResult(
            event_id,
            event_type,
            WebhookOutcome.PROCESSED,
            order_number=reference,
            invoice_number=invoice.invoice_number,
        )

    async def _handle_unpayable_order(
        self,
        event_id: str,
        event_type: str,
        reference: str,
        order_id: uuid.UUID,
    ) -> WebhookResult:
        current = (
            await self.session.execute(
                select(Order.status, Order.payment_status).where(Order.id == order_id)
            )
        ).one()
        await self.session.commit()

        if current.payment_status == PaymentStatus.COMPLETED:
            await self._finish_event(event_id)
            logger.info(
                "Payment already applied to order",
                event_id=event_id,
                order_number=reference,
            )
            return WebhookResult(
                event_id, event_type, WebhookOutcome.ALREADY_APPLIED, order_number=reference
            )

        await self._fail_event(event_id, f"order status {current.status.value}")
        logger.error(
            "Payment received for order that is not awaiting payment",
            event_id=event_id,
            order_number=reference,
            order_status=current.status.value,
            alert=True,
        )
        raise ReconciliationError(
            "Order is not awaiting payment",
            code="ORDER_NOT_PAYABLE",
            reference=reference,
            order_status=current.status.value,
        )
