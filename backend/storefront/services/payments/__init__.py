"""Paystack integration and webhook reconciliation."""

from storefront.services.payments.paystack_client import (
    PaymentSession,
    PaystackClient,
    PaystackClientError,
    TransactionVerification,
    get_paystack_client,
)
from storefront.services.payments.reconciler import (
    OrderNotFoundForReferenceError,
    PaymentWebhookReconciler,
    ReconciliationError,
    SignatureInvalidError,
    VerificationFailedError,
    WebhookOutcome,
    WebhookPayloadError,
    WebhookResult,
)

__all__ = [
    "OrderNotFoundForReferenceError",
    "PaymentSession",
    "PaymentWebhookReconciler",
    "PaystackClient",
    "PaystackClientError",
    "ReconciliationError",
    "SignatureInvalidError",
    "TransactionVerification",
    "VerificationFailedError",
    "WebhookOutcome",
    "WebhookPayloadError",
    "WebhookResult",
    "get_paystack_client",
]
