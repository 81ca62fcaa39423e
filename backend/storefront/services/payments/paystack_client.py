"""
Paystack API client with retry logic and webhook signature verification.

Outbound calls go through a shared ``httpx.AsyncClient``. Connection
failures, rate limiting and 5xx responses are retried with exponential
backoff; authentication and request errors are raised immediately.
"""

import asyncio
import hashlib
import hmac
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

import httpx

from storefront.core.config import get_settings
from storefront.core.logging import get_logger, log_performance

logger = get_logger(__name__)


class PaystackClientError(Exception):
    """Base exception for Paystack client errors."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        **context: Any,
    ):
        super().__init__(message)
        self.code = code
        self.status_code = status_code
        self.context = context


class PaystackAuthenticationError(PaystackClientError):
    pass


class PaystackRequestError(PaystackClientError):
    """Gateway rejected the request as invalid."""

    pass


class PaystackRateLimitError(PaystackClientError):
    pass


class PaystackConnectionError(PaystackClientError):
    """Gateway could not be reached or kept failing server-side."""

    pass


@dataclass(frozen=True)
class PaymentSession:
    """Handle returned by transaction initialization."""

    authorization_url: str
    access_code: str
    reference: str


@dataclass(frozen=True)
class TransactionVerification:
    reference: str
    status: str
    amount_minor_units: Optional[int]
    currency: Optional[str]
    data: dict[str, Any]

    @property
    def successful(self) -> bool:
        return self.status == "success"


def to_minor_units(amount: Decimal) -> int:
    """Convert a decimal amount to the gateway's integer minor units."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def compute_signature(payload: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha512).hexdigest()


class PaystackClient:
    """
    Async Paystack API client.

    Args:
        secret_key: Paystack secret key (defaults to settings)
        base_url: API base URL (defaults to settings)
        max_retries: Retry attempts for transient failures
        initial_backoff: First backoff delay in seconds
        max_backoff: Upper bound for a single backoff delay
        transport: Optional httpx transport, used by tests
    """

    def __init__(
        self,
        secret_key: Optional[str] = None,
        base_url: Optional[str] = None,
        max_retries: Optional[int] = None,
        initial_backoff: float = 0.5,
        max_backoff: float = 8.0,
        backoff_multiplier: float = 2.0,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.secret_key = secret_key or settings.paystack_secret_key
        self.base_url = (base_url or settings.paystack_base_url).rstrip("/")
        self.max_retries = (
            settings.paystack_max_retries if max_retries is None else max_retries
        )
        self.initial_backoff = initial_backoff
        self.max_backoff = max_backoff
        self.backoff_multiplier = backoff_multiplier

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {self.secret_key}",
                "Content-Type": "application/json",
            },
            timeout=timeout or settings.paystack_timeout_seconds,
            transport=transport,
        )

    def _calculate_backoff(self, attempt: int) -> float:
        return min(
            self.initial_backoff * (self.backoff_multiplier**attempt),
            self.max_backoff,
        )

    def _raise_for_response(self, operation: str, response: httpx.Response) -> None:
        if response.status_code < 400:
            return

        try:
            message = response.json().get("message") or response.text
        except ValueError:
            message = response.text

        context = {"operation": operation, "gateway_message": message}
        if response.status_code == 401:
            raise PaystackAuthenticationError(
                "Paystack authentication failed",
                code="AUTHENTICATION_ERROR",
                status_code=401,
                **context,
            )
        if response.status_code == 429:
            raise PaystackRateLimitError(
                "Paystack rate limit exceeded",
                code="RATE_LIMIT_ERROR",
                status_code=429,
                **context,
            )
        if response.status_code >= 500:
            raise PaystackConnectionError(
                "Paystack server error",
                code="GATEWAY_ERROR",
                status_code=response.status_code,
                **context,
            )
        raise PaystackRequestError(
            "Paystack rejected the request",
            code="INVALID_REQUEST",
            status_code=response.status_code,
            **context,
        )

    async def _execute_with_retry(
        self,
        operation: str,
        method: str,
        path: str,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """
        Send a request, retrying transient failures with exponential backoff.

        Raises:
            PaystackClientError: If the call fails permanently or after all retries
        """
        last_error: Optional[PaystackClientError] = None

        for attempt in range(self.max_retries + 1):
            try:
                response = await self._client.request(method, path, **kwargs)
                self._raise_for_response(operation, response)
                body = response.json()
                if attempt > 0:
                    logger.info(
                        "Paystack operation succeeded after retry",
                        operation=operation,
                        attempt=attempt,
                    )
                return body

            except httpx.TransportError as e:
                last_error = PaystackConnectionError(
                    "Failed to connect to Paystack",
                    code="CONNECTION_ERROR",
                    operation=operation,
                    error=str(e),
                )
                last_error.__cause__ = e
            except (PaystackRateLimitError, PaystackConnectionError) as e:
                last_error = e
            except ValueError as e:
                raise PaystackClientError(
                    "Invalid JSON in Paystack response",
                    code="INVALID_RESPONSE",
                    operation=operation,
                ) from e

            if attempt < self.max_retries:
                delay = self._calculate_backoff(attempt)
                logger.warning(
                    "Paystack operation failed, retrying",
                    operation=operation,
                    attempt=attempt + 1,
                    max_retries=self.max_retries,
                    backoff_seconds=delay,
                    error_code=last_error.code,
                )
                await asyncio.sleep(delay)

        logger.error(
            "Paystack operation failed after retries",
            operation=operation,
            max_retries=self.max_retries,
            error_code=last_error.code if last_error else None,
        )
        raise last_error

    async def initialize_transaction(
        self,
        email: str,
        amount: Decimal,
        reference: str,
        callback_url: str,
        metadata: Optional[dict[str, Any]] = None,
        currency: Optional[str] = None,
    ) -> PaymentSession:
        """
        Open a hosted payment session.

        Args:
            email: Customer email
            amount: Amount in major units, converted to minor units here
            reference: Unique transaction reference (the order number)
            callback_url: Where the gateway redirects after payment
            metadata: Free-form metadata echoed back by the gateway

        Returns:
            PaymentSession with the authorization URL
        """
        payload = {
            "email": email,
            "amount": to_minor_units(amount),
            "reference": reference,
            "callback_url": callback_url,
            "metadata": metadata or {},
        }
        if currency:
            payload["currency"] = currency

        with log_performance(logger, "paystack_initialize", reference=reference):
            body = await self._execute_with_retry(
                "initialize_transaction", "POST", "/transaction/initialize", json=payload
            )

        data = body.get("data") or {}
        if not body.get("status") or not data.get("authorization_url"):
            raise PaystackRequestError(
                "Paystack did not return an authorization URL",
                code="INITIALIZE_FAILED",
                reference=reference,
                gateway_message=body.get("message"),
            )

        return PaymentSession(
            authorization_url=data["authorization_url"],
            access_code=data.get("access_code", ""),
            reference=data.get("reference", reference),
        )

    async def verify_transaction(self, reference: str) -> TransactionVerification:
        """
        Ask the gateway for the authoritative status of a transaction.

        Returns:
            TransactionVerification; ``successful`` is true only when the
            gateway reports the charge as ``success``
        """
        with log_performance(logger, "paystack_verify", reference=reference):
            body = await self._execute_with_retry(
                "verify_transaction", "GET", f"/transaction/verify/{reference}"
            )

        data = body.get("data") or {}
        status = data.get("status") if body.get("status") else "unverified"
        return TransactionVerification(
            reference=data.get("reference", reference),
            status=status or "unknown",
            amount_minor_units=data.get("amount"),
            currency=data.get("currency"),
            data=data,
        )

    def verify_webhook_signature(self, payload: bytes, signature: Optional[str]) -> bool:
        """Check an HMAC-SHA512 webhook signature against the raw body."""
        if not signature:
            return False
        expected = compute_signature(payload, self.secret_key)
        return hmac.compare_digest(expected, signature.strip().lower())

    async def close(self) -> None:
        await self._client.aclose()


_paystack_client: Optional[PaystackClient] = None


def get_paystack_client() -> PaystackClient:
    """Get the process-wide Paystack client."""
    global _paystack_client

    if _paystack_client is None:
        _paystack_client = PaystackClient()

    return _paystack_client


async def close_paystack_client() -> None:
    global _paystack_client

    if _paystack_client is not None:
        await _paystack_client.close()
        _paystack_client = None
