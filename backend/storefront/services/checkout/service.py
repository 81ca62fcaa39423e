"""
Checkout orchestration.

Checkout runs as a saga of three steps, each with a compensating action:

1. create the order and its items   -> delete the order and items
2. reserve stock for the order      -> release the reservations
3. open a Paystack payment session  -> (nothing to undo)

When any step fails the compensations of the completed steps run, newest
first, before the error is returned to the caller.
"""

import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import get_settings
from storefront.core.logging import get_logger
from storefront.core.security import SessionContext
from storefront.database.base import utc_now
from storefront.database.models import (
    DiscountCode,
    Order,
    OrderItem,
    OrderStatus,
    PaymentStatus,
    Product,
)
from storefront.services.checkout.pricing import PricingResult, price_cart
from storefront.services.payments.paystack_client import (
    PaymentSession,
    PaystackClient,
    PaystackClientError,
)
from storefront.services.reservations import ReservationError, StockReservationManager

logger = get_logger(__name__)

REQUIRED_ADDRESS_FIELDS = ("full_name", "phone", "address", "city", "state", "country")


class CheckoutError(Exception):
    """Base exception for checkout failures."""

    def __init__(self, message: str, code: str = "CHECKOUT_FAILED", **context: Any):
        super().__init__(message)
        self.code = code
        self.context = context


class CheckoutValidationError(CheckoutError):
    def __init__(self, message: str, **context: Any):
        super().__init__(message, code="VALIDATION_ERROR", **context)


class ProductUnavailableError(CheckoutError):
    def __init__(self, product_id: uuid.UUID, reason: str):
        super().__init__(
            f"Product {product_id} is not available",
            code="PRODUCT_UNAVAILABLE",
            product_id=str(product_id),
            reason=reason,
        )


class InsufficientStockError(CheckoutError):
    def __init__(self, product_id: uuid.UUID, requested: int, available: int):
        super().__init__(
            f"Insufficient stock for product {product_id}",
            code="INSUFFICIENT_STOCK",
            product_id=str(product_id),
            requested=requested,
            available=available,
        )


class ReservationFailedError(CheckoutError):
    def __init__(self, message: str, **context: Any):
        super().__init__(message, code="RESERVATION_FAILED", **context)


class PaymentInitializationError(CheckoutError):
    def __init__(self, message: str, **context: Any):
        super().__init__(message, code="PAYMENT_INITIALIZATION_FAILED", **context)


@dataclass(frozen=True)
class CartLine:
    product_id: uuid.UUID
    quantity: int


@dataclass
class CheckoutResult:
    order: Order
    payment: PaymentSession
    pricing: PricingResult


Compensation = Callable[[], Awaitable[None]]


def generate_order_number() -> str:
    timestamp = int(utc_now().timestamp() * 1000)
    return f"ORD-{timestamp}-{uuid.uuid4().hex[:9].upper()}"


def _normalize_cart(cart_items: list[CartLine]) -> list[tuple[uuid.UUID, int]]:
    if not cart_items:
        raise CheckoutValidationError("Cart is empty")

    merged: dict[uuid.UUID, int] = {}
    for line in cart_items:
        if line.quantity <= 0:
            raise CheckoutValidationError(
                "Quantity must be positive",
                product_id=str(line.product_id),
                quantity=line.quantity,
            )
        merged[line.product_id] = merged.get(line.product_id, 0) + line.quantity
    return list(merged.items())


def _validate_address(shipping_address: dict[str, Any]) -> None:
    missing = [
        name
        for name in REQUIRED_ADDRESS_FIELDS
        if not str(shipping_address.get(name) or "").strip()
    ]
    if missing:
        raise CheckoutValidationError("Shipping address is incomplete", missing=missing)


class CheckoutOrchestrator:
    """
    Turns a cart into a pending order backed by reservations and a payment session.

    Args:
        session: Database session, committed between saga steps
        paystack: Payment gateway client
        reservations: Reservation manager, defaults to one bound to ``session``
    """

    def __init__(
        self,
        session: AsyncSession,
        paystack: PaystackClient,
        reservations: Optional[StockReservationManager] = None,
    ):
        self.session = session
        self.paystack = paystack
        self.reservations = reservations or StockReservationManager(session)
        self.settings = get_settings()

    async def _load_products(
        self, items: list[tuple[uuid.UUID, int]]
    ) -> dict[uuid.UUID, Product]:
        result = await self.session.execute(
            select(Product).where(Product.id.in_([product_id for product_id, _ in items]))
        )
        products = {product.id: product for product in result.scalars().all()}

        for product_id, quantity in items:
            product = products.get(product_id)
            if product is None:
                raise ProductUnavailableError(product_id, reason="not_found")
            if not product.is_active:
                raise ProductUnavailableError(product_id, reason="inactive")
            if product.stock_quantity < quantity:
                raise InsufficientStockError(
                    product_id, requested=quantity, available=product.stock_quantity
                )
        return products

    async def _load_discount(self, code: Optional[str]) -> Optional[DiscountCode]:
        if not code or not code.strip():
            return None
        result = await self.session.execute(
            select(DiscountCode).where(DiscountCode.code == code.strip())
        )
        return result.scalar_one_or_none()

    async def _create_order(
        self,
        ctx: SessionContext,
        pricing: PricingResult,
        shipping_address: dict[str, Any],
    ) -> Order:
        order = Order(
            order_number=generate_order_number(),
            user_id=ctx.user_id,
            total_amount=pricing.final_amount,
            discount_amount=pricing.discount_amount,
            discount_code_used=pricing.discount_code,
            shipping_address=shipping_address,
            status=OrderStatus.PENDING,
            payment_status=PaymentStatus.PENDING,
            items=[
                OrderItem(
                    product_id=line.product_id,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    subtotal=line.subtotal,
                )
                for line in pricing.lines
            ],
        )
        try:
            self.session.add(order)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error("Failed to create order", error=str(e), user_id=str(ctx.user_id))
            raise CheckoutError(
                "Failed to create order",
                code="ORDER_CREATION_FAILED",
            ) from e

        logger.info(
            "Order created",
            order_id=str(order.id),
            order_number=order.order_number,
            total_amount=str(order.total_amount),
            discount_amount=str(order.discount_amount),
        )
        return order

    async def _delete_order(self, order_id: uuid.UUID, order_number: str) -> None:
        await self.session.execute(
            delete(OrderItem)
            .where(OrderItem.order_id == order_id)
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(
            delete(Order)
            .where(Order.id == order_id, Order.payment_status == PaymentStatus.PENDING)
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        logger.info("Order rolled back", order_id=str(order_id), order_number=order_number)

    async def _release_reservations(self, order_id: uuid.UUID) -> None:
        await self.reservations.release(order_id)
        await self.session.commit()

    async def _compensate(self, compensations: list[tuple[str, Compensation]]) -> None:
        for name, action in reversed(compensations):
            try:
                await action()
            except SQLAlchemyError as e:
                await self.session.rollback()
                logger.error(
                    "Checkout compensation failed",
                    step=name,
                    error=str(e),
                    error_type=type(e).__name__,
                    alert=True,
                )

    def _callback_url(self, callback_url: Optional[str]) -> str:
        if callback_url:
            return callback_url
        return f"{self.settings.site_url.rstrip('/')}/orders/success"

    async def checkout(
        self,
        ctx: SessionContext,
        cart_items: list[CartLine],
        shipping_address: dict[str, Any],
        discount_code: Optional[str] = None,
        callback_url: Optional[str] = None,
    ) -> CheckoutResult:
        """
        Validate, price and place an order, then open a payment session.

        Args:
            ctx: Caller identity; its email is sent to the gateway
            cart_items: Lines to purchase
            shipping_address: Delivery address
            discount_code: Optional code, silently ignored when not applicable
            callback_url: Post-payment redirect, defaults to the storefront

        Returns:
            CheckoutResult with the persisted order and payment handle

        Raises:
            CheckoutValidationError: Bad input or nothing left to pay, nothing
                written
            ProductUnavailableError: Missing or inactive product, nothing written
            InsufficientStockError: Stock below the requested quantity, nothing written
            ReservationFailedError: Reservation lost a race, order removed
            PaymentInitializationError: Gateway failure, order and reservations removed
        """
        items = _normalize_cart(cart_items)
        _validate_address(shipping_address)
        if not ctx.email:
            raise CheckoutValidationError("An email address is required for payment")

        products = await self._load_products(items)
        discount = await self._load_discount(discount_code)
        pricing = price_cart(products, items, discount, utc_now())
        # Reads above opened a transaction; close it before the saga starts.
        await self.session.commit()

        # The gateway cannot open a session for a zero amount.
        if pricing.final_amount <= 0:
            raise CheckoutValidationError(
                "Order total after discount must be greater than zero",
                discount_code=pricing.discount_code,
            )

        if discount_code and pricing.discount_code is None:
            logger.info("Discount code not applied", discount_code=discount_code)

        compensations: list[tuple[str, Compensation]] = []

        order = await self._create_order(ctx, pricing, shipping_address)
        # Rollbacks expire the instance, so keep plain copies of its keys.
        order_id, order_number = order.id, order.order_number
        compensations.append(
            ("delete_order", lambda: self._delete_order(order_id, order_number))
        )

        try:
            await self.reservations.reserve(order_id, items, ctx.user_id)
            await self.session.commit()
        except (ReservationError, SQLAlchemyError) as e:
            await self.session.rollback()
            await self._compensate(compensations)
            raise ReservationFailedError(
                "Could not reserve stock for order",
                order_number=order_number,
                **getattr(e, "context", {}),
            ) from e
        compensations.append(
            ("release_reservations", lambda: self._release_reservations(order_id))
        )

        try:
            payment = await self.paystack.initialize_transaction(
                email=ctx.email,
                amount=pricing.final_amount,
                reference=order_number,
                callback_url=self._callback_url(callback_url),
                metadata={"order_id": str(order_id), "user_id": str(ctx.user_id)},
                currency=self.settings.currency,
            )
        except PaystackClientError as e:
            await self._compensate(compensations)
            raise PaymentInitializationError(
                "Could not open a payment session",
                order_number=order_number,
                gateway_code=e.code,
            ) from e

        logger.info(
            "Checkout completed",
            order_id=str(order.id),
            order_number=order.order_number,
            final_amount=str(pricing.final_amount),
        )
        return CheckoutResult(order=order, payment=payment, pricing=pricing)
