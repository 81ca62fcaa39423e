"""
Pytest configuration and shared test fixtures.

Every test gets its own SQLite database file, created through the same
engine factory the application uses, so SQLite runs with the immediate
write-lock transactions that stand in for row locks.
"""

import os
import tempfile

os.environ.setdefault("APP_ENVIRONMENT", "test")
os.environ.setdefault(
    "APP_DATABASE_URL",
    f"sqlite+aiosqlite:///{os.path.join(tempfile.gettempdir(), 'storefront-test.db')}",
)
os.environ.setdefault("APP_PAYSTACK_SECRET_KEY", "sk_test_webhook_secret")
os.environ.setdefault("APP_IDENTITY_JWT_SECRET", "test-identity-secret")

from datetime import timedelta
from decimal import Decimal
from typing import Any, AsyncGenerator, Awaitable, Callable, Optional
from unittest.mock import AsyncMock, MagicMock
from uuid import UUID, uuid4

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from storefront.core.security import ROLE_ADMIN, ROLE_CLIENT, SessionContext
from storefront.database.base import Base, utc_now
from storefront.database.connection import create_engine, create_session_factory
from storefront.database.models import (
    CourierRider,
    DiscountCode,
    DiscountType,
    Order,
    OrderItem,
    OrderStatus,
    PaymentStatus,
    Product,
    StockReservation,
)
from storefront.services.payments.paystack_client import (
    PaymentSession,
    PaystackClient,
    compute_signature,
)

WEBHOOK_SECRET = os.environ["APP_PAYSTACK_SECRET_KEY"]

DEFAULT_ADDRESS = {
    "full_name": "Ada Obi",
    "phone": "+2348012345678",
    "address": "12 Marina Road",
    "city": "Lagos",
    "state": "Lagos",
    "postal_code": "101001",
    "country": "NG",
}


# ============================================================================
# Database
# ============================================================================


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """
    Create a file-backed SQLite engine with the full schema.

    A file rather than ``:memory:`` lets several sessions see the same data.
    """
    test_engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'storefront.db'}")
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(engine)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ============================================================================
# Identities
# ============================================================================


@pytest.fixture
def customer_ctx() -> SessionContext:
    return SessionContext(
        user_id=uuid4(),
        roles=frozenset({ROLE_CLIENT}),
        email="ada@example.com",
    )


@pytest.fixture
def admin_ctx() -> SessionContext:
    return SessionContext(
        user_id=uuid4(),
        roles=frozenset({ROLE_ADMIN}),
        email="ops@example.com",
    )


# ============================================================================
# Data factories
# ============================================================================


async def _persist(factory: async_sessionmaker[AsyncSession], *rows: Any) -> None:
    async with factory() as session:
        session.add_all(rows)
        await session.commit()


@pytest.fixture
def make_product(session_factory) -> Callable[..., Awaitable[Product]]:
    """
    Factory for catalog products.

    Example:
        product = await make_product(price="20.00", stock_quantity=5)
    """

    async def _make(
        price: str = "20.00",
        stock_quantity: int = 5,
        **overrides: Any,
    ) -> Product:
        product = Product(
            name=overrides.pop("name", f"Product {uuid4().hex[:6]}"),
            price=Decimal(price),
            stock_quantity=stock_quantity,
            is_active=overrides.pop("is_active", True),
            **overrides,
        )
        await _persist(session_factory, product)
        return product

    return _make


@pytest.fixture
def make_discount(session_factory) -> Callable[..., Awaitable[DiscountCode]]:
    async def _make(
        code: str = "SAVE10",
        discount_type: DiscountType = DiscountType.PERCENTAGE,
        discount_value: str = "10",
        **overrides: Any,
    ) -> DiscountCode:
        now = utc_now()
        discount = DiscountCode(
            code=code,
            discount_type=discount_type,
            discount_value=Decimal(discount_value),
            valid_from=overrides.pop("valid_from", now - timedelta(days=1)),
            valid_until=overrides.pop("valid_until", now + timedelta(days=30)),
            used_count=overrides.pop("used_count", 0),
            **overrides,
        )
        await _persist(session_factory, discount)
        return discount

    return _make


@pytest.fixture
def make_courier(session_factory) -> Callable[..., Awaitable[CourierRider]]:
    async def _make(
        lat: Optional[float] = 6.5244,
        lng: Optional[float] = 3.3792,
        rating: Optional[str] = "5.00",
        total_deliveries: int = 0,
        is_available: bool = True,
        **overrides: Any,
    ) -> CourierRider:
        courier = CourierRider(
            name=overrides.pop("name", f"Rider {uuid4().hex[:6]}"),
            phone_number=overrides.pop("phone_number", "+2348000000000"),
            current_location=None if lat is None else {"lat": lat, "lng": lng},
            rating=None if rating is None else Decimal(rating),
            total_deliveries=total_deliveries,
            is_available=is_available,
            **overrides,
        )
        await _persist(session_factory, courier)
        return courier

    return _make


@pytest.fixture
def make_order(session_factory) -> Callable[..., Awaitable[Order]]:
    """
    Factory for orders created outside checkout.

    ``lines`` is a list of (product, quantity). When ``reserve`` is true a
    live reservation is written for every line.
    """

    async def _make(
        user_id: UUID,
        lines: list[tuple[Product, int]],
        status: OrderStatus = OrderStatus.PENDING,
        payment_status: PaymentStatus = PaymentStatus.PENDING,
        discount_amount: str = "0.00",
        discount_code_used: Optional[str] = None,
        shipping_address: Optional[dict[str, Any]] = None,
        reserve: bool = False,
        **overrides: Any,
    ) -> Order:
        items = [
            OrderItem(
                product_id=product.id,
                quantity=quantity,
                unit_price=product.price,
                subtotal=product.price * quantity,
            )
            for product, quantity in lines
        ]
        subtotal = sum((item.subtotal for item in items), Decimal("0.00"))
        order_id = uuid4()
        order = Order(
            id=order_id,
            order_number=overrides.pop("order_number", f"ORD-TEST-{uuid4().hex[:10].upper()}"),
            user_id=user_id,
            total_amount=subtotal - Decimal(discount_amount),
            discount_amount=Decimal(discount_amount),
            discount_code_used=discount_code_used,
            shipping_address=shipping_address or dict(DEFAULT_ADDRESS),
            status=status,
            payment_status=payment_status,
            items=items,
            **overrides,
        )
        rows: list[Any] = [order]
        if reserve:
            rows.extend(
                StockReservation(
                    product_id=product.id,
                    user_id=user_id,
                    order_id=order_id,
                    quantity=quantity,
                    expires_at=utc_now() + timedelta(minutes=15),
                )
                for product, quantity in lines
            )
        await _persist(session_factory, *rows)
        return order

    return _make


# ============================================================================
# Payment gateway
# ============================================================================


@pytest.fixture
def mock_paystack() -> MagicMock:
    """
    Gateway double for checkout tests.

    ``initialize_transaction`` echoes the reference back in a hosted URL.
    """
    paystack = MagicMock(spec=PaystackClient)

    async def _initialize(email, amount, reference, callback_url, metadata=None, currency=None):
        return PaymentSession(
            authorization_url=f"https://checkout.paystack.test/{reference}",
            access_code=f"access_{reference}",
            reference=reference,
        )

    paystack.initialize_transaction = AsyncMock(side_effect=_initialize)
    paystack.verify_transaction = AsyncMock()
    return paystack


class FakeGateway:
    """
    In-memory Paystack verify endpoint served through ``httpx.MockTransport``.

    Tests register the outcome per reference with ``settle``.
    """

    def __init__(self):
        self.transactions: dict[str, dict[str, Any]] = {}
        self.verify_calls: list[str] = []

    def settle(self, reference: str, amount_minor_units: int, status: str = "success") -> None:
        self.transactions[reference] = {
            "reference": reference,
            "status": status,
            "amount": amount_minor_units,
            "currency": "NGN",
        }

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.path.startswith("/transaction/verify/"):
            reference = request.url.path.rsplit("/", 1)[-1]
            self.verify_calls.append(reference)
            data = self.transactions.get(reference)
            if data is None:
                return httpx.Response(
                    404, json={"status": False, "message": "Transaction reference not found"}
                )
            return httpx.Response(
                200, json={"status": True, "message": "Verification successful", "data": data}
            )
        return httpx.Response(404, json={"status": False, "message": "Not found"})


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest_asyncio.fixture
async def paystack_client(fake_gateway: FakeGateway) -> AsyncGenerator[PaystackClient, None]:
    client = PaystackClient(
        secret_key=WEBHOOK_SECRET,
        base_url="https://api.paystack.test",
        max_retries=0,
        transport=httpx.MockTransport(fake_gateway.handler),
    )
    yield client
    await client.close()


@pytest.fixture
def sign_webhook() -> Callable[[bytes], str]:
    """Sign a raw webhook body with the shared secret."""

    def _sign(body: bytes) -> str:
        return compute_signature(body, WEBHOOK_SECRET)

    return _sign


@pytest.fixture
def shipping_address() -> dict[str, Any]:
    return dict(DEFAULT_ADDRESS)
