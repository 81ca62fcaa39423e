"""
HTTP-level tests for the v1 API.

Requests go through the ASGI app with the database session and the Paystack
client swapped for test doubles. The application lifespan is not run, so the
background reservation sweeper stays off.
"""

import json
from decimal import Decimal
from typing import AsyncGenerator
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest
import pytest_asyncio
from fastapi import status
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, select

from storefront.api.deps import get_paystack
from storefront.core.security import ROLE_ADMIN, create_access_token
from storefront.database.base import utc_now
from storefront.database.connection import get_db
from storefront.database.models import (
    Order,
    OrderStatus,
    PaymentStatus,
    StockReservation,
    WebhookEvent,
)
from storefront.main import app
from storefront.services.payments.paystack_client import PaystackConnectionError

API = "/api/v1"


# ============================================================================
# Test Fixtures
# ============================================================================


@pytest_asyncio.fixture
async def client(session_factory, mock_paystack) -> AsyncGenerator[AsyncClient, None]:
    async def _db_override():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _db_override
    app.dependency_overrides[get_paystack] = lambda: mock_paystack

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def customer_headers(customer_ctx) -> dict[str, str]:
    token = create_access_token(customer_ctx.user_id, email=customer_ctx.email)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers(admin_ctx) -> dict[str, str]:
    token = create_access_token(admin_ctx.user_id, roles=(ROLE_ADMIN,), email=admin_ctx.email)
    return {"Authorization": f"Bearer {token}"}


def _checkout_body(product_id, quantity: int, shipping_address, **extra) -> dict:
    return {
        "cart_items": [{"product_id": str(product_id), "quantity": quantity}],
        "shipping_address": shipping_address,
        **extra,
    }


# ============================================================================
# Health
# ============================================================================


class TestHealth:
    @pytest.mark.asyncio
    async def test_healthy(self, client, monkeypatch):
        monkeypatch.setattr(
            "storefront.main.check_database_health", AsyncMock(return_value=True)
        )

        response = await client.get("/health")

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["database"] == "healthy"
        assert "X-Request-ID" in response.headers

    @pytest.mark.asyncio
    async def test_database_down_returns_503(self, client, monkeypatch):
        monkeypatch.setattr(
            "storefront.main.check_database_health", AsyncMock(return_value=False)
        )

        response = await client.get("/health")

        assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
        assert response.json()["status"] == "unhealthy"


# ============================================================================
# Checkout
# ============================================================================


class TestCheckoutEndpoint:
    """Test suite for POST /checkout."""

    @pytest.mark.asyncio
    async def test_checkout_returns_order_and_payment_session(
        self, client, customer_headers, make_product, shipping_address, session_factory
    ):
        # Arrange
        product = await make_product(price="20.00", stock_quantity=5)

        # Act
        response = await client.post(
            f"{API}/checkout",
            json=_checkout_body(product.id, 2, shipping_address),
            headers=customer_headers,
        )

        # Assert
        assert response.status_code == status.HTTP_201_CREATED
        body = response.json()
        assert Decimal(body["final_amount"]) == Decimal("40.00")
        assert body["order"]["status"] == "pending"
        assert body["payment"]["reference"] == body["order"]["order_number"]
        async with session_factory() as session:
            held = (
                await session.execute(select(func.sum(StockReservation.quantity)))
            ).scalar_one()
        assert held == 2

    @pytest.mark.asyncio
    async def test_requires_authentication(self, client, make_product, shipping_address):
        product = await make_product()

        response = await client.post(
            f"{API}/checkout", json=_checkout_body(product.id, 1, shipping_address)
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    @pytest.mark.asyncio
    async def test_garbage_token_is_rejected(self, client, make_product, shipping_address):
        product = await make_product()

        response = await client.post(
            f"{API}/checkout",
            json=_checkout_body(product.id, 1, shipping_address),
            headers={"Authorization": "Bearer not-a-jwt"},
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    @pytest.mark.asyncio
    async def test_empty_cart_fails_validation(self, client, customer_headers, shipping_address):
        response = await client.post(
            f"{API}/checkout",
            json={"cart_items": [], "shipping_address": shipping_address},
            headers=customer_headers,
        )

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        assert response.json()["error"] == "Validation Error"

    @pytest.mark.asyncio
    async def test_unknown_product_is_400(self, client, customer_headers, shipping_address):
        response = await client.post(
            f"{API}/checkout",
            json=_checkout_body(uuid4(), 1, shipping_address),
            headers=customer_headers,
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    @pytest.mark.asyncio
    async def test_insufficient_stock_is_409(
        self, client, customer_headers, make_product, shipping_address
    ):
        product = await make_product(stock_quantity=1)

        response = await client.post(
            f"{API}/checkout",
            json=_checkout_body(product.id, 3, shipping_address),
            headers=customer_headers,
        )

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.json()["detail"]["code"] == "INSUFFICIENT_STOCK"

    @pytest.mark.asyncio
    async def test_gateway_failure_is_502_and_leaves_nothing(
        self,
        client,
        customer_headers,
        make_product,
        mock_paystack,
        shipping_address,
        session_factory,
    ):
        # Arrange
        product = await make_product()
        mock_paystack.initialize_transaction.side_effect = PaystackConnectionError(
            "Paystack server error", code="GATEWAY_ERROR", status_code=503
        )

        # Act
        response = await client.post(
            f"{API}/checkout",
            json=_checkout_body(product.id, 1, shipping_address),
            headers=customer_headers,
        )

        # Assert
        assert response.status_code == status.HTTP_502_BAD_GATEWAY
        async with session_factory() as session:
            orders = (await session.execute(select(func.count()).select_from(Order))).scalar_one()
        assert orders == 0


# ============================================================================
# Payment webhook
# ============================================================================


class TestWebhookEndpoint:
    """Test suite for POST /payments/webhook."""

    @pytest.mark.asyncio
    async def test_bad_signature_is_401(self, client, paystack_client):
        app.dependency_overrides[get_paystack] = lambda: paystack_client
        body = json.dumps({"event": "charge.success", "data": {"reference": "X"}}).encode()

        response = await client.post(
            f"{API}/payments/webhook",
            content=body,
            headers={"x-paystack-signature": "0" * 128},
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    @pytest.mark.asyncio
    async def test_successful_charge_is_applied_once(
        self,
        client,
        paystack_client,
        fake_gateway,
        sign_webhook,
        make_product,
        make_order,
        customer_ctx,
        session_factory,
    ):
        # Arrange
        app.dependency_overrides[get_paystack] = lambda: paystack_client
        product = await make_product(price="20.00", stock_quantity=5)
        order = await make_order(customer_ctx.user_id, [(product, 2)], reserve=True)
        fake_gateway.settle(order.order_number, 4000)
        body = json.dumps(
            {
                "event": "charge.success",
                "data": {"id": 1001, "reference": order.order_number, "amount": 4000},
            }
        ).encode()
        headers = {"x-paystack-signature": sign_webhook(body)}

        # Act
        first = await client.post(f"{API}/payments/webhook", content=body, headers=headers)
        second = await client.post(f"{API}/payments/webhook", content=body, headers=headers)

        # Assert
        assert first.status_code == status.HTTP_200_OK
        assert first.json()["status"] == "processed"
        assert first.json()["invoice_number"].startswith("INV-")
        assert second.status_code == status.HTTP_200_OK
        assert second.json()["status"] == "duplicate"
        async with session_factory() as session:
            paid = await session.get(Order, order.id)
            events = (
                await session.execute(select(func.count()).select_from(WebhookEvent))
            ).scalar_one()
        assert paid.status == OrderStatus.PROCESSING
        assert paid.payment_status == PaymentStatus.COMPLETED
        assert events == 1

    @pytest.mark.asyncio
    async def test_unverified_payment_is_502(
        self,
        client,
        paystack_client,
        fake_gateway,
        sign_webhook,
        make_product,
        make_order,
        customer_ctx,
    ):
        app.dependency_overrides[get_paystack] = lambda: paystack_client
        product = await make_product(price="20.00")
        order = await make_order(customer_ctx.user_id, [(product, 1)])
        fake_gateway.settle(order.order_number, 2000, status="failed")
        body = json.dumps(
            {"event": "charge.success", "data": {"id": 7, "reference": order.order_number}}
        ).encode()

        response = await client.post(
            f"{API}/payments/webhook",
            content=body,
            headers={"x-paystack-signature": sign_webhook(body)},
        )

        assert response.status_code == status.HTTP_502_BAD_GATEWAY


# ============================================================================
# Orders
# ============================================================================


class TestOrderEndpoints:
    @pytest.mark.asyncio
    async def test_list_and_get_own_orders(
        self, client, customer_headers, customer_ctx, make_product, make_order
    ):
        product = await make_product()
        order = await make_order(customer_ctx.user_id, [(product, 1)])
        await make_order(uuid4(), [(product, 1)])

        listing = await client.get(f"{API}/orders", headers=customer_headers)
        detail = await client.get(f"{API}/orders/{order.id}", headers=customer_headers)

        assert listing.status_code == status.HTTP_200_OK
        assert listing.json()["total"] == 1
        assert detail.status_code == status.HTTP_200_OK
        assert detail.json()["id"] == str(order.id)
        assert len(detail.json()["items"]) == 1

    @pytest.mark.asyncio
    async def test_foreign_order_is_404(
        self, client, customer_headers, make_product, make_order
    ):
        product = await make_product()
        order = await make_order(uuid4(), [(product, 1)])

        response = await client.get(f"{API}/orders/{order.id}", headers=customer_headers)

        assert response.status_code == status.HTTP_404_NOT_FOUND

    @pytest.mark.asyncio
    async def test_cancel_pending_then_again_is_409(
        self, client, customer_headers, customer_ctx, make_product, make_order
    ):
        product = await make_product()
        order = await make_order(customer_ctx.user_id, [(product, 1)], reserve=True)

        first = await client.post(f"{API}/orders/{order.id}/cancel", headers=customer_headers)
        second = await client.post(f"{API}/orders/{order.id}/cancel", headers=customer_headers)

        assert first.status_code == status.HTTP_200_OK
        assert first.json()["status"] == "cancelled"
        assert second.status_code == status.HTTP_409_CONFLICT


# ============================================================================
# Back office
# ============================================================================


class TestAdminEndpoints:
    """Test suite for fraud, dispatch and reservation maintenance endpoints."""

    @pytest.mark.asyncio
    async def test_customers_are_forbidden(self, client, customer_headers):
        response = await client.post(
            f"{API}/admin/reservations/sweep", headers=customer_headers
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN

    @pytest.mark.asyncio
    async def test_fraud_check(self, client, admin_headers, make_product, make_order):
        product = await make_product(price="20.00", stock_quantity=20)
        order = await make_order(uuid4(), [(product, 11)])

        response = await client.post(
            f"{API}/admin/orders/{order.id}/fraud-check",
            json={"device_fingerprint": "fp-123", "ip_address": "10.0.0.1"},
            headers=admin_headers,
        )

        assert response.status_code == status.HTTP_200_OK
        body = response.json()
        assert "bulk_order" in body["flags"]
        assert body["risk_score"] >= 10

    @pytest.mark.asyncio
    async def test_fraud_check_unknown_order(self, client, admin_headers):
        response = await client.post(
            f"{API}/admin/orders/{uuid4()}/fraud-check", headers=admin_headers
        )

        assert response.status_code == status.HTTP_404_NOT_FOUND

    @pytest.mark.asyncio
    async def test_candidates_and_assignment(
        self, client, admin_headers, make_courier, make_product, make_order
    ):
        # Arrange
        courier = await make_courier(lat=6.5244, lng=3.3792)
        await make_courier(lat=6.5244, lng=3.3792, is_available=False)
        product = await make_product()
        order = await make_order(
            uuid4(),
            [(product, 1)],
            status=OrderStatus.PROCESSING,
            payment_status=PaymentStatus.COMPLETED,
        )

        # Act
        candidates = await client.get(
            f"{API}/admin/couriers/candidates",
            params={"lat": 6.5244, "lng": 3.3792},
            headers=admin_headers,
        )
        assigned = await client.post(
            f"{API}/admin/orders/{order.id}/assign-courier",
            json={"courier_id": str(courier.id)},
            headers=admin_headers,
        )
        busy = await client.post(
            f"{API}/admin/orders/{order.id}/assign-courier",
            json={"courier_id": str(courier.id)},
            headers=admin_headers,
        )
        delivered = await client.post(
            f"{API}/admin/orders/{order.id}/complete-delivery", headers=admin_headers
        )

        # Assert
        assert candidates.status_code == status.HTTP_200_OK
        assert [c["id"] for c in candidates.json()["couriers"]] == [str(courier.id)]
        assert assigned.status_code == status.HTTP_200_OK
        assert assigned.json()["status"] == "dispatched"
        assert assigned.json()["assigned_courier_id"] == str(courier.id)
        assert busy.status_code == status.HTTP_409_CONFLICT
        assert delivered.status_code == status.HTTP_200_OK
        assert delivered.json()["status"] == "delivered"

    @pytest.mark.asyncio
    async def test_assign_unknown_courier_is_404(
        self, client, admin_headers, make_product, make_order
    ):
        product = await make_product()
        order = await make_order(
            uuid4(),
            [(product, 1)],
            status=OrderStatus.PROCESSING,
            payment_status=PaymentStatus.COMPLETED,
        )

        response = await client.post(
            f"{API}/admin/orders/{order.id}/assign-courier",
            json={"courier_id": str(uuid4())},
            headers=admin_headers,
        )

        assert response.status_code == status.HTTP_404_NOT_FOUND

    @pytest.mark.asyncio
    async def test_sweep_removes_expired_holds(
        self, client, admin_headers, make_product, session_factory
    ):
        product = await make_product()
        async with session_factory() as session:
            session.add(
                StockReservation(
                    product_id=product.id,
                    user_id=uuid4(),
                    quantity=1,
                    expires_at=utc_now().replace(year=2000),
                )
            )
            await session.commit()

        response = await client.post(f"{API}/admin/reservations/sweep", headers=admin_headers)

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"swept": 1}
