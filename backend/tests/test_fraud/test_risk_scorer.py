"""
Tests for rule-based fraud scoring.
"""

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from storefront.database.base import utc_now
from storefront.database.models import AuditLog, Order, OrderStatus, PaymentStatus
from storefront.services.fraud import (
    FraudFlag,
    FraudRiskScorer,
    Recommendation,
    RiskLevel,
)
from storefront.services.fraud.scorer import RiskSignals, classify, evaluate_rules
from storefront.services.orders import OrderNotFoundError

HOME = {"full_name": "Ada Obi", "address": "12 Marina Road", "city": "Lagos", "country": "NG"}
ELSEWHERE = {"full_name": "Ada Obi", "address": "4 Allen Avenue", "city": "Ikeja", "country": "NG"}


def _signals(**overrides) -> RiskSignals:
    values = {
        "orders_in_window": 1,
        "prior_paid_orders": 0,
        "recent_addresses": [],
        "shipping_address": HOME,
        "total_amount": Decimal("40.00"),
        "discount_amount": Decimal("0.00"),
        "total_quantity": 2,
    }
    values.update(overrides)
    return RiskSignals(**values)


# ============================================================================
# Pure rules
# ============================================================================


class TestClassify:
    @pytest.mark.parametrize(
        "score, level, recommendation",
        [
            (0, RiskLevel.LOW, Recommendation.APPROVE),
            (29, RiskLevel.LOW, Recommendation.APPROVE),
            (30, RiskLevel.MEDIUM, Recommendation.MANUAL_REVIEW),
            (49, RiskLevel.MEDIUM, Recommendation.MANUAL_REVIEW),
            (50, RiskLevel.HIGH, Recommendation.BLOCK),
            (100, RiskLevel.HIGH, Recommendation.BLOCK),
        ],
    )
    def test_thresholds(self, score, level, recommendation):
        assert classify(score) == (level, recommendation)


class TestEvaluateRules:
    """Test suite for individual rule triggers."""

    threshold = Decimal("100000")

    def test_clean_order_has_no_flags(self):
        assert evaluate_rules(_signals(), self.threshold) == []

    def test_velocity_needs_more_than_three_orders(self):
        assert evaluate_rules(_signals(orders_in_window=3), self.threshold) == []
        assert evaluate_rules(_signals(orders_in_window=4), self.threshold) == [
            FraudFlag.HIGH_ORDER_VELOCITY
        ]

    def test_excessive_discount(self):
        signals = _signals(total_amount=Decimal("9.00"), discount_amount=Decimal("11.00"))

        assert evaluate_rules(signals, self.threshold) == [FraudFlag.EXCESSIVE_DISCOUNT]

    def test_discount_at_half_is_not_excessive(self):
        signals = _signals(total_amount=Decimal("20.00"), discount_amount=Decimal("10.00"))

        assert evaluate_rules(signals, self.threshold) == []

    def test_high_value_first_order(self):
        signals = _signals(total_amount=Decimal("150000.00"))

        assert evaluate_rules(signals, self.threshold) == [FraudFlag.HIGH_VALUE_FIRST_ORDER]

    def test_high_value_with_history_is_fine(self):
        signals = _signals(
            total_amount=Decimal("150000.00"),
            prior_paid_orders=2,
            recent_addresses=[HOME],
        )

        assert evaluate_rules(signals, self.threshold) == []

    def test_new_shipping_address(self):
        signals = _signals(prior_paid_orders=1, recent_addresses=[HOME], shipping_address=ELSEWHERE)

        assert evaluate_rules(signals, self.threshold) == [FraudFlag.NEW_SHIPPING_ADDRESS]

    def test_address_rule_skipped_without_history(self):
        assert evaluate_rules(_signals(shipping_address=ELSEWHERE), self.threshold) == []

    def test_bulk_order(self):
        assert evaluate_rules(_signals(total_quantity=10), self.threshold) == []
        assert evaluate_rules(_signals(total_quantity=11), self.threshold) == [FraudFlag.BULK_ORDER]


# ============================================================================
# Scoring persisted orders
# ============================================================================


class TestFraudRiskScorer:
    """Test suite for FraudRiskScorer.score."""

    @pytest.mark.asyncio
    async def test_fifth_order_within_hour_triggers_velocity(
        self, session_factory, make_product, make_order, customer_ctx, admin_ctx
    ):
        """Four orders in the past hour plus the one being scored: +25 velocity."""
        # Arrange
        product = await make_product(price="20.00", stock_quantity=50)
        now = utc_now()
        for minutes_ago in (10, 20, 30, 40):
            await make_order(
                customer_ctx.user_id,
                [(product, 1)],
                created_at=now - timedelta(minutes=minutes_ago),
            )
        order = await make_order(customer_ctx.user_id, [(product, 1)])

        # Act
        async with session_factory() as session:
            assessment = await FraudRiskScorer(session).score(order.id, ctx=admin_ctx)

        # Assert
        assert assessment.score == 25
        assert assessment.flags == ["high_order_velocity"]
        assert assessment.risk_level == RiskLevel.LOW
        assert assessment.recommendation == Recommendation.APPROVE

    @pytest.mark.asyncio
    async def test_orders_outside_window_do_not_count(
        self, session_factory, make_product, make_order, customer_ctx
    ):
        product = await make_product(stock_quantity=50)
        for hours_ago in (2, 3, 4, 5):
            await make_order(
                customer_ctx.user_id,
                [(product, 1)],
                created_at=utc_now() - timedelta(hours=hours_ago),
            )
        order = await make_order(customer_ctx.user_id, [(product, 1)])

        async with session_factory() as session:
            assessment = await FraudRiskScorer(session).score(order.id)

        assert FraudFlag.HIGH_ORDER_VELOCITY.value not in assessment.flags

    @pytest.mark.asyncio
    async def test_high_value_first_order_goes_to_review(
        self, session_factory, make_product, make_order, customer_ctx
    ):
        product = await make_product(price="150000.00", stock_quantity=2)
        order = await make_order(customer_ctx.user_id, [(product, 1)])

        async with session_factory() as session:
            assessment = await FraudRiskScorer(session).score(order.id)

        assert assessment.score == 30
        assert assessment.risk_level == RiskLevel.MEDIUM
        assert assessment.recommendation == Recommendation.MANUAL_REVIEW

    @pytest.mark.asyncio
    async def test_new_address_compared_with_paid_history(
        self, session_factory, make_product, make_order, customer_ctx
    ):
        product = await make_product(stock_quantity=50)
        await make_order(
            customer_ctx.user_id,
            [(product, 1)],
            status=OrderStatus.DELIVERED,
            payment_status=PaymentStatus.COMPLETED,
            shipping_address=HOME,
            created_at=utc_now() - timedelta(days=10),
        )
        same = await make_order(customer_ctx.user_id, [(product, 1)], shipping_address=HOME)
        moved = await make_order(customer_ctx.user_id, [(product, 1)], shipping_address=ELSEWHERE)

        async with session_factory() as session:
            scorer = FraudRiskScorer(session)
            same_assessment = await scorer.score(same.id)
            moved_assessment = await scorer.score(moved.id)

        assert same_assessment.flags == []
        assert moved_assessment.flags == ["new_shipping_address"]
        assert moved_assessment.score == 15

    @pytest.mark.asyncio
    async def test_rescoring_ignores_orders_placed_later(
        self, session_factory, make_product, make_order, customer_ctx
    ):
        """A paid order placed after the scored one is not part of its history."""
        # Arrange
        product = await make_product(price="150000.00", stock_quantity=10)
        first = await make_order(
            customer_ctx.user_id,
            [(product, 1)],
            shipping_address=HOME,
            created_at=utc_now() - timedelta(days=2),
        )
        await make_order(
            customer_ctx.user_id,
            [(product, 1)],
            status=OrderStatus.DELIVERED,
            payment_status=PaymentStatus.COMPLETED,
            shipping_address=ELSEWHERE,
            created_at=utc_now() - timedelta(days=1),
        )

        # Act
        async with session_factory() as session:
            assessment = await FraudRiskScorer(session).score(first.id)

        # Assert
        assert assessment.flags == ["high_value_first_order"]
        assert assessment.score == 30

    @pytest.mark.asyncio
    async def test_stacked_rules_block(
        self, session_factory, make_product, make_order, customer_ctx
    ):
        """Cold-start high value, bulk quantity and velocity add up to a block."""
        product = await make_product(price="10000.00", stock_quantity=100)
        for minutes_ago in (5, 15, 25):
            await make_order(
                customer_ctx.user_id,
                [(product, 1)],
                created_at=utc_now() - timedelta(minutes=minutes_ago),
            )
        order = await make_order(customer_ctx.user_id, [(product, 12)])

        async with session_factory() as session:
            assessment = await FraudRiskScorer(session).score(order.id)

        assert set(assessment.flags) == {
            "high_order_velocity",
            "high_value_first_order",
            "bulk_order",
        }
        assert assessment.score == 65
        assert assessment.risk_level == RiskLevel.HIGH
        assert assessment.recommendation == Recommendation.BLOCK

    @pytest.mark.asyncio
    async def test_score_is_persisted_and_audited_without_status_change(
        self, session_factory, make_product, make_order, customer_ctx, admin_ctx
    ):
        # Arrange
        product = await make_product(price="20.00", stock_quantity=50)
        order = await make_order(customer_ctx.user_id, [(product, 11)])

        # Act
        async with session_factory() as session:
            await FraudRiskScorer(session).score(
                order.id, ctx=admin_ctx, device_fingerprint="fp-123", ip_address="203.0.113.7"
            )

        # Assert
        async with session_factory() as session:
            stored = await session.get(Order, order.id)
            audit = (
                await session.execute(
                    select(AuditLog).where(AuditLog.action == "fraud_check_performed")
                )
            ).scalar_one()
        assert stored.fraud_risk_score == 10
        assert stored.fraud_flags == ["bulk_order"]
        assert stored.status == OrderStatus.PENDING
        assert audit.user_id == admin_ctx.user_id
        assert audit.changes["device_fingerprint"] == "fp-123"
        assert audit.changes["ip_address"] == "203.0.113.7"

    @pytest.mark.asyncio
    async def test_rescoring_overwrites(
        self, session_factory, make_product, make_order, customer_ctx
    ):
        product = await make_product(stock_quantity=50)
        order = await make_order(customer_ctx.user_id, [(product, 11)])

        async with session_factory() as session:
            first = await FraudRiskScorer(session).score(order.id)
        async with session_factory() as session:
            second = await FraudRiskScorer(session).score(order.id)
            stored = await session.get(Order, order.id)

        assert first.score == second.score == 10
        assert stored.fraud_risk_score == 10

    @pytest.mark.asyncio
    async def test_unknown_order(self, session_factory):
        async with session_factory() as session:
            with pytest.raises(OrderNotFoundError):
                await FraudRiskScorer(session).score(uuid4())
