"""
Rule-based fraud risk scoring.

Each rule adds a fixed weight to the score and records a flag. The score and
flags are written back onto the order and an audit entry; order status is
never changed here, acting on the recommendation is left to back-office
staff.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import get_settings
from storefront.core.logging import get_logger
from storefront.core.security import SessionContext
from storefront.database.base import utc_now
from storefront.database.models import Order
from storefront.services.audit import record_audit
from storefront.services.orders import OrderNotFoundError, OrderRepository

logger = get_logger(__name__)

VELOCITY_WINDOW = timedelta(minutes=60)
VELOCITY_MAX_ORDERS = 3
ADDRESS_HISTORY_LIMIT = 5
BULK_QUANTITY_THRESHOLD = 10

HIGH_RISK_SCORE = 50
MEDIUM_RISK_SCORE = 30


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Recommendation(str, Enum):
    APPROVE = "approve"
    MANUAL_REVIEW = "manual_review"
    BLOCK = "block"


class FraudFlag(str, Enum):
    HIGH_ORDER_VELOCITY = "high_order_velocity"
    EXCESSIVE_DISCOUNT = "excessive_discount"
    HIGH_VALUE_FIRST_ORDER = "high_value_first_order"
    NEW_SHIPPING_ADDRESS = "new_shipping_address"
    BULK_ORDER = "bulk_order"


RULE_WEIGHTS = {
    FraudFlag.HIGH_ORDER_VELOCITY: 25,
    FraudFlag.EXCESSIVE_DISCOUNT: 20,
    FraudFlag.HIGH_VALUE_FIRST_ORDER: 30,
    FraudFlag.NEW_SHIPPING_ADDRESS: 15,
    FraudFlag.BULK_ORDER: 10,
}


@dataclass(frozen=True)
class RiskSignals:
    """Point-in-time facts the rules are evaluated against."""

    orders_in_window: int
    prior_paid_orders: int
    recent_addresses: list[dict[str, Any]]
    shipping_address: dict[str, Any]
    total_amount: Decimal
    discount_amount: Decimal
    total_quantity: int


@dataclass
class RiskAssessment:
    order_id: uuid.UUID
    score: int
    flags: list[str] = field(default_factory=list)
    risk_level: RiskLevel = RiskLevel.LOW
    recommendation: Recommendation = Recommendation.APPROVE

    def to_dict(self) -> dict[str, Any]:
        return {
            "order_id": str(self.order_id),
            "risk_score": self.score,
            "risk_level": self.risk_level.value,
            "flags": list(self.flags),
            "recommendation": self.recommendation.value,
        }


def classify(score: int) -> tuple[RiskLevel, Recommendation]:
    if score >= HIGH_RISK_SCORE:
        return RiskLevel.HIGH, Recommendation.BLOCK
    if score >= MEDIUM_RISK_SCORE:
        return RiskLevel.MEDIUM, Recommendation.MANUAL_REVIEW
    return RiskLevel.LOW, Recommendation.APPROVE


def evaluate_rules(signals: RiskSignals, high_value_threshold: Decimal) -> list[FraudFlag]:
    """
    Apply every rule to the signals.

    Returns:
        Triggered flags in rule order
    """
    flags = []

    if signals.orders_in_window > VELOCITY_MAX_ORDERS:
        flags.append(FraudFlag.HIGH_ORDER_VELOCITY)

    if signals.discount_amount > signals.total_amount * Decimal("0.5"):
        flags.append(FraudFlag.EXCESSIVE_DISCOUNT)

    if signals.prior_paid_orders == 0 and signals.total_amount > high_value_threshold:
        flags.append(FraudFlag.HIGH_VALUE_FIRST_ORDER)

    if signals.prior_paid_orders > 0 and not any(
        address == signals.shipping_address for address in signals.recent_addresses
    ):
        flags.append(FraudFlag.NEW_SHIPPING_ADDRESS)

    if signals.total_quantity > BULK_QUANTITY_THRESHOLD:
        flags.append(FraudFlag.BULK_ORDER)

    return flags


class FraudRiskScorer:
    """
    Scores an order and persists the result.

    Re-scoring overwrites the previous score and flags.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.repository = OrderRepository(session)
        self.high_value_threshold = Decimal(str(get_settings().fraud_high_value_threshold))

    async def collect_signals(self, order: Order, now: datetime) -> RiskSignals:
        orders_in_window = await self.repository.count_orders_since(
            order.user_id, now - VELOCITY_WINDOW
        )
        prior_paid_orders = await self.repository.count_paid_orders(
            order.user_id, exclude_order_id=order.id, created_before=order.created_at
        )
        recent = await self.repository.recent_paid_orders(
            order.user_id,
            exclude_order_id=order.id,
            created_before=order.created_at,
            limit=ADDRESS_HISTORY_LIMIT,
        )
        return RiskSignals(
            orders_in_window=orders_in_window,
            prior_paid_orders=prior_paid_orders,
            recent_addresses=[previous.shipping_address for previous in recent],
            shipping_address=order.shipping_address,
            total_amount=order.total_amount,
            discount_amount=order.discount_amount or Decimal("0"),
            total_quantity=order.total_quantity,
        )

    async def score(
        self,
        order_id: uuid.UUID,
        ctx: Optional[SessionContext] = None,
        device_fingerprint: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> RiskAssessment:
        """
        Compute, store and return the risk assessment for an order.

        Args:
            order_id: Order to score
            ctx: Acting back-office user, recorded in the audit entry
            device_fingerprint: Recorded for review, does not affect the score
            ip_address: Recorded for review, does not affect the score

        Raises:
            OrderNotFoundError: If the order does not exist
        """
        order = await self.repository.get_order_by_id(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)

        signals = await self.collect_signals(order, utc_now())
        flags = evaluate_rules(signals, self.high_value_threshold)
        score = sum(RULE_WEIGHTS[flag] for flag in flags)
        risk_level, recommendation = classify(score)

        assessment = RiskAssessment(
            order_id=order_id,
            score=score,
            flags=[flag.value for flag in flags],
            risk_level=risk_level,
            recommendation=recommendation,
        )

        await self.session.execute(
            update(Order)
            .where(Order.id == order_id)
            .values(fraud_risk_score=score, fraud_flags=assessment.flags)
            .execution_options(synchronize_session=False)
        )
        await record_audit(
            self.session,
            action="fraud_check_performed",
            entity_type="order",
            entity_id=order_id,
            user_id=ctx.user_id if ctx else None,
            changes={
                "risk_score": score,
                "flags": assessment.flags,
                "recommendation": recommendation.value,
                "device_fingerprint": device_fingerprint,
                "ip_address": ip_address,
            },
        )
        await self.session.commit()

        logger.info(
            "Fraud check performed",
            order_id=str(order_id),
            risk_score=score,
            risk_level=risk_level.value,
            flags=assessment.flags,
        )
        return assessment
