"""
Courier matching and dispatch state transitions.

Candidates are ranked by a weighted score (lower is better):

    0.5 * distance_km + 0.3 * (5 - rating) + 0.2 * (total_deliveries % 10)

The last term stands in for current load. Assignment and delivery
completion update the order and the courier in the same transaction.
"""

import math
import uuid
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import get_settings
from storefront.core.logging import get_logger
from storefront.core.security import SessionContext
from storefront.database.base import utc_now
from storefront.database.models import CourierRider, Order, OrderStatus
from storefront.services.audit import record_audit
from storefront.services.orders import (
    InvalidOrderStateError,
    OrderNotFoundError,
    OrderRepository,
)

logger = get_logger(__name__)

EARTH_RADIUS_KM = 6371.0
DISTANCE_WEIGHT = 0.5
RATING_WEIGHT = 0.3
LOAD_WEIGHT = 0.2
DEFAULT_RATING = 5.0
DEFAULT_CANDIDATE_LIMIT = 5


class DispatchError(Exception):
    """Base exception for dispatch operations."""

    def __init__(self, message: str, code: str = "DISPATCH_ERROR", **context: Any):
        super().__init__(message)
        self.code = code
        self.context = context


class CourierNotFoundError(DispatchError):
    def __init__(self, courier_id: uuid.UUID):
        super().__init__(
            f"Courier {courier_id} not found",
            code="COURIER_NOT_FOUND",
            courier_id=str(courier_id),
        )


class CourierUnavailableError(DispatchError):
    def __init__(self, courier_id: uuid.UUID):
        super().__init__(
            f"Courier {courier_id} is not available",
            code="COURIER_UNAVAILABLE",
            courier_id=str(courier_id),
        )


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance between two points in kilometres."""
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def courier_score(distance_km: float, rating: Optional[float], total_deliveries: int) -> float:
    # An unset or zero rating counts as a perfect rating.
    effective_rating = float(rating) if rating else DEFAULT_RATING
    return (
        distance_km * DISTANCE_WEIGHT
        + (5 - effective_rating) * RATING_WEIGHT
        + (total_deliveries % 10) * LOAD_WEIGHT
    )


def eta_minutes(distance_km: float, speed_kmh: float) -> int:
    return math.ceil(distance_km / speed_kmh * 60)


def _coordinates(location: Optional[dict[str, Any]]) -> Optional[tuple[float, float]]:
    if not isinstance(location, dict):
        return None
    lat, lng = location.get("lat"), location.get("lng")
    if lat is None or lng is None:
        return None
    try:
        return float(lat), float(lng)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class CourierCandidate:
    courier: CourierRider
    distance_km: float
    score: float
    eta_minutes: int

    def to_dict(self) -> dict[str, Any]:
        data = self.courier.to_dict()
        data.update(
            distance_km=self.distance_km,
            score=self.score,
            eta_minutes=self.eta_minutes,
        )
        return data


class CourierDispatchMatcher:
    """Ranks couriers for a drop-off point and moves orders through dispatch."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.orders = OrderRepository(session)
        settings = get_settings()
        self.avg_speed_kmh = settings.courier_avg_speed_kmh
        self.default_radius_km = settings.courier_search_radius_km

    async def find_candidates(
        self,
        lat: float,
        lng: float,
        radius_km: Optional[float] = None,
        limit: int = DEFAULT_CANDIDATE_LIMIT,
    ) -> list[CourierCandidate]:
        """
        Available couriers within ``radius_km``, best score first.

        Couriers without a known location are skipped. Distance and score
        are rounded to two decimals, and ranking uses the rounded score.
        """
        radius_km = self.default_radius_km if radius_km is None else radius_km
        result = await self.session.execute(
            select(CourierRider).where(CourierRider.is_available.is_(True))
        )

        candidates = []
        for courier in result.scalars().all():
            coordinates = _coordinates(courier.current_location)
            if coordinates is None:
                continue
            distance = haversine_km(lat, lng, *coordinates)
            if distance > radius_km:
                continue
            score = courier_score(
                distance,
                float(courier.rating) if courier.rating is not None else None,
                courier.total_deliveries,
            )
            candidates.append(
                CourierCandidate(
                    courier=courier,
                    distance_km=round(distance, 2),
                    score=round(score, 2),
                    eta_minutes=eta_minutes(distance, self.avg_speed_kmh),
                )
            )

        candidates.sort(key=lambda c: (c.score, c.distance_km, str(c.courier.id)))
        logger.info(
            "Courier candidates ranked",
            lat=lat,
            lng=lng,
            radius_km=radius_km,
            found=len(candidates),
        )
        return candidates[:limit]

    async def assign(
        self,
        order_id: uuid.UUID,
        courier_id: uuid.UUID,
        ctx: Optional[SessionContext] = None,
    ) -> Order:
        """
        Dispatch a paid order with a courier.

        The courier is claimed with a conditional update on ``is_available``,
        then the order moves from processing to dispatched. Either both
        changes commit or neither does.

        Raises:
            OrderNotFoundError: Unknown order
            CourierNotFoundError: Unknown courier
            CourierUnavailableError: Courier already busy
            InvalidOrderStateError: Order is not in processing
        """
        order = await self.orders.get_order_by_id(order_id, for_update=True)
        if order is None:
            await self.session.rollback()
            raise OrderNotFoundError(order_id)

        claimed = await self.session.execute(
            update(CourierRider)
            .where(CourierRider.id == courier_id, CourierRider.is_available.is_(True))
            .values(is_available=False, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            exists = await self.session.get(CourierRider, courier_id)
            await self.session.rollback()
            if exists is None:
                raise CourierNotFoundError(courier_id)
            raise CourierUnavailableError(courier_id)

        dispatched = await self.session.execute(
            update(Order)
            .where(Order.id == order_id, Order.status == OrderStatus.PROCESSING)
            .values(
                status=OrderStatus.DISPATCHED,
                assigned_courier_id=courier_id,
                updated_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )
        if dispatched.rowcount != 1:
            current_status = order.status.value
            await self.session.rollback()
            raise InvalidOrderStateError(
                "Only paid orders awaiting dispatch can be assigned",
                current_status=current_status,
                order_id=str(order_id),
            )

        await record_audit(
            self.session,
            action="courier_assigned",
            entity_type="order",
            entity_id=order_id,
            user_id=ctx.user_id if ctx else None,
            changes={"courier_id": str(courier_id)},
        )
        await self.session.commit()
        await self.session.refresh(order)

        logger.info("Courier assigned", order_id=str(order_id), courier_id=str(courier_id))
        return order

    async def complete_delivery(
        self,
        order_id: uuid.UUID,
        ctx: Optional[SessionContext] = None,
    ) -> Order:
        """
        Mark an order delivered and free its courier.

        The courier, when one is assigned, becomes available again and its
        delivery count increases by one.

        Raises:
            OrderNotFoundError: Unknown order
            InvalidOrderStateError: Order is not processing or dispatched
        """
        order = await self.orders.get_order_by_id(order_id, for_update=True)
        if order is None:
            await self.session.rollback()
            raise OrderNotFoundError(order_id)

        current_status = order.status.value
        courier_id = order.assigned_courier_id

        delivered = await self.session.execute(
            update(Order)
            .where(
                Order.id == order_id,
                Order.status.in_([OrderStatus.PROCESSING, OrderStatus.DISPATCHED]),
            )
            .values(status=OrderStatus.DELIVERED, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        if delivered.rowcount != 1:
            await self.session.rollback()
            raise InvalidOrderStateError(
                "Order cannot be marked delivered",
                current_status=current_status,
                order_id=str(order_id),
            )

        if courier_id is not None:
            await self.session.execute(
                update(CourierRider)
                .where(CourierRider.id == courier_id)
                .values(
                    is_available=True,
                    total_deliveries=CourierRider.total_deliveries + 1,
                    updated_at=utc_now(),
                )
                .execution_options(synchronize_session=False)
            )

        await record_audit(
            self.session,
            action="delivery_completed",
            entity_type="order",
            entity_id=order_id,
            user_id=ctx.user_id if ctx else None,
            changes={"courier_id": str(courier_id) if courier_id else None},
        )
        await self.session.commit()
        await self.session.refresh(order)

        logger.info(
            "Delivery completed",
            order_id=str(order_id),
            courier_id=str(courier_id) if courier_id else None,
        )
        return order
