"""Inbound payment gateway notification record."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from sqlalchemy import Enum as SQLEnum, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from storefront.database.base import BaseModel, JSONType, UTCDateTime


class WebhookEventStatus(str, Enum):
    """
    Processing state of a delivered event.

    Attributes:
        RECEIVED: Claimed by a worker, side effects not yet applied
        PROCESSED: Side effects applied, further deliveries are no-ops
        FAILED: Verification or reconciliation failed, redelivery retries it
    """

    RECEIVED = "received"
    PROCESSED = "processed"
    FAILED = "failed"


class WebhookEvent(BaseModel):
    """
    One row per gateway event id.

    The unique ``event_id`` is the idempotency guard for webhook delivery.
    """

    __tablename__ = "webhook_events"

    event_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    status: Mapped[WebhookEventStatus] = mapped_column(
        SQLEnum(
            WebhookEventStatus,
            name="webhook_event_status",
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=WebhookEventStatus.RECEIVED,
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    claimed_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    processed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
