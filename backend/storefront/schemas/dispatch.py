"""Courier dispatch schemas."""

from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class CourierCandidateResponse(BaseModel):
    id: UUID
    name: str
    phone_number: str
    vehicle_type: Optional[str] = None
    rating: Optional[Decimal] = None
    total_deliveries: int
    current_location: Optional[dict[str, Any]] = None
    distance_km: float
    score: float
    eta_minutes: int


class CourierCandidatesResponse(BaseModel):
    couriers: list[CourierCandidateResponse]


class AssignCourierRequest(BaseModel):
    courier_id: UUID = Field(..., description="Courier to dispatch with the order")


class SweepResponse(BaseModel):
    swept: int
