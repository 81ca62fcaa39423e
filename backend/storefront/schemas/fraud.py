"""Fraud check schemas."""

from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from storefront.services.fraud import Recommendation, RiskLevel


class FraudCheckRequest(BaseModel):
    device_fingerprint: Optional[str] = Field(None, max_length=255)
    ip_address: Optional[str] = Field(None, max_length=64)


class FraudCheckResponse(BaseModel):
    order_id: UUID
    risk_score: int
    risk_level: RiskLevel
    flags: list[str]
    recommendation: Recommendation
