"""Fraud risk scoring."""

from storefront.services.fraud.scorer import (
    FraudFlag,
    FraudRiskScorer,
    Recommendation,
    RiskAssessment,
    RiskLevel,
)

__all__ = ["FraudFlag", "FraudRiskScorer", "Recommendation", "RiskAssessment", "RiskLevel"]
