"""
Pydantic v2 models for structured responses of the external predictor.

These schemas define the contract between the LLM output and the
prediction pipeline; anything that does not validate is treated as an
unavailable predictor.
"""

from typing import Literal

from pydantic import BaseModel, Field

Impact = Literal["high", "medium", "low"]
Trajectory = Literal["improving", "stable", "declining"]


# =============================================================================
# Churn
# =============================================================================


class RiskFactorOut(BaseModel):
    factor: str
    impact: Impact
    current_value: str | float | int | None = None
    threshold: str | float | int | None = None
    trend: Literal["improving", "stable", "worsening"] = "stable"
    description: str = ""


class RecommendationOut(BaseModel):
    action: str
    priority: Literal["urgent", "high", "medium", "low"] = "medium"
    timeframe: str = ""
    expected_impact: str = ""
    rationale: str = ""
    effort: Impact = "medium"


class SuggestedCTAOut(BaseModel):
    type: str = Field(description="CTA type: RISK, OPPORTUNITY, LIFECYCLE")
    priority: Literal["CRITICAL", "HIGH", "MEDIUM", "LOW"]
    title: str
    reason: str
    due_days: int = Field(ge=0, le=365)


class ChurnPredictionResponse(BaseModel):
    """Churn prediction as returned by the external model."""

    churn_probability: float = Field(ge=0.0, le=1.0)
    confidence: float = Field(ge=0.0, le=1.0)
    risk_category: Literal["critical", "high", "medium", "low"] | None = None
    primary_churn_drivers: list[str] = Field(default_factory=list)
    risk_factors: list[RiskFactorOut] = Field(default_factory=list)
    explanation: str
    recommendations: list[RecommendationOut] = Field(default_factory=list)
    suggested_cta: SuggestedCTAOut | None = None


# =============================================================================
# Health analysis
# =============================================================================


class HealthInsightOut(BaseModel):
    dimension: str
    insight: str
    severity: Literal["critical", "warning", "info", "positive"]
    trend: Trajectory = "stable"
    suggested_action: str | None = None


class HealthAnomalyOut(BaseModel):
    dimension: str
    anomaly_type: Literal["sudden_drop", "sustained_decline", "unusual_pattern"]
    description: str
    severity: Impact
    possible_causes: list[str] = Field(default_factory=list)


class HealthAnalysisResponse(BaseModel):
    """Health analysis as returned by the external model."""

    predicted_score: int = Field(ge=0, le=100)
    score_trajectory: Trajectory
    insights: list[HealthInsightOut] = Field(default_factory=list)
    anomalies: list[HealthAnomalyOut] = Field(default_factory=list)
    strength_areas: list[str] = Field(default_factory=list)
    risk_areas: list[str] = Field(default_factory=list)
    summary: str
