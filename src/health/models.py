"""
Dataclasses shared across the prediction pipeline.

Two groups live here: the immutable account snapshot assembled per request,
and the prediction record with its risk factors, recommendations and
suggested CTA. All functions in this module are pure.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class PredictionType(str, Enum):
    CHURN = "CHURN"
    HEALTH_TREND = "HEALTH_TREND"


class PredictionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    VALIDATED = "VALIDATED"


RULE_BASED_MODEL = "rule-based-fallback"

IMPACT_LEVELS = ("low", "medium", "high")
FACTOR_TRENDS = ("improving", "stable", "worsening")


# =============================================================================
# Account snapshot
# =============================================================================


@dataclass(frozen=True)
class AccountProfile:
    """Identity and current scores of an account."""

    id: int
    tenant_id: str
    name: str
    type: str
    health_score: int | None
    engagement_score: int | None
    churn_risk: float | None
    archived: bool
    created_at: datetime


@dataclass(frozen=True)
class HealthSample:
    """One health-score history entry."""

    overall_score: int
    calculated_at: datetime
    usage_score: int | None = None
    support_score: int | None = None
    engagement_score: int | None = None
    sentiment_score: int | None = None
    score_trend: str | None = None  # IMPROVING, STABLE, DECLINING
    churn_risk: float | None = None


@dataclass(frozen=True)
class ActivityRecord:
    type: str
    created_at: datetime
    sentiment: str | None = None


@dataclass(frozen=True)
class OpenCTARecord:
    type: str
    priority: str
    status: str
    due_date: datetime | None = None


@dataclass(frozen=True)
class OpportunityRecord:
    stage: str
    value: float | None
    probability: float | None  # normalized to [0, 1]


@dataclass(frozen=True)
class CRMMetrics:
    """Engagement counts derived from the activity log."""

    days_since_last_activity: int
    activities_last_30_days: int
    meetings_last_30_days: int
    emails_last_30_days: int


@dataclass(frozen=True)
class AccountSnapshot:
    """Everything the predictors know about one account at one instant."""

    account: AccountProfile
    health_history: tuple[HealthSample, ...]  # newest first
    recent_activities: tuple[ActivityRecord, ...]
    open_ctas: tuple[OpenCTARecord, ...]
    opportunities: tuple[OpportunityRecord, ...]
    crm_metrics: CRMMetrics
    assembled_at: datetime

    @property
    def current_health_score(self) -> int:
        """Account health score, falling back to the newest sample, then 50."""
        if self.account.health_score is not None:
            return self.account.health_score
        if self.health_history:
            return self.health_history[0].overall_score
        return 50


# =============================================================================
# Prediction
# =============================================================================


@dataclass
class RiskFactor:
    """One driver of predicted risk."""

    factor: str
    impact: str  # low, medium, high
    current_value: Any
    trend: str  # improving, stable, worsening
    description: str
    threshold: Any = None

    def __post_init__(self) -> None:
        if self.impact not in IMPACT_LEVELS:
            raise ValueError(f"Invalid impact '{self.impact}'")
        if self.trend not in FACTOR_TRENDS:
            raise ValueError(f"Invalid trend '{self.trend}'")


@dataclass
class Recommendation:
    action: str
    priority: str  # urgent, high, medium, low
    timeframe: str
    expected_impact: str
    rationale: str
    effort: str  # low, medium, high


@dataclass
class SuggestedCTA:
    """Stub of the follow-up action a prediction proposes."""

    type: str
    priority: str
    title: str
    reason: str
    due_days: int


@dataclass
class PredictionMetadata:
    """Provenance of a prediction."""

    model: str = RULE_BASED_MODEL
    tokens_used: int = 0
    latency_ms: int = 0
    estimated_cost: float = 0.0


@dataclass
class Prediction:
    """A churn or health-trend prediction.

    Fields after ``primary_drivers`` are filled in by the prediction store
    and stay None on predictions that were never persisted.
    """

    prediction_type: PredictionType
    probability: float
    confidence: float
    prediction_window_days: int
    risk_factors: list[RiskFactor] = field(default_factory=list)
    explanation: str = ""
    recommendations: list[Recommendation] = field(default_factory=list)
    suggested_cta: SuggestedCTA | None = None
    metadata: PredictionMetadata = field(default_factory=PredictionMetadata)
    risk_category: str | None = None
    intervention_urgency: str | None = None
    primary_drivers: list[str] = field(default_factory=list)

    id: int | None = None
    tenant_id: str | None = None
    account_id: int | None = None
    predicted_at: datetime | None = None
    valid_until: datetime | None = None
    status: PredictionStatus | None = None
    validated_at: datetime | None = None
    actual_outcome: bool | None = None
    was_accurate: bool | None = None
    generated_cta_id: int | None = None

    def __post_init__(self) -> None:
        self.prediction_type = PredictionType(self.prediction_type)
        if self.status is not None:
            self.status = PredictionStatus(self.status)
        if not 0.0 <= self.probability <= 1.0:
            raise ValueError(f"probability {self.probability} outside [0, 1]")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence {self.confidence} outside [0, 1]")
        if self.prediction_window_days <= 0:
            raise ValueError("prediction_window_days must be positive")

    @property
    def retention_probability(self) -> float:
        return round(1.0 - self.probability, 4)

    @property
    def is_persisted(self) -> bool:
        return self.id is not None


# =============================================================================
# JSON column helpers
# =============================================================================


def to_json(obj: Any) -> Any:
    """Convert dataclasses (or lists of them) to JSON-ready dicts."""
    if obj is None:
        return None
    if isinstance(obj, list):
        return [to_json(item) for item in obj]
    return asdict(obj)


def risk_factors_from_json(raw: list[dict] | None) -> list[RiskFactor]:
    return [RiskFactor(**item) for item in raw or []]


def recommendations_from_json(raw: list[dict] | None) -> list[Recommendation]:
    return [Recommendation(**item) for item in raw or []]


def suggested_cta_from_json(raw: dict | None) -> SuggestedCTA | None:
    return SuggestedCTA(**raw) if raw else None
