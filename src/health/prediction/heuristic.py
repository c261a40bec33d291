"""
Rule-based churn heuristic.

Pure Python — no I/O and no LLM calls. The same snapshot always produces
the same prediction, which is what makes this the guaranteed fallback for
the external predictor.
"""

import logging
from dataclasses import dataclass

from ..config import ChurnRiskThresholds, MLConfig
from ..models import (
    AccountSnapshot,
    Prediction,
    PredictionMetadata,
    PredictionType,
    Recommendation,
    RiskFactor,
    SuggestedCTA,
    RULE_BASED_MODEL,
)

logger = logging.getLogger("health.prediction.heuristic")

# Per-point weight of health score below 100 (score 40 -> 0.42, score 80 -> 0.14)
HEALTH_WEIGHT_PER_POINT = 0.007
WARNING_HEALTH_SCORE = 50

# Trend detection
TREND_DELTA_POINTS = 5

# Upward adjustments
DECLINING_TREND_PENALTY = 0.12
RISK_CTA_BASE_PENALTY = 0.10
RISK_CTA_EXTRA_PENALTY = 0.02
RISK_CTA_PRIORITY_PENALTY = 0.02
RISK_CTA_PENALTY_CAP = 0.12
LONG_SILENCE_DAYS = 30
LONG_SILENCE_PENALTY = 0.15
SHORT_SILENCE_DAYS = 14
SHORT_SILENCE_PENALTY = 0.06
NEGATIVE_SENTIMENT_RATIO = 0.3
NEGATIVE_SENTIMENT_PENALTY = 0.08
MILD_SENTIMENT_RATIO = 0.1
MILD_SENTIMENT_PENALTY = 0.04
NO_ACTIVITY_PENALTY = 0.10
LOW_ACTIVITY_COUNT = 3
LOW_ACTIVITY_PENALTY = 0.05

# Downward adjustments
MULTI_CHANNEL_CREDIT = 0.08
IMPROVING_TREND_CREDIT = 0.05
OPPORTUNITY_PROBABILITY = 0.6
OPPORTUNITY_CREDIT = 0.03
OPPORTUNITY_CREDIT_CAP = 0.05

# Confidence grows with the amount of history available
BASE_CONFIDENCE = 0.55
CONFIDENCE_PER_SAMPLE = 0.02
MAX_CONFIDENCE_SAMPLES = 10

URGENCY_BY_CATEGORY = {
    "critical": "immediate",
    "high": "this_week",
    "medium": "this_month",
    "low": "monitor",
}

DUE_DAYS_BY_URGENCY = {
    "immediate": 1,
    "this_week": 5,
    "this_month": 14,
    "monitor": 30,
}


@dataclass
class ChurnFactors:
    """Signed contributions to churn probability, one per signal."""

    health_score: float = 0.0
    trend: float = 0.0
    risk_ctas: float = 0.0
    inactivity: float = 0.0
    sentiment: float = 0.0
    engagement: float = 0.0
    opportunities: float = 0.0

    @property
    def total(self) -> float:
        return (
            self.health_score + self.trend + self.risk_ctas + self.inactivity
            + self.sentiment + self.engagement + self.opportunities
        )


# =============================================================================
# Classification helpers
# =============================================================================


def get_risk_category(
    probability: float, thresholds: ChurnRiskThresholds | None = None
) -> str:
    """Map a churn probability to low / medium / high / critical."""
    thresholds = thresholds or ChurnRiskThresholds()
    if probability >= thresholds.critical:
        return "critical"
    if probability >= thresholds.high:
        return "high"
    if probability >= thresholds.medium:
        return "medium"
    return "low"


def get_intervention_urgency(risk_category: str) -> str:
    return URGENCY_BY_CATEGORY.get(risk_category, "monitor")


def get_urgency_due_days(urgency: str) -> int:
    return DUE_DAYS_BY_URGENCY.get(urgency, 30)


def score_trend(snapshot: AccountSnapshot) -> str:
    """Classify the health trend as improving, stable or declining.

    A numeric drop across the history or a DECLINING label on the newest
    sample counts as declining; declining wins over improving.
    """
    history = snapshot.health_history
    if not history:
        return "stable"

    newest = history[0]
    label = (newest.score_trend or "").upper()
    delta = newest.overall_score - history[-1].overall_score if len(history) >= 2 else 0

    if delta < -TREND_DELTA_POINTS or label == "DECLINING":
        return "declining"
    if delta > TREND_DELTA_POINTS or label == "IMPROVING":
        return "improving"
    return "stable"


def heuristic_confidence(snapshot: AccountSnapshot) -> float:
    samples = min(len(snapshot.health_history), MAX_CONFIDENCE_SAMPLES)
    return round(BASE_CONFIDENCE + CONFIDENCE_PER_SAMPLE * samples, 4)


# =============================================================================
# Factor calculation
# =============================================================================


def calculate_churn_factors(snapshot: AccountSnapshot) -> ChurnFactors:
    """Compute each signed contribution from the snapshot."""
    factors = ChurnFactors()
    metrics = snapshot.crm_metrics

    factors.health_score = (100 - snapshot.current_health_score) * HEALTH_WEIGHT_PER_POINT
    factors.health_score = max(0.0, factors.health_score)

    trend = score_trend(snapshot)
    if trend == "declining":
        factors.trend = DECLINING_TREND_PENALTY
    elif trend == "improving":
        factors.trend = -IMPROVING_TREND_CREDIT

    risk_ctas = [c for c in snapshot.open_ctas if c.type == "RISK"]
    if risk_ctas:
        penalty = RISK_CTA_BASE_PENALTY + RISK_CTA_EXTRA_PENALTY * (len(risk_ctas) - 1)
        if any(c.priority in ("HIGH", "CRITICAL") for c in risk_ctas):
            penalty += RISK_CTA_PRIORITY_PENALTY
        factors.risk_ctas = min(RISK_CTA_PENALTY_CAP, penalty)

    if metrics.days_since_last_activity > LONG_SILENCE_DAYS:
        factors.inactivity = LONG_SILENCE_PENALTY
    elif metrics.days_since_last_activity > SHORT_SILENCE_DAYS:
        factors.inactivity = SHORT_SILENCE_PENALTY

    rated = [a for a in snapshot.recent_activities if a.sentiment]
    if rated:
        negative_ratio = sum(1 for a in rated if a.sentiment == "NEGATIVE") / len(rated)
        if negative_ratio > NEGATIVE_SENTIMENT_RATIO:
            factors.sentiment = NEGATIVE_SENTIMENT_PENALTY
        elif negative_ratio > MILD_SENTIMENT_RATIO:
            factors.sentiment = MILD_SENTIMENT_PENALTY

    if metrics.meetings_last_30_days >= 1 and metrics.emails_last_30_days >= 1:
        factors.engagement = -MULTI_CHANNEL_CREDIT
    elif metrics.activities_last_30_days == 0:
        factors.engagement = NO_ACTIVITY_PENALTY
    elif metrics.activities_last_30_days < LOW_ACTIVITY_COUNT:
        factors.engagement = LOW_ACTIVITY_PENALTY

    strong_opportunities = [
        o for o in snapshot.opportunities
        if o.probability is not None and o.probability >= OPPORTUNITY_PROBABILITY
    ]
    if strong_opportunities:
        factors.opportunities = -min(
            OPPORTUNITY_CREDIT_CAP, OPPORTUNITY_CREDIT * len(strong_opportunities)
        )

    return factors


def calculate_churn_probability(factors: ChurnFactors) -> float:
    return round(min(1.0, max(0.0, factors.total)), 4)


def _impact(contribution: float) -> str:
    if contribution >= 0.25:
        return "high"
    if contribution >= 0.1:
        return "medium"
    return "low"


def build_risk_factors(
    snapshot: AccountSnapshot,
    factors: ChurnFactors,
    probability: float,
    notable_probability: float,
) -> list[RiskFactor]:
    """Explain the positive contributions, most significant first."""
    metrics = snapshot.crm_metrics
    trend = score_trend(snapshot)
    factor_trend = {"declining": "worsening", "improving": "improving"}.get(trend, "stable")
    score = snapshot.current_health_score

    candidates: list[tuple[float, RiskFactor]] = []

    if factors.health_score > 0:
        candidates.append((factors.health_score, RiskFactor(
            factor="Health Score",
            impact=_impact(factors.health_score),
            current_value=score,
            threshold=WARNING_HEALTH_SCORE,
            trend=factor_trend,
            description=(
                f"Health score is {score}"
                + (f", below the warning threshold of {WARNING_HEALTH_SCORE}"
                   if score < WARNING_HEALTH_SCORE else "")
            ),
        )))

    if factors.trend > 0:
        candidates.append((factors.trend, RiskFactor(
            factor="Declining Health Trend",
            impact=_impact(factors.trend),
            current_value=score,
            trend="worsening",
            description="Health score has been declining over recent measurements",
        )))

    if factors.risk_ctas > 0:
        open_risk = sum(1 for c in snapshot.open_ctas if c.type == "RISK")
        candidates.append((factors.risk_ctas, RiskFactor(
            factor="Open Risk CTAs",
            impact=_impact(factors.risk_ctas),
            current_value=open_risk,
            trend="worsening",
            description=f"{open_risk} open risk follow-up(s) already flagged on this account",
        )))

    if factors.inactivity > 0:
        candidates.append((factors.inactivity, RiskFactor(
            factor="Inactivity",
            impact=_impact(factors.inactivity),
            current_value=f"{metrics.days_since_last_activity} days",
            threshold=f"{LONG_SILENCE_DAYS} days",
            trend="worsening",
            description=f"No activity for {metrics.days_since_last_activity} days",
        )))

    if factors.sentiment > 0:
        candidates.append((factors.sentiment, RiskFactor(
            factor="Negative Sentiment",
            impact=_impact(factors.sentiment),
            current_value="Negative",
            trend="worsening",
            description="Recent interactions have shown negative sentiment",
        )))

    if factors.engagement > 0:
        candidates.append((factors.engagement, RiskFactor(
            factor="Low Engagement",
            impact=_impact(factors.engagement),
            current_value=metrics.activities_last_30_days,
            threshold=LOW_ACTIVITY_COUNT,
            trend="worsening",
            description=(
                f"Only {metrics.activities_last_30_days} activities in the last 30 days"
            ),
        )))

    candidates.sort(key=lambda item: item[0], reverse=True)
    risk_factors = [rf for _, rf in candidates]

    if not risk_factors and probability > notable_probability:
        risk_factors.append(RiskFactor(
            factor="Composite Risk",
            impact=_impact(probability),
            current_value=probability,
            trend=factor_trend,
            description="Combined account signals indicate elevated churn risk",
        ))

    return risk_factors


def build_recommendations(
    snapshot: AccountSnapshot, risk_category: str
) -> list[Recommendation]:
    recommendations: list[Recommendation] = []
    name = snapshot.account.name

    if risk_category in ("critical", "high"):
        recommendations.append(Recommendation(
            action=f"Schedule executive outreach call with {name}",
            priority="urgent",
            timeframe="Within 24 hours" if risk_category == "critical" else "Within 5 days",
            expected_impact="Identify blockers and rebuild relationship",
            rationale="Direct engagement needed to understand concerns and reinforce value",
            effort="medium",
        ))

    if snapshot.crm_metrics.meetings_last_30_days == 0:
        recommendations.append(Recommendation(
            action="Schedule a business review meeting",
            priority="urgent" if risk_category == "critical" else "high",
            timeframe="Within 7 days",
            expected_impact="Re-establish regular communication cadence",
            rationale="No recent meetings indicate relationship gap",
            effort="low",
        ))

    if snapshot.current_health_score < WARNING_HEALTH_SCORE:
        recommendations.append(Recommendation(
            action="Conduct product usage analysis",
            priority="high",
            timeframe="Within 2 weeks",
            expected_impact="Identify features not being utilized",
            rationale="Low health score may indicate adoption issues",
            effort="medium",
        ))

    if risk_category != "low" and not any(c.type == "RISK" for c in snapshot.open_ctas):
        recommendations.append(Recommendation(
            action="Create risk CTA for systematic follow-up",
            priority="medium",
            timeframe="Immediately",
            expected_impact="Consistent attention and follow-through",
            rationale="Ensure this account is tracked in daily workflow",
            effort="low",
        ))

    return recommendations


def build_explanation(name: str, probability: float, risk_category: str) -> str:
    pct = round(probability * 100)
    if risk_category == "critical":
        return (
            f"{name} has a {pct}% churn probability and requires immediate attention. "
            "The combination of low health score, declining engagement, and lack of "
            "recent interaction signals significant risk."
        )
    if risk_category == "high":
        return (
            f"{name} shows elevated churn risk at {pct}%. Health metrics and engagement "
            "patterns indicate this account needs proactive outreach this week."
        )
    if risk_category == "medium":
        return (
            f"{name} has moderate churn risk ({pct}%). While not urgent, monitoring "
            "and preventive engagement are recommended."
        )
    return (
        f"{name} appears healthy with low churn risk ({pct}%). "
        "Continue regular engagement cadence."
    )


# =============================================================================
# Entry point
# =============================================================================


def predict_churn_rule_based(
    snapshot: AccountSnapshot,
    prediction_window_days: int,
    config: MLConfig | None = None,
) -> Prediction:
    """Compute a churn prediction from the snapshot alone.

    Args:
        snapshot: Assembled account context.
        prediction_window_days: Business horizon being forecast.
        config: ML configuration (risk breakpoints, notable threshold).

    Returns:
        Unpersisted Prediction with ``metadata.model == "rule-based-fallback"``.
    """
    config = config or MLConfig()
    factors = calculate_churn_factors(snapshot)
    probability = calculate_churn_probability(factors)
    risk_category = get_risk_category(probability, config.churn_risk_thresholds)
    urgency = get_intervention_urgency(risk_category)

    risk_factors = build_risk_factors(
        snapshot, factors, probability, config.notable_probability
    )
    explanation = build_explanation(snapshot.account.name, probability, risk_category)

    suggested_cta = None
    if risk_category in ("critical", "high"):
        suggested_cta = SuggestedCTA(
            type="RISK",
            priority="CRITICAL" if risk_category == "critical" else "HIGH",
            title=f"Review churn risk for {snapshot.account.name}",
            reason=explanation,
            due_days=get_urgency_due_days(urgency),
        )

    logger.debug(
        f"Rule-based churn for account {snapshot.account.id}: "
        f"p={probability} ({risk_category}) factors={factors}"
    )

    return Prediction(
        prediction_type=PredictionType.CHURN,
        probability=probability,
        confidence=heuristic_confidence(snapshot),
        prediction_window_days=prediction_window_days,
        risk_factors=risk_factors,
        explanation=explanation,
        recommendations=build_recommendations(snapshot, risk_category),
        suggested_cta=suggested_cta,
        metadata=PredictionMetadata(model=RULE_BASED_MODEL),
        risk_category=risk_category,
        intervention_urgency=urgency,
        primary_drivers=[rf.factor for rf in risk_factors if rf.impact == "high"][:3],
    )
