"""
Health insights — rule-based trajectory, dimension and anomaly analysis.

Deterministic counterpart of the external health analysis; also the
fallback when the external predictor is unavailable.
"""

import logging
from dataclasses import dataclass, field

import numpy as np

from ..models import AccountSnapshot, HealthSample, PredictionMetadata, RULE_BASED_MODEL

logger = logging.getLogger("health.prediction.insights")

TRAJECTORY_DELTA_POINTS = 10
PROJECTION_DAYS = 30

SUDDEN_DROP_POINTS = 15
SEVERE_DROP_POINTS = 25
SUSTAINED_DECLINE_PERIODS = 3
SEVERE_DECLINE_PERIODS = 5

HEALTHY_SCORE = 70
MODERATE_SCORE = 50

# (positive at or above, warning below, critical below)
DIMENSION_SEVERITY_BANDS = (70, 60, 40)

TRAJECTORY_PROBABILITY = {
    "declining": 0.7,
    "stable": 0.5,
    "improving": 0.3,
}
HEALTH_TREND_CONFIDENCE = 0.7
HEALTH_TREND_WINDOW_DAYS = 30

SUDDEN_DROP_CAUSES = [
    "Major product issue or outage",
    "Key stakeholder departure",
    "Escalation or complaint",
    "Contract/billing dispute",
]

SUSTAINED_DECLINE_CAUSES = [
    "Gradual disengagement",
    "Unresolved issues accumulating",
    "Competition or alternative evaluation",
    "Budget constraints",
]


@dataclass
class HealthInsight:
    """An observation about one health dimension."""

    dimension: str  # usage, support, engagement, sentiment, financial, overall
    insight: str
    severity: str  # critical, warning, info, positive
    trend: str  # improving, stable, declining
    suggested_action: str | None = None


@dataclass
class HealthAnomaly:
    dimension: str
    anomaly_type: str  # sudden_drop, sustained_decline, unusual_pattern
    description: str
    severity: str  # high, medium, low
    possible_causes: list[str] = field(default_factory=list)


@dataclass
class HealthAnalysis:
    """Result of a health analysis for one account."""

    account_id: int
    account_name: str
    current_score: int
    predicted_score: int
    score_trajectory: str
    insights: list[HealthInsight] = field(default_factory=list)
    anomalies: list[HealthAnomaly] = field(default_factory=list)
    strength_areas: list[str] = field(default_factory=list)
    risk_areas: list[str] = field(default_factory=list)
    summary: str = ""
    metadata: PredictionMetadata = field(default_factory=PredictionMetadata)
    prediction_id: int | None = None

    @property
    def trend_probability(self) -> float:
        """Probability stored on the HEALTH_TREND prediction for this analysis."""
        return TRAJECTORY_PROBABILITY.get(self.score_trajectory, 0.5)


# =============================================================================
# Trajectory and projection
# =============================================================================


def analyze_trajectory(history: tuple[HealthSample, ...] | list[HealthSample]) -> str:
    """Compare the newest sample against the mean of the older samples."""
    if len(history) < 2:
        return "stable"

    newest = history[0].overall_score
    older_mean = float(np.mean([s.overall_score for s in history[1:]]))
    diff = newest - older_mean

    if diff > TRAJECTORY_DELTA_POINTS:
        return "improving"
    if diff < -TRAJECTORY_DELTA_POINTS:
        return "declining"
    return "stable"


def project_score(current_score: int, history: tuple[HealthSample, ...] | list[HealthSample]) -> int:
    """Project the score PROJECTION_DAYS ahead from the daily slope of the history.

    Returns the current score when fewer than two distinct sample days exist.
    """
    if len(history) < 2:
        return current_score

    oldest_at = history[-1].calculated_at
    days = np.array([(s.calculated_at - oldest_at).total_seconds() / 86400 for s in history])
    scores = np.array([s.overall_score for s in history], dtype=float)

    if np.unique(np.round(days, 6)).size < 2:
        return current_score

    slope, _ = np.polyfit(days, scores, 1)
    projected = current_score + slope * PROJECTION_DAYS
    return int(np.clip(round(projected), 0, 100))


def _dimension_trend(history, attribute: str) -> str:
    if len(history) < 2:
        return "stable"
    newest = getattr(history[0], attribute)
    oldest = getattr(history[-1], attribute)
    if newest is None or oldest is None:
        return "stable"
    diff = newest - oldest
    if diff > TRAJECTORY_DELTA_POINTS:
        return "improving"
    if diff < -TRAJECTORY_DELTA_POINTS:
        return "declining"
    return "stable"


def _severity(score: int) -> str:
    positive, warning, critical = DIMENSION_SEVERITY_BANDS
    if score >= positive:
        return "positive"
    if score < critical:
        return "critical"
    if score < warning:
        return "warning"
    return "info"


# =============================================================================
# Dimension insights
# =============================================================================


def analyze_usage(score: int, history) -> HealthInsight:
    if score >= HEALTHY_SCORE:
        text = "Strong product adoption and feature utilization"
    elif score >= MODERATE_SCORE:
        text = "Moderate product usage with room for deeper adoption"
    else:
        text = "Low product usage indicates potential adoption issues"
    return HealthInsight(
        dimension="usage",
        insight=text,
        severity=_severity(score),
        trend=_dimension_trend(history, "usage_score"),
        suggested_action="Schedule product training or feature walkthrough" if score < 60 else None,
    )


def analyze_support(score: int, history) -> HealthInsight:
    if score >= HEALTHY_SCORE:
        text = "Low support burden indicates smooth product experience"
    elif score >= MODERATE_SCORE:
        text = "Moderate support activity, some issues may need attention"
    else:
        text = "High support volume suggests product or service issues"
    return HealthInsight(
        dimension="support",
        insight=text,
        severity=_severity(score),
        trend=_dimension_trend(history, "support_score"),
        suggested_action="Review open tickets and escalation history" if score < 60 else None,
    )


def analyze_engagement(score: int, snapshot: AccountSnapshot) -> HealthInsight:
    metrics = snapshot.crm_metrics
    if metrics.activities_last_30_days > 5:
        trend = "improving"
    elif metrics.activities_last_30_days < 2:
        trend = "declining"
    else:
        trend = "stable"

    if score >= HEALTHY_SCORE:
        text = "Strong stakeholder engagement and communication"
    elif score >= MODERATE_SCORE:
        text = "Adequate engagement but could be more proactive"
    else:
        text = "Low engagement may indicate relationship deterioration"
    return HealthInsight(
        dimension="engagement",
        insight=text,
        severity=_severity(score),
        trend=trend,
        suggested_action="Schedule a check-in meeting" if metrics.meetings_last_30_days == 0 else None,
    )


def overall_insight(score: int, trajectory: str) -> HealthInsight:
    if score >= HEALTHY_SCORE:
        level, severity = "healthy", "positive"
    elif score >= MODERATE_SCORE:
        level, severity = "moderate", "info"
    else:
        level, severity = "concerning", "warning"
    direction = {"improving": "trending upward", "declining": "trending downward"}.get(
        trajectory, "stable"
    )
    return HealthInsight(
        dimension="overall",
        insight=f"Overall health score of {score} is {level} and {direction}",
        severity=severity,
        trend=trajectory,
    )


# =============================================================================
# Anomalies
# =============================================================================


def detect_anomalies(history) -> list[HealthAnomaly]:
    """Find sudden drops between consecutive samples and sustained declines.

    ``history`` is newest first.
    """
    anomalies: list[HealthAnomaly] = []
    if len(history) < 2:
        return anomalies

    for current, previous in zip(history, history[1:]):
        drop = previous.overall_score - current.overall_score
        if drop > SUDDEN_DROP_POINTS:
            anomalies.append(HealthAnomaly(
                dimension="overall",
                anomaly_type="sudden_drop",
                description=(
                    f"Health score dropped {drop} points from "
                    f"{previous.overall_score} to {current.overall_score}"
                ),
                severity="high" if drop > SEVERE_DROP_POINTS else "medium",
                possible_causes=list(SUDDEN_DROP_CAUSES),
            ))

    consecutive = 0
    for current, previous in zip(history, history[1:]):
        if current.overall_score < previous.overall_score:
            consecutive += 1
        else:
            consecutive = 0
        if consecutive >= SUSTAINED_DECLINE_PERIODS:
            anomalies.append(HealthAnomaly(
                dimension="overall",
                anomaly_type="sustained_decline",
                description=(
                    f"Health score has declined for {consecutive + 1} consecutive periods"
                ),
                severity="high" if consecutive >= SEVERE_DECLINE_PERIODS else "medium",
                possible_causes=list(SUSTAINED_DECLINE_CAUSES),
            ))
            break

    return anomalies


def build_summary(
    name: str, current: int, predicted: int, trajectory: str, risk_areas: list[str]
) -> str:
    summary = f"{name} has a health score of {current} which is {trajectory}. "
    if predicted != current:
        direction = "increase" if predicted > current else "decrease"
        summary += f"The score is projected to {direction} to {predicted} over the next 30 days. "
    if risk_areas:
        summary += f"Key areas requiring attention: {', '.join(risk_areas)}."
    else:
        summary += "No critical areas of concern identified."
    return summary


# =============================================================================
# Entry point
# =============================================================================


def analyze_health_rule_based(snapshot: AccountSnapshot) -> HealthAnalysis:
    """Rule-based health analysis of one account snapshot."""
    history = snapshot.health_history
    current = snapshot.current_health_score
    trajectory = analyze_trajectory(history)

    insights: list[HealthInsight] = []
    strength_areas: list[str] = []
    risk_areas: list[str] = []

    if history:
        latest = history[0]
        dimensions = [
            (latest.usage_score, lambda s: analyze_usage(s, history), "Product usage"),
            (latest.support_score, lambda s: analyze_support(s, history), "Support health"),
            (latest.engagement_score, lambda s: analyze_engagement(s, snapshot), "Engagement level"),
        ]
        for score, analyzer, area in dimensions:
            if score is None:
                continue
            insight = analyzer(score)
            insights.append(insight)
            if insight.severity == "positive":
                strength_areas.append(area)
            elif insight.severity in ("critical", "warning"):
                risk_areas.append(area)

    insights.append(overall_insight(current, trajectory))
    predicted = project_score(current, history)

    return HealthAnalysis(
        account_id=snapshot.account.id,
        account_name=snapshot.account.name,
        current_score=current,
        predicted_score=predicted,
        score_trajectory=trajectory,
        insights=insights,
        anomalies=detect_anomalies(history),
        strength_areas=strength_areas,
        risk_areas=risk_areas,
        summary=build_summary(snapshot.account.name, current, predicted, trajectory, risk_areas),
        metadata=PredictionMetadata(model=RULE_BASED_MODEL),
    )
