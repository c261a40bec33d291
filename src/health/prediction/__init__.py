"""Churn prediction strategies and health analysis."""

from .engine import PredictionEngine, Predictor, PredictorKind, health_trend_prediction
from .external import AnthropicPredictor, build_prompt_payload
from .heuristic import (
    get_intervention_urgency,
    get_risk_category,
    get_urgency_due_days,
    predict_churn_rule_based,
)
from .insights import HealthAnalysis, HealthAnomaly, HealthInsight, analyze_health_rule_based

__all__ = [
    "AnthropicPredictor",
    "HealthAnalysis",
    "HealthAnomaly",
    "HealthInsight",
    "PredictionEngine",
    "Predictor",
    "PredictorKind",
    "analyze_health_rule_based",
    "build_prompt_payload",
    "get_intervention_urgency",
    "get_risk_category",
    "get_urgency_due_days",
    "health_trend_prediction",
    "predict_churn_rule_based",
]
