"""
Configuration for the account health prediction pipeline.

Business rules (prediction windows, CTA gates, risk breakpoints) live in
``MLConfig``; external LLM settings live in ``PredictorConfig``. Both read
overrides from environment variables via python-dotenv.
"""

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()


@dataclass
class ChurnRiskThresholds:
    """Probability breakpoints for churn risk categories."""

    critical: float = 0.8  # platform-wide critical threshold
    high: float = 0.6
    medium: float = 0.3
    low: float = 0.0

    def __post_init__(self) -> None:
        if not (0.0 <= self.low <= self.medium <= self.high <= self.critical <= 1.0):
            raise ValueError(
                "Churn thresholds must satisfy 0 <= low <= medium <= high "
                f"<= critical <= 1, got {self}"
            )


@dataclass
class MLConfig:
    """Business-tunable settings for predictions and CTA generation."""

    # Prediction lifecycle
    prediction_window_days: int = 90
    prediction_validity_days: int = 30
    refresh_max_age_days: int = 7

    # CTA generation
    min_confidence_threshold: float = 0.5
    cta_cooldown_days: int = 7
    max_batch_ctas: int = 20

    # Risk classification
    churn_risk_thresholds: ChurnRiskThresholds = field(
        default_factory=ChurnRiskThresholds
    )
    notable_probability: float = 0.3

    # Context assembly
    history_lookback_days: int = 90
    history_sample_limit: int = 30
    activity_lookback_days: int = 30

    # Validation
    churn_decision_threshold: float = 0.5
    health_decline_threshold: float = 0.6


@dataclass
class PredictorConfig:
    """Settings for the external LLM predictor."""

    enabled: bool = True
    api_key: str | None = None
    model_name: str = "claude-sonnet-4-20250514"
    temperature: float = 0.3
    max_tokens: int = 2000
    timeout_seconds: float = 30.0
    cost_per_1k_tokens: float = 0.006


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value not in (None, "") else default


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value not in (None, "") else default


def get_ml_config() -> MLConfig:
    """Load ML config, applying environment overrides to the defaults."""
    defaults = MLConfig()
    thresholds = defaults.churn_risk_thresholds
    return MLConfig(
        prediction_window_days=_env_int(
            "ML_PREDICTION_WINDOW_DAYS", defaults.prediction_window_days
        ),
        prediction_validity_days=_env_int(
            "ML_PREDICTION_VALIDITY_DAYS", defaults.prediction_validity_days
        ),
        refresh_max_age_days=_env_int(
            "ML_REFRESH_MAX_AGE_DAYS", defaults.refresh_max_age_days
        ),
        min_confidence_threshold=_env_float(
            "ML_MIN_CONFIDENCE_THRESHOLD", defaults.min_confidence_threshold
        ),
        cta_cooldown_days=_env_int("ML_CTA_COOLDOWN_DAYS", defaults.cta_cooldown_days),
        max_batch_ctas=_env_int("ML_MAX_BATCH_CTAS", defaults.max_batch_ctas),
        churn_risk_thresholds=ChurnRiskThresholds(
            critical=_env_float("ML_CHURN_THRESHOLD_CRITICAL", thresholds.critical),
            high=_env_float("ML_CHURN_THRESHOLD_HIGH", thresholds.high),
            medium=_env_float("ML_CHURN_THRESHOLD_MEDIUM", thresholds.medium),
        ),
    )


def get_predictor_config() -> PredictorConfig:
    """Load external predictor config from environment variables."""
    defaults = PredictorConfig()
    return PredictorConfig(
        enabled=os.getenv("HEALTH_LLM_ENABLED", "true").lower() == "true",
        api_key=os.getenv("ANTHROPIC_API_KEY") or None,
        model_name=os.getenv("HEALTH_LLM_MODEL", defaults.model_name),
        temperature=_env_float("HEALTH_LLM_TEMPERATURE", defaults.temperature),
        max_tokens=_env_int("HEALTH_LLM_MAX_TOKENS", defaults.max_tokens),
        timeout_seconds=_env_float("HEALTH_LLM_TIMEOUT", defaults.timeout_seconds),
        cost_per_1k_tokens=_env_float(
            "HEALTH_LLM_COST_PER_1K", defaults.cost_per_1k_tokens
        ),
    )
