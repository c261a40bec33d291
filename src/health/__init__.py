"""
Account health predictions for the CRM platform.

Turns account signals into churn-risk predictions, decides whether they
warrant an automated CTA, and later checks whether they came true.

For CLI usage:
    python -m src.data.database init                  # Create tables
    python -m src.health.validation --tenant-id acme  # Validate expired predictions
"""

# Configuration
from .config import (
    ChurnRiskThresholds,
    MLConfig,
    PredictorConfig,
    get_ml_config,
    get_predictor_config,
)

# Errors
from .errors import (
    HealthPredictionError,
    NotFound,
    PredictorUnavailable,
    ValidationPartialFailure,
)

# Data model
from .models import (
    AccountSnapshot,
    Prediction,
    PredictionMetadata,
    PredictionStatus,
    PredictionType,
    Recommendation,
    RiskFactor,
    SuggestedCTA,
)

# Pipeline components
from .context import gather_account_context
from .policy import ActionPolicy, ActionResult, SkipCode, ml_cta_stats
from .prediction import AnthropicPredictor, HealthAnalysis, PredictionEngine, Predictor
from .ranking import HighRiskAccount, high_risk_accounts
from .store import AccuracyReport, PredictionStore
from .validation import ValidationReport, validate_expired

# Facade
from .service import CustomerHealthService, PredictionState, PredictionStatusView

__all__ = [
    # Configuration
    "ChurnRiskThresholds",
    "MLConfig",
    "PredictorConfig",
    "get_ml_config",
    "get_predictor_config",
    # Errors
    "HealthPredictionError",
    "NotFound",
    "PredictorUnavailable",
    "ValidationPartialFailure",
    # Data model
    "AccountSnapshot",
    "Prediction",
    "PredictionMetadata",
    "PredictionStatus",
    "PredictionType",
    "Recommendation",
    "RiskFactor",
    "SuggestedCTA",
    # Components
    "AccuracyReport",
    "ActionPolicy",
    "ActionResult",
    "AnthropicPredictor",
    "HealthAnalysis",
    "HighRiskAccount",
    "PredictionEngine",
    "PredictionStore",
    "Predictor",
    "SkipCode",
    "ValidationReport",
    "gather_account_context",
    "high_risk_accounts",
    "ml_cta_stats",
    "validate_expired",
    # Facade
    "CustomerHealthService",
    "PredictionState",
    "PredictionStatusView",
]
