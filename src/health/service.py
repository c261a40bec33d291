"""
CustomerHealthService — single entry point wiring the prediction pipeline.

Assembler -> engine -> store -> action policy, with the validator and the
risk ranker reading the store independently.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable

from sqlalchemy import Engine

from . import crm
from .config import MLConfig, PredictorConfig, get_ml_config, get_predictor_config
from .models import Prediction, PredictionType
from .policy import ActionPolicy, ActionResult, BatchActionResult, MLCTAStats, ml_cta_stats
from .prediction import AnthropicPredictor, HealthAnalysis, PredictionEngine, Predictor
from .ranking import HighRiskAccount, high_risk_accounts
from .store import AccuracyReport, PredictionStore
from .validation import ValidationReport, validate_expired

logger = logging.getLogger("health.service")


class PredictionState(str, Enum):
    NO_PREDICTION = "NO_PREDICTION"
    LOW_CONFIDENCE = "LOW_CONFIDENCE"
    ACTIONABLE = "ACTIONABLE"


@dataclass
class PredictionStatusView:
    """What a caller can show for an account's churn prediction."""

    state: PredictionState
    prediction: Prediction | None = None
    message: str = ""


def build_predictor(config: PredictorConfig | None = None) -> Predictor:
    """External predictor when enabled and configured, else rule-based."""
    config = config or get_predictor_config()
    capability = AnthropicPredictor(config)
    if capability.is_available():
        return Predictor.external(capability)
    logger.info("External predictor not configured; using rule-based predictions")
    return Predictor.rule_based()


class CustomerHealthService:
    """Facade over the account health prediction pipeline.

    Args:
        engine: SQLAlchemy engine for the CRM database.
        config: ML configuration. Loaded from the environment if None.
        predictor: Strategy selection. Built from the environment if None.
        now: Clock shared by every component.
    """

    def __init__(
        self,
        engine: Engine,
        config: MLConfig | None = None,
        predictor: Predictor | None = None,
        now: Callable[[], datetime] = datetime.now,
    ):
        self.engine = engine
        self.config = config or get_ml_config()
        self.now = now
        self.store = PredictionStore(engine, self.config, now=now)
        self.predictions = PredictionEngine(
            engine,
            self.store,
            self.config,
            predictor=predictor or build_predictor(),
            now=now,
        )
        self.policy = ActionPolicy(engine, self.store, self.config, now=now)

    # Prediction

    def predict_churn(
        self,
        account_id: int,
        tenant_id: str,
        window_days: int | None = None,
        force_refresh: bool = False,
    ) -> Prediction:
        return self.predictions.predict_churn(account_id, tenant_id, window_days, force_refresh)

    def analyze_health(self, account_id: int, tenant_id: str, store: bool = False) -> HealthAnalysis:
        return self.predictions.analyze_health(account_id, tenant_id, store=store)

    def get_existing_churn_prediction(self, account_id: int, tenant_id: str) -> Prediction | None:
        return self.predictions.get_existing_churn_prediction(account_id, tenant_id)

    def needs_refresh(self, account_id: int, tenant_id: str, max_age_days: int | None = None) -> bool:
        return self.predictions.needs_refresh(account_id, tenant_id, max_age_days)

    def churn_status(self, account_id: int, tenant_id: str) -> PredictionStatusView:
        """Distinguish 'no prediction yet' from 'too uncertain to act on'.

        Errors (unknown account, storage failures) propagate as exceptions.
        """
        crm.fetch_account(self.engine, account_id, tenant_id)
        prediction = self.store.get_latest_prediction(
            account_id, PredictionType.CHURN, tenant_id
        )
        if prediction is None:
            return PredictionStatusView(
                state=PredictionState.NO_PREDICTION,
                message="No active churn prediction for this account",
            )

        threshold = self.config.min_confidence_threshold
        if prediction.confidence < threshold:
            return PredictionStatusView(
                state=PredictionState.LOW_CONFIDENCE,
                prediction=prediction,
                message=f"Confidence {prediction.confidence} below threshold {threshold}",
            )
        return PredictionStatusView(state=PredictionState.ACTIONABLE, prediction=prediction)

    # Actions

    def generate_action_from_prediction(
        self,
        account_id: int,
        tenant_id: str,
        prediction: Prediction,
        user_id: int | None,
    ) -> ActionResult:
        return self.policy.generate_action_from_prediction(
            account_id, tenant_id, prediction, user_id
        )

    def generate_batch_actions(
        self,
        predictions: list[Prediction],
        tenant_id: str,
        user_id: int | None,
        max_actions: int | None = None,
    ) -> BatchActionResult:
        return self.policy.generate_batch_actions(predictions, tenant_id, user_id, max_actions)

    def ml_cta_stats(self, tenant_id: str) -> MLCTAStats:
        return ml_cta_stats(self.engine, tenant_id)

    # Validation and reporting

    def validate_expired(self, tenant_id: str) -> ValidationReport:
        return validate_expired(self.engine, self.store, tenant_id, self.config)

    def prediction_accuracy(
        self, tenant_id: str, prediction_type: PredictionType | str | None = None
    ) -> AccuracyReport:
        return self.store.prediction_accuracy(tenant_id, prediction_type)

    def high_risk_accounts(
        self, tenant_id: str, min_probability: float = 0.6, limit: int = 50
    ) -> list[HighRiskAccount]:
        return high_risk_accounts(self.engine, tenant_id, min_probability, limit, now=self.now)

    def get_ml_config(self) -> MLConfig:
        return self.config
