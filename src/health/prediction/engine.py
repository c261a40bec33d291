"""
Prediction engine — snapshot to churn prediction or health analysis.

The strategy is a tagged ``Predictor`` value: RULE_BASED always uses the
heuristic; EXTERNAL uses the injected capability when it reports itself
available and falls back to the heuristic on PredictorUnavailable.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable

from sqlalchemy import Engine

from ..config import MLConfig
from ..context import gather_account_context
from ..errors import PredictorUnavailable
from ..models import AccountSnapshot, Prediction, PredictionType, RiskFactor
from ..store import PredictionStore
from .external import AnthropicPredictor
from .heuristic import (
    get_intervention_urgency,
    get_risk_category,
    predict_churn_rule_based,
)
from .insights import (
    HEALTH_TREND_CONFIDENCE,
    HEALTH_TREND_WINDOW_DAYS,
    HealthAnalysis,
    analyze_health_rule_based,
)

logger = logging.getLogger("health.prediction")


class PredictorKind(str, Enum):
    RULE_BASED = "RULE_BASED"
    EXTERNAL = "EXTERNAL"


@dataclass(frozen=True)
class Predictor:
    """Which prediction strategy to use, plus the external capability if any."""

    kind: PredictorKind
    capability: AnthropicPredictor | None = None

    def __post_init__(self) -> None:
        if self.kind is PredictorKind.EXTERNAL and self.capability is None:
            raise ValueError("EXTERNAL predictor requires a capability")

    @classmethod
    def rule_based(cls) -> "Predictor":
        return cls(PredictorKind.RULE_BASED)

    @classmethod
    def external(cls, capability: AnthropicPredictor) -> "Predictor":
        return cls(PredictorKind.EXTERNAL, capability)


class PredictionEngine:
    """Runs predictions for accounts and persists them.

    Args:
        engine: SQLAlchemy engine for the CRM database.
        store: Prediction store.
        config: ML configuration.
        predictor: Strategy selection. Defaults to rule-based.
        now: Clock used for context windows and refresh checks.
    """

    def __init__(
        self,
        engine: Engine,
        store: PredictionStore,
        config: MLConfig | None = None,
        predictor: Predictor | None = None,
        now: Callable[[], datetime] = datetime.now,
    ):
        self.engine = engine
        self.store = store
        self.config = config or MLConfig()
        self.predictor = predictor or Predictor.rule_based()
        self.now = now

    # =========================================================================
    # Churn
    # =========================================================================

    def predict_from_snapshot(self, snapshot: AccountSnapshot, window_days: int) -> Prediction:
        """Unpersisted churn prediction for an assembled snapshot."""
        match self.predictor:
            case Predictor(kind=PredictorKind.EXTERNAL, capability=capability) if capability.is_available():
                try:
                    prediction = capability.predict_churn(snapshot, window_days)
                except PredictorUnavailable as e:
                    logger.warning(
                        f"External predictor failed for account {snapshot.account.id}, "
                        f"using rule-based: {e}"
                    )
                    prediction = predict_churn_rule_based(snapshot, window_days, self.config)
            case _:
                prediction = predict_churn_rule_based(snapshot, window_days, self.config)

        return self._classify(prediction)

    def _classify(self, prediction: Prediction) -> Prediction:
        """Apply the configured risk breakpoints regardless of which strategy ran."""
        category = get_risk_category(prediction.probability, self.config.churn_risk_thresholds)
        if prediction.risk_category and prediction.risk_category != category:
            logger.debug(
                f"Overriding model risk category '{prediction.risk_category}' with '{category}'"
            )
        prediction.risk_category = category
        prediction.intervention_urgency = get_intervention_urgency(category)
        if not prediction.primary_drivers:
            prediction.primary_drivers = [rf.factor for rf in prediction.risk_factors[:3]]
        return prediction

    def predict_churn(
        self,
        account_id: int,
        tenant_id: str,
        window_days: int | None = None,
        force_refresh: bool = False,
    ) -> Prediction:
        """Predict churn for an account and store the result.

        A stored prediction for the same window younger than
        ``refresh_max_age_days`` is returned as-is unless ``force_refresh``.

        Raises:
            NotFound: if the account does not exist in the tenant.
        """
        window_days = window_days or self.config.prediction_window_days

        if not force_refresh:
            existing = self.get_existing_churn_prediction(account_id, tenant_id)
            if (
                existing is not None
                and existing.prediction_window_days == window_days
                and not self._is_stale(existing, self.config.refresh_max_age_days)
            ):
                logger.debug(f"Reusing churn prediction {existing.id} for account {account_id}")
                return existing

        snapshot = gather_account_context(
            self.engine, account_id, tenant_id, self.config, now=self.now
        )
        prediction = self.predict_from_snapshot(snapshot, window_days)
        self.store.store_prediction(account_id, tenant_id, prediction)
        return prediction

    def get_existing_churn_prediction(self, account_id: int, tenant_id: str) -> Prediction | None:
        return self.store.get_latest_prediction(account_id, PredictionType.CHURN, tenant_id)

    def needs_refresh(self, account_id: int, tenant_id: str, max_age_days: int | None = None) -> bool:
        """True when no active churn prediction exists or the latest is too old."""
        max_age_days = self.config.refresh_max_age_days if max_age_days is None else max_age_days
        existing = self.get_existing_churn_prediction(account_id, tenant_id)
        return existing is None or self._is_stale(existing, max_age_days)

    def _is_stale(self, prediction: Prediction, max_age_days: int) -> bool:
        return prediction.predicted_at < self.now() - timedelta(days=max_age_days)

    # =========================================================================
    # Health
    # =========================================================================

    def analyze_from_snapshot(self, snapshot: AccountSnapshot) -> HealthAnalysis:
        match self.predictor:
            case Predictor(kind=PredictorKind.EXTERNAL, capability=capability) if capability.is_available():
                try:
                    return capability.analyze_health(snapshot)
                except PredictorUnavailable as e:
                    logger.warning(
                        f"External health analysis failed for account {snapshot.account.id}, "
                        f"using rule-based: {e}"
                    )
                    return analyze_health_rule_based(snapshot)
            case _:
                return analyze_health_rule_based(snapshot)

    def analyze_health(self, account_id: int, tenant_id: str, store: bool = False) -> HealthAnalysis:
        """Analyze an account's health trajectory.

        Read-only unless ``store`` is set, in which case a HEALTH_TREND
        prediction is persisted and its id recorded on the analysis.

        Raises:
            NotFound: if the account does not exist in the tenant.
        """
        snapshot = gather_account_context(
            self.engine, account_id, tenant_id, self.config, now=self.now
        )
        analysis = self.analyze_from_snapshot(snapshot)

        if store:
            prediction = health_trend_prediction(analysis)
            analysis.prediction_id = self.store.store_prediction(account_id, tenant_id, prediction)

        return analysis


def health_trend_prediction(analysis: HealthAnalysis) -> Prediction:
    """HEALTH_TREND prediction recording a health analysis."""
    risk_factors = [
        RiskFactor(
            factor=i.dimension,
            impact="high" if i.severity == "critical" else "medium",
            current_value=i.insight,
            trend={"declining": "worsening"}.get(i.trend, i.trend),
            description=i.insight,
        )
        for i in analysis.insights
        if i.severity in ("critical", "warning")
    ]
    return Prediction(
        prediction_type=PredictionType.HEALTH_TREND,
        probability=analysis.trend_probability,
        confidence=HEALTH_TREND_CONFIDENCE,
        prediction_window_days=HEALTH_TREND_WINDOW_DAYS,
        risk_factors=risk_factors,
        explanation=analysis.summary,
        metadata=analysis.metadata,
    )
