"""
Action policy — decides whether a prediction turns into an automated CTA.

Gates run in a fixed order and the first one that fails produces a skip
result with its own code and reason. Skips are ordinary outcomes, not
exceptions; CTA creation errors propagate.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable

import pandas as pd
from sqlalchemy import Engine

from . import crm
from .config import MLConfig
from .models import Prediction, PredictionType
from .prediction.heuristic import get_intervention_urgency, get_risk_category
from .store import PredictionStore

logger = logging.getLogger("health.policy")


class SkipCode(str, Enum):
    LOW_CONFIDENCE = "LOW_CONFIDENCE"
    NO_SUGGESTION = "NO_SUGGESTION"
    COOLDOWN = "COOLDOWN"
    RISK_NOT_WARRANTED = "RISK_NOT_WARRANTED"
    DUPLICATE = "DUPLICATE"


@dataclass
class ActionResult:
    """Outcome of one CTA generation attempt."""

    created: bool
    action: dict | None = None
    skip_code: SkipCode | None = None
    skipped_reason: str | None = None
    prediction_id: int | None = None

    @classmethod
    def skipped(cls, code: SkipCode, reason: str, prediction_id: int | None = None) -> "ActionResult":
        return cls(created=False, skip_code=code, skipped_reason=reason, prediction_id=prediction_id)


@dataclass
class BatchActionResult:
    created: int = 0
    skipped: int = 0
    results: list[ActionResult] = field(default_factory=list)


@dataclass
class MLCTAStats:
    """Follow-through on ML-generated CTAs for a tenant."""

    total_generated: int = 0
    open_count: int = 0
    completed_count: int = 0
    completion_rate: float = 0.0
    by_type: dict[str, int] = field(default_factory=dict)
    average_resolution_days: float | None = None


def format_cta_description(prediction: Prediction) -> str:
    """Markdown description for an automated CTA."""
    description = f"**ML Analysis**: {prediction.explanation}\n\n"

    if prediction.risk_factors:
        description += "**Key Risk Factors:**\n"
        for factor in prediction.risk_factors[:3]:
            description += f"- {factor.factor}: {factor.description}\n"
        description += "\n"

    if prediction.recommendations:
        description += "**Recommended Actions:**\n"
        for rec in prediction.recommendations[:3]:
            description += f"- {rec.action}\n"

    description += f"\n*Confidence: {round(prediction.confidence * 100)}%*"
    return description


def idempotency_key(account_id: int, prediction_id: int, cta_type: str) -> str:
    return f"{account_id}:{prediction_id}:{cta_type}"


class ActionPolicy:
    """Turns predictions into automated CTAs.

    Args:
        engine: SQLAlchemy engine for the CRM database.
        store: Prediction store used to link CTAs back to predictions.
        config: ML configuration (confidence threshold, cooldown, batch cap).
        now: Clock used for cooldown windows and due dates.
    """

    def __init__(
        self,
        engine: Engine,
        store: PredictionStore,
        config: MLConfig | None = None,
        now: Callable[[], datetime] = datetime.now,
    ):
        self.engine = engine
        self.store = store
        self.config = config or MLConfig()
        self.now = now

    def generate_action_from_prediction(
        self,
        account_id: int,
        tenant_id: str,
        prediction: Prediction,
        user_id: int | None,
    ) -> ActionResult:
        """Create a CTA from a prediction unless a gate says otherwise.

        Gates, in order: confidence, suggestion present, cooldown, churn
        risk category, duplicate open CTA.
        """
        prediction_id = prediction.id
        threshold = self.config.min_confidence_threshold

        if prediction.confidence < threshold:
            return ActionResult.skipped(
                SkipCode.LOW_CONFIDENCE,
                f"Confidence {prediction.confidence} below threshold {threshold}",
                prediction_id,
            )

        suggestion = prediction.suggested_cta
        if suggestion is None:
            return ActionResult.skipped(
                SkipCode.NO_SUGGESTION,
                "Prediction did not include a CTA suggestion",
                prediction_id,
            )

        current = self.now()
        cooldown_days = self.config.cta_cooldown_days
        recent = crm.find_recent_automated_cta(
            self.engine, account_id, suggestion.type, current - timedelta(days=cooldown_days)
        )
        if recent is not None:
            return ActionResult.skipped(
                SkipCode.COOLDOWN,
                f"CTA cooldown active ({cooldown_days} days)",
                prediction_id,
            )

        if prediction.prediction_type is PredictionType.CHURN:
            category = prediction.risk_category or get_risk_category(
                prediction.probability, self.config.churn_risk_thresholds
            )
            urgency = prediction.intervention_urgency or get_intervention_urgency(category)
            if category == "low" or urgency == "monitor":
                return ActionResult.skipped(
                    SkipCode.RISK_NOT_WARRANTED,
                    f"Risk category '{category}' does not warrant CTA",
                    prediction_id,
                )

        if crm.find_open_cta_by_title(self.engine, account_id, suggestion.title) is not None:
            return ActionResult.skipped(
                SkipCode.DUPLICATE, "Similar CTA already exists", prediction_id
            )

        playbook = crm.find_playbook(self.engine, tenant_id, suggestion.type)
        prediction_type = prediction.prediction_type.value

        cta = crm.create_cta(
            self.engine,
            tenant_id=tenant_id,
            account_id=account_id,
            owner_id=user_id,
            cta_type=suggestion.type,
            priority=suggestion.priority,
            title=suggestion.title,
            description=format_cta_description(prediction),
            reason=suggestion.reason,
            due_date=current + timedelta(days=suggestion.due_days),
            created_at=current,
            playbook_id=playbook["id"] if playbook else None,
            is_automated=True,
            trigger_rule=f"ML_{prediction_type}",
            trigger_data={
                "prediction_type": prediction_type,
                "probability": prediction.probability,
                "confidence": prediction.confidence,
                "prediction_id": prediction_id,
            },
            prediction_id=prediction_id,
            idempotency_key=(
                idempotency_key(account_id, prediction_id, suggestion.type)
                if prediction_id is not None else None
            ),
        )

        if prediction_id is not None:
            self.store.link_follow_up(prediction_id, cta["id"])

        logger.info(
            f"Generated CTA {cta['id']} for account {account_id} from "
            f"{prediction_type} prediction (p={prediction.probability})"
        )
        return ActionResult(created=True, action=cta, prediction_id=prediction_id)

    def generate_batch_actions(
        self,
        predictions: list[Prediction],
        tenant_id: str,
        user_id: int | None,
        max_actions: int | None = None,
    ) -> BatchActionResult:
        """Generate CTAs for stored predictions, highest probability first.

        Stops once ``max_actions`` CTAs have been created.
        """
        max_actions = self.config.max_batch_ctas if max_actions is None else max_actions
        batch = BatchActionResult()

        for prediction in sorted(predictions, key=lambda p: p.probability, reverse=True):
            if batch.created >= max_actions:
                break
            result = self.generate_action_from_prediction(
                prediction.account_id, tenant_id, prediction, user_id
            )
            batch.results.append(result)
            if result.created:
                batch.created += 1
            else:
                batch.skipped += 1

        logger.info(
            f"Batch CTA generation for tenant {tenant_id}: "
            f"{batch.created} created, {batch.skipped} skipped"
        )
        return batch


def ml_cta_stats(engine: Engine, tenant_id: str) -> MLCTAStats:
    """Summarize ML-generated CTAs for a tenant."""
    df = pd.DataFrame(crm.list_ml_ctas(engine, tenant_id))
    if df.empty:
        return MLCTAStats()

    total = len(df)
    open_count = int(df["status"].isin(crm.OPEN_CTA_STATUSES).sum())
    completed = df[df["status"] == "COMPLETED"]

    average_days = None
    resolved = completed.dropna(subset=["completed_at"])
    if not resolved.empty:
        durations = pd.to_datetime(resolved["completed_at"]) - pd.to_datetime(resolved["created_at"])
        average_days = round(float(durations.dt.total_seconds().mean() / 86400), 1)

    return MLCTAStats(
        total_generated=total,
        open_count=open_count,
        completed_count=len(completed),
        completion_rate=round(len(completed) / total, 4),
        by_type={str(k): int(v) for k, v in df["type"].value_counts().items()},
        average_resolution_days=average_days,
    )
