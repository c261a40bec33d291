"""
Prediction store — append-only log of churn and health-trend predictions.

Each write is a single statement in its own transaction, so a concurrent
reader sees a prediction either before or after validation, never halfway.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy import Engine, case, func, insert, or_, select, update

from src.data.schema import ml_predictions

from .config import MLConfig
from .errors import NotFound
from .models import (
    Prediction,
    PredictionMetadata,
    PredictionStatus,
    PredictionType,
    recommendations_from_json,
    risk_factors_from_json,
    suggested_cta_from_json,
    to_json,
)

logger = logging.getLogger("health.store")


@dataclass
class TypeAccuracy:
    total: int = 0
    validated: int = 0
    accurate: int = 0

    @property
    def accuracy(self) -> float:
        return round(self.accurate / self.validated, 4) if self.validated else 0.0


@dataclass
class AccuracyReport:
    """Prediction accuracy for a tenant, overall and per prediction type."""

    total_predictions: int = 0
    validated_count: int = 0
    accurate_count: int = 0
    by_type: dict[str, TypeAccuracy] = field(default_factory=dict)

    @property
    def accuracy(self) -> float:
        if not self.validated_count:
            return 0.0
        return round(self.accurate_count / self.validated_count, 4)


def row_to_prediction(row) -> Prediction:
    """Build a Prediction from an ``account_ml_predictions`` row mapping."""
    return Prediction(
        prediction_type=row["prediction_type"],
        probability=row["probability"],
        confidence=row["confidence"],
        prediction_window_days=row["prediction_window"],
        risk_factors=risk_factors_from_json(row["risk_factors"]),
        explanation=row["explanation"] or "",
        recommendations=recommendations_from_json(row["recommendations"]),
        suggested_cta=suggested_cta_from_json(row["suggested_cta"]),
        metadata=PredictionMetadata(
            model=row["llm_model"] or "",
            tokens_used=row["llm_tokens_used"] or 0,
            latency_ms=row["llm_latency_ms"] or 0,
            estimated_cost=row["llm_cost"] or 0.0,
        ),
        risk_category=row["risk_category"],
        intervention_urgency=row["intervention_urgency"],
        primary_drivers=list(row["primary_drivers"] or []),
        id=row["id"],
        tenant_id=row["tenant_id"],
        account_id=row["account_id"],
        predicted_at=row["predicted_at"],
        valid_until=row["valid_until"],
        status=row["status"],
        validated_at=row["validated_at"],
        actual_outcome=row["actual_outcome"],
        was_accurate=row["was_accurate"],
        generated_cta_id=row["generated_cta_id"],
    )


class PredictionStore:
    """Persistence for predictions.

    Args:
        engine: SQLAlchemy engine.
        config: ML configuration (validity period).
        now: Clock used for timestamps and expiry checks.
    """

    def __init__(
        self,
        engine: Engine,
        config: MLConfig | None = None,
        now: Callable[[], datetime] = datetime.now,
    ):
        self.engine = engine
        self.config = config or MLConfig()
        self.now = now

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def store_prediction(self, account_id: int, tenant_id: str, prediction: Prediction) -> int:
        """Persist a prediction as ACTIVE and return its id.

        The prediction object is updated in place with the stored id and
        lifecycle fields.
        """
        predicted_at = self.now()
        valid_until = predicted_at + timedelta(days=self.config.prediction_validity_days)

        values = {
            "tenant_id": tenant_id,
            "account_id": account_id,
            "prediction_type": prediction.prediction_type.value,
            "probability": prediction.probability,
            "confidence": prediction.confidence,
            "prediction_window": prediction.prediction_window_days,
            "risk_factors": to_json(prediction.risk_factors),
            "explanation": prediction.explanation,
            "recommendations": to_json(prediction.recommendations),
            "suggested_cta": to_json(prediction.suggested_cta),
            "risk_category": prediction.risk_category,
            "intervention_urgency": prediction.intervention_urgency,
            "primary_drivers": list(prediction.primary_drivers),
            "llm_model": prediction.metadata.model,
            "llm_tokens_used": prediction.metadata.tokens_used,
            "llm_latency_ms": prediction.metadata.latency_ms,
            "llm_cost": prediction.metadata.estimated_cost,
            "predicted_at": predicted_at,
            "valid_until": valid_until,
            "status": PredictionStatus.ACTIVE.value,
        }
        with self.engine.begin() as conn:
            prediction_id = conn.execute(
                insert(ml_predictions).values(**values)
            ).inserted_primary_key[0]

        prediction.id = prediction_id
        prediction.tenant_id = tenant_id
        prediction.account_id = account_id
        prediction.predicted_at = predicted_at
        prediction.valid_until = valid_until
        prediction.status = PredictionStatus.ACTIVE

        logger.info(
            f"Stored {prediction.prediction_type.value} prediction {prediction_id} "
            f"for account {account_id} (p={prediction.probability})"
        )
        return prediction_id

    def link_follow_up(self, prediction_id: int, cta_id: int) -> bool:
        """Attach a generated CTA to a prediction.

        A prediction keeps its first link; relinking to the same CTA is a
        no-op.

        Returns:
            True if the prediction now points at ``cta_id``.

        Raises:
            NotFound: if the prediction does not exist.
        """
        stmt = (
            update(ml_predictions)
            .where(
                ml_predictions.c.id == prediction_id,
                or_(
                    ml_predictions.c.generated_cta_id.is_(None),
                    ml_predictions.c.generated_cta_id == cta_id,
                ),
            )
            .values(generated_cta_id=cta_id)
        )
        with self.engine.begin() as conn:
            updated = conn.execute(stmt).rowcount

        if updated:
            return True

        existing = self._get_row(prediction_id)
        if existing is None:
            raise NotFound("prediction", prediction_id)
        logger.info(
            f"Prediction {prediction_id} already linked to CTA "
            f"{existing['generated_cta_id']}; keeping it"
        )
        return False

    def mark_validated(
        self, prediction_id: int, actual_outcome: bool | None, was_accurate: bool | None
    ) -> bool:
        """Move an ACTIVE prediction to VALIDATED.

        Returns:
            False if the prediction was already validated.

        Raises:
            NotFound: if the prediction does not exist.
        """
        stmt = (
            update(ml_predictions)
            .where(
                ml_predictions.c.id == prediction_id,
                ml_predictions.c.status == PredictionStatus.ACTIVE.value,
            )
            .values(
                status=PredictionStatus.VALIDATED.value,
                actual_outcome=actual_outcome,
                was_accurate=was_accurate,
                validated_at=self.now(),
            )
        )
        with self.engine.begin() as conn:
            updated = conn.execute(stmt).rowcount

        if updated:
            return True
        if self._get_row(prediction_id) is None:
            raise NotFound("prediction", prediction_id)
        return False

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def _get_row(self, prediction_id: int):
        with self.engine.connect() as conn:
            return conn.execute(
                select(ml_predictions).where(ml_predictions.c.id == prediction_id)
            ).mappings().first()

    def get_prediction(self, prediction_id: int) -> Prediction:
        row = self._get_row(prediction_id)
        if row is None:
            raise NotFound("prediction", prediction_id)
        return row_to_prediction(row)

    def get_latest_prediction(
        self,
        account_id: int,
        prediction_type: PredictionType | str,
        tenant_id: str,
        include_expired: bool = False,
    ) -> Prediction | None:
        """Most recent ACTIVE prediction of a type for an account.

        Expired predictions are ignored unless ``include_expired`` is set.
        """
        query = select(ml_predictions).where(
            ml_predictions.c.account_id == account_id,
            ml_predictions.c.tenant_id == tenant_id,
            ml_predictions.c.prediction_type == PredictionType(prediction_type).value,
            ml_predictions.c.status == PredictionStatus.ACTIVE.value,
        )
        if not include_expired:
            query = query.where(ml_predictions.c.valid_until > self.now())
        query = query.order_by(
            ml_predictions.c.predicted_at.desc(), ml_predictions.c.id.desc()
        ).limit(1)

        with self.engine.connect() as conn:
            row = conn.execute(query).mappings().first()
        return row_to_prediction(row) if row else None

    def list_expired_unvalidated(self, tenant_id: str) -> list[Prediction]:
        """ACTIVE predictions whose validity window has passed, oldest first."""
        query = (
            select(ml_predictions)
            .where(
                ml_predictions.c.tenant_id == tenant_id,
                ml_predictions.c.status == PredictionStatus.ACTIVE.value,
                ml_predictions.c.valid_until < self.now(),
            )
            .order_by(ml_predictions.c.valid_until, ml_predictions.c.id)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(query).mappings().all()
        return [row_to_prediction(r) for r in rows]

    def list_account_predictions(
        self,
        account_id: int,
        tenant_id: str,
        prediction_type: PredictionType | str | None = None,
        include_expired: bool = False,
        limit: int = 50,
    ) -> list[Prediction]:
        """Prediction history for an account, newest first."""
        query = select(ml_predictions).where(
            ml_predictions.c.account_id == account_id,
            ml_predictions.c.tenant_id == tenant_id,
        )
        if prediction_type is not None:
            query = query.where(
                ml_predictions.c.prediction_type == PredictionType(prediction_type).value
            )
        if not include_expired:
            query = query.where(ml_predictions.c.valid_until > self.now())
        query = query.order_by(
            ml_predictions.c.predicted_at.desc(), ml_predictions.c.id.desc()
        ).limit(limit)

        with self.engine.connect() as conn:
            rows = conn.execute(query).mappings().all()
        return [row_to_prediction(r) for r in rows]

    def has_recent_prediction(
        self,
        account_id: int,
        tenant_id: str,
        prediction_type: PredictionType | str,
        max_age_days: int,
    ) -> bool:
        """Whether an ACTIVE prediction younger than ``max_age_days`` exists."""
        cutoff = self.now() - timedelta(days=max_age_days)
        query = select(func.count()).select_from(ml_predictions).where(
            ml_predictions.c.account_id == account_id,
            ml_predictions.c.tenant_id == tenant_id,
            ml_predictions.c.prediction_type == PredictionType(prediction_type).value,
            ml_predictions.c.status == PredictionStatus.ACTIVE.value,
            ml_predictions.c.predicted_at >= cutoff,
        )
        with self.engine.connect() as conn:
            return (conn.execute(query).scalar() or 0) > 0

    def prediction_accuracy(
        self, tenant_id: str, prediction_type: PredictionType | str | None = None
    ) -> AccuracyReport:
        """Aggregate validation results for a tenant."""
        validated = ml_predictions.c.status == PredictionStatus.VALIDATED.value
        query = (
            select(
                ml_predictions.c.prediction_type,
                func.count().label("total"),
                func.sum(case((validated, 1), else_=0)).label("validated"),
                func.sum(
                    case((validated & ml_predictions.c.was_accurate.is_(True), 1), else_=0)
                ).label("accurate"),
            )
            .where(ml_predictions.c.tenant_id == tenant_id)
            .group_by(ml_predictions.c.prediction_type)
        )
        if prediction_type is not None:
            query = query.where(
                ml_predictions.c.prediction_type == PredictionType(prediction_type).value
            )

        with self.engine.connect() as conn:
            rows = conn.execute(query).mappings().all()

        report = AccuracyReport()
        for r in rows:
            stats = TypeAccuracy(
                total=int(r["total"] or 0),
                validated=int(r["validated"] or 0),
                accurate=int(r["accurate"] or 0),
            )
            report.by_type[r["prediction_type"]] = stats
            report.total_predictions += stats.total
            report.validated_count += stats.validated
            report.accurate_count += stats.accurate
        return report
