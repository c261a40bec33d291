"""
Risk ranking — read-only list of accounts by current churn probability.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

import pandas as pd
from sqlalchemy import Engine, and_, func, select

from src.data.schema import accounts, ml_predictions

from .models import PredictionStatus, PredictionType

logger = logging.getLogger("health.ranking")


@dataclass
class RankedAccount:
    id: int
    name: str
    type: str
    health_score: int | None


@dataclass
class RankedPrediction:
    id: int
    probability: float
    confidence: float
    explanation: str
    predicted_at: datetime


@dataclass
class HighRiskAccount:
    account: RankedAccount
    prediction: RankedPrediction


def _latest_active_churn(tenant_id: str, now: datetime):
    """Subquery: id of the newest ACTIVE unexpired churn prediction per account.

    Predictions stored at the same instant resolve to the highest id.
    """
    p = ml_predictions.c
    active = and_(
        p.tenant_id == tenant_id,
        p.prediction_type == PredictionType.CHURN.value,
        p.status == PredictionStatus.ACTIVE.value,
        p.valid_until > now,
    )
    newest = (
        select(p.account_id, func.max(p.predicted_at).label("latest_at"))
        .where(active)
        .group_by(p.account_id)
        .subquery("newest")
    )
    return (
        select(p.account_id, func.max(p.id).label("prediction_id"))
        .select_from(
            ml_predictions.join(newest, and_(
                p.account_id == newest.c.account_id,
                p.predicted_at == newest.c.latest_at,
            ))
        )
        .where(active)
        .group_by(p.account_id)
        .subquery("latest")
    )


def high_risk_accounts(
    engine: Engine,
    tenant_id: str,
    min_probability: float = 0.6,
    limit: int = 50,
    now: Callable[[], datetime] = datetime.now,
) -> list[HighRiskAccount]:
    """Accounts whose current churn prediction is at or above ``min_probability``.

    Only each account's latest active prediction counts. Archived accounts
    are filtered in the query, before the limit applies.

    Args:
        engine: SQLAlchemy engine.
        tenant_id: Tenant to rank.
        min_probability: Inclusive probability floor.
        limit: Maximum number of accounts returned.
        now: Clock used for the expiry check.

    Returns:
        Accounts ordered by churn probability, highest first.
    """
    latest = _latest_active_churn(tenant_id, now())
    p = ml_predictions.c
    query = (
        select(
            accounts.c.id.label("account_id"),
            accounts.c.name,
            accounts.c.type,
            accounts.c.health_score,
            p.id.label("prediction_id"),
            p.probability,
            p.confidence,
            p.explanation,
            p.predicted_at,
        )
        .select_from(
            ml_predictions
            .join(latest, p.id == latest.c.prediction_id)
            .join(accounts, accounts.c.id == p.account_id)
        )
        .where(
            p.probability >= min_probability,
            accounts.c.tenant_id == tenant_id,
            accounts.c.archived.is_(False),
        )
        .order_by(p.probability.desc(), p.predicted_at.desc(), p.id.desc())
        .limit(limit)
    )

    with engine.connect() as conn:
        df = pd.read_sql(query, conn)

    logger.debug(f"{len(df)} high-risk accounts for tenant {tenant_id} (>= {min_probability})")

    return [
        HighRiskAccount(
            account=RankedAccount(
                id=int(r.account_id),
                name=r.name,
                type=r.type,
                health_score=None if pd.isna(r.health_score) else int(r.health_score),
            ),
            prediction=RankedPrediction(
                id=int(r.prediction_id),
                probability=float(r.probability),
                confidence=float(r.confidence),
                explanation=r.explanation or "",
                predicted_at=pd.Timestamp(r.predicted_at).to_pydatetime(),
            ),
        )
        for r in df.itertuples(index=False)
    ]
