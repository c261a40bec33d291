"""
Data access for the CRM records the pipeline consumes.

Readers for accounts, health history, activities, open CTAs, opportunities
and playbooks, plus the CTA writer. The pipeline never changes any of these
records other than inserting automated CTAs.
"""

import logging
from datetime import datetime

from sqlalchemy import Engine, and_, func, insert, or_, select
from sqlalchemy.exc import IntegrityError

from src.data.schema import (
    accounts,
    crm_activities,
    ctas,
    health_score_history,
    opportunities,
    playbooks,
)

from .errors import NotFound
from .models import (
    AccountProfile,
    ActivityRecord,
    HealthSample,
    OpenCTARecord,
    OpportunityRecord,
)

logger = logging.getLogger("health.crm")

OPEN_CTA_STATUSES = ("OPEN", "IN_PROGRESS")
CLOSED_OPPORTUNITY_STAGES = ("WON", "LOST")


# =============================================================================
# Readers
# =============================================================================


def fetch_account(engine: Engine, account_id: int, tenant_id: str) -> AccountProfile:
    """Load an account scoped to a tenant.

    Raises:
        NotFound: if the account does not exist in the tenant.
    """
    query = select(accounts).where(
        accounts.c.id == account_id,
        accounts.c.tenant_id == tenant_id,
    )
    with engine.connect() as conn:
        row = conn.execute(query).mappings().first()

    if row is None:
        raise NotFound("account", account_id, tenant_id)

    return AccountProfile(
        id=row["id"],
        tenant_id=row["tenant_id"],
        name=row["name"],
        type=row["type"],
        health_score=row["health_score"],
        engagement_score=row["engagement_score"],
        churn_risk=row["churn_risk"],
        archived=bool(row["archived"]),
        created_at=row["created_at"],
    )


def fetch_health_history(
    engine: Engine,
    account_id: int,
    since: datetime,
    limit: int = 30,
) -> list[HealthSample]:
    """Health samples since ``since``, newest first."""
    query = (
        select(health_score_history)
        .where(
            health_score_history.c.account_id == account_id,
            health_score_history.c.calculated_at >= since,
        )
        .order_by(health_score_history.c.calculated_at.desc())
        .limit(limit)
    )
    with engine.connect() as conn:
        rows = conn.execute(query).mappings().all()

    return [
        HealthSample(
            overall_score=r["overall_score"],
            calculated_at=r["calculated_at"],
            usage_score=r["usage_score"],
            support_score=r["support_score"],
            engagement_score=r["engagement_score"],
            sentiment_score=r["sentiment_score"],
            score_trend=r["score_trend"],
            churn_risk=r["churn_risk"],
        )
        for r in rows
    ]


def fetch_recent_activities(
    engine: Engine, account_id: int, since: datetime
) -> list[ActivityRecord]:
    """Activities since ``since``, newest first."""
    query = (
        select(crm_activities.c.type, crm_activities.c.created_at, crm_activities.c.sentiment)
        .where(
            crm_activities.c.account_id == account_id,
            crm_activities.c.created_at >= since,
        )
        .order_by(crm_activities.c.created_at.desc())
    )
    with engine.connect() as conn:
        rows = conn.execute(query).mappings().all()

    return [
        ActivityRecord(type=r["type"], created_at=r["created_at"], sentiment=r["sentiment"])
        for r in rows
    ]


def fetch_last_activity_at(engine: Engine, account_id: int) -> datetime | None:
    """Timestamp of the most recent activity ever logged for the account."""
    query = select(func.max(crm_activities.c.created_at)).where(
        crm_activities.c.account_id == account_id
    )
    with engine.connect() as conn:
        return conn.execute(query).scalar()


def fetch_open_ctas(engine: Engine, account_id: int) -> list[OpenCTARecord]:
    query = select(ctas.c.type, ctas.c.priority, ctas.c.status, ctas.c.due_date).where(
        ctas.c.account_id == account_id,
        ctas.c.status.in_(OPEN_CTA_STATUSES),
    )
    with engine.connect() as conn:
        rows = conn.execute(query).mappings().all()

    return [
        OpenCTARecord(
            type=r["type"], priority=r["priority"], status=r["status"], due_date=r["due_date"]
        )
        for r in rows
    ]


def fetch_open_opportunities(engine: Engine, account_id: int) -> list[OpportunityRecord]:
    query = select(
        opportunities.c.stage, opportunities.c.amount, opportunities.c.probability
    ).where(
        opportunities.c.account_id == account_id,
        opportunities.c.stage_type.not_in(CLOSED_OPPORTUNITY_STAGES),
    )
    with engine.connect() as conn:
        rows = conn.execute(query).mappings().all()

    return [
        OpportunityRecord(
            stage=r["stage"] or "Unknown",
            value=r["amount"],
            probability=normalize_probability(r["probability"]),
        )
        for r in rows
    ]


def normalize_probability(value: float | None) -> float | None:
    """CRM opportunities store win probability as a percentage."""
    if value is None:
        return None
    if value > 1.0:
        value = value / 100.0
    return max(0.0, min(1.0, float(value)))


# =============================================================================
# CTA reads and writes
# =============================================================================


def find_recent_automated_cta(
    engine: Engine, account_id: int, cta_type: str, since: datetime
) -> dict | None:
    """Most recent automated CTA of a type created at or after ``since``."""
    query = (
        select(ctas)
        .where(
            ctas.c.account_id == account_id,
            ctas.c.type == cta_type,
            ctas.c.is_automated.is_(True),
            ctas.c.created_at >= since,
        )
        .order_by(ctas.c.created_at.desc())
        .limit(1)
    )
    with engine.connect() as conn:
        row = conn.execute(query).mappings().first()
    return dict(row) if row else None


def find_open_cta_by_title(engine: Engine, account_id: int, title: str) -> dict | None:
    query = (
        select(ctas)
        .where(
            ctas.c.account_id == account_id,
            ctas.c.title == title,
            ctas.c.status.in_(OPEN_CTA_STATUSES),
        )
        .limit(1)
    )
    with engine.connect() as conn:
        row = conn.execute(query).mappings().first()
    return dict(row) if row else None


def find_playbook(engine: Engine, tenant_id: str, cta_type: str) -> dict | None:
    """Best-effort playbook lookup for a CTA type, most used first."""
    query = (
        select(playbooks)
        .where(
            playbooks.c.tenant_id == tenant_id,
            playbooks.c.status == "ACTIVE",
            or_(
                playbooks.c.cta_type == cta_type,
                func.lower(playbooks.c.name).contains(cta_type.lower()),
            ),
        )
        .order_by(playbooks.c.times_used.desc())
        .limit(1)
    )
    with engine.connect() as conn:
        row = conn.execute(query).mappings().first()
    return dict(row) if row else None


def create_cta(
    engine: Engine,
    *,
    tenant_id: str,
    account_id: int,
    owner_id: int | None,
    cta_type: str,
    priority: str,
    title: str,
    reason: str,
    due_date: datetime,
    created_at: datetime,
    description: str = "",
    playbook_id: int | None = None,
    is_automated: bool = False,
    trigger_rule: str | None = None,
    trigger_data: dict | None = None,
    prediction_id: int | None = None,
    idempotency_key: str | None = None,
) -> dict:
    """Insert a CTA and return the stored row.

    When ``idempotency_key`` collides with an existing CTA the existing row
    is returned instead of a duplicate.
    """
    values = {
        "tenant_id": tenant_id,
        "account_id": account_id,
        "owner_id": owner_id,
        "type": cta_type,
        "priority": priority,
        "status": "OPEN",
        "title": title,
        "description": description,
        "reason": reason,
        "due_date": due_date,
        "playbook_id": playbook_id,
        "is_automated": is_automated,
        "trigger_rule": trigger_rule,
        "trigger_data": trigger_data,
        "prediction_id": prediction_id,
        "idempotency_key": idempotency_key,
        "created_at": created_at,
    }

    try:
        with engine.begin() as conn:
            cta_id = conn.execute(insert(ctas).values(**values)).inserted_primary_key[0]
    except IntegrityError:
        if idempotency_key is None:
            raise
        existing = get_cta_by_idempotency_key(engine, idempotency_key)
        if existing is None:
            raise
        logger.info(f"CTA with key {idempotency_key} already exists (id={existing['id']})")
        return existing

    return {"id": cta_id, **values}


def get_cta_by_idempotency_key(engine: Engine, key: str) -> dict | None:
    with engine.connect() as conn:
        row = conn.execute(
            select(ctas).where(ctas.c.idempotency_key == key)
        ).mappings().first()
    return dict(row) if row else None


def list_ml_ctas(engine: Engine, tenant_id: str) -> list[dict]:
    """All automated CTAs created from ML predictions in a tenant."""
    query = select(ctas).where(
        and_(
            ctas.c.tenant_id == tenant_id,
            ctas.c.is_automated.is_(True),
            ctas.c.trigger_rule.like("ML\\_%", escape="\\"),
        )
    )
    with engine.connect() as conn:
        return [dict(r) for r in conn.execute(query).mappings().all()]
