"""
Context assembly — gathers every signal for one account into an
immutable AccountSnapshot.

The account read is mandatory; history, activities, CTAs and opportunities
are independent reads issued concurrently and may all come back empty.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy import Engine

from . import crm
from .config import MLConfig
from .models import AccountSnapshot, ActivityRecord, CRMMetrics

logger = logging.getLogger("health.context")

NO_ACTIVITY_DAYS = 999


def compute_crm_metrics(
    recent_activities: list[ActivityRecord],
    last_activity_at: datetime | None,
    now: datetime,
) -> CRMMetrics:
    """Derive engagement counts from the trailing activity window."""
    if last_activity_at is None:
        days_since = NO_ACTIVITY_DAYS
    else:
        days_since = max(0, (now - last_activity_at).days)

    return CRMMetrics(
        days_since_last_activity=days_since,
        activities_last_30_days=len(recent_activities),
        meetings_last_30_days=sum(1 for a in recent_activities if a.type == "MEETING"),
        emails_last_30_days=sum(1 for a in recent_activities if a.type == "EMAIL"),
    )


def gather_account_context(
    engine: Engine,
    account_id: int,
    tenant_id: str,
    config: MLConfig | None = None,
    now: Callable[[], datetime] = datetime.now,
) -> AccountSnapshot:
    """Assemble the snapshot for one account.

    Args:
        engine: SQLAlchemy engine for the CRM database.
        account_id: Account to snapshot.
        tenant_id: Tenant the account must belong to.
        config: ML configuration (lookback windows, sample limit).
        now: Clock used for lookback windows and derived metrics.

    Returns:
        AccountSnapshot.

    Raises:
        NotFound: if the account does not exist in the tenant.
    """
    config = config or MLConfig()
    current = now()
    history_since = current - timedelta(days=config.history_lookback_days)
    activity_since = current - timedelta(days=config.activity_lookback_days)

    with ThreadPoolExecutor(max_workers=6, thread_name_prefix="health-context") as pool:
        account_future = pool.submit(crm.fetch_account, engine, account_id, tenant_id)
        history_future = pool.submit(
            crm.fetch_health_history,
            engine, account_id, history_since, config.history_sample_limit,
        )
        activities_future = pool.submit(
            crm.fetch_recent_activities, engine, account_id, activity_since
        )
        last_activity_future = pool.submit(crm.fetch_last_activity_at, engine, account_id)
        ctas_future = pool.submit(crm.fetch_open_ctas, engine, account_id)
        opportunities_future = pool.submit(crm.fetch_open_opportunities, engine, account_id)

        # Absence of the account is fatal; await it before anything else.
        try:
            account = account_future.result()
        except Exception:
            for f in (
                history_future, activities_future, last_activity_future,
                ctas_future, opportunities_future,
            ):
                f.cancel()
            raise

        health_history = history_future.result()
        recent_activities = activities_future.result()
        last_activity_at = last_activity_future.result()
        open_ctas = ctas_future.result()
        open_opportunities = opportunities_future.result()

    logger.debug(
        f"Context for account {account_id}: {len(health_history)} health samples, "
        f"{len(recent_activities)} activities, {len(open_ctas)} open CTAs, "
        f"{len(open_opportunities)} opportunities"
    )

    return AccountSnapshot(
        account=account,
        health_history=tuple(health_history),
        recent_activities=tuple(recent_activities),
        open_ctas=tuple(open_ctas),
        opportunities=tuple(open_opportunities),
        crm_metrics=compute_crm_metrics(recent_activities, last_activity_at, current),
        assembled_at=current,
    )
