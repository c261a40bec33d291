"""
Shared test fixtures for the account health test suite.

Provides a file-backed SQLite engine with the CRM tables, seeding helpers,
a controllable clock, snapshot builders and mock LLM fixtures.
"""

import json
from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy import insert

from src.data.database import get_engine, init_database
from src.data.schema import (
    accounts,
    crm_activities,
    ctas,
    health_score_history,
    opportunities,
    playbooks,
)
from src.health.config import MLConfig
from src.health.context import compute_crm_metrics
from src.health.models import (
    AccountProfile,
    AccountSnapshot,
    ActivityRecord,
    HealthSample,
    OpenCTARecord,
    OpportunityRecord,
)
from src.health.store import PredictionStore

NOW = datetime(2025, 6, 1, 12, 0, 0)
TENANT = "tenant-acme"


# =============================================================================
# Clock
# =============================================================================


class FakeClock:
    """Callable clock that tests can move forward."""

    def __init__(self, start: datetime = NOW):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current = self.current + timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite engine with all tables created.

    A file (not :memory:) so the context assembler's worker threads share it.
    """
    db_engine = get_engine(f"sqlite:///{tmp_path / 'health.db'}")
    init_database(db_engine)
    yield db_engine
    db_engine.dispose()


class Seeder:
    """Inserts CRM rows for tests."""

    def __init__(self, engine, now: datetime = NOW):
        self.engine = engine
        self.now = now

    def _insert(self, table, **values) -> int:
        with self.engine.begin() as conn:
            return conn.execute(insert(table).values(**values)).inserted_primary_key[0]

    def account(self, name="Acme Corp", tenant_id=TENANT, **values) -> int:
        row = {
            "tenant_id": tenant_id,
            "name": name,
            "type": "CUSTOMER",
            "health_score": 70,
            "engagement_score": 60,
            "churn_risk": 0.2,
            "archived": False,
            "created_at": self.now - timedelta(days=400),
        }
        row.update(values)
        return self._insert(accounts, **row)

    def health_history(self, account_id: int, scores: list[int], step_days: int = 7, **values) -> None:
        """Insert samples; ``scores`` is newest first, spaced ``step_days`` apart."""
        for i, score in enumerate(scores):
            self._insert(
                health_score_history,
                account_id=account_id,
                overall_score=score,
                calculated_at=self.now - timedelta(days=i * step_days),
                **values,
            )

    def activity(self, account_id: int, type="EMAIL", days_ago=1, sentiment=None) -> int:
        return self._insert(
            crm_activities,
            account_id=account_id,
            type=type,
            sentiment=sentiment,
            created_at=self.now - timedelta(days=days_ago),
        )

    def cta(self, account_id: int, tenant_id=TENANT, **values) -> int:
        row = {
            "tenant_id": tenant_id,
            "account_id": account_id,
            "type": "RISK",
            "priority": "HIGH",
            "status": "OPEN",
            "title": "Existing follow-up",
            "is_automated": False,
            "created_at": self.now - timedelta(days=20),
        }
        row.update(values)
        return self._insert(ctas, **row)

    def opportunity(self, account_id: int, stage="Proposal", stage_type="OPEN", amount=10000.0, probability=70.0) -> int:
        return self._insert(
            opportunities,
            account_id=account_id,
            stage=stage,
            stage_type=stage_type,
            amount=amount,
            probability=probability,
        )

    def playbook(self, name="Risk Recovery", cta_type="RISK", tenant_id=TENANT, times_used=0, status="ACTIVE") -> int:
        return self._insert(
            playbooks,
            tenant_id=tenant_id,
            name=name,
            cta_type=cta_type,
            status=status,
            times_used=times_used,
        )


@pytest.fixture
def seed(engine) -> Seeder:
    return Seeder(engine)


@pytest.fixture
def ml_config() -> MLConfig:
    return MLConfig()


@pytest.fixture
def store(engine, ml_config, clock) -> PredictionStore:
    return PredictionStore(engine, ml_config, now=clock)


# =============================================================================
# Snapshot Fixtures
# =============================================================================


def make_snapshot(
    health_score: int | None = 60,
    history: list[int] | None = None,
    trend_label: str | None = None,
    activities: list[tuple[str, int, str | None]] | None = None,
    open_ctas: list[tuple[str, str]] | None = None,
    opportunity_probabilities: list[float] | None = None,
    name: str = "Acme Corp",
    now: datetime = NOW,
    **history_values,
) -> AccountSnapshot:
    """Build an AccountSnapshot without touching the database.

    Args:
        health_score: Account health score.
        history: Overall scores, newest first, one week apart.
        trend_label: score_trend on the newest sample.
        activities: (type, days_ago, sentiment) tuples.
        open_ctas: (type, priority) tuples.
        opportunity_probabilities: Win probabilities in [0, 1].
    """
    samples = tuple(
        HealthSample(
            overall_score=score,
            calculated_at=now - timedelta(days=7 * i),
            score_trend=trend_label if i == 0 else None,
            **history_values,
        )
        for i, score in enumerate(history or [])
    )
    activity_records = tuple(
        ActivityRecord(type=t, created_at=now - timedelta(days=d), sentiment=s)
        for t, d, s in (activities or [])
    )
    recent = [a for a in activity_records if (now - a.created_at).days <= 30]
    last_at = max((a.created_at for a in activity_records), default=None)

    return AccountSnapshot(
        account=AccountProfile(
            id=1,
            tenant_id=TENANT,
            name=name,
            type="CUSTOMER",
            health_score=health_score,
            engagement_score=None,
            churn_risk=None,
            archived=False,
            created_at=now - timedelta(days=400),
        ),
        health_history=samples,
        recent_activities=tuple(recent),
        open_ctas=tuple(
            OpenCTARecord(type=t, priority=p, status="OPEN") for t, p in (open_ctas or [])
        ),
        opportunities=tuple(
            OpportunityRecord(stage="Proposal", value=5000.0, probability=p)
            for p in (opportunity_probabilities or [])
        ),
        crm_metrics=compute_crm_metrics(recent, last_at, now),
        assembled_at=now,
    )


@pytest.fixture
def snapshot_factory():
    return make_snapshot


# =============================================================================
# LLM Fixtures
# =============================================================================


def llm_response(body: dict | str, total_tokens: int = 1200, model: str = "claude-test") -> MagicMock:
    """Mock chat response carrying ``body`` as fenced JSON."""
    response = MagicMock()
    text = body if isinstance(body, str) else f"```json\n{json.dumps(body)}\n```"
    response.content = text
    response.usage_metadata = {"input_tokens": 900, "output_tokens": 300, "total_tokens": total_tokens}
    response.response_metadata = {"model": model}
    return response


CHURN_RESPONSE = {
    "churn_probability": 0.72,
    "confidence": 0.81,
    "risk_category": "high",
    "primary_churn_drivers": ["Declining usage", "No executive sponsor"],
    "risk_factors": [
        {
            "factor": "Declining usage",
            "impact": "high",
            "current_value": "35",
            "threshold": "50",
            "trend": "worsening",
            "description": "Usage fell sharply over the last month",
        }
    ],
    "explanation": "Usage and engagement have both dropped.",
    "recommendations": [
        {
            "priority": "urgent",
            "action": "Book an executive check-in",
            "rationale": "Rebuild sponsorship",
            "expected_impact": "Restore engagement",
            "effort": "medium",
            "timeframe": "This week",
        }
    ],
    "suggested_cta": {
        "type": "RISK",
        "priority": "HIGH",
        "title": "Executive check-in for Acme Corp",
        "reason": "Usage decline",
        "due_days": 5,
    },
}


@pytest.fixture
def mock_llm():
    """Mock LLM that mimics ChatAnthropic returning a churn prediction."""
    llm = MagicMock()
    llm.invoke.return_value = llm_response(CHURN_RESPONSE)
    llm.bind_tools.return_value = llm
    return llm


# =============================================================================
# Pytest Configuration
# =============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "db: marks tests as requiring database")
    config.addinivalue_line("markers", "llm: marks tests as requiring LLM API key")
