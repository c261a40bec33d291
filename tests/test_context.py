"""
Tests for context assembly and the CRM readers behind it.

Run with: pytest tests/test_context.py -v
"""

from datetime import timedelta

import pytest

from conftest import NOW, TENANT
from src.health import crm
from src.health.config import MLConfig
from src.health.context import NO_ACTIVITY_DAYS, compute_crm_metrics, gather_account_context
from src.health.errors import NotFound
from src.health.models import ActivityRecord


class TestComputeCRMMetrics:
    def test_counts_by_type(self):
        activities = [
            ActivityRecord(type="MEETING", created_at=NOW - timedelta(days=1)),
            ActivityRecord(type="EMAIL", created_at=NOW - timedelta(days=2)),
            ActivityRecord(type="EMAIL", created_at=NOW - timedelta(days=3)),
            ActivityRecord(type="CALL", created_at=NOW - timedelta(days=4)),
        ]
        metrics = compute_crm_metrics(activities, NOW - timedelta(days=1), NOW)

        assert metrics.activities_last_30_days == 4
        assert metrics.meetings_last_30_days == 1
        assert metrics.emails_last_30_days == 2
        assert metrics.days_since_last_activity == 1

    def test_no_activity_ever(self):
        metrics = compute_crm_metrics([], None, NOW)
        assert metrics.days_since_last_activity == NO_ACTIVITY_DAYS == 999
        assert metrics.activities_last_30_days == 0


class TestGatherAccountContext:
    """Snapshot assembly against a seeded SQLite database."""

    def test_full_snapshot(self, engine, seed, clock):
        account_id = seed.account(name="Globex", health_score=55)
        seed.health_history(account_id, [55, 60, 70], usage_score=50, score_trend="DECLINING")
        seed.activity(account_id, type="MEETING", days_ago=2, sentiment="NEUTRAL")
        seed.activity(account_id, type="EMAIL", days_ago=5)
        seed.activity(account_id, type="EMAIL", days_ago=45)
        seed.cta(account_id, type="RISK", priority="HIGH", status="OPEN")
        seed.cta(account_id, type="RISK", priority="LOW", status="COMPLETED")
        seed.opportunity(account_id, probability=80.0)
        seed.opportunity(account_id, stage="Closed", stage_type="WON")

        snapshot = gather_account_context(engine, account_id, TENANT, now=clock)

        assert snapshot.account.name == "Globex"
        assert snapshot.account.health_score == 55
        assert [s.overall_score for s in snapshot.health_history] == [55, 60, 70]
        assert snapshot.health_history[0].usage_score == 50
        assert len(snapshot.recent_activities) == 2
        assert snapshot.crm_metrics.meetings_last_30_days == 1
        assert snapshot.crm_metrics.emails_last_30_days == 1
        assert snapshot.crm_metrics.days_since_last_activity == 2
        assert len(snapshot.open_ctas) == 1
        assert snapshot.open_ctas[0].priority == "HIGH"
        assert len(snapshot.opportunities) == 1
        assert snapshot.opportunities[0].probability == pytest.approx(0.8)
        assert snapshot.assembled_at == NOW

    def test_empty_secondary_reads(self, engine, seed, clock):
        account_id = seed.account()
        snapshot = gather_account_context(engine, account_id, TENANT, now=clock)

        assert snapshot.health_history == ()
        assert snapshot.recent_activities == ()
        assert snapshot.open_ctas == ()
        assert snapshot.opportunities == ()
        assert snapshot.crm_metrics.days_since_last_activity == NO_ACTIVITY_DAYS

    def test_history_limited_and_bounded(self, engine, seed, clock):
        account_id = seed.account()
        seed.health_history(account_id, list(range(80, 40, -2)), step_days=3)

        config = MLConfig(history_sample_limit=5)
        snapshot = gather_account_context(engine, account_id, TENANT, config, now=clock)
        assert len(snapshot.health_history) == 5
        assert snapshot.health_history[0].calculated_at == NOW

        config = MLConfig(history_lookback_days=10)
        snapshot = gather_account_context(engine, account_id, TENANT, config, now=clock)
        assert len(snapshot.health_history) == 4

    def test_last_activity_outside_window(self, engine, seed, clock):
        account_id = seed.account()
        seed.activity(account_id, days_ago=60)

        snapshot = gather_account_context(engine, account_id, TENANT, now=clock)
        assert snapshot.recent_activities == ()
        assert snapshot.crm_metrics.days_since_last_activity == 60

    def test_missing_account(self, engine, clock):
        with pytest.raises(NotFound, match="Account 999 not found in tenant"):
            gather_account_context(engine, 999, TENANT, now=clock)

    def test_wrong_tenant(self, engine, seed, clock):
        account_id = seed.account(tenant_id="other-tenant")
        with pytest.raises(NotFound):
            gather_account_context(engine, account_id, TENANT, now=clock)

    def test_snapshot_is_immutable(self, engine, seed, clock):
        account_id = seed.account()
        snapshot = gather_account_context(engine, account_id, TENANT, now=clock)
        with pytest.raises(AttributeError):
            snapshot.crm_metrics = None


class TestCRMReaders:
    def test_normalize_probability(self):
        assert crm.normalize_probability(None) is None
        assert crm.normalize_probability(0.4) == pytest.approx(0.4)
        assert crm.normalize_probability(75) == pytest.approx(0.75)
        assert crm.normalize_probability(150) == 1.0

    def test_find_playbook_prefers_most_used(self, engine, seed):
        seed.playbook(name="Old risk play", times_used=1)
        best = seed.playbook(name="Risk escalation", times_used=10)
        seed.playbook(name="Risk retired", times_used=50, status="ARCHIVED")

        assert crm.find_playbook(engine, TENANT, "RISK")["id"] == best

    def test_find_playbook_by_name(self, engine, seed):
        playbook_id = seed.playbook(name="Lifecycle onboarding", cta_type=None)
        assert crm.find_playbook(engine, TENANT, "LIFECYCLE")["id"] == playbook_id

    def test_find_playbook_absent(self, engine):
        assert crm.find_playbook(engine, TENANT, "RISK") is None

    def test_create_cta_with_duplicate_key_returns_existing(self, engine, seed):
        account_id = seed.account()
        kwargs = dict(
            tenant_id=TENANT,
            account_id=account_id,
            owner_id=7,
            cta_type="RISK",
            priority="HIGH",
            title="Call the customer",
            reason="Risk",
            due_date=NOW + timedelta(days=5),
            created_at=NOW,
            is_automated=True,
            idempotency_key="1:2:RISK",
        )
        first = crm.create_cta(engine, **kwargs)
        second = crm.create_cta(engine, **kwargs)

        assert first["id"] == second["id"]
        assert len(crm.list_ml_ctas(engine, TENANT)) == 0  # no ML_ trigger rule
