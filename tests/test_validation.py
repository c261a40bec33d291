"""
Tests for validation of expired predictions.

Run with: pytest tests/test_validation.py -v
"""

from unittest.mock import patch

import pytest
from sqlalchemy import delete

from conftest import NOW, TENANT
from src.data.schema import accounts, ml_predictions
from src.health.errors import NotFound, ValidationPartialFailure
from src.health.models import (
    AccountProfile,
    Prediction,
    PredictionStatus,
    PredictionType,
)
from src.health.validation import evaluate_prediction, validate_expired


def _prediction(probability: float, prediction_type=PredictionType.CHURN) -> Prediction:
    return Prediction(
        prediction_type=prediction_type,
        probability=probability,
        confidence=0.8,
        prediction_window_days=90,
        explanation="test",
    )


def _account(archived=False, churn_risk=None, health_score=50) -> AccountProfile:
    return AccountProfile(
        id=1, tenant_id=TENANT, name="Acme", type="CUSTOMER", health_score=health_score,
        engagement_score=None, churn_risk=churn_risk, archived=archived, created_at=NOW,
    )


class TestEvaluatePrediction:
    @pytest.mark.parametrize(
        "probability,archived,expected",
        [
            (0.75, True, (True, True)),
            (0.5, True, (True, True)),
            (0.49, True, (True, False)),
            (0.3, False, (False, True)),
            (0.9, False, (False, False)),
        ],
    )
    def test_churn(self, probability, archived, expected):
        assert evaluate_prediction(_prediction(probability), _account(archived=archived)) == expected

    @pytest.mark.parametrize(
        "probability,churn_risk,health_score,expected",
        [
            (0.7, 0.8, 50, (True, True)),
            (0.6, 0.8, 50, (True, False)),
            (0.3, 0.2, 50, (False, True)),
            (0.7, None, 50, (False, False)),
            (0.7, 0.8, None, (None, None)),
            (0.3, 0.2, None, (None, None)),
        ],
    )
    def test_health_trend(self, probability, churn_risk, health_score, expected):
        prediction = _prediction(probability, PredictionType.HEALTH_TREND)
        account = _account(churn_risk=churn_risk, health_score=health_score)
        assert evaluate_prediction(prediction, account) == expected


class TestValidateExpired:
    def test_both_directions_of_correctness(self, engine, store, seed, clock):
        churned = seed.account(name="Churned", health_score=35, churn_risk=0.8, archived=True)
        retained = seed.account(name="Retained", health_score=80, churn_risk=0.1, archived=False)
        churned_id = store.store_prediction(churned, TENANT, _prediction(0.75))
        retained_id = store.store_prediction(retained, TENANT, _prediction(0.3))
        clock.advance(days=31)

        report = validate_expired(engine, store, TENANT)

        assert report.validated_count == 2
        assert report.failures == []
        for prediction_id, outcome in ((churned_id, True), (retained_id, False)):
            stored = store.get_prediction(prediction_id)
            assert stored.status == PredictionStatus.VALIDATED
            assert stored.was_accurate is True
            assert stored.actual_outcome is outcome
            assert stored.validated_at == clock()

    @pytest.mark.parametrize("n,k", [(1, 0), (4, 1), (6, 3), (5, 5)])
    def test_counts_and_accuracy(self, engine, store, seed, clock, n, k):
        """N expired predictions, K on archived accounts: N validated, K accurate."""
        for i in range(n):
            account_id = seed.account(name=f"Account {i}", archived=i < k)
            store.store_prediction(account_id, TENANT, _prediction(0.75))
        clock.advance(days=31)

        report = validate_expired(engine, store, TENANT)
        accuracy = store.prediction_accuracy(TENANT)

        assert report.validated_count == n
        assert accuracy.validated_count == n
        assert accuracy.accurate_count == k

    def test_health_trend_without_score_has_no_outcome(self, engine, store, seed, clock):
        account_id = seed.account(health_score=None, churn_risk=0.9)
        prediction_id = store.store_prediction(
            account_id, TENANT, _prediction(0.8, PredictionType.HEALTH_TREND)
        )
        clock.advance(days=31)

        assert validate_expired(engine, store, TENANT).validated_count == 1
        stored = store.get_prediction(prediction_id)
        assert stored.status == PredictionStatus.VALIDATED
        assert stored.actual_outcome is None
        assert stored.was_accurate is None
        assert store.prediction_accuracy(TENANT).accurate_count == 0

    def test_unexpired_predictions_untouched(self, engine, store, seed, clock):
        account_id = seed.account()
        store.store_prediction(account_id, TENANT, _prediction(0.75))
        clock.advance(days=10)

        assert validate_expired(engine, store, TENANT).validated_count == 0
        assert store.get_latest_prediction(account_id, PredictionType.CHURN, TENANT).status == PredictionStatus.ACTIVE

    def test_second_run_is_noop(self, engine, store, seed, clock):
        account_id = seed.account()
        store.store_prediction(account_id, TENANT, _prediction(0.75))
        clock.advance(days=31)

        assert validate_expired(engine, store, TENANT).validated_count == 1
        assert validate_expired(engine, store, TENANT).validated_count == 0

    def test_partial_failure_continues(self, engine, store, seed, clock):
        good = seed.account(name="Good")
        gone = seed.account(name="Gone")
        store.store_prediction(good, TENANT, _prediction(0.75))
        missing_id = store.store_prediction(gone, TENANT, _prediction(0.75))
        # Account moved to another tenant after the prediction was made
        with engine.begin() as conn:
            conn.execute(accounts.update().where(accounts.c.id == gone).values(tenant_id="elsewhere"))
        clock.advance(days=31)

        report = validate_expired(engine, store, TENANT)

        assert report.validated_count == 1
        assert len(report.failures) == 1
        failure = report.failures[0]
        assert isinstance(failure, ValidationPartialFailure)
        assert failure.prediction_id == missing_id
        assert store.get_prediction(missing_id).status == PredictionStatus.ACTIVE

    def test_concurrent_removal_is_a_partial_failure(self, engine, store, seed, clock):
        account_id = seed.account()
        prediction_id = store.store_prediction(account_id, TENANT, _prediction(0.75))
        clock.advance(days=31)

        original = store.mark_validated

        def vanish(pid, *args):
            with engine.begin() as conn:
                conn.execute(delete(ml_predictions).where(ml_predictions.c.id == pid))
            return original(pid, *args)

        with patch.object(store, "mark_validated", side_effect=vanish):
            report = validate_expired(engine, store, TENANT)

        assert report.validated_count == 0
        assert report.failures[0].prediction_id == prediction_id
        with pytest.raises(NotFound):
            store.get_prediction(prediction_id)
