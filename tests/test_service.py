"""
Tests for the CustomerHealthService facade.

Run with: pytest tests/test_service.py -v
"""

import pytest

from conftest import TENANT
from src.health import CustomerHealthService
from src.health.config import PredictorConfig
from src.health.errors import NotFound
from src.health.models import Prediction, PredictionStatus, PredictionType
from src.health.prediction import Predictor, PredictorKind
from src.health.service import PredictionState, build_predictor


@pytest.fixture
def service(engine, ml_config, clock) -> CustomerHealthService:
    return CustomerHealthService(engine, ml_config, predictor=Predictor.rule_based(), now=clock)


def _prediction(confidence: float) -> Prediction:
    return Prediction(
        prediction_type=PredictionType.CHURN,
        probability=0.7,
        confidence=confidence,
        prediction_window_days=90,
        explanation="test",
    )


class TestBuildPredictor:
    def test_rule_based_without_key(self):
        assert build_predictor(PredictorConfig(api_key=None)).kind == PredictorKind.RULE_BASED

    def test_rule_based_when_disabled(self):
        config = PredictorConfig(api_key="sk-test", enabled=False)
        assert build_predictor(config).kind == PredictorKind.RULE_BASED

    def test_external_with_key(self):
        predictor = build_predictor(PredictorConfig(api_key="sk-test"))
        assert predictor.kind == PredictorKind.EXTERNAL
        assert predictor.capability is not None


class TestChurnStatus:
    def test_no_prediction(self, service, seed):
        view = service.churn_status(seed.account(), TENANT)
        assert view.state == PredictionState.NO_PREDICTION
        assert view.prediction is None

    def test_low_confidence(self, service, seed):
        account_id = seed.account()
        service.store.store_prediction(account_id, TENANT, _prediction(0.4))

        view = service.churn_status(account_id, TENANT)
        assert view.state == PredictionState.LOW_CONFIDENCE
        assert view.prediction.confidence == pytest.approx(0.4)
        assert "below threshold" in view.message

    def test_actionable(self, service, seed):
        account_id = seed.account()
        service.store.store_prediction(account_id, TENANT, _prediction(0.8))
        assert service.churn_status(account_id, TENANT).state == PredictionState.ACTIONABLE

    def test_expired_prediction_is_no_prediction(self, service, seed, clock):
        account_id = seed.account()
        service.store.store_prediction(account_id, TENANT, _prediction(0.8))
        clock.advance(days=31)
        assert service.churn_status(account_id, TENANT).state == PredictionState.NO_PREDICTION

    def test_unknown_account_raises(self, service):
        with pytest.raises(NotFound):
            service.churn_status(99999, TENANT)

    def test_other_tenant_account_raises(self, service, seed):
        account_id = seed.account(tenant_id="other-tenant")
        service.store.store_prediction(account_id, "other-tenant", _prediction(0.8))

        with pytest.raises(NotFound):
            service.churn_status(account_id, TENANT)


class TestAnalyzeHealth:
    def test_read_only_by_default(self, service, seed):
        account_id = seed.account()
        seed.health_history(account_id, [40, 60, 62])

        analysis = service.analyze_health(account_id, TENANT)

        assert analysis.prediction_id is None
        assert service.store.list_account_predictions(account_id, TENANT) == []

    @pytest.mark.parametrize(
        "scores,probability",
        [([40, 60, 62], 0.7), ([60, 55, 65], 0.5), ([70, 60, 58], 0.3)],
    )
    def test_store_records_health_trend(self, service, seed, scores, probability):
        account_id = seed.account()
        seed.health_history(account_id, scores)

        analysis = service.analyze_health(account_id, TENANT, store=True)
        stored = service.store.get_latest_prediction(account_id, PredictionType.HEALTH_TREND, TENANT)

        assert stored.id == analysis.prediction_id
        assert stored.probability == pytest.approx(probability)
        assert stored.confidence == pytest.approx(0.7)
        assert stored.prediction_window_days == 30
        assert stored.explanation == analysis.summary


class TestEndToEnd:
    def test_predict_act_validate(self, service, seed, clock, engine):
        """Prediction flows through CTA generation, validation and accuracy."""
        account_id = seed.account(name="Initech", health_score=25)
        seed.health_history(account_id, [25, 40, 50])

        prediction = service.predict_churn(account_id, TENANT)
        assert prediction.risk_category in ("high", "critical")

        result = service.generate_action_from_prediction(account_id, TENANT, prediction, 1)
        assert result.created is True
        assert service.ml_cta_stats(TENANT).total_generated == 1

        ranked = service.high_risk_accounts(TENANT)
        assert [r.account.id for r in ranked] == [account_id]

        clock.advance(days=31)
        report = service.validate_expired(TENANT)
        assert report.validated_count == 1

        stored = service.store.get_prediction(prediction.id)
        assert stored.status == PredictionStatus.VALIDATED
        assert stored.generated_cta_id == result.action["id"]

        accuracy = service.prediction_accuracy(TENANT)
        # Account was not archived, so the high-risk call was wrong
        assert (accuracy.validated_count, accuracy.accurate_count) == (1, 0)

    def test_config_exposed(self, service, ml_config):
        assert service.get_ml_config() is ml_config
