"""
Tests for configuration loading.

Run with: pytest tests/test_config.py -v
"""

import pytest

from src.health.config import (
    ChurnRiskThresholds,
    MLConfig,
    get_ml_config,
    get_predictor_config,
)


class TestMLConfig:
    def test_defaults(self):
        config = MLConfig()
        assert config.prediction_window_days == 90
        assert config.prediction_validity_days == 30
        assert config.min_confidence_threshold == 0.5
        assert config.cta_cooldown_days == 7
        assert config.churn_risk_thresholds.critical == 0.8

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("ML_MIN_CONFIDENCE_THRESHOLD", "0.7")
        monkeypatch.setenv("ML_CTA_COOLDOWN_DAYS", "14")
        monkeypatch.setenv("ML_CHURN_THRESHOLD_HIGH", "0.65")

        config = get_ml_config()
        assert config.min_confidence_threshold == pytest.approx(0.7)
        assert config.cta_cooldown_days == 14
        assert config.churn_risk_thresholds.high == pytest.approx(0.65)
        assert config.prediction_window_days == 90

    def test_empty_env_uses_default(self, monkeypatch):
        monkeypatch.setenv("ML_PREDICTION_WINDOW_DAYS", "")
        assert get_ml_config().prediction_window_days == 90

    def test_thresholds_must_be_ordered(self):
        with pytest.raises(ValueError):
            ChurnRiskThresholds(critical=0.5, high=0.6)

    def test_invalid_env_thresholds_rejected(self, monkeypatch):
        monkeypatch.setenv("ML_CHURN_THRESHOLD_MEDIUM", "0.9")
        with pytest.raises(ValueError):
            get_ml_config()


class TestPredictorConfig:
    def test_key_and_model(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")
        monkeypatch.setenv("HEALTH_LLM_MODEL", "claude-custom")
        monkeypatch.setenv("HEALTH_LLM_TIMEOUT", "12.5")
        monkeypatch.delenv("HEALTH_LLM_ENABLED", raising=False)

        config = get_predictor_config()
        assert config.api_key == "sk-test"
        assert config.model_name == "claude-custom"
        assert config.timeout_seconds == pytest.approx(12.5)
        assert config.enabled is True

    def test_blank_key_is_none(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "")
        assert get_predictor_config().api_key is None

    def test_disabled(self, monkeypatch):
        monkeypatch.setenv("HEALTH_LLM_ENABLED", "false")
        assert get_predictor_config().enabled is False
