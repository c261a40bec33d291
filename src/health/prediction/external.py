"""
External predictor — Claude-backed churn prediction and health analysis.

The snapshot is stripped to a prompt payload, sent once (bounded timeout,
no retries) and the JSON response is validated with pydantic. Every failure
surfaces as PredictorUnavailable so the engine can fall back to the rules.
"""

import json
import logging
import time
from typing import Any

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import ValidationError

from ..config import PredictorConfig
from ..errors import PredictorUnavailable
from ..models import (
    AccountSnapshot,
    Prediction,
    PredictionMetadata,
    PredictionType,
    Recommendation,
    RiskFactor,
    SuggestedCTA,
)
from ..prompts import CHURN_PREDICTION_PROMPT, HEALTH_ANALYSIS_PROMPT, SYSTEM_PROMPT
from ..schemas import ChurnPredictionResponse, HealthAnalysisResponse
from ..utils import extract_json_from_response, response_text, safe_json_serialize
from .insights import HealthAnalysis, HealthAnomaly, HealthInsight

logger = logging.getLogger("health.prediction.external")


def build_prompt_payload(snapshot: AccountSnapshot) -> dict[str, Any]:
    """Strip a snapshot down to what the model may see.

    Only the account name and type identify the account; timestamps are
    reduced to dates.
    """
    account = snapshot.account
    return safe_json_serialize({
        "account": {
            "name": account.name,
            "type": account.type,
            "health_score": account.health_score,
            "engagement_score": account.engagement_score,
            "churn_risk": account.churn_risk,
            "customer_since": account.created_at,
        },
        "health_history": [
            {
                "date": s.calculated_at,
                "overall": s.overall_score,
                "usage": s.usage_score,
                "support": s.support_score,
                "engagement": s.engagement_score,
                "sentiment": s.sentiment_score,
                "trend": s.score_trend,
            }
            for s in snapshot.health_history
        ],
        "recent_activities": [
            {"date": a.created_at, "type": a.type, "sentiment": a.sentiment}
            for a in snapshot.recent_activities
        ],
        "open_ctas": [
            {"type": c.type, "priority": c.priority, "status": c.status, "due": c.due_date}
            for c in snapshot.open_ctas
        ],
        "open_opportunities": [
            {"stage": o.stage, "value": o.value, "probability": o.probability}
            for o in snapshot.opportunities
        ],
        "engagement_metrics": snapshot.crm_metrics,
    })


class AnthropicPredictor:
    """Injected capability wrapping ChatAnthropic.

    Args:
        config: Predictor settings. Uses defaults if None.
        llm: Pre-built chat model; built lazily from ``config`` if None.
    """

    def __init__(self, config: PredictorConfig | None = None, llm: Any = None):
        self.config = config or PredictorConfig()
        self._llm = llm

    def is_available(self) -> bool:
        if not self.config.enabled:
            return False
        return self._llm is not None or bool(self.config.api_key)

    def _client(self) -> Any:
        if self._llm is None:
            self._llm = ChatAnthropic(
                model=self.config.model_name,
                temperature=self.config.temperature,
                max_tokens=self.config.max_tokens,
                timeout=self.config.timeout_seconds,
                max_retries=0,
                api_key=self.config.api_key,
            )
        return self._llm

    def _invoke(self, prompt: str) -> tuple[dict, PredictionMetadata]:
        """Send one prompt and return the parsed JSON body with provenance."""
        if not self.is_available():
            raise PredictorUnavailable("External predictor is not configured")

        messages = [SystemMessage(content=SYSTEM_PROMPT), HumanMessage(content=prompt)]
        started = time.monotonic()
        try:
            response = self._client().invoke(messages)
        except Exception as e:
            raise PredictorUnavailable(f"LLM call failed: {e}") from e
        latency_ms = int((time.monotonic() - started) * 1000)

        body = extract_json_from_response(response_text(getattr(response, "content", "")))
        if body is None:
            raise PredictorUnavailable("LLM did not return valid JSON")

        usage = getattr(response, "usage_metadata", None)
        tokens = int(usage.get("total_tokens", 0)) if isinstance(usage, dict) else 0
        response_meta = getattr(response, "response_metadata", None)
        model = self.config.model_name
        if isinstance(response_meta, dict) and response_meta.get("model"):
            model = str(response_meta["model"])

        metadata = PredictionMetadata(
            model=model,
            tokens_used=tokens,
            latency_ms=latency_ms,
            estimated_cost=round(tokens * self.config.cost_per_1k_tokens / 1000, 6),
        )
        return body, metadata

    def predict_churn(self, snapshot: AccountSnapshot, window_days: int) -> Prediction:
        """Churn prediction from the external model.

        Raises:
            PredictorUnavailable: on any client, parse or validation failure.
        """
        payload = json.dumps(build_prompt_payload(snapshot), indent=2)
        body, metadata = self._invoke(
            CHURN_PREDICTION_PROMPT.format(window_days=window_days, payload=payload)
        )

        try:
            parsed = ChurnPredictionResponse.model_validate(body)
            prediction = Prediction(
                prediction_type=PredictionType.CHURN,
                probability=parsed.churn_probability,
                confidence=parsed.confidence,
                prediction_window_days=window_days,
                risk_factors=[RiskFactor(**rf.model_dump()) for rf in parsed.risk_factors],
                explanation=parsed.explanation,
                recommendations=[
                    Recommendation(**r.model_dump()) for r in parsed.recommendations
                ],
                suggested_cta=(
                    SuggestedCTA(**parsed.suggested_cta.model_dump())
                    if parsed.suggested_cta else None
                ),
                metadata=metadata,
                risk_category=parsed.risk_category,
                primary_drivers=parsed.primary_churn_drivers[:3],
            )
        except (ValidationError, ValueError, TypeError) as e:
            raise PredictorUnavailable(f"Malformed churn response: {e}") from e

        logger.info(
            f"External churn prediction for account {snapshot.account.id}: "
            f"p={prediction.probability} ({metadata.tokens_used} tokens, "
            f"{metadata.latency_ms}ms)"
        )
        return prediction

    def analyze_health(self, snapshot: AccountSnapshot) -> HealthAnalysis:
        """Health analysis from the external model.

        Raises:
            PredictorUnavailable: on any client, parse or validation failure.
        """
        payload = json.dumps(build_prompt_payload(snapshot), indent=2)
        body, metadata = self._invoke(HEALTH_ANALYSIS_PROMPT.format(payload=payload))

        try:
            parsed = HealthAnalysisResponse.model_validate(body)
        except ValidationError as e:
            raise PredictorUnavailable(f"Malformed health response: {e}") from e

        return HealthAnalysis(
            account_id=snapshot.account.id,
            account_name=snapshot.account.name,
            current_score=snapshot.current_health_score,
            predicted_score=parsed.predicted_score,
            score_trajectory=parsed.score_trajectory,
            insights=[HealthInsight(**i.model_dump()) for i in parsed.insights],
            anomalies=[HealthAnomaly(**a.model_dump()) for a in parsed.anomalies],
            strength_areas=parsed.strength_areas,
            risk_areas=parsed.risk_areas,
            summary=parsed.summary,
            metadata=metadata,
        )
