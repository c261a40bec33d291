"""
Prompts for the external health predictor.

Stored as module-level string constants for easy testing and modification.
The human prompts take a single ``{payload}`` JSON block built from the
stripped account snapshot.
"""

SYSTEM_PROMPT: str = """You are an expert Customer Success analyst specializing in SaaS \
account health analysis and churn prediction. You analyze account data to identify \
risks and opportunities, and provide actionable recommendations.

Your analysis should be:
- Data-driven: base conclusions on the metrics provided
- Specific: reference actual values and thresholds
- Actionable: provide clear, implementable recommendations

Always respond with valid JSON matching the requested schema. Never fabricate data.
"""

CHURN_PREDICTION_PROMPT: str = """Analyze the following account data and predict the \
likelihood of this account churning in the next {window_days} days.

## ACCOUNT DATA
```json
{payload}
```

## Required Output Format
Respond with a JSON object matching this exact schema:
```json
{{
    "churn_probability": <float 0-1>,
    "confidence": <float 0-1>,
    "risk_category": "critical" | "high" | "medium" | "low",
    "primary_churn_drivers": [<up to 3 strings>],
    "risk_factors": [
        {{
            "factor": "<name>",
            "impact": "high" | "medium" | "low",
            "current_value": "<current state or value>",
            "threshold": "<optional threshold that defines concern>",
            "trend": "improving" | "stable" | "worsening",
            "description": "<1-2 sentences>"
        }}
    ],
    "explanation": "<2-3 sentence summary>",
    "recommendations": [
        {{
            "priority": "urgent" | "high" | "medium" | "low",
            "action": "<specific action>",
            "rationale": "<why this helps>",
            "expected_impact": "<expected outcome>",
            "effort": "low" | "medium" | "high",
            "timeframe": "<when to do this>"
        }}
    ],
    "suggested_cta": {{
        "type": "RISK" | "OPPORTUNITY" | "LIFECYCLE",
        "priority": "CRITICAL" | "HIGH" | "MEDIUM" | "LOW",
        "title": "<short title>",
        "reason": "<why this CTA>",
        "due_days": <int>
    }} | null
}}
```

## Guidelines
- Order risk_factors from most to least significant
- Only suggest a CTA when the risk warrants follow-up
- Lower your confidence when the history is short or signals conflict
"""

HEALTH_ANALYSIS_PROMPT: str = """Analyze this account's health metrics and provide \
insights about its trajectory over the next 30 days.

## ACCOUNT DATA
```json
{payload}
```

## Required Output Format
Respond with a JSON object matching this exact schema:
```json
{{
    "predicted_score": <int 0-100>,
    "score_trajectory": "improving" | "stable" | "declining",
    "insights": [
        {{
            "dimension": "usage" | "support" | "engagement" | "sentiment" | "financial" | "overall",
            "insight": "<specific observation>",
            "severity": "critical" | "warning" | "info" | "positive",
            "trend": "improving" | "stable" | "declining",
            "suggested_action": "<optional action>"
        }}
    ],
    "anomalies": [
        {{
            "dimension": "<affected dimension>",
            "anomaly_type": "sudden_drop" | "sustained_decline" | "unusual_pattern",
            "description": "<what is unusual>",
            "severity": "high" | "medium" | "low",
            "possible_causes": ["<reason>"]
        }}
    ],
    "strength_areas": ["<area>"],
    "risk_areas": ["<area>"],
    "summary": "<2-3 sentence executive summary>"
}}
```

## Guidelines
- Look for patterns across multiple dimensions
- Flag sudden drops and sustained declines as anomalies
"""
