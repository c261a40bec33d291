"""
Table definitions for the CRM records and the ML prediction log.

The CRM tables (accounts, health history, activities, CTAs, opportunities,
playbooks) belong to the surrounding CRM platform; they are declared here so
the prediction pipeline can read and write them and so tests can create them
on SQLite. ``account_ml_predictions`` is owned by this package.
"""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
)

metadata = MetaData()


accounts = Table(
    "accounts",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("tenant_id", String(64), nullable=False, index=True),
    Column("name", String(255), nullable=False),
    Column("type", String(32), nullable=False, default="CUSTOMER"),
    Column("health_score", Integer),
    Column("engagement_score", Integer),
    Column("churn_risk", Float),
    Column("archived", Boolean, nullable=False, default=False),
    Column("created_at", DateTime, nullable=False),
)


health_score_history = Table(
    "account_health_score_history",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("account_id", Integer, ForeignKey("accounts.id"), nullable=False),
    Column("overall_score", Integer, nullable=False),
    Column("usage_score", Integer),
    Column("support_score", Integer),
    Column("engagement_score", Integer),
    Column("sentiment_score", Integer),
    Column("score_trend", String(16)),  # IMPROVING, STABLE, DECLINING
    Column("churn_risk", Float),
    Column("calculated_at", DateTime, nullable=False),
    Index("ix_health_history_account_time", "account_id", "calculated_at"),
)


crm_activities = Table(
    "crm_activities",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("account_id", Integer, ForeignKey("accounts.id"), nullable=False),
    Column("type", String(32), nullable=False),  # EMAIL, MEETING, CALL, NOTE
    Column("sentiment", String(16)),  # POSITIVE, NEUTRAL, NEGATIVE
    Column("created_at", DateTime, nullable=False),
    Index("ix_crm_activities_account_time", "account_id", "created_at"),
)


ctas = Table(
    "ctas",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("tenant_id", String(64), nullable=False, index=True),
    Column("account_id", Integer, ForeignKey("accounts.id"), nullable=False),
    Column("owner_id", Integer),
    Column("type", String(32), nullable=False),
    Column("priority", String(16), nullable=False),
    Column("status", String(16), nullable=False, default="OPEN"),
    Column("title", String(255), nullable=False),
    Column("description", Text),
    Column("reason", Text),
    Column("due_date", DateTime),
    Column("playbook_id", Integer),
    Column("is_automated", Boolean, nullable=False, default=False),
    Column("trigger_rule", String(64)),
    Column("trigger_data", JSON),
    Column("prediction_id", Integer),
    Column("idempotency_key", String(128), unique=True),
    Column("created_at", DateTime, nullable=False),
    Column("completed_at", DateTime),
    Index("ix_ctas_account_type_time", "account_id", "type", "created_at"),
)


opportunities = Table(
    "opportunities",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("account_id", Integer, ForeignKey("accounts.id"), nullable=False),
    Column("stage", String(64), nullable=False),
    Column("stage_type", String(16), nullable=False, default="OPEN"),  # OPEN, WON, LOST
    Column("amount", Float),
    Column("probability", Float),  # 0-100 as entered in the CRM
)


playbooks = Table(
    "playbooks",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("tenant_id", String(64), nullable=False, index=True),
    Column("name", String(255), nullable=False),
    Column("cta_type", String(32)),
    Column("status", String(16), nullable=False, default="ACTIVE"),
    Column("times_used", Integer, nullable=False, default=0),
)


ml_predictions = Table(
    "account_ml_predictions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("tenant_id", String(64), nullable=False),
    Column("account_id", Integer, ForeignKey("accounts.id"), nullable=False),
    Column("prediction_type", String(32), nullable=False),  # CHURN, HEALTH_TREND
    Column("probability", Float, nullable=False),
    Column("confidence", Float, nullable=False),
    Column("prediction_window", Integer, nullable=False),
    Column("risk_factors", JSON, nullable=False),
    Column("explanation", Text),
    Column("recommendations", JSON),
    Column("suggested_cta", JSON),
    Column("risk_category", String(16)),
    Column("intervention_urgency", String(16)),
    Column("primary_drivers", JSON),
    Column("llm_model", String(128)),
    Column("llm_tokens_used", Integer, default=0),
    Column("llm_latency_ms", Integer, default=0),
    Column("llm_cost", Float, default=0.0),
    Column("predicted_at", DateTime, nullable=False),
    Column("valid_until", DateTime, nullable=False),
    Column("status", String(16), nullable=False, default="ACTIVE"),
    Column("validated_at", DateTime),
    Column("actual_outcome", Boolean),
    Column("was_accurate", Boolean),
    Column("generated_cta_id", Integer),
    Index(
        "ix_ml_predictions_lookup",
        "tenant_id", "account_id", "prediction_type", "predicted_at",
    ),
    Index("ix_ml_predictions_expiry", "tenant_id", "status", "valid_until"),
)
