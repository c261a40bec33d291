"""
Prediction validation — reconciles expired predictions with what happened.

Designed to run as a scheduled batch:
    python -m src.health.validation --tenant-id acme
    python -m src.health.validation --tenant-id acme --verbose
"""

import argparse
import logging
import sys
from dataclasses import dataclass, field

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table
from sqlalchemy import Engine
from sqlalchemy.exc import SQLAlchemyError

from . import crm
from .config import MLConfig
from .errors import HealthPredictionError, ValidationPartialFailure
from .models import AccountProfile, Prediction, PredictionType
from .store import PredictionStore

logger = logging.getLogger("health.validation")


@dataclass
class ValidationReport:
    """Outcome of one validation batch; the count covers successes only."""

    validated_count: int = 0
    failures: list[ValidationPartialFailure] = field(default_factory=list)


def evaluate_prediction(
    prediction: Prediction, account: AccountProfile, config: MLConfig | None = None
) -> tuple[bool | None, bool | None]:
    """Decide the observed outcome and whether the prediction matched it.

    CHURN: churned means the account was archived; the prediction said
    churn when probability >= the decision threshold.
    HEALTH_TREND: declined means the account's churn risk rose above 0.5;
    the prediction said decline when probability > the decline threshold.
    Both are None when the account has no health score to compare against.

    Returns:
        (actual_outcome, was_accurate)
    """
    config = config or MLConfig()
    if prediction.prediction_type is PredictionType.CHURN:
        actual = account.archived
        predicted = prediction.probability >= config.churn_decision_threshold
    elif account.health_score is None:
        return None, None
    else:
        actual = (account.churn_risk or 0.0) > 0.5
        predicted = prediction.probability > config.health_decline_threshold
    return actual, predicted == actual


def validate_expired(
    engine: Engine,
    store: PredictionStore,
    tenant_id: str,
    config: MLConfig | None = None,
) -> ValidationReport:
    """Validate every expired ACTIVE prediction of a tenant.

    Each prediction is validated independently; a failing record is logged,
    collected in the report and skipped.
    """
    config = config or MLConfig()
    report = ValidationReport()
    candidates = store.list_expired_unvalidated(tenant_id)
    logger.info(f"Validating {len(candidates)} expired predictions for tenant {tenant_id}")

    for prediction in candidates:
        try:
            account = crm.fetch_account(engine, prediction.account_id, tenant_id)
            actual, accurate = evaluate_prediction(prediction, account, config)
            if store.mark_validated(prediction.id, actual, accurate):
                report.validated_count += 1
        except (HealthPredictionError, SQLAlchemyError) as e:
            failure = ValidationPartialFailure(prediction.id, str(e))
            logger.error(str(failure))
            report.failures.append(failure)

    logger.info(
        f"Validated {report.validated_count} predictions for tenant {tenant_id} "
        f"({len(report.failures)} failures)"
    )
    return report


def main() -> int:
    """CLI entry point for batch validation."""
    parser = argparse.ArgumentParser(description="Validate expired account predictions")
    parser.add_argument("--tenant-id", required=True, help="Tenant to validate")
    parser.add_argument("--verbose", "-v", action="store_true")
    args = parser.parse_args()

    console = Console()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )

    from src.data.database import get_engine
    from .config import get_ml_config

    engine = get_engine()
    config = get_ml_config()
    store = PredictionStore(engine, config)

    try:
        report = validate_expired(engine, store, args.tenant_id, config)
    except SQLAlchemyError as e:
        console.print(f"[red]Validation failed:[/red] {e}")
        return 1

    accuracy = store.prediction_accuracy(args.tenant_id)
    table = Table(title=f"Prediction accuracy: {args.tenant_id}")
    table.add_column("Type", style="cyan")
    table.add_column("Total", justify="right")
    table.add_column("Validated", justify="right")
    table.add_column("Accurate", justify="right")
    table.add_column("Accuracy", justify="right")
    for prediction_type, stats in sorted(accuracy.by_type.items()):
        table.add_row(
            prediction_type,
            str(stats.total),
            str(stats.validated),
            str(stats.accurate),
            f"{stats.accuracy:.1%}",
        )

    console.print(f"Validated [green]{report.validated_count}[/green] predictions")
    if report.failures:
        console.print(f"[yellow]{len(report.failures)} failures[/yellow]")
    console.print(table)
    return 0


if __name__ == "__main__":
    sys.exit(main())
