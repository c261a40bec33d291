"""Exception taxonomy for the prediction pipeline."""


class HealthPredictionError(Exception):
    """Base class for pipeline errors."""


class NotFound(HealthPredictionError):
    """An account, tenant or prediction does not exist."""

    def __init__(self, kind: str, identifier: object, tenant_id: str | None = None):
        self.kind = kind
        self.identifier = identifier
        self.tenant_id = tenant_id
        where = f" in tenant {tenant_id}" if tenant_id else ""
        super().__init__(f"{kind.capitalize()} {identifier} not found{where}")


class PredictorUnavailable(HealthPredictionError):
    """The external predictor is down, misconfigured or returned garbage.

    Raised only inside the external capability; the prediction engine
    catches it and falls back to the rule-based heuristic.
    """


class ValidationPartialFailure(HealthPredictionError):
    """A single prediction in a validation batch could not be validated."""

    def __init__(self, prediction_id: int, reason: str):
        self.prediction_id = prediction_id
        self.reason = reason
        super().__init__(f"Prediction {prediction_id} failed validation: {reason}")
