class ForecastEngineError(Exception):
    """Base exception for all forecasting engine errors."""
    pass

class InsufficientDataError(ForecastEngineError):
    """Raised when fewer samples are supplied than an operation requires."""

    def __init__(self, required: int, received: int, operation: str = "training"):
        self.required = required
        self.received = received
        super().__init__(
            f"Insufficient data for {operation}: need at least {required} samples, got {received}"
        )

class NotTrainedError(ForecastEngineError):
    """Raised when a model is queried before it has been trained."""
    pass

class NoTrainedModelError(NotTrainedError):
    """Raised when neither regression variant has been trained."""
    pass

class NotInitializedError(ForecastEngineError):
    """Raised when the ensemble is used before initialize() succeeded."""
    pass

class SingularMatrixError(ForecastEngineError):
    """Raised when a linear system has a zero pivot."""
    pass

class InvalidParameterCombinationError(ForecastEngineError):
    """Raised when an ARIMA order cannot be fitted to the differenced series."""
    pass

class ModelFitError(ForecastEngineError):
    """Raised when no candidate model could be fitted."""
    pass
