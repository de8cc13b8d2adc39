from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime, timedelta
import logging
import math

import numpy as np

from forecast_engine.common.logging import log_execution_time
from forecast_engine.core.base import ForecastModel
from forecast_engine.core.congestion_model import (
    clamp,
    clamp_congestion,
    estimate_speed_from_congestion,
    map_congestion_level,
)
from forecast_engine.core.exceptions import (
    InsufficientDataError,
    InvalidParameterCombinationError,
    ModelFitError,
    NotTrainedError,
)
from forecast_engine.core.metrics import model_accuracy
from forecast_engine.core.schemas import ModelAccuracy, Observation, Prediction, TimeSeriesModelState


logger = logging.getLogger(__name__)

MIN_TRAINING_POINTS = 24
MAX_P = 3
MAX_D = 2
MAX_Q = 3
AR_DAMPING = 0.8
MA_STEP = 0.1
HOLDOUT_FRACTION = 0.2
DEFAULT_CONFIDENCE = 0.7
CONFIDENCE_DECAY = 0.05
MIN_CONFIDENCE = 0.1
MIN_RSS = 1e-10


def difference(series: np.ndarray, times: int = 1) -> np.ndarray:
    result = np.asarray(series, dtype=float)
    for _ in range(times):
        result = np.diff(result)
    return result


def autocorrelation(series: np.ndarray, lag: int) -> float:
    """Sample autocorrelation at ``lag``; 0 for a flat series or an out-of-range lag."""
    values = np.asarray(series, dtype=float)
    if lag >= len(values):
        return 0.0
    centered = values - values.mean()
    denominator = float(np.sum(centered * centered))
    if denominator == 0.0:
        return 0.0
    numerator = float(np.sum(centered[: len(values) - lag] * centered[lag:]))
    return numerator / denominator


def estimate_coefficients(series: np.ndarray, p: int, q: int) -> list[float]:
    # damped autocorrelation for AR, fixed ramp for MA
    ar = [autocorrelation(series, lag) * AR_DAMPING for lag in range(1, p + 1)]
    ma = [MA_STEP * i for i in range(1, q + 1)]
    return ar + ma


def one_step_residuals(series: np.ndarray, coefficients: Sequence[float], p: int, q: int) -> list[float]:
    centered = np.asarray(series, dtype=float) - float(np.mean(series))
    ar = coefficients[:p]
    ma = coefficients[p : p + q]
    residuals: list[float] = []

    for t in range(max(p, q), len(centered)):
        predicted = sum(ar[i] * centered[t - i - 1] for i in range(p))
        for i in range(min(q, len(residuals))):
            predicted += ma[i] * residuals[-i - 1]
        residuals.append(float(centered[t] - predicted))
    return residuals


def fit_order(series: Sequence[float], p: int, d: int, q: int) -> TimeSeriesModelState:
    """Fit one (p, d, q) candidate and score it with AIC and BIC."""
    diffed = difference(np.asarray(series, dtype=float), d)
    if len(diffed) < max(p, q) + 1:
        raise InvalidParameterCombinationError(
            f"ARIMA({p},{d},{q}) leaves {len(diffed)} points after differencing"
        )

    coefficients = estimate_coefficients(diffed, p, q)
    residuals = one_step_residuals(diffed, coefficients, p, q)

    n = len(diffed)
    rss = max(float(np.sum(np.square(residuals))), MIN_RSS)
    sigma2 = rss / n
    log_likelihood = -0.5 * n * math.log(2 * math.pi * sigma2) - 0.5 * rss / sigma2
    num_params = p + q + 1

    aic = -2 * log_likelihood + 2 * num_params
    bic = -2 * log_likelihood + num_params * math.log(n)
    if not (math.isfinite(aic) and math.isfinite(bic)) or not all(map(math.isfinite, coefficients)):
        raise ModelFitError(f"ARIMA({p},{d},{q}) produced non-finite scores")

    return TimeSeriesModelState(
        p=p,
        d=d,
        q=q,
        coefficients=coefficients,
        residuals=residuals,
        aic=aic,
        bic=bic,
    )


class TimeSeriesModel(ForecastModel):
    """Simplified ARIMA fitted by AIC grid search over small orders.

    Coefficients come from damped sample autocorrelation (AR) and a fixed ramp
    (MA) rather than likelihood maximisation. Forecasts use the AR part only,
    applied to deviations from the series mean, plus a first-order trend
    carry-over when the selected order differences the series.
    """

    name = "arima"

    def __init__(self) -> None:
        self.state: TimeSeriesModelState | None = None
        self.accuracy: ModelAccuracy | None = None
        self.training_series: list[float] = []

    @property
    def is_trained(self) -> bool:
        return self.state is not None

    def fit(self, observations: Sequence[Observation]) -> None:
        self.train([observation.congestion_level for observation in observations])

    @log_execution_time(logger)
    def train(self, series: Sequence[float]) -> TimeSeriesModelState:
        values = [float(x) for x in series]
        if len(values) < MIN_TRAINING_POINTS:
            raise InsufficientDataError(MIN_TRAINING_POINTS, len(values), "time-series training")

        state = self._select_order(values)
        accuracy = self._backtest(values, state)

        self.state = state
        self.accuracy = accuracy
        self.training_series = values
        logger.info(
            "Selected ARIMA(%d,%d,%d) aic=%.3f accuracy=%.3f",
            state.p,
            state.d,
            state.q,
            state.aic,
            accuracy.accuracy,
        )
        return state

    def _select_order(self, series: list[float]) -> TimeSeriesModelState:
        best: TimeSeriesModelState | None = None
        for p in range(MAX_P + 1):
            for d in range(MAX_D + 1):
                for q in range(MAX_Q + 1):
                    try:
                        candidate = fit_order(series, p, d, q)
                    except (InvalidParameterCombinationError, ModelFitError, ValueError, OverflowError) as exc:
                        logger.debug("Skipping ARIMA(%d,%d,%d): %s", p, d, q, exc)
                        continue
                    if best is None or candidate.aic < best.aic:
                        best = candidate

        if best is None:
            raise ModelFitError("no ARIMA order could be fitted to the series")
        return best

    def _backtest(self, series: list[float], state: TimeSeriesModelState) -> ModelAccuracy:
        # expanding window over the last 20% of the series
        validation_size = int(len(series) * HOLDOUT_FRACTION)
        training_size = len(series) - validation_size

        actuals: list[float] = []
        predictions: list[float] = []
        for i in range(training_size, len(series)):
            predictions.append(self._forecast_value(series[:i], state))
            actuals.append(series[i])
        return model_accuracy(actuals, predictions)

    @staticmethod
    def _forecast_value(history: Sequence[float], state: TimeSeriesModelState) -> float:
        values = np.asarray(history, dtype=float)
        working = difference(values, 1) if state.d > 0 else values
        if len(working) == 0:
            return clamp_congestion(float(values[-1]))

        mean = float(working.mean())
        recent = working[-state.p :] if state.p > 0 else working[:0]
        forecast = mean
        for i, coeff in enumerate(state.ar_coefficients[: len(recent)]):
            forecast += coeff * (recent[len(recent) - i - 1] - mean)

        if state.d > 0:
            forecast += float(values[-1])
        return clamp_congestion(forecast)

    def forecast_values(self, series: Sequence[float], horizon: int) -> list[float]:
        """Raw clamped forecasts for steps 1..horizon, fed back recursively."""
        if self.state is None:
            raise NotTrainedError("Time-series model has not been trained yet")
        if horizon < 1:
            raise ValueError("horizon must be at least 1")
        history = [float(x) for x in series]
        if not history:
            raise ValueError("No historical data provided for prediction")

        values: list[float] = []
        for _ in range(horizon):
            value = self._forecast_value(history, self.state)
            values.append(value)
            history.append(value)
        return values

    def predict(
        self,
        series: Sequence[float],
        horizon: int,
        start: datetime | None = None,
    ) -> list[Prediction]:
        values = self.forecast_values(series, horizon)
        origin = start or datetime.now(UTC)
        base_confidence = self.accuracy.accuracy if self.accuracy else DEFAULT_CONFIDENCE

        predictions = []
        for h, value in enumerate(values, start=1):
            confidence = max(MIN_CONFIDENCE, base_confidence - CONFIDENCE_DECAY * (h - 1))
            predictions.append(
                Prediction(
                    timestamp=origin + timedelta(hours=h),
                    congestion_level=map_congestion_level(value),
                    average_speed=estimate_speed_from_congestion(value),
                    confidence=clamp(confidence, MIN_CONFIDENCE, 1.0),
                )
            )
        return predictions

    def predict_from_observations(self, observations: Sequence[Observation], horizon: int) -> list[Prediction]:
        if not observations:
            raise ValueError("No historical data provided for prediction")
        return self.predict(
            [observation.congestion_level for observation in observations],
            horizon,
            start=observations[-1].timestamp,
        )

    def get_model_accuracy(self) -> ModelAccuracy:
        if self.state is None or self.accuracy is None:
            raise NotTrainedError("Time-series model has not been trained yet")
        return self.accuracy
