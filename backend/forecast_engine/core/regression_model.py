from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime
import logging

import numpy as np

from forecast_engine.common.logging import log_execution_time
from forecast_engine.core import linear_algebra
from forecast_engine.core.base import ForecastModel
from forecast_engine.core.congestion_model import (
    clamp,
    clamp_congestion,
    estimate_speed_from_congestion,
    map_congestion_level,
)
from forecast_engine.core.exceptions import InsufficientDataError, NoTrainedModelError, SingularMatrixError
from forecast_engine.core.feature_engineering import build_regression_samples, polynomial_features
from forecast_engine.core.metrics import model_accuracy, regression_metrics
from forecast_engine.core.schemas import (
    FeatureVector,
    ModelAccuracy,
    Observation,
    Prediction,
    RegressionModelState,
    RegressionSample,
)


logger = logging.getLogger(__name__)

MIN_LINEAR_SAMPLES = 10
DEFAULT_RIDGE_LAMBDA = 0.01
DEFAULT_CONFIDENCE = 0.7
RUSH_HOURS = (range(7, 11), range(17, 21))


def _with_bias(rows: Sequence[Sequence[float]]) -> np.ndarray:
    matrix = np.asarray(rows, dtype=float)
    return np.column_stack([np.ones(len(matrix)), matrix])


class RegressionModel(ForecastModel):
    name = "regression"

    def __init__(self, polynomial_degree: int = 2, ridge_lambda: float = DEFAULT_RIDGE_LAMBDA) -> None:
        self.polynomial_degree = polynomial_degree
        self.ridge_lambda = ridge_lambda
        self.linear_model: RegressionModelState | None = None
        self.polynomial_model: RegressionModelState | None = None
        self.accuracy: ModelAccuracy | None = None

    @property
    def is_trained(self) -> bool:
        return self.linear_model is not None or self.polynomial_model is not None

    def fit(self, observations: Sequence[Observation]) -> None:
        samples = build_regression_samples(observations)
        try:
            self.train_linear(samples)
        except SingularMatrixError as exc:
            # constant feature columns make the unregularised system singular
            logger.warning("Linear regression skipped: %s", exc)
            self.linear_model = None
        self.train_polynomial(samples, self.polynomial_degree)

    def train_linear(self, samples: Sequence[RegressionSample]) -> RegressionModelState:
        if len(samples) < MIN_LINEAR_SAMPLES:
            raise InsufficientDataError(MIN_LINEAR_SAMPLES, len(samples), "linear regression")

        design = _with_bias([sample.features.normalized() for sample in samples])
        target = np.array([sample.target for sample in samples], dtype=float)
        beta = linear_algebra.solve_normal_equation(design, target)

        self.linear_model = self._build_state(design, target, beta, degree=1)
        logger.info("Trained linear regression r2=%.3f", self.linear_model.r_squared)
        return self.linear_model

    @log_execution_time(logger)
    def train_polynomial(self, samples: Sequence[RegressionSample], degree: int) -> RegressionModelState:
        if degree < 1:
            raise ValueError("polynomial degree must be at least 1")
        if len(samples) < 2 * degree:
            raise InsufficientDataError(2 * degree, len(samples), f"degree {degree} polynomial regression")

        design = _with_bias([polynomial_features(sample.features.normalized(), degree) for sample in samples])
        target = np.array([sample.target for sample in samples], dtype=float)
        beta = linear_algebra.solve_normal_equation(design, target, ridge_lambda=self.ridge_lambda)

        self.polynomial_degree = degree
        self.polynomial_model = self._build_state(design, target, beta, degree=degree)
        logger.info(
            "Trained degree %d polynomial regression on %d terms r2=%.3f",
            degree,
            design.shape[1] - 1,
            self.polynomial_model.r_squared,
        )
        return self.polynomial_model

    def _build_state(self, design: np.ndarray, target: np.ndarray, beta: np.ndarray, degree: int) -> RegressionModelState:
        fitted = design @ beta
        metrics = regression_metrics(target, fitted)
        self.accuracy = model_accuracy(target, fitted)
        return RegressionModelState(
            coefficients=[float(x) for x in beta[1:]],
            intercept=float(beta[0]),
            r_squared=metrics["r2"],
            mean_squared_error=metrics["mse"],
            mean_absolute_error=metrics["mae"],
            degree=degree,
        )

    def predict_value(self, features: FeatureVector) -> float:
        """Clamped congestion estimate, preferring the polynomial fit."""
        if self.polynomial_model is not None:
            model = self.polynomial_model
            vector = polynomial_features(features.normalized(), model.degree)
        elif self.linear_model is not None:
            model = self.linear_model
            vector = features.normalized()
        else:
            raise NoTrainedModelError("No trained regression model available. Train a model first.")
        return clamp_congestion(model.intercept + linear_algebra.dot(vector, model.coefficients))

    def predict(self, features: FeatureVector, timestamp: datetime | None = None) -> Prediction:
        value = self.predict_value(features)
        return Prediction(
            timestamp=timestamp or datetime.now(UTC),
            congestion_level=map_congestion_level(value),
            average_speed=clamp(estimate_speed_from_congestion(value), 5.0, 60.0),
            confidence=self.prediction_confidence(features),
        )

    def prediction_confidence(self, features: FeatureVector) -> float:
        confidence = self.accuracy.accuracy if self.accuracy else DEFAULT_CONFIDENCE

        if features.weather_score < 0.3:
            confidence *= 0.8
        if features.event_impact_score > 0.7:
            confidence *= 0.7

        hour = features.hour_of_day
        if any(hour in window for window in RUSH_HOURS):
            confidence *= 1.1
        elif hour >= 22 or hour <= 5:
            confidence *= 0.9

        return clamp(confidence, 0.1, 1.0)

    def get_model_accuracy(self) -> ModelAccuracy:
        if self.accuracy is None:
            raise NoTrainedModelError("No trained regression model available")
        return self.accuracy
