from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
import logging

from forecast_engine.common.logging import log_execution_time, setup_logger
from forecast_engine.config import EngineSettings
from forecast_engine.core.base import ForecastModel
from forecast_engine.core.congestion_model import (
    clamp,
    congestion_level_to_number,
    map_congestion_level,
    round_half_up,
)
from forecast_engine.core.exceptions import InsufficientDataError, NotInitializedError
from forecast_engine.core.feature_engineering import build_feature_vector
from forecast_engine.core.metrics import blend_accuracies
from forecast_engine.core.pattern_analyzer import PatternAnalyzer
from forecast_engine.core.regression_model import RegressionModel
from forecast_engine.core.schemas import (
    EventFactor,
    FeatureVector,
    GeoArea,
    ModelAccuracy,
    Observation,
    Prediction,
    PredictionFactor,
    PredictionResult,
    TimeWindow,
    TrafficForecast,
    WeatherConditions,
)
from forecast_engine.core.time_series_model import TimeSeriesModel


logger = logging.getLogger(__name__)

MODEL_ENSEMBLE = "ensemble_ml_models"
MODEL_PATTERN_FALLBACK = "pattern_analysis_fallback"
MODEL_BASIC_EXTRAPOLATION = "basic_extrapolation"

PATTERN_WEIGHT = 0.4
REGRESSION_WEIGHT = 0.4
TIME_SERIES_WEIGHT = 0.2
FORECAST_STEP = timedelta(hours=1)


@dataclass(frozen=True, slots=True)
class LiveConditions:
    """Optional live signals supplied by the caller for a single request."""

    weather: WeatherConditions | None = None
    event_factors: tuple[EventFactor, ...] = ()
    recent_levels: tuple[float, ...] = ()


@dataclass(frozen=True, slots=True)
class Uninitialized:
    pass


@dataclass(frozen=True, slots=True)
class Ready:
    time_series: TimeSeriesModel
    regression: RegressionModel
    patterns: PatternAnalyzer
    observation_count: int
    trained_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def models(self) -> tuple[ForecastModel, ...]:
        return (self.time_series, self.regression, self.patterns)


EngineState = Uninitialized | Ready


class PredictionEngine:
    """Ensemble of pattern, regression and time-series models.

    ``initialize`` trains fresh models and only swaps the ``Ready`` state in
    once all of them succeeded; readers never observe partial training.
    """

    def __init__(self, settings: EngineSettings | None = None) -> None:
        self.settings = settings or EngineSettings()
        setup_logger("forecast_engine", self.settings.log_level)
        self.state: EngineState = Uninitialized()

    @property
    def is_initialized(self) -> bool:
        return isinstance(self.state, Ready)

    @log_execution_time(logger)
    def initialize(self, observations: Sequence[Observation]) -> None:
        if len(observations) < self.settings.min_observations:
            raise InsufficientDataError(self.settings.min_observations, len(observations), "ensemble initialization")

        time_series = TimeSeriesModel()
        regression = RegressionModel(
            polynomial_degree=self.settings.polynomial_degree,
            ridge_lambda=self.settings.ridge_lambda,
        )
        patterns = PatternAnalyzer()
        for model in (time_series, regression, patterns):
            model.fit(observations)

        self.state = Ready(
            time_series=time_series,
            regression=regression,
            patterns=patterns,
            observation_count=len(observations),
        )
        logger.info("Ensemble initialized from %d observations", len(observations))

    def _ready(self) -> Ready:
        state = self.state
        if not isinstance(state, Ready):
            raise NotInitializedError("PredictionEngine must be initialized with historical data before use")
        return state

    def _features(self, area: GeoArea, target_time: datetime, conditions: LiveConditions | None) -> FeatureVector:
        conditions = conditions or LiveConditions()
        return build_feature_vector(
            area=area,
            timestamp=target_time,
            weather=conditions.weather,
            event_factors=conditions.event_factors,
            recent_levels=conditions.recent_levels,
        )

    def predict_at(
        self,
        area: GeoArea,
        target_time: datetime,
        conditions: LiveConditions | None = None,
    ) -> Prediction:
        state = self._ready()

        pattern_prediction = state.patterns.predict_based_on_patterns(area, target_time)
        features = self._features(area, target_time, conditions)
        regression_prediction = state.regression.predict(features, timestamp=target_time)
        # the time-series contribution reuses the pattern estimate in place of live history
        time_series_prediction = pattern_prediction

        return combine_predictions(
            [
                (pattern_prediction, PATTERN_WEIGHT),
                (regression_prediction, REGRESSION_WEIGHT),
                (time_series_prediction, TIME_SERIES_WEIGHT),
            ],
            target_time,
        )

    def forecast(self, area: GeoArea, window: TimeWindow) -> TrafficForecast:
        self._ready()
        if window.latest < window.earliest:
            raise ValueError("time window ends before it starts")

        predictions: list[Prediction] = []
        target_time = window.earliest
        while target_time <= window.latest:
            predictions.append(self.predict_at(area, target_time))
            target_time += FORECAST_STEP

        confidence = sum(p.confidence for p in predictions) / len(predictions)
        return TrafficForecast(
            area=area,
            time_window=window,
            predictions=predictions,
            confidence=confidence,
            model_used=MODEL_ENSEMBLE,
        )

    def get_detailed_prediction(
        self,
        area: GeoArea,
        target_time: datetime,
        conditions: LiveConditions | None = None,
    ) -> PredictionResult:
        state = self._ready()

        prediction = self.predict_at(area, target_time, conditions)
        features = self._features(area, target_time, conditions)
        accuracy = blend_accuracies(
            state.regression.get_model_accuracy(),
            state.time_series.get_model_accuracy(),
        )

        return PredictionResult(
            predictions=[prediction],
            confidence=prediction.confidence,
            model_used=MODEL_ENSEMBLE,
            accuracy=accuracy,
            factors=identify_prediction_factors(features),
        )

    def model_performance(self) -> dict[str, ModelAccuracy]:
        state = self._ready()
        return {
            model.name: accuracy
            for model in state.models
            if (accuracy := model.get_model_accuracy()) is not None
        }


def combine_predictions(weighted: Sequence[tuple[Prediction, float]], target_time: datetime) -> Prediction:
    """Weighted average of category value, speed and confidence."""
    total_weight = sum(weight for _, weight in weighted)
    congestion = sum(congestion_level_to_number(p.congestion_level) * w for p, w in weighted) / total_weight
    speed = sum(p.average_speed * w for p, w in weighted) / total_weight
    confidence = sum(p.confidence * w for p, w in weighted) / total_weight

    return Prediction(
        timestamp=target_time,
        congestion_level=map_congestion_level(congestion),
        average_speed=float(round_half_up(speed)),
        confidence=clamp(confidence, 0.1, 1.0),
    )


def identify_prediction_factors(features: FeatureVector) -> list[PredictionFactor]:
    factors: list[PredictionFactor] = []

    if 7 <= features.hour_of_day <= 10:
        factors.append(
            PredictionFactor(
                factor="Morning Rush Hour",
                impact=0.8,
                confidence=0.9,
                description="High traffic expected during morning rush hour (7-10 AM)",
            )
        )
    elif 17 <= features.hour_of_day <= 20:
        factors.append(
            PredictionFactor(
                factor="Evening Rush Hour",
                impact=0.7,
                confidence=0.9,
                description="High traffic expected during evening rush hour (5-8 PM)",
            )
        )

    if features.is_weekend:
        factors.append(
            PredictionFactor(
                factor="Weekend Traffic",
                impact=-0.3,
                confidence=0.8,
                description="Lower traffic expected on weekends",
            )
        )

    if features.weather_score < 0.7:
        factors.append(
            PredictionFactor(
                factor="Poor Weather Conditions",
                impact=0.4,
                confidence=0.7,
                description="Adverse weather conditions may increase congestion",
            )
        )

    if features.event_impact_score > 0.5:
        factors.append(
            PredictionFactor(
                factor="Special Events",
                impact=features.event_impact_score,
                confidence=0.6,
                description="Special events in the area may cause additional congestion",
            )
        )

    if features.is_holiday:
        factors.append(
            PredictionFactor(
                factor="Public Holiday",
                impact=-0.5,
                confidence=0.8,
                description="Reduced traffic expected on public holiday",
            )
        )

    return factors
