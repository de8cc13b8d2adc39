from datetime import datetime, timedelta
import math

import pytest

from forecast_engine.config import EngineSettings
from forecast_engine.core.exceptions import InsufficientDataError, NotInitializedError
from forecast_engine.core.prediction_engine import (
    MODEL_ENSEMBLE,
    LiveConditions,
    PredictionEngine,
    Ready,
    Uninitialized,
    combine_predictions,
)
from forecast_engine.core.schemas import (
    CongestionLevel,
    EventFactor,
    GeoArea,
    Prediction,
    TimeWindow,
    WeatherConditions,
)


MONDAY_8AM = datetime(2024, 3, 4, 8)
SATURDAY_NOON = datetime(2024, 3, 9, 12)


@pytest.fixture
def engine(observation_factory):
    engine = PredictionEngine()
    engine.initialize(observation_factory(24 * 14))
    return engine


def test_initialize_rejects_49_observations(observation_factory):
    engine = PredictionEngine()
    with pytest.raises(InsufficientDataError):
        engine.initialize(observation_factory(49))
    assert isinstance(engine.state, Uninitialized)


def test_initialize_accepts_50_observations(observation_factory):
    engine = PredictionEngine()
    engine.initialize(observation_factory(50))

    assert engine.is_initialized
    assert isinstance(engine.state, Ready)
    assert engine.state.observation_count == 50


def test_operations_require_initialization(area):
    engine = PredictionEngine()
    window = TimeWindow(MONDAY_8AM, MONDAY_8AM + timedelta(hours=2))

    with pytest.raises(NotInitializedError):
        engine.predict_at(area, MONDAY_8AM)
    with pytest.raises(NotInitializedError):
        engine.forecast(area, window)
    with pytest.raises(NotInitializedError):
        engine.get_detailed_prediction(area, MONDAY_8AM)
    with pytest.raises(NotInitializedError):
        engine.model_performance()


def test_failed_retraining_keeps_previous_models(engine, observation_factory):
    previous = engine.state
    with pytest.raises(InsufficientDataError):
        engine.initialize(observation_factory(10))
    assert engine.state is previous


def test_predict_for_unseen_area_falls_back_to_patterns(engine):
    unseen = GeoArea(id="new_township", zone_type="residential")
    prediction = engine.predict_at(unseen, MONDAY_8AM)

    assert prediction.timestamp == MONDAY_8AM
    assert prediction.congestion_level in set(CongestionLevel)
    assert 5 <= prediction.average_speed <= 60
    assert 0.1 <= prediction.confidence <= 1.0


def test_combine_predictions_weights_members():
    when = datetime(2024, 3, 4, 9)
    pattern = Prediction(when, CongestionLevel.HIGH, 15.0, 0.8)
    regression = Prediction(when, CongestionLevel.MODERATE, 25.0, 0.6)

    combined = combine_predictions([(pattern, 0.4), (regression, 0.4), (pattern, 0.2)], when)

    assert combined.congestion_level is CongestionLevel.HIGH
    assert combined.average_speed == 19
    assert combined.confidence == pytest.approx(0.72)


def test_forecast_steps_hourly_inclusive(engine, area):
    window = TimeWindow(datetime(2024, 3, 4, 6), datetime(2024, 3, 4, 12))
    forecast = engine.forecast(area, window)

    assert forecast.model_used == MODEL_ENSEMBLE
    assert [p.timestamp.hour for p in forecast.predictions] == [6, 7, 8, 9, 10, 11, 12]
    assert forecast.confidence == pytest.approx(
        sum(p.confidence for p in forecast.predictions) / len(forecast.predictions)
    )


def test_forecast_single_point_window(engine, area):
    window = TimeWindow(MONDAY_8AM, MONDAY_8AM)
    assert len(engine.forecast(area, window).predictions) == 1


def test_forecast_rejects_reversed_window(engine, area):
    with pytest.raises(ValueError):
        engine.forecast(area, TimeWindow(MONDAY_8AM, MONDAY_8AM - timedelta(hours=1)))


def test_detailed_prediction_factors(engine, area):
    morning = engine.get_detailed_prediction(area, MONDAY_8AM)
    assert [f.factor for f in morning.factors] == ["Morning Rush Hour"]
    assert morning.model_used == MODEL_ENSEMBLE
    assert morning.confidence == morning.predictions[0].confidence

    weekend = engine.get_detailed_prediction(area, SATURDAY_NOON)
    assert [f.factor for f in weekend.factors] == ["Weekend Traffic"]

    holiday = engine.get_detailed_prediction(area, datetime(2024, 1, 26, 18))
    assert [f.factor for f in holiday.factors] == ["Evening Rush Hour", "Public Holiday"]


def test_detailed_prediction_uses_live_conditions(engine, area):
    conditions = LiveConditions(
        weather=WeatherConditions(rainfall=15, visibility=3),
        event_factors=(EventFactor("concert", 0.9),),
    )
    result = engine.get_detailed_prediction(area, datetime(2024, 3, 5, 13), conditions)

    factors = {f.factor: f for f in result.factors}
    assert set(factors) == {"Poor Weather Conditions", "Special Events"}
    assert factors["Special Events"].impact == pytest.approx(0.9)
    assert factors["Poor Weather Conditions"].impact == pytest.approx(0.4)


def test_detailed_accuracy_blends_models(engine, area):
    performance = engine.model_performance()
    assert set(performance) == {"arima", "regression"}

    arima, regression = performance["arima"], performance["regression"]
    accuracy = engine.get_detailed_prediction(area, MONDAY_8AM).accuracy

    assert accuracy.mape == pytest.approx((arima.mape + regression.mape) / 2)
    assert accuracy.mae == pytest.approx((arima.mae + regression.mae) / 2)
    assert accuracy.r2 == pytest.approx((arima.r2 + regression.r2) / 2)
    assert accuracy.accuracy == pytest.approx((arima.accuracy + regression.accuracy) / 2)
    assert accuracy.rmse == pytest.approx(math.sqrt((arima.rmse**2 + regression.rmse**2) / 2))


def test_results_serialise_for_the_service(engine, area):
    window = TimeWindow(MONDAY_8AM, MONDAY_8AM + timedelta(hours=1))
    payload = engine.forecast(area, window).to_dict()

    assert payload["area_id"] == area.id
    assert payload["model_used"] == MODEL_ENSEMBLE
    assert payload["predictions"][0]["congestion_level"] in {level.value for level in CongestionLevel}

    detailed = engine.get_detailed_prediction(area, MONDAY_8AM).to_dict()
    assert set(detailed["accuracy"]) == {"mape", "rmse", "mae", "r2", "accuracy"}


def test_settings_from_environment(monkeypatch, observation_factory):
    monkeypatch.setenv("FORECAST_MIN_OBSERVATIONS", "60")
    monkeypatch.setenv("FORECAST_POLYNOMIAL_DEGREE", "3")
    settings = EngineSettings.from_env()

    assert settings.min_observations == 60
    assert settings.polynomial_degree == 3
    assert settings.ridge_lambda == pytest.approx(0.01)

    engine = PredictionEngine(settings)
    with pytest.raises(InsufficientDataError):
        engine.initialize(observation_factory(55))
    engine.initialize(observation_factory(60))
    assert engine.state.regression.polynomial_model.degree == 3


def test_observation_rejects_out_of_range_values(area):
    from forecast_engine.core.schemas import Observation

    with pytest.raises(ValueError):
        Observation(MONDAY_8AM, area, congestion_level=3.5, average_speed=20.0)
    with pytest.raises(ValueError):
        Observation(MONDAY_8AM, area, congestion_level=1.0, average_speed=0.0)
    with pytest.raises(ValueError):
        Observation(MONDAY_8AM, area, congestion_level=1.0, average_speed=20.0, travel_time_multiplier=0.5)
