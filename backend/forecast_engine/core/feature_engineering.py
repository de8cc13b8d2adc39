from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime
import statistics

from forecast_engine.core.congestion_model import clamp
from forecast_engine.core.schemas import (
    ZONE_TYPE_CODES,
    EventFactor,
    FeatureVector,
    GeoArea,
    Observation,
    RegressionSample,
    WeatherConditions,
)


DEFAULT_WEATHER_SCORE = 0.8
DEFAULT_EVENT_IMPACT = 0.1
DEFAULT_ZONE_CODE = ZONE_TYPE_CODES["mixed"]
TREND_WINDOW = 6

# (month 0-11, day of month)
FIXED_HOLIDAYS = {(0, 26), (7, 15), (9, 2)}

WEEKDAY_HOURLY_AVERAGES = [
    1.0, 1.2, 1.5, 2.0, 2.5, 2.8, 2.5, 2.0, 1.8, 1.5, 1.3, 1.2,
    1.0, 0.8, 0.6, 0.8, 1.0, 1.5, 2.2, 2.8, 2.5, 2.0, 1.5, 1.2,
]
WEEKEND_HOURLY_AVERAGES = [
    0.8, 0.6, 0.5, 0.4, 0.4, 0.5, 0.8, 1.2, 1.5, 1.8, 2.0, 2.2,
    2.0, 1.8, 1.5, 1.3, 1.2, 1.5, 1.8, 2.0, 1.8, 1.5, 1.2, 1.0,
]


def day_of_week(timestamp: datetime) -> int:
    """Weekday index with Sunday as 0 and Saturday as 6."""
    return (timestamp.weekday() + 1) % 7


def month_index(timestamp: datetime) -> int:
    return timestamp.month - 1


def is_weekend_day(dow: int) -> bool:
    return dow in (0, 6)


def is_holiday(timestamp: datetime) -> bool:
    return (month_index(timestamp), timestamp.day) in FIXED_HOLIDAYS


def calculate_weather_score(weather: WeatherConditions | None) -> float:
    """Score weather from 0 (bad) to 1 (good)."""
    if weather is None:
        return DEFAULT_WEATHER_SCORE

    score = 1.0
    if weather.rainfall > 0:
        score -= min(0.5, weather.rainfall / 20)
    if weather.visibility < 10:
        score -= min(0.3, (10 - weather.visibility) / 20)
    if weather.temperature > 40 or weather.temperature < 5:
        score -= 0.1
    return max(0.0, score)


def calculate_event_impact(event_factors: Iterable[EventFactor] | None) -> float:
    events = list(event_factors or [])
    if not events:
        return DEFAULT_EVENT_IMPACT
    return min(1.0, sum(event.severity for event in events))


def historical_average(hour: int, dow: int) -> float:
    averages = WEEKEND_HOURLY_AVERAGES if is_weekend_day(dow) else WEEKDAY_HOURLY_AVERAGES
    return averages[hour] if 0 <= hour < len(averages) else 1.5


def recent_trend(levels: Sequence[float] | None) -> float:
    """Latest level relative to its rolling mean, clamped to [-1, 1]."""
    history = [float(x) for x in levels or [] if x is not None]
    if len(history) < 2:
        return 0.0
    window = history[-TREND_WINDOW:]
    return clamp(history[-1] - statistics.fmean(window), -1.0, 1.0)


def build_feature_vector(
    area: GeoArea,
    timestamp: datetime,
    weather: WeatherConditions | None = None,
    event_factors: Iterable[EventFactor] | None = None,
    recent_levels: Sequence[float] | None = None,
) -> FeatureVector:
    """Create the feature vector for an area at a point in time."""
    hour = timestamp.hour
    dow = day_of_week(timestamp)

    return FeatureVector(
        hour_of_day=hour,
        day_of_week=dow,
        month=month_index(timestamp),
        is_weekend=is_weekend_day(dow),
        is_holiday=is_holiday(timestamp),
        weather_score=calculate_weather_score(weather),
        event_impact_score=calculate_event_impact(event_factors),
        historical_average=historical_average(hour, dow),
        recent_trend=recent_trend(recent_levels),
        zone_type=ZONE_TYPE_CODES.get(area.zone_type, DEFAULT_ZONE_CODE),
    )


def build_regression_samples(observations: Sequence[Observation]) -> list[RegressionSample]:
    """Pair every observation's feature vector with its recorded congestion."""
    samples: list[RegressionSample] = []
    levels: list[float] = []
    for observation in observations:
        features = build_feature_vector(
            area=observation.area,
            timestamp=observation.timestamp,
            weather=observation.weather,
            event_factors=observation.event_factors,
            recent_levels=levels[-TREND_WINDOW:],
        )
        samples.append(RegressionSample(features=features, target=observation.congestion_level))
        levels.append(observation.congestion_level)
    return samples


def polynomial_features(base: Sequence[float], degree: int) -> list[float]:
    """Expand features with powers 2..degree and pairwise interaction terms."""
    expanded = [float(x) for x in base]
    for power in range(2, degree + 1):
        expanded.extend(float(x) ** power for x in base)
    if degree >= 2:
        for i in range(len(base)):
            for j in range(i + 1, len(base)):
                expanded.append(float(base[i]) * float(base[j]))
    return expanded
