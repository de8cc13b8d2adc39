from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class CongestionLevel(str, Enum):
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"
    SEVERE = "severe"


class PatternType(str, Enum):
    RUSH_HOUR = "rush_hour"
    EVENT_BASED = "event_based"
    WEATHER_RELATED = "weather_related"
    SEASONAL = "seasonal"


ZONE_TYPE_CODES = {"residential": 0, "commercial": 1, "industrial": 2, "mixed": 3}


@dataclass(frozen=True, slots=True)
class GeoArea:
    id: str
    name: str = ""
    zone_type: str = "mixed"


@dataclass(frozen=True, slots=True)
class WeatherConditions:
    temperature: float = 25.0
    rainfall: float = 0.0
    visibility: float = 10.0
    humidity: float | None = None
    wind_speed: float | None = None


@dataclass(frozen=True, slots=True)
class EventFactor:
    event_type: str
    severity: float
    description: str = ""


@dataclass(frozen=True, slots=True)
class Observation:
    """A single recorded congestion measurement for an area."""

    timestamp: datetime
    area: GeoArea
    congestion_level: float
    average_speed: float
    travel_time_multiplier: float = 1.0
    weather: WeatherConditions | None = None
    event_factors: tuple[EventFactor, ...] = ()

    def __post_init__(self) -> None:
        if not 0.0 <= self.congestion_level <= 3.0:
            raise ValueError(f"congestion_level must be within [0, 3], got {self.congestion_level}")
        if self.average_speed <= 0:
            raise ValueError(f"average_speed must be positive, got {self.average_speed}")
        if self.travel_time_multiplier < 1.0:
            raise ValueError(f"travel_time_multiplier must be >= 1, got {self.travel_time_multiplier}")
        object.__setattr__(self, "event_factors", tuple(self.event_factors))


@dataclass(frozen=True, slots=True)
class TimeWindow:
    earliest: datetime
    latest: datetime


@dataclass(frozen=True, slots=True)
class FeatureVector:
    hour_of_day: int
    day_of_week: int
    month: int
    is_weekend: bool
    is_holiday: bool
    weather_score: float
    event_impact_score: float
    historical_average: float
    recent_trend: float
    zone_type: int

    def normalized(self) -> list[float]:
        """Scale every feature to [0, 1] in a fixed column order."""
        return [
            self.hour_of_day / 23,
            self.day_of_week / 6,
            self.month / 11,
            1.0 if self.is_weekend else 0.0,
            1.0 if self.is_holiday else 0.0,
            self.weather_score,
            self.event_impact_score,
            self.historical_average / 3,
            (self.recent_trend + 1) / 2,
            self.zone_type / 3,
        ]


@dataclass(slots=True)
class RegressionSample:
    features: FeatureVector
    target: float


@dataclass(slots=True)
class TimeSeriesModelState:
    p: int
    d: int
    q: int
    coefficients: list[float]
    residuals: list[float]
    aic: float
    bic: float

    @property
    def ar_coefficients(self) -> list[float]:
        return self.coefficients[: self.p]

    @property
    def ma_coefficients(self) -> list[float]:
        return self.coefficients[self.p : self.p + self.q]


@dataclass(slots=True)
class RegressionModelState:
    coefficients: list[float]
    intercept: float
    r_squared: float
    mean_squared_error: float
    mean_absolute_error: float
    degree: int = 1


@dataclass(slots=True)
class ModelAccuracy:
    mape: float
    rmse: float
    mae: float
    r2: float
    accuracy: float

    def to_dict(self) -> dict[str, float]:
        return {
            "mape": round(self.mape, 4),
            "rmse": round(self.rmse, 4),
            "mae": round(self.mae, 4),
            "r2": round(self.r2, 4),
            "accuracy": round(self.accuracy, 4),
        }


@dataclass(slots=True)
class HourlyPattern:
    hour: int
    average_congestion: float
    standard_deviation: float
    peak_probability: float
    typical_speed: float


@dataclass(slots=True)
class DayOfWeekPattern:
    day_of_week: int
    day_name: str
    average_congestion: float
    peak_hours: list[int]
    off_peak_hours: list[int]
    weekend_factor: float


@dataclass(slots=True)
class SeasonalPattern:
    month: int
    month_name: str
    average_congestion: float
    weather_impact_factor: float
    holiday_impact_factor: float
    school_season_factor: float


@dataclass(slots=True)
class CongestionPattern:
    pattern_type: PatternType
    trigger_conditions: list[str]
    average_duration: int
    severity_level: float
    affected_areas: list[str]
    mitigation_strategies: list[str]


@dataclass(slots=True)
class Prediction:
    timestamp: datetime
    congestion_level: CongestionLevel
    average_speed: float
    confidence: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "congestion_level": self.congestion_level.value,
            "average_speed": self.average_speed,
            "confidence": round(self.confidence, 4),
        }


@dataclass(slots=True)
class PredictionFactor:
    factor: str
    impact: float
    confidence: float
    description: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "factor": self.factor,
            "impact": self.impact,
            "confidence": self.confidence,
            "description": self.description,
        }


@dataclass(slots=True)
class PredictionResult:
    predictions: list[Prediction]
    confidence: float
    model_used: str
    accuracy: ModelAccuracy
    factors: list[PredictionFactor] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "predictions": [p.to_dict() for p in self.predictions],
            "confidence": round(self.confidence, 4),
            "model_used": self.model_used,
            "accuracy": self.accuracy.to_dict(),
            "factors": [f.to_dict() for f in self.factors],
        }


@dataclass(slots=True)
class TrafficForecast:
    area: GeoArea
    time_window: TimeWindow
    predictions: list[Prediction]
    confidence: float
    model_used: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "area_id": self.area.id,
            "earliest": self.time_window.earliest.isoformat(),
            "latest": self.time_window.latest.isoformat(),
            "predictions": [p.to_dict() for p in self.predictions],
            "confidence": round(self.confidence, 4),
            "model_used": self.model_used,
        }
