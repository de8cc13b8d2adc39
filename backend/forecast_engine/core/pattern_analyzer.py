from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
import calendar
import logging

import pandas as pd

from forecast_engine.common.logging import log_execution_time
from forecast_engine.core.base import ForecastModel
from forecast_engine.core.congestion_model import (
    clamp,
    estimate_speed_from_congestion,
    map_congestion_level,
    round_half_up,
)
from forecast_engine.core.exceptions import NotTrainedError
from forecast_engine.core.feature_engineering import day_of_week, month_index
from forecast_engine.core.schemas import (
    CongestionPattern,
    DayOfWeekPattern,
    GeoArea,
    HourlyPattern,
    Observation,
    PatternType,
    Prediction,
    SeasonalPattern,
)


logger = logging.getLogger(__name__)

DEFAULT_CONGESTION = 1.5
DEFAULT_SPEED = 25.0
PEAK_THRESHOLD = 2.0
PEAK_MARGIN = 0.5
RUSH_HOUR_WINDOWS = ((7, 10), (17, 20))
WINTER_MONTHS = {10, 11, 0, 1}

DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]
MONTH_NAMES = list(calendar.month_name)[1:]

FRAME_COLUMNS = ["hour", "day", "month", "congestion", "area_id", "has_weather", "rainfall", "visibility", "has_events"]

MITIGATION_STRATEGIES = {
    PatternType.RUSH_HOUR: [
        "Use alternative routes",
        "Adjust departure time",
        "Consider public transport",
        "Implement staggered work hours",
    ],
    PatternType.EVENT_BASED: [
        "Plan alternative routes in advance",
        "Allow extra travel time",
        "Monitor traffic updates",
        "Consider postponing non-essential trips",
    ],
    PatternType.WEATHER_RELATED: [
        "Drive cautiously and slowly",
        "Increase following distance",
        "Use headlights and hazard lights",
        "Consider delaying travel if possible",
    ],
    PatternType.SEASONAL: [
        "Plan for seasonal traffic increases",
        "Use public transport during peak seasons",
        "Consider flexible work arrangements",
        "Monitor seasonal traffic advisories",
    ],
}


def _is_rush_hour(hour: int) -> bool:
    return any(start <= hour <= end for start, end in RUSH_HOUR_WINDOWS)


def _is_weekday(dow: int) -> bool:
    return 1 <= dow <= 5


def _observation_frame(data: Sequence[Observation]) -> pd.DataFrame:
    rows = []
    for observation in data:
        weather = observation.weather
        rows.append(
            {
                "hour": observation.timestamp.hour,
                "day": day_of_week(observation.timestamp),
                "month": month_index(observation.timestamp),
                "congestion": float(observation.congestion_level),
                "area_id": observation.area.id,
                "has_weather": weather is not None,
                "rainfall": weather.rainfall if weather is not None else 0.0,
                "visibility": weather.visibility if weather is not None else 10.0,
                "has_events": len(observation.event_factors) > 0,
            }
        )
    if not rows:
        return pd.DataFrame(columns=FRAME_COLUMNS)
    return pd.DataFrame(rows, columns=FRAME_COLUMNS)


def _unique_areas(frame: pd.DataFrame) -> list[str]:
    return list(dict.fromkeys(frame["area_id"].tolist()))


class PatternAnalyzer(ForecastModel):
    """Descriptive hourly, weekday, monthly and recurring-congestion tables.

    Every analysis call overwrites its table. ``predict_based_on_patterns``
    layers the tables multiplicatively on top of the hourly baseline.
    """

    name = "pattern_analysis"

    def __init__(self) -> None:
        self.hourly_patterns: list[HourlyPattern] = []
        self.day_of_week_patterns: list[DayOfWeekPattern] = []
        self.seasonal_patterns: list[SeasonalPattern] = []
        self.congestion_patterns: list[CongestionPattern] = []

    @property
    def is_trained(self) -> bool:
        return bool(self.hourly_patterns or self.day_of_week_patterns or self.seasonal_patterns)

    def fit(self, observations: Sequence[Observation]) -> None:
        self.analyze(observations)

    @log_execution_time(logger)
    def analyze(self, data: Sequence[Observation]) -> None:
        self.analyze_hourly(data)
        self.analyze_day_of_week(data)
        self.analyze_seasonal(data)
        self.detect_congestion_patterns(data)
        logger.info(
            "Pattern analysis over %d observations detected %s",
            len(data),
            [pattern.pattern_type.value for pattern in self.congestion_patterns] or "no recurring patterns",
        )

    def get_model_accuracy(self) -> None:
        return None

    def analyze_hourly(self, data: Sequence[Observation]) -> list[HourlyPattern]:
        frame = _observation_frame(data)
        grouped = {hour: group["congestion"] for hour, group in frame.groupby("hour")}

        patterns: list[HourlyPattern] = []
        for hour in range(24):
            levels = grouped.get(hour)
            if levels is None or levels.empty:
                average = patterns[-1].average_congestion if patterns else DEFAULT_CONGESTION
                patterns.append(
                    HourlyPattern(
                        hour=hour,
                        average_congestion=average,
                        standard_deviation=0.5,
                        peak_probability=0.1,
                        typical_speed=estimate_speed_from_congestion(average),
                    )
                )
                continue

            average = float(levels.mean())
            patterns.append(
                HourlyPattern(
                    hour=hour,
                    average_congestion=average,
                    standard_deviation=float(levels.std(ddof=0)),
                    peak_probability=float((levels > PEAK_THRESHOLD).mean()),
                    typical_speed=estimate_speed_from_congestion(average),
                )
            )

        self.hourly_patterns = patterns
        return patterns

    def analyze_day_of_week(self, data: Sequence[Observation]) -> list[DayOfWeekPattern]:
        frame = _observation_frame(data)
        day_means = frame.groupby("day")["congestion"].mean()
        day_hour_means = frame.groupby(["day", "hour"])["congestion"].mean()

        patterns: list[DayOfWeekPattern] = []
        for day in range(7):
            average = float(day_means[day]) if day in day_means.index else DEFAULT_CONGESTION

            peak_hours: list[int] = []
            off_peak_hours: list[int] = []
            if day in day_means.index:
                for hour, hour_mean in day_hour_means.loc[day].items():
                    if hour_mean > average + PEAK_MARGIN:
                        peak_hours.append(int(hour))
                    elif hour_mean < average - PEAK_MARGIN:
                        off_peak_hours.append(int(hour))

            patterns.append(
                DayOfWeekPattern(
                    day_of_week=day,
                    day_name=DAY_NAMES[day],
                    average_congestion=average,
                    peak_hours=sorted(peak_hours),
                    off_peak_hours=sorted(off_peak_hours),
                    weekend_factor=0.7 if day in (0, 6) else 1.0,
                )
            )

        self.day_of_week_patterns = patterns
        return patterns

    def analyze_seasonal(self, data: Sequence[Observation]) -> list[SeasonalPattern]:
        frame = _observation_frame(data)
        month_means = frame.groupby("month")["congestion"].mean()
        weather_frame = frame[frame["has_weather"].astype(bool)]
        weather_means = weather_frame.groupby("month")[["rainfall", "visibility"]].mean()

        patterns: list[SeasonalPattern] = []
        for month in range(12):
            average = float(month_means[month]) if month in month_means.index else DEFAULT_CONGESTION

            weather_impact = 1.0
            if month in weather_means.index:
                rainfall = float(weather_means.loc[month, "rainfall"])
                visibility = float(weather_means.loc[month, "visibility"])
                weather_impact = 1.0 + rainfall / 10 + (10 - visibility) / 20

            patterns.append(
                SeasonalPattern(
                    month=month,
                    month_name=MONTH_NAMES[month],
                    average_congestion=average,
                    weather_impact_factor=weather_impact,
                    holiday_impact_factor=1.2 if month in (11, 0) else 1.0,
                    school_season_factor=0.8 if month in (5, 6) else 1.0,
                )
            )

        self.seasonal_patterns = patterns
        return patterns

    def detect_congestion_patterns(self, data: Sequence[Observation]) -> list[CongestionPattern]:
        frame = _observation_frame(data)
        detectors = (
            self._detect_rush_hour,
            self._detect_event_based,
            self._detect_weather_related,
            self._detect_seasonal,
        )

        patterns: list[CongestionPattern] = []
        for detector in detectors:
            pattern = detector(frame)
            if pattern is not None:
                patterns.append(pattern)

        self.congestion_patterns = patterns
        return patterns

    @staticmethod
    def _build_pattern(
        pattern_type: PatternType,
        subset: pd.DataFrame,
        trigger_conditions: list[str],
        average_duration: int,
        affected_areas: list[str] | None = None,
    ) -> CongestionPattern:
        return CongestionPattern(
            pattern_type=pattern_type,
            trigger_conditions=trigger_conditions,
            average_duration=average_duration,
            severity_level=min(3.0, float(subset["congestion"].mean())),
            affected_areas=affected_areas if affected_areas is not None else _unique_areas(subset),
            mitigation_strategies=list(MITIGATION_STRATEGIES[pattern_type]),
        )

    def _detect_rush_hour(self, frame: pd.DataFrame) -> CongestionPattern | None:
        subset = frame[frame["hour"].map(_is_rush_hour).astype(bool)]
        if subset.empty:
            return None
        conditions = ["weekday"] + [f"time:{start}-{end}" for start, end in RUSH_HOUR_WINDOWS]
        return self._build_pattern(PatternType.RUSH_HOUR, subset, conditions, 180)

    def _detect_event_based(self, frame: pd.DataFrame) -> CongestionPattern | None:
        subset = frame[frame["has_events"].astype(bool)]
        if subset.empty:
            return None
        return self._build_pattern(
            PatternType.EVENT_BASED,
            subset,
            ["special_events", "festivals", "sports_events"],
            240,
        )

    def _detect_weather_related(self, frame: pd.DataFrame) -> CongestionPattern | None:
        severe = (frame["rainfall"] > 5) | (frame["visibility"] < 5)
        subset = frame[frame["has_weather"].astype(bool) & severe]
        if subset.empty:
            return None
        return self._build_pattern(
            PatternType.WEATHER_RELATED,
            subset,
            ["heavy_rain", "poor_visibility", "fog", "extreme_weather"],
            120,
        )

    def _detect_seasonal(self, frame: pd.DataFrame) -> CongestionPattern | None:
        if frame.empty:
            return None
        month_means = frame.groupby("month")["congestion"].mean()
        overall = float(month_means.mean())
        high_months = [int(month) for month, avg in month_means.items() if avg > overall + PEAK_MARGIN]
        if not high_months:
            return None
        subset = frame[frame["month"].isin(high_months)]
        return self._build_pattern(
            PatternType.SEASONAL,
            subset,
            ["winter_months", "festival_season", "school_season"],
            30 * 24 * 60,
            affected_areas=["city_wide"],
        )

    def pattern_applies(self, pattern: CongestionPattern, target_time: datetime, area: GeoArea | None = None) -> bool:
        """Whether a detected pattern is in effect at ``target_time``.

        Weather and event patterns need live signals and never apply here.
        """
        if pattern.pattern_type is PatternType.RUSH_HOUR:
            return self._trigger_conditions_hold(pattern.trigger_conditions, target_time)
        if pattern.pattern_type is PatternType.SEASONAL:
            return month_index(target_time) in WINTER_MONTHS
        return False

    @staticmethod
    def _trigger_conditions_hold(conditions: Sequence[str], target_time: datetime) -> bool:
        hour = target_time.hour
        windows: list[tuple[int, int]] = []
        for condition in conditions:
            if condition == "weekday" and not _is_weekday(day_of_week(target_time)):
                return False
            if condition.startswith("time:"):
                start, _, end = condition.removeprefix("time:").partition("-")
                windows.append((int(start), int(end)))
        return any(start <= hour <= end for start, end in windows) if windows else True

    def predict_based_on_patterns(self, area: GeoArea, target_time: datetime) -> Prediction:
        if not self.is_trained:
            raise NotTrainedError("Pattern tables have not been analysed yet")

        hour = target_time.hour
        dow = day_of_week(target_time)
        month = month_index(target_time)

        hourly = next((p for p in self.hourly_patterns if p.hour == hour), None)
        congestion = hourly.average_congestion if hourly else DEFAULT_CONGESTION
        speed = hourly.typical_speed if hourly else DEFAULT_SPEED

        day_pattern = next((p for p in self.day_of_week_patterns if p.day_of_week == dow), None)
        if day_pattern:
            congestion *= day_pattern.weekend_factor
            if hour in day_pattern.peak_hours:
                congestion *= 1.3
                speed *= 0.7
            elif hour in day_pattern.off_peak_hours:
                congestion *= 0.8
                speed *= 1.2

        seasonal = next((p for p in self.seasonal_patterns if p.month == month), None)
        if seasonal:
            congestion *= seasonal.weather_impact_factor
            congestion *= seasonal.holiday_impact_factor
            congestion *= seasonal.school_season_factor

        for pattern in self.congestion_patterns:
            if self.pattern_applies(pattern, target_time, area):
                congestion *= 1 + pattern.severity_level * 0.3

        congestion = clamp(congestion, 0.0, 3.0)
        speed = clamp(speed, 5.0, 60.0)

        return Prediction(
            timestamp=target_time,
            congestion_level=map_congestion_level(congestion),
            average_speed=float(round_half_up(speed)),
            confidence=self._pattern_confidence(hour, dow),
        )

    def _pattern_confidence(self, hour: int, dow: int) -> float:
        confidence = 0.7

        hourly = next((p for p in self.hourly_patterns if p.hour == hour), None)
        if hourly and hourly.standard_deviation < 0.5:
            confidence += 0.1

        confidence += 0.1 if _is_weekday(dow) else -0.1

        total_entries = len(self.hourly_patterns) + len(self.day_of_week_patterns) + len(self.seasonal_patterns)
        if total_entries < 10:
            confidence -= 0.2

        return clamp(confidence, 0.1, 1.0)
