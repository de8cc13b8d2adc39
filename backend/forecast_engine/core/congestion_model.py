from __future__ import annotations

import math

from forecast_engine.core.schemas import CongestionLevel


MIN_CONGESTION = 0.0
MAX_CONGESTION = 3.0

# km/h at each integer congestion level
SPEED_ANCHORS = {0: 45.0, 1: 25.0, 2: 15.0, 3: 8.0}
DEFAULT_ANCHOR_SPEED = 25.0

_LEVEL_VALUES = {
    CongestionLevel.LOW: 0,
    CongestionLevel.MODERATE: 1,
    CongestionLevel.HIGH: 2,
    CongestionLevel.SEVERE: 3,
}


def clamp(value: float, low: float, high: float) -> float:
    return min(max(value, low), high)


def clamp_congestion(value: float) -> float:
    return clamp(value, MIN_CONGESTION, MAX_CONGESTION)


def map_congestion_level(value: float) -> CongestionLevel:
    """Map a numeric congestion value to its category (upper bounds inclusive)."""
    if value <= 0.5:
        return CongestionLevel.LOW
    if value <= 1.5:
        return CongestionLevel.MODERATE
    if value <= 2.5:
        return CongestionLevel.HIGH
    return CongestionLevel.SEVERE


def congestion_level_to_number(level: CongestionLevel | str) -> int:
    try:
        return _LEVEL_VALUES[CongestionLevel(level)]
    except ValueError:
        return 1


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def estimate_speed_from_congestion(congestion: float) -> float:
    """Interpolate the typical average speed between integer congestion anchors."""
    lower_level = math.floor(congestion)
    upper_level = math.ceil(congestion)
    fraction = congestion - lower_level

    lower_speed = SPEED_ANCHORS.get(lower_level, DEFAULT_ANCHOR_SPEED)
    upper_speed = SPEED_ANCHORS.get(upper_level, DEFAULT_ANCHOR_SPEED)
    return float(round_half_up(lower_speed + fraction * (upper_speed - lower_speed)))
