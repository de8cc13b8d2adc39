import pytest

from forecast_engine.core.congestion_model import (
    clamp_congestion,
    congestion_level_to_number,
    estimate_speed_from_congestion,
    map_congestion_level,
)
from forecast_engine.core.schemas import CongestionLevel


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (0.0, CongestionLevel.LOW),
        (0.5, CongestionLevel.LOW),
        (0.50001, CongestionLevel.MODERATE),
        (1.5, CongestionLevel.MODERATE),
        (1.50001, CongestionLevel.HIGH),
        (2.5, CongestionLevel.HIGH),
        (2.50001, CongestionLevel.SEVERE),
        (3.0, CongestionLevel.SEVERE),
    ],
)
def test_category_boundaries_are_upper_inclusive(value, expected):
    assert map_congestion_level(value) is expected


def test_speed_matches_anchor_levels():
    assert estimate_speed_from_congestion(0) == 45
    assert estimate_speed_from_congestion(1) == 25
    assert estimate_speed_from_congestion(2) == 15
    assert estimate_speed_from_congestion(3) == 8


def test_speed_interpolates_and_rounds_half_up():
    assert estimate_speed_from_congestion(0.5) == 35
    assert estimate_speed_from_congestion(2.5) == 12


def test_speed_decreases_as_congestion_rises():
    speeds = [estimate_speed_from_congestion(level / 10) for level in range(31)]
    assert all(a >= b for a, b in zip(speeds, speeds[1:]))
    assert all(0 < speed <= 60 for speed in speeds)


def test_category_round_trips_to_number():
    assert congestion_level_to_number(CongestionLevel.LOW) == 0
    assert congestion_level_to_number("moderate") == 1
    assert congestion_level_to_number(CongestionLevel.HIGH) == 2
    assert congestion_level_to_number("severe") == 3
    assert congestion_level_to_number("unknown") == 1


def test_clamp_congestion_bounds():
    assert clamp_congestion(-1.0) == 0.0
    assert clamp_congestion(4.2) == 3.0
    assert clamp_congestion(1.7) == 1.7
