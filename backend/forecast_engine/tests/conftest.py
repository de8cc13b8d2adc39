from __future__ import annotations

from datetime import datetime, timedelta
import random

import pytest

from forecast_engine.core.schemas import GeoArea, Observation


# 2024-01-01 is a Monday
START = datetime(2024, 1, 1, 0, 0)


def _synthetic_level(timestamp: datetime, rng: random.Random) -> float:
    hour = timestamp.hour
    if 7 <= hour <= 10:
        base = 2.4
    elif 17 <= hour <= 20:
        base = 2.2
    elif hour >= 22 or hour <= 5:
        base = 0.5
    else:
        base = 1.3
    if timestamp.weekday() >= 5:
        base *= 0.7
    return min(3.0, max(0.0, base + rng.uniform(-0.3, 0.3)))


def _observation(timestamp: datetime, area: GeoArea, level: float, **kwargs) -> Observation:
    return Observation(
        timestamp=timestamp,
        area=area,
        congestion_level=level,
        average_speed=max(5.0, 50.0 - 15.0 * level),
        travel_time_multiplier=1.0 + 0.5 * level,
        **kwargs,
    )


@pytest.fixture
def area():
    return GeoArea(id="connaught_place", name="Connaught Place", zone_type="commercial")


@pytest.fixture
def observation_factory(area):
    def make(count, start=START, level=None, step=timedelta(hours=1), seed=7, target_area=None, **kwargs):
        rng = random.Random(seed)
        observations = []
        for i in range(count):
            timestamp = start + i * step
            value = _synthetic_level(timestamp, rng) if level is None else level
            observations.append(_observation(timestamp, target_area or area, value, **kwargs))
        return observations

    return make


@pytest.fixture
def make_observation(area):
    def make(timestamp, level, **kwargs):
        return _observation(timestamp, kwargs.pop("target_area", area), level, **kwargs)

    return make
