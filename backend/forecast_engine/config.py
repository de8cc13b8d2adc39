from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class EngineSettings:
    min_observations: int = 50
    polynomial_degree: int = 2
    ridge_lambda: float = 0.01
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> EngineSettings:
        return cls(
            min_observations=int(os.getenv("FORECAST_MIN_OBSERVATIONS", "50")),
            polynomial_degree=int(os.getenv("FORECAST_POLYNOMIAL_DEGREE", "2")),
            ridge_lambda=float(os.getenv("FORECAST_RIDGE_LAMBDA", "0.01")),
            log_level=os.getenv("FORECAST_LOG_LEVEL", "INFO").upper(),
        )
