from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence

from forecast_engine.core.schemas import ModelAccuracy, Observation


class ForecastModel(ABC):
    """Capability shared by every model the ensemble trains."""

    name: str = "model"

    @abstractmethod
    def fit(self, observations: Sequence[Observation]) -> None:
        """Train from an ordered observation window, replacing prior state."""

    @property
    @abstractmethod
    def is_trained(self) -> bool: ...

    @abstractmethod
    def get_model_accuracy(self) -> ModelAccuracy | None:
        """Accuracy report, or None for models that do not backtest."""
