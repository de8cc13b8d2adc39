from __future__ import annotations

from collections.abc import Sequence

import numpy as np
from sklearn.metrics import mean_absolute_error, mean_squared_error, r2_score

from forecast_engine.core.congestion_model import MAX_CONGESTION
from forecast_engine.core.schemas import ModelAccuracy


def mean_absolute_percentage_error(actual: Sequence[float], predicted: Sequence[float]) -> float:
    """MAPE in percent over the non-zero actuals; 100 when every actual is zero."""
    y_true = np.asarray(actual, dtype=float)
    y_pred = np.asarray(predicted, dtype=float)
    mask = y_true != 0
    if not mask.any():
        return 100.0
    return float(np.mean(np.abs((y_true[mask] - y_pred[mask]) / y_true[mask])) * 100)


def r_squared(actual: Sequence[float], predicted: Sequence[float]) -> float:
    if len(actual) < 2 or float(np.var(actual)) == 0.0:
        return 0.0
    return float(r2_score(actual, predicted))


def regression_metrics(actual: Sequence[float], predicted: Sequence[float]) -> dict[str, float]:
    return {
        "mse": float(mean_squared_error(actual, predicted)),
        "mae": float(mean_absolute_error(actual, predicted)),
        "r2": r_squared(actual, predicted),
    }


def model_accuracy(actual: Sequence[float], predicted: Sequence[float]) -> ModelAccuracy:
    """Accuracy report; ``accuracy`` is one minus RMSE normalised by the congestion range."""
    metrics = regression_metrics(actual, predicted)
    rmse = float(np.sqrt(metrics["mse"]))
    return ModelAccuracy(
        mape=mean_absolute_percentage_error(actual, predicted),
        rmse=rmse,
        mae=metrics["mae"],
        r2=metrics["r2"],
        accuracy=max(0.0, 1 - rmse / MAX_CONGESTION),
    )


def blend_accuracies(first: ModelAccuracy, second: ModelAccuracy) -> ModelAccuracy:
    return ModelAccuracy(
        mape=(first.mape + second.mape) / 2,
        rmse=float(np.sqrt((first.rmse**2 + second.rmse**2) / 2)),
        mae=(first.mae + second.mae) / 2,
        r2=(first.r2 + second.r2) / 2,
        accuracy=(first.accuracy + second.accuracy) / 2,
    )
