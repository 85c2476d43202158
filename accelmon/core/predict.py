"""Short-horizon forecasting over the rolling buffer.

Both strategies work per axis on the newest-first buffer and emit
``PredictedReading`` values whose timestamps continue from the newest reading
at the most recently observed sample interval.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import List, Optional, Sequence

import numpy as np

from .models import AXES, PredictedReading, Reading


logger = logging.getLogger(__name__)

LINEAR_WINDOW = 30
SMOOTHING_WINDOW = 10
MIN_REGRESSION_SAMPLES = 5
DEFAULT_INTERVAL_MS = 1000


def linear_forecast(values: Sequence[float], points_ahead: int, window: int = LINEAR_WINDOW) -> List[float]:
    """OLS of value against sample index over the newest ``window`` values.

    ``values`` is newest-first. Fewer than five samples repeat the newest
    value instead of fitting a line.
    """
    if len(values) == 0:
        return []
    if len(values) < MIN_REGRESSION_SAMPLES:
        return [float(values[0])] * points_ahead

    # chronological order so the index grows with time
    recent = np.asarray(values[:window], dtype=float)[::-1]
    n = recent.size
    idx = np.arange(n, dtype=float)
    mean_x = idx.mean()
    mean_y = recent.mean()
    denominator = float(np.sum((idx - mean_x) ** 2))
    numerator = float(np.sum((idx - mean_x) * (recent - mean_y)))
    slope = numerator / denominator if denominator != 0 else 0.0
    intercept = mean_y - slope * mean_x
    future = np.arange(n, n + points_ahead, dtype=float)
    return [float(v) for v in slope * future + intercept]


def exponential_forecast(
    values: Sequence[float],
    points_ahead: int,
    alpha: float = 0.3,
    window: int = SMOOTHING_WINDOW,
) -> List[float]:
    """Simple exponential smoothing; the forecast is flat by construction.

    The level is seeded with the newest value and then updated over the rest
    of the window from oldest to newest.
    """
    if len(values) == 0:
        return []
    recent = [float(v) for v in values[:window]]
    level = recent[0]
    for value in reversed(recent[1:]):
        level = alpha * value + (1 - alpha) * level
    return [level] * points_ahead


def sample_interval_ms(readings: Sequence[Reading]) -> int:
    if len(readings) >= 2:
        interval = abs(readings[0].timestamp_ms - readings[1].timestamp_ms)
        if interval > 0:
            return interval
    return DEFAULT_INTERVAL_MS


def mean_absolute_error(actual: Sequence[float], predicted: Sequence[float]) -> Optional[float]:
    if len(actual) != len(predicted):
        logger.error(
            "Actual and predicted value arrays must be the same length",
            extra={"actual": len(actual), "predicted": len(predicted)},
        )
        return None
    if len(actual) == 0:
        return None
    diff = np.asarray(actual, dtype=float) - np.asarray(predicted, dtype=float)
    return float(np.mean(np.abs(diff)))


def root_mean_square_error(actual: Sequence[float], predicted: Sequence[float]) -> Optional[float]:
    if len(actual) != len(predicted):
        logger.error(
            "Actual and predicted value arrays must be the same length",
            extra={"actual": len(actual), "predicted": len(predicted)},
        )
        return None
    if len(actual) == 0:
        return None
    diff = np.asarray(actual, dtype=float) - np.asarray(predicted, dtype=float)
    return float(np.sqrt(np.mean(diff ** 2)))


class PredictionEngine:
    """Produce forward synthetic samples from the newest-first buffer."""

    def __init__(
        self,
        alpha: float = 0.3,
        linear_window: int = LINEAR_WINDOW,
        smoothing_window: int = SMOOTHING_WINDOW,
    ) -> None:
        self.alpha = alpha
        self.linear_window = linear_window
        self.smoothing_window = smoothing_window

    def predict_linear(self, readings: Sequence[Reading], points_ahead: int = 10) -> List[PredictedReading]:
        if not readings:
            logger.debug("No readings to forecast from")
            return []
        per_axis = {
            axis: linear_forecast([r.axis(axis) for r in readings], points_ahead, self.linear_window)
            for axis in AXES
        }
        return self._assemble(readings, per_axis, points_ahead)

    def predict_exponential(
        self,
        readings: Sequence[Reading],
        points_ahead: int = 5,
        alpha: Optional[float] = None,
    ) -> List[PredictedReading]:
        if not readings:
            logger.debug("No readings to forecast from")
            return []
        a = self.alpha if alpha is None else alpha
        per_axis = {
            axis: exponential_forecast(
                [r.axis(axis) for r in readings], points_ahead, a, self.smoothing_window
            )
            for axis in AXES
        }
        return self._assemble(readings, per_axis, points_ahead)

    def _assemble(
        self,
        readings: Sequence[Reading],
        per_axis: dict,
        points_ahead: int,
    ) -> List[PredictedReading]:
        last = readings[0].timestamp
        step = timedelta(milliseconds=sample_interval_ms(readings))
        return [
            PredictedReading(
                id=f"prediction-{i}",
                x=per_axis["x"][i],
                y=per_axis["y"][i],
                z=per_axis["z"][i],
                timestamp=last + step * (i + 1),
            )
            for i in range(points_ahead)
        ]
