from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from .models import AXES, PredictedReading, Reading
from .predict import DEFAULT_INTERVAL_MS, mean_absolute_error, root_mean_square_error


@dataclass
class AxisAccuracy:
    mae: Optional[float] = None
    rmse: Optional[float] = None


@dataclass
class ForecastAccuracy:
    method: str
    matched: int
    axes: Dict[str, AxisAccuracy] = field(default_factory=dict)


@dataclass
class _PendingForecast:
    method: str
    points: List[PredictedReading]


class ForecastTracker:
    """Keep recent forecasts and score them once the real readings arrive.

    A forecast resolves when the buffer's newest reading reaches its last
    predicted timestamp. Each predicted point is paired with the actual
    reading nearest in time, within half a sample interval.
    """

    def __init__(self, max_pending: int = 50, history_limit: int = 100) -> None:
        self._lock = threading.RLock()
        self._pending: List[_PendingForecast] = []
        self._results: List[ForecastAccuracy] = []
        self._max_pending = max_pending
        self._history_limit = history_limit

    def record(self, method: str, points: Sequence[PredictedReading]) -> None:
        if not points:
            return
        with self._lock:
            self._pending.append(_PendingForecast(method=method, points=list(points)))
            if len(self._pending) > self._max_pending:
                del self._pending[0]

    def try_resolve(self, readings: Sequence[Reading]) -> List[ForecastAccuracy]:
        if not readings:
            return []
        newest_ms = readings[0].timestamp_ms
        resolved: List[ForecastAccuracy] = []
        with self._lock:
            still_pending: List[_PendingForecast] = []
            for forecast in self._pending:
                if forecast.points[-1].timestamp_ms > newest_ms:
                    still_pending.append(forecast)
                    continue
                resolved.append(self._score(forecast, readings))
            self._pending = still_pending
            self._results.extend(resolved)
            if len(self._results) > self._history_limit:
                del self._results[: len(self._results) - self._history_limit]
        return resolved

    def latest(self) -> Optional[ForecastAccuracy]:
        with self._lock:
            return self._results[-1] if self._results else None

    def recent(self, limit: int = 100) -> List[ForecastAccuracy]:
        with self._lock:
            return list(self._results[-limit:])

    def reset(self) -> None:
        with self._lock:
            self._pending.clear()
            self._results.clear()

    @staticmethod
    def _score(forecast: _PendingForecast, readings: Sequence[Reading]) -> ForecastAccuracy:
        points = forecast.points
        if len(points) >= 2:
            step = abs(points[1].timestamp_ms - points[0].timestamp_ms) or DEFAULT_INTERVAL_MS
        else:
            step = DEFAULT_INTERVAL_MS
        tolerance = step / 2

        pairs: List[tuple] = []
        for point in points:
            target = point.timestamp_ms
            nearest = min(readings, key=lambda r: abs(r.timestamp_ms - target))
            if abs(nearest.timestamp_ms - target) <= tolerance:
                pairs.append((nearest, point))

        axes: Dict[str, AxisAccuracy] = {}
        for axis in AXES:
            actual = [a.axis(axis) for a, _ in pairs]
            predicted = [p.axis(axis) for _, p in pairs]
            axes[axis] = AxisAccuracy(
                mae=mean_absolute_error(actual, predicted),
                rmse=root_mean_square_error(actual, predicted),
            )
        return ForecastAccuracy(method=forecast.method, matched=len(pairs), axes=axes)
