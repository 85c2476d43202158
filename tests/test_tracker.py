from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from accelmon.core.models import PredictedReading, Reading
from accelmon.core.tracker import ForecastTracker


T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def reading(sec: int, x: float) -> Reading:
    return Reading(id=f"r{sec}", x=x, y=0.0, z=0.0, timestamp=T0 + timedelta(seconds=sec))


def predicted(i: int, sec: int, x: float) -> PredictedReading:
    return PredictedReading(id=f"prediction-{i}", x=x, y=0.0, z=0.0, timestamp=T0 + timedelta(seconds=sec))


def test_forecast_resolves_when_actuals_arrive() -> None:
    tracker = ForecastTracker()
    tracker.record("linear", [predicted(0, 1, 1.0), predicted(1, 2, 2.0)])

    assert tracker.try_resolve([reading(1, 1.5), reading(0, 0.0)]) == []
    assert tracker.latest() is None

    resolved = tracker.try_resolve([reading(2, 2.0), reading(1, 1.5), reading(0, 0.0)])
    assert len(resolved) == 1
    acc = resolved[0]
    assert acc.method == "linear"
    assert acc.matched == 2
    assert acc.axes["x"].mae == pytest.approx(0.25)
    assert acc.axes["y"].rmse == pytest.approx(0.0)
    assert tracker.latest() is acc


def test_unmatched_points_are_not_scored() -> None:
    tracker = ForecastTracker()
    tracker.record("exponential", [predicted(0, 10, 1.0), predicted(1, 20, 1.0)])
    resolved = tracker.try_resolve([reading(40, 0.0)])
    assert resolved[0].matched == 0
    assert resolved[0].axes["x"].mae is None


def test_reset() -> None:
    tracker = ForecastTracker()
    tracker.record("linear", [predicted(0, 1, 1.0)])
    tracker.try_resolve([reading(1, 1.0)])
    tracker.reset()
    assert tracker.latest() is None
    assert tracker.recent() == []
