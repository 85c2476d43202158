from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import List

import pytest

from accelmon.config import PredictionConfig
from accelmon.core.methods import build_registry
from accelmon.core.models import Reading
from accelmon.core.predict import (
    PredictionEngine,
    exponential_forecast,
    linear_forecast,
    mean_absolute_error,
    root_mean_square_error,
)


T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def series(values: List[float], step_ms: int = 1000) -> List[Reading]:
    """Readings newest-first from chronological ``values``."""
    out = [
        Reading(id=f"r{i}", x=v, y=-v, z=1.0, timestamp=T0 + timedelta(milliseconds=i * step_ms))
        for i, v in enumerate(values)
    ]
    return out[::-1]


def test_linear_continues_trend() -> None:
    readings = series([2.0 * i for i in range(10)])
    preds = PredictionEngine().predict_linear(readings, points_ahead=1)
    assert len(preds) == 1
    assert preds[0].x == pytest.approx(20.0)
    assert preds[0].y == pytest.approx(-20.0)
    assert preds[0].z == pytest.approx(1.0)
    assert preds[0].is_prediction
    assert preds[0].id == "prediction-0"
    assert preds[0].timestamp == readings[0].timestamp + timedelta(seconds=1)


def test_linear_uses_recent_window_only() -> None:
    noisy_past = [100.0 if i % 2 else -100.0 for i in range(20)]
    trend = [float(i) for i in range(30)]
    values = linear_forecast(list(reversed(noisy_past + trend)), points_ahead=3)
    assert values == pytest.approx([30.0, 31.0, 32.0])


def test_linear_degenerate_repeats_latest() -> None:
    readings = series([1.0, 5.0, 7.0])
    preds = PredictionEngine().predict_linear(readings, points_ahead=4)
    assert [p.x for p in preds] == [7.0] * 4


def test_exponential_is_flat() -> None:
    readings = series([0.3, -0.2, 0.8, 0.1, 0.5, -0.4, 0.9, 0.0, 0.2, 0.6, 0.7])
    preds = PredictionEngine().predict_exponential(readings, points_ahead=5)
    assert len(preds) == 5
    assert len({p.x for p in preds}) == 1
    assert len({p.y for p in preds}) == 1


def test_exponential_value() -> None:
    # newest-first [3, 2, 1]: seed 3, then 1 and 2 in chronological order
    assert exponential_forecast([3.0, 2.0, 1.0], points_ahead=2, alpha=0.3) == pytest.approx([2.28, 2.28])


def test_timestamps_follow_observed_interval() -> None:
    readings = series([1.0, 2.0, 3.0, 4.0, 5.0, 6.0], step_ms=250)
    preds = PredictionEngine().predict_linear(readings, points_ahead=3)
    last = readings[0].timestamp
    assert [p.timestamp for p in preds] == [last + timedelta(milliseconds=250 * k) for k in (1, 2, 3)]


def test_interval_falls_back_to_one_second() -> None:
    single = series([4.0])
    preds = PredictionEngine().predict_exponential(single, points_ahead=2)
    assert [p.x for p in preds] == [4.0, 4.0]
    assert preds[1].timestamp - single[0].timestamp == timedelta(seconds=2)

    same_time = [
        Reading(id="a", x=1.0, y=0.0, z=0.0, timestamp=T0),
        Reading(id="b", x=1.0, y=0.0, z=0.0, timestamp=T0),
    ]
    preds = PredictionEngine().predict_linear(same_time, points_ahead=1)
    assert preds[0].timestamp == T0 + timedelta(seconds=1)


def test_empty_input() -> None:
    engine = PredictionEngine()
    assert engine.predict_linear([], 10) == []
    assert engine.predict_exponential([], 5) == []


def test_error_metrics() -> None:
    assert mean_absolute_error([1, 2, 3], [1, 2, 5]) == pytest.approx(2 / 3)
    assert root_mean_square_error([1, 2, 3], [1, 2, 5]) == pytest.approx(math.sqrt(4 / 3))


def test_error_metrics_length_mismatch(caplog) -> None:  # noqa: ANN001
    with caplog.at_level(logging.ERROR):
        assert mean_absolute_error([1, 2], [1]) is None
        assert root_mean_square_error([1], [1, 2]) is None
    assert "same length" in caplog.text


def test_registry_defaults() -> None:
    registry = build_registry(PredictionEngine(), PredictionConfig())
    readings = series([float(i) for i in range(12)])
    assert set(registry) == {"linear", "exponential"}
    assert len(registry["linear"].compute(readings)) == 10
    assert len(registry["exponential"].compute(readings)) == 5
