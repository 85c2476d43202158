from __future__ import annotations

from typing import Sequence

import numpy as np

from .models import AXES, AxisStatistics, Reading, ReadingStatistics


def axis_statistics(values: Sequence[float]) -> AxisStatistics:
    """Min/max/mean and population standard deviation (ddof=0)."""
    if len(values) == 0:
        return AxisStatistics()
    arr = np.asarray(values, dtype=float)
    return AxisStatistics(
        min=float(arr.min()),
        max=float(arr.max()),
        avg=float(arr.mean()),
        std_dev=float(arr.std()),
    )


def compute_statistics(readings: Sequence[Reading]) -> ReadingStatistics:
    """Summarize ``readings`` per axis. Empty input gives the empty sentinel."""
    if not readings:
        return ReadingStatistics()
    per_axis = {
        axis: axis_statistics([r.axis(axis) for r in readings])
        for axis in AXES
    }
    return ReadingStatistics(sample_count=len(readings), **per_axis)
