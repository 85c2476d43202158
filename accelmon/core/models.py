from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from .timeutil import epoch_ms, normalize_timestamp, utc_now


logger = logging.getLogger(__name__)

AXES = ("x", "y", "z")

BELOW_MIN = "below_min"
ABOVE_MAX = "above_max"


def _axis_value(raw: Any) -> float:
    """Coerce an axis value to float; missing or non-numeric becomes 0.0."""
    if raw is None or isinstance(raw, bool):
        return 0.0
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return 0.0
    return value if math.isfinite(value) else 0.0


def synthesize_id(prefix: str = "reading") -> str:
    return f"{prefix}-{epoch_ms(utc_now())}-{uuid.uuid4().hex[:9]}"


@dataclass(frozen=True)
class Reading:
    id: str
    x: float
    y: float
    z: float
    timestamp: datetime

    @property
    def timestamp_ms(self) -> int:
        return epoch_ms(self.timestamp)

    def axis(self, name: str) -> float:
        return getattr(self, name)

    @classmethod
    def from_record(cls, record: Mapping[str, Any], now: Optional[datetime] = None) -> "Reading":
        """Build a reading from a raw backend record.

        Malformed fields are normalized rather than rejected: bad axis values
        become 0.0, a bad timestamp becomes ``now`` and a missing id is
        synthesized.
        """
        rid = record.get("id")
        return cls(
            id=str(rid) if rid not in (None, "") else synthesize_id(),
            x=_axis_value(record.get("x")),
            y=_axis_value(record.get("y")),
            z=_axis_value(record.get("z")),
            timestamp=normalize_timestamp(record.get("timestamp"), now),
        )


@dataclass(frozen=True)
class PredictedReading(Reading):
    is_prediction: bool = True


@dataclass(frozen=True)
class Alarm:
    id: str
    axis: str
    type: str  # "below_min" | "above_max"
    value: float
    threshold: float
    timestamp: datetime
    reading: Reading

    @property
    def key(self) -> str:
        return f"{self.axis}-{self.type}"


@dataclass(frozen=True)
class AxisStatistics:
    min: Optional[float] = None
    max: Optional[float] = None
    avg: Optional[float] = None
    std_dev: Optional[float] = None


@dataclass(frozen=True)
class ReadingStatistics:
    """Per-axis summary. An empty window has ``sample_count == 0`` and
    ``None`` in every axis field."""

    x: AxisStatistics = field(default_factory=AxisStatistics)
    y: AxisStatistics = field(default_factory=AxisStatistics)
    z: AxisStatistics = field(default_factory=AxisStatistics)
    sample_count: int = 0

    @property
    def is_empty(self) -> bool:
        return self.sample_count == 0

    def axis(self, name: str) -> AxisStatistics:
        return getattr(self, name)

    def as_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            axis: {
                "min": s.min,
                "max": s.max,
                "avg": s.avg,
                "stdDev": s.std_dev,
            }
            for axis, s in ((a, self.axis(a)) for a in AXES)
        }
        out["sampleCount"] = self.sample_count
        return out
