from __future__ import annotations

import logging
import math
import threading
from collections import deque
from typing import Callable, Deque, Dict, List, Mapping, Optional, Sequence

from ..config import AxisBounds
from .models import ABOVE_MAX, AXES, BELOW_MIN, Alarm, Reading
from .subscribers import Disposer, SubscriberRegistry
from .timeutil import epoch_ms, utc_now


logger = logging.getLogger(__name__)

WARNING = "warning"
CRITICAL = "critical"

CRITICAL_RATIO = 1.5

ThresholdSet = Dict[str, AxisBounds]
PersistFunc = Callable[[ThresholdSet], bool]


def alarm_severity(alarm: Alarm) -> str:
    """Display severity: ``critical`` when the value is more than 1.5x past its bound.

    The ratio is ``1 + excess / |threshold|``, which equals ``value / threshold``
    for a positive upper bound or a negative lower bound.
    """
    excess = alarm.value - alarm.threshold if alarm.type == ABOVE_MAX else alarm.threshold - alarm.value
    if alarm.threshold == 0:
        ratio = math.inf if excess > 0 else 1.0
    else:
        ratio = 1.0 + excess / abs(alarm.threshold)
    return CRITICAL if ratio > CRITICAL_RATIO else WARNING


def describe_alarm(alarm: Alarm) -> str:
    side = "below" if alarm.type == BELOW_MIN else "above"
    return (
        f"{alarm.axis.upper()}-axis value {alarm.value:.2f} "
        f"{side} threshold ({alarm.threshold:.2f})"
    )


class AlarmEngine:
    """Threshold monitor with per-(axis, direction) hysteresis.

    Each ``axis-direction`` key is either inactive or active. Only the
    transition into active creates a history entry and reaches listeners;
    repeated violations while active are reported by ``check_thresholds`` but
    do not duplicate the active entry or the history. Only the newest reading
    of each evaluated window is inspected.
    """

    def __init__(
        self,
        thresholds: Optional[Mapping[str, AxisBounds]] = None,
        history_limit: int = 100,
        persist: Optional[PersistFunc] = None,
    ) -> None:
        self._lock = threading.RLock()
        self._thresholds: ThresholdSet = {axis: AxisBounds() for axis in AXES}
        if thresholds:
            for axis, bounds in thresholds.items():
                if axis in AXES:
                    self._thresholds[axis] = bounds.model_copy()
        self._active: Dict[str, Alarm] = {}
        self._history: Deque[Alarm] = deque(maxlen=history_limit)
        self._listeners: SubscriberRegistry[List[Alarm]] = SubscriberRegistry("alarm-listeners")
        self._persist = persist

    # ───────────────────────────── thresholds ─────────────────────────────
    def set_threshold(self, axis: str, min_value: float, max_value: float) -> bool:
        if axis not in AXES:
            logger.error("Invalid axis for threshold", extra={"axis": axis})
            return False
        try:
            bounds = AxisBounds(min=min_value, max=max_value)
        except ValueError as exc:
            logger.error("Invalid threshold bounds", extra={"axis": axis, "error": str(exc)})
            return False
        with self._lock:
            self._thresholds[axis] = bounds
            snapshot = self.get_thresholds()
        logger.info("Threshold updated", extra={"axis": axis, "min": min_value, "max": max_value})
        if self._persist is not None:
            try:
                self._persist(snapshot)
            except Exception:  # noqa: BLE001
                logger.exception("Failed to persist thresholds")
        return True

    def get_thresholds(self) -> ThresholdSet:
        with self._lock:
            return {axis: b.model_copy() for axis, b in self._thresholds.items()}

    # ───────────────────────────── evaluation ─────────────────────────────
    def check_thresholds(self, readings: Sequence[Reading]) -> List[Alarm]:
        """Evaluate the newest reading; return every violation it shows."""
        if not readings:
            return []
        latest = readings[0]
        now = utc_now()
        triggered: List[Alarm] = []
        onsets: List[Alarm] = []
        with self._lock:
            for axis in AXES:
                value = latest.axis(axis)
                bounds = self._thresholds[axis]
                for direction, violated, threshold in (
                    (BELOW_MIN, value < bounds.min, bounds.min),
                    (ABOVE_MAX, value > bounds.max, bounds.max),
                ):
                    key = f"{axis}-{direction}"
                    if not violated:
                        self._active.pop(key, None)
                        continue
                    alarm = Alarm(
                        id=f"{key}-{epoch_ms(now)}",
                        axis=axis,
                        type=direction,
                        value=value,
                        threshold=threshold,
                        timestamp=now,
                        reading=latest,
                    )
                    triggered.append(alarm)
                    if key not in self._active:
                        self._active[key] = alarm
                        self._history.append(alarm)
                        onsets.append(alarm)
        if onsets:
            logger.warning(
                "Alarm onset",
                extra={"alarms": [a.key for a in onsets], "reading_id": latest.id},
            )
            self._listeners.broadcast(onsets)
        return triggered

    # ───────────────────────────── listeners ─────────────────────────────
    def add_listener(self, callback: Callable[[List[Alarm]], None]) -> Disposer:
        """Register ``callback`` for alarm onsets; returns its disposer."""
        return self._listeners.add(callback)

    # ───────────────────────────── accessors ─────────────────────────────
    def active_alarms(self) -> List[Alarm]:
        with self._lock:
            return list(self._active.values())

    def alarm_history(self) -> List[Alarm]:
        with self._lock:
            return list(self._history)

    def clear_active_alarms(self) -> None:
        with self._lock:
            self._active.clear()
