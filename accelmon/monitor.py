from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, List, Mapping, Optional, Tuple

from .config import AppConfig, AxisBounds
from .core.alarms import AlarmEngine
from .core.methods import ForecastSpec, build_registry
from .core.models import Alarm, PredictedReading, Reading, ReadingStatistics
from .core.predict import PredictionEngine
from .core.statistics import compute_statistics
from .core.timeutil import utc_now
from .core.tracker import ForecastAccuracy, ForecastTracker
from .data.pipeline import IngestionPipeline
from .data.report import NO_DATA, filter_by_time_window, generate_csv_report, generate_report_data, write_report
from .data.store import TelemetryStore
from .data.threshold_store import ThresholdStore
from .notifications import LogNotifier, Notifier, notify_safely


logger = logging.getLogger(__name__)

TIME_RANGES = ("5m", "15m", "1h", "24h")


@dataclass(frozen=True)
class MonitorSnapshot:
    readings: Tuple[Reading, ...]
    visible: List[Reading]
    statistics: ReadingStatistics
    active_alarms: List[Alarm]
    alarm_history: List[Alarm]
    predictions: List[PredictedReading] = field(default_factory=list)
    prediction_method: Optional[str] = None
    accuracy: Optional[ForecastAccuracy] = None
    last_update: Optional[datetime] = None
    update_count: int = 0


class TelemetryMonitor:
    """Wire ingestion, alarms and forecasting together for one dashboard.

    Every collaborator is an owned instance built from ``config``; nothing is
    shared at module level. ``init`` subscribes to the pipeline (starting
    ingestion) and ``dispose`` releases it.
    """

    def __init__(
        self,
        config: AppConfig,
        store: TelemetryStore,
        notifier: Optional[Notifier] = None,
        threshold_store: Optional[ThresholdStore] = None,
    ) -> None:
        self.config = config
        rt = config.runtime
        self.pipeline = IngestionPipeline.from_config(config, store)

        if threshold_store is None and rt.alarms.threshold_file is not None:
            threshold_store = ThresholdStore(rt.alarms.threshold_file)
        self.threshold_store = threshold_store
        stored = threshold_store.load() if threshold_store is not None else None
        self.alarms = AlarmEngine(
            stored or rt.alarms.thresholds,
            history_limit=rt.alarms.history_limit,
            persist=threshold_store.save if threshold_store is not None else None,
        )
        self.predictor = PredictionEngine(alpha=rt.prediction.alpha)
        self.tracker = ForecastTracker()
        self.notifier: Optional[Notifier] = notifier if notifier is not None else LogNotifier()
        self._registry = build_registry(self.predictor, rt.prediction)

        self._lock = threading.RLock()
        self._readings: Tuple[Reading, ...] = ()
        self._predictions: List[PredictedReading] = []
        self._last_head_id: Optional[str] = None
        self._last_update: Optional[datetime] = None
        self._update_count = 0
        self._unsubscribe = None
        self._unlisten = None

    # ───────────────────────────── lifecycle ─────────────────────────────
    def init(self) -> None:
        if self._unsubscribe is not None:
            return
        self._unlisten = self.alarms.add_listener(self._on_alarms)
        self._unsubscribe = self.pipeline.subscribe(self._on_update)
        logger.info("Monitor initialized", extra={"mode": self.pipeline.mode})

    def dispose(self) -> None:
        unsubscribe, unlisten = self._unsubscribe, self._unlisten
        self._unsubscribe = None
        self._unlisten = None
        self.pipeline.dispose()
        if unsubscribe is not None:
            unsubscribe()
        if unlisten is not None:
            unlisten()
        logger.info("Monitor disposed")

    @property
    def is_running(self) -> bool:
        return self._unsubscribe is not None

    # ───────────────────────────── updates ─────────────────────────────
    def _on_update(self, readings: Tuple[Reading, ...]) -> None:
        self.alarms.check_thresholds(readings)
        self.tracker.try_resolve(readings)
        predictions = self._forecast(readings)
        with self._lock:
            self._readings = readings
            self._predictions = predictions
            self._last_update = utc_now()
            self._update_count += 1

    def _on_alarms(self, onsets: List[Alarm]) -> None:
        for alarm in onsets:
            notify_safely(self.notifier, alarm)

    def _forecast(self, readings: Tuple[Reading, ...]) -> List[PredictedReading]:
        pcfg = self.config.runtime.prediction
        if not pcfg.enabled or not readings:
            return []
        spec: ForecastSpec = self._registry[pcfg.method]
        predictions = spec.compute(readings)
        head_id = readings[0].id
        if head_id != self._last_head_id:
            self._last_head_id = head_id
            self.tracker.record(spec.key, predictions)
        return predictions

    # ───────────────────────────── configuration ─────────────────────────────
    def reconfigure(
        self,
        refresh_interval_sec: Optional[float] = None,
        thresholds: Optional[Mapping[str, Any]] = None,
        prediction_enabled: Optional[bool] = None,
        prediction_method: Optional[str] = None,
        time_range: Optional[str] = None,
        mode: Optional[str] = None,
    ) -> None:
        """Apply settings in place; the pipeline keeps its subscribers."""
        rt = self.config.runtime
        if refresh_interval_sec is not None:
            if refresh_interval_sec <= 0:
                logger.error("Refresh interval must be positive", extra={"value": refresh_interval_sec})
            else:
                rt.refresh_interval_sec = refresh_interval_sec
                self.pipeline.reconfigure(interval_ms=refresh_interval_sec * 1000)
        if thresholds:
            for axis, bounds in thresholds.items():
                lo, hi = _bounds_pair(bounds)
                self.alarms.set_threshold(axis, lo, hi)
        if prediction_method is not None:
            if prediction_method not in self._registry:
                logger.error("Unknown prediction method", extra={"method": prediction_method})
            else:
                rt.prediction.method = prediction_method  # type: ignore[assignment]
        if prediction_enabled is not None:
            rt.prediction.enabled = prediction_enabled
            if not prediction_enabled:
                with self._lock:
                    self._predictions = []
        if time_range is not None:
            if time_range not in TIME_RANGES:
                logger.error("Unknown time range", extra={"time_range": time_range})
            else:
                rt.time_range = time_range  # type: ignore[assignment]
        if mode is not None:
            if mode not in ("poll", "watch"):
                logger.error("Unknown ingestion mode", extra={"mode": mode})
            else:
                rt.mode = mode  # type: ignore[assignment]
                self.pipeline.reconfigure(mode=mode)

    # ───────────────────────────── views ─────────────────────────────
    def snapshot(self) -> MonitorSnapshot:
        with self._lock:
            readings = self._readings
            predictions = list(self._predictions)
            last_update = self._last_update
            update_count = self._update_count
        visible = filter_by_time_window(readings, self.config.runtime.time_range)
        pcfg = self.config.runtime.prediction
        return MonitorSnapshot(
            readings=readings,
            visible=visible,
            statistics=compute_statistics(visible),
            active_alarms=self.alarms.active_alarms(),
            alarm_history=self.alarms.alarm_history(),
            predictions=predictions,
            prediction_method=pcfg.method if pcfg.enabled else None,
            accuracy=self.tracker.latest(),
            last_update=last_update,
            update_count=update_count,
        )

    # ───────────────────────────── actions ─────────────────────────────
    def clear_data(self) -> bool:
        ok = self.pipeline.clear()
        if ok:
            self.tracker.reset()
            with self._lock:
                self._predictions = []
                self._last_head_id = None
        return ok

    def clear_alarms(self) -> None:
        self.alarms.clear_active_alarms()

    def build_report(self, time_window: str = "30m", include_raw: bool = True) -> str:
        data = generate_report_data(time_window, self.pipeline.readings)
        return generate_csv_report(data, include_raw=include_raw)

    def export_report(self, path: Path, time_window: str = "30m", include_raw: bool = True) -> bool:
        content = self.build_report(time_window, include_raw)
        if content == NO_DATA:
            logger.warning("No data in report window", extra={"time_window": time_window})
            return False
        return write_report(content, path)


def _bounds_pair(bounds: Any) -> Tuple[Any, Any]:
    if isinstance(bounds, AxisBounds):
        return bounds.min, bounds.max
    if isinstance(bounds, Mapping):
        return bounds.get("min"), bounds.get("max")
    lo, hi = bounds
    return lo, hi
