from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Mapping

from ..config import AppConfig
from ..core.models import synthesize_id


logger = logging.getLogger(__name__)

RawRecord = Dict[str, Any]
WatchCallback = Callable[[List[RawRecord]], None]
Unsubscribe = Callable[[], None]


class TelemetryStoreError(Exception):
    """Backend failure while reading or writing telemetry."""


class TelemetryPermissionError(TelemetryStoreError):
    """Backend refused access to the telemetry path."""


def _sort_key(record: Mapping[str, Any]) -> float:
    ts = record.get("timestamp")
    if isinstance(ts, (int, float)) and not isinstance(ts, bool):
        return float(ts)
    return float("-inf")


def newest_first(records: List[RawRecord]) -> List[RawRecord]:
    """Order raw records by their epoch-seconds timestamp, newest first."""
    return sorted(records, key=_sort_key, reverse=True)


class TelemetryStore(ABC):
    """Time-ordered key-value backend holding raw accelerometer records.

    Records carry epoch-second timestamps as written by the simulator; the
    ingestion pipeline converts them to canonical instants.
    """

    @abstractmethod
    def query(self, limit: int) -> List[RawRecord]:
        """Return up to ``limit`` most recent records ordered by timestamp, newest first."""

    @abstractmethod
    def append(self, record: Mapping[str, Any]) -> str:
        """Store ``record`` and return its key."""

    @abstractmethod
    def clear(self) -> None:
        """Delete every record for the tracked source."""

    @abstractmethod
    def watch(self, on_change: WatchCallback, limit: int = 20) -> Unsubscribe:
        """Push the newest ``limit`` records to ``on_change`` whenever data changes."""


class InMemoryTelemetryStore(TelemetryStore):
    """Thread-safe store used for offline runs and tests."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._records: Dict[str, RawRecord] = {}
        self._watchers: Dict[int, tuple] = {}
        self._next_watch_id = 0

    def query(self, limit: int) -> List[RawRecord]:
        with self._lock:
            records = [dict(r, id=key) for key, r in self._records.items()]
        return newest_first(records)[:limit]

    def append(self, record: Mapping[str, Any]) -> str:
        key = str(record.get("id") or synthesize_id("rec"))
        with self._lock:
            self._records[key] = {k: v for k, v in record.items() if k != "id"}
        self._notify()
        return key

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
        self._notify()

    def watch(self, on_change: WatchCallback, limit: int = 20) -> Unsubscribe:
        with self._lock:
            watch_id = self._next_watch_id
            self._next_watch_id += 1
            self._watchers[watch_id] = (on_change, limit)
        # current contents are pushed on registration
        try:
            on_change(self.query(limit))
        except Exception:  # noqa: BLE001
            logger.exception("Error in store watch callback")

        def unsubscribe() -> None:
            with self._lock:
                self._watchers.pop(watch_id, None)

        return unsubscribe

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def _notify(self) -> None:
        with self._lock:
            watchers = list(self._watchers.values())
        for callback, limit in watchers:
            try:
                callback(self.query(limit))
            except Exception:  # noqa: BLE001
                logger.exception("Error in store watch callback")


def build_store(config: AppConfig) -> TelemetryStore:
    """Firebase REST binding when a database URL is configured, else in-memory."""
    if config.env.FIREBASE_DB_URL:
        from .firebase_store import FirebaseTelemetryStore

        return FirebaseTelemetryStore.from_config(config)
    logger.info("No FIREBASE_DB_URL configured, using in-memory telemetry store")
    return InMemoryTelemetryStore()
