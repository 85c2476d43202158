from __future__ import annotations

import logging
import threading
import time
from collections.abc import Mapping
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from ..config import AppConfig
from ..core.buffers import RollingBuffer
from ..core.models import Reading
from ..core.subscribers import Disposer, SubscriberRegistry
from ..core.timeutil import utc_now
from .store import RawRecord, TelemetryPermissionError, TelemetryStore, TelemetryStoreError, Unsubscribe


logger = logging.getLogger(__name__)

MIN_INTERVAL_MS = 100

Snapshot = Tuple[Reading, ...]


def _noop() -> None:
    return None


def normalize_records(records: Iterable[RawRecord]) -> List[Reading]:
    """Turn raw backend records into readings; non-mapping entries are skipped."""
    now = utc_now()
    readings: List[Reading] = []
    for record in records:
        if not isinstance(record, Mapping):
            logger.warning("Skipping malformed record", extra={"record": repr(record)})
            continue
        readings.append(Reading.from_record(record, now))
    return readings


def merge_readings(
    buffer: RollingBuffer,
    fetched: Sequence[Reading],
    high_water_mark: int,
) -> Tuple[RollingBuffer, int, List[Reading]]:
    """Merge a fetch result into ``buffer``.

    Returns the new buffer, the new high-water-mark (epoch ms) and the
    readings admitted. An empty buffer adopts the whole batch. Otherwise only
    readings strictly newer than the mark are admitted; everything else is a
    duplicate from an overlapping read. A reading whose id is already
    buffered is also a duplicate, even when its timestamp fell back to "now".
    """
    if len(buffer) == 0:
        admitted = sorted(fetched, key=lambda r: r.timestamp_ms, reverse=True)
    else:
        seen = {r.id for r in buffer}
        admitted = sorted(
            (r for r in fetched if r.timestamp_ms > high_water_mark and r.id not in seen),
            key=lambda r: r.timestamp_ms,
            reverse=True,
        )
    if not admitted:
        return buffer, high_water_mark, []
    new_mark = max(high_water_mark, admitted[0].timestamp_ms)
    return buffer.prepend(admitted), new_mark, admitted


class IngestionPipeline:
    """Poll or watch a TelemetryStore and publish a rolling buffer.

    The buffer, the high-water-mark and the subscriber set belong to the
    pipeline; subscribers receive immutable tuples (newest first). Fetch
    cycles never overlap: a tick that finds one in flight is skipped.
    """

    def __init__(
        self,
        store: TelemetryStore,
        interval_ms: float = 5000,
        fetch_limit: int = 20,
        buffer_size: int = 1000,
        mode: str = "poll",
    ) -> None:
        if mode not in ("poll", "watch"):
            raise ValueError(f"Unknown ingestion mode: {mode}")
        self._store = store
        self._lock = threading.RLock()
        self._fetch_lock = threading.Lock()
        self._interval_ms: int = max(MIN_INTERVAL_MS, int(interval_ms))
        self._fetch_limit = fetch_limit
        self._mode = mode
        self._buffer = RollingBuffer(buffer_size)
        self._high_water_mark: int = 0
        self._generation: int = 0
        self._subscribers: SubscriberRegistry[Snapshot] = SubscriberRegistry("pipeline")
        self._thread: Optional[threading.Thread] = None
        self._stop: Optional[threading.Event] = None
        self._unwatch: Optional[Unsubscribe] = None
        self._last_push: float = float("-inf")

    @classmethod
    def from_config(cls, config: AppConfig, store: TelemetryStore) -> "IngestionPipeline":
        rt = config.runtime
        return cls(
            store,
            interval_ms=rt.refresh_interval_sec * 1000,
            fetch_limit=rt.fetch_limit,
            buffer_size=rt.buffer_size,
            mode=rt.mode,
        )

    # ───────────────────────────── accessors ─────────────────────────────
    @property
    def interval_ms(self) -> int:
        return self._interval_ms

    @property
    def mode(self) -> str:
        return self._mode

    @property
    def is_polling(self) -> bool:
        with self._lock:
            return self._thread is not None

    @property
    def is_watching(self) -> bool:
        with self._lock:
            return self._unwatch is not None

    @property
    def readings(self) -> Snapshot:
        with self._lock:
            return self._buffer.snapshot()

    @property
    def high_water_mark(self) -> int:
        with self._lock:
            return self._high_water_mark

    def subscriber_count(self) -> int:
        return len(self._subscribers)

    # ───────────────────────────── polling ─────────────────────────────
    def start_polling(self, interval_ms: Optional[float] = None) -> None:
        requested = self._interval_ms if interval_ms is None else interval_ms
        safe = max(MIN_INTERVAL_MS, int(requested))
        with self._lock:
            running = self._thread is not None
            if running and safe == self._interval_ms:
                logger.debug("Already polling, no change needed", extra={"interval_ms": safe})
                return
        if running:
            logger.info(
                "Restarting polling with new interval",
                extra={"old_interval_ms": self._interval_ms, "interval_ms": safe},
            )
            self.stop_polling()
        self.stop_watching()
        with self._lock:
            if self._thread is not None:
                return
            self._interval_ms = safe
            stop = threading.Event()
            self._stop = stop
            self._thread = threading.Thread(
                target=self._run, args=(stop,), name="IngestionPipeline", daemon=True
            )
            self._thread.start()
        logger.info("Started polling", extra={"interval_ms": safe})

    def stop_polling(self, wait: bool = False) -> None:
        """Cancel the recurring fetch. An in-flight fetch is discarded when it returns."""
        with self._lock:
            thread, stop = self._thread, self._stop
            self._thread = None
            self._stop = None
        if stop is None:
            return
        stop.set()
        logger.info("Stopped polling")
        if wait and thread is not None and thread is not threading.current_thread():
            thread.join(timeout=5)

    def _run(self, stop: threading.Event) -> None:
        # the first tick waits out a fetch left over from a previous worker
        first = True
        while not stop.is_set():
            start = time.monotonic()
            self.fetch_cycle(stop, wait=first)
            first = False
            elapsed = time.monotonic() - start
            sleep_for = max(0.0, self._interval_ms / 1000.0 - elapsed)
            stop.wait(timeout=sleep_for)

    def fetch_cycle(self, stop: Optional[threading.Event] = None, wait: bool = False) -> bool:
        """Query the store once and merge the result.

        Returns False when another fetch is in flight. With ``wait`` the call
        blocks until that fetch finishes (or ``stop`` is set) instead.
        """
        if not self._acquire_fetch(stop, wait):
            logger.debug("Fetch already in flight, skipping tick")
            return False
        try:
            with self._lock:
                generation = self._generation
            records = self._fetch()
            if stop is not None and stop.is_set():
                logger.debug("Polling stopped during fetch, discarding result")
                return True
            self._ingest(records, generation)
            return True
        finally:
            self._fetch_lock.release()

    def _acquire_fetch(self, stop: Optional[threading.Event], wait: bool) -> bool:
        if not wait:
            return self._fetch_lock.acquire(blocking=False)
        while not self._fetch_lock.acquire(timeout=0.05):
            if stop is not None and stop.is_set():
                return False
        if stop is not None and stop.is_set():
            self._fetch_lock.release()
            return False
        return True

    def _fetch(self) -> List[RawRecord]:
        try:
            return list(self._store.query(self._fetch_limit))
        except TelemetryPermissionError as exc:
            logger.error(
                "Permission denied reading telemetry; check database rules",
                extra={"error": str(exc)},
            )
        except TelemetryStoreError as exc:
            logger.error("Error fetching telemetry", extra={"error": str(exc)})
        except Exception:  # noqa: BLE001
            logger.exception("Unexpected error fetching telemetry")
        return []

    def _ingest(self, records: Sequence[RawRecord], generation: int) -> None:
        readings = normalize_records(records)
        with self._lock:
            if generation != self._generation:
                logger.debug("Buffer was cleared during fetch, discarding result")
                return
            buffer, mark, admitted = merge_readings(self._buffer, readings, self._high_water_mark)
            self._buffer = buffer
            self._high_water_mark = mark
            snapshot = buffer.snapshot()
        logger.debug(
            "Fetch cycle merged",
            extra={"fetched": len(readings), "admitted": len(admitted), "buffered": len(snapshot)},
        )
        self._subscribers.broadcast(snapshot)

    # ───────────────────────────── watch mode ─────────────────────────────
    def start_watching(self) -> None:
        """Switch to backend push notifications (stops polling)."""
        self.stop_polling()
        with self._lock:
            if self._unwatch is not None:
                return
            self._last_push = float("-inf")
        try:
            unwatch = self._store.watch(self._on_push, limit=self._fetch_limit)
        except TelemetryStoreError as exc:
            logger.error("Failed to watch telemetry store", extra={"error": str(exc)})
            return
        with self._lock:
            if self._unwatch is None:
                self._unwatch = unwatch
                unwatch = None
        if unwatch is not None:
            unwatch()
        logger.info("Started watching telemetry store", extra={"throttle_ms": self._interval_ms})

    def stop_watching(self) -> None:
        with self._lock:
            unwatch = self._unwatch
            self._unwatch = None
        if unwatch is None:
            return
        try:
            unwatch()
        except Exception:  # noqa: BLE001
            logger.exception("Error releasing telemetry watch")
        logger.info("Stopped watching telemetry store")

    def _on_push(self, records: List[RawRecord]) -> None:
        now = time.monotonic()
        with self._lock:
            if now - self._last_push < self._interval_ms / 1000.0:
                logger.debug("Throttling push update")
                return
            self._last_push = now
            generation = self._generation
        if not self._fetch_lock.acquire(blocking=False):
            return
        try:
            self._ingest(records, generation)
        finally:
            self._fetch_lock.release()

    # ───────────────────────────── subscriptions ─────────────────────────────
    def subscribe(self, callback: Callable[[Snapshot], None]) -> Disposer:
        """Register ``callback`` for buffer updates and return its disposer.

        A late subscriber immediately receives the current buffer. The first
        subscriber starts ingestion; the last unsubscribe stops it.
        """
        if not callable(callback):
            logger.error("Subscribe callback must be callable")
            return _noop
        with self._lock:
            dispose = self._subscribers.add(callback)
            first = len(self._subscribers) == 1
        snapshot = self.readings
        if snapshot:
            try:
                callback(snapshot)
            except Exception:  # noqa: BLE001
                logger.exception("Error in subscriber callback")
        if first:
            self._start()

        def unsubscribe() -> None:
            with self._lock:
                dispose()
                last = len(self._subscribers) == 0
            if last:
                self.stop_polling()
                self.stop_watching()

        return unsubscribe

    def _start(self) -> None:
        if self._mode == "watch":
            self.start_watching()
        else:
            self.start_polling(self._interval_ms)

    def reconfigure(self, interval_ms: Optional[float] = None, mode: Optional[str] = None) -> None:
        """Adjust cadence or mode in place without dropping subscribers.

        A new interval takes effect from the next tick of the running loop
        (or the next push in watch mode).
        """
        if interval_ms is not None:
            with self._lock:
                self._interval_ms = max(MIN_INTERVAL_MS, int(interval_ms))
            logger.info("Refresh interval changed", extra={"interval_ms": self._interval_ms})
        if mode is not None and mode != self._mode:
            if mode not in ("poll", "watch"):
                logger.error("Unknown ingestion mode", extra={"mode": mode})
                return
            active = self.is_polling or self.is_watching
            self.stop_polling()
            self.stop_watching()
            self._mode = mode
            if active:
                self._start()

    # ───────────────────────────── lifecycle ─────────────────────────────
    def clear(self) -> bool:
        """Delete all backend records and reset local state; False on failure."""
        try:
            self._store.clear()
        except TelemetryStoreError as exc:
            logger.error("Error clearing telemetry", extra={"error": str(exc)})
            return False
        except Exception:  # noqa: BLE001
            logger.exception("Unexpected error clearing telemetry")
            return False
        with self._lock:
            self._buffer = self._buffer.cleared()
            self._high_water_mark = 0
            self._generation += 1
        logger.info("Cleared telemetry")
        self._subscribers.broadcast(())
        return True

    def dispose(self) -> None:
        self.stop_polling(wait=True)
        self.stop_watching()
        self._subscribers.clear()
