from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from accelmon.core.models import Reading
from accelmon.data.pipeline import MIN_INTERVAL_MS, IngestionPipeline, merge_readings, normalize_records
from accelmon.data.store import (
    InMemoryTelemetryStore,
    TelemetryPermissionError,
    TelemetryStore,
    TelemetryStoreError,
)


def rec(ts: float, x: float = 0.0) -> Dict[str, Any]:
    return {"id": f"r{ts}", "x": x, "y": 0.0, "z": 1.0, "timestamp": ts}


class ScriptedStore(TelemetryStore):
    """Returns queued query results in order; an Exception entry is raised."""

    def __init__(self, responses: Sequence[Any] = ()) -> None:
        self.responses: List[Any] = list(responses)
        self.queries = 0
        self.clear_error: Optional[Exception] = None
        self.cleared = 0

    def query(self, limit: int) -> List[Dict[str, Any]]:
        self.queries += 1
        result = self.responses.pop(0) if self.responses else []
        if isinstance(result, Exception):
            raise result
        return list(result)[:limit]

    def append(self, record):  # noqa: ANN001, ANN201
        return "k"

    def clear(self) -> None:
        if self.clear_error is not None:
            raise self.clear_error
        self.cleared += 1

    def watch(self, on_change, limit: int = 20):  # noqa: ANN001, ANN201
        return lambda: None


class BlockingStore(ScriptedStore):
    """Blocks inside ``query`` until released."""

    def __init__(self, responses: Sequence[Any] = ()) -> None:
        super().__init__(responses)
        self.entered = threading.Event()
        self.release = threading.Event()

    def query(self, limit: int) -> List[Dict[str, Any]]:
        self.entered.set()
        self.release.wait(timeout=5)
        return super().query(limit)


def ts_list(readings: Sequence[Reading]) -> List[int]:
    return [r.timestamp_ms // 1000 for r in readings]


def collect(pipeline: IngestionPipeline) -> List[Tuple[Reading, ...]]:
    seen: List[Tuple[Reading, ...]] = []
    pipeline._subscribers.add(seen.append)  # noqa: SLF001
    return seen


def wait_for(predicate: Callable[[], bool], timeout: float = 3.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def test_cold_start_adopts_batch() -> None:
    pipeline = IngestionPipeline(ScriptedStore([[rec(3), rec(5), rec(4)]]))
    assert pipeline.fetch_cycle() is True
    assert ts_list(pipeline.readings) == [5, 4, 3]
    assert pipeline.high_water_mark == 5000


def test_merge_drops_records_at_or_before_mark() -> None:
    store = ScriptedStore([[rec(5), rec(4), rec(3)], [rec(7), rec(5), rec(3)]])
    pipeline = IngestionPipeline(store)
    pipeline.fetch_cycle()
    pipeline.fetch_cycle()
    assert ts_list(pipeline.readings) == [7, 5, 4, 3]
    assert pipeline.high_water_mark == 7000


def test_same_fetch_twice_is_idempotent() -> None:
    batch = [rec(12), rec(11), rec(10)]
    pipeline = IngestionPipeline(ScriptedStore([batch, batch]))
    pipeline.fetch_cycle()
    first = pipeline.readings
    pipeline.fetch_cycle()
    assert pipeline.readings == first


def test_high_water_mark_is_monotonic() -> None:
    store = ScriptedStore([[rec(5)], [], [rec(3)], [rec(9), rec(8)], []])
    pipeline = IngestionPipeline(store)
    marks = []
    for _ in range(5):
        pipeline.fetch_cycle()
        marks.append(pipeline.high_water_mark)
    assert marks == sorted(marks)
    assert marks[-1] == 9000


def test_empty_fetch_still_notifies_with_unchanged_buffer() -> None:
    pipeline = IngestionPipeline(ScriptedStore([[rec(1)], []]))
    seen = collect(pipeline)
    pipeline.fetch_cycle()
    pipeline.fetch_cycle()
    assert len(seen) == 2
    assert seen[1] == seen[0]
    assert seen[1] == pipeline.readings


def test_backend_error_is_treated_as_no_data(caplog) -> None:  # noqa: ANN001
    store = ScriptedStore([[rec(1)], TelemetryStoreError("network down"), [rec(2)]])
    pipeline = IngestionPipeline(store)
    seen = collect(pipeline)
    with caplog.at_level(logging.ERROR):
        pipeline.fetch_cycle()
        pipeline.fetch_cycle()
        pipeline.fetch_cycle()
    assert "Error fetching telemetry" in caplog.text
    assert len(seen) == 3
    assert ts_list(seen[1]) == [1]
    assert ts_list(pipeline.readings) == [2, 1]


def test_permission_error_logged_distinctly(caplog) -> None:  # noqa: ANN001
    pipeline = IngestionPipeline(ScriptedStore([TelemetryPermissionError("denied")]))
    with caplog.at_level(logging.ERROR):
        assert pipeline.fetch_cycle() is True
    assert "Permission denied" in caplog.text
    assert pipeline.readings == ()


def test_buffer_capacity() -> None:
    store = ScriptedStore([[rec(i) for i in range(10, 0, -1)], [rec(12), rec(11)]])
    pipeline = IngestionPipeline(store, buffer_size=5)
    pipeline.fetch_cycle()
    assert ts_list(pipeline.readings) == [10, 9, 8, 7, 6]
    pipeline.fetch_cycle()
    assert ts_list(pipeline.readings) == [12, 11, 10, 9, 8]


def test_malformed_records_are_normalized() -> None:
    readings = normalize_records([
        {"x": "abc", "y": None, "z": 2, "timestamp": "not-a-date"},
        "garbage",
        {"id": "ok", "x": 1, "y": 2, "z": 3, "timestamp": 1700000000},
    ])
    assert len(readings) == 2
    bad, good = readings
    assert (bad.x, bad.y, bad.z) == (0.0, 0.0, 2.0)
    assert bad.id.startswith("reading-")
    assert good.id == "ok"
    assert good.timestamp_ms == 1700000000000


def test_merge_readings_pure() -> None:
    from accelmon.core.buffers import RollingBuffer

    empty = RollingBuffer(10)
    buf, mark, admitted = merge_readings(empty, [], 0)
    assert buf is empty and mark == 0 and admitted == []


def test_late_subscriber_gets_current_buffer() -> None:
    pipeline = IngestionPipeline(ScriptedStore([[rec(2), rec(1)]]), interval_ms=60_000)
    pipeline.fetch_cycle()
    seen: List[Tuple[Reading, ...]] = []
    unsubscribe = pipeline.subscribe(seen.append)
    try:
        assert seen and ts_list(seen[0]) == [2, 1]
    finally:
        unsubscribe()


def test_non_callable_subscriber_is_rejected(caplog) -> None:  # noqa: ANN001
    pipeline = IngestionPipeline(ScriptedStore())
    with caplog.at_level(logging.ERROR):
        dispose = pipeline.subscribe("not callable")  # type: ignore[arg-type]
    dispose()
    assert "must be callable" in caplog.text
    assert pipeline.subscriber_count() == 0
    assert not pipeline.is_polling


def test_first_subscriber_starts_and_last_stops_polling() -> None:
    store = InMemoryTelemetryStore()
    store.append(rec(100))
    pipeline = IngestionPipeline(store, interval_ms=60_000)
    got = threading.Event()
    unsub_a = pipeline.subscribe(lambda readings: got.set())
    unsub_b = pipeline.subscribe(lambda readings: None)
    try:
        assert pipeline.is_polling
        assert got.wait(timeout=3)
        assert ts_list(pipeline.readings) == [100]
        unsub_a()
        assert pipeline.is_polling
        unsub_b()
        assert not pipeline.is_polling
        unsub_b()
    finally:
        pipeline.dispose()


def test_start_polling_interval_floor_and_restart() -> None:
    pipeline = IngestionPipeline(ScriptedStore(), interval_ms=60_000)
    try:
        pipeline.start_polling(10)
        assert pipeline.interval_ms == MIN_INTERVAL_MS
        thread = pipeline._thread  # noqa: SLF001
        pipeline.start_polling(50)
        assert pipeline._thread is thread  # noqa: SLF001
        pipeline.start_polling(500)
        assert pipeline.interval_ms == 500
        assert pipeline._thread is not thread  # noqa: SLF001
        assert pipeline.is_polling
    finally:
        pipeline.stop_polling(wait=True)
    assert not pipeline.is_polling
    pipeline.stop_polling()


def test_polling_repeats_fetches() -> None:
    store = ScriptedStore([[rec(1)], [rec(2)], [rec(3)]])
    pipeline = IngestionPipeline(store, interval_ms=100)
    pipeline.start_polling()
    try:
        assert wait_for(lambda: store.queries >= 3)
    finally:
        pipeline.stop_polling(wait=True)
    assert ts_list(pipeline.readings)[:3] == [3, 2, 1]


def test_overlapping_fetch_is_skipped() -> None:
    store = BlockingStore([[rec(1)]])
    pipeline = IngestionPipeline(store)
    worker = threading.Thread(target=pipeline.fetch_cycle)
    worker.start()
    try:
        assert store.entered.wait(timeout=3)
        assert pipeline.fetch_cycle() is False
    finally:
        store.release.set()
        worker.join(timeout=5)
    assert store.queries == 1
    assert ts_list(pipeline.readings) == [1]


def test_fetch_finishing_after_stop_is_discarded() -> None:
    store = BlockingStore([[rec(1)]])
    pipeline = IngestionPipeline(store, interval_ms=60_000)
    seen = collect(pipeline)
    pipeline.start_polling()
    assert store.entered.wait(timeout=3)
    thread = pipeline._thread  # noqa: SLF001
    pipeline.stop_polling()
    store.release.set()
    thread.join(timeout=5)
    assert not thread.is_alive()
    assert seen == []
    assert pipeline.readings == ()
    assert store.queries == 1


def test_clear_resets_state_and_notifies() -> None:
    store = ScriptedStore([[rec(5), rec(4)]])
    pipeline = IngestionPipeline(store)
    pipeline.fetch_cycle()
    seen = collect(pipeline)
    assert pipeline.clear() is True
    assert store.cleared == 1
    assert pipeline.readings == ()
    assert pipeline.high_water_mark == 0
    assert seen == [()]


def test_clear_failure_returns_false(caplog) -> None:  # noqa: ANN001
    store = ScriptedStore([[rec(5)]])
    store.clear_error = TelemetryPermissionError("denied")
    pipeline = IngestionPipeline(store)
    pipeline.fetch_cycle()
    with caplog.at_level(logging.ERROR):
        assert pipeline.clear() is False
    assert ts_list(pipeline.readings) == [5]


def test_clear_during_fetch_discards_stale_result() -> None:
    store = BlockingStore([[rec(8)]])
    pipeline = IngestionPipeline(store)
    worker = threading.Thread(target=pipeline.fetch_cycle)
    worker.start()
    assert store.entered.wait(timeout=3)
    assert pipeline.clear() is True
    store.release.set()
    worker.join(timeout=5)
    assert pipeline.readings == ()


def test_reconfigure_interval_keeps_thread() -> None:
    pipeline = IngestionPipeline(ScriptedStore(), interval_ms=60_000)
    pipeline.start_polling()
    try:
        thread = pipeline._thread  # noqa: SLF001
        pipeline.reconfigure(interval_ms=2000)
        assert pipeline.interval_ms == 2000
        assert pipeline._thread is thread  # noqa: SLF001
        pipeline.reconfigure(interval_ms=1)
        assert pipeline.interval_ms == MIN_INTERVAL_MS
    finally:
        pipeline.stop_polling(wait=True)


def test_watch_mode_is_exclusive_and_throttled() -> None:
    store = InMemoryTelemetryStore()
    store.append(rec(1))
    pipeline = IngestionPipeline(store, interval_ms=60_000, mode="watch")
    seen: List[Tuple[Reading, ...]] = []
    unsubscribe = pipeline.subscribe(seen.append)
    try:
        assert pipeline.is_watching
        assert not pipeline.is_polling
        assert ts_list(pipeline.readings) == [1]
        store.append(rec(2))
        assert ts_list(pipeline.readings) == [1]
    finally:
        unsubscribe()
    assert not pipeline.is_watching


def test_watch_push_merges_when_interval_elapsed() -> None:
    store = InMemoryTelemetryStore()
    pipeline = IngestionPipeline(store, interval_ms=100, mode="watch")
    pipeline.start_watching()
    try:
        time.sleep(0.15)
        store.append(rec(1))
        time.sleep(0.15)
        store.append(rec(2))
        assert ts_list(pipeline.readings) == [2, 1]
    finally:
        pipeline.stop_watching()


def test_switching_to_polling_releases_watch() -> None:
    store = InMemoryTelemetryStore()
    pipeline = IngestionPipeline(store, interval_ms=60_000, mode="watch")
    pipeline.start_watching()
    pipeline.start_polling()
    try:
        assert pipeline.is_polling
        assert not pipeline.is_watching
    finally:
        pipeline.dispose()


def test_restart_with_new_interval_still_fetches_immediately() -> None:
    store = BlockingStore([[rec(1)], [rec(2)]])
    pipeline = IngestionPipeline(store, interval_ms=60_000)
    pipeline.start_polling()
    try:
        assert store.entered.wait(timeout=3)
        pipeline.start_polling(30_000)
        assert pipeline.interval_ms == 30_000
        store.release.set()
        assert wait_for(lambda: store.queries >= 2)
        assert wait_for(lambda: ts_list(pipeline.readings) == [2])
    finally:
        pipeline.stop_polling(wait=True)


def test_waiting_fetch_gives_up_when_stopped() -> None:
    store = BlockingStore([[rec(1)]])
    pipeline = IngestionPipeline(store)
    worker = threading.Thread(target=pipeline.fetch_cycle)
    worker.start()
    try:
        assert store.entered.wait(timeout=3)
        stop = threading.Event()
        stop.set()
        assert pipeline.fetch_cycle(stop, wait=True) is False
    finally:
        store.release.set()
        worker.join(timeout=5)
    assert store.queries == 1


def test_record_with_bad_timestamp_is_not_readmitted() -> None:
    batch = [
        {"id": "bad", "x": 1.0, "y": 0.0, "z": 0.0, "timestamp": "garbage"},
        {"id": "r5", "x": 0.0, "y": 0.0, "z": 1.0, "timestamp": 5},
    ]
    pipeline = IngestionPipeline(ScriptedStore([batch, batch, batch]))
    pipeline.fetch_cycle()
    first = [r.id for r in pipeline.readings]
    pipeline.fetch_cycle()
    pipeline.fetch_cycle()
    assert first == ["bad", "r5"]
    assert [r.id for r in pipeline.readings] == first


def test_concurrent_first_subscribers_start_polling() -> None:
    pipeline = IngestionPipeline(ScriptedStore(), interval_ms=60_000)
    barrier = threading.Barrier(8)
    disposers: List[Callable[[], None]] = []

    def join() -> None:
        barrier.wait(timeout=5)
        disposers.append(pipeline.subscribe(lambda readings: None))

    threads = [threading.Thread(target=join) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=5)
    try:
        assert pipeline.subscriber_count() == 8
        assert pipeline.is_polling
        for dispose in disposers[:-1]:
            dispose()
        assert pipeline.is_polling
        disposers[-1]()
        assert not pipeline.is_polling
    finally:
        pipeline.dispose()
