from __future__ import annotations

from datetime import datetime, timezone

from accelmon.core.buffers import RollingBuffer
from accelmon.core.models import Reading


def make(ts: int) -> Reading:
    return Reading(id=f"r{ts}", x=0.0, y=0.0, z=0.0, timestamp=datetime.fromtimestamp(ts, tz=timezone.utc))


def test_rolling_buffer_caps_and_keeps_newest() -> None:
    buf = RollingBuffer(capacity=3)
    buf = buf.prepend([make(2), make(1)])
    assert buf.size() == 2
    buf = buf.prepend([make(4), make(3)])
    assert buf.size() == 3
    assert [r.id for r in buf] == ["r4", "r3", "r2"]
    assert buf.head().id == "r4"


def test_prepend_returns_new_buffer() -> None:
    first = RollingBuffer(capacity=10, items=[make(1)])
    second = first.prepend([make(2)])
    assert [r.id for r in first] == ["r1"]
    assert [r.id for r in second] == ["r2", "r1"]
    assert first.prepend([]) is first


def test_get_window() -> None:
    buf = RollingBuffer(capacity=10, items=[make(i) for i in range(9, -1, -1)])
    start = datetime.fromtimestamp(3, tz=timezone.utc)
    end = datetime.fromtimestamp(6, tz=timezone.utc)
    w = buf.get_window(start, end)
    assert [r.id for r in w] == ["r6", "r5", "r4", "r3"]


def test_cleared_keeps_capacity() -> None:
    buf = RollingBuffer(capacity=5, items=[make(1)]).cleared()
    assert len(buf) == 0
    assert buf.capacity() == 5
    assert buf.head() is None
