from __future__ import annotations

import logging
import random
import threading
import time
from typing import Any, Dict, List, Optional

from .store import TelemetryStore, TelemetryStoreError


logger = logging.getLogger(__name__)


class AccelerometerSimulator:
    """Stand-in for the physics simulator: writes random readings to a store.

    Values are uniform in [-1, 1] per axis; timestamps are epoch seconds, the
    format the simulator writes to the backend.
    """

    def __init__(self, store: TelemetryStore, rng: Optional[random.Random] = None) -> None:
        self.store = store
        self._rng = rng or random.Random()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def make_point(self, timestamp: Optional[float] = None) -> Dict[str, Any]:
        return {
            "x": self._rng.uniform(-1.0, 1.0),
            "y": self._rng.uniform(-1.0, 1.0),
            "z": self._rng.uniform(-1.0, 1.0),
            "timestamp": int(time.time()) if timestamp is None else timestamp,
        }

    def make_batch(self, count: int = 10, now: Optional[float] = None, spacing_sec: int = 60) -> List[Dict[str, Any]]:
        """``count`` points ``spacing_sec`` apart, newest first."""
        base = int(time.time()) if now is None else int(now)
        return [
            dict(self.make_point(base - i * spacing_sec), id=f"dummy-{i}")
            for i in range(count)
        ]

    def seed(self, count: int = 10) -> int:
        written = 0
        for record in self.make_batch(count):
            record.pop("id", None)
            self.store.append(record)
            written += 1
        return written

    def start(self, interval_sec: float = 1.0) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, args=(interval_sec,), name="AccelerometerSimulator", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=5)

    def _run(self, interval_sec: float) -> None:
        while not self._stop.is_set():
            try:
                self.store.append(self.make_point(time.time()))
            except TelemetryStoreError as exc:
                logger.error("Simulator failed to write reading", extra={"error": str(exc)})
            self._stop.wait(timeout=interval_sec)
