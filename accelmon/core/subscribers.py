from __future__ import annotations

import logging
import threading
from typing import Callable, Generic, List, TypeVar


logger = logging.getLogger(__name__)

T = TypeVar("T")

Disposer = Callable[[], None]


def _noop() -> None:
    return None


class SubscriberRegistry(Generic[T]):
    """Fan-out broadcaster with explicit disposers.

    ``broadcast`` iterates over a copy of the subscriber list, so a callback
    that subscribes or unsubscribes during delivery does not affect the
    current cycle. Each subscriber receives at most one delivery per call.
    """

    def __init__(self, name: str = "subscribers") -> None:
        self._name = name
        self._lock = threading.RLock()
        self._callbacks: List[Callable[[T], None]] = []

    def add(self, callback: Callable[[T], None]) -> Disposer:
        if not callable(callback):
            logger.error("Subscriber callback must be callable", extra={"registry": self._name})
            return _noop
        with self._lock:
            self._callbacks.append(callback)

        removed = False

        def dispose() -> None:
            nonlocal removed
            if removed:
                return
            removed = True
            self.remove(callback)

        return dispose

    def remove(self, callback: Callable[[T], None]) -> bool:
        with self._lock:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                return False
            return True

    def clear(self) -> None:
        with self._lock:
            self._callbacks.clear()

    def broadcast(self, payload: T) -> int:
        """Deliver ``payload`` to every subscriber; return the delivery count."""
        with self._lock:
            targets = list(self._callbacks)
        delivered = 0
        for callback in targets:
            try:
                callback(payload)
                delivered += 1
            except Exception:  # noqa: BLE001
                logger.exception("Error in subscriber callback", extra={"registry": self._name})
        return delivered

    def __len__(self) -> int:
        with self._lock:
            return len(self._callbacks)
