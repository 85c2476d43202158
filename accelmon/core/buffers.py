from __future__ import annotations

from datetime import datetime
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple

from .models import Reading


class RollingBuffer:
    """Immutable, newest-first window of readings capped at ``capacity``.

    Merges never modify a buffer; they return a new one. Consumers holding a
    reference to an older buffer keep seeing a complete, consistent window.
    """

    __slots__ = ("_capacity", "_items")

    def __init__(self, capacity: int, items: Iterable[Reading] = ()) -> None:
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self._capacity: int = capacity
        self._items: Tuple[Reading, ...] = tuple(items)[:capacity]

    def prepend(self, newer: Sequence[Reading]) -> "RollingBuffer":
        """Return a new buffer with ``newer`` (already newest-first) in front."""
        if not newer:
            return self
        return RollingBuffer(self._capacity, tuple(newer) + self._items)

    def cleared(self) -> "RollingBuffer":
        return RollingBuffer(self._capacity)

    def capacity(self) -> int:
        return self._capacity

    def size(self) -> int:
        return len(self._items)

    def head(self) -> Optional[Reading]:
        return self._items[0] if self._items else None

    def snapshot(self) -> Tuple[Reading, ...]:
        return self._items

    def get_window(self, start: datetime, end: Optional[datetime] = None) -> List[Reading]:
        return [
            r for r in self._items
            if r.timestamp >= start and (end is None or r.timestamp <= end)
        ]

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Reading]:
        return iter(self._items)

    def __getitem__(self, index: int) -> Reading:
        return self._items[index]
