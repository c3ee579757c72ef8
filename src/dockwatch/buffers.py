"""Bounded per-container history for metrics samples and log lines.

Each container id gets its own deque, created on first push and dropped when
the container is purged. Oldest items are evicted once capacity is reached.
"""

from collections import deque
from typing import Any, Deque, Dict, Iterator


class HistoryBuffer:
    """Fixed-capacity FIFO ring per container id.

    Not thread-safe on its own; the state store serialises access.
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be at least 1, got {capacity}")
        self._capacity = capacity
        self._rings: Dict[str, Deque[Any]] = {}

    @property
    def capacity(self) -> int:
        return self._capacity

    def push(self, container_id: str, item: Any) -> None:
        """Append an item, evicting the oldest one when full."""
        ring = self._rings.get(container_id)
        if ring is None:
            ring = deque(maxlen=self._capacity)
            self._rings[container_id] = ring
        ring.append(item)

    def read(self, container_id: str) -> Iterator[Any]:
        """Return a one-shot iterator over a copy of the current contents.

        Call again to see newer items; the iterator is not a live cursor.
        """
        ring = self._rings.get(container_id)
        return iter(tuple(ring) if ring else ())

    def size(self, container_id: str) -> int:
        ring = self._rings.get(container_id)
        return len(ring) if ring else 0

    def clear(self, container_id: str) -> None:
        ring = self._rings.get(container_id)
        if ring is not None:
            ring.clear()

    def discard(self, container_id: str) -> None:
        """Destroy the ring for a container."""
        self._rings.pop(container_id, None)

    def __contains__(self, container_id: str) -> bool:
        return container_id in self._rings
