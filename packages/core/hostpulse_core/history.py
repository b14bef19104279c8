"""Bounded in-memory history of published snapshots."""

from __future__ import annotations

import threading
from collections import deque

from hostpulse_telemetry.models import Snapshot


class HistoryRing:
    """Fixed-capacity FIFO of the most recent snapshots.

    One writer (the sampler) and many readers. Readers get a tuple copied
    under the lock, so they see the ring either before or after a push.
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError(f"history capacity must be >= 1, got {capacity}")
        self._capacity = int(capacity)
        self._items: deque[Snapshot] = deque(maxlen=self._capacity)
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def push(self, snapshot: Snapshot) -> None:
        with self._lock:
            self._items.append(snapshot)

    def recent(self) -> tuple[Snapshot, ...]:
        with self._lock:
            return tuple(self._items)

    def latest(self) -> Snapshot | None:
        with self._lock:
            return self._items[-1] if self._items else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
