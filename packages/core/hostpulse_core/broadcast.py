"""Non-blocking fan-out of snapshots to a dynamic set of subscribers."""

from __future__ import annotations

import queue
import threading
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from hostpulse_telemetry.errors import SubscriberStalled
from hostpulse_telemetry.models import Snapshot

from .logging_setup import get_logger


logger = get_logger("broadcast")


class SubscriberHandle:
    """One streaming client's bounded channel.

    Only the broadcaster writes to the queue; only the transport reads it.
    """

    def __init__(self, queue_depth: int) -> None:
        self.id = str(uuid.uuid4())
        self.connected_at = datetime.now(timezone.utc)
        self._queue: queue.Queue[Snapshot] = queue.Queue(maxsize=max(1, int(queue_depth)))
        self._closed = threading.Event()
        self._floor = 0
        self.close_reason: Exception | None = None
        self.stalled_publishes = 0
        self.delivered = 0
        self.dropped = 0
        self.last_send: float | None = None

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    @property
    def depth(self) -> int:
        return self._queue.qsize()

    def close(self, reason: Exception | None = None) -> None:
        if self._closed.is_set():
            return
        self.close_reason = reason
        self._closed.set()

    def skip_through(self, sequence: int) -> None:
        """Ignore snapshots with ``sequence`` at or below this value (already backfilled)."""
        self._floor = max(self._floor, int(sequence))

    def get(self, timeout: float | None = None) -> Snapshot | None:
        """Next snapshot, or None on timeout or once closed and drained."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            if self._closed.is_set() and self._queue.empty():
                return None
            remaining = None if deadline is None else max(deadline - time.monotonic(), 0.0)
            try:
                item = self._queue.get(timeout=(0.25 if remaining is None else min(remaining, 0.25)))
            except queue.Empty:
                if deadline is not None and time.monotonic() >= deadline:
                    return None
                continue
            if item.sequence <= self._floor:
                continue
            self.last_send = time.monotonic()
            self.delivered += 1
            return item

    def _offer(self, snapshot: Snapshot) -> bool:
        """Enqueue without blocking, dropping the oldest item when full.

        Returns True if the queue was full on arrival.
        """
        try:
            self._queue.put_nowait(snapshot)
            return False
        except queue.Full:
            pass
        try:
            self._queue.get_nowait()
            self.dropped += 1
        except queue.Empty:
            pass
        try:
            self._queue.put_nowait(snapshot)
        except queue.Full:
            self.dropped += 1
        return True


@dataclass(frozen=True)
class ClientInfo:
    id: str
    connected_at: datetime
    delivered: int
    dropped: int
    queue_depth: int


class Broadcaster:
    """Registry of subscriber channels.

    ``publish`` is called only by the sampling thread and never blocks: a full
    channel loses its oldest snapshot, and a channel that stays full for more
    than ``stall_threshold`` consecutive publishes is evicted.
    """

    def __init__(self, queue_depth: int = 4, stall_threshold: int = 8) -> None:
        self.queue_depth = max(1, int(queue_depth))
        self.stall_threshold = max(1, int(stall_threshold))
        self._subscribers: dict[str, SubscriberHandle] = {}
        self._lock = threading.Lock()
        self.published = 0
        self.evicted = 0

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def subscribe(self) -> SubscriberHandle:
        handle = SubscriberHandle(self.queue_depth)
        with self._lock:
            self._subscribers[handle.id] = handle
        logger.info(f"subscriber {handle.id} added", extra={"event": "subscriber_added", "subscriber": handle.id})
        return handle

    def unsubscribe(self, handle: SubscriberHandle) -> None:
        with self._lock:
            removed = self._subscribers.pop(handle.id, None)
        handle.close()
        if removed is not None:
            logger.info(
                f"subscriber {handle.id} removed",
                extra={"event": "subscriber_removed", "subscriber": handle.id},
            )

    def publish(self, snapshot: Snapshot) -> None:
        with self._lock:
            handles = list(self._subscribers.values())
        self.published += 1

        for handle in handles:
            if handle.closed:
                self.unsubscribe(handle)
                continue
            if handle._offer(snapshot):
                handle.stalled_publishes += 1
            else:
                handle.stalled_publishes = 0
            if handle.stalled_publishes > self.stall_threshold:
                self._evict(handle)

    def _evict(self, handle: SubscriberHandle) -> None:
        reason = SubscriberStalled(handle.id, handle.stalled_publishes)
        with self._lock:
            removed = self._subscribers.pop(handle.id, None)
        handle.close(reason)
        if removed is not None:
            self.evicted += 1
            logger.warning(str(reason), extra={"event": "subscriber_evicted", "subscriber": handle.id})

    def clients(self) -> list[ClientInfo]:
        with self._lock:
            handles = list(self._subscribers.values())
        return [
            ClientInfo(
                id=h.id,
                connected_at=h.connected_at,
                delivered=h.delivered,
                dropped=h.dropped,
                queue_depth=h.depth,
            )
            for h in handles
        ]

    def close_all(self) -> None:
        with self._lock:
            handles = list(self._subscribers.values())
            self._subscribers.clear()
        for handle in handles:
            handle.close()

    def stats(self) -> dict[str, Any]:
        return {
            "subscribers": self.subscriber_count,
            "published": self.published,
            "evicted": self.evicted,
        }
