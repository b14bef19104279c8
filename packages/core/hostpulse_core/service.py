"""Sampling loop plus the read/subscribe surface exposed to transports."""

from __future__ import annotations

import threading
import time
from datetime import datetime, timezone
from importlib import metadata
from typing import Any, Callable

from hostpulse_telemetry.models import Snapshot
from hostpulse_telemetry.source import CounterSource, select_counter_source

from .broadcast import Broadcaster, SubscriberHandle
from .config import DaemonConfig
from .history import HistoryRing
from .logging_setup import get_logger
from .sampler import Sampler


logger = get_logger("service")


def app_version() -> str:
    try:
        return metadata.version("hostpulse")
    except metadata.PackageNotFoundError:
        return "0.1.0"


class MetricsService:
    """Wires source, sampler, history, and broadcaster together.

    A single daemon thread calls ``Sampler.tick`` on a fixed cadence derived
    from monotonic deadlines. An overrun skips the missed ticks instead of
    firing them back to back.
    """

    def __init__(
        self,
        config: DaemonConfig | None = None,
        source: CounterSource | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or DaemonConfig()
        sampling = self.config.sampling
        self.interval_s = sampling.interval_ms / 1000
        self.source = source or select_counter_source(
            sampling.source,
            read_timeout_ms=sampling.read_timeout_ms,
            field_timeout_ms=sampling.field_timeout_ms,
        )
        self.history = HistoryRing(self.config.history.capacity)
        self.broadcaster = Broadcaster(
            queue_depth=self.config.broadcast.queue_depth,
            stall_threshold=self.config.broadcast.stall_threshold,
        )
        self.sampler = Sampler(
            self.source,
            history=self.history,
            broadcaster=self.broadcaster,
            warmup_ms=sampling.warmup_ms,
            read_timeout_ms=sampling.read_timeout_ms,
        )
        self._clock = clock
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._started_at: float | None = None
        self.skipped_ticks = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._started_at = self._clock()
        self._thread = threading.Thread(target=self._run, name="hostpulse-sampler", daemon=True)
        self._thread.start()
        logger.info(
            f"sampler started source={self.source.name} interval_ms={self.config.sampling.interval_ms}",
            extra={"event": "sampler_started", "source": self.source.name},
        )

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        self.broadcaster.close_all()
        self.sampler.close()
        logger.info("sampler stopped", extra={"event": "sampler_stopped"})

    def _run(self) -> None:
        next_due = self._clock()
        while not self._stop.is_set():
            try:
                self.sampler.tick()
            except Exception:
                logger.exception("sampler tick failed", extra={"event": "tick_failed"})

            next_due += self.interval_s
            now = self._clock()
            if now > next_due:
                missed = int((now - next_due) // self.interval_s) + 1
                self.skipped_ticks += missed
                next_due += missed * self.interval_s
            self._stop.wait(max(next_due - now, 0.0))

    # -- transport boundary -------------------------------------------------

    def latest(self) -> Snapshot | None:
        return self.history.latest()

    def recent(self) -> tuple[Snapshot, ...]:
        return self.history.recent()

    def subscribe(self) -> SubscriberHandle:
        return self.broadcaster.subscribe()

    def unsubscribe(self, handle: SubscriberHandle) -> None:
        self.broadcaster.unsubscribe(handle)

    def open_stream(self) -> tuple[tuple[Snapshot, ...], SubscriberHandle]:
        """Backfill plus a live handle that continues exactly after it.

        Subscribing before reading history means nothing published in between
        is lost; ``skip_through`` then drops whatever the backfill already
        covers.
        """
        handle = self.broadcaster.subscribe()
        backfill = self.history.recent()
        if backfill:
            handle.skip_through(backfill[-1].sequence)
        return backfill, handle

    def health(self) -> dict[str, Any]:
        uptime = 0.0 if self._started_at is None else self._clock() - self._started_at
        latest = self.history.latest()
        return {
            "status": "ok" if self.running else "stopped",
            "service": "hostpulse",
            "version": app_version(),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "source": self.source.name,
            "interval_ms": self.config.sampling.interval_ms,
            "uptime_seconds": round(uptime, 3),
            "ticks": self.sampler.ticks,
            "failed_pulls": self.sampler.failed_pulls,
            "skipped_ticks": self.skipped_ticks,
            "last_sequence": latest.sequence if latest else None,
            "history": len(self.history),
            **self.broadcaster.stats(),
        }
