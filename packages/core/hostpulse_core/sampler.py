"""Sampler: turns consecutive raw counter pulls into published snapshots."""

from __future__ import annotations

import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from datetime import datetime, timedelta, timezone
from typing import Callable

from hostpulse_telemetry.models import (
    CpuStats,
    DiskStats,
    InterfaceStats,
    MemoryStats,
    NetworkStats,
    RawCounters,
    Snapshot,
    SystemStats,
    TemperatureStats,
)
from hostpulse_telemetry.source import CounterSource

from .broadcast import Broadcaster
from .derive import (
    aggregate_rates,
    cpu_percent,
    format_uptime,
    interface_rates,
    millideg_to_celsius,
    percent,
)
from .history import HistoryRing
from .logging_setup import get_logger


logger = get_logger("sampler")

DEGRADED_FIELDS = frozenset({"cpu", "memory", "disks", "network", "temperature", "load_average", "uptime"})


def derive_snapshot(
    prev: RawCounters | None,
    cur: RawCounters,
    sequence: int,
    timestamp: datetime,
) -> Snapshot:
    """Combine two consecutive pulls into one snapshot.

    Rates use the wall-clock gap between the two pulls, not the configured
    interval. Without a previous pull the CPU figures are unavailable and every
    interface reports a zero rate.
    """
    elapsed = (cur.monotonic - prev.monotonic) if prev is not None else 0.0
    missing = set(cur.unavailable)

    usage = cpu_percent(prev.cpu if prev else None, cur.cpu)
    if usage is None:
        missing.add("cpu")
    prev_cores = prev.cpu_cores if prev else ()
    core_usage = tuple(
        cpu_percent(prev_cores[i] if i < len(prev_cores) else None, core) for i, core in enumerate(cur.cpu_cores)
    )
    info = cur.cpu_info
    cpu = CpuStats(
        usage_percent=usage,
        core_usage=core_usage,
        cores=info.cores if info.cores is not None else (len(cur.cpu_cores) or None),
        model=info.model,
        architecture=info.architecture,
        frequency_mhz=info.frequency_mhz,
        governor=info.governor,
        load_average=cur.load_average,
    )

    memory = None
    if cur.memory is not None:
        m = cur.memory
        memory = MemoryStats(
            total_bytes=m.total,
            used_bytes=m.used,
            available_bytes=m.available,
            usage_percent=percent(m.used, m.total),
            swap_total_bytes=m.swap_total,
            swap_used_bytes=m.swap_used,
            swap_free_bytes=m.swap_free,
            buffers_bytes=m.buffers,
            cached_bytes=m.cached,
            shared_bytes=m.shared,
        )

    storage = tuple(
        DiskStats(
            device=d.device,
            mount_point=d.mount_point,
            filesystem=d.filesystem,
            total_bytes=d.total,
            used_bytes=d.used,
            available_bytes=d.free,
            usage_percent=percent(d.used, d.total),
        )
        for d in cur.disks
    )

    rates = interface_rates(prev.interfaces if prev else (), cur.interfaces, elapsed)
    rx_total, tx_total = aggregate_rates(rates)
    network = NetworkStats(
        rx_rate=rx_total,
        tx_rate=tx_total,
        interfaces=tuple(
            InterfaceStats(
                name=i.name,
                is_up=i.is_up,
                rx_bytes=i.rx_bytes,
                tx_bytes=i.tx_bytes,
                rx_rate=rates[i.name][0],
                tx_rate=rates[i.name][1],
                rx_packets=i.rx_packets,
                tx_packets=i.tx_packets,
                rx_errors=i.rx_errors,
                tx_errors=i.tx_errors,
                mac_address=i.mac_address,
                ipv4_addresses=i.ipv4_addresses,
                ipv6_addresses=i.ipv6_addresses,
            )
            for i in cur.interfaces
        ),
    )

    temperature = TemperatureStats(
        cpu_celsius=millideg_to_celsius(cur.temperature_millideg),
        gpu_celsius=millideg_to_celsius(cur.gpu_temperature_millideg),
        thermal_zones=tuple((name, value / 1000.0) for name, value in cur.thermal_zones),
        is_throttling=cur.throttled,
    )

    system = SystemStats(
        hostname=cur.hostname,
        ip_addresses=cur.ip_addresses,
        os_name=cur.os_name,
        os_version=cur.os_version,
        kernel_version=cur.kernel_version,
        model=cur.model,
        uptime_seconds=cur.uptime_seconds,
        uptime_human=format_uptime(cur.uptime_seconds),
        boot_time=cur.boot_time,
        process_count=cur.process_count,
    )

    return Snapshot(
        sequence=sequence,
        timestamp=timestamp,
        cpu=cpu,
        memory=memory,
        storage=storage,
        network=network,
        temperature=temperature,
        system=system,
        source=cur.source,
        unavailable=tuple(sorted(missing)),
    )


class Sampler:
    """Owns the previous raw pull and produces one snapshot per ``tick()``.

    The first tick pulls twice, ``warmup_ms`` apart, so even the first
    published snapshot carries real rates. Each pull is bounded by
    ``read_timeout_ms``; a pull that fails or overruns produces a snapshot with
    every metric unavailable and leaves the previous pull in place.
    """

    def __init__(
        self,
        source: CounterSource,
        history: HistoryRing | None = None,
        broadcaster: Broadcaster | None = None,
        warmup_ms: int = 250,
        read_timeout_ms: int | None = 2000,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.source = source
        self.history = history
        self.broadcaster = broadcaster
        self.warmup_s = max(int(warmup_ms), 0) / 1000
        self.read_timeout_s = None if read_timeout_ms is None else max(int(read_timeout_ms), 1) / 1000
        self._sleep = sleep
        self._clock = clock
        self._previous: RawCounters | None = None
        self._last_timestamp: datetime | None = None
        self._sequence = 0
        self._pending: Future[RawCounters] | None = None
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="hostpulse-pull")
        self.ticks = 0
        self.failed_pulls = 0

    @property
    def primed(self) -> bool:
        return self._previous is not None

    def _pull(self) -> RawCounters | None:
        if self.read_timeout_s is None:
            try:
                return self.source.pull()
            except Exception as exc:
                self._pull_failed(exc)
                return None

        if self._pending is not None and not self._pending.done():
            self.failed_pulls += 1
            logger.warning(
                "previous counter pull still running",
                extra={"event": "pull_stuck", "sequence": self._sequence + 1},
            )
            return None

        self._pending = self._executor.submit(self.source.pull)
        try:
            return self._pending.result(timeout=self.read_timeout_s)
        except FutureTimeout:
            self.failed_pulls += 1
            logger.warning(
                f"counter pull exceeded {self.read_timeout_s:.2f}s",
                extra={"event": "pull_timeout", "sequence": self._sequence + 1},
            )
            return None
        except Exception as exc:
            self._pull_failed(exc)
            return None

    def _pull_failed(self, exc: Exception) -> None:
        self.failed_pulls += 1
        logger.error(
            f"counter pull failed: {exc}",
            exc_info=True,
            extra={"event": "pull_failed", "sequence": self._sequence + 1},
        )

    def _degraded(self) -> RawCounters:
        return RawCounters(
            captured_at=datetime.now(timezone.utc),
            monotonic=self._clock(),
            source=self.source.name,
            unavailable=DEGRADED_FIELDS,
        )

    def _next_timestamp(self, captured_at: datetime) -> datetime:
        ts = captured_at
        if self._last_timestamp is not None and ts <= self._last_timestamp:
            ts = self._last_timestamp + timedelta(microseconds=1)
        self._last_timestamp = ts
        return ts

    def tick(self) -> Snapshot:
        if self._previous is None:
            first = self._pull()
            if first is not None:
                self._previous = first
                self._sleep(self.warmup_s)

        raw = self._pull()
        self._sequence += 1
        if raw is None:
            degraded = self._degraded()
            snapshot = derive_snapshot(None, degraded, self._sequence, self._next_timestamp(degraded.captured_at))
        else:
            snapshot = derive_snapshot(self._previous, raw, self._sequence, self._next_timestamp(raw.captured_at))
            self._previous = raw

        self.ticks += 1
        if self.history is not None:
            self.history.push(snapshot)
        if self.broadcaster is not None:
            self.broadcaster.publish(snapshot)
        return snapshot

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
        self.source.close()
