"""Synthetic counter source used when the host exposes no usable counters."""

from __future__ import annotations

import platform
import random
import socket
import time
from datetime import datetime, timezone
from typing import Callable

from .models import (
    CpuInfo,
    CpuTicks,
    DiskCounters,
    InterfaceCounters,
    LoadAverage,
    MemoryCounters,
    RawCounters,
)
from .source import CounterSource


_GIB = 1024**3
_TICKS_PER_SECOND = 100


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


class SyntheticCounterSource(CounterSource):
    """Produces slowly varying, internally consistent cumulative counters.

    Counters only ever grow, so the sampler's delta logic runs exactly as it
    does against a real kernel.
    """

    name = "synthetic"

    def __init__(
        self,
        cores: int = 4,
        seed: int | None = None,
        clock: Callable[[], float] = time.monotonic,
        interfaces: tuple[str, ...] = ("eth0", "wlan0"),
    ) -> None:
        self._rng = random.Random(seed)
        self._clock = clock
        self._cores = [[0, 0] for _ in range(max(1, cores))]
        self._utilisation = self._rng.uniform(0.10, 0.40)
        self._mem_total = 4 * _GIB
        self._mem_share = self._rng.uniform(0.25, 0.45)
        self._disk_total = 64 * _GIB
        self._disk_used = int(self._disk_total * self._rng.uniform(0.2, 0.5))
        self._net = {name: [0, 0] for name in interfaces}
        self._net_rates = {name: [self._rng.uniform(5e3, 5e5), self._rng.uniform(1e3, 1e5)] for name in interfaces}
        self._net["lo"] = [0, 0]
        self._net_rates["lo"] = [2e3, 2e3]
        self._load = [self._utilisation * len(self._cores)] * 3
        self._boot_time = time.time() - self._rng.uniform(3600, 3 * 86400)
        self._last: float | None = None

    def _walk(self, value: float, step: float, lo: float, hi: float) -> float:
        return _clamp(value + self._rng.uniform(-step, step), lo, hi)

    def pull(self) -> RawCounters:
        now = self._clock()
        elapsed = 1.0 if self._last is None else max(now - self._last, 0.0)
        self._last = now

        self._utilisation = self._walk(self._utilisation, 0.05, 0.05, 0.85)
        tick_step = max(1, int(round(elapsed * _TICKS_PER_SECOND)))
        for core in self._cores:
            share = _clamp(self._utilisation + self._rng.uniform(-0.10, 0.10), 0.0, 1.0)
            core[0] += int(round(tick_step * share))
            core[1] += tick_step
        per_core = tuple(CpuTicks(busy=b, total=t) for b, t in self._cores)
        aggregate = CpuTicks(busy=sum(c.busy for c in per_core), total=sum(c.total for c in per_core))

        self._mem_share = self._walk(self._mem_share, 0.01, 0.15, 0.90)
        mem_used = int(self._mem_total * self._mem_share)
        cached = int(self._mem_total * 0.10)
        memory = MemoryCounters(
            total=self._mem_total,
            used=mem_used,
            free=self._mem_total - mem_used - cached,
            available=self._mem_total - mem_used,
            swap_total=_GIB,
            swap_used=0,
            swap_free=_GIB,
            buffers=int(self._mem_total * 0.02),
            cached=cached,
            shared=int(self._mem_total * 0.01),
        )

        self._disk_used = min(self._disk_total, self._disk_used + self._rng.randint(0, 4096))
        disks = (
            DiskCounters(
                device="/dev/synthetic0",
                mount_point="/",
                filesystem="ext4",
                total=self._disk_total,
                used=self._disk_used,
                free=self._disk_total - self._disk_used,
            ),
        )

        interfaces = []
        for name, counters in self._net.items():
            rates = self._net_rates[name]
            if name != "lo":
                rates[0] = self._walk(rates[0], 5e4, 1e3, 5e6)
                rates[1] = self._walk(rates[1], 1e4, 1e3, 1e6)
            counters[0] += int(rates[0] * elapsed)
            counters[1] += int(rates[1] * elapsed)
            interfaces.append(
                InterfaceCounters(
                    name=name,
                    rx_bytes=counters[0],
                    tx_bytes=counters[1],
                    rx_packets=counters[0] // 1200,
                    tx_packets=counters[1] // 1200,
                    ipv4_addresses=(("127.0.0.1",) if name == "lo" else ()),
                )
            )

        target = self._utilisation * len(self._cores)
        for i, weight in enumerate((0.5, 0.1, 0.03)):
            self._load[i] += (target - self._load[i]) * weight
        temperature = 42_000 + int(self._utilisation * 30_000) + self._rng.randint(-500, 500)

        return RawCounters(
            captured_at=datetime.now(timezone.utc),
            monotonic=now,
            cpu=aggregate,
            cpu_cores=per_core,
            cpu_info=CpuInfo(
                model="Synthetic CPU",
                cores=len(self._cores),
                architecture=platform.machine() or None,
                frequency_mhz=1500.0 + 900.0 * self._utilisation,
                governor="ondemand",
            ),
            memory=memory,
            disks=disks,
            interfaces=tuple(interfaces),
            temperature_millideg=temperature,
            gpu_temperature_millideg=temperature - 1500,
            thermal_zones=(("cpu-thermal", temperature),),
            throttled=temperature >= 80_000,
            load_average=LoadAverage(one=self._load[0], five=self._load[1], fifteen=self._load[2]),
            uptime_seconds=max(time.time() - self._boot_time, 0.0),
            boot_time=self._boot_time,
            process_count=150 + self._rng.randint(0, 20),
            hostname=socket.gethostname() or None,
            ip_addresses=(),
            os_name=platform.system() or None,
            os_version=None,
            kernel_version=platform.release() or None,
            model="Synthetic host",
            source=self.name,
        )
