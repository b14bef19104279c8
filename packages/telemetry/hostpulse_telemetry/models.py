"""Typed counter and snapshot models.

`RawCounters` is what a counter source hands to the sampler: cumulative,
point-in-time readings. `Snapshot` is what the sampler publishes: rates derived
from two consecutive `RawCounters` plus the passed-through gauges. `None` marks
a value that could not be read.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


# ---------------------------------------------------------------------------
# Raw counters
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CpuTicks:
    busy: int
    total: int


@dataclass(frozen=True)
class CpuInfo:
    model: str | None = None
    cores: int | None = None
    architecture: str | None = None
    frequency_mhz: float | None = None
    governor: str | None = None


@dataclass(frozen=True)
class MemoryCounters:
    total: int
    used: int
    free: int
    available: int
    swap_total: int = 0
    swap_used: int = 0
    swap_free: int = 0
    buffers: int = 0
    cached: int = 0
    shared: int = 0


@dataclass(frozen=True)
class DiskCounters:
    device: str
    mount_point: str
    filesystem: str
    total: int
    used: int
    free: int


@dataclass(frozen=True)
class InterfaceCounters:
    name: str
    rx_bytes: int
    tx_bytes: int
    rx_packets: int = 0
    tx_packets: int = 0
    rx_errors: int = 0
    tx_errors: int = 0
    is_up: bool = True
    mac_address: str | None = None
    ipv4_addresses: tuple[str, ...] = ()
    ipv6_addresses: tuple[str, ...] = ()


@dataclass(frozen=True)
class LoadAverage:
    one: float
    five: float
    fifteen: float


@dataclass(frozen=True)
class RawCounters:
    captured_at: datetime
    monotonic: float
    cpu: CpuTicks | None = None
    cpu_cores: tuple[CpuTicks, ...] = ()
    cpu_info: CpuInfo = field(default_factory=CpuInfo)
    memory: MemoryCounters | None = None
    disks: tuple[DiskCounters, ...] = ()
    interfaces: tuple[InterfaceCounters, ...] = ()
    temperature_millideg: int | None = None
    gpu_temperature_millideg: int | None = None
    thermal_zones: tuple[tuple[str, int], ...] = ()
    throttled: bool | None = None
    load_average: LoadAverage | None = None
    uptime_seconds: float | None = None
    boot_time: float | None = None
    process_count: int | None = None
    hostname: str | None = None
    ip_addresses: tuple[str, ...] = ()
    os_name: str | None = None
    os_version: str | None = None
    kernel_version: str | None = None
    model: str | None = None
    source: str = "system"
    unavailable: frozenset[str] = frozenset()


# ---------------------------------------------------------------------------
# Derived snapshot
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CpuStats:
    usage_percent: float | None
    core_usage: tuple[float | None, ...]
    cores: int | None
    model: str | None
    architecture: str | None
    frequency_mhz: float | None
    governor: str | None
    load_average: LoadAverage | None


@dataclass(frozen=True)
class MemoryStats:
    total_bytes: int
    used_bytes: int
    available_bytes: int
    usage_percent: float
    swap_total_bytes: int
    swap_used_bytes: int
    swap_free_bytes: int
    buffers_bytes: int
    cached_bytes: int
    shared_bytes: int


@dataclass(frozen=True)
class DiskStats:
    device: str
    mount_point: str
    filesystem: str
    total_bytes: int
    used_bytes: int
    available_bytes: int
    usage_percent: float


@dataclass(frozen=True)
class InterfaceStats:
    name: str
    is_up: bool
    rx_bytes: int
    tx_bytes: int
    rx_rate: float
    tx_rate: float
    rx_packets: int
    tx_packets: int
    rx_errors: int
    tx_errors: int
    mac_address: str | None
    ipv4_addresses: tuple[str, ...]
    ipv6_addresses: tuple[str, ...]


@dataclass(frozen=True)
class NetworkStats:
    rx_rate: float
    tx_rate: float
    interfaces: tuple[InterfaceStats, ...]


@dataclass(frozen=True)
class TemperatureStats:
    cpu_celsius: float | None
    gpu_celsius: float | None
    thermal_zones: tuple[tuple[str, float], ...]
    is_throttling: bool | None


@dataclass(frozen=True)
class SystemStats:
    hostname: str | None
    ip_addresses: tuple[str, ...]
    os_name: str | None
    os_version: str | None
    kernel_version: str | None
    model: str | None
    uptime_seconds: float | None
    uptime_human: str | None
    boot_time: float | None
    process_count: int | None


@dataclass(frozen=True)
class Snapshot:
    sequence: int
    timestamp: datetime
    cpu: CpuStats
    memory: MemoryStats | None
    storage: tuple[DiskStats, ...]
    network: NetworkStats
    temperature: TemperatureStats
    system: SystemStats
    source: str
    unavailable: tuple[str, ...] = ()
