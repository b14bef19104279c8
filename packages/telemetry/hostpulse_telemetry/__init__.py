"""Counter sources and typed metric models for HostPulse."""

from .errors import FieldUnavailable, HostPulseError, SourceUnavailable, SubscriberStalled
from .models import (
    CpuInfo,
    CpuStats,
    CpuTicks,
    DiskCounters,
    DiskStats,
    InterfaceCounters,
    InterfaceStats,
    LoadAverage,
    MemoryCounters,
    MemoryStats,
    NetworkStats,
    RawCounters,
    Snapshot,
    SystemStats,
    TemperatureStats,
)
from .source import SOURCE_MODES, CounterSource, select_counter_source
from .synthetic import SyntheticCounterSource

__all__ = [
    "CounterSource",
    "CpuInfo",
    "CpuStats",
    "CpuTicks",
    "DiskCounters",
    "DiskStats",
    "FieldUnavailable",
    "HostPulseError",
    "InterfaceCounters",
    "InterfaceStats",
    "LoadAverage",
    "MemoryCounters",
    "MemoryStats",
    "NetworkStats",
    "RawCounters",
    "SOURCE_MODES",
    "Snapshot",
    "SourceUnavailable",
    "SubscriberStalled",
    "SyntheticCounterSource",
    "SystemStats",
    "TemperatureStats",
    "select_counter_source",
]
