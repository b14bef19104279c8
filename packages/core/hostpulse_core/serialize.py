"""JSON-ready rendering of snapshots for transports and the CLI."""

from __future__ import annotations

from dataclasses import asdict
from typing import Any

from hostpulse_telemetry.models import Snapshot

from .derive import format_bytes


NA = "N/A"


def _pct(value: float | None) -> str:
    return NA if value is None else f"{value:.1f}%"


def _celsius(value: float | None) -> str:
    return NA if value is None else f"{value:.1f}°C"


def _rate(value: float | None) -> str:
    return NA if value is None else f"{format_bytes(value)}/s"


def display_values(snapshot: Snapshot) -> dict[str, str]:
    """Human-readable values, with "N/A" wherever a metric is unavailable."""
    cpu = snapshot.cpu
    memory = snapshot.memory
    load = cpu.load_average
    network_down = "network" in snapshot.unavailable
    return {
        "cpu": _pct(cpu.usage_percent),
        "memory": (
            NA if memory is None else f"{format_bytes(memory.used_bytes)} / {format_bytes(memory.total_bytes)}"
        ),
        "memory_percent": NA if memory is None else _pct(memory.usage_percent),
        "temperature": _celsius(snapshot.temperature.cpu_celsius),
        "gpu_temperature": _celsius(snapshot.temperature.gpu_celsius),
        "load": NA if load is None else f"{load.one:.2f} {load.five:.2f} {load.fifteen:.2f}",
        "rx_rate": NA if network_down else _rate(snapshot.network.rx_rate),
        "tx_rate": NA if network_down else _rate(snapshot.network.tx_rate),
        "uptime": snapshot.system.uptime_human or NA,
        "hostname": snapshot.system.hostname or NA,
        "model": snapshot.system.model or NA,
    }


def snapshot_to_dict(snapshot: Snapshot) -> dict[str, Any]:
    data = asdict(snapshot)
    data["timestamp"] = snapshot.timestamp.isoformat()
    data["timestamp_ms"] = int(snapshot.timestamp.timestamp() * 1000)
    data["temperature"]["thermal_zones"] = {name: value for name, value in snapshot.temperature.thermal_zones}
    data["unavailable"] = list(snapshot.unavailable)
    data["display"] = display_values(snapshot)
    return data
