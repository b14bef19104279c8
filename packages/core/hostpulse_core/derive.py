"""Rate derivation and light formatting for sampled counters."""

from __future__ import annotations

from hostpulse_telemetry.models import CpuTicks, InterfaceCounters


LOOPBACK = "lo"


def cpu_percent(prev: CpuTicks | None, cur: CpuTicks | None) -> float | None:
    """Busy share of elapsed ticks in percent, clamped to [0, 100]."""
    if prev is None or cur is None:
        return None
    d_total = cur.total - prev.total
    if d_total <= 0:
        return 0.0
    d_busy = max(cur.busy - prev.busy, 0)
    return max(0.0, min(100.0, d_busy / d_total * 100.0))


def byte_rate(prev: int | None, cur: int, elapsed_s: float) -> float:
    """Bytes per second between two cumulative readings.

    A counter that went backwards (interface restart) or an unknown previous
    value yields 0.0, never a negative rate.
    """
    if prev is None or elapsed_s <= 0:
        return 0.0
    delta = cur - prev
    if delta <= 0:
        return 0.0
    return delta / elapsed_s


def interface_rates(
    prev: tuple[InterfaceCounters, ...],
    cur: tuple[InterfaceCounters, ...],
    elapsed_s: float,
) -> dict[str, tuple[float, float]]:
    previous = {iface.name: iface for iface in prev}
    rates: dict[str, tuple[float, float]] = {}
    for iface in cur:
        before = previous.get(iface.name)
        rates[iface.name] = (
            byte_rate(before.rx_bytes if before else None, iface.rx_bytes, elapsed_s),
            byte_rate(before.tx_bytes if before else None, iface.tx_bytes, elapsed_s),
        )
    return rates


def aggregate_rates(rates: dict[str, tuple[float, float]]) -> tuple[float, float]:
    rx = sum(r[0] for name, r in rates.items() if name != LOOPBACK)
    tx = sum(r[1] for name, r in rates.items() if name != LOOPBACK)
    return rx, tx


def percent(used: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return max(0.0, min(100.0, used / total * 100.0))


def millideg_to_celsius(value: int | None) -> float | None:
    return None if value is None else value / 1000.0


def format_uptime(seconds: float | None) -> str | None:
    if seconds is None:
        return None
    total = int(max(seconds, 0))
    days, rem = divmod(total, 86400)
    hours, rem = divmod(rem, 3600)
    minutes = rem // 60
    if days:
        return f"{days}d {hours}h {minutes}m"
    if hours:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def format_bytes(value: float | None) -> str:
    if value is None:
        return "N/A"
    size = float(value)
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if abs(size) < 1024 or unit == "TB":
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"
