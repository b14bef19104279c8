"""psutil and sysfs backed counter source with Raspberry Pi extras."""

from __future__ import annotations

import logging
import platform
import re
import shutil
import socket
import subprocess
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, TypeVar

import psutil

from .errors import FieldUnavailable, SourceUnavailable
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


T = TypeVar("T")

logger = logging.getLogger("hostpulse.telemetry.system")

THERMAL_ROOT = Path("/sys/class/thermal")
CPUFREQ_ROOT = Path("/sys/devices/system/cpu/cpu0/cpufreq")
DEVICE_TREE_MODEL = Path("/proc/device-tree/model")
OS_RELEASE = Path("/etc/os-release")
CPUINFO = Path("/proc/cpuinfo")

# under-voltage is bit 0; arm freq capped, throttled, soft temp limit are bits 1..3
THROTTLE_MASK = 0x000E
USER_HZ = 100

# bounded steps per pull: the disk sweep, thermal zones, two vcgencmd calls, plus headroom
_BOUNDED_STEPS = 5
_DISK_WORKERS = 4

_SKIP_FILESYSTEMS = {"squashfs", "tmpfs", "devtmpfs", "overlay"}
_CPU_ZONE_NAMES = ("cpu-thermal", "cpu_thermal", "x86_pkg_temp", "soc_thermal")
_SENSOR_NAMES = ("cpu_thermal", "coretemp", "k10temp", "acpitz")
_TEMP_RE = re.compile(r"temp=(-?[\d.]+)'C")
_THROTTLED_RE = re.compile(r"throttled=0x([0-9a-fA-F]+)")
_ABSORBED = (FieldUnavailable, OSError, ValueError, psutil.Error, FutureTimeout, subprocess.SubprocessError)


def ticks_from_times(times: Any) -> CpuTicks:
    """Convert a psutil ``scputimes`` tuple (seconds) into busy/total ticks."""
    fields = times._asdict()
    # guest time is already included in user/nice on Linux
    total = sum(v for k, v in fields.items() if k not in ("guest", "guest_nice"))
    idle = fields.get("idle", 0.0) + fields.get("iowait", 0.0)
    total_ticks = int(round(total * USER_HZ))
    idle_ticks = int(round(idle * USER_HZ))
    return CpuTicks(busy=max(total_ticks - idle_ticks, 0), total=total_ticks)


def read_thermal_zones(root: Path = THERMAL_ROOT) -> list[tuple[str, int]]:
    """Return ``(name, millidegrees)`` for every readable thermal zone, zone0 first."""

    def _index(path: Path) -> int:
        suffix = path.name[len("thermal_zone"):]
        return int(suffix) if suffix.isdigit() else 1_000_000

    zones: list[tuple[str, int]] = []
    for zone in sorted(root.glob("thermal_zone*"), key=_index):
        try:
            millideg = int((zone / "temp").read_text(encoding="utf-8").strip())
        except (OSError, ValueError):
            continue
        try:
            name = (zone / "type").read_text(encoding="utf-8").strip() or zone.name
        except OSError:
            name = zone.name
        zones.append((name, millideg))
    return zones


def cpu_zone(zones: list[tuple[str, int]]) -> int | None:
    for name, millideg in zones:
        if name in _CPU_ZONE_NAMES:
            return millideg
    return zones[0][1] if zones else None


def parse_vcgencmd_temp(output: str) -> int | None:
    match = _TEMP_RE.search(output)
    if not match:
        return None
    return int(round(float(match.group(1)) * 1000))


def parse_throttled(output: str) -> bool | None:
    match = _THROTTLED_RE.search(output)
    if not match:
        return None
    return (int(match.group(1), 16) & THROTTLE_MASK) != 0


def parse_os_release(text: str) -> dict[str, str]:
    out: dict[str, str] = {}
    for line in text.splitlines():
        if "=" not in line or line.startswith("#"):
            continue
        key, value = line.split("=", 1)
        out[key.strip()] = value.strip().strip('"')
    return out


def parse_cpu_model(text: str) -> str | None:
    for key in ("model name", "Model", "Hardware", "cpu model"):
        for line in text.splitlines():
            if line.startswith(key) and ":" in line:
                value = line.split(":", 1)[1].strip()
                if value:
                    return value
    return None


def field_budget_ms(read_timeout_ms: int, field_timeout_ms: int | None = None) -> int:
    """Time allowed for one blocking field read, kept well inside the pull budget."""
    ceiling = max(int(read_timeout_ms) // _BOUNDED_STEPS, 1)
    if field_timeout_ms is None:
        return ceiling
    return max(1, min(int(field_timeout_ms), ceiling))


def _read_text(path: Path) -> str:
    return path.read_text(encoding="utf-8", errors="replace")


class SystemCounterSource(CounterSource):
    """Reads live counters from the local kernel.

    Calls that can block on slow hardware (disk usage on network mounts, the
    thermal sysfs tree, ``vcgencmd``) get a per-field budget that is a fraction
    of the whole-pull ``read_timeout_ms``. A read that overruns marks only its
    own field unavailable. While an overrun read is still stuck, later pulls
    skip that field instead of queueing more work behind it.
    """

    name = "system"

    def __init__(
        self,
        read_timeout_ms: int = 2000,
        field_timeout_ms: int | None = None,
        thermal_root: Path = THERMAL_ROOT,
        vcgencmd: str | None = "vcgencmd",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.read_timeout_s = max(int(read_timeout_ms), 1) / 1000
        self.field_timeout_s = field_budget_ms(read_timeout_ms, field_timeout_ms) / 1000
        self.thermal_root = thermal_root
        self._clock = clock
        self._vcgencmd = shutil.which(vcgencmd) if vcgencmd else None
        self._disk_pool = ThreadPoolExecutor(max_workers=_DISK_WORKERS, thread_name_prefix="hostpulse-disk")
        self._sysfs_pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="hostpulse-sysfs")
        self._inflight: dict[str, Future[Any]] = {}
        self._host: dict[str, Any] | None = None

    def probe(self) -> None:
        try:
            per_core = psutil.cpu_times(percpu=True)
            psutil.virtual_memory()
        except (psutil.Error, OSError, NotImplementedError, AttributeError) as exc:
            raise SourceUnavailable(f"psutil cannot read host counters: {exc}") from exc
        if not per_core:
            raise SourceUnavailable("psutil returned no CPU times")

    def close(self) -> None:
        self._disk_pool.shutdown(wait=False, cancel_futures=True)
        self._sysfs_pool.shutdown(wait=False, cancel_futures=True)

    # -- helpers ---------------------------------------------------------

    def _bounded(self, key: str, pool: ThreadPoolExecutor, timeout: float, fn: Callable[..., T], *args: Any) -> T:
        pending = self._inflight.get(key)
        if pending is not None:
            if not pending.done():
                raise FieldUnavailable(key, "previous read still running")
            del self._inflight[key]
        future = pool.submit(fn, *args)
        try:
            return future.result(timeout=max(timeout, 0.0))
        except FutureTimeout:
            self._inflight[key] = future
            logger.warning(f"{key} read exceeded {timeout:.2f}s", extra={"event": "field_timeout", "field": key})
            raise

    def _guard(self, unavailable: set[str], field: str, fn: Callable[[], T], default: T) -> T:
        try:
            return fn()
        except _ABSORBED as exc:
            unavailable.add(field)
            logger.debug(f"{field} unreadable: {exc}", extra={"event": "field_unavailable", "field": field})
            return default

    def _host_facts(self) -> dict[str, Any]:
        if self._host is not None:
            return self._host
        facts: dict[str, Any] = {
            "os_name": platform.system() or None,
            "os_version": platform.version() or None,
            "kernel_version": platform.release() or None,
            "architecture": platform.machine() or None,
            "cpu_model": platform.processor() or None,
            "model": None,
        }
        try:
            release = parse_os_release(_read_text(OS_RELEASE))
            facts["os_name"] = release.get("NAME") or facts["os_name"]
            facts["os_version"] = release.get("VERSION") or release.get("PRETTY_NAME") or facts["os_version"]
        except OSError:
            pass
        try:
            facts["cpu_model"] = parse_cpu_model(_read_text(CPUINFO)) or facts["cpu_model"]
        except OSError:
            pass
        try:
            facts["model"] = _read_text(DEVICE_TREE_MODEL).strip("\x00\n ") or None
        except OSError:
            pass
        self._host = facts
        return facts

    # -- field readers ---------------------------------------------------

    def _read_cpu(self) -> tuple[CpuTicks, tuple[CpuTicks, ...]]:
        per_core = tuple(ticks_from_times(t) for t in psutil.cpu_times(percpu=True))
        if not per_core:
            raise FieldUnavailable("cpu", "no per-core times")
        aggregate = CpuTicks(busy=sum(c.busy for c in per_core), total=sum(c.total for c in per_core))
        return aggregate, per_core

    def _read_cpu_info(self) -> CpuInfo:
        facts = self._host_facts()
        freq = psutil.cpu_freq()
        governor: str | None
        try:
            governor = _read_text(CPUFREQ_ROOT / "scaling_governor").strip() or None
        except OSError:
            governor = None
        return CpuInfo(
            model=facts["cpu_model"],
            cores=psutil.cpu_count(logical=True),
            architecture=facts["architecture"],
            frequency_mhz=(float(freq.current) if freq else None),
            governor=governor,
        )

    def _read_memory(self) -> MemoryCounters:
        vm = psutil.virtual_memory()
        swap = psutil.swap_memory()
        return MemoryCounters(
            total=int(vm.total),
            used=int(vm.used),
            free=int(vm.free),
            available=int(vm.available),
            swap_total=int(swap.total),
            swap_used=int(swap.used),
            swap_free=int(swap.free),
            buffers=int(getattr(vm, "buffers", 0)),
            cached=int(getattr(vm, "cached", 0)),
            shared=int(getattr(vm, "shared", 0)),
        )

    def _read_disks(self, unavailable: set[str]) -> tuple[DiskCounters, ...]:
        seen: set[str] = set()
        disks: list[DiskCounters] = []
        # one budget for the whole sweep, however many mounts there are
        deadline = self._clock() + self.field_timeout_s
        for part in psutil.disk_partitions(all=False):
            if part.mountpoint in seen or part.fstype in _SKIP_FILESYSTEMS:
                continue
            seen.add(part.mountpoint)
            key = f"disk:{part.mountpoint}"
            remaining = deadline - self._clock()
            if remaining <= 0:
                unavailable.add(key)
                continue
            try:
                usage = self._bounded(key, self._disk_pool, remaining, psutil.disk_usage, part.mountpoint)
            except _ABSORBED:
                unavailable.add(key)
                continue
            disks.append(
                DiskCounters(
                    device=part.device,
                    mount_point=part.mountpoint,
                    filesystem=part.fstype,
                    total=int(usage.total),
                    used=int(usage.used),
                    free=int(usage.free),
                )
            )
        return tuple(disks)

    def _read_interfaces(self) -> tuple[InterfaceCounters, ...]:
        counters = psutil.net_io_counters(pernic=True)
        addrs = psutil.net_if_addrs()
        stats = psutil.net_if_stats()
        out: list[InterfaceCounters] = []
        for name in sorted(counters):
            io = counters[name]
            ipv4: list[str] = []
            ipv6: list[str] = []
            mac: str | None = None
            for addr in addrs.get(name, []):
                if addr.family == socket.AF_INET:
                    ipv4.append(addr.address)
                elif addr.family == socket.AF_INET6:
                    ipv6.append(addr.address.split("%", 1)[0])
                elif addr.family == psutil.AF_LINK:
                    mac = addr.address
            st = stats.get(name)
            out.append(
                InterfaceCounters(
                    name=name,
                    rx_bytes=int(io.bytes_recv),
                    tx_bytes=int(io.bytes_sent),
                    rx_packets=int(io.packets_recv),
                    tx_packets=int(io.packets_sent),
                    rx_errors=int(io.errin),
                    tx_errors=int(io.errout),
                    is_up=bool(st.isup) if st else False,
                    mac_address=mac,
                    ipv4_addresses=tuple(ipv4),
                    ipv6_addresses=tuple(ipv6),
                )
            )
        return tuple(out)

    def _read_temperature(self) -> tuple[int, tuple[tuple[str, int], ...]]:
        zones = self._bounded(
            "temperature", self._sysfs_pool, self.field_timeout_s, read_thermal_zones, self.thermal_root
        )
        millideg = cpu_zone(zones)
        if millideg is None:
            millideg = self._sensor_millideg()
        if millideg is None:
            raise FieldUnavailable("temperature", "no thermal zone or sensor")
        return millideg, tuple(zones)

    @staticmethod
    def _sensor_millideg() -> int | None:
        if not hasattr(psutil, "sensors_temperatures"):
            return None
        temps = psutil.sensors_temperatures()
        if not temps:
            return None
        for name in _SENSOR_NAMES:
            entries = temps.get(name)
            if entries and entries[0].current is not None:
                return int(round(entries[0].current * 1000))
        for entries in temps.values():
            if entries and entries[0].current is not None:
                return int(round(entries[0].current * 1000))
        return None

    def _vcgencmd_output(self, arg: str) -> str:
        if not self._vcgencmd:
            raise FieldUnavailable(arg, "vcgencmd not installed")
        result = subprocess.run(
            [self._vcgencmd, arg],
            capture_output=True,
            text=True,
            timeout=self.field_timeout_s,
            check=True,
        )
        return result.stdout

    def _read_load(self) -> LoadAverage:
        one, five, fifteen = psutil.getloadavg()
        return LoadAverage(one=float(one), five=float(five), fifteen=float(fifteen))

    # -- pull ------------------------------------------------------------

    def pull(self) -> RawCounters:
        monotonic = self._clock()
        captured_at = datetime.now(timezone.utc)
        unavailable: set[str] = set()

        cpu, cores = self._guard(unavailable, "cpu", self._read_cpu, (None, ()))
        cpu_info = self._guard(unavailable, "cpu_info", self._read_cpu_info, CpuInfo())
        memory = self._guard(unavailable, "memory", self._read_memory, None)
        disks = self._guard(unavailable, "disks", lambda: self._read_disks(unavailable), ())
        interfaces = self._guard(unavailable, "network", self._read_interfaces, ())
        temperature, zones = self._guard(unavailable, "temperature", self._read_temperature, (None, ()))
        load = self._guard(unavailable, "load_average", self._read_load, None)
        boot_time = self._guard(unavailable, "uptime", psutil.boot_time, None)
        process_count = self._guard(unavailable, "process_count", lambda: len(psutil.pids()), None)

        gpu_temperature: int | None = None
        throttled: bool | None = None
        if self._vcgencmd:
            gpu_temperature = self._guard(
                unavailable, "gpu_temperature", lambda: parse_vcgencmd_temp(self._vcgencmd_output("measure_temp")), None
            )
            throttled = self._guard(
                unavailable, "throttled", lambda: parse_throttled(self._vcgencmd_output("get_throttled")), None
            )

        facts = self._host_facts()
        ip_addresses = tuple(
            ip for iface in interfaces if iface.name != "lo" for ip in iface.ipv4_addresses if not ip.startswith("127.")
        )

        return RawCounters(
            captured_at=captured_at,
            monotonic=monotonic,
            cpu=cpu,
            cpu_cores=cores,
            cpu_info=cpu_info,
            memory=memory,
            disks=disks,
            interfaces=interfaces,
            temperature_millideg=temperature,
            gpu_temperature_millideg=gpu_temperature,
            thermal_zones=zones,
            throttled=throttled,
            load_average=load,
            uptime_seconds=(max(time.time() - boot_time, 0.0) if boot_time is not None else None),
            boot_time=boot_time,
            process_count=process_count,
            hostname=socket.gethostname() or None,
            ip_addresses=ip_addresses,
            os_name=facts["os_name"],
            os_version=facts["os_version"],
            kernel_version=facts["kernel_version"],
            model=facts["model"],
            source=self.name,
            unavailable=frozenset(unavailable),
        )
