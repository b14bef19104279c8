"""CLI entrypoints for the HostPulse daemon, one-shot snapshots, and host info."""

from __future__ import annotations

import argparse
import json
from pathlib import Path

from hostpulse_core import HistoryRing, Sampler, app_version, load_config, snapshot_to_dict
from hostpulse_core.config import DaemonConfig, normalize
from hostpulse_core.derive import format_bytes
from hostpulse_core.logging_setup import configure_logging, get_logger, install_crash_hooks, shutdown_logging
from hostpulse_core.service import MetricsService
from hostpulse_telemetry import SOURCE_MODES, Snapshot, select_counter_source


def _print_json(data: object) -> None:
    print(json.dumps(data, indent=2, sort_keys=True, default=str))


def _apply_overrides(cfg: DaemonConfig, args: argparse.Namespace) -> DaemonConfig:
    if args.host is not None:
        cfg.server.host = args.host
    if args.port is not None:
        cfg.server.port = args.port
    if args.interval is not None:
        cfg.sampling.interval_ms = args.interval
    if args.source is not None:
        cfg.sampling.source = args.source
    if getattr(args, "static_dir", None):
        cfg.server.static_dir = args.static_dir
    if getattr(args, "no_cors", False):
        cfg.server.enable_cors = False
    if getattr(args, "max_connections", None) is not None:
        cfg.broadcast.max_subscribers = args.max_connections
    if args.debug:
        cfg.logging.level = "DEBUG"
    elif args.verbose:
        cfg.logging.level = "INFO"
    return normalize(cfg)


def _load(args: argparse.Namespace) -> DaemonConfig:
    path = Path(args.config).expanduser() if args.config else None
    return _apply_overrides(load_config(path), args)


def _one_shot(cfg: DaemonConfig) -> Snapshot:
    source = select_counter_source(
        cfg.sampling.source,
        read_timeout_ms=cfg.sampling.read_timeout_ms,
        field_timeout_ms=cfg.sampling.field_timeout_ms,
    )
    sampler = Sampler(
        source,
        history=HistoryRing(1),
        warmup_ms=cfg.sampling.warmup_ms,
        read_timeout_ms=cfg.sampling.read_timeout_ms,
    )
    try:
        return sampler.tick()
    finally:
        sampler.close()


def format_pretty(snapshot: Snapshot) -> str:
    data = snapshot_to_dict(snapshot)
    shown = data["display"]
    cpu = snapshot.cpu
    lines = [
        f"HostPulse snapshot #{snapshot.sequence} ({snapshot.timestamp:%Y-%m-%d %H:%M:%S} UTC, {snapshot.source})",
        "",
        "CPU:",
        f"  Model: {cpu.model or 'N/A'}",
        f"  Cores: {cpu.cores if cpu.cores is not None else 'N/A'}",
        f"  Usage: {shown['cpu']}",
        f"  Frequency: {f'{cpu.frequency_mhz:.0f} MHz' if cpu.frequency_mhz else 'N/A'}",
        f"  Governor: {cpu.governor or 'N/A'}",
        f"  Load: {shown['load']}",
        "",
        "Memory:",
        f"  Used: {shown['memory']} ({shown['memory_percent']})",
        "",
        "Temperature:",
        f"  CPU: {shown['temperature']}",
        f"  GPU: {shown['gpu_temperature']}",
        f"  Throttling: {'N/A' if snapshot.temperature.is_throttling is None else ('yes' if snapshot.temperature.is_throttling else 'no')}",
    ]
    if snapshot.storage:
        lines += ["", "Storage:"]
        for disk in snapshot.storage:
            lines.append(f"  {disk.mount_point}: {format_bytes(disk.total_bytes)} total, {disk.usage_percent:.1f}% used")
    if snapshot.network.interfaces:
        lines += ["", f"Network (rx {shown['rx_rate']}, tx {shown['tx_rate']}):"]
        for iface in snapshot.network.interfaces:
            lines.append(
                f"  {iface.name}: {'UP' if iface.is_up else 'DOWN'} "
                f"(rx {format_bytes(iface.rx_rate)}/s, tx {format_bytes(iface.tx_rate)}/s)"
            )
    lines += [
        "",
        "System:",
        f"  Hostname: {shown['hostname']}",
        f"  OS: {snapshot.system.os_name or 'N/A'} {snapshot.system.os_version or ''}".rstrip(),
        f"  Model: {shown['model']}",
        f"  Uptime: {shown['uptime']}",
        f"  Processes: {snapshot.system.process_count if snapshot.system.process_count is not None else 'N/A'}",
    ]
    return "\n".join(lines)


def cmd_serve(args: argparse.Namespace) -> int:
    from hostpulse_web import serve

    cfg = _load(args)
    configure_logging(cfg.logging)
    install_crash_hooks(cfg.logging.directory)
    logger = get_logger()
    logger.info(
        f"hostpulse {app_version()} bind={cfg.server.host}:{cfg.server.port} "
        f"interval_ms={cfg.sampling.interval_ms} cors={cfg.server.enable_cors} "
        f"max_connections={cfg.broadcast.max_subscribers}",
        extra={"event": "startup"},
    )
    try:
        serve(MetricsService(cfg), cfg.server)
    finally:
        shutdown_logging()
    return 0


def cmd_snapshot(args: argparse.Namespace) -> int:
    cfg = _load(args)
    snapshot = _one_shot(cfg)
    if args.format == "json":
        _print_json(snapshot_to_dict(snapshot))
    else:
        print(format_pretty(snapshot))
    return 0


def cmd_info(args: argparse.Namespace) -> int:
    cfg = _load(args)
    snapshot = _one_shot(cfg)
    system = snapshot.system
    memory = snapshot.memory
    _print_json(
        {
            "version": app_version(),
            "source": snapshot.source,
            "hostname": system.hostname,
            "ip_addresses": list(system.ip_addresses),
            "os": {"name": system.os_name, "version": system.os_version, "kernel": system.kernel_version},
            "model": system.model,
            "uptime": system.uptime_human,
            "cpu": {
                "model": snapshot.cpu.model,
                "cores": snapshot.cpu.cores,
                "architecture": snapshot.cpu.architecture,
            },
            "memory_total": format_bytes(memory.total_bytes) if memory else None,
            "storage": [
                {"mount_point": d.mount_point, "total": format_bytes(d.total_bytes), "usage_percent": round(d.usage_percent, 1)}
                for d in snapshot.storage
            ],
            "interfaces": [{"name": i.name, "up": i.is_up} for i in snapshot.network.interfaces],
        }
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="hostpulse", description="HostPulse host metrics daemon")
    parser.add_argument("--version", action="version", version=f"%(prog)s {app_version()}")
    parser.add_argument("--config", default=None, help="Path to config.json")
    parser.add_argument("--host", default=None, help="Web server bind address")
    parser.add_argument("-p", "--port", type=int, default=None, help="Web server port")
    parser.add_argument("-i", "--interval", type=int, default=None, help="Sampling interval in milliseconds")
    parser.add_argument("--source", choices=list(SOURCE_MODES), default=None, help="Counter source selection")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at INFO instead of WARNING")
    parser.add_argument("-d", "--debug", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    serve_cmd = sub.add_parser("serve", help="Run the sampling daemon and web server")
    serve_cmd.add_argument("--static-dir", default=None, help="Directory of dashboard assets to serve at /")
    serve_cmd.add_argument("--no-cors", action="store_true", help="Disable CORS headers")
    serve_cmd.add_argument("--max-connections", type=int, default=None, help="Maximum WebSocket subscribers")
    serve_cmd.set_defaults(func=cmd_serve)

    snap_cmd = sub.add_parser("snapshot", help="Take one snapshot and exit")
    snap_cmd.add_argument("-f", "--format", choices=["json", "pretty"], default="pretty")
    snap_cmd.set_defaults(func=cmd_snapshot)

    info_cmd = sub.add_parser("info", help="Show host information")
    info_cmd.set_defaults(func=cmd_info)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
