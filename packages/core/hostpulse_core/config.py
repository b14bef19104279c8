"""Daemon settings schema and load/save helpers."""

from __future__ import annotations

import json
import os
import platform
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from hostpulse_telemetry.source import SOURCE_MODES


CONFIG_VERSION = 1

DEFAULT_INTERVAL_MS = 1000
DEFAULT_PORT = 8080
ROTATE_WHEN = ("midnight", "h", "d")


@dataclass
class SamplingConfig:
    interval_ms: int = DEFAULT_INTERVAL_MS
    warmup_ms: int = 250
    read_timeout_ms: int = 2000
    field_timeout_ms: int = 400
    source: str = "auto"


@dataclass
class HistoryConfig:
    capacity: int = 300


@dataclass
class BroadcastConfig:
    queue_depth: int = 4
    stall_threshold: int = 8
    max_subscribers: int = 100


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    static_dir: str | None = None
    enable_cors: bool = True


@dataclass
class LoggingConfig:
    level: str = "WARNING"
    keep_files: int = 7
    console: bool = True
    directory: str | None = None
    rotate_when: str = "midnight"
    max_bytes: int = 0


@dataclass
class DaemonConfig:
    config_version: int = CONFIG_VERSION
    sampling: SamplingConfig = field(default_factory=SamplingConfig)
    history: HistoryConfig = field(default_factory=HistoryConfig)
    broadcast: BroadcastConfig = field(default_factory=BroadcastConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def config_path() -> Path:
    override = os.environ.get("HOSTPULSE_CONFIG")
    if override:
        return Path(override).expanduser()
    system = platform.system()
    if system == "Windows":
        base = Path(os.environ.get("APPDATA", Path.home() / "AppData" / "Roaming"))
        return base / "HostPulse" / "config.json"
    if system == "Darwin":
        return Path.home() / "Library" / "Application Support" / "HostPulse" / "config.json"
    return Path.home() / ".config" / "hostpulse" / "config.json"


def _merge(dataclass_type, raw: dict[str, Any]):
    defaults = dataclass_type()  # type: ignore[misc]
    for k, v in (raw or {}).items():
        if hasattr(defaults, k):
            setattr(defaults, k, v)
    return defaults


def _clamp_int(value: Any, lo: int, hi: int, default: int) -> int:
    try:
        return max(lo, min(hi, int(value)))
    except (TypeError, ValueError):
        return default


def _normalize_sampling(cfg: DaemonConfig) -> None:
    s = cfg.sampling
    s.interval_ms = _clamp_int(s.interval_ms, 100, 60_000, DEFAULT_INTERVAL_MS)
    s.warmup_ms = _clamp_int(s.warmup_ms, 10, 5_000, 250)
    s.read_timeout_ms = _clamp_int(s.read_timeout_ms, 50, 30_000, 2000)
    # one blocking field read must leave room for the rest of the pull
    s.field_timeout_ms = _clamp_int(s.field_timeout_ms, 10, max(s.read_timeout_ms // 5, 10), 400)
    if s.source not in SOURCE_MODES:
        s.source = "auto"


def _normalize_history(cfg: DaemonConfig) -> None:
    cfg.history.capacity = _clamp_int(cfg.history.capacity, 1, 86_400, 300)


def _normalize_broadcast(cfg: DaemonConfig) -> None:
    b = cfg.broadcast
    b.queue_depth = _clamp_int(b.queue_depth, 1, 1_000, 4)
    b.stall_threshold = _clamp_int(b.stall_threshold, 1, 10_000, 8)
    b.max_subscribers = _clamp_int(b.max_subscribers, 1, 10_000, 100)


def _normalize_server(cfg: DaemonConfig) -> None:
    cfg.server.port = _clamp_int(cfg.server.port, 1, 65_535, DEFAULT_PORT)
    cfg.server.host = str(cfg.server.host or "0.0.0.0")
    cfg.server.enable_cors = bool(cfg.server.enable_cors)


def _normalize_logging(cfg: DaemonConfig) -> None:
    level = str(cfg.logging.level).upper()
    cfg.logging.level = level if level in ("DEBUG", "INFO", "WARNING", "ERROR") else "WARNING"
    cfg.logging.keep_files = _clamp_int(cfg.logging.keep_files, 2, 365, 7)
    when = str(cfg.logging.rotate_when).lower()
    cfg.logging.rotate_when = when if when in ROTATE_WHEN else "midnight"
    cfg.logging.max_bytes = _clamp_int(cfg.logging.max_bytes, 0, 1 << 30, 0)


def normalize(cfg: DaemonConfig) -> DaemonConfig:
    _normalize_sampling(cfg)
    _normalize_history(cfg)
    _normalize_broadcast(cfg)
    _normalize_server(cfg)
    _normalize_logging(cfg)
    return cfg


def _migrate(raw: dict[str, Any]) -> dict[str, Any]:
    data = dict(raw)
    # version 1 is the only layout so far; upgrades of older files go here
    data["config_version"] = CONFIG_VERSION
    return data


def load_config(path: Path | None = None) -> DaemonConfig:
    path = path or config_path()
    if not path.exists():
        return DaemonConfig()

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return DaemonConfig()
    if not isinstance(raw, dict):
        return DaemonConfig()

    data = _migrate(raw)
    cfg = DaemonConfig(
        config_version=int(data.get("config_version", CONFIG_VERSION)),
        sampling=_merge(SamplingConfig, data.get("sampling", {})),
        history=_merge(HistoryConfig, data.get("history", {})),
        broadcast=_merge(BroadcastConfig, data.get("broadcast", {})),
        server=_merge(ServerConfig, data.get("server", {})),
        logging=_merge(LoggingConfig, data.get("logging", {})),
    )
    return normalize(cfg)


def save_config(cfg: DaemonConfig, path: Path | None = None) -> Path:
    cfg.config_version = CONFIG_VERSION
    path = path or config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(asdict(cfg), indent=2, sort_keys=True), encoding="utf-8")
    return path
