"""Core HostPulse services: sampling, history, broadcast, config, and logging."""

from .broadcast import Broadcaster, ClientInfo, SubscriberHandle
from .config import DaemonConfig, load_config, save_config
from .history import HistoryRing
from .sampler import Sampler, derive_snapshot
from .serialize import display_values, snapshot_to_dict
from .service import MetricsService, app_version

__all__ = [
    "Broadcaster",
    "ClientInfo",
    "DaemonConfig",
    "HistoryRing",
    "MetricsService",
    "Sampler",
    "SubscriberHandle",
    "app_version",
    "derive_snapshot",
    "display_values",
    "load_config",
    "save_config",
    "snapshot_to_dict",
]
