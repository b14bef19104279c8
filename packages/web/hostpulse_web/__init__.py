"""HTTP and WebSocket transport for HostPulse dashboards."""

from .app import create_app, serve

__all__ = ["create_app", "serve"]
