"""Error taxonomy shared by counter sources, the sampler, and the broadcaster."""

from __future__ import annotations


class HostPulseError(Exception):
    """Base class for HostPulse errors."""


class SourceUnavailable(HostPulseError):
    """The platform exposes no usable counters. Raised only by a startup probe."""


class FieldUnavailable(HostPulseError):
    def __init__(self, field: str, detail: str | None = None) -> None:
        self.field = field
        self.detail = detail
        msg = f"{field} unavailable" if not detail else f"{field} unavailable: {detail}"
        super().__init__(msg)


class SubscriberStalled(HostPulseError):
    def __init__(self, subscriber_id: str, stalled_publishes: int) -> None:
        self.subscriber_id = subscriber_id
        self.stalled_publishes = stalled_publishes
        super().__init__(f"subscriber {subscriber_id} stalled for {stalled_publishes} publishes")
