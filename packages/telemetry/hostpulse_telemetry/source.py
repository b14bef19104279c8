"""Counter source contract and one-time startup selection."""

from __future__ import annotations

import logging

from .errors import SourceUnavailable
from .models import RawCounters


SOURCE_MODES = ("auto", "system", "synthetic")

logger = logging.getLogger("hostpulse.telemetry")


class CounterSource:
    """Provider of raw, cumulative host counters.

    `pull()` never fails as a whole for a single unreadable metric: the field
    is left as `None` and its name lands in `RawCounters.unavailable`.
    `probe()` is the only place allowed to raise `SourceUnavailable`.
    """

    name = "base"

    def probe(self) -> None:
        return None

    def pull(self) -> RawCounters:
        raise NotImplementedError

    def close(self) -> None:
        return None


def _system_source(read_timeout_ms: int, field_timeout_ms: int | None = None) -> CounterSource:
    try:
        from .system import SystemCounterSource
    except ImportError as exc:
        raise SourceUnavailable(f"system counters need psutil: {exc}") from exc

    source = SystemCounterSource(read_timeout_ms=read_timeout_ms, field_timeout_ms=field_timeout_ms)
    try:
        source.probe()
    except SourceUnavailable:
        source.close()
        raise
    return source


def select_counter_source(
    mode: str = "auto",
    read_timeout_ms: int = 2000,
    seed: int | None = None,
    field_timeout_ms: int | None = None,
) -> CounterSource:
    """Pick the counter source once, at startup.

    ``auto`` probes the real source and falls back to synthetic data when the
    probe fails; ``system`` propagates the probe failure; ``synthetic`` skips
    the probe entirely.
    """
    from .synthetic import SyntheticCounterSource

    if mode not in SOURCE_MODES:
        raise ValueError(f"unknown counter source mode: {mode!r}")

    if mode == "synthetic":
        logger.info("using synthetic counters", extra={"event": "source_selected", "source": "synthetic"})
        return SyntheticCounterSource(seed=seed)

    try:
        source = _system_source(read_timeout_ms, field_timeout_ms)
    except SourceUnavailable as exc:
        if mode == "system":
            raise
        logger.warning(
            f"system counters unavailable, using synthetic data: {exc}",
            extra={"event": "source_fallback", "source": "synthetic"},
        )
        return SyntheticCounterSource(seed=seed)

    logger.info("using system counters", extra={"event": "source_selected", "source": "system"})
    return source
