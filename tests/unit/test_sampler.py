import sys
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(ROOT / "packages" / "telemetry"))
sys.path.insert(0, str(ROOT / "packages" / "core"))
sys.path.insert(0, str(ROOT / "tests"))

from fakes import BASE_TIME, ScriptedSource, raw
from hostpulse_core.broadcast import Broadcaster
from hostpulse_core.history import HistoryRing
from hostpulse_core.sampler import DEGRADED_FIELDS, Sampler
from hostpulse_telemetry.errors import SourceUnavailable


class _Sleeps:
    def __init__(self):
        self.calls = []

    def __call__(self, seconds):
        self.calls.append(seconds)


def _sampler(source, **kwargs):
    kwargs.setdefault("sleep", _Sleeps())
    return Sampler(source, **kwargs)


class SamplerDerivationTests(unittest.TestCase):
    def test_first_tick_pulls_twice_and_reports_cpu(self):
        source = ScriptedSource([raw(0.0, busy=100, total=1000), raw(1.0, busy=150, total=1100)])
        sleeps = _Sleeps()
        sampler = _sampler(source, sleep=sleeps, warmup_ms=250)
        try:
            snap = sampler.tick()
        finally:
            sampler.close()

        self.assertEqual(source.pulls, 2)
        self.assertEqual(sleeps.calls, [0.25])
        self.assertEqual(snap.cpu.usage_percent, 50.0)
        self.assertEqual(snap.sequence, 1)
        self.assertNotIn("cpu", snap.unavailable)
        self.assertTrue(sampler.primed)
        self.assertTrue(source.closed)

    def test_network_rate_then_counter_reset(self):
        source = ScriptedSource(
            [
                raw(0.0, rx={"eth0": 1_000_000}, tx={"eth0": 0}),
                raw(1.0, rx={"eth0": 1_500_000}, tx={"eth0": 0}),
                raw(2.0, rx={"eth0": 200_000}, tx={"eth0": 0}),
            ]
        )
        sampler = _sampler(source, read_timeout_ms=None)
        first = sampler.tick()
        second = sampler.tick()

        self.assertEqual(first.network.rx_rate, 500_000.0)
        self.assertEqual(second.network.rx_rate, 0.0)
        self.assertEqual(second.network.interfaces[0].rx_rate, 0.0)
        self.assertEqual(second.network.interfaces[0].rx_bytes, 200_000)

    def test_uses_actual_elapsed_time_for_rates(self):
        source = ScriptedSource(
            [
                raw(0.0, rx={"eth0": 0}),
                raw(0.5, rx={"eth0": 1000}),
                raw(3.0, rx={"eth0": 6000}),
            ]
        )
        sampler = _sampler(source, read_timeout_ms=None)
        self.assertEqual(sampler.tick().network.rx_rate, 2000.0)
        self.assertEqual(sampler.tick().network.rx_rate, 2000.0)

    def test_unavailable_field_is_flagged_not_zeroed(self):
        sample = raw(0.0, busy=10, total=100, unavailable=frozenset({"temperature"}))
        later = raw(1.0, busy=20, total=200, unavailable=frozenset({"temperature"}), temperature_millideg=None)
        sampler = _sampler(ScriptedSource([sample, later]), read_timeout_ms=None)
        snap = sampler.tick()

        self.assertIn("temperature", snap.unavailable)
        self.assertIsNone(snap.temperature.cpu_celsius)
        self.assertEqual(snap.cpu.usage_percent, 10.0)

    def test_new_interface_starts_at_zero_rate(self):
        source = ScriptedSource(
            [
                raw(0.0, rx={"eth0": 100}),
                raw(1.0, rx={"eth0": 200, "wlan0": 5_000_000}),
            ]
        )
        snap = _sampler(source, read_timeout_ms=None).tick()
        rates = {i.name: i.rx_rate for i in snap.network.interfaces}
        self.assertEqual(rates, {"eth0": 100.0, "wlan0": 0.0})


class SamplerFailureTests(unittest.TestCase):
    def test_failed_pull_yields_degraded_snapshot_and_keeps_previous(self):
        source = ScriptedSource(
            [
                raw(0.0, busy=100, total=1000),
                raw(1.0, busy=150, total=1100),
                RuntimeError("counter read exploded"),
                raw(2.0, busy=200, total=1200),
            ]
        )
        sampler = _sampler(source)
        try:
            first = sampler.tick()
            degraded = sampler.tick()
            recovered = sampler.tick()
        finally:
            sampler.close()

        self.assertEqual(first.cpu.usage_percent, 50.0)
        self.assertEqual(degraded.sequence, 2)
        self.assertEqual(set(degraded.unavailable), set(DEGRADED_FIELDS))
        self.assertIsNone(degraded.cpu.usage_percent)
        self.assertIsNone(degraded.memory)
        self.assertEqual(degraded.source, "scripted")
        self.assertEqual(recovered.cpu.usage_percent, 50.0)
        self.assertEqual(sampler.failed_pulls, 1)

    def test_source_unavailable_mid_run_does_not_propagate(self):
        source = ScriptedSource([raw(0.0), SourceUnavailable("gone"), raw(1.0)])
        sampler = _sampler(source, read_timeout_ms=None)
        snap = sampler.tick()
        self.assertIn("network", snap.unavailable)
        self.assertEqual(sampler.failed_pulls, 1)

    def test_slow_pull_times_out(self):
        source = ScriptedSource([raw(0.0), raw(1.0)], delay=0.5)
        sampler = _sampler(source, read_timeout_ms=50)
        try:
            snap = sampler.tick()
        finally:
            sampler.close()

        self.assertEqual(set(snap.unavailable), set(DEGRADED_FIELDS))
        self.assertFalse(sampler.primed)
        # the second pull finds the first still running and is skipped
        self.assertEqual(sampler.failed_pulls, 2)
        self.assertEqual(source.pulls, 1)


class SamplerOrderingTests(unittest.TestCase):
    def test_timestamps_strictly_increase_even_when_clock_stalls(self):
        source = ScriptedSource([raw(float(i), captured_at=BASE_TIME) for i in range(6)])
        sampler = _sampler(source, read_timeout_ms=None)
        snaps = [sampler.tick() for _ in range(5)]

        stamps = [s.timestamp for s in snaps]
        self.assertEqual(stamps, sorted(stamps))
        self.assertEqual(len(set(stamps)), len(stamps))
        self.assertEqual([s.sequence for s in snaps], [1, 2, 3, 4, 5])

    def test_history_is_written_before_publish(self):
        history = HistoryRing(10)
        seen = []

        class RecordingBroadcaster(Broadcaster):
            def publish(self, snapshot):
                latest = history.latest()
                seen.append((snapshot.sequence, latest.sequence if latest else None))
                super().publish(snapshot)

        broadcaster = RecordingBroadcaster()
        handle = broadcaster.subscribe()
        source = ScriptedSource([raw(float(i), busy=i, total=i * 4) for i in range(5)])
        sampler = _sampler(source, history=history, broadcaster=broadcaster, read_timeout_ms=None)
        for _ in range(3):
            sampler.tick()

        self.assertEqual(seen, [(1, 1), (2, 2), (3, 3)])
        self.assertEqual([s.sequence for s in history.recent()], [1, 2, 3])
        self.assertEqual(handle.get(timeout=0).sequence, 1)


if __name__ == "__main__":
    unittest.main()
