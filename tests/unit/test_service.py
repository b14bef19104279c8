import sys
import time
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(ROOT / "packages" / "telemetry"))
sys.path.insert(0, str(ROOT / "packages" / "core"))
sys.path.insert(0, str(ROOT / "tests"))

from fakes import CountingSource
from hostpulse_core.config import DaemonConfig
from hostpulse_core.service import MetricsService


def _config(capacity=10, interval_ms=100):
    cfg = DaemonConfig()
    cfg.sampling.interval_ms = interval_ms
    cfg.sampling.warmup_ms = 10
    cfg.history.capacity = capacity
    return cfg


class MetricsServiceTests(unittest.TestCase):
    def setUp(self):
        self.service = MetricsService(_config(), source=CountingSource())

    def tearDown(self):
        self.service.stop()

    def test_latest_is_none_before_first_tick(self):
        self.assertIsNone(self.service.latest())
        self.assertEqual(self.service.recent(), ())

    def test_open_stream_backfills_then_continues_without_gaps(self):
        for _ in range(3):
            self.service.sampler.tick()
        backfill, handle = self.service.open_stream()
        self.assertEqual([s.sequence for s in backfill], [1, 2, 3])

        self.service.sampler.tick()
        self.service.sampler.tick()
        self.assertEqual(handle.get(timeout=0).sequence, 4)
        self.assertEqual(handle.get(timeout=0).sequence, 5)
        self.assertIsNone(handle.get(timeout=0))

    def test_health_reports_counters(self):
        self.service.sampler.tick()
        handle = self.service.subscribe()
        health = self.service.health()
        self.assertEqual(health["status"], "stopped")
        self.assertEqual(health["service"], "hostpulse")
        self.assertEqual(health["source"], "counting")
        self.assertEqual(health["ticks"], 1)
        self.assertEqual(health["last_sequence"], 1)
        self.assertEqual(health["subscribers"], 1)
        self.assertEqual(health["history"], 1)
        self.service.unsubscribe(handle)
        self.assertEqual(self.service.health()["subscribers"], 0)

    def test_background_loop_ticks_and_stops(self):
        handle = self.service.subscribe()
        self.service.start()
        self.assertTrue(self.service.running)

        deadline = time.monotonic() + 5.0
        while self.service.sampler.ticks < 3 and time.monotonic() < deadline:
            time.sleep(0.02)
        self.assertGreaterEqual(self.service.sampler.ticks, 3)
        self.assertEqual(self.service.health()["status"], "ok")

        first = handle.get(timeout=1.0)
        self.assertEqual(first.sequence, 1)
        self.assertEqual(first.cpu.usage_percent, 30.0)

        self.service.stop()
        self.assertFalse(self.service.running)
        self.assertTrue(handle.closed)
        self.assertEqual(self.service.broadcaster.subscriber_count, 0)


if __name__ == "__main__":
    unittest.main()
