import contextlib
import io
import json
import sys
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(ROOT / "apps" / "daemon"))
sys.path.insert(0, str(ROOT / "packages" / "core"))
sys.path.insert(0, str(ROOT / "packages" / "telemetry"))
sys.path.insert(0, str(ROOT / "packages" / "web"))

from hostpulse_app.cli import _apply_overrides, build_parser, main
from hostpulse_core.config import DaemonConfig


class CliParserTests(unittest.TestCase):
    def test_serve_command(self):
        args = build_parser().parse_args(["-p", "9000", "-i", "500", "serve", "--no-cors", "--max-connections", "3"])
        self.assertEqual(args.command, "serve")
        cfg = _apply_overrides(DaemonConfig(), args)
        self.assertEqual(cfg.server.port, 9000)
        self.assertEqual(cfg.sampling.interval_ms, 500)
        self.assertFalse(cfg.server.enable_cors)
        self.assertEqual(cfg.broadcast.max_subscribers, 3)

    def test_snapshot_command(self):
        args = build_parser().parse_args(["--source", "synthetic", "snapshot", "-f", "json"])
        self.assertEqual(args.command, "snapshot")
        self.assertEqual(args.format, "json")
        self.assertEqual(args.source, "synthetic")

    def test_debug_flag_wins(self):
        args = build_parser().parse_args(["-v", "-d", "info"])
        self.assertEqual(_apply_overrides(DaemonConfig(), args).logging.level, "DEBUG")

    def test_verbose_raises_level_from_warning_to_info(self):
        parser = build_parser()
        self.assertEqual(_apply_overrides(DaemonConfig(), parser.parse_args(["serve"])).logging.level, "WARNING")
        self.assertEqual(_apply_overrides(DaemonConfig(), parser.parse_args(["-v", "serve"])).logging.level, "INFO")

    def test_interval_override_is_clamped(self):
        args = build_parser().parse_args(["-i", "1", "serve"])
        self.assertEqual(_apply_overrides(DaemonConfig(), args).sampling.interval_ms, 100)

    def test_rejects_unknown_source(self):
        with contextlib.redirect_stderr(io.StringIO()):
            with self.assertRaises(SystemExit):
                build_parser().parse_args(["--source", "serial", "snapshot"])


class CliCommandTests(unittest.TestCase):
    def _run(self, argv):
        out = io.StringIO()
        with contextlib.redirect_stdout(out):
            rc = main(argv)
        return rc, out.getvalue()

    def test_snapshot_json_with_synthetic_source(self):
        rc, out = self._run(["--config", "/nonexistent/hostpulse.json", "--source", "synthetic", "snapshot", "-f", "json"])
        self.assertEqual(rc, 0)
        data = json.loads(out)
        self.assertEqual(data["source"], "synthetic")
        self.assertEqual(data["sequence"], 1)
        self.assertIsNotNone(data["cpu"]["usage_percent"])

    def test_snapshot_pretty(self):
        rc, out = self._run(["--config", "/nonexistent/hostpulse.json", "--source", "synthetic", "snapshot"])
        self.assertEqual(rc, 0)
        self.assertIn("HostPulse snapshot #1", out)
        self.assertIn("Model: Synthetic host", out)

    def test_info(self):
        rc, out = self._run(["--config", "/nonexistent/hostpulse.json", "--source", "synthetic", "info"])
        self.assertEqual(rc, 0)
        data = json.loads(out)
        self.assertEqual(data["source"], "synthetic")
        self.assertEqual(data["cpu"]["cores"], 4)


if __name__ == "__main__":
    unittest.main()
