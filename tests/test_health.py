"""Tests for the HealthMonitor observability layer."""

import json
import tempfile
import threading
import unittest
from pathlib import Path

from wasidiff.health import (
    CONSECUTIVE_COMPILE_FAILURE_THRESHOLD,
    CONSECUTIVE_TIMEOUT_THRESHOLD,
    HealthMonitor,
)


class HealthTestBase(unittest.TestCase):
    def setUp(self):
        self.tmp_dir = tempfile.TemporaryDirectory()
        self.log_path = Path(self.tmp_dir.name) / "health_events.jsonl"
        self.monitor = HealthMonitor(log_path=self.log_path)

    def tearDown(self):
        self.tmp_dir.cleanup()

    def events(self):
        if not self.log_path.exists():
            return []
        return [json.loads(line) for line in self.log_path.read_text().splitlines()]


class TestHealthMonitorWriteEvent(HealthTestBase):
    """Test the internal _write_event method."""

    def test_writes_valid_jsonl(self):
        """Events are written as valid JSONL with expected fields."""
        self.monitor._write_event("test_cat", "test_event", key1="val1")

        records = self.events()
        self.assertEqual(len(records), 1)
        self.assertIn("ts", records[0])
        self.assertEqual(records[0]["cat"], "test_cat")
        self.assertEqual(records[0]["event"], "test_event")
        self.assertEqual(records[0]["key1"], "val1")

    def test_survives_oserror(self):
        """OSError during write is swallowed but the counter still moves."""
        monitor = HealthMonitor(log_path=Path("/nonexistent/dir/health.jsonl"))
        monitor._write_event("cat", "evt")
        self.assertEqual(monitor.counters["cat.evt"], 1)

    def test_concurrent_writes_are_not_interleaved(self):
        """Every line written from several threads is a complete JSON record."""
        threads = [
            threading.Thread(
                target=lambda i=i: [self.monitor.record_generator_error(i, "x" * 200)
                                    for _ in range(20)]
            )
            for i in range(4)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        self.assertEqual(len(self.events()), 80)
        self.assertEqual(self.monitor.get_summary(), {"generation.generator_error": 80})


class TestStreaks(HealthTestBase):
    def test_timeout_streak_event_at_threshold(self):
        """A streak event is written exactly once when the threshold is reached."""
        for seed in range(CONSECUTIVE_TIMEOUT_THRESHOLD + 2):
            self.monitor.record_timeout(seed, "wasm")
        streaks = [e for e in self.events() if e["event"] == "consecutive_timeouts"]
        self.assertEqual(len(streaks), 1)
        self.assertEqual(streaks[0]["count"], CONSECUTIVE_TIMEOUT_THRESHOLD)

    def test_reset_breaks_timeout_streak(self):
        for seed in range(CONSECUTIVE_TIMEOUT_THRESHOLD - 1):
            self.monitor.record_timeout(seed, "native")
        self.monitor.reset_timeout_streak()
        self.monitor.record_timeout(99, "native")
        self.assertEqual(self.events(), [])

    def test_compile_failure_streak(self):
        for seed in range(CONSECUTIVE_COMPILE_FAILURE_THRESHOLD):
            self.monitor.record_compile_failure(seed, "wasm", False)
        summary = self.monitor.get_summary()
        self.assertEqual(
            summary["compilation.compile_failure"], CONSECUTIVE_COMPILE_FAILURE_THRESHOLD
        )
        self.assertEqual(summary["compilation.consecutive_compile_failures"], 1)

        self.monitor.reset_compile_failure_streak()
        self.monitor.record_compile_failure(100, "wasm", True)
        self.assertEqual(
            self.monitor.get_summary()["compilation.consecutive_compile_failures"], 1
        )


class TestEvents(HealthTestBase):
    def test_unknown_trap_excerpt_is_truncated(self):
        self.monitor.record_unknown_trap(5, "e" * 2000)
        event = self.events()[0]
        self.assertEqual(event["event"], "unknown_trap")
        self.assertEqual(len(event["stderr_excerpt"]), 500)

    def test_reduction_events(self):
        self.monitor.record_reduction_result(3, "converged", 12)
        self.monitor.record_nondeterminism(4, "Divergence{OutputMismatch} then Match")
        cats = {(e["cat"], e["event"]) for e in self.events()}
        self.assertEqual(
            cats, {("reduction", "reduction_result"), ("reduction", "nondeterminism")}
        )

    def test_tool_error(self):
        self.monitor.record_tool_error("csmith", "not found")
        self.assertEqual(self.monitor.get_summary(), {"execution.tool_error": 1})

    def test_iteration_error(self):
        self.monitor.record_iteration_error(8, "native-launch-failed", "Exec format error")
        event = self.events()[0]
        self.assertEqual((event["seed"], event["reason"]), (8, "native-launch-failed"))
        self.assertEqual(self.monitor.get_summary(), {"execution.iteration_error": 1})


if __name__ == "__main__":
    unittest.main()
