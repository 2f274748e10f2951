"""
Health monitoring for wasidiff campaigns.

Records discrete adverse events to a JSONL log file for observability.
The HealthMonitor is designed to be non-intrusive: it never raises
exceptions and adds negligible overhead to the campaign loop.
"""

import json
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

# Consecutive seeds with a timeout on either side before a streak event is written
CONSECUTIVE_TIMEOUT_THRESHOLD = 5

# Consecutive compile failures before a streak event is written
CONSECUTIVE_COMPILE_FAILURE_THRESHOLD = 10


class HealthMonitor:
    """Track and record adverse campaign events.

    Writes events to a JSONL log file and keeps in-memory counters for
    streak detection (a broken toolchain shows up as every seed failing).

    All public methods silently swallow I/O errors so the monitor never
    stops a campaign.
    """

    def __init__(self, log_path: Path) -> None:
        """Initialize the HealthMonitor.

        Args:
            log_path: Path to the JSONL health events log file.
        """
        self.log_path = log_path
        self.counters: dict[str, int] = {}
        self._lock = threading.Lock()
        self._timeout_streak = 0
        self._compile_failure_streak = 0

    def _write_event(self, category: str, event: str, **kwargs: Any) -> None:
        """Append a single event to the JSONL log.

        Args:
            category: Event category (generation, compilation, execution, reduction).
            event: Event type name.
            **kwargs: Additional event-specific fields.
        """
        record: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "cat": category,
            "event": event,
        }
        record.update(kwargs)
        counter_key = f"{category}.{event}"
        with self._lock:
            try:
                with open(self.log_path, "a", encoding="utf-8") as f:
                    f.write(json.dumps(record, default=str) + "\n")
            except OSError:
                pass  # Never stop the campaign for a health event
            self.counters[counter_key] = self.counters.get(counter_key, 0) + 1

    # =========================================================================
    # Generation / Compilation Events
    # =========================================================================

    def record_generator_error(self, seed: int, error: str) -> None:
        """Record a seed for which csmith produced no usable program."""
        self._write_event("generation", "generator_error", seed=seed, error=error)

    def record_compile_failure(self, seed: int, target: str, timed_out: bool) -> None:
        """Record a compile failure and track consecutive streaks.

        Writes a consecutive_compile_failures event when the streak reaches
        CONSECUTIVE_COMPILE_FAILURE_THRESHOLD.
        """
        self._write_event(
            "compilation", "compile_failure", seed=seed, target=target, timed_out=timed_out
        )
        with self._lock:
            self._compile_failure_streak += 1
            streak = self._compile_failure_streak
        if streak == CONSECUTIVE_COMPILE_FAILURE_THRESHOLD:
            self._write_event(
                "compilation", "consecutive_compile_failures", seed=seed, count=streak
            )

    def reset_compile_failure_streak(self) -> None:
        with self._lock:
            self._compile_failure_streak = 0

    # =========================================================================
    # Execution Events
    # =========================================================================

    def record_timeout(self, seed: int, target: str) -> None:
        """Record a timeout and track consecutive streaks across seeds."""
        with self._lock:
            self._timeout_streak += 1
            streak = self._timeout_streak
        if streak == CONSECUTIVE_TIMEOUT_THRESHOLD:
            self._write_event("execution", "consecutive_timeouts", seed=seed, target=target,
                              count=streak)

    def reset_timeout_streak(self) -> None:
        """Reset the timeout streak (call after a seed without timeouts)."""
        with self._lock:
            self._timeout_streak = 0

    def record_unknown_trap(self, seed: int, stderr_excerpt: str) -> None:
        """Record runtime trap output that matched no known trap message."""
        self._write_event(
            "execution", "unknown_trap", seed=seed, stderr_excerpt=stderr_excerpt[-500:]
        )

    def record_tool_error(self, tool: str, error: str) -> None:
        self._write_event("execution", "tool_error", tool=tool, error=error)

    def record_iteration_error(self, seed: int, reason: str, error: str) -> None:
        """Record an unexpected failure confined to one seed."""
        self._write_event("execution", "iteration_error", seed=seed, reason=reason, error=error)

    # =========================================================================
    # Reduction Events
    # =========================================================================

    def record_nondeterminism(self, seed: int, detail: str) -> None:
        """Record a reduction session aborted by a non-deterministic predicate."""
        self._write_event("reduction", "nondeterminism", seed=seed, detail=detail)

    def record_reduction_result(self, seed: int, status: str, steps: int) -> None:
        self._write_event("reduction", "reduction_result", seed=seed, status=status, steps=steps)

    # =========================================================================
    # Summary
    # =========================================================================

    def get_summary(self) -> dict[str, int]:
        """Return a copy of the in-memory event counters.

        Returns:
            Dict mapping "category.event" keys to occurrence counts.
        """
        with self._lock:
            return dict(self.counters)
