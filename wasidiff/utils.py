"""
This module contains generic, reusable helpers for wasidiff.

It includes the console/log-file tee used by the campaign CLI and small
JSON loading helpers shared by the report and reduce tools.
"""

import json
import sys
from pathlib import Path
from typing import Any, TextIO


def load_json_file(path: Path) -> dict[str, Any] | None:
    """Load a JSON object from path, or return None (with a warning) if unreadable."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        print(f"[!] Warning: Could not load {path}: {e}", file=sys.stderr)
        return None
    if not isinstance(data, dict):
        print(f"[!] Warning: {path} does not contain a JSON object", file=sys.stderr)
        return None
    return data


class TeeLogger:
    """
    A file-like object that writes to both a file and another stream
    (like the original stdout), and flushes immediately.

    Features:
    - Repeat collapsing: consecutive identical lines are collapsed into
      a single line with a (×N) suffix.
    - Verbosity filtering: when verbose=False, per-seed progress lines
      (matches, skipped seeds, reducer chatter) are suppressed from both
      console and file.
    """

    # Lines matching these prefixes are suppressed in quiet mode.
    _QUIET_SUPPRESS_PREFIXES: tuple[str, ...] = (
        "[MATCH]",
        "[INCONCLUSIVE]",
        "  [~] Seed",
        "  [*] Line reduction",
    )

    def __init__(
        self,
        file_path: str | Path,
        original_stream: TextIO,
        verbose: bool = True,
    ) -> None:
        """Initialize the logger with a file path and an existing stream.

        Args:
            file_path: Path to the log file.
            original_stream: The original stream (e.g., sys.stdout) to tee to.
            verbose: If False, suppress per-seed detail. Default True.
        """
        self.original_stream = original_stream
        self.log_file = open(file_path, "w", encoding="utf-8")
        self.verbose = verbose

        self._last_line: str | None = None
        self._repeat_count: int = 0
        # Swallow the trailing "\n" that print() sends after a suppressed line.
        self._last_was_suppressed: bool = False

    def _is_suppressed(self, line: str) -> bool:
        if self.verbose:
            return False
        return line.startswith(self._QUIET_SUPPRESS_PREFIXES) or line.lstrip().startswith(
            self._QUIET_SUPPRESS_PREFIXES
        )

    def _emit(self, text: str) -> None:
        self.original_stream.write(text)
        self.log_file.write(text)

    def _flush_repeat(self) -> None:
        """Flush the buffered repeated line, if any."""
        if self._last_line is None:
            return

        output = self._last_line
        if self._repeat_count > 1:
            suffix = f" (×{self._repeat_count})"
            if output.endswith("\n"):
                output = output[:-1] + suffix + "\n"
            else:
                output = output + suffix
        self._emit(output)

        self._last_line = None
        self._repeat_count = 0

    def write(self, message: str) -> None:
        """Write a message to both the original stream and the log file.

        Consecutive identical lines are collapsed. Empty writes and bare
        newlines are passed through without affecting the repeat buffer.
        """
        if not message or message == "\n":
            if message == "\n" and self._last_was_suppressed:
                self._last_was_suppressed = False
                return
            if message == "\n" and self._last_line is not None:
                if self._last_line.endswith("\n"):
                    return
                self._flush_repeat()
            self._emit(message)
            self._do_flush()
            return

        if self._is_suppressed(message):
            self._last_was_suppressed = True
            return
        self._last_was_suppressed = False

        stripped = message.rstrip("\n")
        if stripped == "":
            self._flush_repeat()
            self._emit(message)
            self._do_flush()
            return

        if self._last_line is not None and stripped == self._last_line.rstrip("\n"):
            self._repeat_count += 1
            return

        self._flush_repeat()
        self._last_line = message
        self._repeat_count = 1

    def _do_flush(self) -> None:
        self.original_stream.flush()
        self.log_file.flush()

    def flush(self) -> None:
        """Flush any buffered repeat and both underlying streams."""
        self._flush_repeat()
        self._do_flush()

    def close(self) -> None:
        """Flush any buffered repeat and close the log file."""
        self._flush_repeat()
        self._do_flush()
        self.log_file.close()

    @property
    def encoding(self) -> str:
        return getattr(self.original_stream, "encoding", "utf-8")

    def isatty(self) -> bool:
        return hasattr(self.original_stream, "isatty") and self.original_stream.isatty()

    def fileno(self) -> int:
        """Return the file descriptor of the original stream.

        Raises OSError if the original stream doesn't have a file descriptor.
        """
        if hasattr(self.original_stream, "fileno"):
            return self.original_stream.fileno()
        raise OSError("TeeLogger does not have a file descriptor")
