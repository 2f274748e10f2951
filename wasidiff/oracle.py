"""
Divergence oracle for wasidiff.

DivergenceOracle compares a native ExecutionRecord with a wasm ExecutionRecord
and returns a Verdict. The comparison is a pure function of the two records.

Verdict precedence (first match wins):
1. both timed out                    -> Inconclusive{both-timeout}
2. exactly one timed out             -> Divergence{OneSidedTimeout}
3. exactly one signalled/trapped     -> Divergence{OneSidedTrap}
4. exit statuses not equivalent      -> Divergence{ExitStatusMismatch}
5. stdout bytes differ               -> Divergence{OutputMismatch}
6. otherwise                         -> Match

Exit equivalence is decided by a TrapMapping, which is configuration: which
wasm trap kinds count as the same failure as a given native signal, and how
native exit codes map to wasm exit codes.
"""

from __future__ import annotations

import difflib
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from wasidiff.errors import ConfigurationError
from wasidiff.types import DivergenceKind, ExecutionRecord, ExitKind, ExitStatus, Verdict

BOTH_TIMEOUT = "both-timeout"

MAX_DIFF_LINES = 40

DEFAULT_SIGNAL_TRAPS: dict[str, list[str]] = {
    "SIGFPE": ["int_divide_by_zero", "int_overflow"],
    "SIGSEGV": ["out_of_bounds_memory", "out_of_bounds_table", "stack_overflow"],
    "SIGBUS": ["out_of_bounds_memory"],
    "SIGILL": ["unreachable"],
    "SIGTRAP": ["unreachable"],
    # wasi-libc implements abort() with the unreachable instruction.
    "SIGABRT": ["unreachable"],
}

# Asymmetries between the two targets. They are attached to verdict details
# as warnings; they never turn a divergence into a match.
DEFAULT_KNOWN_RISKS: dict[str, str] = {
    "int_overflow": (
        "INT_MIN / -1 traps in wasm and raises SIGFPE natively only for the "
        "division instruction; constant-folded forms may differ"
    ),
    "bad_conversion": (
        "out-of-range float-to-int conversion traps in wasm but silently "
        "produces an indefinite value on x86"
    ),
    "stack_overflow": "native and wasm stack limits differ; deep recursion may fail on one side only",
}


@dataclass
class TrapMapping:
    """Configurable equivalence between native exit statuses and wasm ones."""

    signal_traps: dict[str, list[str]] = field(
        default_factory=lambda: {k: list(v) for k, v in DEFAULT_SIGNAL_TRAPS.items()}
    )
    exit_codes: dict[int, int] = field(default_factory=dict)
    known_risks: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_KNOWN_RISKS))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TrapMapping:
        signal_traps = data.get("signal_traps", DEFAULT_SIGNAL_TRAPS)
        exit_codes = data.get("exit_codes", {})
        known_risks = data.get("known_risks", DEFAULT_KNOWN_RISKS)
        if not isinstance(signal_traps, dict) or not all(
            isinstance(v, list) for v in signal_traps.values()
        ):
            raise ConfigurationError("signal_traps must map signal names to lists of trap kinds")
        if not isinstance(exit_codes, dict):
            raise ConfigurationError("exit_codes must map native codes to wasm codes")
        try:
            codes = {int(k): int(v) for k, v in exit_codes.items()}
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"exit_codes entries must be integers: {e}") from e
        return cls(
            signal_traps={str(k): [str(t) for t in v] for k, v in signal_traps.items()},
            exit_codes=codes,
            known_risks={str(k): str(v) for k, v in known_risks.items()},
        )

    @classmethod
    def from_file(cls, path: Path) -> TrapMapping:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"could not read trap mapping {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"trap mapping {path} must be a JSON object")
        return cls.from_dict(data)

    def to_dict(self) -> dict[str, Any]:
        return {
            "signal_traps": self.signal_traps,
            "exit_codes": {str(k): v for k, v in self.exit_codes.items()},
            "known_risks": self.known_risks,
        }

    def exits_equivalent(self, native: ExitStatus, wasm: ExitStatus) -> bool:
        if native.kind is ExitKind.NORMAL and wasm.kind is ExitKind.NORMAL:
            return wasm.code == self.exit_codes.get(native.code, native.code)
        if native.kind is ExitKind.SIGNAL and wasm.kind is ExitKind.TRAP:
            return wasm.trap_kind in self.signal_traps.get(native.signal_name or "", [])
        return False

    def risk_notes(self, native: ExitStatus, wasm: ExitStatus) -> list[str]:
        notes = []
        for status in (native, wasm):
            if status.trap_kind and status.trap_kind in self.known_risks:
                notes.append(f"known false-positive risk ({status.trap_kind}): "
                             f"{self.known_risks[status.trap_kind]}")
        return notes


def _stdout_diff(native_stdout: bytes, wasm_stdout: bytes) -> str:
    diff = difflib.unified_diff(
        native_stdout.decode("utf-8", errors="backslashreplace").splitlines(keepends=True),
        wasm_stdout.decode("utf-8", errors="backslashreplace").splitlines(keepends=True),
        fromfile="native_stdout",
        tofile="wasm_stdout",
    )
    lines = list(diff)
    if len(lines) > MAX_DIFF_LINES:
        lines = lines[:MAX_DIFF_LINES] + [f"... ({len(lines) - MAX_DIFF_LINES} more diff lines)\n"]
    return "".join(lines)


class DivergenceOracle:
    """Classify a pair of execution records. Stateless apart from the mapping."""

    def __init__(self, mapping: TrapMapping | None = None) -> None:
        self.mapping = mapping or TrapMapping()

    def _detail(self, native: ExecutionRecord, wasm: ExecutionRecord, extra: str = "") -> str:
        parts = [f"native: {native.exit.describe()}; wasm: {wasm.exit.describe()}"]
        parts.extend(self.mapping.risk_notes(native.exit, wasm.exit))
        if extra:
            parts.append(extra)
        return "\n".join(parts)

    def compare(self, native: ExecutionRecord, wasm: ExecutionRecord) -> Verdict:
        if native.timed_out and wasm.timed_out:
            return Verdict.inconclusive(BOTH_TIMEOUT)

        if native.timed_out or wasm.timed_out:
            return Verdict.divergence(
                DivergenceKind.ONE_SIDED_TIMEOUT, self._detail(native, wasm)
            )

        if native.exit.is_abnormal != wasm.exit.is_abnormal:
            return Verdict.divergence(DivergenceKind.ONE_SIDED_TRAP, self._detail(native, wasm))

        if not self.mapping.exits_equivalent(native.exit, wasm.exit):
            return Verdict.divergence(
                DivergenceKind.EXIT_STATUS_MISMATCH, self._detail(native, wasm)
            )

        if native.stdout != wasm.stdout:
            return Verdict.divergence(
                DivergenceKind.OUTPUT_MISMATCH,
                self._detail(native, wasm, _stdout_diff(native.stdout, wasm.stdout)),
            )

        return Verdict.match()
