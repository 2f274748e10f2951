"""
Dual-target execution for wasidiff.

DualExecutor runs the native executable and the wasm module (inside the
configured runtime) under the same time budget and turns each run into an
ExecutionRecord. Exit classification happens here:
- native: negative return code -> SIGNAL, otherwise NORMAL
- wasm: runtime stderr matching a trap message -> TRAP, runtime killed by a
  signal -> SIGNAL, otherwise NORMAL with the WASI exit code
- either: hitting the time budget -> TIMEOUT (the process tree is killed)
"""

from __future__ import annotations

import re
import signal
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import TYPE_CHECKING

from wasidiff.types import CompiledPair, ExecutionRecord, ExitStatus, Target

if TYPE_CHECKING:
    from wasidiff.toolchain import ProcessResult, Toolchain

# Runtime trap messages, checked in order. Covers wasmtime, wasmer and lucet
# wording; the first match names the trap kind.
WASM_TRAP_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    ("int_divide_by_zero", re.compile(r"integer divide by zero|division by zero", re.I)),
    ("int_overflow", re.compile(r"integer overflow", re.I)),
    ("bad_conversion", re.compile(r"(invalid|bad) conversion to integer", re.I)),
    (
        "out_of_bounds_memory",
        re.compile(r"out of bounds memory access|memory out of bounds|heap out of bounds", re.I),
    ),
    (
        "out_of_bounds_table",
        re.compile(r"undefined element|uninitialized element|out of bounds table access", re.I),
    ),
    ("indirect_call_mismatch", re.compile(r"indirect call type mismatch|bad signature", re.I)),
    ("stack_overflow", re.compile(r"call stack exhausted|stack overflow", re.I)),
    ("unreachable", re.compile(r"unreachable", re.I)),
]

# Generic markers that the runtime aborted the module without a known message.
WASM_TRAP_MARKERS = re.compile(r"wasm trap|\btrap\b|RuntimeError", re.I)


def signal_name(returncode: int) -> str:
    """Name of the signal behind a negative subprocess return code."""
    sig_val = abs(returncode)
    try:
        return signal.Signals(sig_val).name
    except ValueError:
        return f"SIG_{sig_val}"


def classify_wasm_trap(stderr_text: str) -> str | None:
    """Return the trap kind named in runtime output, or None."""
    for trap_kind, pattern in WASM_TRAP_PATTERNS:
        if pattern.search(stderr_text):
            return trap_kind
    if WASM_TRAP_MARKERS.search(stderr_text):
        return "unknown"
    return None


def classify_native_exit(result: ProcessResult) -> ExitStatus:
    if result.timed_out:
        return ExitStatus.timeout()
    if result.returncode is not None and result.returncode < 0:
        return ExitStatus.signal(signal_name(result.returncode), code=result.returncode)
    return ExitStatus.normal(result.returncode or 0)


def classify_wasm_exit(result: ProcessResult) -> ExitStatus:
    if result.timed_out:
        return ExitStatus.timeout()
    if result.returncode is not None and result.returncode < 0:
        # The runtime process itself died.
        return ExitStatus.signal(signal_name(result.returncode), code=result.returncode)
    if result.returncode != 0:
        trap_kind = classify_wasm_trap(result.stderr.decode("utf-8", errors="replace"))
        if trap_kind is not None:
            return ExitStatus.trap(trap_kind, code=result.returncode)
    return ExitStatus.normal(result.returncode or 0)


class DualExecutor:
    """
    Run both build outputs of a CompiledPair and capture their behaviour.

    The two runs share nothing and execute concurrently. Each is bounded by the
    same wall-clock budget; stdout is captured as bytes, stderr is captured but
    only used for trap classification and diagnostics.
    """

    def __init__(self, toolchain: Toolchain) -> None:
        self.toolchain = toolchain

    def run_native(self, binary_path: Path, time_budget: float) -> ExecutionRecord:
        result = self.toolchain.run_native(binary_path, time_budget)
        return ExecutionRecord(
            target=Target.NATIVE,
            stdout=result.stdout,
            exit=classify_native_exit(result),
            wall_time=result.wall_time,
            stderr=result.stderr,
        )

    def run_wasm(self, module_path: Path, time_budget: float) -> ExecutionRecord:
        result = self.toolchain.run_wasm(module_path, time_budget)
        return ExecutionRecord(
            target=Target.WASM,
            stdout=result.stdout,
            exit=classify_wasm_exit(result),
            wall_time=result.wall_time,
            stderr=result.stderr,
        )

    def execute(
        self, pair: CompiledPair, time_budget: float
    ) -> tuple[ExecutionRecord, ExecutionRecord]:
        """
        Execute both targets concurrently.

        Returns:
            (native_record, wasm_record)
        """
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="wasidiff-exec") as pool:
            native_future = pool.submit(self.run_native, pair.native_binary, time_budget)
            wasm_future = pool.submit(self.run_wasm, pair.wasm_module, time_budget)
            return native_future.result(), wasm_future.result()

    def execute_wasm(
        self, module_path: Path, native_record: ExecutionRecord, time_budget: float
    ) -> tuple[ExecutionRecord, ExecutionRecord]:
        """Re-run only the wasm side against an already captured native record."""
        return native_record, self.run_wasm(module_path, time_budget)
