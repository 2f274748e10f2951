"""
External process orchestration for wasidiff.

This module is the only place that spawns processes. It provides:
- ProcessRunner: bounded subprocess execution with process-tree cleanup on
  timeout and forced termination of every in-flight process on cancel()
- CsmithSource: the random program generator (generate(seed) -> source)
- Toolchain: host clang, wasi-sdk clang and the WebAssembly runtime behind one
  injectable object, so tests can substitute fakes without spawning anything
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import tempfile
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import psutil

from wasidiff.errors import (
    ArtifactLaunchError,
    CampaignCancelled,
    GeneratorError,
    ToolInvocationError,
)

if TYPE_CHECKING:
    from wasidiff.config import FuzzConfig, ToolPaths

logger = logging.getLogger(__name__)

# Both targets run with exactly this environment and no arguments.
EXECUTION_ENV = {
    "PATH": os.environ.get("PATH", "/usr/local/bin:/usr/bin:/bin"),
    "LC_ALL": "C",
    "LANG": "C",
}

CSMITH_FLAGS = ["--no-bitfields", "--no-volatiles", "--no-argc"]

KILL_WAIT_SECONDS = 5.0


@dataclass
class ProcessResult:
    """Captured outcome of one external process invocation."""

    argv: list[str]
    returncode: int | None
    stdout: bytes
    stderr: bytes
    wall_time: float
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return not self.timed_out and self.returncode == 0

    def output_text(self) -> str:
        """stdout and stderr combined, for diagnostics."""
        return (self.stdout + self.stderr).decode("utf-8", errors="replace")


def kill_process_tree(pid: int) -> None:
    """Kill a process and every descendant, then reap them."""
    try:
        parent = psutil.Process(pid)
        procs = parent.children(recursive=True) + [parent]
    except psutil.NoSuchProcess:
        return
    for proc in procs:
        try:
            proc.kill()
        except psutil.NoSuchProcess:
            pass
    psutil.wait_procs(procs, timeout=KILL_WAIT_SECONDS)


class ProcessRunner:
    """
    Run external commands with a hard wall-clock bound.

    Every process is started in its own session and registered while it runs,
    so cancel() can kill all of them at once instead of waiting for natural
    completion. Any call made after cancellation raises CampaignCancelled.
    """

    def __init__(self, stop_event: threading.Event | None = None) -> None:
        self.stop_event = stop_event or threading.Event()
        self._lock = threading.Lock()
        self._in_flight: set[subprocess.Popen] = set()

    @property
    def cancelled(self) -> bool:
        return self.stop_event.is_set()

    def cancel(self) -> None:
        """Raise the stop signal and kill every in-flight process tree."""
        self.stop_event.set()
        with self._lock:
            procs = list(self._in_flight)
        for proc in procs:
            logger.debug("Killing in-flight process %s (%s)", proc.pid, proc.args)
            kill_process_tree(proc.pid)

    def run(
        self,
        argv: list[str],
        *,
        timeout: float,
        cwd: Path | None = None,
        env: dict[str, str] | None = None,
        input_bytes: bytes | None = None,
        tool: str | None = None,
    ) -> ProcessResult:
        """
        Run argv to completion or until timeout, whichever comes first.

        Raises:
            ToolInvocationError: the executable could not be launched at all.
            CampaignCancelled: the stop signal was raised before or during the run.
        """
        if self.cancelled:
            raise CampaignCancelled(f"not starting {argv[0]}: campaign cancelled")

        start_time = time.monotonic()
        try:
            proc = subprocess.Popen(
                argv,
                stdin=subprocess.PIPE if input_bytes is not None else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=str(cwd) if cwd else None,
                env=env,
                start_new_session=True,
            )
        except OSError as e:
            raise ToolInvocationError(
                tool or argv[0],
                f"could not launch {tool or 'tool'} '{argv[0]}': {e}",
                {"argv": argv},
            ) from e

        with self._lock:
            self._in_flight.add(proc)
            cancelled_during_launch = self.cancelled
        if cancelled_during_launch:
            kill_process_tree(proc.pid)
        timed_out = False
        try:
            try:
                stdout, stderr = proc.communicate(input_bytes, timeout=timeout)
            except subprocess.TimeoutExpired:
                timed_out = True
                kill_process_tree(proc.pid)
                stdout, stderr = proc.communicate()
        finally:
            with self._lock:
                self._in_flight.discard(proc)

        if self.cancelled:
            raise CampaignCancelled(f"{argv[0]} interrupted by cancellation")

        return ProcessResult(
            argv=list(argv),
            returncode=None if timed_out else proc.returncode,
            stdout=stdout or b"",
            stderr=stderr or b"",
            wall_time=time.monotonic() - start_time,
            timed_out=timed_out,
        )


def find_executable(name: str | Path) -> str | None:
    """Resolve a tool given as a bare name (PATH lookup) or as a path."""
    name = str(name)
    if os.sep in name:
        path = Path(name)
        return str(path) if path.is_file() and os.access(path, os.X_OK) else None
    return shutil.which(name)


class CsmithSource:
    """Random C program generator. generate() is a pure function of the seed."""

    def __init__(self, tools: ToolPaths, runner: ProcessRunner, timeout: float) -> None:
        self.tools = tools
        self.runner = runner
        self.timeout = timeout

    def command(self, seed: int, output_path: Path) -> list[str]:
        return [self.tools.csmith, *CSMITH_FLAGS, "--seed", str(seed), "-o", str(output_path)]

    def generate(self, seed: int) -> str:
        """Return the program text for a seed.

        Raises:
            GeneratorError: csmith failed, timed out, or produced no main().
        """
        with tempfile.TemporaryDirectory(prefix="wasidiff_gen_") as tmp:
            output_path = Path(tmp) / "gen.c"
            result = self.runner.run(
                self.command(seed, output_path), timeout=self.timeout, tool="csmith"
            )
            if result.timed_out:
                raise GeneratorError(f"csmith timed out for seed {seed}", {"seed": seed})
            if result.returncode != 0:
                raise GeneratorError(
                    f"csmith exited with {result.returncode} for seed {seed}",
                    {"seed": seed, "output": result.output_text()[-2000:]},
                )
            try:
                source = output_path.read_text(encoding="utf-8", errors="replace")
            except OSError as e:
                raise GeneratorError(f"csmith produced no output for seed {seed}: {e}") from e
        if "main" not in source:
            raise GeneratorError(f"csmith output for seed {seed} has no main()", {"seed": seed})
        return source


class Toolchain:
    """
    Process-backed implementation of the generator, both compilers and the runtime.

    The DualCompiler, DualExecutor and Reducer only talk to this interface, so a
    test double with the same methods replaces every external tool.
    """

    def __init__(self, config: FuzzConfig, runner: ProcessRunner | None = None) -> None:
        self.config = config
        self.tools = config.tools
        self.runner = runner or ProcessRunner()
        self.source = CsmithSource(self.tools, self.runner, config.generator_timeout)

    # --- Program generation ---

    def generate(self, seed: int) -> str:
        return self.source.generate(seed)

    # --- Compilation ---

    def _common_cflags(self) -> list[str]:
        return [
            "-std=c11",
            f"-I{self.tools.csmith_include}",
            self.config.opt_level,
            *self.config.extra_cflags,
        ]

    def native_compile_cmd(self, source_path: Path, output_path: Path) -> list[str]:
        # -m32 gives the host build the same ILP32 data model as wasm32.
        return [
            self.tools.host_clang,
            "-m32",
            *self._common_cflags(),
            *self.tools.host_cflags,
            str(source_path),
            "-o",
            str(output_path),
        ]

    def wasm_compile_cmd(self, source_path: Path, output_path: Path) -> list[str]:
        return [
            str(self.tools.wasm_clang),
            "--target=wasm32-wasi",
            f"--sysroot={self.tools.wasi_sysroot}",
            *self._common_cflags(),
            str(source_path),
            "-o",
            str(output_path),
        ]

    def sanity_cmd(self, source_path: Path, cflags: list[str]) -> list[str]:
        return [
            self.tools.host_clang,
            "-m32",
            "-std=c11",
            f"-I{self.tools.csmith_include}",
            "-fsyntax-only",
            *cflags,
            str(source_path),
        ]

    def compile_native(self, source_path: Path, output_path: Path) -> ProcessResult:
        return self.runner.run(
            self.native_compile_cmd(source_path, output_path),
            timeout=self.config.compile_timeout,
            cwd=source_path.parent,
            tool="host clang",
        )

    def compile_wasm(self, source_path: Path, output_path: Path) -> ProcessResult:
        return self.runner.run(
            self.wasm_compile_cmd(source_path, output_path),
            timeout=self.config.compile_timeout,
            cwd=source_path.parent,
            tool="wasi-sdk clang",
        )

    def sanity_check(self, source_path: Path, cflags: list[str]) -> ProcessResult:
        """Compile with UB-revealing warnings promoted to errors; run nothing."""
        return self.runner.run(
            self.sanity_cmd(source_path, cflags),
            timeout=self.config.compile_timeout,
            cwd=source_path.parent,
            tool="host clang",
        )

    # --- Execution ---

    def runtime_cmd(self, module_path: Path) -> list[str]:
        return [arg.replace("{module}", str(module_path)) for arg in self.tools.runtime_cmd]

    def run_native(self, binary_path: Path, timeout: float) -> ProcessResult:
        """Run a compiled native binary.

        Raises:
            ArtifactLaunchError: the binary exists but the OS would not execute it.
        """
        try:
            return self.runner.run(
                [str(binary_path)],
                timeout=timeout,
                cwd=binary_path.parent,
                env=dict(EXECUTION_ENV),
                tool="native binary",
            )
        except ToolInvocationError as e:
            raise ArtifactLaunchError("native", e.message, e.context) from e

    def run_wasm(self, module_path: Path, timeout: float) -> ProcessResult:
        return self.runner.run(
            self.runtime_cmd(module_path),
            timeout=timeout,
            cwd=module_path.parent,
            env=dict(EXECUTION_ENV),
            tool="wasm runtime",
        )

    # --- Environment checks ---

    def preflight(self) -> dict[str, str]:
        """
        Check that every required tool exists before the first iteration.

        Returns:
            Mapping of tool label to resolved path.

        Raises:
            ToolInvocationError: naming every missing dependency.
        """
        required = {
            "csmith": self.tools.csmith,
            "host clang": self.tools.host_clang,
            "wasi-sdk clang": str(self.tools.wasm_clang),
            "wasm runtime": self.tools.runtime_cmd[0],
        }
        resolved: dict[str, str] = {}
        missing: list[str] = []
        for label, name in required.items():
            path = find_executable(name)
            if path is None:
                missing.append(f"{label} ({name})")
            else:
                resolved[label] = path

        if not self.tools.wasi_sysroot.is_dir():
            missing.append(f"wasi sysroot ({self.tools.wasi_sysroot})")
        if not (self.tools.csmith_include / "csmith.h").is_file():
            missing.append(f"csmith headers ({self.tools.csmith_include}/csmith.h)")

        if missing:
            raise ToolInvocationError(
                missing[0].split(" (")[0],
                "missing required tools: " + ", ".join(missing),
                {"missing": missing},
            )
        return resolved

    def version_info(self) -> dict[str, str]:
        """First line of --version for each tool, for run metadata."""
        versions: dict[str, str] = {}
        tools = {
            "csmith": [self.tools.csmith, "--version"],
            "host_clang": [self.tools.host_clang, "--version"],
            "wasm_clang": [str(self.tools.wasm_clang), "--version"],
            "runtime": [self.tools.runtime_cmd[0], "--version"],
        }
        for name, argv in tools.items():
            try:
                result = self.runner.run(argv, timeout=10, tool=name)
                lines = result.output_text().strip().splitlines()
                versions[name] = lines[0] if lines else "unknown"
            except ToolInvocationError:
                versions[name] = "not found"
        return versions
