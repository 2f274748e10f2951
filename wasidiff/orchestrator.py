#!/usr/bin/env python3
"""
Campaign driver for wasidiff.

CampaignDriver walks a seed range (or random 32-bit seeds), and for each seed
runs generate -> compile -> execute -> compare on a worker pool. Divergences
are persisted and optionally reduced; compile failures and inconclusive
results are counted. Every campaign ends with a CampaignReport, including
campaigns stopped by a signal or by a fatal tool error.
"""

from __future__ import annotations

import argparse
import itertools
import os
import platform
import random
import shlex
import shutil
import signal
import socket
import sys
import tempfile
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from datetime import datetime
from pathlib import Path
from textwrap import dedent
from typing import Any, Iterable, Iterator

from wasidiff.artifacts import RESULTS_LOG_FILE, ArtifactManager, CampaignStats, ResultsLog
from wasidiff.compiler import NATIVE_NAME, SOURCE_NAME, WASM_NAME, DualCompiler
from wasidiff.config import FuzzConfig, ReductionMode, ToolPaths
from wasidiff.errors import (
    ArtifactLaunchError,
    CampaignCancelled,
    ConfigurationError,
    GeneratorError,
    ToolInvocationError,
)
from wasidiff.execution import DualExecutor
from wasidiff.health import HealthMonitor
from wasidiff.metadata import generate_run_metadata
from wasidiff.oracle import DivergenceOracle, TrapMapping
from wasidiff.reducer import Reducer, ReductionQueue, failed_reduction
from wasidiff.report import format_health_summary, format_report
from wasidiff.toolchain import ProcessRunner, Toolchain
from wasidiff.types import (
    CampaignReport,
    CompileFailure,
    ExitKind,
    MinimalReproducer,
    ProgramArtifact,
    ReductionStatus,
    Seed,
    Verdict,
)
from wasidiff.utils import TeeLogger

SEED_SPACE = 2**32

_NO_SEED = object()


class CampaignDriver:
    """
    Runs a differential campaign over many seeds.

    Shared state is limited to the injected ResultsLog, the lock-protected
    CampaignStats and the stop event; each iteration works in its own
    temporary directory.
    """

    def __init__(
        self,
        config: FuzzConfig,
        toolchain: Toolchain | None = None,
        results_log: ResultsLog | None = None,
        health_monitor: HealthMonitor | None = None,
    ) -> None:
        """
        Args:
            config: Campaign configuration.
            toolchain: Generator, compilers and runtime. Built from config when
                omitted; tests pass a fake.
            results_log: Sink for per-seed verdicts. Defaults to
                <output>/results.jsonl.
            health_monitor: Optional adverse event recorder.
        """
        self.config = config
        if toolchain is None:
            toolchain = Toolchain(config, ProcessRunner())
        self.toolchain = toolchain
        self.runner = toolchain.runner
        self.stop_event = self.runner.stop_event
        self.results_log = results_log or ResultsLog(config.output_dir / RESULTS_LOG_FILE)
        self.health_monitor = health_monitor
        self.fatal_error: BaseException | None = None
        self._halt = threading.Event()
        self._halt_reason: str | None = None
        self._setup(config)

    def _setup(self, config: FuzzConfig) -> None:
        self.config = config
        mapping = (
            TrapMapping.from_file(config.trap_mapping_path)
            if config.trap_mapping_path
            else TrapMapping()
        )
        self.compiler = DualCompiler(self.toolchain, config.reject_diagnostics)
        self.executor = DualExecutor(self.toolchain)
        self.oracle = DivergenceOracle(mapping)
        self.artifacts = ArtifactManager(config.output_dir)
        self.stats = CampaignStats()
        self.reducer: Reducer | None = None
        self.reduction_queue: ReductionQueue | None = None
        if config.reduction_mode is not ReductionMode.OFF:
            self.reducer = Reducer(config, self.toolchain)
        if config.reduction_mode is ReductionMode.BACKGROUND:
            self.reduction_queue = ReductionQueue(
                self.reducer, self._on_reduction, self.stop_event
            )

    # --- Control ---

    def preflight(self) -> dict[str, str]:
        """Validate configuration and every tool path before the first iteration."""
        self.config.validate()
        resolved = self.toolchain.preflight()
        for label, path in resolved.items():
            print(f"[*] {label + ':':<16}{path}", file=sys.stderr)
        return resolved

    def cancel(self) -> None:
        """Stop the campaign now; in-flight processes are killed, not awaited."""
        self.runner.cancel()

    def _stop_submitting(self, reason: str) -> None:
        if not self._halt.is_set():
            self._halt_reason = reason
            self._halt.set()

    # --- Per-seed pipeline ---

    def _build_info(self) -> dict[str, Any]:
        return {
            "opt_level": self.config.opt_level,
            "extra_cflags": list(self.config.extra_cflags),
            "native_cmd": self.toolchain.native_compile_cmd(Path(SOURCE_NAME), Path(NATIVE_NAME)),
            "wasm_cmd": self.toolchain.wasm_compile_cmd(Path(SOURCE_NAME), Path(WASM_NAME)),
            "runtime_cmd": self.toolchain.runtime_cmd(Path(WASM_NAME)),
            "time_budget": self.config.time_budget,
        }

    def _check_cancelled(self, seed: Seed) -> None:
        if self.stop_event.is_set():
            raise CampaignCancelled(f"seed {seed} interrupted by cancellation")

    def evaluate(self, artifact: ProgramArtifact, workdir: Path):
        """Compile, run and compare one program.

        Returns:
            (verdict, compiled pair, native record, wasm record), or a
            CompileFailure.
        """
        compiled = self.compiler.compile(artifact, workdir)
        if isinstance(compiled, CompileFailure):
            return compiled
        native, wasm = self.executor.execute(compiled, self.config.time_budget)
        return self.oracle.compare(native, wasm), compiled, native, wasm

    def _process_seed(self, seed: Seed) -> str:
        """Run one iteration end to end. Returns the result label.

        Only cancellation and misconfiguration escape; any other failure is
        confined to this seed and counted as inconclusive.
        """
        self._check_cancelled(seed)
        try:
            return self._run_iteration(seed)
        except (CampaignCancelled, ToolInvocationError, ConfigurationError):
            raise
        except ArtifactLaunchError as e:
            self._check_cancelled(seed)
            return self._handle_iteration_error(seed, f"{e.target}-launch-failed", e.message)
        except Exception as e:
            self._check_cancelled(seed)
            return self._handle_iteration_error(
                seed, "internal-error", f"{type(e).__name__}: {e}"
            )

    def _handle_iteration_error(self, seed: Seed, reason: str, detail: str) -> str:
        print(f"  [!] Seed {seed}: {reason}: {detail}", file=sys.stderr)
        verdict = Verdict.inconclusive(reason)
        self.stats.record_verdict(verdict)
        self.results_log.append(seed, verdict.label, reason=reason, error=detail)
        if self.health_monitor:
            self.health_monitor.record_iteration_error(seed, reason, detail)
        return verdict.label

    def _run_iteration(self, seed: Seed) -> str:
        try:
            source = self.toolchain.generate(seed)
        except GeneratorError as e:
            self._check_cancelled(seed)
            print(f"  [~] Seed {seed}: generator error: {e.message}", file=sys.stderr)
            self.stats.record_generator_error()
            self.results_log.append(seed, "GeneratorError", error=e.message)
            if self.health_monitor:
                self.health_monitor.record_generator_error(seed, e.message)
            return "GeneratorError"

        artifact = ProgramArtifact(seed=seed, source=source)
        self.config.work_root.mkdir(parents=True, exist_ok=True)
        workdir = Path(tempfile.mkdtemp(prefix=f"{artifact.name}_", dir=self.config.work_root))
        try:
            result = self.evaluate(artifact, workdir)
            self._check_cancelled(seed)
            if isinstance(result, CompileFailure):
                return self._handle_compile_failure(artifact, result)
            verdict, compiled, native, wasm = result
            self._record_health(seed, native, wasm)

            if verdict.is_divergence:
                artifact_dir = self.artifacts.save_divergence(
                    artifact, compiled, native, wasm, verdict, self._build_info()
                )
                self.stats.record_verdict(verdict, artifact_dir)
                self.results_log.append(seed, verdict.label, artifact=str(artifact_dir))
                if self.config.fail_fast:
                    self._stop_submitting("FailFast")
                self._schedule_reduction(artifact, verdict)
            elif verdict.is_inconclusive:
                print(f"[INCONCLUSIVE] seed {seed}: {verdict.reason}")
                if self.config.persist_inconclusive:
                    self.artifacts.save_inconclusive(artifact, native, wasm, verdict)
                self.stats.record_verdict(verdict)
                self.results_log.append(seed, verdict.label)
            else:
                print(
                    f"[MATCH] seed {seed} (native {native.wall_time:.2f}s, "
                    f"wasm {wasm.wall_time:.2f}s)"
                )
                self.stats.record_verdict(verdict)
                self.results_log.append(seed, verdict.label)
            return verdict.label
        finally:
            if not self.config.keep_workdirs:
                shutil.rmtree(workdir, ignore_errors=True)

    def _handle_compile_failure(self, artifact: ProgramArtifact, failure: CompileFailure) -> str:
        self.stats.record_compile_failure(failure)
        self.results_log.append(
            artifact.seed, "CompileFailure", target=failure.target.value, timed_out=failure.timed_out
        )
        if self.config.persist_compile_failures:
            self.artifacts.save_compile_failure(artifact, failure)
        if self.health_monitor:
            self.health_monitor.record_compile_failure(
                artifact.seed, failure.target.value, failure.timed_out
            )
        return "CompileFailure"

    def _record_health(self, seed: Seed, native, wasm) -> None:
        if not self.health_monitor:
            return
        self.health_monitor.reset_compile_failure_streak()
        if native.timed_out or wasm.timed_out:
            self.health_monitor.record_timeout(seed, "native" if native.timed_out else "wasm")
        else:
            self.health_monitor.reset_timeout_streak()
        if wasm.exit.kind is ExitKind.TRAP and wasm.exit.trap_kind == "unknown":
            self.health_monitor.record_unknown_trap(
                seed, wasm.stderr.decode("utf-8", errors="replace")
            )

    # --- Reduction ---

    def _schedule_reduction(self, artifact: ProgramArtifact, verdict: Verdict) -> None:
        if self.reduction_queue is not None:
            self.reduction_queue.submit(artifact, verdict)
        elif self.reducer is not None:
            try:
                reproducer = self.reducer.reduce(artifact, verdict)
            except CampaignCancelled:
                return
            except Exception as e:
                message = getattr(e, "message", None) or f"{type(e).__name__}: {e}"
                print(
                    f"  [!] Reduction of seed {artifact.seed} failed: {message}", file=sys.stderr
                )
                reproducer = failed_reduction(artifact, verdict, message)
            self._on_reduction(artifact, reproducer)

    def _on_reduction(self, artifact: ProgramArtifact, reproducer: MinimalReproducer) -> None:
        self.artifacts.save_reproducer(self.artifacts.divergences_dir / artifact.name, reproducer)
        self.stats.record_reduction(artifact.name, reproducer.status.value)
        if self.health_monitor:
            self.health_monitor.record_reduction_result(
                artifact.seed, reproducer.status.value, reproducer.steps
            )
            if reproducer.status is ReductionStatus.NON_DETERMINISTIC:
                self.health_monitor.record_nondeterminism(
                    artifact.seed, "; ".join(reproducer.diagnostics)
                )

    # --- Campaign loop ---

    @staticmethod
    def seed_sequence(
        seed_start: Seed,
        count: int | None,
        random_seeds: bool = False,
        rng_seed: int | None = None,
    ) -> Iterator[Seed]:
        """Sequential seeds from seed_start, or random 32-bit seeds. count=None is unbounded."""
        if random_seeds:
            rng = random.Random(rng_seed)
            stream: Iterator[Seed] = (rng.randrange(SEED_SPACE) for _ in itertools.count())
        else:
            stream = itertools.count(seed_start)
        if count is None:
            return stream
        return itertools.islice(stream, count)

    def _collect(self, futures: Iterable[Future]) -> None:
        for future in futures:
            try:
                future.result()
            except CampaignCancelled:
                self.stats.record_cancelled()
            except Exception as e:
                self.stats.record_cancelled()
                self._fatal(e)

    def _fatal(self, error: BaseException) -> None:
        if self.fatal_error is None:
            self.fatal_error = error
            message = getattr(error, "message", str(error))
            print(f"\n[!!!] Fatal error, aborting campaign: {message}", file=sys.stderr)
            if self.health_monitor and isinstance(error, ToolInvocationError):
                self.health_monitor.record_tool_error(error.tool, error.message)
        self.cancel()

    def run(
        self,
        seed_start: Seed = 0,
        count: int | None = 0,
        config: FuzzConfig | None = None,
        seeds: Iterable[Seed] | None = None,
        random_seeds: bool = False,
        rng_seed: int | None = None,
    ) -> CampaignReport:
        """
        Run a campaign and return its report.

        Args:
            seed_start: First seed for sequential mode.
            count: Number of seeds; None runs until cancelled.
            config: Overrides the driver's configuration for this run.
            seeds: Explicit seeds to process instead of a generated sequence.
            random_seeds: Draw random 32-bit seeds instead of sequential ones.
            rng_seed: Seed for the random seed stream (reproducible campaigns).

        Returns:
            CampaignReport. Never raises for per-iteration or fatal errors; a
            fatal error sets termination and self.fatal_error.
        """
        if config is not None:
            self._setup(config)
        self.stats = CampaignStats()
        self.fatal_error = None
        self._halt.clear()
        self._halt_reason = None
        start = time.monotonic()

        if seeds is None:
            seeds = self.seed_sequence(seed_start, count, random_seeds, rng_seed)
        seeds = iter(seeds)
        first = next(seeds, _NO_SEED)
        if first is _NO_SEED:
            return self._finish(start)
        seeds = itertools.chain([first], seeds)

        try:
            self.preflight()
        except (ToolInvocationError, ConfigurationError) as e:
            self.fatal_error = e
            print(f"[!!!] {e.message}", file=sys.stderr)
            return self._finish(start)

        if self.reduction_queue is not None:
            self.reduction_queue.start()

        max_in_flight = self.config.workers * 2
        with ThreadPoolExecutor(
            max_workers=self.config.workers, thread_name_prefix="wasidiff-worker"
        ) as pool:
            pending: set[Future] = set()
            for seed in seeds:
                while len(pending) >= max_in_flight:
                    done, pending = wait(pending, return_when=FIRST_COMPLETED)
                    self._collect(done)
                if self.stop_event.is_set() or self._halt.is_set():
                    break
                pending.add(pool.submit(self._process_seed, seed))
            done, _ = wait(pending)
            self._collect(done)

        if self.reduction_queue is not None:
            self.reduction_queue.close(wait=not self.stop_event.is_set())

        return self._finish(start)

    def _finish(self, start: float) -> CampaignReport:
        if self.fatal_error is not None:
            termination = f"Fatal: {getattr(self.fatal_error, 'message', self.fatal_error)}"
        elif self.stop_event.is_set():
            termination = "Cancelled"
        elif self._halt_reason:
            termination = self._halt_reason
        else:
            termination = "Completed"
        report = self.stats.snapshot(termination, time.monotonic() - start)
        self.artifacts.write_campaign_report(report)
        self.artifacts.cleanup_staging()
        return report

    def test_seed(self, seed: Seed) -> Verdict | CompileFailure:
        """Run a single seed without persisting anything.

        Raises:
            GeneratorError: csmith produced no program for this seed.
        """
        artifact = ProgramArtifact(seed=seed, source=self.toolchain.generate(seed))
        with tempfile.TemporaryDirectory(prefix=f"{artifact.name}_") as tmp:
            result = self.evaluate(artifact, Path(tmp))
        if isinstance(result, CompileFailure):
            return result
        return result[0]


def build_config(args: argparse.Namespace) -> FuzzConfig:
    """Translate parsed command-line arguments into a FuzzConfig."""
    tools = ToolPaths.from_env()
    if args.runtime:
        tools.runtime_cmd = shlex.split(args.runtime)
    config = FuzzConfig(
        output_dir=Path(args.output_dir),
        time_budget=args.time_budget,
        compile_timeout=args.compile_timeout,
        opt_level=args.opt_level,
        extra_cflags=[flag for chunk in args.cflags for flag in shlex.split(chunk)],
        workers=args.workers,
        reduction_mode=ReductionMode(args.reduction),
        persist_compile_failures=args.persist_compile_failures,
        persist_inconclusive=args.persist_inconclusive,
        fail_fast=args.fail_fast,
        keep_workdirs=args.keep_workdirs,
        trap_mapping_path=Path(args.trap_mapping) if args.trap_mapping else None,
        tools=tools,
    )
    config.reduction.time_budget = args.reduction_time_budget
    return config


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="wasidiff: differential fuzzing of C-to-WebAssembly compilation."
    )
    parser.add_argument("--seed-start", type=int, default=0, help="First seed (sequential mode).")
    parser.add_argument(
        "--count",
        type=int,
        default=None,
        help="Number of seeds to process. Default: run until interrupted.",
    )
    parser.add_argument(
        "--random-seeds", action="store_true", help="Draw random 32-bit seeds instead."
    )
    parser.add_argument("--rng-seed", type=int, default=None, help="Seed for --random-seeds.")
    parser.add_argument(
        "--test-seed",
        type=int,
        default=None,
        metavar="SEED",
        help="Run a single seed, print its verdict and exit.",
    )
    parser.add_argument(
        "--time-budget", type=float, default=5.0, help="Per-target execution timeout (seconds)."
    )
    parser.add_argument(
        "--compile-timeout", type=float, default=60.0, help="Per-compile timeout (seconds)."
    )
    parser.add_argument("--opt-level", default="-O2", help="Optimization level for both builds.")
    parser.add_argument(
        "--cflags",
        action="append",
        default=[],
        help="Extra flags for both compilers (repeatable, shell-split).",
    )
    parser.add_argument("--output-dir", default="wasidiff_out", help="Campaign output directory.")
    parser.add_argument(
        "--reduction",
        choices=[mode.value for mode in ReductionMode],
        default=ReductionMode.OFF.value,
        help="Reduce divergences: off, inline (in the worker) or background.",
    )
    parser.add_argument(
        "--reduction-time-budget",
        type=float,
        default=3600.0,
        help="Wall-clock budget per reduction session (seconds).",
    )
    parser.add_argument("--workers", type=int, default=1, help="Parallel iterations.")
    parser.add_argument(
        "--persist-compile-failures",
        action="store_true",
        help="Save programs that fail to compile under compile_failures/.",
    )
    parser.add_argument(
        "--persist-inconclusive",
        action="store_true",
        help="Save inconclusive programs under inconclusive/.",
    )
    parser.add_argument(
        "--fail-fast", action="store_true", help="Stop at the first divergence."
    )
    parser.add_argument(
        "--keep-workdirs",
        action="store_true",
        help="Keep per-seed temporary directories under <output>/tmp.",
    )
    parser.add_argument("--trap-mapping", default=None, help="JSON trap mapping file.")
    parser.add_argument(
        "--runtime",
        default=None,
        help="Runtime command template, e.g. 'wasmtime run {module}'.",
    )
    parser.add_argument(
        "--quiet", action="store_true", help="Suppress per-seed [MATCH] lines."
    )
    return parser


def run_test_seed(config: FuzzConfig, seed: Seed) -> int:
    driver = CampaignDriver(config)
    try:
        driver.preflight()
        result = driver.test_seed(seed)
    except (ToolInvocationError, ConfigurationError) as e:
        print(f"[!!!] {e.message}", file=sys.stderr)
        return 2
    except GeneratorError as e:
        print(f"[!] Generator error: {e.message}", file=sys.stderr)
        return 1
    except ArtifactLaunchError as e:
        print(f"[!] Seed {seed}: {e.message}", file=sys.stderr)
        return 1
    if isinstance(result, CompileFailure):
        print(f"[~] Seed {seed}: CompileFailure ({result.target.value})")
        print(result.diagnostic)
        return 1
    print(f"[=] Seed {seed}: {result.label}")
    if result.detail:
        print(result.detail)
    return 0 if result.is_match else 1


def main() -> None:
    """Parse command-line arguments and run a wasidiff campaign."""
    args = build_parser().parse_args()

    try:
        config = build_config(args)
        config.validate()
    except ConfigurationError as e:
        print(f"[!!!] Configuration error: {e.message}", file=sys.stderr)
        sys.exit(2)

    if args.test_seed is not None:
        sys.exit(run_test_seed(config, args.test_seed))

    config.logs_dir.mkdir(parents=True, exist_ok=True)
    config.save(config.output_dir / "config.json")
    run_start_time = datetime.now()
    timestamp_iso = run_start_time.isoformat()
    safe_timestamp = timestamp_iso.replace(":", "-")
    log_path = config.logs_dir / f"campaign_{safe_timestamp}.log"

    original_stdout = sys.stdout
    original_stderr = sys.stderr
    print(f"[+] Starting wasidiff campaign. Full log will be at: {log_path}")

    tee_logger = TeeLogger(log_path, original_stdout, verbose=not args.quiet)
    sys.stdout = tee_logger
    sys.stderr = tee_logger

    driver = CampaignDriver(
        config,
        results_log=ResultsLog(config.output_dir / RESULTS_LOG_FILE),
        health_monitor=HealthMonitor(config.logs_dir / "health_events.jsonl"),
    )

    def handle_signal(signum, frame):
        print(f"\n[!] Received {signal.Signals(signum).name}, stopping campaign...")
        driver.cancel()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    report: CampaignReport | None = None
    try:
        seeds_desc = (
            f"random (rng seed {args.rng_seed})"
            if args.random_seeds
            else f"{args.seed_start} .. "
            + (str(args.seed_start + args.count - 1) if args.count else "unbounded")
        )
        header = f"""
================================================================================
WASIDIFF CAMPAIGN
================================================================================
- Hostname:          {socket.gethostname()}
- Platform:          {platform.platform()}
- Process ID:        {os.getpid()}
- Log File:          {log_path}
- Start Time:        {timestamp_iso}
- Command:           {" ".join(sys.argv)}
- Seeds:             {seeds_desc}
- Count:             {args.count if args.count is not None else "until interrupted"}
- Opt Level:         {config.opt_level} {" ".join(config.extra_cflags)}
- Time Budget:       {config.time_budget} seconds
- Runtime:           {" ".join(config.tools.runtime_cmd)}
- Workers:           {config.workers}
- Reduction:         {config.reduction_mode.value}
================================================================================
"""
        print(dedent(header))
        generate_run_metadata(config, driver.toolchain, args)
        report = driver.run(
            args.seed_start,
            args.count,
            random_seeds=args.random_seeds,
            rng_seed=args.rng_seed,
        )
    except KeyboardInterrupt:
        print("\n[!] Campaign stopped by user.")
        driver.cancel()
    finally:
        print("\n" + "=" * 80)
        print("CAMPAIGN SUMMARY")
        print("=" * 80)
        if report is not None:
            print(format_report(report))
            if driver.health_monitor is not None:
                health_lines = format_health_summary(driver.health_monitor.get_summary())
                if health_lines:
                    print("\n".join(health_lines))
        else:
            print("- No report produced.")
        print("=" * 80)

        tee_logger.close()
        sys.stdout = original_stdout
        sys.stderr = original_stderr
        print(f"[+] Campaign finished. Full log saved to: {log_path}")

    if driver.fatal_error is not None:
        sys.exit(2)


if __name__ == "__main__":
    main()
