#!/usr/bin/env python3
"""
Divergence reducer for wasidiff.

Shrinks a divergent C program to a minimal reproducer in two passes:
1. Source pass: C-Reduce proposes reductions of the C source; a candidate is
   accepted only if compile -> execute -> compare still yields a divergence of
   the same kind. When creduce is not installed a built-in line-chunk search
   (LineReducer) proposes the reductions instead.
2. Binary pass: wasm-reduce shrinks the module compiled from the reduced
   source, re-checked against the fixed native binary.

The accept predicate (ReductionPredicate) is independent of the search
strategy. External reducers reach it through a generated interestingness
script that runs `python -m wasidiff.interesting`.
"""

from __future__ import annotations

import argparse
import json
import queue
import shlex
import shutil
import sys
import tempfile
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Callable

from wasidiff.compiler import WASM_NAME, DualCompiler
from wasidiff.config import FuzzConfig, ReductionConfig
from wasidiff.errors import (
    ArtifactLaunchError,
    CampaignCancelled,
    ConfigurationError,
    ReductionNonDeterminism,
    WasidiffError,
)
from wasidiff.execution import DualExecutor
from wasidiff.oracle import DivergenceOracle, TrapMapping
from wasidiff.toolchain import Toolchain, find_executable
from wasidiff.types import (
    CompileFailure,
    DivergenceKind,
    ExecutionRecord,
    MinimalReproducer,
    ProgramArtifact,
    ReductionState,
    ReductionStatus,
    Verdict,
)

if TYPE_CHECKING:
    from wasidiff.artifacts import ArtifactManager

SESSION_FILE = "session.json"
NONDETERMINISM_MARKER = "nondeterminism.jsonl"
INTERESTING = "interesting"
BORING = "boring"

# wasm-reduce re-runs the candidate on every step; for hangs that means a full
# time budget per proposal, so one-sided timeouts only get the source pass.
BINARY_PASS_KINDS = frozenset(
    {
        DivergenceKind.OUTPUT_MISMATCH,
        DivergenceKind.EXIT_STATUS_MISMATCH,
        DivergenceKind.ONE_SIDED_TRAP,
    }
)


def stable_verdict(
    check: Callable[[], Verdict], runs: int, first: Verdict | None = None
) -> Verdict:
    """Run check() `runs` times and return its verdict.

    A verdict already observed for the same candidate can be passed as
    `first`; it counts as one of the runs and every re-run must agree with it.

    Raises:
        ReductionNonDeterminism: two runs disagreed.
    """
    if first is None:
        first = check()
    for _ in range(runs - 1):
        again = check()
        if again != first:
            raise ReductionNonDeterminism(
                f"predicate is non-deterministic: {first.label} then {again.label}",
                first,
                again,
            )
    return first


def reproduces(verdict: Verdict, kind: DivergenceKind) -> bool:
    return verdict.is_divergence and verdict.kind is kind


class ReductionPredicate:
    """
    Candidate -> Verdict, built from DualCompiler + DualExecutor + DivergenceOracle.

    Pure with respect to its input: the verdict depends only on the candidate
    (and, for modules, on the fixed native record).
    """

    def __init__(
        self,
        toolchain: Toolchain,
        compiler: DualCompiler,
        executor: DualExecutor,
        oracle: DivergenceOracle,
        time_budget: float,
        sanity_cflags: list[str] | None = None,
    ) -> None:
        self.toolchain = toolchain
        self.compiler = compiler
        self.executor = executor
        self.oracle = oracle
        self.time_budget = time_budget
        self.sanity_cflags = list(sanity_cflags or [])

    @classmethod
    def from_config(
        cls, config: FuzzConfig, toolchain: Toolchain, sanity_cflags: list[str] | None = None
    ) -> ReductionPredicate:
        mapping = (
            TrapMapping.from_file(config.trap_mapping_path)
            if config.trap_mapping_path
            else TrapMapping()
        )
        return cls(
            toolchain=toolchain,
            compiler=DualCompiler(toolchain, config.reject_diagnostics),
            executor=DualExecutor(toolchain),
            oracle=DivergenceOracle(mapping),
            time_budget=config.time_budget,
            sanity_cflags=sanity_cflags,
        )

    def check_source(self, source: str) -> Verdict:
        with tempfile.TemporaryDirectory(prefix="wasidiff_check_") as tmp:
            workdir = Path(tmp)
            if self.sanity_cflags:
                source_path = workdir / "sanity.c"
                source_path.write_text(source, encoding="utf-8")
                if not self.toolchain.sanity_check(source_path, self.sanity_cflags).ok:
                    return Verdict.inconclusive("sanity-check-failed")
            compiled = self.compiler.compile(ProgramArtifact(seed=-1, source=source), workdir)
            if isinstance(compiled, CompileFailure):
                return Verdict.inconclusive(f"compile-failure:{compiled.target.value}")
            try:
                native, wasm = self.executor.execute(compiled, self.time_budget)
            except ArtifactLaunchError as e:
                return Verdict.inconclusive(f"{e.target}-launch-failed")
            return self.oracle.compare(native, wasm)

    def native_record(self, native_binary: Path) -> ExecutionRecord:
        return self.executor.run_native(native_binary, self.time_budget)

    def check_module(self, module: bytes, native_record: ExecutionRecord) -> Verdict:
        with tempfile.TemporaryDirectory(prefix="wasidiff_check_") as tmp:
            module_path = Path(tmp) / WASM_NAME
            module_path.write_bytes(module)
            native, wasm = self.executor.execute_wasm(module_path, native_record, self.time_budget)
            return self.oracle.compare(native, wasm)


@dataclass
class SearchOutcome:
    text: str
    converged: bool
    proposals: int
    accepted: int


class LineReducer:
    """
    Delta-debugging search over line chunks.

    Starts by trying to drop halves of the program, then quarters, down to
    single lines. Converges when a full single-line pass accepts nothing, or
    after max_consecutive_failures rejected proposals in a row. Stops early
    (not converged) when the proposal budget or the deadline runs out.
    """

    def __init__(
        self,
        is_interesting: Callable[[str], bool],
        max_consecutive_failures: int,
        max_steps: int,
        deadline: float,
    ) -> None:
        self.is_interesting = is_interesting
        self.max_consecutive_failures = max_consecutive_failures
        self.max_steps = max_steps
        self.deadline = deadline
        self.proposals = 0
        self.accepted = 0

    def _exhausted(self) -> bool:
        return self.proposals >= self.max_steps or time.monotonic() >= self.deadline

    def _outcome(self, lines: list[str], converged: bool) -> SearchOutcome:
        return SearchOutcome("".join(lines), converged, self.proposals, self.accepted)

    def run(self, text: str) -> SearchOutcome:
        lines = text.splitlines(keepends=True)
        chunk = max(1, len(lines) // 2)
        failures = 0
        while lines:
            chunk = min(chunk, len(lines))
            progressed = False
            start = 0
            while start < len(lines):
                if self._exhausted():
                    return self._outcome(lines, converged=False)
                candidate = lines[:start] + lines[start + chunk :]
                self.proposals += 1
                if self.is_interesting("".join(candidate)):
                    lines = candidate
                    self.accepted += 1
                    failures = 0
                    progressed = True
                else:
                    failures += 1
                    if failures >= self.max_consecutive_failures:
                        return self._outcome(lines, converged=True)
                    start += chunk
            if not progressed:
                if chunk == 1:
                    break
                chunk = max(1, chunk // 2)
        return self._outcome(lines, converged=True)


def _write_check_script(session_dir: Path, mode: str, candidate_name: str) -> Path:
    """Generate the interestingness script handed to creduce / wasm-reduce."""
    script_path = session_dir / f"check_{mode}.sh"
    command = " ".join(
        [
            shlex.quote(sys.executable),
            "-m",
            "wasidiff.interesting",
            mode,
            "--session",
            shlex.quote(str((session_dir / SESSION_FILE).resolve())),
        ]
    )
    script_path.write_text(
        f"""#!/bin/bash
# Interestingness test generated by wasidiff.reducer
# Exit 0 (and print '{INTERESTING}') iff the candidate still reproduces the divergence.
exec {command} "${{1:-{candidate_name}}}"
"""
    )
    script_path.chmod(0o755)
    return script_path


class Reducer:
    """
    Two-pass reducer producing a MinimalReproducer for a divergent program.

    Every accepted step reproduces a divergence of the original kind and
    strictly shrinks the candidate. Non-determinism aborts the session with the
    best candidate so far.
    """

    def __init__(
        self,
        config: FuzzConfig,
        toolchain: Toolchain | None = None,
        predicate: ReductionPredicate | None = None,
        use_external_tools: bool = True,
    ) -> None:
        self.config = config
        self.toolchain = toolchain or Toolchain(config)
        self.predicate = predicate or ReductionPredicate.from_config(
            config, self.toolchain, config.reduction.sanity_cflags
        )
        self.use_external_tools = use_external_tools

    def _tool(self, name: str) -> str | None:
        if not self.use_external_tools:
            return None
        return find_executable(name)

    def _write_session(
        self, session_dir: Path, kind: DivergenceKind, rconfig: ReductionConfig, **extra: str
    ) -> None:
        session = {
            "config": self.config.to_dict(),
            "kind": kind.value,
            "determinism_runs": rconfig.determinism_runs,
            "sanity_cflags": rconfig.sanity_cflags,
        }
        session.update(extra)
        (session_dir / SESSION_FILE).write_text(json.dumps(session, indent=2))

    @staticmethod
    def _nondeterminism_seen(session_dir: Path) -> str | None:
        marker = session_dir / NONDETERMINISM_MARKER
        if marker.exists():
            lines = marker.read_text().strip().splitlines()
            if not lines:
                return "non-determinism reported by interestingness test"
            try:
                return json.loads(lines[0]).get("message", lines[0])
            except json.JSONDecodeError:
                return lines[0]
        return None

    # --- Source pass ---

    def _builtin_source_pass(
        self, state: ReductionState, rconfig: ReductionConfig, deadline: float
    ) -> bool:
        def is_interesting(candidate: str) -> bool:
            size = len(candidate.encode("utf-8"))
            if size >= state.size:
                return False
            verdict = self.predicate.check_source(candidate)
            if not reproduces(verdict, state.target_kind):
                return False
            verdict = stable_verdict(
                lambda: self.predicate.check_source(candidate),
                rconfig.determinism_runs,
                first=verdict,
            )
            if not reproduces(verdict, state.target_kind):
                return False
            state.accept(candidate, size)
            return True

        search = LineReducer(
            is_interesting,
            max_consecutive_failures=rconfig.max_consecutive_failures,
            max_steps=rconfig.max_steps,
            deadline=deadline,
        )
        outcome = search.run(state.candidate)
        print(
            f"  [*] Line reduction: {outcome.accepted} accepted of {outcome.proposals} proposals.",
            file=sys.stderr,
        )
        return outcome.converged

    def _creduce_source_pass(
        self,
        creduce: str,
        state: ReductionState,
        rconfig: ReductionConfig,
        session_dir: Path,
        deadline: float,
    ) -> bool:
        source_path = session_dir / "gen.c"
        source_path.write_text(state.candidate, encoding="utf-8")
        self._write_session(session_dir, state.target_kind, rconfig)
        script = _write_check_script(session_dir, "source", source_path.name)

        remaining = max(1.0, deadline - time.monotonic())
        print(f"[*] Running C-Reduce (budget {remaining:.0f}s)...", file=sys.stderr)
        result = self.toolchain.runner.run(
            [creduce, str(script), source_path.name],
            timeout=remaining,
            cwd=session_dir,
            tool="creduce",
        )

        nondeterminism = self._nondeterminism_seen(session_dir)
        if nondeterminism:
            raise ReductionNonDeterminism(nondeterminism, None, None)

        reduced = source_path.read_text(encoding="utf-8", errors="replace")
        size = len(reduced.encode("utf-8"))
        if size < state.size:
            verdict = stable_verdict(
                lambda: self.predicate.check_source(reduced), rconfig.determinism_runs
            )
            if reproduces(verdict, state.target_kind):
                state.accept(reduced, size)
            else:
                print(
                    f"  [!] C-Reduce result no longer reproduces ({verdict.label}); discarding.",
                    file=sys.stderr,
                )
        if result.timed_out:
            return False
        if result.returncode != 0:
            print(f"  [!] C-Reduce exited with {result.returncode}.", file=sys.stderr)
            return False
        return True

    # --- Binary pass ---

    def _binary_pass(
        self,
        state: ReductionState,
        rconfig: ReductionConfig,
        session_dir: Path,
        deadline: float,
        diagnostics: list[str],
    ) -> tuple[bytes | None, bool]:
        """Reduce the module built from the current source.

        Returns:
            (module bytes or None, converged)
        """
        build_dir = session_dir / "build"
        compiled = self.predicate.compiler.compile(
            ProgramArtifact(seed=-1, source=state.candidate), build_dir
        )
        if isinstance(compiled, CompileFailure):
            diagnostics.append(f"binary pass skipped: {compiled.target.value} compile failed")
            return None, True

        module = compiled.wasm_module.read_bytes()
        native_record = self.predicate.native_record(compiled.native_binary)

        verdict = stable_verdict(
            lambda: self.predicate.check_module(module, native_record), rconfig.determinism_runs
        )
        if not reproduces(verdict, state.target_kind):
            diagnostics.append(f"binary pass skipped: module alone gives {verdict.label}")
            return module, True

        wasm_reduce = self._tool(self.config.tools.wasm_reduce)
        if wasm_reduce is None:
            print("[!] 'wasm-reduce' not found in PATH. Skipping binary reduction.", file=sys.stderr)
            diagnostics.append("binary pass skipped: wasm-reduce not available")
            return module, True

        module_state = ReductionState(module, state.target_kind, len(module))
        input_path = session_dir / "input.wasm"
        test_path = session_dir / "test.wasm"
        work_path = session_dir / "work.wasm"
        input_path.write_bytes(module)
        self._write_session(
            session_dir,
            state.target_kind,
            rconfig,
            native_binary=str(compiled.native_binary.resolve()),
        )
        script = _write_check_script(session_dir, "module", test_path.name)

        argv = [
            wasm_reduce,
            str(input_path),
            f"--command={script} {test_path}",
            "-t",
            str(test_path),
            "-w",
            str(work_path),
            "-f",
        ]
        binaryen_bin = Path(wasm_reduce).parent
        if (binaryen_bin / "wasm-opt").exists():
            argv += ["-b", str(binaryen_bin)]

        remaining = max(1.0, deadline - time.monotonic())
        print(f"[*] Running wasm-reduce (budget {remaining:.0f}s)...", file=sys.stderr)
        result = self.toolchain.runner.run(
            argv, timeout=remaining, cwd=session_dir, tool="wasm-reduce"
        )

        nondeterminism = self._nondeterminism_seen(session_dir)
        if nondeterminism:
            raise ReductionNonDeterminism(nondeterminism, None, None)

        if work_path.exists():
            reduced = work_path.read_bytes()
            if len(reduced) < module_state.size:
                verdict = stable_verdict(
                    lambda: self.predicate.check_module(reduced, native_record),
                    rconfig.determinism_runs,
                )
                if reproduces(verdict, state.target_kind):
                    module_state.accept(reduced, len(reduced))
                else:
                    diagnostics.append(f"wasm-reduce result rejected on re-check ({verdict.label})")

        converged = not result.timed_out and result.returncode == 0
        if not converged and not result.timed_out:
            diagnostics.append(f"wasm-reduce exited with {result.returncode}")
        return module_state.candidate, converged

    # --- Session ---

    def reduce(
        self,
        artifact: ProgramArtifact,
        target_verdict: Verdict,
        config: ReductionConfig | None = None,
    ) -> MinimalReproducer:
        """
        Shrink artifact while preserving the DivergenceKind of target_verdict.

        Always returns a MinimalReproducer; its status says whether the search
        converged, ran out of budget, hit non-determinism, or could not start.
        """
        rconfig = config or self.config.reduction
        rconfig.validate()
        diagnostics: list[str] = []

        def result(
            status: ReductionStatus,
            state: ReductionState | None,
            module: bytes | None = None,
            kind: DivergenceKind | None = None,
        ) -> MinimalReproducer:
            source = state.candidate if state else artifact.source
            return MinimalReproducer(
                seed=artifact.seed,
                status=status,
                kind=kind or target_verdict.kind or DivergenceKind.OUTPUT_MISMATCH,
                source=source,
                module=module,
                original_size=artifact.size,
                reduced_size=len(source.encode("utf-8")),
                steps=state.steps if state else 0,
                diagnostics=tuple(diagnostics),
            )

        if not target_verdict.is_divergence:
            diagnostics.append(f"nothing to reduce: verdict is {target_verdict.label}")
            return result(ReductionStatus.NOT_REDUCED, None)

        kind = target_verdict.kind
        deadline = time.monotonic() + rconfig.time_budget
        print(
            f"[*] Reducing seed {artifact.seed} ({artifact.line_count} lines, {kind.value})...",
            file=sys.stderr,
        )

        try:
            baseline = stable_verdict(
                lambda: self.predicate.check_source(artifact.source), rconfig.determinism_runs
            )
        except ReductionNonDeterminism as e:
            diagnostics.append(f"NON-DETERMINISM on original program: {e.message}")
            print(f"  [!!!] {e.message}", file=sys.stderr)
            return result(ReductionStatus.NON_DETERMINISTIC, None)

        if not target_verdict.same_kind(baseline):
            diagnostics.append(f"divergence does not reproduce: got {baseline.label}")
            print(f"  [!] Could not reduce: original now gives {baseline.label}.", file=sys.stderr)
            return result(ReductionStatus.NOT_REDUCED, None)

        state = ReductionState(artifact.source, kind, artifact.size)
        module: bytes | None = None
        converged = True
        session_dir = Path(tempfile.mkdtemp(prefix=f"wasidiff_reduce_{artifact.seed}_"))
        try:
            if rconfig.source_pass:
                creduce = self._tool(self.config.tools.creduce)
                if creduce is not None:
                    converged = self._creduce_source_pass(
                        creduce, state, rconfig, session_dir, deadline
                    )
                else:
                    if self.use_external_tools:
                        print(
                            "[!] 'creduce' not found in PATH. Using built-in line reduction.",
                            file=sys.stderr,
                        )
                    converged = self._builtin_source_pass(state, rconfig, deadline)

            if rconfig.binary_pass and kind in BINARY_PASS_KINDS:
                if time.monotonic() < deadline:
                    module, module_converged = self._binary_pass(
                        state, rconfig, session_dir, deadline, diagnostics
                    )
                    converged = converged and module_converged
                else:
                    diagnostics.append("binary pass skipped: time budget exhausted")
                    converged = False

            if state.steps:
                final = stable_verdict(
                    lambda: self.predicate.check_source(state.candidate), rconfig.determinism_runs
                )
                if not reproduces(final, kind):
                    raise ReductionNonDeterminism(
                        f"reduced program no longer reproduces: got {final.label}",
                        Verdict.divergence(kind),
                        final,
                    )
        except ReductionNonDeterminism as e:
            diagnostics.append(f"NON-DETERMINISM during reduction: {e.message}")
            print(f"  [!!!] Reduction aborted, {e.message}", file=sys.stderr)
            return result(ReductionStatus.NON_DETERMINISTIC, state, module)
        finally:
            shutil.rmtree(session_dir, ignore_errors=True)

        status = ReductionStatus.CONVERGED if converged else ReductionStatus.PARTIAL
        if not converged:
            diagnostics.append("budget exhausted before convergence; best-so-far returned")
        reproducer = result(status, state, module)
        print(
            f"[+] Reduction {status.value}: {artifact.size} -> {reproducer.reduced_size} bytes "
            f"({reproducer.steps} accepted steps).",
            file=sys.stderr,
        )
        return reproducer


def failed_reduction(
    artifact: ProgramArtifact, verdict: Verdict, error: str
) -> MinimalReproducer:
    """NOT_REDUCED reproducer for a session that crashed before producing one."""
    return MinimalReproducer(
        seed=artifact.seed,
        status=ReductionStatus.NOT_REDUCED,
        kind=verdict.kind or DivergenceKind.OUTPUT_MISMATCH,
        source=artifact.source,
        module=None,
        original_size=artifact.size,
        reduced_size=artifact.size,
        steps=0,
        diagnostics=(f"reduction failed: {error}",),
    )


class ReductionQueue:
    """
    Background reduction worker.

    One thread drains a FIFO of (artifact, verdict) jobs so fuzzing iterations
    never wait on minimization. An artifact name is accepted at most once, so
    no artifact ever has two sessions running.
    """

    def __init__(
        self,
        reducer: Reducer,
        on_result: Callable[[ProgramArtifact, MinimalReproducer], None],
        stop_event: threading.Event | None = None,
    ) -> None:
        self.reducer = reducer
        self.on_result = on_result
        self.stop_event = stop_event or threading.Event()
        self._jobs: queue.Queue[tuple[ProgramArtifact, Verdict] | None] = queue.Queue()
        self._seen: set[str] = set()
        self._lock = threading.Lock()
        self._thread = threading.Thread(
            target=self._work, name="wasidiff-reducer", daemon=True
        )
        self._started = False

    def start(self) -> None:
        if not self._started:
            self._thread.start()
            self._started = True

    def submit(self, artifact: ProgramArtifact, verdict: Verdict) -> bool:
        """Queue a reduction. Returns False if this artifact was already queued."""
        with self._lock:
            if artifact.name in self._seen:
                return False
            self._seen.add(artifact.name)
        self._jobs.put((artifact, verdict))
        return True

    def close(self, wait: bool = True) -> None:
        """Stop accepting work; with wait=True, finish queued sessions first."""
        self._jobs.put(None)
        if self._started and wait:
            self._thread.join()

    def _work(self) -> None:
        while True:
            job = self._jobs.get()
            if job is None:
                return
            if self.stop_event.is_set():
                continue
            artifact, verdict = job
            try:
                reproducer = self.reducer.reduce(artifact, verdict)
            except CampaignCancelled:
                return
            except Exception as e:
                message = e.message if isinstance(e, WasidiffError) else f"{type(e).__name__}: {e}"
                print(f"  [!] Reduction of seed {artifact.seed} failed: {message}", file=sys.stderr)
                reproducer = failed_reduction(artifact, verdict, message)
            self.on_result(artifact, reproducer)


def reduce_artifact_dir(
    artifact_dir: Path,
    config: FuzzConfig,
    artifact_manager: ArtifactManager,
    toolchain: Toolchain | None = None,
) -> MinimalReproducer:
    """Re-reduce a persisted divergence directory and save the reproducer beside it."""
    artifact, verdict = artifact_manager.load_divergence(artifact_dir)
    reducer = Reducer(config, toolchain)
    reproducer = reducer.reduce(artifact, verdict)
    artifact_manager.save_reproducer(artifact_dir, reproducer)
    return reproducer


def main() -> None:
    from wasidiff.artifacts import ArtifactManager

    parser = argparse.ArgumentParser(description="Reduce a persisted wasidiff divergence.")
    parser.add_argument("artifact_dir", type=Path, help="Path to a divergences/seed_<N> directory")
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Campaign config JSON (default: config.json two levels above the artifact)",
    )
    parser.add_argument("--time-budget", type=float, default=None, help="Reduction budget in seconds")
    parser.add_argument(
        "--max-consecutive-failures",
        type=int,
        default=None,
        help="Stop the built-in search after this many rejected proposals in a row",
    )
    parser.add_argument("--no-binary-pass", action="store_true", help="Skip wasm-reduce")
    parser.add_argument("--no-source-pass", action="store_true", help="Skip source reduction")
    args = parser.parse_args()

    if not args.artifact_dir.is_dir():
        print(f"Error: Directory {args.artifact_dir} does not exist.")
        sys.exit(1)

    config_path = args.config or args.artifact_dir.parent.parent / "config.json"
    try:
        config = FuzzConfig.load(config_path) if config_path.exists() else FuzzConfig()
        if args.time_budget is not None:
            config.reduction.time_budget = args.time_budget
        if args.max_consecutive_failures is not None:
            config.reduction.max_consecutive_failures = args.max_consecutive_failures
        config.reduction.binary_pass = not args.no_binary_pass
        config.reduction.source_pass = not args.no_source_pass
        config.validate()
    except ConfigurationError as e:
        print(f"[!] Configuration error: {e.message}", file=sys.stderr)
        sys.exit(2)

    manager = ArtifactManager(args.artifact_dir.parent.parent)
    try:
        reproducer = reduce_artifact_dir(args.artifact_dir, config, manager)
    except WasidiffError as e:
        print(f"[!] Reduction failed: {e.message}", file=sys.stderr)
        sys.exit(2)

    print("\n[=] Reduction Complete!")
    print(f"    Status: {reproducer.status.value}")
    print(f"    Result: {args.artifact_dir / 'reduced.c'}")
    for line in reproducer.diagnostics:
        print(f"    Note:   {line}")


if __name__ == "__main__":
    main()
