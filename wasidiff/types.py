"""Shared type definitions for wasidiff.

This module holds the records that flow between the compiler, executor,
oracle, reducer and campaign driver. Keeping them in a dedicated module avoids
circular imports between those layers.

Records produced by one stage and consumed by the next (ExecutionRecord,
Verdict, CompileFailure) are frozen dataclasses: a verdict is never mutated
after the oracle creates it, and isinstance() dispatch replaces string tags.
ArtifactMetadata is a TypedDict because it is persisted as metadata.json and
read back by the report and reduce tools as a plain dict.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, TypedDict

Seed = int

STDERR_EXCERPT_BYTES = 4096


class Target(str, Enum):
    NATIVE = "native"
    WASM = "wasm"


class ExitKind(str, Enum):
    NORMAL = "normal"
    SIGNAL = "signal"
    TRAP = "trap"
    TIMEOUT = "timeout"


class DivergenceKind(str, Enum):
    OUTPUT_MISMATCH = "OutputMismatch"
    EXIT_STATUS_MISMATCH = "ExitStatusMismatch"
    ONE_SIDED_TRAP = "OneSidedTrap"
    ONE_SIDED_TIMEOUT = "OneSidedTimeout"


class Outcome(str, Enum):
    MATCH = "Match"
    DIVERGENCE = "Divergence"
    INCONCLUSIVE = "Inconclusive"


class ReductionStatus(str, Enum):
    CONVERGED = "converged"
    PARTIAL = "partial"
    NON_DETERMINISTIC = "non_deterministic"
    NOT_REDUCED = "not_reduced"


@dataclass(frozen=True)
class ProgramArtifact:
    """A generated C program and the seed that produced it."""

    seed: Seed
    source: str

    @property
    def name(self) -> str:
        """Artifact name used for every on-disk location of this seed."""
        return f"seed_{self.seed}"

    @property
    def line_count(self) -> int:
        return len(self.source.splitlines())

    @property
    def size(self) -> int:
        return len(self.source.encode("utf-8"))


@dataclass(frozen=True)
class CompiledPair:
    """Build outputs of one ProgramArtifact."""

    native_binary: Path
    wasm_module: Path


@dataclass(frozen=True)
class CompileFailure:
    """One of the two toolchains rejected (or timed out on) the program."""

    target: Target
    diagnostic: str
    returncode: int | None = None
    timed_out: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "target": self.target.value,
            "diagnostic": self.diagnostic,
            "returncode": self.returncode,
            "timed_out": self.timed_out,
        }


@dataclass(frozen=True)
class ExitStatus:
    """How a process ended: exit code, native signal, wasm trap, or timeout."""

    kind: ExitKind
    code: int | None = None
    signal_name: str | None = None
    trap_kind: str | None = None

    @classmethod
    def normal(cls, code: int) -> ExitStatus:
        return cls(ExitKind.NORMAL, code=code)

    @classmethod
    def signal(cls, signal_name: str, code: int | None = None) -> ExitStatus:
        return cls(ExitKind.SIGNAL, code=code, signal_name=signal_name)

    @classmethod
    def trap(cls, trap_kind: str, code: int | None = None) -> ExitStatus:
        return cls(ExitKind.TRAP, code=code, trap_kind=trap_kind)

    @classmethod
    def timeout(cls) -> ExitStatus:
        return cls(ExitKind.TIMEOUT)

    @property
    def is_abnormal(self) -> bool:
        """True for a native signal or a wasm trap."""
        return self.kind in (ExitKind.SIGNAL, ExitKind.TRAP)

    def describe(self) -> str:
        if self.kind is ExitKind.NORMAL:
            return f"exit {self.code}"
        if self.kind is ExitKind.SIGNAL:
            return f"signal {self.signal_name}"
        if self.kind is ExitKind.TRAP:
            return f"trap {self.trap_kind}"
        return "timeout"

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "code": self.code,
            "signal_name": self.signal_name,
            "trap_kind": self.trap_kind,
        }


@dataclass(frozen=True)
class ExecutionRecord:
    """Observable behaviour of one executed target.

    stderr is kept for diagnostics only; it never takes part in equivalence.
    """

    target: Target
    stdout: bytes
    exit: ExitStatus
    wall_time: float
    stderr: bytes = b""

    @property
    def timed_out(self) -> bool:
        return self.exit.kind is ExitKind.TIMEOUT

    def to_dict(self) -> dict[str, Any]:
        return {
            "target": self.target.value,
            "stdout": self.stdout.decode("utf-8", errors="backslashreplace"),
            "exit": self.exit.to_dict(),
            "wall_time": round(self.wall_time, 4),
            "stderr_excerpt": self.stderr[-STDERR_EXCERPT_BYTES:].decode(
                "utf-8", errors="backslashreplace"
            ),
        }


@dataclass(frozen=True)
class Verdict:
    """Result of comparing a native record with a wasm record.

    Use the match(), divergence() and inconclusive() constructors.
    """

    outcome: Outcome
    kind: DivergenceKind | None = None
    reason: str | None = None
    detail: str = ""

    @classmethod
    def match(cls) -> Verdict:
        return cls(Outcome.MATCH)

    @classmethod
    def divergence(cls, kind: DivergenceKind, detail: str = "") -> Verdict:
        return cls(Outcome.DIVERGENCE, kind=kind, detail=detail)

    @classmethod
    def inconclusive(cls, reason: str) -> Verdict:
        return cls(Outcome.INCONCLUSIVE, reason=reason)

    @property
    def is_match(self) -> bool:
        return self.outcome is Outcome.MATCH

    @property
    def is_divergence(self) -> bool:
        return self.outcome is Outcome.DIVERGENCE

    @property
    def is_inconclusive(self) -> bool:
        return self.outcome is Outcome.INCONCLUSIVE

    @property
    def label(self) -> str:
        if self.is_divergence:
            return f"Divergence{{{self.kind.value}}}"
        if self.is_inconclusive:
            return f"Inconclusive{{{self.reason}}}"
        return "Match"

    def same_kind(self, other: Verdict) -> bool:
        """True if both are divergences of the same kind (payloads may differ)."""
        return self.is_divergence and other.is_divergence and self.kind is other.kind

    def to_dict(self) -> dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "kind": self.kind.value if self.kind else None,
            "reason": self.reason,
            "detail": self.detail,
            "label": self.label,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Verdict:
        kind = data.get("kind")
        return cls(
            outcome=Outcome(data["outcome"]),
            kind=DivergenceKind(kind) if kind else None,
            reason=data.get("reason"),
            detail=data.get("detail", ""),
        )


@dataclass
class ReductionState:
    """Mutable state of one reduction session, owned by the Reducer."""

    candidate: str | bytes
    target_kind: DivergenceKind
    size: int
    steps: int = 0

    def accept(self, candidate: str | bytes, size: int) -> None:
        if size >= self.size:
            raise ValueError(f"accepted candidate must shrink ({size} >= {self.size})")
        self.candidate = candidate
        self.size = size
        self.steps += 1


@dataclass(frozen=True)
class MinimalReproducer:
    """Outcome of a reduction session. Always produced, even when nothing shrank."""

    seed: Seed
    status: ReductionStatus
    kind: DivergenceKind
    source: str
    module: bytes | None
    original_size: int
    reduced_size: int
    steps: int
    diagnostics: tuple[str, ...] = ()

    @property
    def converged(self) -> bool:
        return self.status is ReductionStatus.CONVERGED

    def to_dict(self) -> dict[str, Any]:
        return {
            "seed": self.seed,
            "status": self.status.value,
            "kind": self.kind.value,
            "original_size": self.original_size,
            "reduced_size": self.reduced_size,
            "reduced_lines": len(self.source.splitlines()),
            "module_size": len(self.module) if self.module is not None else None,
            "steps": self.steps,
            "diagnostics": list(self.diagnostics),
        }


@dataclass
class CampaignReport:
    """Summary of a campaign run. Always produced, even for failed runs."""

    iterations: int = 0
    matches: int = 0
    divergences: dict[str, int] = field(default_factory=dict)
    compile_failures: dict[str, int] = field(default_factory=dict)
    inconclusive: int = 0
    generator_errors: int = 0
    cancelled: int = 0
    divergent_artifacts: list[Path] = field(default_factory=list)
    reductions: dict[str, str] = field(default_factory=dict)
    termination: str = "Completed"
    duration_secs: float = 0.0

    @property
    def total_divergences(self) -> int:
        return sum(self.divergences.values())

    @property
    def total_compile_failures(self) -> int:
        return sum(self.compile_failures.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "iterations": self.iterations,
            "matches": self.matches,
            "divergences": dict(self.divergences),
            "total_divergences": self.total_divergences,
            "compile_failures": dict(self.compile_failures),
            "inconclusive": self.inconclusive,
            "generator_errors": self.generator_errors,
            "cancelled": self.cancelled,
            "divergent_artifacts": [str(p) for p in self.divergent_artifacts],
            "reductions": dict(self.reductions),
            "termination": self.termination,
            "duration_secs": round(self.duration_secs, 2),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CampaignReport:
        return cls(
            iterations=data.get("iterations", 0),
            matches=data.get("matches", 0),
            divergences=dict(data.get("divergences", {})),
            compile_failures=dict(data.get("compile_failures", {})),
            inconclusive=data.get("inconclusive", 0),
            generator_errors=data.get("generator_errors", 0),
            cancelled=data.get("cancelled", 0),
            divergent_artifacts=[Path(p) for p in data.get("divergent_artifacts", [])],
            reductions=dict(data.get("reductions", {})),
            termination=data.get("termination", "Unknown"),
            duration_secs=data.get("duration_secs", 0.0),
        )


class ArtifactMetadata(TypedDict, total=False):
    """Contents of metadata.json inside a persisted artifact directory.

    Uses total=False because compile-failure and inconclusive artifacts lack
    the verdict-specific fields.
    """

    seed: Seed
    name: str
    timestamp: str
    outcome: str
    verdict: dict[str, Any]
    compile_failure: dict[str, Any]
    opt_level: str
    extra_cflags: list[str]
    native_cmd: list[str]
    wasm_cmd: list[str]
    runtime_cmd: list[str]
    time_budget: float
    source_lines: int
