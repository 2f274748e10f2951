"""
Artifact management and campaign bookkeeping for wasidiff.

This module provides:
- ArtifactManager: persists divergences, compile failures and inconclusive
  results under the output directory, plus reduction results
- ResultsLog: append-only JSONL record of every verdict
- CampaignStats: lock-protected counters that become the CampaignReport

Every artifact directory is staged in a scratch directory and renamed into
place in one step, so an interrupted iteration never leaves a half-written
seed_<N> directory behind.
"""

from __future__ import annotations

import json
import os
import shlex
import shutil
import sys
import tempfile
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from textwrap import dedent
from typing import Any, Iterator

from wasidiff.compiler import NATIVE_NAME, SOURCE_NAME, WASM_NAME
from wasidiff.types import (
    ArtifactMetadata,
    CampaignReport,
    CompiledPair,
    CompileFailure,
    ExecutionRecord,
    MinimalReproducer,
    ProgramArtifact,
    Verdict,
)

CAMPAIGN_REPORT_FILE = "campaign_report.json"
RESULTS_LOG_FILE = "results.jsonl"


class ArtifactManager:
    """
    Saves findings to disk in the layout the report and reduce tools read.

    <output>/divergences/seed_<N>/       every divergence
    <output>/compile_failures/seed_<N>/  only when persisted
    <output>/inconclusive/seed_<N>/      only when persisted
    """

    def __init__(self, output_dir: Path):
        self.output_dir = output_dir
        self.divergences_dir = output_dir / "divergences"
        self.compile_failures_dir = output_dir / "compile_failures"
        self.inconclusive_dir = output_dir / "inconclusive"
        self.staging_dir = output_dir / ".staging"

        for directory in (self.divergences_dir, self.staging_dir):
            directory.mkdir(parents=True, exist_ok=True)

    def _safe_copy(self, src: Path, dst: Path, label: str) -> bool:
        """Copy a file, logging on OSError instead of crashing."""
        try:
            shutil.copy2(src, dst)
            return True
        except OSError as e:
            print(f"  [!] CRITICAL: Could not save {label}: {e}", file=sys.stderr)
            return False

    @contextmanager
    def _staged(self, dest_root: Path, name: str) -> Iterator[Path]:
        """Yield a scratch directory that becomes dest_root/name on success."""
        dest_root.mkdir(parents=True, exist_ok=True)
        self.staging_dir.mkdir(parents=True, exist_ok=True)
        stage = Path(tempfile.mkdtemp(prefix=f"{name}_", dir=self.staging_dir))
        try:
            yield stage
        except BaseException:
            shutil.rmtree(stage, ignore_errors=True)
            raise
        final = dest_root / name
        if final.exists():
            shutil.rmtree(final)
        os.replace(stage, final)

    @staticmethod
    def _write_json(path: Path, data: Any) -> None:
        path.write_text(json.dumps(data, indent=2, default=str), encoding="utf-8")

    def _metadata(self, artifact: ProgramArtifact, outcome: str, **extra: Any) -> ArtifactMetadata:
        metadata: ArtifactMetadata = {
            "seed": artifact.seed,
            "name": artifact.name,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "outcome": outcome,
            "source_lines": artifact.line_count,
        }
        metadata.update(extra)  # type: ignore[typeddict-item]
        return metadata

    @staticmethod
    def _write_reproduce_script(dest: Path, metadata: ArtifactMetadata) -> None:
        native_cmd = shlex.join(metadata.get("native_cmd", []))
        wasm_cmd = shlex.join(metadata.get("wasm_cmd", []))
        runtime_cmd = shlex.join(metadata.get("runtime_cmd", []))
        timestamp = metadata.get("timestamp", "")
        reproduce_script = dest / "reproduce.sh"
        reproduce_script.write_text(
            dedent(f"""\
                #!/bin/bash
                # Divergence reproducer for seed {metadata.get("seed")}
                # Generated: {timestamp}
                set -u
                cd "$(dirname "$0")"

                {native_cmd}
                {wasm_cmd}

                echo "--- native ---"
                ./{NATIVE_NAME}; echo "exit: $?"
                echo "--- wasm ---"
                {runtime_cmd}; echo "exit: $?"
            """)
        )
        reproduce_script.chmod(0o755)

    def save_divergence(
        self,
        artifact: ProgramArtifact,
        pair: CompiledPair,
        native: ExecutionRecord,
        wasm: ExecutionRecord,
        verdict: Verdict,
        build_info: dict[str, Any] | None = None,
    ) -> Path:
        """
        Persist everything needed to reproduce a divergence.

        Args:
            artifact: The generated program.
            pair: Build outputs, copied next to the source.
            native: Native execution record.
            wasm: Wasm execution record.
            verdict: The oracle's divergence verdict.
            build_info: Compile/runtime argv and budgets for metadata.json.

        Returns:
            Path to <output>/divergences/seed_<N>.
        """
        print(f"  [!!!] DIVERGENCE DETECTED ({verdict.label})! Saving seed {artifact.seed}.",
              file=sys.stderr)
        with self._staged(self.divergences_dir, artifact.name) as stage:
            (stage / SOURCE_NAME).write_text(artifact.source, encoding="utf-8")
            self._safe_copy(pair.native_binary, stage / NATIVE_NAME, "native binary")
            self._safe_copy(pair.wasm_module, stage / WASM_NAME, "wasm module")
            self._write_json(stage / "native_record.json", native.to_dict())
            self._write_json(stage / "wasm_record.json", wasm.to_dict())
            self._write_json(stage / "verdict.json", verdict.to_dict())
            metadata = self._metadata(
                artifact, verdict.outcome.value, verdict=verdict.to_dict(), **(build_info or {})
            )
            self._write_json(stage / "metadata.json", metadata)
            self._write_reproduce_script(stage, metadata)

        dest = self.divergences_dir / artifact.name
        print(f"  [+] Divergence artifacts saved to {dest}", file=sys.stderr)
        return dest

    def save_compile_failure(self, artifact: ProgramArtifact, failure: CompileFailure) -> Path:
        with self._staged(self.compile_failures_dir, artifact.name) as stage:
            (stage / SOURCE_NAME).write_text(artifact.source, encoding="utf-8")
            (stage / "diagnostic.txt").write_text(failure.diagnostic, encoding="utf-8")
            self._write_json(
                stage / "metadata.json",
                self._metadata(artifact, "CompileFailure", compile_failure=failure.to_dict()),
            )
        return self.compile_failures_dir / artifact.name

    def save_inconclusive(
        self,
        artifact: ProgramArtifact,
        native: ExecutionRecord,
        wasm: ExecutionRecord,
        verdict: Verdict,
    ) -> Path:
        with self._staged(self.inconclusive_dir, artifact.name) as stage:
            (stage / SOURCE_NAME).write_text(artifact.source, encoding="utf-8")
            self._write_json(stage / "native_record.json", native.to_dict())
            self._write_json(stage / "wasm_record.json", wasm.to_dict())
            self._write_json(stage / "verdict.json", verdict.to_dict())
            self._write_json(
                stage / "metadata.json",
                self._metadata(artifact, verdict.outcome.value, verdict=verdict.to_dict()),
            )
        return self.inconclusive_dir / artifact.name

    def save_reproducer(self, artifact_dir: Path, reproducer: MinimalReproducer) -> None:
        """Write reduced.c, reduced.wasm and reduction.json beside a divergence."""
        try:
            (artifact_dir / "reduced.c").write_text(reproducer.source, encoding="utf-8")
            if reproducer.module is not None:
                (artifact_dir / "reduced.wasm").write_bytes(reproducer.module)
            self._write_json(artifact_dir / "reduction.json", reproducer.to_dict())
        except OSError as e:
            print(f"  [!] CRITICAL: Could not save reduction for {artifact_dir}: {e}",
                  file=sys.stderr)
            return
        print(
            f"  [+] Reduced reproducer ({reproducer.status.value}) saved to {artifact_dir}",
            file=sys.stderr,
        )

    def load_divergence(self, artifact_dir: Path) -> tuple[ProgramArtifact, Verdict]:
        """Read back the program and verdict of a persisted divergence."""
        metadata = json.loads((artifact_dir / "metadata.json").read_text(encoding="utf-8"))
        verdict = Verdict.from_dict(
            json.loads((artifact_dir / "verdict.json").read_text(encoding="utf-8"))
        )
        source = (artifact_dir / SOURCE_NAME).read_text(encoding="utf-8")
        return ProgramArtifact(seed=metadata["seed"], source=source), verdict

    def write_campaign_report(self, report: CampaignReport) -> Path:
        path = self.output_dir / CAMPAIGN_REPORT_FILE
        try:
            self._write_json(path, report.to_dict())
        except OSError as e:
            print(f"[!] Warning: Could not save campaign report: {e}", file=sys.stderr)
        return path

    def cleanup_staging(self) -> None:
        """Remove staging leftovers from cancelled iterations."""
        shutil.rmtree(self.staging_dir, ignore_errors=True)


class ResultsLog:
    """Append-only JSONL sink with one line per processed seed."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def append(self, seed: int, verdict_label: str, **fields: Any) -> None:
        record = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "seed": seed,
            "result": verdict_label,
        }
        record.update(fields)
        line = json.dumps(record, default=str) + "\n"
        with self._lock:
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line)

    def read(self) -> list[dict[str, Any]]:
        if not self.path.exists():
            return []
        with open(self.path, "r", encoding="utf-8") as f:
            return [json.loads(line) for line in f if line.strip()]


class CampaignStats:
    """Thread-safe counters shared by every campaign worker."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._report = CampaignReport()

    def record_verdict(self, verdict: Verdict, artifact_dir: Path | None = None) -> None:
        with self._lock:
            self._report.iterations += 1
            if verdict.is_match:
                self._report.matches += 1
            elif verdict.is_divergence:
                key = verdict.kind.value
                self._report.divergences[key] = self._report.divergences.get(key, 0) + 1
                if artifact_dir is not None:
                    self._report.divergent_artifacts.append(artifact_dir)
            else:
                self._report.inconclusive += 1

    def record_compile_failure(self, failure: CompileFailure) -> None:
        with self._lock:
            self._report.iterations += 1
            key = failure.target.value
            self._report.compile_failures[key] = self._report.compile_failures.get(key, 0) + 1

    def record_generator_error(self) -> None:
        with self._lock:
            self._report.iterations += 1
            self._report.generator_errors += 1

    def record_cancelled(self, count: int = 1) -> None:
        with self._lock:
            self._report.cancelled += count

    def record_reduction(self, name: str, status: str) -> None:
        with self._lock:
            self._report.reductions[name] = status

    @property
    def divergence_count(self) -> int:
        with self._lock:
            return self._report.total_divergences

    def snapshot(self, termination: str, duration_secs: float) -> CampaignReport:
        """Return an independent CampaignReport with the current counts."""
        with self._lock:
            return CampaignReport(
                iterations=self._report.iterations,
                matches=self._report.matches,
                divergences=dict(self._report.divergences),
                compile_failures=dict(self._report.compile_failures),
                inconclusive=self._report.inconclusive,
                generator_errors=self._report.generator_errors,
                cancelled=self._report.cancelled,
                divergent_artifacts=sorted(self._report.divergent_artifacts),
                reductions=dict(self._report.reductions),
                termination=termination,
                duration_secs=duration_secs,
            )
