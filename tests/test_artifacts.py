"""Tests for ArtifactManager, ResultsLog and CampaignStats."""

import json
import os
import shutil
import tempfile
import threading
import unittest
from pathlib import Path

from wasidiff.artifacts import ArtifactManager, CampaignStats, ResultsLog
from wasidiff.types import (
    CompiledPair,
    CompileFailure,
    DivergenceKind,
    ExecutionRecord,
    ExitStatus,
    MinimalReproducer,
    ProgramArtifact,
    ReductionStatus,
    Target,
    Verdict,
)

BUILD_INFO = {
    "opt_level": "-O2",
    "extra_cflags": [],
    "native_cmd": ["clang", "-m32", "-O2", "gen.c", "-o", "native"],
    "wasm_cmd": ["/opt/wasi-sdk/bin/clang", "--target=wasm32-wasi", "gen.c", "-o", "gen.wasm"],
    "runtime_cmd": ["wasmtime", "run", "gen.wasm"],
    "time_budget": 5.0,
}


class ArtifactTestBase(unittest.TestCase):
    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())
        self.manager = ArtifactManager(self.temp_dir / "out")
        self.artifact = ProgramArtifact(17, "int main(void) { return 0; }\n")
        self.native = ExecutionRecord(Target.NATIVE, b"1\n", ExitStatus.normal(0), 0.1)
        self.wasm = ExecutionRecord(Target.WASM, b"2\n", ExitStatus.normal(0), 0.2)
        self.verdict = Verdict.divergence(DivergenceKind.OUTPUT_MISMATCH, "-1\n+2")

    def tearDown(self):
        shutil.rmtree(self.temp_dir)

    def make_pair(self) -> CompiledPair:
        build = self.temp_dir / "build"
        build.mkdir(exist_ok=True)
        (build / "native").write_bytes(b"\x7fELF")
        (build / "gen.wasm").write_bytes(b"\0asm")
        return CompiledPair(build / "native", build / "gen.wasm")


class TestSaveDivergence(ArtifactTestBase):
    def test_directory_layout(self):
        dest = self.manager.save_divergence(
            self.artifact, self.make_pair(), self.native, self.wasm, self.verdict, BUILD_INFO
        )
        self.assertEqual(dest, self.temp_dir / "out" / "divergences" / "seed_17")
        self.assertEqual((dest / "gen.c").read_text(), self.artifact.source)
        self.assertEqual((dest / "native").read_bytes(), b"\x7fELF")
        self.assertEqual((dest / "gen.wasm").read_bytes(), b"\0asm")
        self.assertEqual(json.loads((dest / "wasm_record.json").read_text())["stdout"], "2\n")
        self.assertEqual(json.loads((dest / "verdict.json").read_text())["kind"], "OutputMismatch")
        self.assertEqual(list(self.manager.staging_dir.iterdir()), [])

    def test_reproduce_script(self):
        dest = self.manager.save_divergence(
            self.artifact, self.make_pair(), self.native, self.wasm, self.verdict, BUILD_INFO
        )
        script = dest / "reproduce.sh"
        content = script.read_text()
        self.assertTrue(os.access(script, os.X_OK))
        self.assertTrue(content.startswith("#!/bin/bash"))
        self.assertIn("clang -m32 -O2 gen.c -o native", content)
        self.assertIn("wasmtime run gen.wasm", content)
        self.assertIn("seed 17", content)

    def test_failure_inside_stage_leaves_nothing_behind(self):
        class Boom(Exception):
            pass

        with self.assertRaises(Boom):
            with self.manager._staged(self.manager.divergences_dir, "seed_1") as stage:
                (stage / "gen.c").write_text("partial")
                raise Boom()
        self.assertFalse((self.manager.divergences_dir / "seed_1").exists())
        self.assertEqual(list(self.manager.staging_dir.iterdir()), [])

    def test_resave_replaces_existing_directory(self):
        pair = self.make_pair()
        first = self.manager.save_divergence(
            self.artifact, pair, self.native, self.wasm, self.verdict
        )
        (first / "stale.txt").write_text("old")
        second = self.manager.save_divergence(
            self.artifact, pair, self.native, self.wasm, self.verdict
        )
        self.assertEqual(first, second)
        self.assertFalse((second / "stale.txt").exists())

    def test_missing_binary_is_reported_not_raised(self):
        pair = CompiledPair(self.temp_dir / "absent", self.temp_dir / "absent.wasm")
        dest = self.manager.save_divergence(
            self.artifact, pair, self.native, self.wasm, self.verdict
        )
        self.assertTrue((dest / "gen.c").exists())
        self.assertFalse((dest / "native").exists())

    def test_load_divergence_round_trip(self):
        dest = self.manager.save_divergence(
            self.artifact, self.make_pair(), self.native, self.wasm, self.verdict, BUILD_INFO
        )
        artifact, verdict = self.manager.load_divergence(dest)
        self.assertEqual(artifact, self.artifact)
        self.assertEqual(verdict, self.verdict)


class TestOtherArtifacts(ArtifactTestBase):
    def test_compile_failure(self):
        failure = CompileFailure(Target.WASM, "error: unknown type name", returncode=1)
        dest = self.manager.save_compile_failure(self.artifact, failure)
        self.assertEqual((dest / "diagnostic.txt").read_text(), "error: unknown type name")
        metadata = json.loads((dest / "metadata.json").read_text())
        self.assertEqual(metadata["outcome"], "CompileFailure")
        self.assertEqual(metadata["compile_failure"]["target"], "wasm")

    def test_inconclusive(self):
        verdict = Verdict.inconclusive("both-timeout")
        dest = self.manager.save_inconclusive(self.artifact, self.native, self.wasm, verdict)
        self.assertEqual(dest.parent.name, "inconclusive")
        self.assertEqual(json.loads((dest / "metadata.json").read_text())["outcome"], "Inconclusive")

    def test_save_reproducer(self):
        dest = self.manager.save_divergence(
            self.artifact, self.make_pair(), self.native, self.wasm, self.verdict
        )
        reproducer = MinimalReproducer(
            seed=17,
            status=ReductionStatus.PARTIAL,
            kind=DivergenceKind.OUTPUT_MISMATCH,
            source="int main;\n",
            module=b"\0asm\1",
            original_size=self.artifact.size,
            reduced_size=10,
            steps=3,
        )
        self.manager.save_reproducer(dest, reproducer)
        self.assertEqual((dest / "reduced.c").read_text(), "int main;\n")
        self.assertEqual((dest / "reduced.wasm").read_bytes(), b"\0asm\1")
        self.assertEqual(json.loads((dest / "reduction.json").read_text())["status"], "partial")

    def test_cleanup_staging(self):
        (self.manager.staging_dir / "seed_3_abc").mkdir()
        self.manager.cleanup_staging()
        self.assertFalse(self.manager.staging_dir.exists())


class TestResultsLog(unittest.TestCase):
    def test_append_and_read(self):
        with tempfile.TemporaryDirectory() as tmp:
            log = ResultsLog(Path(tmp) / "nested" / "results.jsonl")
            self.assertEqual(log.read(), [])
            log.append(1, "Match")
            log.append(2, "Divergence{OneSidedTrap}", artifact="/out/divergences/seed_2")
            records = log.read()
        self.assertEqual([r["seed"] for r in records], [1, 2])
        self.assertEqual(records[1]["result"], "Divergence{OneSidedTrap}")
        self.assertEqual(records[1]["artifact"], "/out/divergences/seed_2")


class TestCampaignStats(unittest.TestCase):
    def test_counts_by_outcome(self):
        stats = CampaignStats()
        stats.record_verdict(Verdict.match())
        stats.record_verdict(
            Verdict.divergence(DivergenceKind.ONE_SIDED_TRAP), Path("/out/divergences/seed_2")
        )
        stats.record_verdict(Verdict.inconclusive("both-timeout"))
        stats.record_compile_failure(CompileFailure(Target.NATIVE, "err"))
        stats.record_generator_error()
        stats.record_cancelled()
        stats.record_reduction("seed_2", "converged")

        report = stats.snapshot("Completed", 1.5)
        self.assertEqual(report.iterations, 5)
        self.assertEqual(report.matches, 1)
        self.assertEqual(report.divergences, {"OneSidedTrap": 1})
        self.assertEqual(report.compile_failures, {"native": 1})
        self.assertEqual(report.inconclusive, 1)
        self.assertEqual(report.generator_errors, 1)
        self.assertEqual(report.cancelled, 1)
        self.assertEqual(report.reductions, {"seed_2": "converged"})
        self.assertEqual(stats.divergence_count, 1)

    def test_snapshot_is_independent(self):
        stats = CampaignStats()
        report = stats.snapshot("Completed", 0.0)
        stats.record_verdict(Verdict.match())
        self.assertEqual(report.matches, 0)

    def test_concurrent_updates(self):
        stats = CampaignStats()

        def worker():
            for _ in range(500):
                stats.record_verdict(Verdict.match())

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        self.assertEqual(stats.snapshot("Completed", 0.0).matches, 4000)


if __name__ == "__main__":
    unittest.main()
