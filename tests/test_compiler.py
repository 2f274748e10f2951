"""Tests for DualCompiler."""

import shutil
import tempfile
import unittest
from pathlib import Path
from unittest.mock import MagicMock

from fake_toolchain import FakeToolchain, make_config

from wasidiff.compiler import NATIVE_NAME, SOURCE_NAME, WASM_NAME, DualCompiler
from wasidiff.toolchain import ProcessResult
from wasidiff.types import CompiledPair, CompileFailure, ProgramArtifact, Target


class TestDualCompiler(unittest.TestCase):
    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())
        self.toolchain = FakeToolchain(make_config(self.temp_dir / "out"))
        self.compiler = DualCompiler(self.toolchain)

    def tearDown(self):
        shutil.rmtree(self.temp_dir)

    def test_successful_compile_produces_pair(self):
        workdir = self.temp_dir / "work"
        result = self.compiler.compile(ProgramArtifact(1, "int main\n"), workdir)
        self.assertIsInstance(result, CompiledPair)
        self.assertEqual(result.native_binary, workdir / NATIVE_NAME)
        self.assertEqual(result.wasm_module, workdir / WASM_NAME)
        self.assertTrue((workdir / SOURCE_NAME).exists())

    def test_native_failure_skips_wasm_build(self):
        result = self.compiler.compile(
            ProgramArtifact(2, "int main\n// NATIVE_COMPILE_ERROR\n"), self.temp_dir / "w"
        )
        self.assertIsInstance(result, CompileFailure)
        self.assertIs(result.target, Target.NATIVE)
        self.assertEqual(result.returncode, 1)
        self.assertIn("error", result.diagnostic)
        self.assertNotIn("compile_wasm", self.toolchain.calls)

    def test_wasm_failure_is_tagged_wasm(self):
        result = self.compiler.compile(
            ProgramArtifact(3, "int main\n// WASM_COMPILE_ERROR\n"), self.temp_dir / "w"
        )
        self.assertIsInstance(result, CompileFailure)
        self.assertIs(result.target, Target.WASM)

    def test_rejected_diagnostic_turns_success_into_failure(self):
        toolchain = MagicMock()
        output = self.temp_dir / NATIVE_NAME
        output.write_text("binary")
        toolchain.compile_native.return_value = ProcessResult(
            ["clang"], 0, b"", b"warning: too few arguments in call to 'func_1'", 0.1
        )
        compiler = DualCompiler(toolchain, ["too few arguments in call"])
        result = compiler.compile_native(self.temp_dir / SOURCE_NAME, output)
        self.assertIsInstance(result, CompileFailure)
        self.assertIn("rejected diagnostic", result.diagnostic)

    def test_timeout_is_a_compile_failure(self):
        toolchain = MagicMock()
        toolchain.compile_native.return_value = ProcessResult(
            ["clang"], None, b"", b"", 60.0, timed_out=True
        )
        compiler = DualCompiler(toolchain)
        result = compiler.compile(ProgramArtifact(4, "int main\n"), self.temp_dir / "w")
        self.assertIsInstance(result, CompileFailure)
        self.assertTrue(result.timed_out)
        toolchain.compile_wasm.assert_not_called()

    def test_missing_output_is_a_compile_failure(self):
        toolchain = MagicMock()
        toolchain.compile_native.return_value = ProcessResult(["clang"], 0, b"", b"", 0.1)
        compiler = DualCompiler(toolchain)
        result = compiler.compile_native(self.temp_dir / SOURCE_NAME, self.temp_dir / "absent")
        self.assertIsInstance(result, CompileFailure)
        self.assertIn("missing", result.diagnostic)


if __name__ == "__main__":
    unittest.main()
