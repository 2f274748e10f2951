"""
Dual-target compilation for wasidiff.

DualCompiler turns one ProgramArtifact into a native executable and a wasm32-wasi
module. A rejected or timed-out compile is a CompileFailure value tagged with
the offending target; it is counted separately and never treated as a finding.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import TYPE_CHECKING

from wasidiff.types import CompiledPair, CompileFailure, ProgramArtifact, Target

if TYPE_CHECKING:
    from wasidiff.toolchain import ProcessResult, Toolchain

SOURCE_NAME = "gen.c"
NATIVE_NAME = "native"
WASM_NAME = "gen.wasm"

DIAGNOSTIC_TAIL_CHARS = 4000


class DualCompiler:
    """Compile a C program with the host toolchain and with wasi-sdk. No retries."""

    def __init__(self, toolchain: Toolchain, reject_diagnostics: list[str] | None = None) -> None:
        """
        Args:
            toolchain: The toolchain capability used for both builds.
            reject_diagnostics: Substrings which, when present in a successful
                native compile's diagnostics, mark the program as unusable.
        """
        self.toolchain = toolchain
        self.reject_diagnostics = list(reject_diagnostics or [])

    def _check(self, target: Target, result: ProcessResult, output_path: Path) -> CompileFailure | None:
        if result.timed_out:
            return CompileFailure(
                target=target,
                diagnostic=f"{target.value} compilation timed out after {result.wall_time:.1f}s",
                timed_out=True,
            )
        diagnostic = result.output_text()[-DIAGNOSTIC_TAIL_CHARS:]
        if result.returncode != 0:
            return CompileFailure(target=target, diagnostic=diagnostic, returncode=result.returncode)
        for pattern in self.reject_diagnostics:
            if pattern in diagnostic:
                return CompileFailure(
                    target=target,
                    diagnostic=f"rejected diagnostic '{pattern}':\n{diagnostic}",
                    returncode=result.returncode,
                )
        if not output_path.is_file():
            return CompileFailure(
                target=target,
                diagnostic=f"compiler reported success but {output_path.name} is missing",
                returncode=result.returncode,
            )
        return None

    def compile_native(self, source_path: Path, output_path: Path) -> Path | CompileFailure:
        result = self.toolchain.compile_native(source_path, output_path)
        failure = self._check(Target.NATIVE, result, output_path)
        return failure if failure is not None else output_path

    def compile_wasm(self, source_path: Path, output_path: Path) -> Path | CompileFailure:
        result = self.toolchain.compile_wasm(source_path, output_path)
        failure = self._check(Target.WASM, result, output_path)
        return failure if failure is not None else output_path

    def compile(self, artifact: ProgramArtifact, workdir: Path) -> CompiledPair | CompileFailure:
        """
        Build both targets for an artifact inside workdir.

        Returns:
            CompiledPair with both output paths, or the CompileFailure of the
            first target that failed (native is built first).
        """
        workdir.mkdir(parents=True, exist_ok=True)
        source_path = workdir / SOURCE_NAME
        source_path.write_text(artifact.source, encoding="utf-8")

        native = self.compile_native(source_path, workdir / NATIVE_NAME)
        if isinstance(native, CompileFailure):
            print(
                f"  [~] Seed {artifact.seed}: native compile failed "
                f"({'timeout' if native.timed_out else f'exit {native.returncode}'}).",
                file=sys.stderr,
            )
            return native

        wasm = self.compile_wasm(source_path, workdir / WASM_NAME)
        if isinstance(wasm, CompileFailure):
            print(
                f"  [~] Seed {artifact.seed}: wasm compile failed "
                f"({'timeout' if wasm.timed_out else f'exit {wasm.returncode}'}).",
                file=sys.stderr,
            )
            return wasm

        return CompiledPair(native_binary=native, wasm_module=wasm)
