"""
Configuration for wasidiff campaigns and reduction sessions.

Tool locations are resolved from the environment the same way the wasi-sdk
tooling does it (WASI_SDK, WASI_SYSROOT, ...); everything else comes from the
command line via argparse and is carried in plain dataclasses.
"""

from __future__ import annotations

import json
import os
import shlex
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Mapping

from wasidiff.errors import ConfigurationError

DEFAULT_WASI_SDK = "/opt/wasi-sdk"
DEFAULT_CSMITH_INCLUDE = "/usr/include/csmith"
DEFAULT_RUNTIME_CMD = ["wasmtime", "run", "{module}"]

# Warnings that point at undefined behaviour. A reduced candidate that trips
# any of them is rejected, otherwise C-Reduce happily reduces towards UB.
DEFAULT_SANITY_CFLAGS = [
    "-Werror=uninitialized",
    "-Werror=sometimes-uninitialized",
    "-Werror=implicit-function-declaration",
    "-Werror=implicit-int",
    "-Werror=return-type",
    "-Werror=format",
    "-Werror=int-conversion",
    "-Werror=incompatible-pointer-types",
    "-Werror=pointer-sign",
    "-Werror=array-bounds",
    "-Werror=division-by-zero",
    "-Werror=shift-count-overflow",
    "-Werror=shift-count-negative",
    "-Werror=tautological-constant-out-of-range-compare",
]

# Csmith occasionally emits calls with missing arguments; the host compiler
# only warns about it, but the program is not well defined.
DEFAULT_REJECT_DIAGNOSTICS = ["too few arguments in call"]


class ReductionMode(str, Enum):
    OFF = "off"
    INLINE = "inline"
    BACKGROUND = "background"


@dataclass
class ToolPaths:
    """Locations of every external collaborator."""

    csmith: str = "csmith"
    csmith_include: Path = Path(DEFAULT_CSMITH_INCLUDE)
    host_clang: str = "clang"
    host_cflags: list[str] = field(default_factory=list)
    wasi_sdk: Path = Path(DEFAULT_WASI_SDK)
    wasm_clang: Path = Path(DEFAULT_WASI_SDK) / "bin" / "clang"
    wasi_sysroot: Path = Path(DEFAULT_WASI_SDK) / "share" / "wasi-sysroot"
    runtime_cmd: list[str] = field(default_factory=lambda: list(DEFAULT_RUNTIME_CMD))
    creduce: str = "creduce"
    wasm_reduce: str = "wasm-reduce"

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> ToolPaths:
        """Resolve tool paths from environment variables, with wasi-sdk defaults."""
        env = os.environ if env is None else env
        wasi_sdk = Path(env.get("WASI_SDK", DEFAULT_WASI_SDK))
        wasm_clang = env.get("WASM_CLANG") or env.get("CLANG")
        sysroot = env.get("WASI_SYSROOT")
        runtime = env.get("WASM_RUNTIME")
        return cls(
            csmith=env.get("CSMITH", "csmith"),
            csmith_include=Path(env.get("CSMITH_INCLUDE", DEFAULT_CSMITH_INCLUDE)),
            host_clang=env.get("HOST_CLANG", "clang"),
            host_cflags=shlex.split(env.get("HOST_CLANG_FLAGS", "")),
            wasi_sdk=wasi_sdk,
            wasm_clang=Path(wasm_clang) if wasm_clang else wasi_sdk / "bin" / "clang",
            wasi_sysroot=Path(sysroot) if sysroot else wasi_sdk / "share" / "wasi-sysroot",
            runtime_cmd=shlex.split(runtime) if runtime else list(DEFAULT_RUNTIME_CMD),
            creduce=env.get("CREDUCE", "creduce"),
            wasm_reduce=env.get("WASM_REDUCE", "wasm-reduce"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "csmith": self.csmith,
            "csmith_include": str(self.csmith_include),
            "host_clang": self.host_clang,
            "host_cflags": list(self.host_cflags),
            "wasi_sdk": str(self.wasi_sdk),
            "wasm_clang": str(self.wasm_clang),
            "wasi_sysroot": str(self.wasi_sysroot),
            "runtime_cmd": list(self.runtime_cmd),
            "creduce": self.creduce,
            "wasm_reduce": self.wasm_reduce,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolPaths:
        defaults = cls()
        return cls(
            csmith=data.get("csmith", defaults.csmith),
            csmith_include=Path(data.get("csmith_include", defaults.csmith_include)),
            host_clang=data.get("host_clang", defaults.host_clang),
            host_cflags=list(data.get("host_cflags", [])),
            wasi_sdk=Path(data.get("wasi_sdk", defaults.wasi_sdk)),
            wasm_clang=Path(data.get("wasm_clang", defaults.wasm_clang)),
            wasi_sysroot=Path(data.get("wasi_sysroot", defaults.wasi_sysroot)),
            runtime_cmd=list(data.get("runtime_cmd", defaults.runtime_cmd)),
            creduce=data.get("creduce", defaults.creduce),
            wasm_reduce=data.get("wasm_reduce", defaults.wasm_reduce),
        )


@dataclass
class ReductionConfig:
    """Budgets and switches for a reduction session."""

    max_consecutive_failures: int = 200
    max_steps: int = 10_000
    time_budget: float = 3600.0
    determinism_runs: int = 2
    source_pass: bool = True
    binary_pass: bool = True
    sanity_cflags: list[str] = field(default_factory=lambda: list(DEFAULT_SANITY_CFLAGS))

    def validate(self) -> None:
        if self.max_consecutive_failures < 1:
            raise ConfigurationError("max_consecutive_failures must be at least 1")
        if self.max_steps < 1:
            raise ConfigurationError("max_steps must be at least 1")
        if self.time_budget <= 0:
            raise ConfigurationError("reduction time budget must be positive")
        if self.determinism_runs < 1:
            raise ConfigurationError("determinism_runs must be at least 1")

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_consecutive_failures": self.max_consecutive_failures,
            "max_steps": self.max_steps,
            "time_budget": self.time_budget,
            "determinism_runs": self.determinism_runs,
            "source_pass": self.source_pass,
            "binary_pass": self.binary_pass,
            "sanity_cflags": list(self.sanity_cflags),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReductionConfig:
        config = cls()
        for key, value in data.items():
            if hasattr(config, key):
                setattr(config, key, value)
        return config


@dataclass
class FuzzConfig:
    """Everything a campaign needs besides the seed range."""

    output_dir: Path = Path("wasidiff_out")
    time_budget: float = 5.0
    compile_timeout: float = 60.0
    generator_timeout: float = 30.0
    opt_level: str = "-O2"
    extra_cflags: list[str] = field(default_factory=list)
    workers: int = 1
    reduction_mode: ReductionMode = ReductionMode.OFF
    persist_compile_failures: bool = False
    persist_inconclusive: bool = False
    fail_fast: bool = False
    keep_workdirs: bool = False
    trap_mapping_path: Path | None = None
    reject_diagnostics: list[str] = field(default_factory=lambda: list(DEFAULT_REJECT_DIAGNOSTICS))
    tools: ToolPaths = field(default_factory=ToolPaths.from_env)
    reduction: ReductionConfig = field(default_factory=ReductionConfig)

    @property
    def divergences_dir(self) -> Path:
        return self.output_dir / "divergences"

    @property
    def logs_dir(self) -> Path:
        return self.output_dir / "logs"

    @property
    def work_root(self) -> Path:
        return self.output_dir / "tmp"

    def validate(self) -> None:
        """Raise ConfigurationError if any setting is unusable."""
        if self.time_budget <= 0:
            raise ConfigurationError(f"time budget must be positive, got {self.time_budget}")
        if self.compile_timeout <= 0:
            raise ConfigurationError(
                f"compile timeout must be positive, got {self.compile_timeout}"
            )
        if self.generator_timeout <= 0:
            raise ConfigurationError(
                f"generator timeout must be positive, got {self.generator_timeout}"
            )
        if self.workers < 1:
            raise ConfigurationError(f"workers must be at least 1, got {self.workers}")
        if not self.opt_level.startswith("-O"):
            raise ConfigurationError(f"opt level must look like -O<n>, got {self.opt_level!r}")
        if not self.tools.runtime_cmd:
            raise ConfigurationError("runtime command is empty")
        if not any("{module}" in arg for arg in self.tools.runtime_cmd):
            raise ConfigurationError(
                "runtime command must contain a '{module}' placeholder, "
                f"got {self.tools.runtime_cmd!r}"
            )
        if self.trap_mapping_path is not None and not self.trap_mapping_path.is_file():
            raise ConfigurationError(f"trap mapping file not found: {self.trap_mapping_path}")
        self.reduction.validate()

    def to_dict(self) -> dict[str, Any]:
        return {
            "output_dir": str(self.output_dir),
            "time_budget": self.time_budget,
            "compile_timeout": self.compile_timeout,
            "generator_timeout": self.generator_timeout,
            "opt_level": self.opt_level,
            "extra_cflags": list(self.extra_cflags),
            "workers": self.workers,
            "reduction_mode": self.reduction_mode.value,
            "persist_compile_failures": self.persist_compile_failures,
            "persist_inconclusive": self.persist_inconclusive,
            "fail_fast": self.fail_fast,
            "keep_workdirs": self.keep_workdirs,
            "trap_mapping_path": str(self.trap_mapping_path) if self.trap_mapping_path else None,
            "reject_diagnostics": list(self.reject_diagnostics),
            "tools": self.tools.to_dict(),
            "reduction": self.reduction.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FuzzConfig:
        """Rebuild a config saved by to_dict() (used by the interestingness check)."""
        mapping = data.get("trap_mapping_path")
        return cls(
            output_dir=Path(data.get("output_dir", "wasidiff_out")),
            time_budget=data.get("time_budget", 5.0),
            compile_timeout=data.get("compile_timeout", 60.0),
            generator_timeout=data.get("generator_timeout", 30.0),
            opt_level=data.get("opt_level", "-O2"),
            extra_cflags=list(data.get("extra_cflags", [])),
            workers=data.get("workers", 1),
            reduction_mode=ReductionMode(data.get("reduction_mode", "off")),
            persist_compile_failures=data.get("persist_compile_failures", False),
            persist_inconclusive=data.get("persist_inconclusive", False),
            fail_fast=data.get("fail_fast", False),
            keep_workdirs=data.get("keep_workdirs", False),
            trap_mapping_path=Path(mapping) if mapping else None,
            reject_diagnostics=list(
                data.get("reject_diagnostics", DEFAULT_REJECT_DIAGNOSTICS)
            ),
            tools=ToolPaths.from_dict(data.get("tools", {})),
            reduction=ReductionConfig.from_dict(data.get("reduction", {})),
        )

    def save(self, path: Path) -> None:
        path.write_text(json.dumps(self.to_dict(), indent=2), encoding="utf-8")

    @classmethod
    def load(cls, path: Path) -> FuzzConfig:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"could not load config from {path}: {e}") from e
        return cls.from_dict(data)
