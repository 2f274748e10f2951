"""Tests for ToolPaths, ReductionConfig and FuzzConfig."""

import json
import tempfile
import unittest
from pathlib import Path

from wasidiff.config import (
    DEFAULT_RUNTIME_CMD,
    FuzzConfig,
    ReductionConfig,
    ReductionMode,
    ToolPaths,
)
from wasidiff.errors import ConfigurationError


class TestToolPaths(unittest.TestCase):
    def test_defaults_without_environment(self):
        tools = ToolPaths.from_env({})
        self.assertEqual(tools.csmith, "csmith")
        self.assertEqual(tools.wasm_clang, Path("/opt/wasi-sdk/bin/clang"))
        self.assertEqual(tools.wasi_sysroot, Path("/opt/wasi-sdk/share/wasi-sysroot"))
        self.assertEqual(tools.runtime_cmd, DEFAULT_RUNTIME_CMD)
        self.assertEqual(tools.host_cflags, [])

    def test_wasi_sdk_root_drives_derived_paths(self):
        tools = ToolPaths.from_env({"WASI_SDK": "/sdk"})
        self.assertEqual(tools.wasm_clang, Path("/sdk/bin/clang"))
        self.assertEqual(tools.wasi_sysroot, Path("/sdk/share/wasi-sysroot"))

    def test_explicit_overrides(self):
        tools = ToolPaths.from_env(
            {
                "WASI_SDK": "/sdk",
                "WASM_CLANG": "/other/clang",
                "WASI_SYSROOT": "/sysroot",
                "WASM_RUNTIME": "wasmer run {module}",
                "HOST_CLANG_FLAGS": "-fno-pie -g",
                "CSMITH": "/usr/local/bin/csmith",
            }
        )
        self.assertEqual(tools.wasm_clang, Path("/other/clang"))
        self.assertEqual(tools.wasi_sysroot, Path("/sysroot"))
        self.assertEqual(tools.runtime_cmd, ["wasmer", "run", "{module}"])
        self.assertEqual(tools.host_cflags, ["-fno-pie", "-g"])
        self.assertEqual(tools.csmith, "/usr/local/bin/csmith")

    def test_dict_round_trip(self):
        tools = ToolPaths.from_env({"WASI_SDK": "/sdk", "HOST_CLANG_FLAGS": "-g"})
        self.assertEqual(ToolPaths.from_dict(tools.to_dict()), tools)


class TestValidation(unittest.TestCase):
    def make(self, **kwargs):
        return FuzzConfig(tools=ToolPaths.from_env({}), **kwargs)

    def test_default_config_is_valid(self):
        self.make().validate()

    def test_rejects_bad_values(self):
        bad = [
            {"time_budget": 0},
            {"compile_timeout": -1},
            {"generator_timeout": 0},
            {"workers": 0},
            {"opt_level": "2"},
            {"trap_mapping_path": Path("/nonexistent/mapping.json")},
        ]
        for kwargs in bad:
            with self.subTest(kwargs=kwargs):
                with self.assertRaises(ConfigurationError):
                    self.make(**kwargs).validate()

    def test_runtime_command_needs_module_placeholder(self):
        config = self.make()
        config.tools.runtime_cmd = ["wasmtime", "run"]
        with self.assertRaises(ConfigurationError):
            config.validate()
        config.tools.runtime_cmd = []
        with self.assertRaises(ConfigurationError):
            config.validate()

    def test_reduction_budgets_are_validated(self):
        for kwargs in (
            {"max_consecutive_failures": 0},
            {"max_steps": 0},
            {"time_budget": 0},
            {"determinism_runs": 0},
        ):
            with self.subTest(kwargs=kwargs):
                with self.assertRaises(ConfigurationError):
                    ReductionConfig(**kwargs).validate()


class TestSerialization(unittest.TestCase):
    def test_save_and_load(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "config.json"
            config = FuzzConfig(
                output_dir=Path(tmp) / "out",
                workers=4,
                reduction_mode=ReductionMode.BACKGROUND,
                extra_cflags=["-fwrapv"],
                tools=ToolPaths.from_env({}),
            )
            config.reduction.max_steps = 50
            config.save(path)
            self.assertEqual(json.loads(path.read_text())["reduction_mode"], "background")
            loaded = FuzzConfig.load(path)
        self.assertEqual(loaded.workers, 4)
        self.assertIs(loaded.reduction_mode, ReductionMode.BACKGROUND)
        self.assertEqual(loaded.extra_cflags, ["-fwrapv"])
        self.assertEqual(loaded.reduction.max_steps, 50)
        self.assertEqual(loaded.tools, config.tools)
        self.assertEqual(loaded.work_root, Path(tmp) / "out" / "tmp")

    def test_load_invalid_file_raises(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "config.json"
            path.write_text("{not json")
            with self.assertRaises(ConfigurationError):
                FuzzConfig.load(path)
            with self.assertRaises(ConfigurationError):
                FuzzConfig.load(Path(tmp) / "missing.json")


if __name__ == "__main__":
    unittest.main()
