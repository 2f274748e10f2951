"""
Tests for the metadata module (wasidiff/metadata.py).

Covers loading of an existing run_metadata.json, hardware collection and the
generate_run_metadata entry point.
"""

import argparse
import json
import tempfile
import unittest
from io import StringIO
from pathlib import Path
from unittest.mock import MagicMock, patch

from wasidiff.config import FuzzConfig, ToolPaths
from wasidiff.metadata import (
    RUN_METADATA_FILE,
    generate_run_metadata,
    get_hardware_info,
    load_existing_metadata,
)


class TestLoadExistingMetadata(unittest.TestCase):
    """Tests for load_existing_metadata."""

    def test_returns_none_when_missing(self):
        self.assertIsNone(load_existing_metadata(Path("/nonexistent/run_metadata.json")))

    def test_returns_none_for_corrupt_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / RUN_METADATA_FILE
            path.write_text("{corrupt")
            with patch("sys.stderr", new_callable=StringIO):
                self.assertIsNone(load_existing_metadata(path))


class TestHardwareInfo(unittest.TestCase):
    @patch("wasidiff.metadata.psutil")
    def test_collects_cpu_and_memory(self, mock_psutil):
        """CPU counts and RAM come from psutil."""
        mock_psutil.cpu_count.side_effect = lambda logical: 8 if logical else 4
        mock_psutil.virtual_memory.return_value = MagicMock(total=16 * 1024**3)
        with tempfile.TemporaryDirectory() as tmp:
            info = get_hardware_info(Path(tmp))
        self.assertEqual(info["cpu_count_logical"], 8)
        self.assertEqual(info["cpu_count_physical"], 4)
        self.assertEqual(info["total_ram_gb"], 16.0)
        self.assertGreaterEqual(info["disk_free_gb"], 0)


class TestGenerateRunMetadata(unittest.TestCase):
    """Tests for generate_run_metadata."""

    def setUp(self):
        self.tmp_dir = tempfile.TemporaryDirectory()
        self.config = FuzzConfig(
            output_dir=Path(self.tmp_dir.name) / "out", tools=ToolPaths.from_env({})
        )
        self.toolchain = MagicMock()
        self.toolchain.version_info.return_value = {
            "csmith": "csmith 2.3.0",
            "runtime": "wasmtime 20.0.0",
        }

    def tearDown(self):
        self.tmp_dir.cleanup()

    def test_writes_metadata_file(self):
        args = argparse.Namespace(count=10, workers=2)
        with patch("sys.stderr", new_callable=StringIO):
            metadata = generate_run_metadata(self.config, self.toolchain, args)

        saved = json.loads((self.config.output_dir / RUN_METADATA_FILE).read_text())
        self.assertEqual(saved["run_id"], metadata["run_id"])
        self.assertEqual(saved["environment"]["tool_versions"]["runtime"], "wasmtime 20.0.0")
        self.assertEqual(saved["configuration"]["args"], {"count": 10, "workers": 2})
        self.assertEqual(saved["configuration"]["config"]["opt_level"], "-O2")
        self.assertIn("cpu_count_logical", saved["hardware"])

    def test_preserves_run_id_across_runs(self):
        """A second campaign into the same output directory keeps its run id."""
        with patch("sys.stderr", new_callable=StringIO):
            first = generate_run_metadata(self.config, self.toolchain)
            second = generate_run_metadata(self.config, self.toolchain)
        self.assertEqual(first["run_id"], second["run_id"])
        self.assertEqual(second["configuration"]["args"], {})


if __name__ == "__main__":
    unittest.main()
