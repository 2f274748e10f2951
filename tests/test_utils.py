"""
Tests for the utils module (wasidiff/utils.py).

Covers the JSON loading helper and the TeeLogger used by the campaign CLI.
"""

import json
import tempfile
import unittest
from io import StringIO
from pathlib import Path
from unittest.mock import MagicMock, patch

from wasidiff.utils import TeeLogger, load_json_file


class TestLoadJsonFile(unittest.TestCase):
    """Tests for load_json_file."""

    def setUp(self):
        self.tmp_dir = tempfile.TemporaryDirectory()
        self.path = Path(self.tmp_dir.name) / "data.json"

    def tearDown(self):
        self.tmp_dir.cleanup()

    def test_loads_object(self):
        self.path.write_text(json.dumps({"label": "Match"}))
        self.assertEqual(load_json_file(self.path), {"label": "Match"})

    def test_corrupted_file_prints_warning(self):
        """A corrupted file returns None and warns on stderr."""
        self.path.write_text("{oops")
        with patch("sys.stderr", new_callable=StringIO) as stderr:
            self.assertIsNone(load_json_file(self.path))
        self.assertIn("Warning", stderr.getvalue())

    def test_non_object_is_rejected(self):
        self.path.write_text("[1, 2]")
        with patch("sys.stderr", new_callable=StringIO):
            self.assertIsNone(load_json_file(self.path))

    def test_missing_file(self):
        with patch("sys.stderr", new_callable=StringIO):
            self.assertIsNone(load_json_file(self.path))


class TestTeeLogger(unittest.TestCase):
    """Tests for TeeLogger class."""

    def setUp(self):
        self.tmp_dir = tempfile.TemporaryDirectory()
        self.log_path = Path(self.tmp_dir.name) / "campaign.log"
        self.stream = StringIO()

    def tearDown(self):
        self.tmp_dir.cleanup()

    def test_writes_to_both_streams(self):
        """print()-style writes reach the console and the log file."""
        logger = TeeLogger(self.log_path, self.stream)
        logger.write("[*] starting")
        logger.write("\n")
        logger.close()
        self.assertEqual(self.stream.getvalue(), "[*] starting\n")
        self.assertEqual(self.log_path.read_text(), "[*] starting\n")

    def test_collapses_repeated_lines(self):
        """Consecutive identical lines become one line with a count."""
        logger = TeeLogger(self.log_path, self.stream)
        for _ in range(3):
            logger.write("[~] same\n")
        logger.write("[~] different\n")
        logger.close()
        self.assertEqual(self.stream.getvalue(), "[~] same (×3)\n[~] different\n")

    def test_quiet_mode_suppresses_per_seed_lines(self):
        """Match and inconclusive lines are dropped, including print()'s newline."""
        logger = TeeLogger(self.log_path, self.stream, verbose=False)
        logger.write("[MATCH] seed 1 (native 0.01s, wasm 0.02s)")
        logger.write("\n")
        logger.write("[INCONCLUSIVE] seed 2: both-timeout")
        logger.write("\n")
        logger.write("  [~] Seed 3: generator error: csmith exited with 1\n")
        logger.write("  [!!!] DIVERGENCE DETECTED (Divergence{OutputMismatch})!\n")
        logger.close()
        self.assertEqual(
            self.stream.getvalue(),
            "  [!!!] DIVERGENCE DETECTED (Divergence{OutputMismatch})!\n",
        )
        self.assertEqual(self.log_path.read_text(), self.stream.getvalue())

    def test_verbose_mode_keeps_match_lines(self):
        logger = TeeLogger(self.log_path, self.stream, verbose=True)
        logger.write("[MATCH] seed 1\n")
        logger.close()
        self.assertIn("[MATCH] seed 1", self.stream.getvalue())

    def test_close_closes_log_file(self):
        logger = TeeLogger(self.log_path, self.stream)
        logger.close()
        self.assertTrue(logger.log_file.closed)

    def test_encoding_and_tty_delegate_to_stream(self):
        mock_stream = MagicMock()
        mock_stream.encoding = "latin-1"
        mock_stream.isatty.return_value = True
        logger = TeeLogger(self.log_path, mock_stream)
        self.assertEqual(logger.encoding, "latin-1")
        self.assertTrue(logger.isatty())
        logger.close()

    def test_fileno_raises_for_stringio(self):
        """StringIO has a fileno() that raises, which propagates."""
        logger = TeeLogger(self.log_path, self.stream)
        with self.assertRaises(OSError):
            logger.fileno()
        logger.close()


if __name__ == "__main__":
    unittest.main()
