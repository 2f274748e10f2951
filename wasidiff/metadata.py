"""
Generate and save run metadata for wasidiff campaigns.

Captures the campaign's identity, host hardware, toolchain versions and
configuration in <output>/run_metadata.json so every finding can be traced
back to the exact toolchain that produced it.
"""

import argparse
import json
import platform
import shutil
import sys
import uuid
from pathlib import Path
from typing import TYPE_CHECKING

import psutil

if TYPE_CHECKING:
    from wasidiff.config import FuzzConfig
    from wasidiff.toolchain import Toolchain

RUN_METADATA_FILE = "run_metadata.json"


def load_existing_metadata(metadata_path: Path) -> dict | None:
    """
    Load existing metadata file if it exists.

    Args:
        metadata_path: Path to the run_metadata.json file.

    Returns:
        Dictionary with existing metadata, or None if file doesn't exist or is invalid.
    """
    if not metadata_path.exists():
        return None

    try:
        with open(metadata_path, encoding="utf-8") as f:
            return json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        print(f"[!] Warning: Could not load existing metadata: {e}", file=sys.stderr)
        return None


def get_hardware_info(output_dir: Path) -> dict:
    return {
        "cpu_count_logical": psutil.cpu_count(logical=True),
        "cpu_count_physical": psutil.cpu_count(logical=False),
        "total_ram_gb": round(psutil.virtual_memory().total / (1024**3), 2),
        "disk_free_gb": round(shutil.disk_usage(output_dir).free / (1024**3), 2),
    }


def generate_run_metadata(
    config: "FuzzConfig",
    toolchain: "Toolchain",
    args: argparse.Namespace | None = None,
) -> dict:
    """
    Generate run metadata and save it to <output>/run_metadata.json.

    If the file already exists (a campaign resumed into the same output
    directory) its run_id is preserved; hardware, tool versions and
    configuration are always refreshed.

    Args:
        config: The campaign configuration.
        toolchain: Used to query each tool's --version.
        args: Parsed command-line arguments, recorded verbatim when given.

    Returns:
        Dictionary containing all collected metadata.
    """
    output_dir = config.output_dir
    output_dir.mkdir(parents=True, exist_ok=True)
    metadata_path = output_dir / RUN_METADATA_FILE

    existing_metadata = load_existing_metadata(metadata_path)
    if existing_metadata and existing_metadata.get("run_id"):
        run_id = existing_metadata["run_id"]
        print(f"[+] Reusing existing run id ({run_id[:8]}...)", file=sys.stderr)
    else:
        run_id = str(uuid.uuid4())
        print(f"[+] Created new run id ({run_id[:8]}...)", file=sys.stderr)

    metadata = {
        "run_id": run_id,
        "environment": {
            "hostname": platform.node(),
            "os": platform.platform(),
            "python_version": sys.version,
            "tool_versions": toolchain.version_info(),
        },
        "hardware": get_hardware_info(output_dir),
        "configuration": {
            "config": config.to_dict(),
            "args": vars(args) if args is not None else {},
        },
    }

    with open(metadata_path, "w", encoding="utf-8") as f:
        json.dump(metadata, f, indent=2, default=str)

    return metadata
