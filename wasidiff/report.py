"""
Text reporter for wasidiff campaigns.

Formats a CampaignReport for the end-of-run footer, and provides a CLI that
rebuilds the same summary from an output directory, listing every divergent
artifact with its verdict and reduction status.
"""

import argparse
import json
import sys
from collections import Counter
from pathlib import Path
from typing import Any

from wasidiff.artifacts import CAMPAIGN_REPORT_FILE
from wasidiff.metadata import RUN_METADATA_FILE
from wasidiff.types import CampaignReport
from wasidiff.utils import load_json_file


def format_duration(seconds: float) -> str:
    """Format a duration in seconds to a human-readable string."""
    if seconds < 0:
        return "N/A"

    days, remainder = divmod(int(seconds), 86400)
    hours, remainder = divmod(remainder, 3600)
    minutes, secs = divmod(remainder, 60)

    parts = []
    if days > 0:
        parts.append(f"{days}d")
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")
    if secs > 0 or not parts:
        parts.append(f"{secs}s")

    return " ".join(parts)


def format_report(report: CampaignReport) -> str:
    """Render the counts of a CampaignReport as an aligned text block."""
    rate = report.iterations / report.duration_secs if report.duration_secs > 0 else 0.0
    lines = [
        f"- Termination:       {report.termination}",
        f"- Duration:          {format_duration(report.duration_secs)}",
        f"- Seeds processed:   {report.iterations:,} ({rate:.2f}/s)",
        "",
        "--- Results ---",
        f"- Match:             {report.matches:,}",
        f"- Divergence:        {report.total_divergences:,}",
    ]
    for kind, count in sorted(report.divergences.items()):
        lines.append(f"    {kind + ':':<22}{count:,}")
    lines.append(f"- CompileFailure:    {report.total_compile_failures:,}")
    for target, count in sorted(report.compile_failures.items()):
        lines.append(f"    {target + ':':<22}{count:,}")
    lines.extend(
        [
            f"- Inconclusive:      {report.inconclusive:,}",
            f"- GeneratorError:    {report.generator_errors:,}",
            f"- Cancelled:         {report.cancelled:,}",
        ]
    )
    if report.divergent_artifacts:
        lines.append("")
        lines.append("--- Divergent Artifacts ---")
        for path in report.divergent_artifacts:
            status = report.reductions.get(path.name)
            suffix = f"  (reduction: {status})" if status else ""
            lines.append(f"  {path}{suffix}")
    return "\n".join(lines)


def load_health_summary(health_log: Path) -> dict[str, int]:
    """Count health events by "category.event" in a health_events.jsonl file."""
    counts: Counter[str] = Counter()
    if not health_log.exists():
        return {}
    try:
        with open(health_log, encoding="utf-8") as f:
            for line in f:
                try:
                    event = json.loads(line)
                except json.JSONDecodeError:
                    continue
                counts[f"{event.get('cat')}.{event.get('event')}"] += 1
    except OSError:
        return {}
    return dict(counts)


def format_health_summary(counts: dict[str, int]) -> list[str]:
    """Render "category.event" counts as a HEALTH EVENTS section (empty if none)."""
    if not counts:
        return []
    lines = ["", "-" * 80, "HEALTH EVENTS", "-" * 80]
    for key, count in sorted(counts.items()):
        lines.append(f"  {key:<45}{count:,}")
    return lines


def describe_artifact(artifact_dir: Path) -> dict[str, Any]:
    """Collect verdict and reduction info for one divergences/seed_<N> directory."""
    verdict = load_json_file(artifact_dir / "verdict.json") or {}
    reduction = (
        load_json_file(artifact_dir / "reduction.json")
        if (artifact_dir / "reduction.json").exists()
        else None
    )
    return {
        "name": artifact_dir.name,
        "label": verdict.get("label", "unknown"),
        "reduction": reduction.get("status") if reduction else None,
        "reduced_size": reduction.get("reduced_size") if reduction else None,
        "original_size": reduction.get("original_size") if reduction else None,
    }


def generate_report(output_dir: Path) -> str:
    """Generate a text report for a campaign output directory."""
    lines: list[str] = ["=" * 80, "WASIDIFF CAMPAIGN REPORT", "=" * 80]

    metadata = (
        load_json_file(output_dir / RUN_METADATA_FILE)
        if (output_dir / RUN_METADATA_FILE).exists()
        else None
    )
    if metadata:
        env = metadata.get("environment", {})
        lines.append(f"Run ID:         {metadata.get('run_id', 'N/A')}")
        lines.append(f"Hostname:       {env.get('hostname', 'N/A')}")
        for tool, version in env.get("tool_versions", {}).items():
            lines.append(f"{tool + ':':<16}{version}")
        lines.append("")

    report_path = output_dir / CAMPAIGN_REPORT_FILE
    data = load_json_file(report_path) if report_path.exists() else None
    if data is not None:
        lines.append(format_report(CampaignReport.from_dict(data)))
    else:
        lines.append(f"(no {CAMPAIGN_REPORT_FILE}; campaign still running or never started)")

    divergences_dir = output_dir / "divergences"
    artifact_dirs = sorted(
        (p for p in divergences_dir.glob("seed_*") if p.is_dir()),
        key=lambda p: p.name,
    ) if divergences_dir.exists() else []
    if artifact_dirs:
        lines.append("")
        lines.append("-" * 80)
        lines.append("DIVERGENCES ON DISK")
        lines.append("-" * 80)
        for artifact_dir in artifact_dirs:
            info = describe_artifact(artifact_dir)
            line = f"  {info['name']:<20}{info['label']}"
            if info["reduction"]:
                line += (
                    f"  reduction={info['reduction']}"
                    f" ({info['original_size']} -> {info['reduced_size']} bytes)"
                )
            lines.append(line)

    health = load_health_summary(output_dir / "logs" / "health_events.jsonl")
    lines.extend(format_health_summary(health))

    lines.append("=" * 80)
    return "\n".join(lines)


def main() -> None:
    """Main entry point for the text reporter CLI."""
    parser = argparse.ArgumentParser(
        description="Generate a text report for a wasidiff output directory.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                    # Report for ./wasidiff_out
  %(prog)s /path/to/output    # Report for a specific campaign
        """,
    )
    parser.add_argument(
        "output_dir",
        nargs="?",
        default="wasidiff_out",
        help="Path to the campaign output directory (default: wasidiff_out)",
    )
    args = parser.parse_args()

    output_dir = Path(args.output_dir).resolve()
    if not output_dir.exists():
        print(f"Error: Output directory does not exist: {output_dir}", file=sys.stderr)
        sys.exit(1)

    print(generate_report(output_dir))


if __name__ == "__main__":
    main()
