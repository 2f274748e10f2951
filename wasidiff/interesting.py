"""
Interestingness check invoked by external reducers.

C-Reduce and wasm-reduce call the scripts generated by wasidiff.reducer, which
exec `python -m wasidiff.interesting {source,module} --session <json> <candidate>`.
The session file carries the campaign configuration and the DivergenceKind to
preserve. Exit status 0 (stdout "interesting") means the candidate still
reproduces that kind; anything else means it does not.

If repeated runs of the same candidate disagree, a line is appended to
nondeterminism.jsonl next to the session file so the reducer can abort the
session once the external tool returns.
"""

import argparse
import json
import sys
from datetime import datetime, timezone
from pathlib import Path

from wasidiff.config import FuzzConfig
from wasidiff.errors import ReductionNonDeterminism, WasidiffError
from wasidiff.reducer import (
    BORING,
    INTERESTING,
    NONDETERMINISM_MARKER,
    ReductionPredicate,
    stable_verdict,
)
from wasidiff.toolchain import Toolchain
from wasidiff.types import DivergenceKind


def record_nondeterminism(session_dir: Path, candidate: Path, error: ReductionNonDeterminism) -> None:
    entry = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "candidate": str(candidate),
        "message": error.message,
    }
    with open(session_dir / NONDETERMINISM_MARKER, "a", encoding="utf-8") as f:
        f.write(json.dumps(entry) + "\n")


def check_candidate(mode: str, session: dict, candidate: Path) -> bool:
    """Return True if candidate reproduces the session's DivergenceKind.

    Raises:
        ReductionNonDeterminism: repeated checks of the candidate disagreed.
    """
    config = FuzzConfig.from_dict(session["config"])
    kind = DivergenceKind(session["kind"])
    runs = int(session.get("determinism_runs", 1))
    predicate = ReductionPredicate.from_config(
        config, Toolchain(config), session.get("sanity_cflags") or []
    )

    if mode == "source":
        source = candidate.read_text(encoding="utf-8", errors="replace")
        verdict = stable_verdict(lambda: predicate.check_source(source), runs)
    else:
        module = candidate.read_bytes()
        native_record = predicate.native_record(Path(session["native_binary"]))
        verdict = stable_verdict(lambda: predicate.check_module(module, native_record), runs)
    return verdict.is_divergence and verdict.kind is kind


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Interestingness test for wasidiff reduction sessions."
    )
    parser.add_argument("mode", choices=["source", "module"], help="Candidate representation")
    parser.add_argument("--session", type=Path, required=True, help="Session JSON file")
    parser.add_argument("candidate", type=Path, help="Candidate C file or wasm module")
    args = parser.parse_args(argv)

    try:
        session = json.loads(args.session.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        print(f"[!] Could not read session {args.session}: {e}", file=sys.stderr)
        return 2

    try:
        interesting = check_candidate(args.mode, session, args.candidate)
    except ReductionNonDeterminism as e:
        record_nondeterminism(args.session.parent, args.candidate, e)
        print(BORING)
        return 1
    except (WasidiffError, OSError) as e:
        print(f"[!] {e}", file=sys.stderr)
        print(BORING)
        return 1

    print(INTERESTING if interesting else BORING)
    return 0 if interesting else 1


def cli() -> None:
    sys.exit(main())


if __name__ == "__main__":
    cli()
