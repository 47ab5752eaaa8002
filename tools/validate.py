#!/usr/bin/env python3
"""Check authored dialogue graphs for schema errors and likely soft-locks.

Exit status is 0 when the file validates (soft-lock findings are warnings
only), 1 when schema errors were found and 2 when the file cannot be read.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Any, List, Sequence

REPO_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_GRAPHS = REPO_ROOT / "content" / "dialogue_graphs.json"

if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from station.graph import GraphError, read_graphs_payload
from station.schema import validate_graphs
from tools.softlock import analyze_softlocks


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Validate station dialogue graphs.")
    parser.add_argument(
        "graphs_path",
        nargs="?",
        default=str(DEFAULT_GRAPHS),
        help="JSON file mapping graph keys to dialogue graphs (default: bundled content).",
    )
    return parser.parse_args(argv)


def report(payload: Any) -> List[str]:
    """Print schema errors, or soft-lock warnings for a valid payload; return the errors."""
    errors = validate_graphs(payload)
    if errors:
        print(f"{len(errors)} schema error(s):")
        for err in errors:
            print(f" - {err}")
        return errors

    warnings = analyze_softlocks(payload)
    for warning in warnings:
        print(f"warning: {warning}")
    return errors


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    graphs_path = Path(args.graphs_path)
    try:
        payload = read_graphs_payload(graphs_path)
    except (OSError, GraphError) as exc:
        print(f"Cannot read {graphs_path}: {exc}", file=sys.stderr)
        return 2

    if report(payload):
        return 1
    print(f"Validation passed for {graphs_path}.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
