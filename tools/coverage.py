import argparse
from collections import Counter, defaultdict
from pathlib import Path
import sys
from typing import Any, Dict, Iterable, Tuple

REPO_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_GRAPHS_PATH = REPO_ROOT / "content" / "dialogue_graphs.json"

if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from station.graph import GraphError, read_graphs_payload
from station.schema import normalize_nodes, unwrap_graphs
from station.state import PATTERN_ORDER, parse_pattern

MIN_GLOBAL_CHOICES = 5


def iter_choice_patterns(choice: Dict[str, Any]) -> Iterable[str]:
    """Yield every pattern a choice exercises: its own tag plus consequence deltas."""
    pattern = parse_pattern(choice.get("pattern"))
    if pattern is not None:
        yield pattern.value
    consequence = choice.get("consequence")
    if isinstance(consequence, dict):
        deltas = consequence.get("patternChanges", consequence.get("pattern_changes")) or {}
        if isinstance(deltas, dict):
            for name, delta in deltas.items():
                parsed = parse_pattern(name)
                if parsed is not None and parsed != pattern and isinstance(delta, int) and delta > 0:
                    yield parsed.value


def collect_pattern_counts(payload: Any) -> Tuple[Counter, Dict[str, Counter]]:
    global_counts: Counter[str] = Counter()
    graph_counts: defaultdict[str, Counter[str]] = defaultdict(Counter)
    graphs = unwrap_graphs(payload)
    if not isinstance(graphs, dict):
        return global_counts, dict(graph_counts)
    for graph_key in sorted(graphs):
        graph = graphs[graph_key]
        if not isinstance(graph, dict):
            continue
        nodes, _ = normalize_nodes(graph.get("nodes"))
        counts = graph_counts[graph_key]
        for node in nodes.values():
            for choice in node.get("choices") or []:
                if not isinstance(choice, dict):
                    continue
                for pattern in iter_choice_patterns(choice):
                    global_counts[pattern] += 1
                    counts[pattern] += 1
    return global_counts, dict(graph_counts)


def audit(payload: Any, min_global: int = MIN_GLOBAL_CHOICES) -> int:
    global_counts, graph_counts = collect_pattern_counts(payload)

    print("Per-graph pattern coverage:")
    for graph_key in sorted(graph_counts):
        print(f"  {graph_key}:")
        for pattern, count in graph_counts[graph_key].most_common():
            print(f"    {pattern}: {count}")
    print()

    print("Global pattern coverage:")
    for pattern in PATTERN_ORDER:
        print(f"  {pattern.value}: {global_counts[pattern.value]}")
    print()

    exit_code = 0
    print("Balance checks:")

    thin = [pattern.value for pattern in PATTERN_ORDER if global_counts[pattern.value] < min_global]
    if thin:
        exit_code = 1
        print(f"  [FAIL] Patterns below {min_global} choices:")
        for pattern in thin:
            print(f"    - {pattern}: {global_counts[pattern]}")
    else:
        print(f"  [OK] Every pattern appears in at least {min_global} choices.")

    one_note = {
        graph_key: counts.most_common(1)[0][0]
        for graph_key, counts in graph_counts.items()
        if len(counts) == 1
    }
    if one_note:
        print("  [WARN] Graphs offering a single pattern:")
        for graph_key in sorted(one_note):
            print(f"    - {graph_key}: {one_note[graph_key]}")
    else:
        print("  [OK] No graph offers only a single pattern.")

    return exit_code


def main() -> None:
    parser = argparse.ArgumentParser(description="Audit pattern coverage across dialogue graphs.")
    parser.add_argument("graphs", nargs="?", default=str(DEFAULT_GRAPHS_PATH), help="Path to graphs JSON file")
    parser.add_argument("--min-global", type=int, default=MIN_GLOBAL_CHOICES)
    args = parser.parse_args()

    try:
        payload = read_graphs_payload(Path(args.graphs))
    except (OSError, GraphError) as exc:
        print(f"Cannot read {args.graphs}: {exc}", file=sys.stderr)
        raise SystemExit(2)

    exit_code = audit(payload, args.min_global)
    raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
