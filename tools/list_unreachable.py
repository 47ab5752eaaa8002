from pathlib import Path
import sys
from typing import Any, Dict, List, Set, Tuple

REPO_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_GRAPHS_PATH = REPO_ROOT / "content" / "dialogue_graphs.json"

if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from station.graph import GraphError, read_graphs_payload
from station.schema import (
    VIRTUAL_NODE_IDS,
    get_next_node_id,
    get_start_node_id,
    normalize_nodes,
    unwrap_graphs,
)


def build_graph(graph: Dict[str, Any]) -> Tuple[Dict[str, List[str]], List[str]]:
    """Return the in-graph adjacency list and targets that resolve nowhere.

    Virtual placeholders and nodes in other graphs are not edges. Targets that
    are neither are reported so authors can tell a typo from a hand-off.
    """
    nodes, _ = normalize_nodes(graph.get("nodes"))
    adjacency: Dict[str, List[str]] = {node_id: [] for node_id in nodes}
    external: List[str] = []
    for node_id, node in nodes.items():
        for choice in node.get("choices", []) or []:
            if not isinstance(choice, dict):
                continue
            target = get_next_node_id(choice)
            if not isinstance(target, str) or target in VIRTUAL_NODE_IDS:
                continue
            if target in nodes:
                adjacency[node_id].append(target)
            else:
                external.append(f"{node_id} -> {target}")
    return adjacency, external


def traverse_from(start_node: str, graph: Dict[str, List[str]]) -> Set[str]:
    if start_node not in graph:
        return set()
    visited = set()
    stack = [start_node]
    while stack:
        current = stack.pop()
        if current in visited:
            continue
        visited.add(current)
        stack.extend(graph.get(current, []))
    return visited


def find_unreachable(payload: Any) -> Dict[str, List[str]]:
    graphs = unwrap_graphs(payload)
    result: Dict[str, List[str]] = {}
    if not isinstance(graphs, dict):
        return result
    for graph_key in sorted(graphs):
        graph = graphs[graph_key]
        if not isinstance(graph, dict):
            continue
        adjacency, _ = build_graph(graph)
        start = get_start_node_id(graph)
        reached = traverse_from(start, adjacency) if isinstance(start, str) else set()
        result[graph_key] = sorted(set(adjacency) - reached)
    return result


def main() -> None:
    graphs_path = Path(sys.argv[1]) if len(sys.argv) > 1 else DEFAULT_GRAPHS_PATH
    try:
        payload = read_graphs_payload(graphs_path)
    except (OSError, GraphError) as exc:
        print(f"Cannot read {graphs_path}: {exc}", file=sys.stderr)
        raise SystemExit(2)
    unreachable = find_unreachable(payload)

    print(f"Graphs file: {graphs_path}")
    print(f"Total graphs: {len(unreachable)}")
    total = sum(len(node_ids) for node_ids in unreachable.values())
    if not total:
        print("All nodes reachable from their graph's start node.")
        return
    print("Unreachable nodes:")
    for graph_key, node_ids in unreachable.items():
        for node_id in node_ids:
            print(f"  - {graph_key}: {node_id}")


if __name__ == "__main__":
    main()
