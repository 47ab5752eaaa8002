"""Static soft-lock analysis for dialogue graphs.

A choice is gated when it carries a non-empty visible or enabled condition.
Nodes whose every choice is gated may soft-lock a player whose state does not
satisfy any of them; the simulator confirms or rules this out dynamically.
"""

from __future__ import annotations

from collections import deque
from typing import Any, Dict, Iterable, List, Mapping, Tuple

from station.schema import (
    VIRTUAL_NODE_IDS,
    get_next_node_id,
    get_start_node_id,
    normalize_nodes,
    path,
    unwrap_graphs,
)

CONDITION_KEYS = ("visibleCondition", "visible_condition", "enabledCondition", "enabled_condition")


def _is_gated(choice: Mapping[str, Any]) -> bool:
    return any(choice.get(key) not in (None, {}) for key in CONDITION_KEYS)


def _iter_choices(
    nodes: Mapping[str, Any],
) -> Iterable[Tuple[str, int, Mapping[str, Any], Any]]:
    for node_id, node in nodes.items():
        choices = node.get("choices")
        if not isinstance(choices, list):
            continue
        for index, choice in enumerate(choices):
            if isinstance(choice, Mapping):
                yield node_id, index, choice, get_next_node_id(choice)


def analyze_graph_softlocks(graph_key: str, graph: Mapping[str, Any]) -> List[str]:
    nodes, _ = normalize_nodes(graph.get("nodes"))
    prefix = ("graphs", graph_key)

    choice_meta: Dict[str, List[Dict[str, Any]]] = {node_id: [] for node_id in nodes}
    for node_id, index, choice, target in _iter_choices(nodes):
        choice_meta[node_id].append(
            {
                "target": target,
                "gated": _is_gated(choice),
                "path": path(*prefix, "nodes", node_id, "choices", index),
            }
        )

    warnings: List[str] = []
    for node_id, choices in choice_meta.items():
        if choices and not any(not choice["gated"] for choice in choices):
            choice_paths = ", ".join(choice["path"] for choice in choices)
            warnings.append(
                f"{path(*prefix, 'nodes', node_id)}: all choices are gated. Choices: {choice_paths}."
            )

    start = get_start_node_id(graph)
    if not isinstance(start, str) or start not in nodes:
        return warnings

    visited: set[str] = set()
    queue: deque[str] = deque([start])
    stranded: List[str] = []
    while queue:
        node_id = queue.popleft()
        if node_id in visited:
            continue
        visited.add(node_id)
        choices = choice_meta.get(node_id, [])
        ungated = [choice for choice in choices if not choice["gated"]]
        if choices and not ungated:
            stranded.append(node_id)
        for choice in ungated:
            target = choice["target"]
            if isinstance(target, str) and target in nodes and target not in VIRTUAL_NODE_IDS:
                queue.append(target)

    for node_id in stranded:
        warnings.append(
            f"{path(*prefix, 'nodes', node_id)}: traversal from start '{start}'"
            " over ungated choices hit a node with no ungated exits."
        )
    return warnings


def analyze_softlocks(payload: Any) -> List[str]:
    graphs = unwrap_graphs(payload)
    if not isinstance(graphs, Mapping):
        return []
    warnings: List[str] = []
    for graph_key in sorted(graphs):
        graph = graphs[graph_key]
        if isinstance(graph, Mapping):
            warnings.extend(analyze_graph_softlocks(graph_key, graph))
    return warnings
