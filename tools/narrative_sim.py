#!/usr/bin/env python3
"""Headless dialogue-graph simulation.

Explores every reachable (node, state) pair of each graph breadth-first and
reports structural content defects:

- ``missing_start``: the graph's start node does not exist.
- ``soft_deadlock``: a node has choices but none are visible and enabled.
- ``hard_dead_end``: a node has no choices and is not a boundary node.

Nodes reached while their ``required_state`` does not hold are tracked
separately as required-state mismatches. They usually point at a contract
problem or a seeding gap rather than broken content.
"""

from __future__ import annotations

import argparse
from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
import json
import logging
from pathlib import Path
import sys
from typing import Any, Deque, Dict, List, Mapping, Optional, Sequence, Set, Tuple

REPO_ROOT = Path(__file__).resolve().parents[1]

if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from station.conditions import evaluate
from station.graph import VIRTUAL_NODE_IDS, DialogueGraph, DialogueNode, GraphError, load_graphs
from station.logging_config import configure_logging
from station.mutations import apply_state_change, apply_state_changes
from station.registry import default_game_state
from station.settings import SETTINGS_PATH, SimSettings, load_settings, save_settings
from station.state import GameState, StateChange, new_character_state, parse_pattern

logger = logging.getLogger(__name__)

REVISIT_SUFFIX = "_revisit"
SIM_PLAYER_ID = "narrative-sim"

MISSING_START = "missing_start"
SOFT_DEADLOCK = "soft_deadlock"
HARD_DEAD_END = "hard_dead_end"

FNV_OFFSET_BASIS = 2166136261
FNV_PRIME = 16777619


@dataclass(frozen=True)
class TraceStep:
    node_id: str
    choice_id: str
    next_node_id: str

    def to_dict(self) -> Dict[str, str]:
        return {"node_id": self.node_id, "choice_id": self.choice_id, "next_node_id": self.next_node_id}


@dataclass(frozen=True)
class SimFailure:
    graph_key: str
    node_id: str
    kind: str
    trace: Tuple[TraceStep, ...] = ()

    def sort_key(self) -> str:
        return f"{self.graph_key}/{self.node_id}/{self.kind}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "graph_key": self.graph_key,
            "node_id": self.node_id,
            "kind": self.kind,
            "trace": [step.to_dict() for step in self.trace],
        }


@dataclass
class GraphSimResult:
    expansions: int = 0
    visited_state_pairs: int = 0
    failures: List[SimFailure] = field(default_factory=list)
    required_state_mismatches: List[str] = field(default_factory=list)
    truncated: bool = False
    best_effort: bool = False

    def summary(self) -> Dict[str, Any]:
        return {
            "expansions": self.expansions,
            "visited_state_pairs": self.visited_state_pairs,
            "failures": len(self.failures),
            "required_state_mismatches": len(self.required_state_mismatches),
            "truncated": self.truncated,
            "best_effort": self.best_effort,
        }


@dataclass(frozen=True)
class NarrativeSimReport:
    generated_at: str
    options: SimSettings
    per_graph: Mapping[str, GraphSimResult]
    failures: Tuple[SimFailure, ...]
    required_state_mismatches: Tuple[Tuple[str, str], ...]

    @property
    def failed(self) -> bool:
        return bool(self.failures)

    def to_dict(self) -> Dict[str, Any]:
        per_graph = {key: self.per_graph[key].summary() for key in sorted(self.per_graph)}
        return {
            "generated_at": self.generated_at,
            "options": self.options.to_dict(),
            "totals": {
                "graphs": len(per_graph),
                "expansions": sum(entry["expansions"] for entry in per_graph.values()),
                "visited_state_pairs": sum(entry["visited_state_pairs"] for entry in per_graph.values()),
                "failures": len(self.failures),
                "required_state_mismatches": len(self.required_state_mismatches),
            },
            "per_graph": per_graph,
            "failures": [failure.to_dict() for failure in self.failures],
            "required_state_mismatches": [
                {"graph_key": graph_key, "node_id": node_id}
                for graph_key, node_id in self.required_state_mismatches
            ],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, sort_keys=True) + "\n"


@dataclass
class _QueueItem:
    node_id: str
    state: GameState
    trace: Tuple[TraceStep, ...]
    steps: int


# ---------- State helpers ----------


def subject_character_id(graph_key: str) -> str:
    if graph_key.endswith(REVISIT_SUFFIX):
        return graph_key[: -len(REVISIT_SUFFIX)]
    return graph_key


def is_revisit_graph(graph_key: str) -> bool:
    return graph_key.endswith(REVISIT_SUFFIX)


def stable_state_hash(state: GameState, character_id: str) -> str:
    """FNV-1a 32-bit hash of the state dimensions that gate content.

    Only the subject character's trust and knowledge flags are included, plus
    global flags, patterns and mysteries. Sets are sorted so the hash does not
    depend on insertion order.
    """
    char = state.characters.get(character_id)
    trust = char.trust if char is not None else 0
    knowledge = ",".join(sorted(char.knowledge_flags)) if char is not None else ""
    payload = "|".join(
        (
            f"t={trust}",
            f"k={knowledge}",
            f"g={','.join(sorted(state.global_flags))}",
            f"p={json.dumps(state.patterns.as_dict(), separators=(',', ':'))}",
            f"m={json.dumps(state.mysteries.as_dict(), separators=(',', ':'))}",
        )
    )
    h = FNV_OFFSET_BASIS
    for byte in payload.encode("utf-8"):
        h ^= byte
        h = (h * FNV_PRIME) & 0xFFFFFFFF
    return format(h, "x")


def ensure_revisit_entry_state(graph_key: str, start_node: DialogueNode, state: GameState) -> GameState:
    """Seed the flags a revisit graph expects from the completed base arc.

    The base arc's completion flag is always set. Revisit entry nodes tend to
    branch on one decision flag from the base arc, so the first knowledge flag
    any start choice requires is seeded too.
    """
    if not is_revisit_graph(graph_key):
        return state
    character_id = subject_character_id(graph_key)
    seeded = state.copy()
    seeded.global_flags.add(f"{character_id}_arc_complete")
    char = seeded.characters.get(character_id)
    if char is None:
        return seeded
    for choice in start_node.choices:
        condition = choice.visible_condition
        if condition is not None and condition.has_knowledge_flags:
            char.knowledge_flags.add(condition.has_knowledge_flags[0])
            break
    return seeded


def seed_state(graph_key: str, start_node: DialogueNode) -> GameState:
    state = default_game_state(SIM_PLAYER_ID)
    character_id = subject_character_id(graph_key)
    if character_id not in state.characters:
        state.characters[character_id] = new_character_state(character_id)
    return ensure_revisit_entry_state(graph_key, start_node, state)


def _choice_change(choice_pattern: Optional[str], consequence: StateChange) -> StateChange:
    if choice_pattern and consequence.choice_pattern is None and consequence.trust_change is not None:
        return replace(consequence, choice_pattern=choice_pattern)
    return consequence


# ---------- Exploration ----------


def coerce_options(options: SimSettings | Mapping[str, Any] | None) -> SimSettings:
    if options is None:
        return SimSettings()
    if isinstance(options, SimSettings):
        return options.copy().clamp()
    return SimSettings().with_overrides(**dict(options))


def simulate_graph(
    graphs: Mapping[str, DialogueGraph],
    graph_key: str,
    options: SimSettings | Mapping[str, Any] | None = None,
) -> GraphSimResult:
    opts = coerce_options(options)
    graph = graphs[graph_key]
    character_id = subject_character_id(graph_key)
    result = GraphSimResult(best_effort=is_revisit_graph(graph_key))

    start_node = graph.get(graph.start_node_id)
    if start_node is None:
        result.failures.append(
            SimFailure(graph_key, f"{MISSING_START}:{graph.start_node_id}", MISSING_START)
        )
        logger.warning("Graph %s: start node '%s' is missing", graph_key, graph.start_node_id)
        return result

    initial = seed_state(graph_key, start_node)
    queue: Deque[_QueueItem] = deque([_QueueItem(graph.start_node_id, initial, (), 0)])
    visited: Set[str] = {f"{graph.start_node_id}|{stable_state_hash(initial, character_id)}"}
    states_per_node: Dict[str, int] = {graph.start_node_id: 1}
    failed_nodes: Set[str] = set()
    mismatches: Set[str] = set()

    def fail(node: DialogueNode, kind: str, trace: Tuple[TraceStep, ...]) -> None:
        failed_nodes.add(node.node_id)
        result.failures.append(SimFailure(graph_key, node.node_id, kind, trace))
        logger.debug(
            "Graph %s: %s at %s",
            graph_key,
            kind,
            node.node_id,
            extra={"graph_key": graph_key, "node_id": node.node_id, "kind": kind},
        )

    exhausted = False
    while queue and not exhausted:
        item = queue.popleft()
        if item.node_id in VIRTUAL_NODE_IDS or item.node_id in failed_nodes:
            continue
        if item.steps > opts.max_steps_per_path:
            result.truncated = True
            continue
        node = graph.get(item.node_id)
        if node is None:
            continue

        if not evaluate(node.required_state, item.state, character_id):
            mismatches.add(node.node_id)
            continue

        state = apply_state_changes(item.state, node.on_enter)

        if not node.choices:
            if not node.is_boundary():
                fail(node, HARD_DEAD_END, item.trace)
            continue

        available = sorted(
            (
                choice
                for choice in node.choices
                if evaluate(choice.visible_condition, state, character_id)
                and evaluate(choice.enabled_condition, state, character_id)
            ),
            key=lambda choice: choice.choice_id,
        )
        if not available:
            fail(node, SOFT_DEADLOCK, item.trace)
            continue

        for choice in available:
            next_node_id = choice.next_node_id
            if next_node_id in VIRTUAL_NODE_IDS or next_node_id not in graph.nodes:
                continue

            branched = state
            if choice.consequence is not None:
                branched = apply_state_change(branched, _choice_change(choice.pattern, choice.consequence))
            pattern = parse_pattern(choice.pattern) if choice.pattern else None
            if pattern is not None:
                branched = apply_state_change(branched, StateChange(pattern_changes={pattern: 1}))
            branched = apply_state_changes(branched, node.on_exit)

            visit_key = f"{next_node_id}|{stable_state_hash(branched, character_id)}"
            if visit_key in visited:
                continue
            count = states_per_node.get(next_node_id, 0) + 1
            if count > opts.max_states_per_node:
                continue
            if result.expansions >= opts.max_expansions:
                result.truncated = exhausted = True
                break

            states_per_node[next_node_id] = count
            visited.add(visit_key)
            queue.append(
                _QueueItem(
                    next_node_id,
                    branched,
                    item.trace + (TraceStep(node.node_id, choice.choice_id, next_node_id),),
                    item.steps + 1,
                )
            )
            result.expansions += 1

    result.visited_state_pairs = len(visited)
    result.required_state_mismatches = sorted(mismatches)
    logger.debug(
        "Graph %s: %d expansions, %d failures%s",
        graph_key,
        result.expansions,
        len(result.failures),
        " (truncated)" if result.truncated else "",
        extra={"graph_key": graph_key, "expansions": result.expansions},
    )
    return result


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def build_narrative_sim_report(
    graphs: Mapping[str, DialogueGraph],
    options: SimSettings | Mapping[str, Any] | None = None,
    *,
    generated_at: Optional[str] = None,
) -> NarrativeSimReport:
    opts = coerce_options(options)
    per_graph: Dict[str, GraphSimResult] = {}
    failures: List[SimFailure] = []
    mismatches: List[Tuple[str, str]] = []

    for graph_key in sorted(graphs):
        result = simulate_graph(graphs, graph_key, opts)
        per_graph[graph_key] = result
        failures.extend(result.failures)
        mismatches.extend((graph_key, node_id) for node_id in result.required_state_mismatches)

    failures.sort(key=SimFailure.sort_key)
    mismatches.sort(key=lambda entry: f"{entry[0]}/{entry[1]}")
    return NarrativeSimReport(
        generated_at=generated_at if generated_at is not None else _timestamp(),
        options=opts,
        per_graph=per_graph,
        failures=tuple(failures),
        required_state_mismatches=tuple(mismatches),
    )


# ---------- CLI ----------


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Simulate dialogue graphs and report dead ends.")
    parser.add_argument("graphs_path", help="Path to a JSON file mapping graph keys to graphs.")
    parser.add_argument("--out", help="Write the JSON report here instead of stdout.")
    parser.add_argument(
        "--settings",
        default=str(SETTINGS_PATH),
        help="Simulator settings file (exploration limits); missing files fall back to defaults.",
    )
    parser.add_argument("--max-steps-per-path", type=int)
    parser.add_argument("--max-expansions", type=int)
    parser.add_argument("--max-states-per-node", type=int)
    parser.add_argument(
        "--save-settings",
        action="store_true",
        help="Persist the effective limits (including --max-* overrides) to the settings file.",
    )
    parser.add_argument("--generated-at", help="Fixed timestamp for reproducible reports.")
    parser.add_argument("--log-level", default="WARNING")
    parser.add_argument("--json-logs", action="store_true", help="Emit log records as JSON lines.")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    configure_logging(args.log_level, json_output=args.json_logs)

    settings = load_settings(args.settings).with_overrides(
        max_steps_per_path=args.max_steps_per_path,
        max_expansions=args.max_expansions,
        max_states_per_node=args.max_states_per_node,
    )
    if args.save_settings:
        settings = save_settings(settings, args.settings)
    try:
        graphs = load_graphs(Path(args.graphs_path))
    except (OSError, GraphError) as exc:
        print(f"Failed to load graphs from {args.graphs_path}: {exc}", file=sys.stderr)
        return 2

    report = build_narrative_sim_report(graphs, settings, generated_at=args.generated_at)
    payload = report.to_json()
    if args.out:
        out_path = Path(args.out)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_text(payload, encoding="utf-8")
    else:
        sys.stdout.write(payload)

    totals = report.to_dict()["totals"]
    print(
        f"Simulated {totals['graphs']} graph(s): {totals['expansions']} expansions, "
        f"{totals['failures']} failure(s), "
        f"{totals['required_state_mismatches']} required-state mismatch(es).",
        file=sys.stderr,
    )
    return 1 if report.failed else 0


if __name__ == "__main__":
    sys.exit(main())
