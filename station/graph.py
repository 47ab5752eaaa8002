"""Typed dialogue-graph records built from authored JSON-like mappings."""

from __future__ import annotations

from dataclasses import dataclass, field
import json
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from station.schema import (
    VIRTUAL_NODE_IDS,
    ValidationContext,
    get_choice_id,
    get_next_node_id,
    get_start_node_id,
    is_non_empty_str,
    normalize_nodes,
    path,
    unwrap_graphs,
)
from station.state import StateChange, StateCondition

__all__ = [
    "BOUNDARY_TAGS",
    "VIRTUAL_NODE_IDS",
    "DialogueChoice",
    "DialogueGraph",
    "DialogueNode",
    "GraphError",
    "load_graph",
    "load_graphs",
    "read_graphs_payload",
]

BOUNDARY_TAGS = frozenset({"terminal", "ending", "arc_complete", "session_boundary"})


class GraphError(ValueError):
    """Raised when a dialogue graph is structurally malformed."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("Invalid dialogue graph:\n- " + "\n- ".join(self.errors))


@dataclass(frozen=True)
class DialogueChoice:
    choice_id: str
    next_node_id: str
    text: str = ""
    visible_condition: Optional[StateCondition] = None
    enabled_condition: Optional[StateCondition] = None
    consequence: Optional[StateChange] = None
    pattern: Optional[str] = None
    skills: Tuple[str, ...] = ()


@dataclass(frozen=True)
class DialogueNode:
    node_id: str
    speaker: str = ""
    text: str = ""
    required_state: Optional[StateCondition] = None
    choices: Tuple[DialogueChoice, ...] = ()
    on_enter: Tuple[StateChange, ...] = ()
    on_exit: Tuple[StateChange, ...] = ()
    tags: Tuple[str, ...] = ()
    simulation: bool = False
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def is_boundary(self) -> bool:
        """True when the node is allowed to end a conversation without choices."""
        if self.simulation:
            return True
        if self.metadata.get("session_boundary") or self.metadata.get("sessionBoundary"):
            return True
        if self.metadata.get("experience_id") or self.metadata.get("experienceId"):
            return True
        return any(tag in BOUNDARY_TAGS for tag in self.tags)


@dataclass(frozen=True)
class DialogueGraph:
    start_node_id: str
    nodes: Mapping[str, DialogueNode]
    version: str = ""
    title: str = ""

    def get(self, node_id: str) -> Optional[DialogueNode]:
        return self.nodes.get(node_id)


def _node_text(payload: Mapping[str, Any]) -> str:
    text = payload.get("text")
    if isinstance(text, str):
        return text
    content = payload.get("content")
    if isinstance(content, list) and content and isinstance(content[0], Mapping):
        return str(content[0].get("text", ""))
    return ""


def _condition(payload: Mapping[str, Any], *keys: str) -> Optional[StateCondition]:
    for key in keys:
        value = payload.get(key)
        if isinstance(value, Mapping):
            return StateCondition.from_dict(value)
    return None


def _changes(
    payload: Mapping[str, Any], keys: Tuple[str, ...], path_parts: Tuple[object, ...], ctx: ValidationContext
) -> Tuple[StateChange, ...]:
    for key in keys:
        if key not in payload or payload[key] is None:
            continue
        raw = payload[key]
        if not isinstance(raw, list):
            ctx.add("", path(*path_parts, key), "must be a list of state changes.")
            return ()
        changes = []
        for idx, entry in enumerate(raw):
            change = _change(entry, (*path_parts, key, idx), ctx)
            if change is not None:
                changes.append(change)
        return tuple(changes)
    return ()


def _change(raw: Any, path_parts: Tuple[object, ...], ctx: ValidationContext) -> Optional[StateChange]:
    if not isinstance(raw, Mapping):
        ctx.add("", path(*path_parts), "state change must be an object.")
        return None
    try:
        return StateChange.from_dict(raw)
    except (TypeError, ValueError) as exc:
        ctx.add("", path(*path_parts), f"malformed state change ({exc}).")
        return None


def _str_list(
    raw: Mapping[str, Any], key: str, context: str, path_parts: Tuple[object, ...], ctx: ValidationContext
) -> Tuple[str, ...]:
    value = raw.get(key)
    if value is None:
        return ()
    if not isinstance(value, list):
        ctx.add(context, path(*path_parts, key), f"'{key}' must be a list of strings.")
        return ()
    return tuple(str(item) for item in value)


def _build_choice(
    raw: Any, node_id: str, index: int, path_parts: Tuple[object, ...], ctx: ValidationContext
) -> Optional[DialogueChoice]:
    context = f"Choice {index + 1} in node '{node_id}'"
    if not isinstance(raw, Mapping):
        ctx.add(context, path(*path_parts), "must be an object.")
        return None
    choice_id = get_choice_id(raw)
    next_node_id = get_next_node_id(raw)
    if not is_non_empty_str(choice_id):
        ctx.add(context, path(*path_parts, "choiceId"), "requires a non-empty 'choiceId'.")
        return None
    if not is_non_empty_str(next_node_id):
        ctx.add(context, path(*path_parts, "nextNodeId"), "requires a non-empty 'nextNodeId'.")
        return None
    consequence = None
    if raw.get("consequence") is not None:
        consequence = _change(raw["consequence"], (*path_parts, "consequence"), ctx)
    try:
        visible = _condition(raw, "visibleCondition", "visible_condition")
        enabled = _condition(raw, "enabledCondition", "enabled_condition")
    except (TypeError, ValueError) as exc:
        ctx.add(context, path(*path_parts), f"malformed condition ({exc}).")
        return None
    pattern = raw.get("pattern")
    return DialogueChoice(
        choice_id=choice_id,
        next_node_id=next_node_id,
        text=str(raw.get("text", "")),
        visible_condition=visible,
        enabled_condition=enabled,
        consequence=consequence,
        pattern=str(pattern) if pattern is not None else None,
        skills=_str_list(raw, "skills", context, path_parts, ctx),
    )


def _build_node(
    node_id: str, raw: Mapping[str, Any], path_parts: Tuple[object, ...], ctx: ValidationContext
) -> DialogueNode:
    raw_choices = raw.get("choices") or []
    choices: List[DialogueChoice] = []
    if not isinstance(raw_choices, list):
        ctx.add(f"Node '{node_id}'", path(*path_parts, "choices"), "choices must be provided as a list.")
    else:
        for idx, entry in enumerate(raw_choices):
            choice = _build_choice(entry, node_id, idx, (*path_parts, "choices", idx), ctx)
            if choice is not None:
                choices.append(choice)

    try:
        required = _condition(raw, "requiredState", "required_state")
    except (TypeError, ValueError) as exc:
        ctx.add(f"Node '{node_id}'", path(*path_parts, "requiredState"), f"malformed condition ({exc}).")
        required = None

    metadata = raw.get("metadata")
    return DialogueNode(
        node_id=node_id,
        speaker=str(raw.get("speaker", "")),
        text=_node_text(raw),
        required_state=required,
        choices=tuple(choices),
        on_enter=_changes(raw, ("onEnter", "on_enter"), path_parts, ctx),
        on_exit=_changes(raw, ("onExit", "on_exit"), path_parts, ctx),
        tags=_str_list(raw, "tags", f"Node '{node_id}'", path_parts, ctx),
        simulation=bool(raw.get("simulation")),
        metadata=dict(metadata) if isinstance(metadata, Mapping) else {},
    )


def _build_graph(payload: Any, prefix: Tuple[object, ...], ctx: ValidationContext) -> Optional[DialogueGraph]:
    if not isinstance(payload, Mapping):
        ctx.add("Graph data", path(*prefix) or "graph", "must be an object.")
        return None
    raw_nodes, _errors = normalize_nodes(payload.get("nodes"), ctx, prefix)
    nodes: Dict[str, DialogueNode] = {}
    for node_id, raw in raw_nodes.items():
        nodes[node_id] = _build_node(node_id, raw, (*prefix, "nodes", node_id), ctx)
    metadata = payload.get("metadata") if isinstance(payload.get("metadata"), Mapping) else {}
    start = get_start_node_id(payload)
    return DialogueGraph(
        start_node_id=str(start) if start is not None else "",
        nodes=nodes,
        version=str(payload.get("version", "")),
        title=str(payload.get("title") or metadata.get("title", "")),
    )


def load_graph(payload: Any) -> DialogueGraph:
    """Build a :class:`DialogueGraph`, raising :class:`GraphError` on structural defects.

    A start node that does not exist is not a structural defect; the simulator
    reports it as ``missing_start``.
    """
    ctx = ValidationContext()
    graph = _build_graph(payload, (), ctx)
    if not ctx.ok() or graph is None:
        raise GraphError(ctx.errors)
    return graph


def read_graphs_payload(source: Path | str) -> Any:
    """Parse a graphs file without building it.

    Undecodable bytes and malformed JSON raise :class:`GraphError`; a missing or
    unreadable file raises :class:`OSError`.
    """
    try:
        with open(source, "r", encoding="utf-8") as handle:
            return json.load(handle)
    except UnicodeDecodeError as exc:
        raise GraphError([f"{source}: not valid UTF-8 ({exc})."]) from exc
    except json.JSONDecodeError as exc:
        raise GraphError([f"{source}: invalid JSON ({exc})."]) from exc


def load_graphs(source: Any) -> Dict[str, DialogueGraph]:
    """Load ``{graph_key: graph}`` from a path or an already-parsed mapping."""
    payload = read_graphs_payload(source) if isinstance(source, (str, Path)) else source

    graphs_payload = unwrap_graphs(payload)
    if not isinstance(graphs_payload, Mapping):
        raise GraphError(["graphs: must be an object mapping graph keys to graphs."])

    ctx = ValidationContext()
    graphs: Dict[str, DialogueGraph] = {}
    for graph_key in sorted(graphs_payload):
        graph = _build_graph(graphs_payload[graph_key], ("graphs", graph_key), ctx)
        if graph is not None:
            graphs[graph_key] = graph
    if not ctx.ok():
        raise GraphError(ctx.errors)
    return graphs
