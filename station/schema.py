"""Schema validation for authored dialogue graphs."""

from __future__ import annotations

from collections import Counter
import json
from typing import Any, Collection, Dict, Iterable, List, Mapping, MutableMapping, Sequence, Tuple

from station.registry import SKILL_COMBOS, is_known_character
from station.state import MYSTERY_ALIASES, parse_mystery, parse_pattern, parse_relationship

# Placeholder targets resolved by the host application at runtime.
VIRTUAL_NODE_IDS = frozenset({"TRAVEL_PENDING", "SIMULATION_PENDING", "LOYALTY_PENDING"})

CONDITION_KEYS = frozenset(
    {
        "trust",
        "relationship",
        "has_knowledge_flags",
        "hasKnowledgeFlags",
        "lacks_knowledge_flags",
        "lacksKnowledgeFlags",
        "has_global_flags",
        "hasGlobalFlags",
        "lacks_global_flags",
        "lacksGlobalFlags",
        "patterns",
        "mysteries",
        "required_combos",
        "requiredCombos",
    }
)

CHANGE_KEYS = frozenset(
    {
        "add_global_flags",
        "addGlobalFlags",
        "remove_global_flags",
        "removeGlobalFlags",
        "pattern_changes",
        "patternChanges",
        "thought_id",
        "thoughtId",
        "internalize_thought",
        "internalizeThought",
        "character_id",
        "characterId",
        "trust_change",
        "trustChange",
        "set_relationship_status",
        "setRelationshipStatus",
        "add_knowledge_flags",
        "addKnowledgeFlags",
        "remove_knowledge_flags",
        "removeKnowledgeFlags",
        "mystery_changes",
        "mysteries",
        "choice_pattern",
        "choicePattern",
    }
)

FLAG_LIST_KEYS = (
    "has_knowledge_flags",
    "hasKnowledgeFlags",
    "lacks_knowledge_flags",
    "lacksKnowledgeFlags",
    "has_global_flags",
    "hasGlobalFlags",
    "lacks_global_flags",
    "lacksGlobalFlags",
    "add_global_flags",
    "addGlobalFlags",
    "remove_global_flags",
    "removeGlobalFlags",
    "add_knowledge_flags",
    "addKnowledgeFlags",
    "remove_knowledge_flags",
    "removeKnowledgeFlags",
)


def path(*parts: object) -> str:
    path_str = ""
    for part in parts:
        if isinstance(part, int):
            path_str = f"{path_str}[{part}]"
            continue
        if not isinstance(part, str):
            part = str(part)
        if part.isidentifier():
            path_str = f"{path_str}.{part}" if path_str else part
        else:
            path_str = f"{path_str}[{json.dumps(part)}]"
    return path_str


def format_validation_message(path_str: str, context: str, message: str) -> str:
    if context:
        return f"{path_str}: {context}: {message}"
    return f"{path_str}: {message}"


def is_non_empty_str(value: Any) -> bool:
    return isinstance(value, str) and value.strip() != ""


def is_str_list(value: Any) -> bool:
    return isinstance(value, list) and all(is_non_empty_str(item) for item in value)


def is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def get_choice_id(choice: Mapping[str, Any]) -> Any:
    return choice.get("choiceId", choice.get("choice_id"))


def get_next_node_id(choice: Mapping[str, Any]) -> Any:
    return choice.get("nextNodeId", choice.get("next_node_id"))


def get_start_node_id(graph: Mapping[str, Any]) -> Any:
    return graph.get("startNodeId", graph.get("start_node_id"))


class ValidationContext:
    """Accumulates validation errors as ``path: context: message`` strings."""

    def __init__(self) -> None:
        self.errors: List[str] = []

    def add(self, context: str, path_str: str, message: str) -> None:
        self.errors.append(format_validation_message(path_str, context, message))

    def extend(self, messages: Iterable[str]) -> None:
        self.errors.extend(messages)

    def ok(self) -> bool:
        return not self.errors


def normalize_nodes(
    raw_nodes: Any, ctx: ValidationContext | None = None, prefix: Sequence[object] = ()
) -> Tuple[Dict[str, Dict[str, Any]], List[str]]:
    """Return ``{node_id: payload}`` for a node map or a list of nodes with IDs.

    List entries may carry their ID as ``nodeId``, ``node_id`` or ``id``.
    """
    nodes: Dict[str, Dict[str, Any]] = {}
    errors: List[str] = []
    node_ids: List[str] = []

    def add_error(context: str, path_parts: Sequence[object], message: str) -> None:
        path_str = path(*prefix, *path_parts)
        errors.append(format_validation_message(path_str, context, message))
        if ctx is not None:
            ctx.add(context, path_str, message)

    if isinstance(raw_nodes, dict):
        for node_id, payload in raw_nodes.items():
            if not is_non_empty_str(node_id):
                add_error("Nodes", ("nodes",), "node identifiers must be non-empty strings.")
                continue
            if not isinstance(payload, dict):
                add_error("Nodes", ("nodes", node_id), f"node '{node_id}' must be an object.")
                continue
            nodes[node_id] = payload
        node_ids = list(nodes.keys())
    elif isinstance(raw_nodes, list):
        for idx, entry in enumerate(raw_nodes, start=1):
            if not isinstance(entry, MutableMapping):
                add_error(f"Node entry {idx}", ("nodes", idx - 1), "must be an object.")
                continue
            node_id = entry.get("nodeId", entry.get("node_id", entry.get("id")))
            if not is_non_empty_str(node_id):
                add_error(f"Node entry {idx}", ("nodes", idx - 1, "nodeId"), "is missing a valid 'nodeId'.")
                continue
            node_ids.append(node_id)
            nodes[node_id] = dict(entry)
    else:
        add_error(
            "Graph data",
            ("nodes",),
            "must be an object mapping IDs to node definitions or a list of node entries.",
        )

    duplicates = [node_id for node_id, count in Counter(node_ids).items() if count > 1]
    if duplicates:
        dup_list = ", ".join(sorted(set(duplicates)))
        add_error("Nodes", ("nodes",), f"duplicate node IDs found: {dup_list}.")

    return nodes, errors


# ---------- Conditions and changes ----------


def _validate_range(value: Any, context: str, path_parts: Sequence[object], ctx: ValidationContext) -> None:
    if not isinstance(value, Mapping):
        ctx.add(context, path(*path_parts), "range must be an object with 'min' and/or 'max'.")
        return
    for key in value:
        if key not in ("min", "max"):
            ctx.add(context, path(*path_parts, key), f"unsupported range key '{key}'.")
        elif not is_int(value[key]):
            ctx.add(context, path(*path_parts, key), f"'{key}' must be an integer.")


def _validate_flag_lists(
    payload: Mapping[str, Any], context: str, path_parts: Sequence[object], ctx: ValidationContext
) -> None:
    for key in FLAG_LIST_KEYS:
        if key in payload and not is_str_list(payload[key]):
            ctx.add(context, path(*path_parts, key), f"'{key}' must be a list of non-empty strings.")


def _validate_mysteries(
    value: Any, context: str, path_parts: Sequence[object], ctx: ValidationContext
) -> None:
    if not isinstance(value, Mapping):
        ctx.add(context, path(*path_parts), "mysteries must be an object.")
        return
    for key, mystery_value in value.items():
        if parse_mystery(key, mystery_value) is None:
            field_name = MYSTERY_ALIASES.get(key, key)
            ctx.add(
                context,
                path(*path_parts, key),
                f"unknown mystery field or value '{field_name}={mystery_value}'.",
            )


def validate_condition(
    condition: Any, context: str, path_parts: Sequence[object], ctx: ValidationContext
) -> None:
    if condition is None:
        return
    if not isinstance(condition, Mapping):
        ctx.add(context, path(*path_parts), "condition must be an object or null.")
        return

    for key in condition:
        if key not in CONDITION_KEYS:
            ctx.add(context, path(*path_parts, key), f"unsupported condition key '{key}'.")

    if "trust" in condition:
        _validate_range(condition["trust"], context, (*path_parts, "trust"), ctx)

    relationship = condition.get("relationship")
    if relationship is not None:
        if not is_str_list(relationship):
            ctx.add(context, path(*path_parts, "relationship"), "must be a list of relationship statuses.")
        else:
            for idx, status in enumerate(relationship):
                if parse_relationship(status) is None:
                    ctx.add(
                        context,
                        path(*path_parts, "relationship", idx),
                        f"unknown relationship status '{status}'.",
                    )

    _validate_flag_lists(condition, context, path_parts, ctx)

    patterns = condition.get("patterns")
    if patterns is not None:
        if not isinstance(patterns, Mapping):
            ctx.add(context, path(*path_parts, "patterns"), "patterns must be an object.")
        else:
            for name, rng in patterns.items():
                if parse_pattern(name) is None:
                    ctx.add(context, path(*path_parts, "patterns", name), f"unknown pattern '{name}'.")
                    continue
                _validate_range(rng, context, (*path_parts, "patterns", name), ctx)

    if "mysteries" in condition:
        _validate_mysteries(condition["mysteries"], context, (*path_parts, "mysteries"), ctx)

    for key in ("required_combos", "requiredCombos"):
        combos = condition.get(key)
        if combos is None:
            continue
        if not is_str_list(combos):
            ctx.add(context, path(*path_parts, key), f"'{key}' must be a list of combo IDs.")
            continue
        for idx, combo_id in enumerate(combos):
            if combo_id not in SKILL_COMBOS:
                ctx.add(context, path(*path_parts, key, idx), f"unknown skill combo '{combo_id}'.")


def validate_change(
    change: Any, context: str, path_parts: Sequence[object], ctx: ValidationContext
) -> None:
    if not isinstance(change, Mapping):
        ctx.add(context, path(*path_parts), "state change must be an object.")
        return

    for key in change:
        if key not in CHANGE_KEYS:
            ctx.add(context, path(*path_parts, key), f"unsupported state change key '{key}'.")

    _validate_flag_lists(change, context, path_parts, ctx)

    character_key = "characterId" if "characterId" in change else "character_id"
    character_id = change.get(character_key)
    if character_id is not None:
        if not is_non_empty_str(character_id):
            ctx.add(context, path(*path_parts, character_key), "must be a non-empty string.")
        elif not is_known_character(character_id):
            ctx.add(context, path(*path_parts, character_key), f"unknown character '{character_id}'.")

    for key in ("trustChange", "trust_change"):
        if key in change and not is_int(change[key]):
            ctx.add(context, path(*path_parts, key), f"'{key}' must be an integer.")

    for key in ("setRelationshipStatus", "set_relationship_status"):
        if key in change and parse_relationship(change[key]) is None:
            ctx.add(context, path(*path_parts, key), f"unknown relationship status '{change[key]}'.")

    for key in ("patternChanges", "pattern_changes"):
        patterns = change.get(key)
        if patterns is None:
            continue
        if not isinstance(patterns, Mapping):
            ctx.add(context, path(*path_parts, key), f"'{key}' must be an object.")
            continue
        for name, delta in patterns.items():
            if parse_pattern(name) is None:
                ctx.add(context, path(*path_parts, key, name), f"unknown pattern '{name}'.")
            elif not is_int(delta):
                ctx.add(context, path(*path_parts, key, name), "pattern delta must be an integer.")

    for key in ("choicePattern", "choice_pattern"):
        if key in change and parse_pattern(change[key]) is None:
            ctx.add(context, path(*path_parts, key), f"unknown pattern '{change[key]}'.")

    for key in ("mysteries", "mystery_changes"):
        if key in change:
            _validate_mysteries(change[key], context, (*path_parts, key), ctx)


def _validate_change_list(
    changes: Any, context: str, path_parts: Sequence[object], ctx: ValidationContext
) -> None:
    if changes is None:
        return
    if not isinstance(changes, list):
        ctx.add(context, path(*path_parts), "must be a list of state changes if present.")
        return
    for idx, change in enumerate(changes, start=1):
        validate_change(change, f"{context} change {idx}", (*path_parts, idx - 1), ctx)


# ---------- Graphs ----------


def validate_choice(
    choice: Any,
    node_id: str,
    index: int,
    known_targets: Collection[str],
    path_parts: Sequence[object],
    ctx: ValidationContext,
) -> None:
    context = f"Choice {index} in node '{node_id}'"
    if not isinstance(choice, Mapping):
        ctx.add(context, path(*path_parts), "must be an object.")
        return

    if not is_non_empty_str(get_choice_id(choice)):
        ctx.add(context, path(*path_parts, "choiceId"), "requires a non-empty 'choiceId'.")

    target = get_next_node_id(choice)
    if target is None:
        ctx.add(context, path(*path_parts, "nextNodeId"), "is missing a 'nextNodeId'.")
    elif not is_non_empty_str(target):
        ctx.add(context, path(*path_parts, "nextNodeId"), "must use a non-empty string 'nextNodeId'.")
    elif target not in known_targets and target not in VIRTUAL_NODE_IDS:
        ctx.add(context, path(*path_parts, "nextNodeId"), f"targets unknown node '{target}'.")

    pattern = choice.get("pattern")
    if pattern is not None and parse_pattern(pattern) is None:
        ctx.add(context, path(*path_parts, "pattern"), f"unknown pattern '{pattern}'.")

    skills = choice.get("skills")
    if skills is not None and not is_str_list(skills):
        ctx.add(context, path(*path_parts, "skills"), "'skills' must be a list of skill names.")

    for key in ("visibleCondition", "visible_condition", "enabledCondition", "enabled_condition"):
        if key in choice:
            validate_condition(choice[key], context, (*path_parts, key), ctx)

    for key in ("consequence",):
        if choice.get(key) is not None:
            validate_change(choice[key], context, (*path_parts, key), ctx)


def validate_graph(
    graph_key: str,
    payload: Any,
    external_targets: Collection[str] = (),
    ctx: ValidationContext | None = None,
) -> List[str]:
    """Validate one authored graph.

    ``external_targets`` lists node IDs that live in other graphs; choices may
    point at them without being reported as dangling.
    """
    ctx = ctx if ctx is not None else ValidationContext()
    prefix = ("graphs", graph_key)

    if not isinstance(payload, Mapping):
        ctx.add(f"Graph '{graph_key}'", path(*prefix), "must be an object.")
        return ctx.errors

    nodes, _node_errors = normalize_nodes(payload.get("nodes"), ctx, prefix)

    start = get_start_node_id(payload)
    if not is_non_empty_str(start):
        ctx.add(f"Graph '{graph_key}'", path(*prefix, "startNodeId"), "requires a non-empty 'startNodeId'.")
    elif start not in nodes:
        ctx.add(
            f"Graph '{graph_key}'",
            path(*prefix, "startNodeId"),
            f"references unknown node '{start}'.",
        )

    known_targets = set(nodes) | set(external_targets)
    for node_id, node in nodes.items():
        node_path = (*prefix, "nodes", node_id)
        node_context = f"Node '{node_id}'"
        for key in ("requiredState", "required_state"):
            if key in node:
                validate_condition(node[key], node_context, (*node_path, key), ctx)
        for key in ("onEnter", "on_enter", "onExit", "on_exit"):
            _validate_change_list(node.get(key), f"{node_context} {key}", (*node_path, key), ctx)

        tags = node.get("tags")
        if tags is not None and not is_str_list(tags):
            ctx.add(node_context, path(*node_path, "tags"), "'tags' must be a list of strings.")
        metadata = node.get("metadata")
        if metadata is not None and not isinstance(metadata, Mapping):
            ctx.add(node_context, path(*node_path, "metadata"), "'metadata' must be an object.")

        choices = node.get("choices")
        if choices is None:
            continue
        if not isinstance(choices, list):
            ctx.add(node_context, path(*node_path, "choices"), "choices must be provided as a list.")
            continue
        choice_ids = [get_choice_id(c) for c in choices if isinstance(c, Mapping)]
        duplicates = sorted(
            str(cid) for cid, count in Counter(choice_ids).items() if cid is not None and count > 1
        )
        if duplicates:
            ctx.add(
                node_context,
                path(*node_path, "choices"),
                f"duplicate choice IDs: {', '.join(duplicates)}.",
            )
        for index, choice in enumerate(choices, start=1):
            validate_choice(
                choice,
                node_id,
                index,
                known_targets,
                (*node_path, "choices", index - 1),
                ctx,
            )

    return ctx.errors


def validate_graphs(payload: Any) -> List[str]:
    """Validate a ``{graph_key: graph}`` collection (optionally under ``graphs``)."""
    ctx = ValidationContext()
    graphs = unwrap_graphs(payload)
    if not isinstance(graphs, Mapping):
        ctx.add("Graph data", path("graphs"), "must be an object mapping graph keys to graphs.")
        return ctx.errors

    all_node_ids = set()
    for graph in graphs.values():
        if isinstance(graph, Mapping):
            nodes, _ = normalize_nodes(graph.get("nodes"))
            all_node_ids.update(nodes)

    for graph_key in sorted(graphs):
        validate_graph(graph_key, graphs[graph_key], all_node_ids, ctx)
    return ctx.errors


def unwrap_graphs(payload: Any) -> Any:
    if isinstance(payload, Mapping) and isinstance(payload.get("graphs"), Mapping):
        return payload["graphs"]
    return payload
