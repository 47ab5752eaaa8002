"""State mutation reducer.

``apply_state_change`` is the single path through which trust, flags,
patterns, thoughts, relationship status and mysteries change. It never raises
and never modifies its inputs: the state is cloned, the change is sanitized
into a new object, and invalid dimensions are logged and skipped while the
rest of the change still applies.

Processing order (later steps read the output of earlier ones):

1. global flags
2. pattern deltas
3. thought bookkeeping
4. character block: trust (via :mod:`station.trust`), relationship, knowledge
5. mystery overrides
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Iterable, List, Optional, Tuple

from station.registry import is_known_character
from station.schema import is_int
from station.state import (
    MYSTERY_ALIASES,
    ActiveThought,
    GameState,
    Pattern,
    PendingCheckIn,
    RelationshipStatus,
    StateChange,
    new_character_state,
    parse_mystery,
    parse_pattern,
    parse_relationship,
)
from station.timekeeping import is_due
from station.trust import TrustContext, TrustResult, calculate_trust_change

logger = logging.getLogger(__name__)

CONFIDANT_THRESHOLD = 8
ACQUAINTANCE_THRESHOLD = 4


def relationship_for_trust(trust: int) -> RelationshipStatus:
    if trust >= CONFIDANT_THRESHOLD:
        return RelationshipStatus.CONFIDANT
    if trust >= ACQUAINTANCE_THRESHOLD:
        return RelationshipStatus.ACQUAINTANCE
    return RelationshipStatus.STRANGER


def sanitize_state_change(change: StateChange) -> Tuple[StateChange, List[str]]:
    """Validate ``change`` against the registries.

    Returns a new change with every unknown name removed and the list of
    dropped entries. Pattern keys, the choice pattern, the relationship override
    and mystery values come back as enum members.
    """
    dropped: List[str] = []
    updates = {}

    if change.pattern_changes is not None:
        patterns = {}
        for key, value in change.pattern_changes.items():
            pattern = parse_pattern(key)
            if pattern is None:
                dropped.append(f"pattern_changes.{key}: unknown pattern")
                continue
            try:
                patterns[pattern] = int(value)
            except (TypeError, ValueError):
                dropped.append(f"pattern_changes.{key}: non-integer delta {value!r}")
        updates["pattern_changes"] = patterns

    if change.choice_pattern is not None:
        pattern = parse_pattern(change.choice_pattern)
        if pattern is None:
            dropped.append(f"choice_pattern: unknown pattern '{change.choice_pattern}'")
        updates["choice_pattern"] = pattern

    if change.character_id is not None and not is_known_character(change.character_id):
        dropped.append(f"character_id: unknown character '{change.character_id}'")
        updates.update(
            character_id=None,
            trust_change=None,
            set_relationship_status=None,
            add_knowledge_flags=None,
            remove_knowledge_flags=None,
        )
    elif change.character_id is None and (
        change.trust_change is not None
        or change.set_relationship_status is not None
        or change.add_knowledge_flags is not None
        or change.remove_knowledge_flags is not None
    ):
        dropped.append("character fields: no character_id given")
        updates.update(
            trust_change=None,
            set_relationship_status=None,
            add_knowledge_flags=None,
            remove_knowledge_flags=None,
        )
    elif change.set_relationship_status is not None:
        status = parse_relationship(change.set_relationship_status)
        if status is None:
            dropped.append(
                f"set_relationship_status: unknown status '{change.set_relationship_status}'"
            )
        updates["set_relationship_status"] = status

    trust = updates.get("trust_change", change.trust_change)
    if trust is not None and not is_int(trust):
        dropped.append(f"trust_change: non-integer delta {trust!r}")
        updates["trust_change"] = None

    if change.mystery_changes is not None:
        mysteries = {}
        for key, value in change.mystery_changes.items():
            parsed = parse_mystery(key, value)
            if parsed is None:
                dropped.append(f"mystery_changes.{key}: unknown field or value {value!r}")
                continue
            mysteries[MYSTERY_ALIASES.get(key, key)] = parsed
        updates["mystery_changes"] = mysteries

    return replace(change, **updates), dropped


def apply_state_change_with_result(
    state: GameState,
    change: StateChange,
    *,
    now: Optional[float] = None,
    apply_resonance: bool = True,
    apply_momentum: bool = True,
) -> Tuple[GameState, Optional[TrustResult]]:
    change, dropped = sanitize_state_change(change)
    for message in dropped:
        logger.warning("Ignoring invalid state change field: %s", message)

    new_state = state.copy()
    trust_result: Optional[TrustResult] = None

    # 1. Global flags.
    for flag in change.add_global_flags or ():
        new_state.global_flags.add(flag)
    for flag in change.remove_global_flags or ():
        new_state.global_flags.discard(flag)

    # 2. Patterns, on the working copy so resonance below sees the new values.
    for pattern, delta in (change.pattern_changes or {}).items():
        new_state.patterns.set(pattern, new_state.patterns.get(pattern) + delta)

    # 3. Thoughts.
    if change.thought_id:
        thought = ActiveThought(change.thought_id, change.internalize_thought)
        for index, existing in enumerate(new_state.thoughts):
            if existing.id == change.thought_id:
                thought.is_internalized = existing.is_internalized or change.internalize_thought
                new_state.thoughts[index] = thought
                break
        else:
            new_state.thoughts.append(thought)

    # 4. Character block.
    if change.character_id is not None:
        char = new_state.characters.get(change.character_id)
        if char is None:
            logger.warning(
                "Character %s not found in state; skipping character changes",
                change.character_id,
            )
        else:
            if change.trust_change is not None:
                trust_result = calculate_trust_change(
                    char.trust,
                    change.trust_change,
                    TrustContext(
                        character_id=char.character_id,
                        momentum=char.trust_momentum,
                        patterns=new_state.patterns,
                        choice_pattern=change.choice_pattern or _leading_pattern(change),
                        now=now,
                        apply_resonance=apply_resonance,
                        apply_momentum=apply_momentum,
                    ),
                )
                char.trust = trust_result.new_trust
                char.trust_momentum = trust_result.updated_momentum

            if change.set_relationship_status is not None:
                char.relationship_status = change.set_relationship_status
            elif change.trust_change is not None:
                char.relationship_status = relationship_for_trust(char.trust)

            for flag in change.add_knowledge_flags or ():
                char.knowledge_flags.add(flag)
            for flag in change.remove_knowledge_flags or ():
                char.knowledge_flags.discard(flag)

    # 5. Mysteries.
    for field_name, value in (change.mystery_changes or {}).items():
        setattr(new_state.mysteries, field_name, value)

    return new_state, trust_result


def _leading_pattern(change: StateChange) -> Optional[Pattern]:
    # The largest positive pattern delta in the same change stands in for the
    # choice pattern; ties resolve in pattern order.
    best: Optional[Pattern] = None
    best_delta = 0
    for pattern in Pattern:
        delta = (change.pattern_changes or {}).get(pattern, 0)
        if delta > best_delta:
            best, best_delta = pattern, delta
    return best


def apply_state_change(
    state: GameState,
    change: StateChange,
    *,
    now: Optional[float] = None,
    apply_resonance: bool = True,
    apply_momentum: bool = True,
) -> GameState:
    new_state, _ = apply_state_change_with_result(
        state,
        change,
        now=now,
        apply_resonance=apply_resonance,
        apply_momentum=apply_momentum,
    )
    return new_state


def apply_state_changes(
    state: GameState, changes: Iterable[StateChange] | None, **kwargs
) -> GameState:
    for change in changes or ():
        state = apply_state_change(state, change, **kwargs)
    return state


def record_visit(state: GameState, character_id: str, node_id: str) -> GameState:
    new_state = state.copy()
    new_state.current_node_id = node_id
    char = new_state.characters.get(character_id)
    if char is None:
        if not is_known_character(character_id):
            logger.warning("Unknown character %s; visit not recorded", character_id)
            return new_state
        char = new_character_state(character_id)
        new_state.characters[character_id] = char
    char.conversation_history.append(node_id)
    return new_state


def schedule_check_in(state: GameState, check_in: PendingCheckIn) -> GameState:
    if not is_known_character(check_in.character_id):
        logger.warning("Unknown character %s; check-in not scheduled", check_in.character_id)
        return state.copy()
    new_state = state.copy()
    queue = new_state.pending_check_ins.setdefault(check_in.character_id, [])
    queue.append(PendingCheckIn(check_in.character_id, check_in.scheduled_time, check_in.reason))
    queue.sort(key=lambda entry: entry.scheduled_time)
    return new_state


def pop_due_check_ins(
    state: GameState, character_id: str, now: float
) -> Tuple[GameState, List[PendingCheckIn]]:
    new_state = state.copy()
    queue = new_state.pending_check_ins.get(character_id, [])
    due = [entry for entry in queue if is_due(entry.scheduled_time, now)]
    remaining = [entry for entry in queue if not is_due(entry.scheduled_time, now)]
    if remaining:
        new_state.pending_check_ins[character_id] = remaining
    else:
        new_state.pending_check_ins.pop(character_id, None)
    return new_state, due
