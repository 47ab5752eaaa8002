"""Condition evaluation for node and choice gating.

Absent fields are vacuously true and present fields are conjunctive.
Character-scoped checks fail closed when the character is not in the state.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Mapping, Optional

from station.graph import DialogueChoice, DialogueNode
from station.registry import get_skill_combo
from station.state import CharacterState, GameState, StateCondition, parse_mystery, parse_pattern

UNKNOWN_REASON = "Unknown reason"
FALLBACK_REASON = "Requirements not met"


def _character_checks_present(condition: StateCondition) -> bool:
    return (
        condition.trust is not None
        or condition.relationship is not None
        or condition.has_knowledge_flags is not None
        or condition.lacks_knowledge_flags is not None
    )


def _check_character(condition: StateCondition, char: CharacterState) -> bool:
    if condition.trust is not None and not condition.trust.contains(char.trust):
        return False
    if condition.relationship is not None and char.relationship_status.value not in condition.relationship:
        return False
    if condition.has_knowledge_flags is not None:
        if not all(flag in char.knowledge_flags for flag in condition.has_knowledge_flags):
            return False
    if condition.lacks_knowledge_flags is not None:
        if any(flag in char.knowledge_flags for flag in condition.lacks_knowledge_flags):
            return False
    return True


def evaluate(
    condition: Optional[StateCondition],
    state: GameState,
    character_id: Optional[str] = None,
    skill_levels: Optional[Mapping[str, int]] = None,
) -> bool:
    if condition is None:
        return True

    if _character_checks_present(condition):
        char = state.characters.get(character_id) if character_id else None
        if char is None or not _check_character(condition, char):
            return False

    if condition.has_global_flags is not None:
        if not all(flag in state.global_flags for flag in condition.has_global_flags):
            return False
    if condition.lacks_global_flags is not None:
        if any(flag in state.global_flags for flag in condition.lacks_global_flags):
            return False

    if condition.patterns is not None:
        for name, rng in condition.patterns.items():
            pattern = parse_pattern(name)
            if pattern is None or not rng.contains(state.patterns.get(pattern)):
                return False

    if condition.mysteries is not None:
        for field_name, expected in condition.mysteries.items():
            wanted = parse_mystery(field_name, expected)
            if wanted is None or state.mysteries.get(field_name) != wanted:
                return False

    if condition.required_combos is not None:
        levels = skill_levels if skill_levels is not None else state.skill_levels
        for combo_id in condition.required_combos:
            combo = get_skill_combo(combo_id)
            if combo is None or not combo.is_met(levels):
                return False

    return True


@dataclass(frozen=True)
class EvaluatedChoice:
    choice: DialogueChoice
    visible: bool
    enabled: bool
    reason: Optional[str] = None


def evaluate_choices(
    node: DialogueNode,
    state: GameState,
    character_id: Optional[str] = None,
    skill_levels: Optional[Mapping[str, int]] = None,
) -> List[EvaluatedChoice]:
    results = []
    for choice in node.choices:
        visible = evaluate(choice.visible_condition, state, character_id, skill_levels)
        enabled = visible and evaluate(choice.enabled_condition, state, character_id, skill_levels)
        reason = None
        if visible and not enabled:
            reason = disabled_reason(choice.enabled_condition, state, character_id)
        results.append(EvaluatedChoice(choice, visible, enabled, reason))
    return results


def disabled_reason(
    condition: Optional[StateCondition], state: GameState, character_id: Optional[str] = None
) -> str:
    """Return a short player-facing explanation of why ``condition`` fails."""
    if condition is None:
        return UNKNOWN_REASON

    reasons: List[str] = []
    char = state.characters.get(character_id) if character_id else None

    if char is not None and condition.trust is not None and condition.trust.min is not None:
        if char.trust < condition.trust.min:
            reasons.append(f"Need {condition.trust.min} trust (have {char.trust})")

    if char is not None and condition.relationship is not None:
        if char.relationship_status.value not in condition.relationship:
            reasons.append(f"Need {' or '.join(condition.relationship)} relationship")

    for flag in condition.has_global_flags or ():
        if flag not in state.global_flags:
            reasons.append(f"Missing requirement: {flag}")

    for combo_id in condition.required_combos or ():
        combo = get_skill_combo(combo_id)
        if combo is not None and not combo.is_met(state.skill_levels):
            reasons.append(f"Need {combo.name} skill combo")

    return ", ".join(reasons) if reasons else FALLBACK_REASON
