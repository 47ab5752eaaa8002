import logging

import pytest

from station.mutations import (
    apply_state_change,
    apply_state_change_with_result,
    apply_state_changes,
    pop_due_check_ins,
    record_visit,
    relationship_for_trust,
    sanitize_state_change,
    schedule_check_in,
)
from station.registry import default_game_state
from station.state import (
    LetterSender,
    Pattern,
    PendingCheckIn,
    PlatformSeven,
    RelationshipStatus,
    StateChange,
)


@pytest.fixture
def state():
    return default_game_state("tester")


def test_pattern_delta_in_same_change_feeds_resonance(state) -> None:
    change = StateChange(
        character_id="maya", pattern_changes={"building": 3}, trust_change=4, choice_pattern="building"
    )
    result = apply_state_change(state, change)
    assert result.patterns.building == 3
    assert result.characters["maya"].trust == 6


def test_trust_first_then_patterns_differs(state) -> None:
    trust_first = apply_state_changes(
        state,
        [
            StateChange(character_id="maya", trust_change=4, choice_pattern="building"),
            StateChange(pattern_changes={"building": 3}),
        ],
    )
    combined = apply_state_change(
        state,
        StateChange(
            character_id="maya", pattern_changes={"building": 3}, trust_change=4, choice_pattern="building"
        ),
    )
    assert trust_first.characters["maya"].trust == 5
    assert combined.characters["maya"].trust != trust_first.characters["maya"].trust


def test_largest_pattern_delta_stands_in_for_choice_pattern(state) -> None:
    change = StateChange(character_id="maya", pattern_changes={"building": 3, "helping": 1}, trust_change=4)
    assert apply_state_change(state, change).characters["maya"].trust == 6


def test_inputs_are_not_modified(state) -> None:
    before = state.copy()
    patterns = {"building": 2, "bogus": 1}
    change = StateChange(
        character_id="maya",
        trust_change=3,
        pattern_changes=patterns,
        add_global_flags=("met_maya",),
        add_knowledge_flags=("robotics",),
    )
    result = apply_state_change(state, change)
    assert state == before
    assert patterns == {"building": 2, "bogus": 1}
    assert result is not state
    assert "met_maya" in result.global_flags


def test_sanitize_returns_new_change_and_reports_drops() -> None:
    change = StateChange(
        character_id="nobody",
        trust_change=3,
        add_global_flags=("x",),
        pattern_changes={"bogus": 1, "helping": 2},
        mystery_changes={"letterSender": "trusted", "platformSeven": "gone"},
    )
    sanitized, dropped = sanitize_state_change(change)
    assert sanitized is not change
    assert sanitized.character_id is None
    assert sanitized.trust_change is None
    assert sanitized.pattern_changes == {Pattern.HELPING: 2}
    assert sanitized.mystery_changes == {"letter_sender": LetterSender.TRUSTED}
    assert change.pattern_changes == {"bogus": 1, "helping": 2}
    assert any("nobody" in entry for entry in dropped)
    assert any("bogus" in entry for entry in dropped)
    assert any("platformSeven" in entry for entry in dropped)


def test_unknown_character_skips_only_character_block(state, caplog) -> None:
    change = StateChange(
        character_id="nobody",
        trust_change=3,
        add_global_flags=("x",),
        pattern_changes={"helping": 2, "bogus": 5},
    )
    with caplog.at_level(logging.WARNING, logger="station.mutations"):
        result = apply_state_change(state, change)
    assert "x" in result.global_flags
    assert result.patterns.helping == 2
    assert "nobody" not in result.characters
    assert "nobody" in caplog.text
    assert "bogus" in caplog.text


@pytest.mark.parametrize("bad_delta", ["lots", 2.7, True])
def test_non_integer_trust_delta_drops_only_trust(state, caplog, bad_delta) -> None:
    change = StateChange(
        character_id="maya",
        trust_change=bad_delta,
        add_global_flags=("x",),
        add_knowledge_flags=("met",),
    )
    with caplog.at_level(logging.WARNING, logger="station.mutations"):
        result = apply_state_change(state, change)
    maya = result.characters["maya"]
    assert maya.trust == 0
    assert "met" in maya.knowledge_flags
    assert "x" in result.global_flags
    assert "trust_change" in caplog.text


def test_known_character_missing_from_state_is_skipped(state, caplog) -> None:
    del state.characters["maya"]
    with caplog.at_level(logging.WARNING, logger="station.mutations"):
        result = apply_state_change(
            state, StateChange(character_id="maya", trust_change=2, add_global_flags=("seen",))
        )
    assert "maya" not in result.characters
    assert "seen" in result.global_flags
    assert "not found" in caplog.text


@pytest.mark.parametrize(
    ("trust", "expected"),
    [
        (0, RelationshipStatus.STRANGER),
        (3, RelationshipStatus.STRANGER),
        (4, RelationshipStatus.ACQUAINTANCE),
        (7, RelationshipStatus.ACQUAINTANCE),
        (8, RelationshipStatus.CONFIDANT),
        (10, RelationshipStatus.CONFIDANT),
    ],
)
def test_relationship_thresholds(trust: int, expected: RelationshipStatus) -> None:
    assert relationship_for_trust(trust) is expected


def test_relationship_derived_from_trust(state) -> None:
    result = apply_state_change(state, StateChange(character_id="jordan", trust_change=8))
    assert result.characters["jordan"].relationship_status is RelationshipStatus.CONFIDANT


def test_explicit_relationship_override_wins(state) -> None:
    change = StateChange(character_id="jordan", trust_change=9, set_relationship_status="stranger")
    result = apply_state_change(state, change)
    assert result.characters["jordan"].trust == 9
    assert result.characters["jordan"].relationship_status is RelationshipStatus.STRANGER


def test_invalid_relationship_override_falls_back_to_derived(state) -> None:
    change = StateChange(character_id="jordan", trust_change=5, set_relationship_status="rival")
    result = apply_state_change(state, change)
    assert result.characters["jordan"].relationship_status is RelationshipStatus.ACQUAINTANCE


@pytest.mark.parametrize("deltas", [[5, 5, 5], [-3, -3], [10, -20, 4], [7, 7, -1, 9]])
def test_trust_stays_in_bounds(state, deltas) -> None:
    for delta in deltas:
        state = apply_state_change(
            state,
            StateChange(character_id="maya", trust_change=delta, choice_pattern="building"),
        )
        assert 0 <= state.characters["maya"].trust <= 10
        assert -1.0 <= state.characters["maya"].trust_momentum.momentum <= 1.0


def test_result_variant_reports_actual_delta(state) -> None:
    state.characters["jordan"].trust = 9
    result, trust = apply_state_change_with_result(state, StateChange(character_id="jordan", trust_change=5))
    assert result.characters["jordan"].trust == 10
    assert trust is not None
    assert trust.actual_delta == 1
    assert trust.breakdown.clamped == 4


def test_patterns_never_drop_below_zero(state) -> None:
    result = apply_state_change(state, StateChange(pattern_changes={"helping": -5}))
    assert result.patterns.helping == 0


def test_knowledge_flags_add_and_remove(state) -> None:
    state = apply_state_change(
        state, StateChange(character_id="samuel", add_knowledge_flags=("letter", "platform"))
    )
    state = apply_state_change(state, StateChange(character_id="samuel", remove_knowledge_flags=("letter",)))
    assert state.characters["samuel"].knowledge_flags == {"platform"}


def test_thought_is_appended_then_replaced(state) -> None:
    state = apply_state_change(state, StateChange(thought_id="quiet_builder"))
    state = apply_state_change(state, StateChange(thought_id="quiet_builder", internalize_thought=True))
    assert len(state.thoughts) == 1
    assert state.thoughts[0].is_internalized is True


def test_mystery_overrides_merge_and_ignore_invalid_values(state) -> None:
    result = apply_state_change(
        state, StateChange(mystery_changes={"letterSender": "trusted", "platformSeven": "gone"})
    )
    assert result.mysteries.letter_sender is LetterSender.TRUSTED
    assert result.mysteries.platform_seven is PlatformSeven.FLICKERING


def test_change_from_camel_case_content(state) -> None:
    change = StateChange.from_dict(
        {"characterId": "devon", "trustChange": 2, "addKnowledgeFlags": ["met"], "addGlobalFlags": "hello"}
    )
    result = apply_state_change(state, change)
    assert result.characters["devon"].trust == 2
    assert result.characters["devon"].knowledge_flags == {"met"}
    assert result.global_flags == {"hello"}


def test_record_visit_appends_history(state) -> None:
    result = record_visit(state, "maya", "maya_intro")
    assert result.current_node_id == "maya_intro"
    assert result.characters["maya"].conversation_history == ["maya_intro"]
    assert state.characters["maya"].conversation_history == []


def test_check_ins_are_ordered_and_popped_when_due(state) -> None:
    state = schedule_check_in(state, PendingCheckIn("samuel", 100.0, "follow up"))
    state = schedule_check_in(state, PendingCheckIn("samuel", 50.0, "first"))
    assert [entry.scheduled_time for entry in state.pending_check_ins["samuel"]] == [50.0, 100.0]

    remaining, due = pop_due_check_ins(state, "samuel", now=75.0)
    assert [entry.reason for entry in due] == ["first"]
    assert [entry.reason for entry in remaining.pending_check_ins["samuel"]] == ["follow up"]
    assert len(state.pending_check_ins["samuel"]) == 2

    emptied, due = pop_due_check_ins(remaining, "samuel", now=200.0)
    assert len(due) == 1
    assert "samuel" not in emptied.pending_check_ins


def test_check_in_for_unknown_character_is_ignored(state) -> None:
    result = schedule_check_in(state, PendingCheckIn("nobody", 10.0))
    assert result.pending_check_ins == {}
