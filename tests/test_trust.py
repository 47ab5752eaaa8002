import pytest

from station.state import Pattern, PlayerPatterns, TrustMomentum
from station.trust import (
    TrustContext,
    apply_resonance,
    calculate_trust_change,
    decay_momentum,
    get_dominant_pattern,
    get_momentum_multiplier,
    get_trust_multiplier,
    round_half_up,
    update_momentum,
)

PLAIN = TrustContext(apply_resonance=False, apply_momentum=False)


def test_clamps_at_upper_bound_and_reports_clamped_amount() -> None:
    result = calculate_trust_change(9, 5, PLAIN)
    assert result.new_trust == 10
    assert result.actual_delta == 1
    assert result.breakdown.clamped == 4


def test_clamps_at_lower_bound() -> None:
    result = calculate_trust_change(1, -3, PLAIN)
    assert result.new_trust == 0
    assert result.actual_delta == -1
    assert result.breakdown.clamped == 2


@pytest.mark.parametrize("current", [0, 3, 7, 10])
@pytest.mark.parametrize("base", [-12, -4, -1, 0, 1, 3, 9])
def test_actual_delta_matches_stored_change(current: int, base: int) -> None:
    context = TrustContext(
        character_id="maya",
        momentum=TrustMomentum(momentum=0.6),
        patterns=PlayerPatterns(building=4),
        choice_pattern=Pattern.ANALYTICAL,
    )
    result = calculate_trust_change(current, base, context)
    assert 0 <= result.new_trust <= 10
    assert result.actual_delta == result.new_trust - current
    assert -1.0 <= result.updated_momentum.momentum <= 1.0


@pytest.mark.parametrize(
    ("value", "expected"),
    [(2.5, 3), (-2.5, -2), (0.5, 1), (-0.5, 0), (1.49, 1)],
)
def test_round_half_up(value: float, expected: int) -> None:
    assert round_half_up(value) == expected


def test_dominant_pattern_requires_threshold_and_prefers_pattern_order() -> None:
    assert get_dominant_pattern(PlayerPatterns(helping=2)) is None
    assert get_dominant_pattern(PlayerPatterns(helping=3, building=3)) is Pattern.HELPING
    assert get_dominant_pattern(PlayerPatterns(exploring=5, analytical=4)) is Pattern.EXPLORING


def test_characters_without_affinity_table_are_neutral() -> None:
    assert get_trust_multiplier("jordan", Pattern.BUILDING) == 1.0
    assert get_trust_multiplier("maya", Pattern.BUILDING) == 1.5
    assert get_trust_multiplier("maya", Pattern.HELPING) == 0.75


def test_resonance_scales_by_dominant_pattern() -> None:
    adjusted, multiplier, triggered = apply_resonance(
        4, "maya", PlayerPatterns(building=3), Pattern.BUILDING
    )
    assert adjusted == 6
    assert multiplier == 1.5
    assert triggered is Pattern.BUILDING


def test_differing_choice_pattern_adds_half_strength_adjustment() -> None:
    adjusted, _, _ = apply_resonance(4, "maya", PlayerPatterns(building=3), Pattern.ANALYTICAL)
    assert adjusted == 7


def test_choice_pattern_alone_resonates_without_dominant_pattern() -> None:
    adjusted, multiplier, triggered = apply_resonance(4, "maya", PlayerPatterns(), Pattern.BUILDING)
    assert adjusted == 5
    assert multiplier == 1.25
    assert triggered is Pattern.BUILDING


def test_resonance_needs_a_choice_pattern() -> None:
    context = TrustContext(character_id="maya", patterns=PlayerPatterns(building=6))
    result = calculate_trust_change(0, 4, context)
    assert result.new_trust == 4
    assert result.breakdown.resonance_pattern is None


def test_fresh_momentum_is_neutral() -> None:
    assert get_momentum_multiplier(TrustMomentum()) == pytest.approx(1.0)
    assert get_momentum_multiplier(TrustMomentum(momentum=1.0)) == pytest.approx(1.5)
    assert get_momentum_multiplier(TrustMomentum(momentum=-1.0)) == pytest.approx(0.5)


def test_positive_momentum_amplifies_delta() -> None:
    result = calculate_trust_change(0, 2, TrustContext(momentum=TrustMomentum(momentum=1.0)))
    assert result.new_trust == 3
    assert result.breakdown.momentum_multiplier == pytest.approx(1.5)
    assert result.updated_momentum.momentum == pytest.approx(1.0)


def test_momentum_streaks_add_half_step() -> None:
    momentum = TrustMomentum()
    for _ in range(3):
        momentum = update_momentum(momentum, 1)
    assert momentum.momentum == pytest.approx(0.525)
    assert momentum.consecutive_positive == 3

    momentum = TrustMomentum()
    for _ in range(3):
        momentum = update_momentum(momentum, -1)
    assert momentum.momentum == pytest.approx(-0.7)
    assert momentum.consecutive_negative == 3


def test_direction_change_resets_opposite_streak() -> None:
    momentum = update_momentum(update_momentum(TrustMomentum(), 2), -1)
    assert momentum.consecutive_positive == 0
    assert momentum.consecutive_negative == 1
    assert momentum.momentum == pytest.approx(-0.05)


@pytest.mark.parametrize("delta", [5, -5])
def test_momentum_stays_bounded(delta: int) -> None:
    momentum = TrustMomentum()
    for _ in range(20):
        momentum = update_momentum(momentum, delta)
        assert -1.0 <= momentum.momentum <= 1.0
    assert abs(momentum.momentum) == pytest.approx(1.0)


def test_momentum_decays_per_idle_session() -> None:
    decayed = decay_momentum(TrustMomentum(momentum=0.5, last_change_at=0.0), now=1200.0)
    assert decayed.momentum == pytest.approx(0.405)


def test_decay_without_clock_is_a_no_op() -> None:
    momentum = TrustMomentum(momentum=0.5, last_change_at=0.0)
    assert decay_momentum(momentum, None) == momentum


def test_skipping_momentum_returns_it_unchanged() -> None:
    momentum = TrustMomentum(momentum=0.4, last_change_at=0.0)
    context = TrustContext(momentum=momentum, now=6000.0, apply_momentum=False)
    result = calculate_trust_change(2, 2, context)
    assert result.new_trust == 4
    assert result.updated_momentum == momentum
