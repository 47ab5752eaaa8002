"""Trust calculation pipeline: resonance, then momentum, then clamping.

The order is fixed. Resonance scales the authored delta by how strongly the
character responds to the player's pattern tendency, momentum scales the
result by the character's recent trust trajectory, and clamping keeps trust in
``[MIN_TRUST, MAX_TRUST]``. ``TrustResult.actual_delta`` is always the true
change after clamping so feedback shown to the player never disagrees with the
stored value.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from station.registry import AFFINITY_MULTIPLIERS, AffinityLevel, get_affinity
from station.state import (
    MAX_TRUST,
    MIN_TRUST,
    PATTERN_ORDER,
    Pattern,
    PlayerPatterns,
    TrustMomentum,
    parse_pattern,
)
from station.timekeeping import normalize_timestamp, sessions_elapsed

DOMINANT_PATTERN_THRESHOLD = 3
CHOICE_RESONANCE_WEIGHT = 0.5

MOMENTUM_MIN_MULTIPLIER = 0.5
MOMENTUM_MAX_MULTIPLIER = 1.5
MOMENTUM_DECAY_PER_SESSION = 0.1
MOMENTUM_POSITIVE_STEP = 0.15
MOMENTUM_NEGATIVE_STEP = -0.2
MOMENTUM_STREAK_THRESHOLD = 3


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def clamp(n, lo, hi):
    return lo if n < lo else hi if n > hi else n


@dataclass
class TrustBreakdown:
    base_delta: int
    resonance_delta: int
    resonance_multiplier: float = 1.0
    resonance_pattern: Optional[Pattern] = None
    momentum_multiplier: float = 1.0
    momentum_delta: int = 0
    clamped: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "base_delta": self.base_delta,
            "resonance_delta": self.resonance_delta,
            "resonance_multiplier": self.resonance_multiplier,
            "resonance_pattern": self.resonance_pattern.value if self.resonance_pattern else None,
            "momentum_multiplier": self.momentum_multiplier,
            "momentum_delta": self.momentum_delta,
            "clamped": self.clamped,
        }


@dataclass
class TrustResult:
    new_trust: int
    actual_delta: int
    updated_momentum: TrustMomentum
    breakdown: TrustBreakdown


@dataclass
class TrustContext:
    character_id: Optional[str] = None
    momentum: Optional[TrustMomentum] = None
    patterns: PlayerPatterns = field(default_factory=PlayerPatterns)
    choice_pattern: Optional[Pattern] = None
    now: Optional[float] = None
    apply_resonance: bool = True
    apply_momentum: bool = True


# ---------- Resonance ----------


def get_dominant_pattern(
    patterns: PlayerPatterns, min_threshold: int = DOMINANT_PATTERN_THRESHOLD
) -> Optional[Pattern]:
    best: Optional[Pattern] = None
    best_value = -1
    for pattern in PATTERN_ORDER:
        value = patterns.get(pattern)
        if value > best_value:
            best, best_value = pattern, value
    if best is not None and best_value >= min_threshold:
        return best
    return None


def get_affinity_level(character_id: Optional[str], pattern: Pattern) -> AffinityLevel:
    affinity = get_affinity(character_id) if character_id else None
    if affinity is None:
        return AffinityLevel.NEUTRAL
    return affinity.level_for(pattern)


def get_trust_multiplier(character_id: Optional[str], pattern: Optional[Pattern]) -> float:
    if pattern is None:
        return 1.0
    return AFFINITY_MULTIPLIERS[get_affinity_level(character_id, pattern)]


def apply_resonance(
    base_delta: int,
    character_id: Optional[str],
    patterns: PlayerPatterns,
    choice_pattern: Optional[Pattern],
) -> tuple[int, float, Optional[Pattern]]:
    """Scale ``base_delta`` by pattern affinity.

    The player's dominant pattern sets the main multiplier; a choice pattern
    that differs from it adds a half-strength adjustment of its own.
    """
    dominant = get_dominant_pattern(patterns)
    adjusted = base_delta
    multiplier = 1.0
    triggered: Optional[Pattern] = None

    if dominant is not None:
        multiplier = get_trust_multiplier(character_id, dominant)
        if multiplier != 1.0:
            adjusted = round_half_up(base_delta * multiplier)
            triggered = dominant

    if choice_pattern is not None and choice_pattern != dominant:
        choice_multiplier = get_trust_multiplier(character_id, choice_pattern)
        if choice_multiplier != 1.0:
            adjusted += round_half_up(
                base_delta * (choice_multiplier - 1.0) * CHOICE_RESONANCE_WEIGHT
            )
            if triggered is None:
                triggered = choice_pattern
                multiplier = 1.0 + (choice_multiplier - 1.0) * CHOICE_RESONANCE_WEIGHT

    return adjusted, multiplier, triggered


# ---------- Momentum ----------


def create_momentum(now: Optional[float] = None) -> TrustMomentum:
    return TrustMomentum(last_change_at=normalize_timestamp(now) if now is not None else 0.0)


def decay_momentum(momentum: TrustMomentum, now: Optional[float]) -> TrustMomentum:
    decayed = momentum.copy()
    if now is None:
        return decayed
    sessions = sessions_elapsed(momentum.last_change_at, now)
    if sessions > 0:
        decayed.momentum = momentum.momentum * (1 - MOMENTUM_DECAY_PER_SESSION) ** sessions
    return decayed


def get_momentum_multiplier(momentum: TrustMomentum) -> float:
    normalized = (clamp(momentum.momentum, -1.0, 1.0) + 1) / 2
    return MOMENTUM_MIN_MULTIPLIER + normalized * (MOMENTUM_MAX_MULTIPLIER - MOMENTUM_MIN_MULTIPLIER)


def update_momentum(
    momentum: TrustMomentum, trust_delta: int, now: Optional[float] = None
) -> TrustMomentum:
    """Nudge momentum in the direction of ``trust_delta``.

    Losses move momentum further than gains, and a streak of three or more
    changes in the same direction adds half a step.
    """
    updated = momentum.copy()
    if trust_delta > 0:
        updated.momentum += MOMENTUM_POSITIVE_STEP
        updated.consecutive_positive += 1
        updated.consecutive_negative = 0
        if updated.consecutive_positive >= MOMENTUM_STREAK_THRESHOLD:
            updated.momentum += MOMENTUM_POSITIVE_STEP * 0.5
    elif trust_delta < 0:
        updated.momentum += MOMENTUM_NEGATIVE_STEP
        updated.consecutive_negative += 1
        updated.consecutive_positive = 0
        if updated.consecutive_negative >= MOMENTUM_STREAK_THRESHOLD:
            updated.momentum += MOMENTUM_NEGATIVE_STEP * 0.5
    updated.momentum = clamp(updated.momentum, -1.0, 1.0)
    if now is not None:
        updated.last_change_at = normalize_timestamp(now)
    return updated


# ---------- Pipeline ----------


def calculate_trust_change(
    current_trust: int, base_delta: int, context: Optional[TrustContext] = None
) -> TrustResult:
    context = context or TrustContext()
    current_trust = clamp(int(current_trust), MIN_TRUST, MAX_TRUST)
    base_delta = int(base_delta)

    delta = base_delta
    breakdown = TrustBreakdown(base_delta=base_delta, resonance_delta=base_delta)

    choice_pattern = parse_pattern(context.choice_pattern) if context.choice_pattern else None
    if context.apply_resonance and choice_pattern is not None:
        delta, multiplier, triggered = apply_resonance(
            base_delta, context.character_id, context.patterns, choice_pattern
        )
        breakdown.resonance_delta = delta
        breakdown.resonance_multiplier = multiplier
        breakdown.resonance_pattern = triggered

    momentum = context.momentum if context.momentum is not None else create_momentum(context.now)
    if context.apply_momentum:
        momentum = decay_momentum(momentum, context.now)
        multiplier = get_momentum_multiplier(momentum)
        delta = round_half_up(delta * multiplier)
        breakdown.momentum_multiplier = multiplier
        momentum = update_momentum(momentum, base_delta, context.now)
    breakdown.momentum_delta = delta

    raw = current_trust + delta
    new_trust = clamp(raw, MIN_TRUST, MAX_TRUST)
    breakdown.clamped = abs(raw - new_trust)

    return TrustResult(
        new_trust=new_trust,
        actual_delta=new_trust - current_trust,
        updated_momentum=momentum,
        breakdown=breakdown,
    )
