"""Fixed registries: characters, pattern affinities and skill combos."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Mapping, Optional, Tuple

from station.state import GameState, Pattern, new_game_state

CHARACTER_IDS: Tuple[str, ...] = (
    "samuel",
    "maya",
    "devon",
    "jordan",
    "marcus",
    "tess",
    "yaquin",
    "kai",
    "alex",
    "rohan",
    "silas",
    "elena",
    "grace",
    "asha",
    "lira",
    "zara",
    "quinn",
    "dante",
    "nadia",
    "isaiah",
)

# Location graphs are keyed like characters but carry no trust of their own.
LOCATION_IDS: Tuple[str, ...] = ("station_entry", "grand_hall", "market", "deep_station")

KNOWN_IDS = frozenset(CHARACTER_IDS + LOCATION_IDS)


def is_known_character(character_id: str) -> bool:
    return character_id in KNOWN_IDS


def default_game_state(player_id: str = "player") -> GameState:
    return new_game_state(player_id, CHARACTER_IDS + LOCATION_IDS)


# ---------- Pattern affinity ----------


class AffinityLevel(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"
    NEUTRAL = "neutral"
    FRICTION = "friction"


AFFINITY_MULTIPLIERS: Mapping[AffinityLevel, float] = {
    AffinityLevel.PRIMARY: 1.5,
    AffinityLevel.SECONDARY: 1.25,
    AffinityLevel.NEUTRAL: 1.0,
    AffinityLevel.FRICTION: 0.75,
}


@dataclass(frozen=True)
class CharacterPatternAffinity:
    character_id: str
    primary: Pattern
    secondary: Pattern
    friction: Pattern

    def level_for(self, pattern: Pattern) -> AffinityLevel:
        if pattern == self.primary:
            return AffinityLevel.PRIMARY
        if pattern == self.secondary:
            return AffinityLevel.SECONDARY
        if pattern == self.friction:
            return AffinityLevel.FRICTION
        return AffinityLevel.NEUTRAL


CHARACTER_PATTERN_AFFINITIES: Mapping[str, CharacterPatternAffinity] = {
    "maya": CharacterPatternAffinity(
        "maya", primary=Pattern.BUILDING, secondary=Pattern.ANALYTICAL, friction=Pattern.HELPING
    ),
    "samuel": CharacterPatternAffinity(
        "samuel", primary=Pattern.PATIENCE, secondary=Pattern.HELPING, friction=Pattern.BUILDING
    ),
    "devon": CharacterPatternAffinity(
        "devon", primary=Pattern.ANALYTICAL, secondary=Pattern.BUILDING, friction=Pattern.HELPING
    ),
}


def get_affinity(character_id: str) -> Optional[CharacterPatternAffinity]:
    return CHARACTER_PATTERN_AFFINITIES.get(character_id)


# ---------- Skill combos ----------


@dataclass(frozen=True)
class SkillCombo:
    id: str
    name: str
    requirements: Tuple[Tuple[str, int], ...]

    def is_met(self, skill_levels: Mapping[str, int]) -> bool:
        return all(skill_levels.get(skill, 0) >= level for skill, level in self.requirements)

    def missing(self, skill_levels: Mapping[str, int]) -> Dict[str, int]:
        return {
            skill: level
            for skill, level in self.requirements
            if skill_levels.get(skill, 0) < level
        }


SKILL_COMBOS: Mapping[str, SkillCombo] = {
    combo.id: combo
    for combo in (
        SkillCombo(
            "strategic_empathy",
            "Strategic Empathy",
            (("systemsThinking", 5), ("emotionalIntelligence", 5)),
        ),
        SkillCombo(
            "technical_storyteller",
            "Technical Storyteller",
            (("technicalLiteracy", 5), ("communication", 5)),
        ),
        SkillCombo(
            "ethical_analyst",
            "Ethical Analyst",
            (("dataLiteracy", 4), ("ethicalReasoning", 5)),
        ),
        SkillCombo(
            "resilient_leader",
            "Resilient Leader",
            (("leadership", 5), ("resilience", 4)),
        ),
        SkillCombo(
            "community_architect",
            "Community Architect",
            (("collaboration", 5), ("systemsThinking", 4)),
        ),
        SkillCombo(
            "innovation_catalyst",
            "Innovation Catalyst",
            (("creativity", 5), ("technicalLiteracy", 4), ("strategicThinking", 4)),
        ),
        SkillCombo(
            "data_storyteller",
            "Data Storyteller",
            (("dataLiteracy", 4), ("communication", 5), ("criticalThinking", 4)),
        ),
        SkillCombo(
            "cultural_bridge",
            "Cultural Bridge",
            (("culturalCompetence", 5), ("emotionalIntelligence", 4), ("communication", 5)),
        ),
        SkillCombo(
            "financial_mentor",
            "Financial Mentor",
            (("financialLiteracy", 5), ("mentorship", 4), ("emotionalIntelligence", 4)),
        ),
        SkillCombo(
            "adaptive_creator",
            "Adaptive Creator",
            (("contentCreation", 4), ("adaptability", 5), ("creativity", 4)),
        ),
        SkillCombo(
            "holistic_systems_thinker",
            "Holistic Systems Thinker",
            (
                ("systemsThinking", 5),
                ("emotionalIntelligence", 4),
                ("ethicalReasoning", 4),
                ("technicalLiteracy", 4),
            ),
        ),
        SkillCombo(
            "birmingham_champion",
            "Birmingham Champion",
            (
                ("culturalCompetence", 5),
                ("leadership", 4),
                ("financialLiteracy", 4),
                ("collaboration", 5),
            ),
        ),
    )
}


def get_skill_combo(combo_id: str) -> Optional[SkillCombo]:
    return SKILL_COMBOS.get(combo_id)
