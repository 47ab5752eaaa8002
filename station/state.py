"""Game state model for the station narrative engine.

Plain data records only. Every record that the engine hands back to a caller is
a fresh copy; the mutation reducer in :mod:`station.mutations` clones before it
touches anything, so a state a caller holds stays valid after a mutation call.

``StateChange`` and ``StateCondition`` model every optional member as ``None``
when absent. Authored content may use the camelCase keys of the content files
(``trustChange``, ``hasKnowledgeFlags``) or snake_case keys; ``from_dict``
accepts both.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Type

SAVE_VERSION = "1.0.0"
MIN_TRUST = 0
MAX_TRUST = 10
DEFAULT_NODE_ID = "station_arrival"


class Pattern(str, Enum):
    ANALYTICAL = "analytical"
    HELPING = "helping"
    BUILDING = "building"
    PATIENCE = "patience"
    EXPLORING = "exploring"


PATTERN_ORDER: Tuple[Pattern, ...] = tuple(Pattern)


class RelationshipStatus(str, Enum):
    STRANGER = "stranger"
    ACQUAINTANCE = "acquaintance"
    CONFIDANT = "confidant"


class LetterSender(str, Enum):
    UNKNOWN = "unknown"
    INVESTIGATING = "investigating"
    TRUSTED = "trusted"
    REJECTED = "rejected"
    SAMUEL_KNOWS = "samuel_knows"
    SELF_REVEALED = "self_revealed"


class PlatformSeven(str, Enum):
    STABLE = "stable"
    FLICKERING = "flickering"
    ERROR = "error"
    DENIED = "denied"
    REVEALED = "revealed"


class SamuelsPast(str, Enum):
    HIDDEN = "hidden"
    HINTED = "hinted"
    REVEALED = "revealed"


class StationNature(str, Enum):
    UNKNOWN = "unknown"
    SENSING = "sensing"
    UNDERSTANDING = "understanding"
    MASTERED = "mastered"


MYSTERY_FIELDS: Mapping[str, Type[Enum]] = {
    "letter_sender": LetterSender,
    "platform_seven": PlatformSeven,
    "samuels_past": SamuelsPast,
    "station_nature": StationNature,
}

MYSTERY_ALIASES = {
    "letterSender": "letter_sender",
    "platformSeven": "platform_seven",
    "samuelsPast": "samuels_past",
    "stationNature": "station_nature",
}


def parse_pattern(value: Any) -> Optional[Pattern]:
    if isinstance(value, Pattern):
        return value
    try:
        return Pattern(value)
    except ValueError:
        return None


def parse_relationship(value: Any) -> Optional[RelationshipStatus]:
    if isinstance(value, RelationshipStatus):
        return value
    try:
        return RelationshipStatus(value)
    except ValueError:
        return None


def parse_mystery(field_name: str, value: Any) -> Optional[Enum]:
    """Return the enum member for a mystery field, or None when either is unknown."""
    field_name = MYSTERY_ALIASES.get(field_name, field_name)
    enum_type = MYSTERY_FIELDS.get(field_name)
    if enum_type is None:
        return None
    try:
        return enum_type(value)
    except ValueError:
        return None


def _pick(data: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return None


def _str_tuple(value: Any) -> Optional[Tuple[str, ...]]:
    if value is None:
        return None
    if isinstance(value, str):
        return (value,)
    return tuple(str(item) for item in value)


def _whole_number(value: Any, name: str) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
        raise ValueError(f"{name} must be a whole number, got {value!r}")
    return int(value)


# ---------- Records ----------


@dataclass
class PlayerPatterns:
    analytical: int = 0
    helping: int = 0
    building: int = 0
    patience: int = 0
    exploring: int = 0

    def get(self, pattern: Pattern | str) -> int:
        return int(getattr(self, Pattern(pattern).value))

    def set(self, pattern: Pattern | str, value: int) -> None:
        setattr(self, Pattern(pattern).value, max(int(value), 0))

    def as_dict(self) -> Dict[str, int]:
        return {pattern.value: self.get(pattern) for pattern in PATTERN_ORDER}

    def copy(self) -> "PlayerPatterns":
        return PlayerPatterns(**self.as_dict())

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "PlayerPatterns":
        patterns = cls()
        if not isinstance(data, Mapping):
            return patterns
        for pattern in PATTERN_ORDER:
            try:
                patterns.set(pattern, int(data.get(pattern.value, 0)))
            except (TypeError, ValueError):
                continue
        return patterns


@dataclass
class TrustMomentum:
    momentum: float = 0.0
    consecutive_positive: int = 0
    consecutive_negative: int = 0
    last_change_at: float = 0.0

    def copy(self) -> "TrustMomentum":
        return TrustMomentum(
            momentum=self.momentum,
            consecutive_positive=self.consecutive_positive,
            consecutive_negative=self.consecutive_negative,
            last_change_at=self.last_change_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "momentum": self.momentum,
            "consecutive_positive": self.consecutive_positive,
            "consecutive_negative": self.consecutive_negative,
            "last_change_at": self.last_change_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TrustMomentum":
        return cls(
            momentum=max(-1.0, min(1.0, float(data.get("momentum", 0.0)))),
            consecutive_positive=max(int(data.get("consecutive_positive", 0)), 0),
            consecutive_negative=max(int(data.get("consecutive_negative", 0)), 0),
            last_change_at=float(data.get("last_change_at", 0.0)),
        )


@dataclass
class CharacterState:
    character_id: str
    trust: int = MIN_TRUST
    relationship_status: RelationshipStatus = RelationshipStatus.STRANGER
    knowledge_flags: set = field(default_factory=set)
    trust_momentum: Optional[TrustMomentum] = None
    conversation_history: List[str] = field(default_factory=list)

    def copy(self) -> "CharacterState":
        return CharacterState(
            character_id=self.character_id,
            trust=self.trust,
            relationship_status=self.relationship_status,
            knowledge_flags=set(self.knowledge_flags),
            trust_momentum=self.trust_momentum.copy() if self.trust_momentum else None,
            conversation_history=list(self.conversation_history),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "character_id": self.character_id,
            "trust": self.trust,
            "relationship_status": self.relationship_status.value,
            "knowledge_flags": sorted(self.knowledge_flags),
            "trust_momentum": self.trust_momentum.to_dict() if self.trust_momentum else None,
            "conversation_history": list(self.conversation_history),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CharacterState":
        momentum = data.get("trust_momentum")
        try:
            trust = int(data.get("trust", MIN_TRUST))
        except (TypeError, ValueError):
            trust = MIN_TRUST
        return cls(
            character_id=str(data["character_id"]),
            trust=max(MIN_TRUST, min(MAX_TRUST, trust)),
            relationship_status=parse_relationship(data.get("relationship_status"))
            or RelationshipStatus.STRANGER,
            knowledge_flags=set(data.get("knowledge_flags") or []),
            trust_momentum=TrustMomentum.from_dict(momentum) if isinstance(momentum, Mapping) else None,
            conversation_history=list(data.get("conversation_history") or []),
        )


@dataclass
class Mysteries:
    letter_sender: LetterSender = LetterSender.UNKNOWN
    platform_seven: PlatformSeven = PlatformSeven.FLICKERING
    samuels_past: SamuelsPast = SamuelsPast.HIDDEN
    station_nature: StationNature = StationNature.UNKNOWN

    def get(self, field_name: str) -> Enum:
        return getattr(self, MYSTERY_ALIASES.get(field_name, field_name))

    def as_dict(self) -> Dict[str, str]:
        return {name: self.get(name).value for name in MYSTERY_FIELDS}

    def copy(self) -> "Mysteries":
        return Mysteries(
            letter_sender=self.letter_sender,
            platform_seven=self.platform_seven,
            samuels_past=self.samuels_past,
            station_nature=self.station_nature,
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "Mysteries":
        mysteries = cls()
        if not isinstance(data, Mapping):
            return mysteries
        for key, value in data.items():
            parsed = parse_mystery(key, value)
            if parsed is not None:
                setattr(mysteries, MYSTERY_ALIASES.get(key, key), parsed)
        return mysteries


@dataclass
class PendingCheckIn:
    character_id: str
    scheduled_time: float
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "character_id": self.character_id,
            "scheduled_time": self.scheduled_time,
            "reason": self.reason,
        }


@dataclass
class ActiveThought:
    id: str
    is_internalized: bool = False


@dataclass
class GameState:
    """The complete save-point for one player."""

    player_id: str
    characters: Dict[str, CharacterState] = field(default_factory=dict)
    global_flags: set = field(default_factory=set)
    patterns: PlayerPatterns = field(default_factory=PlayerPatterns)
    current_node_id: str = DEFAULT_NODE_ID
    mysteries: Mysteries = field(default_factory=Mysteries)
    skill_levels: Dict[str, int] = field(default_factory=dict)
    pending_check_ins: Dict[str, List[PendingCheckIn]] = field(default_factory=dict)
    thoughts: List[ActiveThought] = field(default_factory=list)
    save_version: str = SAVE_VERSION

    def copy(self) -> "GameState":
        return GameState(
            player_id=self.player_id,
            characters={cid: char.copy() for cid, char in self.characters.items()},
            global_flags=set(self.global_flags),
            patterns=self.patterns.copy(),
            current_node_id=self.current_node_id,
            mysteries=self.mysteries.copy(),
            skill_levels=dict(self.skill_levels),
            pending_check_ins={
                cid: [PendingCheckIn(c.character_id, c.scheduled_time, c.reason) for c in queue]
                for cid, queue in self.pending_check_ins.items()
            },
            thoughts=[ActiveThought(t.id, t.is_internalized) for t in self.thoughts],
            save_version=self.save_version,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "save_version": self.save_version,
            "player_id": self.player_id,
            "characters": [self.characters[cid].to_dict() for cid in sorted(self.characters)],
            "global_flags": sorted(self.global_flags),
            "patterns": self.patterns.as_dict(),
            "current_node_id": self.current_node_id,
            "mysteries": self.mysteries.as_dict(),
            "skill_levels": dict(sorted(self.skill_levels.items())),
            "pending_check_ins": {
                cid: [entry.to_dict() for entry in queue]
                for cid, queue in sorted(self.pending_check_ins.items())
            },
            "thoughts": [
                {"id": thought.id, "is_internalized": thought.is_internalized}
                for thought in self.thoughts
            ],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "GameState":
        characters = {}
        for entry in data.get("characters") or []:
            if isinstance(entry, Mapping) and "character_id" in entry:
                char = CharacterState.from_dict(entry)
                characters[char.character_id] = char
        pending: Dict[str, List[PendingCheckIn]] = {}
        raw_pending = data.get("pending_check_ins") or {}
        if isinstance(raw_pending, Mapping):
            for cid, queue in raw_pending.items():
                pending[cid] = [
                    PendingCheckIn(
                        character_id=str(item.get("character_id", cid)),
                        scheduled_time=float(item.get("scheduled_time", 0.0)),
                        reason=str(item.get("reason", "")),
                    )
                    for item in queue
                    if isinstance(item, Mapping)
                ]
        skill_levels = {}
        for skill, level in (data.get("skill_levels") or {}).items():
            try:
                skill_levels[str(skill)] = int(level)
            except (TypeError, ValueError):
                continue
        return cls(
            player_id=str(data.get("player_id", "")),
            characters=characters,
            global_flags=set(data.get("global_flags") or []),
            patterns=PlayerPatterns.from_dict(data.get("patterns")),
            current_node_id=str(data.get("current_node_id") or DEFAULT_NODE_ID),
            mysteries=Mysteries.from_dict(data.get("mysteries")),
            skill_levels=skill_levels,
            pending_check_ins=pending,
            thoughts=[
                ActiveThought(str(t.get("id")), bool(t.get("is_internalized", False)))
                for t in data.get("thoughts") or []
                if isinstance(t, Mapping) and t.get("id")
            ],
            save_version=str(data.get("save_version") or SAVE_VERSION),
        )


def new_character_state(character_id: str) -> CharacterState:
    return CharacterState(character_id=character_id)


def new_game_state(
    player_id: str,
    character_ids: Iterable[str],
    *,
    current_node_id: str = DEFAULT_NODE_ID,
) -> GameState:
    return GameState(
        player_id=player_id,
        characters={cid: new_character_state(cid) for cid in character_ids},
        current_node_id=current_node_id,
    )


# ---------- Declarative deltas and predicates ----------


@dataclass(frozen=True)
class Range:
    min: Optional[int] = None
    max: Optional[int] = None

    def contains(self, value: int) -> bool:
        if self.min is not None and value < self.min:
            return False
        if self.max is not None and value > self.max:
            return False
        return True

    def to_dict(self) -> Dict[str, int]:
        out = {}
        if self.min is not None:
            out["min"] = self.min
        if self.max is not None:
            out["max"] = self.max
        return out

    @classmethod
    def from_dict(cls, data: Any) -> "Range":
        if not isinstance(data, Mapping):
            return cls()
        low = data.get("min")
        high = data.get("max")
        return cls(
            min=int(low) if low is not None else None,
            max=int(high) if high is not None else None,
        )


@dataclass(frozen=True)
class StateChange:
    add_global_flags: Optional[Tuple[str, ...]] = None
    remove_global_flags: Optional[Tuple[str, ...]] = None
    pattern_changes: Optional[Mapping[str, int]] = None
    thought_id: Optional[str] = None
    internalize_thought: bool = False
    character_id: Optional[str] = None
    trust_change: Optional[int] = None
    set_relationship_status: Optional[str] = None
    add_knowledge_flags: Optional[Tuple[str, ...]] = None
    remove_knowledge_flags: Optional[Tuple[str, ...]] = None
    mystery_changes: Optional[Mapping[str, str]] = None
    choice_pattern: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for name in self.__dataclass_fields__:
            value = getattr(self, name)
            if value is None or (name == "internalize_thought" and not value):
                continue
            if isinstance(value, tuple):
                value = list(value)
            elif isinstance(value, Mapping):
                value = {str(getattr(k, "value", k)): getattr(v, "value", v) for k, v in value.items()}
            elif isinstance(value, Enum):
                value = value.value
            out[name] = value
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "StateChange":
        """Build a change from authored content without validating names.

        Unknown pattern keys, character IDs and mystery values are kept as-is so
        that :func:`station.mutations.sanitize_state_change` can report them.
        """
        trust = _pick(data, "trust_change", "trustChange")
        patterns = _pick(data, "pattern_changes", "patternChanges")
        mysteries = _pick(data, "mystery_changes", "mysteries")
        thought_id = _pick(data, "thought_id", "thoughtId")
        character_id = _pick(data, "character_id", "characterId")
        relationship = _pick(data, "set_relationship_status", "setRelationshipStatus")
        choice_pattern = _pick(data, "choice_pattern", "choicePattern")
        return cls(
            add_global_flags=_str_tuple(_pick(data, "add_global_flags", "addGlobalFlags")),
            remove_global_flags=_str_tuple(_pick(data, "remove_global_flags", "removeGlobalFlags")),
            pattern_changes=dict(patterns) if isinstance(patterns, Mapping) else None,
            thought_id=str(thought_id) if thought_id is not None else None,
            internalize_thought=bool(_pick(data, "internalize_thought", "internalizeThought")),
            character_id=str(character_id) if character_id is not None else None,
            trust_change=_whole_number(trust, "trust_change"),
            set_relationship_status=str(relationship) if relationship is not None else None,
            add_knowledge_flags=_str_tuple(_pick(data, "add_knowledge_flags", "addKnowledgeFlags")),
            remove_knowledge_flags=_str_tuple(
                _pick(data, "remove_knowledge_flags", "removeKnowledgeFlags")
            ),
            mystery_changes=dict(mysteries) if isinstance(mysteries, Mapping) else None,
            choice_pattern=str(choice_pattern) if choice_pattern is not None else None,
        )


@dataclass(frozen=True)
class StateCondition:
    trust: Optional[Range] = None
    relationship: Optional[Tuple[str, ...]] = None
    has_knowledge_flags: Optional[Tuple[str, ...]] = None
    lacks_knowledge_flags: Optional[Tuple[str, ...]] = None
    has_global_flags: Optional[Tuple[str, ...]] = None
    lacks_global_flags: Optional[Tuple[str, ...]] = None
    patterns: Optional[Mapping[str, Range]] = None
    mysteries: Optional[Mapping[str, str]] = None
    required_combos: Optional[Tuple[str, ...]] = None

    def is_empty(self) -> bool:
        return all(getattr(self, name) is None for name in self.__dataclass_fields__)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "StateCondition":
        trust = data.get("trust")
        patterns = data.get("patterns")
        mysteries = data.get("mysteries")
        return cls(
            trust=Range.from_dict(trust) if trust is not None else None,
            relationship=_str_tuple(data.get("relationship")),
            has_knowledge_flags=_str_tuple(_pick(data, "has_knowledge_flags", "hasKnowledgeFlags")),
            lacks_knowledge_flags=_str_tuple(
                _pick(data, "lacks_knowledge_flags", "lacksKnowledgeFlags")
            ),
            has_global_flags=_str_tuple(_pick(data, "has_global_flags", "hasGlobalFlags")),
            lacks_global_flags=_str_tuple(_pick(data, "lacks_global_flags", "lacksGlobalFlags")),
            patterns=(
                {str(name): Range.from_dict(rng) for name, rng in patterns.items()}
                if isinstance(patterns, Mapping)
                else None
            ),
            mysteries=(
                {MYSTERY_ALIASES.get(k, k): str(v) for k, v in mysteries.items()}
                if isinstance(mysteries, Mapping)
                else None
            ),
            required_combos=_str_tuple(_pick(data, "required_combos", "requiredCombos")),
        )
