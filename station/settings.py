"""Persistent exploration limits for the dialogue-graph simulator."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict

_BASE_DIR = Path(__file__).resolve().parent.parent
SETTINGS_PATH = _BASE_DIR / "sim_settings.json"

logger = logging.getLogger(__name__)

DEFAULT_MAX_STEPS_PER_PATH = 120
DEFAULT_MAX_EXPANSIONS = 6000
DEFAULT_MAX_STATES_PER_NODE = 40


@dataclass
class SimSettings:
    """Exploration caps; exceeding any of them truncates a run."""

    max_steps_per_path: int = DEFAULT_MAX_STEPS_PER_PATH
    max_expansions: int = DEFAULT_MAX_EXPANSIONS
    max_states_per_node: int = DEFAULT_MAX_STATES_PER_NODE

    def clamp(self) -> "SimSettings":
        self.max_steps_per_path = max(int(self.max_steps_per_path), 1)
        self.max_expansions = max(int(self.max_expansions), 1)
        self.max_states_per_node = max(int(self.max_states_per_node), 1)
        return self

    def copy(self) -> "SimSettings":
        return SimSettings.from_dict(self.to_dict())

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def with_overrides(self, **overrides: Any) -> "SimSettings":
        data = self.to_dict()
        data.update({key: value for key, value in overrides.items() if value is not None})
        return SimSettings.from_dict(data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any] | None) -> "SimSettings":
        if not isinstance(data, dict):
            return cls()

        def _as_int(key: str, default: int) -> int:
            try:
                return int(data.get(key, default))
            except (TypeError, ValueError):
                return default

        settings = cls(
            max_steps_per_path=_as_int("max_steps_per_path", DEFAULT_MAX_STEPS_PER_PATH),
            max_expansions=_as_int("max_expansions", DEFAULT_MAX_EXPANSIONS),
            max_states_per_node=_as_int("max_states_per_node", DEFAULT_MAX_STATES_PER_NODE),
        )
        return settings.clamp()


def load_settings(path: Path | str = SETTINGS_PATH) -> SimSettings:
    """Read limits from ``path``; a missing or unreadable file yields defaults."""
    path = Path(path)
    if not path.exists():
        return SimSettings()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        logger.warning("Ignoring unreadable simulator settings %s: %s", path, exc)
        return SimSettings()
    return SimSettings.from_dict(data)


def save_settings(settings: SimSettings, path: Path | str = SETTINGS_PATH) -> SimSettings:
    """Write clamped limits to ``path`` atomically and return what was written.

    A failed write is logged and leaves any existing file untouched.
    """
    path = Path(path)
    clamped = settings.copy()
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(clamped.to_dict(), handle, indent=2, sort_keys=True)
            handle.write("\n")
        os.replace(tmp_name, path)
    except OSError as exc:
        logger.error("Could not save simulator settings to %s: %s", path, exc)
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
    return clamped
