"""Logging setup for the command-line tools.

Library modules only create loggers with ``logging.getLogger(__name__)``;
handlers are installed here, by the entry points, and nowhere else.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict

_HANDLER_NAME = "station-cli"
_EXTRA_KEYS = ("graph_key", "node_id", "kind", "expansions")


class JSONFormatter(logging.Formatter):
    """Emits each record as a single-line JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in _EXTRA_KEYS:
            val = getattr(record, key, None)
            if val is not None:
                entry[key] = val
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def configure_logging(level: int | str = "INFO", json_output: bool = False) -> logging.Handler:
    """Install a single stderr handler on the root logger.

    Calling it again replaces the handler installed by the previous call.
    """
    root = logging.getLogger()
    for handler in list(root.handlers):
        if handler.get_name() == _HANDLER_NAME:
            root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.set_name(_HANDLER_NAME)
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))

    root.addHandler(handler)
    root.setLevel(level.upper() if isinstance(level, str) else level)
    return handler
