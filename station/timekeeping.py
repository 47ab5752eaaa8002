"""Session timekeeping utilities for the station engine."""

from __future__ import annotations

SESSION_LENGTH_SECONDS = 10 * 60


def normalize_timestamp(value: object) -> float:
    try:
        stamp = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0.0
    if stamp != stamp:  # NaN
        return 0.0
    return max(stamp, 0.0)


def sessions_elapsed(
    last_change_at: object,
    now: object,
    *,
    session_length: float = SESSION_LENGTH_SECONDS,
) -> int:
    session_length = max(float(session_length), 1.0)
    elapsed = normalize_timestamp(now) - normalize_timestamp(last_change_at)
    if elapsed <= 0:
        return 0
    return int(elapsed // session_length)


def is_due(scheduled_time: object, now: object) -> bool:
    return normalize_timestamp(scheduled_time) <= normalize_timestamp(now)
