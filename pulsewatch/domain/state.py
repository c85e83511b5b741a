from __future__ import annotations

from enum import Enum


# Age thresholds are part of the client contract; changing them shifts every alert.
WARN_AFTER_MS = 60_000
DOWN_AFTER_MS = 300_000


class HealthState(str, Enum):
    UNKNOWN = "UNKNOWN"
    OK = "OK"
    WARN = "WARN"
    DOWN = "DOWN"


def classify(age_ms: int | float) -> HealthState:
    """Map elapsed time since the last ping to a health state.

    Intervals are half-open: exactly 60000ms is WARN and exactly 300000ms is
    DOWN. Negative ages (a ping stamped after the read clock) count as OK.
    """
    if age_ms < WARN_AFTER_MS:
        return HealthState.OK
    if age_ms < DOWN_AFTER_MS:
        return HealthState.WARN
    return HealthState.DOWN


def parse_state(value: str | None) -> HealthState | None:
    # Stored states are plain strings; unreadable values behave like a missing state.
    if not value:
        return None
    try:
        return HealthState(str(value).upper())
    except ValueError:
        return None
