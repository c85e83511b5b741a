from __future__ import annotations

import pytest

from pulsewatch.domain.state import DOWN_AFTER_MS, WARN_AFTER_MS, HealthState, classify, parse_state


@pytest.mark.parametrize(
    ("age_ms", "expected"),
    [
        (0, HealthState.OK),
        (59_999, HealthState.OK),
        (60_000, HealthState.WARN),
        (299_999, HealthState.WARN),
        (300_000, HealthState.DOWN),
        (86_400_000, HealthState.DOWN),
    ],
)
def test_classify_boundaries_are_half_open(age_ms: int, expected: HealthState) -> None:
    assert classify(age_ms) == expected


def test_negative_age_counts_as_ok() -> None:
    assert classify(-5_000) == HealthState.OK


def test_thresholds_match_contract() -> None:
    assert WARN_AFTER_MS == 60_000
    assert DOWN_AFTER_MS == 300_000


def test_parse_state_tolerates_unreadable_values() -> None:
    assert parse_state("warn") == HealthState.WARN
    assert parse_state("DOWN") == HealthState.DOWN
    assert parse_state(None) is None
    assert parse_state("") is None
    assert parse_state("sideways") is None
