"""
Tests for attempt scoring.
"""

import pytest

from teachback.core.lifecycle import attempt_score


@pytest.mark.parametrize("coverage,accuracy,expected", [
    (0.125, 0.125, 13),
    (0.125, 0.625, 33),
    (2 / 3, 1.0, 80),
    (1.0, 1.0, 100),
    (0.0, 0.0, 0),
])
def test_halves_round_up(coverage, accuracy, expected):
    assert attempt_score(coverage, accuracy) == expected


def test_score_is_clamped():
    assert attempt_score(1.5, 1.5) == 100
    assert attempt_score(-1.0, 0.0) == 0
