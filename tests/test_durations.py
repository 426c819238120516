"""
tests/test_durations.py — Reward Duration Units
================================================
"""

from __future__ import annotations

import pytest

from seedkeeper.engine.durations import (
    DurationUnit,
    format_reward_duration,
    from_minutes,
    to_minutes,
)


class TestToMinutes:
    def test_unit_sizes(self):
        assert to_minutes(1, DurationUnit.HOURS) == 60
        assert to_minutes(1, DurationUnit.DAYS) == 1440
        assert to_minutes(1, DurationUnit.MONTHS) == 43200

    @pytest.mark.parametrize("value", [1, 2, 7, 12, 99])
    def test_units_are_consistent(self, value):
        """A day is always 24 hours and a month always 30 days."""
        assert to_minutes(value, DurationUnit.DAYS) == 24 * to_minutes(value, DurationUnit.HOURS)
        assert to_minutes(value, DurationUnit.MONTHS) == 30 * to_minutes(value, DurationUnit.DAYS)

    def test_accepts_plain_string_unit(self):
        assert to_minutes(3, "days") == 3 * 1440

    def test_unknown_unit_raises(self):
        with pytest.raises(ValueError):
            to_minutes(1, "weeks")


class TestFromMinutes:
    def test_inverse_of_to_minutes(self):
        assert from_minutes(to_minutes(5, "days"), "days") == 5

    def test_fractional(self):
        assert from_minutes(360, DurationUnit.DAYS) == 0.25


class TestFormatRewardDuration:
    @pytest.mark.parametrize(
        ("minutes", "label"),
        [
            (720, "12h"),
            (90, "1.5h"),
            (1440, "1d"),
            (2520, "1.8d"),
            (2 * 1440, "2d"),
            (43200, "1mo"),
            (45 * 1440, "1.5mo"),
        ],
    )
    def test_labels(self, minutes, label):
        assert format_reward_duration(minutes) == label

    def test_zero(self):
        assert format_reward_duration(0) == "0h"
