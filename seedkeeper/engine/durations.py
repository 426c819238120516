"""
seedkeeper.engine.durations — Reward Duration Units
====================================================

Rewards are configured as ``{value, unit}`` and granted as whole minutes of
whitelist time.  A month is always 30 days so that the same config yields
the same minutes no matter when it is evaluated.
"""

from __future__ import annotations

import enum

__all__ = [
    "DurationUnit",
    "MINUTES_PER_UNIT",
    "format_reward_duration",
    "from_minutes",
    "to_minutes",
]


class DurationUnit(enum.StrEnum):
    HOURS = "hours"
    DAYS = "days"
    MONTHS = "months"


MINUTES_PER_UNIT: dict[DurationUnit, int] = {
    DurationUnit.HOURS: 60,
    DurationUnit.DAYS: 60 * 24,
    DurationUnit.MONTHS: 60 * 24 * 30,
}

MINUTES_PER_DAY = MINUTES_PER_UNIT[DurationUnit.DAYS]


def to_minutes(value: int, unit: DurationUnit | str) -> int:
    """Convert a reward amount to whitelist minutes.

    No validation — callers pass values already checked by
    :meth:`RewardsConfig.validate`.
    """
    return value * MINUTES_PER_UNIT[DurationUnit(unit)]


def from_minutes(minutes: int, unit: DurationUnit | str) -> float:
    """Inverse of :func:`to_minutes`, for display only."""
    return minutes / MINUTES_PER_UNIT[DurationUnit(unit)]


def _trim(amount: float) -> str:
    # 2.0 → "2", 1.25 → "1.2"
    rounded = round(amount, 1)
    return str(int(rounded)) if rounded == int(rounded) else str(rounded)


def format_reward_duration(minutes: int) -> str:
    """Short label for a reward total: ``"12h"``, ``"2d"``, ``"1.5mo"``."""
    if minutes < MINUTES_PER_DAY:
        return f"{_trim(from_minutes(minutes, DurationUnit.HOURS))}h"
    days = from_minutes(minutes, DurationUnit.DAYS)
    if days < 30:
        return f"{_trim(days)}d"
    return f"{_trim(from_minutes(minutes, DurationUnit.MONTHS))}mo"
