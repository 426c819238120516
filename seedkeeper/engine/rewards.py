"""
seedkeeper.engine.rewards — Reward Track Configuration
=======================================================

A seeding session pays out on up to three independent tracks:

- **switch**     — a player on a source server moves to the target
- **playtime**   — accumulated minutes on target reach a threshold
- **completion** — on target when the session closes

Each track is optional; at least one must be set.  Tracks stack
additively and each is granted at most once per participant.

The config is an immutable value.  :meth:`RewardsConfig.validate` is the
only place the rules are checked; the API, the bot, and the session
service all go through it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from seedkeeper.engine.durations import DurationUnit, to_minutes
from seedkeeper.errors import ValidationError

__all__ = ["PlaytimeTrack", "RewardTrack", "RewardsConfig", "TRACK_NAMES"]

TRACK_NAMES = ("switch", "playtime", "completion")


def _unit(raw: Any, field_name: str) -> DurationUnit:
    try:
        return DurationUnit(raw)
    except ValueError:
        allowed = ", ".join(u.value for u in DurationUnit)
        raise ValidationError(
            f"{field_name} must be one of {allowed} (got {raw!r})"
        ) from None


@dataclass(frozen=True, slots=True)
class RewardTrack:
    value: int
    unit: DurationUnit

    def __post_init__(self) -> None:
        # Plain strings like "days" become DurationUnit; frozen, so bypass setattr
        object.__setattr__(self, "unit", _unit(self.unit, "unit"))

    @property
    def minutes(self) -> int:
        return to_minutes(self.value, self.unit)

    @property
    def label(self) -> str:
        """Human form, e.g. ``"2 days"``."""
        return f"{self.value} {self.unit.value}"

    def to_dict(self) -> dict[str, Any]:
        return {"value": self.value, "unit": self.unit.value}


@dataclass(frozen=True, slots=True)
class PlaytimeTrack(RewardTrack):
    threshold_minutes: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "value": self.value,
            "unit": self.unit.value,
            "threshold_minutes": self.threshold_minutes,
        }


def _positive_int(raw: Any, field_name: str) -> int:
    # bool is an int subclass; reject it explicitly
    if isinstance(raw, bool) or not isinstance(raw, int) or raw <= 0:
        raise ValidationError(f"{field_name} must be a positive integer (got {raw!r})")
    return raw


@dataclass(frozen=True, slots=True)
class RewardsConfig:
    """Up to three reward tracks.  ``None`` disables a track."""

    switch: RewardTrack | None = None
    playtime: PlaytimeTrack | None = None
    completion: RewardTrack | None = None

    # -- Validation -------------------------------------------------------

    def validate(self) -> RewardsConfig:
        """Raise :class:`ValidationError` unless the config is usable.

        Returns ``self`` so callers can chain ``RewardsConfig(...).validate()``.
        """
        if self.switch is None and self.playtime is None and self.completion is None:
            raise ValidationError("At least one reward track must be configured")
        for name in TRACK_NAMES:
            track = getattr(self, name)
            if track is None:
                continue
            _positive_int(track.value, f"{name}.value")
            _unit(track.unit, f"{name}.unit")
        if self.playtime is not None:
            _positive_int(self.playtime.threshold_minutes, "playtime.threshold_minutes")
        return self

    # -- Lookup -----------------------------------------------------------

    def track(self, trigger: str) -> RewardTrack | None:
        """The track for *trigger* (a ``RewardTrigger`` or its string value)."""
        if str(trigger) not in TRACK_NAMES:
            raise KeyError(trigger)
        return getattr(self, str(trigger))

    def minutes_for(self, trigger: str) -> int:
        """Minutes granted by *trigger*, or 0 when the track is disabled."""
        track = self.track(trigger)
        return track.minutes if track is not None else 0

    @property
    def total_possible_minutes(self) -> int:
        """What one participant earns if every configured track fires."""
        return sum(self.minutes_for(name) for name in TRACK_NAMES)

    # -- Serialization ----------------------------------------------------

    @classmethod
    def from_dict(cls, raw: dict[str, Any] | None) -> RewardsConfig:
        """Build and validate from an API/bot payload.

        Expected shape::

            {"switch": {"value": 1, "unit": "days"},
             "playtime": {"value": 12, "unit": "hours", "threshold_minutes": 30},
             "completion": None}
        """
        raw = raw or {}
        unknown = set(raw) - set(TRACK_NAMES)
        if unknown:
            raise ValidationError(f"Unknown reward track(s): {', '.join(sorted(unknown))}")

        def _simple(name: str) -> RewardTrack | None:
            body = raw.get(name)
            if body is None:
                return None
            if not isinstance(body, dict):
                raise ValidationError(f"{name} must be an object with value and unit")
            return RewardTrack(
                _positive_int(body.get("value"), f"{name}.value"),
                _unit(body.get("unit"), f"{name}.unit"),
            )

        playtime = None
        body = raw.get("playtime")
        if body is not None:
            if not isinstance(body, dict):
                raise ValidationError("playtime must be an object with value, unit and threshold_minutes")
            playtime = PlaytimeTrack(
                _positive_int(body.get("value"), "playtime.value"),
                _unit(body.get("unit"), "playtime.unit"),
                _positive_int(body.get("threshold_minutes"), "playtime.threshold_minutes"),
            )

        return cls(
            switch=_simple("switch"),
            playtime=playtime,
            completion=_simple("completion"),
        ).validate()

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for name in TRACK_NAMES:
            track = getattr(self, name)
            out[name] = track.to_dict() if track is not None else None
        return out
