"""
seedkeeper.engine.events — PresenceEvent
=========================================

The presence feed's event envelope.  Every join, leave, or heartbeat the
feed pushes is normalized into a :class:`PresenceEvent` before the session
service routes it.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

__all__ = ["PresenceEvent", "PresenceKind"]


class PresenceKind(enum.StrEnum):
    JOIN = "join"
    LEAVE = "leave"
    HEARTBEAT = "heartbeat"  # periodic "still connected" tick


@dataclass(frozen=True, slots=True)
class PresenceEvent:
    """One observation of a player on a game server.

    ``timestamp_minutes`` is the feed's clock in whole epoch minutes.  All
    playtime arithmetic is done on this clock, never on wall time.
    """

    steam_id: str
    server_id: str
    kind: PresenceKind
    timestamp_minutes: int
    username: str | None = None
