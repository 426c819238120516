"""
seedkeeper.engine.state — Participant State Machine
====================================================

Pure transitions on a :class:`SeedingParticipant` row.  No DB queries and
no whitelist calls: the session service loads the row, calls into here,
then asks the reward service to pay for whatever progression facts are set.

Status is never assigned directly.  It is derived from three write-once
facts (``switched_at``, ``playtime_met_at``, ``completed_at``) plus the
participant type, so it can only move forward::

    switcher:  on_source → switched → playtime_met → completed
    seeder:    seeder ─────────────→ playtime_met → completed
                    └─────────────────────────────→ completed

Presence timestamps are feed minutes.  Playtime only ever counts forward
from ``playtime_mark_minute``, which makes replays and out-of-order
heartbeats harmless.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime

from seedkeeper.database.models import (
    ParticipantStatus,
    ParticipantType,
    RewardTrigger,
    SeedingParticipant,
)
from seedkeeper.engine.events import PresenceEvent, PresenceKind
from seedkeeper.engine.rewards import RewardsConfig

logger = logging.getLogger(__name__)

__all__ = [
    "apply_presence",
    "completion_candidates",
    "completion_reward_due",
    "derive_status",
    "earned_triggers",
    "mark_completed",
    "new_participant",
    "sync_status",
]


# ---------------------------------------------------------------------------
# Status derivation
# ---------------------------------------------------------------------------
def derive_status(p: SeedingParticipant) -> ParticipantStatus:
    """The one function that decides a participant's status."""
    if p.completed_at is not None:
        return ParticipantStatus.COMPLETED
    if p.playtime_met_at is not None:
        return ParticipantStatus.PLAYTIME_MET
    if p.participant_type == ParticipantType.SEEDER:
        return ParticipantStatus.SEEDER
    if p.switched_at is not None:
        return ParticipantStatus.SWITCHED
    return ParticipantStatus.ON_SOURCE


def sync_status(p: SeedingParticipant) -> ParticipantStatus:
    status = derive_status(p)
    p.status = status.value
    return status


def earned_triggers(p: SeedingParticipant) -> list[RewardTrigger]:
    """Tracks whose progression fact is set.  Grant guards dedupe the rest."""
    earned = []
    if p.switched_at is not None and p.participant_type == ParticipantType.SWITCHER:
        earned.append(RewardTrigger.SWITCH)
    if p.playtime_met_at is not None:
        earned.append(RewardTrigger.PLAYTIME)
    if p.completed_at is not None:
        earned.append(RewardTrigger.COMPLETION)
    return earned


# ---------------------------------------------------------------------------
# First observation
# ---------------------------------------------------------------------------
def new_participant(
    session_id: int, target_server_id: str, event: PresenceEvent
) -> SeedingParticipant:
    """Build the row for a player seen for the first time in a session.

    Seen on the target first → seeder; seen on a source first → switcher.
    The type is fixed here and never revisited.
    """
    on_target = event.server_id == target_server_id
    p = SeedingParticipant(
        session_id=session_id,
        steam_id=event.steam_id,
        username=event.username,
        participant_type=(
            ParticipantType.SEEDER.value if on_target else ParticipantType.SWITCHER.value
        ),
        target_playtime_minutes=0,
        total_reward_minutes=0,
        is_on_target=False,
    )
    sync_status(p)
    return p


# ---------------------------------------------------------------------------
# Presence transitions
# ---------------------------------------------------------------------------
def _accrue(p: SeedingParticipant, minute: int) -> None:
    mark = p.playtime_mark_minute
    if mark is None or minute <= mark:
        return
    p.target_playtime_minutes = (p.target_playtime_minutes or 0) + (minute - mark)
    p.playtime_mark_minute = minute


def _enter_target(p: SeedingParticipant, minute: int, now: datetime) -> None:
    p.is_on_target = True
    p.target_join_minute = minute
    p.target_leave_minute = None
    p.playtime_mark_minute = minute
    if p.participant_type == ParticipantType.SWITCHER and p.switched_at is None:
        p.switched_at = now


def _on_target(p: SeedingParticipant, event: PresenceEvent, now: datetime) -> None:
    minute = event.timestamp_minutes

    if event.kind == PresenceKind.LEAVE:
        if not p.is_on_target:
            # Latest leave wins; joins at or before it are stale
            if p.target_leave_minute is None or minute > p.target_leave_minute:
                p.target_leave_minute = minute
            return
        if p.target_join_minute is not None and minute < p.target_join_minute:
            logger.debug("Stale leave for %s ignored (minute %d)", p.steam_id, minute)
            return
        _accrue(p, minute)
        p.is_on_target = False
        p.target_leave_minute = minute
        p.playtime_mark_minute = None
        return

    # join or heartbeat
    if p.is_on_target:
        _accrue(p, minute)
        return
    if p.target_leave_minute is not None and minute <= p.target_leave_minute:
        logger.debug("Stale join for %s ignored (minute %d)", p.steam_id, minute)
        return
    _enter_target(p, minute, now)


def _on_source(p: SeedingParticipant, event: PresenceEvent) -> None:
    minute = event.timestamp_minutes

    if event.kind == PresenceKind.LEAVE:
        if p.source_join_minute is not None and minute >= p.source_join_minute:
            p.source_leave_minute = minute
        return

    present = p.source_join_minute is not None and p.source_leave_minute is None
    if present and p.source_server_id == event.server_id:
        return  # duplicate join or heartbeat
    if p.source_join_minute is not None and minute < p.source_join_minute:
        return
    if p.source_leave_minute is not None and minute < p.source_leave_minute:
        return
    p.source_server_id = event.server_id
    p.source_join_minute = minute
    p.source_leave_minute = None


def _check_playtime(
    p: SeedingParticipant,
    rewards: RewardsConfig,
    now: datetime,
    *,
    seeders_earn_playtime: bool,
) -> None:
    if rewards.playtime is None or p.playtime_met_at is not None:
        return
    if p.participant_type == ParticipantType.SEEDER:
        if not seeders_earn_playtime:
            return
    elif p.switched_at is None:
        return
    if p.target_playtime_minutes >= rewards.playtime.threshold_minutes:
        p.playtime_met_at = now


def apply_presence(
    p: SeedingParticipant,
    event: PresenceEvent,
    *,
    target_server_id: str,
    rewards: RewardsConfig,
    now: datetime,
    seeders_earn_playtime: bool = False,
) -> ParticipantStatus:
    """Fold one presence event into *p* and return its (possibly new) status.

    Completion is not reached here; only :func:`mark_completed` at session
    close sets it.
    """
    if event.username:
        p.username = event.username

    if event.server_id == target_server_id:
        _on_target(p, event, now)
    else:
        _on_source(p, event)

    _check_playtime(p, rewards, now, seeders_earn_playtime=seeders_earn_playtime)
    return sync_status(p)


# ---------------------------------------------------------------------------
# Session close
# ---------------------------------------------------------------------------
def completion_reward_due(p: SeedingParticipant, rewards: RewardsConfig) -> bool:
    """Would closing the session right now pay *p* the completion reward?

    Shared by the real close and the close preview so the two can't drift.
    """
    return (
        rewards.completion is not None
        and p.is_on_target
        and p.completion_rewarded_at is None
        and derive_status(p) != ParticipantStatus.ON_SOURCE
    )


def completion_candidates(
    participants: Iterable[SeedingParticipant], rewards: RewardsConfig
) -> list[SeedingParticipant]:
    return [p for p in participants if completion_reward_due(p, rewards)]


def mark_completed(p: SeedingParticipant, now: datetime) -> bool:
    """Set ``completed_at`` if *p* is on target and eligible.  Returns True
    when the participant is (now) completed."""
    if p.completed_at is not None:
        return True
    if not p.is_on_target or derive_status(p) == ParticipantStatus.ON_SOURCE:
        return False
    p.completed_at = now
    sync_status(p)
    return True
