"""
seedkeeper.services.reward_service — Exactly-Once Reward Grants
================================================================

Turns a participant's progression facts into whitelist time.  Called by
the session service under the session lock, inside the caller's
transaction.

Each (participant, track) pair is paid at most once:

1. The ``<track>_rewarded_at`` timestamp is checked under the session lock.
2. The ``seeding_reward_grants`` unique constraint on
   ``(participant_id, track)`` backs it up at the database.

Order of a grant: whitelist call first, then the ledger writes.  If
anything later in the transaction fails, the whole transaction rolls
back; :func:`compensating` retracts grants issued by a backend that could
not roll back with it.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime

from sqlalchemy.orm import Session

from seedkeeper.constants import source_tag
from seedkeeper.database.models import (
    ParticipantType,
    RewardGrant,
    RewardTrigger,
    SeedingParticipant,
    SeedingSession,
)
from seedkeeper.engine.state import earned_triggers
from seedkeeper.errors import DependencyFailure
from seedkeeper.services.whitelist_service import WhitelistService

logger = logging.getLogger(__name__)

COMPENSATION_REASON = "seeding transaction rolled back"


@contextmanager
def compensating(whitelist: WhitelistService, db: Session) -> Iterator[list[str]]:
    """Collect whitelist record ids issued in a block; retract them if the
    block raises.

    Only grants from a backend that does not share the DB transaction are
    collected (ledger rows vanish with the rollback on their own).  A failed
    retraction is logged and the original error still propagates.
    """
    issued: list[str] = []
    try:
        yield issued
    except Exception:
        for record_id in reversed(issued):
            try:
                whitelist.retract(db, record_id, reason=COMPENSATION_REASON)
                logger.warning("Compensated whitelist grant %s after rollback", record_id)
            except DependencyFailure:
                logger.exception(
                    "Could not retract whitelist grant %s; manual cleanup needed",
                    record_id,
                )
        raise


def evaluate(
    db: Session,
    session_row: SeedingSession,
    participant: SeedingParticipant,
    trigger: RewardTrigger,
    whitelist: WhitelistService,
    issued: list[str] | None = None,
    *,
    now: datetime | None = None,
) -> RewardGrant | None:
    """Grant *trigger* to *participant* if it is configured and unpaid.

    Returns the new :class:`RewardGrant`, or ``None`` when the guards say
    there is nothing to pay.  ``participant.id`` must already be flushed.

    Raises
    ------
    DependencyFailure
        The whitelist service refused or was unreachable.  Nothing was
        recorded for this track; the caller's transaction must roll back.
    """
    track = session_row.rewards.track(trigger)
    if track is None or participant.rewarded_at(trigger) is not None:
        return None
    if (
        trigger == RewardTrigger.SWITCH
        and participant.participant_type != ParticipantType.SWITCHER
    ):
        return None

    minutes = track.minutes
    metadata = {
        "seeding_session_id": session_row.id,
        "participant_id": participant.id,
        "granted_automatically": True,
    }
    if session_row.test_mode:
        metadata["test_mode"] = True

    try:
        record_id = whitelist.grant(
            db,
            steam_id=participant.steam_id,
            username=participant.username,
            minutes=minutes,
            source_tag=source_tag(trigger),
            metadata=metadata,
        )
    except DependencyFailure:
        logger.error(
            "Whitelist grant failed: session=%s steam=%s track=%s",
            session_row.id, participant.steam_id, trigger.value,
            exc_info=True,
        )
        raise
    if issued is not None and not whitelist.shares_transaction:
        issued.append(record_id)

    now = now or datetime.now(UTC)
    participant.set_rewarded_at(trigger, now)
    participant.total_reward_minutes = (participant.total_reward_minutes or 0) + minutes
    session_row.rewards_granted_count = (session_row.rewards_granted_count or 0) + 1

    grant = RewardGrant(
        session_id=session_row.id,
        participant_id=participant.id,
        steam_id=participant.steam_id,
        track=trigger.value,
        minutes=minutes,
        whitelist_grant_id=record_id,
        test_mode=session_row.test_mode,
        granted_at=now,
    )
    db.add(grant)
    db.flush()

    logger.info(
        "Granted %s reward (%d min) to %s in session %s%s",
        trigger.value, minutes, participant.steam_id, session_row.id,
        " [test]" if session_row.test_mode else "",
    )
    return grant


def settle(
    db: Session,
    session_row: SeedingSession,
    participant: SeedingParticipant,
    whitelist: WhitelistService,
    issued: list[str] | None = None,
    *,
    now: datetime | None = None,
) -> list[RewardGrant]:
    """Pay every track whose progression fact is set and not yet paid."""
    grants = []
    for trigger in earned_triggers(participant):
        grant = evaluate(db, session_row, participant, trigger, whitelist, issued, now=now)
        if grant is not None:
            grants.append(grant)
    return grants
