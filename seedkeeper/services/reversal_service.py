"""
seedkeeper.services.reversal_service — Reward Revocation & Reversal
====================================================================

Undo seeding rewards after a session has ended:

- :func:`revoke_participant_rewards` — one participant, every granted track
- :func:`reverse_session_rewards`    — every participant with a grant

Reversal is exact: each grant is retracted by the whitelist record id
stored on its ``seeding_reward_grants`` row, and the participant's total
drops by the minutes stored on that row.  Nothing is recomputed from the
session's current reward config.

Tracks are processed one at a time.  If the whitelist service refuses a
retraction, the tracks already retracted stay retracted (that progress is
committed), the failing track is left untouched, and
:class:`DependencyFailure` propagates.  Re-running finishes the job.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.orm import Session

from seedkeeper.database.models import (
    AuditAction,
    RewardGrant,
    RewardTrigger,
    SeedingParticipant,
    SeedingSession,
)
from seedkeeper.engine.locks import SESSION_LOCKS
from seedkeeper.errors import (
    DependencyFailure,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from seedkeeper.services.audit import _row_to_dict, log_action

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from seedkeeper.services.whitelist_service import WhitelistService

logger = logging.getLogger(__name__)


@dataclass
class RevokeResult:
    revoked_count: int = 0
    rewards_cleared: dict[str, int] = field(
        default_factory=lambda: {t.value: 0 for t in RewardTrigger}
    )
    minutes_revoked: int = 0
    message: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ReverseResult:
    revoked_count: int = 0
    participants_affected: int = 0
    minutes_revoked: int = 0
    message: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------
def _load_ended_session(db: Session, session_id: int) -> SeedingSession:
    row = db.scalar(
        select(SeedingSession).where(SeedingSession.id == session_id).with_for_update()
    )
    if row is None:
        raise NotFoundError(f"Seeding session {session_id} not found")
    if row.is_active:
        raise InvalidStateError("Cannot revoke rewards for an active session")
    return row


def _revoke_grants(
    db: Session,
    row: SeedingSession,
    p: SeedingParticipant,
    whitelist: WhitelistService,
    *,
    actor_id: str,
    reason: str,
    now: datetime,
    result: RevokeResult | ReverseResult,
) -> int:
    """Retract every live grant of *p* one by one, tallying into *result*.

    Returns the number of grants retracted for *p*.  *result* is updated
    per grant so a mid-way failure still reports what was done.
    """
    grants = db.scalars(
        select(RewardGrant)
        .where(
            RewardGrant.participant_id == p.id,
            RewardGrant.revoked_at.is_(None),
        )
        .order_by(RewardGrant.id)
    ).all()

    count = 0
    for grant in grants:
        whitelist.retract(db, grant.whitelist_grant_id, reason=reason)

        trigger = RewardTrigger(grant.track)
        p.set_rewarded_at(trigger, None)
        p.total_reward_minutes = max((p.total_reward_minutes or 0) - grant.minutes, 0)
        row.rewards_granted_count = max((row.rewards_granted_count or 0) - 1, 0)
        grant.revoked_at = now
        grant.revoked_by = str(actor_id)
        grant.revoke_reason = reason
        db.flush()

        count += 1
        result.revoked_count += 1
        result.minutes_revoked += grant.minutes
        if isinstance(result, RevokeResult):
            result.rewards_cleared[trigger.value] += 1
    return count


def _require_reason(reason: str | None) -> str:
    if reason is None or not reason.strip():
        raise ValidationError("A reason is required")
    return reason.strip()


# ---------------------------------------------------------------------------
# Per-participant revocation
# ---------------------------------------------------------------------------
def revoke_participant_rewards(
    engine: Engine,
    whitelist: WhitelistService,
    session_id: int,
    participant_id: int,
    *,
    actor_id: str,
    reason: str,
) -> RevokeResult:
    """Retract every reward one participant received in an ended session."""
    reason = _require_reason(reason)
    now = datetime.now(UTC)
    result = RevokeResult()

    with SESSION_LOCKS.hold(session_id), Session(engine, expire_on_commit=False) as db:
        row = _load_ended_session(db, session_id)
        p = db.get(SeedingParticipant, participant_id)
        if p is None or p.session_id != session_id:
            raise NotFoundError(
                f"Participant {participant_id} not found in session {session_id}"
            )

        before = _row_to_dict(p)
        try:
            _revoke_grants(
                db, row, p, whitelist,
                actor_id=actor_id, reason=reason, now=now, result=result,
            )
        except DependencyFailure:
            logger.error(
                "Revocation for participant %d stopped after %d grant(s)",
                participant_id, result.revoked_count, exc_info=True,
            )
            # Keep whatever was already retracted
            _audit_revoke(db, p, before, actor_id=actor_id, reason=reason, result=result)
            db.commit()
            raise
        _audit_revoke(db, p, before, actor_id=actor_id, reason=reason, result=result)
        db.commit()

    who = p.username or p.steam_id
    result.message = f"Revoked {result.revoked_count} whitelist entries for {who}"
    logger.info(
        "Revoked %d rewards for participant %d in session %d",
        result.revoked_count, participant_id, session_id,
    )
    return result


def _audit_revoke(
    db: Session,
    p: SeedingParticipant,
    before: dict | None,
    *,
    actor_id: str,
    reason: str,
    result: RevokeResult,
) -> None:
    if result.revoked_count == 0:
        return
    log_action(
        db,
        actor_id=actor_id,
        action_type=AuditAction.PARTICIPANT_REVOKED,
        target_table="seeding_participants",
        target_id=p.id,
        before=before,
        after=_row_to_dict(p) | {
            "revoked_count": result.revoked_count,
            "rewards_cleared": dict(result.rewards_cleared),
        },
        reason=reason,
    )


# ---------------------------------------------------------------------------
# Whole-session reversal
# ---------------------------------------------------------------------------
def _audit_reverse(
    db: Session,
    row: SeedingSession,
    before: dict | None,
    *,
    actor_id: str,
    reason: str,
    result: ReverseResult,
) -> None:
    db.flush()
    log_action(
        db,
        actor_id=actor_id,
        action_type=AuditAction.REWARDS_REVERSED,
        target_table="seeding_sessions",
        target_id=row.id,
        before=before,
        after=_row_to_dict(row) | {
            "revoked_count": result.revoked_count,
            "participants_affected": result.participants_affected,
        },
        reason=reason,
    )


def reverse_session_rewards(
    engine: Engine,
    whitelist: WhitelistService,
    session_id: int,
    *,
    actor_id: str,
    reason: str,
) -> ReverseResult:
    """Retract every reward granted in an ended session.

    Participants with nothing left to retract are skipped, so a second run
    reports zero and changes nothing.
    """
    reason = _require_reason(reason)
    now = datetime.now(UTC)
    result = ReverseResult()

    with SESSION_LOCKS.hold(session_id), Session(engine, expire_on_commit=False) as db:
        row = _load_ended_session(db, session_id)
        before = _row_to_dict(row)
        participants = db.scalars(
            select(SeedingParticipant)
            .where(SeedingParticipant.session_id == session_id)
            .order_by(SeedingParticipant.id)
        ).all()

        try:
            for p in participants:
                if not p.granted_triggers:
                    continue
                if _revoke_grants(
                    db, row, p, whitelist,
                    actor_id=actor_id, reason=reason, now=now, result=result,
                ):
                    result.participants_affected += 1
        except DependencyFailure:
            logger.error(
                "Reversal of session %d stopped after %d grant(s)",
                session_id, result.revoked_count, exc_info=True,
            )
            # Keep whatever was already retracted; reversed_at waits for a clean run
            if result.revoked_count:
                _audit_reverse(db, row, before, actor_id=actor_id, reason=reason, result=result)
            db.commit()
            raise

        first_run = row.reversed_at is None
        if first_run:
            row.reversed_at = now
            row.reversal_reason = reason
        if first_run or result.revoked_count:
            _audit_reverse(db, row, before, actor_id=actor_id, reason=reason, result=result)
        db.commit()

    result.message = (
        f"Revoked {result.revoked_count} whitelist entries, cleared rewards for "
        f"{result.participants_affected} participants"
    )
    logger.info("Reversed %d rewards for session %d: %s", result.revoked_count, session_id, reason)
    return result
