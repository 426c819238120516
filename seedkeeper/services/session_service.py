"""
seedkeeper.services.session_service — Seeding Session Lifecycle
================================================================

Shared service module callable by both the bot and the API.  Owns:

- session creation (validation, one-active-per-target)
- routing presence events into every interested active session
- threshold auto-close, manual close, cancel
- player messages and server broadcasts, sent once the change commits
- read-side queries and counter recomputation

Every mutation of an existing session follows the same pattern:

  1. Take the in-process lock for the session id
  2. ``SELECT … FOR UPDATE`` the session row
  3. Apply state machine + reward engine changes
  4. Write audit_log (lifecycle changes only)
  5. Commit, or roll back everything (and compensate remote grants)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from seedkeeper.constants import (
    MAX_PLAYER_THRESHOLD,
    MIN_PLAYER_THRESHOLD,
    MIN_TEST_PLAYER_THRESHOLD,
    SYSTEM_ACTOR,
)
from seedkeeper.database.models import (
    AuditAction,
    CloseReason,
    ParticipantStatus,
    ParticipantType,
    RewardGrant,
    RewardTrigger,
    SeedingParticipant,
    SeedingSession,
    SessionStatus,
)
from seedkeeper.engine.events import PresenceEvent, PresenceKind
from seedkeeper.engine.locks import SESSION_LOCKS, TARGET_LOCKS
from seedkeeper.engine.rewards import RewardsConfig
from seedkeeper.engine.state import (
    apply_presence,
    completion_reward_due,
    mark_completed,
    new_participant,
)
from seedkeeper.errors import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from seedkeeper.services.audit import _row_to_dict, log_action
from seedkeeper.services.notify_service import (
    Notice,
    deliver,
    presence_notices,
    seeding_call,
    session_cancelled_notices,
    session_closed_notices,
    session_started_notices,
)
from seedkeeper.services.reward_service import compensating, evaluate, settle

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from seedkeeper.config import SeedkeeperConfig
    from seedkeeper.services.notify_service import Notifier
    from seedkeeper.services.whitelist_service import WhitelistService

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------
@dataclass
class PresenceOutcome:
    """What one presence event did to one session."""

    session_id: int
    steam_id: str
    status: str
    created: bool = False
    granted: list[str] = field(default_factory=list)
    minutes_granted: int = 0
    session_closed: bool = False


@dataclass
class CloseResult:
    session_id: int
    close_reason: str
    participants_completed: int = 0
    participants_rewarded: int = 0
    minutes_granted: int = 0
    # (steam_id, total_reward_minutes) for each player paid at close
    rewarded_players: list[tuple[str, int]] = field(default_factory=list)


def _utcnow() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------
def _lock_session(db: Session, session_id: int) -> SeedingSession:
    """Fetch the session row with a row lock, or raise NotFoundError."""
    row = db.scalar(
        select(SeedingSession)
        .where(SeedingSession.id == session_id)
        .with_for_update()
    )
    if row is None:
        raise NotFoundError(f"Seeding session {session_id} not found")
    return row


def _require_active(row: SeedingSession) -> None:
    if not row.is_active:
        raise InvalidStateError(
            f"Seeding session {row.id} is {row.status}, not active"
        )


def _require_reason(reason: str | None) -> str:
    if reason is None or not reason.strip():
        raise ValidationError("A reason is required")
    return reason.strip()


def _on_target_count(db: Session, session_id: int) -> int:
    return db.scalar(
        select(func.count(SeedingParticipant.id)).where(
            SeedingParticipant.session_id == session_id,
            SeedingParticipant.is_on_target.is_(True),
        )
    ) or 0


def _participants(db: Session, session_id: int) -> list[SeedingParticipant]:
    return list(db.scalars(
        select(SeedingParticipant)
        .where(SeedingParticipant.session_id == session_id)
        .order_by(SeedingParticipant.id)
    ).all())


def _complete_session(
    db: Session,
    row: SeedingSession,
    whitelist: WhitelistService,
    issued: list[str],
    *,
    reason: CloseReason,
    actor_id: str,
    now: datetime,
) -> CloseResult:
    """Flip *row* to completed and run the single completion pass."""
    before = _row_to_dict(row)
    rewards = row.rewards
    result = CloseResult(session_id=row.id, close_reason=reason.value)

    for p in _participants(db, row.id):
        due = completion_reward_due(p, rewards)
        if not mark_completed(p, now):
            continue
        result.participants_completed += 1
        if not due:
            continue
        grant = evaluate(db, row, p, RewardTrigger.COMPLETION, whitelist, issued, now=now)
        if grant is not None:
            result.participants_rewarded += 1
            result.minutes_granted += grant.minutes
            result.rewarded_players.append((p.steam_id, p.total_reward_minutes))

    row.status = SessionStatus.COMPLETED.value
    row.closed_at = now
    row.close_reason = reason.value
    db.flush()

    log_action(
        db,
        actor_id=actor_id,
        action_type=AuditAction.SESSION_CLOSED,
        target_table="seeding_sessions",
        target_id=row.id,
        before=before,
        after=_row_to_dict(row) | {
            "participants_rewarded": result.participants_rewarded,
            "minutes_granted": result.minutes_granted,
        },
        reason=reason.value,
    )
    logger.info(
        "Seeding session %d closed (%s): %d completed, %d rewarded",
        row.id, reason.value, result.participants_completed, result.participants_rewarded,
    )
    return result


def _maybe_auto_close(
    db: Session,
    row: SeedingSession,
    whitelist: WhitelistService,
    issued: list[str],
    now: datetime,
) -> CloseResult | None:
    if not row.is_active:
        return None
    if _on_target_count(db, row.id) < row.player_threshold:
        return None
    return _complete_session(
        db, row, whitelist, issued,
        reason=CloseReason.THRESHOLD_REACHED,
        actor_id=SYSTEM_ACTOR,
        now=now,
    )


def _detach(db: Session, *rows: Any) -> None:
    for row in rows:
        db.refresh(row)
        db.expunge(row)


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------
def _resolve_sources(
    cfg: SeedkeeperConfig,
    target_server_id: str,
    source_server_ids: list[str] | None,
    test_mode: bool,
) -> list[str]:
    if test_mode and not source_server_ids:
        raise ValidationError("Test mode requires an explicit list of source servers")

    if source_server_ids is None:
        sources = [sid for sid in cfg.server_ids if sid != target_server_id]
    else:
        sources = list(dict.fromkeys(str(s) for s in source_server_ids))
        for sid in sources:
            if sid == target_server_id:
                raise ValidationError("The target server cannot also be a source server")
            if cfg.get_server(sid) is None:
                raise ValidationError(f"Unknown source server: {sid}")

    if not sources:
        raise ValidationError("A seeding session needs at least one source server")
    return sources


def _validate_threshold(player_threshold: Any, test_mode: bool) -> int:
    floor = MIN_TEST_PLAYER_THRESHOLD if test_mode else MIN_PLAYER_THRESHOLD
    if (
        isinstance(player_threshold, bool)
        or not isinstance(player_threshold, int)
        or not floor <= player_threshold <= MAX_PLAYER_THRESHOLD
    ):
        raise ValidationError(
            f"Player threshold must be between {floor} and {MAX_PLAYER_THRESHOLD}"
        )
    return player_threshold


def create_session(
    engine: Engine,
    cfg: SeedkeeperConfig,
    *,
    target_server_id: str,
    player_threshold: int,
    rewards: RewardsConfig | dict,
    actor_id: str,
    actor_name: str | None = None,
    source_server_ids: list[str] | None = None,
    test_mode: bool = False,
    seeders_earn_playtime: bool | None = None,
    notifier: Notifier | None = None,
) -> SeedingSession:
    """Start a seeding session against *target_server_id*.

    In normal mode the sources default to every other configured server.
    Test mode lowers the threshold floor to 1 but insists on an explicit
    source list.  The seeding call goes out to the sources once committed.

    Raises
    ------
    ValidationError
        Bad threshold, reward tracks, or server ids.
    ConflictError
        The target already has an active session.
    """
    config = (
        RewardsConfig.from_dict(rewards) if isinstance(rewards, dict) else rewards.validate()
    )
    target = cfg.get_server(target_server_id)
    if target is None:
        raise ValidationError(f"Unknown target server: {target_server_id}")
    threshold = _validate_threshold(player_threshold, test_mode)
    sources = _resolve_sources(cfg, target_server_id, source_server_ids, test_mode)
    if seeders_earn_playtime is None:
        seeders_earn_playtime = cfg.seeders_earn_playtime

    with TARGET_LOCKS.hold(target_server_id), Session(engine, expire_on_commit=False) as db:
        existing = db.scalar(
            select(SeedingSession.id).where(
                SeedingSession.target_server_id == target_server_id,
                SeedingSession.status == SessionStatus.ACTIVE.value,
            )
        )
        if existing is not None:
            raise ConflictError(
                f"{target.name} already has an active seeding session (#{existing})"
            )

        row = SeedingSession(
            target_server_id=target_server_id,
            target_server_name=target.name,
            player_threshold=threshold,
            status=SessionStatus.ACTIVE.value,
            source_server_ids=sources,
            test_mode=test_mode,
            seeders_earn_playtime=seeders_earn_playtime,
            started_at=_utcnow(),
            started_by=str(actor_id),
            started_by_name=actor_name,
            participants_count=0,
            rewards_granted_count=0,
        )
        row.rewards = config
        db.add(row)
        try:
            db.flush()
        except IntegrityError as exc:
            db.rollback()
            raise ConflictError(
                f"{target.name} already has an active seeding session"
            ) from exc

        log_action(
            db,
            actor_id=actor_id,
            action_type=AuditAction.SESSION_STARTED,
            target_table="seeding_sessions",
            target_id=row.id,
            after=_row_to_dict(row),
        )
        db.commit()
        _detach(db, row)

    logger.info(
        "Seeding session %d started on %s by %s (threshold=%d%s)",
        row.id, target_server_id, actor_name or actor_id, threshold,
        ", test mode" if test_mode else "",
    )
    deliver(notifier, session_started_notices(row))
    return row


# ---------------------------------------------------------------------------
# Presence routing
# ---------------------------------------------------------------------------
def _interested_session_ids(engine: Engine, server_id: str) -> list[int]:
    with Session(engine) as db:
        rows = db.execute(
            select(
                SeedingSession.id,
                SeedingSession.target_server_id,
                SeedingSession.source_server_ids,
            )
            .where(SeedingSession.status == SessionStatus.ACTIVE.value)
            .order_by(SeedingSession.id)
        ).all()
    return [
        r.id for r in rows
        if r.target_server_id == server_id or server_id in (r.source_server_ids or [])
    ]


def _observe_one(
    engine: Engine,
    whitelist: WhitelistService,
    session_id: int,
    event: PresenceEvent,
    now: datetime,
) -> tuple[PresenceOutcome, list[Notice]] | None:
    with Session(engine, expire_on_commit=False) as db, compensating(whitelist, db) as issued:
        row = _lock_session(db, session_id)
        if not row.is_active:
            return None  # closed between routing and locking

        p = db.scalar(
            select(SeedingParticipant).where(
                SeedingParticipant.session_id == row.id,
                SeedingParticipant.steam_id == event.steam_id,
            )
        )
        created = False
        if p is None:
            if event.kind == PresenceKind.LEAVE and event.server_id != row.target_server_id:
                return None
            p = new_participant(row.id, row.target_server_id, event)
            db.add(p)
            db.flush()
            row.participants_count = (row.participants_count or 0) + 1
            created = True

        was_switched = p.switched_at is not None
        status = apply_presence(
            p,
            event,
            target_server_id=row.target_server_id,
            rewards=row.rewards,
            now=now,
            seeders_earn_playtime=row.seeders_earn_playtime,
        )
        db.flush()

        grants = settle(db, row, p, whitelist, issued, now=now)
        notices = presence_notices(
            row, p,
            created=created,
            switched=not was_switched and p.switched_at is not None,
            grants=grants,
        )
        closed = _maybe_auto_close(db, row, whitelist, issued, now)
        db.commit()
        if closed is not None:
            notices += session_closed_notices(row, closed.rewarded_players)

        outcome = PresenceOutcome(
            session_id=row.id,
            steam_id=p.steam_id,
            status=p.status if closed else status.value,
            created=created,
            granted=[g.track for g in grants],
            minutes_granted=sum(g.minutes for g in grants),
            session_closed=closed is not None,
        )
    return outcome, notices


def observe_presence(
    engine: Engine,
    whitelist: WhitelistService,
    event: PresenceEvent,
    *,
    now: datetime | None = None,
    notifier: Notifier | None = None,
) -> list[PresenceOutcome]:
    """Feed one presence event to every active session that watches its server.

    Sessions are processed in id order, each in its own transaction.  Events
    for servers no active session cares about are ignored.
    """
    now = now or _utcnow()
    outcomes = []
    for session_id in _interested_session_ids(engine, event.server_id):
        with SESSION_LOCKS.hold(session_id):
            observed = _observe_one(engine, whitelist, session_id, event, now)
        if observed is not None:
            outcome, notices = observed
            outcomes.append(outcome)
            deliver(notifier, notices)
    if not outcomes:
        logger.debug("Presence %s on %s matched no active session", event.kind, event.server_id)
    return outcomes


# ---------------------------------------------------------------------------
# Close / cancel
# ---------------------------------------------------------------------------
def check_auto_close(
    engine: Engine,
    whitelist: WhitelistService,
    session_id: int,
    *,
    now: datetime | None = None,
    notifier: Notifier | None = None,
) -> CloseResult | None:
    """Complete the session if its on-target count has reached the threshold.

    Returns ``None`` while the session is still below its threshold.

    Raises
    ------
    NotFoundError
        No session with *session_id*.
    InvalidStateError
        The session is already completed or cancelled, as for
        :func:`close_session` and :func:`cancel_session`.
    """
    now = now or _utcnow()
    with SESSION_LOCKS.hold(session_id), Session(engine, expire_on_commit=False) as db, \
            compensating(whitelist, db) as issued:
        row = _lock_session(db, session_id)
        _require_active(row)
        result = _maybe_auto_close(db, row, whitelist, issued, now)
        if result is None:
            return None
        db.commit()
    deliver(notifier, session_closed_notices(row, result.rewarded_players))
    return result


def close_session(
    engine: Engine,
    whitelist: WhitelistService,
    session_id: int,
    *,
    actor_id: str,
    actor_name: str | None = None,
    now: datetime | None = None,
    notifier: Notifier | None = None,
) -> CloseResult:
    """Manually complete an active session, paying completion rewards.

    All or nothing: if any completion grant fails the session stays active
    and nothing is recorded.
    """
    now = now or _utcnow()
    with SESSION_LOCKS.hold(session_id), Session(engine, expire_on_commit=False) as db, \
            compensating(whitelist, db) as issued:
        row = _lock_session(db, session_id)
        _require_active(row)
        result = _complete_session(
            db, row, whitelist, issued,
            reason=CloseReason.MANUAL,
            actor_id=actor_id,
            now=now,
        )
        db.commit()
    logger.info("Seeding session %d closed manually by %s", session_id, actor_name or actor_id)
    deliver(notifier, session_closed_notices(row, result.rewarded_players))
    return result


def cancel_session(
    engine: Engine,
    session_id: int,
    *,
    actor_id: str,
    reason: str,
    now: datetime | None = None,
    notifier: Notifier | None = None,
) -> SeedingSession:
    """Cancel an active session.  No rewards are granted."""
    reason = _require_reason(reason)
    now = now or _utcnow()
    with SESSION_LOCKS.hold(session_id), Session(engine, expire_on_commit=False) as db:
        row = _lock_session(db, session_id)
        _require_active(row)
        before = _row_to_dict(row)
        row.status = SessionStatus.CANCELLED.value
        row.closed_at = now
        row.cancellation_reason = reason
        db.flush()
        log_action(
            db,
            actor_id=actor_id,
            action_type=AuditAction.SESSION_CANCELLED,
            target_table="seeding_sessions",
            target_id=row.id,
            before=before,
            after=_row_to_dict(row),
            reason=reason,
        )
        db.commit()
        _detach(db, row)
    logger.info("Seeding session %d cancelled by %s: %s", session_id, actor_id, reason)
    deliver(notifier, session_cancelled_notices(row))
    return row


def remind_active_sessions(engine: Engine, notifier: Notifier) -> int:
    """Repeat the seeding call on the sources of every active session.

    Returns how many sessions were reminded.
    """
    rows = get_active_sessions(engine)
    for row in rows:
        deliver(notifier, [Notice(tuple(row.source_server_ids or ()), seeding_call(row))])
    if rows:
        logger.debug("Seeding reminder sent for %d session(s)", len(rows))
    return len(rows)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------
def get_session(engine: Engine, session_id: int) -> SeedingSession:
    with Session(engine, expire_on_commit=False) as db:
        row = db.get(SeedingSession, session_id)
        if row is None:
            raise NotFoundError(f"Seeding session {session_id} not found")
        db.expunge(row)
        return row


def list_sessions(
    engine: Engine,
    *,
    status: str | None = None,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[SeedingSession], int]:
    """Newest first.  Returns ``(rows, total)``."""
    page = max(page, 1)
    with Session(engine, expire_on_commit=False) as db:
        stmt = select(SeedingSession)
        count_stmt = select(func.count(SeedingSession.id))
        if status:
            stmt = stmt.where(SeedingSession.status == status)
            count_stmt = count_stmt.where(SeedingSession.status == status)
        total = db.scalar(count_stmt) or 0
        rows = list(db.scalars(
            stmt.order_by(SeedingSession.started_at.desc(), SeedingSession.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        ).all())
        db.expunge_all()
    return rows, total


def get_active_sessions(engine: Engine) -> list[SeedingSession]:
    with Session(engine, expire_on_commit=False) as db:
        rows = list(db.scalars(
            select(SeedingSession)
            .where(SeedingSession.status == SessionStatus.ACTIVE.value)
            .order_by(SeedingSession.id)
        ).all())
        db.expunge_all()
    return rows


def get_session_with_stats(engine: Engine, session_id: int) -> tuple[SeedingSession, dict]:
    """Session plus participant counts by type and status.

    Stats keys: ``total_participants``, ``switchers``, ``seeders``,
    ``by_status`` (every status, zero-filled), ``currently_on_target``,
    ``rewards_granted`` (per track), ``total_reward_minutes``.
    """
    with Session(engine, expire_on_commit=False) as db:
        row = db.get(SeedingSession, session_id)
        if row is None:
            raise NotFoundError(f"Seeding session {session_id} not found")
        participants = _participants(db, session_id)

        by_status = {s.value: 0 for s in ParticipantStatus}
        rewards_granted = {t.value: 0 for t in RewardTrigger}
        for p in participants:
            by_status[p.status] = by_status.get(p.status, 0) + 1
            for trigger in p.granted_triggers:
                rewards_granted[trigger.value] += 1

        stats = {
            "total_participants": len(participants),
            "switchers": sum(
                1 for p in participants if p.participant_type == ParticipantType.SWITCHER
            ),
            "seeders": sum(
                1 for p in participants if p.participant_type == ParticipantType.SEEDER
            ),
            "by_status": by_status,
            "currently_on_target": sum(1 for p in participants if p.is_on_target),
            "rewards_granted": rewards_granted,
            "total_reward_minutes": sum(p.total_reward_minutes for p in participants),
        }
        db.expunge(row)
    return row, stats


def list_participants(
    engine: Engine,
    session_id: int,
    *,
    status: str | None = None,
    participant_type: str | None = None,
    include_on_source: bool = False,
    page: int = 1,
    page_size: int = 50,
) -> tuple[list[SeedingParticipant], int]:
    """Participants of a session, ``(rows, total)``.

    Players still on a source server are hidden unless *include_on_source*
    is set or *status* asks for them explicitly.
    """
    page = max(page, 1)
    with Session(engine, expire_on_commit=False) as db:
        if db.get(SeedingSession, session_id) is None:
            raise NotFoundError(f"Seeding session {session_id} not found")

        filters = [SeedingParticipant.session_id == session_id]
        if status:
            filters.append(SeedingParticipant.status == status)
        elif not include_on_source:
            filters.append(SeedingParticipant.status != ParticipantStatus.ON_SOURCE.value)
        if participant_type:
            filters.append(SeedingParticipant.participant_type == participant_type)

        total = db.scalar(select(func.count(SeedingParticipant.id)).where(*filters)) or 0
        rows = list(db.scalars(
            select(SeedingParticipant)
            .where(*filters)
            .order_by(SeedingParticipant.id)
            .offset((page - 1) * page_size)
            .limit(page_size)
        ).all())
        db.expunge_all()
    return rows, total


def list_grants(
    engine: Engine,
    session_id: int,
    *,
    test_mode: bool | None = None,
) -> list[RewardGrant]:
    with Session(engine, expire_on_commit=False) as db:
        if db.get(SeedingSession, session_id) is None:
            raise NotFoundError(f"Seeding session {session_id} not found")
        stmt = select(RewardGrant).where(RewardGrant.session_id == session_id)
        if test_mode is not None:
            stmt = stmt.where(RewardGrant.test_mode.is_(test_mode))
        rows = list(db.scalars(stmt.order_by(RewardGrant.id)).all())
        db.expunge_all()
    return rows


def recount_session(engine: Engine, session_id: int) -> SeedingSession:
    """Recompute the denormalized counters from participant rows."""
    with SESSION_LOCKS.hold(session_id), Session(engine, expire_on_commit=False) as db:
        row = _lock_session(db, session_id)
        participants = _participants(db, session_id)
        row.participants_count = len(participants)
        row.rewards_granted_count = sum(len(p.granted_triggers) for p in participants)
        db.commit()
        _detach(db, row)
    return row
