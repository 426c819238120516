"""
seedkeeper.services.preview_service — Close Preview
====================================================

Read-only projection of what closing a session right now would pay in
completion rewards.  Uses the same eligibility predicate as the real close
(:func:`seedkeeper.engine.state.completion_reward_due`).
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.orm import Session

from seedkeeper.database.models import SeedingParticipant, SeedingSession
from seedkeeper.engine.durations import DurationUnit, from_minutes
from seedkeeper.engine.state import completion_candidates
from seedkeeper.errors import NotFoundError

if TYPE_CHECKING:
    from sqlalchemy import Engine


@dataclass
class ClosePreview:
    session_id: int
    participants_to_reward: int
    completion_reward_days: float
    total_whitelist_days_to_grant: float
    completion_reward: str | None  # e.g. "2 days"; None when the track is off

    def to_dict(self) -> dict:
        return asdict(self)


def build_close_preview(engine: Engine, session_id: int) -> ClosePreview:
    """Count who would receive the completion reward, without writing anything."""
    with Session(engine) as db:
        row = db.get(SeedingSession, session_id)
        if row is None:
            raise NotFoundError(f"Seeding session {session_id} not found")
        rewards = row.rewards
        participants = db.scalars(
            select(SeedingParticipant).where(SeedingParticipant.session_id == session_id)
        ).all()
        eligible = completion_candidates(participants, rewards)

    per_player_days = from_minutes(
        rewards.minutes_for("completion"), DurationUnit.DAYS
    )
    return ClosePreview(
        session_id=session_id,
        participants_to_reward=len(eligible),
        completion_reward_days=per_player_days,
        total_whitelist_days_to_grant=len(eligible) * per_player_days,
        completion_reward=rewards.completion.label if rewards.completion else None,
    )
