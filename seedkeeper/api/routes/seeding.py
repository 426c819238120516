"""
seedkeeper.api.routes.seeding — Seeding session endpoints (JWT‑protected)
==========================================================================
"""

from __future__ import annotations

from dataclasses import asdict
from datetime import datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy import Engine

from seedkeeper.api.deps import (
    get_config,
    get_current_admin,
    get_engine,
    get_notifier,
    get_whitelist_service,
)
from seedkeeper.config import SeedkeeperConfig
from seedkeeper.database.models import (
    ParticipantStatus,
    ParticipantType,
    RewardGrant,
    SeedingParticipant,
    SeedingSession,
    SessionStatus,
)
from seedkeeper.engine.durations import format_reward_duration
from seedkeeper.services import (
    preview_service,
    reversal_service,
    session_service,
)
from seedkeeper.services.notify_service import Notifier
from seedkeeper.services.whitelist_service import WhitelistService

router = APIRouter(prefix="/seeding", tags=["seeding"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class RewardTrackIn(BaseModel):
    value: int
    unit: str


class PlaytimeTrackIn(RewardTrackIn):
    threshold_minutes: int


class RewardsIn(BaseModel):
    switch: RewardTrackIn | None = None
    playtime: PlaytimeTrackIn | None = None
    completion: RewardTrackIn | None = None


class SessionCreate(BaseModel):
    target_server_id: str
    player_threshold: int
    rewards: RewardsIn
    source_server_ids: list[str] | None = None
    test_mode: bool = False
    seeders_earn_playtime: bool | None = None


class ReasonBody(BaseModel):
    reason: str = Field(min_length=1)


# ---------------------------------------------------------------------------
# Serializers
# ---------------------------------------------------------------------------
def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _session_dict(row: SeedingSession) -> dict:
    rewards = row.rewards
    return {
        "id": row.id,
        "target_server_id": row.target_server_id,
        "target_server_name": row.target_server_name,
        "source_server_ids": list(row.source_server_ids or []),
        "player_threshold": row.player_threshold,
        "status": row.status,
        "test_mode": row.test_mode,
        "seeders_earn_playtime": row.seeders_earn_playtime,
        "rewards": rewards.to_dict(),
        "max_reward": format_reward_duration(rewards.total_possible_minutes),
        "started_at": _iso(row.started_at),
        "started_by": row.started_by,
        "started_by_name": row.started_by_name,
        "closed_at": _iso(row.closed_at),
        "close_reason": row.close_reason,
        "cancellation_reason": row.cancellation_reason,
        "reversed_at": _iso(row.reversed_at),
        "reversal_reason": row.reversal_reason,
        "participants_count": row.participants_count,
        "rewards_granted_count": row.rewards_granted_count,
    }


def _participant_dict(p: SeedingParticipant) -> dict:
    return {
        "id": p.id,
        "session_id": p.session_id,
        "steam_id": p.steam_id,
        "username": p.username,
        "participant_type": p.participant_type,
        "status": p.status,
        "is_on_target": p.is_on_target,
        "source_server_id": p.source_server_id,
        "target_playtime_minutes": p.target_playtime_minutes,
        "switched_at": _iso(p.switched_at),
        "playtime_met_at": _iso(p.playtime_met_at),
        "completed_at": _iso(p.completed_at),
        "switch_rewarded_at": _iso(p.switch_rewarded_at),
        "playtime_rewarded_at": _iso(p.playtime_rewarded_at),
        "completion_rewarded_at": _iso(p.completion_rewarded_at),
        "total_reward_minutes": p.total_reward_minutes,
        "total_reward": format_reward_duration(p.total_reward_minutes),
    }


def _grant_dict(g: RewardGrant) -> dict:
    return {
        "id": g.id,
        "participant_id": g.participant_id,
        "steam_id": g.steam_id,
        "track": g.track,
        "minutes": g.minutes,
        "whitelist_grant_id": g.whitelist_grant_id,
        "test_mode": g.test_mode,
        "granted_at": _iso(g.granted_at),
        "revoked_at": _iso(g.revoked_at),
        "revoked_by": g.revoked_by,
        "revoke_reason": g.revoke_reason,
    }


def _actor(admin: dict) -> tuple[str, str | None]:
    return str(admin["sub"]), admin.get("username")


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
@router.get("/servers")
def list_servers(
    admin: dict = Depends(get_current_admin),
    cfg: SeedkeeperConfig = Depends(get_config),
):
    return {"servers": [{"id": s.id, "name": s.name} for s in cfg.servers]}


@router.get("/sessions")
def list_sessions(
    status: SessionStatus | None = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    admin: dict = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
):
    rows, total = session_service.list_sessions(
        engine,
        status=status.value if status else None,
        page=page,
        page_size=page_size,
    )
    return {
        "sessions": [_session_dict(r) for r in rows],
        "total": total,
        "page": page,
        "page_size": page_size,
    }


@router.get("/sessions/active")
def get_active_sessions(
    admin: dict = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
):
    rows = session_service.get_active_sessions(engine)
    return {"sessions": [_session_dict(r) for r in rows]}


@router.get("/sessions/{session_id}")
def get_session(
    session_id: int,
    admin: dict = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
):
    row, stats = session_service.get_session_with_stats(engine, session_id)
    return {"session": _session_dict(row), "stats": stats}


@router.get("/sessions/{session_id}/participants")
def list_participants(
    session_id: int,
    status: ParticipantStatus | None = None,
    participant_type: ParticipantType | None = None,
    include_on_source: bool = False,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    admin: dict = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
):
    rows, total = session_service.list_participants(
        engine,
        session_id,
        status=status.value if status else None,
        participant_type=participant_type.value if participant_type else None,
        include_on_source=include_on_source,
        page=page,
        page_size=page_size,
    )
    return {
        "participants": [_participant_dict(p) for p in rows],
        "total": total,
        "page": page,
        "page_size": page_size,
    }


@router.get("/sessions/{session_id}/grants")
def list_grants(
    session_id: int,
    test_mode: bool | None = None,
    admin: dict = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
):
    rows = session_service.list_grants(engine, session_id, test_mode=test_mode)
    return {"grants": [_grant_dict(g) for g in rows]}


@router.get("/sessions/{session_id}/close-preview")
def close_preview(
    session_id: int,
    admin: dict = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
):
    return preview_service.build_close_preview(engine, session_id).to_dict()


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------
@router.post("/sessions", status_code=201)
def create_session(
    body: SessionCreate,
    admin: dict = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
    cfg: SeedkeeperConfig = Depends(get_config),
    notifier: Notifier = Depends(get_notifier),
):
    actor_id, actor_name = _actor(admin)
    row = session_service.create_session(
        engine,
        cfg,
        target_server_id=body.target_server_id,
        player_threshold=body.player_threshold,
        rewards=body.rewards.model_dump(),
        source_server_ids=body.source_server_ids,
        test_mode=body.test_mode,
        seeders_earn_playtime=body.seeders_earn_playtime,
        actor_id=actor_id,
        actor_name=actor_name,
        notifier=notifier,
    )
    return {"session": _session_dict(row)}


@router.post("/sessions/{session_id}/close")
def close_session(
    session_id: int,
    admin: dict = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
    whitelist: WhitelistService = Depends(get_whitelist_service),
    notifier: Notifier = Depends(get_notifier),
):
    actor_id, actor_name = _actor(admin)
    result = session_service.close_session(
        engine, whitelist, session_id, actor_id=actor_id, actor_name=actor_name,
        notifier=notifier,
    )
    return asdict(result)


@router.post("/sessions/{session_id}/cancel")
def cancel_session(
    session_id: int,
    body: ReasonBody,
    admin: dict = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
    notifier: Notifier = Depends(get_notifier),
):
    actor_id, _ = _actor(admin)
    row = session_service.cancel_session(
        engine, session_id, actor_id=actor_id, reason=body.reason,
        notifier=notifier,
    )
    return {"session": _session_dict(row)}


@router.post("/sessions/{session_id}/reverse-rewards")
def reverse_rewards(
    session_id: int,
    body: ReasonBody,
    admin: dict = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
    whitelist: WhitelistService = Depends(get_whitelist_service),
):
    actor_id, _ = _actor(admin)
    result = reversal_service.reverse_session_rewards(
        engine, whitelist, session_id, actor_id=actor_id, reason=body.reason,
    )
    return result.to_dict()


@router.post("/sessions/{session_id}/participants/{participant_id}/revoke-rewards")
def revoke_participant_rewards(
    session_id: int,
    participant_id: int,
    body: ReasonBody,
    admin: dict = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
    whitelist: WhitelistService = Depends(get_whitelist_service),
):
    actor_id, _ = _actor(admin)
    result = reversal_service.revoke_participant_rewards(
        engine, whitelist, session_id, participant_id,
        actor_id=actor_id, reason=body.reason,
    )
    return result.to_dict()
