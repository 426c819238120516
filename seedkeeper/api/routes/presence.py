"""
seedkeeper.api.routes.presence — Presence feed ingestion
=========================================================

The presence feed pushes one request per observation.  Authenticated by
the shared ``X-Feed-Token`` header, not by operator JWT.
"""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy import Engine

from seedkeeper.api.deps import (
    get_engine,
    get_notifier,
    get_whitelist_service,
    require_feed_token,
)
from seedkeeper.engine.events import PresenceEvent, PresenceKind
from seedkeeper.services import session_service
from seedkeeper.services.notify_service import Notifier
from seedkeeper.services.whitelist_service import WhitelistService

router = APIRouter(prefix="/seeding", tags=["presence"])


class PresenceIn(BaseModel):
    steam_id: str = Field(min_length=1)
    server_id: str = Field(min_length=1)
    event: PresenceKind
    timestamp_minutes: int = Field(ge=0)
    username: str | None = None


@router.post("/presence", dependencies=[Depends(require_feed_token)])
def ingest_presence(
    body: PresenceIn,
    engine: Engine = Depends(get_engine),
    whitelist: WhitelistService = Depends(get_whitelist_service),
    notifier: Notifier = Depends(get_notifier),
):
    event = PresenceEvent(
        steam_id=body.steam_id,
        server_id=body.server_id,
        kind=body.event,
        timestamp_minutes=body.timestamp_minutes,
        username=body.username,
    )
    outcomes = session_service.observe_presence(engine, whitelist, event, notifier=notifier)
    return {"sessions": [asdict(o) for o in outcomes]}
