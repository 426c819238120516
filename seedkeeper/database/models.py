"""
seedkeeper.database.models — SQLAlchemy 2.0 Data Models
========================================================

Tables:
- seeding_sessions       — One seeding campaign against a target server
- seeding_participants   — One row per (session, player)
- seeding_reward_grants  — Grant ledger, one row per (participant, track)
- whitelist_entries      — Whitelist time written by the ledger backend
- audit_log              — Append-only operator/system action trail
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from seedkeeper.engine.durations import DurationUnit
from seedkeeper.engine.rewards import PlaytimeTrack, RewardsConfig, RewardTrack


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Seedkeeper ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class SessionStatus(enum.StrEnum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class CloseReason(enum.StrEnum):
    THRESHOLD_REACHED = "threshold_reached"
    MANUAL = "manual"


class ParticipantType(enum.StrEnum):
    """Assigned at first observation, never changed."""
    SWITCHER = "switcher"
    SEEDER = "seeder"


class ParticipantStatus(enum.StrEnum):
    """Progression status.  Written only by ``engine.state.derive_status``."""
    ON_SOURCE = "on_source"
    SEEDER = "seeder"
    SWITCHED = "switched"
    PLAYTIME_MET = "playtime_met"
    COMPLETED = "completed"


class RewardTrigger(enum.StrEnum):
    """The three reward tracks."""
    SWITCH = "switch"
    PLAYTIME = "playtime"
    COMPLETION = "completion"


class AuditAction(enum.StrEnum):
    SESSION_STARTED = "seeding_session_started"
    SESSION_CLOSED = "seeding_session_closed"
    SESSION_CANCELLED = "seeding_session_cancelled"
    REWARDS_REVERSED = "seeding_rewards_reversed"
    PARTICIPANT_REVOKED = "seeding_participant_rewards_revoked"


# ---------------------------------------------------------------------------
# SeedingSession — one campaign against a target server
# ---------------------------------------------------------------------------
class SeedingSession(Base):
    __tablename__ = "seeding_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    target_server_id: Mapped[str] = mapped_column(String(50), nullable=False)
    target_server_name: Mapped[str | None] = mapped_column(String(100), default=None)
    player_threshold: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=SessionStatus.ACTIVE.value
    )

    # Reward tracks (null value = track disabled)
    switch_reward_value: Mapped[int | None] = mapped_column(Integer, default=None)
    switch_reward_unit: Mapped[str | None] = mapped_column(String(20), default=None)
    playtime_reward_value: Mapped[int | None] = mapped_column(Integer, default=None)
    playtime_reward_unit: Mapped[str | None] = mapped_column(String(20), default=None)
    playtime_threshold_minutes: Mapped[int | None] = mapped_column(Integer, default=None)
    completion_reward_value: Mapped[int | None] = mapped_column(Integer, default=None)
    completion_reward_unit: Mapped[str | None] = mapped_column(String(20), default=None)

    source_server_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    test_mode: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    seeders_earn_playtime: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )

    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    started_by: Mapped[str | None] = mapped_column(String(64), default=None)
    started_by_name: Mapped[str | None] = mapped_column(String(100), default=None)
    close_reason: Mapped[str | None] = mapped_column(String(30), default=None)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, default=None)
    reversed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    reversal_reason: Mapped[str | None] = mapped_column(Text, default=None)

    # Denormalized for display; recomputable from participants
    participants_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rewards_granted_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    participants: Mapped[list[SeedingParticipant]] = relationship(
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="SeedingParticipant.id",
    )

    __table_args__ = (
        # One active session per target server, enforced by the database
        Index(
            "uq_seeding_sessions_active_target",
            "target_server_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
        Index("ix_seeding_sessions_status_target", "status", "target_server_id"),
        Index("ix_seeding_sessions_started_at", "started_at"),
    )

    @property
    def rewards(self) -> RewardsConfig:
        """The reward tracks as a :class:`RewardsConfig` value."""
        switch = playtime = completion = None
        if self.switch_reward_value is not None and self.switch_reward_unit:
            switch = RewardTrack(
                self.switch_reward_value, DurationUnit(self.switch_reward_unit)
            )
        if (
            self.playtime_reward_value is not None
            and self.playtime_reward_unit
            and self.playtime_threshold_minutes is not None
        ):
            playtime = PlaytimeTrack(
                self.playtime_reward_value,
                DurationUnit(self.playtime_reward_unit),
                self.playtime_threshold_minutes,
            )
        if self.completion_reward_value is not None and self.completion_reward_unit:
            completion = RewardTrack(
                self.completion_reward_value, DurationUnit(self.completion_reward_unit)
            )
        return RewardsConfig(switch=switch, playtime=playtime, completion=completion)

    @rewards.setter
    def rewards(self, config: RewardsConfig) -> None:
        self.switch_reward_value = config.switch.value if config.switch else None
        self.switch_reward_unit = config.switch.unit.value if config.switch else None
        self.playtime_reward_value = config.playtime.value if config.playtime else None
        self.playtime_reward_unit = config.playtime.unit.value if config.playtime else None
        self.playtime_threshold_minutes = (
            config.playtime.threshold_minutes if config.playtime else None
        )
        self.completion_reward_value = config.completion.value if config.completion else None
        self.completion_reward_unit = (
            config.completion.unit.value if config.completion else None
        )

    @property
    def is_active(self) -> bool:
        return self.status == SessionStatus.ACTIVE

    def __repr__(self) -> str:
        return (
            f"<SeedingSession id={self.id} target={self.target_server_id!r} "
            f"status={self.status}>"
        )


# ---------------------------------------------------------------------------
# SeedingParticipant — one row per (session, player)
# ---------------------------------------------------------------------------
class SeedingParticipant(Base):
    __tablename__ = "seeding_participants"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("seeding_sessions.id", ondelete="CASCADE"), nullable=False
    )
    steam_id: Mapped[str] = mapped_column(String(50), nullable=False)
    username: Mapped[str | None] = mapped_column(String(100), default=None)
    participant_type: Mapped[str] = mapped_column(String(20), nullable=False)

    # Presence windows, in feed epoch minutes (latest window wins)
    source_server_id: Mapped[str | None] = mapped_column(String(50), default=None)
    source_join_minute: Mapped[int | None] = mapped_column(Integer, default=None)
    source_leave_minute: Mapped[int | None] = mapped_column(Integer, default=None)
    target_join_minute: Mapped[int | None] = mapped_column(Integer, default=None)
    target_leave_minute: Mapped[int | None] = mapped_column(Integer, default=None)
    playtime_mark_minute: Mapped[int | None] = mapped_column(Integer, default=None)
    target_playtime_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_on_target: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Progression facts: write-once, never cleared (status is derived from them)
    switched_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    playtime_met_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    status: Mapped[str] = mapped_column(String(20), nullable=False)

    # Grant ledger, cleared only by revocation
    switch_rewarded_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    playtime_rewarded_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    completion_rewarded_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    total_reward_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    session: Mapped[SeedingSession] = relationship(back_populates="participants")
    grants: Mapped[list[RewardGrant]] = relationship(
        back_populates="participant", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint("session_id", "steam_id", name="uq_seeding_participants_session_steam"),
        Index("ix_seeding_participants_session_on_target", "session_id", "is_on_target"),
        Index("ix_seeding_participants_steam_id", "steam_id"),
        Index("ix_seeding_participants_status", "status"),
    )

    def rewarded_at(self, trigger: RewardTrigger) -> datetime | None:
        return getattr(self, f"{trigger.value}_rewarded_at")

    def set_rewarded_at(self, trigger: RewardTrigger, value: datetime | None) -> None:
        setattr(self, f"{trigger.value}_rewarded_at", value)

    @property
    def granted_triggers(self) -> list[RewardTrigger]:
        return [t for t in RewardTrigger if self.rewarded_at(t) is not None]

    def __repr__(self) -> str:
        return (
            f"<SeedingParticipant id={self.id} steam={self.steam_id} "
            f"type={self.participant_type} status={self.status}>"
        )


# ---------------------------------------------------------------------------
# RewardGrant — the grant ledger used for exact reversal
# ---------------------------------------------------------------------------
class RewardGrant(Base):
    __tablename__ = "seeding_reward_grants"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("seeding_sessions.id", ondelete="CASCADE"), nullable=False
    )
    participant_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("seeding_participants.id", ondelete="CASCADE"), nullable=False
    )
    steam_id: Mapped[str] = mapped_column(String(50), nullable=False)
    track: Mapped[str] = mapped_column(String(20), nullable=False)
    minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    whitelist_grant_id: Mapped[str] = mapped_column(String(100), nullable=False)
    test_mode: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    granted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    revoked_by: Mapped[str | None] = mapped_column(String(64), default=None)
    revoke_reason: Mapped[str | None] = mapped_column(Text, default=None)

    participant: Mapped[SeedingParticipant] = relationship(back_populates="grants")

    __table_args__ = (
        # Natural idempotency key: each track at most once per participant
        UniqueConstraint("participant_id", "track", name="uq_reward_grants_participant_track"),
        Index("ix_reward_grants_session", "session_id", "test_mode"),
    )

    def __repr__(self) -> str:
        return (
            f"<RewardGrant id={self.id} participant={self.participant_id} "
            f"track={self.track} minutes={self.minutes}>"
        )


# ---------------------------------------------------------------------------
# WhitelistEntry — whitelist time written by the ledger backend
# ---------------------------------------------------------------------------
class WhitelistEntry(Base):
    __tablename__ = "whitelist_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    steam_id: Mapped[str] = mapped_column(String(50), nullable=False)
    username: Mapped[str | None] = mapped_column(String(100), default=None)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    source_tag: Mapped[str] = mapped_column(String(50), nullable=False)
    granted_by: Mapped[str] = mapped_column(String(64), nullable=False)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSONB, nullable=True)
    granted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    revoked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    revoked_reason: Mapped[str | None] = mapped_column(Text, default=None)

    __table_args__ = (
        Index("ix_whitelist_entries_steam_active", "steam_id", "revoked"),
        Index("ix_whitelist_entries_source_tag", "source_tag"),
    )

    def __repr__(self) -> str:
        return (
            f"<WhitelistEntry id={self.id} steam={self.steam_id} "
            f"minutes={self.duration_minutes} revoked={self.revoked}>"
        )


# ---------------------------------------------------------------------------
# AuditLog — append-only audit trail
# ---------------------------------------------------------------------------
class AuditLog(Base):
    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor_id: Mapped[str] = mapped_column(String(64), nullable=False)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    target_table: Mapped[str] = mapped_column(String(50), nullable=False)
    target_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    before_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    after_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_audit_log_actor_time", "actor_id", "timestamp"),
        Index("ix_audit_log_target", "target_table", "target_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<AuditLog id={self.id} actor={self.actor_id} action={self.action_type}>"
