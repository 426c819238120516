"""Create seeding session, participant, grant, whitelist and audit tables

Revision ID: 5a1c7e9b2d40
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "5a1c7e9b2d40"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create all seeding tables."""
    op.create_table(
        "seeding_sessions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("target_server_id", sa.String(50), nullable=False),
        sa.Column("target_server_name", sa.String(100), nullable=True),
        sa.Column("player_threshold", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("switch_reward_value", sa.Integer(), nullable=True),
        sa.Column("switch_reward_unit", sa.String(20), nullable=True),
        sa.Column("playtime_reward_value", sa.Integer(), nullable=True),
        sa.Column("playtime_reward_unit", sa.String(20), nullable=True),
        sa.Column("playtime_threshold_minutes", sa.Integer(), nullable=True),
        sa.Column("completion_reward_value", sa.Integer(), nullable=True),
        sa.Column("completion_reward_unit", sa.String(20), nullable=True),
        sa.Column("source_server_ids", sa.JSON(), nullable=False),
        sa.Column("test_mode", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "seeders_earn_playtime", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("started_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_by", sa.String(64), nullable=True),
        sa.Column("started_by_name", sa.String(100), nullable=True),
        sa.Column("close_reason", sa.String(30), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("reversed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reversal_reason", sa.Text(), nullable=True),
        sa.Column("participants_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("rewards_granted_count", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index(
        "uq_seeding_sessions_active_target",
        "seeding_sessions",
        ["target_server_id"],
        unique=True,
        postgresql_where=sa.text("status = 'active'"),
    )
    op.create_index(
        "ix_seeding_sessions_status_target", "seeding_sessions", ["status", "target_server_id"]
    )
    op.create_index("ix_seeding_sessions_started_at", "seeding_sessions", ["started_at"])

    op.create_table(
        "seeding_participants",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "session_id",
            sa.Integer(),
            sa.ForeignKey("seeding_sessions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("steam_id", sa.String(50), nullable=False),
        sa.Column("username", sa.String(100), nullable=True),
        sa.Column("participant_type", sa.String(20), nullable=False),
        sa.Column("source_server_id", sa.String(50), nullable=True),
        sa.Column("source_join_minute", sa.Integer(), nullable=True),
        sa.Column("source_leave_minute", sa.Integer(), nullable=True),
        sa.Column("target_join_minute", sa.Integer(), nullable=True),
        sa.Column("target_leave_minute", sa.Integer(), nullable=True),
        sa.Column("playtime_mark_minute", sa.Integer(), nullable=True),
        sa.Column("target_playtime_minutes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_on_target", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("switched_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("playtime_met_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("switch_rewarded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("playtime_rewarded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completion_rewarded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("total_reward_minutes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint(
            "session_id", "steam_id", name="uq_seeding_participants_session_steam"
        ),
    )
    op.create_index(
        "ix_seeding_participants_session_on_target",
        "seeding_participants",
        ["session_id", "is_on_target"],
    )
    op.create_index("ix_seeding_participants_steam_id", "seeding_participants", ["steam_id"])
    op.create_index("ix_seeding_participants_status", "seeding_participants", ["status"])

    op.create_table(
        "seeding_reward_grants",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "session_id",
            sa.Integer(),
            sa.ForeignKey("seeding_sessions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "participant_id",
            sa.Integer(),
            sa.ForeignKey("seeding_participants.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("steam_id", sa.String(50), nullable=False),
        sa.Column("track", sa.String(20), nullable=False),
        sa.Column("minutes", sa.Integer(), nullable=False),
        sa.Column("whitelist_grant_id", sa.String(100), nullable=False),
        sa.Column("test_mode", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("granted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_by", sa.String(64), nullable=True),
        sa.Column("revoke_reason", sa.Text(), nullable=True),
        sa.UniqueConstraint(
            "participant_id", "track", name="uq_reward_grants_participant_track"
        ),
    )
    op.create_index(
        "ix_reward_grants_session", "seeding_reward_grants", ["session_id", "test_mode"]
    )

    op.create_table(
        "whitelist_entries",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("steam_id", sa.String(50), nullable=False),
        sa.Column("username", sa.String(100), nullable=True),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("source_tag", sa.String(50), nullable=False),
        sa.Column("granted_by", sa.String(64), nullable=False),
        sa.Column("metadata", postgresql.JSONB(), nullable=True),
        sa.Column("granted_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("revoked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_reason", sa.Text(), nullable=True),
    )
    op.create_index(
        "ix_whitelist_entries_steam_active", "whitelist_entries", ["steam_id", "revoked"]
    )
    op.create_index("ix_whitelist_entries_source_tag", "whitelist_entries", ["source_tag"])

    op.create_table(
        "audit_log",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("actor_id", sa.String(64), nullable=False),
        sa.Column("action_type", sa.String(50), nullable=False),
        sa.Column("target_table", sa.String(50), nullable=False),
        sa.Column("target_id", sa.String(100), nullable=True),
        sa.Column("before_snapshot", postgresql.JSONB(), nullable=True),
        sa.Column("after_snapshot", postgresql.JSONB(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_audit_log_actor_time", "audit_log", ["actor_id", "timestamp"])
    op.create_index(
        "ix_audit_log_target", "audit_log", ["target_table", "target_id", "timestamp"]
    )


def downgrade() -> None:
    """Drop all seeding tables."""
    op.drop_table("audit_log")
    op.drop_table("whitelist_entries")
    op.drop_table("seeding_reward_grants")
    op.drop_table("seeding_participants")
    op.drop_table("seeding_sessions")
