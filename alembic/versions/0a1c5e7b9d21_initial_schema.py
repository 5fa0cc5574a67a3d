"""Initial schema: voice activity, levels, guild settings, rooms, audit log

Revision ID: 0a1c5e7b9d21
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0a1c5e7b9d21"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_STATE_KIND = sa.Enum("MUTED", "BANNED", name="moderation_state_kind")


def upgrade() -> None:
    """Create every Resonance table."""
    # -- voice activity ------------------------------------------------------
    op.create_table(
        "user_activity",
        sa.Column("guild_id", sa.BigInteger(), primary_key=True),
        sa.Column("user_id", sa.BigInteger(), primary_key=True),
        sa.Column("username", sa.String(100), nullable=False, server_default=""),
        sa.Column("display_name", sa.String(100), nullable=False, server_default=""),
        sa.Column("total_sessions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_time_ms", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("first_seen", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_active", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_xp_update", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
    )
    op.create_index("ix_user_activity_guild_time", "user_activity", ["guild_id", "total_time_ms"])

    op.create_table(
        "activity_sessions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("guild_id", sa.BigInteger(), nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("channel_id", sa.BigInteger(), nullable=False),
        sa.Column("channel_name", sa.String(100), nullable=False, server_default=""),
        sa.Column("joined_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("left_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_ms", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("is_owner", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.ForeignKeyConstraint(
            ["guild_id", "user_id"],
            ["user_activity.guild_id", "user_activity.user_id"],
            ondelete="CASCADE",
        ),
    )
    op.create_index(
        "ix_activity_sessions_user_joined",
        "activity_sessions",
        ["guild_id", "user_id", "joined_at"],
    )
    op.create_index(
        "uq_activity_sessions_open",
        "activity_sessions",
        ["guild_id", "user_id"],
        unique=True,
        postgresql_where=sa.text("left_at IS NULL"),
        sqlite_where=sa.text("left_at IS NULL"),
    )

    # -- leveling ------------------------------------------------------------
    op.create_table(
        "user_levels",
        sa.Column("guild_id", sa.BigInteger(), primary_key=True),
        sa.Column("user_id", sa.BigInteger(), primary_key=True),
        sa.Column("username", sa.String(100), nullable=False, server_default=""),
        sa.Column("display_name", sa.String(100), nullable=False, server_default=""),
        sa.Column("xp", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("voice_xp", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("message_xp", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("level", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("voice_xp_remainder", sa.Float(), nullable=False, server_default="0"),
        sa.Column("message_xp_remainder", sa.Float(), nullable=False, server_default="0"),
        sa.Column("last_message_xp_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_updated", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
    )
    op.create_index("ix_user_levels_guild_xp", "user_levels", ["guild_id", "xp"])

    op.create_table(
        "guild_level_settings",
        sa.Column("guild_id", sa.BigInteger(), primary_key=True),
        sa.Column("voice_xp_per_minute", sa.Float(), nullable=False, server_default="1.0"),
        sa.Column("message_xp_per_message", sa.Float(), nullable=False, server_default="1.0"),
        sa.Column("message_xp_cooldown_seconds", sa.Integer(), nullable=False, server_default="60"),
        sa.Column("base_multiplier", sa.Float(), nullable=False, server_default="8.0"),
        sa.Column("scaling_multiplier", sa.Float(), nullable=False, server_default="1.5"),
        sa.Column("notify_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("notify_channel_id", sa.BigInteger(), nullable=True),
        sa.Column("notify_dm_user", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "notify_announce_in_channel", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_table(
        "level_roles",
        sa.Column("guild_id", sa.BigInteger(), primary_key=True),
        sa.Column("level", sa.Integer(), primary_key=True),
        sa.Column("role_id", sa.BigInteger(), nullable=False),
    )
    op.create_table(
        "role_multipliers",
        sa.Column("guild_id", sa.BigInteger(), primary_key=True),
        sa.Column("role_id", sa.BigInteger(), primary_key=True),
        sa.Column("multiplier", sa.Float(), nullable=False, server_default="1.0"),
    )
    op.create_table(
        "excluded_channels",
        sa.Column("guild_id", sa.BigInteger(), primary_key=True),
        sa.Column("channel_id", sa.BigInteger(), primary_key=True),
    )

    # -- rooms ---------------------------------------------------------------
    op.create_table(
        "rooms",
        sa.Column("channel_id", sa.BigInteger(), primary_key=True),
        sa.Column("guild_id", sa.BigInteger(), nullable=False),
        sa.Column("owner_id", sa.BigInteger(), nullable=False),
        sa.Column("name", sa.String(100), nullable=False, server_default=""),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_rooms_guild_id", "rooms", ["guild_id"])

    op.create_table(
        "room_moderation_states",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("guild_id", sa.BigInteger(), nullable=False),
        sa.Column("room_channel_id", sa.BigInteger(), nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("state_kind", _STATE_KIND, nullable=False),
        sa.Column("reason", sa.Text(), nullable=False, server_default="No reason provided"),
        sa.Column("applied_by", sa.BigInteger(), nullable=False),
        sa.Column("applied_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            "guild_id", "room_channel_id", "user_id", "state_kind",
            name="uq_room_moderation_state",
        ),
    )
    op.create_index(
        "ix_room_moderation_room_kind",
        "room_moderation_states",
        ["guild_id", "room_channel_id", "state_kind"],
    )
    op.create_index("ix_room_moderation_user", "room_moderation_states", ["guild_id", "user_id"])

    # -- audit ---------------------------------------------------------------
    op.create_table(
        "admin_log",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("guild_id", sa.BigInteger(), nullable=False),
        sa.Column("actor_id", sa.BigInteger(), nullable=False),
        sa.Column("action_type", sa.String(50), nullable=False),
        sa.Column("target_table", sa.String(50), nullable=False),
        sa.Column("target_id", sa.String(100), nullable=True),
        sa.Column("before_snapshot", postgresql.JSONB(), nullable=True),
        sa.Column("after_snapshot", postgresql.JSONB(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column(
            "timestamp",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_admin_log_guild_time", "admin_log", ["guild_id", "timestamp"])
    op.create_index(
        "ix_admin_log_target", "admin_log", ["target_table", "target_id", "timestamp"]
    )


def downgrade() -> None:
    """Drop every Resonance table."""
    op.drop_index("ix_admin_log_target", table_name="admin_log")
    op.drop_index("ix_admin_log_guild_time", table_name="admin_log")
    op.drop_table("admin_log")
    op.drop_index("ix_room_moderation_user", table_name="room_moderation_states")
    op.drop_index("ix_room_moderation_room_kind", table_name="room_moderation_states")
    op.drop_table("room_moderation_states")
    _STATE_KIND.drop(op.get_bind(), checkfirst=True)
    op.drop_index("ix_rooms_guild_id", table_name="rooms")
    op.drop_table("rooms")
    op.drop_table("excluded_channels")
    op.drop_table("role_multipliers")
    op.drop_table("level_roles")
    op.drop_table("guild_level_settings")
    op.drop_index("ix_user_levels_guild_xp", table_name="user_levels")
    op.drop_table("user_levels")
    op.drop_index("uq_activity_sessions_open", table_name="activity_sessions")
    op.drop_index("ix_activity_sessions_user_joined", table_name="activity_sessions")
    op.drop_table("activity_sessions")
    op.drop_index("ix_user_activity_guild_time", table_name="user_activity")
    op.drop_table("user_activity")
