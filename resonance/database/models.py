"""
resonance.database.models — SQLAlchemy 2.0 Data Models
=======================================================

Every table is scoped by an explicit ``guild_id``; nothing assumes a single
"current" guild.

Tables:
- user_activity          — Per-member voice time totals (+ XP accrual anchor)
- activity_sessions      — One row per contiguous stay in a voice channel
- user_levels            — Per-member XP, split by source, and level
- guild_level_settings   — Per-guild XP rates, curve and notification options
- level_roles            — Reward role unlocked at a level
- role_multipliers       — XP multiplier granted by a role
- excluded_channels      — Channels that earn no XP
- rooms                  — Member-owned voice rooms (ownership registry)
- room_moderation_states — Per-room MUTED / BANNED markers
- admin_log              — Append-only audit trail

``user_activity`` and ``user_levels`` carry a ``version`` column used as the
SQLAlchemy ``version_id_col``: a write based on a stale read fails with
``StaleDataError`` instead of silently overwriting a concurrent update.
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Enum,
    Float,
    ForeignKeyConstraint,
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


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Resonance ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class ModerationStateKind(enum.StrEnum):
    """Per-room restrictions a room owner can place on a member."""
    MUTED = "MUTED"
    BANNED = "BANNED"


class AdminActionType(enum.StrEnum):
    """Categories of admin mutations recorded in admin_log."""
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    XP_ADJUST = "XP_ADJUST"
    XP_SET = "XP_SET"
    XP_RESET = "XP_RESET"
    RECALCULATE = "RECALCULATE"
    ROOM_SYNC = "ROOM_SYNC"


# ---------------------------------------------------------------------------
# UserActivity — voice time totals per member
# ---------------------------------------------------------------------------
class UserActivity(Base):
    __tablename__ = "user_activity"

    guild_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    user_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    username: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    display_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    total_sessions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_time_ms: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    first_seen: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_active: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    # Start of the not-yet-rewarded stretch of the open session
    last_xp_update: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    sessions: Mapped[list[ActivitySession]] = relationship(
        back_populates="activity",
        cascade="all, delete-orphan",
        order_by="ActivitySession.joined_at",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_user_activity_guild_time", "guild_id", "total_time_ms"),
    )

    def __repr__(self) -> str:
        return (
            f"<UserActivity guild={self.guild_id} user={self.user_id} "
            f"sessions={self.total_sessions} ms={self.total_time_ms}>"
        )


# ---------------------------------------------------------------------------
# ActivitySession — a single stay in a voice channel
# ---------------------------------------------------------------------------
class ActivitySession(Base):
    __tablename__ = "activity_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    guild_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    channel_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    channel_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    left_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_ms: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    is_owner: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    activity: Mapped[UserActivity] = relationship(back_populates="sessions")

    __table_args__ = (
        ForeignKeyConstraint(
            ["guild_id", "user_id"],
            ["user_activity.guild_id", "user_activity.user_id"],
            ondelete="CASCADE",
        ),
        Index("ix_activity_sessions_user_joined", "guild_id", "user_id", "joined_at"),
        # At most one open session per member
        Index(
            "uq_activity_sessions_open",
            "guild_id",
            "user_id",
            unique=True,
            postgresql_where=text("left_at IS NULL"),
            sqlite_where=text("left_at IS NULL"),
        ),
    )

    @property
    def is_open(self) -> bool:
        return self.left_at is None

    def __repr__(self) -> str:
        state = "open" if self.is_open else f"{self.duration_ms}ms"
        return f"<ActivitySession id={self.id} user={self.user_id} ch={self.channel_id} {state}>"


# ---------------------------------------------------------------------------
# UserLevel — XP and level per member
# ---------------------------------------------------------------------------
class UserLevel(Base):
    __tablename__ = "user_levels"

    guild_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    user_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    username: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    display_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    xp: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    voice_xp: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    message_xp: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Fractions of an XP point not yet booked, per source
    voice_xp_remainder: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    message_xp_remainder: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    last_message_xp_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_updated: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_user_levels_guild_xp", "guild_id", "xp"),
    )

    def __repr__(self) -> str:
        return f"<UserLevel guild={self.guild_id} user={self.user_id} xp={self.xp} lvl={self.level}>"


# ---------------------------------------------------------------------------
# GuildLevelSettings — per-guild leveling configuration
# ---------------------------------------------------------------------------
class GuildLevelSettings(Base):
    __tablename__ = "guild_level_settings"

    guild_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    voice_xp_per_minute: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    message_xp_per_message: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    message_xp_cooldown_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=60)
    base_multiplier: Mapped[float] = mapped_column(Float, nullable=False, default=8.0)
    scaling_multiplier: Mapped[float] = mapped_column(Float, nullable=False, default=1.5)
    notify_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    notify_channel_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    notify_dm_user: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    notify_announce_in_channel: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<GuildLevelSettings guild={self.guild_id}>"


class LevelRole(Base):
    __tablename__ = "level_roles"

    guild_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    level: Mapped[int] = mapped_column(Integer, primary_key=True)
    role_id: Mapped[int] = mapped_column(BigInteger, nullable=False)

    def __repr__(self) -> str:
        return f"<LevelRole guild={self.guild_id} level={self.level} role={self.role_id}>"


class RoleMultiplier(Base):
    __tablename__ = "role_multipliers"

    guild_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    role_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    multiplier: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)

    def __repr__(self) -> str:
        return f"<RoleMultiplier guild={self.guild_id} role={self.role_id} x{self.multiplier}>"


class ExcludedChannel(Base):
    __tablename__ = "excluded_channels"

    guild_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    channel_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)


# ---------------------------------------------------------------------------
# Rooms — member-owned voice channels
# ---------------------------------------------------------------------------
class Room(Base):
    __tablename__ = "rooms"

    channel_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    guild_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    owner_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<Room ch={self.channel_id} owner={self.owner_id} name={self.name!r}>"


# ---------------------------------------------------------------------------
# RoomModerationState — MUTED / BANNED markers inside a room
# ---------------------------------------------------------------------------
class RoomModerationState(Base):
    __tablename__ = "room_moderation_states"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    guild_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    room_channel_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    state_kind: Mapped[ModerationStateKind] = mapped_column(
        Enum(ModerationStateKind, name="moderation_state_kind"), nullable=False
    )
    reason: Mapped[str] = mapped_column(Text, nullable=False, default="No reason provided")
    applied_by: Mapped[int] = mapped_column(BigInteger, nullable=False)
    applied_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "guild_id", "room_channel_id", "user_id", "state_kind",
            name="uq_room_moderation_state",
        ),
        Index("ix_room_moderation_room_kind", "guild_id", "room_channel_id", "state_kind"),
        Index("ix_room_moderation_user", "guild_id", "user_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<RoomModerationState room={self.room_channel_id} user={self.user_id} "
            f"{self.state_kind}>"
        )


# ---------------------------------------------------------------------------
# AdminLog — append-only audit trail
# ---------------------------------------------------------------------------
class AdminLog(Base):
    __tablename__ = "admin_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    guild_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    actor_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
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
        Index("ix_admin_log_guild_time", "guild_id", "timestamp"),
        Index("ix_admin_log_target", "target_table", "target_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<AdminLog id={self.id} actor={self.actor_id} action={self.action_type}>"
