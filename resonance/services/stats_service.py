"""
resonance.services.stats_service — Leaderboards, Profiles & Charts
===================================================================

Read-only aggregation over the tracked data.  Nothing here writes; members
without records get zero-valued defaults instead of errors.

Leaderboard order
-----------------
XP descending.  Equal XP is broken by ``last_updated`` ascending (whoever
reached that total first ranks higher; never-updated rows last), then by
``user_id`` ascending, so the order is total and stable between calls.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import func, or_, select

from resonance.database.engine import get_session
from resonance.database.models import ActivitySession, Room, UserActivity, UserLevel
from resonance.engine.buckets import DayActivity, bucket_by_day
from resonance.engine.curve import LevelProgress, level_progress
from resonance.engine.settings import LevelSettings
from resonance.engine.timekeeping import TimeAccount, elapsed_ms, ensure_utc, utc_now
from resonance.services.moderation_service import RoomModerationStats, get_room_moderation_stats
from resonance.services.session_service import find_open_session

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class LeaderboardEntry:
    rank: int
    user_id: int
    username: str
    display_name: str
    xp: int
    level: int
    progress: LevelProgress


@dataclass(frozen=True, slots=True)
class TimeLeaderboardEntry:
    rank: int
    user_id: int
    username: str
    display_name: str
    total_time_ms: int
    total_sessions: int


@dataclass(frozen=True, slots=True)
class UserStats:
    """Everything a profile card shows for one member."""

    guild_id: int
    user_id: int
    username: str = ""
    display_name: str = ""
    total_time_ms: int = 0
    total_sessions: int = 0
    current_session_ms: int = 0
    current_channel_id: int | None = None
    current_channel_name: str | None = None
    first_seen: datetime | None = None
    last_active: datetime | None = None
    xp: int = 0
    voice_xp: int = 0
    message_xp: int = 0
    rank: int | None = None
    progress: LevelProgress | None = None

    @property
    def is_active(self) -> bool:
        return self.current_channel_id is not None

    @property
    def level(self) -> int:
        return self.progress.level if self.progress else 0


@dataclass(slots=True)
class RoomOverview:
    guild_id: int
    room_channel_id: int
    owner_id: int | None = None
    name: str | None = None
    moderation: RoomModerationStats | None = None
    active_members: list[int] = field(default_factory=list)


# ---------------------------------------------------------------------------
# XP leaderboard
# ---------------------------------------------------------------------------
_LEADERBOARD_ORDER = (
    UserLevel.xp.desc(),
    UserLevel.last_updated.asc().nulls_last(),
    UserLevel.user_id.asc(),
)


def get_leaderboard(
    engine: Engine,
    settings: LevelSettings,
    guild_id: int,
    limit: int = 10,
    offset: int = 0,
) -> list[LeaderboardEntry]:
    with get_session(engine) as session:
        rows = session.scalars(
            select(UserLevel)
            .where(UserLevel.guild_id == guild_id)
            .order_by(*_LEADERBOARD_ORDER)
            .offset(offset)
            .limit(limit)
        ).all()
    return [
        LeaderboardEntry(
            rank=offset + i,
            user_id=row.user_id,
            username=row.username,
            display_name=row.display_name or row.username,
            xp=row.xp,
            level=row.level,
            progress=level_progress(row.xp, settings),
        )
        for i, row in enumerate(rows, start=1)
    ]


def count_ranked_users(engine: Engine, guild_id: int) -> int:
    with get_session(engine) as session:
        return session.scalar(
            select(func.count()).select_from(UserLevel).where(UserLevel.guild_id == guild_id)
        ) or 0


def get_user_rank(engine: Engine, guild_id: int, user_id: int) -> int | None:
    """1-based XP rank, or ``None`` for a member with no level record."""
    with get_session(engine) as session:
        ordered = session.scalars(
            select(UserLevel.user_id)
            .where(UserLevel.guild_id == guild_id)
            .order_by(*_LEADERBOARD_ORDER)
        ).all()
    try:
        return ordered.index(user_id) + 1
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Voice-time leaderboard
# ---------------------------------------------------------------------------
def get_activity_leaderboard(
    engine: Engine,
    guild_id: int,
    limit: int = 10,
) -> list[TimeLeaderboardEntry]:
    """Members by closed-session voice time, most first."""
    with get_session(engine) as session:
        rows = session.scalars(
            select(UserActivity)
            .where(UserActivity.guild_id == guild_id, UserActivity.total_time_ms > 0)
            .order_by(UserActivity.total_time_ms.desc(), UserActivity.user_id.asc())
            .limit(limit)
        ).all()
    return [
        TimeLeaderboardEntry(
            rank=i,
            user_id=row.user_id,
            username=row.username,
            display_name=row.display_name or row.username,
            total_time_ms=row.total_time_ms,
            total_sessions=row.total_sessions,
        )
        for i, row in enumerate(rows, start=1)
    ]


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------
def get_user_stats(
    engine: Engine,
    settings: LevelSettings,
    guild_id: int,
    user_id: int,
    now: datetime | None = None,
) -> UserStats:
    """Voice totals (including the running session) plus level standing."""
    now = ensure_utc(now) or utc_now()
    with get_session(engine) as session:
        activity = session.get(UserActivity, (guild_id, user_id))
        level = session.get(UserLevel, (guild_id, user_id))
        current = find_open_session(session, guild_id, user_id) if activity else None

    rank = get_user_rank(engine, guild_id, user_id) if level else None
    current_ms = elapsed_ms(current.joined_at, now) if current else 0
    xp = level.xp if level else 0
    names = activity or level

    return UserStats(
        guild_id=guild_id,
        user_id=user_id,
        username=names.username if names else "",
        display_name=(names.display_name or names.username) if names else "",
        total_time_ms=(activity.total_time_ms if activity else 0) + current_ms,
        total_sessions=(activity.total_sessions if activity else 0) + (1 if current else 0),
        current_session_ms=current_ms,
        current_channel_id=current.channel_id if current else None,
        current_channel_name=current.channel_name if current else None,
        first_seen=ensure_utc(activity.first_seen) if activity else None,
        last_active=ensure_utc(activity.last_active) if activity else None,
        xp=xp,
        voice_xp=level.voice_xp if level else 0,
        message_xp=level.message_xp if level else 0,
        rank=rank,
        progress=level_progress(xp, settings),
    )


# ---------------------------------------------------------------------------
# Activity chart
# ---------------------------------------------------------------------------
def get_activity_by_day(
    engine: Engine,
    guild_id: int,
    user_id: int,
    days: int = 7,
    now: datetime | None = None,
) -> list[DayActivity]:
    """Voice time per UTC day for the trailing *days* days, oldest first."""
    now = ensure_utc(now) or utc_now()
    window_start = (now - timedelta(days=max(days, 1))).replace(
        hour=0, minute=0, second=0, microsecond=0,
    )
    with get_session(engine) as session:
        rows = session.scalars(
            select(ActivitySession).where(
                ActivitySession.guild_id == guild_id,
                ActivitySession.user_id == user_id,
                ActivitySession.joined_at < now,
                or_(ActivitySession.left_at.is_(None), ActivitySession.left_at >= window_start),
            )
        ).all()
    accounts = [TimeAccount(ensure_utc(r.joined_at), ensure_utc(r.left_at)) for r in rows]
    return bucket_by_day(accounts, now, days)


# ---------------------------------------------------------------------------
# Rooms
# ---------------------------------------------------------------------------
def get_room_overview(engine: Engine, guild_id: int, room_channel_id: int) -> RoomOverview:
    """Owner, current occupants and moderation markers of one room."""
    with get_session(engine) as session:
        room = session.get(Room, room_channel_id)
        occupants = session.scalars(
            select(ActivitySession.user_id)
            .where(
                ActivitySession.guild_id == guild_id,
                ActivitySession.channel_id == room_channel_id,
                ActivitySession.left_at.is_(None),
            )
            .order_by(ActivitySession.joined_at)
        ).all()
    return RoomOverview(
        guild_id=guild_id,
        room_channel_id=room_channel_id,
        owner_id=room.owner_id if room else None,
        name=room.name if room else None,
        moderation=get_room_moderation_stats(engine, guild_id, room_channel_id),
        active_members=list(occupants),
    )
