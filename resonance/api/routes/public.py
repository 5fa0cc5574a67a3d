"""
resonance.api.routes.public — Read-only guild endpoints
========================================================

Discord snowflakes are returned as strings (they overflow JavaScript
numbers); durations are milliseconds.
"""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy import Engine

from resonance.api.deps import get_engine
from resonance.engine.curve import LevelProgress
from resonance.services.room_service import list_rooms
from resonance.services.settings_service import get_guild_level_settings
from resonance.services.stats_service import (
    count_ranked_users,
    get_activity_by_day,
    get_activity_leaderboard,
    get_leaderboard,
    get_room_overview,
    get_user_stats,
)

router = APIRouter(prefix="/guilds/{guild_id}", tags=["public"])


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _progress_dict(p: LevelProgress) -> dict:
    return {
        "level": p.level,
        "xp": p.xp,
        "current_level_xp": p.current_level_xp,
        "next_level_xp": p.next_level_xp,
        "xp_to_next_level": p.xp_to_next_level,
        "progress_percent": p.progress_percent,
    }


# ---------------------------------------------------------------------------
# GET /guilds/{guild_id}/leaderboard
# ---------------------------------------------------------------------------
@router.get("/leaderboard")
def leaderboard(
    guild_id: int,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    engine: Engine = Depends(get_engine),
):
    """Paginated XP leaderboard."""
    settings = get_guild_level_settings(engine, guild_id)
    offset = (page - 1) * page_size
    entries = get_leaderboard(engine, settings, guild_id, limit=page_size, offset=offset)
    return {
        "total": count_ranked_users(engine, guild_id),
        "page": page,
        "page_size": page_size,
        "users": [
            {
                "rank": e.rank,
                "id": str(e.user_id),
                "username": e.username,
                "display_name": e.display_name,
                "xp": e.xp,
                "level": e.level,
                "progress": _progress_dict(e.progress),
            }
            for e in entries
        ],
    }


# ---------------------------------------------------------------------------
# GET /guilds/{guild_id}/voice-leaderboard
# ---------------------------------------------------------------------------
@router.get("/voice-leaderboard")
def voice_leaderboard(
    guild_id: int,
    limit: int = Query(10, ge=1, le=100),
    engine: Engine = Depends(get_engine),
):
    """Members by total voice time."""
    return {
        "users": [
            {
                "rank": e.rank,
                "id": str(e.user_id),
                "username": e.username,
                "display_name": e.display_name,
                "total_time_ms": e.total_time_ms,
                "total_sessions": e.total_sessions,
            }
            for e in get_activity_leaderboard(engine, guild_id, limit)
        ],
    }


# ---------------------------------------------------------------------------
# GET /guilds/{guild_id}/users/{user_id}
# ---------------------------------------------------------------------------
@router.get("/users/{user_id}")
def user_stats(guild_id: int, user_id: int, engine: Engine = Depends(get_engine)):
    """Profile: voice totals, live session and level standing."""
    settings = get_guild_level_settings(engine, guild_id)
    stats = get_user_stats(engine, settings, guild_id, user_id)
    return {
        "id": str(stats.user_id),
        "username": stats.username,
        "display_name": stats.display_name,
        "total_time_ms": stats.total_time_ms,
        "total_sessions": stats.total_sessions,
        "is_active": stats.is_active,
        "current_session_ms": stats.current_session_ms,
        "current_channel_id": str(stats.current_channel_id) if stats.current_channel_id else None,
        "current_channel_name": stats.current_channel_name,
        "first_seen": _iso(stats.first_seen),
        "last_active": _iso(stats.last_active),
        "xp": stats.xp,
        "voice_xp": stats.voice_xp,
        "message_xp": stats.message_xp,
        "rank": stats.rank,
        "progress": _progress_dict(stats.progress) if stats.progress else None,
    }


@router.get("/users/{user_id}/activity")
def user_activity(
    guild_id: int,
    user_id: int,
    days: int = Query(7, ge=1, le=90),
    engine: Engine = Depends(get_engine),
):
    """Voice time per UTC day, oldest first."""
    return {
        "days": [
            {"day": d.day.isoformat(), "duration_ms": d.duration_ms, "minutes": d.minutes}
            for d in get_activity_by_day(engine, guild_id, user_id, days)
        ],
    }


# ---------------------------------------------------------------------------
# GET /guilds/{guild_id}/rooms
# ---------------------------------------------------------------------------
@router.get("/rooms")
def rooms(guild_id: int, engine: Engine = Depends(get_engine)):
    """Registered member-owned voice rooms."""
    return {
        "rooms": [
            {
                "id": str(r.channel_id),
                "name": r.name,
                "owner_id": str(r.owner_id),
                "created_at": _iso(r.created_at),
            }
            for r in list_rooms(engine, guild_id)
        ],
    }


# ---------------------------------------------------------------------------
# GET /guilds/{guild_id}/rooms/{room_id}
# ---------------------------------------------------------------------------
@router.get("/rooms/{room_id}")
def room_overview(guild_id: int, room_id: int, engine: Engine = Depends(get_engine)):
    """Owner, occupants and moderation markers of a voice room."""
    overview = get_room_overview(engine, guild_id, room_id)
    moderation = overview.moderation
    return {
        "id": str(room_id),
        "name": overview.name,
        "owner_id": str(overview.owner_id) if overview.owner_id else None,
        "active_members": [str(uid) for uid in overview.active_members],
        "moderation": {
            kind.value: [str(uid) for uid in ids]
            for kind, ids in moderation.users.items()
        } if moderation else {},
        "total_moderated_users": moderation.total_moderated_users if moderation else 0,
    }


# ---------------------------------------------------------------------------
# GET /guilds/{guild_id}/settings
# ---------------------------------------------------------------------------
@router.get("/settings")
def level_settings(guild_id: int, engine: Engine = Depends(get_engine)):
    """Effective XP rates and level curve."""
    s = get_guild_level_settings(engine, guild_id)
    return {
        "voice_xp_per_minute": s.voice_xp_per_minute,
        "message_xp_per_message": s.message_xp_per_message,
        "message_xp_cooldown_seconds": s.message_xp_cooldown_seconds,
        "base_multiplier": s.base_multiplier,
        "scaling_multiplier": s.scaling_multiplier,
        "level_roles": {str(level): str(role) for level, role in sorted(s.level_roles.items())},
        "role_multipliers": {str(role): m for role, m in s.role_multipliers.items()},
        "excluded_channels": sorted(str(c) for c in s.excluded_channels),
    }
