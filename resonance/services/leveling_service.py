"""
resonance.services.leveling_service — XP Awards & Level Maintenance
====================================================================

Shared service module callable by both bot and API.  Applies the pure XP
rules from :mod:`resonance.engine.xp` to ``user_levels`` rows and keeps
``level`` equal to ``level_for_xp(xp)`` after every write.

Award paths
-----------
* :func:`award_message_xp` — flat grant per message, per-guild cooldown.
* :func:`award_voice_xp` — whole minutes × rate; used when a session closes
  (via :func:`settle_closed_session`).
* :func:`accrue_voice_xp` — the periodic poll: credits the whole minutes of
  the *still open* session since its ``last_xp_update`` anchor and moves the
  anchor forward by exactly that much, in the same transaction.  Because the
  close path measures its unrewarded minutes from the same anchor, each
  minute of voice time is credited at most once.

Gains stay unrounded until booked: the fraction of an XP point left after
an award is kept on the row (``voice_xp_remainder``,
``message_xp_remainder``) and counted toward the next award of that source.

Every award returns an :class:`~resonance.engine.xp.XpAward`; no-ops
(cooldown, excluded channel, session changed, < 1 minute) are outcomes, not
errors.  Whether a level-up is announced is up to the caller.

Admin paths (:func:`adjust_xp`, :func:`set_xp`, :func:`reset_xp`) require an
existing record, raise :class:`NotFoundError` otherwise, and are audited.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.orm import Session

from resonance.database.engine import get_session, run_optimistic
from resonance.database.models import AdminActionType, UserActivity, UserLevel
from resonance.engine.curve import level_for_xp, xp_required_for_level
from resonance.engine.errors import InvalidInputError, NotFoundError
from resonance.engine.settings import LevelSettings
from resonance.engine.timekeeping import claim_whole_minutes, ensure_utc, utc_now
from resonance.engine.xp import (
    AwardOutcome,
    XpAward,
    carry_fraction,
    cooldown_remaining,
    message_xp_gain,
    voice_xp_gain,
)
from resonance.services.audit import log_admin_action, row_to_dict
from resonance.services.session_service import ClosedSession, find_open_session

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Row helpers
# ---------------------------------------------------------------------------
def get_or_create_level(
    session: Session,
    guild_id: int,
    user_id: int,
    username: str | None = None,
    display_name: str | None = None,
) -> UserLevel:
    """Fetch or insert the member's ``user_levels`` row."""
    row = session.get(UserLevel, (guild_id, user_id))
    if row is None:
        row = UserLevel(
            guild_id=guild_id,
            user_id=user_id,
            username=username or "",
            display_name=display_name or username or "",
            xp=0,
            voice_xp=0,
            message_xp=0,
            level=0,
            voice_xp_remainder=0.0,
            message_xp_remainder=0.0,
        )
        session.add(row)
        session.flush()
    else:
        if username:
            row.username = username
        if display_name:
            row.display_name = display_name
    return row


def _book_xp(
    row: UserLevel,
    settings: LevelSettings,
    now: datetime,
    *,
    voice: float = 0.0,
    message: float = 0.0,
) -> int:
    """Add unrounded gains to *row*; returns the whole XP actually booked."""
    voice_whole, row.voice_xp_remainder = carry_fraction(voice, row.voice_xp_remainder or 0.0)
    message_whole, row.message_xp_remainder = carry_fraction(
        message, row.message_xp_remainder or 0.0,
    )
    row.voice_xp += voice_whole
    row.message_xp += message_whole
    row.xp += voice_whole + message_whole
    row.level = level_for_xp(row.xp, settings)
    row.last_updated = now
    return voice_whole + message_whole


def _describe(
    outcome: AwardOutcome,
    row: UserLevel,
    settings: LevelSettings,
    *,
    old_level: int,
    xp_gained: int = 0,
    multiplier: float = 1.0,
    minutes: int = 0,
) -> XpAward:
    return XpAward(
        outcome=outcome,
        guild_id=row.guild_id,
        user_id=row.user_id,
        xp_gained=xp_gained,
        multiplier=multiplier,
        total_xp=row.xp,
        old_level=old_level,
        new_level=row.level,
        next_level_xp=xp_required_for_level(row.level + 1, settings),
        minutes_credited=minutes,
    )


def _log_level_up(award: XpAward) -> None:
    if award.leveled_up:
        logger.info(
            "Level up: guild=%s user=%s %d → %d (xp=%d)",
            award.guild_id, award.user_id, award.old_level, award.new_level, award.total_xp,
        )


# ---------------------------------------------------------------------------
# Message XP
# ---------------------------------------------------------------------------
def _award_message(
    engine: Engine,
    settings: LevelSettings,
    guild_id: int,
    user_id: int,
    username: str | None,
    display_name: str | None,
    multiplier: float,
    now: datetime,
) -> XpAward:
    with get_session(engine) as session:
        row = get_or_create_level(session, guild_id, user_id, username, display_name)
        remaining = cooldown_remaining(
            row.last_message_xp_at, now, settings.message_xp_cooldown_seconds,
        )
        if remaining > 0:
            return _describe(AwardOutcome.COOLDOWN, row, settings, old_level=row.level)

        old_level = row.level
        gain = _book_xp(row, settings, now, message=message_xp_gain(settings, multiplier))
        row.last_message_xp_at = now
        session.flush()
        return _describe(
            AwardOutcome.AWARDED, row, settings,
            old_level=old_level, xp_gained=gain, multiplier=multiplier,
        )


def award_message_xp(
    engine: Engine,
    settings: LevelSettings,
    *,
    guild_id: int,
    user_id: int,
    channel_id: int | None = None,
    username: str | None = None,
    display_name: str | None = None,
    multiplier: float = 1.0,
    now: datetime | None = None,
) -> XpAward:
    """Grant message XP unless the channel is excluded or the cooldown holds."""
    if settings.is_excluded(channel_id):
        return XpAward(AwardOutcome.EXCLUDED_CHANNEL, guild_id, user_id)
    now = ensure_utc(now) or utc_now()
    award = run_optimistic(
        _award_message, engine, settings, guild_id, user_id,
        username, display_name, multiplier, now,
    )
    _log_level_up(award)
    return award


# ---------------------------------------------------------------------------
# Voice XP
# ---------------------------------------------------------------------------
def _award_voice(
    engine: Engine,
    settings: LevelSettings,
    guild_id: int,
    user_id: int,
    minutes: int,
    username: str | None,
    display_name: str | None,
    multiplier: float,
    now: datetime,
) -> XpAward:
    with get_session(engine) as session:
        row = get_or_create_level(session, guild_id, user_id, username, display_name)
        old_level = row.level
        gain = _book_xp(row, settings, now, voice=voice_xp_gain(minutes, settings, multiplier))
        session.flush()
        return _describe(
            AwardOutcome.AWARDED, row, settings,
            old_level=old_level, xp_gained=gain, multiplier=multiplier, minutes=minutes,
        )


def award_voice_xp(
    engine: Engine,
    settings: LevelSettings,
    *,
    guild_id: int,
    user_id: int,
    minutes_active: float,
    channel_id: int | None = None,
    username: str | None = None,
    display_name: str | None = None,
    multiplier: float = 1.0,
    now: datetime | None = None,
) -> XpAward:
    """Grant XP for *minutes_active* of voice time (whole minutes only)."""
    if settings.is_excluded(channel_id):
        return XpAward(AwardOutcome.EXCLUDED_CHANNEL, guild_id, user_id)
    minutes = math.floor(minutes_active)
    if minutes < 1:
        return XpAward(AwardOutcome.TOO_SHORT, guild_id, user_id)
    now = ensure_utc(now) or utc_now()
    award = run_optimistic(
        _award_voice, engine, settings, guild_id, user_id, minutes,
        username, display_name, multiplier, now,
    )
    _log_level_up(award)
    return award


def settle_closed_session(
    engine: Engine,
    settings: LevelSettings,
    closed: ClosedSession,
    *,
    username: str | None = None,
    display_name: str | None = None,
    multiplier: float = 1.0,
) -> XpAward:
    """Credit the minutes of a just-closed session the poller never reached."""
    row = closed.session
    return award_voice_xp(
        engine,
        settings,
        guild_id=row.guild_id,
        user_id=row.user_id,
        minutes_active=closed.unrewarded_minutes,
        channel_id=row.channel_id,
        username=username,
        display_name=display_name,
        multiplier=multiplier,
        now=row.left_at,
    )


def _accrue_voice(
    engine: Engine,
    settings: LevelSettings,
    guild_id: int,
    user_id: int,
    session_id: int,
    multiplier: float,
    now: datetime,
) -> XpAward:
    with get_session(engine) as session:
        activity = session.get(UserActivity, (guild_id, user_id))
        current = find_open_session(session, guild_id, user_id) if activity else None
        if current is None or current.id != session_id:
            return XpAward(AwardOutcome.SESSION_CHANGED, guild_id, user_id)
        if settings.is_excluded(current.channel_id):
            return XpAward(AwardOutcome.EXCLUDED_CHANNEL, guild_id, user_id)

        claim = claim_whole_minutes(activity.last_xp_update or current.joined_at, now)
        if claim.minutes < 1:
            return XpAward(AwardOutcome.TOO_SHORT, guild_id, user_id)

        activity.last_xp_update = claim.next_anchor
        row = get_or_create_level(
            session, guild_id, user_id, activity.username, activity.display_name,
        )
        old_level = row.level
        gain = _book_xp(
            row, settings, now, voice=voice_xp_gain(claim.minutes, settings, multiplier),
        )
        session.flush()
        return _describe(
            AwardOutcome.AWARDED, row, settings,
            old_level=old_level, xp_gained=gain, multiplier=multiplier, minutes=claim.minutes,
        )


def accrue_voice_xp(
    engine: Engine,
    settings: LevelSettings,
    *,
    guild_id: int,
    user_id: int,
    session_id: int,
    multiplier: float = 1.0,
    now: datetime | None = None,
) -> XpAward:
    """Credit elapsed whole minutes of the open session *session_id*.

    Returns ``SESSION_CHANGED`` when that session is no longer the member's
    open one (they left or moved since the poll started).
    """
    now = ensure_utc(now) or utc_now()
    award = run_optimistic(
        _accrue_voice, engine, settings, guild_id, user_id, session_id, multiplier, now,
    )
    _log_level_up(award)
    return award


# ---------------------------------------------------------------------------
# Admin tools
# ---------------------------------------------------------------------------
def _require_int(name: str, value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidInputError(f"{name} must be a whole number")
    return value


def _admin_write(
    engine: Engine,
    settings: LevelSettings,
    guild_id: int,
    user_id: int,
    actor_id: int,
    action: AdminActionType,
    new_xp: int | None,
    delta: int | None,
    reason: str | None,
    now: datetime,
) -> XpAward:
    with get_session(engine) as session:
        row = session.get(UserLevel, (guild_id, user_id))
        if row is None:
            raise NotFoundError(f"User {user_id} has no level record in guild {guild_id}")

        before = row_to_dict(row)
        old_level = row.level
        old_xp = row.xp

        if action is AdminActionType.XP_RESET:
            row.xp = row.voice_xp = row.message_xp = 0
            row.voice_xp_remainder = row.message_xp_remainder = 0.0
            row.last_message_xp_at = None
        elif action is AdminActionType.XP_SET:
            row.xp = new_xp
        else:
            row.xp = max(0, row.xp + delta)
        row.level = level_for_xp(row.xp, settings)
        row.last_updated = now
        session.flush()

        log_admin_action(
            session,
            guild_id=guild_id,
            actor_id=actor_id,
            action_type=action.value,
            target_table="user_levels",
            target_id=f"{guild_id}:{user_id}",
            before=before,
            after=row_to_dict(row),
            reason=reason,
        )
        return _describe(
            AwardOutcome.ADJUSTED, row, settings,
            old_level=old_level, xp_gained=row.xp - old_xp,
        )


def adjust_xp(
    engine: Engine,
    settings: LevelSettings,
    *,
    guild_id: int,
    user_id: int,
    amount: int,
    actor_id: int,
    reason: str | None = None,
    now: datetime | None = None,
) -> XpAward:
    """Add (or, when negative, remove) XP.  Total XP never drops below 0."""
    amount = _require_int("amount", amount)
    now = ensure_utc(now) or utc_now()
    return run_optimistic(
        _admin_write, engine, settings, guild_id, user_id, actor_id,
        AdminActionType.XP_ADJUST, None, amount, reason, now,
    )


def set_xp(
    engine: Engine,
    settings: LevelSettings,
    *,
    guild_id: int,
    user_id: int,
    xp: int,
    actor_id: int,
    reason: str | None = None,
    now: datetime | None = None,
) -> XpAward:
    xp = _require_int("xp", xp)
    if xp < 0:
        raise InvalidInputError("xp cannot be negative")
    now = ensure_utc(now) or utc_now()
    return run_optimistic(
        _admin_write, engine, settings, guild_id, user_id, actor_id,
        AdminActionType.XP_SET, xp, None, reason, now,
    )


def reset_xp(
    engine: Engine,
    settings: LevelSettings,
    *,
    guild_id: int,
    user_id: int,
    actor_id: int,
    reason: str | None = None,
    now: datetime | None = None,
) -> XpAward:
    """Zero a member's XP (all sources) and level."""
    now = ensure_utc(now) or utc_now()
    return run_optimistic(
        _admin_write, engine, settings, guild_id, user_id, actor_id,
        AdminActionType.XP_RESET, None, None, reason, now,
    )


def _relevel(engine: Engine, settings: LevelSettings, user_id: int) -> bool:
    with get_session(engine) as session:
        row = session.get(UserLevel, (settings.guild_id, user_id))
        if row is None:
            return False
        level = level_for_xp(row.xp, settings)
        if level == row.level:
            return False
        row.level = level
        return True


def recalculate_levels(engine: Engine, settings: LevelSettings) -> int:
    """Re-derive every level in the guild after a curve change.

    Each member is re-levelled in its own version-checked transaction, so a
    concurrent award only retries that member.  Returns the number of rows
    whose level changed.
    """
    with get_session(engine) as session:
        user_ids = session.scalars(
            select(UserLevel.user_id).where(UserLevel.guild_id == settings.guild_id)
        ).all()
    changed = sum(run_optimistic(_relevel, engine, settings, user_id) for user_id in user_ids)
    logger.info("Recalculated levels for guild %s: %d changed", settings.guild_id, changed)
    return changed


def get_user_level(engine: Engine, guild_id: int, user_id: int) -> UserLevel | None:
    with get_session(engine) as session:
        return session.get(UserLevel, (guild_id, user_id))
