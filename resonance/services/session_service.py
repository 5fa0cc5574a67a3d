"""
resonance.services.session_service — Voice Session Tracking
============================================================

Turns voice join / leave / switch events into ``activity_sessions`` rows
and keeps the per-member totals on ``user_activity`` in step with them.

Each member is either *Idle* (no open session) or *Active* in exactly one
channel.  Every transition runs in a single transaction that

* closes the open session (``left_at``, ``duration_ms``) and adds its
  duration to ``total_time_ms`` / ``total_sessions``, and/or
* opens a new session for the target channel.

A switch is a close followed by an open inside that one transaction.  A join
for the channel the member is already in is a duplicate and changes nothing;
a join while Active elsewhere (a missed leave) is applied as a switch; a
leave while Idle is logged and ignored.

Closing a session reports how many whole minutes of it were never rewarded
with voice XP (``ClosedSession.unrewarded_minutes``), measured from the
``last_xp_update`` anchor the periodic accrual advances.  The caller settles
those minutes through :func:`resonance.services.leveling_service.settle_closed_session`.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.orm import Session

from resonance.database.engine import get_session, run_optimistic
from resonance.database.models import ActivitySession, UserActivity
from resonance.engine.presence import TransitionKind, VoiceChannelRef, classify_voice_update
from resonance.engine.timekeeping import claim_whole_minutes, elapsed_ms, ensure_utc, utc_now

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

#: ``(channel_id, user_id) -> is the user the channel's owner``
OwnerLookup = Callable[[int, int], bool]


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------
@dataclass(slots=True)
class ClosedSession:
    session: ActivitySession
    unrewarded_minutes: int


@dataclass(slots=True)
class SessionTransition:
    """What a voice event actually did to a member's session state."""

    kind: TransitionKind
    guild_id: int
    user_id: int
    closed: ClosedSession | None = None
    opened: ActivitySession | None = None

    @property
    def changed(self) -> bool:
        return self.closed is not None or self.opened is not None


@dataclass(frozen=True, slots=True)
class TimeStatistics:
    """Voice time totals including the in-progress session."""

    total_time_ms: int = 0
    total_sessions: int = 0
    current_session_ms: int = 0
    is_active: bool = False
    first_seen: datetime | None = None
    last_active: datetime | None = None

    @property
    def average_session_ms(self) -> int:
        return self.total_time_ms // self.total_sessions if self.total_sessions else 0


# ---------------------------------------------------------------------------
# Row helpers
# ---------------------------------------------------------------------------
def get_or_create_activity(
    session: Session,
    guild_id: int,
    user_id: int,
    now: datetime,
    username: str | None = None,
    display_name: str | None = None,
) -> UserActivity:
    """Fetch or insert the member's ``user_activity`` row."""
    activity = session.get(UserActivity, (guild_id, user_id))
    if activity is None:
        activity = UserActivity(
            guild_id=guild_id,
            user_id=user_id,
            username=username or "",
            display_name=display_name or username or "",
            total_sessions=0,
            total_time_ms=0,
            first_seen=now,
            last_active=now,
        )
        session.add(activity)
        session.flush()
    else:
        if username:
            activity.username = username
        if display_name:
            activity.display_name = display_name
    return activity


def find_open_session(session: Session, guild_id: int, user_id: int) -> ActivitySession | None:
    return session.scalar(
        select(ActivitySession).where(
            ActivitySession.guild_id == guild_id,
            ActivitySession.user_id == user_id,
            ActivitySession.left_at.is_(None),
        )
    )


def _close(activity: UserActivity, row: ActivitySession, now: datetime) -> ClosedSession:
    anchor = activity.last_xp_update or row.joined_at
    claim = claim_whole_minutes(anchor, now)

    row.left_at = now
    row.duration_ms = elapsed_ms(row.joined_at, now)

    activity.total_time_ms += row.duration_ms
    activity.total_sessions += 1
    activity.last_active = now
    activity.last_xp_update = None
    return ClosedSession(session=row, unrewarded_minutes=claim.minutes)


def _open(
    session: Session,
    activity: UserActivity,
    channel: VoiceChannelRef,
    is_owner: bool,
    now: datetime,
) -> ActivitySession:
    row = ActivitySession(
        guild_id=activity.guild_id,
        user_id=activity.user_id,
        channel_id=channel.channel_id,
        channel_name=channel.name,
        joined_at=now,
        left_at=None,
        duration_ms=0,
        is_owner=is_owner,
    )
    session.add(row)
    activity.last_active = now
    activity.last_xp_update = now
    return row


def _lookup_owner(owner_lookup: OwnerLookup | None, channel_id: int, user_id: int) -> bool:
    if owner_lookup is None:
        return False
    try:
        return bool(owner_lookup(channel_id, user_id))
    except Exception:
        logger.exception("Room ownership lookup failed for channel %s", channel_id)
        return False


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------
def _move(
    engine: Engine,
    guild_id: int,
    user_id: int,
    target: VoiceChannelRef | None,
    is_owner: bool,
    now: datetime,
    username: str | None,
    display_name: str | None,
) -> SessionTransition:
    """Bring the member's state to *target* (``None`` = Idle) in one transaction."""
    with get_session(engine) as session:
        if target is None:
            activity = session.get(UserActivity, (guild_id, user_id))
            current = find_open_session(session, guild_id, user_id) if activity else None
            if current is None:
                logger.debug("Leave for idle member %s in guild %s ignored", user_id, guild_id)
                return SessionTransition(TransitionKind.NONE, guild_id, user_id)
            closed = _close(activity, current, now)
            logger.info(
                "Voice session closed: user=%s channel=%s %dms",
                user_id, current.channel_id, current.duration_ms,
            )
            return SessionTransition(TransitionKind.LEAVE, guild_id, user_id, closed=closed)

        activity = get_or_create_activity(
            session, guild_id, user_id, now, username, display_name,
        )
        current = find_open_session(session, guild_id, user_id)
        if current is not None and current.channel_id == target.channel_id:
            logger.debug("Duplicate join for user %s in channel %s", user_id, target.channel_id)
            return SessionTransition(TransitionKind.NONE, guild_id, user_id)

        closed = None
        if current is not None:
            closed = _close(activity, current, now)
            # The close must reach the DB before the new open row does.
            session.flush()
        opened = _open(session, activity, target, is_owner, now)
        session.flush()

        kind = TransitionKind.SWITCH if closed else TransitionKind.JOIN
        logger.info(
            "Voice session opened: user=%s channel=%s owner=%s (%s)",
            user_id, target.channel_id, is_owner, kind,
        )
        return SessionTransition(kind, guild_id, user_id, closed=closed, opened=opened)


def start_session(
    engine: Engine,
    *,
    guild_id: int,
    user_id: int,
    channel: VoiceChannelRef,
    username: str | None = None,
    display_name: str | None = None,
    owner_lookup: OwnerLookup | None = None,
    now: datetime | None = None,
) -> SessionTransition:
    """Idle → Active(channel)."""
    now = ensure_utc(now) or utc_now()
    is_owner = _lookup_owner(owner_lookup, channel.channel_id, user_id)
    return run_optimistic(
        _move, engine, guild_id, user_id, channel, is_owner, now, username, display_name,
    )


def switch_session(
    engine: Engine,
    *,
    guild_id: int,
    user_id: int,
    channel: VoiceChannelRef,
    username: str | None = None,
    display_name: str | None = None,
    owner_lookup: OwnerLookup | None = None,
    now: datetime | None = None,
) -> SessionTransition:
    """Active(c) → Active(channel): close then open, atomically."""
    now = ensure_utc(now) or utc_now()
    is_owner = _lookup_owner(owner_lookup, channel.channel_id, user_id)
    return run_optimistic(
        _move, engine, guild_id, user_id, channel, is_owner, now, username, display_name,
    )


def end_session(
    engine: Engine,
    *,
    guild_id: int,
    user_id: int,
    now: datetime | None = None,
) -> SessionTransition:
    """Active(c) → Idle.  A leave while Idle is a no-op."""
    now = ensure_utc(now) or utc_now()
    return run_optimistic(_move, engine, guild_id, user_id, None, False, now, None, None)


def handle_voice_update(
    engine: Engine,
    *,
    guild_id: int,
    user_id: int,
    before_channel_id: int | None,
    after: VoiceChannelRef | None,
    username: str | None = None,
    display_name: str | None = None,
    owner_lookup: OwnerLookup | None = None,
    now: datetime | None = None,
) -> SessionTransition:
    """Apply a raw *(before, after)* voice-state change."""
    kind = classify_voice_update(before_channel_id, after.channel_id if after else None)
    if kind is TransitionKind.NONE:
        return SessionTransition(TransitionKind.NONE, guild_id, user_id)
    if kind is TransitionKind.LEAVE:
        return end_session(engine, guild_id=guild_id, user_id=user_id, now=now)

    handler = start_session if kind is TransitionKind.JOIN else switch_session
    return handler(
        engine,
        guild_id=guild_id,
        user_id=user_id,
        channel=after,
        username=username,
        display_name=display_name,
        owner_lookup=owner_lookup,
        now=now,
    )


# ---------------------------------------------------------------------------
# Read paths
# ---------------------------------------------------------------------------
def get_user_activity(engine: Engine, guild_id: int, user_id: int) -> UserActivity | None:
    with get_session(engine) as session:
        return session.get(UserActivity, (guild_id, user_id))


def get_current_session(engine: Engine, guild_id: int, user_id: int) -> ActivitySession | None:
    with get_session(engine) as session:
        return find_open_session(session, guild_id, user_id)


def get_session_history(
    engine: Engine,
    guild_id: int,
    user_id: int,
    limit: int | None = None,
) -> list[ActivitySession]:
    """Closed sessions, oldest first.  With *limit*, only the most recent ones."""
    with get_session(engine) as session:
        stmt = (
            select(ActivitySession)
            .where(
                ActivitySession.guild_id == guild_id,
                ActivitySession.user_id == user_id,
                ActivitySession.left_at.is_not(None),
            )
            .order_by(ActivitySession.joined_at.desc(), ActivitySession.id.desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        rows = list(session.scalars(stmt).all())
    rows.reverse()
    return rows


def list_open_sessions(engine: Engine, guild_id: int | None = None) -> list[ActivitySession]:
    """Every open session (optionally in one guild), for the voice-XP poller."""
    with get_session(engine) as session:
        stmt = select(ActivitySession).where(ActivitySession.left_at.is_(None))
        if guild_id is not None:
            stmt = stmt.where(ActivitySession.guild_id == guild_id)
        return list(session.scalars(stmt.order_by(ActivitySession.id)).all())


def get_time_statistics(
    engine: Engine,
    guild_id: int,
    user_id: int,
    now: datetime | None = None,
) -> TimeStatistics:
    """Totals for one member, counting the open session up to *now*."""
    now = ensure_utc(now) or utc_now()
    with get_session(engine) as session:
        activity = session.get(UserActivity, (guild_id, user_id))
        if activity is None:
            return TimeStatistics()
        current = find_open_session(session, guild_id, user_id)

        current_ms = elapsed_ms(current.joined_at, now) if current else 0
        return TimeStatistics(
            total_time_ms=activity.total_time_ms + current_ms,
            total_sessions=activity.total_sessions + (1 if current else 0),
            current_session_ms=current_ms,
            is_active=current is not None,
            first_seen=ensure_utc(activity.first_seen),
            last_active=ensure_utc(activity.last_active),
        )
