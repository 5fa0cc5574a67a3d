"""
resonance.services.moderation_service — Per-Room Moderation State
==================================================================

Room owners can mute or ban members inside their own voice room.  Each
marker is one ``room_moderation_states`` row, unique per
*(guild, room, user, kind)*:

* :func:`set_state` is an idempotent upsert; re-applying refreshes the
  reason, author and timestamp.
* :func:`clear_state` removes a marker and reports whether one existed.
* The query helpers answer "who is banned here", "what applies to this
  member here" and "how moderated is this room".
* :func:`get_room_restrictions` gives the per-member view the bot uses to
  re-apply Discord permission overwrites.

Malformed writes raise :class:`InvalidInputError` before touching the DB.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from resonance.database.engine import get_session, run_optimistic
from resonance.database.models import AdminActionType, ModerationStateKind, RoomModerationState
from resonance.engine.errors import InvalidInputError
from resonance.engine.timekeeping import ensure_utc, utc_now
from resonance.services.audit import log_admin_action

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

DEFAULT_REASON = "No reason provided"
MAX_REASON_LENGTH = 500


@dataclass(slots=True)
class RoomModerationStats:
    """Counts and member ids per state kind for one room."""

    guild_id: int
    room_channel_id: int
    users: dict[ModerationStateKind, list[int]] = field(default_factory=dict)

    @property
    def counts(self) -> dict[ModerationStateKind, int]:
        return {kind: len(ids) for kind, ids in self.users.items()}

    @property
    def total_records(self) -> int:
        return sum(self.counts.values())

    @property
    def total_moderated_users(self) -> int:
        return len({uid for ids in self.users.values() for uid in ids})


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------
def coerce_state_kind(value: ModerationStateKind | str) -> ModerationStateKind:
    try:
        return ModerationStateKind(str(value).upper())
    except ValueError:
        raise InvalidInputError(f"Unknown moderation state: {value!r}") from None


def _require_id(name: str, value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidInputError(f"{name} must be a positive id, got {value!r}")
    return value


def _find(
    session: Session,
    guild_id: int,
    room_channel_id: int,
    user_id: int,
    kind: ModerationStateKind,
) -> RoomModerationState | None:
    return session.scalar(
        select(RoomModerationState).where(
            RoomModerationState.guild_id == guild_id,
            RoomModerationState.room_channel_id == room_channel_id,
            RoomModerationState.user_id == user_id,
            RoomModerationState.state_kind == kind,
        )
    )


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------
def _upsert(
    engine: Engine,
    guild_id: int,
    room_channel_id: int,
    user_id: int,
    kind: ModerationStateKind,
    reason: str,
    applied_by: int,
    now: datetime,
) -> RoomModerationState:
    with get_session(engine) as session:
        row = _find(session, guild_id, room_channel_id, user_id, kind)
        if row is None:
            row = RoomModerationState(
                guild_id=guild_id,
                room_channel_id=room_channel_id,
                user_id=user_id,
                state_kind=kind,
            )
            session.add(row)
        row.reason = reason
        row.applied_by = applied_by
        row.applied_at = now
        session.flush()
        return row


def set_state(
    engine: Engine,
    *,
    guild_id: int,
    room_channel_id: int,
    user_id: int,
    state_kind: ModerationStateKind | str,
    applied_by: int,
    reason: str | None = None,
    now: datetime | None = None,
) -> RoomModerationState:
    """Apply (or refresh) *state_kind* for *user_id* in the room."""
    _require_id("guild_id", guild_id)
    _require_id("room_channel_id", room_channel_id)
    _require_id("user_id", user_id)
    _require_id("applied_by", applied_by)
    kind = coerce_state_kind(state_kind)
    reason = (reason or "").strip() or DEFAULT_REASON
    if len(reason) > MAX_REASON_LENGTH:
        raise InvalidInputError(f"reason is longer than {MAX_REASON_LENGTH} characters")
    now = ensure_utc(now) or utc_now()

    row = run_optimistic(
        _upsert, engine, guild_id, room_channel_id, user_id, kind, reason, applied_by, now,
    )
    logger.info(
        "Room %s: %s applied to user %s by %s (%s)",
        room_channel_id, kind, user_id, applied_by, reason,
    )
    return row


def clear_state(
    engine: Engine,
    *,
    guild_id: int,
    room_channel_id: int,
    user_id: int,
    state_kind: ModerationStateKind | str,
) -> bool:
    """Remove the marker.  Returns ``False`` when there was nothing to remove."""
    kind = coerce_state_kind(state_kind)
    with get_session(engine) as session:
        result = session.execute(
            delete(RoomModerationState).where(
                RoomModerationState.guild_id == guild_id,
                RoomModerationState.room_channel_id == room_channel_id,
                RoomModerationState.user_id == user_id,
                RoomModerationState.state_kind == kind,
            )
        )
        removed = result.rowcount > 0
    if removed:
        logger.info("Room %s: %s cleared for user %s", room_channel_id, kind, user_id)
    return removed


def delete_room_states(session: Session, guild_id: int, room_channel_id: int) -> int:
    """Drop every marker of a room inside an existing transaction."""
    result = session.execute(
        delete(RoomModerationState).where(
            RoomModerationState.guild_id == guild_id,
            RoomModerationState.room_channel_id == room_channel_id,
        )
    )
    return result.rowcount


def clear_room_states(engine: Engine, *, guild_id: int, room_channel_id: int) -> int:
    """Remove all markers of a room (e.g. the room was deleted)."""
    with get_session(engine) as session:
        removed = delete_room_states(session, guild_id, room_channel_id)
    logger.info("Room %s: cleared %d moderation records", room_channel_id, removed)
    return removed


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def has_state(
    engine: Engine,
    *,
    guild_id: int,
    room_channel_id: int,
    user_id: int,
    state_kind: ModerationStateKind | str,
) -> bool:
    kind = coerce_state_kind(state_kind)
    with get_session(engine) as session:
        return _find(session, guild_id, room_channel_id, user_id, kind) is not None


def get_users_with_state(
    engine: Engine,
    guild_id: int,
    room_channel_id: int,
    state_kind: ModerationStateKind | str,
) -> set[int]:
    kind = coerce_state_kind(state_kind)
    with get_session(engine) as session:
        rows = session.scalars(
            select(RoomModerationState.user_id).where(
                RoomModerationState.guild_id == guild_id,
                RoomModerationState.room_channel_id == room_channel_id,
                RoomModerationState.state_kind == kind,
            )
        ).all()
    return set(rows)


def get_state_records(
    engine: Engine,
    guild_id: int,
    room_channel_id: int,
    state_kind: ModerationStateKind | str,
) -> list[RoomModerationState]:
    """Full records (reason, author, time) of one kind, newest first."""
    kind = coerce_state_kind(state_kind)
    with get_session(engine) as session:
        return list(session.scalars(
            select(RoomModerationState)
            .where(
                RoomModerationState.guild_id == guild_id,
                RoomModerationState.room_channel_id == room_channel_id,
                RoomModerationState.state_kind == kind,
            )
            .order_by(RoomModerationState.applied_at.desc(), RoomModerationState.id.desc())
        ).all())


def get_user_states(
    engine: Engine,
    guild_id: int,
    user_id: int,
    room_channel_id: int,
) -> list[RoomModerationState]:
    with get_session(engine) as session:
        return list(session.scalars(
            select(RoomModerationState)
            .where(
                RoomModerationState.guild_id == guild_id,
                RoomModerationState.room_channel_id == room_channel_id,
                RoomModerationState.user_id == user_id,
            )
            .order_by(RoomModerationState.state_kind)
        ).all())


def get_room_moderation_stats(
    engine: Engine,
    guild_id: int,
    room_channel_id: int,
) -> RoomModerationStats:
    stats = RoomModerationStats(
        guild_id=guild_id,
        room_channel_id=room_channel_id,
        users={kind: [] for kind in ModerationStateKind},
    )
    with get_session(engine) as session:
        rows = session.execute(
            select(RoomModerationState.state_kind, RoomModerationState.user_id)
            .where(
                RoomModerationState.guild_id == guild_id,
                RoomModerationState.room_channel_id == room_channel_id,
            )
            .order_by(RoomModerationState.user_id)
        ).all()
    for kind, user_id in rows:
        stats.users[kind].append(user_id)
    return stats


# ---------------------------------------------------------------------------
# Permission resync
# ---------------------------------------------------------------------------
def get_room_restrictions(
    engine: Engine,
    guild_id: int,
    room_channel_id: int,
    user_id: int | None = None,
) -> dict[int, set[ModerationStateKind]]:
    """Stored markers of a room grouped by member.

    With *user_id* only that member is returned, with an empty set when they
    have no markers, so any leftover overwrite can be lifted.
    """
    query = select(RoomModerationState.user_id, RoomModerationState.state_kind).where(
        RoomModerationState.guild_id == guild_id,
        RoomModerationState.room_channel_id == room_channel_id,
    )
    if user_id is not None:
        query = query.where(RoomModerationState.user_id == user_id)
    restrictions: dict[int, set[ModerationStateKind]] = {}
    if user_id is not None:
        restrictions[user_id] = set()
    with get_session(engine) as session:
        for uid, kind in session.execute(query.order_by(RoomModerationState.user_id)):
            restrictions.setdefault(uid, set()).add(kind)
    return restrictions


def record_room_sync(
    engine: Engine,
    *,
    guild_id: int,
    room_channel_id: int,
    actor_id: int,
    summary: dict,
) -> None:
    """Audit a permission resync of a room."""
    with get_session(engine) as session:
        log_admin_action(
            session,
            guild_id=guild_id,
            actor_id=actor_id,
            action_type=AdminActionType.ROOM_SYNC.value,
            target_table="room_moderation_states",
            target_id=str(room_channel_id),
            before=None,
            after=summary,
        )
    logger.info("Room %s permissions resynced by %s: %s", room_channel_id, actor_id, summary)
