"""
resonance.services.settings_service — Guild Level Settings CRUD
================================================================

Typed read/write access to ``guild_level_settings`` and its child tables
(``level_roles``, ``role_multipliers``, ``excluded_channels``).

A guild that has never been configured gets a defaults row on first read,
so :func:`get_guild_level_settings` always returns a usable
:class:`~resonance.engine.settings.LevelSettings`.  Every mutation is
validated first and audited in ``admin_log``.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from resonance.database.engine import get_session, run_optimistic
from resonance.database.models import (
    AdminActionType,
    ExcludedChannel,
    GuildLevelSettings,
    LevelRole,
    RoleMultiplier,
)
from resonance.engine.errors import InvalidInputError
from resonance.engine.settings import (
    LevelSettings,
    NotificationSettings,
    validate_level_settings,
    validate_role_multiplier,
)
from resonance.services.audit import log_admin_action, row_to_dict

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def get_or_create_settings_row(session: Session, guild_id: int) -> GuildLevelSettings:
    row = session.get(GuildLevelSettings, guild_id)
    if row is None:
        row = GuildLevelSettings(guild_id=guild_id)
        session.add(row)
        session.flush()
        logger.info("Created default level settings for guild %s", guild_id)
    return row


def load_level_settings(session: Session, guild_id: int) -> LevelSettings:
    """Assemble the immutable settings view inside an open session."""
    row = get_or_create_settings_row(session, guild_id)
    level_roles = {
        r.level: r.role_id
        for r in session.scalars(select(LevelRole).where(LevelRole.guild_id == guild_id))
    }
    multipliers = {
        r.role_id: r.multiplier
        for r in session.scalars(select(RoleMultiplier).where(RoleMultiplier.guild_id == guild_id))
    }
    excluded = frozenset(session.scalars(
        select(ExcludedChannel.channel_id).where(ExcludedChannel.guild_id == guild_id)
    ))
    return LevelSettings(
        guild_id=guild_id,
        voice_xp_per_minute=row.voice_xp_per_minute,
        message_xp_per_message=row.message_xp_per_message,
        message_xp_cooldown_seconds=row.message_xp_cooldown_seconds,
        base_multiplier=row.base_multiplier,
        scaling_multiplier=row.scaling_multiplier,
        level_roles=level_roles,
        role_multipliers=multipliers,
        excluded_channels=excluded,
        notifications=NotificationSettings(
            enabled=row.notify_enabled,
            channel_id=row.notify_channel_id,
            dm_user=row.notify_dm_user,
            announce_in_channel=row.notify_announce_in_channel,
        ),
    )


def _read(engine: Engine, guild_id: int) -> LevelSettings:
    with get_session(engine) as session:
        return load_level_settings(session, guild_id)


def get_guild_level_settings(engine: Engine, guild_id: int) -> LevelSettings:
    """Settings for *guild_id*, creating the defaults row when missing."""
    return run_optimistic(_read, engine, guild_id)


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------
def update_guild_level_settings(
    engine: Engine,
    guild_id: int,
    changes: Mapping[str, Any],
    *,
    actor_id: int,
    reason: str | None = None,
) -> LevelSettings:
    """Apply a validated partial update of the scalar settings.

    Raises
    ------
    InvalidInputError
        If any value is out of range; nothing is written in that case.
    """
    clean = validate_level_settings(changes)
    with get_session(engine) as session:
        row = get_or_create_settings_row(session, guild_id)
        before = row_to_dict(row)
        for name, value in clean.items():
            setattr(row, name, value)
        session.flush()
        after = {k: v for k, v in row_to_dict(row).items() if k != "updated_at"}
        before.pop("updated_at", None)
        log_admin_action(
            session,
            guild_id=guild_id,
            actor_id=actor_id,
            action_type=AdminActionType.UPDATE.value,
            target_table="guild_level_settings",
            target_id=str(guild_id),
            before=before,
            after=after,
            reason=reason,
        )
        settings = load_level_settings(session, guild_id)
    logger.info("Guild %s level settings updated by %s: %s", guild_id, actor_id, sorted(clean))
    return settings


def _audit_child(
    session: Session,
    guild_id: int,
    actor_id: int,
    action: AdminActionType,
    table: str,
    target_id: str,
    before: dict | None,
    after: dict | None,
) -> None:
    log_admin_action(
        session,
        guild_id=guild_id,
        actor_id=actor_id,
        action_type=action.value,
        target_table=table,
        target_id=target_id,
        before=before,
        after=after,
    )


def set_level_role(engine: Engine, guild_id: int, *, level: int, role_id: int, actor_id: int) -> None:
    """Unlock *role_id* at *level* (one role per level; replaces any existing)."""
    if isinstance(level, bool) or not isinstance(level, int) or level < 1:
        raise InvalidInputError("level must be a whole number >= 1")
    with get_session(engine) as session:
        row = session.get(LevelRole, (guild_id, level))
        before = row_to_dict(row)
        if row is None:
            row = LevelRole(guild_id=guild_id, level=level, role_id=role_id)
            session.add(row)
        else:
            row.role_id = role_id
        session.flush()
        _audit_child(
            session, guild_id, actor_id, AdminActionType.UPDATE,
            "level_roles", f"{guild_id}:{level}", before, row_to_dict(row),
        )


def remove_level_role(engine: Engine, guild_id: int, *, level: int, actor_id: int) -> bool:
    with get_session(engine) as session:
        row = session.get(LevelRole, (guild_id, level))
        if row is None:
            return False
        before = row_to_dict(row)
        session.delete(row)
        _audit_child(
            session, guild_id, actor_id, AdminActionType.DELETE,
            "level_roles", f"{guild_id}:{level}", before, None,
        )
    return True


def set_role_multiplier(
    engine: Engine,
    guild_id: int,
    *,
    role_id: int,
    multiplier: float,
    actor_id: int,
) -> None:
    multiplier = validate_role_multiplier(multiplier)
    with get_session(engine) as session:
        row = session.get(RoleMultiplier, (guild_id, role_id))
        before = row_to_dict(row)
        if row is None:
            row = RoleMultiplier(guild_id=guild_id, role_id=role_id, multiplier=multiplier)
            session.add(row)
        else:
            row.multiplier = multiplier
        session.flush()
        _audit_child(
            session, guild_id, actor_id, AdminActionType.UPDATE,
            "role_multipliers", f"{guild_id}:{role_id}", before, row_to_dict(row),
        )


def remove_role_multiplier(engine: Engine, guild_id: int, *, role_id: int, actor_id: int) -> bool:
    with get_session(engine) as session:
        row = session.get(RoleMultiplier, (guild_id, role_id))
        if row is None:
            return False
        before = row_to_dict(row)
        session.delete(row)
        _audit_child(
            session, guild_id, actor_id, AdminActionType.DELETE,
            "role_multipliers", f"{guild_id}:{role_id}", before, None,
        )
    return True


def set_channel_excluded(
    engine: Engine,
    guild_id: int,
    *,
    channel_id: int,
    excluded: bool,
    actor_id: int,
) -> bool:
    """Add or remove *channel_id* from the no-XP list.

    Returns ``True`` when the list changed.
    """
    with get_session(engine) as session:
        row = session.get(ExcludedChannel, (guild_id, channel_id))
        if excluded == (row is not None):
            return False
        if excluded:
            row = ExcludedChannel(guild_id=guild_id, channel_id=channel_id)
            session.add(row)
            session.flush()
            _audit_child(
                session, guild_id, actor_id, AdminActionType.UPDATE,
                "excluded_channels", f"{guild_id}:{channel_id}", None, row_to_dict(row),
            )
        else:
            before = row_to_dict(row)
            session.delete(row)
            _audit_child(
                session, guild_id, actor_id, AdminActionType.DELETE,
                "excluded_channels", f"{guild_id}:{channel_id}", before, None,
            )
    return True
