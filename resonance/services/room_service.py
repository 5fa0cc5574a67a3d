"""
resonance.services.room_service — Member-Owned Voice Rooms
===========================================================

Small registry of which member owns which voice room.  The session tracker
asks it whether a joining member owns the channel, and room commands use it
to decide who may mute or ban inside a room.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import select

from resonance.database.engine import get_session
from resonance.database.models import Room
from resonance.engine.errors import NotFoundError
from resonance.engine.timekeeping import utc_now
from resonance.services.moderation_service import delete_room_states

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


def register_room(
    engine: Engine,
    *,
    guild_id: int,
    channel_id: int,
    owner_id: int,
    name: str = "",
) -> Room:
    """Record *owner_id* as the owner of *channel_id* (upsert)."""
    with get_session(engine) as session:
        room = session.get(Room, channel_id)
        if room is None:
            room = Room(
                channel_id=channel_id,
                guild_id=guild_id,
                owner_id=owner_id,
                name=name,
                created_at=utc_now(),
            )
            session.add(room)
        else:
            room.owner_id = owner_id
            if name:
                room.name = name
        session.flush()
    logger.info("Room %s registered to owner %s", channel_id, owner_id)
    return room


def get_room(engine: Engine, channel_id: int) -> Room | None:
    with get_session(engine) as session:
        return session.get(Room, channel_id)


def list_rooms(engine: Engine, guild_id: int) -> list[Room]:
    with get_session(engine) as session:
        return list(session.scalars(
            select(Room).where(Room.guild_id == guild_id).order_by(Room.created_at, Room.channel_id)
        ).all())


def is_room_owner(engine: Engine, channel_id: int, user_id: int) -> bool:
    room = get_room(engine, channel_id)
    return room is not None and room.owner_id == user_id


def transfer_room(engine: Engine, *, channel_id: int, new_owner_id: int) -> Room:
    with get_session(engine) as session:
        room = session.get(Room, channel_id)
        if room is None:
            raise NotFoundError(f"Room {channel_id} is not registered")
        previous = room.owner_id
        room.owner_id = new_owner_id
    logger.info("Room %s transferred %s → %s", channel_id, previous, new_owner_id)
    return room


def delete_room(engine: Engine, *, channel_id: int) -> bool:
    """Forget a room together with all of its moderation markers."""
    with get_session(engine) as session:
        room = session.get(Room, channel_id)
        if room is None:
            return False
        cleared = delete_room_states(session, room.guild_id, channel_id)
        session.delete(room)
    logger.info("Room %s deleted (%d moderation records cleared)", channel_id, cleared)
    return True
