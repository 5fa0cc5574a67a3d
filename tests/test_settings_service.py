"""
tests/test_settings_service.py — Guild Level Settings & Room Registry
======================================================================
"""

from __future__ import annotations

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from resonance.database.models import AdminLog, ModerationStateKind
from resonance.engine.errors import InvalidInputError, NotFoundError
from resonance.services import moderation_service, room_service, settings_service
from conftest import GUILD_ID

ADMIN = 9


@pytest.fixture
def engine(db_engine):
    return db_engine


def _audit_actions(engine) -> list[tuple[str, str]]:
    with Session(engine) as session:
        return [
            (log.action_type, log.target_table)
            for log in session.scalars(select(AdminLog).order_by(AdminLog.id))
        ]


class TestGuildLevelSettings:
    def test_defaults_created_on_first_read(self, engine):
        s = settings_service.get_guild_level_settings(engine, GUILD_ID)
        assert s.guild_id == GUILD_ID
        assert s.voice_xp_per_minute == 1.0
        assert s.message_xp_cooldown_seconds == 60
        assert (s.base_multiplier, s.scaling_multiplier) == (8.0, 1.5)
        assert s.notifications.enabled and s.notifications.dm_user
        assert s.level_roles == {} and s.excluded_channels == frozenset()

    def test_update_is_validated_and_audited(self, engine):
        s = settings_service.update_guild_level_settings(
            engine, GUILD_ID,
            {"message_xp_per_message": 5, "notify_channel_id": 123},
            actor_id=ADMIN, reason="tuning",
        )
        assert s.message_xp_per_message == 5.0
        assert s.notifications.channel_id == 123
        assert _audit_actions(engine) == [("UPDATE", "guild_level_settings")]

    def test_invalid_update_writes_nothing(self, engine):
        with pytest.raises(InvalidInputError):
            settings_service.update_guild_level_settings(
                engine, GUILD_ID,
                {"message_xp_per_message": 5, "message_xp_cooldown_seconds": 3},
                actor_id=ADMIN,
            )
        assert settings_service.get_guild_level_settings(engine, GUILD_ID).message_xp_per_message == 1.0
        assert _audit_actions(engine) == []

    def test_level_roles(self, engine):
        settings_service.set_level_role(engine, GUILD_ID, level=5, role_id=555, actor_id=ADMIN)
        settings_service.set_level_role(engine, GUILD_ID, level=5, role_id=556, actor_id=ADMIN)
        settings_service.set_level_role(engine, GUILD_ID, level=1, role_id=111, actor_id=ADMIN)
        s = settings_service.get_guild_level_settings(engine, GUILD_ID)
        assert s.level_roles == {1: 111, 5: 556}

        assert settings_service.remove_level_role(engine, GUILD_ID, level=5, actor_id=ADMIN)
        assert not settings_service.remove_level_role(engine, GUILD_ID, level=5, actor_id=ADMIN)
        with pytest.raises(InvalidInputError):
            settings_service.set_level_role(engine, GUILD_ID, level=0, role_id=1, actor_id=ADMIN)

    def test_role_multipliers(self, engine):
        settings_service.set_role_multiplier(
            engine, GUILD_ID, role_id=77, multiplier=2, actor_id=ADMIN,
        )
        assert settings_service.get_guild_level_settings(engine, GUILD_ID).role_multipliers == {77: 2.0}
        with pytest.raises(InvalidInputError):
            settings_service.set_role_multiplier(
                engine, GUILD_ID, role_id=77, multiplier=50, actor_id=ADMIN,
            )
        assert settings_service.remove_role_multiplier(engine, GUILD_ID, role_id=77, actor_id=ADMIN)

    def test_excluded_channels_toggle(self, engine):
        assert settings_service.set_channel_excluded(
            engine, GUILD_ID, channel_id=42, excluded=True, actor_id=ADMIN,
        )
        assert not settings_service.set_channel_excluded(
            engine, GUILD_ID, channel_id=42, excluded=True, actor_id=ADMIN,
        )
        s = settings_service.get_guild_level_settings(engine, GUILD_ID)
        assert s.is_excluded(42) and not s.is_excluded(None)

        assert settings_service.set_channel_excluded(
            engine, GUILD_ID, channel_id=42, excluded=False, actor_id=ADMIN,
        )
        assert _audit_actions(engine) == [
            ("UPDATE", "excluded_channels"),
            ("DELETE", "excluded_channels"),
        ]


class TestRoomRegistry:
    def test_register_and_ownership(self, engine):
        room_service.register_room(engine, guild_id=GUILD_ID, channel_id=900, owner_id=1, name="Den")
        assert room_service.is_room_owner(engine, 900, 1)
        assert not room_service.is_room_owner(engine, 900, 2)
        assert not room_service.is_room_owner(engine, 901, 1)
        assert [r.channel_id for r in room_service.list_rooms(engine, GUILD_ID)] == [900]

    def test_register_again_updates_owner(self, engine):
        room_service.register_room(engine, guild_id=GUILD_ID, channel_id=900, owner_id=1, name="Den")
        room = room_service.register_room(engine, guild_id=GUILD_ID, channel_id=900, owner_id=2)
        assert room.owner_id == 2
        assert room.name == "Den"

    def test_transfer(self, engine):
        room_service.register_room(engine, guild_id=GUILD_ID, channel_id=900, owner_id=1)
        room_service.transfer_room(engine, channel_id=900, new_owner_id=3)
        assert room_service.get_room(engine, 900).owner_id == 3
        with pytest.raises(NotFoundError):
            room_service.transfer_room(engine, channel_id=999, new_owner_id=3)

    def test_delete_clears_moderation(self, engine):
        room_service.register_room(engine, guild_id=GUILD_ID, channel_id=900, owner_id=1)
        moderation_service.set_state(
            engine, guild_id=GUILD_ID, room_channel_id=900, user_id=5,
            state_kind=ModerationStateKind.MUTED, applied_by=1,
        )
        assert room_service.delete_room(engine, channel_id=900)
        assert room_service.get_room(engine, 900) is None
        assert moderation_service.get_users_with_state(
            engine, GUILD_ID, 900, ModerationStateKind.MUTED,
        ) == set()
        assert not room_service.delete_room(engine, channel_id=900)
