"""
tests/test_moderation_service.py — Room Moderation State Tests
===============================================================
Covers the MUTED / BANNED marker store: upsert semantics, clearing,
validation and per-room statistics.
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from resonance.database.models import ModerationStateKind
from resonance.engine.errors import InvalidInputError
from resonance.services import moderation_service as mod
from conftest import GUILD_ID, T0

ROOM = 800
OTHER_ROOM = 801
MOD1 = 11
MOD2 = 12
USER = 3000

BANNED = ModerationStateKind.BANNED
MUTED = ModerationStateKind.MUTED


@pytest.fixture
def engine(db_engine):
    return db_engine


def _set(engine, kind=BANNED, user_id=USER, room=ROOM, applied_by=MOD1, reason=None, at=T0):
    return mod.set_state(
        engine, guild_id=GUILD_ID, room_channel_id=room, user_id=user_id,
        state_kind=kind, applied_by=applied_by, reason=reason, now=at,
    )


class TestSetState:
    def test_upsert_replaces_reason_and_author(self, engine):
        _set(engine, reason="spam", applied_by=MOD1)
        _set(engine, reason="spam2", applied_by=MOD2, at=T0 + timedelta(minutes=1))

        records = mod.get_state_records(engine, GUILD_ID, ROOM, BANNED)
        assert len(records) == 1
        assert records[0].applied_by == MOD2
        assert records[0].reason == "spam2"
        assert mod.get_users_with_state(engine, GUILD_ID, ROOM, BANNED) == {USER}

    def test_default_reason(self, engine):
        row = _set(engine, reason="   ")
        assert row.reason == mod.DEFAULT_REASON

    def test_accepts_kind_as_string(self, engine):
        _set(engine, kind="muted")
        assert mod.has_state(
            engine, guild_id=GUILD_ID, room_channel_id=ROOM, user_id=USER, state_kind=MUTED,
        )

    def test_kinds_are_independent(self, engine):
        _set(engine, kind=MUTED)
        _set(engine, kind=BANNED)
        states = mod.get_user_states(engine, GUILD_ID, USER, ROOM)
        assert {s.state_kind for s in states} == {MUTED, BANNED}

    def test_rooms_are_independent(self, engine):
        _set(engine)
        assert mod.get_users_with_state(engine, GUILD_ID, OTHER_ROOM, BANNED) == set()

    @pytest.mark.parametrize(
        "overrides",
        [
            {"kind": "KICKED"},
            {"user_id": 0},
            {"room": -1},
            {"applied_by": 0},
            {"reason": "x" * (mod.MAX_REASON_LENGTH + 1)},
        ],
    )
    def test_invalid_input_rejected(self, engine, overrides):
        with pytest.raises(InvalidInputError):
            _set(engine, **overrides)
        assert mod.get_users_with_state(engine, GUILD_ID, ROOM, BANNED) == set()


class TestClearState:
    def test_clear_empties_the_set(self, engine):
        _set(engine)
        removed = mod.clear_state(
            engine, guild_id=GUILD_ID, room_channel_id=ROOM, user_id=USER, state_kind=BANNED,
        )
        assert removed is True
        assert mod.get_users_with_state(engine, GUILD_ID, ROOM, BANNED) == set()

    def test_clear_missing_returns_false(self, engine):
        assert mod.clear_state(
            engine, guild_id=GUILD_ID, room_channel_id=ROOM, user_id=USER, state_kind=MUTED,
        ) is False

    def test_clear_room_states(self, engine):
        _set(engine, kind=MUTED)
        _set(engine, kind=BANNED, user_id=USER + 1)
        _set(engine, room=OTHER_ROOM)
        assert mod.clear_room_states(engine, guild_id=GUILD_ID, room_channel_id=ROOM) == 2
        assert mod.get_room_moderation_stats(engine, GUILD_ID, ROOM).total_records == 0
        assert mod.get_room_moderation_stats(engine, GUILD_ID, OTHER_ROOM).total_records == 1


class TestReads:
    def test_records_newest_first(self, engine):
        _set(engine, user_id=1, at=T0)
        _set(engine, user_id=2, at=T0 + timedelta(minutes=5))
        records = mod.get_state_records(engine, GUILD_ID, ROOM, BANNED)
        assert [r.user_id for r in records] == [2, 1]

    def test_room_stats(self, engine):
        _set(engine, kind=MUTED, user_id=5)
        _set(engine, kind=BANNED, user_id=5)
        _set(engine, kind=BANNED, user_id=4)

        stats = mod.get_room_moderation_stats(engine, GUILD_ID, ROOM)
        assert stats.users == {MUTED: [5], BANNED: [4, 5]}
        assert stats.counts == {MUTED: 1, BANNED: 2}
        assert stats.total_records == 3
        assert stats.total_moderated_users == 2

    def test_empty_room_lists_every_kind(self, engine):
        stats = mod.get_room_moderation_stats(engine, GUILD_ID, ROOM)
        assert stats.users == {MUTED: [], BANNED: []}
