"""
tests/test_session_service.py — Voice Session Tracking Integration Tests
=========================================================================
Covers join / leave / switch transitions, duplicate and out-of-order
events, totals bookkeeping, history and statistics.

Uses an in-memory SQLite database via the shared conftest fixtures.
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from resonance.database.models import ActivitySession
from resonance.engine.presence import TransitionKind, VoiceChannelRef
from resonance.services import session_service
from conftest import GUILD_ID, T0

USER = 1000
LOBBY = VoiceChannelRef(channel_id=501, name="Lobby")
GAMING = VoiceChannelRef(channel_id=502, name="Gaming")


@pytest.fixture
def engine(db_engine):
    return db_engine


def _join(engine, channel=LOBBY, at=T0, user_id=USER, **kwargs):
    return session_service.start_session(
        engine, guild_id=GUILD_ID, user_id=user_id, channel=channel,
        username="alice", display_name="Alice", now=at, **kwargs,
    )


def _leave(engine, at, user_id=USER):
    return session_service.end_session(engine, guild_id=GUILD_ID, user_id=user_id, now=at)


def _open_count(engine, user_id=USER) -> int:
    with Session(engine) as session:
        return session.scalar(
            select(func.count()).select_from(ActivitySession).where(
                ActivitySession.user_id == user_id, ActivitySession.left_at.is_(None),
            )
        )


class TestJoinAndLeave:
    def test_join_creates_activity_and_open_session(self, engine):
        result = _join(engine)
        assert result.kind is TransitionKind.JOIN
        assert result.opened is not None and result.closed is None

        activity = session_service.get_user_activity(engine, GUILD_ID, USER)
        assert activity.username == "alice"
        assert activity.total_sessions == 0
        assert activity.total_time_ms == 0
        assert _open_count(engine) == 1

    def test_125_second_session(self, engine):
        _join(engine)
        result = _leave(engine, T0 + timedelta(milliseconds=125_000))

        assert result.kind is TransitionKind.LEAVE
        assert result.closed.session.duration_ms == 125_000
        assert result.closed.unrewarded_minutes == 2

        activity = session_service.get_user_activity(engine, GUILD_ID, USER)
        assert activity.total_sessions == 1
        assert activity.total_time_ms == 125_000
        assert session_service.get_current_session(engine, GUILD_ID, USER) is None

    def test_leave_while_idle_is_noop(self, engine):
        result = _leave(engine, T0)
        assert result.kind is TransitionKind.NONE
        assert not result.changed
        assert session_service.get_user_activity(engine, GUILD_ID, USER) is None

    def test_duplicate_join_same_channel_is_noop(self, engine):
        _join(engine)
        result = _join(engine, at=T0 + timedelta(seconds=30))
        assert result.kind is TransitionKind.NONE
        assert _open_count(engine) == 1
        current = session_service.get_current_session(engine, GUILD_ID, USER)
        assert current.joined_at.replace(tzinfo=None) == T0.replace(tzinfo=None)

    def test_owner_lookup_marks_session(self, engine):
        result = _join(engine, owner_lookup=lambda channel_id, user_id: channel_id == LOBBY.channel_id)
        assert result.opened.is_owner is True

    def test_failing_owner_lookup_does_not_block_join(self, engine):
        def broken(channel_id, user_id):
            raise RuntimeError("lookup down")

        result = _join(engine, owner_lookup=broken)
        assert result.kind is TransitionKind.JOIN
        assert result.opened.is_owner is False


class TestSwitch:
    def test_switch_closes_and_opens_atomically(self, engine):
        _join(engine)
        result = session_service.switch_session(
            engine, guild_id=GUILD_ID, user_id=USER, channel=GAMING,
            now=T0 + timedelta(minutes=10),
        )
        assert result.kind is TransitionKind.SWITCH
        assert result.closed.session.channel_id == LOBBY.channel_id
        assert result.opened.channel_id == GAMING.channel_id
        assert _open_count(engine) == 1

        activity = session_service.get_user_activity(engine, GUILD_ID, USER)
        assert activity.total_sessions == 1
        assert activity.total_time_ms == 600_000

    def test_join_while_active_elsewhere_acts_as_switch(self, engine):
        _join(engine)
        result = _join(engine, channel=GAMING, at=T0 + timedelta(minutes=1))
        assert result.kind is TransitionKind.SWITCH
        assert _open_count(engine) == 1

    def test_handle_voice_update_routes_raw_events(self, engine):
        kw = dict(guild_id=GUILD_ID, user_id=USER, username="alice")
        join = session_service.handle_voice_update(
            engine, before_channel_id=None, after=LOBBY, now=T0, **kw,
        )
        mute = session_service.handle_voice_update(
            engine, before_channel_id=LOBBY.channel_id, after=LOBBY,
            now=T0 + timedelta(seconds=5), **kw,
        )
        move = session_service.handle_voice_update(
            engine, before_channel_id=LOBBY.channel_id, after=GAMING,
            now=T0 + timedelta(minutes=1), **kw,
        )
        leave = session_service.handle_voice_update(
            engine, before_channel_id=GAMING.channel_id, after=None,
            now=T0 + timedelta(minutes=3), **kw,
        )
        assert [r.kind for r in (join, mute, move, leave)] == [
            TransitionKind.JOIN, TransitionKind.NONE, TransitionKind.SWITCH, TransitionKind.LEAVE,
        ]
        activity = session_service.get_user_activity(engine, GUILD_ID, USER)
        assert activity.total_sessions == 2
        assert activity.total_time_ms == 180_000


class TestTotalsInvariant:
    def test_totals_match_closed_sessions(self, engine):
        at = T0
        for minutes, channel in [(3, LOBBY), (7, GAMING), (1, LOBBY)]:
            _join(engine, channel=channel, at=at)
            at += timedelta(minutes=minutes)
            _leave(engine, at)
            at += timedelta(minutes=5)

        history = session_service.get_session_history(engine, GUILD_ID, USER)
        activity = session_service.get_user_activity(engine, GUILD_ID, USER)
        assert [s.duration_ms for s in history] == [180_000, 420_000, 60_000]
        assert activity.total_sessions == len(history)
        assert activity.total_time_ms == sum(s.duration_ms for s in history)

    def test_history_limit_keeps_most_recent(self, engine):
        at = T0
        for _ in range(4):
            _join(engine, at=at)
            at += timedelta(minutes=1)
            _leave(engine, at)
        recent = session_service.get_session_history(engine, GUILD_ID, USER, limit=2)
        assert len(recent) == 2
        assert recent[0].joined_at < recent[1].joined_at

    def test_guilds_are_independent(self, engine):
        _join(engine)
        session_service.start_session(
            engine, guild_id=GUILD_ID + 1, user_id=USER, channel=GAMING, now=T0,
        )
        assert len(session_service.list_open_sessions(engine)) == 2
        assert len(session_service.list_open_sessions(engine, GUILD_ID)) == 1


class TestStatistics:
    def test_unknown_user_has_zero_stats(self, engine):
        stats = session_service.get_time_statistics(engine, GUILD_ID, USER, now=T0)
        assert stats.total_time_ms == 0
        assert stats.average_session_ms == 0
        assert not stats.is_active

    def test_includes_running_session(self, engine):
        _join(engine)
        _leave(engine, T0 + timedelta(minutes=2))
        _join(engine, at=T0 + timedelta(minutes=10))
        stats = session_service.get_time_statistics(
            engine, GUILD_ID, USER, now=T0 + timedelta(minutes=14),
        )
        assert stats.is_active
        assert stats.current_session_ms == 240_000
        assert stats.total_time_ms == 360_000
        assert stats.total_sessions == 2
        assert stats.average_session_ms == 180_000
