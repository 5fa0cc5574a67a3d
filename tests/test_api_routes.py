"""
tests/test_api_routes.py — FastAPI Route Integration Tests
============================================================
Read-only public endpoints against an in-memory database injected through
``app.dependency_overrides``.
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from resonance.api.deps import get_engine
from resonance.database.models import ModerationStateKind
from resonance.engine.presence import VoiceChannelRef
from resonance.services import (
    leveling_service,
    moderation_service,
    room_service,
    session_service,
)
from conftest import GUILD_ID, T0

LOBBY = VoiceChannelRef(channel_id=501, name="Lobby")


@pytest.fixture
def client(db_engine):
    from resonance.api.main import app

    app.dependency_overrides[get_engine] = lambda: db_engine
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


@pytest.fixture
def seeded(db_engine, settings):
    for user_id, messages in [(1, 3), (2, 1)]:
        for i in range(messages):
            leveling_service.award_message_xp(
                db_engine, settings, guild_id=GUILD_ID, user_id=user_id,
                username=f"user{user_id}", now=T0 + timedelta(minutes=5 * i),
            )
    session_service.start_session(
        db_engine, guild_id=GUILD_ID, user_id=1, channel=LOBBY, username="user1", now=T0,
    )
    session_service.end_session(db_engine, guild_id=GUILD_ID, user_id=1, now=T0 + timedelta(minutes=4))
    return db_engine


# ===========================================================================
# Health endpoint
# ===========================================================================
class TestHealthEndpoint:
    def test_health_returns_ok(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}


# ===========================================================================
# Leaderboards
# ===========================================================================
class TestLeaderboards:
    def test_xp_leaderboard(self, client, seeded):
        resp = client.get(f"/api/guilds/{GUILD_ID}/leaderboard")
        assert resp.status_code == 200
        body = resp.json()
        assert body["total"] == 2
        assert [u["id"] for u in body["users"]] == ["1", "2"]
        assert body["users"][0]["xp"] == 3
        assert body["users"][0]["progress"]["next_level_xp"] == 8

    def test_leaderboard_pagination_validated(self, client):
        assert client.get(f"/api/guilds/{GUILD_ID}/leaderboard?page=0").status_code == 422
        assert client.get(f"/api/guilds/{GUILD_ID}/leaderboard?page_size=500").status_code == 422

    def test_empty_guild(self, client):
        body = client.get(f"/api/guilds/{GUILD_ID + 1}/leaderboard").json()
        assert body["total"] == 0 and body["users"] == []

    def test_voice_leaderboard(self, client, seeded):
        body = client.get(f"/api/guilds/{GUILD_ID}/voice-leaderboard").json()
        assert body["users"] == [{
            "rank": 1,
            "id": "1",
            "username": "user1",
            "display_name": "user1",
            "total_time_ms": 240_000,
            "total_sessions": 1,
        }]


# ===========================================================================
# Users
# ===========================================================================
class TestUserEndpoints:
    def test_user_stats(self, client, seeded):
        body = client.get(f"/api/guilds/{GUILD_ID}/users/1").json()
        assert body["id"] == "1"
        assert body["rank"] == 1
        assert body["message_xp"] == 3
        assert body["total_time_ms"] == 240_000
        assert body["is_active"] is False

    def test_unknown_user_defaults(self, client):
        body = client.get(f"/api/guilds/{GUILD_ID}/users/404").json()
        assert body["xp"] == 0
        assert body["rank"] is None
        assert body["progress"]["level"] == 0

    def test_activity_days(self, client, seeded):
        body = client.get(f"/api/guilds/{GUILD_ID}/users/1/activity?days=3").json()
        assert len(body["days"]) == 3
        assert all(set(d) == {"day", "duration_ms", "minutes"} for d in body["days"])

    def test_activity_days_bounds(self, client):
        assert client.get(f"/api/guilds/{GUILD_ID}/users/1/activity?days=0").status_code == 422


# ===========================================================================
# Rooms & settings
# ===========================================================================
class TestRoomAndSettings:
    def test_room_overview(self, client, db_engine):
        room_service.register_room(
            db_engine, guild_id=GUILD_ID, channel_id=LOBBY.channel_id, owner_id=1, name="Lobby",
        )
        moderation_service.set_state(
            db_engine, guild_id=GUILD_ID, room_channel_id=LOBBY.channel_id, user_id=7,
            state_kind=ModerationStateKind.MUTED, applied_by=1,
        )
        body = client.get(f"/api/guilds/{GUILD_ID}/rooms/{LOBBY.channel_id}").json()
        assert body["owner_id"] == "1"
        assert body["moderation"] == {"MUTED": ["7"], "BANNED": []}
        assert body["total_moderated_users"] == 1

    def test_settings(self, client):
        body = client.get(f"/api/guilds/{GUILD_ID}/settings").json()
        assert body["message_xp_cooldown_seconds"] == 60
        assert body["scaling_multiplier"] == 1.5
        assert body["excluded_channels"] == []

    def test_rooms_list(self, client, db_engine):
        room_service.register_room(
            db_engine, guild_id=GUILD_ID, channel_id=900, owner_id=3, name="Den",
        )
        body = client.get(f"/api/guilds/{GUILD_ID}/rooms").json()
        assert [(r["id"], r["name"], r["owner_id"]) for r in body["rooms"]] == [("900", "Den", "3")]
