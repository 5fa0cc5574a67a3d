"""
tests/test_announcements.py — Level-Up Delivery Unit Tests
===========================================================

Channel resolution, embed builders, notification gating, DM fallbacks and
level-role grants, all against mocked discord.py objects.
"""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import discord

from resonance.database.models import ModerationStateKind, RoomModerationState
from resonance.engine.buckets import bucket_by_day
from resonance.engine.curve import level_progress
from resonance.engine.settings import LevelSettings, NotificationSettings
from resonance.engine.xp import AwardOutcome, XpAward
from resonance.services.announcement_service import (
    announce_level_up,
    celebrate_level_up,
    resolve_notification_channels,
)
from resonance.services.embeds import (
    build_activity_embed,
    build_leaderboard_embed,
    build_level_up_embed,
    build_rank_embed,
    build_room_states_embed,
)
from resonance.services.level_roles import grant_level_roles, missing_level_roles
from resonance.services.stats_service import LeaderboardEntry, UserStats
from conftest import GUILD_ID, T0


# Helper to run async tests without pytest-asyncio
def run_async(coro):
    """Run an async coroutine in a new event loop."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _make_bot(
    *,
    config_ch_id: int | None = None,
    channels: dict[int, object] | None = None,
) -> MagicMock:
    """Create a lightweight mock ResonanceBot."""
    bot = MagicMock()
    bot.cfg = SimpleNamespace(announce_channel_id=config_ch_id)
    bot.get_channel = lambda ch_id: (channels or {}).get(ch_id)
    return bot


def _make_messageable(channel_id: int = 100) -> MagicMock:
    ch = MagicMock(spec=discord.TextChannel)
    ch.id = channel_id
    ch.send = AsyncMock()
    return ch


def _make_member(user_id: int = 1, role_ids: tuple[int, ...] = ()) -> MagicMock:
    member = MagicMock()
    member.id = user_id
    member.display_avatar.url = "https://cdn.example/avatar.png"
    member.roles = [SimpleNamespace(id=r) for r in role_ids]
    member.send = AsyncMock()
    member.add_roles = AsyncMock()
    member.guild.id = GUILD_ID
    member.guild.get_role = lambda role_id: SimpleNamespace(id=role_id)
    return member


def _settings(**notify) -> LevelSettings:
    return LevelSettings(guild_id=GUILD_ID, notifications=NotificationSettings(**notify))


def _level_up(old: int = 0, new: int = 1) -> XpAward:
    return XpAward(
        AwardOutcome.AWARDED, GUILD_ID, 1,
        xp_gained=8, total_xp=8, old_level=old, new_level=new, next_level_xp=20,
    )


# ===========================================================================
# Channel resolution
# ===========================================================================
class TestResolveNotificationChannels:
    def test_guild_channel_wins_over_config(self):
        guild_ch, config_ch = _make_messageable(10), _make_messageable(20)
        bot = _make_bot(config_ch_id=20, channels={10: guild_ch, 20: config_ch})
        assert resolve_notification_channels(bot, _settings(channel_id=10)) == [guild_ch]

    def test_falls_back_to_config_channel(self):
        config_ch = _make_messageable(20)
        bot = _make_bot(config_ch_id=20, channels={20: config_ch})
        assert resolve_notification_channels(bot, _settings()) == [config_ch]

    def test_missing_channel_is_skipped(self):
        bot = _make_bot(config_ch_id=20)
        assert resolve_notification_channels(bot, _settings()) == []

    def test_source_channel_added_once(self):
        ch = _make_messageable(10)
        bot = _make_bot(channels={10: ch})
        settings = _settings(channel_id=10, announce_in_channel=True)
        assert resolve_notification_channels(bot, settings, ch) == [ch]

        other = _make_messageable(11)
        assert resolve_notification_channels(bot, settings, other) == [ch, other]


# ===========================================================================
# announce_level_up
# ===========================================================================
class TestAnnounceLevelUp:
    def test_sends_to_channel_and_dm(self):
        ch = _make_messageable(10)
        bot = _make_bot(channels={10: ch})
        member = _make_member()
        delivered = run_async(announce_level_up(
            bot, member=member, award=_level_up(), settings=_settings(channel_id=10),
        ))
        assert delivered == 2
        ch.send.assert_awaited_once()
        member.send.assert_awaited_once()

    def test_no_level_up_sends_nothing(self):
        ch = _make_messageable(10)
        bot = _make_bot(channels={10: ch})
        delivered = run_async(announce_level_up(
            bot, member=_make_member(), award=_level_up(old=1, new=1),
            settings=_settings(channel_id=10),
        ))
        assert delivered == 0
        ch.send.assert_not_awaited()

    def test_disabled_notifications(self):
        ch = _make_messageable(10)
        bot = _make_bot(channels={10: ch})
        member = _make_member()
        delivered = run_async(announce_level_up(
            bot, member=member, award=_level_up(),
            settings=_settings(enabled=False, channel_id=10),
        ))
        assert delivered == 0
        member.send.assert_not_awaited()

    def test_closed_dms_do_not_raise(self):
        bot = _make_bot()
        member = _make_member()
        member.send.side_effect = discord.Forbidden(MagicMock(status=403), "closed")
        delivered = run_async(announce_level_up(
            bot, member=member, award=_level_up(), settings=_settings(),
        ))
        assert delivered == 0

    def test_channel_failure_is_contained(self):
        ch = _make_messageable(10)
        ch.send.side_effect = RuntimeError("boom")
        bot = _make_bot(channels={10: ch})
        delivered = run_async(announce_level_up(
            bot, member=_make_member(), award=_level_up(),
            settings=_settings(channel_id=10, dm_user=False),
        ))
        assert delivered == 0


# ===========================================================================
# Level roles
# ===========================================================================
class TestLevelRoles:
    def test_missing_roles(self):
        settings = LevelSettings(guild_id=GUILD_ID, level_roles={1: 100, 3: 300, 5: 500})
        assert missing_level_roles({100}, 4, settings) == [300]

    def test_celebrate_grants_then_announces(self):
        settings = LevelSettings(
            guild_id=GUILD_ID,
            level_roles={1: 100, 2: 200},
            notifications=NotificationSettings(dm_user=False),
        )
        member = _make_member(role_ids=(100,))
        run_async(celebrate_level_up(
            _make_bot(), member=member, award=_level_up(new=2), settings=settings,
        ))
        member.add_roles.assert_awaited_once()
        granted = member.add_roles.await_args.args
        assert [r.id for r in granted] == [200]

    def test_nothing_to_grant(self):
        settings = LevelSettings(guild_id=GUILD_ID, level_roles={5: 500})
        member = _make_member()
        assert run_async(grant_level_roles(member, 2, settings)) == []
        member.add_roles.assert_not_awaited()


# ===========================================================================
# Embeds
# ===========================================================================
class TestEmbeds:
    def test_level_up_embed(self):
        embed = build_level_up_embed(1, "https://cdn.example/a.png", _level_up())
        assert "<@1>" in embed.description
        assert "Level 1" in embed.description
        assert "12 XP to level 2" in embed.description
        assert embed.thumbnail.url == "https://cdn.example/a.png"

    def test_room_states_embed_lists_reasons(self):
        record = RoomModerationState(
            guild_id=GUILD_ID, room_channel_id=800, user_id=5,
            state_kind=ModerationStateKind.BANNED, reason="spam",
            applied_by=11, applied_at=T0,
        )
        embed = build_room_states_embed("Den", ModerationStateKind.BANNED, [record])
        text = (embed.description or "") + "".join(f.value for f in embed.fields)
        assert "<@5>" in text
        assert "spam" in text

    def test_rank_embed(self):
        stats = UserStats(
            guild_id=GUILD_ID, user_id=5, display_name="Dana",
            total_time_ms=125_000, total_sessions=1, xp=25, voice_xp=20, message_xp=5,
            rank=1, progress=level_progress(25, LevelSettings(guild_id=GUILD_ID)),
            current_channel_id=501, current_channel_name="Lobby", current_session_ms=60_000,
        )
        embed = build_rank_embed(stats)
        fields = {f.name: f.value for f in embed.fields}
        assert embed.title == "Dana"
        assert fields["Level"] == "2"
        assert fields["Voice Time"] == "2 minutes, 5 seconds"
        assert fields["Progress to Level 3"].endswith("5/18 (27.8%)")
        assert fields["In Voice Now"] == "#Lobby for 1 minute"

    def test_leaderboard_embed_empty_and_filled(self):
        assert "Nobody" in build_leaderboard_embed([], "Guild").description
        entry = LeaderboardEntry(
            rank=4, user_id=5, username="dana", display_name="Dana", xp=25, level=2,
            progress=level_progress(25, LevelSettings(guild_id=GUILD_ID)),
        )
        assert build_leaderboard_embed([entry], "Guild").description.startswith("#4 **Dana**")

    def test_activity_embed_one_line_per_day(self):
        days = bucket_by_day([], T0, days=7)
        embed = build_activity_embed("Dana", days)
        assert len(embed.description.splitlines()) == 7
