"""
resonance.bot.cogs.voice — Voice Session Tracking & Voice XP
=============================================================

* ``on_voice_state_update`` feeds every join / leave / switch into
  :func:`~resonance.services.session_service.handle_voice_update`.  When a
  session closes, its not-yet-credited minutes are settled as voice XP.
* ``voice_xp_loop`` periodically credits the whole minutes of every open
  session via :func:`~resonance.services.leveling_service.accrue_voice_xp`,
  so long sessions level up while they are still running.
* On ready, tracked sessions are reconciled with who is actually in voice
  (the bot may have missed events while offline).
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord.ext import commands, tasks

from resonance.database.engine import run_db
from resonance.engine.presence import VoiceChannelRef
from resonance.engine.xp import XpAward
from resonance.services.announcement_service import dispatch_level_up
from resonance.services.leveling_service import accrue_voice_xp, settle_closed_session
from resonance.services.session_service import (
    SessionTransition,
    end_session,
    handle_voice_update,
    list_open_sessions,
    start_session,
)

if TYPE_CHECKING:
    from resonance.bot.core import ResonanceBot

logger = logging.getLogger(__name__)


def _channel_ref(channel: discord.abc.GuildChannel | None) -> VoiceChannelRef | None:
    if channel is None:
        return None
    return VoiceChannelRef(channel_id=channel.id, name=channel.name)


class Voice(commands.Cog, name="Voice"):
    """Tracks voice channel presence and awards voice XP."""

    def __init__(self, bot: ResonanceBot) -> None:
        self.bot = bot
        self.voice_xp_loop.change_interval(seconds=bot.cfg.voice_xp_poll_seconds)

    async def cog_load(self) -> None:
        self.voice_xp_loop.start()

    async def cog_unload(self) -> None:
        self.voice_xp_loop.cancel()

    # -----------------------------------------------------------------------
    # Presence events
    # -----------------------------------------------------------------------
    @commands.Cog.listener()
    async def on_voice_state_update(
        self,
        member: discord.Member,
        before: discord.VoiceState,
        after: discord.VoiceState,
    ) -> None:
        if member.bot:
            return
        try:
            await self._handle_voice_update(member, before, after)
        except Exception:
            logger.exception("Error processing voice state update for user %s", member.id)

    async def _handle_voice_update(
        self,
        member: discord.Member,
        before: discord.VoiceState,
        after: discord.VoiceState,
    ) -> None:
        transition: SessionTransition = await run_db(
            handle_voice_update,
            self.bot.engine,
            guild_id=member.guild.id,
            user_id=member.id,
            before_channel_id=before.channel.id if before.channel else None,
            after=_channel_ref(after.channel),
            username=member.name,
            display_name=member.display_name,
            owner_lookup=self.bot.owner_lookup,
        )
        if transition.changed:
            logger.debug("%s voice %s", member, transition.kind)
        await self._settle(member, transition)

    async def _settle(self, member: discord.Member, transition: SessionTransition) -> None:
        """Credit the unrewarded minutes of a session that just closed."""
        if transition.closed is None or transition.closed.unrewarded_minutes < 1:
            return
        settings = await self.bot.level_settings(member.guild.id)
        award: XpAward = await run_db(
            settle_closed_session,
            self.bot.engine,
            settings,
            transition.closed,
            username=member.name,
            display_name=member.display_name,
            multiplier=self.bot.member_multiplier(member, settings),
        )
        dispatch_level_up(self.bot, member=member, award=award, settings=settings)

    # -----------------------------------------------------------------------
    # Periodic accrual
    # -----------------------------------------------------------------------
    @tasks.loop(seconds=60)
    async def voice_xp_loop(self) -> None:
        """Credit elapsed whole minutes of every open session."""
        open_sessions = await run_db(list_open_sessions, self.bot.engine)
        settings_by_guild = {}
        for row in open_sessions:
            guild = self.bot.get_guild(row.guild_id)
            member = guild.get_member(row.user_id) if guild else None
            if member is None:
                continue
            try:
                settings = settings_by_guild.get(row.guild_id)
                if settings is None:
                    settings = await self.bot.level_settings(row.guild_id)
                    settings_by_guild[row.guild_id] = settings
                award = await run_db(
                    accrue_voice_xp,
                    self.bot.engine,
                    settings,
                    guild_id=row.guild_id,
                    user_id=row.user_id,
                    session_id=row.id,
                    multiplier=self.bot.member_multiplier(member, settings),
                )
                dispatch_level_up(self.bot, member=member, award=award, settings=settings)
            except Exception:
                logger.exception("Voice XP accrual failed for user %s", row.user_id)

    @voice_xp_loop.before_loop
    async def before_voice_xp_loop(self) -> None:
        await self.bot.wait_until_ready()

    # -----------------------------------------------------------------------
    # Startup reconciliation
    # -----------------------------------------------------------------------
    @commands.Cog.listener()
    async def on_ready(self) -> None:
        try:
            await self.reconcile_sessions()
        except Exception:
            logger.exception("Voice session reconciliation failed")

    async def reconcile_sessions(self) -> None:
        """Close sessions of members who left while we were offline and open
        sessions for members already sitting in voice."""
        in_voice: dict[tuple[int, int], discord.Member] = {}
        for guild in self.bot.guilds:
            for channel in guild.voice_channels + guild.stage_channels:
                for member in channel.members:
                    if not member.bot:
                        in_voice[(guild.id, member.id)] = member

        closed = opened = 0
        for row in await run_db(list_open_sessions, self.bot.engine):
            member = in_voice.get((row.guild_id, row.user_id))
            if member is None or member.voice is None or member.voice.channel is None:
                transition = await run_db(
                    end_session, self.bot.engine, guild_id=row.guild_id, user_id=row.user_id,
                )
                closed += transition.closed is not None

        for (guild_id, _), member in in_voice.items():
            transition = await run_db(
                start_session,
                self.bot.engine,
                guild_id=guild_id,
                user_id=member.id,
                channel=_channel_ref(member.voice.channel),
                username=member.name,
                display_name=member.display_name,
                owner_lookup=self.bot.owner_lookup,
            )
            opened += transition.opened is not None
            await self._settle(member, transition)

        logger.info("Voice reconciliation: %d stale closed, %d opened/moved", closed, opened)


async def setup(bot: ResonanceBot) -> None:
    await bot.add_cog(Voice(bot))
