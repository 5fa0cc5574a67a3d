"""
resonance.bot.cogs.social — Message XP
=======================================

Pipeline:
1. on_message fires → gate checks (bot, DM, system message)
2. Load the guild's level settings and the member's role multiplier
3. Call leveling_service.award_message_xp (background thread via run_db);
   excluded channels and the per-guild cooldown are enforced there
4. Hand level-ups to the announcement service (fire-and-forget)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord.ext import commands

from resonance.database.engine import run_db
from resonance.engine.xp import AwardOutcome, XpAward
from resonance.services.announcement_service import dispatch_level_up
from resonance.services.leveling_service import award_message_xp

if TYPE_CHECKING:
    from resonance.bot.core import ResonanceBot

logger = logging.getLogger(__name__)


class Social(commands.Cog, name="Social"):
    """Awards XP for chat messages."""

    def __init__(self, bot: ResonanceBot) -> None:
        self.bot = bot

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message) -> None:
        if message.author.bot or message.guild is None:
            return
        if message.type not in (discord.MessageType.default, discord.MessageType.reply):
            return
        if not isinstance(message.author, discord.Member):
            return
        try:
            await self._award(message)
        except Exception:
            logger.exception("Error awarding message XP for user %s", message.author.id)

    async def _award(self, message: discord.Message) -> None:
        member: discord.Member = message.author  # type: ignore[assignment]
        settings = await self.bot.level_settings(message.guild.id)

        award: XpAward = await run_db(
            award_message_xp,
            self.bot.engine,
            settings,
            guild_id=message.guild.id,
            user_id=member.id,
            channel_id=message.channel.id,
            username=member.name,
            display_name=member.display_name,
            multiplier=self.bot.member_multiplier(member, settings),
        )
        if award.outcome is not AwardOutcome.AWARDED:
            logger.debug("No message XP for %s: %s", member.id, award.outcome)
            return

        dispatch_level_up(
            self.bot,
            member=member,
            award=award,
            settings=settings,
            source_channel=message.channel,
        )


async def setup(bot: ResonanceBot) -> None:
    await bot.add_cog(Social(bot))
