"""
resonance.bot.cogs.meta — Rank, Leaderboards & Activity Commands
=================================================================

Hybrid commands for member self-service:
- /rank — Level, XP split, voice time, live session
- /leaderboard — Top members by XP
- /voicetop — Top members by voice time
- /activity — Voice time per day for the last week
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import discord
from discord import app_commands
from discord.ext import commands

from resonance.database.engine import run_db
from resonance.services.embeds import (
    build_activity_embed,
    build_leaderboard_embed,
    build_rank_embed,
    build_time_leaderboard_embed,
)
from resonance.services.stats_service import (
    get_activity_by_day,
    get_activity_leaderboard,
    get_leaderboard,
    get_user_stats,
)

if TYPE_CHECKING:
    from resonance.bot.core import ResonanceBot


class Meta(commands.Cog, name="Meta"):
    """Profiles, leaderboards and activity charts."""

    def __init__(self, bot: ResonanceBot) -> None:
        self.bot = bot

    @commands.hybrid_command(name="rank", description="Show your (or someone's) level and voice time.")  # type: ignore[arg-type]
    @app_commands.describe(member="Member to look up (defaults to you)")
    @commands.guild_only()
    async def rank(self, ctx: commands.Context, member: discord.Member | None = None) -> None:
        target = member or ctx.author
        settings = await self.bot.level_settings(ctx.guild.id)
        stats = await run_db(get_user_stats, self.bot.engine, settings, ctx.guild.id, target.id)
        embed = build_rank_embed(stats, target.display_avatar.url)
        if not stats.display_name:
            embed.title = target.display_name
        await ctx.send(embed=embed)

    @commands.hybrid_command(name="leaderboard", description="View the top members by XP.")  # type: ignore[arg-type]
    @commands.guild_only()
    async def leaderboard(self, ctx: commands.Context) -> None:
        settings = await self.bot.level_settings(ctx.guild.id)
        entries = await run_db(
            get_leaderboard, self.bot.engine, settings, ctx.guild.id, self.bot.cfg.leaderboard_size,
        )
        embed = build_leaderboard_embed(entries, ctx.guild.name)
        embed.set_footer(text=self.bot.cfg.community_name)
        await ctx.send(embed=embed)

    @commands.hybrid_command(name="voicetop", description="View the top members by voice time.")  # type: ignore[arg-type]
    @commands.guild_only()
    async def voicetop(self, ctx: commands.Context) -> None:
        entries = await run_db(
            get_activity_leaderboard, self.bot.engine, ctx.guild.id, self.bot.cfg.leaderboard_size,
        )
        embed = build_time_leaderboard_embed(entries, ctx.guild.name)
        embed.set_footer(text=self.bot.cfg.community_name)
        await ctx.send(embed=embed)

    @commands.hybrid_command(name="activity", description="Your voice time per day.")  # type: ignore[arg-type]
    @app_commands.describe(member="Member to look up (defaults to you)")
    @commands.guild_only()
    async def activity(self, ctx: commands.Context, member: discord.Member | None = None) -> None:
        target = member or ctx.author
        days = await run_db(
            get_activity_by_day, self.bot.engine, ctx.guild.id, target.id, self.bot.cfg.activity_days,
        )
        await ctx.send(embed=build_activity_embed(target.display_name, days))


async def setup(bot: ResonanceBot) -> None:
    await bot.add_cog(Meta(bot))
