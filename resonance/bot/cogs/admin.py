"""
resonance.bot.cogs.admin — XP & Leveling Administration
========================================================

Slash commands gated on the configured admin role:
- /givexp, /setxp, /resetxp — audited XP adjustments
- /xpconfig — XP rates, message cooldown, level curve, notifications
- /levelrole — reward role unlocked at a level
- /xpboost — XP multiplier for a role
- /xpexclude — channels that earn no XP
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord import app_commands
from discord.ext import commands

from resonance.database.engine import run_db
from resonance.engine.errors import InvalidInputError, NotFoundError
from resonance.services.announcement_service import dispatch_level_up
from resonance.services.leveling_service import adjust_xp, recalculate_levels, reset_xp, set_xp
from resonance.services.settings_service import (
    remove_level_role,
    remove_role_multiplier,
    set_channel_excluded,
    set_level_role,
    set_role_multiplier,
    update_guild_level_settings,
)

if TYPE_CHECKING:
    from resonance.bot.core import ResonanceBot

logger = logging.getLogger(__name__)

_CURVE_FIELDS = {"base_multiplier", "scaling_multiplier"}


def is_admin():
    """Decorator that checks if the user has the configured admin role."""
    async def predicate(interaction: discord.Interaction) -> bool:
        bot: ResonanceBot = interaction.client  # type: ignore[assignment]
        if not interaction.user or not hasattr(interaction.user, "roles"):
            return False
        admin_role_id = bot.cfg.admin_role_id
        return any(role.id == admin_role_id for role in interaction.user.roles)
    return app_commands.check(predicate)


class Admin(commands.Cog, name="Admin"):
    """Leveling administration commands."""

    def __init__(self, bot: ResonanceBot) -> None:
        self.bot = bot

    # -------------------------------------------------------------------
    # XP adjustments
    # -------------------------------------------------------------------
    async def _apply_xp_change(
        self,
        interaction: discord.Interaction,
        member: discord.Member,
        func,
        verb: str,
        **kwargs,
    ) -> None:
        settings = await self.bot.level_settings(interaction.guild_id)
        try:
            award = await run_db(
                func,
                self.bot.engine,
                settings,
                guild_id=interaction.guild_id,
                user_id=member.id,
                actor_id=interaction.user.id,
                **kwargs,
            )
        except NotFoundError:
            await interaction.response.send_message(
                f"❌ **{member.display_name}** has no XP record yet.", ephemeral=True,
            )
            return
        except InvalidInputError as exc:
            await interaction.response.send_message(f"❌ {exc}", ephemeral=True)
            return

        await interaction.response.send_message(
            f"✅ {verb} **{member.display_name}**: {award.total_xp:,} XP, "
            f"level {award.new_level}.",
            ephemeral=True,
        )
        dispatch_level_up(self.bot, member=member, award=award, settings=settings)

    @app_commands.command(name="givexp", description="Add (or remove, if negative) XP.")
    @app_commands.describe(member="Member to adjust", amount="XP to add", reason="Reason")
    @is_admin()
    async def givexp(
        self,
        interaction: discord.Interaction,
        member: discord.Member,
        amount: int,
        reason: str | None = None,
    ) -> None:
        await self._apply_xp_change(
            interaction, member, adjust_xp, "Adjusted", amount=amount, reason=reason,
        )

    @app_commands.command(name="setxp", description="Set a member's total XP.")
    @app_commands.describe(member="Member to adjust", xp="New XP total", reason="Reason")
    @is_admin()
    async def setxp(
        self,
        interaction: discord.Interaction,
        member: discord.Member,
        xp: app_commands.Range[int, 0],
        reason: str | None = None,
    ) -> None:
        await self._apply_xp_change(interaction, member, set_xp, "Set", xp=xp, reason=reason)

    @app_commands.command(name="resetxp", description="Reset a member's XP and level to zero.")
    @app_commands.describe(member="Member to reset", reason="Reason")
    @is_admin()
    async def resetxp(
        self,
        interaction: discord.Interaction,
        member: discord.Member,
        reason: str | None = None,
    ) -> None:
        await self._apply_xp_change(interaction, member, reset_xp, "Reset", reason=reason)

    # -------------------------------------------------------------------
    # /xpconfig
    # -------------------------------------------------------------------
    @app_commands.command(name="xpconfig", description="Change leveling settings.")
    @app_commands.describe(
        voice_xp_per_minute="XP per minute in voice",
        message_xp_per_message="XP per message",
        message_xp_cooldown_seconds="Seconds between XP-earning messages (min 10)",
        base_multiplier="XP needed for level 1",
        scaling_multiplier="Growth factor per level (> 1)",
        notify_enabled="Announce level-ups at all",
        notify_channel="Channel for level-up notices",
        notify_dm_user="DM members when they level up",
        notify_announce_in_channel="Also announce where the message was sent",
    )
    @is_admin()
    async def xpconfig(
        self,
        interaction: discord.Interaction,
        voice_xp_per_minute: float | None = None,
        message_xp_per_message: float | None = None,
        message_xp_cooldown_seconds: int | None = None,
        base_multiplier: float | None = None,
        scaling_multiplier: float | None = None,
        notify_enabled: bool | None = None,
        notify_channel: discord.TextChannel | None = None,
        notify_dm_user: bool | None = None,
        notify_announce_in_channel: bool | None = None,
    ) -> None:
        changes = {
            k: v for k, v in {
                "voice_xp_per_minute": voice_xp_per_minute,
                "message_xp_per_message": message_xp_per_message,
                "message_xp_cooldown_seconds": message_xp_cooldown_seconds,
                "base_multiplier": base_multiplier,
                "scaling_multiplier": scaling_multiplier,
                "notify_enabled": notify_enabled,
                "notify_dm_user": notify_dm_user,
                "notify_announce_in_channel": notify_announce_in_channel,
            }.items() if v is not None
        }
        if notify_channel is not None:
            changes["notify_channel_id"] = notify_channel.id
        if not changes:
            await interaction.response.send_message("Nothing to change.", ephemeral=True)
            return

        try:
            settings = await run_db(
                update_guild_level_settings,
                self.bot.engine,
                interaction.guild_id,
                changes,
                actor_id=interaction.user.id,
            )
        except InvalidInputError as exc:
            await interaction.response.send_message(f"❌ {exc}", ephemeral=True)
            return

        note = ""
        if _CURVE_FIELDS & changes.keys():
            changed = await run_db(recalculate_levels, self.bot.engine, settings)
            note = f"\n{changed} member level(s) recalculated."
        await interaction.response.send_message(
            f"✅ Updated: {', '.join(sorted(changes))}.{note}", ephemeral=True,
        )

    # -------------------------------------------------------------------
    # /levelrole, /xpboost, /xpexclude
    # -------------------------------------------------------------------
    @app_commands.command(name="levelrole", description="Set or clear the reward role for a level.")
    @app_commands.describe(level="Level that unlocks the role", role="Role to grant (omit to clear)")
    @is_admin()
    async def levelrole(
        self,
        interaction: discord.Interaction,
        level: app_commands.Range[int, 1],
        role: discord.Role | None = None,
    ) -> None:
        if role is None:
            removed = await run_db(
                remove_level_role, self.bot.engine, interaction.guild_id,
                level=level, actor_id=interaction.user.id,
            )
            msg = f"✅ Level {level} reward cleared." if removed else f"No reward set for level {level}."
        else:
            await run_db(
                set_level_role, self.bot.engine, interaction.guild_id,
                level=level, role_id=role.id, actor_id=interaction.user.id,
            )
            msg = f"✅ {role.mention} is now granted at level {level}."
        await interaction.response.send_message(msg, ephemeral=True)

    @app_commands.command(name="xpboost", description="Set or clear an XP multiplier for a role.")
    @app_commands.describe(role="Role to boost", multiplier="0.1 – 10 (omit to clear)")
    @is_admin()
    async def xpboost(
        self,
        interaction: discord.Interaction,
        role: discord.Role,
        multiplier: float | None = None,
    ) -> None:
        if multiplier is None:
            removed = await run_db(
                remove_role_multiplier, self.bot.engine, interaction.guild_id,
                role_id=role.id, actor_id=interaction.user.id,
            )
            msg = f"✅ Boost for {role.mention} cleared." if removed else "No boost was set."
        else:
            try:
                await run_db(
                    set_role_multiplier, self.bot.engine, interaction.guild_id,
                    role_id=role.id, multiplier=multiplier, actor_id=interaction.user.id,
                )
            except InvalidInputError as exc:
                await interaction.response.send_message(f"❌ {exc}", ephemeral=True)
                return
            msg = f"✅ {role.mention} now earns ×{multiplier:g} XP."
        await interaction.response.send_message(msg, ephemeral=True)

    @app_commands.command(name="xpexclude", description="Toggle whether a channel earns XP.")
    @app_commands.describe(channel="Text or voice channel", excluded="True = no XP in this channel")
    @is_admin()
    async def xpexclude(
        self,
        interaction: discord.Interaction,
        channel: discord.TextChannel | discord.VoiceChannel,
        excluded: bool = True,
    ) -> None:
        changed = await run_db(
            set_channel_excluded, self.bot.engine, interaction.guild_id,
            channel_id=channel.id, excluded=excluded, actor_id=interaction.user.id,
        )
        state = "no longer earns" if excluded else "earns"
        prefix = "✅" if changed else "ℹ️ Already:"
        await interaction.response.send_message(f"{prefix} {channel.mention} {state} XP.", ephemeral=True)

    # -------------------------------------------------------------------
    # Error handler for missing admin role
    # -------------------------------------------------------------------
    async def cog_app_command_error(
        self, interaction: discord.Interaction, error: app_commands.AppCommandError
    ) -> None:
        if isinstance(error, app_commands.CheckFailure):
            await interaction.response.send_message(
                "🔒 You need the Admin role to use this command.",
                ephemeral=True,
            )
        else:
            raise error


async def setup(bot: ResonanceBot) -> None:
    await bot.add_cog(Admin(bot))
