"""
resonance.bot.cogs.rooms — Room Owner Moderation
=================================================

``/room`` command group for members of member-owned voice rooms:
- /room mute, /room unmute — revoke or restore speaking in the room
- /room ban, /room unban — revoke or restore connecting to the room
- /room bans, /room mutes — list current markers with reasons
- /room transfer — hand the room to another member
- /room votemute — let the room vote to mute someone (any member)
- /room sync — re-apply permission overwrites from the stored markers
- /room register — (admin) record who owns a voice channel

State is stored through :mod:`resonance.services.moderation_service`; the
Discord side is enforced with per-member channel permission overwrites,
and banned members who slip in are disconnected on join.  Commands that
touch Discord permissions defer first and answer with a followup.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

import discord
from discord import app_commands
from discord.ext import commands

from resonance.bot.cogs.admin import is_admin
from resonance.database.engine import run_db
from resonance.database.models import ModerationStateKind
from resonance.engine.errors import InvalidInputError
from resonance.engine.votes import (
    DEFAULT_MUTE_MINUTES,
    MAX_MUTE_MINUTES,
    VOTE_SECONDS,
    MuteVote,
    VoteCompletion,
)
from resonance.services.embeds import (
    build_room_states_embed,
    build_room_sync_embed,
    build_vote_mute_embed,
    build_vote_result_embed,
)
from resonance.services.moderation_service import (
    clear_state,
    get_room_restrictions,
    get_state_records,
    has_state,
    record_room_sync,
    set_state,
)
from resonance.services.room_service import delete_room, is_room_owner, register_room, transfer_room
from resonance.services.vote_mute_service import VoteMuteRegistry, apply_vote_result

if TYPE_CHECKING:
    from resonance.bot.core import ResonanceBot

logger = logging.getLogger(__name__)

# Permission overwrite applied to the member for each state.
_OVERWRITES: dict[ModerationStateKind, str] = {
    ModerationStateKind.MUTED: "speak",
    ModerationStateKind.BANNED: "connect",
}


# ---------------------------------------------------------------------------
# Discord-side enforcement
# ---------------------------------------------------------------------------
async def apply_overwrite(
    channel: discord.VoiceChannel,
    member: discord.Member,
    kind: ModerationStateKind,
    restricted: bool,
    *,
    force: bool = True,
) -> bool:
    """Deny (or lift) the permission behind *kind* for *member*.

    Returns whether Discord was asked to change anything.  Without *force*
    an overwrite that already matches is left alone.
    """
    overwrite = channel.overwrites_for(member)
    permission = _OVERWRITES[kind]
    desired = False if restricted else None
    if not force and getattr(overwrite, permission) is desired:
        return False
    setattr(overwrite, permission, desired)
    try:
        await channel.set_permissions(
            member,
            overwrite=None if overwrite.is_empty() else overwrite,
            reason=f"Room {kind.value.lower()} {'applied' if restricted else 'lifted'}",
        )
        if restricted and kind is ModerationStateKind.BANNED and member.voice \
                and member.voice.channel == channel:
            await member.move_to(None, reason="Banned from room")
    except discord.HTTPException:
        logger.exception("Could not update permissions for %s in %s", member.id, channel.id)
        return False
    return True


async def apply_room_restrictions(
    channel: discord.VoiceChannel,
    restrictions: dict[int, set[ModerationStateKind]],
    *,
    force: bool = False,
) -> dict[str, int]:
    """Bring the room's overwrites in line with *restrictions*.

    Members no longer in the guild are skipped.
    """
    summary = {"members": 0, "muted": 0, "banned": 0, "updated": 0, "skipped": 0}
    for user_id, kinds in restrictions.items():
        member = channel.guild.get_member(user_id)
        if member is None:
            summary["skipped"] += 1
            continue
        summary["members"] += 1
        summary["muted"] += ModerationStateKind.MUTED in kinds
        summary["banned"] += ModerationStateKind.BANNED in kinds
        for kind in ModerationStateKind:
            if await apply_overwrite(channel, member, kind, kind in kinds, force=force):
                summary["updated"] += 1
    return summary


# ---------------------------------------------------------------------------
# Vote buttons
# ---------------------------------------------------------------------------
class VoteMuteView(discord.ui.View):
    """Yes / No buttons of one room poll."""

    def __init__(self, cog: Rooms, vote: MuteVote) -> None:
        super().__init__(timeout=VOTE_SECONDS)
        self.cog = cog
        self.vote = vote
        self.message: discord.Message | None = None

    async def _cast(self, interaction: discord.Interaction, approve: bool) -> None:
        voice = getattr(interaction.user, "voice", None)
        if voice is None or voice.channel is None or voice.channel.id != self.vote.room_channel_id:
            await interaction.response.send_message(
                "Only members in the room can vote.", ephemeral=True,
            )
            return
        try:
            vote, completion = self.cog.votes.cast(
                self.vote.guild_id, self.vote.room_channel_id, interaction.user.id, approve,
            )
        except InvalidInputError as exc:
            await interaction.response.send_message(f"❌ {exc}", ephemeral=True)
            return
        await interaction.response.edit_message(embed=build_vote_mute_embed(vote), view=self)
        if completion is not VoteCompletion.PENDING:
            self.stop()
            await self.cog.conclude_vote(self.vote, completion, self.message)

    @discord.ui.button(label="Yes", style=discord.ButtonStyle.success, emoji="\U0001f44d")
    async def vote_yes(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        await self._cast(interaction, True)

    @discord.ui.button(label="No", style=discord.ButtonStyle.danger, emoji="\U0001f44e")
    async def vote_no(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        await self._cast(interaction, False)

    async def on_timeout(self) -> None:
        await self.cog.conclude_vote(self.vote, VoteCompletion.EXPIRED, self.message)


class Rooms(commands.Cog, name="Rooms"):
    """Mute / ban management inside member-owned voice rooms."""

    room = app_commands.Group(name="room", description="Manage your voice room", guild_only=True)

    def __init__(self, bot: ResonanceBot) -> None:
        self.bot = bot
        self.votes = VoteMuteRegistry()
        self._unmute_tasks: set[asyncio.Task] = set()

    async def cog_unload(self) -> None:
        for task in self._unmute_tasks:
            task.cancel()

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------
    @staticmethod
    def _voice_channel(interaction: discord.Interaction) -> discord.VoiceChannel | None:
        voice = getattr(interaction.user, "voice", None)
        return voice.channel if voice else None

    async def _owned_room(self, interaction: discord.Interaction) -> discord.VoiceChannel | None:
        """The voice room the caller is in and owns, or ``None`` (with a reply)."""
        channel = self._voice_channel(interaction)
        if channel is None:
            await interaction.response.send_message(
                "Join your voice room first.", ephemeral=True,
            )
            return None
        if not await run_db(is_room_owner, self.bot.engine, channel.id, interaction.user.id):
            await interaction.response.send_message(
                "🔒 Only the room owner can do that.", ephemeral=True,
            )
            return None
        return channel

    async def _set(
        self,
        interaction: discord.Interaction,
        member: discord.Member,
        kind: ModerationStateKind,
        reason: str | None,
    ) -> None:
        channel = await self._owned_room(interaction)
        if channel is None:
            return
        if member.id == interaction.user.id:
            await interaction.response.send_message("You can't do that to yourself.", ephemeral=True)
            return
        await interaction.response.defer(ephemeral=True, thinking=True)
        try:
            record = await run_db(
                set_state,
                self.bot.engine,
                guild_id=interaction.guild_id,
                room_channel_id=channel.id,
                user_id=member.id,
                state_kind=kind,
                applied_by=interaction.user.id,
                reason=reason,
            )
        except InvalidInputError as exc:
            await interaction.followup.send(f"❌ {exc}", ephemeral=True)
            return
        await apply_overwrite(channel, member, kind, restricted=True)
        await interaction.followup.send(
            f"✅ {member.mention} {kind.value.lower()} in {channel.mention}: {record.reason}",
            ephemeral=True,
        )

    async def _clear(
        self,
        interaction: discord.Interaction,
        member: discord.Member,
        kind: ModerationStateKind,
    ) -> None:
        channel = await self._owned_room(interaction)
        if channel is None:
            return
        await interaction.response.defer(ephemeral=True, thinking=True)
        removed = await run_db(
            clear_state,
            self.bot.engine,
            guild_id=interaction.guild_id,
            room_channel_id=channel.id,
            user_id=member.id,
            state_kind=kind,
        )
        await apply_overwrite(channel, member, kind, restricted=False)
        label = "muted" if kind is ModerationStateKind.MUTED else "banned"
        msg = f"✅ {member.mention} is no longer {label}." if removed else f"{member.mention} was not {label}."
        await interaction.followup.send(msg, ephemeral=True)

    async def _list(self, interaction: discord.Interaction, kind: ModerationStateKind) -> None:
        channel = await self._owned_room(interaction)
        if channel is None:
            return
        records = await run_db(
            get_state_records, self.bot.engine, interaction.guild_id, channel.id, kind,
        )
        await interaction.response.send_message(
            embed=build_room_states_embed(channel.name, kind, records), ephemeral=True,
        )

    # -------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------
    @room.command(name="mute", description="Stop a member from speaking in your room.")
    @app_commands.describe(member="Member to mute", reason="Why")
    async def mute(self, interaction: discord.Interaction, member: discord.Member, reason: str | None = None) -> None:
        await self._set(interaction, member, ModerationStateKind.MUTED, reason)

    @room.command(name="unmute", description="Let a member speak in your room again.")
    async def unmute(self, interaction: discord.Interaction, member: discord.Member) -> None:
        await self._clear(interaction, member, ModerationStateKind.MUTED)

    @room.command(name="ban", description="Keep a member out of your room.")
    @app_commands.describe(member="Member to ban", reason="Why")
    async def ban(self, interaction: discord.Interaction, member: discord.Member, reason: str | None = None) -> None:
        await self._set(interaction, member, ModerationStateKind.BANNED, reason)

    @room.command(name="unban", description="Allow a member back into your room.")
    async def unban(self, interaction: discord.Interaction, member: discord.Member) -> None:
        await self._clear(interaction, member, ModerationStateKind.BANNED)

    @room.command(name="bans", description="List members banned from your room.")
    async def bans(self, interaction: discord.Interaction) -> None:
        await self._list(interaction, ModerationStateKind.BANNED)

    @room.command(name="mutes", description="List members muted in your room.")
    async def mutes(self, interaction: discord.Interaction) -> None:
        await self._list(interaction, ModerationStateKind.MUTED)

    @room.command(name="transfer", description="Hand your room to another member.")
    @app_commands.describe(member="New owner")
    async def transfer(self, interaction: discord.Interaction, member: discord.Member) -> None:
        channel = await self._owned_room(interaction)
        if channel is None:
            return
        if member.bot:
            await interaction.response.send_message("Bots can't own rooms.", ephemeral=True)
            return
        await run_db(transfer_room, self.bot.engine, channel_id=channel.id, new_owner_id=member.id)
        await interaction.response.send_message(
            f"✅ {member.mention} now owns {channel.mention}.", ephemeral=True,
        )

    @room.command(name="votemute", description="Start a vote to mute a member of this room.")
    @app_commands.describe(member="Member to mute", reason="Why", minutes="How long the mute lasts")
    async def votemute(
        self,
        interaction: discord.Interaction,
        member: discord.Member,
        reason: str | None = None,
        minutes: app_commands.Range[int, 1, MAX_MUTE_MINUTES] = DEFAULT_MUTE_MINUTES,
    ) -> None:
        channel = self._voice_channel(interaction)
        if channel is None:
            await interaction.response.send_message("Join a voice room first.", ephemeral=True)
            return
        if member.bot or member.voice is None or member.voice.channel != channel:
            await interaction.response.send_message(
                f"{member.mention} must be in {channel.mention} to be voted on.", ephemeral=True,
            )
            return
        eligible = sum(1 for m in channel.members if not m.bot and m.id != member.id)
        try:
            vote = await run_db(
                self.votes.start,
                self.bot.engine,
                guild_id=interaction.guild_id,
                room_channel_id=channel.id,
                target_id=member.id,
                initiator_id=interaction.user.id,
                eligible_voters=eligible,
                reason=reason,
                mute_minutes=minutes,
            )
        except InvalidInputError as exc:
            await interaction.response.send_message(f"❌ {exc}", ephemeral=True)
            return

        completion = vote.completion()
        if completion is not VoteCompletion.PENDING:
            # A lone voter decides the poll by starting it.
            await interaction.response.defer(thinking=True)
            await self.conclude_vote(vote, completion, None, interaction=interaction)
            return
        view = VoteMuteView(self, vote)
        await interaction.response.send_message(embed=build_vote_mute_embed(vote), view=view)
        view.message = await interaction.original_response()

    @room.command(name="sync", description="Re-apply room mutes and bans to Discord permissions.")
    @app_commands.describe(member="Only this member", force="Rewrite overwrites that already match")
    async def sync(
        self,
        interaction: discord.Interaction,
        member: discord.Member | None = None,
        force: bool = False,
    ) -> None:
        channel = await self._owned_room(interaction)
        if channel is None:
            return
        await interaction.response.defer(ephemeral=True, thinking=True)
        restrictions = await run_db(
            get_room_restrictions,
            self.bot.engine,
            interaction.guild_id,
            channel.id,
            member.id if member else None,
        )
        summary = await apply_room_restrictions(channel, restrictions, force=force)
        await run_db(
            record_room_sync,
            self.bot.engine,
            guild_id=interaction.guild_id,
            room_channel_id=channel.id,
            actor_id=interaction.user.id,
            summary=summary,
        )
        await interaction.followup.send(embed=build_room_sync_embed(channel.name, summary), ephemeral=True)

    @room.command(name="register", description="(Admin) Record the owner of a voice room.")
    @app_commands.describe(channel="Voice channel", owner="Member who owns it")
    @is_admin()
    async def register(
        self,
        interaction: discord.Interaction,
        channel: discord.VoiceChannel,
        owner: discord.Member,
    ) -> None:
        await run_db(
            register_room,
            self.bot.engine,
            guild_id=interaction.guild_id,
            channel_id=channel.id,
            owner_id=owner.id,
            name=channel.name,
        )
        await interaction.response.send_message(
            f"✅ {channel.mention} is now owned by {owner.mention}.", ephemeral=True,
        )

    # -------------------------------------------------------------------
    # Vote-mute resolution
    # -------------------------------------------------------------------
    async def conclude_vote(
        self,
        vote: MuteVote,
        completion: VoteCompletion,
        message: discord.Message | None,
        *,
        interaction: discord.Interaction | None = None,
    ) -> None:
        """Close the poll once; a passed vote mutes the target for its duration."""
        if self.votes.finish(vote.guild_id, vote.room_channel_id) is None:
            return
        try:
            record = await run_db(apply_vote_result, self.bot.engine, vote)
            if record is not None:
                await self._enforce_vote_mute(vote)
        except Exception:
            logger.exception("Applying vote-mute in room %s failed", vote.room_channel_id)

        embed = build_vote_result_embed(vote, completion)
        try:
            if interaction is not None:
                await interaction.followup.send(embed=embed)
            elif message is not None:
                await message.edit(embed=embed, view=None)
        except discord.HTTPException:
            logger.warning("Could not post vote result in room %s", vote.room_channel_id)

    async def _enforce_vote_mute(self, vote: MuteVote) -> None:
        channel = self.bot.get_channel(vote.room_channel_id)
        if not isinstance(channel, discord.VoiceChannel):
            return
        member = channel.guild.get_member(vote.target_id)
        if member is None:
            return
        await apply_overwrite(channel, member, ModerationStateKind.MUTED, restricted=True)
        task = asyncio.create_task(
            self._lift_vote_mute(channel, member, vote.mute_minutes * 60),
            name=f"vote-unmute-{vote.room_channel_id}-{vote.target_id}",
        )
        self._unmute_tasks.add(task)
        task.add_done_callback(self._unmute_tasks.discard)

    async def _lift_vote_mute(
        self, channel: discord.VoiceChannel, member: discord.Member, delay: float,
    ) -> None:
        await asyncio.sleep(delay)
        try:
            await run_db(
                clear_state,
                self.bot.engine,
                guild_id=channel.guild.id,
                room_channel_id=channel.id,
                user_id=member.id,
                state_kind=ModerationStateKind.MUTED,
            )
            await apply_overwrite(channel, member, ModerationStateKind.MUTED, restricted=False)
            logger.info("Vote-mute of %s in room %s expired", member.id, channel.id)
        except Exception:
            logger.exception("Lifting vote-mute of %s in room %s failed", member.id, channel.id)

    # -------------------------------------------------------------------
    # Ban enforcement
    # -------------------------------------------------------------------
    @commands.Cog.listener()
    async def on_voice_state_update(
        self,
        member: discord.Member,
        before: discord.VoiceState,
        after: discord.VoiceState,
    ) -> None:
        if member.bot or after.channel is None or before.channel == after.channel:
            return
        try:
            banned = await run_db(
                has_state,
                self.bot.engine,
                guild_id=member.guild.id,
                room_channel_id=after.channel.id,
                user_id=member.id,
                state_kind=ModerationStateKind.BANNED,
            )
            if banned:
                await member.move_to(None, reason="Banned from room")
                logger.info("Disconnected banned user %s from room %s", member.id, after.channel.id)
        except Exception:
            logger.exception("Room ban enforcement failed for user %s", member.id)

    @commands.Cog.listener()
    async def on_guild_channel_delete(self, channel: discord.abc.GuildChannel) -> None:
        if not isinstance(channel, discord.VoiceChannel):
            return
        try:
            await run_db(delete_room, self.bot.engine, channel_id=channel.id)
        except Exception:
            logger.exception("Failed to forget deleted room %s", channel.id)

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
    await bot.add_cog(Rooms(bot))
