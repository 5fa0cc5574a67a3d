"""
resonance.services.embeds — Discord embed builders
===================================================

All embed construction lives here so the announcement service and cogs
only need to supply data — no layout concerns.
"""

from __future__ import annotations

from collections.abc import Sequence

import discord

from resonance.constants import STATE_EMOJI, format_duration, rank_label
from resonance.database.models import ModerationStateKind, RoomModerationState
from resonance.engine.buckets import DayActivity
from resonance.engine.votes import VOTE_SECONDS, MuteVote, VoteCompletion
from resonance.engine.xp import XpAward
from resonance.services.stats_service import LeaderboardEntry, TimeLeaderboardEntry, UserStats

_BAR_WIDTH = 12


def _progress_bar(percent: float, width: int = _BAR_WIDTH) -> str:
    filled = max(0, min(width, round(width * percent / 100)))
    return "\u2588" * filled + "\u2591" * (width - filled)


def build_level_up_embed(
    user_id: int,
    avatar_url: str | None,
    award: XpAward,
) -> discord.Embed:
    """Level-up celebration with @mention."""
    embed = discord.Embed(
        title="\u26a1 Level Up!",
        description=(
            f"<@{user_id}> reached **Level {award.new_level}**!\n"
            f"{award.total_xp:,} XP • {award.xp_to_next_level:,} XP to level "
            f"{award.new_level + 1}"
        ),
        color=discord.Color.gold(),
    )
    if avatar_url:
        embed.set_thumbnail(url=avatar_url)
    return embed


def build_rank_embed(stats: UserStats, avatar_url: str | None = None) -> discord.Embed:
    """Profile card: level, XP split, voice time, live session."""
    name = stats.display_name or f"<@{stats.user_id}>"
    embed = discord.Embed(title=f"{name}", color=discord.Color.blurple())
    if avatar_url:
        embed.set_thumbnail(url=avatar_url)

    progress = stats.progress
    rank = rank_label(stats.rank) if stats.rank else "Unranked"
    embed.add_field(name="Rank", value=rank, inline=True)
    embed.add_field(name="Level", value=str(stats.level), inline=True)
    embed.add_field(name="XP", value=f"{stats.xp:,}", inline=True)
    if progress is not None:
        embed.add_field(
            name=f"Progress to Level {progress.level + 1}",
            value=(
                f"`{_progress_bar(progress.progress_percent)}` "
                f"{progress.xp_into_level:,}/{progress.xp_for_level:,} "
                f"({progress.progress_percent:.1f}%)"
            ),
            inline=False,
        )
    embed.add_field(
        name="XP Sources",
        value=f"\U0001f399 {stats.voice_xp:,} voice • \U0001f4ac {stats.message_xp:,} chat",
        inline=False,
    )
    embed.add_field(name="Voice Time", value=format_duration(stats.total_time_ms), inline=True)
    embed.add_field(name="Sessions", value=str(stats.total_sessions), inline=True)
    if stats.is_active:
        embed.add_field(
            name="In Voice Now",
            value=f"#{stats.current_channel_name or stats.current_channel_id} "
                  f"for {format_duration(stats.current_session_ms)}",
            inline=False,
        )
    return embed


def build_leaderboard_embed(entries: Sequence[LeaderboardEntry], guild_name: str) -> discord.Embed:
    embed = discord.Embed(
        title=f"\U0001f3c6 {guild_name} — XP Leaderboard",
        color=discord.Color.gold(),
    )
    if not entries:
        embed.description = "Nobody has earned XP yet."
        return embed
    embed.description = "\n".join(
        f"{rank_label(e.rank)} **{e.display_name or e.user_id}** — "
        f"Level {e.level} ({e.xp:,} XP)"
        for e in entries
    )
    return embed


def build_time_leaderboard_embed(
    entries: Sequence[TimeLeaderboardEntry], guild_name: str,
) -> discord.Embed:
    embed = discord.Embed(
        title=f"\U0001f399 {guild_name} — Voice Time",
        color=discord.Color.teal(),
    )
    if not entries:
        embed.description = "No voice sessions recorded yet."
        return embed
    embed.description = "\n".join(
        f"{rank_label(e.rank)} **{e.display_name or e.user_id}** — "
        f"{format_duration(e.total_time_ms)} ({e.total_sessions} sessions)"
        for e in entries
    )
    return embed


def build_activity_embed(display_name: str, days: Sequence[DayActivity]) -> discord.Embed:
    """Per-day voice time as a small text bar chart."""
    peak = max((d.duration_ms for d in days), default=0)
    lines = []
    for d in days:
        percent = 100.0 * d.duration_ms / peak if peak else 0.0
        lines.append(
            f"`{d.day:%a %d}` `{_progress_bar(percent)}` {format_duration(d.duration_ms)}"
        )
    return discord.Embed(
        title=f"{display_name} — last {len(days)} days",
        description="\n".join(lines) or "No activity.",
        color=discord.Color.green(),
    )


def build_room_states_embed(
    room_name: str,
    kind: ModerationStateKind,
    records: Sequence[RoomModerationState],
) -> discord.Embed:
    """List of muted or banned members of one room with reasons."""
    label = "Muted" if kind is ModerationStateKind.MUTED else "Banned"
    embed = discord.Embed(
        title=f"{STATE_EMOJI.get(kind.value, '')} {label} in {room_name}",
        color=discord.Color.red(),
    )
    if not records:
        embed.description = f"No {label.lower()} members."
        return embed
    embed.description = "\n".join(
        f"<@{r.user_id}> — {r.reason} (by <@{r.applied_by}>)"
        for r in records
    )
    return embed


# ---------------------------------------------------------------------------
# Vote-mute
# ---------------------------------------------------------------------------
_VOTE_FOOTERS = {
    VoteCompletion.ENOUGH_YES: "Vote completed early: enough yes votes",
    VoteCompletion.CANNOT_PASS: "Vote completed early: it can no longer pass",
    VoteCompletion.ALL_VOTED: "Vote completed early: everyone voted",
    VoteCompletion.EXPIRED: "Vote has ended",
}


def build_vote_mute_embed(vote: MuteVote) -> discord.Embed:
    """Open poll with the running tally."""
    embed = discord.Embed(
        title="\U0001f4ca Vote to Mute",
        description=(
            f"<@{vote.initiator_id}> started a vote to mute <@{vote.target_id}> "
            f"for {vote.mute_minutes} minute{'s' if vote.mute_minutes != 1 else ''}."
        ),
        color=discord.Color.orange(),
        timestamp=vote.started_at,
    )
    embed.add_field(name="Reason", value=vote.reason, inline=False)
    embed.add_field(
        name="Current Votes",
        value=(
            f"\U0001f44d Yes: {len(vote.yes)}\n\U0001f44e No: {len(vote.no)}\n"
            f"Required: {vote.threshold} yes"
        ),
        inline=False,
    )
    embed.set_footer(text=f"Ends in {VOTE_SECONDS} seconds or when the outcome is decided")
    return embed


def build_vote_result_embed(vote: MuteVote, completion: VoteCompletion) -> discord.Embed:
    embed = discord.Embed(
        title="\U0001f4ca Vote to Mute — Ended",
        color=discord.Color.green() if vote.passed else discord.Color.red(),
    )
    embed.add_field(
        name="Final Votes",
        value=f"\U0001f44d Yes: {len(vote.yes)}\n\U0001f44e No: {len(vote.no)}",
        inline=False,
    )
    embed.add_field(
        name="Result",
        value=(
            f"✅ Passed. <@{vote.target_id}> is muted for {vote.mute_minutes} min."
            if vote.passed else
            f"❌ Failed. <@{vote.target_id}> will not be muted."
        ),
        inline=False,
    )
    embed.set_footer(text=_VOTE_FOOTERS.get(completion, "Vote has ended"))
    return embed


def build_room_sync_embed(room_name: str, summary: dict[str, int]) -> discord.Embed:
    """Counts from a permission resync."""
    embed = discord.Embed(
        title=f"\U0001f504 Permissions synchronized in {room_name}",
        color=discord.Color.blue(),
    )
    embed.add_field(name="Members", value=str(summary.get("members", 0)), inline=True)
    embed.add_field(name="Muted", value=str(summary.get("muted", 0)), inline=True)
    embed.add_field(name="Banned", value=str(summary.get("banned", 0)), inline=True)
    embed.add_field(name="Overwrites Updated", value=str(summary.get("updated", 0)), inline=True)
    return embed
