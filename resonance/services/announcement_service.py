"""
resonance.services.announcement_service — Level-Up Delivery
============================================================

Delivers level-up notices according to the guild's notification settings:

* the configured notification channel (falling back to the bot-wide
  ``announce_channel_id`` from ``config.yaml``),
* the channel the triggering message was sent in, when
  ``announce_in_channel`` is on,
* a direct message to the member, when ``dm_user`` is on.

Delivery is best effort.  :func:`dispatch_level_up` schedules it as a
background task so the XP write that caused it never waits on Discord, and
every send failure is logged rather than raised.

Embed construction lives in :mod:`resonance.services.embeds`.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

import discord
from discord.abc import Messageable

from resonance.engine.settings import LevelSettings
from resonance.engine.xp import XpAward
from resonance.services.embeds import build_level_up_embed
from resonance.services.level_roles import grant_level_roles

if TYPE_CHECKING:
    from resonance.bot.core import ResonanceBot

logger = logging.getLogger(__name__)

# Strong references to in-flight deliveries so they are not garbage collected.
_pending: set[asyncio.Task] = set()


# ---------------------------------------------------------------------------
# Channel resolution
# ---------------------------------------------------------------------------
def resolve_notification_channels(
    bot: ResonanceBot,
    settings: LevelSettings,
    source_channel: Messageable | None = None,
) -> list[Messageable]:
    """Channels a level-up should be posted to, without duplicates."""
    notif = settings.notifications
    targets: list[Messageable] = []

    channel_id = notif.channel_id or bot.cfg.announce_channel_id
    if channel_id:
        ch = bot.get_channel(channel_id)
        if ch and isinstance(ch, Messageable):
            targets.append(ch)
        else:
            logger.warning("Notification channel %s not found", channel_id)

    if notif.announce_in_channel and isinstance(source_channel, Messageable):
        source_id = getattr(source_channel, "id", None)
        if all(getattr(t, "id", None) != source_id for t in targets):
            targets.append(source_channel)
    return targets


# ---------------------------------------------------------------------------
# Sending helpers
# ---------------------------------------------------------------------------
async def _send_embed(channel: Messageable, embed: discord.Embed) -> bool:
    try:
        await channel.send(embed=embed)
        return True
    except Exception:
        logger.exception(
            "Failed to send level-up embed to channel %s", getattr(channel, "id", "?"),
        )
        return False


async def _send_dm(member: discord.abc.User, embed: discord.Embed) -> bool:
    try:
        await member.send(embed=embed)
        return True
    except discord.Forbidden:
        logger.info("User %s does not accept DMs; level-up DM skipped", member.id)
    except Exception:
        logger.exception("Failed to DM level-up to user %s", member.id)
    return False


# ---------------------------------------------------------------------------
# Public API — called by cogs
# ---------------------------------------------------------------------------
async def announce_level_up(
    bot: ResonanceBot,
    *,
    member: discord.Member,
    award: XpAward,
    settings: LevelSettings,
    source_channel: Messageable | None = None,
) -> int:
    """Send the level-up notice everywhere the settings ask for.

    Returns the number of successful deliveries.
    """
    if not award.leveled_up or not settings.notifications.enabled:
        return 0

    avatar = getattr(member, "display_avatar", None)
    embed = build_level_up_embed(member.id, avatar.url if avatar else None, award)

    delivered = 0
    for channel in resolve_notification_channels(bot, settings, source_channel):
        delivered += await _send_embed(channel, embed)
    if settings.notifications.dm_user:
        delivered += await _send_dm(member, embed)
    return delivered


async def celebrate_level_up(
    bot: ResonanceBot,
    *,
    member: discord.Member,
    award: XpAward,
    settings: LevelSettings,
    source_channel: Messageable | None = None,
) -> None:
    """Grant reward roles, then announce."""
    try:
        await grant_level_roles(member, award.new_level, settings)
        await announce_level_up(
            bot, member=member, award=award, settings=settings, source_channel=source_channel,
        )
    except Exception:
        logger.exception("Level-up handling failed for user %s", award.user_id)


def dispatch_level_up(
    bot: ResonanceBot,
    *,
    member: discord.Member,
    award: XpAward,
    settings: LevelSettings,
    source_channel: Messageable | None = None,
) -> asyncio.Task | None:
    """Fire-and-forget :func:`celebrate_level_up` for a level-up award."""
    if not award.leveled_up:
        return None
    task = asyncio.create_task(
        celebrate_level_up(
            bot, member=member, award=award, settings=settings, source_channel=source_channel,
        ),
        name=f"level-up-{award.guild_id}-{award.user_id}",
    )
    _pending.add(task)
    task.add_done_callback(_pending.discard)
    return task
