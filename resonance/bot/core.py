"""
resonance.bot.core — Bot Instance & Cog Loader
===============================================

Defines :class:`ResonanceBot`, a ``commands.Bot`` subclass that:

1. Stores the shared config (``bot.cfg``) and DB engine (``bot.engine``) so
   every Cog can reach them via ``self.bot``.
2. Loads every Cog listed in :data:`EXTENSIONS`.
3. Syncs the slash-command tree on startup (guild-scoped for dev, global for
   production, controlled by the ``DEV_GUILD_ID`` env var).
4. Provides small async helpers shared by Cogs (guild settings lookup, room
   ownership lookup, member XP multiplier).
"""

from __future__ import annotations

import functools
import logging
import os

import discord
from discord.ext import commands
from sqlalchemy import Engine

from resonance.config import ResonanceConfig
from resonance.database.engine import run_db
from resonance.engine.settings import LevelSettings
from resonance.engine.xp import resolve_multiplier
from resonance.services.room_service import is_room_owner
from resonance.services.session_service import OwnerLookup
from resonance.services.settings_service import get_guild_level_settings

logger = logging.getLogger(__name__)

# Cog modules to load on startup.
EXTENSIONS: list[str] = [
    "resonance.bot.cogs.voice",
    "resonance.bot.cogs.social",
    "resonance.bot.cogs.meta",
    "resonance.bot.cogs.admin",
    "resonance.bot.cogs.rooms",
]


class ResonanceBot(commands.Bot):
    """Custom Bot subclass that carries project-wide state.

    Parameters
    ----------
    cfg:
        The parsed :class:`ResonanceConfig` from ``config.yaml``.
    engine:
        A SQLAlchemy :class:`Engine` connected to PostgreSQL.
    """

    def __init__(self, cfg: ResonanceConfig, engine: Engine) -> None:
        intents = discord.Intents.default()
        intents.message_content = False   # Only message *events* are needed
        intents.members = True            # Privileged: member roles for multipliers
        intents.voice_states = True
        intents.presences = False

        super().__init__(
            command_prefix=cfg.bot_prefix,
            intents=intents,
            description=f"{cfg.community_name} — voice activity & levels",
        )

        self.cfg = cfg
        self.engine = engine
        self.owner_lookup: OwnerLookup = functools.partial(is_room_owner, engine)

    # -----------------------------------------------------------------------
    # Shared helpers
    # -----------------------------------------------------------------------
    async def level_settings(self, guild_id: int) -> LevelSettings:
        """Current leveling settings for *guild_id* (defaults on first use)."""
        return await run_db(get_guild_level_settings, self.engine, guild_id)

    @staticmethod
    def member_multiplier(member: discord.Member, settings: LevelSettings) -> float:
        return resolve_multiplier((role.id for role in member.roles), settings)

    # -----------------------------------------------------------------------
    # Lifecycle hooks
    # -----------------------------------------------------------------------
    async def setup_hook(self) -> None:
        """Load all Cog extensions; one broken Cog does not stop the rest."""
        for ext in EXTENSIONS:
            try:
                await self.load_extension(ext)
                logger.info("Loaded extension: %s", ext)
            except Exception as exc:
                logger.error("Failed to load extension %s: %s", ext, exc)

    async def on_ready(self) -> None:
        assert self.user is not None
        logger.info("Logged in as %s (ID: %s)", self.user.name, self.user.id)

        dev_guild_id = os.getenv("DEV_GUILD_ID")
        if dev_guild_id:
            guild = discord.Object(id=int(dev_guild_id))
            self.tree.copy_global_to(guild=guild)
            synced = await self.tree.sync(guild=guild)
            logger.info("Synced %d commands to dev guild %s", len(synced), dev_guild_id)
        else:
            synced = await self.tree.sync()
            logger.info("Synced %d commands globally", len(synced))

    async def close(self) -> None:
        logger.info("Bot shutting down…")
        await super().close()
