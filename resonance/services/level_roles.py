"""
resonance.services.level_roles — Level Reward Roles
====================================================

Grants every reward role a member has earned (all roles configured at or
below their level) that they do not hold yet.  Roles are never removed
here; an admin XP reset leaves earned roles in place.
"""

from __future__ import annotations

import logging

import discord

from resonance.engine.curve import roles_for_level
from resonance.engine.settings import LevelSettings

logger = logging.getLogger(__name__)


def missing_level_roles(member_role_ids: set[int], level: int, settings: LevelSettings) -> list[int]:
    return [
        role_id
        for role_id in roles_for_level(level, settings.level_roles)
        if role_id not in member_role_ids
    ]


async def grant_level_roles(member: discord.Member, level: int, settings: LevelSettings) -> list[int]:
    """Add missing reward roles; returns the role ids actually granted."""
    held = {role.id for role in member.roles}
    to_grant = []
    for role_id in missing_level_roles(held, level, settings):
        role = member.guild.get_role(role_id)
        if role is None:
            logger.warning("Level role %s no longer exists in guild %s", role_id, member.guild.id)
            continue
        to_grant.append(role)
    if not to_grant:
        return []

    try:
        await member.add_roles(*to_grant, reason=f"Reached level {level}")
    except discord.HTTPException:
        logger.exception("Could not grant level roles to user %s", member.id)
        return []
    logger.info("Granted %d level role(s) to user %s", len(to_grant), member.id)
    return [role.id for role in to_grant]
