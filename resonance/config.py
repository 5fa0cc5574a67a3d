"""
resonance.config — YAML Configuration Loader
=============================================

Reads ``config.yaml`` for **infrastructure-only** settings (bot identity,
admin role, polling cadence, display sizes).  Leveling rules (XP rates,
cooldowns, curve, reward roles) are per guild and live in the
``guild_level_settings`` tables, edited through
:mod:`resonance.services.settings_service`.

Usage::

    from resonance.config import load_config

    cfg = load_config()          # reads ./config.yaml by default
    print(cfg.community_name)    # "Resonance Dev"
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml


@dataclass(frozen=True, slots=True)
class ResonanceConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity
    community_name: str

    # Discord
    bot_prefix: str

    # API
    dashboard_port: int

    # Discord role required for admin commands
    admin_role_id: int

    # Optional
    announce_channel_id: int | None = None  # Fallback channel for level-ups
    voice_xp_poll_seconds: int = 60          # Cadence of open-session XP accrual
    leaderboard_size: int = 10
    activity_days: int = 7


def load_config(path: str | Path = "config.yaml") -> ResonanceConfig:
    """Read *path* and return a :class:`ResonanceConfig` instance.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    ValueError
        If ``voice_xp_poll_seconds`` is below 10.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    poll = int(raw.get("voice_xp_poll_seconds", 60))
    if poll < 10:
        raise ValueError("voice_xp_poll_seconds must be at least 10")

    return ResonanceConfig(
        community_name=raw["community_name"],
        bot_prefix=raw["bot_prefix"],
        dashboard_port=int(raw["dashboard_port"]),
        admin_role_id=int(raw["admin_role_id"]),
        announce_channel_id=(
            int(raw["announce_channel_id"]) if raw.get("announce_channel_id") else None
        ),
        voice_xp_poll_seconds=poll,
        leaderboard_size=int(raw.get("leaderboard_size", 10)),
        activity_days=int(raw.get("activity_days", 7)),
    )
