"""
resonance.engine.settings — Guild Level Settings
=================================================

Immutable, typed view of one guild's leveling configuration.  The service
layer builds a :class:`LevelSettings` from the ``guild_level_settings`` row
and its child tables, and the pure engine only ever sees this object.

:func:`validate_level_settings` enforces the value ranges before anything is
persisted; violating input raises :class:`InvalidInputError`.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from resonance.engine.errors import InvalidInputError

# Defaults for a freshly seen guild
DEFAULT_VOICE_XP_PER_MINUTE = 1.0
DEFAULT_MESSAGE_XP_PER_MESSAGE = 1.0
DEFAULT_MESSAGE_XP_COOLDOWN_SECONDS = 60
DEFAULT_BASE_MULTIPLIER = 8.0
DEFAULT_SCALING_MULTIPLIER = 1.5

MIN_MESSAGE_XP_COOLDOWN_SECONDS = 10
MIN_ROLE_MULTIPLIER = 0.1
MAX_ROLE_MULTIPLIER = 10.0


@dataclass(frozen=True, slots=True)
class NotificationSettings:
    """How level-ups are announced."""

    enabled: bool = True
    channel_id: int | None = None
    dm_user: bool = True
    announce_in_channel: bool = False


@dataclass(frozen=True, slots=True)
class LevelSettings:
    """Per-guild XP rates, level curve parameters and reward tables."""

    guild_id: int
    voice_xp_per_minute: float = DEFAULT_VOICE_XP_PER_MINUTE
    message_xp_per_message: float = DEFAULT_MESSAGE_XP_PER_MESSAGE
    message_xp_cooldown_seconds: int = DEFAULT_MESSAGE_XP_COOLDOWN_SECONDS
    base_multiplier: float = DEFAULT_BASE_MULTIPLIER
    scaling_multiplier: float = DEFAULT_SCALING_MULTIPLIER
    level_roles: Mapping[int, int] = field(default_factory=dict)       # level → role id
    role_multipliers: Mapping[int, float] = field(default_factory=dict)  # role id → multiplier
    excluded_channels: frozenset[int] = frozenset()
    notifications: NotificationSettings = field(default_factory=NotificationSettings)

    def is_excluded(self, channel_id: int | None) -> bool:
        return channel_id is not None and channel_id in self.excluded_channels


# Fields that may be changed through settings updates, with their validators.
EDITABLE_FIELDS = (
    "voice_xp_per_minute",
    "message_xp_per_message",
    "message_xp_cooldown_seconds",
    "base_multiplier",
    "scaling_multiplier",
    "notify_enabled",
    "notify_channel_id",
    "notify_dm_user",
    "notify_announce_in_channel",
)


def _require_number(name: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidInputError(f"{name} must be a number, got {value!r}")
    if not math.isfinite(value):
        raise InvalidInputError(f"{name} must be finite")
    return float(value)


def validate_level_settings(changes: Mapping[str, Any]) -> dict[str, Any]:
    """Validate a partial settings update and return the normalised values.

    Raises
    ------
    InvalidInputError
        On unknown keys or out-of-range values.
    """
    unknown = set(changes) - set(EDITABLE_FIELDS)
    if unknown:
        raise InvalidInputError(f"Unknown settings: {', '.join(sorted(unknown))}")

    clean: dict[str, Any] = {}
    for name, value in changes.items():
        if name in ("voice_xp_per_minute", "message_xp_per_message", "base_multiplier"):
            number = _require_number(name, value)
            if number <= 0:
                raise InvalidInputError(f"{name} must be positive")
            clean[name] = number
        elif name == "scaling_multiplier":
            number = _require_number(name, value)
            if number <= 1:
                raise InvalidInputError("scaling_multiplier must be greater than 1")
            clean[name] = number
        elif name == "message_xp_cooldown_seconds":
            number = _require_number(name, value)
            if number != int(number) or number < MIN_MESSAGE_XP_COOLDOWN_SECONDS:
                raise InvalidInputError(
                    f"message_xp_cooldown_seconds must be a whole number "
                    f">= {MIN_MESSAGE_XP_COOLDOWN_SECONDS}"
                )
            clean[name] = int(number)
        elif name == "notify_channel_id":
            clean[name] = int(value) if value is not None else None
        else:
            if not isinstance(value, bool):
                raise InvalidInputError(f"{name} must be true or false")
            clean[name] = value
    return clean


def validate_role_multiplier(multiplier: Any) -> float:
    number = _require_number("multiplier", multiplier)
    if not MIN_ROLE_MULTIPLIER <= number <= MAX_ROLE_MULTIPLIER:
        raise InvalidInputError(
            f"multiplier must be between {MIN_ROLE_MULTIPLIER} and {MAX_ROLE_MULTIPLIER}"
        )
    return number
