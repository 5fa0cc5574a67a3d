"""
resonance.engine.xp — XP Gain Rules
====================================

Pure rules that decide *whether* and *how much* XP an activity earns:

* Message XP — one flat grant per message, rate-limited by a per-guild
  cooldown measured from the last *granted* message.
* Voice XP — a per-minute rate, credited only in whole minutes.
* Role multipliers — a member's highest matching role multiplier scales both.

Gains are computed unrounded; :func:`carry_fraction` books the whole part
and carries the remainder to the next award of the same source.

The service layer persists the outcome; this module only computes it and
describes it as an :class:`XpAward`.
"""

from __future__ import annotations

import enum
import math
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

from resonance.engine.settings import LevelSettings
from resonance.engine.timekeeping import ensure_utc

# Decimal places kept on carried fractions (absorbs float drift like 0.1 * 3).
_CARRY_PRECISION = 6


class AwardOutcome(enum.StrEnum):
    """Why an award did or did not change a user's XP."""
    AWARDED = "awarded"
    COOLDOWN = "cooldown"
    EXCLUDED_CHANNEL = "excluded_channel"
    TOO_SHORT = "too_short"
    SESSION_CHANGED = "session_changed"
    ADJUSTED = "adjusted"


@dataclass(slots=True)
class XpAward:
    """Result of one XP write (or of a decision not to write).

    For no-op outcomes ``xp_gained`` is 0 and the level fields describe the
    user's unchanged state when it was read (all zero when the
    decision needed no read).
    """

    outcome: AwardOutcome
    guild_id: int
    user_id: int
    xp_gained: int = 0
    multiplier: float = 1.0
    total_xp: int = 0
    old_level: int = 0
    new_level: int = 0
    next_level_xp: int = 0
    minutes_credited: int = 0

    @property
    def awarded(self) -> bool:
        return self.outcome in (AwardOutcome.AWARDED, AwardOutcome.ADJUSTED)

    @property
    def leveled_up(self) -> bool:
        return self.new_level > self.old_level

    @property
    def xp_to_next_level(self) -> int:
        return max(0, self.next_level_xp - self.total_xp)


# ---------------------------------------------------------------------------
# Multipliers
# ---------------------------------------------------------------------------
def resolve_multiplier(role_ids: Iterable[int], settings: LevelSettings) -> float:
    """Highest multiplier among the member's roles, 1.0 when none match."""
    matches = [
        settings.role_multipliers[role_id]
        for role_id in role_ids
        if role_id in settings.role_multipliers
    ]
    return max(matches) if matches else 1.0


# ---------------------------------------------------------------------------
# Message XP
# ---------------------------------------------------------------------------
def cooldown_remaining(
    last_awarded_at: datetime | None,
    now: datetime,
    cooldown_seconds: int,
) -> float:
    """Seconds left before a message may earn XP again (0 when ready)."""
    if last_awarded_at is None:
        return 0.0
    elapsed = (ensure_utc(now) - ensure_utc(last_awarded_at)).total_seconds()
    return max(0.0, cooldown_seconds - elapsed)


def message_xp_gain(settings: LevelSettings, multiplier: float = 1.0) -> float:
    """Unrounded XP one message is worth."""
    return settings.message_xp_per_message * multiplier


# ---------------------------------------------------------------------------
# Voice XP
# ---------------------------------------------------------------------------
def voice_xp_gain(minutes: float, settings: LevelSettings, multiplier: float = 1.0) -> float:
    """Unrounded XP for *minutes* of voice time; partial minutes earn nothing."""
    whole = math.floor(minutes)
    if whole < 1:
        return 0.0
    return whole * settings.voice_xp_per_minute * multiplier


# ---------------------------------------------------------------------------
# Fractional carry
# ---------------------------------------------------------------------------
def carry_fraction(earned: float, carried: float = 0.0) -> tuple[int, float]:
    """Split ``carried + earned`` into whole XP to book and the fraction left.

    The fraction is stored per source and passed back in as *carried* on the
    next award.
    """
    total = round(carried + earned, _CARRY_PRECISION)
    whole = math.floor(total)
    return whole, round(total - whole, _CARRY_PRECISION)
