"""
resonance.constants — Shared Constants & Helpers
=================================================

Single source of truth for presentation constants and the duration
formatter.  Import from here instead of duplicating in cogs, embeds, and
the API.
"""

from __future__ import annotations

from resonance.engine.timekeeping import MS_PER_SECOND

RANK_BADGES: list[str] = ["\U0001f947", "\U0001f948", "\U0001f949"]  # 🥇🥈🥉

STATE_EMOJI: dict[str, str] = {
    "MUTED": "\U0001f507",   # 🔇
    "BANNED": "\u26d4",    # ⛔
}


# ---------------------------------------------------------------------------
# Duration formatting
# ---------------------------------------------------------------------------
_UNITS: tuple[tuple[str, int], ...] = (
    ("day", 86_400),
    ("hour", 3_600),
    ("minute", 60),
    ("second", 1),
)


def format_duration(ms: int | float | None) -> str:
    """Render a millisecond duration as ``"2 hours, 5 minutes"``.

    Zero, negative or missing input renders as ``"0 seconds"``; anything
    under one second renders as ``"less than a second"``.
    """
    if not ms or ms <= 0:
        return "0 seconds"

    remaining = int(ms) // MS_PER_SECOND
    parts: list[str] = []
    for name, size in _UNITS:
        count, remaining = divmod(remaining, size)
        if count:
            parts.append(f"{count} {name}{'' if count == 1 else 's'}")

    return ", ".join(parts) if parts else "less than a second"


def rank_label(rank: int) -> str:
    """Medal for the podium, ``#n`` for everyone else."""
    if 1 <= rank <= len(RANK_BADGES):
        return RANK_BADGES[rank - 1]
    return f"#{rank}"
