"""
resonance.engine.curve — XP ↔ Level Curve
==========================================

Pure functions mapping cumulative XP to a level and back.

The curve uses **cumulative** thresholds.  Reaching level ``L`` from
``L − 1`` costs ``floor(base × scaling^(L−1))`` XP (at least 1), and the
total XP needed for level ``L`` is the sum of those steps.  With the
defaults (base 8, scaling 1.5) levels 1, 2, 3, 4 need 8, 20, 38, 65 XP.

Everyone starts at level 0.  The two directions always agree::

    level_for_xp(xp_required_for_level(L)) == L
    level_for_xp(xp_required_for_level(L) - 1) == L - 1
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Protocol


class CurveParams(Protocol):
    base_multiplier: float
    scaling_multiplier: float


def level_threshold(level: int, params: CurveParams) -> int:
    """XP needed to go from ``level - 1`` to *level*."""
    if level <= 0:
        return 0
    step = math.floor(params.base_multiplier * params.scaling_multiplier ** (level - 1))
    return max(1, step)


def xp_required_for_level(level: int, params: CurveParams) -> int:
    """Total XP needed to reach *level* from zero."""
    return sum(level_threshold(k, params) for k in range(1, level + 1))


def level_for_xp(xp: int, params: CurveParams) -> int:
    """Highest level whose cumulative requirement is covered by *xp*."""
    if xp <= 0:
        return 0
    level = 0
    total = 0
    while True:
        next_total = total + level_threshold(level + 1, params)
        if next_total > xp:
            return level
        total = next_total
        level += 1


@dataclass(frozen=True, slots=True)
class LevelProgress:
    """Where a user sits between two levels."""

    level: int
    xp: int
    current_level_xp: int   # cumulative XP at which ``level`` was reached
    next_level_xp: int      # cumulative XP needed for ``level + 1``

    @property
    def xp_into_level(self) -> int:
        return self.xp - self.current_level_xp

    @property
    def xp_for_level(self) -> int:
        return self.next_level_xp - self.current_level_xp

    @property
    def xp_to_next_level(self) -> int:
        return max(0, self.next_level_xp - self.xp)

    @property
    def progress_percent(self) -> float:
        if self.xp_for_level <= 0:
            return 100.0
        return round(100.0 * self.xp_into_level / self.xp_for_level, 1)


def level_progress(xp: int, params: CurveParams) -> LevelProgress:
    xp = max(0, xp)
    level = level_for_xp(xp, params)
    return LevelProgress(
        level=level,
        xp=xp,
        current_level_xp=xp_required_for_level(level, params),
        next_level_xp=xp_required_for_level(level + 1, params),
    )


def roles_for_level(level: int, level_roles: Mapping[int, int]) -> list[int]:
    """Role ids earned at or below *level*, lowest level first."""
    return [role_id for lvl, role_id in sorted(level_roles.items()) if lvl <= level]
