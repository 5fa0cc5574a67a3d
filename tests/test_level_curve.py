"""
tests/test_level_curve.py — XP Curve & XP Rule Unit Tests
==========================================================
Pure-function tests for resonance.engine.curve and resonance.engine.xp.
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from resonance.engine.curve import (
    level_for_xp,
    level_progress,
    level_threshold,
    roles_for_level,
    xp_required_for_level,
)
from resonance.engine.settings import LevelSettings
from resonance.engine.xp import (
    AwardOutcome,
    XpAward,
    carry_fraction,
    cooldown_remaining,
    message_xp_gain,
    resolve_multiplier,
    voice_xp_gain,
)
from conftest import GUILD_ID, T0


# ===========================================================================
# Curve
# ===========================================================================
class TestCurve:
    def test_default_cumulative_thresholds(self, settings):
        assert [xp_required_for_level(lvl, settings) for lvl in range(5)] == [0, 8, 20, 38, 65]

    def test_level_zero_needs_nothing(self, settings):
        assert level_threshold(0, settings) == 0
        assert level_for_xp(0, settings) == 0
        assert level_for_xp(-5, settings) == 0

    def test_step_never_below_one(self):
        tiny = LevelSettings(guild_id=GUILD_ID, base_multiplier=0.1, scaling_multiplier=1.01)
        assert level_threshold(1, tiny) == 1
        assert level_for_xp(3, tiny) == 3

    @pytest.mark.parametrize("level", range(1, 30))
    def test_directions_agree(self, settings, level):
        required = xp_required_for_level(level, settings)
        assert level_for_xp(required, settings) == level
        assert level_for_xp(required - 1, settings) == level - 1

    def test_monotonic(self, settings):
        levels = [level_for_xp(xp, settings) for xp in range(0, 2_000)]
        assert levels == sorted(levels)

    def test_progress_between_levels(self, settings):
        p = level_progress(25, settings)
        assert p.level == 2
        assert p.current_level_xp == 20
        assert p.next_level_xp == 38
        assert p.xp_into_level == 5
        assert p.xp_for_level == 18
        assert p.xp_to_next_level == 13
        assert p.progress_percent == pytest.approx(27.8)

    def test_progress_clamps_negative_xp(self, settings):
        p = level_progress(-10, settings)
        assert p.xp == 0 and p.level == 0 and p.progress_percent == 0.0

    def test_roles_for_level(self):
        roles = {5: 500, 1: 100, 10: 1000}
        assert roles_for_level(0, roles) == []
        assert roles_for_level(5, roles) == [100, 500]
        assert roles_for_level(99, roles) == [100, 500, 1000]


# ===========================================================================
# XP rules
# ===========================================================================
class TestXpRules:
    def test_multiplier_picks_highest_match(self):
        s = LevelSettings(guild_id=GUILD_ID, role_multipliers={1: 1.5, 2: 2.0})
        assert resolve_multiplier([1, 2, 3], s) == 2.0
        assert resolve_multiplier([3], s) == 1.0
        assert resolve_multiplier([], s) == 1.0

    def test_cooldown_remaining(self):
        assert cooldown_remaining(None, T0, 60) == 0.0
        assert cooldown_remaining(T0, T0 + timedelta(seconds=30), 60) == pytest.approx(30.0)
        assert cooldown_remaining(T0, T0 + timedelta(seconds=60), 60) == 0.0

    def test_cooldown_accepts_naive_store_values(self):
        naive = T0.replace(tzinfo=None)
        assert cooldown_remaining(naive, T0 + timedelta(seconds=10), 60) == pytest.approx(50.0)

    def test_message_gain_is_unrounded(self):
        s = LevelSettings(guild_id=GUILD_ID, message_xp_per_message=5)
        assert message_xp_gain(s) == 5
        assert message_xp_gain(s, 1.5) == pytest.approx(7.5)

    def test_voice_gain_whole_minutes_only(self):
        s = LevelSettings(guild_id=GUILD_ID, voice_xp_per_minute=2)
        assert voice_xp_gain(0.99, s) == 0
        assert voice_xp_gain(2.9, s) == 4
        assert voice_xp_gain(3, s, 1.25) == pytest.approx(7.5)

    def test_carry_books_whole_points(self):
        assert carry_fraction(7.5) == (7, 0.5)
        assert carry_fraction(0.5, 0.5) == (1, 0.0)
        assert carry_fraction(0.0, 0.25) == (0, 0.25)

    def test_carry_absorbs_float_drift(self):
        carried, booked = 0.0, 0
        for _ in range(10):
            whole, carried = carry_fraction(0.1, carried)
            booked += whole
        assert (booked, carried) == (1, 0.0)

    def test_award_properties(self):
        award = XpAward(
            AwardOutcome.AWARDED, GUILD_ID, 1,
            xp_gained=5, total_xp=10, old_level=0, new_level=1, next_level_xp=20,
        )
        assert award.awarded and award.leveled_up
        assert award.xp_to_next_level == 10
        assert not XpAward(AwardOutcome.COOLDOWN, GUILD_ID, 1).awarded
