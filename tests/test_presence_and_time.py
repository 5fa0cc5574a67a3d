"""
tests/test_presence_and_time.py — Presence, Time Accounting & Formatting
=========================================================================
Unit tests for voice transition classification, TimeAccount arithmetic,
whole-minute claims, UTC day bucketing, duration formatting and settings
validation.
"""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta

import pytest

from resonance.constants import format_duration, rank_label
from resonance.engine.buckets import bucket_by_day, trailing_days
from resonance.engine.errors import InvalidInputError
from resonance.engine.presence import TransitionKind, classify_voice_update
from resonance.engine.settings import validate_level_settings, validate_role_multiplier
from resonance.engine.timekeeping import (
    TimeAccount,
    claim_whole_minutes,
    elapsed_ms,
    ensure_utc,
)
from conftest import T0


# ===========================================================================
# Transition classification
# ===========================================================================
class TestClassifyVoiceUpdate:
    @pytest.mark.parametrize(
        ("before", "after", "kind"),
        [
            (None, 1, TransitionKind.JOIN),
            (1, None, TransitionKind.LEAVE),
            (1, 2, TransitionKind.SWITCH),
            (1, 1, TransitionKind.NONE),
            (None, None, TransitionKind.NONE),
        ],
    )
    def test_kinds(self, before, after, kind):
        assert classify_voice_update(before, after) is kind


# ===========================================================================
# Time accounts
# ===========================================================================
class TestTimeAccount:
    def test_closed_duration(self):
        acct = TimeAccount(T0, T0 + timedelta(milliseconds=125_000))
        assert acct.duration_ms() == 125_000
        assert not acct.is_open

    def test_open_needs_now(self):
        acct = TimeAccount(T0)
        with pytest.raises(ValueError):
            acct.duration_ms()
        assert acct.duration_ms(T0 + timedelta(seconds=3)) == 3_000

    def test_elapsed_never_negative(self):
        assert elapsed_ms(T0, T0 - timedelta(seconds=5)) == 0

    def test_naive_values_are_utc(self):
        naive = datetime(2026, 3, 2, 12, 0)
        assert ensure_utc(naive) == T0
        assert ensure_utc(None) is None

    def test_clipped_to_window(self):
        acct = TimeAccount(T0 - timedelta(hours=1), T0 + timedelta(hours=1))
        piece = acct.clipped(T0, T0 + timedelta(hours=3))
        assert piece.started_at == T0
        assert piece.ended_at == T0 + timedelta(hours=1)
        assert acct.clipped(T0 + timedelta(hours=2), T0 + timedelta(hours=3)) is None

    def test_claim_keeps_remainder(self):
        claim = claim_whole_minutes(T0, T0 + timedelta(seconds=150))
        assert claim.minutes == 2
        assert claim.next_anchor == T0 + timedelta(minutes=2)
        again = claim_whole_minutes(claim.next_anchor, T0 + timedelta(seconds=181))
        assert again.minutes == 1


# ===========================================================================
# Day buckets
# ===========================================================================
class TestBucketByDay:
    def test_window_is_oldest_first(self):
        days = trailing_days(T0, 3)
        assert days == [date(2026, 2, 28), date(2026, 3, 1), date(2026, 3, 2)]

    def test_session_split_at_midnight(self):
        start = datetime(2026, 3, 1, 23, 30, tzinfo=UTC)
        acct = TimeAccount(start, start + timedelta(hours=1))
        buckets = bucket_by_day([acct], T0, days=2)
        assert [b.minutes for b in buckets] == [30, 30]

    def test_open_session_clipped_to_now(self):
        acct = TimeAccount(T0 - timedelta(minutes=45))
        buckets = bucket_by_day([acct], T0, days=7)
        assert len(buckets) == 7
        assert buckets[-1].minutes == 45
        assert sum(b.duration_ms for b in buckets[:-1]) == 0

    def test_time_before_window_ignored(self):
        old = TimeAccount(T0 - timedelta(days=30), T0 - timedelta(days=29))
        assert all(b.duration_ms == 0 for b in bucket_by_day([old], T0, days=7))

    def test_zero_days(self):
        assert bucket_by_day([], T0, days=0) == []


# ===========================================================================
# Formatting
# ===========================================================================
class TestFormatDuration:
    @pytest.mark.parametrize(
        ("ms", "text"),
        [
            (None, "0 seconds"),
            (0, "0 seconds"),
            (-5, "0 seconds"),
            (500, "less than a second"),
            (1_000, "1 second"),
            (125_000, "2 minutes, 5 seconds"),
            (3_600_000, "1 hour"),
            (90_061_000, "1 day, 1 hour, 1 minute, 1 second"),
        ],
    )
    def test_format(self, ms, text):
        assert format_duration(ms) == text

    def test_rank_label(self):
        assert rank_label(1) == "\U0001f947"
        assert rank_label(4) == "#4"


# ===========================================================================
# Settings validation
# ===========================================================================
class TestValidateLevelSettings:
    def test_accepts_valid_changes(self):
        clean = validate_level_settings({
            "voice_xp_per_minute": 2,
            "message_xp_cooldown_seconds": 30.0,
            "notify_dm_user": False,
        })
        assert clean == {
            "voice_xp_per_minute": 2.0,
            "message_xp_cooldown_seconds": 30,
            "notify_dm_user": False,
        }

    @pytest.mark.parametrize(
        "changes",
        [
            {"voice_xp_per_minute": 0},
            {"message_xp_per_message": -1},
            {"base_multiplier": float("nan")},
            {"scaling_multiplier": 1.0},
            {"message_xp_cooldown_seconds": 5},
            {"message_xp_cooldown_seconds": 12.5},
            {"notify_enabled": "yes"},
            {"voice_xp_per_minute": True},
            {"not_a_setting": 1},
        ],
    )
    def test_rejects(self, changes):
        with pytest.raises(InvalidInputError):
            validate_level_settings(changes)

    def test_role_multiplier_range(self):
        assert validate_role_multiplier(2) == 2.0
        with pytest.raises(InvalidInputError):
            validate_role_multiplier(0.05)
        with pytest.raises(InvalidInputError):
            validate_role_multiplier(11)
