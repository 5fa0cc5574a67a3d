"""
resonance.engine.buckets — Day Bucketing
=========================================

Splits tracked intervals into UTC calendar days for the "activity by day"
chart.  A session that crosses midnight contributes to both days; an open
session counts up to ``now``.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta

from resonance.engine.timekeeping import MS_PER_MINUTE, TimeAccount, ensure_utc


@dataclass(frozen=True, slots=True)
class DayActivity:
    day: date
    duration_ms: int

    @property
    def minutes(self) -> int:
        return self.duration_ms // MS_PER_MINUTE


def _midnight(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=UTC)


def trailing_days(now: datetime, days: int) -> list[date]:
    """The last *days* UTC dates ending today, oldest first."""
    today = ensure_utc(now).date()
    return [today - timedelta(days=offset) for offset in range(days - 1, -1, -1)]


def bucket_by_day(
    accounts: Iterable[TimeAccount],
    now: datetime,
    days: int = 7,
) -> list[DayActivity]:
    if days < 1:
        return []
    now = ensure_utc(now)
    window = trailing_days(now, days)
    totals = dict.fromkeys(window, 0)
    window_start = _midnight(window[0])

    for account in accounts:
        piece = account.clipped(window_start, now)
        if piece is None:
            continue
        cursor = piece.started_at
        while cursor < piece.ended_at:
            boundary = min(_midnight(cursor.date() + timedelta(days=1)), piece.ended_at)
            totals[cursor.date()] += TimeAccount(cursor, boundary).duration_ms()
            cursor = boundary

    return [DayActivity(day=day, duration_ms=totals[day]) for day in window]
