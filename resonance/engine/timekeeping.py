"""
resonance.engine.timekeeping — Time Accounts & UTC Helpers
===========================================================

Every timestamp inside Resonance is a timezone-aware UTC ``datetime``.
SQLite (used in tests) hands back naive datetimes even for
``DateTime(timezone=True)`` columns, so anything read from the store goes
through :func:`ensure_utc` before arithmetic.

A :class:`TimeAccount` is the minimal shape of a tracked interval: a start,
an optional end, and a duration derived from the two.  Sessions, chart
buckets and voice-XP claims are all computed from it.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

MS_PER_SECOND = 1_000
MS_PER_MINUTE = 60 * MS_PER_SECOND
_ONE_MS = timedelta(milliseconds=1)


def utc_now() -> datetime:
    return datetime.now(UTC)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Normalise *value* to an aware UTC datetime (naive means UTC)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def elapsed_ms(start: datetime, end: datetime) -> int:
    """Whole milliseconds from *start* to *end*, never negative."""
    delta = ensure_utc(end) - ensure_utc(start)
    return max(0, delta // _ONE_MS)


@dataclass(frozen=True, slots=True)
class TimeAccount:
    """A contiguous interval of tracked time.

    ``ended_at`` is ``None`` while the interval is still running; in that case
    callers must supply ``now`` to measure it.
    """

    started_at: datetime
    ended_at: datetime | None = None

    @property
    def is_open(self) -> bool:
        return self.ended_at is None

    def duration_ms(self, now: datetime | None = None) -> int:
        end = self.ended_at if self.ended_at is not None else now
        if end is None:
            raise ValueError("An open TimeAccount needs 'now' to be measured")
        return elapsed_ms(self.started_at, end)

    def clipped(self, window_start: datetime, window_end: datetime) -> TimeAccount | None:
        """Return the part of this interval inside the window, if any.

        An open interval is treated as running until *window_end*.
        """
        start = max(ensure_utc(self.started_at), ensure_utc(window_start))
        end = ensure_utc(self.ended_at) if self.ended_at is not None else ensure_utc(window_end)
        end = min(end, ensure_utc(window_end))
        if end <= start:
            return None
        return TimeAccount(started_at=start, ended_at=end)


# ---------------------------------------------------------------------------
# Voice-XP minute claims
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class MinuteClaim:
    """Whole minutes credited since an anchor, and the anchor after credit.

    The new anchor moves forward by exactly ``minutes``, so a sub-minute
    remainder stays unclaimed and is picked up by the next claim.
    """

    minutes: int
    next_anchor: datetime


def claim_whole_minutes(anchor: datetime, now: datetime) -> MinuteClaim:
    anchor = ensure_utc(anchor)
    minutes = elapsed_ms(anchor, now) // MS_PER_MINUTE
    return MinuteClaim(minutes=minutes, next_anchor=anchor + timedelta(minutes=minutes))
