"""
Shift and hour-bucket resolution
================================
Maps a wall-clock instant to the plant's shift, shift date, and hour bucket.

Two fixed windows, compared as "HH:MM" strings in IST:

  shift-1   08:30 - 19:00   shift date = local date
  shift-2   20:30 - 23:59   shift date = local date
            00:00 - 07:00   shift date = local date - 1 day

07:01-08:29 and 19:01-20:29 belong to no shift.

"Now" is never read directly; callers pass a clock so tests can pin time.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from shared import (
    IST,
    OVERNIGHT_HOUR_LIMIT,
    SHIFT_1,
    SHIFT_1_WINDOW,
    SHIFT_2,
    SHIFT_2_EVENING,
    SHIFT_2_MORNING,
)


@dataclass(frozen=True)
class ShiftWindow:
    shift: Optional[str]
    shift_date: str
    hour_bucket: str
    local_time: str

    @property
    def active(self) -> bool:
        return self.shift is not None


# ---------------------------------------------------------------------------
# Clocks
# ---------------------------------------------------------------------------
class SystemClock:
    """Reads the real time in IST."""

    def now(self) -> datetime:
        return datetime.now(IST)


class FixedClock:
    """Clock pinned to a given instant. Naive datetimes are taken as IST."""

    def __init__(self, when: datetime):
        self._now = to_local(when)

    def now(self) -> datetime:
        return self._now

    def set(self, when: datetime) -> None:
        self._now = to_local(when)

    def advance(self, **kwargs) -> datetime:
        self._now = self._now + timedelta(**kwargs)
        return self._now


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------
def to_local(ts: datetime) -> datetime:
    """Return ``ts`` as an IST-aware datetime."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=IST)
    return ts.astimezone(IST)


def _within(hhmm: str, window) -> bool:
    return window[0] <= hhmm <= window[1]


def hour_bucket(ts: datetime) -> str:
    """Label the hour slot, e.g. 14:37 -> '14:00'."""
    return to_local(ts).strftime("%H:00")


def resolve_shift(ts: datetime) -> ShiftWindow:
    local = to_local(ts)
    hhmm = local.strftime("%H:%M")
    shift_date = local.date()

    if _within(hhmm, SHIFT_1_WINDOW):
        shift = SHIFT_1
    elif _within(hhmm, SHIFT_2_EVENING):
        shift = SHIFT_2
    elif _within(hhmm, SHIFT_2_MORNING):
        shift = SHIFT_2
        shift_date = shift_date - timedelta(days=1)
    else:
        shift = None

    return ShiftWindow(
        shift=shift,
        shift_date=shift_date.isoformat(),
        hour_bucket=hour_bucket(local),
        local_time=hhmm,
    )


def current_shift(clock) -> ShiftWindow:
    return resolve_shift(clock.now())


# ---------------------------------------------------------------------------
# Hour-label helpers
# ---------------------------------------------------------------------------
def hour_number(label: str) -> int:
    """'14:00' -> 14"""
    return int(str(label).split(":")[0])


def shift_hour_order(label: str, shift: Optional[str]) -> int:
    """Minutes-since-shift-day sort key for an hour label.

    Inside shift-2, 00-07 happen after 20-23 and get +24h.
    """
    parts = str(label).split(":")
    h = int(parts[0])
    m = int(parts[1]) if len(parts) > 1 else 0
    if shift == SHIFT_2 and h < OVERNIGHT_HOUR_LIMIT:
        h += 24
    return h * 60 + m


def shift_hours(shift: str) -> list:
    """Hour buckets a shift can write, in shift order."""
    if shift == SHIFT_1:
        return [f"{h:02d}:00" for h in range(8, 20)]
    return [f"{h:02d}:00" for h in list(range(20, 24)) + list(range(0, OVERNIGHT_HOUR_LIMIT))]

