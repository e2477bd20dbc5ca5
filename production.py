"""
Counter reports -> shift totals, hourly deltas, plan vs actual
==============================================================
A counting device reports the cumulative count for a part. Each report:

  1. is bucketed into (shift, shift date, hour) by shift_clock
  2. overwrites the part's running total for that shift (part_details)
  3. creates or corrects the hour row (hourly_production)
  4. refreshes the plan/actual projection (plan_actual)

Hour rows store both the incremental count for the hour and the raw
cumulative count seen when the row was last written, so a resend inside
the same hour can be re-based on the count at the start of that hour.

Usage:
  store = MemoryStore()
  record_counter_report(store, {"partNumber": "9253020232", "count": 120, "target": 900})
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional

from errors import ShiftWindowError, ValidationError
from shared import (
    HOURLY_PRODUCTION,
    OFFLINE_THRESHOLD_MINUTES,
    PART_DETAILS,
    PART_NAME_BY_NUMBER,
    PART_NAMES,
    PLAN_ACTUAL,
    RECENT_PLAN_ACTUAL_LIMIT,
    SHIFTS,
    part_name,
)
from shift_clock import (
    SystemClock,
    current_shift,
    hour_number,
    resolve_shift,
    shift_hour_order,
    to_local,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CounterReport:
    part_number: str
    count: int
    target: int


# ---------------------------------------------------------------------------
# Payload validation
# ---------------------------------------------------------------------------
def _missing(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _non_negative_int(payload: dict, field: str) -> int:
    value = payload.get(field)
    if _missing(value):
        raise ValidationError(f"Missing required field: {field}")
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer, got {value!r}")
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    elif isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer, got {value!r}")
    if value < 0:
        raise ValidationError(f"{field} must be >= 0, got {value}")
    return value


def normalize_part_number(value) -> str:
    """Accept string or int part numbers; reject unknown parts."""
    if _missing(value):
        raise ValidationError("Missing required field: partNumber")
    pn = str(value).strip()
    if pn not in PART_NAME_BY_NUMBER:
        raise ValidationError(f"Unrecognized part number: {pn}")
    return pn


def normalize_shift(value) -> str:
    if _missing(value):
        raise ValidationError("Missing required field: shift")
    shift = str(value).strip()
    if shift not in SHIFTS:
        raise ValidationError(f"Unknown shift {shift!r}; expected one of {', '.join(SHIFTS)}")
    return shift


def normalize_date(value) -> str:
    """Coerce a date/datetime/ISO string to 'YYYY-MM-DD'."""
    if _missing(value):
        raise ValidationError("Missing required field: date")
    if hasattr(value, "date") and callable(value.date):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    try:
        return date.fromisoformat(str(value).strip()[:10]).isoformat()
    except ValueError:
        raise ValidationError(f"date must be YYYY-MM-DD, got {value!r}") from None


def parse_counter_report(payload: dict) -> CounterReport:
    if not isinstance(payload, dict):
        raise ValidationError("Counter report must be an object")
    return CounterReport(
        part_number=normalize_part_number(payload.get("partNumber")),
        count=_non_negative_int(payload, "count"),
        target=_non_negative_int(payload, "target"),
    )


# ---------------------------------------------------------------------------
# Per-key serialization
# ---------------------------------------------------------------------------
class KeyedLocks:
    """One lock per (part, shift, date) so read-decide-write runs alone.

    Keys end with the shift date; ``evict_before`` drops locks for dates
    that can no longer receive reports.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks = {}

    def __len__(self):
        return len(self._locks)

    def __contains__(self, key):
        return key in self._locks

    def get(self, key) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(key, threading.Lock())

    def evict_before(self, shift_date: str) -> int:
        with self._guard:
            stale = [k for k in self._locks if k[-1] < shift_date]
            for k in stale:
                del self._locks[k]
        return len(stale)


_report_locks = KeyedLocks()


# ---------------------------------------------------------------------------
# Hour-row reconciliation
# ---------------------------------------------------------------------------
def latest_hourly_row(rows, shift) -> Optional[dict]:
    """Most recent hour row of a shift; shift-2 morning hours rank last."""
    if not rows:
        return None
    return max(rows, key=lambda r: shift_hour_order(r["hour"], shift))


def reconcile_hourly(prior: Optional[dict], hour: str, count: int):
    """Decide the hour-row write for a new cumulative ``count``.

    Returns (patch, is_new). ``is_new`` means insert a row, otherwise
    patch ``prior`` in place.
    """
    if prior is None:
        return {"hour": hour, "count": count, "cumulative_count": count}, True

    if hour_number(prior["hour"]) == hour_number(hour):
        hour_start = prior["cumulative_count"] - prior["count"]
        return {"count": count - hour_start, "cumulative_count": count}, False

    return {
        "hour": hour,
        "count": count - prior["cumulative_count"],
        "cumulative_count": count,
    }, True


def record_counter_report(store, payload: dict, clock=None) -> dict:
    """Apply one cumulative counter report. Returns the three written records."""
    clock = clock or SystemClock()
    report = parse_counter_report(payload)

    now = clock.now()
    window = resolve_shift(now)
    if not window.active:
        logger.warning("Rejected report for %s at %s: no active shift",
                       report.part_number, window.local_time)
        raise ShiftWindowError(
            f"Production data can only be recorded during shift hours (local time {window.local_time})"
        )

    key = {"part_number": report.part_number, "shift": window.shift, "date": window.shift_date}

    with _report_locks.get((report.part_number, window.shift, window.shift_date)):
        part_details = store.upsert(PART_DETAILS, key, {
            "count": report.count,
            "target": report.target,
            "last_updated": to_local(now).isoformat(),
        })

        prior = latest_hourly_row(store.find(HOURLY_PRODUCTION, key), window.shift)
        patch, is_new = reconcile_hourly(prior, window.hour_bucket, report.count)
        if is_new:
            hourly = store.insert(HOURLY_PRODUCTION, {**key, **patch})
        else:
            hourly = store.update_one(HOURLY_PRODUCTION, {"id": prior["id"]}, patch)

        plan_actual = store.upsert(
            PLAN_ACTUAL, key, {"actual": report.count}, on_insert={"plan": report.target},
        )

    # A report can still land on yesterday's shift-2 until its cutoff.
    _report_locks.evict_before(
        (date.fromisoformat(window.shift_date) - timedelta(days=1)).isoformat()
    )

    if hourly["count"] < 0:
        logger.warning("Negative hourly delta %s for %s %s %s %s (counter reset?)",
                       hourly["count"], report.part_number, window.shift,
                       window.shift_date, hourly["hour"])
    logger.info("Recorded %s=%d for %s %s hour %s (hour delta %d)",
                report.part_number, report.count, window.shift, window.shift_date,
                hourly["hour"], hourly["count"])

    return {
        "part_details": part_details,
        "hourly": hourly,
        "plan_actual": plan_actual,
    }


# ---------------------------------------------------------------------------
# Plan / actual
# ---------------------------------------------------------------------------
def set_plan(store, payload: dict) -> dict:
    """Set the plan for a part/shift/date ahead of (or during) production."""
    if not isinstance(payload, dict):
        raise ValidationError("Plan must be an object")
    key = {
        "part_number": normalize_part_number(payload.get("partNumber")),
        "shift": normalize_shift(payload.get("shift")),
        "date": normalize_date(payload.get("date")),
    }
    plan = _non_negative_int(payload, "plan")
    return store.upsert(PLAN_ACTUAL, key, {"plan": plan}, on_insert={"actual": 0})


def recent_plan_actual(store, limit=RECENT_PLAN_ACTUAL_LIMIT) -> list:
    rows = store.find(PLAN_ACTUAL, sort=[("date", -1), ("shift", -1)], limit=limit)
    return [
        {
            "part_number": r.get("part_number"),
            "plan": r.get("plan"),
            "actual": r.get("actual", 0),
            "date": r.get("date"),
            "shift": r.get("shift"),
        }
        for r in rows
    ]


# ---------------------------------------------------------------------------
# Read views
# ---------------------------------------------------------------------------
def latest_production(store, part_number) -> Optional[dict]:
    """Latest shift total for a part, or None."""
    pn = str(part_number).strip()
    if not pn:
        raise ValidationError("Missing required field: partNumber")
    rec = store.find_one(PART_DETAILS, {"part_number": pn}, sort=[("date", -1), ("shift", -1)])
    if rec is None:
        return None
    return {
        "part_number": rec["part_number"],
        "plan": rec.get("target"),
        "actual": rec.get("count"),
        "shift": rec["shift"],
        "date": rec["date"],
    }


def _latest_slot(store) -> Optional[dict]:
    return store.find_one(PART_DETAILS, sort=[("date", -1), ("shift", -1)])


def hourly_production_data(store, shift_date=None, shift=None) -> Optional[dict]:
    """Hour -> incremental count per part name, in shift order.

    Without ``shift_date`` the latest production date is used. Returns None
    when nothing has been recorded yet.
    """
    if shift_date is None:
        latest = _latest_slot(store)
        if latest is None:
            return None
        shift_date = latest["date"]
    shift_date = normalize_date(shift_date)

    flt = {"date": shift_date}
    if shift is not None:
        flt["shift"] = normalize_shift(shift)

    rows = store.find(HOURLY_PRODUCTION, flt)
    rows.sort(key=lambda r: (SHIFTS.index(r["shift"]) if r["shift"] in SHIFTS else len(SHIFTS),
                             shift_hour_order(r["hour"], r["shift"])))

    by_part = {name: {} for name in PART_NAMES.values()}
    for r in rows:
        by_part.setdefault(part_name(r["part_number"]), {})[r["hour"]] = r["count"]

    return {
        "date": shift_date,
        "shift": shift or "all",
        "hourly_production": by_part,
    }


def part_split(store) -> Optional[dict]:
    """Shift total per part name for the latest (date, shift)."""
    latest = _latest_slot(store)
    if latest is None:
        return None
    result = {name: 0 for name in PART_NAMES.values()}
    for r in store.find(PART_DETAILS, {"date": latest["date"], "shift": latest["shift"]}):
        if r["part_number"] in PART_NAME_BY_NUMBER:
            result[part_name(r["part_number"])] = r["count"]
    return result


def production_status(store, clock=None, threshold_minutes=OFFLINE_THRESHOLD_MINUTES) -> dict:
    """Online when a report arrived within the last ``threshold_minutes``."""
    clock = clock or SystemClock()
    now = to_local(clock.now())

    status = "offline"
    last_activity = None
    minutes_since = None

    latest = store.find_one(PART_DETAILS, sort=[("last_updated", -1)])
    if latest is not None and latest.get("last_updated"):
        seen = to_local(datetime.fromisoformat(latest["last_updated"]))
        minutes_since = int((now - seen).total_seconds() // 60)
        if 0 <= minutes_since <= threshold_minutes:
            status = "online"
        last_activity = seen.strftime("%Y-%m-%d %H:%M:%S")

    return {
        "status": status,
        "is_shift_active": current_shift(clock).active,
        "last_activity": last_activity,
        "minutes_since_last_activity": minutes_since,
        "current_time": now.strftime("%Y-%m-%d %H:%M:%S"),
        "threshold_minutes": threshold_minutes,
    }
