"""
OEE calculation for one shift/date
==================================
  run_time     = planned - stoppage minutes
  availability = run_time / planned
  performance  = ideal_cycle_seconds * total_count / (run_time * 60)
  quality      = good_count / total_count   (1.0 when no rejections recorded)
  oee          = availability * performance * quality

Performance is not capped at 1.0: output above the ideal-cycle-time rate
shows up as performance > 100%.

Zero production, non-positive run time, and NaN ratios raise
ComputationError. A wrong OEE number is never stored in their place.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass

import numpy as np
import pandas as pd

from errors import ComputationError, ReferentialError, ValidationError
from production import (
    _missing,
    _non_negative_int,
    normalize_date,
    normalize_part_number,
    normalize_shift,
)
from shared import (
    DEFAULT_OEE_CONFIG,
    OEE,
    PART_DETAILS,
    REJECTIONS,
    STOP_TIMES,
    OEEConfig,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OEEResult:
    availability: float
    performance: float
    quality: float
    oee: float
    total_count: int
    good_count: int
    run_time: float

    def to_record(self) -> dict:
        return asdict(self)


def compute_oee(total_count, total_stop_minutes, total_rejections=0,
                rejections_recorded=False, config: OEEConfig = DEFAULT_OEE_CONFIG) -> OEEResult:
    """Pure OEE math for summed shift facts."""
    if total_count == 0:
        raise ComputationError("no production recorded for this shift/date")

    planned = config.planned_production_time
    run_time = planned - total_stop_minutes
    if run_time <= 0:
        raise ComputationError(
            f"non-positive runtime ({run_time} min: {total_stop_minutes} min stopped of {planned} planned)"
        )

    good_count = total_count - total_rejections
    availability = run_time / planned
    performance = (config.ideal_cycle_time * total_count) / (run_time * 60)
    quality = (good_count / total_count) if rejections_recorded else 1.0
    oee = availability * performance * quality

    if np.isnan([availability, performance, quality, oee]).any():
        raise ComputationError("invalid OEE computation")

    return OEEResult(
        availability=availability,
        performance=performance,
        quality=quality,
        oee=oee,
        total_count=total_count,
        good_count=good_count,
        run_time=run_time,
    )


def calculate_and_save_oee(store, shift, shift_date, config: OEEConfig = DEFAULT_OEE_CONFIG) -> dict:
    """Recompute the OEE record for (shift, date) from stored facts and upsert it."""
    key = {"shift": shift, "date": shift_date}

    total_count = sum(r.get("count", 0) for r in store.find(PART_DETAILS, key))
    total_stop = sum(r.get("duration", 0) for r in store.find(STOP_TIMES, key))
    rejections = store.find(REJECTIONS, key)
    total_rejections = sum(r.get("count", 0) for r in rejections)

    result = compute_oee(
        total_count, total_stop, total_rejections,
        rejections_recorded=len(rejections) > 0, config=config,
    )
    record = store.upsert(OEE, key, result.to_record())
    logger.info("OEE %s %s: A=%.3f P=%.3f Q=%.3f OEE=%.3f",
                shift, shift_date, result.availability, result.performance,
                result.quality, result.oee)
    return record


# ---------------------------------------------------------------------------
# Quality submission
# ---------------------------------------------------------------------------
def _stop_rows(stop_times, key):
    if stop_times is None:
        raise ValidationError("Missing required field: stopTimes")
    if not isinstance(stop_times, list):
        raise ValidationError("stopTimes must be a list")

    rows = []
    for i, stop in enumerate(stop_times):
        if not isinstance(stop, dict):
            raise ValidationError(f"stopTimes[{i}] must be an object")
        duration = stop.get("duration")
        reason = stop.get("reason")
        if (isinstance(duration, bool) or not isinstance(duration, (int, float))
                or not np.isfinite(duration) or duration < 0):
            raise ValidationError(f"stopTimes[{i}].duration must be a non-negative number of minutes")
        if not reason or not str(reason).strip():
            raise ValidationError(f"stopTimes[{i}].reason is required")
        rows.append({**key, "duration": duration, "reason": str(reason).strip()})
    return rows


def _rejection_rows(rejections, key):
    """Rows with part number, count, and reason; incomplete entries are skipped."""
    if not isinstance(rejections, list):
        raise ValidationError("rejections must be a list")

    rows = []
    for i, rej in enumerate(rejections):
        if not isinstance(rej, dict):
            raise ValidationError(f"rejections[{i}] must be an object")
        if _missing(rej.get("partNumber")) or _missing(rej.get("count")) or _missing(rej.get("reason")):
            continue
        try:
            count = _non_negative_int(rej, "count")
        except ValidationError as exc:
            raise ValidationError(f"rejections[{i}].{exc.detail}") from None
        if count == 0:
            continue
        rows.append({
            **key,
            "part_number": normalize_part_number(rej["partNumber"]),
            "count": count,
            "reason": str(rej["reason"]).strip(),
        })
    return rows


def _cell_text(value):
    return "" if value is None or pd.isna(value) else str(value).strip()


def _cell_number(value):
    number = pd.to_numeric(value, errors="coerce")
    if pd.isna(number):
        return None
    number = float(number)
    return int(number) if number.is_integer() else number


def stop_times_from_frame(df) -> list:
    """Stoppage entries from an edited table. Rows without a reason are dropped."""
    entries = []
    for _, r in df.iterrows():
        reason = _cell_text(r.get("reason"))
        if not reason:
            continue
        entries.append({"duration": _cell_number(r.get("duration")), "reason": reason})
    return entries


def rejections_from_frame(df) -> list:
    """Rejection entries from an edited table.

    Rows missing a part, a reason, or a non-zero count are dropped, so an
    untouched table yields an empty list.
    """
    entries = []
    for _, r in df.iterrows():
        part = _cell_text(r.get("partNumber"))
        reason = _cell_text(r.get("reason"))
        count = _cell_number(r.get("count"))
        if not part or not reason or not count:
            continue
        entries.append({"partNumber": part, "count": count, "reason": reason})
    return entries


def submit_quality_data(store, payload: dict, config: OEEConfig = DEFAULT_OEE_CONFIG) -> dict:
    """Replace a shift's stoppages (and rejections, when given), then recompute OEE."""
    if not isinstance(payload, dict):
        raise ValidationError("Quality submission must be an object")

    shift = normalize_shift(payload.get("shift"))
    shift_date = normalize_date(payload.get("date"))
    key = {"shift": shift, "date": shift_date}

    stops = _stop_rows(payload.get("stopTimes"), key)
    rejections = payload.get("rejections")
    # Nothing usable keeps the rejections already recorded.
    rejection_rows = (_rejection_rows(rejections, key) if rejections else None) or None

    if store.find_one(PART_DETAILS, key) is None:
        raise ReferentialError(f"No production data found for {shift} on {shift_date}")

    replacements = [(STOP_TIMES, key, stops)]
    if rejection_rows is not None:
        replacements.append((REJECTIONS, key, rejection_rows))
    store.replace_sets(replacements)

    record = calculate_and_save_oee(store, shift, shift_date, config)
    return {
        "shift": shift,
        "date": shift_date,
        "oee": record,
        "stoppages_processed": len(stops),
        "rejections_processed": len(rejection_rows) if rejection_rows is not None else None,
    }


# ---------------------------------------------------------------------------
# Read views
# ---------------------------------------------------------------------------
def format_percentage(value) -> str:
    if value is None:
        return "0%"
    try:
        value = float(value)
    except (TypeError, ValueError):
        return "0%"
    if np.isnan(value):
        return "0%"
    return f"{value * 100:.2f}%"


def latest_oee(store):
    """Most recent OEE record with percent strings, or None."""
    rec = store.find_one(OEE, sort=[("date", -1), ("shift", -1)])
    if rec is None:
        return None
    return {
        "availability": format_percentage(rec.get("availability")),
        "performance": format_percentage(rec.get("performance")),
        "quality": format_percentage(rec.get("quality")),
        "oee": format_percentage(rec.get("oee")),
        "total_count": rec.get("total_count") or 0,
        "good_count": rec.get("good_count") or 0,
        "run_time": rec.get("run_time") or 0,
        "date": rec["date"],
        "shift": rec["shift"],
    }


def oee_history(store) -> list:
    """Every OEE record, newest first, with OEE as a percent string."""
    rows = store.find(OEE, sort=[("date", -1), ("shift", -1)])
    return [
        {"date": r["date"], "shift": r["shift"], "oee": f"{float(r['oee']) * 100:.2f}"}
        for r in rows
    ]
