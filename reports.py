"""
Period reports and monthly rollups
==================================
Read-only views over stored facts: date-range listings per collection,
the current month's production/rejection stats and runtime/stoppage
breakdown, and an Excel workbook export of a date range.

Corrections (problem / corrective action notes) are recorded here too,
since they are only ever read back through the range report.
"""

import logging
from datetime import datetime, timedelta

import pandas as pd

from errors import ValidationError
from production import normalize_date
from shared import (
    CORRECTIONS,
    DEFAULT_OEE_CONFIG,
    HOURLY_PRODUCTION,
    OEE,
    PART_DETAILS,
    PART_NAMES,
    PART_NUMBERS,
    PLAN_ACTUAL,
    REJECTIONS,
    STOP_TIMES,
)
from shift_clock import SystemClock, shift_hour_order, to_local

logger = logging.getLogger(__name__)

# Report name -> (collection, sort)
RANGE_REPORTS = {
    "production": (PART_DETAILS, [("date", 1), ("shift", 1)]),
    "hourly-production": (HOURLY_PRODUCTION, [("date", 1), ("shift", 1)]),
    "rejections": (REJECTIONS, [("date", 1), ("shift", 1)]),
    "stoptimes": (STOP_TIMES, [("date", 1), ("shift", 1)]),
    "oee": (OEE, [("date", 1), ("shift", 1)]),
    "corrections": (CORRECTIONS, [("date", 1)]),
    "plan-actual": (PLAN_ACTUAL, [("date", 1), ("shift", 1)]),
}

# Workbook tab order
SHEET_TITLES = {
    "production": "Shift Production",
    "hourly-production": "Hourly Production",
    "plan-actual": "Plan vs Actual",
    "oee": "OEE",
    "stoptimes": "Stoppages",
    "rejections": "Rejections",
    "corrections": "Corrections",
}


def _pct(numerator, denominator):
    return f"{numerator / denominator * 100:.2f}%" if denominator else "0%"


def month_bounds(when):
    """First and last calendar day of ``when``'s month, as YYYY-MM-DD."""
    d = when.date() if isinstance(when, datetime) else when
    start = d.replace(day=1)
    next_month = (start + timedelta(days=32)).replace(day=1)
    return start.isoformat(), (next_month - timedelta(days=1)).isoformat()


def _month_filter(clock):
    clock = clock or SystemClock()
    start, end = month_bounds(to_local(clock.now()))
    return start, end, {"date": {"gte": start, "lte": end}}


# ---------------------------------------------------------------------------
# Range listings
# ---------------------------------------------------------------------------
def range_report(store, report, start_date, end_date):
    """All rows of one report between two dates, inclusive."""
    if report not in RANGE_REPORTS:
        raise ValidationError(f"Unknown report {report!r}; expected one of {', '.join(RANGE_REPORTS)}")
    if not start_date or not end_date:
        raise ValidationError("Both startDate and endDate are required")

    start = normalize_date(start_date)
    end = normalize_date(end_date)
    if start > end:
        raise ValidationError(f"startDate {start} is after endDate {end}")

    collection, sort = RANGE_REPORTS[report]
    rows = store.find(collection, {"date": {"gte": start, "lte": end}}, sort=sort)
    if collection == HOURLY_PRODUCTION:
        # shift-2 runs 20:00 -> 07:00
        rows.sort(key=lambda r: (r["date"], r["shift"], shift_hour_order(r["hour"], r["shift"])))
    return rows


def record_correction(store, payload, clock=None):
    """Store a problem / corrective-action note."""
    if not isinstance(payload, dict):
        raise ValidationError("Correction must be an object")
    for field in ("problem", "date", "correctiveAction"):
        value = payload.get(field)
        if value is None or not str(value).strip():
            raise ValidationError(
                "Missing required fields: problem, date, correctiveAction"
            )
    clock = clock or SystemClock()
    return store.insert(CORRECTIONS, {
        "problem": str(payload["problem"]).strip(),
        "date": normalize_date(payload["date"]),
        "corrective_action": str(payload["correctiveAction"]).strip(),
        "created_at": to_local(clock.now()).isoformat(),
    })


# ---------------------------------------------------------------------------
# Monthly rollups
# ---------------------------------------------------------------------------
def monthly_stats(store, clock=None):
    """Production, rejections, and good count per part for the current month."""
    start, end, flt = _month_filter(clock)

    production = store.aggregate(PART_DETAILS, "part_number", "count", flt)

    rej = pd.DataFrame(store.find(REJECTIONS, flt))
    if len(rej) > 0:
        rej["count"] = pd.to_numeric(rej["count"], errors="coerce").fillna(0).astype(int)

    stats = {}
    for key, part_number in PART_NUMBERS.items():
        total = int(production.get(part_number, 0))
        by_reason = []
        total_rej = 0
        if len(rej) > 0:
            part_rej = rej[rej["part_number"] == part_number]
            total_rej = int(part_rej["count"].sum())
            by_reason = [
                {"reason": r["reason"], "count": int(r["count"])}
                for _, r in part_rej.iterrows()
            ]
        stats[PART_NAMES[key]] = {
            "part_number": part_number,
            "total_production": total,
            "good_count": total - total_rej,
            "total_rejections": total_rej,
            "rejections_by_reason": by_reason,
        }

    return {"period": {"start": start, "end": end}, "stats": stats}


def monthly_runtime(store, clock=None, config=DEFAULT_OEE_CONFIG):
    """Planned vs actual run time and a stoppage breakdown for the current month."""
    start, end, flt = _month_filter(clock)

    oee_rows = store.find(OEE, flt)
    total_run_time = float(sum(r.get("run_time") or 0 for r in oee_rows))
    total_planned = len(oee_rows) * config.planned_production_time

    stops = pd.DataFrame(store.find(STOP_TIMES, flt))
    by_reason = []
    total_stop = 0.0
    if len(stops) > 0:
        stops["duration"] = pd.to_numeric(stops["duration"], errors="coerce").fillna(0)
        grouped = (
            stops.groupby("reason")
            .agg(duration=("duration", "sum"), occurrences=("duration", "size"))
            .reset_index()
            .sort_values("duration", ascending=False, kind="stable")
        )
        total_stop = float(grouped["duration"].sum())
        by_reason = [
            {
                "reason": r["reason"],
                "duration": float(r["duration"]),
                "occurrences": int(r["occurrences"]),
                "percentage": _pct(r["duration"], total_stop),
            }
            for _, r in grouped.iterrows()
        ]

    return {
        "period": {"start": start, "end": end},
        "stats": {
            "total_planned_time": total_planned,
            "total_stop_time": total_stop,
            "actual_run_time": total_run_time,
            "utilization_rate": _pct(total_run_time, total_planned),
            "stoppages_by_reason": by_reason,
        },
    }


# ---------------------------------------------------------------------------
# Excel export
# ---------------------------------------------------------------------------
def build_report_frames(store, start_date, end_date):
    """One DataFrame per range report, keyed by sheet title."""
    frames = {}
    for report, title in SHEET_TITLES.items():
        rows = range_report(store, report, start_date, end_date)
        df = pd.DataFrame(rows)
        if "id" in df.columns:
            df = df.drop(columns=["id"])
        frames[title] = df
    return frames


def write_report(frames, output_path):
    logger.info("Writing: %s", output_path)

    with pd.ExcelWriter(output_path, engine="xlsxwriter") as writer:
        workbook = writer.book

        header_fmt = workbook.add_format({
            "bold": True, "bg_color": "#1B2A4A", "font_color": "white",
            "border": 1, "text_wrap": True, "valign": "vcenter", "font_size": 11
        })
        title_fmt = workbook.add_format({"bold": True, "font_size": 14, "font_color": "#1B2A4A"})
        subtitle_fmt = workbook.add_format({"italic": True, "font_size": 10, "font_color": "#666666"})
        pct_fmt = workbook.add_format({"num_format": "0.00%"})

        for sheet_name, df in frames.items():
            safe_name = sheet_name[:31]
            df.to_excel(writer, sheet_name=safe_name, startrow=2, index=False)
            ws = writer.sheets[safe_name]

            ws.write(0, 0, sheet_name, title_fmt)
            ws.write(1, 0, f"Generated {datetime.now().strftime('%Y-%m-%d %H:%M')}", subtitle_fmt)

            for col_num, col_name in enumerate(df.columns):
                ws.write(2, col_num, col_name, header_fmt)

            # Auto-width
            for col_num, col_name in enumerate(df.columns):
                max_len = max(
                    df[col_name].astype(str).map(len).max() if len(df) > 0 else 0,
                    len(str(col_name))
                )
                fmt = pct_fmt if col_name in ("availability", "performance", "quality", "oee") else None
                ws.set_column(col_num, col_num, min(max_len + 4, 60), fmt)

            if "oee" in df.columns and len(df) > 0:
                col_idx = list(df.columns).index("oee")
                ws.conditional_format(3, col_idx, 2 + len(df), col_idx, {
                    "type": "3_color_scale",
                    "min_color": "#F8696B", "mid_color": "#FFEB84", "max_color": "#63BE7B",
                })

    return output_path


def export_period(store, start_date, end_date, output_path):
    """Write every range report between two dates to one workbook."""
    return write_report(build_report_frames(store, start_date, end_date), output_path)
