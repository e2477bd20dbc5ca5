"""CLI for the Shift OEE Tracker.

Each command prints one JSON document. Payload commands take the body as
``--json '{...}'`` or ``--file body.json``.

The in-memory store does not outlive the process, so outside of demos run
with SUPABASE_URL / SUPABASE_KEY set (see db.py).

Usage:
  python cli.py report --json '{"partNumber": "9253020232", "count": 120, "target": 900}'
  python cli.py quality --file quality.json
  python cli.py range --report oee --start 2026-10-01 --end 2026-10-19
  python cli.py export --start 2026-10-01 --end 2026-10-19 --out october.xlsx
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys

from db import get_store
from errors import OEETrackerError, ValidationError
from oee import latest_oee, oee_history, submit_quality_data
from production import (
    hourly_production_data,
    latest_production,
    part_split,
    production_status,
    recent_plan_actual,
    record_counter_report,
    set_plan,
)
from reports import (
    RANGE_REPORTS,
    export_period,
    monthly_runtime,
    monthly_stats,
    range_report,
    record_correction,
)

PAYLOAD_COMMANDS = ("report", "quality", "set-plan", "correction")


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Shift OEE tracker CLI")
    p.add_argument(
        "command",
        choices=[
            *PAYLOAD_COMMANDS,
            "oee", "oee-history", "status", "hourly", "pie", "latest",
            "plan-actual", "monthly-stats", "monthly-runtime", "range", "export",
        ],
        help="Action to execute",
    )
    p.add_argument("--json", dest="json_body", help="Inline JSON payload")
    p.add_argument("--file", help="Path to a JSON payload")
    p.add_argument("--part", help="Used with latest")
    p.add_argument("--date", help="Used with hourly (YYYY-MM-DD)")
    p.add_argument("--shift", help="Used with hourly (shift-1 / shift-2)")
    p.add_argument("--report", choices=sorted(RANGE_REPORTS), help="Used with range")
    p.add_argument("--start", help="Used with range / export")
    p.add_argument("--end", help="Used with range / export")
    p.add_argument("--out", help="Used with export")
    p.add_argument(
        "--log-level",
        default=os.environ.get("OEE_LOG_LEVEL", "WARNING"),
        help="Logging level (default: OEE_LOG_LEVEL or WARNING)",
    )
    return p


def _load_payload(args) -> dict:
    if args.json_body:
        raw = args.json_body
    elif args.file:
        with open(args.file, "r", encoding="utf-8") as f:
            raw = f.read()
    else:
        raise ValidationError(f"--json or --file is required for {args.command}")
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValidationError(f"Payload is not valid JSON: {exc}") from exc


def run(args, store) -> object:
    cmd = args.command
    if cmd in PAYLOAD_COMMANDS:
        payload = _load_payload(args)
        if cmd == "report":
            return record_counter_report(store, payload)
        if cmd == "quality":
            return submit_quality_data(store, payload)
        if cmd == "set-plan":
            return set_plan(store, payload)
        return record_correction(store, payload)

    if cmd == "oee":
        return latest_oee(store)
    if cmd == "oee-history":
        return oee_history(store)
    if cmd == "status":
        return production_status(store)
    if cmd == "hourly":
        return hourly_production_data(store, args.date, args.shift)
    if cmd == "pie":
        return part_split(store)
    if cmd == "latest":
        if not args.part:
            raise ValidationError("--part is required for latest")
        return latest_production(store, args.part)
    if cmd == "plan-actual":
        return recent_plan_actual(store)
    if cmd == "monthly-stats":
        return monthly_stats(store)
    if cmd == "monthly-runtime":
        return monthly_runtime(store)
    if cmd == "range":
        if not args.report:
            raise ValidationError("--report is required for range")
        return range_report(store, args.report, args.start, args.end)

    if not args.out:
        raise ValidationError("--out is required for export")
    return {"written": export_period(store, args.start, args.end, args.out)}


def main(argv=None) -> int:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        result = run(args, get_store())
    except OEETrackerError as exc:
        print(json.dumps(exc.to_dict(), indent=2))
        return 1

    if result is None:
        print(json.dumps({"success": False, "kind": "not_found", "message": "No data found"}, indent=2))
        return 1
    print(json.dumps(result, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
