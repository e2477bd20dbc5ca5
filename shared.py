"""
Shared constants for the Shift OEE Tracker
==========================================
Single source of truth for part numbers, shift windows, the plant time zone,
OEE constants, and collection names used across shift_clock.py,
production.py, oee.py, and reports.py.
"""

from dataclasses import dataclass
from datetime import timedelta, timezone

# ---------------------------------------------------------------------------
# Plant clock — IST, fixed offset, no DST
# ---------------------------------------------------------------------------
IST = timezone(timedelta(hours=5, minutes=30), "IST")

# ---------------------------------------------------------------------------
# Shift windows ("HH:MM", both ends inclusive)
# ---------------------------------------------------------------------------
SHIFT_1 = "shift-1"
SHIFT_2 = "shift-2"
SHIFTS = (SHIFT_1, SHIFT_2)

SHIFT_1_WINDOW = ("08:30", "19:00")
SHIFT_2_EVENING = ("20:30", "23:59")
# Overnight tail of shift-2; belongs to the previous calendar day's shift.
SHIFT_2_MORNING = ("00:00", "07:00")

# Hours below this sort after 20-23 inside shift-2.
OVERNIGHT_HOUR_LIMIT = 8

# ---------------------------------------------------------------------------
# Parts
# ---------------------------------------------------------------------------
PART_NUMBERS = {
    "BIG_CYLINDER": "9253020232",
    "SMALL_CYLINDER": "9253010242",
}

PART_NAMES = {
    "BIG_CYLINDER": "BIG CYLINDER",
    "SMALL_CYLINDER": "SMALL CYLINDER",
}

PART_NAME_BY_NUMBER = {PART_NUMBERS[k]: PART_NAMES[k] for k in PART_NUMBERS}


def part_name(part_number):
    """Map a part number to its display name. Unknown numbers pass through."""
    return PART_NAME_BY_NUMBER.get(str(part_number), str(part_number))


# ---------------------------------------------------------------------------
# OEE constants
# ---------------------------------------------------------------------------
IDEAL_CYCLE_TIME = 36                     # seconds per unit
PLANNED_PRODUCTION_TIME = (10 * 60) + 30  # minutes per shift (10h30m)
OFFLINE_THRESHOLD_MINUTES = 10
RECENT_PLAN_ACTUAL_LIMIT = 8


@dataclass(frozen=True)
class OEEConfig:
    """Immutable OEE constants handed to the calculator."""

    ideal_cycle_time: float = IDEAL_CYCLE_TIME
    planned_production_time: float = PLANNED_PRODUCTION_TIME


DEFAULT_OEE_CONFIG = OEEConfig()

# ---------------------------------------------------------------------------
# Collections
# ---------------------------------------------------------------------------
PART_DETAILS = "part_details"
HOURLY_PRODUCTION = "hourly_production"
PLAN_ACTUAL = "plan_actual"
STOP_TIMES = "stop_times"
REJECTIONS = "rejections"
OEE = "oee"
CORRECTIONS = "corrections"
