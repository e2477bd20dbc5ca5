"""Error taxonomy for counter reports, quality submissions, and OEE math."""

from __future__ import annotations


class OEETrackerError(ValueError):
    """Base error. ``kind`` is machine-readable, ``detail`` is for people."""

    kind = "error"

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail

    def to_dict(self) -> dict:
        return {"success": False, "kind": self.kind, "message": self.detail}


class ValidationError(OEETrackerError):
    """Missing or malformed field, or an unrecognized part number."""

    kind = "validation"


class ShiftWindowError(OEETrackerError):
    """Report arrived outside both shift windows."""

    kind = "shift_window"


class ReferentialError(OEETrackerError):
    """Quality data for a shift/date that has no production record."""

    kind = "referential"


class ComputationError(OEETrackerError):
    """OEE cannot be computed from the recorded facts."""

    kind = "computation"

    def __init__(self, detail: str):
        super().__init__(f"OEE Calculation Error: {detail}")


class StoreError(OEETrackerError):
    """Persistence call failed."""

    kind = "store"
