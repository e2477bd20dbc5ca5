from datetime import datetime

import pytest

from shift_clock import FixedClock
from store import MemoryStore


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def clock():
    """Pinned to 09:00 IST on 2026-10-19, inside shift-1."""
    return FixedClock(datetime(2026, 10, 19, 9, 0))
