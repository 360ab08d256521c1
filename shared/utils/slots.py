"""
shared/utils/slots.py
The weekly slot grid: 5 school days × 8 time codes.
Slot ids travel as "<Day>_<TimeCode>", e.g. "Lundi_S3".
"""

from typing import Iterable, List, Tuple

from shared.models.models import Day, TimeCode

DAYS = tuple(d.value for d in Day)
TIME_CODES = tuple(t.value for t in TimeCode)

Slot = Tuple[Day, TimeCode]


def parse_slot_id(slot_id: str) -> Slot:
    """
    Split a slot id into (Day, TimeCode).
    Raises ValueError for anything outside the grid.
    """
    day, sep, time_code = (slot_id or "").partition("_")
    if not sep or day not in DAYS or time_code not in TIME_CODES:
        raise ValueError(f"Invalid slot id: {slot_id!r}")
    return Day(day), TimeCode(time_code)


def format_slot_id(day: Day, time_code: TimeCode) -> str:
    return f"{Day(day).value}_{TimeCode(time_code).value}"


def normalize_slot_ids(slot_ids: Iterable[str]) -> List[str]:
    """Validate slot ids and drop duplicates, keeping first-seen order."""
    seen = {}
    for slot_id in slot_ids:
        seen.setdefault(format_slot_id(*parse_slot_id(slot_id)), None)
    return list(seen)


# Query-string validation for endpoints that take a slot id outside a JSON body
SLOT_ID_PATTERN = rf"^({'|'.join(DAYS)})_({'|'.join(TIME_CODES)})$"
