"""
Hour-index normalizer.

Maps a shift-hour index (the 24h clock hour the slot starts at) to the
12-hour display label used on floor reports. The operational shift runs
from 08:00 to 20:00, i.e. indices 8 through 19.

``label_for`` is total: any value outside the shift, including the valid
but unused indices 0-7 and 20-23, negatives and non-integers, maps to
``UNMAPPED_LABEL``.
"""

from typing import Any

UNMAPPED_LABEL = "UNMAPPED"

SHIFT_START = 8
SHIFT_END = 19  # inclusive

_HOUR_LABELS: dict[int, str] = {
    8: "8-9",
    9: "9-10",
    10: "10-11",
    11: "11-12",
    12: "12-1",
    13: "1-2",
    14: "2-3",
    15: "3-4",
    16: "4-5",
    17: "5-6",
    18: "6-7",
    19: "7-8",
}

SHIFT_HOURS: tuple[int, ...] = tuple(range(SHIFT_START, SHIFT_END + 1))


def label_for(hour_index: Any) -> str:
    """Return the display label for ``hour_index``, or ``"UNMAPPED"``."""
    # bool is an int subclass; True/False are not hour indices
    if isinstance(hour_index, bool) or not isinstance(hour_index, int):
        return UNMAPPED_LABEL
    return _HOUR_LABELS.get(hour_index, UNMAPPED_LABEL)


def ordered_labels() -> tuple[str, ...]:
    """Labels in shift order, for laying out hourly report columns."""
    return tuple(_HOUR_LABELS[h] for h in SHIFT_HOURS)


def label_sort_key(label: str) -> int:
    """Sort key placing labels in shift order and UNMAPPED last."""
    for hour, candidate in _HOUR_LABELS.items():
        if candidate == label:
            return hour
    return 99
