"""
Calendar-day handling.

A calendar day is carried through the kernel as the exact ``"YYYY-MM-DD"``
string the caller supplied. It is parsed only to validate it and to compare
ranges; it is never rebuilt from a timestamp, so no timezone conversion can
shift it by a day.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime

from production_kernel.exceptions import ValidationError

_DAY_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def parse_calendar_day(value: object, field: str = "date") -> str:
    """
    Validate a calendar day and return it as the canonical string.

    Accepts a ``"YYYY-MM-DD"`` string or a ``datetime.date``. Datetimes are
    rejected: they carry a time of day and possibly a timezone, which is the
    drift this module exists to avoid.

    Raises:
        ValidationError: If the value is not a real calendar day.
    """
    if isinstance(value, datetime):
        raise ValidationError.single(field, "must be a calendar day, not a timestamp")
    if isinstance(value, date):
        return value.isoformat()
    if not isinstance(value, str) or not _DAY_PATTERN.match(value):
        raise ValidationError.single(field, "must be a YYYY-MM-DD string")
    try:
        date.fromisoformat(value)
    except ValueError:
        raise ValidationError.single(field, f"{value!r} is not a valid calendar day")
    return value


@dataclass(frozen=True)
class DateRange:
    """Inclusive range of calendar days, both ends as ``YYYY-MM-DD``."""

    start: str
    end: str

    def __post_init__(self) -> None:
        parse_calendar_day(self.start, "start")
        parse_calendar_day(self.end, "end")
        if self.end < self.start:
            raise ValidationError.single(
                "end", f"end {self.end} is before start {self.start}"
            )

    @classmethod
    def single_day(cls, day: object) -> "DateRange":
        canonical = parse_calendar_day(day)
        return cls(start=canonical, end=canonical)

    def contains(self, day: str) -> bool:
        # ISO day strings order lexicographically
        return self.start <= day <= self.end
