"""
Reporting periods.

A period is an inclusive [start, end] range of calendar dates.
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional, Union

DateLike = Union[date, datetime, str]


def as_date(value: DateLike) -> date:
    """Reduce a datetime, date or ISO string to its calendar date.

    Time-of-day is dropped; period comparisons are date-only.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return datetime.fromisoformat(value.strip()).date()
    raise ValueError(f"Not a date: {value!r}")


@dataclass(frozen=True)
class Period:
    """Inclusive date window used to scope historical queries."""
    start: date
    end: date

    def __post_init__(self):
        """Normalize bounds to dates and check ordering."""
        object.__setattr__(self, "start", as_date(self.start))
        object.__setattr__(self, "end", as_date(self.end))
        if self.start > self.end:
            raise ValueError(
                f"Period start {self.start.isoformat()} is after end {self.end.isoformat()}"
            )

    def contains(self, value: DateLike) -> bool:
        """True if the date falls within the window, bounds included."""
        day = as_date(value)
        return self.start <= day <= self.end

    def is_after(self, value: DateLike) -> bool:
        """True if the date is strictly after the window closes."""
        return as_date(value) > self.end

    @property
    def label(self) -> str:
        return f"{self.start.isoformat()} .. {self.end.isoformat()}"


def make_period(start: Optional[DateLike], end: Optional[DateLike]) -> Optional[Period]:
    """Build a Period from optional bounds.

    Both bounds or neither must be given.

    Raises:
        ValueError: If only one bound is supplied or the bounds are inverted
    """
    if start is None and end is None:
        return None
    if start is None or end is None:
        raise ValueError("A period needs both a start and an end date")
    return Period(start=as_date(start), end=as_date(end))
