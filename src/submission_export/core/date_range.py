"""
Inclusive date range used to pick which submissions get exported.
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional


@dataclass(frozen=True)
class DateRange:
    """Range of local dates, open on any side left as None."""
    start: Optional[date] = None
    end: Optional[date] = None

    def __post_init__(self):
        if self.start is not None and self.end is not None and self.end < self.start:
            raise ValueError(f"End date {self.end} can't be before start date {self.start}")

    @classmethod
    def empty(cls) -> "DateRange":
        return cls()

    def is_empty(self) -> bool:
        return self.start is None and self.end is None

    def contains(self, moment: datetime) -> bool:
        """Check the local date of ``moment`` falls inside the range (both ends included)."""
        day = moment.date()
        if self.start is not None and day < self.start:
            return False
        if self.end is not None and day > self.end:
            return False
        return True
