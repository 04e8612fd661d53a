"""
CSV cell encoding and date/time formatting for exported values.
"""

import re
from datetime import date, datetime, time, timezone
from typing import Optional, Tuple

from ..core.model import DataType, Model
from ..parsing.metadata import parse_date_time

# Types whose blank cells are written as a true empty string
EMPTY_COL_WHEN_NULL_DATA_TYPES = frozenset({
    DataType.GEOPOINT,
    DataType.DATE,
    DataType.TIME,
    DataType.DATE_TIME,
})

MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

TIME_PATTERN = re.compile(r"^(\d{1,2}:\d{2}(?::\d{2}(?:\.\d+)?)?)(?:Z|[+-]\d{2}(?::?\d{2})?)?$")

Column = Tuple[str, Optional[str]]


def encode(value: Optional[str], allow_nulls: bool) -> str:
    """Encode one CSV cell.

    Blank values become "" (two quotes) unless ``allow_nulls`` is set, in
    which case the cell is left empty. Values holding a newline, a quote or
    a comma are quoted, doubling the inner quotes.
    """
    if not value:
        return "" if allow_nulls else '""'
    if "\n" in value or '"' in value or "," in value:
        return '"{}"'.format(value.replace('"', '""'))
    return value


def encode_main_value(field: Model, column: Column) -> str:
    name, value = column
    return encode(value, field.data_type in EMPTY_COL_WHEN_NULL_DATA_TYPES or name.startswith("meta"))


def encode_repeat_value(column: Column) -> str:
    name, value = column
    return encode(value, name.startswith("meta") or name.startswith("SET-OF"))


# Formatting

def format_date(value: date) -> str:
    """date(2018, 1, 1) -> "Jan 1, 2018"."""
    return f"{MONTHS[value.month - 1]} {value.day}, {value.year:04d}"


def format_time(value: time) -> str:
    """time(17, 30, 15) -> "5:30:15 PM"."""
    hour = value.hour % 12 or 12
    meridiem = "AM" if value.hour < 12 else "PM"
    return f"{hour}:{value.minute:02d}:{value.second:02d} {meridiem}"


def format_date_time(value: datetime) -> str:
    """Format in UTC: "Jan 1, 2018 5:30:15 PM"."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    utc = value.astimezone(timezone.utc)
    return f"{format_date(utc.date())} {format_time(utc.time())}"


def parse_time(value: str) -> time:
    """Parse an XForms time, keeping the wall clock time and ignoring any offset.

    Raises:
        ValueError: If the value isn't a time
    """
    match = TIME_PATTERN.match(value.strip())
    if match is None:
        raise ValueError(f"Invalid time: {value}")
    clock = match.group(1)
    if len(clock.split(":")[0]) == 1:
        clock = "0" + clock
    return time.fromisoformat(clock)


def reformat_date(value: str) -> str:
    try:
        return format_date(date.fromisoformat(value.strip()[:10]))
    except ValueError:
        return ""


def reformat_time(value: str) -> str:
    try:
        return format_time(parse_time(value))
    except ValueError:
        return ""


def reformat_date_time(value: str) -> str:
    try:
        return format_date_time(parse_date_time(value))
    except ValueError:
        return ""
