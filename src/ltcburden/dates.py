"""
Calendar helpers shared by the normalizer, timelines and aggregator.
"""

import typing
from datetime import date, datetime

import pandas as pd

# Extracts mix ISO dates with UK style day-first dates and compact stamps
DATE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y", "%Y%m%d", "%d-%m-%Y", "%Y/%m/%d", "%d.%m.%Y")

DAYS_PER_YEAR = 365.25


def parse_date(value: typing.Any) -> date | None:
    """
    Parse a date-like cell into a `datetime.date`.

    - date / datetime / pandas Timestamp values are truncated to the day
    - strings are tried against DATE_FORMATS in order (time suffixes after a
      'T' or a space are ignored)
    - None, NaN, NaT and blank strings -> None
    - anything else that does not parse -> None
    """
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return None
    if isinstance(value, pd.Timestamp):
        return value.date()
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = str(int(value))
    s = str(value).strip()
    if not s:
        return None
    # drop any time of day: '2019-03-01T10:00:00' or '2019-03-01 10:00'
    s = s.split("T")[0].split(" ")[0]
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(s, fmt).date()
        except ValueError:
            continue
    return None


def add_years(start: date, years: int) -> date:
    """Shift a date by whole calendar years; 29 February falls back to the 28th."""
    try:
        return start.replace(year=start.year + years)
    except ValueError:
        return start.replace(year=start.year + years, day=28)


def years_between(start: date, end: date) -> float:
    """Exact day difference divided by 365.25 (negative if `end` precedes `start`)."""
    return (end - start).days / DAYS_PER_YEAR
