"""Day-of-age arithmetic for enrolled batches.

Enrollment day is day 1. Time of day is stripped from both sides before
subtracting, so two timestamps on the same calendar day always map to the
same day-of-age.
"""

from datetime import date, datetime, timedelta

from dateutil.parser import isoparse


def to_calendar_date(value: date | datetime | str) -> date:
    """Reduce a date, datetime or ISO-8601 string to its calendar date.

    Timezone-aware datetimes keep their own calendar date (no conversion to UTC).

    Raises:
        ValueError: If a string is not valid ISO-8601
    """
    if isinstance(value, str):
        value = isoparse(value.strip())
    if isinstance(value, datetime):
        return value.date()
    return value


def day_of_age(entry_date: date | datetime | str, today: date | datetime | str) -> int:
    """Return the day-of-age of a batch enrolled on entry_date, as of today.

    Values <= 0 mean the batch has not started yet.
    """
    return (to_calendar_date(today) - to_calendar_date(entry_date)).days + 1


def has_started(day: int) -> bool:
    return day >= 1


def date_for_day(entry_date: date | datetime | str, day: int) -> date:
    """Calendar date on which a batch enrolled on entry_date reaches the given day-of-age."""
    return to_calendar_date(entry_date) + timedelta(days=day - 1)
