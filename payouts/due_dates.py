# due_dates.py
# Due date arithmetic shared by the registry, alert engine and processor.

import math
from datetime import datetime, timedelta

from dateutil.relativedelta import relativedelta

from payouts.models import Frequency

ONE_DAY = timedelta(days=1)


def next_due_date(frequency: str, from_date: datetime) -> datetime:
    """
    Next due date after ``from_date`` for the given frequency.

    Monthly schedules move one calendar month and clamp to the last day of
    the target month when the anchor day does not exist there
    (2024-01-31 -> 2024-02-29, 2023-01-31 -> 2023-02-28). relativedelta
    applies exactly this clamp; it never overflows into the next month.
    """
    frequency = Frequency(frequency)
    if frequency == Frequency.WEEKLY:
        return from_date + timedelta(days=7)
    elif frequency == Frequency.BIWEEKLY:
        return from_date + timedelta(days=14)
    return from_date + relativedelta(months=1)


def days_until_due(due_date: datetime, now: datetime) -> int:
    """Whole days until due, rounded up; negative once past due."""
    return math.ceil((due_date - now) / ONE_DAY)


def days_past_due(due_date: datetime, now: datetime) -> int:
    """Whole days elapsed since the due date, never negative."""
    return max(0, math.floor((now - due_date) / ONE_DAY))
