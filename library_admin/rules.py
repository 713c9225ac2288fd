"""Fine Rule: the overdue penalty for a transaction.

The penalty is ``ceil(days past the due date) * rate``, never negative.  A
``today`` given as a plain date counts whole days; a ``datetime`` counts any
started day as a full one.
"""

from __future__ import annotations

import math
from datetime import date, datetime, time
from typing import Any, Union

DateLike = Union[date, datetime, str]

SECONDS_PER_DAY = 24 * 60 * 60


def _as_datetime(value: DateLike) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    return datetime.fromisoformat(str(value))


def days_overdue(due_date: DateLike, today: DateLike) -> int:
    """Whole days between the due date and today, rounded up (may be negative)."""
    due = _as_datetime(due_date)
    now = _as_datetime(today)
    if now.tzinfo is not None and due.tzinfo is None:
        due = due.replace(tzinfo=now.tzinfo)
    elif due.tzinfo is not None and now.tzinfo is None:
        now = now.replace(tzinfo=due.tzinfo)
    return math.ceil((now - due).total_seconds() / SECONDS_PER_DAY)


def calculate_fine(due_date: DateLike, today: DateLike, rate: Any) -> Any:
    """Return the fine owed on ``today`` for a book due on ``due_date``.

    >>> calculate_fine("2024-01-10", "2024-01-15", 2)
    10
    >>> calculate_fine("2024-01-10", "2024-01-10", 2)
    0
    """
    return max(0, days_overdue(due_date, today) * rate)
