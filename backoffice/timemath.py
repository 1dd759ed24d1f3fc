"""Pure time derivations for the closure countdown.

Every function takes ``now`` explicitly so that callers (engines, sweepers and
live subscribers) decide which clock is authoritative. Nothing computed here is
ever persisted.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

COUNTDOWN_DAYS = 90
COUNTDOWN = timedelta(days=COUNTDOWN_DAYS)

PENDING_PROGRESS = 33.0
COUNTDOWN_SPAN = 34.0
MISSING_APPROVAL_PROGRESS = 66.0
TERMINAL_PROGRESS = 100.0

_SECONDS_PER_DAY = 24 * 60 * 60

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Return a timezone aware UTC timestamp."""

    return datetime.now(timezone.utc)


def ensure_datetime(value: Any) -> datetime:
    """Materialise a stored timestamp into an aware ``datetime``."""

    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed


def optional_datetime(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    return ensure_datetime(value)


@dataclass(frozen=True, slots=True)
class TimeRemaining:
    days: int
    hours: int
    minutes: int
    is_overdue: bool


@dataclass(frozen=True, slots=True)
class ClosureProgress:
    """Derived, display-oriented view of a closure request at a point in time."""

    percentage: float
    days_remaining: int | None
    overdue: bool
    countdown_active: bool
    time_remaining: TimeRemaining | None


def countdown_deadline(approval_date: datetime) -> datetime:
    return approval_date + COUNTDOWN


def calculate_days_remaining(approval_date: datetime, now: datetime) -> int:
    """Whole days left in the countdown, rounded up and floored at zero."""

    remaining = countdown_deadline(approval_date) - now
    days = math.ceil(remaining.total_seconds() / _SECONDS_PER_DAY)
    return max(0, days)


def is_overdue(approval_date: datetime, now: datetime) -> bool:
    return now > countdown_deadline(approval_date)


def time_until(now: datetime, end: datetime) -> TimeRemaining:
    """Break the interval ``end - now`` into floored day/hour/minute parts."""

    seconds = (end - now).total_seconds()
    days = math.floor(seconds / _SECONDS_PER_DAY)
    hours = math.floor((seconds % _SECONDS_PER_DAY) / 3600)
    minutes = math.floor((seconds % 3600) / 60)
    return TimeRemaining(
        days=max(0, days),
        hours=max(0, hours) if seconds >= 0 else 0,
        minutes=max(0, minutes) if seconds >= 0 else 0,
        is_overdue=seconds < 0,
    )


def progress_percentage(status: str, approval_date: datetime | None, now: datetime) -> float:
    if status == "Pending":
        return PENDING_PROGRESS
    if status == "Approved":
        if approval_date is None:
            return MISSING_APPROVAL_PROGRESS
        elapsed = (now - approval_date).total_seconds()
        fraction = elapsed / COUNTDOWN.total_seconds()
        return min(TERMINAL_PROGRESS, max(PENDING_PROGRESS, PENDING_PROGRESS + COUNTDOWN_SPAN * fraction))
    return TERMINAL_PROGRESS


def closure_progress(status: str, approval_date: datetime | None, now: datetime) -> ClosureProgress:
    """Derive progress, countdown and overdue state from ``(status, approval_date, now)``."""

    percentage = progress_percentage(status, approval_date, now)
    if status != "Approved" or approval_date is None:
        return ClosureProgress(
            percentage=percentage,
            days_remaining=None,
            overdue=False,
            countdown_active=False,
            time_remaining=None,
        )

    overdue = is_overdue(approval_date, now)
    return ClosureProgress(
        percentage=percentage,
        days_remaining=calculate_days_remaining(approval_date, now),
        overdue=overdue,
        countdown_active=not overdue,
        time_remaining=time_until(now, countdown_deadline(approval_date)),
    )
