"""
Warranty / service-due status classification.

Pure date arithmetic shared by the product and service stores, the query
builder, the dashboard aggregates and the expiration sweep. Nothing here
touches the database.

    daysLeft = ceil((target - now) / 1 day)

    daysLeft <= 0               → EXPIRED  (expired / overdue)
    0 < daysLeft <= threshold   → SOON     (expiring / upcoming)
    daysLeft > threshold        → NORMAL   (active / scheduled)

Plain dates are read as midnight UTC, so for a date target the day count
is simply ``(target - today).days``.
"""

import calendar
import math
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from typing import Optional

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_THRESHOLD_DAYS = 30
SWEEP_LOOKAHEAD_DAYS = 7

WARRANTY_STATUSES = ("active", "expiring", "expired")
SERVICE_DUE_STATUSES = ("scheduled", "upcoming", "overdue")

_ONE_DAY = timedelta(days=1)


class StatusBucket(Enum):
    """Three-way partition of a target date relative to now."""
    EXPIRED = "expired"
    SOON = "soon"
    NORMAL = "normal"


WARRANTY_LABELS = {
    StatusBucket.EXPIRED: "expired",
    StatusBucket.SOON: "expiring",
    StatusBucket.NORMAL: "active",
}

SERVICE_DUE_LABELS = {
    StatusBucket.EXPIRED: "overdue",
    StatusBucket.SOON: "upcoming",
    StatusBucket.NORMAL: "scheduled",
}


# ---------------------------------------------------------------------------
# Date helpers
# ---------------------------------------------------------------------------

def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_datetime(value: date | datetime) -> datetime:
    """Normalize a date or datetime to an aware UTC datetime."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def parse_date(value: str | date | datetime | None) -> Optional[date]:
    """Parse an ISO date (or the date part of an ISO timestamp).

    Returns None for empty input. Raises ValueError on garbage.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_datetime(value).date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def add_months(start: date, months: int) -> date:
    """Add calendar months, clamping to the last day of the target month.

    add_months(date(2024, 1, 15), 12) → 2025-01-15
    add_months(date(2024, 1, 31), 1)  → 2024-02-29
    """
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(start.day, last_day))


def day_window(
    now: datetime | None = None,
    days_ahead: int = SWEEP_LOOKAHEAD_DAYS,
) -> tuple[datetime, datetime]:
    """Return the [00:00:00.000, 23:59:59.999] window of the day ``days_ahead`` from now."""
    now = as_datetime(now or utcnow())
    start = datetime.combine(
        now.date() + timedelta(days=days_ahead), time.min, tzinfo=timezone.utc,
    )
    end = start + _ONE_DAY - timedelta(milliseconds=1)
    return start, end


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

def days_left(target: date | datetime, reference_now: datetime | None = None) -> int:
    """Whole days until ``target``, rounded up."""
    now = as_datetime(reference_now or utcnow())
    return math.ceil((as_datetime(target) - now) / _ONE_DAY)


def classify(
    target: date | datetime,
    reference_now: datetime | None = None,
    threshold_days: int = DEFAULT_THRESHOLD_DAYS,
) -> StatusBucket:
    """Classify ``target`` against ``reference_now`` (defaults to the current UTC time).

    daysLeft == 0 is EXPIRED; daysLeft == threshold_days is still SOON.
    """
    remaining = days_left(target, reference_now)
    if remaining <= 0:
        return StatusBucket.EXPIRED
    if remaining <= threshold_days:
        return StatusBucket.SOON
    return StatusBucket.NORMAL


def warranty_status(
    expiry: date | datetime,
    reference_now: datetime | None = None,
    threshold_days: int = DEFAULT_THRESHOLD_DAYS,
) -> str:
    """'active' | 'expiring' | 'expired'."""
    return WARRANTY_LABELS[classify(expiry, reference_now, threshold_days)]


def service_due_status(
    due: date | datetime | None,
    reference_now: datetime | None = None,
    threshold_days: int = DEFAULT_THRESHOLD_DAYS,
) -> Optional[str]:
    """'scheduled' | 'upcoming' | 'overdue', or None when no due date is set."""
    if due is None:
        return None
    return SERVICE_DUE_LABELS[classify(due, reference_now, threshold_days)]


def status_date_bounds(
    status: str,
    reference_now: datetime | None = None,
    threshold_days: int = DEFAULT_THRESHOLD_DAYS,
) -> tuple[Optional[date], Optional[date]]:
    """Translate a warranty status into an exclusive-lower / inclusive-upper date range.

    Returns (after, up_to): a date-valued expiry matches when
    ``after < expiry`` (if after is set) and ``expiry <= up_to`` (if up_to
    is set). The three ranges partition every possible expiry date and
    agree with classify() for the same reference time.
    """
    today = as_datetime(reference_now or utcnow()).date()
    soon_limit = today + timedelta(days=threshold_days)
    if status == "expired":
        return None, today
    if status == "expiring":
        return today, soon_limit
    if status == "active":
        return soon_limit, None
    raise ValueError(f"Unknown warranty status: {status!r}")
