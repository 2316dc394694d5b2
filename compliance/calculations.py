"""Helper functions for obligation due calculations."""

import math
from datetime import date, datetime
from typing import Any, Optional, Tuple

from dateutil.parser import isoparse
from dateutil.relativedelta import relativedelta

from .config import Settings
from .status import Classification, Severity

SECONDS_PER_DAY = 24 * 60 * 60


def coerce_mileage(value: Any) -> int:
    """
    Coerce a stored mileage to a non-negative integer.

    Stored values may be ints, floats or numeric strings. Missing or
    malformed values count as 0.
    """
    if value is None or isinstance(value, bool):
        return 0
    try:
        miles = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return 0
    return max(miles, 0)


def to_datetime(value: Any) -> Optional[datetime]:
    """
    Parse a stored date into a naive local datetime.

    Accepts datetime, date or ISO-8601 strings. Missing or unparseable
    values return None.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        result = value
    elif isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        try:
            result = isoparse(value.strip())
        except (ValueError, OverflowError):
            return None
    else:
        return None
    if result.tzinfo is not None:
        result = result.astimezone().replace(tzinfo=None)
    return result


def calc_due_mileage(last_mileage: int, interval: int) -> int:
    """Calculate next due mileage: last + interval."""
    return last_mileage + interval


def calc_due_date(last_date: datetime, interval_months: int) -> datetime:
    """Calculate next due date: last + interval calendar months."""
    return last_date + relativedelta(months=interval_months)


def days_between(start: datetime, end: datetime) -> int:
    """Whole days from start to end, rounded up (negative if end is earlier)."""
    return math.ceil((end - start).total_seconds() / SECONDS_PER_DAY)


def days_estimate(remaining_km: int, km_per_day: int) -> int:
    """Rough days-equivalent of a mileage distance at an average daily use."""
    return math.ceil(abs(remaining_km) / km_per_day)


def classify_mileage(
    remaining: int, settings: Settings
) -> Tuple[Classification, Severity]:
    """Classify a mileage-based obligation by remaining km."""
    if remaining <= 0:
        if abs(remaining) > settings.critical_overdue_mileage:
            return Classification.OVERDUE, Severity.CRITICAL
        return Classification.OVERDUE, Severity.HIGH
    if remaining <= settings.due_soon_mileage:
        return Classification.DUE_SOON, Severity.MEDIUM
    return Classification.CURRENT, Severity.LOW


def classify_days(
    days_remaining: int, settings: Settings
) -> Tuple[Classification, Severity]:
    """Classify a date-based maintenance obligation by remaining days."""
    if days_remaining <= 0:
        if abs(days_remaining) > settings.critical_overdue_days:
            return Classification.OVERDUE, Severity.CRITICAL
        return Classification.OVERDUE, Severity.HIGH
    if days_remaining <= settings.due_soon_days:
        return Classification.DUE_SOON, Severity.MEDIUM
    return Classification.CURRENT, Severity.LOW


def classify_document(
    days_remaining: int, settings: Settings
) -> Optional[Tuple[Classification, Severity]]:
    """
    Classify a compliance document by days until expiry.

    Returns None outside the renewal window: documents further than
    document_window_days from expiry produce no obligation.
    """
    if days_remaining <= 0:
        return Classification.OVERDUE, Severity.CRITICAL
    if days_remaining <= settings.document_urgent_days:
        return Classification.DUE_SOON, Severity.HIGH
    if days_remaining <= settings.document_window_days:
        return Classification.DUE_SOON, Severity.MEDIUM
    return None
