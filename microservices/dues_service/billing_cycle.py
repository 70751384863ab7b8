"""
Billing Cycle Calculator

Date arithmetic for anniversary billing. All functions are pure.
"""

import calendar
from datetime import date, timedelta
from typing import Tuple, Union

from .models import BillingFrequency

MONTHS_PER_FREQUENCY = {
    BillingFrequency.MONTHLY: 1,
    BillingFrequency.BIANNUAL: 6,
    BillingFrequency.ANNUAL: 12,
}

MAX_ANNIVERSARY_DAY = 28


def months_for_frequency(frequency: Union[BillingFrequency, str]) -> int:
    return MONTHS_PER_FREQUENCY[BillingFrequency(frequency)]


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def add_months(from_date: date, months: int, day: int = None) -> date:
    """
    Shift a date by whole months, clamping the day to the target month.

    Args:
        from_date: Starting date
        months: Months to add (may be negative)
        day: Day of month to land on; defaults to from_date.day
    """
    month_index = from_date.month - 1 + months
    year = from_date.year + month_index // 12
    month = month_index % 12 + 1
    target_day = day if day is not None else from_date.day
    return date(year, month, min(target_day, days_in_month(year, month)))


def next_payment_due(
    from_date: date,
    frequency: Union[BillingFrequency, str],
    anniversary_day: int,
) -> date:
    """
    Next due date one billing period after from_date.

    The day is min(anniversary_day, days in the target month), so an
    anniversary on the 31st lands on the 30th in a 30-day month.
    """
    if not 1 <= anniversary_day <= 31:
        raise ValueError(f"anniversary_day must be between 1 and 31, got {anniversary_day}")
    return add_months(from_date, months_for_frequency(frequency), anniversary_day)


def anniversary_day_for(join_date: date) -> int:
    """Stored anniversary day for a join date (capped at 28)."""
    return min(join_date.day, MAX_ANNIVERSARY_DAY)


def days_between(start: date, end: date) -> int:
    return (end - start).days


def period_bounds(period_start: date, months: int) -> Tuple[date, date]:
    """Inclusive coverage period of `months` months starting at period_start."""
    period_end = add_months(period_start, max(months, 1)) - timedelta(days=1)
    return period_start, period_end


def format_period_label(period_start: date, months: int) -> str:
    """Label such as 'March 2026', 'Mar - Aug 2026' or 'Mar 2026 - Feb 2027'."""
    _, period_end = period_bounds(period_start, months)

    if months <= 1:
        return period_start.strftime("%B %Y")
    if period_start.year == period_end.year:
        return f"{period_start.strftime('%b')} - {period_end.strftime('%b %Y')}"
    return f"{period_start.strftime('%b %Y')} - {period_end.strftime('%b %Y')}"
