"""Calendar arithmetic for billing cycles."""

from __future__ import annotations

from calendar import monthrange
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Optional

from ..errors import ValidationError


class BillingCycle(str, Enum):
    """Recurrence period shared by subscriptions, invoices and incomes."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"

    @classmethod
    def parse(cls, value: "str | BillingCycle") -> "BillingCycle":
        try:
            return cls(value)
        except ValueError as exc:
            raise ValidationError(f"Unknown billing cycle: {value!r}", value=value) from exc


_MONTH_STEPS = {
    BillingCycle.MONTHLY: 1,
    BillingCycle.QUARTERLY: 3,
    BillingCycle.YEARLY: 12,
}

# Invoices only recur on calendar-month based cycles.
INVOICE_FREQUENCIES = frozenset(_MONTH_STEPS)


def as_date(value: "date | datetime") -> date:
    """Drop any time-of-day component."""

    if isinstance(value, datetime):
        return value.date()
    return value


def days_in_month(year: int, month: int) -> int:
    return monthrange(year, month)[1]


def weekday_sunday_first(value: date) -> int:
    """Return 0 for Sunday through 6 for Saturday."""

    return (value.weekday() + 1) % 7


def add_months(value: date, months: int, anchor_day: Optional[int] = None) -> date:
    """Add ``months`` and clamp the day to ``anchor_day`` or the month's last day.

    Without an anchor the source day-of-month is used, so Jan 31 + 1 month is
    Feb 28/29.
    """

    index = value.month - 1 + months
    year = value.year + index // 12
    month = index % 12 + 1
    day = anchor_day if anchor_day is not None else value.day
    return date(year, month, min(day, days_in_month(year, month)))


def validate_billing_day(cycle: "BillingCycle | str", billing_day: Optional[int]) -> Optional[int]:
    cycle = BillingCycle.parse(cycle)
    if billing_day is None or cycle is BillingCycle.DAILY:
        return billing_day
    if cycle is BillingCycle.WEEKLY:
        if not 0 <= billing_day <= 6:
            raise ValidationError("Weekly billing day must be 0 (Sunday) to 6 (Saturday)", billing_day=billing_day)
    elif not 1 <= billing_day <= 31:
        raise ValidationError("Billing day must be between 1 and 31", billing_day=billing_day)
    return billing_day


def default_billing_day(cycle: "BillingCycle | str", start: date) -> Optional[int]:
    """Anchor day implied by a start date for the given cycle."""

    cycle = BillingCycle.parse(cycle)
    if cycle is BillingCycle.DAILY:
        return None
    if cycle is BillingCycle.WEEKLY:
        return weekday_sunday_first(start)
    return start.day


def advance_by_cycle(
    current: "date | datetime", cycle: "BillingCycle | str", billing_day: Optional[int] = None
) -> date:
    """Return the next cycle date strictly after ``current``.

    Weekly cycles land on weekday ``billing_day`` (0=Sunday..6=Saturday);
    month-based cycles add 1/3/12 months and clamp to ``billing_day`` capped
    at the last day of the resulting month.
    """

    current = as_date(current)
    cycle = BillingCycle.parse(cycle)
    billing_day = validate_billing_day(cycle, billing_day)

    if cycle is BillingCycle.DAILY:
        return current + timedelta(days=1)
    if cycle is BillingCycle.WEEKLY:
        if billing_day is None:
            return current + timedelta(days=7)
        offset = (billing_day - weekday_sunday_first(current)) % 7
        return current + timedelta(days=offset or 7)
    return add_months(current, _MONTH_STEPS[cycle], billing_day)


def days_between(start: "date | datetime", end: "date | datetime") -> int:
    """Whole days from ``start`` to ``end``; negative when ``start`` is later."""

    return (as_date(end) - as_date(start)).days


def roll_forward(
    first: date, cycle: "BillingCycle | str", billing_day: Optional[int], not_before: date
) -> date:
    """Advance ``first`` cycle by cycle until it falls on or after ``not_before``."""

    current = as_date(first)
    while current < not_before:
        current = advance_by_cycle(current, cycle, billing_day)
    return current


def occurrences_between(
    first: date,
    cycle: "BillingCycle | str",
    billing_day: Optional[int],
    start: date,
    end: date,
) -> list[date]:
    """All cycle dates reachable from ``first`` that fall inside ``[start, end]``."""

    if end < start:
        return []
    dates: list[date] = []
    current = roll_forward(first, cycle, billing_day, start)
    while current <= end:
        dates.append(current)
        current = advance_by_cycle(current, cycle, billing_day)
    return dates


__all__ = [
    "BillingCycle",
    "INVOICE_FREQUENCIES",
    "add_months",
    "advance_by_cycle",
    "as_date",
    "days_between",
    "days_in_month",
    "default_billing_day",
    "occurrences_between",
    "roll_forward",
    "validate_billing_day",
    "weekday_sunday_first",
]
