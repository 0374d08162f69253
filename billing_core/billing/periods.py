import calendar
from datetime import datetime, timedelta
from enum import Enum


class PlanInterval(str, Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


PLAN_INTERVALS = frozenset(i.value for i in PlanInterval)


def _add_months(start: datetime, months: int) -> datetime:
    # Same day-of-month; clamp to the last day when the target month is shorter
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


def calculate_period_end(start: datetime, interval: str) -> datetime:
    """
    End of the billing period that begins at ``start``.

    weekly -> +7 days, monthly -> +1 calendar month, yearly -> +1 calendar year.
    Jan 31 + 1 month is Feb 28 (or 29), Feb 29 + 1 year is Feb 28.
    """
    interval = PlanInterval(interval)
    if interval is PlanInterval.WEEKLY:
        return start + timedelta(days=7)
    if interval is PlanInterval.MONTHLY:
        return _add_months(start, 1)
    return _add_months(start, 12)
