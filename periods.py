from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Iterator

from models import IntervalUnit


@dataclass(frozen=True)
class Period:
    start: datetime
    end: datetime


def to_utc_millis(value: datetime) -> datetime:
    """Naive UTC with millisecond precision, the only form the ledger stores."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.replace(microsecond=(value.microsecond // 1000) * 1000)


def utc_now() -> datetime:
    return to_utc_millis(datetime.now(timezone.utc))


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def add_months(base: datetime, months: int) -> datetime:
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    day = min(base.day, days_in_month(year, month))
    return base.replace(year=year, month=month, day=day)


def month_start(value: datetime) -> datetime:
    return datetime(value.year, value.month, 1)


def month_starts_after(after: datetime) -> Iterator[datetime]:
    """Yield the first instant of each month after the one holding ``after``."""
    current = add_months(month_start(after), 1)
    while True:
        yield current
        current = add_months(current, 1)


def split_evenly(start: datetime, end: datetime, count: int) -> list[Period]:
    if count < 1:
        raise ValueError("Interval count must be positive")
    if end < start:
        raise ValueError("Start must not be after end")
    width = (end - start) / count
    bounds = [start + width * k for k in range(count)] + [end]
    return [Period(bounds[k], bounds[k + 1]) for k in range(count)]


def shift(value: datetime, unit: IntervalUnit, count: int) -> datetime:
    if unit == IntervalUnit.hour:
        return value + timedelta(hours=count)
    if unit == IntervalUnit.day:
        return value + timedelta(days=count)
    if unit == IntervalUnit.week:
        return value + timedelta(weeks=count)
    if unit == IntervalUnit.month:
        return add_months(value, count)
    return add_months(value, 12 * count)


def step_back(end: datetime, unit: IntervalUnit, count: int) -> list[Period]:
    if count < 1:
        raise ValueError("Interval count must be positive")
    # Shift from ``end`` each time so month-end clamping never accumulates.
    bounds = [shift(end, unit, -k) for k in range(count, -1, -1)]
    return [Period(bounds[k], bounds[k + 1]) for k in range(count)]
