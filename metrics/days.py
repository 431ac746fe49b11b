from __future__ import annotations

import calendar
from datetime import UTC, date, datetime, time, timedelta


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def start_of_day(value: datetime) -> datetime:
    value = as_utc(value)
    return datetime.combine(value.date(), time.min, tzinfo=UTC)


def day_of(value: datetime) -> date:
    return as_utc(value).date()


def day_window(day: date) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min, tzinfo=UTC)
    return start, start + timedelta(days=1)


def yesterday_start(now: datetime) -> datetime:
    return start_of_day(now) - timedelta(days=1)


def months_back(value: datetime, months: int) -> datetime:
    month_index = value.year * 12 + (value.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return value.replace(year=year, month=month, day=min(value.day, last_day))


INTERVALS = ("day", "week", "month", "year")


def bucket_start(day: date, interval: str) -> date:
    """First day of the ``interval`` bucket holding ``day``. Weeks start on Monday."""
    if interval == "day":
        return day
    if interval == "week":
        return day - timedelta(days=day.weekday())
    if interval == "month":
        return day.replace(day=1)
    if interval == "year":
        return day.replace(month=1, day=1)
    raise ValueError(f"Invalid interval: {interval}")
