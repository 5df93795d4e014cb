"""Reporting window resolution.

All calendar arithmetic happens on dates in the reporting timezone and is
converted to aware datetimes at the edges, so day, week and month boundaries
stay calendar-aligned across DST changes. Window ends are inclusive and sit on
the last microsecond of their unit.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Literal

from app.domain.analytics.schemas import AnalyticsQuery, Timeframe
from app.domain.errors import ValidationError

WeekStart = Literal["monday", "sunday"]
BucketUnit = Literal["day", "week", "month"]

ONE_TICK = timedelta(microseconds=1)

_TRAILING_MONTHS = {
    Timeframe.monthly: 1,
    Timeframe.quarterly: 3,
    Timeframe.yearly: 12,
}

_BUCKET_UNITS: dict[Timeframe, BucketUnit] = {
    Timeframe.daily: "day",
    Timeframe.weekly: "week",
    Timeframe.monthly: "month",
    Timeframe.quarterly: "month",
    Timeframe.yearly: "month",
}


@dataclass(frozen=True)
class TimeWindow:
    start: datetime
    end: datetime

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def previous(self) -> "TimeWindow":
        """The window of equal duration ending one tick before this one starts."""
        previous_end = self.start - ONE_TICK
        return TimeWindow(start=previous_end - self.duration, end=previous_end)

    def label(self) -> str:
        return f"{self.start.date().isoformat()} to {self.end.date().isoformat()}"


@dataclass(frozen=True)
class TrendBucket:
    label: str
    start: datetime
    end: datetime
    query_start: datetime
    query_end: datetime


def start_of_day(day: date, tz: tzinfo) -> datetime:
    return datetime.combine(day, time.min, tzinfo=tz)


def end_of_day(day: date, tz: tzinfo) -> datetime:
    return datetime.combine(day, time.max, tzinfo=tz)


def week_start_date(day: date, week_start: WeekStart) -> date:
    offset = day.weekday() if week_start == "monday" else (day.weekday() + 1) % 7
    return day - timedelta(days=offset)


def month_start_date(day: date) -> date:
    return day.replace(day=1)


def shift_months(day: date, months: int) -> date:
    """Move ``day`` by whole months, clamping to the last valid day."""
    month_index = day.year * 12 + (day.month - 1) + months
    year, month = divmod(month_index, 12)
    month += 1
    next_month = date(year + (month == 12), month % 12 + 1, 1)
    last_day = (next_month - timedelta(days=1)).day
    return date(year, month, min(day.day, last_day))


def unit_bounds(anchor: date, unit: BucketUnit, tz: tzinfo, week_start: WeekStart) -> tuple[datetime, datetime]:
    if unit == "day":
        return start_of_day(anchor, tz), end_of_day(anchor, tz)
    if unit == "week":
        first = week_start_date(anchor, week_start)
        return start_of_day(first, tz), end_of_day(first + timedelta(days=6), tz)
    first = month_start_date(anchor)
    last = shift_months(first, 1) - timedelta(days=1)
    return start_of_day(first, tz), end_of_day(last, tz)


def resolve_window(
    query: AnalyticsQuery,
    now: datetime,
    *,
    tz: tzinfo,
    week_start: WeekStart = "monday",
    max_days: int | None = None,
) -> TimeWindow:
    if query.start_date is not None and query.end_date is not None:
        if query.start_date > query.end_date:
            raise ValidationError("start_date must not be after end_date", field="start_date")
        if max_days is not None and (query.end_date - query.start_date).days + 1 > max_days:
            raise ValidationError(f"date range must not exceed {max_days} days", field="end_date")
        return TimeWindow(start=start_of_day(query.start_date, tz), end=end_of_day(query.end_date, tz))

    today = now.astimezone(tz).date()
    timeframe = query.timeframe or Timeframe.monthly
    if timeframe == Timeframe.daily:
        start, end = unit_bounds(today, "day", tz, week_start)
        return TimeWindow(start=start, end=end)
    if timeframe == Timeframe.weekly:
        start, end = unit_bounds(today, "week", tz, week_start)
        return TimeWindow(start=start, end=end)

    months = _TRAILING_MONTHS[timeframe]
    first = month_start_date(shift_months(today, -months))
    return TimeWindow(start=start_of_day(first, tz), end=end_of_day(today, tz))


def bucket_unit(timeframe: Timeframe | None) -> BucketUnit:
    return _BUCKET_UNITS[timeframe or Timeframe.monthly]


def _bucket_label(anchor: date, unit: BucketUnit) -> str:
    if unit == "month":
        return anchor.strftime("%Y-%m")
    return anchor.isoformat()


def trend_buckets(
    window: TimeWindow,
    timeframe: Timeframe | None,
    *,
    week_start: WeekStart = "monday",
) -> list[TrendBucket]:
    tz = window.start.tzinfo
    unit = bucket_unit(timeframe)
    first_day = window.start.date()
    last_day = window.end.astimezone(tz).date()

    if unit == "day":
        anchor = first_day
    elif unit == "week":
        anchor = week_start_date(first_day, week_start)
    else:
        anchor = month_start_date(first_day)

    buckets: list[TrendBucket] = []
    while anchor <= last_day:
        start, end = unit_bounds(anchor, unit, tz, week_start)
        buckets.append(
            TrendBucket(
                label=_bucket_label(anchor, unit),
                start=start,
                end=end,
                query_start=max(start, window.start),
                query_end=min(end, window.end),
            )
        )
        if unit == "day":
            anchor += timedelta(days=1)
        elif unit == "week":
            anchor += timedelta(days=7)
        else:
            anchor = shift_months(anchor, 1)
    return buckets
