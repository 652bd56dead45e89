from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum


class TimePeriod(str, Enum):
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"
    ALL = "all"


_PERIOD_LABELS = {
    TimePeriod.WEEK: "This Week",
    TimePeriod.MONTH: "This Month",
    TimePeriod.YEAR: "This Year",
    TimePeriod.ALL: "All Time",
}


@dataclass(frozen=True, slots=True)
class DateRange:
    start: date
    end: date


def parse_period(raw: str | None, default: TimePeriod = TimePeriod.MONTH) -> TimePeriod:
    if raw is None or not raw.strip():
        return default
    try:
        return TimePeriod(raw.strip().lower())
    except ValueError as exc:
        raise ValueError(f"Invalid period parameter: {raw}") from exc


def resolve_period_range(period: TimePeriod, today: date) -> DateRange | None:
    """Calendar window containing ``today``; ``None`` means unbounded."""
    if period is TimePeriod.WEEK:
        start = today - timedelta(days=today.weekday())
        return DateRange(start=start, end=start + timedelta(days=6))
    if period is TimePeriod.MONTH:
        last_day = calendar.monthrange(today.year, today.month)[1]
        return DateRange(start=today.replace(day=1), end=today.replace(day=last_day))
    if period is TimePeriod.YEAR:
        return DateRange(start=date(today.year, 1, 1), end=date(today.year, 12, 31))
    return None


def period_label(period: TimePeriod) -> str:
    return _PERIOD_LABELS.get(period, _PERIOD_LABELS[TimePeriod.MONTH])


def closing_soon_range(today: date, days: int) -> DateRange:
    return DateRange(start=today, end=today + timedelta(days=days))
