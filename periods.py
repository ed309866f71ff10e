from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings

MONTH_LABELS = (
    "Jan",
    "Feb",
    "Mar",
    "Apr",
    "May",
    "Jun",
    "Jul",
    "Aug",
    "Sep",
    "Oct",
    "Nov",
    "Dec",
)


@dataclass(frozen=True)
class Period:
    """Half-open window ``[start, end)``; ``end=None`` means unbounded."""

    slug: str
    start: Optional[datetime]
    end: Optional[datetime]


def _local_zone() -> ZoneInfo:
    return ZoneInfo(get_settings().timezone)


def now_local() -> datetime:
    return datetime.now(_local_zone()).replace(tzinfo=None, microsecond=0)


def to_local_naive(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(_local_zone()).replace(tzinfo=None)


def month_to_date(now: Optional[datetime] = None) -> Period:
    now = now or now_local()
    start = datetime.combine(now.date().replace(day=1), time.min)
    return Period("month_to_date", start, None)


def year_to_date(now: Optional[datetime] = None) -> Period:
    now = now or now_local()
    return Period("year_to_date", datetime(now.year, 1, 1), None)


def calendar_year(year: int) -> Period:
    return Period("year", datetime(year, 1, 1), datetime(year + 1, 1, 1))


def trailing_days(days: int, now: Optional[datetime] = None) -> Period:
    if days < 1:
        raise ValueError("Period must be at least one day")
    now = now or now_local()
    return Period("trailing_days", now - timedelta(days=days), None)


def date_range(start: Optional[date], end: Optional[date]) -> Period:
    """Inclusive calendar-date filter turned into a half-open datetime window."""
    if start and end and start > end:
        raise ValueError("Start date must be before end date")
    start_dt = datetime.combine(start, time.min) if start else None
    end_dt = datetime.combine(end + timedelta(days=1), time.min) if end else None
    return Period("custom", start_dt, end_dt)
