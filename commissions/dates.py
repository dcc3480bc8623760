"""
Business-day helpers.

All "per day" numbers in reports and targets are counted in the business
timezone (Asia/Dubai), regardless of where the server runs.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from django.conf import settings
from django.utils import timezone

from .exceptions import ValidationError


def business_tz() -> ZoneInfo:
    return ZoneInfo(getattr(settings, 'BUSINESS_TIMEZONE', 'Asia/Dubai'))


def business_date(value: datetime) -> date:
    """The business-timezone calendar date a moment falls on."""
    return timezone.localtime(value, business_tz()).date()


def today() -> date:
    return business_date(timezone.now())


def start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=business_tz())


def end_of_day(day: date) -> datetime:
    return datetime.combine(day, time.max, tzinfo=business_tz())


def day_bounds(value: datetime) -> tuple[datetime, datetime]:
    day = business_date(value)
    return start_of_day(day), end_of_day(day)


def period_string(value: date | datetime) -> str:
    if isinstance(value, datetime):
        value = business_date(value)
    return value.isoformat()


@dataclass(frozen=True)
class DateWindow:
    """Inclusive business-day window. ``None`` on either side means open."""

    start: date | None = None
    end: date | None = None

    @property
    def start_dt(self) -> datetime | None:
        return start_of_day(self.start) if self.start else None

    @property
    def end_dt(self) -> datetime | None:
        return end_of_day(self.end) if self.end else None

    @property
    def start_period(self) -> str | None:
        return self.start.isoformat() if self.start else None

    @property
    def end_period(self) -> str | None:
        return self.end.isoformat() if self.end else None

    def visit_filter(self, field: str = 'visit_date') -> dict:
        """ORM kwargs restricting a datetime column to the window."""
        filters = {}
        if self.start:
            filters[f'{field}__gte'] = self.start_dt
        if self.end:
            filters[f'{field}__lte'] = self.end_dt
        return filters

    def period_filter(self, field: str = 'period') -> dict:
        """ORM kwargs restricting a ``YYYY-MM-DD`` string column to the window."""
        filters = {}
        if self.start:
            filters[f'{field}__gte'] = self.start_period
        if self.end:
            filters[f'{field}__lte'] = self.end_period
        return filters

    def cache_token(self) -> str:
        return f"{self.start_period or 'all'}:{self.end_period or 'all'}"


def month_window(year: int, month: int) -> DateWindow:
    first = date(year, month, 1)
    next_first = date(year + (month // 12), month % 12 + 1, 1)
    return DateWindow(first, next_first - timedelta(days=1))


def current_month_window() -> DateWindow:
    now = today()
    return month_window(now.year, now.month)


def previous_month_window(day: date) -> DateWindow:
    first = day.replace(day=1)
    last_of_previous = first - timedelta(days=1)
    return month_window(last_of_previous.year, last_of_previous.month)


def week_window(day: date) -> DateWindow:
    monday = day - timedelta(days=day.weekday())
    return DateWindow(monday, monday + timedelta(days=6))


def parse_date(value, field: str) -> date | None:
    """Parse a ``YYYY-MM-DD`` request value; empty means ``None``."""
    if value in (None, ''):
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        raise ValidationError(
            message=f"Invalid date for {field}: {value!r}. Expected YYYY-MM-DD.",
            code='INVALID_DATE',
            detail={'field': field},
        )


def parse_window(start, end, default: DateWindow | None = None) -> DateWindow:
    start_date = parse_date(start, 'startDate')
    end_date = parse_date(end, 'endDate')
    if start_date is None and end_date is None and default is not None:
        return default
    if start_date and end_date and start_date > end_date:
        raise ValidationError(
            message="startDate must not be after endDate.",
            code='INVALID_DATE_RANGE',
            detail={'startDate': start_date.isoformat(), 'endDate': end_date.isoformat()},
        )
    return DateWindow(start_date, end_date)
