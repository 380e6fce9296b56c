"""
Calendar helpers.

Due dates are plain calendar dates. Instants are timezone-aware UTC datetimes
and are converted to a business-timezone calendar day before any day count.
"""

import calendar
from datetime import date, datetime, timezone
from typing import Optional, Union
from zoneinfo import ZoneInfo


def add_months(start_date: date, months: int) -> date:
    """Add calendar months to a date, clamping to the last day of short months"""
    month = start_date.month - 1 + months
    year = start_date.year + month // 12
    month = month % 12 + 1
    day = min(start_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def business_date(moment: Union[datetime, date], tz_name: Optional[str] = None) -> date:
    """Calendar day of an instant in the business timezone.

    Naive datetimes are taken as UTC. Plain dates pass through unchanged.
    """
    if not isinstance(moment, datetime):
        return moment
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    if tz_name is None:
        from .config import get_config
        tz_name = get_config().business_timezone
    return moment.astimezone(ZoneInfo(tz_name)).date()


def days_between(earlier: date, later: date) -> int:
    """Whole calendar days from earlier to later (negative if reversed)"""
    return (later - earlier).days


def parse_date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def parse_datetime(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None
