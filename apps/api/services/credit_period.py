"""Calendar-month billing windows for monthly credit allowances."""

from __future__ import annotations

import calendar
from datetime import date, datetime, timezone
from typing import Optional, Tuple
from zoneinfo import ZoneInfo

from config import settings


def _reference_timezone(tz_name: Optional[str] = None) -> ZoneInfo:
    return ZoneInfo((tz_name or settings.CREDITS_PERIOD_TIMEZONE or "UTC").strip())


def month_bounds(now: Optional[datetime] = None, tz_name: Optional[str] = None) -> Tuple[date, date]:
    """Return (period_start, period_end) of the month containing ``now``.

    The month is evaluated in the configured reference timezone, never the
    caller's local one, so every request agrees on the same window. Naive
    datetimes are interpreted as UTC.
    """
    current = now or datetime.now(timezone.utc)
    if current.tzinfo is None:
        current = current.replace(tzinfo=timezone.utc)
    local = current.astimezone(_reference_timezone(tz_name))
    last_day = calendar.monthrange(local.year, local.month)[1]
    return date(local.year, local.month, 1), date(local.year, local.month, last_day)


def period_key(period_start: date) -> str:
    return period_start.strftime("%Y-%m")
