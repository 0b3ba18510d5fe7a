# FILE: app/utils/timezone.py
from __future__ import annotations

from datetime import datetime, date, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from app.core.config import settings


def local_zone() -> ZoneInfo:
    return ZoneInfo(settings.TIMEZONE)


def now_local() -> datetime:
    """
    Returns a *naive* datetime representing local clinic time.
    """
    return datetime.now(local_zone()).replace(tzinfo=None)


def today_local() -> date:
    return now_local().date()


def local_day(utc_naive: Optional[datetime]) -> date:
    """
    Calendar day (clinic time zone) for a naive UTC timestamp as stored in
    the DB. Analytics rows are keyed by this day.
    """
    if utc_naive is None:
        return today_local()
    aware = utc_naive.replace(tzinfo=timezone.utc)
    return aware.astimezone(local_zone()).date()
