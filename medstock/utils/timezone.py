# FILE: medstock/utils/timezone.py
from __future__ import annotations

from datetime import datetime, date
from zoneinfo import ZoneInfo

from medstock.core.config import settings

LOCAL_TZ = ZoneInfo(settings.TIMEZONE)


def now_local() -> datetime:
    """
    Returns a *naive* datetime in the clinic's timezone.
    DateTime columns are naive, so tzinfo is dropped before storing.
    """
    return datetime.now(LOCAL_TZ).replace(tzinfo=None)


def today() -> date:
    return now_local().date()
