# FILE: branch_inventory/utils/timezone.py
from __future__ import annotations

from datetime import datetime, date
from zoneinfo import ZoneInfo

from branch_inventory.core.config import settings

LOCAL_TZ = ZoneInfo(settings.APP_TIMEZONE)


def now_local() -> datetime:
    """
    Returns a *naive* datetime in the configured business timezone.
    DateTime columns are naive, so tzinfo is stripped before storing.
    """
    return datetime.now(LOCAL_TZ).replace(tzinfo=None)


def today_local() -> date:
    return now_local().date()


def as_date(value) -> date | None:
    """Date-only view of a date/datetime (None passes through)."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, str):
        return date.fromisoformat(value[:10]) if value else None
    return value
