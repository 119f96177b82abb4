"""Calendar-day helpers anchored to one configured timezone.

Daily caps, streaks and the diminishing-return counter all compare
calendar days. They must agree on where a day starts, so every caller
derives "today" from here instead of formatting its own date strings.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo


@lru_cache(maxsize=32)
def _zone(tz_name: str) -> ZoneInfo:
    return ZoneInfo(tz_name)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def local_day(moment: datetime, tz_name: str = "UTC") -> date:
    """Calendar day of ``moment`` in ``tz_name``. Naive datetimes are treated as UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(_zone(tz_name)).date()


def today_and_yesterday(moment: datetime, tz_name: str = "UTC") -> tuple[date, date]:
    today = local_day(moment, tz_name)
    return today, today - timedelta(days=1)

