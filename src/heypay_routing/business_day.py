"""
Business-day boundaries for daily provider caps.

A business day runs from the start hour (06:00 by default) in a fixed
reference zone to the same hour the next local day. Merchants get their
daily allowance back at local morning rather than at UTC midnight.
"""
from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Tuple
from zoneinfo import ZoneInfo

DEFAULT_TIMEZONE = "Europe/Paris"
DEFAULT_START_HOUR = 6


def local_start_to_utc(local_day: date, hour: int, tz: ZoneInfo) -> datetime:
    """
    Convert `hour`:00 on `local_day` in `tz` to a UTC instant.

    The offset is resolved for that specific date, so a window that
    starts across a DST change is not shifted by an hour.
    """
    local = datetime.combine(local_day, time(hour=hour), tzinfo=tz)
    return local.astimezone(timezone.utc)


def business_day_start(
    now: datetime,
    tz_name: str = DEFAULT_TIMEZONE,
    start_hour: int = DEFAULT_START_HOUR,
) -> datetime:
    """
    Return the UTC start of the business day containing `now`.

    Before the start hour (local time) the business day began yesterday;
    otherwise it began today. Naive `now` values are taken as UTC.
    """
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    tz = ZoneInfo(tz_name)
    local_now = now.astimezone(tz)

    local_day = local_now.date()
    if local_now.hour < start_hour:
        local_day = local_day - timedelta(days=1)

    return local_start_to_utc(local_day, start_hour, tz)


def business_day_boundaries(
    now: datetime,
    tz_name: str = DEFAULT_TIMEZONE,
    start_hour: int = DEFAULT_START_HOUR,
) -> Tuple[datetime, datetime]:
    """
    Return (start, end) of the current business day in UTC.

    `end` is the next local start hour, which is 23 or 25 hours after
    `start` on DST transition days.
    """
    start = business_day_start(now, tz_name, start_hour)
    tz = ZoneInfo(tz_name)
    next_day = start.astimezone(tz).date() + timedelta(days=1)
    return start, local_start_to_utc(next_day, start_hour, tz)
