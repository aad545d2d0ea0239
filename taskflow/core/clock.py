"""Timestamp helpers shared by the DB layer and the jobs."""

from __future__ import annotations

from datetime import datetime, time, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def local_tz() -> ZoneInfo:
    from taskflow.config import settings

    return ZoneInfo(settings.TIMEZONE)


def to_iso(dt: datetime | None) -> str | None:
    """Serialize to a UTC ISO string so stored values sort lexicographically."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="seconds")


def from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def day_bounds(moment: datetime, tz: tzinfo) -> tuple[datetime, datetime]:
    """Return [start, end) of the calendar day containing moment, in tz."""
    local_day = moment.astimezone(tz).date()
    start = datetime.combine(local_day, time.min, tzinfo=tz)
    end = datetime.combine(local_day + timedelta(days=1), time.min, tzinfo=tz)
    return start, end
