from __future__ import annotations

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

from dateutil import parser


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def local_today(timezone_name: str, now: datetime | None = None) -> date:
    current = now if now is not None else utc_now()
    return current.astimezone(ZoneInfo(timezone_name)).date()


def parse_datetime(value: str | int | float | datetime | None) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    try:
        return ensure_utc(parser.isoparse(value))
    except (ValueError, TypeError):
        return None


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return ensure_utc(value).isoformat()


def whole_days_between(earlier: datetime, later: datetime) -> int:
    return (ensure_utc(later) - ensure_utc(earlier)).days
