from datetime import datetime, timezone as dt_timezone
from typing import Any, Optional
from zoneinfo import ZoneInfo

from academy.core.config import settings


def get_zoneinfo() -> Optional[ZoneInfo]:
    tz_name = getattr(settings, "DEFAULT_TIMEZONE", None)
    if not tz_name:
        return None
    try:
        return ZoneInfo(tz_name)
    except Exception:
        return None


def utc_now() -> datetime:
    return datetime.now(dt_timezone.utc)


def to_utc_aware(dt: datetime | None) -> datetime | None:
    """
    Normalize any datetime to UTC-aware (tzinfo=UTC).
    - Aware datetimes are converted to UTC
    - Naive datetimes are assumed UTC and tz attached
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=dt_timezone.utc)
    return dt.astimezone(dt_timezone.utc)


def parse_datetime(value: Any) -> datetime | None:
    """
    Coerce a loosely typed date value (datetime or ISO string) to UTC-aware.
    Returns None when the value is missing or unparseable.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_utc_aware(value)
    if isinstance(value, str) and value.strip():
        try:
            # Accept both Z and +00:00
            return to_utc_aware(datetime.fromisoformat(value.strip().replace("Z", "+00:00")))
        except ValueError:
            return None
    return None


def to_local(dt: datetime | None) -> datetime | None:
    """Convert to settings.DEFAULT_TIMEZONE for display; UTC when the zone is unknown."""
    if dt is None:
        return None
    tz = get_zoneinfo()
    aware = to_utc_aware(dt)
    return aware.astimezone(tz) if tz else aware
