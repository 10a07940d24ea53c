"""Timezone projection between local wall clock and UTC instants.

Recurrence math runs on naive local wall-clock datetimes; conversion to UTC
happens exactly once per occurrence, here. DST disambiguation follows PEP 495
(fold=0): an ambiguous local time resolves to its first (daylight) offset and
a skipped local time is read with the offset in effect before the gap.
"""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.services.errors import InvalidTimezoneInput


@lru_cache(maxsize=256)
def get_zone(name: str) -> ZoneInfo:
    """Resolve an IANA zone name, raising InvalidTimezoneInput when unknown."""
    if not name or not isinstance(name, str):
        raise InvalidTimezoneInput(f"Invalid timezone: {name!r}")
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, OSError) as exc:
        raise InvalidTimezoneInput(f"Unknown timezone: {name}") from exc


def parse_local_date(value: date | str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError as exc:
        raise InvalidTimezoneInput(f"Invalid date: {value!r}") from exc


def parse_local_time(value: time | str) -> time:
    if isinstance(value, time):
        return value.replace(tzinfo=None)
    try:
        return time.fromisoformat(str(value))
    except ValueError as exc:
        raise InvalidTimezoneInput(f"Invalid time: {value!r}") from exc


def local_to_utc(local_dt: datetime, zone: str) -> datetime:
    """Convert a naive local wall-clock datetime in ``zone`` to an aware UTC instant."""
    tz = get_zone(zone)
    if local_dt.tzinfo is not None:
        local_dt = local_dt.replace(tzinfo=None)
    return local_dt.replace(tzinfo=tz).astimezone(timezone.utc)


def to_utc_instant(local_date: date | str, local_time: time | str, zone: str) -> datetime:
    """
    Combine a local date and time-of-day in ``zone`` into a UTC instant.

    Accepts date/time objects or ISO strings ("2024-01-01", "09:00").

    Raises:
        InvalidTimezoneInput: unknown zone or unparseable date/time
    """
    d = parse_local_date(local_date)
    t = parse_local_time(local_time)
    return local_to_utc(datetime.combine(d, t), zone)


def _as_utc(instant: datetime) -> datetime:
    if instant.tzinfo is None:
        # Database convention: naive timestamps are UTC
        return instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)


def to_local_datetime(utc_instant: datetime, zone: str) -> datetime:
    """UTC instant → naive local wall-clock datetime in ``zone``."""
    return _as_utc(utc_instant).astimezone(get_zone(zone)).replace(tzinfo=None)


def to_local_wall_clock(utc_instant: datetime, zone: str) -> tuple[date, time]:
    """UTC instant → (local date, local time-of-day) in ``zone``."""
    local = to_local_datetime(utc_instant, zone)
    return local.date(), local.time()


def now_local(zone: str, now: datetime | None = None) -> datetime:
    """Current naive local wall-clock time in ``zone``."""
    return to_local_datetime(now or datetime.now(timezone.utc), zone)
