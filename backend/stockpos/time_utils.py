from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")


def get_zone(tz_name: str | None) -> ZoneInfo:
    try:
        return ZoneInfo(tz_name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(f"unknown timezone: {tz_name}")


def parse_date(value: str | date | None) -> Optional[date]:
    """Parse a 'YYYY-MM-DD' calendar day. None / "" -> None."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    s = value.strip()
    if not s:
        return None
    try:
        return date.fromisoformat(s)
    except ValueError:
        raise ValueError(f"invalid date: {value!r} (expected YYYY-MM-DD)")


def local_midnight_utc(day: date, tz_name: str | None) -> datetime:
    """Local midnight at the start of ``day``, as a UTC-naive datetime."""
    local = datetime.combine(day, time.min, tzinfo=get_zone(tz_name))
    return local.astimezone(timezone.utc).replace(tzinfo=None)


def local_today(tz_name: str | None, now: datetime | None = None) -> date:
    now = now or utcnow()
    return now.replace(tzinfo=timezone.utc).astimezone(get_zone(tz_name)).date()


@dataclass(frozen=True)
class DateRange:
    """
    Half-open UTC-naive interval: start <= t < end.

    Built from local calendar days by date_range(); both bounds are
    already converted to the stored timestamp representation.
    """
    start: datetime
    end: datetime

    def contains(self, dt: datetime) -> bool:
        return self.start <= dt < self.end

    def to_dict(self) -> dict:
        return {"start": to_utc_z(self.start), "end": to_utc_z(self.end)}


def date_range(
    start_date: str | date | None,
    end_date: str | date | None,
    tz_name: str | None = "UTC",
    *,
    default_days: int = 30,
    now: datetime | None = None,
) -> DateRange:
    """
    Build a report range from local calendar days.

    The start day is inclusive and so is the end day: the exclusive bound
    is local midnight after end_date. Missing bounds default to the
    default_days window ending today.
    """
    start_day = parse_date(start_date)
    end_day = parse_date(end_date)

    if end_day is None:
        end_day = local_today(tz_name, now)
    if start_day is not None and start_day > end_day:
        raise ValueError("start date must be on or before end date")

    # Bounds near date.min / date.max cannot be shifted or converted
    try:
        if start_day is None:
            start_day = end_day - timedelta(days=default_days)
        return DateRange(
            start=local_midnight_utc(start_day, tz_name),
            end=local_midnight_utc(end_day + timedelta(days=1), tz_name),
        )
    except OverflowError:
        raise ValueError("date out of range")
