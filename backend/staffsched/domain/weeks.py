"""Calendar helpers: UTC normalisation and ISO (Monday-first) week arithmetic."""

from __future__ import annotations

from datetime import date, datetime, timedelta, tzinfo

import pytz

UTC = pytz.UTC


def ensure_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime; naive input is taken as UTC."""
    if value.tzinfo is None:
        return UTC.localize(value)
    return value.astimezone(UTC)


def resolve_tz(name: str | tzinfo | None) -> tzinfo:
    if name is None:
        return UTC
    if isinstance(name, str):
        return pytz.timezone(name)
    return name


def _local_midnight(day: date, tz: tzinfo) -> datetime:
    naive = datetime(day.year, day.month, day.day)
    if hasattr(tz, "localize"):
        return tz.localize(naive)
    return naive.replace(tzinfo=tz)


def day_bounds(moment: date | datetime, tz: str | tzinfo | None = None) -> tuple[datetime, datetime]:
    """Start and end (inclusive) of the calendar day containing ``moment``.

    A plain ``date`` names that day in ``tz``.
    """
    zone = resolve_tz(tz)
    if isinstance(moment, datetime):
        day = ensure_utc(moment).astimezone(zone).date()
    else:
        day = moment
    start = _local_midnight(day, zone)
    end = _local_midnight(day + timedelta(days=1), zone) - timedelta(microseconds=1)
    return start.astimezone(UTC), end.astimezone(UTC)


def week_bounds(moment: datetime, tz: str | tzinfo | None = None) -> tuple[datetime, datetime]:
    """Monday 00:00 to Sunday 23:59:59.999999 of the week containing ``moment``.

    Bounds are computed in ``tz`` and returned in UTC so they can be used
    directly against stored timestamps.

    Example:
        >>> week_bounds(datetime(2026, 1, 8, 12, 0))[0].isoformat()
        '2026-01-05T00:00:00+00:00'
    """
    zone = resolve_tz(tz)
    local = ensure_utc(moment).astimezone(zone)
    monday = local.date() - timedelta(days=local.weekday())
    start = _local_midnight(monday, zone)
    end = _local_midnight(monday + timedelta(days=7), zone) - timedelta(microseconds=1)
    return start.astimezone(UTC), end.astimezone(UTC)


def iso_week_key(moment: datetime, tz: str | tzinfo | None = None) -> str:
    """``YYYY-Www`` label of the ISO week containing ``moment``."""
    local = ensure_utc(moment).astimezone(resolve_tz(tz))
    year, week, _ = local.isocalendar()
    return f"{year}-W{week:02d}"


def week_start_from_number(week_number: int, year: int, tz: str | tzinfo | None = None) -> datetime:
    """Monday 00:00 of ISO week ``week_number`` in ``year``."""
    monday = date.fromisocalendar(year, week_number, 1)
    return _local_midnight(monday, resolve_tz(tz)).astimezone(UTC)


def at_local_hour(moment: date | datetime, hour: int, tz: str | tzinfo | None = None) -> datetime:
    """``hour``:00 on the local day of ``moment`` in ``tz``, returned in UTC."""
    zone = resolve_tz(tz)
    if isinstance(moment, datetime):
        day = ensure_utc(moment).astimezone(zone).date()
    else:
        day = moment
    naive = datetime(day.year, day.month, day.day, hour)
    local = zone.localize(naive) if hasattr(zone, "localize") else naive.replace(tzinfo=zone)
    return local.astimezone(UTC)
