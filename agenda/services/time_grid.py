"""Pure time arithmetic turning weekly opening hours into UTC slot boundaries."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from agenda.services.provider_config import DayWindow, ProviderSnapshot


def local_weekday(day: date) -> int:
    """Weekday with 0 = Sunday ... 6 = Saturday."""

    return (day.weekday() + 1) % 7


def minutes_to_time(minutes: int) -> time:
    return time(hour=minutes // 60, minute=minutes % 60)


def to_local(instant: datetime, tz: ZoneInfo) -> datetime:
    """Convert an instant (naive values are treated as UTC) to local time."""

    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(tz)


def local_to_utc(day: date, minutes: int, tz: ZoneInfo) -> datetime | None:
    """Resolve a local wall-clock time on ``day`` to UTC.

    Returns ``None`` for wall-clock times skipped by a daylight-saving jump.
    Ambiguous times resolve to their first occurrence.
    """

    local = datetime.combine(day, minutes_to_time(minutes), tzinfo=tz)
    as_utc = local.astimezone(timezone.utc)
    if as_utc.astimezone(tz).replace(tzinfo=None) != local.replace(tzinfo=None):
        return None
    return as_utc


def local_day_bounds(day: date, tz: ZoneInfo) -> tuple[datetime, datetime]:
    """UTC instants of local midnight at the start and end of ``day``."""

    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def _close_instant(day: date, window: DayWindow, tz: ZoneInfo) -> datetime:
    close = datetime.combine(day, minutes_to_time(window.close_minutes), tzinfo=tz)
    return close.astimezone(timezone.utc)


def generate_day_boundaries(
    provider: ProviderSnapshot, local_date: date
) -> list[tuple[datetime, datetime]]:
    """Return ordered ``(start_utc, end_utc)`` slot boundaries for ``local_date``.

    Steps from opening to closing time in local wall-clock increments of the
    provider's interval, converting each boundary with the timezone rules in
    force on that date. A final slot that would run past closing is dropped.
    """

    window = provider.window_for(local_weekday(local_date))
    if window is None:
        return []

    open_minutes = window.open_minutes
    close_minutes = window.close_minutes
    if open_minutes >= close_minutes:
        return []

    tz = provider.tz
    interval = timedelta(minutes=provider.interval_minutes)
    close_utc = _close_instant(local_date, window, tz)

    boundaries: list[tuple[datetime, datetime]] = []
    last_end: datetime | None = None
    for minutes in range(open_minutes, close_minutes, provider.interval_minutes):
        start_utc = local_to_utc(local_date, minutes, tz)
        # Past a spring-forward gap a local boundary can land inside the
        # previous slot; slots of one provider never overlap.
        if start_utc is None or (last_end is not None and start_utc < last_end):
            continue
        end_utc = start_utc + interval
        if end_utc > close_utc:
            break
        last_end = end_utc
        boundaries.append((start_utc, end_utc))
    return boundaries


__all__ = [
    "generate_day_boundaries",
    "local_day_bounds",
    "local_to_utc",
    "local_weekday",
    "minutes_to_time",
    "to_local",
]
