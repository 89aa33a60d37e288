import uuid
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from agenda.core.exceptions import ConfigurationError
from agenda.services.provider_config import DayWindow, ProviderSnapshot, parse_hhmm
from agenda.services.time_grid import (
    generate_day_boundaries,
    local_day_bounds,
    local_to_utc,
    local_weekday,
)


def snapshot(windows, *, tz="UTC", interval=30):
    return ProviderSnapshot(
        id=uuid.uuid4(),
        timezone=tz,
        windows=tuple(windows),
        interval_minutes=interval,
    )


def business_week(open_="09:00", close="17:00"):
    return [DayWindow(weekday=weekday, open=open_, close=close) for weekday in range(1, 6)]


def test_local_weekday_counts_from_sunday():
    assert local_weekday(date(2026, 11, 1)) == 0
    assert local_weekday(date(2026, 11, 2)) == 1
    assert local_weekday(date(2026, 11, 7)) == 6


def test_monday_in_utc_yields_sixteen_half_hour_slots():
    provider = snapshot(business_week())

    boundaries = generate_day_boundaries(provider, date(2026, 11, 2))

    assert len(boundaries) == 16
    assert boundaries[0] == (
        datetime(2026, 11, 2, 9, 0, tzinfo=timezone.utc),
        datetime(2026, 11, 2, 9, 30, tzinfo=timezone.utc),
    )
    assert boundaries[-1] == (
        datetime(2026, 11, 2, 16, 30, tzinfo=timezone.utc),
        datetime(2026, 11, 2, 17, 0, tzinfo=timezone.utc),
    )
    for (_, end), (next_start, _) in zip(boundaries, boundaries[1:]):
        assert end == next_start


def test_closed_weekday_yields_nothing():
    provider = snapshot(business_week())

    assert generate_day_boundaries(provider, date(2026, 11, 1)) == []
    assert generate_day_boundaries(provider, date(2026, 11, 7)) == []


def test_partial_final_slot_is_dropped():
    provider = snapshot([DayWindow(weekday=1, open="09:00", close="10:45")], interval=30)

    boundaries = generate_day_boundaries(provider, date(2026, 11, 2))

    assert [start.strftime("%H:%M") for start, _ in boundaries] == ["09:00", "09:30", "10:00"]
    assert boundaries[-1][1] == datetime(2026, 11, 2, 10, 30, tzinfo=timezone.utc)


def test_open_not_before_close_yields_nothing():
    provider = snapshot([DayWindow(weekday=1, open="17:00", close="09:00")])

    assert generate_day_boundaries(provider, date(2026, 11, 2)) == []


def test_boundaries_are_converted_with_the_provider_timezone():
    provider = snapshot(business_week(), tz="America/Sao_Paulo", interval=60)

    boundaries = generate_day_boundaries(provider, date(2026, 11, 2))

    assert len(boundaries) == 8
    assert boundaries[0][0] == datetime(2026, 11, 2, 12, 0, tzinfo=timezone.utc)


def test_spring_forward_day_has_one_fewer_hourly_slot():
    # 2026-03-08 is a Sunday and the US switches to daylight time at 02:00.
    windows = [DayWindow(weekday=0, open="00:00", close="06:00")]
    provider = snapshot(windows, tz="America/New_York", interval=60)

    dst_day = generate_day_boundaries(provider, date(2026, 3, 8))
    normal_day = generate_day_boundaries(provider, date(2026, 3, 15))

    assert len(normal_day) == 6
    assert len(dst_day) == 5
    for start, end in dst_day:
        assert end - start == timedelta(minutes=60)
    starts = [start for start, _ in dst_day]
    assert starts == sorted(set(starts))


def test_fall_back_day_does_not_duplicate_instants():
    windows = [DayWindow(weekday=0, open="00:00", close="04:00")]
    provider = snapshot(windows, tz="America/New_York", interval=60)

    boundaries = generate_day_boundaries(provider, date(2026, 11, 1))

    starts = [start for start, _ in boundaries]
    assert len(starts) == len(set(starts))
    for (_, end), (next_start, _) in zip(boundaries, boundaries[1:]):
        assert end <= next_start


def test_nonexistent_local_time_resolves_to_none():
    tz = ZoneInfo("America/New_York")

    assert local_to_utc(date(2026, 3, 8), 2 * 60 + 30, tz) is None
    assert local_to_utc(date(2026, 3, 8), 3 * 60, tz) == datetime(
        2026, 3, 8, 7, 0, tzinfo=timezone.utc
    )


def test_local_day_bounds_cover_a_short_day():
    start, end = local_day_bounds(date(2026, 3, 8), ZoneInfo("America/New_York"))

    assert end - start == timedelta(hours=23)


@pytest.mark.parametrize("value", ["9:00", "24:00", "12:60", "noon", "", None])
def test_malformed_times_raise_configuration_error(value):
    with pytest.raises(ConfigurationError):
        parse_hhmm(value)


def test_malformed_window_surfaces_when_the_day_is_computed():
    provider = snapshot([DayWindow(weekday=1, open="9h", close="17:00")])

    with pytest.raises(ConfigurationError):
        generate_day_boundaries(provider, date(2026, 11, 2))
    assert generate_day_boundaries(provider, date(2026, 11, 3)) == []


def test_spring_forward_gap_never_yields_overlapping_boundaries():
    # 2027-03-14 is a Sunday; 45 minutes does not divide the skipped hour.
    windows = [DayWindow(weekday=0, open="00:00", close="06:00")]
    provider = snapshot(windows, tz="America/New_York", interval=45)

    boundaries = generate_day_boundaries(provider, date(2027, 3, 14))

    starts = [start.strftime("%H:%M") for start, _ in boundaries]
    assert starts == ["05:00", "05:45", "06:30", "07:45", "08:30", "09:15"]
    for (_, end), (next_start, _) in zip(boundaries, boundaries[1:]):
        assert end <= next_start
