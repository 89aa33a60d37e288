from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from agenda.core.exceptions import ConfigurationError, NotFoundError
from agenda.models import Provider, ScheduleSlot, SlotStatus
from agenda.services import slot_store
from agenda.services.provider_config import ProviderSnapshot
from agenda.services.recurring import RecurringGenerationScheduler, update_provider_availability

from conftest import NOW


def count_slots(session_factory, provider_id, status=None):
    with session_factory() as session:
        stmt = select(func.count()).select_from(ScheduleSlot).where(
            ScheduleSlot.provider_id == provider_id
        )
        if status is not None:
            stmt = stmt.where(ScheduleSlot.status == status)
        return session.execute(stmt).scalar_one()


@pytest.fixture
def scheduler(session_factory, cache):
    return RecurringGenerationScheduler(session_factory, cache)


def test_run_daily_isolates_failing_providers(scheduler, session_factory, make_provider):
    healthy = make_provider(max_advance_days=2)
    broken = make_provider(
        full_name="Bruno Lima",
        weekly_availability=[{"weekday": 1, "open": "09:00"}],
    )

    reports = scheduler.run_daily(now=NOW)

    assert reports[healthy.id].ok
    assert reports[healthy.id].generated == 3 * 16
    assert not reports[broken.id].ok
    assert reports[broken.id].errors[0].code == "CONFIGURATION_ERROR"
    assert count_slots(session_factory, healthy.id) == 3 * 16
    assert count_slots(session_factory, broken.id) == 0


def test_run_daily_is_idempotent(scheduler, make_provider):
    provider = make_provider(max_advance_days=1)

    scheduler.run_daily(now=NOW)
    reports = scheduler.run_daily(now=NOW)

    assert reports[provider.id].generated == 0


def test_generate_provider_uses_explicit_horizon(scheduler, session_factory, make_provider):
    provider = make_provider(max_advance_days=30)

    report = scheduler.generate_provider(provider.id, 0, now=NOW)

    assert report.generated == 16
    assert count_slots(session_factory, provider.id) == 16


def test_generate_provider_unknown_id(scheduler, make_client):
    with pytest.raises(NotFoundError):
        scheduler.generate_provider(make_client().id, now=NOW)


def test_regenerate_provider_reloads_configuration(
    scheduler, session_factory, cache, make_provider
):
    provider = make_provider(max_advance_days=1)
    scheduler.generate_provider(provider.id, now=NOW)
    with session_factory() as session, session.begin():
        session.get(Provider, provider.id).slot_interval_minutes = 60

    report = scheduler.regenerate_provider(provider.id, now=NOW)

    assert report.pruned == 2 * 16
    assert report.generated == 2 * 8


def test_cleanup_stale_respects_retention(scheduler, session_factory, make_provider):
    provider = make_provider()
    with session_factory() as session, session.begin():
        for days_ago in (40, 31, 5):
            start = NOW - timedelta(days=days_ago)
            slot_store.upsert_if_absent(
                session,
                provider_id=provider.id,
                tenant_id=provider.tenant_id,
                start=start,
                end=start + timedelta(minutes=30),
            )

    deleted = scheduler.cleanup_stale(30, now=NOW)

    assert deleted == 2
    assert count_slots(session_factory, provider.id) == 1


def test_update_provider_availability_persists_and_regenerates(
    session_factory, cache, make_provider
):
    provider = make_provider(max_advance_days=1)
    scheduler = RecurringGenerationScheduler(session_factory, cache)
    scheduler.generate_provider(provider.id, now=NOW)
    assert cache.get(provider.id, lambda: pytest.fail("expected cached")).interval_minutes == 30

    with session_factory() as session, session.begin():
        report = update_provider_availability(
            session,
            provider.id,
            windows=[{"weekday": 1, "open": "10:00", "close": "12:00"}],
            interval=60,
            max_advance_days=1,
            auto_confirm=True,
            cache=cache,
            now=NOW,
        )

    assert report.pruned == 2 * 16
    assert report.generated == 2
    with session_factory() as session:
        stored = session.get(Provider, provider.id)
        assert stored.weekly_availability == [{"weekday": 1, "open": "10:00", "close": "12:00"}]
        assert stored.slot_interval_minutes == 60
        assert stored.auto_confirm is True
        starts = [
            slot.start_time.strftime("%H:%M")
            for slot in slot_store.find_by_provider_and_range(
                session, provider.id, NOW, NOW + timedelta(days=2)
            )
        ]
    assert starts == ["10:00", "11:00"]

    reloaded = scheduler.generate_provider(provider.id, now=NOW)
    assert reloaded.generated == 0


def test_update_provider_availability_rejects_bad_windows(session_factory, cache, make_provider):
    provider = make_provider()

    with session_factory() as session, session.begin():
        with pytest.raises(ConfigurationError):
            update_provider_availability(
                session,
                provider.id,
                windows=[{"weekday": 1, "open": "25:00", "close": "12:00"}],
                interval=30,
                max_advance_days=7,
                auto_confirm=False,
                cache=cache,
                now=NOW,
            )

    with session_factory() as session:
        assert session.get(Provider, provider.id).weekly_availability[0]["open"] == "09:00"
    assert count_slots(session_factory, provider.id, SlotStatus.FREE) == 0


def test_slots_of_the_past_are_left_for_cleanup(scheduler, session_factory, make_provider):
    provider = make_provider(max_advance_days=1)
    scheduler.generate_provider(provider.id, now=NOW)

    later = datetime(2026, 11, 2, 12, 0, tzinfo=timezone.utc)
    report = scheduler.regenerate_provider(provider.id, now=later)

    assert report.pruned == 9 + 16
    assert count_slots(session_factory, provider.id) == 16 + 9 + 7


def test_availability_update_drops_snapshots_cached_before_commit(
    session_factory, cache, make_provider
):
    provider = make_provider(max_advance_days=1)
    stale = ProviderSnapshot.from_model(provider)

    with session_factory() as session, session.begin():
        update_provider_availability(
            session,
            provider.id,
            windows=[{"weekday": 1, "open": "12:00", "close": "18:00"}],
            interval=30,
            max_advance_days=1,
            auto_confirm=False,
            cache=cache,
            now=NOW,
        )
        # A concurrent reader still sees the committed row and caches it.
        assert cache.get(provider.id, lambda: stale) is stale

    assert cache.get(provider.id, lambda: "reloaded") == "reloaded"
