import json
import uuid
from unittest.mock import MagicMock

import pytest

from agenda.core.config import Settings
from agenda.core.exceptions import ConfigurationError, NotFoundError
from agenda.services.provider_config import (
    AvailabilityConfigCache,
    DayWindow,
    ProviderSnapshot,
    RedisAvailabilityCache,
    build_availability_cache,
    load_provider_snapshot,
    windows_from_config,
)


def make_snapshot(**overrides):
    values = {
        "id": uuid.uuid4(),
        "tenant_id": uuid.uuid4(),
        "timezone": "America/Sao_Paulo",
        "windows": (DayWindow(weekday=1, open="09:00", close="17:00"),),
        "interval_minutes": 15,
        "max_advance_days": 30,
        "auto_confirm": True,
    }
    values.update(overrides)
    return ProviderSnapshot(**values)


@pytest.mark.parametrize(
    "overrides",
    [
        {"interval_minutes": 4},
        {"interval_minutes": 121},
        {"max_advance_days": 0},
        {"max_advance_days": 366},
        {"timezone": "Mars/Olympus_Mons"},
        {
            "windows": (
                DayWindow(weekday=1, open="09:00", close="12:00"),
                DayWindow(weekday=1, open="13:00", close="17:00"),
            )
        },
        {"windows": (DayWindow(weekday=7, open="09:00", close="12:00"),)},
    ],
)
def test_invalid_snapshots_are_rejected(overrides):
    with pytest.raises(ConfigurationError):
        make_snapshot(**overrides)


def test_check_windows_parses_every_entry():
    snapshot = make_snapshot(windows=(DayWindow(weekday=2, open="09:00", close="5pm"),))

    with pytest.raises(ConfigurationError):
        snapshot.check_windows()


def test_windows_from_config_rejects_malformed_entries():
    with pytest.raises(ConfigurationError):
        windows_from_config([{"weekday": "monday", "open": "09:00", "close": "17:00"}])
    with pytest.raises(ConfigurationError):
        windows_from_config([{"open": "09:00", "close": "17:00"}])


def test_snapshot_round_trips_through_dict():
    snapshot = make_snapshot()

    assert ProviderSnapshot.from_dict(json.loads(json.dumps(snapshot.to_dict()))) == snapshot


def test_load_provider_snapshot(db, make_provider):
    provider = make_provider(timezone="America/Sao_Paulo")

    snapshot = load_provider_snapshot(db, provider.id)

    assert snapshot.id == provider.id
    assert snapshot.tz.key == "America/Sao_Paulo"
    assert [window.weekday for window in snapshot.windows] == [1, 2, 3, 4, 5]
    with pytest.raises(NotFoundError):
        load_provider_snapshot(db, uuid.uuid4())


def test_memory_cache_reads_through_and_invalidates():
    clock = MagicMock(return_value=100.0)
    cache = AvailabilityConfigCache(ttl_seconds=60, clock=clock)
    snapshot = make_snapshot()
    loader = MagicMock(return_value=snapshot)

    assert cache.get(snapshot.id, loader) is snapshot
    assert cache.get(snapshot.id, loader) is snapshot
    assert loader.call_count == 1

    cache.invalidate(snapshot.id)
    cache.get(snapshot.id, loader)
    assert loader.call_count == 2


def test_memory_cache_entries_expire():
    clock = MagicMock(return_value=100.0)
    cache = AvailabilityConfigCache(ttl_seconds=60, clock=clock)
    snapshot = make_snapshot()
    loader = MagicMock(return_value=snapshot)

    cache.get(snapshot.id, loader)
    clock.return_value = 161.0
    cache.get(snapshot.id, loader)

    assert loader.call_count == 2


def test_redis_cache_stores_json_with_ttl():
    client = MagicMock()
    client.get.return_value = None
    cache = RedisAvailabilityCache(client, ttl_seconds=120)
    snapshot = make_snapshot()

    assert cache.get(snapshot.id, lambda: snapshot) is snapshot

    key = f"agenda:provider-config:{snapshot.id}"
    client.setex.assert_called_once()
    stored_key, ttl, payload = client.setex.call_args.args
    assert stored_key == key
    assert ttl == 120
    assert json.loads(payload)["interval_minutes"] == 15


def test_redis_cache_hit_skips_the_loader():
    snapshot = make_snapshot()
    client = MagicMock()
    client.get.return_value = json.dumps(snapshot.to_dict())
    cache = RedisAvailabilityCache(client)
    loader = MagicMock()

    assert cache.get(snapshot.id, loader) == snapshot
    loader.assert_not_called()
    client.setex.assert_not_called()


def test_redis_cache_discards_unreadable_entries():
    snapshot = make_snapshot()
    client = MagicMock()
    client.get.return_value = "{not json"
    cache = RedisAvailabilityCache(client)

    assert cache.get(snapshot.id, lambda: snapshot) is snapshot
    client.setex.assert_called_once()


def test_redis_cache_invalidate_deletes_key():
    client = MagicMock()
    cache = RedisAvailabilityCache(client)
    provider_id = uuid.uuid4()

    cache.invalidate(provider_id)

    client.delete.assert_called_once_with(f"agenda:provider-config:{provider_id}")


def test_build_availability_cache_selects_backend():
    memory = build_availability_cache(Settings(availability_cache_backend="memory"))
    shared = build_availability_cache(
        Settings(availability_cache_backend="redis", redis_url="redis://localhost:6379/1")
    )

    assert isinstance(memory, AvailabilityConfigCache)
    assert isinstance(shared, RedisAvailabilityCache)
