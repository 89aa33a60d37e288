"""Provider availability configuration: immutable snapshots and their caches.

The scheduler never reads ``Provider`` rows directly. It works from a
``ProviderSnapshot`` so validation and slot arithmetic stay pure, and so the
snapshot can be cached per provider and invalidated when the provider edits
their hours.
"""

from __future__ import annotations

import json
import logging
import re
import threading
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Final, Protocol
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import redis
from sqlalchemy.orm import Session

from agenda.core.config import Settings
from agenda.core.exceptions import ConfigurationError, NotFoundError
from agenda.models import Provider

logger = logging.getLogger(__name__)

MIN_INTERVAL_MINUTES: Final[int] = 5
MAX_INTERVAL_MINUTES: Final[int] = 120
MIN_ADVANCE_DAYS: Final[int] = 1
MAX_ADVANCE_DAYS: Final[int] = 365

_HHMM_PATTERN = re.compile(r"^(\d{2}):(\d{2})$")
_CACHE_KEY_TEMPLATE: Final[str] = "agenda:provider-config:{provider_id}"


def parse_hhmm(value: str) -> int:
    """Return minutes since midnight for an ``HH:MM`` string."""

    match = _HHMM_PATTERN.match(value or "") if isinstance(value, str) else None
    if not match:
        raise ConfigurationError(f"Invalid time of day {value!r}; expected HH:MM")
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        raise ConfigurationError(f"Invalid time of day {value!r}; expected HH:MM")
    return hours * 60 + minutes


@dataclass(frozen=True)
class DayWindow:
    """Opening hours for one weekday (0 = Sunday ... 6 = Saturday)."""

    weekday: int
    open: str
    close: str

    @property
    def open_minutes(self) -> int:
        return parse_hhmm(self.open)

    @property
    def close_minutes(self) -> int:
        return parse_hhmm(self.close)

    def as_dict(self) -> dict[str, Any]:
        return {"weekday": self.weekday, "open": self.open, "close": self.close}


@dataclass(frozen=True)
class ProviderSnapshot:
    """Read-only view of everything the scheduler needs from a provider."""

    id: UUID
    timezone: str
    windows: tuple[DayWindow, ...]
    interval_minutes: int
    max_advance_days: int = 60
    auto_confirm: bool = False
    tenant_id: UUID | None = None
    _by_weekday: Mapping[int, DayWindow] = field(
        init=False, repr=False, compare=False, default_factory=dict
    )

    def __post_init__(self) -> None:
        if not MIN_INTERVAL_MINUTES <= self.interval_minutes <= MAX_INTERVAL_MINUTES:
            raise ConfigurationError(
                f"Slot interval must be between {MIN_INTERVAL_MINUTES} and "
                f"{MAX_INTERVAL_MINUTES} minutes, got {self.interval_minutes}"
            )
        if not MIN_ADVANCE_DAYS <= self.max_advance_days <= MAX_ADVANCE_DAYS:
            raise ConfigurationError(
                f"Booking horizon must be between {MIN_ADVANCE_DAYS} and "
                f"{MAX_ADVANCE_DAYS} days, got {self.max_advance_days}"
            )
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ConfigurationError(f"Unknown timezone {self.timezone!r}") from exc

        by_weekday: dict[int, DayWindow] = {}
        for window in self.windows:
            if not 0 <= window.weekday <= 6:
                raise ConfigurationError(f"Weekday must be 0-6, got {window.weekday}")
            if window.weekday in by_weekday:
                raise ConfigurationError(f"Weekday {window.weekday} configured more than once")
            by_weekday[window.weekday] = window
        object.__setattr__(self, "_by_weekday", by_weekday)

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def window_for(self, weekday: int) -> DayWindow | None:
        return self._by_weekday.get(weekday)

    def check_windows(self) -> None:
        """Parse every window eagerly, raising ``ConfigurationError`` on bad times."""

        for window in self.windows:
            parse_hhmm(window.open)
            parse_hhmm(window.close)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "tenant_id": str(self.tenant_id) if self.tenant_id else None,
            "timezone": self.timezone,
            "windows": [window.as_dict() for window in self.windows],
            "interval_minutes": self.interval_minutes,
            "max_advance_days": self.max_advance_days,
            "auto_confirm": self.auto_confirm,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ProviderSnapshot:
        tenant_id = data.get("tenant_id")
        return cls(
            id=UUID(str(data["id"])),
            tenant_id=UUID(str(tenant_id)) if tenant_id else None,
            timezone=data["timezone"],
            windows=windows_from_config(data.get("windows") or []),
            interval_minutes=int(data["interval_minutes"]),
            max_advance_days=int(data["max_advance_days"]),
            auto_confirm=bool(data.get("auto_confirm", False)),
        )

    @classmethod
    def from_model(cls, provider: Provider) -> ProviderSnapshot:
        return cls(
            id=provider.id,
            tenant_id=provider.tenant_id,
            timezone=provider.timezone,
            windows=windows_from_config(provider.weekly_availability or []),
            interval_minutes=provider.slot_interval_minutes,
            max_advance_days=provider.max_advance_days,
            auto_confirm=bool(provider.auto_confirm),
        )


def windows_from_config(entries: Iterable[Mapping[str, Any]]) -> tuple[DayWindow, ...]:
    """Build day windows from stored ``{"weekday", "open", "close"}`` entries."""

    windows: list[DayWindow] = []
    for entry in entries:
        try:
            weekday = int(entry["weekday"])
            windows.append(DayWindow(weekday=weekday, open=entry["open"], close=entry["close"]))
        except (KeyError, TypeError, ValueError) as exc:
            raise ConfigurationError(f"Malformed availability entry {entry!r}") from exc
    return tuple(sorted(windows, key=lambda window: window.weekday))


def load_provider_snapshot(db: Session, provider_id: UUID) -> ProviderSnapshot:
    provider = db.get(Provider, provider_id)
    if provider is None:
        raise NotFoundError("Provider not found", details={"provider_id": str(provider_id)})
    return ProviderSnapshot.from_model(provider)


Loader = Callable[[], ProviderSnapshot]


class AvailabilityCache(Protocol):
    def get(self, provider_id: UUID, loader: Loader) -> ProviderSnapshot: ...

    def invalidate(self, provider_id: UUID) -> None: ...


class AvailabilityConfigCache:
    """In-process read-through cache of provider snapshots keyed by provider id."""

    def __init__(self, ttl_seconds: float = 300, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[UUID, tuple[ProviderSnapshot, float]] = {}
        self._lock = threading.Lock()

    def get(self, provider_id: UUID, loader: Loader) -> ProviderSnapshot:
        now = self._clock()
        with self._lock:
            cached = self._entries.get(provider_id)
            if cached and cached[1] > now:
                return cached[0]

        snapshot = loader()
        with self._lock:
            self._entries[provider_id] = (snapshot, now + self.ttl_seconds)
        return snapshot

    def invalidate(self, provider_id: UUID) -> None:
        with self._lock:
            self._entries.pop(provider_id, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class RedisAvailabilityCache:
    """Shared cache for multi-process deployments, backed by Redis."""

    def __init__(self, client: redis.Redis, ttl_seconds: int = 300) -> None:
        self._client = client
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def key_for(provider_id: UUID) -> str:
        return _CACHE_KEY_TEMPLATE.format(provider_id=provider_id)

    def get(self, provider_id: UUID, loader: Loader) -> ProviderSnapshot:
        key = self.key_for(provider_id)
        raw_value = self._client.get(key)
        if raw_value:
            try:
                return ProviderSnapshot.from_dict(json.loads(raw_value))
            except (json.JSONDecodeError, KeyError, ConfigurationError):
                logger.warning("discarding unreadable cached provider config", extra={"key": key})

        snapshot = loader()
        self._client.setex(key, self.ttl_seconds, json.dumps(snapshot.to_dict()))
        return snapshot

    def invalidate(self, provider_id: UUID) -> None:
        self._client.delete(self.key_for(provider_id))


def build_availability_cache(settings: Settings) -> AvailabilityCache:
    """Return the cache backend selected by configuration."""

    if settings.availability_cache_backend == "redis":
        client = redis.Redis.from_url(settings.redis_url, decode_responses=True)
        return RedisAvailabilityCache(client, ttl_seconds=settings.availability_cache_ttl_seconds)
    return AvailabilityConfigCache(ttl_seconds=settings.availability_cache_ttl_seconds)
