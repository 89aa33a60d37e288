"""Horizon maintenance: daily generation, on-demand regeneration, retention."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import event, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from agenda.core.exceptions import NotFoundError, SchedulingError, StorageError
from agenda.logging_utils import provider_context
from agenda.metrics import SLOT_GENERATION_ERRORS
from agenda.models import Provider
from agenda.models.base import utcnow
from agenda.services import slot_store
from agenda.services.provider_config import (
    AvailabilityCache,
    ProviderSnapshot,
    load_provider_snapshot,
    windows_from_config,
)
from agenda.services.scheduling import ensure_utc
from agenda.services.slot_generator import (
    DayError,
    GenerationReport,
    generate_for_provider,
    regenerate,
)

logger = logging.getLogger(__name__)


def update_provider_availability(
    db: Session,
    provider_id: UUID,
    *,
    windows: Iterable[Mapping[str, Any]],
    interval: int,
    max_advance_days: int,
    auto_confirm: bool,
    cache: AvailabilityCache,
    timezone: str | None = None,
    now: datetime | None = None,
) -> GenerationReport:
    """Persist a provider's new weekly configuration and rebuild its slots.

    The configuration is validated in full before anything is written, the
    cached snapshot is dropped before regeneration and again once the
    transaction commits, and future FREE slots are replaced by the new grid.
    Reserved and booked slots are left alone.
    """

    provider = db.get(Provider, provider_id)
    if provider is None:
        raise NotFoundError("Provider not found", details={"provider_id": str(provider_id)})

    snapshot = ProviderSnapshot(
        id=provider.id,
        tenant_id=provider.tenant_id,
        timezone=timezone or provider.timezone,
        windows=windows_from_config(windows),
        interval_minutes=interval,
        max_advance_days=max_advance_days,
        auto_confirm=auto_confirm,
    )
    snapshot.check_windows()

    provider.timezone = snapshot.timezone
    provider.weekly_availability = [window.as_dict() for window in snapshot.windows]
    provider.slot_interval_minutes = snapshot.interval_minutes
    provider.max_advance_days = snapshot.max_advance_days
    provider.auto_confirm = snapshot.auto_confirm
    db.flush()
    cached_key = provider.id
    cache.invalidate(cached_key)
    # Readers may refill the cache from the old row until this commits.
    event.listen(db, "after_commit", lambda _session: cache.invalidate(cached_key), once=True)

    with provider_context(provider.id, provider.tenant_id):
        logger.info(
            "provider availability updated",
            extra={
                "interval_minutes": snapshot.interval_minutes,
                "max_advance_days": snapshot.max_advance_days,
                "open_days": len(snapshot.windows),
            },
        )
    return regenerate(db, snapshot, now=now)


class RecurringGenerationScheduler:
    """Keeps every provider's slot horizon populated."""

    def __init__(self, session_factory: sessionmaker, cache: AvailabilityCache) -> None:
        self._session_factory = session_factory
        self._cache = cache

    def _snapshot(self, db: Session, provider_id: UUID) -> ProviderSnapshot:
        return self._cache.get(provider_id, lambda: load_provider_snapshot(db, provider_id))

    def provider_ids(self) -> list[UUID]:
        with self._session_factory() as db:
            return list(db.execute(select(Provider.id).order_by(Provider.created_at)).scalars())

    def generate_provider(
        self,
        provider_id: UUID,
        horizon_days: int | None = None,
        *,
        now: datetime | None = None,
    ) -> GenerationReport:
        with self._session_factory() as db, db.begin():
            snapshot = self._snapshot(db, provider_id)
            horizon = snapshot.max_advance_days if horizon_days is None else horizon_days
            return generate_for_provider(db, snapshot, horizon, now=now)

    def regenerate_provider(
        self, provider_id: UUID, *, now: datetime | None = None
    ) -> GenerationReport:
        self._cache.invalidate(provider_id)
        with self._session_factory() as db, db.begin():
            return regenerate(db, self._snapshot(db, provider_id), now=now)

    def run_daily(self, now: datetime | None = None) -> dict[UUID, GenerationReport]:
        """Generate the full horizon for every provider, one transaction each.

        A provider that cannot be processed is recorded with a single error
        entry and the run moves on to the next one.
        """

        now = ensure_utc(now or utcnow())
        reports: dict[UUID, GenerationReport] = {}
        for provider_id in self.provider_ids():
            try:
                reports[provider_id] = self.generate_provider(provider_id, now=now)
            except (SchedulingError, SQLAlchemyError) as exc:
                code = exc.code if isinstance(exc, SchedulingError) else StorageError.default_code
                message = exc.message if isinstance(exc, SchedulingError) else str(exc)
                SLOT_GENERATION_ERRORS.labels(scope="provider").inc()
                with provider_context(provider_id):
                    logger.exception("slot generation failed for provider", extra={"code": code})
                reports[provider_id] = GenerationReport(
                    provider_id=provider_id,
                    errors=[DayError(day=now.date(), code=code, message=message)],
                )

        logger.info(
            "daily slot generation finished",
            extra={
                "providers": len(reports),
                "generated": sum(report.generated for report in reports.values()),
                "failed_providers": sum(1 for report in reports.values() if not report.ok),
            },
        )
        return reports

    def cleanup_stale(self, retention_days: int, *, now: datetime | None = None) -> int:
        """Delete FREE/BLOCKED slots that started more than ``retention_days`` ago."""

        cutoff = ensure_utc(now or utcnow()) - timedelta(days=retention_days)
        with self._session_factory() as db, db.begin():
            return slot_store.delete_stale(db, cutoff)
