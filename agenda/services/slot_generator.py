"""Materialize FREE slots over a provider's booking horizon."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from agenda.core.exceptions import ConfigurationError, StorageError
from agenda.logging_utils import provider_context
from agenda.metrics import SLOT_GENERATION_ERRORS, SLOTS_GENERATED
from agenda.models import SlotStatus
from agenda.models.base import utcnow
from agenda.services import slot_store
from agenda.services.provider_config import ProviderSnapshot
from agenda.services.scheduling import ensure_utc
from agenda.services.time_grid import generate_day_boundaries

logger = logging.getLogger(__name__)


@dataclass
class DayError:
    day: date
    code: str
    message: str

    def as_dict(self) -> dict[str, str]:
        return {"day": self.day.isoformat(), "code": self.code, "message": self.message}


@dataclass
class GenerationReport:
    provider_id: UUID
    generated: int = 0
    skipped: int = 0
    pruned: int = 0
    errors: list[DayError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def as_dict(self) -> dict[str, Any]:
        return {
            "provider_id": str(self.provider_id),
            "generated": self.generated,
            "skipped": self.skipped,
            "pruned": self.pruned,
            "errors": [error.as_dict() for error in self.errors],
        }


def _collides(taken: tuple[datetime, datetime], start: datetime, end: datetime) -> bool:
    taken_start, taken_end = taken
    if taken_start == start:
        return False
    return taken_start < end and taken_end > start


def _generate_day(
    db: Session, provider: ProviderSnapshot, day: date, now: datetime
) -> tuple[int, int]:
    boundaries = [(start, end) for start, end in generate_day_boundaries(provider, day) if start > now]
    if not boundaries:
        return 0, 0

    taken = [
        (ensure_utc(slot.start_time), ensure_utc(slot.end_time))
        for slot in slot_store.find_overlapping(
            db, provider.id, boundaries[0][0], boundaries[-1][1]
        )
    ]
    inserted = skipped = 0
    for start, end in boundaries:
        if any(_collides(span, start, end) for span in taken):
            skipped += 1
            continue
        created = slot_store.upsert_if_absent(
            db,
            provider_id=provider.id,
            tenant_id=provider.tenant_id,
            start=start,
            end=end,
            status=SlotStatus.FREE,
        )
        if created:
            inserted += 1
            taken.append((start, end))
        else:
            skipped += 1
    return inserted, skipped


def generate_for_provider(
    db: Session,
    provider: ProviderSnapshot,
    horizon_days: int,
    *,
    now: datetime | None = None,
) -> GenerationReport:
    """Upsert FREE slots for today through ``horizon_days`` ahead.

    Each day runs in its own SAVEPOINT; a day that fails is recorded in the
    report and the remaining days are still generated.
    """

    now = ensure_utc(now or utcnow())
    today = now.astimezone(provider.tz).date()
    report = GenerationReport(provider_id=provider.id)

    with provider_context(provider.id, provider.tenant_id):
        for offset in range(max(horizon_days, 0) + 1):
            day = today + timedelta(days=offset)
            try:
                with db.begin_nested():
                    inserted, skipped = _generate_day(db, provider, day, now)
            except ConfigurationError as exc:
                report.errors.append(DayError(day=day, code=exc.code, message=exc.message))
                logger.warning(
                    "invalid availability configuration for day",
                    extra={"day": day.isoformat(), "error": exc.message},
                )
                continue
            except SQLAlchemyError as exc:
                report.errors.append(
                    DayError(day=day, code=StorageError.default_code, message=str(exc))
                )
                logger.warning(
                    "slot generation failed for day",
                    extra={"day": day.isoformat()},
                    exc_info=True,
                )
                continue
            report.generated += inserted
            report.skipped += skipped

        SLOTS_GENERATED.inc(report.generated)
        if report.errors:
            SLOT_GENERATION_ERRORS.labels(scope="day").inc(len(report.errors))
        logger.info(
            "slot generation finished",
            extra={
                "horizon_days": horizon_days,
                "generated": report.generated,
                "skipped": report.skipped,
                "failed_days": len(report.errors),
            },
        )
    return report


def regenerate(
    db: Session,
    provider: ProviderSnapshot,
    *,
    now: datetime | None = None,
) -> GenerationReport:
    """Prune future FREE slots, then generate the provider's full horizon again."""

    now = ensure_utc(now or utcnow())
    pruned = slot_store.delete_future_free(db, provider.id, now)
    with provider_context(provider.id, provider.tenant_id):
        logger.info("pruned future free slots", extra={"pruned": pruned})
    report = generate_for_provider(db, provider, provider.max_advance_days, now=now)
    report.pruned = pruned
    return report
