"""Persistence for ``ScheduleSlot`` rows.

Every mutation here is a single statement so it stays atomic under
concurrent callers: inserts rely on the ``(provider_id, start_time)`` unique
constraint and status changes are compare-and-swap updates.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from agenda.core.exceptions import ConflictError, NotFoundError
from agenda.models import ScheduleSlot, SlotStatus
from agenda.models.base import utcnow
from agenda.services.scheduling import ensure_utc

logger = logging.getLogger(__name__)

STALE_SLOT_STATUSES: tuple[SlotStatus, ...] = (SlotStatus.FREE, SlotStatus.BLOCKED)


@dataclass
class SlotStats:
    provider_id: UUID
    total: int
    by_status: dict[str, int] = field(default_factory=dict)

    @property
    def utilization_rate(self) -> float:
        """Percentage of slots no longer free."""

        if not self.total:
            return 0.0
        taken = self.total - self.by_status.get(SlotStatus.FREE.value, 0)
        return round(taken / self.total * 100, 2)

    def as_dict(self) -> dict[str, object]:
        return {
            "provider_id": str(self.provider_id),
            "total": self.total,
            "by_status": self.by_status,
            "utilization_rate": self.utilization_rate,
        }


def _insert_for(db: Session):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise NotImplementedError(f"Slot upserts are not supported on {dialect}")


def upsert_if_absent(
    db: Session,
    *,
    provider_id: UUID,
    tenant_id: UUID | None,
    start: datetime,
    end: datetime,
    status: SlotStatus = SlotStatus.FREE,
) -> bool:
    """Insert a slot unless one already starts at ``start`` for the provider."""

    now = utcnow()
    stmt = (
        _insert_for(db)(ScheduleSlot)
        .values(
            id=uuid4(),
            tenant_id=tenant_id,
            provider_id=provider_id,
            start_time=ensure_utc(start),
            end_time=ensure_utc(end),
            status=status,
            created_at=now,
            updated_at=now,
        )
        .on_conflict_do_nothing(index_elements=["provider_id", "start_time"])
    )
    result = db.execute(stmt)
    return bool(result.rowcount)


def find_by_provider_and_range(
    db: Session,
    provider_id: UUID,
    from_instant: datetime,
    to_instant: datetime,
    statuses: Iterable[SlotStatus] | None = None,
) -> Sequence[ScheduleSlot]:
    """Slots starting within ``[from_instant, to_instant)`` ordered by start."""

    stmt = select(ScheduleSlot).where(
        ScheduleSlot.provider_id == provider_id,
        ScheduleSlot.start_time >= ensure_utc(from_instant),
        ScheduleSlot.start_time < ensure_utc(to_instant),
    )
    if statuses is not None:
        stmt = stmt.where(ScheduleSlot.status.in_(list(statuses)))
    return db.execute(stmt.order_by(ScheduleSlot.start_time)).scalars().all()


def find_overlapping(
    db: Session,
    provider_id: UUID,
    start: datetime,
    end: datetime,
    statuses: Iterable[SlotStatus] | None = None,
) -> Sequence[ScheduleSlot]:
    """Slots whose ``[start_time, end_time)`` intersects ``[start, end)``."""

    stmt = select(ScheduleSlot).where(
        ScheduleSlot.provider_id == provider_id,
        ScheduleSlot.start_time < ensure_utc(end),
        ScheduleSlot.end_time > ensure_utc(start),
    )
    if statuses is not None:
        stmt = stmt.where(ScheduleSlot.status.in_(list(statuses)))
    return db.execute(stmt.order_by(ScheduleSlot.start_time)).scalars().all()


def transition(
    db: Session,
    slot_id: UUID,
    expected: SlotStatus,
    new: SlotStatus,
    booking_id: UUID | None = None,
) -> ScheduleSlot:
    """Move a slot from ``expected`` to ``new`` or fail if someone got there first."""

    linked = booking_id if new in (SlotStatus.RESERVED, SlotStatus.BOOKED) else None
    stmt = (
        update(ScheduleSlot)
        .where(ScheduleSlot.id == slot_id, ScheduleSlot.status == expected)
        .values(status=new, booking_id=linked, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)
    slot = db.get(ScheduleSlot, slot_id, populate_existing=True)
    if slot is None:
        raise NotFoundError("Slot not found", details={"slot_id": str(slot_id)})
    if not result.rowcount:
        raise ConflictError(
            "Slot status changed concurrently",
            details={
                "slot_id": str(slot_id),
                "expected": expected.value,
                "actual": slot.status.value,
            },
        )
    return slot


def release_for_booking(db: Session, booking_id: UUID) -> int:
    """Return every slot linked to ``booking_id`` to FREE."""

    stmt = (
        update(ScheduleSlot)
        .where(
            ScheduleSlot.booking_id == booking_id,
            ScheduleSlot.status.in_([SlotStatus.RESERVED, SlotStatus.BOOKED]),
        )
        .values(status=SlotStatus.FREE, booking_id=None, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return int(db.execute(stmt).rowcount or 0)


def delete_future_free(db: Session, provider_id: UUID, after: datetime) -> int:
    """Drop FREE, unlinked slots of a provider starting after ``after``."""

    stmt = (
        delete(ScheduleSlot)
        .where(
            ScheduleSlot.provider_id == provider_id,
            ScheduleSlot.start_time > ensure_utc(after),
            ScheduleSlot.status == SlotStatus.FREE,
            ScheduleSlot.booking_id.is_(None),
        )
        .execution_options(synchronize_session=False)
    )
    return int(db.execute(stmt).rowcount or 0)


def delete_stale(
    db: Session,
    older_than: datetime,
    statuses: Iterable[SlotStatus] = STALE_SLOT_STATUSES,
) -> int:
    """Retention cleanup of slots that started before ``older_than``."""

    stmt = (
        delete(ScheduleSlot)
        .where(
            ScheduleSlot.start_time < ensure_utc(older_than),
            ScheduleSlot.status.in_(list(statuses)),
            ScheduleSlot.booking_id.is_(None),
        )
        .execution_options(synchronize_session=False)
    )
    deleted = int(db.execute(stmt).rowcount or 0)
    logger.info(
        "stale slots deleted",
        extra={"cutoff": ensure_utc(older_than).isoformat(), "deleted": deleted},
    )
    return deleted


def slot_stats(db: Session, provider_id: UUID) -> SlotStats:
    stmt = (
        select(ScheduleSlot.status, func.count())
        .where(ScheduleSlot.provider_id == provider_id)
        .group_by(ScheduleSlot.status)
    )
    by_status = {status.value: int(count) for status, count in db.execute(stmt).all()}
    return SlotStats(provider_id=provider_id, total=sum(by_status.values()), by_status=by_status)
