"""Queries over the authoritative ``bookings`` table."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from agenda.core.exceptions import NotFoundError
from agenda.models import ACTIVE_BOOKING_STATUSES, Booking, Service
from agenda.services.scheduling import ensure_utc


def find_overlapping_active(
    db: Session,
    provider_id: UUID,
    start: datetime,
    end: datetime,
    *,
    exclude_id: UUID | None = None,
) -> Sequence[Booking]:
    """PENDING/CONFIRMED bookings where ``existing.start < end and existing.end > start``."""

    stmt = select(Booking).where(
        Booking.provider_id == provider_id,
        Booking.status.in_(list(ACTIVE_BOOKING_STATUSES)),
        Booking.start_time < ensure_utc(end),
        Booking.end_time > ensure_utc(start),
    )
    if exclude_id is not None:
        stmt = stmt.where(Booking.id != exclude_id)
    return db.execute(stmt.order_by(Booking.start_time)).scalars().all()


def find_by_idempotency_key(db: Session, provider_id: UUID, key: str) -> Booking | None:
    stmt = select(Booking).where(
        Booking.provider_id == provider_id,
        Booking.idempotency_key == key,
    )
    return db.execute(stmt).scalars().first()


def get_for_update(db: Session, booking_id: UUID) -> Booking:
    """Load a booking with a row lock, raising ``NotFoundError`` when missing."""

    stmt = select(Booking).where(Booking.id == booking_id).with_for_update()
    booking = db.execute(stmt).scalars().first()
    if booking is None:
        raise NotFoundError("Booking not found", details={"booking_id": str(booking_id)})
    return booking


def load_service(db: Session, provider_id: UUID, service_id: UUID) -> Service:
    """Return an active service offered by ``provider_id``."""

    service = db.get(Service, service_id)
    if service is None or service.provider_id != provider_id or not service.is_active:
        raise NotFoundError(
            "Service not found",
            details={"service_id": str(service_id), "provider_id": str(provider_id)},
        )
    return service
