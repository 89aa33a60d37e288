"""Reservation protocol and booking state machine.

Bookings are the source of truth for taken time. Creating one happens in a
single unit of work that holds the provider row lock (``BEGIN IMMEDIATE`` on
SQLite) while it checks for overlaps and inserts, and PostgreSQL backs it with
the ``bookings_no_overlap_per_provider`` exclusion constraint. Slot rows are
updated afterwards in a separate unit of work; failing to update them never
undoes a committed booking.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import select, text
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from agenda.core.exceptions import (
    BookingTimeoutError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
    SchedulingError,
    StorageError,
)
from agenda.logging_utils import provider_context
from agenda.metrics import BOOKING_OUTCOMES, SLOT_PROJECTION_FAILURES
from agenda.models import Booking, BookingStatus, Client, Provider, SlotStatus
from agenda.models.base import utcnow
from agenda.services import booking_store, slot_store
from agenda.services.availability import validate
from agenda.services.provider_config import (
    AvailabilityCache,
    ProviderSnapshot,
    load_provider_snapshot,
)
from agenda.services.scheduling import ensure_utc

logger = logging.getLogger(__name__)

OVERLAP_CONSTRAINT = "bookings_no_overlap_per_provider"
IDEMPOTENCY_CONSTRAINT = "uq_bookings_provider_idempotency_key"
_PG_LOCK_NOT_AVAILABLE = "55P03"

_SLOT_TARGET_STATUS: dict[BookingStatus, SlotStatus] = {
    BookingStatus.PENDING: SlotStatus.RESERVED,
    BookingStatus.CONFIRMED: SlotStatus.BOOKED,
}


def _constraint_name(exc: IntegrityError) -> str:
    orig = getattr(exc, "orig", None)
    diag = getattr(orig, "diag", None)
    name = getattr(diag, "constraint_name", None) if diag is not None else None
    return name or str(orig or exc)


def _is_lock_timeout(exc: OperationalError) -> bool:
    orig = getattr(exc, "orig", None)
    if getattr(orig, "pgcode", None) == _PG_LOCK_NOT_AVAILABLE:
        return True
    return "database is locked" in str(orig or exc).lower()


class BookingReservationManager:
    """Creates bookings without overlaps and drives their status transitions."""

    def __init__(
        self,
        session_factory: sessionmaker,
        cache: AvailabilityCache,
        *,
        lock_timeout_seconds: float = 5.0,
    ) -> None:
        self._session_factory = session_factory
        self._cache = cache
        self.lock_timeout_seconds = lock_timeout_seconds

    @contextmanager
    def _unit_of_work(self) -> Iterator[Session]:
        with self._session_factory(expire_on_commit=False) as db:
            try:
                with db.begin():
                    if db.get_bind().dialect.name == "postgresql":
                        timeout_ms = int(self.lock_timeout_seconds * 1000)
                        db.execute(text(f"SET LOCAL lock_timeout = '{timeout_ms}ms'"))
                    yield db
            except OperationalError as exc:
                if _is_lock_timeout(exc):
                    raise BookingTimeoutError(
                        "Timed out waiting for the booking lock; retry the request",
                        details={"timeout_seconds": self.lock_timeout_seconds},
                    ) from exc
                raise StorageError("Booking storage is unavailable") from exc

    # -- creation -----------------------------------------------------------

    def create_booking(
        self,
        provider_id: UUID,
        client_id: UUID,
        service_id: UUID,
        start: datetime,
        *,
        idempotency_key: str | None = None,
        notes: str | None = None,
        now: datetime | None = None,
    ) -> Booking:
        """Reserve ``[start, start + service duration)`` for the client.

        Raises ``ValidationError`` (PAST, DAY_CLOSED, OUTSIDE_HOURS,
        NOT_ALIGNED), ``ConflictError`` when the range is taken,
        ``BookingTimeoutError`` when the provider lock is busy for too long and
        ``NotFoundError`` for unknown provider, service or client. Repeating a
        call with the same ``idempotency_key`` returns the original booking.
        """

        start = ensure_utc(start)
        now = ensure_utc(now or utcnow())

        with provider_context(provider_id):
            try:
                try:
                    with self._unit_of_work() as db:
                        booking, created = self._reserve(
                            db,
                            provider_id=provider_id,
                            client_id=client_id,
                            service_id=service_id,
                            start=start,
                            idempotency_key=idempotency_key,
                            notes=notes,
                            now=now,
                        )
                except IntegrityError as exc:
                    constraint = _constraint_name(exc)
                    if idempotency_key and (
                        IDEMPOTENCY_CONSTRAINT in constraint or "idempotency_key" in constraint
                    ):
                        return self._replay(provider_id, idempotency_key)
                    if OVERLAP_CONSTRAINT in constraint:
                        raise ConflictError(
                            "The requested time was just booked by someone else",
                            details={"start_ts": start.isoformat()},
                        ) from exc
                    raise StorageError("Booking could not be stored") from exc
            except SchedulingError as exc:
                BOOKING_OUTCOMES.labels(outcome=exc.code.lower()).inc()
                logger.info(
                    "booking rejected",
                    extra={"code": exc.code, "start_ts": start.isoformat()},
                )
                raise

            if not created:
                BOOKING_OUTCOMES.labels(outcome="replayed").inc()
                return booking

            BOOKING_OUTCOMES.labels(outcome=booking.status.value.lower()).inc()
            logger.info(
                "booking created",
                extra={
                    "booking_id": str(booking.id),
                    "status": booking.status.value,
                    "start_ts": start.isoformat(),
                },
            )
            self.sync_slots_for_booking(booking.id)
            return booking

    def _reserve(
        self,
        db: Session,
        *,
        provider_id: UUID,
        client_id: UUID,
        service_id: UUID,
        start: datetime,
        idempotency_key: str | None,
        notes: str | None,
        now: datetime,
    ) -> tuple[Booking, bool]:
        provider = db.execute(
            select(Provider).where(Provider.id == provider_id).with_for_update()
        ).scalars().first()
        if provider is None:
            raise NotFoundError("Provider not found", details={"provider_id": str(provider_id)})

        if idempotency_key:
            existing = booking_store.find_by_idempotency_key(db, provider_id, idempotency_key)
            if existing is not None:
                return existing, False

        service = booking_store.load_service(db, provider_id, service_id)
        if db.get(Client, client_id) is None:
            raise NotFoundError("Client not found", details={"client_id": str(client_id)})

        snapshot = self._cache.get(provider_id, lambda: ProviderSnapshot.from_model(provider))
        validate(snapshot, start, service.duration_minutes, now=now).raise_for_reason()

        end = start + timedelta(minutes=service.duration_minutes)
        conflicts = booking_store.find_overlapping_active(db, provider_id, start, end)
        if conflicts:
            raise ConflictError(
                "The requested time is already booked",
                details={
                    "start_ts": start.isoformat(),
                    "end_ts": end.isoformat(),
                    "conflicting_booking_ids": [str(booking.id) for booking in conflicts],
                },
            )

        status = BookingStatus.CONFIRMED if snapshot.auto_confirm else BookingStatus.PENDING
        booking = Booking(
            tenant_id=provider.tenant_id,
            provider_id=provider_id,
            client_id=client_id,
            service_id=service.id,
            start_time=start,
            end_time=end,
            status=status,
            idempotency_key=idempotency_key,
            notes=notes,
            confirmed_at=now if status == BookingStatus.CONFIRMED else None,
        )
        db.add(booking)
        db.flush()
        return booking, True

    def _replay(self, provider_id: UUID, idempotency_key: str) -> Booking:
        with self._unit_of_work() as db:
            booking = booking_store.find_by_idempotency_key(db, provider_id, idempotency_key)
        if booking is None:
            raise StorageError("Idempotent booking vanished after a key collision")
        BOOKING_OUTCOMES.labels(outcome="replayed").inc()
        return booking

    # -- transitions --------------------------------------------------------

    def provider_snapshot(self, provider_id: UUID) -> ProviderSnapshot:
        with self._unit_of_work() as db:
            return self._cache.get(provider_id, lambda: load_provider_snapshot(db, provider_id))

    def get_booking(self, booking_id: UUID) -> Booking:
        with self._unit_of_work() as db:
            booking = db.get(Booking, booking_id)
            if booking is None:
                raise NotFoundError("Booking not found", details={"booking_id": str(booking_id)})
            return booking

    def confirm_booking(self, booking_id: UUID, *, now: datetime | None = None) -> Booking:
        """PENDING -> CONFIRMED; reserved slots become booked."""

        def apply(booking: Booking, at: datetime) -> None:
            booking.confirmed_at = at

        return self._transition(booking_id, BookingStatus.CONFIRMED, apply, now=now)

    def cancel_booking(
        self,
        booking_id: UUID,
        *,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> Booking:
        """PENDING/CONFIRMED -> CANCELLED; linked slots go back to FREE."""

        def apply(booking: Booking, at: datetime) -> None:
            booking.cancelled_at = at
            booking.cancellation_reason = reason

        return self._transition(booking_id, BookingStatus.CANCELLED, apply, now=now)

    def complete_booking(self, booking_id: UUID, *, now: datetime | None = None) -> Booking:
        """CONFIRMED -> COMPLETED; slots stay booked as history."""

        def apply(booking: Booking, at: datetime) -> None:
            booking.completed_at = at

        return self._transition(booking_id, BookingStatus.COMPLETED, apply, now=now)

    def _transition(self, booking_id, target: BookingStatus, apply, *, now=None) -> Booking:
        at = ensure_utc(now or utcnow())
        with self._unit_of_work() as db:
            booking = booking_store.get_for_update(db, booking_id)
            if not booking.can_transition_to(target):
                raise InvalidStateError(
                    f"Cannot move booking from {booking.status.value} to {target.value}",
                    details={
                        "booking_id": str(booking_id),
                        "current": booking.status.value,
                        "target": target.value,
                    },
                )
            previous = booking.status
            booking.status = target
            apply(booking, at)

        with provider_context(booking.provider_id, booking.tenant_id):
            logger.info(
                "booking status changed",
                extra={
                    "booking_id": str(booking_id),
                    "from_status": previous.value,
                    "to_status": target.value,
                },
            )
            if target != BookingStatus.COMPLETED:
                self.sync_slots_for_booking(booking_id)
        return booking

    # -- slot projection ----------------------------------------------------

    def reconcile_slots(self, booking_id: UUID) -> int:
        """Bring the slot rows covering a booking in line with its status.

        Raises on storage failures so callers (the reconcile job) can retry.
        """

        with self._unit_of_work() as db:
            booking = db.get(Booking, booking_id)
            if booking is None:
                raise NotFoundError("Booking not found", details={"booking_id": str(booking_id)})
            return self._project_slots(db, booking)

    def sync_slots_for_booking(self, booking_id: UUID) -> int:
        """Best-effort ``reconcile_slots``; failures are logged, never raised."""

        try:
            return self.reconcile_slots(booking_id)
        except (SchedulingError, SQLAlchemyError):
            SLOT_PROJECTION_FAILURES.inc()
            logger.warning(
                "slot projection failed; booking remains authoritative",
                extra={"booking_id": str(booking_id)},
                exc_info=True,
            )
            return 0

    def _project_slots(self, db: Session, booking: Booking) -> int:
        if booking.status == BookingStatus.CANCELLED:
            return slot_store.release_for_booking(db, booking.id)
        target = _SLOT_TARGET_STATUS.get(booking.status)
        if target is None:
            return 0

        covering = slot_store.find_overlapping(
            db, booking.provider_id, booking.start_time, booking.end_time
        )
        changed = 0
        for slot in covering:
            if slot.booking_id == booking.id:
                if slot.status != target:
                    slot_store.transition(db, slot.id, slot.status, target, booking.id)
                    changed += 1
            elif slot.status == SlotStatus.FREE:
                slot_store.transition(db, slot.id, SlotStatus.FREE, target, booking.id)
                changed += 1
            else:
                logger.warning(
                    "slot already taken while projecting booking",
                    extra={
                        "booking_id": str(booking.id),
                        "slot_id": str(slot.id),
                        "slot_status": slot.status.value,
                    },
                )
        if not covering:
            logger.info("no generated slots cover booking", extra={"booking_id": str(booking.id)})
        return changed
