"""Booking legality checks and the read-only availability query.

``validate`` is pure: it only looks at the provider snapshot and the clock.
``get_available_slots`` combines it with the slot projection and the
authoritative bookings table.
"""

from __future__ import annotations

import enum
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from sqlalchemy.orm import Session

from agenda.core.exceptions import ConfigurationError, ValidationError
from agenda.models import ScheduleSlot, Service, SlotStatus
from agenda.models.base import utcnow
from agenda.services import booking_store, slot_store
from agenda.services.provider_config import ProviderSnapshot
from agenda.services.scheduling import AvailableSlot, ensure_utc
from agenda.services.time_grid import local_day_bounds, local_to_utc, local_weekday


class RejectionReason(str, enum.Enum):
    """Why a requested start time cannot be booked."""

    PAST = "PAST"
    DAY_CLOSED = "DAY_CLOSED"
    OUTSIDE_HOURS = "OUTSIDE_HOURS"
    NOT_ALIGNED = "NOT_ALIGNED"


_REASON_MESSAGES: dict[RejectionReason, str] = {
    RejectionReason.PAST: "Bookings must start in the future",
    RejectionReason.DAY_CLOSED: "The provider does not take bookings on this day",
    RejectionReason.OUTSIDE_HOURS: "The requested time is outside business hours",
    RejectionReason.NOT_ALIGNED: "The requested time does not match the booking interval",
}


@dataclass(frozen=True)
class ValidationResult:
    ok: bool
    reason: RejectionReason | None = None
    message: str | None = None

    @classmethod
    def accept(cls) -> ValidationResult:
        return cls(ok=True)

    @classmethod
    def reject(cls, reason: RejectionReason, message: str | None = None) -> ValidationResult:
        return cls(ok=False, reason=reason, message=message or _REASON_MESSAGES[reason])

    def raise_for_reason(self) -> None:
        if not self.ok and self.reason is not None:
            raise ValidationError(self.reason, self.message or _REASON_MESSAGES[self.reason])


def validate(
    provider: ProviderSnapshot,
    start: datetime,
    duration_minutes: int,
    *,
    now: datetime | None = None,
) -> ValidationResult:
    """Check a candidate booking against the provider's configuration.

    Checks run in order and stop at the first failure: future start, open
    weekday, inside opening hours, aligned to the slot interval.
    """

    if duration_minutes <= 0:
        raise ConfigurationError(f"Service duration must be positive, got {duration_minutes}")

    start = ensure_utc(start)
    now = ensure_utc(now or utcnow())
    if start <= now:
        return ValidationResult.reject(RejectionReason.PAST)

    tz = provider.tz
    local_start = start.astimezone(tz)
    window = provider.window_for(local_weekday(local_start.date()))
    if window is None:
        return ValidationResult.reject(RejectionReason.DAY_CLOSED)
    open_minutes = window.open_minutes
    close_minutes = window.close_minutes
    if open_minutes >= close_minutes:
        return ValidationResult.reject(RejectionReason.DAY_CLOSED)

    local_end = (start + timedelta(minutes=duration_minutes)).astimezone(tz)
    start_minutes = local_start.hour * 60 + local_start.minute
    end_minutes = local_end.hour * 60 + local_end.minute
    if (
        local_end.date() != local_start.date()
        or start_minutes < open_minutes
        or start_minutes >= close_minutes
        or end_minutes > close_minutes
    ):
        return ValidationResult.reject(
            RejectionReason.OUTSIDE_HOURS,
            f"Requested time is outside business hours ({window.open} - {window.close})",
        )

    if (
        local_start.second
        or local_start.microsecond
        or (start_minutes - open_minutes) % provider.interval_minutes
    ):
        return ValidationResult.reject(
            RejectionReason.NOT_ALIGNED,
            f"Start time must fall on a {provider.interval_minutes}-minute boundary "
            f"from {window.open}",
        )

    if local_to_utc(local_start.date(), start_minutes, tz) != start:
        return ValidationResult.reject(
            RejectionReason.NOT_ALIGNED,
            "Start time is the repeated hour of a daylight-saving change",
        )

    return ValidationResult.accept()


def _covered_by_free_slots(
    slots: Sequence[ScheduleSlot], start: datetime, end: datetime
) -> bool:
    cursor = start
    for slot in slots:
        slot_start = ensure_utc(slot.start_time)
        slot_end = ensure_utc(slot.end_time)
        if slot_end <= cursor:
            continue
        if slot_start > cursor or slot.status != SlotStatus.FREE:
            return False
        cursor = slot_end
        if cursor >= end:
            return True
    return False


def get_available_slots(
    db: Session,
    provider: ProviderSnapshot,
    service: Service,
    local_date: date,
    *,
    now: datetime | None = None,
) -> list[AvailableSlot]:
    """Bookable starts for ``service`` on ``local_date`` in the provider's timezone."""

    now = ensure_utc(now or utcnow())
    duration = timedelta(minutes=service.duration_minutes)
    day_start, day_end = local_day_bounds(local_date, provider.tz)

    slots = slot_store.find_by_provider_and_range(db, provider.id, day_start, day_end)
    bookings = booking_store.find_overlapping_active(db, provider.id, day_start, day_end)

    available: list[AvailableSlot] = []
    for slot in slots:
        if slot.status != SlotStatus.FREE:
            continue
        start = ensure_utc(slot.start_time)
        end = start + duration
        if not validate(provider, start, service.duration_minutes, now=now).ok:
            continue
        if not _covered_by_free_slots(slots, start, end):
            continue
        if any(
            ensure_utc(booking.start_time) < end and ensure_utc(booking.end_time) > start
            for booking in bookings
        ):
            continue
        available.append(AvailableSlot(start_utc=start, end_utc=end))
    return available
