"""Shared helpers for instants and JSON views of scheduling entities."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any
from uuid import UUID
from zoneinfo import ZoneInfo

from agenda.models import Booking, ScheduleSlot


def ensure_utc(value: datetime) -> datetime:
    """Coerce a datetime into UTC timezone-aware form."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _optional_utc(value: datetime | None) -> str | None:
    return ensure_utc(value).isoformat() if value else None


@dataclass(frozen=True)
class AvailableSlot:
    """Bookable start for a given service, sized to the service duration."""

    start_utc: datetime
    end_utc: datetime

    def as_dict(self, tz: ZoneInfo) -> dict[str, str]:
        """Convert the slot into JSON-friendly values."""

        return {
            "start_ts": self.start_utc.isoformat(),
            "end_ts": self.end_utc.isoformat(),
            "start_local": self.start_utc.astimezone(tz).isoformat(),
            "end_local": self.end_utc.astimezone(tz).isoformat(),
        }


def serialize_slot(slot: ScheduleSlot, *, tz: ZoneInfo) -> dict[str, Any]:
    start = ensure_utc(slot.start_time)
    end = ensure_utc(slot.end_time)
    return {
        "slot_id": str(slot.id),
        "provider_id": str(slot.provider_id),
        "booking_id": str(slot.booking_id) if slot.booking_id else None,
        "start_ts": start.isoformat(),
        "end_ts": end.isoformat(),
        "start_local": start.astimezone(tz).isoformat(),
        "end_local": end.astimezone(tz).isoformat(),
        "status": slot.status.value,
    }


def serialize_booking(booking: Booking, *, tz: ZoneInfo) -> dict[str, Any]:
    """Return a JSON-friendly representation of a booking."""

    start = ensure_utc(booking.start_time)
    end = ensure_utc(booking.end_time)
    return {
        "id": str(booking.id),
        "status": booking.status.value,
        "provider_id": str(booking.provider_id),
        "client_id": str(booking.client_id),
        "service_id": str(booking.service_id) if booking.service_id else None,
        "start_ts": start.isoformat(),
        "end_ts": end.isoformat(),
        "start_local": start.astimezone(tz).isoformat(),
        "end_local": end.astimezone(tz).isoformat(),
        "idempotency_key": booking.idempotency_key,
        "notes": booking.notes,
        "confirmed_at": _optional_utc(booking.confirmed_at),
        "cancelled_at": _optional_utc(booking.cancelled_at),
        "completed_at": _optional_utc(booking.completed_at),
        "cancellation_reason": booking.cancellation_reason,
    }


def as_uuid(value: UUID | str) -> UUID:
    return value if isinstance(value, UUID) else UUID(str(value))
