"""SQLAlchemy models for the scheduling engine."""

from agenda.models.booking import (
    ACTIVE_BOOKING_STATUSES,
    BOOKING_TRANSITIONS,
    Booking,
    BookingStatus,
)
from agenda.models.client import Client
from agenda.models.provider import Provider
from agenda.models.schedule_slot import ScheduleSlot, SlotStatus
from agenda.models.service import Service

__all__ = [
    "ACTIVE_BOOKING_STATUSES",
    "BOOKING_TRANSITIONS",
    "Booking",
    "BookingStatus",
    "Client",
    "Provider",
    "ScheduleSlot",
    "Service",
    "SlotStatus",
]
