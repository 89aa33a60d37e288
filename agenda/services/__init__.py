"""Scheduling services: time grid, slot store, generator, validator and bookings."""

from agenda.services.availability import (
    RejectionReason,
    ValidationResult,
    get_available_slots,
    validate,
)
from agenda.services.booking_manager import BookingReservationManager
from agenda.services.provider_config import (
    AvailabilityConfigCache,
    DayWindow,
    ProviderSnapshot,
    RedisAvailabilityCache,
    build_availability_cache,
    load_provider_snapshot,
)
from agenda.services.recurring import RecurringGenerationScheduler, update_provider_availability
from agenda.services.slot_generator import GenerationReport, generate_for_provider, regenerate
from agenda.services.time_grid import generate_day_boundaries

__all__ = [
    "AvailabilityConfigCache",
    "BookingReservationManager",
    "DayWindow",
    "GenerationReport",
    "ProviderSnapshot",
    "RecurringGenerationScheduler",
    "RedisAvailabilityCache",
    "RejectionReason",
    "ValidationResult",
    "build_availability_cache",
    "generate_day_boundaries",
    "generate_for_provider",
    "get_available_slots",
    "load_provider_snapshot",
    "regenerate",
    "update_provider_availability",
    "validate",
]
