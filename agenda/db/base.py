"""Import SQLAlchemy models for Alembic's autogenerate feature."""

from agenda.models.base import Base
from agenda.models import (  # noqa: F401
    Booking,
    Client,
    Provider,
    ScheduleSlot,
    Service,
)

__all__ = [
    "Base",
    "Booking",
    "Client",
    "Provider",
    "ScheduleSlot",
    "Service",
]
