from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Enum, ForeignKey, Index, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from agenda.models.base import Base, TenantScopedMixin, TimestampMixin, UUIDPrimaryKeyMixin


class SlotStatus(str, enum.Enum):
    """Possible states for a schedule slot."""

    FREE = "FREE"
    RESERVED = "RESERVED"
    BOOKED = "BOOKED"
    BLOCKED = "BLOCKED"


class ScheduleSlot(Base, UUIDPrimaryKeyMixin, TenantScopedMixin, TimestampMixin):
    """Generated bookable unit ``[start_time, end_time)`` for one provider."""

    __tablename__ = "schedule_slots"
    __table_args__ = (
        UniqueConstraint("provider_id", "start_time", name="uq_schedule_slots_provider_start"),
        Index("ix_schedule_slots_provider_status_start", "provider_id", "status", "start_time"),
    )

    provider_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("providers.id", ondelete="CASCADE"), index=True
    )
    booking_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("bookings.id", ondelete="SET NULL"), nullable=True, index=True
    )
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[SlotStatus] = mapped_column(
        Enum(SlotStatus, name="schedule_slot_status"),
        default=SlotStatus.FREE,
        nullable=False,
    )
