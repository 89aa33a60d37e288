from __future__ import annotations

from typing import Any

from sqlalchemy import JSON, Boolean, Integer, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from agenda.models.base import Base, TenantScopedMixin, TimestampMixin, UUIDPrimaryKeyMixin


class Provider(Base, UUIDPrimaryKeyMixin, TenantScopedMixin, TimestampMixin):
    """Service provider whose calendar is scheduled.

    ``weekly_availability`` holds ``{"weekday", "open", "close"}`` entries with
    weekday 0 = Sunday; a missing weekday means the provider is closed.
    """

    __tablename__ = "providers"

    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="UTC")
    weekly_availability: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=list
    )
    slot_interval_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=15)
    max_advance_days: Mapped[int] = mapped_column(Integer, nullable=False, default=60)
    auto_confirm: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
