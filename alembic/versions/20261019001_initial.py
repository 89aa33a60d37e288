"""Initial scheduling schema."""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "20261019001"
down_revision = None
branch_labels = None
depends_on = None


slot_status_enum = postgresql.ENUM(
    "FREE", "RESERVED", "BOOKED", "BLOCKED", name="schedule_slot_status", create_type=False
)
booking_status_enum = postgresql.ENUM(
    "PENDING", "CONFIRMED", "COMPLETED", "CANCELLED", name="booking_status", create_type=False
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False
        ),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    slot_status_enum.create(bind, checkfirst=True)
    booking_status_enum.create(bind, checkfirst=True)

    op.create_table(
        "providers",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        *_timestamps(),
        sa.Column("tenant_id", sa.Uuid(), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column(
            "timezone", sa.String(length=64), nullable=False, server_default=sa.text("'UTC'")
        ),
        sa.Column(
            "weekly_availability",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column(
            "slot_interval_minutes", sa.Integer(), nullable=False, server_default=sa.text("15")
        ),
        sa.Column("max_advance_days", sa.Integer(), nullable=False, server_default=sa.text("60")),
        sa.Column("auto_confirm", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.CheckConstraint(
            "slot_interval_minutes BETWEEN 5 AND 120", name="ck_providers_slot_interval_range"
        ),
        sa.CheckConstraint(
            "max_advance_days BETWEEN 1 AND 365", name="ck_providers_max_advance_days_range"
        ),
    )
    op.create_index("ix_providers_tenant_id", "providers", ["tenant_id"], unique=False)

    op.create_table(
        "clients",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        *_timestamps(),
        sa.Column("tenant_id", sa.Uuid(), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("phone_number", sa.String(length=32), nullable=True),
    )
    op.create_index("ix_clients_tenant_id", "clients", ["tenant_id"], unique=False)

    op.create_table(
        "services",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        *_timestamps(),
        sa.Column("tenant_id", sa.Uuid(), nullable=False),
        sa.Column("provider_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("price_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.CheckConstraint("duration_minutes > 0", name="ck_services_duration_positive"),
        sa.CheckConstraint("price_cents >= 0", name="ck_services_price_non_negative"),
        sa.ForeignKeyConstraint(["provider_id"], ["providers.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_services_tenant_id", "services", ["tenant_id"], unique=False)
    op.create_index("ix_services_provider_id", "services", ["provider_id"], unique=False)

    op.create_table(
        "bookings",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        *_timestamps(),
        sa.Column("tenant_id", sa.Uuid(), nullable=False),
        sa.Column("provider_id", sa.Uuid(), nullable=False),
        sa.Column("client_id", sa.Uuid(), nullable=False),
        sa.Column("service_id", sa.Uuid(), nullable=True),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", booking_status_enum, nullable=False, server_default="PENDING"),
        sa.Column("idempotency_key", sa.String(length=128), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.String(length=255), nullable=True),
        sa.CheckConstraint("end_time > start_time", name="ck_bookings_time_order"),
        sa.ForeignKeyConstraint(["provider_id"], ["providers.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["client_id"], ["clients.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["service_id"], ["services.id"], ondelete="SET NULL"),
        sa.UniqueConstraint(
            "provider_id", "idempotency_key", name="uq_bookings_provider_idempotency_key"
        ),
    )
    op.create_index("ix_bookings_tenant_id", "bookings", ["tenant_id"], unique=False)
    op.create_index("ix_bookings_provider_id", "bookings", ["provider_id"], unique=False)
    op.create_index("ix_bookings_client_id", "bookings", ["client_id"], unique=False)
    op.create_index(
        "ix_bookings_provider_status_start",
        "bookings",
        ["provider_id", "status", "start_time"],
        unique=False,
    )

    op.create_table(
        "schedule_slots",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        *_timestamps(),
        sa.Column("tenant_id", sa.Uuid(), nullable=False),
        sa.Column("provider_id", sa.Uuid(), nullable=False),
        sa.Column("booking_id", sa.Uuid(), nullable=True),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", slot_status_enum, nullable=False, server_default="FREE"),
        sa.CheckConstraint("end_time > start_time", name="ck_schedule_slots_time_order"),
        sa.ForeignKeyConstraint(["provider_id"], ["providers.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["booking_id"], ["bookings.id"], ondelete="SET NULL"),
        sa.UniqueConstraint(
            "provider_id", "start_time", name="uq_schedule_slots_provider_start"
        ),
    )
    op.create_index("ix_schedule_slots_tenant_id", "schedule_slots", ["tenant_id"], unique=False)
    op.create_index(
        "ix_schedule_slots_provider_id", "schedule_slots", ["provider_id"], unique=False
    )
    op.create_index(
        "ix_schedule_slots_booking_id", "schedule_slots", ["booking_id"], unique=False
    )
    op.create_index(
        "ix_schedule_slots_provider_status_start",
        "schedule_slots",
        ["provider_id", "status", "start_time"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_schedule_slots_provider_status_start", table_name="schedule_slots")
    op.drop_index("ix_schedule_slots_booking_id", table_name="schedule_slots")
    op.drop_index("ix_schedule_slots_provider_id", table_name="schedule_slots")
    op.drop_index("ix_schedule_slots_tenant_id", table_name="schedule_slots")
    op.drop_table("schedule_slots")

    op.drop_index("ix_bookings_provider_status_start", table_name="bookings")
    op.drop_index("ix_bookings_client_id", table_name="bookings")
    op.drop_index("ix_bookings_provider_id", table_name="bookings")
    op.drop_index("ix_bookings_tenant_id", table_name="bookings")
    op.drop_table("bookings")

    op.drop_index("ix_services_provider_id", table_name="services")
    op.drop_index("ix_services_tenant_id", table_name="services")
    op.drop_table("services")

    op.drop_index("ix_clients_tenant_id", table_name="clients")
    op.drop_table("clients")

    op.drop_index("ix_providers_tenant_id", table_name="providers")
    op.drop_table("providers")

    bind = op.get_bind()
    booking_status_enum.drop(bind, checkfirst=True)
    slot_status_enum.drop(bind, checkfirst=True)
