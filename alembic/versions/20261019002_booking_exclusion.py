"""Forbid overlapping active bookings per provider at the database level."""

from __future__ import annotations

from alembic import op

# revision identifiers, used by Alembic.
revision = "20261019002"
down_revision = "20261019001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS btree_gist")
    op.execute(
        """
        ALTER TABLE bookings
          ADD CONSTRAINT bookings_no_overlap_per_provider
          EXCLUDE USING gist (
            provider_id WITH =,
            tstzrange(start_time, end_time, '[)') WITH &&
          )
          WHERE (status IN ('PENDING', 'CONFIRMED'))
        """
    )


def downgrade() -> None:
    op.execute(
        "ALTER TABLE bookings DROP CONSTRAINT IF EXISTS bookings_no_overlap_per_provider"
    )
