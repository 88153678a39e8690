"""Booking holds

Revision ID: 0002_booking_holds
Revises: 0001_scheduling_baseline
Create Date: 2026-10-19

Adds short-lived slot holds taken while a client completes checkout.
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0002_booking_holds"
down_revision = "0001_scheduling_baseline"
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "booking_holds",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("tenant_id", sa.Uuid(), nullable=False),
        sa.Column("staff_id", sa.Uuid(), nullable=False),
        sa.Column(
            "service_id",
            sa.Uuid(),
            sa.ForeignKey("salon_services.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("client_id", sa.Uuid(), nullable=True),
        sa.Column("session_id", sa.String(100), nullable=False),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("duration_minutes > 0", name="ck_booking_hold_duration"),
    )
    op.create_index(
        "idx_booking_holds_staff_time", "booking_holds", ["tenant_id", "staff_id", "scheduled_at"]
    )
    op.create_index("idx_booking_holds_session", "booking_holds", ["tenant_id", "session_id"])
    op.create_index("idx_booking_holds_expires", "booking_holds", ["expires_at"])


def downgrade():
    op.drop_index("idx_booking_holds_expires", table_name="booking_holds")
    op.drop_index("idx_booking_holds_session", table_name="booking_holds")
    op.drop_index("idx_booking_holds_staff_time", table_name="booking_holds")
    op.drop_table("booking_holds")
