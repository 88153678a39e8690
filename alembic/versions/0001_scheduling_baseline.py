"""Scheduling baseline

Revision ID: 0001_scheduling_baseline
Revises:
Create Date: 2026-10-19

Creates tenant schedule settings, staff schedule rules, schedule exceptions,
services with staff assignments, treatment series and bookings.
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_scheduling_baseline"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "tenant_schedule_settings",
        sa.Column("tenant_id", sa.Uuid(), primary_key=True),
        sa.Column("timezone", sa.String(50), nullable=False),
        sa.Column("business_hours", sa.JSON(), nullable=False),
        sa.Column("booking_settings", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "staff_schedule_rules",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("tenant_id", sa.Uuid(), nullable=False),
        sa.Column("staff_id", sa.Uuid(), nullable=False),
        sa.Column("day_of_week", sa.Integer(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("day_of_week >= 0 AND day_of_week <= 6", name="ck_staff_rule_day_of_week"),
    )
    op.create_index("idx_staff_schedule_rules_staff", "staff_schedule_rules", ["tenant_id", "staff_id"])

    op.create_table(
        "schedule_exceptions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("tenant_id", sa.Uuid(), nullable=False),
        sa.Column("staff_id", sa.Uuid(), nullable=True),
        sa.Column("exception_date", sa.Date(), nullable=False),
        sa.Column("kind", sa.String(20), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=True),
        sa.Column("end_time", sa.Time(), nullable=True),
        sa.Column("reason", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "idx_schedule_exceptions_lookup",
        "schedule_exceptions",
        ["tenant_id", "staff_id", "exception_date"],
    )

    op.create_table(
        "salon_services",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("tenant_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("price", sa.Numeric(10, 2), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("idx_salon_services_tenant", "salon_services", ["tenant_id", "is_active"])

    op.create_table(
        "staff_service_assignments",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("tenant_id", sa.Uuid(), nullable=False),
        sa.Column("staff_id", sa.Uuid(), nullable=False),
        sa.Column(
            "service_id",
            sa.Uuid(),
            sa.ForeignKey("salon_services.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("custom_duration_minutes", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.UniqueConstraint("staff_id", "service_id", name="uq_staff_service"),
    )
    op.create_index(
        "idx_staff_service_assignments_service",
        "staff_service_assignments",
        ["tenant_id", "service_id"],
    )

    op.create_table(
        "treatment_series",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("tenant_id", sa.Uuid(), nullable=False),
        sa.Column("client_id", sa.Uuid(), nullable=False),
        sa.Column(
            "service_id",
            sa.Uuid(),
            sa.ForeignKey("salon_services.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("staff_id", sa.Uuid(), nullable=True),
        sa.Column("total_sessions", sa.Integer(), nullable=False),
        sa.Column("interval_days", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("package_discount", sa.Numeric(5, 2), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("paused_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("total_sessions >= 1", name="ck_series_total_sessions"),
        sa.CheckConstraint("interval_days >= 1", name="ck_series_interval_days"),
    )
    op.create_index("idx_treatment_series_tenant_status", "treatment_series", ["tenant_id", "status"])
    op.create_index("idx_treatment_series_client", "treatment_series", ["tenant_id", "client_id"])

    op.create_table(
        "bookings",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("tenant_id", sa.Uuid(), nullable=False),
        sa.Column("staff_id", sa.Uuid(), nullable=False),
        sa.Column("client_id", sa.Uuid(), nullable=False),
        sa.Column(
            "service_id",
            sa.Uuid(),
            sa.ForeignKey("salon_services.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column(
            "series_id",
            sa.Uuid(),
            sa.ForeignKey("treatment_series.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("series_session_number", sa.Integer(), nullable=True),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("idempotency_key", sa.String(64), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("cancellation_fee_percentage", sa.Numeric(5, 2), nullable=True),
        sa.Column("cancellation_fee_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("idempotency_key", name="uq_booking_idempotency"),
        sa.CheckConstraint("duration_minutes > 0", name="ck_booking_duration"),
    )
    op.create_index("idx_bookings_staff_time", "bookings", ["tenant_id", "staff_id", "scheduled_at"])
    op.create_index("idx_bookings_client_time", "bookings", ["tenant_id", "client_id", "scheduled_at"])
    op.create_index("idx_bookings_series", "bookings", ["series_id"])


def downgrade():
    op.drop_table("bookings")
    op.drop_table("treatment_series")
    op.drop_table("staff_service_assignments")
    op.drop_table("salon_services")
    op.drop_table("schedule_exceptions")
    op.drop_table("staff_schedule_rules")
    op.drop_table("tenant_schedule_settings")
