# backend/alembic/versions/001_tutoring_core_schema.py
"""Tutoring core schema - packages, ledger, sessions, bookings, waitlist

Revision ID: 001_tutoring_core_schema
Revises:
Create Date: 2026-10-17 00:00:00.000000

Creates the tables behind the credit ledger and booking engine:
teacher, teacher_availability, session, package_product, package_allowance,
student_package, package_use, booking and waitlist.

Balances are derived from package_use on every read; no table stores a
remaining-credits counter. Waitlist rows are hard-deleted, every other
table soft-deletes through deleted_at.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001_tutoring_core_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps(updated: bool = True):
    columns = [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        )
    ]
    if updated:
        columns.append(sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True))
    return columns


def upgrade() -> None:
    """Create tutoring core tables."""
    op.create_table(
        "teacher",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("display_name", sa.String(255), nullable=False),
        sa.Column("tier", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("tier >= 0", name="ck_teacher_tier_non_negative"),
    )

    op.create_table(
        "teacher_availability",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("teacher_id", sa.String(26), nullable=False),
        sa.Column("kind", sa.String(20), nullable=False),
        # ONE_OFF / BLACKOUT
        sa.Column("start_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_at", sa.DateTime(timezone=True), nullable=True),
        # RECURRING, weekday 0 = Sunday
        sa.Column("weekday", sa.Integer(), nullable=True),
        sa.Column("start_time_minutes", sa.Integer(), nullable=True),
        sa.Column("end_time_minutes", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(updated=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["teacher_id"], ["teacher.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("kind IN ('ONE_OFF', 'RECURRING', 'BLACKOUT')", name="ck_teacher_availability_kind"),
        sa.CheckConstraint(
            "weekday IS NULL OR (weekday >= 0 AND weekday <= 6)",
            name="ck_teacher_availability_weekday",
        ),
        sa.CheckConstraint(
            "start_time_minutes IS NULL OR (start_time_minutes >= 0 AND end_time_minutes <= 1440 "
            "AND start_time_minutes < end_time_minutes)",
            name="ck_teacher_availability_minutes",
        ),
    )
    op.create_index("idx_teacher_availability_teacher_kind", "teacher_availability", ["teacher_id", "kind"])

    op.create_table(
        "session",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("teacher_id", sa.String(26), nullable=False),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("title", sa.String(255), nullable=True),
        sa.Column("start_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("capacity_max", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("status", sa.String(20), nullable=False, server_default="SCHEDULED"),
        *_timestamps(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["teacher_id"], ["teacher.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("capacity_max >= 1", name="ck_session_capacity_positive"),
        sa.CheckConstraint("end_at > start_at", name="ck_session_window"),
    )
    op.create_index("idx_session_teacher_window", "session", ["teacher_id", "start_at", "end_at"])

    op.create_table(
        "package_product",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("validity_days", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(updated=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "package_allowance",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("product_id", sa.String(26), nullable=False),
        sa.Column("service_type", sa.String(20), nullable=False),
        sa.Column("teacher_tier_floor", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("credits", sa.Integer(), nullable=False),
        sa.Column("credit_unit_minutes", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(["product_id"], ["package_product.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("product_id", "service_type", name="uq_package_allowance_product_service_type"),
        sa.CheckConstraint("credits > 0", name="ck_package_allowance_credits_positive"),
        sa.CheckConstraint("teacher_tier_floor >= 0", name="ck_package_allowance_tier_floor"),
        sa.CheckConstraint("credit_unit_minutes IN (15, 30, 45, 60)", name="ck_package_allowance_unit_minutes"),
    )

    op.create_table(
        "student_package",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("student_id", sa.String(26), nullable=False),
        sa.Column("product_id", sa.String(26), nullable=False),
        sa.Column("package_name", sa.String(255), nullable=False),
        sa.Column("purchased_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("source_payment_id", sa.String(255), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        *_timestamps(updated=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["product_id"], ["package_product.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_student_package_student_id", "student_package", ["student_id"])

    op.create_table(
        "package_use",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("student_package_id", sa.String(26), nullable=False),
        # NULL on legacy rows, attributed by service_type
        sa.Column("allowance_id", sa.String(26), nullable=True),
        sa.Column("session_id", sa.String(26), nullable=False),
        # No FK: booking.package_use_id already points the other way
        sa.Column("booking_id", sa.String(26), nullable=True),
        sa.Column("service_type", sa.String(20), nullable=True),
        sa.Column("credits_used", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("used_by", sa.String(26), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["student_package_id"], ["student_package.id"]),
        sa.ForeignKeyConstraint(["allowance_id"], ["package_allowance.id"]),
        sa.ForeignKeyConstraint(["session_id"], ["session.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("credits_used >= 1", name="ck_package_use_credits_used"),
    )
    op.create_index("idx_package_use_package_allowance", "package_use", ["student_package_id", "allowance_id"])
    op.create_index("ix_package_use_booking_id", "package_use", ["booking_id"])

    op.create_table(
        "booking",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("session_id", sa.String(26), nullable=False),
        sa.Column("student_id", sa.String(26), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("student_package_id", sa.String(26), nullable=True),
        sa.Column("package_use_id", sa.String(26), nullable=True),
        sa.Column("credits_cost", sa.Integer(), nullable=True),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("rescheduled_count", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.ForeignKeyConstraint(["session_id"], ["session.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["student_package_id"], ["student_package.id"]),
        sa.ForeignKeyConstraint(["package_use_id"], ["package_use.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("session_id", "student_id", name="uq_booking_session_student"),
    )
    op.create_index("ix_booking_student_id", "booking", ["student_id"])

    op.create_table(
        "waitlist",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("session_id", sa.String(26), nullable=False),
        sa.Column("student_id", sa.String(26), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("notified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notification_expires_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(["session_id"], ["session.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("session_id", "student_id", name="uq_waitlist_session_student"),
        sa.CheckConstraint("position >= 1", name="ck_waitlist_position_positive"),
    )
    op.create_index("idx_waitlist_session_position", "waitlist", ["session_id", "position"])


def downgrade() -> None:
    """Drop tutoring core tables."""
    op.drop_index("idx_waitlist_session_position", table_name="waitlist")
    op.drop_table("waitlist")

    op.drop_index("ix_booking_student_id", table_name="booking")
    op.drop_table("booking")

    op.drop_index("ix_package_use_booking_id", table_name="package_use")
    op.drop_index("idx_package_use_package_allowance", table_name="package_use")
    op.drop_table("package_use")

    op.drop_index("ix_student_package_student_id", table_name="student_package")
    op.drop_table("student_package")

    op.drop_table("package_allowance")
    op.drop_table("package_product")

    op.drop_index("idx_session_teacher_window", table_name="session")
    op.drop_table("session")

    op.drop_index("idx_teacher_availability_teacher_kind", table_name="teacher_availability")
    op.drop_table("teacher_availability")

    op.drop_table("teacher")
