"""create timetable entries and academic calendar

Revision ID: 20261016_0002
Revises: 20261016_0001
Create Date: 2026-10-16 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

revision = "20261016_0002"
down_revision = "20261016_0001"
branch_labels = None
depends_on = None


day_of_week_enum = sa.Enum(
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
    name="day_of_week",
)
entry_type_enum = sa.Enum("regular", "makeup", "extra", "exam", "event", name="entry_type")


def upgrade() -> None:
    op.create_table(
        "timetable_entries",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("batch_id", sa.String(length=36), sa.ForeignKey("batches.id"), nullable=False),
        sa.Column("faculty_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("subject_id", sa.String(length=36), sa.ForeignKey("subjects.id"), nullable=True),
        sa.Column("time_slot_id", sa.String(length=36), sa.ForeignKey("time_slots.id"), nullable=False),
        sa.Column("day_of_week", day_of_week_enum, nullable=False),
        sa.Column("occurs_on", sa.Date(), nullable=True),
        sa.Column("slot_key", sa.String(length=10), nullable=False, server_default="*"),
        sa.Column("entry_type", entry_type_enum, nullable=False, server_default="regular"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("conflict_override", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("custom_event_title", sa.String(length=200), nullable=True),
        sa.Column("created_by_id", sa.String(length=36), nullable=True),
        sa.Column("operation_id", sa.String(length=36), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "uq_timetable_entries_active_batch_slot",
        "timetable_entries",
        ["batch_id", "time_slot_id", "day_of_week", "slot_key"],
        unique=True,
        postgresql_where=sa.text("is_active"),
        sqlite_where=sa.text("is_active = 1"),
    )
    op.create_index(
        "uq_timetable_entries_active_faculty_slot",
        "timetable_entries",
        ["faculty_id", "time_slot_id", "day_of_week", "slot_key"],
        unique=True,
        postgresql_where=sa.text("is_active AND NOT conflict_override AND faculty_id IS NOT NULL"),
        sqlite_where=sa.text("is_active = 1 AND conflict_override = 0 AND faculty_id IS NOT NULL"),
    )
    op.create_index("ix_timetable_entries_batch_day", "timetable_entries", ["batch_id", "day_of_week"])
    op.create_index("ix_timetable_entries_faculty_day", "timetable_entries", ["faculty_id", "day_of_week"])
    op.create_index("ix_timetable_entries_occurs_on", "timetable_entries", ["occurs_on"])
    op.create_index("ix_timetable_entries_operation_id", "timetable_entries", ["operation_id"])

    op.create_table(
        "holidays",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("holiday_date", sa.Date(), nullable=False),
        sa.Column("department", sa.String(length=200), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_holidays_holiday_date", "holidays", ["holiday_date"])

    op.create_table(
        "exam_periods",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("department", sa.String(length=200), nullable=True),
        sa.Column("block_regular_classes", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_exam_periods_start_date", "exam_periods", ["start_date"])
    op.create_index("ix_exam_periods_end_date", "exam_periods", ["end_date"])


def downgrade() -> None:
    op.drop_index("ix_exam_periods_end_date", table_name="exam_periods")
    op.drop_index("ix_exam_periods_start_date", table_name="exam_periods")
    op.drop_table("exam_periods")
    op.drop_index("ix_holidays_holiday_date", table_name="holidays")
    op.drop_table("holidays")
    op.drop_index("ix_timetable_entries_operation_id", table_name="timetable_entries")
    op.drop_index("ix_timetable_entries_occurs_on", table_name="timetable_entries")
    op.drop_index("ix_timetable_entries_faculty_day", table_name="timetable_entries")
    op.drop_index("ix_timetable_entries_batch_day", table_name="timetable_entries")
    op.drop_index("uq_timetable_entries_active_faculty_slot", table_name="timetable_entries")
    op.drop_index("uq_timetable_entries_active_batch_slot", table_name="timetable_entries")
    op.drop_table("timetable_entries")
    entry_type_enum.drop(op.get_bind(), checkfirst=True)
    day_of_week_enum.drop(op.get_bind(), checkfirst=True)
