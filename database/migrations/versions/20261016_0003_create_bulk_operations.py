"""create bulk operations and operation logs

Revision ID: 20261016_0003
Revises: 20261016_0002
Create Date: 2026-10-16 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

revision = "20261016_0003"
down_revision = "20261016_0002"
branch_labels = None
depends_on = None


operation_kind_enum = sa.Enum(
    "import_entries",
    "mass_create",
    "mass_delete",
    "template_apply",
    "faculty_replace",
    "reschedule",
    name="operation_kind",
)
operation_status_enum = sa.Enum(
    "pending",
    "running",
    "paused",
    "cancelled",
    "completed",
    "failed",
    name="operation_status",
)
log_level_enum = sa.Enum("debug", "info", "warn", "error", name="log_level")


def upgrade() -> None:
    op.create_table(
        "bulk_operations",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("initiator_id", sa.String(length=36), nullable=False),
        sa.Column("kind", operation_kind_enum, nullable=False),
        sa.Column("status", operation_status_enum, nullable=False, server_default="pending"),
        sa.Column("total_items", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("processed_items", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("succeeded_items", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("failed_items", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("items", sa.JSON(), nullable=False),
        sa.Column("parameters", sa.JSON(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_bulk_operations_initiator_id", "bulk_operations", ["initiator_id"])
    op.create_index("ix_bulk_operations_status", "bulk_operations", ["status"])

    op.create_table(
        "operation_logs",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column(
            "operation_id",
            sa.String(length=36),
            sa.ForeignKey("bulk_operations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("level", log_level_enum, nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_operation_logs_level", "operation_logs", ["level"])
    op.create_index("ix_operation_logs_operation_timestamp", "operation_logs", ["operation_id", "timestamp"])


def downgrade() -> None:
    op.drop_index("ix_operation_logs_operation_timestamp", table_name="operation_logs")
    op.drop_index("ix_operation_logs_level", table_name="operation_logs")
    op.drop_table("operation_logs")
    op.drop_index("ix_bulk_operations_status", table_name="bulk_operations")
    op.drop_index("ix_bulk_operations_initiator_id", table_name="bulk_operations")
    op.drop_table("bulk_operations")
    log_level_enum.drop(op.get_bind(), checkfirst=True)
    operation_status_enum.drop(op.get_bind(), checkfirst=True)
    operation_kind_enum.drop(op.get_bind(), checkfirst=True)
