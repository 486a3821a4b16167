import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, DateTime, Enum as SAEnum, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.db.base import Base


class OperationKind(str, Enum):
    import_entries = "IMPORT"
    mass_create = "MASS_CREATE"
    mass_delete = "MASS_DELETE"
    template_apply = "TEMPLATE_APPLY"
    faculty_replace = "FACULTY_REPLACE"
    reschedule = "BULK_RESCHEDULE"


class OperationStatus(str, Enum):
    pending = "PENDING"
    running = "RUNNING"
    paused = "PAUSED"
    cancelled = "CANCELLED"
    completed = "COMPLETED"
    failed = "FAILED"


TERMINAL_STATUSES = frozenset({OperationStatus.cancelled, OperationStatus.completed, OperationStatus.failed})


class LogLevel(str, Enum):
    debug = "DEBUG"
    info = "INFO"
    warn = "WARN"
    error = "ERROR"


class BulkOperation(Base):
    __tablename__ = "bulk_operations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    initiator_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    kind: Mapped[OperationKind] = mapped_column(SAEnum(OperationKind, name="operation_kind"), nullable=False)
    status: Mapped[OperationStatus] = mapped_column(
        SAEnum(OperationStatus, name="operation_status"),
        nullable=False,
        default=OperationStatus.pending,
        index=True,
    )
    total_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    processed_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    succeeded_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Persisted work queue; processed_items is the resume offset into it.
    items: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    parameters: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), onupdate=func.now())
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class OperationLogEntry(Base):
    __tablename__ = "operation_logs"
    __table_args__ = (Index("ix_operation_logs_operation_timestamp", "operation_id", "timestamp"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    operation_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("bulk_operations.id", ondelete="CASCADE"), nullable=False
    )
    level: Mapped[LogLevel] = mapped_column(SAEnum(LogLevel, name="log_level"), nullable=False, index=True)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    details: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
