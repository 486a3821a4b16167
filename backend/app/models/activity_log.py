import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, DateTime, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.db.base import Base


class ActivityAction(str, Enum):
    entry_create = "timetable.entry.create"
    entry_update = "timetable.entry.update"
    entry_deactivate = "timetable.entry.deactivate"
    timeslot_create = "catalog.timeslot.create"
    batch_create = "catalog.batch.create"
    subject_create = "catalog.subject.create"
    holiday_create = "calendar.holiday.create"
    exam_period_create = "calendar.exam_period.create"
    operation_submit = "operation.submit"
    operation_start = "operation.start"
    operation_pause = "operation.pause"
    operation_resume = "operation.resume"
    operation_cancel = "operation.cancel"
    operation_annotate = "operation.annotate"


class ActivityLog(Base):
    """Who changed the timetable, its catalog or a bulk operation, and when."""

    __tablename__ = "activity_logs"
    __table_args__ = (Index("ix_activity_logs_entity", "entity_type", "entity_id"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    # Set when the change was made by, or made to, a bulk operation.
    operation_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("bulk_operations.id", ondelete="SET NULL"), nullable=True, index=True
    )
    details: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
