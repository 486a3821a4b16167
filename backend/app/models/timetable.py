import uuid
from datetime import date, datetime
from enum import Enum

from sqlalchemy import Date, DateTime, Enum as SAEnum, ForeignKey, Index, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates
from sqlalchemy.sql import func

from app.db.base import Base
from app.models.time_slot import TimeSlot

RECURRING_SLOT_KEY = "*"


class DayOfWeek(str, Enum):
    monday = "MONDAY"
    tuesday = "TUESDAY"
    wednesday = "WEDNESDAY"
    thursday = "THURSDAY"
    friday = "FRIDAY"
    saturday = "SATURDAY"
    sunday = "SUNDAY"


class EntryType(str, Enum):
    regular = "REGULAR"
    makeup = "MAKEUP"
    extra = "EXTRA"
    exam = "EXAM"
    event = "EVENT"


def slot_key_for(occurs_on: date | None) -> str:
    return occurs_on.isoformat() if occurs_on is not None else RECURRING_SLOT_KEY


class TimetableEntry(Base):
    __tablename__ = "timetable_entries"
    __table_args__ = (
        # Store-level backstop against concurrent double-booking across operations.
        Index(
            "uq_timetable_entries_active_batch_slot",
            "batch_id",
            "time_slot_id",
            "day_of_week",
            "slot_key",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
        Index(
            "uq_timetable_entries_active_faculty_slot",
            "faculty_id",
            "time_slot_id",
            "day_of_week",
            "slot_key",
            unique=True,
            postgresql_where=text("is_active AND NOT conflict_override AND faculty_id IS NOT NULL"),
            sqlite_where=text("is_active = 1 AND conflict_override = 0 AND faculty_id IS NOT NULL"),
        ),
        Index("ix_timetable_entries_batch_day", "batch_id", "day_of_week"),
        Index("ix_timetable_entries_faculty_day", "faculty_id", "day_of_week"),
        Index("ix_timetable_entries_occurs_on", "occurs_on"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    batch_id: Mapped[str] = mapped_column(String(36), ForeignKey("batches.id"), nullable=False)
    faculty_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("users.id"), nullable=True)
    subject_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("subjects.id"), nullable=True)
    time_slot_id: Mapped[str] = mapped_column(String(36), ForeignKey("time_slots.id"), nullable=False)
    day_of_week: Mapped[DayOfWeek] = mapped_column(SAEnum(DayOfWeek, name="day_of_week"), nullable=False)
    occurs_on: Mapped[date | None] = mapped_column(Date, nullable=True)
    slot_key: Mapped[str] = mapped_column(String(10), nullable=False, default=RECURRING_SLOT_KEY)
    entry_type: Mapped[EntryType] = mapped_column(
        SAEnum(EntryType, name="entry_type"),
        nullable=False,
        default=EntryType.regular,
    )
    is_active: Mapped[bool] = mapped_column(nullable=False, default=True)
    conflict_override: Mapped[bool] = mapped_column(nullable=False, default=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    custom_event_title: Mapped[str | None] = mapped_column(String(200), nullable=True)
    created_by_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    operation_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    time_slot: Mapped[TimeSlot] = relationship(lazy="joined")

    @validates("occurs_on")
    def _sync_slot_key(self, _key: str, value: date | None) -> date | None:
        self.slot_key = slot_key_for(value)
        return value

    @property
    def start_time(self) -> str:
        return self.time_slot.start_time

    @property
    def end_time(self) -> str:
        return self.time_slot.end_time
