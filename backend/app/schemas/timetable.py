from __future__ import annotations

import re
from datetime import date, datetime

from pydantic import BaseModel, Field, field_validator, model_validator

from app.models.timetable import DayOfWeek, EntryType
from app.schemas.conflict import ConflictReportOut

TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def parse_time_to_minutes(value: str) -> int:
    if not TIME_PATTERN.match(value):
        raise ValueError("Time must be in HH:MM 24-hour format")
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


class EntryCreate(BaseModel):
    batch_id: str = Field(min_length=1, max_length=36)
    faculty_id: str | None = Field(default=None, max_length=36)
    subject_id: str | None = Field(default=None, max_length=36)
    time_slot_id: str | None = Field(default=None, max_length=36)
    start_time: str | None = None
    end_time: str | None = None
    day_of_week: DayOfWeek | None = None
    occurs_on: date | None = None
    entry_type: EntryType = EntryType.regular
    notes: str | None = Field(default=None, max_length=2000)
    custom_event_title: str | None = Field(default=None, max_length=200)
    override_conflicts: bool = False

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_time_format(cls, value: str | None) -> str | None:
        if value is not None and not TIME_PATTERN.match(value):
            raise ValueError("Time must be in HH:MM 24-hour format")
        return value

    @field_validator("day_of_week", mode="before")
    @classmethod
    def normalize_day(cls, value):
        if isinstance(value, str):
            return value.strip().upper()
        return value

    @model_validator(mode="after")
    def validate_slot_and_day(self) -> "EntryCreate":
        if self.time_slot_id is None:
            if self.start_time is None or self.end_time is None:
                raise ValueError("Either time_slot_id or both start_time and end_time are required")
            if parse_time_to_minutes(self.end_time) <= parse_time_to_minutes(self.start_time):
                raise ValueError("end_time must be after start_time")
        if self.day_of_week is None and self.occurs_on is None:
            raise ValueError("Either day_of_week or occurs_on is required")
        if self.subject_id is None and self.entry_type == EntryType.regular:
            raise ValueError("Regular entries require subject_id")
        return self


class EntryUpdate(BaseModel):
    faculty_id: str | None = Field(default=None, max_length=36)
    subject_id: str | None = Field(default=None, max_length=36)
    time_slot_id: str | None = Field(default=None, max_length=36)
    start_time: str | None = None
    end_time: str | None = None
    day_of_week: DayOfWeek | None = None
    occurs_on: date | None = None
    entry_type: EntryType | None = None
    notes: str | None = Field(default=None, max_length=2000)
    custom_event_title: str | None = Field(default=None, max_length=200)
    override_conflicts: bool = False

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_time_format(cls, value: str | None) -> str | None:
        if value is not None and not TIME_PATTERN.match(value):
            raise ValueError("Time must be in HH:MM 24-hour format")
        return value

    @field_validator("day_of_week", mode="before")
    @classmethod
    def normalize_day(cls, value):
        if isinstance(value, str):
            return value.strip().upper()
        return value


class EntryOut(BaseModel):
    id: str
    batch_id: str
    faculty_id: str | None
    subject_id: str | None
    time_slot_id: str
    start_time: str
    end_time: str
    day_of_week: DayOfWeek
    occurs_on: date | None
    entry_type: EntryType
    is_active: bool
    conflict_override: bool
    notes: str | None
    custom_event_title: str | None
    operation_id: str | None
    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class EntryWriteOut(BaseModel):
    entry: EntryOut
    created: bool
    duplicate_of: str | None = None
    warnings: list[ConflictReportOut] = Field(default_factory=list)


class MergedBlockOut(BaseModel):
    start_time: datetime
    end_time: datetime
    member_entry_ids: list[str]
    subject_id: str | None
    faculty_id: str | None
    is_consecutive: bool
    duration_minutes: int

    model_config = {"from_attributes": True}


class ConflictCheckRequest(EntryCreate):
    exclude_entry_id: str | None = Field(default=None, max_length=36)
    reference_date: date | None = None
    include_time_overlaps: bool = True
    suggest_alternatives: bool = True
