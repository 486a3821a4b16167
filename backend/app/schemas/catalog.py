from datetime import datetime

from pydantic import BaseModel, Field, field_validator, model_validator

from app.schemas.timetable import TIME_PATTERN, parse_time_to_minutes


class TimeSlotCreate(BaseModel):
    name: str = Field(min_length=1, max_length=50)
    start_time: str
    end_time: str
    sort_order: int = Field(default=0, ge=0, le=1000)

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_time_format(cls, value: str) -> str:
        if not TIME_PATTERN.match(value):
            raise ValueError("Time must be in HH:MM 24-hour format")
        return value

    @model_validator(mode="after")
    def validate_order(self) -> "TimeSlotCreate":
        if parse_time_to_minutes(self.end_time) <= parse_time_to_minutes(self.start_time):
            raise ValueError("end_time must be after start_time")
        return self

    @property
    def duration_minutes(self) -> int:
        return parse_time_to_minutes(self.end_time) - parse_time_to_minutes(self.start_time)


class TimeSlotOut(BaseModel):
    id: str
    name: str
    start_time: str
    end_time: str
    duration_minutes: int
    sort_order: int
    is_active: bool

    model_config = {"from_attributes": True}


class BatchCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    department: str | None = Field(default=None, max_length=200)

    @field_validator("name")
    @classmethod
    def normalize_name(cls, value: str) -> str:
        trimmed = value.strip()
        if not trimmed:
            raise ValueError("Name cannot be empty")
        return trimmed

    @field_validator("department")
    @classmethod
    def normalize_department(cls, value: str | None) -> str | None:
        if value is None:
            return None
        trimmed = value.strip()
        return trimmed or None


class BatchOut(BaseModel):
    id: str
    name: str
    department: str | None
    is_active: bool
    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class SubjectCreate(BaseModel):
    code: str = Field(min_length=1, max_length=50)
    name: str = Field(min_length=1, max_length=200)
    batch_id: str | None = Field(default=None, max_length=36)

    @field_validator("code")
    @classmethod
    def normalize_code(cls, value: str) -> str:
        return value.strip().upper()


class SubjectOut(BaseModel):
    id: str
    code: str
    name: str
    batch_id: str | None
    is_active: bool

    model_config = {"from_attributes": True}
