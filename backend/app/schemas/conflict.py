from datetime import date

from pydantic import BaseModel, Field

from app.models.timetable import DayOfWeek
from app.services.conflict_detector import ConflictReport, ConflictType, Severity


class ConflictReportOut(BaseModel):
    conflict_type: ConflictType
    severity: Severity
    subject_entry_id: str
    conflicting_entry_ids: list[str]
    message: str
    occurs_on: date | None = None
    details: dict = Field(default_factory=dict)

    @classmethod
    def from_report(cls, report: ConflictReport) -> "ConflictReportOut":
        return cls.model_validate(report.to_dict())


class ConflictSummary(BaseModel):
    total: int
    blocking: int
    by_severity: dict[str, int]
    by_type: dict[str, int]


class AlternativeSlotOut(BaseModel):
    time_slot_id: str
    name: str
    start_time: str
    end_time: str
    day_of_week: DayOfWeek
    occurs_on: date | None = None


class ConflictCheckOut(BaseModel):
    candidate_id: str
    conflicts: list[ConflictReportOut]
    effective_severity: Severity | None
    summary: ConflictSummary
    has_blocking: bool
    overridable: bool
    duplicate_of: str | None = None
    checked_dates: list[date] = Field(default_factory=list)
    alternatives: list[AlternativeSlotOut] = Field(default_factory=list)


class ConflictDetectRequest(BaseModel):
    on: date
    batch_id: str | None = Field(default=None, max_length=36)
    faculty_id: str | None = Field(default=None, max_length=36)
    include_time_overlaps: bool = True


class ConflictDetectOut(BaseModel):
    on: date
    conflicts: list[ConflictReportOut]
    summary: ConflictSummary
    severity_by_entry: dict[str, Severity]
