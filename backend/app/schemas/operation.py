from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator

from app.models.bulk_operation import LogLevel, OperationKind, OperationStatus
from app.schemas.conflict import ConflictReportOut


class TemplateApplyParams(BaseModel):
    template_batch_id: str = Field(min_length=1, max_length=36)
    target_batch_ids: list[str] = Field(min_length=1, max_length=200)
    preserve_faculty: bool = True


class FacultyReplaceParams(BaseModel):
    current_faculty_id: str = Field(min_length=1, max_length=36)
    new_faculty_id: str = Field(min_length=1, max_length=36)
    batch_ids: list[str] = Field(default_factory=list, max_length=200)
    subject_ids: list[str] = Field(default_factory=list, max_length=200)
    # Only dated entries on or after this day are handed over.
    effective_date: date | None = None


class RescheduleParams(BaseModel):
    source_start: date
    source_end: date
    target_start: date
    target_end: date | None = None
    batch_ids: list[str] = Field(default_factory=list, max_length=200)
    move_type: Literal["shift", "map", "redistribute"] = "shift"
    exclude_weekends: bool = True


class OperationCreate(BaseModel):
    kind: OperationKind
    # Items stay untyped so a malformed item fails on its own instead of rejecting the request.
    items: list[dict[str, Any]] = Field(default_factory=list)
    template: TemplateApplyParams | None = None
    faculty_replace: FacultyReplaceParams | None = None
    reschedule: RescheduleParams | None = None
    include_time_overlaps: bool = True
    dry_run: bool = False
    auto_start: bool = True

    @model_validator(mode="after")
    def validate_payload(self) -> "OperationCreate":
        derived = {
            OperationKind.template_apply: ("template", self.template),
            OperationKind.faculty_replace: ("faculty_replace", self.faculty_replace),
            OperationKind.reschedule: ("reschedule", self.reschedule),
        }
        if self.kind in derived:
            name, params = derived[self.kind]
            if params is None:
                raise ValueError(f"{self.kind.value} operations require {name} parameters")
            if self.items:
                raise ValueError(f"{self.kind.value} operations derive their items from {name}")
        elif not self.items:
            raise ValueError("items must not be empty")
        return self


class OperationProgress(BaseModel):
    percent: float
    estimated_seconds_remaining: float | None = None
    last_message: str | None = None


class OperationOut(BaseModel):
    id: str
    initiator_id: str
    kind: OperationKind
    status: OperationStatus
    total_items: int
    processed_items: int
    succeeded_items: int
    failed_items: int
    parameters: dict
    error_message: str | None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    progress: OperationProgress | None = None

    model_config = {"from_attributes": True}


class OperationAction(BaseModel):
    action: Literal["pause", "resume"]


class ItemPreviewOut(BaseModel):
    item_index: int
    outcome: Literal["created", "updated", "duplicate", "deactivated", "noop", "failed"]
    message: str
    entry_id: str | None = None
    conflicts: list[ConflictReportOut] = Field(default_factory=list)


class OperationPreviewOut(BaseModel):
    kind: OperationKind
    dry_run: Literal[True] = True
    total_items: int
    would_succeed: int
    would_fail: int
    items: list[ItemPreviewOut]


class OperationLogOut(BaseModel):
    id: str
    operation_id: str
    level: LogLevel
    message: str
    details: dict | None
    timestamp: datetime

    model_config = {"from_attributes": True}


class OperationLogPage(BaseModel):
    entries: list[OperationLogOut]
    total: int
    limit: int
    offset: int
    has_more: bool

    model_config = {"from_attributes": True}


class OperationLogCreate(BaseModel):
    level: LogLevel = LogLevel.info
    message: str = Field(min_length=1, max_length=2000)
    details: dict | None = None
