from datetime import date
import logging

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.api.deps import get_current_user, get_db, require_roles
from app.core.config import get_settings
from app.core.exceptions import DuplicateNoop
from app.models.activity_log import ActivityAction
from app.models.batch import Batch
from app.models.timetable import DayOfWeek, TimetableEntry
from app.models.user import User, UserRole
from app.schemas.conflict import (
    AlternativeSlotOut,
    ConflictCheckOut,
    ConflictDetectOut,
    ConflictDetectRequest,
    ConflictReportOut,
    ConflictSummary,
)
from app.schemas.timetable import (
    ConflictCheckRequest,
    EntryCreate,
    EntryOut,
    EntryUpdate,
    EntryWriteOut,
    MergedBlockOut,
)
from app.services import scheduling
from app.services.audit import log_activity
from app.services.conflict_detector import detect, effective_severity, severity_by_entry, summarize
from app.services.event_merger import merge_day
from app.services.intervals import weekday_of

router = APIRouter()
logger = logging.getLogger(__name__)

scheduler_roles = require_roles(UserRole.admin, UserRole.scheduler)


@router.post("/conflicts/check", response_model=ConflictCheckOut)
def check_conflicts(
    payload: ConflictCheckRequest,
    current_user: User = Depends(scheduler_roles),
    db: Session = Depends(get_db),
) -> ConflictCheckOut:
    candidate = scheduling.build_candidate(db, payload, entry_id=payload.exclude_entry_id)
    check = scheduling.check_candidate(
        db,
        candidate,
        reference=payload.reference_date,
        include_time_overlaps=payload.include_time_overlaps,
        exclude_ids=[payload.exclude_entry_id] if payload.exclude_entry_id else (),
    )
    alternatives = []
    if payload.suggest_alternatives and check.has_blocking:
        alternatives = [
            AlternativeSlotOut(**item)
            for item in scheduling.suggest_alternatives(db, candidate, reference=payload.reference_date)
        ]
    return ConflictCheckOut(
        candidate_id=check.candidate_id,
        conflicts=[ConflictReportOut.from_report(report) for report in check.reports],
        effective_severity=effective_severity(check.candidate_id, check.reports),
        summary=ConflictSummary(**summarize(check.reports)),
        has_blocking=check.has_blocking,
        overridable=check.overridable,
        duplicate_of=check.duplicate_of,
        checked_dates=check.checked_dates,
        alternatives=alternatives,
    )


@router.post("/conflicts/detect", response_model=ConflictDetectOut)
def detect_conflicts(
    payload: ConflictDetectRequest,
    current_user: User = Depends(scheduler_roles),
    db: Session = Depends(get_db),
) -> ConflictDetectOut:
    entries = scheduling.occurring_entries(
        db, payload.on, batch_id=payload.batch_id, faculty_id=payload.faculty_id
    )
    holidays, exam_periods = scheduling.load_calendar_rules(db, [payload.on])
    reports = detect(
        entries,
        payload.on,
        holidays=holidays,
        exam_periods=exam_periods,
        include_time_overlaps=payload.include_time_overlaps,
        module_min_minutes=get_settings().module_min_minutes,
    )
    return ConflictDetectOut(
        on=payload.on,
        conflicts=[ConflictReportOut.from_report(report) for report in reports],
        summary=ConflictSummary(**summarize(reports)),
        severity_by_entry=severity_by_entry(reports),
    )


@router.get("/entries", response_model=list[EntryOut])
def list_entries(
    batch_id: str | None = Query(default=None, max_length=36),
    faculty_id: str | None = Query(default=None, max_length=36),
    day_of_week: DayOfWeek | None = Query(default=None),
    on: date | None = Query(default=None),
    include_inactive: bool = Query(default=False),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[EntryOut]:
    query = select(TimetableEntry)
    if not include_inactive:
        query = query.where(TimetableEntry.is_active.is_(True))
    if current_user.role == UserRole.faculty:
        query = query.where(TimetableEntry.faculty_id == current_user.id)
    if batch_id is not None:
        query = query.where(TimetableEntry.batch_id == batch_id)
    if faculty_id is not None:
        query = query.where(TimetableEntry.faculty_id == faculty_id)
    if on is not None:
        day_of_week = weekday_of(on)
        query = query.where((TimetableEntry.occurs_on.is_(None)) | (TimetableEntry.occurs_on == on))
    if day_of_week is not None:
        query = query.where(TimetableEntry.day_of_week == day_of_week)
    query = query.order_by(TimetableEntry.day_of_week, TimetableEntry.time_slot_id, TimetableEntry.batch_id)
    return list(db.execute(query).scalars())


@router.post("/entries", response_model=EntryWriteOut, status_code=status.HTTP_201_CREATED)
def create_entry(
    payload: EntryCreate,
    response: Response,
    current_user: User = Depends(scheduler_roles),
    db: Session = Depends(get_db),
) -> EntryWriteOut:
    try:
        entry, check = scheduling.create_entry(db, payload, created_by_id=current_user.id)
    except DuplicateNoop as exc:
        db.rollback()
        response.status_code = status.HTTP_200_OK
        existing = db.get(TimetableEntry, exc.existing_entry_id)
        return EntryWriteOut(entry=EntryOut.model_validate(existing), created=False, duplicate_of=existing.id)

    log_activity(
        db,
        user=current_user,
        action=ActivityAction.entry_create,
        entity_type="timetable_entry",
        entity_id=entry.id,
        details={"conflict_override": entry.conflict_override, "warnings": len(check.warnings)},
    )
    db.commit()
    db.refresh(entry)
    if entry.conflict_override:
        logger.warning("Entry %s stored with overridden conflicts by %s", entry.id, current_user.id)
    return EntryWriteOut(
        entry=EntryOut.model_validate(entry),
        created=True,
        warnings=[ConflictReportOut.from_report(report) for report in check.warnings],
    )


@router.get("/entries/{entry_id}", response_model=EntryOut)
def get_entry(
    entry_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> EntryOut:
    return scheduling.get_active_entry(db, entry_id)


@router.put("/entries/{entry_id}", response_model=EntryWriteOut)
def update_entry(
    entry_id: str,
    payload: EntryUpdate,
    current_user: User = Depends(scheduler_roles),
    db: Session = Depends(get_db),
) -> EntryWriteOut:
    entry, check = scheduling.update_entry(db, entry_id, payload)
    log_activity(
        db,
        user=current_user,
        action=ActivityAction.entry_update,
        entity_type="timetable_entry",
        entity_id=entry.id,
        details={"fields": sorted(payload.model_dump(exclude_unset=True))},
    )
    db.commit()
    db.refresh(entry)
    return EntryWriteOut(
        entry=EntryOut.model_validate(entry),
        created=False,
        warnings=[ConflictReportOut.from_report(report) for report in check.warnings],
    )


@router.delete("/entries/{entry_id}")
def delete_entry(
    entry_id: str,
    current_user: User = Depends(scheduler_roles),
    db: Session = Depends(get_db),
) -> dict:
    entry, changed = scheduling.deactivate_entry(db, entry_id)
    if changed:
        log_activity(
            db,
            user=current_user,
            action=ActivityAction.entry_deactivate,
            entity_type="timetable_entry",
            entity_id=entry.id,
        )
    db.commit()
    return {"success": True, "deactivated": changed}


@router.get("/blocks", response_model=list[MergedBlockOut])
def list_blocks(
    on: date = Query(...),
    batch_id: str | None = Query(default=None, max_length=36),
    faculty_id: str | None = Query(default=None, max_length=36),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[MergedBlockOut]:
    if batch_id is not None and db.get(Batch, batch_id) is None:
        return []
    entries = scheduling.load_entries(
        db,
        day=weekday_of(on),
        on_date=on,
        batch_ids=[batch_id] if batch_id else None,
        faculty_ids=[faculty_id] if faculty_id else None,
    )
    return merge_day(entries, on, batch_id=batch_id, faculty_id=faculty_id)
