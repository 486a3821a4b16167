from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import date, timedelta
from typing import Any, Iterable

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import Select, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.exceptions import ConflictError, DuplicateNoop, ResourceNotFoundError, ValidationError
from app.models.academic_calendar import ExamPeriod, Holiday
from app.models.batch import Batch, Subject
from app.models.time_slot import TimeSlot
from app.models.timetable import DayOfWeek, TimetableEntry
from app.models.user import User, UserRole
from app.schemas.timetable import EntryCreate, EntryUpdate
from app.services.conflict_detector import ConflictReport, ExamBlock, HolidayRule, detect
from app.services.intervals import DAY_ORDER, ScheduleEntry, next_occurrence, parse_clock, resolve_day, weekday_of

logger = logging.getLogger(__name__)

ALTERNATIVE_DAY_LIMIT = 3


@dataclass
class Candidate:
    entry: ScheduleEntry
    payload: EntryCreate
    time_slot: TimeSlot


@dataclass
class CandidateCheck:
    candidate_id: str
    reports: list[ConflictReport] = field(default_factory=list)
    duplicate_of: str | None = None
    checked_dates: list[date] = field(default_factory=list)

    @property
    def blocking(self) -> list[ConflictReport]:
        return [report for report in self.reports if report.blocking]

    @property
    def warnings(self) -> list[ConflictReport]:
        return [report for report in self.reports if not report.blocking]

    @property
    def has_blocking(self) -> bool:
        return bool(self.blocking)

    @property
    def overridable(self) -> bool:
        blocking = self.blocking
        return bool(blocking) and all(report.overridable for report in blocking)


def _parse_payload(payload: EntryCreate | dict[str, Any], item_index: int | None) -> EntryCreate:
    if isinstance(payload, EntryCreate):
        return payload
    if not isinstance(payload, dict):
        raise ValidationError("Entry must be an object", item_index=item_index)
    try:
        return EntryCreate.model_validate(payload)
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ())) or None
        raise ValidationError(first.get("msg", "Invalid entry"), field=location, item_index=item_index) from exc


def _resolve_slot(db: Session, payload: EntryCreate, item_index: int | None) -> TimeSlot:
    if payload.time_slot_id is not None:
        slot = db.get(TimeSlot, payload.time_slot_id)
        if slot is None or not slot.is_active:
            raise ValidationError(
                f"Unknown time slot {payload.time_slot_id}",
                field="time_slot_id",
                item_index=item_index,
            )
        return slot

    slot = db.execute(
        select(TimeSlot).where(
            TimeSlot.start_time == payload.start_time,
            TimeSlot.end_time == payload.end_time,
            TimeSlot.is_active.is_(True),
        )
    ).scalars().first()
    if slot is None:
        raise ValidationError(
            f"No time slot matches {payload.start_time}-{payload.end_time}",
            field="start_time",
            item_index=item_index,
        )
    return slot


def build_candidate(
    db: Session,
    payload: EntryCreate | dict[str, Any],
    *,
    entry_id: str | None = None,
    item_index: int | None = None,
) -> Candidate:
    """Validate a proposed entry against the catalog and normalize it for detection.

    Every failure is a ``ValidationError`` carrying the offending field and,
    for bulk items, the item index.
    """
    data = _parse_payload(payload, item_index)

    batch = db.get(Batch, data.batch_id)
    if batch is None or not batch.is_active:
        raise ValidationError(f"Unknown batch {data.batch_id}", field="batch_id", item_index=item_index)

    if data.subject_id is not None and db.get(Subject, data.subject_id) is None:
        raise ValidationError(f"Unknown subject {data.subject_id}", field="subject_id", item_index=item_index)

    if data.faculty_id is not None:
        faculty = db.get(User, data.faculty_id)
        if faculty is None or not faculty.is_active or faculty.role != UserRole.faculty:
            raise ValidationError(f"Unknown faculty {data.faculty_id}", field="faculty_id", item_index=item_index)

    slot = _resolve_slot(db, data, item_index)
    start = parse_clock(slot.start_time, field="start_time", item_index=item_index)
    end = parse_clock(slot.end_time, field="end_time", item_index=item_index)
    if end <= start:
        raise ValidationError(f"Time slot {slot.name} ends before it starts", field="end_time", item_index=item_index)

    day = data.day_of_week
    if data.occurs_on is not None:
        actual = weekday_of(data.occurs_on)
        if day is not None and day != actual:
            raise ValidationError(
                f"{data.occurs_on.isoformat()} is a {actual.value}, not a {day.value}",
                field="day_of_week",
                item_index=item_index,
            )
        day = actual

    entry = ScheduleEntry(
        id=entry_id or str(uuid.uuid4()),
        batch_id=batch.id,
        faculty_id=data.faculty_id,
        subject_id=data.subject_id,
        time_slot_id=slot.id,
        start_time=start,
        end_time=end,
        day_of_week=day,
        occurs_on=data.occurs_on,
        entry_type=data.entry_type,
        department=batch.department,
    )
    return Candidate(entry=entry, payload=data, time_slot=slot)


def _occurrence_filters(
    query: Select,
    *,
    day: DayOfWeek | None,
    on_date: date | None,
    from_date: date | None,
    exclude_ids: set[str],
) -> Select:
    query = query.where(TimetableEntry.is_active.is_(True))
    if day is not None:
        query = query.where(TimetableEntry.day_of_week == day)
    if on_date is not None:
        query = query.where(or_(TimetableEntry.occurs_on.is_(None), TimetableEntry.occurs_on == on_date))
    elif from_date is not None:
        query = query.where(or_(TimetableEntry.occurs_on.is_(None), TimetableEntry.occurs_on >= from_date))
    if exclude_ids:
        query = query.where(TimetableEntry.id.not_in(exclude_ids))
    return query


def load_entries(
    db: Session,
    *,
    day: DayOfWeek | None = None,
    on_date: date | None = None,
    from_date: date | None = None,
    batch_ids: Iterable[str] | None = None,
    faculty_ids: Iterable[str] | None = None,
    exclude_ids: Iterable[str] = (),
) -> list[ScheduleEntry]:
    """Active committed entries as detector input.

    ``batch_ids`` and ``faculty_ids`` are alternatives: an entry matching either is loaded.
    A scoped load also returns the dated entries that override a loaded recurring entry,
    so that the recurring entry drops out on those dates.
    """
    excluded = set(exclude_ids)
    filters = {"day": day, "on_date": on_date, "from_date": from_date, "exclude_ids": excluded}
    base = select(TimetableEntry, Batch.department).join(Batch, Batch.id == TimetableEntry.batch_id)
    query = _occurrence_filters(base, **filters)

    scopes = []
    batch_ids = [item for item in (batch_ids or ()) if item]
    faculty_ids = [item for item in (faculty_ids or ()) if item]
    if batch_ids:
        scopes.append(TimetableEntry.batch_id.in_(batch_ids))
    if faculty_ids:
        scopes.append(TimetableEntry.faculty_id.in_(faculty_ids))
    if scopes:
        query = query.where(or_(*scopes))

    entries = [ScheduleEntry.from_model(row, department=department) for row, department in db.execute(query)]
    if not scopes:
        return entries

    templates = {(item.batch_id, item.time_slot_id) for item in entries if item.is_recurring}
    if not templates:
        return entries
    loaded = {item.id for item in entries}
    overrides = _occurrence_filters(base, **filters).where(
        TimetableEntry.occurs_on.is_not(None),
        TimetableEntry.batch_id.in_(sorted({batch_id for batch_id, _ in templates})),
        TimetableEntry.time_slot_id.in_(sorted({slot_id for _, slot_id in templates})),
    )
    for row, department in db.execute(overrides):
        if row.id not in loaded and (row.batch_id, row.time_slot_id) in templates:
            entries.append(ScheduleEntry.from_model(row, department=department))
    return entries


def occurring_entries(
    db: Session,
    on_date: date,
    *,
    batch_id: str | None = None,
    faculty_id: str | None = None,
) -> list[ScheduleEntry]:
    """Entries that take place on ``on_date`` for the given batch or faculty, overrides applied."""
    entries = load_entries(
        db,
        day=weekday_of(on_date),
        on_date=on_date,
        batch_ids=[batch_id] if batch_id else None,
        faculty_ids=[faculty_id] if faculty_id else None,
    )
    if batch_id is None and faculty_id is None:
        return [interval.entry for interval in resolve_day(entries, on_date)]
    return [
        interval.entry
        for interval in resolve_day(entries, on_date)
        if interval.entry.batch_id == batch_id
        or (faculty_id is not None and interval.entry.faculty_id == faculty_id)
    ]


def load_calendar_rules(db: Session, dates: Iterable[date]) -> tuple[list[HolidayRule], list[ExamBlock]]:
    dates = sorted(set(dates))
    if not dates:
        return [], []
    holidays = db.execute(select(Holiday).where(Holiday.holiday_date.in_(dates))).scalars()
    periods = db.execute(
        select(ExamPeriod).where(ExamPeriod.start_date <= dates[-1], ExamPeriod.end_date >= dates[0])
    ).scalars()
    return [HolidayRule.from_model(item) for item in holidays], [ExamBlock.from_model(item) for item in periods]


def _check_dates(entry: ScheduleEntry, existing: list[ScheduleEntry], reference: date) -> list[date]:
    if entry.occurs_on is not None:
        return [entry.occurs_on]
    # A recurring entry is checked on its next occurrence and on every upcoming
    # dated entry of the same batch or faculty that falls on its weekday.
    dates = {next_occurrence(entry.day_of_week, reference)}
    for other in existing:
        if other.occurs_on is None or other.occurs_on < reference or other.day_of_week != entry.day_of_week:
            continue
        if other.batch_id == entry.batch_id or (entry.faculty_id and other.faculty_id == entry.faculty_id):
            dates.add(other.occurs_on)
    return sorted(dates)


def check_candidate(
    db: Session,
    candidate: Candidate,
    *,
    reference: date | None = None,
    include_time_overlaps: bool = True,
    exclude_ids: Iterable[str] = (),
    pending: Iterable[ScheduleEntry] = (),
) -> CandidateCheck:
    """Conflicts the candidate would introduce, oriented to the candidate.

    ``pending`` holds entries accepted earlier in the same dry run; they are
    treated as committed. A pending entry that moves a stored one needs the
    stored id in ``exclude_ids``.
    """
    entry = candidate.entry
    reference = reference or date.today()
    excluded = {entry.id, *exclude_ids}

    existing = load_entries(
        db,
        day=entry.day_of_week,
        on_date=entry.occurs_on,
        from_date=None if entry.occurs_on is not None else reference,
        batch_ids=None if include_time_overlaps else [entry.batch_id],
        faculty_ids=None if include_time_overlaps else [entry.faculty_id],
        exclude_ids=excluded,
    )
    existing.extend(item for item in pending if item.id != entry.id and item.day_of_week == entry.day_of_week)

    for other in existing:
        if other.is_duplicate_of(entry):
            return CandidateCheck(candidate_id=entry.id, duplicate_of=other.id)

    dates = _check_dates(entry, existing, reference)
    holidays, exam_periods = load_calendar_rules(db, dates)
    settings = get_settings()

    passes = [(on_date, existing) for on_date in dates]
    if entry.is_recurring:
        # The weekly pattern itself, so a one-off override on the next occurrence cannot hide a clash.
        templates = [item for item in existing if item.is_recurring]
        passes.insert(0, (next_occurrence(entry.day_of_week, reference), templates))

    reports: list[ConflictReport] = []
    seen: set[tuple] = set()
    for on_date, pool in passes:
        found = detect(
            [entry, *pool],
            on_date,
            holidays=holidays,
            exam_periods=exam_periods,
            focus_ids=[entry.id],
            include_time_overlaps=include_time_overlaps,
            module_min_minutes=settings.module_min_minutes,
        )
        for report in found:
            oriented = report.oriented_to(entry.id)
            key = (oriented.conflict_type, oriented.conflicting_entry_ids)
            if key in seen:
                continue
            seen.add(key)
            reports.append(oriented)

    return CandidateCheck(candidate_id=entry.id, reports=reports, checked_dates=dates)


def enforce_check(check: CandidateCheck, *, override: bool, item_index: int | None) -> None:
    if not check.has_blocking:
        return
    if override and check.overridable:
        return
    first = check.blocking[0]
    raise ConflictError(first.message, check.blocking, item_index=item_index)


def _flush_entry(db: Session, entry: TimetableEntry, item_index: int | None) -> None:
    try:
        db.flush()
    except IntegrityError as exc:
        logger.info("Store rejected timetable entry %s: %s", entry.id, exc.orig)
        raise ConflictError(
            "Entry collides with an active entry committed concurrently",
            [],
            item_index=item_index,
        ) from exc


def create_entry(
    db: Session,
    payload: EntryCreate | dict[str, Any],
    *,
    created_by_id: str | None = None,
    operation_id: str | None = None,
    item_index: int | None = None,
    include_time_overlaps: bool = True,
    reference: date | None = None,
) -> tuple[TimetableEntry, CandidateCheck]:
    candidate = build_candidate(db, payload, item_index=item_index)
    check = check_candidate(db, candidate, reference=reference, include_time_overlaps=include_time_overlaps)
    if check.duplicate_of is not None:
        raise DuplicateNoop(check.duplicate_of)
    override = candidate.payload.override_conflicts
    enforce_check(check, override=override, item_index=item_index)

    data = candidate.payload
    entry = TimetableEntry(
        id=candidate.entry.id,
        batch_id=candidate.entry.batch_id,
        faculty_id=data.faculty_id,
        subject_id=data.subject_id,
        time_slot_id=candidate.time_slot.id,
        day_of_week=candidate.entry.day_of_week,
        occurs_on=data.occurs_on,
        entry_type=data.entry_type,
        is_active=True,
        conflict_override=override and check.has_blocking,
        notes=data.notes,
        custom_event_title=data.custom_event_title,
        created_by_id=created_by_id,
        operation_id=operation_id,
    )
    db.add(entry)
    _flush_entry(db, entry, item_index)
    return entry, check


def get_active_entry(db: Session, entry_id: str) -> TimetableEntry:
    entry = db.get(TimetableEntry, entry_id)
    if entry is None or not entry.is_active:
        raise ResourceNotFoundError("TimetableEntry", entry_id)
    return entry


def check_update(
    db: Session,
    entry_id: str,
    payload: EntryUpdate,
    *,
    item_index: int | None = None,
    reference: date | None = None,
    include_time_overlaps: bool = True,
    exclude_ids: Iterable[str] = (),
    pending: Iterable[ScheduleEntry] = (),
) -> tuple[TimetableEntry, Candidate, CandidateCheck]:
    """Validate and conflict-check an edit without writing it."""
    entry = get_active_entry(db, entry_id)
    changes = payload.model_dump(exclude_unset=True)
    changes.pop("override_conflicts", None)

    merged: dict[str, Any] = {
        "batch_id": entry.batch_id,
        "faculty_id": entry.faculty_id,
        "subject_id": entry.subject_id,
        "time_slot_id": entry.time_slot_id,
        "day_of_week": entry.day_of_week,
        "occurs_on": entry.occurs_on,
        "entry_type": entry.entry_type,
        "notes": entry.notes,
        "custom_event_title": entry.custom_event_title,
        "override_conflicts": payload.override_conflicts,
    }
    if "occurs_on" in changes and "day_of_week" not in changes:
        merged["day_of_week"] = None
    if ("start_time" in changes or "end_time" in changes) and "time_slot_id" not in changes:
        merged["time_slot_id"] = None
    merged.update(changes)

    candidate = build_candidate(db, merged, entry_id=entry.id, item_index=item_index)
    check = check_candidate(
        db,
        candidate,
        reference=reference,
        include_time_overlaps=include_time_overlaps,
        exclude_ids=exclude_ids,
        pending=pending,
    )
    if check.duplicate_of is not None:
        raise ValidationError(
            f"Update would duplicate active entry {check.duplicate_of}",
            item_index=item_index,
            details={"existing_entry_id": check.duplicate_of},
        )
    enforce_check(check, override=payload.override_conflicts, item_index=item_index)
    return entry, candidate, check


def update_entry(
    db: Session,
    entry_id: str,
    payload: EntryUpdate,
    *,
    item_index: int | None = None,
    reference: date | None = None,
    include_time_overlaps: bool = True,
) -> tuple[TimetableEntry, CandidateCheck]:
    entry, candidate, check = check_update(
        db,
        entry_id,
        payload,
        item_index=item_index,
        reference=reference,
        include_time_overlaps=include_time_overlaps,
    )

    data = candidate.payload
    entry.faculty_id = data.faculty_id
    entry.subject_id = data.subject_id
    entry.time_slot_id = candidate.time_slot.id
    entry.time_slot = candidate.time_slot
    entry.day_of_week = candidate.entry.day_of_week
    entry.occurs_on = data.occurs_on
    entry.entry_type = data.entry_type
    entry.notes = data.notes
    entry.custom_event_title = data.custom_event_title
    entry.conflict_override = payload.override_conflicts and check.has_blocking
    _flush_entry(db, entry, item_index)
    return entry, check


def deactivate_entry(db: Session, entry_id: str) -> tuple[TimetableEntry, bool]:
    """Soft-delete an entry; returns whether anything changed."""
    entry = db.get(TimetableEntry, entry_id)
    if entry is None:
        raise ResourceNotFoundError("TimetableEntry", entry_id)
    if not entry.is_active:
        return entry, False
    entry.is_active = False
    db.flush()
    return entry, True


def _shift_to_day(occurs_on: date | None, day: DayOfWeek) -> date | None:
    if occurs_on is None:
        return None
    monday = occurs_on - timedelta(days=occurs_on.weekday())
    return monday + timedelta(days=DAY_ORDER.index(day))


def suggest_alternatives(
    db: Session,
    candidate: Candidate,
    *,
    reference: date | None = None,
    day_limit: int = ALTERNATIVE_DAY_LIMIT,
) -> list[dict[str, Any]]:
    """Free slots for the candidate's batch and faculty.

    Other slots on the same day come first; only when none is free are up to
    ``day_limit`` other teaching days searched.
    """
    entry = candidate.entry
    reference = reference or date.today()
    slots = list(
        db.execute(
            select(TimeSlot).where(TimeSlot.is_active.is_(True)).order_by(TimeSlot.sort_order, TimeSlot.start_time)
        ).scalars()
    )
    existing = load_entries(db, batch_ids=[entry.batch_id], faculty_ids=[entry.faculty_id], exclude_ids=[entry.id])
    settings = get_settings()

    def free_on(day: DayOfWeek) -> list[dict[str, Any]]:
        occurs_on = _shift_to_day(entry.occurs_on, day)
        on_date = occurs_on or next_occurrence(day, reference)
        options = []
        for slot in slots:
            if day == entry.day_of_week and slot.id == entry.time_slot_id:
                continue
            variant = replace(
                entry,
                time_slot_id=slot.id,
                start_time=parse_clock(slot.start_time),
                end_time=parse_clock(slot.end_time),
                day_of_week=day,
                occurs_on=occurs_on,
            )
            reports = detect(
                [variant, *existing],
                on_date,
                focus_ids=[variant.id],
                include_time_overlaps=False,
                module_min_minutes=settings.module_min_minutes,
            )
            if any(report.blocking for report in reports):
                continue
            options.append(
                {
                    "time_slot_id": slot.id,
                    "name": slot.name,
                    "start_time": slot.start_time,
                    "end_time": slot.end_time,
                    "day_of_week": day,
                    "occurs_on": occurs_on,
                }
            )
        return options

    same_day = free_on(entry.day_of_week)
    if same_day:
        return same_day

    alternatives: list[dict[str, Any]] = []
    searched = 0
    for day in DAY_ORDER:
        if day == entry.day_of_week or day == DayOfWeek.sunday:
            continue
        options = free_on(day)
        if options:
            alternatives.extend(options)
            searched += 1
        if searched >= day_limit:
            break
    return alternatives
