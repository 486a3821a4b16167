from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Iterable

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.exceptions import (
    ConflictError,
    CoordinatorFatalError,
    DuplicateNoop,
    InvalidTransitionError,
    ResourceNotFoundError,
    ValidationError,
)
from app.models.activity_log import ActivityAction
from app.models.batch import Batch
from app.models.bulk_operation import TERMINAL_STATUSES, BulkOperation, LogLevel, OperationKind, OperationStatus
from app.models.timetable import TimetableEntry
from app.models.user import User, UserRole
from app.schemas.operation import FacultyReplaceParams, RescheduleParams, TemplateApplyParams
from app.schemas.timetable import EntryUpdate
from app.services import scheduling
from app.services.audit import log_operation_activity
from app.services.authorization import ensure_admin, ensure_can_manage, is_admin
from app.services.conflict_detector import ConflictReport
from app.services.intervals import DAY_ORDER, ScheduleEntry
from app.services.operation_log import LogPage, OperationLog, as_utc, operation_log

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]

ACTIVE_STATUSES = (OperationStatus.pending, OperationStatus.running, OperationStatus.paused)
MAX_HISTORY_LIMIT = 100
UPDATE_KINDS = (OperationKind.faculty_replace, OperationKind.reschedule)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ItemOutcome:
    item_index: int
    outcome: str
    message: str
    entry_id: str | None = None
    conflicts: list[ConflictReport] = field(default_factory=list)
    warnings: list[ConflictReport] = field(default_factory=list)
    error: dict[str, Any] | None = None

    @property
    def succeeded(self) -> bool:
        return self.outcome != "failed"

    def log_details(self) -> dict[str, Any]:
        details: dict[str, Any] = {
            "item_index": self.item_index,
            "item_number": self.item_index + 1,
            "outcome": self.outcome,
        }
        if self.entry_id is not None:
            details["entry_id"] = self.entry_id
        if self.conflicts:
            details["conflicts"] = [report.to_dict() for report in self.conflicts]
        if self.warnings:
            details["warnings"] = [report.to_dict() for report in self.warnings]
        if self.error:
            details["error"] = self.error
        return details


@dataclass
class OperationPreview:
    kind: OperationKind
    items: list[ItemOutcome]

    @property
    def would_succeed(self) -> int:
        return sum(1 for item in self.items if item.succeeded)

    @property
    def would_fail(self) -> int:
        return len(self.items) - self.would_succeed


def _failure(item_index: int, exc: ValidationError | ConflictError) -> ItemOutcome:
    if isinstance(exc, ConflictError):
        return ItemOutcome(
            item_index=item_index,
            outcome="failed",
            message=f"Item {item_index + 1} conflicts: {exc.message}",
            conflicts=exc.reports,
            error={"overridable": exc.overridable},
        )
    return ItemOutcome(
        item_index=item_index,
        outcome="failed",
        message=f"Item {item_index + 1} rejected: {exc.message}",
        error=dict(exc.details),
    )


def _target_entry_id(item: dict[str, Any], item_index: int) -> str:
    entry_id = item.get("entry_id") if isinstance(item, dict) else None
    if not isinstance(entry_id, str) or not entry_id:
        raise ValidationError("entry_id is required", field="entry_id", item_index=item_index)
    return entry_id


def _update_target(db: Session, item: dict[str, Any], item_index: int) -> tuple[str, EntryUpdate]:
    entry_id = _target_entry_id(item, item_index)
    changes = item.get("changes")
    if not isinstance(changes, dict) or not changes:
        raise ValidationError("changes must be a non-empty object", field="changes", item_index=item_index)
    try:
        payload = EntryUpdate.model_validate(changes)
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in ("changes", *first.get("loc", ())))
        raise ValidationError(first.get("msg", "Invalid changes"), field=location, item_index=item_index) from exc
    entry = db.get(TimetableEntry, entry_id)
    if entry is None or not entry.is_active:
        raise ValidationError(f"No active timetable entry {entry_id}", field="entry_id", item_index=item_index)
    return entry_id, payload


def _annotated(note: str, notes: str | None) -> str:
    return f"{note} - {notes}" if notes else note


def _entry_order(row: TimetableEntry) -> tuple:
    return (
        row.occurs_on or date.min,
        DAY_ORDER.index(row.day_of_week),
        row.time_slot.sort_order,
        row.time_slot.start_time,
    )


def reschedule_target(source: date, params: RescheduleParams, target_end: date) -> date:
    """Where an entry dated ``source`` lands in the target range."""
    offset = (source - params.source_start).days
    source_days = (params.source_end - params.source_start).days
    target_days = (target_end - params.target_start).days
    if params.move_type == "shift":
        target = params.target_start + timedelta(days=offset)
    elif params.move_type == "map":
        share = offset / source_days if source_days else 0.0
        target = params.target_start + timedelta(days=int(share * target_days))
    else:
        target = params.target_start + timedelta(days=offset * (target_days + 1) // (source_days + 1))
    if params.exclude_weekends:
        while target.weekday() >= 5:
            target += timedelta(days=1)
    return target


class OperationCoordinator:
    """Owns the lifecycle of bulk operations.

    Every status change is a compare-and-set on the persisted status followed
    by a milestone log entry in the same transaction. Pause, resume and
    cancel are plain status writes; a runner observes them only between
    items.
    """

    def __init__(self, log: OperationLog | None = None) -> None:
        self.log = log or operation_log
        self._registry_lock = threading.Lock()
        self._runners: set[str] = set()

    def is_running(self, operation_id: str) -> bool:
        with self._registry_lock:
            return operation_id in self._runners

    def get(self, db: Session, operation_id: str) -> BulkOperation:
        operation = db.get(BulkOperation, operation_id)
        if operation is None:
            raise ResourceNotFoundError("BulkOperation", operation_id)
        return operation

    def _reload(self, db: Session, operation_id: str) -> BulkOperation:
        operation = db.execute(
            select(BulkOperation).where(BulkOperation.id == operation_id).execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if operation is None:
            raise CoordinatorFatalError(f"Operation {operation_id} disappeared", {"operation_id": operation_id})
        return operation

    # Submission

    def _check_items(self, items: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
        items = list(items)
        if not items:
            raise ValidationError("Operation has no items", field="items")
        limit = get_settings().operation_max_items
        if len(items) > limit:
            raise ValidationError(f"Operation exceeds the limit of {limit} items", field="items")
        return items

    def expand_template(self, db: Session, template: TemplateApplyParams) -> list[dict[str, Any]]:
        """Copy the active recurring entries of the template batch onto each target batch."""
        source = db.get(Batch, template.template_batch_id)
        if source is None:
            raise ValidationError(
                f"Unknown template batch {template.template_batch_id}",
                field="template.template_batch_id",
            )
        if source.id in template.target_batch_ids:
            raise ValidationError("Template batch cannot be its own target", field="template.target_batch_ids")

        rows = db.execute(
            select(TimetableEntry).where(
                TimetableEntry.batch_id == source.id,
                TimetableEntry.is_active.is_(True),
                TimetableEntry.occurs_on.is_(None),
            )
        ).scalars().all()
        if not rows:
            raise ValidationError(
                f"Template batch {source.name} has no active recurring entries",
                field="template.template_batch_id",
            )
        rows = sorted(rows, key=_entry_order)

        items: list[dict[str, Any]] = []
        for target_id in template.target_batch_ids:
            for row in rows:
                items.append(
                    {
                        "batch_id": target_id,
                        "subject_id": row.subject_id,
                        "faculty_id": row.faculty_id if template.preserve_faculty else None,
                        "time_slot_id": row.time_slot_id,
                        "day_of_week": row.day_of_week.value,
                        "entry_type": row.entry_type.value,
                        "notes": row.notes,
                        "custom_event_title": row.custom_event_title,
                    }
                )
        return items

    def _faculty_member(self, db: Session, user_id: str, field_name: str) -> User:
        member = db.get(User, user_id)
        if member is None or not member.is_active or member.role != UserRole.faculty:
            raise ValidationError(f"Unknown faculty {user_id}", field=f"faculty_replace.{field_name}")
        return member

    def expand_faculty_replace(self, db: Session, params: FacultyReplaceParams) -> list[dict[str, Any]]:
        """Hand the matching active entries of one faculty member over to another."""
        current = self._faculty_member(db, params.current_faculty_id, "current_faculty_id")
        replacement = self._faculty_member(db, params.new_faculty_id, "new_faculty_id")
        if current.id == replacement.id:
            raise ValidationError("Replacement faculty must differ", field="faculty_replace.new_faculty_id")

        query = select(TimetableEntry).where(
            TimetableEntry.faculty_id == current.id,
            TimetableEntry.is_active.is_(True),
        )
        if params.batch_ids:
            query = query.where(TimetableEntry.batch_id.in_(params.batch_ids))
        if params.subject_ids:
            query = query.where(TimetableEntry.subject_id.in_(params.subject_ids))
        if params.effective_date is not None:
            query = query.where(TimetableEntry.occurs_on >= params.effective_date)
        rows = db.execute(query).scalars().all()
        if not rows:
            raise ValidationError(f"No active entries match faculty {current.name}", field="faculty_replace")

        note = f"Faculty changed from {current.name} to {replacement.name}"
        return [
            {
                "entry_id": row.id,
                "changes": {"faculty_id": replacement.id, "notes": _annotated(note, row.notes)},
            }
            for row in sorted(rows, key=_entry_order)
        ]

    def expand_reschedule(self, db: Session, params: RescheduleParams) -> list[dict[str, Any]]:
        """Move the dated entries of a source date range into a target range."""
        if params.source_end < params.source_start:
            raise ValidationError("source_end must not precede source_start", field="reschedule.source_end")
        target_end = params.target_end or params.target_start + (params.source_end - params.source_start)
        if target_end < params.target_start:
            raise ValidationError("target_end must not precede target_start", field="reschedule.target_end")

        query = select(TimetableEntry).where(
            TimetableEntry.is_active.is_(True),
            TimetableEntry.occurs_on >= params.source_start,
            TimetableEntry.occurs_on <= params.source_end,
        )
        if params.batch_ids:
            query = query.where(TimetableEntry.batch_id.in_(params.batch_ids))
        rows = db.execute(query).scalars().all()
        if not rows:
            raise ValidationError("No dated entries fall in the source range", field="reschedule")

        items: list[dict[str, Any]] = []
        for row in sorted(rows, key=_entry_order):
            target = reschedule_target(row.occurs_on, params, target_end)
            note = f"Rescheduled from {row.occurs_on.isoformat()} to {target.isoformat()}"
            items.append(
                {
                    "entry_id": row.id,
                    "moved_from": row.occurs_on.isoformat(),
                    "changes": {"occurs_on": target.isoformat(), "notes": _annotated(note, row.notes)},
                }
            )
        return items

    def _derive_items(
        self,
        db: Session,
        kind: OperationKind,
        items: Iterable[dict[str, Any]],
        *,
        template: TemplateApplyParams | None,
        faculty_replace: FacultyReplaceParams | None,
        reschedule: RescheduleParams | None,
    ) -> tuple[list[dict[str, Any]], dict[str, Any]]:
        """Items for the operation plus the parameters they were derived from."""
        if kind == OperationKind.template_apply:
            if template is None:
                raise ValidationError("TEMPLATE_APPLY operations require template parameters", field="template")
            return self.expand_template(db, template), {"template": template.model_dump()}
        if kind == OperationKind.faculty_replace:
            if faculty_replace is None:
                raise ValidationError(
                    "FACULTY_REPLACE operations require faculty_replace parameters", field="faculty_replace"
                )
            return self.expand_faculty_replace(db, faculty_replace), {
                "faculty_replace": faculty_replace.model_dump(mode="json")
            }
        if kind == OperationKind.reschedule:
            if reschedule is None:
                raise ValidationError("BULK_RESCHEDULE operations require reschedule parameters", field="reschedule")
            return self.expand_reschedule(db, reschedule), {"reschedule": reschedule.model_dump(mode="json")}
        return list(items), {}

    def submit(
        self,
        db: Session,
        *,
        user: User,
        kind: OperationKind,
        items: Iterable[dict[str, Any]] = (),
        template: TemplateApplyParams | None = None,
        faculty_replace: FacultyReplaceParams | None = None,
        reschedule: RescheduleParams | None = None,
        include_time_overlaps: bool = True,
    ) -> BulkOperation:
        items, derived_from = self._derive_items(
            db, kind, items, template=template, faculty_replace=faculty_replace, reschedule=reschedule
        )
        items = self._check_items(items)
        parameters: dict[str, Any] = {"include_time_overlaps": include_time_overlaps, **derived_from}

        operation = BulkOperation(
            initiator_id=user.id,
            kind=kind,
            status=OperationStatus.pending,
            total_items=len(items),
            items=items,
            parameters=parameters,
        )
        db.add(operation)
        db.flush()
        self.log.append(
            db,
            operation.id,
            LogLevel.info,
            f"Operation submitted with {len(items)} items",
            {"kind": kind.value, "total_items": len(items)},
        )
        log_operation_activity(
            db,
            user=user,
            action=ActivityAction.operation_submit,
            operation_id=operation.id,
            details={"kind": kind.value, "total_items": len(items)},
        )
        db.commit()
        db.refresh(operation)
        logger.info("Operation %s (%s) submitted by %s with %d items", operation.id, kind.value, user.id, len(items))
        return operation

    def preview(
        self,
        db: Session,
        *,
        kind: OperationKind,
        items: Iterable[dict[str, Any]] = (),
        template: TemplateApplyParams | None = None,
        faculty_replace: FacultyReplaceParams | None = None,
        reschedule: RescheduleParams | None = None,
        include_time_overlaps: bool = True,
    ) -> OperationPreview:
        """Predict per-item outcomes without writing anything.

        Items predicted to succeed are treated as committed for the items
        after them, the same way a real run sees its own earlier items.
        """
        items, _ = self._derive_items(
            db, kind, items, template=template, faculty_replace=faculty_replace, reschedule=reschedule
        )
        items = self._check_items(items)

        pending: list[ScheduleEntry] = []
        deleted: set[str] = set()
        moved: dict[str, ScheduleEntry] = {}
        outcomes: list[ItemOutcome] = []
        for index, item in enumerate(items):
            try:
                if kind == OperationKind.mass_delete:
                    outcome = self._preview_delete(db, item, index, deleted)
                elif kind in UPDATE_KINDS:
                    outcome = self._preview_update(db, item, index, moved, include_time_overlaps)
                else:
                    outcome = self._preview_create(db, item, index, pending, include_time_overlaps)
            except (ValidationError, ConflictError) as exc:
                outcome = _failure(index, exc)
            outcomes.append(outcome)
        return OperationPreview(kind=kind, items=outcomes)

    def _preview_update(
        self,
        db: Session,
        item: dict[str, Any],
        index: int,
        moved: dict[str, ScheduleEntry],
        include_time_overlaps: bool,
    ) -> ItemOutcome:
        entry_id, changes = _update_target(db, item, index)
        _, candidate, check = scheduling.check_update(
            db,
            entry_id,
            changes,
            item_index=index,
            include_time_overlaps=include_time_overlaps,
            exclude_ids=list(moved),
            pending=list(moved.values()),
        )
        moved[entry_id] = candidate.entry
        return ItemOutcome(
            item_index=index,
            outcome="updated",
            message=f"Item {index + 1} would update entry {entry_id}",
            entry_id=entry_id,
            warnings=check.warnings,
        )

    def _preview_create(
        self,
        db: Session,
        item: dict[str, Any],
        index: int,
        pending: list[ScheduleEntry],
        include_time_overlaps: bool,
    ) -> ItemOutcome:
        candidate = scheduling.build_candidate(db, item, item_index=index)
        check = scheduling.check_candidate(
            db,
            candidate,
            include_time_overlaps=include_time_overlaps,
            pending=pending,
        )
        if check.duplicate_of is not None:
            return ItemOutcome(
                item_index=index,
                outcome="duplicate",
                message=f"Item {index + 1} duplicates entry {check.duplicate_of}; nothing to do",
                entry_id=check.duplicate_of,
            )
        scheduling.enforce_check(check, override=candidate.payload.override_conflicts, item_index=index)
        pending.append(candidate.entry)
        return ItemOutcome(
            item_index=index,
            outcome="created",
            message=f"Item {index + 1} would be created",
            warnings=check.warnings,
        )

    def _preview_delete(self, db: Session, item: dict[str, Any], index: int, deleted: set[str]) -> ItemOutcome:
        entry_id = _target_entry_id(item, index)
        entry = db.get(TimetableEntry, entry_id)
        if entry is None:
            raise ValidationError(f"Unknown timetable entry {entry_id}", field="entry_id", item_index=index)
        if not entry.is_active or entry_id in deleted:
            return ItemOutcome(index, "noop", f"Item {index + 1}: entry {entry_id} is already inactive", entry_id)
        deleted.add(entry_id)
        return ItemOutcome(index, "deactivated", f"Item {index + 1} would deactivate entry {entry_id}", entry_id)

    # Lifecycle

    def _transition(
        self,
        db: Session,
        operation_id: str,
        *,
        allowed: Iterable[OperationStatus],
        target: OperationStatus,
        action: str,
        message: str,
        level: LogLevel = LogLevel.info,
        details: dict[str, Any] | None = None,
        values: dict[str, Any] | None = None,
    ) -> None:
        result = db.execute(
            update(BulkOperation)
            .where(BulkOperation.id == operation_id, BulkOperation.status.in_(list(allowed)))
            .values(status=target, **(values or {}))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            current = self._reload(db, operation_id)
            raise InvalidTransitionError(operation_id, current.status.value, action)
        self.log.append(db, operation_id, level, message, details)

    def _request(
        self,
        db: Session,
        operation: BulkOperation,
        user: User,
        *,
        action: str,
        **transition: Any,
    ) -> BulkOperation:
        operation_id = operation.id
        self._transition(db, operation_id, action=action, **transition)
        log_operation_activity(
            db, user=user, action=ActivityAction(f"operation.{action}"), operation_id=operation_id
        )
        db.commit()
        logger.info("Operation %s: %s requested by %s", operation_id, action, user.id)
        operation = self._reload(db, operation_id)
        if operation.status in TERMINAL_STATUSES:
            self.log.forget(operation_id)
        return operation

    def start(self, db: Session, operation_id: str, user: User) -> BulkOperation:
        operation = self.get(db, operation_id)
        ensure_can_manage(operation, user)
        return self._request(
            db,
            operation,
            user,
            action="start",
            allowed=[OperationStatus.pending],
            target=OperationStatus.running,
            message="Operation started",
            values={"started_at": _now()},
        )

    def pause(self, db: Session, operation_id: str, user: User) -> BulkOperation:
        operation = self.get(db, operation_id)
        ensure_admin(user, "pause")
        return self._request(
            db,
            operation,
            user,
            action="pause",
            allowed=[OperationStatus.running],
            target=OperationStatus.paused,
            message="Operation paused by administrator",
            details={"processed_items": operation.processed_items},
        )

    def resume(self, db: Session, operation_id: str, user: User) -> BulkOperation:
        operation = self.get(db, operation_id)
        ensure_admin(user, "resume")
        return self._request(
            db,
            operation,
            user,
            action="resume",
            allowed=[OperationStatus.paused],
            target=OperationStatus.running,
            message="Operation resumed by administrator",
            details={"resume_from": operation.processed_items},
        )

    def cancel(self, db: Session, operation_id: str, user: User) -> BulkOperation:
        # The runner never logs cancellation itself, so this is the only cancellation milestone.
        operation = self.get(db, operation_id)
        ensure_can_manage(operation, user)
        return self._request(
            db,
            operation,
            user,
            action="cancel",
            allowed=ACTIVE_STATUSES,
            target=OperationStatus.cancelled,
            message="Operation cancelled by user",
            values={"completed_at": _now()},
        )

    # Execution

    def run(
        self,
        session_factory: SessionFactory,
        operation_id: str,
        on_item_processed: Callable[[int], None] | None = None,
    ) -> OperationStatus | None:
        """Process items until the operation leaves RUNNING or runs out of items.

        Returns the status observed when the runner stopped, or None when
        another runner already owns the operation.
        """
        with self._registry_lock:
            if operation_id in self._runners:
                logger.info("Operation %s already has a runner", operation_id)
                return None
            self._runners.add(operation_id)

        db = session_factory()
        try:
            return self._drive(db, operation_id, on_item_processed)
        except CoordinatorFatalError as exc:
            self._fail(db, session_factory, operation_id, exc)
            raise
        except SQLAlchemyError as exc:
            fatal = CoordinatorFatalError(
                f"Store error while running operation {operation_id}",
                {"operation_id": operation_id, "cause": str(exc)},
            )
            self._fail(db, session_factory, operation_id, fatal)
            raise fatal from exc
        finally:
            with self._registry_lock:
                self._runners.discard(operation_id)
            db.close()

    def _drive(
        self,
        db: Session,
        operation_id: str,
        on_item_processed: Callable[[int], None] | None,
    ) -> OperationStatus:
        while True:
            # Status check and deregistration are atomic so a resume never races a stopping runner.
            with self._registry_lock:
                operation = self._reload(db, operation_id)
                if operation.status != OperationStatus.running:
                    self._runners.discard(operation_id)
                    logger.info(
                        "Operation %s stopped at item %d with status %s",
                        operation_id,
                        operation.processed_items,
                        operation.status.value,
                    )
                    return operation.status
                index = operation.processed_items
                if index >= operation.total_items:
                    break
            self._process_item(db, operation, index)
            if on_item_processed is not None:
                on_item_processed(index)
        return self._complete(db, operation_id)

    def _process_item(self, db: Session, operation: BulkOperation, index: int) -> None:
        operation_id = operation.id
        kind = operation.kind
        item = operation.items[index]
        initiator_id = operation.initiator_id
        include_time_overlaps = bool(operation.parameters.get("include_time_overlaps", True))

        try:
            outcome = self._apply_item(db, operation_id, kind, item, index, initiator_id, include_time_overlaps)
        except (ValidationError, ConflictError) as exc:
            db.rollback()
            outcome = _failure(index, exc)
        except IntegrityError as exc:
            db.rollback()
            outcome = ItemOutcome(
                item_index=index,
                outcome="failed",
                message=f"Item {index + 1} conflicts: entry collides with an active entry",
                error={"cause": str(exc.orig)},
            )
        except SQLAlchemyError as exc:
            db.rollback()
            raise CoordinatorFatalError(
                f"Store error while processing item {index + 1}",
                {"operation_id": operation_id, "item_index": index, "cause": str(exc)},
            ) from exc

        try:
            self._record(db, operation_id, outcome)
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise CoordinatorFatalError(
                f"Could not record the outcome of item {index + 1}",
                {"operation_id": operation_id, "item_index": index, "cause": str(exc)},
            ) from exc

    def _apply_item(
        self,
        db: Session,
        operation_id: str,
        kind: OperationKind,
        item: dict[str, Any],
        index: int,
        initiator_id: str,
        include_time_overlaps: bool,
    ) -> ItemOutcome:
        if kind == OperationKind.mass_delete:
            entry_id = _target_entry_id(item, index)
            if db.get(TimetableEntry, entry_id) is None:
                raise ValidationError(f"Unknown timetable entry {entry_id}", field="entry_id", item_index=index)
            _, changed = scheduling.deactivate_entry(db, entry_id)
            if not changed:
                return ItemOutcome(index, "noop", f"Item {index + 1}: entry {entry_id} is already inactive", entry_id)
            return ItemOutcome(index, "deactivated", f"Item {index + 1} deactivated entry {entry_id}", entry_id)

        if kind in UPDATE_KINDS:
            entry_id, changes = _update_target(db, item, index)
            _, check = scheduling.update_entry(
                db,
                entry_id,
                changes,
                item_index=index,
                include_time_overlaps=include_time_overlaps,
            )
            return ItemOutcome(
                item_index=index,
                outcome="updated",
                message=f"Item {index + 1} updated entry {entry_id}",
                entry_id=entry_id,
                warnings=check.warnings,
            )

        try:
            entry, check = scheduling.create_entry(
                db,
                item,
                created_by_id=initiator_id,
                operation_id=operation_id,
                item_index=index,
                include_time_overlaps=include_time_overlaps,
            )
        except DuplicateNoop as exc:
            return ItemOutcome(
                item_index=index,
                outcome="duplicate",
                message=f"Item {index + 1} duplicates entry {exc.existing_entry_id}; nothing to do",
                entry_id=exc.existing_entry_id,
            )
        return ItemOutcome(
            item_index=index,
            outcome="created",
            message=f"Item {index + 1} created entry {entry.id}",
            entry_id=entry.id,
            warnings=check.warnings,
        )

    def _record(self, db: Session, operation_id: str, outcome: ItemOutcome) -> None:
        level = LogLevel.info if outcome.succeeded else LogLevel.error
        self.log.append(db, operation_id, level, outcome.message, outcome.log_details())
        db.execute(
            update(BulkOperation)
            .where(BulkOperation.id == operation_id)
            .values(
                processed_items=BulkOperation.processed_items + 1,
                succeeded_items=BulkOperation.succeeded_items + (1 if outcome.succeeded else 0),
                failed_items=BulkOperation.failed_items + (0 if outcome.succeeded else 1),
            )
            .execution_options(synchronize_session=False)
        )

    def _complete(self, db: Session, operation_id: str) -> OperationStatus:
        result = db.execute(
            update(BulkOperation)
            .where(BulkOperation.id == operation_id, BulkOperation.status == OperationStatus.running)
            .values(status=OperationStatus.completed, completed_at=_now())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            return self._reload(db, operation_id).status

        operation = self._reload(db, operation_id)
        summary = {
            "processed_items": operation.processed_items,
            "succeeded_items": operation.succeeded_items,
            "failed_items": operation.failed_items,
        }
        self.log.append(
            db,
            operation_id,
            LogLevel.info,
            f"Operation completed: {operation.processed_items} processed, "
            f"{operation.succeeded_items} succeeded, {operation.failed_items} failed",
            summary,
        )
        db.commit()
        self.log.forget(operation_id)
        logger.info("Operation %s completed: %s", operation_id, summary)
        return OperationStatus.completed

    def _fail(
        self,
        db: Session,
        session_factory: SessionFactory,
        operation_id: str,
        exc: CoordinatorFatalError,
    ) -> None:
        logger.exception("Operation %s hit a fatal error: %s", operation_id, exc.message)
        db.rollback()
        recovery = session_factory()
        try:
            result = recovery.execute(
                update(BulkOperation)
                .where(BulkOperation.id == operation_id, BulkOperation.status.in_(list(ACTIVE_STATUSES)))
                .values(status=OperationStatus.failed, error_message=exc.message, completed_at=_now())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                self.log.append(recovery, operation_id, LogLevel.error, f"Operation failed: {exc.message}", exc.details)
            recovery.commit()
        finally:
            recovery.close()
        self.log.forget(operation_id)

    def recover_interrupted(self, session_factory: SessionFactory) -> list[str]:
        """Pause operations left RUNNING by a previous process so an admin can resume them."""
        db = session_factory()
        recovered: list[str] = []
        try:
            stale = db.execute(
                select(BulkOperation.id).where(BulkOperation.status == OperationStatus.running)
            ).scalars().all()
            for operation_id in stale:
                if self.is_running(operation_id):
                    continue
                result = db.execute(
                    update(BulkOperation)
                    .where(BulkOperation.id == operation_id, BulkOperation.status == OperationStatus.running)
                    .values(status=OperationStatus.paused)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    continue
                self.log.append(
                    db,
                    operation_id,
                    LogLevel.warn,
                    "Operation interrupted by a restart; paused until resumed",
                )
                recovered.append(operation_id)
            db.commit()
        finally:
            db.close()
        if recovered:
            logger.warning("Paused %d interrupted operations: %s", len(recovered), recovered)
        return recovered

    # Reads

    def progress(self, db: Session, operation: BulkOperation) -> dict[str, Any]:
        total = operation.total_items
        processed = operation.processed_items
        percent = round(processed * 100.0 / total, 1) if total else 100.0
        remaining = None
        if operation.status == OperationStatus.running and operation.started_at is not None and 0 < processed < total:
            elapsed = (_now() - as_utc(operation.started_at)).total_seconds()
            remaining = round(elapsed / processed * (total - processed), 1)
        latest = self.log.latest(db, operation.id)
        return {
            "percent": percent,
            "estimated_seconds_remaining": remaining,
            "last_message": latest.message if latest is not None else None,
        }

    def status(self, db: Session, operation_id: str, user: User) -> BulkOperation:
        operation = self.get(db, operation_id)
        ensure_can_manage(operation, user)
        return operation

    def history(
        self,
        db: Session,
        user: User,
        *,
        status: OperationStatus | None = None,
        limit: int | None = None,
    ) -> list[BulkOperation]:
        limit = limit or get_settings().operation_history_limit
        limit = max(1, min(limit, MAX_HISTORY_LIMIT))
        query = select(BulkOperation).order_by(BulkOperation.created_at.desc()).limit(limit)
        if not is_admin(user):
            query = query.where(BulkOperation.initiator_id == user.id)
        if status is not None:
            query = query.where(BulkOperation.status == status)
        return list(db.execute(query).scalars())

    def logs(self, db: Session, operation_id: str, user: User, **query: Any) -> LogPage:
        operation = self.get(db, operation_id)
        ensure_can_manage(operation, user)
        return self.log.query(db, operation_id, **query)

    def annotate(
        self,
        db: Session,
        operation_id: str,
        user: User,
        *,
        level: LogLevel,
        message: str,
        details: dict[str, Any] | None = None,
    ):
        ensure_admin(user, "annotate")
        operation = self.get(db, operation_id)
        payload = dict(details or {})
        payload["annotated_by"] = user.id
        entry = self.log.append(db, operation_id, level, message, payload)
        log_operation_activity(
            db,
            user=user,
            action=ActivityAction.operation_annotate,
            operation_id=operation_id,
            details={"level": level.value},
        )
        db.commit()
        db.refresh(entry)
        if operation.status in TERMINAL_STATUSES:
            self.log.forget(operation_id)
        return entry


coordinator = OperationCoordinator()
