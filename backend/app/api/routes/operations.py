from typing import Literal

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Response, status
from sqlalchemy.orm import Session

from app.api.deps import get_coordinator, get_current_user, get_db, get_session_factory, require_roles
from app.models.bulk_operation import BulkOperation, LogLevel, OperationStatus
from app.models.user import User, UserRole
from app.schemas.conflict import ConflictReportOut
from app.schemas.operation import (
    ItemPreviewOut,
    OperationAction,
    OperationCreate,
    OperationLogCreate,
    OperationLogOut,
    OperationLogPage,
    OperationOut,
    OperationPreviewOut,
    OperationProgress,
)
from app.services.operations import OperationCoordinator, OperationPreview, SessionFactory

router = APIRouter()


def _operation_out(db: Session, coordinator: OperationCoordinator, operation: BulkOperation) -> OperationOut:
    payload = OperationOut.model_validate(operation)
    payload.progress = OperationProgress(**coordinator.progress(db, operation))
    return payload


def _preview_out(preview: OperationPreview) -> OperationPreviewOut:
    return OperationPreviewOut(
        kind=preview.kind,
        total_items=len(preview.items),
        would_succeed=preview.would_succeed,
        would_fail=preview.would_fail,
        items=[
            ItemPreviewOut(
                item_index=item.item_index,
                outcome=item.outcome,
                message=item.message,
                entry_id=item.entry_id,
                conflicts=[ConflictReportOut.from_report(report) for report in item.conflicts + item.warnings],
            )
            for item in preview.items
        ],
    )


@router.post(
    "/operations",
    response_model=OperationOut | OperationPreviewOut,
    status_code=status.HTTP_201_CREATED,
)
def submit_operation(
    payload: OperationCreate,
    response: Response,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_roles(UserRole.admin, UserRole.scheduler)),
    db: Session = Depends(get_db),
    session_factory: SessionFactory = Depends(get_session_factory),
    coordinator: OperationCoordinator = Depends(get_coordinator),
) -> OperationOut | OperationPreviewOut:
    if payload.dry_run:
        response.status_code = status.HTTP_200_OK
        preview = coordinator.preview(
            db,
            kind=payload.kind,
            items=payload.items,
            template=payload.template,
            faculty_replace=payload.faculty_replace,
            reschedule=payload.reschedule,
            include_time_overlaps=payload.include_time_overlaps,
        )
        return _preview_out(preview)

    operation = coordinator.submit(
        db,
        user=current_user,
        kind=payload.kind,
        items=payload.items,
        template=payload.template,
        faculty_replace=payload.faculty_replace,
        reschedule=payload.reschedule,
        include_time_overlaps=payload.include_time_overlaps,
    )
    if payload.auto_start:
        operation = coordinator.start(db, operation.id, current_user)
        background_tasks.add_task(coordinator.run, session_factory, operation.id)
    return _operation_out(db, coordinator, operation)


@router.get("/operations", response_model=list[OperationOut])
def list_operations(
    status_filter: OperationStatus | None = Query(default=None, alias="status"),
    limit: int | None = Query(default=None, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    coordinator: OperationCoordinator = Depends(get_coordinator),
) -> list[OperationOut]:
    operations = coordinator.history(db, current_user, status=status_filter, limit=limit)
    return [OperationOut.model_validate(operation) for operation in operations]


@router.get("/operations/{operation_id}", response_model=OperationOut)
def get_operation(
    operation_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    coordinator: OperationCoordinator = Depends(get_coordinator),
) -> OperationOut:
    operation = coordinator.status(db, operation_id, current_user)
    return _operation_out(db, coordinator, operation)


@router.post("/operations/{operation_id}/start", response_model=OperationOut)
def start_operation(
    operation_id: str,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    session_factory: SessionFactory = Depends(get_session_factory),
    coordinator: OperationCoordinator = Depends(get_coordinator),
) -> OperationOut:
    operation = coordinator.start(db, operation_id, current_user)
    background_tasks.add_task(coordinator.run, session_factory, operation.id)
    return _operation_out(db, coordinator, operation)


@router.delete("/operations/{operation_id}", response_model=OperationOut)
def cancel_operation(
    operation_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    coordinator: OperationCoordinator = Depends(get_coordinator),
) -> OperationOut:
    operation = coordinator.cancel(db, operation_id, current_user)
    return _operation_out(db, coordinator, operation)


@router.patch("/operations/{operation_id}", response_model=OperationOut)
def control_operation(
    operation_id: str,
    payload: OperationAction,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    session_factory: SessionFactory = Depends(get_session_factory),
    coordinator: OperationCoordinator = Depends(get_coordinator),
) -> OperationOut:
    if payload.action == "pause":
        operation = coordinator.pause(db, operation_id, current_user)
    else:
        operation = coordinator.resume(db, operation_id, current_user)
        background_tasks.add_task(coordinator.run, session_factory, operation.id)
    return _operation_out(db, coordinator, operation)


@router.get("/operations/{operation_id}/logs", response_model=OperationLogPage)
def list_operation_logs(
    operation_id: str,
    level: LogLevel | None = Query(default=None),
    limit: int | None = Query(default=None, ge=1),
    offset: int = Query(default=0, ge=0),
    order: Literal["asc", "desc"] = Query(default="desc"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    coordinator: OperationCoordinator = Depends(get_coordinator),
) -> OperationLogPage:
    page = coordinator.logs(db, operation_id, current_user, level=level, limit=limit, offset=offset, order=order)
    return OperationLogPage(
        entries=[OperationLogOut.model_validate(entry) for entry in page.entries],
        total=page.total,
        limit=page.limit,
        offset=page.offset,
        has_more=page.has_more,
    )


@router.post("/operations/{operation_id}/logs", response_model=OperationLogOut, status_code=status.HTTP_201_CREATED)
def annotate_operation(
    operation_id: str,
    payload: OperationLogCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    coordinator: OperationCoordinator = Depends(get_coordinator),
) -> OperationLogOut:
    entry = coordinator.annotate(
        db,
        operation_id,
        current_user,
        level=payload.level,
        message=payload.message,
        details=payload.details,
    )
    return OperationLogOut.model_validate(entry)
