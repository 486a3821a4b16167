from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.api.deps import get_current_user, get_db, require_roles
from app.models.activity_log import ActivityAction
from app.models.batch import Batch, Subject
from app.models.time_slot import TimeSlot
from app.models.user import User, UserRole
from app.schemas.catalog import BatchCreate, BatchOut, SubjectCreate, SubjectOut, TimeSlotCreate, TimeSlotOut
from app.services.audit import log_activity

router = APIRouter()


@router.get("/timeslots", response_model=list[TimeSlotOut])
def list_time_slots(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> list[TimeSlotOut]:
    query = select(TimeSlot).where(TimeSlot.is_active.is_(True)).order_by(TimeSlot.sort_order, TimeSlot.start_time)
    return list(db.execute(query).scalars())


@router.post("/timeslots", response_model=TimeSlotOut, status_code=status.HTTP_201_CREATED)
def create_time_slot(
    payload: TimeSlotCreate,
    current_user: User = Depends(require_roles(UserRole.admin)),
    db: Session = Depends(get_db),
) -> TimeSlotOut:
    existing = db.execute(select(TimeSlot).where(TimeSlot.name == payload.name)).scalar_one_or_none()
    if existing:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Time slot name already exists")
    slot = TimeSlot(
        name=payload.name,
        start_time=payload.start_time,
        end_time=payload.end_time,
        duration_minutes=payload.duration_minutes,
        sort_order=payload.sort_order,
    )
    db.add(slot)
    db.flush()
    log_activity(db, user=current_user, action=ActivityAction.timeslot_create, entity_type="time_slot", entity_id=slot.id)
    db.commit()
    db.refresh(slot)
    return slot


@router.get("/batches", response_model=list[BatchOut])
def list_batches(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> list[BatchOut]:
    return list(db.execute(select(Batch).where(Batch.is_active.is_(True)).order_by(Batch.name)).scalars())


@router.post("/batches", response_model=BatchOut, status_code=status.HTTP_201_CREATED)
def create_batch(
    payload: BatchCreate,
    current_user: User = Depends(require_roles(UserRole.admin, UserRole.scheduler)),
    db: Session = Depends(get_db),
) -> BatchOut:
    batch = Batch(**payload.model_dump())
    db.add(batch)
    db.flush()
    log_activity(db, user=current_user, action=ActivityAction.batch_create, entity_type="batch", entity_id=batch.id)
    db.commit()
    db.refresh(batch)
    return batch


@router.get("/subjects", response_model=list[SubjectOut])
def list_subjects(
    batch_id: str | None = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[SubjectOut]:
    query = select(Subject).where(Subject.is_active.is_(True))
    if batch_id is not None:
        query = query.where(Subject.batch_id == batch_id)
    return list(db.execute(query.order_by(Subject.code)).scalars())


@router.post("/subjects", response_model=SubjectOut, status_code=status.HTTP_201_CREATED)
def create_subject(
    payload: SubjectCreate,
    current_user: User = Depends(require_roles(UserRole.admin, UserRole.scheduler)),
    db: Session = Depends(get_db),
) -> SubjectOut:
    if payload.batch_id is not None and db.get(Batch, payload.batch_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Batch not found")
    subject = Subject(**payload.model_dump())
    db.add(subject)
    db.flush()
    log_activity(db, user=current_user, action=ActivityAction.subject_create, entity_type="subject", entity_id=subject.id)
    db.commit()
    db.refresh(subject)
    return subject
