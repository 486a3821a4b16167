from datetime import date

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.api.deps import get_current_user, get_db, require_roles
from app.models.academic_calendar import ExamPeriod, Holiday
from app.models.activity_log import ActivityAction
from app.models.user import User, UserRole
from app.schemas.calendar import ExamPeriodCreate, ExamPeriodOut, HolidayCreate, HolidayOut
from app.services.audit import log_activity

router = APIRouter()


@router.get("/holidays", response_model=list[HolidayOut])
def list_holidays(
    start: date | None = Query(default=None),
    end: date | None = Query(default=None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[HolidayOut]:
    query = select(Holiday).order_by(Holiday.holiday_date)
    if start is not None:
        query = query.where(Holiday.holiday_date >= start)
    if end is not None:
        query = query.where(Holiday.holiday_date <= end)
    return list(db.execute(query).scalars())


@router.post("/holidays", response_model=HolidayOut, status_code=status.HTTP_201_CREATED)
def create_holiday(
    payload: HolidayCreate,
    current_user: User = Depends(require_roles(UserRole.admin)),
    db: Session = Depends(get_db),
) -> HolidayOut:
    holiday = Holiday(**payload.model_dump())
    db.add(holiday)
    db.flush()
    log_activity(db, user=current_user, action=ActivityAction.holiday_create, entity_type="holiday", entity_id=holiday.id)
    db.commit()
    db.refresh(holiday)
    return holiday


@router.get("/exam-periods", response_model=list[ExamPeriodOut])
def list_exam_periods(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> list[ExamPeriodOut]:
    return list(db.execute(select(ExamPeriod).order_by(ExamPeriod.start_date)).scalars())


@router.post("/exam-periods", response_model=ExamPeriodOut, status_code=status.HTTP_201_CREATED)
def create_exam_period(
    payload: ExamPeriodCreate,
    current_user: User = Depends(require_roles(UserRole.admin)),
    db: Session = Depends(get_db),
) -> ExamPeriodOut:
    period = ExamPeriod(**payload.model_dump())
    db.add(period)
    db.flush()
    log_activity(db, user=current_user, action=ActivityAction.exam_period_create, entity_type="exam_period", entity_id=period.id)
    db.commit()
    db.refresh(period)
    return period
