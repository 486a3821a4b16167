from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.api.deps import get_db, require_roles
from app.models.activity_log import ActivityAction, ActivityLog
from app.models.user import User, UserRole
from app.schemas.activity import ActivityLogOut

router = APIRouter()


@router.get("/activity/logs", response_model=list[ActivityLogOut])
def list_activity_logs(
    action: ActivityAction | None = Query(default=None),
    user_id: str | None = Query(default=None, max_length=36),
    entity_type: str | None = Query(default=None, max_length=100),
    entity_id: str | None = Query(default=None, max_length=100),
    operation_id: str | None = Query(default=None, max_length=36),
    limit: int = Query(default=200, ge=1, le=500),
    current_user: User = Depends(require_roles(UserRole.admin, UserRole.scheduler)),
    db: Session = Depends(get_db),
) -> list[ActivityLogOut]:
    query = select(ActivityLog).order_by(ActivityLog.created_at.desc()).limit(limit)
    if action is not None:
        query = query.where(ActivityLog.action == action.value)
    if user_id is not None:
        query = query.where(ActivityLog.user_id == user_id)
    if entity_type is not None:
        query = query.where(ActivityLog.entity_type == entity_type)
    if entity_id is not None:
        query = query.where(ActivityLog.entity_id == entity_id)
    if operation_id is not None:
        query = query.where(ActivityLog.operation_id == operation_id)
    return list(db.execute(query).scalars())
