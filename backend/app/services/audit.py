from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session

from app.models.activity_log import ActivityAction, ActivityLog
from app.models.user import User

logger = logging.getLogger(__name__)

OPERATION_ENTITY = "bulk_operation"


def log_activity(
    db: Session,
    *,
    user: User | None,
    action: ActivityAction,
    entity_type: str | None = None,
    entity_id: str | None = None,
    operation_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> ActivityLog:
    """Stage an audit row in the caller's transaction; it commits or rolls back with the change."""
    record = ActivityLog(
        user_id=user.id if user is not None else None,
        action=action.value,
        entity_type=entity_type,
        entity_id=entity_id,
        operation_id=operation_id,
        details=details or {},
    )
    db.add(record)
    logger.debug("Activity %s on %s %s by %s", action.value, entity_type, entity_id, record.user_id)
    return record


def log_operation_activity(
    db: Session,
    *,
    user: User,
    action: ActivityAction,
    operation_id: str,
    details: dict[str, Any] | None = None,
) -> ActivityLog:
    return log_activity(
        db,
        user=user,
        action=action,
        entity_type=OPERATION_ENTITY,
        entity_id=operation_id,
        operation_id=operation_id,
        details=details,
    )
