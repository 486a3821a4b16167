from app.core.exceptions import PermissionDeniedError
from app.models.bulk_operation import BulkOperation
from app.models.user import User, UserRole


def is_admin(user: User) -> bool:
    return user.role == UserRole.admin


def can_manage(operation: BulkOperation, user: User) -> bool:
    """The single capability check for every bulk-operation entry point."""
    return is_admin(user) or operation.initiator_id == user.id


def ensure_can_manage(operation: BulkOperation, user: User) -> None:
    if not can_manage(operation, user):
        raise PermissionDeniedError("Only the initiator or an administrator can manage this operation")


def ensure_admin(user: User, action: str) -> None:
    if not is_admin(user):
        raise PermissionDeniedError(f"Only administrators can {action} operations")
