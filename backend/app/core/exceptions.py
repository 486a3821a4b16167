from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from app.services.conflict_detector import ConflictReport


class AppError(Exception):
    """Base class for all application exceptions."""
    def __init__(self, message: str, status_code: int = 500, details: dict | None = None):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(AppError):
    """Malformed input rejected before conflict detection runs."""
    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        item_index: int | None = None,
        details: dict | None = None,
    ):
        payload = dict(details or {})
        if field is not None:
            payload["field"] = field
        if item_index is not None:
            payload["item_index"] = item_index
        super().__init__(message, status_code=422, details=payload)
        self.field = field
        self.item_index = item_index


class ConflictError(AppError):
    """A CRITICAL or HIGH conflict blocks the write."""
    def __init__(self, message: str, reports: list[ConflictReport], *, item_index: int | None = None):
        self.reports = list(reports)
        self.overridable = bool(self.reports) and all(report.overridable for report in self.reports if report.blocking)
        details: dict[str, Any] = {
            "conflicts": [report.to_dict() for report in self.reports],
            "overridable": self.overridable,
        }
        if item_index is not None:
            details["item_index"] = item_index
        super().__init__(message, status_code=409, details=details)
        self.item_index = item_index


class DuplicateNoop(Exception):
    """Signals that an identical entry already exists; the write is already satisfied."""
    def __init__(self, existing_entry_id: str):
        self.existing_entry_id = existing_entry_id
        super().__init__(f"Identical entry {existing_entry_id} already exists")


class CoordinatorFatalError(AppError):
    """The coordinator cannot continue (store unreachable, invariant broken)."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message, status_code=500, details=details)


class InvalidTransitionError(AppError):
    """Requested lifecycle change is not allowed from the current status."""
    def __init__(self, operation_id: str, current: str, requested: str):
        super().__init__(
            f"Cannot {requested} operation {operation_id} while it is {current}",
            status_code=409,
            details={"operation_id": operation_id, "status": current, "action": requested},
        )


class PermissionDeniedError(AppError):
    def __init__(self, message: str = "Insufficient permissions", details: dict | None = None):
        super().__init__(message, status_code=403, details=details)


class ResourceNotFoundError(AppError):
    """Raised when a requested resource is not found."""
    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(
            f"{resource_type} with id {resource_id} not found",
            status_code=404,
            details={"resource_type": resource_type, "resource_id": resource_id},
        )
