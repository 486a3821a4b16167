from app.models.academic_calendar import ExamPeriod, Holiday  # noqa: F401
from app.models.activity_log import ActivityLog  # noqa: F401
from app.models.batch import Batch, Subject  # noqa: F401
from app.models.bulk_operation import (  # noqa: F401
    BulkOperation,
    LogLevel,
    OperationKind,
    OperationLogEntry,
    OperationStatus,
)
from app.models.time_slot import TimeSlot  # noqa: F401
from app.models.timetable import DayOfWeek, EntryType, TimetableEntry  # noqa: F401
from app.models.user import User, UserRole  # noqa: F401
