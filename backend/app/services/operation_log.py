from __future__ import annotations

import threading
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Literal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.exceptions import ValidationError
from app.models.bulk_operation import LogLevel, OperationLogEntry


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class LogPage:
    entries: list[OperationLogEntry]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + self.limit < self.total


class OperationLog:
    """Append-only per-operation log.

    Appends are flushed inside the caller's transaction so an entry commits
    together with whatever it describes; a failed write raises instead of
    being dropped. Timestamps are strictly increasing within an operation.
    """

    def __init__(self, max_tracked: int = 1024) -> None:
        self._lock = threading.Lock()
        # Least recently written first; an evicted operation reloads its last timestamp from the table.
        self._last_timestamp: OrderedDict[str, datetime] = OrderedDict()
        self._max_tracked = max_tracked

    def _next_timestamp(self, db: Session, operation_id: str) -> datetime:
        with self._lock:
            last = self._last_timestamp.get(operation_id)
            if last is None:
                stored = db.execute(
                    select(func.max(OperationLogEntry.timestamp)).where(OperationLogEntry.operation_id == operation_id)
                ).scalar_one_or_none()
                last = as_utc(stored) if stored is not None else None
            now = datetime.now(timezone.utc)
            if last is not None and now <= last:
                now = last + timedelta(microseconds=1)
            self._last_timestamp[operation_id] = now
            self._last_timestamp.move_to_end(operation_id)
            while len(self._last_timestamp) > self._max_tracked:
                self._last_timestamp.popitem(last=False)
            return now

    def append(
        self,
        db: Session,
        operation_id: str,
        level: LogLevel,
        message: str,
        details: dict | None = None,
    ) -> OperationLogEntry:
        record = OperationLogEntry(
            operation_id=operation_id,
            level=level,
            message=message,
            details=details,
            timestamp=self._next_timestamp(db, operation_id),
        )
        db.add(record)
        db.flush()
        return record

    def forget(self, operation_id: str) -> None:
        with self._lock:
            self._last_timestamp.pop(operation_id, None)

    def tracked(self) -> int:
        with self._lock:
            return len(self._last_timestamp)

    def query(
        self,
        db: Session,
        operation_id: str,
        *,
        level: LogLevel | None = None,
        limit: int | None = None,
        offset: int = 0,
        order: Literal["asc", "desc"] = "desc",
    ) -> LogPage:
        settings = get_settings()
        if limit is None:
            limit = settings.operation_log_default_limit
        if limit < 1 or limit > settings.operation_log_max_limit:
            raise ValidationError(
                f"limit must be between 1 and {settings.operation_log_max_limit}",
                field="limit",
            )
        if offset < 0:
            raise ValidationError("offset must not be negative", field="offset")

        filters = [OperationLogEntry.operation_id == operation_id]
        if level is not None:
            filters.append(OperationLogEntry.level == level)

        total = db.execute(select(func.count()).select_from(OperationLogEntry).where(*filters)).scalar_one()
        ordering = OperationLogEntry.timestamp.asc() if order == "asc" else OperationLogEntry.timestamp.desc()
        entries = list(
            db.execute(select(OperationLogEntry).where(*filters).order_by(ordering).offset(offset).limit(limit)).scalars()
        )
        return LogPage(entries=entries, total=total, limit=limit, offset=offset)

    def latest(self, db: Session, operation_id: str) -> OperationLogEntry | None:
        return db.execute(
            select(OperationLogEntry)
            .where(OperationLogEntry.operation_id == operation_id)
            .order_by(OperationLogEntry.timestamp.desc())
            .limit(1)
        ).scalar_one_or_none()


operation_log = OperationLog()
