from __future__ import annotations

import logging

from sqlalchemy import inspect
from sqlalchemy.engine import Engine

from app.core.config import get_settings
from app.db.base import Base
from app.db.session import engine as default_engine

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS: dict[str, set[str]] = {
    "users": {"id", "role", "is_active"},
    "time_slots": {"id", "start_time", "end_time", "is_active"},
    "timetable_entries": {
        "id",
        "batch_id",
        "faculty_id",
        "subject_id",
        "time_slot_id",
        "day_of_week",
        "occurs_on",
        "slot_key",
        "is_active",
    },
    "bulk_operations": {"id", "status", "processed_items", "succeeded_items", "failed_items", "items"},
    "operation_logs": {"id", "operation_id", "level", "timestamp"},
    "activity_logs": {"id", "action", "entity_type", "operation_id"},
}


def find_schema_gaps(engine: Engine) -> tuple[list[str], dict[str, list[str]]]:
    missing_tables: list[str] = []
    missing_columns: dict[str, list[str]] = {}
    with engine.connect() as connection:
        inspector = inspect(connection)
        table_names = set(inspector.get_table_names())
        for table_name, columns in REQUIRED_COLUMNS.items():
            if table_name not in table_names:
                missing_tables.append(table_name)
                continue
            existing = {item["name"] for item in inspector.get_columns(table_name)}
            missing = sorted(columns - existing)
            if missing:
                missing_columns[table_name] = missing
    return missing_tables, missing_columns


def ensure_runtime_schema(engine: Engine | None = None) -> None:
    bind = engine or default_engine
    if get_settings().auto_create_schema:
        import app.models  # noqa: F401

        Base.metadata.create_all(bind=bind)
        return

    missing_tables, missing_columns = find_schema_gaps(bind)
    if missing_tables or missing_columns:
        logger.warning(
            "Database schema is behind the models (missing tables: %s, missing columns: %s); run `alembic upgrade head`",
            missing_tables,
            missing_columns,
        )
