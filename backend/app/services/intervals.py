"""Normalizes schedule entries into concrete time intervals for a calendar date.

Everything in this module is pure: no database access and no clock reads.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterable

from app.core.exceptions import ValidationError
from app.models.timetable import DayOfWeek, EntryType, TimetableEntry

DAY_ORDER: tuple[DayOfWeek, ...] = (
    DayOfWeek.monday,
    DayOfWeek.tuesday,
    DayOfWeek.wednesday,
    DayOfWeek.thursday,
    DayOfWeek.friday,
    DayOfWeek.saturday,
    DayOfWeek.sunday,
)

_CLOCK_PATTERN = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


def parse_clock(value: str, *, field: str = "time", item_index: int | None = None) -> time:
    match = _CLOCK_PATTERN.match((value or "").strip())
    if match is None:
        raise ValidationError(
            f"Invalid time '{value}'; expected HH:MM",
            field=field,
            item_index=item_index,
        )
    return time(int(match.group(1)), int(match.group(2)))


def format_clock(value: time) -> str:
    return value.strftime("%H:%M")


def weekday_of(value: date) -> DayOfWeek:
    return DAY_ORDER[value.weekday()]


def next_occurrence(day: DayOfWeek, reference: date) -> date:
    """First date on or after ``reference`` that falls on ``day``."""
    offset = (DAY_ORDER.index(day) - reference.weekday()) % 7
    return reference + timedelta(days=offset)


@dataclass(frozen=True)
class ScheduleEntry:
    id: str
    batch_id: str
    faculty_id: str | None
    subject_id: str | None
    time_slot_id: str
    start_time: time
    end_time: time
    day_of_week: DayOfWeek
    occurs_on: date | None = None
    entry_type: EntryType = EntryType.regular
    active: bool = True
    department: str | None = None

    @property
    def is_recurring(self) -> bool:
        return self.occurs_on is None

    @property
    def duplicate_key(self) -> tuple:
        return (
            self.batch_id,
            self.subject_id,
            self.faculty_id,
            self.time_slot_id,
            self.day_of_week,
            self.occurs_on,
        )

    def is_duplicate_of(self, other: ScheduleEntry) -> bool:
        return self.duplicate_key == other.duplicate_key

    @classmethod
    def from_model(cls, entry: TimetableEntry, *, department: str | None = None) -> ScheduleEntry:
        slot = entry.time_slot
        return cls(
            id=entry.id,
            batch_id=entry.batch_id,
            faculty_id=entry.faculty_id,
            subject_id=entry.subject_id,
            time_slot_id=entry.time_slot_id,
            start_time=parse_clock(slot.start_time, field="start_time"),
            end_time=parse_clock(slot.end_time, field="end_time"),
            day_of_week=entry.day_of_week,
            occurs_on=entry.occurs_on,
            entry_type=entry.entry_type,
            active=entry.is_active,
            department=department,
        )


@dataclass(frozen=True)
class Interval:
    """Half-open ``[start, end)`` occurrence of an entry on one date."""

    entry: ScheduleEntry
    start: datetime
    end: datetime

    @property
    def entry_id(self) -> str:
        return self.entry.id

    @property
    def minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)

    @property
    def is_well_formed(self) -> bool:
        return self.end > self.start

    def overlaps(self, other: Interval) -> bool:
        return self.start < other.end and other.start < self.end


def resolve(entry: ScheduleEntry, on_date: date) -> Interval | None:
    """Concrete interval of ``entry`` on ``on_date``, or None when it does not occur that day."""
    if not entry.active:
        return None
    if entry.occurs_on is not None:
        if entry.occurs_on != on_date:
            return None
    elif entry.day_of_week != weekday_of(on_date):
        return None

    start = datetime.combine(on_date, entry.start_time)
    end = datetime.combine(on_date, entry.end_time)
    if end <= start:
        raise ValidationError(
            f"Entry {entry.id} has an empty or inverted time range",
            field="end_time",
            details={"entry_id": entry.id},
        )
    return Interval(entry=entry, start=start, end=end)


def resolve_day(entries: Iterable[ScheduleEntry], on_date: date) -> list[Interval]:
    """Resolve every entry for ``on_date``; a dated override replaces the recurring template
    of the same batch and time slot."""
    resolved = [interval for interval in (resolve(entry, on_date) for entry in entries) if interval is not None]
    overridden = {
        (interval.entry.batch_id, interval.entry.time_slot_id)
        for interval in resolved
        if not interval.entry.is_recurring
    }
    if not overridden:
        return resolved
    return [
        interval
        for interval in resolved
        if not (
            interval.entry.is_recurring
            and (interval.entry.batch_id, interval.entry.time_slot_id) in overridden
        )
    ]
