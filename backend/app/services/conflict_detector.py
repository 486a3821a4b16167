from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field, replace
from datetime import date
from enum import Enum
from typing import Callable, Iterable, Iterator, Sequence

from app.models.academic_calendar import ExamPeriod, Holiday
from app.models.timetable import EntryType
from app.services.intervals import Interval, ScheduleEntry, format_clock, resolve_day

DEFAULT_MODULE_MIN_MINUTES = 180


class ConflictType(str, Enum):
    batch_double_booking = "BATCH_DOUBLE_BOOKING"
    faculty_conflict = "FACULTY_CONFLICT"
    time_overlap = "TIME_OVERLAP"
    module_overlap = "MODULE_OVERLAP"
    holiday_scheduling = "HOLIDAY_SCHEDULING"
    exam_period_conflict = "EXAM_PERIOD_CONFLICT"


class Severity(str, Enum):
    critical = "CRITICAL"
    high = "HIGH"
    medium = "MEDIUM"
    low = "LOW"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.low: 0,
    Severity.medium: 1,
    Severity.high: 2,
    Severity.critical: 3,
}

_TYPE_ORDER = {conflict_type: index for index, conflict_type in enumerate(ConflictType)}


@dataclass(frozen=True)
class HolidayRule:
    id: str
    name: str
    on_date: date
    department: str | None = None

    @classmethod
    def from_model(cls, holiday: Holiday) -> HolidayRule:
        return cls(id=holiday.id, name=holiday.name, on_date=holiday.holiday_date, department=holiday.department)

    def applies_to(self, entry: ScheduleEntry, on_date: date) -> bool:
        return self.on_date == on_date and (self.department is None or self.department == entry.department)


@dataclass(frozen=True)
class ExamBlock:
    id: str
    name: str
    start_date: date
    end_date: date
    department: str | None = None
    block_regular_classes: bool = True

    @classmethod
    def from_model(cls, period: ExamPeriod) -> ExamBlock:
        return cls(
            id=period.id,
            name=period.name,
            start_date=period.start_date,
            end_date=period.end_date,
            department=period.department,
            block_regular_classes=period.block_regular_classes,
        )

    def blocks(self, entry: ScheduleEntry, on_date: date) -> bool:
        return (
            self.block_regular_classes
            and entry.entry_type == EntryType.regular
            and self.start_date <= on_date <= self.end_date
            and (self.department is None or self.department == entry.department)
        )


@dataclass(frozen=True)
class ConflictReport:
    conflict_type: ConflictType
    severity: Severity
    subject_entry_id: str
    conflicting_entry_ids: tuple[str, ...]
    message: str
    occurs_on: date | None = None
    details: dict = field(default_factory=dict, compare=False, hash=False)

    @property
    def blocking(self) -> bool:
        return self.severity in (Severity.critical, Severity.high)

    @property
    def overridable(self) -> bool:
        # A batch can never attend two classes at once, so that conflict is never overridable.
        return self.severity == Severity.high and self.conflict_type != ConflictType.batch_double_booking

    @property
    def entry_ids(self) -> tuple[str, ...]:
        return (self.subject_entry_id, *self.conflicting_entry_ids)

    def involves(self, entry_id: str) -> bool:
        return entry_id in self.entry_ids

    def oriented_to(self, entry_id: str) -> ConflictReport:
        """Same report with ``entry_id`` as the subject, when it is one side of a pair report."""
        if self.subject_entry_id == entry_id or entry_id not in self.conflicting_entry_ids:
            return self
        others = tuple(item for item in self.entry_ids if item != entry_id)
        return replace(self, subject_entry_id=entry_id, conflicting_entry_ids=others)

    def to_dict(self) -> dict:
        return {
            "conflict_type": self.conflict_type.value,
            "severity": self.severity.value,
            "subject_entry_id": self.subject_entry_id,
            "conflicting_entry_ids": list(self.conflicting_entry_ids),
            "message": self.message,
            "occurs_on": self.occurs_on.isoformat() if self.occurs_on else None,
            "details": dict(self.details),
        }


def _sort_key(report: ConflictReport) -> tuple:
    return (_TYPE_ORDER[report.conflict_type], report.subject_entry_id, report.conflicting_entry_ids)


def _group(intervals: Iterable[Interval], key: Callable[[Interval], str | None]) -> dict[str, list[Interval]]:
    groups: dict[str, list[Interval]] = defaultdict(list)
    for interval in intervals:
        value = key(interval)
        if value is not None:
            groups[value].append(interval)
    return groups


def _overlapping_pairs(
    intervals: Sequence[Interval],
    focus: frozenset[str] | None,
) -> Iterator[tuple[Interval, Interval]]:
    """Yield each overlapping pair once, lower entry id first.

    Sweeps the start-sorted intervals keeping only those still open, so pairs
    that cannot overlap are never compared.
    """
    ordered = sorted(intervals, key=lambda item: (item.start, item.entry_id))
    open_intervals: list[Interval] = []
    for current in ordered:
        open_intervals = [item for item in open_intervals if item.end > current.start]
        for previous in open_intervals:
            if previous.entry_id == current.entry_id or previous.entry.is_duplicate_of(current.entry):
                continue
            if focus is not None and previous.entry_id not in focus and current.entry_id not in focus:
                continue
            if previous.overlaps(current):
                yield (previous, current) if previous.entry_id < current.entry_id else (current, previous)
        open_intervals.append(current)


def _time_range(interval: Interval) -> str:
    return f"{format_clock(interval.start.time())}-{format_clock(interval.end.time())}"


def _pair_report(
    conflict_type: ConflictType,
    severity: Severity,
    first: Interval,
    second: Interval,
    on_date: date,
    message: str,
) -> ConflictReport:
    return ConflictReport(
        conflict_type=conflict_type,
        severity=severity,
        subject_entry_id=first.entry_id,
        conflicting_entry_ids=(second.entry_id,),
        message=message,
        occurs_on=on_date,
        details={
            "batch_ids": sorted({first.entry.batch_id, second.entry.batch_id}),
            "faculty_ids": sorted({item for item in (first.entry.faculty_id, second.entry.faculty_id) if item}),
            "time_ranges": {first.entry_id: _time_range(first), second.entry_id: _time_range(second)},
        },
    )


def _calendar_reports(
    intervals: Sequence[Interval],
    on_date: date,
    holidays: Sequence[HolidayRule],
    exam_periods: Sequence[ExamBlock],
    focus: frozenset[str] | None,
) -> list[ConflictReport]:
    reports: list[ConflictReport] = []
    for interval in intervals:
        entry = interval.entry
        # Recurring templates are not tied to a date; only concrete occurrences are checked.
        if entry.is_recurring or (focus is not None and entry.id not in focus):
            continue
        matching_holidays = [holiday for holiday in holidays if holiday.applies_to(entry, on_date)]
        if matching_holidays:
            reports.append(
                ConflictReport(
                    conflict_type=ConflictType.holiday_scheduling,
                    severity=Severity.medium,
                    subject_entry_id=entry.id,
                    conflicting_entry_ids=tuple(holiday.id for holiday in matching_holidays),
                    message=f"{on_date.isoformat()} is a holiday: "
                    + ", ".join(holiday.name for holiday in matching_holidays),
                    occurs_on=on_date,
                    details={"holidays": [holiday.name for holiday in matching_holidays]},
                )
            )
        blocking_periods = [period for period in exam_periods if period.blocks(entry, on_date)]
        if blocking_periods:
            reports.append(
                ConflictReport(
                    conflict_type=ConflictType.exam_period_conflict,
                    severity=Severity.high,
                    subject_entry_id=entry.id,
                    conflicting_entry_ids=tuple(period.id for period in blocking_periods),
                    message="Regular classes are blocked during exam period: "
                    + ", ".join(period.name for period in blocking_periods),
                    occurs_on=on_date,
                    details={"exam_periods": [period.name for period in blocking_periods]},
                )
            )
    return reports


def detect(
    entries: Iterable[ScheduleEntry],
    on_date: date,
    *,
    holidays: Sequence[HolidayRule] = (),
    exam_periods: Sequence[ExamBlock] = (),
    focus_ids: Iterable[str] | None = None,
    include_time_overlaps: bool = True,
    module_min_minutes: int = DEFAULT_MODULE_MIN_MINUTES,
) -> list[ConflictReport]:
    """Every conflict among ``entries`` on ``on_date``.

    Reports are never collapsed: an entry pair sharing both batch and faculty
    yields a batch report and a faculty report. ``focus_ids`` limits the
    output to reports involving those entries.
    """
    intervals = resolve_day(entries, on_date)
    focus = frozenset(focus_ids) if focus_ids is not None else None
    reports: list[ConflictReport] = []

    for batch_id, group in _group(intervals, lambda item: item.entry.batch_id).items():
        for first, second in _overlapping_pairs(group, focus):
            reports.append(
                _pair_report(
                    ConflictType.batch_double_booking,
                    Severity.critical,
                    first,
                    second,
                    on_date,
                    f"Batch {batch_id} has overlapping classes at {_time_range(first)} and {_time_range(second)}",
                )
            )
            if max(first.minutes, second.minutes) >= module_min_minutes:
                reports.append(
                    _pair_report(
                        ConflictType.module_overlap,
                        Severity.high,
                        first,
                        second,
                        on_date,
                        f"Batch {batch_id} has a class overlapping a module session",
                    )
                )

    for faculty_id, group in _group(intervals, lambda item: item.entry.faculty_id).items():
        for first, second in _overlapping_pairs(group, focus):
            reports.append(
                _pair_report(
                    ConflictType.faculty_conflict,
                    Severity.high,
                    first,
                    second,
                    on_date,
                    f"Faculty {faculty_id} has overlapping teaching assignments",
                )
            )

    if include_time_overlaps:
        for first, second in _overlapping_pairs(intervals, focus):
            if first.entry.batch_id == second.entry.batch_id:
                continue
            if first.entry.faculty_id is not None and first.entry.faculty_id == second.entry.faculty_id:
                continue
            reports.append(
                _pair_report(
                    ConflictType.time_overlap,
                    Severity.medium,
                    first,
                    second,
                    on_date,
                    "Time slot overlap between different classes",
                )
            )

    reports.extend(_calendar_reports(intervals, on_date, holidays, exam_periods, focus))
    return sorted(reports, key=_sort_key)


def effective_severity(entry_id: str, reports: Iterable[ConflictReport]) -> Severity | None:
    severities = [report.severity for report in reports if report.involves(entry_id)]
    if not severities:
        return None
    return max(severities, key=lambda item: item.rank)


def severity_by_entry(reports: Iterable[ConflictReport]) -> dict[str, Severity]:
    result: dict[str, Severity] = {}
    for report in reports:
        for entry_id in report.entry_ids:
            current = result.get(entry_id)
            if current is None or report.severity.rank > current.rank:
                result[entry_id] = report.severity
    return result


def summarize(reports: Sequence[ConflictReport]) -> dict:
    by_severity = {severity.value: 0 for severity in Severity}
    by_type: dict[str, int] = {}
    for report in reports:
        by_severity[report.severity.value] += 1
        by_type[report.conflict_type.value] = by_type.get(report.conflict_type.value, 0) + 1
    return {
        "total": len(reports),
        "blocking": sum(1 for report in reports if report.blocking),
        "by_severity": by_severity,
        "by_type": by_type,
    }
