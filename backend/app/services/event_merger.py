from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, Sequence

from app.core.exceptions import ValidationError
from app.services.intervals import Interval, ScheduleEntry, resolve_day


@dataclass(frozen=True)
class MergedBlock:
    start_time: datetime
    end_time: datetime
    member_entry_ids: tuple[str, ...]
    subject_id: str | None
    faculty_id: str | None

    @property
    def is_consecutive(self) -> bool:
        return len(self.member_entry_ids) > 1

    @property
    def duration_minutes(self) -> int:
        return int((self.end_time - self.start_time).total_seconds() // 60)


def _validate(intervals: Sequence[Interval]) -> None:
    previous: Interval | None = None
    for interval in intervals:
        if not interval.is_well_formed:
            raise ValidationError(
                f"Entry {interval.entry_id} has an empty or inverted time range",
                field="end_time",
                details={"entry_id": interval.entry_id},
            )
        if previous is not None and interval.start < previous.start:
            raise ValidationError(
                "Entries must be sorted by start time before merging",
                field="start_time",
                details={"entry_id": interval.entry_id},
            )
        previous = interval


def _close(members: list[Interval]) -> MergedBlock:
    return MergedBlock(
        start_time=members[0].start,
        end_time=members[-1].end,
        member_entry_ids=tuple(member.entry_id for member in members),
        subject_id=members[0].entry.subject_id,
        faculty_id=members[0].entry.faculty_id,
    )


def merge(intervals: Sequence[Interval]) -> list[MergedBlock]:
    """Collapse back-to-back same-subject, same-faculty intervals into blocks.

    Input must be sorted by start time. An interval joins the current block
    only when subject and faculty match the block's last member and it starts
    exactly when that member ends.
    """
    _validate(intervals)

    blocks: list[MergedBlock] = []
    current: list[Interval] = []
    for interval in intervals:
        if current:
            last = current[-1]
            if (
                interval.entry.subject_id == last.entry.subject_id
                and interval.entry.faculty_id == last.entry.faculty_id
                and interval.start == last.end
            ):
                current.append(interval)
                continue
            blocks.append(_close(current))
        current = [interval]
    if current:
        blocks.append(_close(current))
    return blocks


def merge_day(
    entries: Iterable[ScheduleEntry],
    on_date: date,
    *,
    batch_id: str | None = None,
    faculty_id: str | None = None,
) -> list[MergedBlock]:
    intervals = [
        interval
        for interval in resolve_day(entries, on_date)
        if (batch_id is None or interval.entry.batch_id == batch_id)
        and (faculty_id is None or interval.entry.faculty_id == faculty_id)
    ]
    intervals.sort(key=lambda item: (item.start, item.end, item.entry_id))
    return merge(intervals)
