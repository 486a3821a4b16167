from datetime import date

from app.core.exceptions import ConflictError
from app.models.timetable import DayOfWeek, EntryType
from app.services.conflict_detector import (
    ConflictType,
    ExamBlock,
    HolidayRule,
    Severity,
    detect,
    effective_severity,
    severity_by_entry,
    summarize,
)
from app.services.intervals import ScheduleEntry, parse_clock

MONDAY = date(2026, 3, 2)


def entry(
    entry_id,
    *,
    batch="B1",
    faculty="F1",
    subject="S1",
    slot="P1",
    start="09:30",
    end="10:30",
    on=None,
    entry_type=EntryType.regular,
    department="CSE",
):
    return ScheduleEntry(
        id=entry_id,
        batch_id=batch,
        faculty_id=faculty,
        subject_id=subject,
        time_slot_id=slot,
        start_time=parse_clock(start),
        end_time=parse_clock(end),
        day_of_week=DayOfWeek.monday,
        occurs_on=on,
        entry_type=entry_type,
        department=department,
    )


def kinds(reports):
    return sorted((report.conflict_type, report.subject_entry_id, report.conflicting_entry_ids) for report in reports)


def test_overlap_detection_is_symmetric():
    a = entry("a", faculty="F1", subject="S1")
    b = entry("b", faculty="F2", subject="S2", start="10:00", end="11:00", slot="X")

    assert detect([a, b], MONDAY) == detect([b, a], MONDAY)
    assert kinds(detect([a, b], MONDAY)) == [(ConflictType.batch_double_booking, "a", ("b",))]


def test_entry_never_conflicts_with_itself_or_its_exact_duplicate():
    a = entry("a")
    twin = entry("twin")

    assert detect([a, a], MONDAY) == []
    assert detect([a, twin], MONDAY) == []


def test_three_overlapping_entries_yield_pairwise_reports():
    a = entry("a", faculty=None, subject="S1")
    b = entry("b", faculty=None, subject="S2")
    c = entry("c", faculty=None, subject="S3", start="10:00", end="11:00", slot="X")

    reports = detect([c, b, a], MONDAY)

    assert kinds(reports) == [
        (ConflictType.batch_double_booking, "a", ("b",)),
        (ConflictType.batch_double_booking, "a", ("c",)),
        (ConflictType.batch_double_booking, "b", ("c",)),
    ]
    assert all(report.severity == Severity.critical for report in reports)


def test_batch_scenario_reports_single_critical_conflict():
    existing = entry("existing", batch="B1", faculty="F1", subject="S1")
    candidate = entry("candidate", batch="B1", faculty="F2", subject="S2")

    reports = detect([existing, candidate], MONDAY, focus_ids=["candidate"])

    assert len(reports) == 1
    assert reports[0].conflict_type == ConflictType.batch_double_booking
    assert reports[0].severity == Severity.critical
    assert reports[0].involves("candidate")
    assert not reports[0].overridable


def test_shared_batch_and_faculty_emit_both_reports():
    a = entry("a", subject="S1")
    b = entry("b", subject="S2", start="10:00", end="11:00", slot="X")

    assert kinds(detect([a, b], MONDAY)) == [
        (ConflictType.batch_double_booking, "a", ("b",)),
        (ConflictType.faculty_conflict, "a", ("b",)),
    ]


def test_faculty_conflict_across_batches_is_high_and_overridable():
    a = entry("a", batch="B1")
    b = entry("b", batch="B2")

    reports = detect([a, b], MONDAY)

    assert kinds(reports) == [(ConflictType.faculty_conflict, "a", ("b",))]
    assert reports[0].severity == Severity.high
    assert reports[0].overridable


def test_unrelated_overlap_is_informational():
    a = entry("a", batch="B1", faculty="F1")
    b = entry("b", batch="B2", faculty="F2")
    c = entry("c", batch="B3", faculty=None, subject="S2")
    d = entry("d", batch="B4", faculty=None, subject="S3")

    reports = detect([a, b, c, d], MONDAY)

    assert {report.conflict_type for report in reports} == {ConflictType.time_overlap}
    assert len(reports) == 6
    assert all(report.severity == Severity.medium and not report.blocking for report in reports)
    assert detect([a, b], MONDAY, include_time_overlaps=False) == []


def test_back_to_back_entries_do_not_overlap():
    a = entry("a", subject="S1")
    b = entry("b", subject="S2", slot="P2", start="10:30", end="11:30")

    assert detect([a, b], MONDAY) == []


def test_module_session_overlap_adds_module_report():
    module = entry("a", faculty="F1", subject="LAB", slot="MODULE", start="09:00", end="12:00")
    lecture = entry("b", faculty="F2", subject="S2")

    reports = detect([module, lecture], MONDAY)

    assert kinds(reports) == [
        (ConflictType.batch_double_booking, "a", ("b",)),
        (ConflictType.module_overlap, "a", ("b",)),
    ]
    assert detect([module, lecture], MONDAY, module_min_minutes=240)[0].conflict_type == ConflictType.batch_double_booking
    assert len(detect([module, lecture], MONDAY, module_min_minutes=240)) == 1


def test_holiday_applies_to_dated_entries_in_matching_department():
    holiday = HolidayRule(id="h1", name="Founders Day", on_date=MONDAY)
    ece_only = HolidayRule(id="h2", name="ECE Symposium", on_date=MONDAY, department="ECE")
    dated = entry("dated", on=MONDAY)
    recurring = entry("recurring", batch="B2", slot="P2", start="10:30", end="11:30")

    reports = detect([dated, recurring], MONDAY, holidays=[holiday, ece_only])

    assert kinds(reports) == [(ConflictType.holiday_scheduling, "dated", ("h1",))]
    assert reports[0].severity == Severity.medium


def test_exam_period_blocks_regular_dated_entries_only():
    period = ExamBlock(id="x1", name="Midterms", start_date=date(2026, 3, 1), end_date=date(2026, 3, 7))
    regular = entry("regular", on=MONDAY)
    exam = entry("exam", batch="B2", faculty="F2", on=MONDAY, entry_type=EntryType.exam, slot="P2", start="10:30", end="11:30")

    reports = detect([regular, exam], MONDAY, exam_periods=[period])

    assert kinds(reports) == [(ConflictType.exam_period_conflict, "regular", ("x1",))]
    assert reports[0].severity == Severity.high

    open_period = ExamBlock(
        id="x2",
        name="Practicals",
        start_date=MONDAY,
        end_date=MONDAY,
        block_regular_classes=False,
    )
    assert detect([regular], MONDAY, exam_periods=[open_period]) == []


def test_focus_limits_reports_to_the_focused_entries():
    a = entry("a", batch="B1", faculty="F1")
    b = entry("b", batch="B1", faculty="F2", subject="S2")
    c = entry("c", batch="B2", faculty="F3", subject="S3", slot="P4", start="14:00", end="15:00")
    d = entry("d", batch="B2", faculty="F4", subject="S4", slot="P4", start="14:00", end="15:00")

    assert len(detect([a, b, c, d], MONDAY)) == 2
    focused = detect([a, b, c, d], MONDAY, focus_ids=["c"])
    assert kinds(focused) == [(ConflictType.batch_double_booking, "c", ("d",))]


def test_effective_severity_is_the_maximum_over_reports():
    a = entry("a", batch="B1", faculty="F1", subject="S1")
    b = entry("b", batch="B1", faculty="F2", subject="S2")
    c = entry("c", batch="B2", faculty="F2", subject="S3", start="10:00", end="11:00", slot="X")

    reports = detect([a, b, c], MONDAY)

    assert effective_severity("a", reports) == Severity.critical
    assert effective_severity("c", reports) == Severity.high
    assert effective_severity("missing", reports) is None
    assert severity_by_entry(reports) == {"a": Severity.critical, "b": Severity.critical, "c": Severity.high}

    summary = summarize(reports)
    assert summary["blocking"] == 2
    assert summary["by_type"][ConflictType.batch_double_booking.value] == 1
    assert summary["by_type"][ConflictType.faculty_conflict.value] == 1


def test_oriented_report_puts_requested_entry_first():
    a = entry("a", batch="B1")
    b = entry("b", batch="B2")
    report = detect([a, b], MONDAY)[0]

    oriented = report.oriented_to("b")

    assert oriented.subject_entry_id == "b"
    assert oriented.conflicting_entry_ids == ("a",)
    assert report.oriented_to("a") is report


def test_conflict_error_is_overridable_only_without_batch_conflicts():
    faculty_only = detect([entry("a", batch="B1"), entry("b", batch="B2")], MONDAY)
    with_batch = detect([entry("a"), entry("b", subject="S2")], MONDAY)

    assert ConflictError("faculty busy", faculty_only).overridable
    error = ConflictError("batch busy", with_batch, item_index=3)
    assert not error.overridable
    assert error.status_code == 409
    assert error.details["item_index"] == 3
    assert error.details["conflicts"][0]["conflict_type"] == "BATCH_DOUBLE_BOOKING"
