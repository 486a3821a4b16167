import pytest

from app.core.exceptions import ValidationError
from app.models.bulk_operation import BulkOperation, LogLevel, OperationKind
from app.services.operation_log import OperationLog, as_utc


@pytest.fixture()
def operation(db):
    operation = BulkOperation(initiator_id="user-1", kind=OperationKind.mass_create, total_items=0, items=[])
    db.add(operation)
    db.commit()
    return operation


def fill(db, log, operation_id, count):
    for index in range(count):
        level = LogLevel.error if index % 5 == 0 else LogLevel.info
        log.append(db, operation_id, level, f"Item {index + 1} processed", {"item_index": index})
    db.commit()


def test_appends_have_strictly_increasing_timestamps(db, operation):
    log = OperationLog()
    fill(db, log, operation.id, 20)

    stamps = [entry.timestamp for entry in log.query(db, operation.id, limit=100, order="asc").entries]

    assert len(stamps) == 20
    assert all(earlier < later for earlier, later in zip(stamps, stamps[1:]))


def test_new_log_instance_continues_after_stored_entries(db, operation):
    fill(db, OperationLog(), operation.id, 3)
    restarted = OperationLog()
    record = restarted.append(db, operation.id, LogLevel.info, "Resumed")
    db.commit()

    previous = restarted.query(db, operation.id, limit=2).entries[1]
    assert as_utc(record.timestamp) > as_utc(previous.timestamp)


def test_query_pages_newest_first(db, operation):
    log = OperationLog()
    fill(db, log, operation.id, 12)

    first = log.query(db, operation.id, limit=5)
    assert first.total == 12
    assert first.has_more
    assert [entry.details["item_index"] for entry in first.entries] == [11, 10, 9, 8, 7]

    last = log.query(db, operation.id, limit=5, offset=10)
    assert [entry.details["item_index"] for entry in last.entries] == [1, 0]
    assert not last.has_more


def test_query_filters_by_level(db, operation):
    log = OperationLog()
    fill(db, log, operation.id, 12)

    errors = log.query(db, operation.id, level=LogLevel.error)

    assert errors.total == 3
    assert {entry.level for entry in errors.entries} == {LogLevel.error}
    assert log.latest(db, operation.id).details["item_index"] == 11


def test_logs_are_scoped_to_their_operation(db, operation):
    other = BulkOperation(initiator_id="user-2", kind=OperationKind.mass_delete, total_items=0, items=[])
    db.add(other)
    db.commit()
    log = OperationLog()
    fill(db, log, operation.id, 4)

    assert log.query(db, other.id).total == 0
    assert log.latest(db, other.id) is None


@pytest.mark.parametrize("limit", [0, -1, 501])
def test_out_of_range_limit_is_rejected(db, operation, limit):
    with pytest.raises(ValidationError) as exc_info:
        OperationLog().query(db, operation.id, limit=limit)
    assert exc_info.value.details["field"] == "limit"


def test_negative_offset_is_rejected(db, operation):
    with pytest.raises(ValidationError):
        OperationLog().query(db, operation.id, offset=-1)


def test_timestamp_cache_keeps_only_recent_operations(db, operation):
    others = [
        BulkOperation(initiator_id="user-1", kind=OperationKind.mass_create, total_items=0, items=[]) for _ in range(2)
    ]
    db.add_all(others)
    db.commit()
    log = OperationLog(max_tracked=2)
    first = log.append(db, operation.id, LogLevel.info, "First")
    for other in others:
        log.append(db, other.id, LogLevel.info, "Other")
    db.commit()

    assert log.tracked() == 2
    after_eviction = log.append(db, operation.id, LogLevel.info, "Second")
    db.commit()
    assert log.tracked() == 2
    assert as_utc(after_eviction.timestamp) > as_utc(first.timestamp)


def test_forget_drops_the_cached_timestamp(db, operation):
    log = OperationLog()
    fill(db, log, operation.id, 2)
    assert log.tracked() == 1

    log.forget(operation.id)

    assert log.tracked() == 0
