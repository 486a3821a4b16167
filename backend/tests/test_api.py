from app.core.security import create_access_token
from app.models.user import UserRole

MONDAY = "2026-03-02"


def entry_payload(campus, *, batch=None, faculty=None, subject="S1", slot="P1", **extra):
    payload = {
        "batch_id": (batch or campus.b1).id,
        "faculty_id": (faculty or campus.f1).id,
        "subject_id": campus.subjects[subject].id,
        "time_slot_id": campus.slots[slot].id,
        "day_of_week": "monday",
    }
    payload.update(extra)
    return payload


def test_requests_without_a_token_are_rejected(client, campus):
    response = client.get("/api/timetable/entries")
    assert response.status_code in {401, 403}


def test_entry_create_duplicate_and_conflict(client, campus, headers):
    auth = headers(campus.scheduler)

    created = client.post("/api/timetable/entries", json=entry_payload(campus), headers=auth)
    assert created.status_code == 201
    body = created.json()
    assert body["created"] is True
    assert body["entry"]["start_time"] == "09:30"
    assert body["entry"]["day_of_week"] == "MONDAY"
    entry_id = body["entry"]["id"]

    duplicate = client.post("/api/timetable/entries", json=entry_payload(campus), headers=auth)
    assert duplicate.status_code == 200
    assert duplicate.json()["created"] is False
    assert duplicate.json()["duplicate_of"] == entry_id

    clash = client.post(
        "/api/timetable/entries",
        json=entry_payload(campus, faculty=campus.f2, subject="S2", override_conflicts=True),
        headers=auth,
    )
    assert clash.status_code == 409
    details = clash.json()["details"]
    assert details["overridable"] is False
    assert [item["conflict_type"] for item in details["conflicts"]] == ["BATCH_DOUBLE_BOOKING"]
    assert details["conflicts"][0]["conflicting_entry_ids"] == [entry_id]


def test_faculty_override_is_stored_and_flagged(client, campus, headers):
    auth = headers(campus.scheduler)
    client.post("/api/timetable/entries", json=entry_payload(campus), headers=auth)

    blocked = client.post("/api/timetable/entries", json=entry_payload(campus, batch=campus.b2), headers=auth)
    assert blocked.status_code == 409
    assert blocked.json()["details"]["overridable"] is True

    stored = client.post(
        "/api/timetable/entries",
        json=entry_payload(campus, batch=campus.b2, override_conflicts=True),
        headers=auth,
    )
    assert stored.status_code == 201
    assert stored.json()["entry"]["conflict_override"] is True

    detected = client.post("/api/timetable/conflicts/detect", json={"on": MONDAY}, headers=auth)
    assert detected.status_code == 200
    payload = detected.json()
    assert [item["conflict_type"] for item in payload["conflicts"]] == ["FACULTY_CONFLICT"]
    assert payload["summary"]["blocking"] == 1
    assert set(payload["severity_by_entry"].values()) == {"HIGH"}


def test_conflict_check_suggests_alternatives(client, campus, headers):
    auth = headers(campus.scheduler)
    client.post("/api/timetable/entries", json=entry_payload(campus), headers=auth)

    response = client.post(
        "/api/timetable/conflicts/check",
        json={**entry_payload(campus, faculty=campus.f2, subject="S2"), "reference_date": MONDAY},
        headers=auth,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["has_blocking"] is True
    assert body["overridable"] is False
    assert body["effective_severity"] == "CRITICAL"
    assert body["checked_dates"] == [MONDAY]
    assert [item["name"] for item in body["alternatives"]] == ["P2", "P3", "P4"]

    free = client.post(
        "/api/timetable/conflicts/check",
        json={**entry_payload(campus, faculty=campus.f2, subject="S2", slot="P2"), "reference_date": MONDAY},
        headers=auth,
    )
    assert free.json()["conflicts"] == []
    assert free.json()["effective_severity"] is None
    assert free.json()["alternatives"] == []


def test_invalid_entries_name_the_offending_field(client, campus, headers):
    auth = headers(campus.scheduler)

    unknown = client.post("/api/timetable/entries", json=entry_payload(campus, batch_id="missing"), headers=auth)
    assert unknown.status_code == 422
    assert unknown.json()["details"]["field"] == "batch_id"

    malformed = client.post(
        "/api/timetable/entries",
        json=entry_payload(campus, time_slot_id=None, start_time="25:00", end_time="26:00"),
        headers=auth,
    )
    assert malformed.status_code == 422


def test_role_checks_on_timetable_routes(client, campus, headers):
    for user in (campus.student, campus.f1):
        response = client.post("/api/timetable/entries", json=entry_payload(campus), headers=headers(user))
        assert response.status_code == 403

    client.post("/api/timetable/entries", json=entry_payload(campus), headers=headers(campus.admin))
    client.post(
        "/api/timetable/entries",
        json=entry_payload(campus, batch=campus.b2, faculty=campus.f2, slot="P2"),
        headers=headers(campus.admin),
    )

    own = client.get("/api/timetable/entries", headers=headers(campus.f2)).json()
    assert [item["faculty_id"] for item in own] == [campus.f2.id]
    assert len(client.get("/api/timetable/entries", headers=headers(campus.student)).json()) == 2


def test_update_and_deactivate_entry(client, campus, headers):
    auth = headers(campus.scheduler)
    entry_id = client.post("/api/timetable/entries", json=entry_payload(campus), headers=auth).json()["entry"]["id"]

    moved = client.put(
        f"/api/timetable/entries/{entry_id}",
        json={"time_slot_id": campus.slots["P3"].id, "notes": "Moved after lab"},
        headers=auth,
    )
    assert moved.status_code == 200
    assert moved.json()["entry"]["start_time"] == "11:30"
    assert moved.json()["entry"]["notes"] == "Moved after lab"

    first = client.delete(f"/api/timetable/entries/{entry_id}", headers=auth)
    assert first.json() == {"success": True, "deactivated": True}
    second = client.delete(f"/api/timetable/entries/{entry_id}", headers=auth)
    assert second.json() == {"success": True, "deactivated": False}
    assert client.get(f"/api/timetable/entries/{entry_id}", headers=auth).status_code == 404

    inactive = client.get("/api/timetable/entries", params={"include_inactive": True}, headers=auth).json()
    assert [item["is_active"] for item in inactive] == [False]


def test_blocks_merge_back_to_back_classes(client, campus, headers):
    auth = headers(campus.scheduler)
    for slot in ("P1", "P2"):
        client.post("/api/timetable/entries", json=entry_payload(campus, slot=slot), headers=auth)
    client.post("/api/timetable/entries", json=entry_payload(campus, slot="P3", subject="S2"), headers=auth)

    response = client.get("/api/timetable/blocks", params={"on": MONDAY, "batch_id": campus.b1.id}, headers=auth)

    assert response.status_code == 200
    blocks = response.json()
    assert [len(block["member_entry_ids"]) for block in blocks] == [2, 1]
    assert blocks[0]["duration_minutes"] == 120
    assert blocks[0]["is_consecutive"] is True


def test_bulk_operation_runs_and_exposes_logs(client, campus, headers):
    auth = headers(campus.scheduler)
    items = [
        entry_payload(campus, slot="P1"),
        entry_payload(campus, slot="P2", subject="S2"),
        entry_payload(campus, slot="P1", subject="S3", faculty=campus.f2),
        {"batch_id": campus.b1.id},
    ]

    submitted = client.post("/api/operations", json={"kind": "MASS_CREATE", "items": items}, headers=auth)
    assert submitted.status_code == 201
    operation_id = submitted.json()["id"]
    assert submitted.json()["total_items"] == 4

    status = client.get(f"/api/operations/{operation_id}", headers=auth).json()
    assert status["status"] == "COMPLETED"
    assert (status["processed_items"], status["succeeded_items"], status["failed_items"]) == (4, 2, 2)
    assert status["progress"]["percent"] == 100.0

    errors = client.get(f"/api/operations/{operation_id}/logs", params={"level": "ERROR"}, headers=auth).json()
    assert errors["total"] == 2
    assert sorted(entry["details"]["item_index"] for entry in errors["entries"]) == [2, 3]

    page = client.get(f"/api/operations/{operation_id}/logs", params={"limit": 2}, headers=auth).json()
    assert len(page["entries"]) == 2
    assert page["has_more"] is True
    assert page["entries"][0]["message"].startswith("Operation completed")

    history = client.get("/api/operations", params={"status": "COMPLETED"}, headers=auth).json()
    assert [operation["id"] for operation in history] == [operation_id]


def test_dry_run_returns_a_preview(client, campus, headers):
    auth = headers(campus.scheduler)
    items = [entry_payload(campus), entry_payload(campus, subject="S2", faculty=campus.f2)]

    response = client.post("/api/operations", json={"kind": "IMPORT", "items": items, "dry_run": True}, headers=auth)

    assert response.status_code == 200
    body = response.json()
    assert body["dry_run"] is True
    assert (body["would_succeed"], body["would_fail"]) == (1, 1)
    assert body["items"][1]["conflicts"][0]["severity"] == "CRITICAL"
    assert client.get("/api/timetable/entries", headers=auth).json() == []


def test_operation_permissions(client, campus, headers):
    owner = headers(campus.scheduler)
    created = client.post(
        "/api/operations",
        json={"kind": "MASS_CREATE", "items": [entry_payload(campus)], "auto_start": False},
        headers=owner,
    )
    assert created.status_code == 201
    assert created.json()["status"] == "PENDING"
    operation_id = created.json()["id"]

    assert client.post("/api/operations", json={"kind": "MASS_CREATE", "items": []}, headers=owner).status_code == 422
    student = client.post(
        "/api/operations", json={"kind": "MASS_CREATE", "items": [entry_payload(campus)]}, headers=headers(campus.student)
    )
    assert student.status_code == 403

    outsider = headers(campus.other_scheduler)
    assert client.get(f"/api/operations/{operation_id}", headers=outsider).status_code == 403
    assert client.delete(f"/api/operations/{operation_id}", headers=outsider).status_code == 403
    assert client.get(f"/api/operations/{operation_id}/logs", headers=outsider).status_code == 403

    pause = client.patch(f"/api/operations/{operation_id}", json={"action": "pause"}, headers=owner)
    assert pause.status_code == 403
    invalid = client.patch(f"/api/operations/{operation_id}", json={"action": "pause"}, headers=headers(campus.admin))
    assert invalid.status_code == 409
    assert invalid.json()["details"]["status"] == "PENDING"

    started = client.post(f"/api/operations/{operation_id}/start", headers=owner)
    assert started.status_code == 200
    assert client.get(f"/api/operations/{operation_id}", headers=owner).json()["status"] == "COMPLETED"

    cancelled = client.delete(f"/api/operations/{operation_id}", headers=owner)
    assert cancelled.status_code == 409
    assert client.get("/api/operations/missing", headers=owner).status_code == 404


def test_admin_annotations(client, campus, headers):
    owner = headers(campus.scheduler)
    operation_id = client.post(
        "/api/operations",
        json={"kind": "MASS_CREATE", "items": [entry_payload(campus)], "auto_start": False},
        headers=owner,
    ).json()["id"]

    denied = client.post(f"/api/operations/{operation_id}/logs", json={"message": "note"}, headers=owner)
    assert denied.status_code == 403

    note = client.post(
        f"/api/operations/{operation_id}/logs",
        json={"level": "WARN", "message": "Hold until the registrar confirms"},
        headers=headers(campus.admin),
    )
    assert note.status_code == 201
    assert note.json()["details"]["annotated_by"] == campus.admin.id

    cancelled = client.delete(f"/api/operations/{operation_id}", headers=owner)
    assert cancelled.json()["status"] == "CANCELLED"
    assert cancelled.json()["progress"]["last_message"] == "Operation cancelled by user"


def test_calendar_and_catalog_routes(client, campus, headers):
    admin = headers(campus.admin)

    holiday = client.post(
        "/api/calendar/holidays", json={"name": "Founders Day", "holiday_date": MONDAY}, headers=admin
    )
    assert holiday.status_code == 201
    assert client.post(
        "/api/calendar/holidays", json={"name": "Other", "holiday_date": MONDAY}, headers=headers(campus.scheduler)
    ).status_code == 403

    period = client.post(
        "/api/calendar/exam-periods",
        json={"name": "Midterms", "start_date": "2026-03-10", "end_date": "2026-03-05"},
        headers=admin,
    )
    assert period.status_code == 422

    listed = client.get("/api/calendar/holidays", params={"start": MONDAY, "end": MONDAY}, headers=admin).json()
    assert [item["name"] for item in listed] == ["Founders Day"]

    slots = client.get("/api/timeslots", headers=admin).json()
    assert [slot["name"] for slot in slots] == ["P1", "P2", "P3", "P4", "MODULE"]
    duplicate = client.post(
        "/api/timeslots",
        json={"name": "P1", "start_time": "09:30", "end_time": "10:30"},
        headers=admin,
    )
    assert duplicate.status_code == 409


def test_activity_log_records_writes(client, campus, headers):
    client.post("/api/timetable/entries", json=entry_payload(campus), headers=headers(campus.scheduler))

    logs = client.get("/api/activity/logs", params={"entity_type": "timetable_entry"}, headers=headers(campus.admin))

    assert logs.status_code == 200
    assert [item["action"] for item in logs.json()] == ["timetable.entry.create"]


def test_filtered_detect_respects_dated_overrides(client, campus, headers):
    auth = headers(campus.scheduler)
    next_monday = "2026-03-09"
    client.post("/api/timetable/entries", json=entry_payload(campus, batch=campus.b2), headers=auth)
    override = client.post(
        "/api/timetable/entries",
        json=entry_payload(campus, batch=campus.b2, faculty=campus.f2, subject="S2", occurs_on=next_monday),
        headers=auth,
    )
    assert override.status_code == 201
    dated = client.post(
        "/api/timetable/entries",
        json=entry_payload(campus, subject="S3", occurs_on=next_monday),
        headers=auth,
    )
    assert dated.status_code == 201

    response = client.post(
        "/api/timetable/conflicts/detect",
        json={"on": next_monday, "faculty_id": campus.f1.id},
        headers=auth,
    )

    assert response.status_code == 200
    assert response.json()["conflicts"] == []

    blocks = client.get(
        "/api/timetable/blocks", params={"on": next_monday, "faculty_id": campus.f1.id}, headers=auth
    )
    assert [block["member_entry_ids"] for block in blocks.json()] == [[dated.json()["entry"]["id"]]]


def test_activity_log_filters_by_operation(client, campus, headers):
    auth = headers(campus.scheduler)
    operation_id = client.post(
        "/api/operations",
        json={"kind": "MASS_CREATE", "items": [entry_payload(campus)], "auto_start": False},
        headers=auth,
    ).json()["id"]
    client.post(f"/api/operations/{operation_id}/start", headers=auth)
    client.post("/api/timetable/entries", json=entry_payload(campus, batch=campus.b2, slot="P2"), headers=auth)

    logs = client.get("/api/activity/logs", params={"operation_id": operation_id}, headers=headers(campus.admin))

    assert logs.status_code == 200
    assert sorted(item["action"] for item in logs.json()) == ["operation.start", "operation.submit"]
    assert {item["entity_type"] for item in logs.json()} == {"bulk_operation"}
    assert {item["operation_id"] for item in logs.json()} == {operation_id}

    submits = client.get(
        "/api/activity/logs",
        params={"action": "operation.submit", "user_id": campus.scheduler.id},
        headers=headers(campus.admin),
    ).json()
    assert [item["entity_id"] for item in submits] == [operation_id]
    unknown = client.get("/api/activity/logs", params={"action": "entry.destroy"}, headers=headers(campus.admin))
    assert unknown.status_code == 422


def test_role_denial_names_the_required_roles(client, campus, headers):
    response = client.get("/api/activity/logs", headers=headers(campus.student))

    assert response.status_code == 403
    assert response.json()["message"] == "Insufficient permissions"
    assert response.json()["details"] == {"required_roles": ["admin", "scheduler"], "role": "student"}


def test_token_with_a_stale_role_is_rejected(client, campus):
    token = create_access_token(campus.student.id, role=UserRole.admin.value)

    response = client.get("/api/activity/logs", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401


def test_faculty_replace_and_reschedule_through_the_api(client, campus, headers):
    auth = headers(campus.admin)
    client.post("/api/timetable/entries", json=entry_payload(campus), headers=auth)
    dated = client.post(
        "/api/timetable/entries",
        json=entry_payload(campus, batch=campus.b2, slot="P2", occurs_on=MONDAY),
        headers=auth,
    ).json()["entry"]
    replace = {"current_faculty_id": campus.f1.id, "new_faculty_id": campus.f2.id}

    preview = client.post(
        "/api/operations",
        json={"kind": "FACULTY_REPLACE", "faculty_replace": replace, "dry_run": True},
        headers=auth,
    )
    assert preview.status_code == 200
    assert [item["outcome"] for item in preview.json()["items"]] == ["updated", "updated"]

    with_items = client.post(
        "/api/operations",
        json={"kind": "FACULTY_REPLACE", "faculty_replace": replace, "items": [{"entry_id": dated["id"]}]},
        headers=auth,
    )
    assert with_items.status_code == 422

    moved = client.post(
        "/api/operations",
        json={
            "kind": "BULK_RESCHEDULE",
            "reschedule": {"source_start": MONDAY, "source_end": MONDAY, "target_start": "2026-03-10"},
        },
        headers=auth,
    )
    assert moved.status_code == 201
    assert moved.json()["total_items"] == 1
    entry = client.get(f"/api/timetable/entries/{dated['id']}", headers=auth).json()
    assert (entry["occurs_on"], entry["day_of_week"]) == ("2026-03-10", "TUESDAY")
