from datetime import datetime, timedelta

import pytest

from freightguard.db.database import utcnow
from freightguard.db.models import AuditLog, Event, LoadHistory, _dumps


def headers(user):
    return {"X-User-Id": str(user.id)}


async def seed_history(db):
    db.add_all([
        LoadHistory(
            subject_type="load", subject_id="L1", actor_id=2, action_type="STATUS_CHANGE",
            status="delivered", content="Delivered to dock 4",
            timestamp=datetime(2024, 6, 2, 10, 0, 0), is_archived=False,
        ),
        LoadHistory(
            subject_type="load", subject_id="L1", actor_id=None, action_type="LOAD_CREATED",
            content="Load created", timestamp=datetime(2024, 6, 1, 10, 0, 0), is_archived=False,
        ),
        LoadHistory(
            subject_type="load", subject_id="L2", actor_id=2, action_type="STATUS_CHANGE",
            content="Delivered to dock 9", timestamp=datetime(2024, 6, 3, 10, 0, 0),
            is_archived=True, archived_at=datetime(2024, 9, 1),
        ),
    ])
    await db.commit()


@pytest.mark.anyio
async def test_search_requires_view_audit(client, make_user):
    nobody = await make_user(legacy_role="driver")

    response = await client.get("/api/history/search", headers=headers(nobody))

    assert response.status_code == 403
    assert response.json()["detail"] == "Missing permission: view:audit"


@pytest.mark.anyio
async def test_search_over_http(client, make_user, test_session):
    admin = await make_user(legacy_role="admin")
    await seed_history(test_session)

    response = await client.get("/api/history/search", params={"q": "DELIVERED"}, headers=headers(admin))

    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 1
    assert body["records"][0]["content"] == "Delivered to dock 4"
    assert body["records"][0]["kind"] == "load"

    response = await client.get(
        "/api/history/search",
        params={"q": "delivered", "include_archived": "true"},
        headers=headers(admin),
    )
    assert [r["subject_id"] for r in response.json()["records"]] == ["L2", "L1"]

    response = await client.get(
        "/api/history/search",
        params=[("entity_ids", "L1"), ("action_types", "LOAD_CREATED")],
        headers=headers(admin),
    )
    assert [r["content"] for r in response.json()["records"]] == ["Load created"]


@pytest.mark.anyio
async def test_csv_export_over_http(client, make_user, test_session):
    admin = await make_user(legacy_role="admin")
    await seed_history(test_session)

    response = await client.get(
        "/api/history/export", params={"format": "csv", "entity_ids": "L1"}, headers=headers(admin),
    )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert response.headers["content-disposition"] == 'attachment; filename="L1-history.csv"'
    lines = response.text.splitlines()
    assert lines[0] == '"id","timestamp","actorId","actionType","status","content"'
    assert len(lines) == 3
    assert '"system"' in lines[2]


@pytest.mark.anyio
async def test_json_export_over_http(client, make_user, test_session):
    admin = await make_user(legacy_role="admin")
    await seed_history(test_session)

    response = await client.get(
        "/api/history/export",
        params=[("format", "json"), ("entity_ids", "L1"), ("entity_ids", "L2"), ("include_archived", "true")],
        headers=headers(admin),
    )

    assert response.status_code == 200
    assert response.headers["content-disposition"] == 'attachment; filename="load-history.json"'
    assert [r["subject_id"] for r in response.json()] == ["L2", "L1", "L1"]


@pytest.mark.anyio
async def test_unscoped_export_is_a_bad_request(client, make_user, test_session):
    admin = await make_user(legacy_role="admin")
    await seed_history(test_session)

    response = await client.get("/api/history/export", params={"q": "delivered"}, headers=headers(admin))

    assert response.status_code == 400
    assert response.json()["code"] == "scope_required"


@pytest.mark.anyio
async def test_archive_over_http(client, make_user, test_session):
    admin = await make_user(legacy_role="admin")
    now = utcnow()
    for days in (10, 100, 200):
        test_session.add(LoadHistory(
            subject_type="load", subject_id="L1", action_type="STATUS_CHANGE",
            content=f"{days} days ago", timestamp=now - timedelta(days=days), is_archived=False,
        ))
    await test_session.commit()

    response = await client.post("/api/history/archive", headers=headers(admin))
    assert response.status_code == 200
    assert response.json() == {"archived": 2, "older_than_days": 90}

    response = await client.post(
        "/api/history/archive", json={"older_than_days": 5}, headers=headers(admin),
    )
    assert response.json() == {"archived": 1, "older_than_days": 5}

    response = await client.get("/api/history/audit-trail/system/history", headers=headers(admin))
    assert response.status_code == 200
    records = response.json()["records"]
    assert [r["action_type"] for r in records] == ["history.archive", "history.archive"]
    assert records[0]["actor_id"] == admin.id
    assert records[0]["details"]["days"] == 90


@pytest.mark.anyio
async def test_archive_requires_manage_settings(client, make_user):
    shipper = await make_user(legacy_role="shipper")

    response = await client.post("/api/history/archive", headers=headers(shipper))

    assert response.status_code == 403


@pytest.mark.anyio
async def test_audit_trail_for_role_changes(client, make_user, test_session):
    admin = await make_user(legacy_role="admin")
    test_session.add_all([
        AuditLog(
            subject_type="role", subject_id="5", actor_id=admin.id, action_type="role.create",
            content="Created role", timestamp=datetime(2024, 1, 1), is_archived=False,
        ),
        AuditLog(
            subject_type="role", subject_id="5", actor_id=admin.id, action_type="role.update",
            content="Updated role", details=_dumps({"fields": ["description"]}),
            timestamp=datetime(2024, 1, 2), is_archived=False,
        ),
    ])
    await test_session.commit()

    response = await client.get("/api/history/audit-trail/role/5", headers=headers(admin))

    records = response.json()["records"]
    assert [r["action_type"] for r in records] == ["role.create", "role.update"]
    assert records[1]["details"] == {"fields": ["description"]}


# --- events -----------------------------------------------------------------

@pytest.mark.anyio
async def test_record_and_list_events_over_http(client, make_user, session_factory):
    admin = await make_user(legacy_role="admin")

    response = await client.post(
        "/api/events",
        json={
            "load_id": "L5",
            "event_type": "status_changed",
            "previous_value": {"status": "posted"},
            "new_value": {"status": "assigned"},
        },
        headers=headers(admin),
    )
    assert response.status_code == 201
    event_id = response.json()["id"]

    async with session_factory() as db:
        event = await db.get(Event, event_id)
        assert event.user_id == admin.id

    response = await client.get("/api/events/loads/L5", headers=headers(admin))
    assert response.status_code == 200
    page = response.json()
    assert [e["id"] for e in page["items"]] == [event_id]
    assert page["items"][0]["new_value"] == {"status": "assigned"}
    assert page["next_cursor"] is None


@pytest.mark.anyio
async def test_role_view_over_http(client, make_user, test_session):
    admin = await make_user(legacy_role="admin")
    for i, event_type in enumerate(["load_created", "driver_assigned", "status_changed"]):
        ts = datetime(2024, 2, 1) + timedelta(minutes=i)
        test_session.add(Event(
            load_id="L1", user_id=admin.id, event_type=event_type,
            new_value=_dumps({"step": i}), timestamp=ts, created_at=ts,
        ))
    await test_session.commit()

    response = await client.get("/api/events/loads/L1/view", params={"role": "carrier"}, headers=headers(admin))
    assert response.status_code == 200
    views = response.json()
    assert [v["event_type"] for v in views] == ["status_changed", "driver_assigned"]
    assert "user_id" not in views[0]

    response = await client.get("/api/events/loads/L1/view", params={"role": "admin"}, headers=headers(admin))
    assert len(response.json()) == 3
    assert response.json()[0]["user_id"] == admin.id

    response = await client.get("/api/events/loads/L1/view", params={"role": "broker"}, headers=headers(admin))
    assert response.status_code == 422


@pytest.mark.anyio
async def test_search_total_counts_past_the_page(client, make_user, test_session):
    admin = await make_user(legacy_role="admin")
    await seed_history(test_session)

    response = await client.get("/api/history/search", params={"limit": 1}, headers=headers(admin))

    assert response.status_code == 200
    body = response.json()
    assert len(body["records"]) == 1
    assert body["total"] == 2

    response = await client.get("/api/history/search", params={"limit": 500}, headers=headers(admin))
    assert response.status_code == 422
    assert response.json()["code"] == "validation_error"


async def seed_timeline(db, user_id, load_id="L1", event_types=("load_created", "driver_assigned", "status_changed")):
    for i, event_type in enumerate(event_types):
        ts = datetime(2024, 2, 1) + timedelta(minutes=i)
        db.add(Event(
            load_id=load_id, user_id=user_id, event_type=event_type,
            new_value=_dumps({"step": i}), timestamp=ts, created_at=ts,
        ))
    await db.commit()


@pytest.mark.anyio
async def test_role_view_filters_over_http(client, make_user, test_session):
    admin = await make_user(legacy_role="admin")
    await seed_timeline(test_session, admin.id)

    response = await client.get(
        "/api/events/loads/L1/view",
        params={"role": "carrier", "event_type": "driver_assigned"},
        headers=headers(admin),
    )
    assert [v["event_type"] for v in response.json()] == ["driver_assigned"]

    response = await client.get(
        "/api/events/loads/L1/view",
        params={"role": "carrier", "start": "2024-02-01T00:02:00"},
        headers=headers(admin),
    )
    assert [v["event_type"] for v in response.json()] == ["status_changed"]

    response = await client.get(
        "/api/events/loads/L1/view",
        params={"role": "carrier", "start": "2024-02-02T00:00:00", "end": "2024-02-01T00:00:00"},
        headers=headers(admin),
    )
    assert response.status_code == 422


@pytest.mark.anyio
async def test_event_range_and_feeds_over_http(client, make_user, test_session):
    admin = await make_user(legacy_role="admin")
    await seed_timeline(test_session, admin.id, load_id="L1")
    await seed_timeline(test_session, 99, load_id="L2", event_types=("load_created",))

    response = await client.get(
        "/api/events/range",
        params={"start": "2024-02-01T00:00:00", "end": "2024-02-01T00:01:00"},
        headers=headers(admin),
    )
    assert response.status_code == 200
    assert sorted((e["load_id"], e["event_type"]) for e in response.json()["items"]) == [
        ("L1", "driver_assigned"), ("L1", "load_created"), ("L2", "load_created"),
    ]

    response = await client.get("/api/events/recent", params={"limit": 2}, headers=headers(admin))
    page = response.json()
    assert len(page["items"]) == 2
    assert page["next_cursor"] is not None

    response = await client.get("/api/events/users/99", headers=headers(admin))
    assert [e["load_id"] for e in response.json()["items"]] == ["L2"]

    response = await client.get("/api/events/types/load_created", headers=headers(admin))
    assert len(response.json()["items"]) == 2


@pytest.mark.anyio
async def test_event_feeds_require_view_audit(client, make_user):
    shipper = await make_user(legacy_role="shipper")

    response = await client.get("/api/events/recent", headers=headers(shipper))

    assert response.status_code == 403


@pytest.mark.anyio
async def test_status_change_notifies_parties_over_http(client, make_user):
    admin = await make_user(legacy_role="admin")
    carrier = await make_user(legacy_role="carrier")
    shipper = await make_user(legacy_role="shipper")

    response = await client.post(
        "/api/events/status-changes",
        json={
            "load_id": "L7", "previous_status": "posted", "new_status": "assigned",
            "reference_number": "REF-7", "shipper_id": shipper.id, "carrier_user_ids": [carrier.id],
        },
        headers=headers(admin),
    )
    assert response.status_code == 201
    assert response.json()["id"]

    response = await client.get("/api/users/me/notifications", headers=headers(carrier))
    assert response.status_code == 200
    notes = response.json()
    assert len(notes) == 1
    assert notes[0]["title"] == "Load Assigned"
    assert notes[0]["message"] == "Load REF-7 has been assigned."
    assert notes[0]["related_id"] == "L7"
    assert notes[0]["is_read"] is False

    response = await client.get("/api/users/me/notifications", headers=headers(shipper))
    assert response.json() == []


@pytest.mark.anyio
async def test_rating_over_http(client, make_user):
    admin = await make_user(legacy_role="admin")
    carrier = await make_user(legacy_role="carrier")

    response = await client.post(
        "/api/events/ratings",
        json={"load_id": "L7", "rating_id": "R1", "rating": 4, "rated_user_id": carrier.id},
        headers=headers(admin),
    )
    assert response.status_code == 201

    response = await client.get("/api/events/types/rating_created", headers=headers(admin))
    assert [e["load_id"] for e in response.json()["items"]] == ["L7"]

    response = await client.get("/api/users/me/notifications", params={"unread_only": "true"}, headers=headers(carrier))
    assert [n["type"] for n in response.json()] == ["rating_received"]

    response = await client.post(
        "/api/events/ratings",
        json={"load_id": "L7", "rating_id": "R2", "rating": 6, "rated_user_id": carrier.id},
        headers=headers(admin),
    )
    assert response.status_code == 422
