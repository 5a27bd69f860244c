"""
Automation event endpoints: listing, detail, manual retry and the dispatch trigger.
"""
from datetime import timedelta

import pytest
from sqlalchemy import select, update

from leadflow.models import AutomationEvent, AutomationEventStatus, LeadActivity
from leadflow.services.automation_service import AutomationService
from leadflow.services.errors import ConflictError
from tests.conftest import (
    WEBHOOK_URL,
    RecordingHandler,
    auth_headers,
    configure_webhook,
    make_event,
    make_lead,
    mock_client,
)


async def seed(session_maker, now, *event_overrides) -> list[str]:
    """Persist one lead with an event per overrides dict; returns event ids in order."""
    async with session_maker() as session:
        lead = make_lead()
        session.add(lead)
        await session.flush()
        events = []
        for offset, overrides in enumerate(event_overrides):
            created_at = now - timedelta(minutes=len(event_overrides) - offset)
            events.append(make_event(lead, created_at, **overrides))
        session.add_all(events)
        await session.commit()
        return [automation_event.id for automation_event in events]


async def load(session_maker, event_id) -> AutomationEvent:
    async with session_maker() as session:
        return await session.get(AutomationEvent, event_id)


async def test_list_requires_authentication(api):
    response = await api.get("/api/automation-events")
    assert response.status_code == 401


async def test_list_is_newest_first_and_paged(api, session_maker, now):
    ids = await seed(session_maker, now, {}, {}, {})

    response = await api.get("/api/automation-events?page_size=2", headers=auth_headers("ReadOnly"))

    assert response.status_code == 200
    body = response.json()
    assert [item["id"] for item in body["items"]] == [ids[2], ids[1]]
    assert body["total_items"] == 3
    assert body["total_pages"] == 2
    assert body["page_size"] == 2
    assert set(body["items"][0]) >= {"status", "attempts", "last_attempt_at", "last_error", "created_at"}


async def test_list_page_is_clamped_to_last_page(api, session_maker, now):
    await seed(session_maker, now, {}, {})

    response = await api.get("/api/automation-events?page=9&page_size=500", headers=auth_headers())

    body = response.json()
    assert body["page"] == 1
    assert body["page_size"] == 100
    assert body["total_pages"] == 1


async def test_pending_filter_includes_legacy_queued(api, session_maker, now):
    await seed(
        session_maker, now,
        {"status": "queued"},
        {"status": "Pending"},
        {"status": "Sent", "attempts": 1},
    )

    response = await api.get("/api/automation-events?status=pending", headers=auth_headers())

    body = response.json()
    assert body["total_items"] == 2
    assert {item["status"] for item in body["items"]} == {"Pending"}


async def test_list_rejects_unknown_filters(api):
    response = await api.get("/api/automation-events?status=bogus", headers=auth_headers())
    assert response.status_code == 400

    response = await api.get("/api/automation-events?event_type=LeadDeleted", headers=auth_headers())
    assert response.status_code == 400


async def test_detail_includes_payload_and_target(api, session_maker, now):
    [event_id] = await seed(session_maker, now, {})

    response = await api.get(f"/api/automation-events/{event_id}", headers=auth_headers("Agent"))

    assert response.status_code == 200
    body = response.json()
    assert body["target_url"] == WEBHOOK_URL
    assert body["payload"] == '{"eventType": "StatusChanged"}'
    assert "scheduled_at" in body and "processed_at" in body


async def test_detail_of_missing_event_is_404(api):
    response = await api.get("/api/automation-events/does-not-exist", headers=auth_headers())
    assert response.status_code == 404


async def test_retry_resets_failed_event(api, session_maker, now):
    [event_id] = await seed(session_maker, now, {
        "status": "Failed",
        "attempts": 2,
        "last_error": "HTTP 500 Internal Server Error",
        "last_attempt_at": now,
        "processed_at": now,
    })

    response = await api.post(f"/api/automation-events/{event_id}/retry", headers=auth_headers("Agent"))

    assert response.status_code == 204
    stored = await load(session_maker, event_id)
    assert stored.status == AutomationEventStatus.PENDING.value
    assert stored.attempts == 2
    assert stored.last_error is None
    assert stored.last_attempt_at is None
    assert stored.processed_at is None

    async with session_maker() as session:
        result = await session.execute(select(LeadActivity).where(LeadActivity.type == "WebhookRetryQueued"))
        activity = result.scalar_one()
    assert event_id in activity.data_json
    assert "admin@example.com" in activity.data_json


async def test_retry_refills_missing_target_url(api, session_maker, now):
    [event_id] = await seed(session_maker, now, {"status": "Failed", "attempts": 1, "target_url": None})
    async with session_maker() as session:
        await configure_webhook(session, "https://new.example.com/hook")

    response = await api.post(f"/api/automation-events/{event_id}/retry", headers=auth_headers())

    assert response.status_code == 204
    stored = await load(session_maker, event_id)
    assert stored.target_url == "https://new.example.com/hook"


async def test_retry_of_sent_event_is_409(api, session_maker, now):
    [event_id] = await seed(session_maker, now, {"status": "Sent", "attempts": 1})

    response = await api.post(f"/api/automation-events/{event_id}/retry", headers=auth_headers())

    assert response.status_code == 409


async def test_retry_at_attempt_ceiling_is_400(api, session_maker, now):
    [event_id] = await seed(session_maker, now, {"status": "Failed", "attempts": 5})

    response = await api.post(f"/api/automation-events/{event_id}/retry", headers=auth_headers())

    assert response.status_code == 400


async def test_event_failed_by_the_dispatcher_at_the_ceiling_cannot_be_retried(api, session_maker, now):
    [event_id] = await seed(session_maker, now, {"attempts": 4, "last_attempt_at": now - timedelta(hours=1)})

    async with session_maker() as session, mock_client(RecordingHandler(500)) as client:
        summary = await AutomationService(session, http_client=client, now=lambda: now).dispatch_pending()
    assert summary.failed == 1

    response = await api.post(f"/api/automation-events/{event_id}/retry", headers=auth_headers())

    assert response.status_code == 400
    assert response.json()["detail"] == "Max attempts reached."
    stored = await load(session_maker, event_id)
    assert stored.status == AutomationEventStatus.FAILED.value
    assert stored.attempts == 5


async def test_retry_of_missing_event_is_404(api):
    response = await api.post("/api/automation-events/nope/retry", headers=auth_headers())
    assert response.status_code == 404


async def test_retry_requires_admin_or_agent(api, session_maker, now):
    [event_id] = await seed(session_maker, now, {"status": "Failed", "attempts": 1})

    response = await api.post(f"/api/automation-events/{event_id}/retry", headers=auth_headers("ReadOnly"))

    assert response.status_code == 403


async def test_retry_is_rate_limited(api, session_maker, now, monkeypatch):
    from leadflow.services.rate_limiter import rate_limiter

    async def over_limit(*args, **kwargs):
        return False, 42

    monkeypatch.setattr(rate_limiter, "is_allowed", over_limit)
    [event_id] = await seed(session_maker, now, {"status": "Failed", "attempts": 1})

    response = await api.post(f"/api/automation-events/{event_id}/retry", headers=auth_headers())

    assert response.status_code == 429
    assert response.headers["retry-after"] == "42"


async def test_retry_detects_concurrent_modification(db, add_event):
    automation_event = await add_event(status="Failed", attempts=1)

    table = AutomationEvent.__table__
    await db.execute(
        update(table)
        .where(table.c.id == automation_event.id)
        .values(version=table.c.version + 1)
    )

    with pytest.raises(ConflictError):
        await AutomationService(db).retry(automation_event.id)


async def test_enqueue_creates_pending_event(api, session_maker, now):
    async with session_maker() as session:
        lead = make_lead()
        session.add(lead)
        await session.commit()
        await configure_webhook(session)

    response = await api.post(
        "/api/automation-events",
        json={"lead_id": lead.id, "event_type": "leadscored"},
        headers=auth_headers()
    )

    assert response.status_code == 201
    body = response.json()
    assert body["event_type"] == "LeadScored"
    assert body["status"] == "Pending"
    assert body["attempts"] == 0
    assert body["target_url"] == WEBHOOK_URL


async def test_enqueue_for_unknown_lead_is_404(api):
    response = await api.post(
        "/api/automation-events",
        json={"lead_id": "missing", "event_type": "LeadCreated"},
        headers=auth_headers()
    )
    assert response.status_code == 404


async def test_dispatch_trigger_queues_worker_job(api, monkeypatch):
    import leadflow.routes.automation_events as routes

    queued = []

    async def fake_enqueue():
        queued.append(True)
        return True

    monkeypatch.setattr(routes, "enqueue_dispatch", fake_enqueue)

    response = await api.post("/api/automation-events/dispatch", headers=auth_headers())

    assert response.status_code == 202
    assert queued == [True]


async def test_dispatch_trigger_requires_admin(api):
    response = await api.post("/api/automation-events/dispatch", headers=auth_headers("Agent"))
    assert response.status_code == 403
