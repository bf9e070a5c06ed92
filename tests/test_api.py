import asyncio
import time
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

import db
import main
from app.types.delivery_contract import (
    DeliveryOutcome,
    HouseholdInfo,
    HouseholdStatus,
    InviteDetails,
    PendingEntry,
    SentEntry,
    SmsResult,
)
from fakes import FakeConnection, FakePushSender, FakeSmsSender


HOME = HouseholdInfo(id="hh-me", name="The Smiths")
HEADERS = {"X-Household-Id": "hh-me"}


@pytest.fixture
def client(monkeypatch):
    async def fake_get_household(household_id):
        return HOME if household_id == HOME.id else None

    monkeypatch.setattr(db, "get_household", fake_get_household)
    with TestClient(main.app) as c:
        main.app.state.push_sender = FakePushSender()
        main.app.state.sms_sender = FakeSmsSender()
        yield c


def test_health(client):
    assert client.get("/health").json()["status"] == "ok"


def test_unknown_household_is_404(client):
    resp = client.get("/api/status", headers={"X-Household-Id": "stranger"})
    assert resp.status_code == 404
    assert resp.json()["detail"] == "No household found"


def test_update_status_validates_body(client):
    resp = client.put("/api/status", json={"state": "sleeping"}, headers=HEADERS)
    assert resp.status_code == 422


def test_update_status_broadcasts_to_live_watchers(client, monkeypatch):
    async def fake_update(household_id, change):
        return HouseholdInfo(
            id=household_id,
            name="The Smiths",
            status=HouseholdStatus(state=change.state, note=change.note, time_window=change.time_window),
        )

    async def fake_watchers(household_id):
        return ["hh-watcher"]

    async def no_contact_point(household_id):
        return None

    monkeypatch.setattr(db, "update_household_status", fake_update)
    monkeypatch.setattr(db, "fetch_watcher_household_ids", fake_watchers)
    monkeypatch.setattr(db, "fetch_primary_contact_point", no_contact_point)

    watcher = FakeConnection()
    main.app.state.hub.join("hh-watcher", watcher)
    resp = client.put(
        "/api/status",
        json={"state": "available", "note": "park", "timeWindow": "2-4pm"},
        headers=HEADERS,
    )
    message = watcher.received[0]

    assert resp.status_code == 200
    assert resp.json()["timeWindow"] == "2-4pm"
    assert message["event"] == "status:update"
    assert message["data"]["householdId"] == "hh-me"
    assert message["data"]["status"]["note"] == "park"


def test_deliver_requires_creator(client, monkeypatch):
    async def someone_elses(invite_id):
        return InviteDetails(id=invite_id, created_by_household_id="hh-other")

    monkeypatch.setattr(db, "get_invite", someone_elses)

    resp = client.post("/api/invites/inv-1/deliver", json={"deliveryMethods": {}}, headers=HEADERS)
    assert resp.status_code == 404


def test_deliver_returns_outcome(client, monkeypatch):
    invite = InviteDetails(id="inv-1", created_by_household_id="hh-me")

    async def own_invite(invite_id):
        return invite

    async def fake_deliver(self, invite_id, delivery_methods=None):
        assert delivery_methods == {"hh-a": "sms"}
        return DeliveryOutcome(
            sent=[
                SentEntry(
                    household_id="hh-b",
                    channel="sms",
                    message_id="m-1",
                    timestamp=datetime(2025, 6, 1, tzinfo=timezone.utc),
                )
            ],
            pending=[PendingEntry(household_id="hh-a", reason="no delivery method available")],
        )

    monkeypatch.setattr(db, "get_invite", own_invite)
    monkeypatch.setattr(main.InviteNotifier, "deliver_stored_invite", fake_deliver)

    resp = client.post(
        "/api/invites/inv-1/deliver",
        json={"deliveryMethods": {"hh-a": "sms"}},
        headers=HEADERS,
    )

    assert resp.status_code == 200
    assert resp.json() == {
        "sent": [
            {
                "householdId": "hh-b",
                "channel": "sms",
                "messageId": "m-1",
                "timestamp": "2025-06-01T00:00:00Z",
            }
        ],
        "failed": [],
        "pending": [{"householdId": "hh-a", "reason": "no delivery method available"}],
    }


def test_deliver_in_background_queues_task(client, monkeypatch):
    queued = []

    async def own_invite(invite_id):
        return InviteDetails(id=invite_id, created_by_household_id="hh-me")

    monkeypatch.setattr(db, "get_invite", own_invite)

    def fake_send_task(name, **kw):
        try:
            asyncio.get_running_loop()
            on_loop = True
        except RuntimeError:
            on_loop = False
        queued.append((name, kw, on_loop))

    monkeypatch.setattr(main.celery_app, "send_task", fake_send_task)

    resp = client.post("/api/invites/inv-1/deliver?background=true", headers=HEADERS)

    assert resp.status_code == 202
    # published from a worker thread, not on the event loop
    assert queued == [("app.workers.delivery.redeliver", {"args": ["inv-1", {}], "queue": "delivery"}, False)]


def test_respond_by_non_recipient_is_404(client, monkeypatch):
    async def not_invited(invite_id, household_id, response):
        return False

    monkeypatch.setattr(db, "record_invite_response", not_invited)

    resp = client.put("/api/invites/inv-1/respond", json={"response": "accepted"}, headers=HEADERS)
    assert resp.status_code == 404


def test_subscribe_requires_user_and_subscription(client):
    assert client.post("/api/status/subscribe", json={"subscription": {"endpoint": "e"}}).status_code == 401
    resp = client.post("/api/status/subscribe", json={}, headers={"X-User-Id": "u1"})
    assert resp.status_code == 400


def test_subscribe_saves_subscription(client, monkeypatch):
    saved = []

    async def fake_save(user_id, subscription):
        saved.append((user_id, subscription))
        return True

    monkeypatch.setattr(db, "save_push_subscription", fake_save)

    resp = client.post(
        "/api/status/subscribe",
        json={"subscription": {"endpoint": "https://push.example/1"}},
        headers={"X-User-Id": "u1"},
    )

    assert resp.status_code == 200
    assert saved == [("u1", {"endpoint": "https://push.example/1"})]


def test_app_invite_failure_is_502(client):
    main.app.state.sms_sender = FakeSmsSender(
        results={"+15550001": SmsResult(success=False, error="carrier rejected")}
    )

    resp = client.post("/api/contacts/app-invite", json={"phone": "+15550001"}, headers=HEADERS)

    assert resp.status_code == 502
    assert resp.json()["detail"] == "carrier rejected"


def _wait_for(condition, timeout=2.0):
    deadline = time.monotonic() + timeout
    while not condition():
        if time.monotonic() > deadline:
            return False
        time.sleep(0.01)
    return True


def test_socket_join_and_disconnect(client):
    hub = main.app.state.hub

    with client.websocket_connect("/ws") as ws:
        ws.send_json({"event": "join:household", "data": "hh-me"})
        assert _wait_for(lambda: hub.households() == ["hh-me"])

    assert _wait_for(lambda: hub.households() == [])


def test_socket_ignores_malformed_frames(client):
    hub = main.app.state.hub

    with client.websocket_connect("/ws") as ws:
        ws.send_json({"event": "join:household", "data": "hh-me"})
        ws.send_text("not json")
        ws.send_json({"event": "join:household", "data": "hh-other"})
        assert _wait_for(lambda: sorted(hub.households()) == ["hh-me", "hh-other"])

    assert _wait_for(lambda: hub.households() == [])


def test_create_invite_against_database(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'circles.db'}")

    with TestClient(main.app) as c:
        sms_sender = FakeSmsSender()
        main.app.state.push_sender = FakePushSender()
        main.app.state.sms_sender = sms_sender
        # Run the DB setup on the client's event loop so pooled connections stay on it
        c.portal.call(db.dispose_engine)
        c.portal.call(db.create_all)
        host = c.portal.call(db.insert_household, "The Smiths")
        guest = c.portal.call(db.insert_household, "The Lees")

        async def add_contacts():
            linked = await db.insert_contact(host.id, "Lees", linked_household_id=guest.id)
            texted = await db.insert_contact(host.id, "Aunt May", phone="+15550100")
            return linked, texted

        linked, texted = c.portal.call(add_contacts)

        resp = c.post(
            "/api/invites",
            json={
                "activityName": "Picnic",
                "proposedDate": "2025-06-01",
                "proposedTime": "3pm",
                "recipientIds": [linked.id, texted.id],
            },
            headers={"X-Household-Id": host.id},
        )

    assert resp.status_code == 201
    body = resp.json()
    assert body["type"] == "sent"
    assert body["createdByHouseholdId"] == host.id
    assert body["activityName"] == "Picnic"
    assert body["proposedDate"] == "2025-06-01"
    assert body["recipients"] == [
        {"householdId": guest.id, "householdName": "The Lees", "response": "pending", "respondedAt": None}
    ]
    assert [to for to, _ in sms_sender.calls] == ["+15550100"]
