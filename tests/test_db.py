import pytest

import db
from app.types.delivery_contract import (
    DeliveryOutcome,
    InviteDraft,
    PendingEntry,
    StatusUpdate,
)


pytestmark = pytest.mark.usefixtures("sqlite_db")


@pytest.mark.asyncio
async def test_status_update_is_written_as_a_whole():
    home = await db.insert_household("The Smiths")

    await db.update_household_status(home.id, StatusUpdate(state="open", note="backyard", time_window="all day"))
    updated = await db.update_household_status(home.id, StatusUpdate(state="busy"))

    assert updated.status.state == "busy"
    assert updated.status.note is None
    assert updated.status.time_window is None

    stored = await db.get_household(home.id)
    assert stored.status.state == "busy"
    assert stored.status.note is None
    assert stored.status.updated_at is not None


@pytest.mark.asyncio
async def test_status_update_unknown_household():
    assert await db.update_household_status("nope", StatusUpdate(state="busy")) is None


@pytest.mark.asyncio
async def test_watchers_are_distinct_owners():
    me = await db.insert_household("Me")
    w1 = await db.insert_household("W1")
    w2 = await db.insert_household("W2")
    await db.insert_contact(w1.id, "Me", linked_household_id=me.id)
    await db.insert_contact(w1.id, "Me again", linked_household_id=me.id)
    await db.insert_contact(w2.id, "Me", linked_household_id=me.id)
    await db.insert_contact(me.id, "W1", linked_household_id=w1.id)

    watchers = await db.fetch_watcher_household_ids(me.id)

    assert sorted(watchers) == sorted([w1.id, w2.id])


@pytest.mark.asyncio
async def test_contact_statuses_of_linked_contacts():
    me = await db.insert_household("Me")
    friend = await db.insert_household("Friend")
    await db.insert_contact(me.id, "Friend", linked_household_id=friend.id)
    await db.insert_contact(me.id, "Offline aunt", phone="+15550100")
    await db.update_household_status(friend.id, StatusUpdate(state="available", note="at the pool"))

    statuses = await db.fetch_contact_statuses(me.id)

    assert len(statuses) == 1
    assert statuses[0]["householdName"] == "Friend"
    assert statuses[0]["status"]["note"] == "at the pool"


@pytest.mark.asyncio
async def test_primary_contact_point_and_subscription_lifecycle():
    home = await db.insert_household("Home")
    uid = await db.insert_user("+15550101", household_id=home.id)

    assert await db.save_push_subscription(uid, {"endpoint": "https://push.example/1"})
    point = await db.fetch_primary_contact_point(home.id)
    assert point.user_id == uid
    assert point.phone == "+15550101"
    assert point.push_subscription == {"endpoint": "https://push.example/1"}

    await db.clear_push_subscription(uid)
    point = await db.fetch_primary_contact_point(home.id)
    assert point.push_subscription is None

    assert not await db.save_push_subscription("unknown", {"endpoint": "x"})
    assert await db.fetch_primary_contact_point("empty-household") is None


@pytest.mark.asyncio
async def test_invite_recipients_and_responses():
    host = await db.insert_household("Host")
    guest = await db.insert_household("Guest")
    uid = await db.insert_user("+15550102", household_id=guest.id)
    await db.save_push_subscription(uid, {"endpoint": "https://push.example/2"})

    invite = await db.insert_invite(host.id, InviteDraft(activity_name="Picnic", recipient_ids=["c"]))
    await db.add_invite_recipient(invite.id, guest.id)

    recipients = await db.fetch_delivery_recipients(invite.id)
    assert [(r.household_id, r.household_name, r.phone) for r in recipients] == [
        (guest.id, "Guest", "+15550102")
    ]
    assert recipients[0].push_subscription == {"endpoint": "https://push.example/2"}

    assert await db.record_invite_response(invite.id, guest.id, "accepted")
    assert not await db.record_invite_response(invite.id, host.id, "accepted")

    rows = await db.fetch_invite_recipients(invite.id)
    assert rows[0]["response"] == "accepted"
    assert rows[0]["respondedAt"] is not None


@pytest.mark.asyncio
async def test_owned_contacts_filters_foreign_ids():
    me = await db.insert_household("Me")
    other = await db.insert_household("Other")
    mine = await db.insert_contact(me.id, "Mine", phone="+15550103")
    theirs = await db.insert_contact(other.id, "Theirs", phone="+15550104")

    contacts = await db.fetch_owned_contacts(me.id, [mine.id, theirs.id])

    assert [c.id for c in contacts] == [mine.id]
    assert await db.fetch_owned_contacts(me.id, []) == []


@pytest.mark.asyncio
async def test_delivery_log_round_trip():
    host = await db.insert_household("Host")
    invite = await db.insert_invite(host.id, InviteDraft(recipient_ids=["c"]))
    outcome = DeliveryOutcome(pending=[PendingEntry(household_id="hh-x", reason="no delivery method available")])

    await db.insert_delivery_log(invite.id, outcome)
    logs = await db.fetch_delivery_logs(invite.id)

    assert len(logs) == 1
    assert logs[0]["results"] == {
        "sent": [],
        "failed": [],
        "pending": [{"household_id": "hh-x", "reason": "no delivery method available"}],
    }
