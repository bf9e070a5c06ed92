"""Shared test fixtures.

Provider credentials are removed so adapters built from settings run in DEV
mode, and database helpers are either monkeypatched per test or pointed at a
throw-away SQLite file.
"""

import os

for _key in ("TELNYX_API_KEY", "TELNYX_FROM_NUMBER", "VAPID_PUBLIC_KEY", "VAPID_PRIVATE_KEY"):
    os.environ.pop(_key, None)

import pytest
import pytest_asyncio

import db
from fakes import FakePushSender, FakeSmsSender, RecordingHub


@pytest.fixture
def push_sender():
    return FakePushSender()


@pytest.fixture
def sms_sender():
    return FakeSmsSender()


@pytest.fixture
def hub():
    return RecordingHub()


@pytest.fixture
def delivery_log(monkeypatch):
    """Capture delivery-log writes and subscription clears instead of hitting the DB."""
    written = []
    cleared = []

    async def fake_insert_delivery_log(invite_id, outcome):
        written.append((invite_id, outcome))
        return len(written)

    async def fake_clear_push_subscription(user_id):
        cleared.append(user_id)

    monkeypatch.setattr(db, "insert_delivery_log", fake_insert_delivery_log)
    monkeypatch.setattr(db, "clear_push_subscription", fake_clear_push_subscription)
    return {"written": written, "cleared": cleared}


@pytest_asyncio.fixture
async def sqlite_db(tmp_path, monkeypatch):
    """Fresh schema in a temp SQLite file for each test."""
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'circles.db'}")
    await db.dispose_engine()
    await db.create_all()
    yield
    await db.dispose_engine()
