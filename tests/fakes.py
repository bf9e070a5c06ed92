"""In-memory stand-ins for the provider adapters and socket connections."""

from __future__ import annotations

from typing import Any, Dict, List, Tuple

from app.types.delivery_contract import PushResult, SmsResult


class FakePushSender:
    """Answers per subscription endpoint; success by default."""

    def __init__(self, results: Dict[str, PushResult] | None = None, raises: Dict[str, Exception] | None = None):
        self.results = results or {}
        self.raises = raises or {}
        self.calls: List[Tuple[Dict[str, Any], Dict[str, Any]]] = []

    async def send_push(self, subscription, payload):
        self.calls.append((subscription, payload))
        endpoint = subscription.get("endpoint")
        if endpoint in self.raises:
            raise self.raises[endpoint]
        return self.results.get(endpoint, PushResult(success=True, status_code=201))


class FakeSmsSender:
    """Answers per phone number; success with a generated id by default."""

    def __init__(self, results: Dict[str, SmsResult] | None = None, raises: Dict[str, Exception] | None = None):
        self.results = results or {}
        self.raises = raises or {}
        self.calls: List[Tuple[str, str]] = []

    async def send_sms(self, to, body):
        self.calls.append((to, body))
        if to in self.raises:
            raise self.raises[to]
        return self.results.get(to, SmsResult(success=True, message_id=f"msg-{len(self.calls)}"))


class FakeConnection:
    def __init__(self, broken: bool = False):
        self.broken = broken
        self.received: List[Dict[str, Any]] = []

    async def send_json(self, data):
        if self.broken:
            raise RuntimeError("socket closed")
        self.received.append(data)


class RecordingHub:
    """HouseholdPublisher that only records what was published."""

    def __init__(self, fail_for: set[str] | None = None):
        self.fail_for = fail_for or set()
        self.published: List[Tuple[str, str, Dict[str, Any]]] = []

    async def publish(self, household_id, event, payload):
        if household_id in self.fail_for:
            raise RuntimeError("publish exploded")
        self.published.append((household_id, event, payload))
        return 1


def subscription(endpoint: str) -> Dict[str, Any]:
    return {
        "endpoint": endpoint,
        "keys": {"p256dh": "test-key", "auth": "test-auth"},
    }
