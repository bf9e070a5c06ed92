"""Capability interfaces the delivery services depend on.

Services only see these protocols; the Telnyx / web-push adapters in
``app.utils`` and the in-memory fakes used by the tests both satisfy them.
"""

from __future__ import annotations

from typing import Any, Dict, Protocol

from app.types.delivery_contract import PushResult, SmsResult


class PushSender(Protocol):
    async def send_push(self, subscription: Dict[str, Any], payload: Dict[str, Any]) -> PushResult: ...


class SmsSender(Protocol):
    async def send_sms(self, to: str, body: str) -> SmsResult: ...


class HouseholdPublisher(Protocol):
    """Fire-and-forget publish to every live session of a household."""

    async def publish(self, household_id: str, event: str, payload: Dict[str, Any]) -> int: ...
