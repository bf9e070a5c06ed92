"""Pydantic models shared by the API, the delivery services and the workers.

Request/response bodies use camelCase aliases on the wire (the web client's
convention) while Python code works with snake_case names. Delivery outcome
records are stored in the delivery log under their snake_case field names.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

ChannelPreference = Literal["in-app", "sms"]
Channel = Literal["push", "sms"]
StatusState = Literal["available", "open", "busy"]
InviteStatus = Literal["pending", "confirmed", "cancelled", "expired"]
RecipientResponse = Literal["pending", "accepted", "declined"]
InviteAnswer = Literal["accepted", "declined"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ──────────────────────────────
# Households & contacts
# ──────────────────────────────


class HouseholdStatus(CamelModel):
    state: StatusState = "available"
    note: Optional[str] = None
    time_window: Optional[str] = None
    updated_at: Optional[datetime] = None


class HouseholdInfo(CamelModel):
    id: str
    name: str
    status: HouseholdStatus = Field(default_factory=HouseholdStatus)


class StatusUpdate(CamelModel):
    """Body of a status change; all three fields are written together."""

    state: StatusState
    note: Optional[str] = Field(default=None, max_length=200)
    time_window: Optional[str] = Field(default=None, max_length=50)


class ContactInfo(CamelModel):
    id: str
    owner_household_id: str
    display_name: str
    linked_household_id: Optional[str] = None
    phone: Optional[str] = None


# ──────────────────────────────
# Invites
# ──────────────────────────────


class InviteDraft(CamelModel):
    activity_type: Optional[str] = Field(default=None, max_length=50)
    activity_name: Optional[str] = Field(default=None, max_length=100)
    location: Optional[str] = Field(default=None, max_length=200)
    proposed_date: Optional[str] = None  # ISO date string
    proposed_time: Optional[str] = Field(default=None, max_length=50)
    message: Optional[str] = Field(default=None, max_length=500)
    recipient_ids: List[str] = Field(min_length=1)


class InviteDetails(CamelModel):
    id: str
    created_by_household_id: str
    activity_type: Optional[str] = None
    activity_name: Optional[str] = None
    location: Optional[str] = None
    proposed_date: Optional[str] = None
    proposed_time: Optional[str] = None
    message: Optional[str] = None
    status: InviteStatus = "pending"
    created_at: Optional[datetime] = None


class InviteReply(CamelModel):
    response: InviteAnswer


class DeliveryRequest(CamelModel):
    delivery_methods: Dict[str, ChannelPreference] = Field(default_factory=dict)


class PushSubscriptionBody(CamelModel):
    subscription: Optional[Dict[str, Any]] = None


class AppInviteRequest(CamelModel):
    phone: str = Field(min_length=5, max_length=20)


# ──────────────────────────────
# Delivery
# ──────────────────────────────


class Recipient(BaseModel):
    """Where and how one household can be reached.

    ``phone`` and ``push_subscription`` belong to the household's primary
    member; ``user_id`` identifies that member so an expired subscription can
    be cleared.
    """

    household_id: str
    household_name: Optional[str] = None
    user_id: Optional[str] = None
    phone: Optional[str] = None
    push_subscription: Optional[Dict[str, Any]] = None


class SentEntry(CamelModel):
    household_id: str
    channel: Channel
    message_id: Optional[str] = None
    timestamp: datetime


class FailedEntry(CamelModel):
    household_id: str
    channel: Channel
    error: str


class PendingEntry(CamelModel):
    household_id: str
    reason: str


DeliveryEntry = Union[SentEntry, FailedEntry, PendingEntry]


class DeliveryOutcome(CamelModel):
    """sent / failed / pending classification of one invite's recipients.

    The API answers with camelCase aliases; the delivery log stores the plain
    field names.
    """

    sent: List[SentEntry] = Field(default_factory=list)
    failed: List[FailedEntry] = Field(default_factory=list)
    pending: List[PendingEntry] = Field(default_factory=list)

    def add(self, entry: DeliveryEntry) -> None:
        if isinstance(entry, SentEntry):
            self.sent.append(entry)
        elif isinstance(entry, FailedEntry):
            self.failed.append(entry)
        elif isinstance(entry, PendingEntry):
            self.pending.append(entry)
        else:
            raise TypeError(f"not a delivery entry: {entry!r}")

    def household_ids(self) -> List[str]:
        return [e.household_id for e in (*self.sent, *self.failed, *self.pending)]

    @property
    def total(self) -> int:
        return len(self.sent) + len(self.failed) + len(self.pending)


# ──────────────────────────────
# Provider results
# ──────────────────────────────


class PushResult(BaseModel):
    success: bool
    expired: bool = False
    error: Optional[str] = None
    status_code: Optional[int] = None


class SmsResult(BaseModel):
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
