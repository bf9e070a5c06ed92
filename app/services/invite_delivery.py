"""
Invite delivery.

Two ways of reaching an invite's recipients live here:

* ``deliver_invite`` – the delivery policy engine. Chooses push or SMS per
  recipient (honouring an optional per-household preference), falls back to
  SMS when a push subscription has expired, classifies every recipient as
  sent / failed / pending and writes one delivery-log row per call. Used for
  (re)delivery from the API and the Celery worker.
* ``notify_new_invite`` – the lighter creation-time notification: a socket
  event plus best-effort push for app users, an invite SMS with a link for
  contacts who are not on the app. No outcome report, no preferences.

Provider failures never escape either path; an invite is created (or a
response recorded) even if nobody could be notified.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional
from urllib.parse import quote

import db
from app.services.household_push import forget_subscription, push_to_household
from app.types.channels import HouseholdPublisher, PushSender, SmsSender
from app.types.delivery_contract import (
    ContactInfo,
    DeliveryEntry,
    DeliveryOutcome,
    FailedEntry,
    HouseholdInfo,
    InviteDetails,
    InviteDraft,
    PendingEntry,
    Recipient,
    SentEntry,
    SmsResult,
)
from config import settings

_LOGGER = logging.getLogger(__name__)

NO_SPECIFIC_PLAN = "No specific plan"
DEFAULT_SENDER_NAME = "A friend"
NO_DELIVERY_METHOD = "no delivery method available"
EXPIRED_NO_FALLBACK = "subscription expired, no phone fallback"


def format_invite_message(invite: InviteDetails) -> str:
    """One-line summary of an invite, e.g. ``Picnic on 2025-06-01 at 3pm``."""
    parts: List[str] = []

    if invite.activity_name and invite.activity_name != NO_SPECIFIC_PLAN:
        parts.append(invite.activity_name)
    if invite.proposed_date:
        parts.append(f"on {invite.proposed_date}")
    if invite.proposed_time:
        parts.append(f"at {invite.proposed_time}")

    if not parts:
        return "Wants to hang out soon!"
    return " ".join(parts)


def _describe(exc: Exception) -> str:
    return str(exc) or exc.__class__.__name__


def _now() -> datetime:
    return datetime.now(timezone.utc)


class InviteNotifier:
    """Invite notifications over push, SMS and the real-time hub.

    *hub* may be None outside the web process (the Celery worker has no live
    sockets); only the creation-time and response paths publish events.
    """

    def __init__(
        self,
        push_sender: PushSender,
        sms_sender: SmsSender,
        hub: Optional[HouseholdPublisher] = None,
    ) -> None:
        self._push = push_sender
        self._sms = sms_sender
        self._hub = hub

    # ------------------------------------------------------------------
    # Delivery policy engine
    # ------------------------------------------------------------------
    async def deliver_invite(
        self,
        invite: InviteDetails,
        recipients: Iterable[Recipient],
        delivery_methods: Optional[Dict[str, str]] = None,
        sender_name: Optional[str] = None,
    ) -> DeliveryOutcome:
        methods = delivery_methods or {}
        title = f"New invite from {sender_name or DEFAULT_SENDER_NAME}!"
        body = format_invite_message(invite)

        entries = await asyncio.gather(
            *(
                self._deliver_to(invite, r, methods.get(r.household_id, "in-app"), title, body)
                for r in recipients
            )
        )

        outcome = DeliveryOutcome()
        for entry in entries:
            outcome.add(entry)

        await db.insert_delivery_log(invite.id, outcome)
        _LOGGER.info(
            "Invite %s delivered: %d sent, %d failed, %d pending",
            invite.id, len(outcome.sent), len(outcome.failed), len(outcome.pending),
        )
        return outcome

    async def deliver_stored_invite(
        self,
        invite_id: str,
        delivery_methods: Optional[Dict[str, str]] = None,
    ) -> DeliveryOutcome:
        invite = await db.get_invite(invite_id)
        if invite is None:
            raise LookupError("Invite not found")
        sender = await db.get_household(invite.created_by_household_id)
        recipients = await db.fetch_delivery_recipients(invite_id)
        return await self.deliver_invite(
            invite,
            recipients,
            delivery_methods,
            sender_name=sender.name if sender else None,
        )

    async def _deliver_to(
        self,
        invite: InviteDetails,
        recipient: Recipient,
        method: str,
        title: str,
        body: str,
    ) -> DeliveryEntry:
        try:
            if method == "sms":
                if recipient.phone:
                    return await self._deliver_via_sms(invite, recipient, title, body)
                if recipient.push_subscription:
                    return await self._deliver_via_push(invite, recipient, title, body)
                return PendingEntry(household_id=recipient.household_id, reason=NO_DELIVERY_METHOD)

            if method != "in-app":
                _LOGGER.warning("Unknown delivery method %r for %s, using in-app", method, recipient.household_id)
            if recipient.push_subscription:
                return await self._deliver_via_push(invite, recipient, title, body)
            if recipient.phone:
                return await self._deliver_via_sms(invite, recipient, title, body)
            return PendingEntry(household_id=recipient.household_id, reason=NO_DELIVERY_METHOD)
        except Exception as exc:  # noqa: BLE001
            _LOGGER.exception("Failed to deliver invite %s to %s", invite.id, recipient.household_id)
            return FailedEntry(
                household_id=recipient.household_id,
                channel="sms" if method == "sms" else "push",
                error=_describe(exc),
            )

    async def _deliver_via_push(
        self,
        invite: InviteDetails,
        recipient: Recipient,
        title: str,
        body: str,
    ) -> DeliveryEntry:
        payload = {
            "title": title,
            "body": body,
            "data": {"type": "invite", "inviteId": invite.id},
            "icon": "/icons/icon-192.png",
            "badge": "/icons/badge-72.png",
            "actions": [
                {"action": "accept", "title": "Accept"},
                {"action": "decline", "title": "Decline"},
            ],
        }
        try:
            result = await self._push.send_push(recipient.push_subscription, payload)
        except Exception as exc:  # noqa: BLE001
            _LOGGER.exception("Push to %s raised", recipient.household_id)
            return FailedEntry(household_id=recipient.household_id, channel="push", error=_describe(exc))

        if result.success:
            return SentEntry(household_id=recipient.household_id, channel="push", timestamp=_now())

        if result.expired:
            await forget_subscription(recipient)
            if recipient.phone:
                return await self._deliver_via_sms(invite, recipient, title, body)
            return FailedEntry(household_id=recipient.household_id, channel="push", error=EXPIRED_NO_FALLBACK)

        return FailedEntry(
            household_id=recipient.household_id,
            channel="push",
            error=result.error or "push delivery failed",
        )

    async def _deliver_via_sms(
        self,
        invite: InviteDetails,
        recipient: Recipient,
        title: str,
        body: str,
    ) -> DeliveryEntry:
        text = f"{title}\n\n{body}\n\nView in Circles: {settings.APP_BASE_URL}/invite/{invite.id}"
        try:
            result = await self._sms.send_sms(recipient.phone, text)
        except Exception as exc:  # noqa: BLE001
            _LOGGER.exception("SMS to %s raised", recipient.household_id)
            return FailedEntry(household_id=recipient.household_id, channel="sms", error=_describe(exc))

        if result.success:
            return SentEntry(
                household_id=recipient.household_id,
                channel="sms",
                message_id=result.message_id,
                timestamp=_now(),
            )
        return FailedEntry(
            household_id=recipient.household_id,
            channel="sms",
            error=result.error or "sms delivery failed",
        )

    # ------------------------------------------------------------------
    # Creation-time notifications
    # ------------------------------------------------------------------
    async def create_invite(self, sender: HouseholdInfo, draft: InviteDraft) -> InviteDetails:
        """Store the invite, add a recipient row per linked household, notify."""
        invite = await db.insert_invite(sender.id, draft)
        contacts = await db.fetch_owned_contacts(sender.id, draft.recipient_ids)

        # Two contacts may link the same household; it is invited once
        linked: set[str] = set()
        targets: List[ContactInfo] = []
        for contact in contacts:
            if contact.linked_household_id:
                if contact.linked_household_id in linked:
                    continue
                linked.add(contact.linked_household_id)
                await db.add_invite_recipient(invite.id, contact.linked_household_id)
            targets.append(contact)

        await self.notify_new_invite(invite, sender, targets)
        return invite

    async def notify_new_invite(
        self,
        invite: InviteDetails,
        sender: HouseholdInfo,
        contacts: Iterable[ContactInfo],
    ) -> None:
        await asyncio.gather(*(self._notify_contact(invite, sender, c) for c in contacts))

    async def _notify_contact(self, invite: InviteDetails, sender: HouseholdInfo, contact: ContactInfo) -> None:
        try:
            if contact.linked_household_id:
                await self._announce_invite(invite, sender, contact.linked_household_id)
            elif contact.phone:
                await self._text_invite(invite, sender, contact.phone)
        except Exception:  # noqa: BLE001
            _LOGGER.exception("Could not notify contact %s of invite %s", contact.id, invite.id)

    async def _announce_invite(self, invite: InviteDetails, sender: HouseholdInfo, household_id: str) -> None:
        activity = invite.activity_name or "hang out"
        if self._hub is not None:
            await self._hub.publish(
                household_id,
                "invite:new",
                {
                    "invite": {
                        "id": invite.id,
                        "activityName": activity,
                        "proposedDate": invite.proposed_date,
                        "proposedTime": invite.proposed_time,
                    },
                    "from": {"id": sender.id, "name": sender.name},
                },
            )
        await push_to_household(
            self._push,
            household_id,
            {
                "title": "New invite!",
                "body": f"{sender.name} wants to {activity}",
                "data": {"type": "invite", "inviteId": invite.id},
            },
        )

    async def _text_invite(self, invite: InviteDetails, sender: HouseholdInfo, phone: str) -> None:
        link = f"{settings.FRONTEND_URL}?invite={invite.id}&phone={quote(phone, safe='')}"
        body = (
            f"{sender.name} invited you to hang out via Circles! View and respond: {link}\n\n"
            "Sent from Circles - Family social coordination made simple."
        )
        result = await self._sms.send_sms(phone, body)
        if not result.success:
            _LOGGER.warning("Invite SMS for %s failed: %s", invite.id, result.error)

    # ------------------------------------------------------------------
    # Responses
    # ------------------------------------------------------------------
    async def respond_to_invite(self, invite_id: str, responder: HouseholdInfo, response: str) -> InviteDetails:
        if not await db.record_invite_response(invite_id, responder.id, response):
            raise LookupError("Invite not found")
        invite = await db.get_invite(invite_id)
        if invite is None:
            raise LookupError("Invite not found")
        await self.notify_invite_response(invite, responder, response)
        return invite

    async def notify_invite_response(self, invite: InviteDetails, responder: HouseholdInfo, response: str) -> None:
        creator_id = invite.created_by_household_id
        if self._hub is not None:
            await self._hub.publish(
                creator_id,
                "invite:response",
                {
                    "inviteId": invite.id,
                    "householdId": responder.id,
                    "householdName": responder.name,
                    "response": response,
                },
            )
        await push_to_household(
            self._push,
            creator_id,
            {
                "title": f"{responder.name} {response}!",
                "body": f"Your invite was {response}",
                "data": {"type": "invite_response", "inviteId": invite.id},
            },
        )

    # ------------------------------------------------------------------
    # App invitations
    # ------------------------------------------------------------------
    async def send_app_invite(self, phone: str, sender_name: str) -> SmsResult:
        """Text someone who is not on Circles yet a download link."""
        message = (
            f"{sender_name} invited you to Circles! Download the app to coordinate "
            f"hangouts with friends and family: {settings.APP_BASE_URL}/download"
        )
        return await self._sms.send_sms(phone, message)
