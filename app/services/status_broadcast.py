"""
Status broadcast.

When a household changes its status every *watcher* – a household that holds
it as a linked contact – gets one ``status:update`` event on its live sessions
and, if its primary member has a push subscription, one push notification.
There is no SMS fallback: a watcher that is offline without push sees the new
status the next time it polls.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional

import db
from app.services.household_push import push_to_household
from app.types.channels import HouseholdPublisher, PushSender
from app.types.delivery_contract import HouseholdInfo, HouseholdStatus, StatusUpdate

_LOGGER = logging.getLogger(__name__)


def _unique(household_ids: Iterable[str]) -> List[str]:
    seen: set[str] = set()
    ordered: List[str] = []
    for household_id in household_ids:
        if household_id not in seen:
            seen.add(household_id)
            ordered.append(household_id)
    return ordered


def _push_payload(household: HouseholdInfo, status: HouseholdStatus) -> Dict[str, Any]:
    details = [part for part in (status.note, status.time_window) if part]
    return {
        "title": f"{household.name} is {status.state}",
        "body": ", ".join(details) if details else "Tap to see who's around",
        "data": {"type": "status", "householdId": household.id},
    }


class StatusBroadcaster:
    def __init__(self, hub: HouseholdPublisher, push_sender: Optional[PushSender] = None) -> None:
        self._hub = hub
        self._push = push_sender

    async def update_status(self, household: HouseholdInfo, change: StatusUpdate) -> HouseholdInfo:
        """Persist the new status, then tell the watchers about it."""
        updated = await db.update_household_status(household.id, change)
        if updated is None:
            raise LookupError("No household found")
        await self.broadcast_status_update(updated, updated.status)
        return updated

    async def broadcast_status_update(self, household: HouseholdInfo, status: HouseholdStatus) -> List[str]:
        """Notify each watcher once; returns the watcher ids.

        Failing to resolve watchers propagates to the caller. Once resolved,
        a failure for one watcher is logged and does not affect the others.
        """
        watchers = _unique(await db.fetch_watcher_household_ids(household.id))
        if not watchers:
            return []

        event = {
            "householdId": household.id,
            "householdName": household.name,
            "status": status.model_dump(mode="json", by_alias=True),
        }
        push = _push_payload(household, status)
        await asyncio.gather(*(self._notify_watcher(w, event, push) for w in watchers))

        _LOGGER.info("Status of %s broadcast to %d watcher(s)", household.id, len(watchers))
        return watchers

    async def _notify_watcher(self, watcher_id: str, event: Dict[str, Any], push: Dict[str, Any]) -> None:
        try:
            await self._hub.publish(watcher_id, "status:update", event)
        except Exception:  # noqa: BLE001
            _LOGGER.exception("status:update publish to %s failed", watcher_id)
        if self._push is not None:
            await push_to_household(self._push, watcher_id, push)
