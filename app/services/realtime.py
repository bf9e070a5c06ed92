"""
Real-time fan-out of household events to live socket sessions.

A client joins the channel of a household (``join:household``) and from then
on receives every event published to that household until it leaves or its
socket closes. Membership lives in memory only: after a restart clients
re-join on reconnect, and events published while nobody is joined are lost.
Durable delivery is the job of push / SMS, not of this hub.

The hub is created at application startup, handed to the services that
publish, and closed at shutdown.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Protocol

_LOGGER = logging.getLogger(__name__)


class Connection(Protocol):
    async def send_json(self, data: Any) -> None: ...


class HouseholdHub:
    def __init__(self) -> None:
        self._channels: Dict[str, List[Connection]] = {}

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------
    def join(self, household_id: str, connection: Connection) -> None:
        members = self._channels.setdefault(household_id, [])
        if connection not in members:
            members.append(connection)
            _LOGGER.debug("Connection joined household:%s", household_id)

    def leave(self, household_id: str, connection: Connection) -> None:
        members = self._channels.get(household_id)
        if not members or connection not in members:
            return
        members.remove(connection)
        if not members:
            del self._channels[household_id]

    def disconnect(self, connection: Connection) -> List[str]:
        """Drop *connection* from every channel; returns the households it left."""
        joined = [hid for hid, members in self._channels.items() if connection in members]
        for household_id in joined:
            self.leave(household_id, connection)
        return joined

    def connections(self, household_id: str) -> List[Connection]:
        return list(self._channels.get(household_id, ()))

    def households(self) -> List[str]:
        return list(self._channels)

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------
    async def publish(self, household_id: str, event: str, payload: Dict[str, Any]) -> int:
        """Send ``{"event", "data"}`` to each connection of the household.

        Best-effort: no ack, no retry. A connection whose send fails is
        removed and the rest still receive the event. Returns how many
        connections were reached.
        """
        members = self.connections(household_id)
        if not members:
            _LOGGER.debug("No live sessions for household:%s, dropping %s", household_id, event)
            return 0

        message = {"event": event, "data": payload}
        delivered = 0
        for connection in members:
            try:
                await connection.send_json(message)
            except Exception as exc:  # noqa: BLE001
                _LOGGER.warning("Dropping stale connection on household:%s (%s)", household_id, exc)
                self.disconnect(connection)
                continue
            delivered += 1
        return delivered

    def close(self) -> None:
        count = sum(len(m) for m in self._channels.values())
        self._channels.clear()
        _LOGGER.info("Household hub closed, released %d connection(s)", count)
