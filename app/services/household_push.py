"""Opportunistic push to a household's primary member."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import db
from app.types.channels import PushSender
from app.types.delivery_contract import PushResult, Recipient

_LOGGER = logging.getLogger(__name__)


async def forget_subscription(target: Recipient) -> None:
    """Clear a subscription the push service reported as expired."""
    if not target.user_id:
        return
    try:
        await db.clear_push_subscription(target.user_id)
    except Exception:  # noqa: BLE001
        _LOGGER.exception("Could not clear expired push subscription of user %s", target.user_id)
        return
    _LOGGER.info("Cleared expired push subscription of user %s", target.user_id)


async def push_to_household(
    push_sender: PushSender,
    household_id: str,
    payload: Dict[str, Any],
) -> Optional[PushResult]:
    """Push *payload* if the household has a subscription; None when skipped.

    Never raises: a missing subscription is not an error and provider or
    lookup failures are logged.
    """
    try:
        target = await db.fetch_primary_contact_point(household_id)
        if target is None or not target.push_subscription:
            return None
        result = await push_sender.send_push(target.push_subscription, payload)
    except Exception:  # noqa: BLE001
        _LOGGER.exception("Push to household %s failed", household_id)
        return None

    if result.expired:
        await forget_subscription(target)
    elif not result.success:
        _LOGGER.warning("Push to household %s failed: %s", household_id, result.error)
    return result
