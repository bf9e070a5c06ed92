"""Celery worker that (re)delivers a stored invite.

Runs the delivery policy engine outside the request cycle, e.g. when the
inviting household asks for a retry with different per-household channels.
The worker has no live sockets, so only push and SMS are used.

Retries: database / unexpected errors are retried by Celery; provider
failures are part of the outcome and are not retried here.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional

from app.celery_app import celery_app
from app.services.invite_delivery import InviteNotifier
from app.utils.push import WebPushSender
from app.utils.sms import TelnyxSmsSender
import db

_LOGGER = logging.getLogger(__name__)


async def _redeliver(invite_id: str, delivery_methods: Optional[Dict[str, str]]) -> dict:
    notifier = InviteNotifier(WebPushSender.from_settings(), TelnyxSmsSender.from_settings())
    try:
        outcome = await notifier.deliver_stored_invite(invite_id, delivery_methods)
    finally:
        # Each task runs in a fresh event loop; pooled connections cannot outlive it
        await db.dispose_engine()
    return outcome.model_dump(mode="json")


@celery_app.task(name="app.workers.delivery.redeliver", bind=True, max_retries=3)
def redeliver(self, invite_id: str, delivery_methods: Optional[Dict[str, str]] = None):  # noqa: D401
    """Deliver *invite_id* and return the serialized outcome."""
    try:
        return asyncio.run(_redeliver(invite_id, delivery_methods))
    except LookupError:
        _LOGGER.warning("Invite %s no longer exists, nothing to deliver", invite_id)
        return None
    except Exception as exc:  # noqa: BLE001
        raise self.retry(exc=exc, countdown=30)
