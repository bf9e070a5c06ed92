"""Web-push (VAPID) implementation of the ``PushSender`` protocol."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict

from pywebpush import WebPushException, webpush

from app.types.delivery_contract import PushResult
from config import settings

_LOGGER = logging.getLogger(__name__)

# Push services answer 404/410 once a subscription is gone for good
EXPIRED_STATUS_CODES = frozenset({404, 410})


class WebPushSender:
    def __init__(
        self,
        vapid_private_key: str | None,
        vapid_subject: str,
        timeout: int = 10,
    ) -> None:
        self._private_key = vapid_private_key
        self._subject = vapid_subject
        self._timeout = timeout

    @classmethod
    def from_settings(cls) -> "WebPushSender":
        key = settings.VAPID_PRIVATE_KEY if settings.VAPID_PUBLIC_KEY else None
        return cls(key, settings.VAPID_SUBJECT, settings.PUSH_TIMEOUT)

    @property
    def configured(self) -> bool:
        return bool(self._private_key)

    async def send_push(self, subscription: Dict[str, Any], payload: Dict[str, Any]) -> PushResult:
        if not self.configured:
            _LOGGER.info("[PUSH] DEV mode: would send %s", payload)
            return PushResult(success=True)

        try:
            response = await asyncio.to_thread(
                webpush,
                subscription_info=subscription,
                data=json.dumps(payload),
                vapid_private_key=self._private_key,
                # webpush() adds aud/exp to the claims dict, so pass a fresh one
                vapid_claims={"sub": self._subject},
                timeout=self._timeout,
            )
        except WebPushException as exc:
            status_code = getattr(exc.response, "status_code", None)
            if status_code in EXPIRED_STATUS_CODES:
                _LOGGER.info("Push subscription expired (%s)", status_code)
                return PushResult(success=False, expired=True, status_code=status_code)
            _LOGGER.error("Push notification error: %s", exc)
            return PushResult(success=False, error=str(exc), status_code=status_code)

        status_code = getattr(response, "status_code", None)
        _LOGGER.debug("Push notification sent: %s", status_code)
        return PushResult(success=True, status_code=status_code)
