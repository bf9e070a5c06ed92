"""Telnyx implementation of the ``SmsSender`` protocol."""

from __future__ import annotations

import asyncio
import logging

import telnyx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from app.types.delivery_contract import SmsResult
from config import settings

_LOGGER = logging.getLogger(__name__)

# Retry only when the request never reached Telnyx
RETRY_ERRORS = (telnyx.error.APIConnectionError,)


class TelnyxSmsSender:
    def __init__(self, api_key: str | None, from_number: str | None) -> None:
        self._api_key = api_key
        self._from_number = from_number
        if api_key:
            telnyx.api_key = api_key

    @classmethod
    def from_settings(cls) -> "TelnyxSmsSender":
        return cls(settings.TELNYX_API_KEY, settings.TELNYX_FROM_NUMBER)

    @property
    def configured(self) -> bool:
        return bool(self._api_key and self._from_number)

    async def send_sms(self, to: str, body: str) -> SmsResult:
        if not self.configured:
            _LOGGER.info("[SMS] DEV mode: would send to %s: %s", to, body)
            return SmsResult(success=True)

        try:
            message = await asyncio.to_thread(self._create_message, to, body)
        except telnyx.error.TelnyxError as exc:
            _LOGGER.error("Telnyx send to %s failed: %s", to, exc)
            return SmsResult(success=False, error=str(exc))

        message_id = getattr(message, "id", None)
        _LOGGER.info("SMS sent to %s, id %s", to, message_id)
        return SmsResult(success=True, message_id=message_id)

    @retry(
        wait=wait_random_exponential(multiplier=1, max=10),
        stop=stop_after_attempt(3),
        retry=retry_if_exception_type(RETRY_ERRORS),
        reraise=True,
    )
    def _create_message(self, to: str, body: str):
        return telnyx.Message.create(from_=self._from_number, to=to, text=body)
