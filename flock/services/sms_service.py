"""SMS/MMS provider (ClickSend) and message composition.

This module only talks to the provider. Quota checks and usage accounting
live in messaging_service; nothing here touches the database.
"""

from __future__ import annotations

import logging
from datetime import date, time
from typing import Protocol

import httpx

from flock.core.config import settings
from flock.core.structured_logging import mask_phone
from flock.services.email_service import format_followup_time
from flock.services.http_service import post_json
from flock.types import JsonObject

logger = logging.getLogger(__name__)

CLICKSEND_API_URL = "https://rest.clicksend.com/v3"
DEFAULT_MMS_SUBJECT = "Follow-up"


class SmsProvider(Protocol):
    key: str

    async def send_sms(self, *, to: str, body: str) -> JsonObject:
        """Send a text message; returns {success, message_id, error}."""

    async def send_mms(self, *, to: str, body: str, media_url: str | None = None) -> JsonObject:
        """Send a multimedia message; returns {success, message_id, error}."""


def _failure(error: str) -> JsonObject:
    return {"success": False, "message_id": None, "error": error}


class ClickSendProvider:
    """Sends SMS and MMS through the ClickSend REST API."""

    key = "clicksend"

    def __init__(
        self,
        username: str | None = None,
        api_key: str | None = None,
        *,
        source: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        max_attempts: int = 3,
        base_delay: float = 0.5,
    ) -> None:
        self.username = username if username is not None else settings.CLICKSEND_USERNAME
        self.api_key = api_key if api_key is not None else settings.CLICKSEND_API_KEY
        self.source = source or settings.CLICKSEND_SOURCE
        self._transport = transport
        self._max_attempts = max_attempts
        self._base_delay = base_delay

    def is_configured(self) -> bool:
        return bool(self.username and self.api_key)

    async def send_sms(self, *, to: str, body: str) -> JsonObject:
        message = {"to": to, "body": body, "source": self.source}
        return await self._send("sms", message)

    async def send_mms(self, *, to: str, body: str, media_url: str | None = None) -> JsonObject:
        message: dict[str, object] = {
            "to": to,
            "body": body,
            "subject": DEFAULT_MMS_SUBJECT,
            "source": self.source,
        }
        if media_url:
            message["media_file"] = media_url
        return await self._send("mms", message)

    async def _send(self, channel: str, message: dict[str, object]) -> JsonObject:
        label = channel.upper()
        if not self.is_configured():
            return _failure("ClickSend credentials not configured")

        try:
            response = await post_json(
                f"{CLICKSEND_API_URL}/{channel}/send",
                json={"messages": [message]},
                headers={"Content-Type": "application/json"},
                auth=(self.username, self.api_key),
                transport=self._transport,
                max_attempts=self._max_attempts,
                base_delay=self._base_delay,
            )
        except httpx.TimeoutException:
            logger.warning("%s send timed out to %s", label, mask_phone(str(message["to"])))
            return _failure("Connection timeout")
        except httpx.RequestError as exc:
            logger.warning("%s send connection error: %s", label, type(exc).__name__)
            return _failure(f"Connection error: {exc.__class__.__name__}")

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        messages = (data.get("data") or {}).get("messages") or [{}]
        first = messages[0] if isinstance(messages[0], dict) else {}
        status = first.get("status")

        if data.get("http_code") == 200 and status == "SUCCESS":
            return {"success": True, "message_id": first.get("message_id"), "error": None}

        error_msg = status or data.get("response_msg") or f"{label} send failed ({response.status_code})"
        logger.warning("%s send failed to %s: %s", label, mask_phone(str(message["to"])), error_msg)
        return _failure(str(error_msg))


def get_sms_provider() -> SmsProvider:
    return ClickSendProvider()


def format_sms_date(value: date) -> str:
    return f"{value:%a}, {value:%b} {value.day}"


def build_followup_sms_message(
    *,
    recipient_name: str,
    church_name: str,
    followup_date: date,
    followup_time: time | None = None,
    video_link: str | None = None,
    custom_message: str | None = None,
    for_leader: bool = False,
) -> str:
    """Compose the follow-up text sent to the person (or the leader)."""
    if custom_message:
        return custom_message

    when = format_sms_date(followup_date)
    if followup_time:
        when = f"{when} at {format_followup_time(followup_time)}"

    if for_leader:
        msg = f"{church_name}: Reminder - Follow-up with {recipient_name} on {when}."
        if video_link:
            msg += f" Video: {video_link}"
        return msg

    msg = f"Hi {recipient_name}, {church_name} has scheduled a follow-up with you on {when}."
    if video_link:
        msg += f" Join video call: {video_link}"
    return msg
