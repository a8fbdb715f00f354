"""Email provider (Resend) and follow-up email composition.

Provider calls never raise: they return a result dict
{"success": bool, "message_id": str | None, "error": str | None}
so callers can treat a failed send as "not sent" and retry on the next pass.
"""

from __future__ import annotations

import html as html_module
import logging
import re
from datetime import date, time
from typing import Protocol

import httpx

from flock.core.config import settings
from flock.core.structured_logging import mask_email
from flock.services.http_service import post_json
from flock.types import JsonObject

logger = logging.getLogger(__name__)

RESEND_SEND_URL = "https://api.resend.com/emails"
DEFAULT_FROM_EMAIL = "noreply@resend.dev"


class EmailProvider(Protocol):
    key: str

    async def send(
        self,
        *,
        to: str,
        subject: str,
        html: str,
        from_email: str | None = None,
        idempotency_key: str | None = None,
    ) -> JsonObject:
        """Send one email; returns {success, message_id, error}."""


def _html_to_text(content: str) -> str:
    """Convert HTML into readable text (deliverability + inbox previews)."""
    text = re.sub(r"<(script|style)[^>]*>.*?</\1>", "", content, flags=re.DOTALL | re.I)
    text = re.sub(r"<[^>]+>", " ", text)
    text = re.sub(r"\s+", " ", text).strip()
    return html_module.unescape(text)


def _failure(error: str) -> JsonObject:
    return {"success": False, "message_id": None, "error": error}


class ResendEmailProvider:
    """Sends email through the Resend HTTP API."""

    key = "resend"

    def __init__(
        self,
        api_key: str | None = None,
        from_email: str | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        max_attempts: int = 3,
        base_delay: float = 0.5,
    ) -> None:
        self.api_key = api_key if api_key is not None else settings.RESEND_API_KEY
        self.from_email = from_email or settings.EMAIL_FROM or DEFAULT_FROM_EMAIL
        self._transport = transport
        self._max_attempts = max_attempts
        self._base_delay = base_delay

    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def send(
        self,
        *,
        to: str,
        subject: str,
        html: str,
        from_email: str | None = None,
        idempotency_key: str | None = None,
    ) -> JsonObject:
        if not self.api_key:
            return _failure("Email sender not configured (missing RESEND_API_KEY)")

        payload: dict[str, object] = {
            "from": from_email or self.from_email,
            "to": [to],
            "subject": subject,
            "html": html,
        }
        text = _html_to_text(html)
        if text:
            payload["text"] = text

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key

        try:
            response = await post_json(
                RESEND_SEND_URL,
                json=payload,
                headers=headers,
                transport=self._transport,
                max_attempts=self._max_attempts,
                base_delay=self._base_delay,
            )
        except httpx.TimeoutException:
            logger.warning("Resend timeout sending to %s", mask_email(to))
            return _failure("Connection timeout")
        except httpx.RequestError as exc:
            logger.warning("Resend connection error sending to %s: %s", mask_email(to), type(exc).__name__)
            return _failure(f"Connection error: {exc.__class__.__name__}")

        if 200 <= response.status_code < 300:
            message_id = None
            try:
                data = response.json()
                if isinstance(data, dict):
                    message_id = data.get("id")
            except ValueError:
                message_id = None
            if isinstance(message_id, str) and message_id:
                return {"success": True, "message_id": message_id, "error": None}
            return _failure("Resend API returned success without message id")

        # Resend answers 409 for idempotency conflicts: the message already exists.
        if response.status_code == 409:
            logger.info("Email already sent (409) to %s", mask_email(to))
            return {"success": True, "message_id": None, "error": None}

        error_detail = None
        try:
            data = response.json()
            if isinstance(data, dict):
                error_detail = data.get("message") or data.get("error")
        except ValueError:
            error_detail = None

        error_msg = f"Resend API error: {response.status_code}"
        if error_detail:
            error_msg = f"{error_msg} ({error_detail})"
        logger.warning("Email send failed to %s: %s", mask_email(to), error_msg)
        return _failure(error_msg)


def get_email_provider() -> EmailProvider:
    return ResendEmailProvider()


# =============================================================================
# Composition
# =============================================================================


def format_from_with_ministry(ministry_name: str, from_email: str | None) -> str:
    """Build a From header that shows the ministry name with the sender address."""
    raw = from_email or DEFAULT_FROM_EMAIL
    match = re.search(r"<([^>]+)>", raw) or re.search(r"([^\s<>]+@[^\s<>]+)", raw)
    address = match.group(1) if match else raw
    safe_name = re.sub(r'[<>"]', "", ministry_name).strip()
    if not safe_name:
        return address
    return f"{safe_name} <{address}>"


def format_followup_date(value: date) -> str:
    return f"{value:%A}, {value:%B} {value.day}, {value.year}"


def format_followup_time(value: time) -> str:
    hour = value.hour % 12 or 12
    suffix = "AM" if value.hour < 12 else "PM"
    return f"{hour}:{value.minute:02d} {suffix}"


def format_followup_datetime(followup_date: date, followup_time: time | None = None) -> str:
    formatted = format_followup_date(followup_date)
    if followup_time:
        return f"{formatted} at {format_followup_time(followup_time)}"
    return formatted


def build_reminder_email(
    *,
    recipient_name: str,
    church_name: str,
    followup_date: date,
    followup_time: time | None = None,
    contact_url: str | None = None,
    custom_subject: str | None = None,
    custom_message: str | None = None,
) -> tuple[str, str]:
    """Return (subject, html) for the day-before follow-up reminder."""
    subject = custom_subject or f"Reminder: We're reaching out tomorrow - {church_name}"
    message = custom_message or (
        f"We wanted to let you know that someone from {church_name} will be reaching "
        "out to you tomorrow to check in and see how you're doing on your faith journey."
    )
    when = format_followup_datetime(followup_date, followup_time)
    church = html_module.escape(church_name)

    contact_section = ""
    if contact_url:
        contact_section = (
            '<div style="margin: 25px 0; text-align: center;">'
            f'<a href="{html_module.escape(contact_url, quote=True)}" '
            'style="display: inline-block; background-color: #4F46E5; color: white; '
            'padding: 12px 28px; text-decoration: none; border-radius: 6px; font-weight: 600;">'
            "Contact Us</a></div>"
        )

    body = (
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
        '<h2 style="color: #333;">Just a Friendly Reminder</h2>'
        f"<p>Hello {html_module.escape(recipient_name)},</p>"
        f"<p>{html_module.escape(message)}</p>"
        f'<p style="margin: 20px 0;"><strong>Expected Contact Date:</strong> {when}</p>'
        "<p>We're here to support you every step of the way. If you have any prayer "
        "requests or need anything before then, please don't hesitate to let us know.</p>"
        f"{contact_section}"
        f"<p>Blessings,<br>{church}</p>"
        "</div>"
    )
    return subject, body


def build_announcement_email(
    *,
    subject: str,
    recipient_first_name: str,
    message: str,
    church_name: str,
    image_url: str | None = None,
) -> str:
    image_section = ""
    if image_url:
        image_section = (
            '<div style="margin: 20px 0; text-align: center;">'
            f'<img src="{html_module.escape(image_url, quote=True)}" alt="Announcement" '
            'style="max-width: 100%; border-radius: 8px;" /></div>'
        )
    return (
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
        f'<h2 style="color: #333;">{html_module.escape(subject)}</h2>'
        f"<p>Hello {html_module.escape(recipient_first_name)},</p>"
        f"{image_section}"
        f'<div style="white-space: pre-wrap; margin: 20px 0;">{html_module.escape(message)}</div>'
        f"<p>Blessings,<br>{html_module.escape(church_name)}</p>"
        "</div>"
    )
