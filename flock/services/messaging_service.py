"""Quota-checked SMS/MMS dispatch.

Order of operations for one message:
    1. normalize the phone number (invalid → INVALID_RECIPIENT, no provider call)
    2. compare usage with the plan limit (used >= limit → QUOTA_EXCEEDED)
    3. call the provider (failure → FAILED, nothing written)
    4. on success, atomically increment the usage counter

Quota refusal and invalid input are normal results, not exceptions; the
staff-facing caller surfaces them to the user.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy.orm import Session

from flock.core.structured_logging import mask_phone
from flock.db.enums import DispatchStatus, MessageChannel
from flock.services import quota_service
from flock.services.sms_service import SmsProvider, get_sms_provider
from flock.utils.normalization import normalize_phone

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DispatchResult:
    status: DispatchStatus
    channel: MessageChannel
    recipient: str | None = None
    message_id: str | None = None
    error: str | None = None
    used: int | None = None
    limit: int | None = None

    @property
    def sent(self) -> bool:
        return self.status == DispatchStatus.SENT


async def dispatch_message(
    session: Session,
    *,
    org_id: UUID,
    channel: MessageChannel | str,
    to: str,
    body: str,
    media_url: str | None = None,
    provider: SmsProvider | None = None,
    now: datetime | None = None,
) -> DispatchResult:
    """Send one SMS/MMS for a tenant if its plan quota allows it."""
    channel = MessageChannel(channel)

    try:
        phone = normalize_phone(to)
    except ValueError as exc:
        logger.info("Rejected %s for org=%s: %s", channel.value, org_id, exc)
        return DispatchResult(
            status=DispatchStatus.INVALID_RECIPIENT,
            channel=channel,
            error=str(exc),
        )

    quota = quota_service.check_quota(session, org_id, channel, now)
    if not quota.allowed:
        logger.info(
            "%s limit reached for org=%s period=%s (%s/%s)",
            channel.value.upper(),
            org_id,
            quota.billing_period,
            quota.used,
            quota.limit,
        )
        return DispatchResult(
            status=DispatchStatus.QUOTA_EXCEEDED,
            channel=channel,
            recipient=phone,
            error=f"Monthly {channel.value.upper()} limit of {quota.limit} reached",
            used=quota.used,
            limit=quota.limit,
        )

    sender = provider or get_sms_provider()
    if channel == MessageChannel.SMS:
        result = await sender.send_sms(to=phone, body=body)
    else:
        result = await sender.send_mms(to=phone, body=body, media_url=media_url)

    if not result.get("success"):
        error = str(result.get("error") or f"{channel.value.upper()} send failed")
        logger.warning(
            "%s send failed for org=%s to %s: %s",
            channel.value.upper(),
            org_id,
            mask_phone(phone),
            error,
        )
        return DispatchResult(
            status=DispatchStatus.FAILED,
            channel=channel,
            recipient=phone,
            error=error,
            used=quota.used,
            limit=quota.limit,
        )

    used = quota_service.increment(session, org_id, quota.billing_period, channel)
    logger.info(
        "%s sent for org=%s to %s (usage %s/%s)",
        channel.value.upper(),
        org_id,
        mask_phone(phone),
        used,
        quota.limit,
    )
    message_id = result.get("message_id")
    return DispatchResult(
        status=DispatchStatus.SENT,
        channel=channel,
        recipient=phone,
        message_id=str(message_id) if message_id else None,
        used=used,
        limit=quota.limit,
    )
