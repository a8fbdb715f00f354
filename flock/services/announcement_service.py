"""Delivery of scheduled announcements to recipient groups."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from flock.core.config import settings
from flock.core.monitoring import report_exception
from flock.core.structured_logging import build_log_context
from flock.db.enums import (
    AnnouncementStatus,
    DispatchStatus,
    MessageChannel,
    NotificationMethod,
    PersonKind,
    RecipientGroup,
)
from flock.db.models import Organization, Person, ScheduledAnnouncement
from flock.db.types import utcnow
from flock.services.email_service import (
    EmailProvider,
    build_announcement_email,
    format_from_with_ministry,
    get_email_provider,
)
from flock.services.messaging_service import dispatch_message
from flock.services.sms_service import SmsProvider, get_sms_provider
from flock.utils.normalization import normalize_email, try_normalize_phone

logger = logging.getLogger(__name__)

GROUP_TO_KIND: dict[RecipientGroup, PersonKind] = {
    RecipientGroup.CONVERTS: PersonKind.CONVERT,
    RecipientGroup.NEW_MEMBERS: PersonKind.NEW_MEMBER,
    RecipientGroup.MEMBERS: PersonKind.MEMBER,
}


@dataclass(frozen=True)
class Recipient:
    first_name: str
    email: str | None
    phone: str | None


def get_recipients(session: Session, org_id: UUID, groups: list[str]) -> list[Recipient]:
    kinds = []
    for group in groups:
        try:
            kinds.append(GROUP_TO_KIND[RecipientGroup(group)].value)
        except ValueError:
            logger.warning("Ignoring unknown recipient group '%s'", group)
    if not kinds:
        return []

    rows = session.execute(
        select(Person.first_name, Person.email, Person.phone)
        .where(Person.organization_id == org_id, Person.kind.in_(kinds))
        .order_by(Person.created_at)
    ).all()
    return [Recipient(first_name=f, email=e, phone=p) for f, e, p in rows]


def unique_emails(recipients: list[Recipient]) -> list[Recipient]:
    """Recipients with an email, first occurrence per address (case-insensitive)."""
    seen: set[str] = set()
    result = []
    for recipient in recipients:
        email = normalize_email(recipient.email)
        if not email or email in seen:
            continue
        seen.add(email)
        result.append(recipient)
    return result


def unique_phones(recipients: list[Recipient]) -> list[str]:
    """Normalized phone numbers, deduplicated; unparseable numbers are dropped."""
    seen: set[str] = set()
    result = []
    for recipient in recipients:
        phone = try_normalize_phone(recipient.phone)
        if not phone or phone in seen:
            continue
        seen.add(phone)
        result.append(phone)
    return result


def claim_announcement(
    session: Session, announcement_id: UUID, now: datetime | None = None
) -> bool:
    """PENDING → SENDING. False if another worker got it first."""
    result = session.execute(
        update(ScheduledAnnouncement)
        .where(
            ScheduledAnnouncement.id == announcement_id,
            ScheduledAnnouncement.status == AnnouncementStatus.PENDING.value,
        )
        .values(status=AnnouncementStatus.SENDING.value, claimed_at=now or utcnow())
        .execution_options(synchronize_session=False)
    )
    session.commit()
    return result.rowcount == 1


def finish_announcement(
    session: Session,
    announcement_id: UUID,
    status: AnnouncementStatus,
    now: datetime,
    error: str | None = None,
) -> None:
    session.execute(
        update(ScheduledAnnouncement)
        .where(ScheduledAnnouncement.id == announcement_id)
        .values(
            status=status.value,
            error=error,
            sent_at=now if status == AnnouncementStatus.SENT else None,
        )
        .execution_options(synchronize_session=False)
    )
    session.commit()


def release_stale_announcements(session: Session, now: datetime) -> int:
    """
    Fail SENDING announcements whose worker never finished them.

    They are not retried: some recipients may already have the message.
    """
    cutoff = now - timedelta(minutes=settings.ANNOUNCEMENT_SENDING_TIMEOUT_MINUTES)
    result = session.execute(
        update(ScheduledAnnouncement)
        .where(
            ScheduledAnnouncement.status == AnnouncementStatus.SENDING.value,
            or_(
                ScheduledAnnouncement.claimed_at <= cutoff,
                ScheduledAnnouncement.claimed_at.is_(None),
            ),
        )
        .values(
            status=AnnouncementStatus.FAILED.value,
            error="Sending was interrupted; delivery may be partial",
        )
        .execution_options(synchronize_session=False)
    )
    session.commit()
    if result.rowcount:
        logger.warning("Marked %s interrupted announcement(s) as FAILED", result.rowcount)
    return result.rowcount


async def send_announcement(
    session: Session,
    announcement: ScheduledAnnouncement,
    now: datetime,
    email_provider: EmailProvider,
    sms_provider: SmsProvider,
) -> dict:
    """Deliver one claimed announcement and record the final status."""
    announcement_id = announcement.id
    org_id = announcement.organization_id
    church_name = session.scalar(select(Organization.name).where(Organization.id == org_id))
    if church_name is None:
        raise ValueError(f"Organization {org_id} not found")

    recipients = get_recipients(session, org_id, list(announcement.recipient_groups or []))
    stats = {"emails_sent": 0, "emails_failed": 0, "texts_sent": 0, "texts_failed": 0}

    if not recipients:
        finish_announcement(
            session,
            announcement_id,
            AnnouncementStatus.SENT,
            now,
            error="No recipients found in selected groups",
        )
        logger.info("Announcement %s has no recipients; marked sent", announcement_id)
        return {**stats, "status": AnnouncementStatus.SENT.value}

    from_email = format_from_with_ministry(church_name, settings.EMAIL_FROM)
    for recipient in unique_emails(recipients):
        html = build_announcement_email(
            subject=announcement.subject,
            recipient_first_name=recipient.first_name,
            message=announcement.message,
            church_name=church_name,
            image_url=announcement.image_url,
        )
        result = await email_provider.send(
            to=recipient.email,
            subject=announcement.subject,
            html=html,
            from_email=from_email,
        )
        if result.get("success"):
            stats["emails_sent"] += 1
        else:
            stats["emails_failed"] += 1

    method = announcement.notification_method
    if method in (NotificationMethod.SMS.value, NotificationMethod.MMS.value) and announcement.sms_message:
        channel = MessageChannel(method)
        for phone in unique_phones(recipients):
            outcome = await dispatch_message(
                session,
                org_id=org_id,
                channel=channel,
                to=phone,
                body=announcement.sms_message,
                media_url=announcement.mms_media_url,
                provider=sms_provider,
                now=now,
            )
            if outcome.status == DispatchStatus.QUOTA_EXCEEDED:
                logger.info(
                    "Announcement %s stopped texting: %s limit reached",
                    announcement_id,
                    channel.value.upper(),
                )
                break
            if outcome.sent:
                stats["texts_sent"] += 1
            else:
                stats["texts_failed"] += 1

    delivered = stats["emails_sent"] > 0 or stats["texts_sent"] > 0
    status = AnnouncementStatus.SENT if delivered else AnnouncementStatus.FAILED
    error = None
    if not delivered:
        error = (
            f"All sends failed: {stats['emails_failed']} email(s), "
            f"{stats['texts_failed']} SMS/MMS"
        )
    finish_announcement(session, announcement_id, status, now, error=error)
    logger.info(
        "Announcement %s %s: %s emails sent, %s failed, %s texts sent, %s failed",
        announcement_id,
        status.value,
        stats["emails_sent"],
        stats["emails_failed"],
        stats["texts_sent"],
        stats["texts_failed"],
    )
    return {**stats, "status": status.value}


async def process_scheduled_announcements(
    session: Session,
    now: datetime | None = None,
    email_provider: EmailProvider | None = None,
    sms_provider: SmsProvider | None = None,
) -> dict:
    """
    Send every PENDING announcement whose scheduled time has come.

    Returns summary stats.
    """
    now = now or utcnow()
    email_provider = email_provider or get_email_provider()
    sms_provider = sms_provider or get_sms_provider()

    recovered = release_stale_announcements(session, now)

    due_ids = session.scalars(
        select(ScheduledAnnouncement.id)
        .where(
            ScheduledAnnouncement.status == AnnouncementStatus.PENDING.value,
            ScheduledAnnouncement.scheduled_at <= now,
        )
        .order_by(ScheduledAnnouncement.scheduled_at)
    ).all()

    processed = 0
    sent = 0
    failed = 0
    errors: list[dict] = []
    for announcement_id in due_ids:
        if not claim_announcement(session, announcement_id, now):
            continue
        processed += 1
        try:
            announcement = session.get(ScheduledAnnouncement, announcement_id)
            result = await send_announcement(
                session, announcement, now, email_provider, sms_provider
            )
        except Exception as exc:
            session.rollback()
            context = build_log_context(announcement_id=announcement_id)
            logger.exception("Scheduled announcement failed", extra=context)
            report_exception(context)
            errors.append({**context, "error": f"{type(exc).__name__}: {exc}"})
            failed += 1
            try:
                finish_announcement(
                    session,
                    announcement_id,
                    AnnouncementStatus.FAILED,
                    now,
                    error=str(exc) or type(exc).__name__,
                )
            except Exception as finish_exc:
                # Left in SENDING; release_stale_announcements fails it later
                session.rollback()
                logger.exception("Could not mark announcement FAILED", extra=context)
                report_exception(context)
                errors.append(
                    {**context, "error": f"{type(finish_exc).__name__}: {finish_exc}"}
                )
            continue

        if result["status"] == AnnouncementStatus.SENT.value:
            sent += 1
        else:
            failed += 1

    return {
        "processed": processed,
        "sent": sent,
        "failed": failed,
        "recovered": recovered,
        "errors": errors,
    }
