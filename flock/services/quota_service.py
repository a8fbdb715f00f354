"""Quota ledger: per-tenant, per-billing-period SMS/MMS usage counters."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from flock.core.plans import PlanLimits, get_plan_limits
from flock.db.enums import MessageChannel
from flock.db.models import MessageUsage, Organization
from flock.db.types import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Usage:
    sms_count: int
    mms_count: int

    def for_channel(self, channel: MessageChannel) -> int:
        return self.sms_count if channel == MessageChannel.SMS else self.mms_count


@dataclass(frozen=True)
class QuotaCheck:
    channel: MessageChannel
    billing_period: str
    used: int
    limit: int

    @property
    def allowed(self) -> bool:
        return self.used < self.limit

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.used)


def current_billing_period(now: datetime | None = None) -> str:
    """Billing period key ("YYYY-MM") for the UTC calendar month of `now`."""
    moment = (now or utcnow()).astimezone(timezone.utc)
    return f"{moment.year:04d}-{moment.month:02d}"


def get_plan(session: Session, org_id: UUID) -> str:
    plan = session.scalar(select(Organization.plan).where(Organization.id == org_id))
    if plan is None:
        raise ValueError(f"Organization {org_id} not found")
    return plan


def get_limits(session: Session, org_id: UUID) -> PlanLimits:
    return get_plan_limits(get_plan(session, org_id))


def get_usage(session: Session, org_id: UUID, period: str) -> Usage:
    """Counts for a period; a period with no rows yet reads as zero."""
    rows = session.execute(
        select(MessageUsage.channel, MessageUsage.count).where(
            MessageUsage.organization_id == org_id,
            MessageUsage.billing_period == period,
        )
    ).all()
    counts = {channel: count for channel, count in rows}
    return Usage(
        sms_count=counts.get(MessageChannel.SMS.value, 0),
        mms_count=counts.get(MessageChannel.MMS.value, 0),
    )


def check_quota(
    session: Session,
    org_id: UUID,
    channel: MessageChannel | str,
    now: datetime | None = None,
) -> QuotaCheck:
    channel = MessageChannel(channel)
    period = current_billing_period(now)
    limit = get_limits(session, org_id).for_channel(channel)
    used = get_usage(session, org_id, period).for_channel(channel)
    return QuotaCheck(channel=channel, billing_period=period, used=used, limit=limit)


def increment(
    session: Session,
    org_id: UUID,
    period: str,
    channel: MessageChannel | str,
) -> int:
    """
    Atomically add one send to the counter and commit; returns the new count.

    The increment is a single `count = count + 1` UPDATE. When the period row
    does not exist yet it is inserted inside a savepoint; if a concurrent
    writer inserted it first, the unique constraint fires and the UPDATE is
    retried, so no increment is lost.
    """
    channel = MessageChannel(channel)
    criteria = (
        MessageUsage.organization_id == org_id,
        MessageUsage.billing_period == period,
        MessageUsage.channel == channel.value,
    )
    bump = (
        update(MessageUsage)
        .where(*criteria)
        .values(count=MessageUsage.count + 1, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )

    result = session.execute(bump)
    if result.rowcount == 0:
        try:
            with session.begin_nested():
                session.add(
                    MessageUsage(
                        organization_id=org_id,
                        billing_period=period,
                        channel=channel.value,
                        count=1,
                    )
                )
        except IntegrityError:
            logger.info(
                "Usage row for org=%s period=%s channel=%s created concurrently; retrying increment",
                org_id,
                period,
                channel.value,
            )
            session.execute(bump)

    new_count = session.scalar(select(MessageUsage.count).where(*criteria))
    session.commit()
    return int(new_count or 0)
