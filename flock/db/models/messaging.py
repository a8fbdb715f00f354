"""SQLAlchemy ORM models."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from flock.db.base import Base
from flock.db.enums import AnnouncementStatus, NotificationMethod
from flock.db.types import utcnow


class MessageUsage(Base):
    """
    Per-tenant SMS/MMS send counter for one billing period ("YYYY-MM").

    Append-only: count only ever increases. A new month starts a new row, so
    there is no reset job.
    """

    __tablename__ = "message_usage"
    __table_args__ = (
        UniqueConstraint(
            "organization_id",
            "billing_period",
            "channel",
            name="uq_message_usage_org_period_channel",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    billing_period: Mapped[str] = mapped_column(String(7), nullable=False)
    channel: Mapped[str] = mapped_column(String(10), nullable=False)
    count: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0"), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False
    )


class ScheduledAnnouncement(Base):
    """An announcement queued by staff for delivery at scheduled_at."""

    __tablename__ = "scheduled_announcements"
    __table_args__ = (
        Index("idx_announcements_status_due", "status", "scheduled_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    subject: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    recipient_groups: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    notification_method: Mapped[str] = mapped_column(
        String(10),
        default=NotificationMethod.EMAIL.value,
        server_default=text("'email'"),
        nullable=False,
    )
    sms_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    mms_media_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    image_url: Mapped[str | None] = mapped_column(String(500), nullable=True)

    scheduled_at: Mapped[datetime] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        default=AnnouncementStatus.PENDING.value,
        server_default=text("'PENDING'"),
        nullable=False,
    )
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Set when a worker moves the row to SENDING
    claimed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )
