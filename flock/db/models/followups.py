"""SQLAlchemy ORM models."""

from __future__ import annotations

from typing import TYPE_CHECKING

import uuid
from datetime import date, datetime, time

from sqlalchemy import (
    Date,
    ForeignKey,
    Index,
    String,
    Text,
    Time,
    UniqueConstraint,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from flock.db.base import Base
from flock.db.enums import NotificationMethod
from flock.db.types import utcnow

if TYPE_CHECKING:
    from flock.db.models import Organization, Person


class FollowUpRecord(Base):
    """
    A single contact attempt (checkin) for a person.

    A SCHEDULED_VISIT record with a future next_followup_date is the person's
    pending follow-up. The scheduler expires it to NOT_COMPLETED once the date
    has passed.
    """

    __tablename__ = "followup_records"
    __table_args__ = (
        Index("idx_followups_person", "person_id", "checkin_date"),
        Index("idx_followups_outcome_next", "outcome", "next_followup_date"),
        Index("idx_followups_next_date", "next_followup_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    person_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("people.id", ondelete="CASCADE"),
        nullable=False,
    )

    checkin_date: Mapped[date] = mapped_column(Date, nullable=False)
    outcome: Mapped[str] = mapped_column(String(30), nullable=False)
    next_followup_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    next_followup_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    video_link: Mapped[str | None] = mapped_column(String(500), nullable=True)
    notification_method: Mapped[str] = mapped_column(
        String(10),
        default=NotificationMethod.EMAIL.value,
        server_default=text("'email'"),
        nullable=False,
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Optional overrides for the day-before reminder
    custom_reminder_subject: Mapped[str | None] = mapped_column(String(255), nullable=True)
    custom_reminder_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False
    )

    # Relationships
    person: Mapped["Person"] = relationship(back_populates="followups")
    organization: Mapped["Organization"] = relationship()


class ReminderSentLog(Base):
    """
    At-most-once guard for reminders.

    A row exists only after a successful send. Never updated or deleted.
    """

    __tablename__ = "reminder_sent_log"
    __table_args__ = (
        UniqueConstraint(
            "followup_record_id",
            "reminder_type",
            name="uq_reminder_sent_log_record_type",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    followup_record_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("followup_records.id", ondelete="CASCADE"),
        nullable=False,
    )
    reminder_type: Mapped[str] = mapped_column(String(30), nullable=False)
    sent_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )
