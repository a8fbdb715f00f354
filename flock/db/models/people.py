"""SQLAlchemy ORM models."""

from __future__ import annotations

from typing import TYPE_CHECKING

import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, Index, String, Uuid, func, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from flock.db.base import Base
from flock.db.enums import FollowUpStage, PersonKind, PersonStatus
from flock.db.types import utcnow

if TYPE_CHECKING:
    from flock.db.models import FollowUpRecord, Organization


class Person(Base):
    """
    A convert, new member or member being followed up.

    All three variants share one table, discriminated by `kind`. Converts and
    members only use `status`; new members additionally carry the
    `follow_up_stage` workflow position and `stage_changed_at`, the clock for
    elapsed-time stage transitions.
    """

    __tablename__ = "people"
    __table_args__ = (
        Index("idx_people_org_kind", "organization_id", "kind"),
        Index("idx_people_kind_status", "kind", "status", "created_at"),
        Index("idx_people_kind_stage", "kind", "follow_up_stage", "stage_changed_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    kind: Mapped[str] = mapped_column(String(20), nullable=False)

    # Identity
    first_name: Mapped[str] = mapped_column(String(255), nullable=False)
    last_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)

    status: Mapped[str] = mapped_column(
        String(30),
        default=PersonStatus.NEW.value,
        server_default=text("'NEW'"),
        nullable=False,
    )

    # New member workflow (NULL for converts and members)
    follow_up_stage: Mapped[str | None] = mapped_column(String(30), nullable=True)
    stage_changed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False
    )

    # Relationships
    organization: Mapped["Organization"] = relationship(back_populates="people")
    followups: Mapped[list["FollowUpRecord"]] = relationship(
        back_populates="person",
        cascade="all, delete-orphan",
    )

    def __init__(self, **kwargs):
        kind = kwargs.get("kind")
        if isinstance(kind, PersonKind):
            kwargs["kind"] = kind.value
        if kwargs.get("kind") == PersonKind.NEW_MEMBER.value and not kwargs.get("follow_up_stage"):
            kwargs["follow_up_stage"] = FollowUpStage.NEW.value
        super().__init__(**kwargs)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_new_member(self) -> bool:
        return self.kind == PersonKind.NEW_MEMBER.value
