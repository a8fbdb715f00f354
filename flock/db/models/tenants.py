"""SQLAlchemy ORM models."""

from __future__ import annotations

from typing import TYPE_CHECKING

import uuid
from datetime import datetime

from sqlalchemy import String, Uuid, func, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from flock.db.base import Base
from flock.db.enums import Plan
from flock.db.types import utcnow

if TYPE_CHECKING:
    from flock.db.models import Person


class Organization(Base):
    """
    A tenant (ministry/church) in the multi-tenant system.

    All people, follow-ups and quota counters belong to an organization
    and must be scoped by organization_id in all queries.
    """

    __tablename__ = "organizations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    plan: Mapped[str] = mapped_column(
        String(30),
        default=Plan.FREE.value,
        server_default=text("'free'"),
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False
    )

    # Relationships
    people: Mapped[list["Person"]] = relationship(
        back_populates="organization",
        cascade="all, delete-orphan",
    )
