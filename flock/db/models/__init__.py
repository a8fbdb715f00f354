"""SQLAlchemy ORM models."""

from flock.db.models.followups import FollowUpRecord, ReminderSentLog
from flock.db.models.messaging import MessageUsage, ScheduledAnnouncement
from flock.db.models.people import Person
from flock.db.models.tenants import Organization

__all__ = [
    "FollowUpRecord",
    "MessageUsage",
    "Organization",
    "Person",
    "ReminderSentLog",
    "ScheduledAnnouncement",
]
