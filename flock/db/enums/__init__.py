"""Enum definitions for application constants."""

from flock.db.enums.followups import (
    CheckinOutcome,
    NotificationMethod,
    ReminderType,
)
from flock.db.enums.messaging import (
    AnnouncementStatus,
    DispatchStatus,
    MessageChannel,
    RecipientGroup,
)
from flock.db.enums.people import FollowUpStage, PersonKind, PersonStatus
from flock.db.enums.tenants import Plan

__all__ = [
    "AnnouncementStatus",
    "CheckinOutcome",
    "DispatchStatus",
    "FollowUpStage",
    "MessageChannel",
    "NotificationMethod",
    "PersonKind",
    "PersonStatus",
    "Plan",
    "RecipientGroup",
    "ReminderType",
]
