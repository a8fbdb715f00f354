"""Outbound messaging enums."""

from enum import Enum


class MessageChannel(str, Enum):
    """Quota-tracked outbound channels."""

    SMS = "sms"
    MMS = "mms"


class DispatchStatus(str, Enum):
    SENT = "sent"
    QUOTA_EXCEEDED = "quota_exceeded"
    INVALID_RECIPIENT = "invalid_recipient"
    FAILED = "failed"


class AnnouncementStatus(str, Enum):
    PENDING = "PENDING"
    SENDING = "SENDING"  # Claimed by a worker
    SENT = "SENT"
    FAILED = "FAILED"


class RecipientGroup(str, Enum):
    CONVERTS = "converts"
    NEW_MEMBERS = "new_members"
    MEMBERS = "members"
