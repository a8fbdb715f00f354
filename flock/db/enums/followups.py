"""Follow-up record enums."""

from enum import Enum


class CheckinOutcome(str, Enum):
    """Result recorded for a single contact attempt."""

    CONNECTED = "CONNECTED"
    NO_RESPONSE = "NO_RESPONSE"
    NEEDS_FOLLOWUP = "NEEDS_FOLLOWUP"
    NEEDS_PRAYER = "NEEDS_PRAYER"
    SCHEDULED_VISIT = "SCHEDULED_VISIT"  # Pending until the date passes
    REFERRED = "REFERRED"
    NOT_COMPLETED = "NOT_COMPLETED"  # Set by the scheduler when a visit lapses
    OTHER = "OTHER"


class NotificationMethod(str, Enum):
    EMAIL = "email"
    SMS = "sms"
    MMS = "mms"


class ReminderType(str, Enum):
    """Reminder kinds recorded in reminder_sent_log."""

    DAY_BEFORE = "DAY_BEFORE"
