"""Person-related enums."""

from enum import Enum


class PersonKind(str, Enum):
    """Which follow-up track a person is on."""

    CONVERT = "convert"
    NEW_MEMBER = "new_member"
    MEMBER = "member"


class PersonStatus(str, Enum):
    """
    Stored person status.

    Display buckets (see followup_service.display_status):
        NEW → NEW
        SCHEDULED, IN_PROGRESS → SCHEDULED
        CONNECTED, ACTIVE → COMPLETED
        everything else → NOT_CONNECTED
    """

    NEW = "NEW"
    SCHEDULED = "SCHEDULED"
    IN_PROGRESS = "IN_PROGRESS"
    CONNECTED = "CONNECTED"
    ACTIVE = "ACTIVE"
    NOT_COMPLETED = "NOT_COMPLETED"
    NO_RESPONSE = "NO_RESPONSE"
    NEEDS_PRAYER = "NEEDS_PRAYER"
    REFERRED = "REFERRED"
    NEVER_CONTACTED = "NEVER_CONTACTED"
    INACTIVE = "INACTIVE"


class FollowUpStage(str, Enum):
    """New member follow-up workflow stage (see core.stage_rules)."""

    NEW = "NEW"
    CONTACT_NEW_MEMBER = "CONTACT_NEW_MEMBER"
    SCHEDULED = "SCHEDULED"
    FIRST_COMPLETED = "FIRST_COMPLETED"
    INITIATE_SECOND = "INITIATE_SECOND"
    SECOND_SCHEDULED = "SECOND_SCHEDULED"
    SECOND_COMPLETED = "SECOND_COMPLETED"
    INITIATE_FINAL = "INITIATE_FINAL"
    FINAL_SCHEDULED = "FINAL_SCHEDULED"
    FINAL_COMPLETED = "FINAL_COMPLETED"
