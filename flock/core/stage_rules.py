"""New member follow-up stage transition table.

Forward order:
    NEW → CONTACT_NEW_MEMBER → SCHEDULED → FIRST_COMPLETED → INITIATE_SECOND
    → SECOND_SCHEDULED → SECOND_COMPLETED → INITIATE_FINAL → FINAL_SCHEDULED
    → FINAL_COMPLETED

Automatic transitions are driven by elapsed time (scheduler). Manual transitions
are staff actions (scheduling or completing a follow-up). Any pair not listed
here is rejected.
"""

from flock.db.enums import FollowUpStage

# Idle new members (no follow-up record yet)
IDLE_TRANSITIONS: dict[FollowUpStage, FollowUpStage] = {
    FollowUpStage.NEW: FollowUpStage.CONTACT_NEW_MEMBER,
}

# Elapsed time since the last completed follow-up
ELAPSED_COMPLETION_TRANSITIONS: dict[FollowUpStage, FollowUpStage] = {
    FollowUpStage.FIRST_COMPLETED: FollowUpStage.INITIATE_SECOND,
    FollowUpStage.SECOND_COMPLETED: FollowUpStage.INITIATE_FINAL,
}

# Staff schedules the next follow-up. Scheduling early (before the elapsed
# window) is allowed and cancels the countdown.
SCHEDULE_TRANSITIONS: dict[FollowUpStage, FollowUpStage] = {
    FollowUpStage.NEW: FollowUpStage.SCHEDULED,
    FollowUpStage.CONTACT_NEW_MEMBER: FollowUpStage.SCHEDULED,
    FollowUpStage.FIRST_COMPLETED: FollowUpStage.SECOND_SCHEDULED,
    FollowUpStage.INITIATE_SECOND: FollowUpStage.SECOND_SCHEDULED,
    FollowUpStage.SECOND_COMPLETED: FollowUpStage.FINAL_SCHEDULED,
    FollowUpStage.INITIATE_FINAL: FollowUpStage.FINAL_SCHEDULED,
}

# Staff completes a scheduled follow-up with outcome CONNECTED
COMPLETE_TRANSITIONS: dict[FollowUpStage, FollowUpStage] = {
    FollowUpStage.SCHEDULED: FollowUpStage.FIRST_COMPLETED,
    FollowUpStage.SECOND_SCHEDULED: FollowUpStage.SECOND_COMPLETED,
    FollowUpStage.FINAL_SCHEDULED: FollowUpStage.FINAL_COMPLETED,
}

MANUAL_TRANSITIONS: frozenset[tuple[FollowUpStage, FollowUpStage]] = frozenset(
    list(SCHEDULE_TRANSITIONS.items()) + list(COMPLETE_TRANSITIONS.items())
)

AUTO_TRANSITIONS: frozenset[tuple[FollowUpStage, FollowUpStage]] = frozenset(
    list(IDLE_TRANSITIONS.items()) + list(ELAPSED_COMPLETION_TRANSITIONS.items())
)

TERMINAL_STAGES: frozenset[FollowUpStage] = frozenset({FollowUpStage.FINAL_COMPLETED})


def is_manual_transition_allowed(current: FollowUpStage, target: FollowUpStage) -> bool:
    return (current, target) in MANUAL_TRANSITIONS


def is_ready_for_promotion(stage: FollowUpStage) -> bool:
    """A new member who finished the final follow-up can be promoted to member."""
    return stage in TERMINAL_STAGES
