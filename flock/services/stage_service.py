"""New member stage tracker.

Pure `next_stage_*` functions decide whether a transition applies; the
persisting counterparts apply it with a conditional UPDATE (current stage in
the WHERE clause), so a transition fires at most once even when the scheduler
and a staff action race on the same person. "Not eligible" is a normal
outcome and is reported as None, never as an exception.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import exists, select, update
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import set_committed_value

from flock.core.config import settings
from flock.core.stage_rules import (
    ELAPSED_COMPLETION_TRANSITIONS,
    IDLE_TRANSITIONS,
    is_manual_transition_allowed,
    is_ready_for_promotion,
)
from flock.db.enums import FollowUpStage, PersonKind
from flock.db.models import FollowUpRecord, Person
from flock.db.types import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StageTransition:
    person_id: UUID
    from_stage: FollowUpStage
    to_stage: FollowUpStage
    changed_at: datetime
    automatic: bool

    @property
    def ready_for_promotion(self) -> bool:
        return is_ready_for_promotion(self.to_stage)


def coerce_stage(raw: str | FollowUpStage) -> FollowUpStage:
    """Parse a stage value; unknown stages raise ValueError."""
    if isinstance(raw, FollowUpStage):
        return raw
    return FollowUpStage(raw)


# =============================================================================
# Pure decisions
# =============================================================================


def next_stage_on_idle(
    stage: FollowUpStage,
    *,
    created_at: datetime,
    has_followups: bool,
    now: datetime,
    idle_days: int | None = None,
) -> FollowUpStage | None:
    """NEW for `idle_days` or more without any follow-up → CONTACT_NEW_MEMBER."""
    target = IDLE_TRANSITIONS.get(stage)
    if target is None or has_followups:
        return None
    days = idle_days if idle_days is not None else settings.CONTACT_REMINDER_DAYS
    if created_at > now - timedelta(days=days):
        return None
    return target


def next_stage_on_elapsed_completion(
    stage: FollowUpStage,
    *,
    stage_changed_at: datetime,
    now: datetime,
    elapsed_days: int | None = None,
) -> FollowUpStage | None:
    """FIRST/SECOND_COMPLETED for `elapsed_days` or more → INITIATE_SECOND/FINAL."""
    target = ELAPSED_COMPLETION_TRANSITIONS.get(stage)
    if target is None:
        return None
    days = elapsed_days if elapsed_days is not None else settings.FOLLOWUP_PROGRESSION_DAYS
    if stage_changed_at > now - timedelta(days=days):
        return None
    return target


def next_stage_on_manual(stage: FollowUpStage, target: FollowUpStage) -> FollowUpStage | None:
    if not is_manual_transition_allowed(stage, target):
        return None
    return target


# =============================================================================
# Persisting operations
# =============================================================================


def _has_followups_clause(person_id: UUID):
    return exists().where(FollowUpRecord.person_id == person_id)


def _current_stage(person: Person) -> FollowUpStage | None:
    if person.kind != PersonKind.NEW_MEMBER.value or not person.follow_up_stage:
        return None
    return coerce_stage(person.follow_up_stage)


def _apply_transition(
    session: Session,
    person: Person,
    from_stage: FollowUpStage,
    to_stage: FollowUpStage,
    now: datetime,
    *,
    automatic: bool,
    require_no_followups: bool = False,
) -> StageTransition | None:
    criteria = [
        Person.id == person.id,
        Person.kind == PersonKind.NEW_MEMBER.value,
        Person.follow_up_stage == from_stage.value,
    ]
    if require_no_followups:
        criteria.append(~_has_followups_clause(person.id))

    result = session.execute(
        update(Person)
        .where(*criteria)
        .values(follow_up_stage=to_stage.value, stage_changed_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.info(
            "Stage transition %s → %s skipped for person %s (state changed concurrently)",
            from_stage.value,
            to_stage.value,
            person.id,
        )
        return None

    set_committed_value(person, "follow_up_stage", to_stage.value)
    set_committed_value(person, "stage_changed_at", now)
    set_committed_value(person, "updated_at", now)

    return StageTransition(
        person_id=person.id,
        from_stage=from_stage,
        to_stage=to_stage,
        changed_at=now,
        automatic=automatic,
    )


def person_has_followups(session: Session, person_id: UUID) -> bool:
    return bool(session.scalar(select(_has_followups_clause(person_id))))


def advance_on_idle(
    session: Session,
    person: Person,
    now: datetime,
    *,
    has_followups: bool | None = None,
) -> StageTransition | None:
    """Move an idle NEW member to CONTACT_NEW_MEMBER. Caller commits."""
    stage = _current_stage(person)
    if stage is None:
        return None
    if has_followups is None:
        has_followups = person_has_followups(session, person.id)

    target = next_stage_on_idle(
        stage, created_at=person.created_at, has_followups=has_followups, now=now
    )
    if target is None:
        return None
    return _apply_transition(
        session, person, stage, target, now, automatic=True, require_no_followups=True
    )


def advance_on_elapsed_completion(
    session: Session,
    person: Person,
    now: datetime,
) -> StageTransition | None:
    """Open the next follow-up round once the completion window has elapsed. Caller commits."""
    stage = _current_stage(person)
    if stage is None:
        return None

    # Rows without a stage clock (e.g. imported mid-workflow) count from creation.
    changed_at = person.stage_changed_at or person.created_at
    target = next_stage_on_elapsed_completion(stage, stage_changed_at=changed_at, now=now)
    if target is None:
        return None
    return _apply_transition(session, person, stage, target, now, automatic=True)


def apply_manual_transition(
    session: Session,
    person: Person,
    target: FollowUpStage | str,
    now: datetime | None = None,
) -> StageTransition | None:
    """
    Apply a staff-driven transition (schedule/complete).

    Resets the stage clock, so any pending elapsed-time countdown restarts.
    Pairs outside the transition table are rejected (None). Caller commits.
    """
    target_stage = coerce_stage(target)
    stage = _current_stage(person)
    if stage is None:
        logger.warning("Manual stage transition requested for non new member %s", person.id)
        return None

    if next_stage_on_manual(stage, target_stage) is None:
        logger.warning(
            "Rejected manual stage transition %s → %s for person %s",
            stage.value,
            target_stage.value,
            person.id,
        )
        return None

    return _apply_transition(
        session, person, stage, target_stage, now or utcnow(), automatic=False
    )
