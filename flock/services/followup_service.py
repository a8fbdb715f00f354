"""Staff-initiated follow-up operations (scheduling, checkins, follow-up texts)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time

from sqlalchemy import String, cast, func, update
from sqlalchemy.orm import Session

from flock.core.stage_rules import COMPLETE_TRANSITIONS, SCHEDULE_TRANSITIONS
from flock.db.enums import (
    CheckinOutcome,
    MessageChannel,
    NotificationMethod,
    PersonStatus,
)
from flock.db.models import FollowUpRecord, Person
from flock.db.types import utcnow
from flock.services import stage_service
from flock.services.messaging_service import DispatchResult, dispatch_message
from flock.services.sms_service import SmsProvider, build_followup_sms_message

logger = logging.getLogger(__name__)

# Suggested person status after a checkin with the given outcome
OUTCOME_TO_STATUS: dict[CheckinOutcome, PersonStatus] = {
    CheckinOutcome.CONNECTED: PersonStatus.CONNECTED,
    CheckinOutcome.NO_RESPONSE: PersonStatus.NOT_COMPLETED,
    CheckinOutcome.NEEDS_FOLLOWUP: PersonStatus.SCHEDULED,
    CheckinOutcome.NEEDS_PRAYER: PersonStatus.NOT_COMPLETED,
    CheckinOutcome.SCHEDULED_VISIT: PersonStatus.SCHEDULED,
    CheckinOutcome.REFERRED: PersonStatus.NOT_COMPLETED,
    CheckinOutcome.NOT_COMPLETED: PersonStatus.NOT_COMPLETED,
    CheckinOutcome.OTHER: PersonStatus.NOT_COMPLETED,
}

DISPLAY_NEW = "NEW"
DISPLAY_SCHEDULED = "SCHEDULED"
DISPLAY_COMPLETED = "COMPLETED"
DISPLAY_NOT_CONNECTED = "NOT_CONNECTED"

_DISPLAY_BUCKETS: dict[str, str] = {
    PersonStatus.NEW.value: DISPLAY_NEW,
    PersonStatus.SCHEDULED.value: DISPLAY_SCHEDULED,
    PersonStatus.IN_PROGRESS.value: DISPLAY_SCHEDULED,
    PersonStatus.CONNECTED.value: DISPLAY_COMPLETED,
    PersonStatus.ACTIVE.value: DISPLAY_COMPLETED,
}


@dataclass
class FollowUpResult:
    record: FollowUpRecord
    transition: stage_service.StageTransition | None = None

    @property
    def ready_for_promotion(self) -> bool:
        return bool(self.transition and self.transition.ready_for_promotion)


def status_for_outcome(outcome: CheckinOutcome | str) -> PersonStatus:
    return OUTCOME_TO_STATUS[CheckinOutcome(outcome)]


def display_status(status: str | None) -> str:
    """Collapse a stored status into the dashboard bucket."""
    return _DISPLAY_BUCKETS.get(status or "", DISPLAY_NOT_CONNECTED)


def close_pending_visits(session: Session, person: Person, *, rescheduled_to: date, now: datetime) -> int:
    """
    Close the person's scheduled visits that have not happened yet.

    A person has at most one pending visit, so a new one supersedes the rest.
    Closed visits become OTHER and lose their date, which moves into the notes,
    so neither reminders nor expiry pick them up again. Visits already past
    their date are left for the overdue rule. Does not commit.
    """
    result = session.execute(
        update(FollowUpRecord)
        .where(
            FollowUpRecord.person_id == person.id,
            FollowUpRecord.outcome == CheckinOutcome.SCHEDULED_VISIT.value,
            FollowUpRecord.next_followup_date >= now.date(),
        )
        .values(
            outcome=CheckinOutcome.OTHER.value,
            notes=func.coalesce(FollowUpRecord.notes + "\n", "")
            + "Rescheduled from "
            + cast(FollowUpRecord.next_followup_date, String)
            + f" to {rescheduled_to.isoformat()}",
            next_followup_date=None,
            next_followup_time=None,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount:
        logger.info("Closed %s superseded visit(s) for person %s", result.rowcount, person.id)
    return result.rowcount


def _take_scheduling_step(
    session: Session, person: Person, now: datetime
) -> stage_service.StageTransition | None:
    stage = stage_service.coerce_stage(person.follow_up_stage)
    target = SCHEDULE_TRANSITIONS.get(stage)
    if target is None:
        logger.info("Follow-up rescheduled for person %s in stage %s", person.id, stage.value)
        return None
    return stage_service.apply_manual_transition(session, person, target, now)


def schedule_followup(
    session: Session,
    person: Person,
    *,
    followup_date: date,
    followup_time: time | None = None,
    notification_method: NotificationMethod | str = NotificationMethod.EMAIL,
    video_link: str | None = None,
    notes: str | None = None,
    custom_reminder_subject: str | None = None,
    custom_reminder_message: str | None = None,
    now: datetime | None = None,
) -> FollowUpResult:
    """
    Schedule the next visit for a person.

    Creates a SCHEDULED_VISIT record and closes any other pending visit. New
    members take the scheduling step of their workflow (which restarts the
    stage clock); converts and members are marked SCHEDULED.
    """
    now = now or utcnow()
    method = NotificationMethod(notification_method)

    close_pending_visits(session, person, rescheduled_to=followup_date, now=now)
    record = FollowUpRecord(
        organization_id=person.organization_id,
        person_id=person.id,
        checkin_date=now.date(),
        outcome=CheckinOutcome.SCHEDULED_VISIT.value,
        next_followup_date=followup_date,
        next_followup_time=followup_time,
        video_link=video_link,
        notification_method=method.value,
        notes=notes,
        custom_reminder_subject=custom_reminder_subject,
        custom_reminder_message=custom_reminder_message,
    )
    session.add(record)

    transition = None
    if person.is_new_member:
        transition = _take_scheduling_step(session, person, now)
    else:
        person.status = PersonStatus.SCHEDULED.value

    session.commit()
    session.refresh(record)
    return FollowUpResult(record=record, transition=transition)


def record_checkin(
    session: Session,
    person: Person,
    *,
    outcome: CheckinOutcome | str,
    checkin_date: date | None = None,
    next_followup_date: date | None = None,
    next_followup_time: time | None = None,
    video_link: str | None = None,
    notification_method: NotificationMethod | str = NotificationMethod.EMAIL,
    notes: str | None = None,
    new_status: PersonStatus | str | None = None,
    now: datetime | None = None,
) -> FollowUpResult:
    """
    Record a contact attempt.

    A CONNECTED outcome completes the new member's scheduled round. A
    SCHEDULED_VISIT outcome schedules the next visit the same way
    `schedule_followup` does. The person status only changes when `new_status`
    is passed; automatic flags such as NEVER_CONTACTED are never reverted
    implicitly.
    """
    now = now or utcnow()
    outcome = CheckinOutcome(outcome)
    method = NotificationMethod(notification_method)
    scheduling = outcome == CheckinOutcome.SCHEDULED_VISIT
    if scheduling and next_followup_date is None:
        raise ValueError("A scheduled visit needs a next follow-up date")

    if scheduling:
        close_pending_visits(session, person, rescheduled_to=next_followup_date, now=now)
    record = FollowUpRecord(
        organization_id=person.organization_id,
        person_id=person.id,
        checkin_date=checkin_date or now.date(),
        outcome=outcome.value,
        next_followup_date=next_followup_date,
        next_followup_time=next_followup_time,
        video_link=video_link,
        notification_method=method.value,
        notes=notes,
    )
    session.add(record)

    transition = None
    if person.is_new_member and scheduling:
        transition = _take_scheduling_step(session, person, now)
    elif person.is_new_member and outcome == CheckinOutcome.CONNECTED:
        stage = stage_service.coerce_stage(person.follow_up_stage)
        target = COMPLETE_TRANSITIONS.get(stage)
        if target is not None:
            transition = stage_service.apply_manual_transition(session, person, target, now)

    if new_status is not None:
        person.status = PersonStatus(new_status).value

    session.commit()
    session.refresh(record)
    if transition and transition.ready_for_promotion:
        logger.info("Person %s finished the final follow-up and is ready for promotion", person.id)
    return FollowUpResult(record=record, transition=transition)


async def send_followup_sms(
    session: Session,
    record: FollowUpRecord,
    *,
    provider: SmsProvider | None = None,
    now: datetime | None = None,
) -> DispatchResult:
    """
    Text the person about a scheduled follow-up, using the record's channel.

    The dispatcher result (including QUOTA_EXCEEDED) goes back to the staff
    caller untouched.
    """
    if record.notification_method not in (NotificationMethod.SMS.value, NotificationMethod.MMS.value):
        raise ValueError(f"Follow-up {record.id} is not set up for text messages")
    if record.next_followup_date is None:
        raise ValueError(f"Follow-up {record.id} has no follow-up date")

    person = record.person
    body = build_followup_sms_message(
        recipient_name=person.first_name,
        church_name=record.organization.name,
        followup_date=record.next_followup_date,
        followup_time=record.next_followup_time,
        video_link=record.video_link,
    )
    return await dispatch_message(
        session,
        org_id=record.organization_id,
        channel=MessageChannel(record.notification_method),
        to=person.phone or "",
        body=body,
        provider=provider,
        now=now,
    )
