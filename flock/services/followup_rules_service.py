"""Scheduled follow-up rules.

Each rule selects candidates in SQL, confirms them with the pure predicates in
flock.core.followup_rules / stage_service, and applies a conditional UPDATE
per record. Every record commits on its own; a failing record is rolled back,
logged and reported, and the rest of the batch continues.

Every rule returns a stats dict with an `errors` list.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from uuid import UUID

from sqlalchemy import and_, exists, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from flock.core.config import settings
from flock.core.followup_rules import (
    is_due_for_day_before_reminder,
    is_followup_overdue,
    is_never_contacted,
    reminder_idempotency_key,
)
from flock.core.monitoring import report_exception
from flock.core.structured_logging import build_log_context, mask_email
from flock.db.enums import (
    CheckinOutcome,
    FollowUpStage,
    PersonKind,
    PersonStatus,
    ReminderType,
)
from flock.db.models import FollowUpRecord, Organization, Person, ReminderSentLog
from flock.services import stage_service
from flock.services.email_service import (
    EmailProvider,
    build_reminder_email,
    format_from_with_ministry,
    get_email_provider,
)

logger = logging.getLogger(__name__)

RULE_EXPIRE_OVERDUE = "expire_overdue_followups"
RULE_NEVER_CONTACTED = "flag_never_contacted_converts"
RULE_NEW_MEMBER_CONTACT = "advance_idle_new_members"
RULE_INITIATE_SECOND = "initiate_second_followups"
RULE_INITIATE_FINAL = "initiate_final_followups"
RULE_DAY_BEFORE_REMINDER = "send_day_before_reminders"


def today_for(now: datetime) -> date:
    """Calendar day used by the date-based rules (UTC)."""
    return now.astimezone(timezone.utc).date()


def _record_failure(
    session: Session,
    errors: list[dict],
    *,
    rule: str,
    exc: Exception,
    org_id: UUID | None = None,
    person_id: UUID | None = None,
    followup_id: UUID | None = None,
) -> None:
    session.rollback()
    context = build_log_context(
        org_id=org_id, person_id=person_id, followup_id=followup_id, rule=rule
    )
    logger.exception("Follow-up rule failed for record", extra=context)
    report_exception(context)
    errors.append(
        {
            **context,
            "error": f"{type(exc).__name__}: {exc}",
        }
    )


# =============================================================================
# Rule 1: expire overdue scheduled visits
# =============================================================================


def expire_overdue_followups(session: Session, now: datetime) -> dict:
    """SCHEDULED_VISIT records whose date is before today become NOT_COMPLETED."""
    today = today_for(now)
    candidates = session.execute(
        select(
            FollowUpRecord.id,
            FollowUpRecord.organization_id,
            FollowUpRecord.outcome,
            FollowUpRecord.next_followup_date,
        ).where(
            FollowUpRecord.outcome == CheckinOutcome.SCHEDULED_VISIT.value,
            FollowUpRecord.next_followup_date < today,
        )
    ).all()

    expired = 0
    errors: list[dict] = []
    for record_id, org_id, outcome, next_date in candidates:
        if not is_followup_overdue(outcome, next_date, today):
            continue
        try:
            result = session.execute(
                update(FollowUpRecord)
                .where(
                    FollowUpRecord.id == record_id,
                    FollowUpRecord.outcome == CheckinOutcome.SCHEDULED_VISIT.value,
                    FollowUpRecord.next_followup_date < today,
                )
                .values(outcome=CheckinOutcome.NOT_COMPLETED.value, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            session.commit()
            if result.rowcount == 1:
                expired += 1
        except Exception as exc:
            _record_failure(
                session,
                errors,
                rule=RULE_EXPIRE_OVERDUE,
                exc=exc,
                org_id=org_id,
                followup_id=record_id,
            )

    if expired:
        logger.info("Expired %s overdue scheduled follow-ups", expired)
    return {"checked": len(candidates), "expired": expired, "errors": errors}


# =============================================================================
# Rule 2: never-contacted converts
# =============================================================================


def flag_never_contacted_converts(
    session: Session,
    now: datetime,
    days: int | None = None,
) -> dict:
    """Converts still NEW with no follow-up after `days` become NEVER_CONTACTED."""
    days = days if days is not None else settings.NEVER_CONTACTED_DAYS
    cutoff = now - timedelta(days=days)

    def _has_followups():
        return exists().where(FollowUpRecord.person_id == Person.id)

    criteria = (
        Person.kind == PersonKind.CONVERT.value,
        Person.status == PersonStatus.NEW.value,
        Person.created_at < cutoff,
    )
    candidates = session.execute(
        select(
            Person.id,
            Person.organization_id,
            Person.kind,
            Person.status,
            Person.created_at,
            _has_followups().label("has_followups"),
        ).where(*criteria)
    ).all()

    flagged = 0
    errors: list[dict] = []
    for person_id, org_id, kind, status, created_at, has_followups in candidates:
        if not is_never_contacted(
            kind=kind,
            status=status,
            created_at=created_at,
            has_followups=bool(has_followups),
            now=now,
            days=days,
        ):
            continue
        try:
            result = session.execute(
                update(Person)
                .where(Person.id == person_id, *criteria, ~_has_followups())
                .values(status=PersonStatus.NEVER_CONTACTED.value, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            session.commit()
            if result.rowcount == 1:
                flagged += 1
        except Exception as exc:
            _record_failure(
                session,
                errors,
                rule=RULE_NEVER_CONTACTED,
                exc=exc,
                org_id=org_id,
                person_id=person_id,
            )

    if flagged:
        logger.info("Marked %s converts as NEVER_CONTACTED (%s+ days with no follow-up)", flagged, days)
    return {"checked": len(candidates), "flagged": flagged, "errors": errors}


# =============================================================================
# Rules 3-5: new member stage progression
# =============================================================================


def advance_idle_new_members(session: Session, now: datetime) -> dict:
    """NEW members with no follow-up for CONTACT_REMINDER_DAYS → CONTACT_NEW_MEMBER."""
    cutoff = now - timedelta(days=settings.CONTACT_REMINDER_DAYS)
    people = session.scalars(
        select(Person).where(
            Person.kind == PersonKind.NEW_MEMBER.value,
            Person.follow_up_stage == FollowUpStage.NEW.value,
            Person.created_at <= cutoff,
            ~exists().where(FollowUpRecord.person_id == Person.id),
        )
    ).all()
    return _advance_people(
        session,
        people,
        rule=RULE_NEW_MEMBER_CONTACT,
        advance=lambda person: stage_service.advance_on_idle(
            session, person, now, has_followups=False
        ),
    )


def _completed_before(stage: FollowUpStage, cutoff: datetime):
    return and_(
        Person.kind == PersonKind.NEW_MEMBER.value,
        Person.follow_up_stage == stage.value,
        or_(
            Person.stage_changed_at <= cutoff,
            and_(Person.stage_changed_at.is_(None), Person.created_at <= cutoff),
        ),
    )


def initiate_second_followups(session: Session, now: datetime) -> dict:
    """FIRST_COMPLETED for FOLLOWUP_PROGRESSION_DAYS → INITIATE_SECOND."""
    return _initiate_round(session, now, FollowUpStage.FIRST_COMPLETED, RULE_INITIATE_SECOND)


def initiate_final_followups(session: Session, now: datetime) -> dict:
    """SECOND_COMPLETED for FOLLOWUP_PROGRESSION_DAYS → INITIATE_FINAL."""
    return _initiate_round(session, now, FollowUpStage.SECOND_COMPLETED, RULE_INITIATE_FINAL)


def _initiate_round(session: Session, now: datetime, stage: FollowUpStage, rule: str) -> dict:
    cutoff = now - timedelta(days=settings.FOLLOWUP_PROGRESSION_DAYS)
    people = session.scalars(select(Person).where(_completed_before(stage, cutoff))).all()
    return _advance_people(
        session,
        people,
        rule=rule,
        advance=lambda person: stage_service.advance_on_elapsed_completion(session, person, now),
    )


def _advance_people(session: Session, people, *, rule: str, advance) -> dict:
    advanced = 0
    errors: list[dict] = []
    for person in people:
        person_id = person.id
        org_id = person.organization_id
        try:
            transition = advance(person)
            session.commit()
            if transition is not None:
                advanced += 1
                logger.info(
                    "Person %s moved %s → %s",
                    person_id,
                    transition.from_stage.value,
                    transition.to_stage.value,
                )
        except Exception as exc:
            _record_failure(
                session, errors, rule=rule, exc=exc, org_id=org_id, person_id=person_id
            )

    return {"checked": len(people), "advanced": advanced, "errors": errors}


# =============================================================================
# Rule 6: day-before reminders
# =============================================================================


def reminder_already_sent(session: Session, followup_id: UUID, reminder_type: str) -> bool:
    return bool(
        session.scalar(
            select(
                exists().where(
                    ReminderSentLog.followup_record_id == followup_id,
                    ReminderSentLog.reminder_type == reminder_type,
                )
            )
        )
    )


def record_reminder_sent(
    session: Session,
    followup_id: UUID,
    reminder_type: str,
    now: datetime,
) -> bool:
    """
    Insert the log row for a delivered reminder. Caller commits.

    Returns False when a concurrent pass already recorded it.
    """
    try:
        with session.begin_nested():
            session.add(
                ReminderSentLog(
                    followup_record_id=followup_id,
                    reminder_type=reminder_type,
                    sent_at=now,
                )
            )
    except IntegrityError:
        logger.info("Reminder %s for follow-up %s already recorded", reminder_type, followup_id)
        return False
    return True


async def send_day_before_reminders(
    session: Session,
    now: datetime,
    provider: EmailProvider | None = None,
) -> dict:
    """
    Email everyone whose follow-up is tomorrow, at most once per record.

    The log row is written only after the provider confirms the send; a
    failed send leaves no trace, so the next pass retries it.
    """
    today = today_for(now)
    tomorrow = today + timedelta(days=1)
    reminder_type = ReminderType.DAY_BEFORE.value
    provider = provider or get_email_provider()

    rows = session.execute(
        select(FollowUpRecord, Person, Organization.name)
        .join(Person, FollowUpRecord.person_id == Person.id)
        .join(Organization, FollowUpRecord.organization_id == Organization.id)
        .where(
            FollowUpRecord.next_followup_date == tomorrow,
            Person.email.is_not(None),
            Person.email != "",
            ~exists().where(
                ReminderSentLog.followup_record_id == FollowUpRecord.id,
                ReminderSentLog.reminder_type == reminder_type,
            ),
        )
    ).all()

    sent = 0
    failed = 0
    skipped = 0
    errors: list[dict] = []
    for record, person, church_name in rows:
        record_id = record.id
        org_id = record.organization_id
        person_id = person.id
        try:
            if not is_due_for_day_before_reminder(
                next_followup_date=record.next_followup_date,
                email=person.email,
                today=today,
            ) or reminder_already_sent(session, record_id, reminder_type):
                skipped += 1
                continue

            subject, html = build_reminder_email(
                recipient_name=person.full_name,
                church_name=church_name,
                followup_date=record.next_followup_date,
                followup_time=record.next_followup_time,
                contact_url=settings.contact_url,
                custom_subject=record.custom_reminder_subject,
                custom_message=record.custom_reminder_message,
            )
            result = await provider.send(
                to=person.email,
                subject=subject,
                html=html,
                from_email=format_from_with_ministry(church_name, settings.EMAIL_FROM),
                idempotency_key=reminder_idempotency_key(record_id, reminder_type),
            )
            if not result.get("success"):
                failed += 1
                logger.warning(
                    "Reminder email for follow-up %s to %s not sent: %s",
                    record_id,
                    mask_email(person.email),
                    result.get("error"),
                )
                continue

            record_reminder_sent(session, record_id, reminder_type, now)
            session.commit()
            sent += 1
            logger.info("Reminder email sent for follow-up %s", record_id)
        except Exception as exc:
            _record_failure(
                session,
                errors,
                rule=RULE_DAY_BEFORE_REMINDER,
                exc=exc,
                org_id=org_id,
                person_id=person_id,
                followup_id=record_id,
            )

    return {
        "checked": len(rows),
        "sent": sent,
        "failed": failed,
        "skipped": skipped,
        "errors": errors,
    }
