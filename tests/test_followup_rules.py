"""Tests for the scheduled follow-up rules."""

from datetime import date, time, timedelta

import pytest
from sqlalchemy import func, select

from flock.core.followup_rules import (
    is_due_for_day_before_reminder,
    is_followup_overdue,
    is_never_contacted,
    reminder_idempotency_key,
)
from flock.db.enums import (
    CheckinOutcome,
    FollowUpStage,
    PersonKind,
    PersonStatus,
    ReminderType,
)
from flock.db.models import FollowUpRecord, ReminderSentLog
from flock.services import followup_rules_service as rules
from flock.services import followup_service


def _record(db, person, *, outcome=CheckinOutcome.SCHEDULED_VISIT, next_date=None, **fields):
    record = FollowUpRecord(
        organization_id=person.organization_id,
        person_id=person.id,
        checkin_date=date(2026, 10, 1),
        outcome=outcome.value,
        next_followup_date=next_date,
        **fields,
    )
    db.add(record)
    db.commit()
    return record


def _log_count(db, record_id) -> int:
    return db.scalar(
        select(func.count())
        .select_from(ReminderSentLog)
        .where(ReminderSentLog.followup_record_id == record_id)
    )


# =============================================================================
# Predicates
# =============================================================================


def test_is_followup_overdue_is_strictly_before_today():
    today = date(2026, 10, 19)
    scheduled = CheckinOutcome.SCHEDULED_VISIT.value
    assert is_followup_overdue(scheduled, date(2026, 10, 18), today) is True
    assert is_followup_overdue(scheduled, today, today) is False
    assert is_followup_overdue(scheduled, None, today) is False
    assert is_followup_overdue(CheckinOutcome.CONNECTED.value, date(2026, 1, 1), today) is False


def test_is_never_contacted_requires_more_than_thirty_days(now):
    base = dict(
        kind=PersonKind.CONVERT.value,
        status=PersonStatus.NEW.value,
        has_followups=False,
        now=now,
        days=30,
    )
    assert is_never_contacted(created_at=now - timedelta(days=31), **base) is True
    assert is_never_contacted(created_at=now - timedelta(days=30), **base) is False
    assert is_never_contacted(created_at=now - timedelta(days=31), **{**base, "has_followups": True}) is False
    assert (
        is_never_contacted(created_at=now - timedelta(days=31), **{**base, "kind": PersonKind.MEMBER.value})
        is False
    )


def test_is_due_for_day_before_reminder():
    today = date(2026, 10, 19)
    assert is_due_for_day_before_reminder(next_followup_date=date(2026, 10, 20), email="a@b.co", today=today)
    assert not is_due_for_day_before_reminder(next_followup_date=date(2026, 10, 21), email="a@b.co", today=today)
    assert not is_due_for_day_before_reminder(next_followup_date=date(2026, 10, 20), email="  ", today=today)


def test_reminder_idempotency_key_is_stable():
    assert reminder_idempotency_key("abc", "DAY_BEFORE") == "followup-reminder/abc/DAY_BEFORE"


# =============================================================================
# Rule 1: expiry
# =============================================================================


def test_expire_overdue_followups_is_idempotent(db, make_person, now):
    person = make_person()
    overdue = _record(db, person, next_date=now.date() - timedelta(days=1))
    due_today = _record(db, person, next_date=now.date())
    future = _record(db, person, next_date=now.date() + timedelta(days=3))
    connected = _record(
        db, person, outcome=CheckinOutcome.CONNECTED, next_date=now.date() - timedelta(days=5)
    )

    first = rules.expire_overdue_followups(db, now)
    second = rules.expire_overdue_followups(db, now)

    assert first["expired"] == 1
    assert first["errors"] == []
    assert second["expired"] == 0
    assert second["checked"] == 0
    for record in (overdue, due_today, future, connected):
        db.refresh(record)
    assert overdue.outcome == CheckinOutcome.NOT_COMPLETED.value
    assert due_today.outcome == CheckinOutcome.SCHEDULED_VISIT.value
    assert future.outcome == CheckinOutcome.SCHEDULED_VISIT.value
    assert connected.outcome == CheckinOutcome.CONNECTED.value


def test_expired_followup_stays_expired(db, make_person, now):
    person = make_person()
    _record(db, person, next_date=now.date() - timedelta(days=2))

    rules.expire_overdue_followups(db, now)
    result = rules.expire_overdue_followups(db, now + timedelta(days=10))

    assert result["expired"] == 0


# =============================================================================
# Rule 2: never contacted
# =============================================================================


def test_never_contacted_end_to_end(db, make_person, now):
    convert = make_person(PersonKind.CONVERT, age=timedelta(days=31))
    young = make_person(PersonKind.CONVERT, age=timedelta(days=29))
    contacted = make_person(PersonKind.CONVERT, age=timedelta(days=45))
    _record(db, contacted, outcome=CheckinOutcome.NO_RESPONSE)

    stats = rules.flag_never_contacted_converts(db, now)

    # The contacted convert is looked at but its follow-up keeps it unflagged.
    assert stats["checked"] == 2
    assert stats["flagged"] == 1
    db.refresh(convert)
    db.refresh(young)
    db.refresh(contacted)
    assert convert.status == PersonStatus.NEVER_CONTACTED.value
    assert young.status == PersonStatus.NEW.value
    assert contacted.status == PersonStatus.NEW.value

    # A checkin a minute later does not revert the flag on its own.
    followup_service.record_checkin(
        db, convert, outcome=CheckinOutcome.CONNECTED, now=now + timedelta(minutes=1)
    )
    db.refresh(convert)
    assert convert.status == PersonStatus.NEVER_CONTACTED.value

    # Only an explicit staff status change does.
    followup_service.record_checkin(
        db,
        convert,
        outcome=CheckinOutcome.CONNECTED,
        new_status=PersonStatus.CONNECTED,
        now=now + timedelta(minutes=2),
    )
    db.refresh(convert)
    assert convert.status == PersonStatus.CONNECTED.value


def test_never_contacted_ignores_members_and_new_members(db, make_person, now):
    member = make_person(PersonKind.MEMBER, age=timedelta(days=90))
    new_member = make_person(PersonKind.NEW_MEMBER, age=timedelta(days=90))

    stats = rules.flag_never_contacted_converts(db, now)

    assert stats["flagged"] == 0
    db.refresh(member)
    db.refresh(new_member)
    assert member.status == PersonStatus.NEW.value
    assert new_member.status == PersonStatus.NEW.value


# =============================================================================
# Rules 3-5: stage progression
# =============================================================================


def test_advance_idle_new_members(db, make_person, now):
    idle = make_person(PersonKind.NEW_MEMBER, age=timedelta(days=14))
    fresh = make_person(PersonKind.NEW_MEMBER, age=timedelta(days=3))
    contacted = make_person(PersonKind.NEW_MEMBER, age=timedelta(days=20))
    _record(db, contacted, outcome=CheckinOutcome.NO_RESPONSE)

    stats = rules.advance_idle_new_members(db, now)

    assert stats["advanced"] == 1
    for person in (idle, fresh, contacted):
        db.refresh(person)
    assert idle.follow_up_stage == FollowUpStage.CONTACT_NEW_MEMBER.value
    assert fresh.follow_up_stage == FollowUpStage.NEW.value
    assert contacted.follow_up_stage == FollowUpStage.NEW.value


@pytest.mark.parametrize(
    "rule,stage,expected",
    [
        (rules.initiate_second_followups, FollowUpStage.FIRST_COMPLETED, FollowUpStage.INITIATE_SECOND),
        (rules.initiate_final_followups, FollowUpStage.SECOND_COMPLETED, FollowUpStage.INITIATE_FINAL),
    ],
)
def test_initiate_rounds_after_twenty_days(db, make_person, now, rule, stage, expected):
    due = make_person(
        PersonKind.NEW_MEMBER,
        age=timedelta(days=90),
        follow_up_stage=stage.value,
        stage_changed_at=now - timedelta(days=20),
    )
    early = make_person(
        PersonKind.NEW_MEMBER,
        age=timedelta(days=90),
        follow_up_stage=stage.value,
        stage_changed_at=now - timedelta(days=19),
    )

    stats = rule(db, now)
    again = rule(db, now)

    assert stats["advanced"] == 1
    assert again["advanced"] == 0
    db.refresh(due)
    db.refresh(early)
    assert due.follow_up_stage == expected.value
    assert early.follow_up_stage == stage.value


def test_stage_rule_isolates_failing_record(db, make_person, now, monkeypatch):
    bad = make_person(PersonKind.NEW_MEMBER, age=timedelta(days=30), last_name="Broken")
    good = make_person(PersonKind.NEW_MEMBER, age=timedelta(days=30), last_name="Fine")
    real_advance = rules.stage_service.advance_on_idle

    def flaky_advance(session, person, now, **kwargs):
        if person.last_name == "Broken":
            raise RuntimeError("database went away")
        return real_advance(session, person, now, **kwargs)

    monkeypatch.setattr(rules.stage_service, "advance_on_idle", flaky_advance)

    stats = rules.advance_idle_new_members(db, now)

    assert stats["advanced"] == 1
    assert len(stats["errors"]) == 1
    assert stats["errors"][0]["person_id"] == str(bad.id)
    assert stats["errors"][0]["rule"] == rules.RULE_NEW_MEMBER_CONTACT
    db.refresh(good)
    assert good.follow_up_stage == FollowUpStage.CONTACT_NEW_MEMBER.value


# =============================================================================
# Rule 6: day-before reminders
# =============================================================================


@pytest.mark.asyncio
async def test_day_before_reminder_sent_once(db, make_person, now, email_provider):
    person = make_person(first_name="Grace", last_name="Hopper", email="grace@example.com")
    record = _record(
        db,
        person,
        next_date=now.date() + timedelta(days=1),
        next_followup_time=time(14, 30),
    )

    first = await rules.send_day_before_reminders(db, now, provider=email_provider)
    second = await rules.send_day_before_reminders(db, now, provider=email_provider)

    assert first["sent"] == 1
    assert second["sent"] == 0
    assert len(email_provider.sent) == 1
    sent = email_provider.sent[0]
    assert sent["to"] == "grace@example.com"
    assert sent["subject"] == "Reminder: We're reaching out tomorrow - Grace Chapel"
    assert "Tuesday, October 20, 2026 at 2:30 PM" in sent["html"]
    assert sent["from_email"].startswith("Grace Chapel <")
    assert sent["idempotency_key"] == f"followup-reminder/{record.id}/DAY_BEFORE"
    assert _log_count(db, record.id) == 1


@pytest.mark.asyncio
async def test_day_before_reminder_uses_custom_text(db, make_person, now, email_provider):
    person = make_person()
    _record(
        db,
        person,
        next_date=now.date() + timedelta(days=1),
        custom_reminder_subject="See you tomorrow",
        custom_reminder_message="Pastor Jo will call <after lunch>.",
    )

    await rules.send_day_before_reminders(db, now, provider=email_provider)

    sent = email_provider.sent[0]
    assert sent["subject"] == "See you tomorrow"
    assert "Pastor Jo will call &lt;after lunch&gt;." in sent["html"]


@pytest.mark.asyncio
async def test_day_before_reminder_skips_people_without_email(db, make_person, now, email_provider):
    no_email = make_person(email=None)
    blank_email = make_person(email="")
    _record(db, no_email, next_date=now.date() + timedelta(days=1))
    _record(db, blank_email, next_date=now.date() + timedelta(days=1))

    stats = await rules.send_day_before_reminders(db, now, provider=email_provider)

    assert stats["checked"] == 0
    assert email_provider.sent == []


@pytest.mark.asyncio
async def test_day_before_reminder_only_for_tomorrow(db, make_person, now, email_provider):
    person = make_person()
    _record(db, person, next_date=now.date())
    _record(db, person, next_date=now.date() + timedelta(days=2))

    stats = await rules.send_day_before_reminders(db, now, provider=email_provider)

    assert stats["sent"] == 0
    assert email_provider.sent == []


@pytest.mark.asyncio
async def test_failed_send_writes_no_log_and_retries_next_pass(db, make_person, now, email_provider):
    person = make_person(email="flaky@example.com")
    record = _record(db, person, next_date=now.date() + timedelta(days=1))
    email_provider.fail_for = {"flaky@example.com"}

    failed = await rules.send_day_before_reminders(db, now, provider=email_provider)

    assert failed["failed"] == 1
    assert failed["sent"] == 0
    assert _log_count(db, record.id) == 0

    email_provider.fail_for = set()
    retried = await rules.send_day_before_reminders(db, now, provider=email_provider)

    assert retried["sent"] == 1
    assert _log_count(db, record.id) == 1


@pytest.mark.asyncio
async def test_reminder_error_does_not_abort_batch(db, make_person, now, email_provider):
    broken = make_person(email="boom@example.com")
    fine = make_person(email="fine@example.com")
    broken_record = _record(db, broken, next_date=now.date() + timedelta(days=1))
    fine_record = _record(db, fine, next_date=now.date() + timedelta(days=1))
    email_provider.raise_for = {"boom@example.com"}

    stats = await rules.send_day_before_reminders(db, now, provider=email_provider)

    assert stats["sent"] == 1
    assert len(stats["errors"]) == 1
    assert stats["errors"][0]["followup_id"] == str(broken_record.id)
    assert _log_count(db, broken_record.id) == 0
    assert _log_count(db, fine_record.id) == 1


@pytest.mark.asyncio
async def test_existing_log_row_blocks_resend(db, make_person, now, email_provider):
    person = make_person()
    record = _record(db, person, next_date=now.date() + timedelta(days=1))
    db.add(ReminderSentLog(followup_record_id=record.id, reminder_type=ReminderType.DAY_BEFORE.value))
    db.commit()

    stats = await rules.send_day_before_reminders(db, now, provider=email_provider)

    assert stats["sent"] == 0
    assert email_provider.sent == []


def test_record_reminder_sent_tolerates_duplicate(db, make_person, now):
    person = make_person()
    record = _record(db, person, next_date=now.date() + timedelta(days=1))

    assert rules.record_reminder_sent(db, record.id, ReminderType.DAY_BEFORE.value, now) is True
    assert rules.record_reminder_sent(db, record.id, ReminderType.DAY_BEFORE.value, now) is False
    db.commit()

    assert _log_count(db, record.id) == 1
