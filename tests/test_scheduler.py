"""Tests for a full follow-up scheduler tick."""

from datetime import date, timedelta

import pytest
from sqlalchemy import func, select

from flock.db.enums import CheckinOutcome, FollowUpStage, PersonKind, PersonStatus
from flock.db.models import FollowUpRecord, Person, ReminderSentLog
from flock.services import followup_rules_service as rules
from flock.services import followup_scheduler_service as scheduler


def _record(db, person, outcome, next_date=None):
    record = FollowUpRecord(
        organization_id=person.organization_id,
        person_id=person.id,
        checkin_date=date(2026, 9, 1),
        outcome=outcome.value,
        next_followup_date=next_date,
    )
    db.add(record)
    db.commit()
    return record


def _snapshot(db) -> dict:
    people = db.execute(
        select(Person.id, Person.status, Person.follow_up_stage, Person.stage_changed_at)
    ).all()
    records = db.execute(select(FollowUpRecord.id, FollowUpRecord.outcome)).all()
    logs = db.scalar(select(func.count()).select_from(ReminderSentLog))
    return {
        "people": sorted((str(p[0]), p[1], p[2], p[3]) for p in people),
        "records": sorted((str(r[0]), r[1]) for r in records),
        "logs": logs,
    }


@pytest.fixture
def mixed_state(db, make_person, now):
    today = now.date()
    state = {
        "silent_convert": make_person(PersonKind.CONVERT, age=timedelta(days=45)),
        "lapsed_convert": make_person(PersonKind.CONVERT, age=timedelta(days=45)),
        "idle_new_member": make_person(PersonKind.NEW_MEMBER, age=timedelta(days=40)),
        "first_done": make_person(
            PersonKind.NEW_MEMBER,
            age=timedelta(days=90),
            follow_up_stage=FollowUpStage.FIRST_COMPLETED.value,
            stage_changed_at=now - timedelta(days=41),
        ),
        "second_done": make_person(
            PersonKind.NEW_MEMBER,
            age=timedelta(days=120),
            follow_up_stage=FollowUpStage.SECOND_COMPLETED.value,
            stage_changed_at=now - timedelta(days=25),
        ),
        "tomorrow": make_person(PersonKind.MEMBER, age=timedelta(days=200), email="tomorrow@example.com"),
    }
    state["overdue"] = _record(
        db, state["lapsed_convert"], CheckinOutcome.SCHEDULED_VISIT, today - timedelta(days=3)
    )
    state["upcoming"] = _record(
        db, state["tomorrow"], CheckinOutcome.SCHEDULED_VISIT, today + timedelta(days=1)
    )
    return state


def test_rule_order_is_fixed():
    assert scheduler.RULE_ORDER == (
        rules.RULE_EXPIRE_OVERDUE,
        rules.RULE_NEVER_CONTACTED,
        rules.RULE_NEW_MEMBER_CONTACT,
        rules.RULE_INITIATE_SECOND,
        rules.RULE_INITIATE_FINAL,
        rules.RULE_DAY_BEFORE_REMINDER,
    )


@pytest.mark.asyncio
async def test_tick_applies_each_rule(db, mixed_state, now, email_provider):
    results = await scheduler.run_followup_checks(db, now, email_provider=email_provider)

    assert list(results) == list(scheduler.RULE_ORDER)
    assert all(stats["errors"] == [] for stats in results.values())
    for key in ("silent_convert", "lapsed_convert", "idle_new_member", "first_done", "second_done"):
        db.refresh(mixed_state[key])
    db.refresh(mixed_state["overdue"])

    assert mixed_state["overdue"].outcome == CheckinOutcome.NOT_COMPLETED.value
    assert mixed_state["silent_convert"].status == PersonStatus.NEVER_CONTACTED.value
    # Has a (now expired) follow-up, so it was contacted.
    assert mixed_state["lapsed_convert"].status == PersonStatus.NEW.value
    assert mixed_state["idle_new_member"].follow_up_stage == FollowUpStage.CONTACT_NEW_MEMBER.value
    assert mixed_state["first_done"].follow_up_stage == FollowUpStage.INITIATE_SECOND.value
    assert mixed_state["second_done"].follow_up_stage == FollowUpStage.INITIATE_FINAL.value
    assert [sent["to"] for sent in email_provider.sent] == ["tomorrow@example.com"]


@pytest.mark.asyncio
async def test_repeated_ticks_reach_the_same_state(db, mixed_state, now, email_provider):
    await scheduler.run_followup_checks(db, now, email_provider=email_provider)
    after_first = _snapshot(db)

    for _ in range(3):
        await scheduler.run_followup_checks(db, now, email_provider=email_provider)

    assert _snapshot(db) == after_first
    assert len(email_provider.sent) == 1


@pytest.mark.asyncio
async def test_person_moves_at_most_one_stage_per_tick(db, make_person, now, email_provider):
    # Long overdue at every step; still only one transition per tick.
    person = make_person(
        PersonKind.NEW_MEMBER,
        age=timedelta(days=400),
        follow_up_stage=FollowUpStage.FIRST_COMPLETED.value,
        stage_changed_at=now - timedelta(days=300),
    )

    await scheduler.run_followup_checks(db, now, email_provider=email_provider)
    db.refresh(person)
    assert person.follow_up_stage == FollowUpStage.INITIATE_SECOND.value

    await scheduler.run_followup_checks(db, now, email_provider=email_provider)
    db.refresh(person)
    # INITIATE_SECOND waits for staff; time alone never moves it.
    assert person.follow_up_stage == FollowUpStage.INITIATE_SECOND.value
    assert person.stage_changed_at == now


@pytest.mark.asyncio
async def test_overdue_visit_is_expired_not_reminded(db, make_person, now, email_provider):
    person = make_person(email="late@example.com")
    record = _record(db, person, CheckinOutcome.SCHEDULED_VISIT, now.date() - timedelta(days=1))

    results = await scheduler.run_followup_checks(db, now, email_provider=email_provider)

    db.refresh(record)
    assert record.outcome == CheckinOutcome.NOT_COMPLETED.value
    assert results[rules.RULE_EXPIRE_OVERDUE]["expired"] == 1
    assert email_provider.sent == []


@pytest.mark.asyncio
async def test_failing_rule_does_not_block_the_others(db, mixed_state, now, email_provider, monkeypatch):
    def broken_rule(session, now):
        raise RuntimeError("query timed out")

    patched = tuple(
        (name, broken_rule if name == rules.RULE_NEVER_CONTACTED else rule)
        for name, rule in scheduler.SYNC_RULES
    )
    monkeypatch.setattr(scheduler, "SYNC_RULES", patched)

    results = await scheduler.run_followup_checks(db, now, email_provider=email_provider)

    assert results[rules.RULE_NEVER_CONTACTED]["errors"][0]["error"] == "RuntimeError: query timed out"
    db.refresh(mixed_state["silent_convert"])
    db.refresh(mixed_state["idle_new_member"])
    assert mixed_state["silent_convert"].status == PersonStatus.NEW.value
    assert mixed_state["idle_new_member"].follow_up_stage == FollowUpStage.CONTACT_NEW_MEMBER.value
    assert results[rules.RULE_DAY_BEFORE_REMINDER]["sent"] == 1
