"""Pure eligibility predicates for the scheduled follow-up rules.

Each predicate takes plain values plus "now"/"today" and has no side effects.
The services select candidates in SQL, confirm them here, and then apply a
conditional update so concurrent writers cannot double-apply a transition.
"""

from datetime import date, datetime, timedelta

from flock.db.enums import CheckinOutcome, PersonKind, PersonStatus


def is_followup_overdue(outcome: str, next_followup_date: date | None, today: date) -> bool:
    """A scheduled visit whose date is strictly before today has lapsed."""
    if outcome != CheckinOutcome.SCHEDULED_VISIT.value or next_followup_date is None:
        return False
    return next_followup_date < today


def is_never_contacted(
    *,
    kind: str,
    status: str,
    created_at: datetime,
    has_followups: bool,
    now: datetime,
    days: int,
) -> bool:
    """A convert still NEW, with no follow-up at all, created more than `days` ago."""
    if kind != PersonKind.CONVERT.value or status != PersonStatus.NEW.value:
        return False
    if has_followups:
        return False
    return created_at < now - timedelta(days=days)


def is_due_for_day_before_reminder(
    *,
    next_followup_date: date | None,
    email: str | None,
    today: date,
) -> bool:
    if next_followup_date is None or not (email or "").strip():
        return False
    return next_followup_date == today + timedelta(days=1)


def reminder_idempotency_key(followup_id: object, reminder_type: str) -> str:
    """Provider-side idempotency key, stable across scheduler passes."""
    return f"followup-reminder/{followup_id}/{reminder_type}"
