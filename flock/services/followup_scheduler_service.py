"""One scheduler tick: run every follow-up rule in a fixed order.

Order matters for records that are eligible for more than one rule in the
same tick; expiry runs first so a lapsed visit is never reminded afterwards,
and each stage rule only matches its own source stage, so a person moves at
most one step per tick.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.orm import Session

from flock.core.monitoring import report_exception
from flock.core.structured_logging import build_log_context
from flock.db.types import utcnow
from flock.services import followup_rules_service as rules
from flock.services.email_service import EmailProvider

logger = logging.getLogger(__name__)

SYNC_RULES = (
    (rules.RULE_EXPIRE_OVERDUE, rules.expire_overdue_followups),
    (rules.RULE_NEVER_CONTACTED, rules.flag_never_contacted_converts),
    (rules.RULE_NEW_MEMBER_CONTACT, rules.advance_idle_new_members),
    (rules.RULE_INITIATE_SECOND, rules.initiate_second_followups),
    (rules.RULE_INITIATE_FINAL, rules.initiate_final_followups),
)

RULE_ORDER = tuple(name for name, _ in SYNC_RULES) + (rules.RULE_DAY_BEFORE_REMINDER,)


def _rule_failed(session: Session, rule: str, exc: Exception) -> dict:
    session.rollback()
    context = build_log_context(rule=rule)
    logger.exception("Follow-up rule %s aborted", rule, extra=context)
    report_exception(context)
    return {"errors": [{"rule": rule, "error": f"{type(exc).__name__}: {exc}"}]}


async def run_followup_checks(
    session: Session,
    now: datetime | None = None,
    email_provider: EmailProvider | None = None,
) -> dict:
    """
    Run all follow-up rules once.

    Each rule is isolated: if one aborts (e.g. its candidate query fails),
    the remaining rules still run. Returns {rule_name: stats}.
    """
    now = now or utcnow()
    results: dict[str, dict] = {}

    for name, rule in SYNC_RULES:
        try:
            results[name] = rule(session, now)
        except Exception as exc:
            results[name] = _rule_failed(session, name, exc)

    try:
        results[rules.RULE_DAY_BEFORE_REMINDER] = await rules.send_day_before_reminders(
            session, now, provider=email_provider
        )
    except Exception as exc:
        results[rules.RULE_DAY_BEFORE_REMINDER] = _rule_failed(
            session, rules.RULE_DAY_BEFORE_REMINDER, exc
        )

    error_count = sum(len(stats.get("errors", [])) for stats in results.values())
    logger.info("Follow-up checks finished at %s (%s errors)", now.isoformat(), error_count)
    return results
