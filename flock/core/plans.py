"""Static subscription plan limits for outbound messaging."""

import logging
from dataclasses import dataclass

from flock.db.enums import MessageChannel, Plan

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlanLimits:
    sms: int
    mms: int

    def for_channel(self, channel: MessageChannel) -> int:
        return self.sms if channel == MessageChannel.SMS else self.mms


SMS_PLAN_LIMITS: dict[str, PlanLimits] = {
    Plan.FREE.value: PlanLimits(sms=0, mms=0),
    Plan.FOUNDATIONS.value: PlanLimits(sms=500, mms=250),
    Plan.FORMATION.value: PlanLimits(sms=2000, mms=500),
    Plan.STEWARDSHIP.value: PlanLimits(sms=5000, mms=1000),
}


def get_plan_limits(plan: str | None) -> PlanLimits:
    """
    Resolve messaging limits for a plan name.

    Unknown or missing plans get the free limits (no outbound SMS/MMS).
    """
    if not plan:
        return SMS_PLAN_LIMITS[Plan.FREE.value]
    limits = SMS_PLAN_LIMITS.get(plan)
    if limits is None:
        logger.warning("Unknown plan '%s'; applying free plan limits", plan)
        return SMS_PLAN_LIMITS[Plan.FREE.value]
    return limits
