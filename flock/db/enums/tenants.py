"""Tenant-related enums."""

from enum import Enum


class Plan(str, Enum):
    """Subscription plans; each maps to static SMS/MMS limits."""

    FREE = "free"
    FOUNDATIONS = "foundations"
    FORMATION = "formation"
    STEWARDSHIP = "stewardship"
