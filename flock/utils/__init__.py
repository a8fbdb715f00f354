"""Utility modules."""

from flock.utils.normalization import (
    normalize_email,
    normalize_name,
    normalize_phone,
    try_normalize_phone,
)

__all__ = [
    "normalize_email",
    "normalize_name",
    "normalize_phone",
    "try_normalize_phone",
]
