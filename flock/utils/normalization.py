"""Data normalization utilities for consistent contact data."""

import re
from typing import Optional

DEFAULT_COUNTRY_CODE = "1"
MIN_PHONE_DIGITS = 10


def normalize_phone(phone: Optional[str]) -> str:
    """
    Normalize a phone number to canonical +<countrycode><digits> form for SMS.

    Accepts:
    - 10 digits: (555) 123-4567 → +15551234567
    - 11 digits starting with 1: 1-555-123-4567 → +15551234567
    - Already prefixed: +44 20 7946 0958 → +442079460958
    - Any other bare digit string is treated as already carrying its country code

    Raises:
        ValueError: If the number is empty or has fewer than 10 digits
    """
    if not phone:
        raise ValueError("Phone number is required")

    cleaned = phone.strip()
    has_plus = cleaned.startswith("+")
    digits = re.sub(r"\D", "", cleaned)

    if len(digits) < MIN_PHONE_DIGITS:
        raise ValueError(f"Invalid phone number '{phone}'. Expected at least {MIN_PHONE_DIGITS} digits.")

    if has_plus:
        return f"+{digits}"
    if len(digits) == 10:
        return f"+{DEFAULT_COUNTRY_CODE}{digits}"
    return f"+{digits}"


def try_normalize_phone(phone: Optional[str]) -> Optional[str]:
    """Normalize a phone number, returning None instead of raising."""
    try:
        return normalize_phone(phone)
    except ValueError:
        return None


def normalize_email(email: Optional[str]) -> Optional[str]:
    """
    Normalize email to lowercase.

    Args:
        email: Raw email input

    Returns:
        Lowercased email or None if empty
    """
    if not email:
        return None
    stripped = email.strip().lower()
    return stripped or None


def normalize_name(name: Optional[str]) -> Optional[str]:
    """Strip whitespace and collapse multiple spaces."""
    if not name:
        return None
    return " ".join(name.split())


def extract_phone_last4(phone: Optional[str]) -> Optional[str]:
    """
    Extract last 4 digits from a normalized phone number.
    """
    if not phone:
        return None
    digits = re.sub(r"\D", "", phone)
    if not digits:
        return None
    return digits[-4:] if len(digits) >= 4 else digits
