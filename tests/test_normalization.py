"""Tests for contact data normalization."""

import pytest

from flock.utils.normalization import (
    extract_phone_last4,
    normalize_email,
    normalize_name,
    normalize_phone,
    try_normalize_phone,
)


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("(555) 123-4567", "+15551234567"),
        ("555.123.4567", "+15551234567"),
        ("1-555-123-4567", "+15551234567"),
        ("+44 20 7946 0958", "+442079460958"),
        ("  +1 (555) 123-4567 ", "+15551234567"),
    ],
)
def test_normalize_phone(raw, expected):
    assert normalize_phone(raw) == expected


@pytest.mark.parametrize("raw", ["123", "", None, "555-1234", "abc"])
def test_normalize_phone_rejects_short_numbers(raw):
    with pytest.raises(ValueError):
        normalize_phone(raw)


def test_try_normalize_phone_returns_none_on_invalid():
    assert try_normalize_phone("123") is None
    assert try_normalize_phone("5551234567") == "+15551234567"


def test_normalize_email_lowercases_and_strips():
    assert normalize_email("  Ada@Example.COM ") == "ada@example.com"
    assert normalize_email("   ") is None
    assert normalize_email(None) is None


def test_normalize_name_collapses_whitespace():
    assert normalize_name("  Ada   Lovelace ") == "Ada Lovelace"
    assert normalize_name("") is None


def test_extract_phone_last4():
    assert extract_phone_last4("+15551234567") == "4567"
    assert extract_phone_last4("12") == "12"
    assert extract_phone_last4(None) is None
