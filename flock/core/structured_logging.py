"""Structured logging helpers (PII-safe)."""

from typing import Any


def build_log_context(
    *,
    org_id: str | None = None,
    person_id: str | None = None,
    followup_id: str | None = None,
    announcement_id: str | None = None,
    rule: str | None = None,
) -> dict[str, Any]:
    """Return a PII-safe log context dict."""
    context: dict[str, Any] = {}
    if org_id:
        context["org_id"] = str(org_id)
    if person_id:
        context["person_id"] = str(person_id)
    if followup_id:
        context["followup_id"] = str(followup_id)
    if announcement_id:
        context["announcement_id"] = str(announcement_id)
    if rule:
        context["rule"] = rule
    return context


def mask_email(email: str | None) -> str:
    if not email:
        return ""
    local, _, domain = email.partition("@")
    prefix = local[:3] if local else ""
    return f"{prefix}...@{domain}" if domain else f"{prefix}..."


def mask_phone(phone: str | None) -> str:
    if not phone:
        return ""
    return f"***{phone[-4:]}" if len(phone) > 4 else "***"
