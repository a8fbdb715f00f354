"""Pastoral follow-up tracking core."""
