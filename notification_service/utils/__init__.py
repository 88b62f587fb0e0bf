"""Utility helpers for reusable functionality."""

from .datetime import ensure_naive_utc, ensure_utc, iso_or_none, now_utc

__all__ = [
    "ensure_naive_utc",
    "ensure_utc",
    "iso_or_none",
    "now_utc",
]
