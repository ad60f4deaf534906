"""Utility helpers for task priorities and categories."""
from __future__ import annotations

from typing import Dict

# Rank doubles as the sort key: lower rank sorts first.
PRIORITY_META: Dict[str, Dict[str, int]] = {
    "urgent": {"rank": 0},
    "high": {"rank": 1},
    "medium": {"rank": 2},
    "low": {"rank": 3},
}

DEFAULT_PRIORITY = "medium"

DEFAULT_CATEGORY = "personal"

REPEAT_FREQUENCIES = ("daily", "weekly", "monthly", "yearly")


def is_priority(value: object) -> bool:
    return isinstance(value, str) and value in PRIORITY_META


def normalize_priority(value: str | None, default: str = DEFAULT_PRIORITY) -> str:
    """Map external values onto the supported priority names."""
    if value is None:
        return default
    candidate = str(value).strip().lower()
    if candidate in PRIORITY_META:
        return candidate
    return default


def priority_rank(value: str | None) -> int:
    meta = PRIORITY_META.get(value or "", PRIORITY_META[DEFAULT_PRIORITY])
    return meta["rank"]


def normalize_category(value: str | None, default: str = DEFAULT_CATEGORY) -> str:
    # Categories are open-ended; only blank values fall back to the default.
    if value is None:
        return default
    candidate = str(value).strip().lower()
    return candidate or default


def normalize_frequency(value: str | None) -> str | None:
    if value is None:
        return None
    candidate = str(value).strip().lower()
    return candidate if candidate in REPEAT_FREQUENCIES else None


__all__ = [
    "DEFAULT_CATEGORY",
    "DEFAULT_PRIORITY",
    "PRIORITY_META",
    "REPEAT_FREQUENCIES",
    "is_priority",
    "normalize_category",
    "normalize_frequency",
    "normalize_priority",
    "priority_rank",
]
