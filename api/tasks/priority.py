"""
Task priority helpers.
"""

from __future__ import annotations

PRIORITIES = ("low", "medium", "high", "urgent")
DEFAULT_PRIORITY = "medium"

PRIORITY_COLORS = {
    "urgent": "#dc2626",
    "high": "#ef4444",
    "medium": "#f59e0b",
    "low": "#22c55e",
}


def normalize_priority(priority: str | None) -> str:
    value = (priority or "").strip().lower()
    return value if value in PRIORITIES else DEFAULT_PRIORITY


def priority_color(priority: str | None) -> str:
    return PRIORITY_COLORS[normalize_priority(priority)]


def priority_rank(priority: str | None) -> int:
    # Higher rank sorts first: urgent=3 ... low=0.
    return PRIORITIES.index(normalize_priority(priority))
