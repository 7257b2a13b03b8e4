"""
Input sanitizing for user-supplied text.

Titles, descriptions, comments and names are stored as plain text; any HTML
markup is stripped before it reaches the database.
"""

from __future__ import annotations

import html
import re

_TAG_RE = re.compile(r"<[^>]*>")
_SCRIPT_RE = re.compile(r"<(script|style)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)


def strip_tags(value: str | None) -> str | None:
    if value is None:
        return None
    text = _SCRIPT_RE.sub("", str(value))
    text = _TAG_RE.sub("", text)
    return text.strip()


def clean_required(value: str | None) -> str:
    return strip_tags(value) or ""


def escape(value: object) -> str:
    return html.escape("" if value is None else str(value), quote=True)
