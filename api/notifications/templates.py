"""
Email template rendering.

Templates are Jinja2 HTML files next to this module, rendered with
autoescaping. Keys in `HTML_SAFE_KEYS` hold pre-built HTML or URLs and are
marked safe before rendering. `None` values render as empty strings.
"""

from __future__ import annotations

import re
from datetime import date
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, Template, TemplateError, TemplateNotFound, select_autoescape
from markupsafe import Markup

from core import dates, sanitize
from tasks import priority as task_priority

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"

HTML_SAFE_KEYS = frozenset(
    {
        "taskRows",
        "taskUrl",
        "inviteUrl",
        "verificationUrl",
        "resetUrl",
        "billingUrl",
        "appUrl",
        "priorityColor",
    }
)

_TAG_RE = re.compile(r"<[^>]*>")
_SPACE_RE = re.compile(r"\s+")

# TemplateError and TemplateNotFound are re-exported for callers that report render failures.
env = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=select_autoescape(["html"], default_for_string=True),
    trim_blocks=True,
    lstrip_blocks=True,
    finalize=lambda value: "" if value is None else value,
)


def load_template(name: str) -> Template:
    return env.get_template(name)


def _context(data: dict[str, Any]) -> dict[str, Any]:
    return {key: Markup(value) if key in HTML_SAFE_KEYS and value is not None else value for key, value in data.items()}


def render_string(source: str, data: dict[str, Any]) -> str:
    return env.from_string(source).render(_context(data))


def strip_html(html: str) -> str:
    return _SPACE_RE.sub(" ", _TAG_RE.sub(" ", html or "")).strip()


def render(name: str, data: dict[str, Any] | None = None) -> tuple[str, str]:
    """
    Returns (html, text) for a queued email.
    """
    html = load_template(name).render(_context(data or {}))
    return html, strip_html(html)


def build_task_rows(tasks: list[dict[str, Any]], *, today: date | None = None) -> str:
    if not tasks:
        return '<tr><td style="padding: 16px; color: #666666;">No tasks found.</td></tr>'

    rows: list[str] = []
    for task in tasks:
        level = task_priority.normalize_priority(task.get("priority"))
        due = task.get("due_date")
        due_text = dates.format_due_date(due) or ""
        label = dates.due_label(due, today) if isinstance(due, date) else ""
        rows.append(
            "<tr>"
            '<td style="padding: 12px 16px; border-bottom: 1px solid #eeeeee;">'
            f'<strong>{sanitize.escape(task.get("title"))}</strong><br>'
            f'<span style="color: #666666; font-size: 13px;">Due {sanitize.escape(due_text)}'
            f'{" (" + label + ")" if label else ""}</span> '
            f'<span style="color: {task_priority.priority_color(level)}; font-size: 13px; font-weight: bold;">'
            f"{level}</span>"
            "</td>"
            "</tr>"
        )
    return "\n".join(rows)
