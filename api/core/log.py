"""
Logging setup.

Modules log through `logging.getLogger(__name__)` with key=value messages.
`configure()` is called once from `main.py`; it attaches the current request
id to every record and masks obvious secrets.
"""

from __future__ import annotations

import logging
import re
from contextvars import ContextVar

from . import settings

_request_id: ContextVar[str | None] = ContextVar("request_id", default=None)

_SECRET_PATTERN = re.compile(r"((?:password|token|secret)[a-z_]*=)([^\s,]+)", re.IGNORECASE)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s request_id=%(request_id)s %(message)s"


def current_request_id() -> str | None:
    return _request_id.get()


def set_request_id(value: str | None):
    return _request_id.set(value)


def reset_request_id(token) -> None:
    _request_id.reset(token)


def redact(message: str) -> str:
    return _SECRET_PATTERN.sub(r"\1[REDACTED]", message)


class RequestContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = current_request_id() or "-"
        if isinstance(record.msg, str):
            record.msg = redact(record.msg)
        return True


def configure(level: str | None = None) -> None:
    root = logging.getLogger()
    if any(isinstance(f, RequestContextFilter) for h in root.handlers for f in h.filters):
        return None

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(RequestContextFilter())
    root.addHandler(handler)
    root.setLevel(level or settings.log_level())
