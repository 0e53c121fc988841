"""JSON event logging keyed by a per-query trace id."""

from __future__ import annotations

import json
import logging
import re
from contextlib import contextmanager
from contextvars import ContextVar, Token
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Iterator, Optional
from uuid import uuid4


_TRACE_ID: ContextVar[Optional[str]] = ContextVar("field_advisor_trace_id", default=None)
_LOGGER = logging.getLogger("field_advisor.events")
_CONFIGURED = False
_WHITESPACE_RE = re.compile(r"\s+")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
LOG_FILE_MAX_BYTES = 5 * 1024 * 1024
LOG_FILE_BACKUPS = 3


def init_logging(*, log_path: Optional[str] = None, level: str = "INFO") -> None:
    """Attach a stream or rotating-file handler once per process."""
    global _CONFIGURED
    if _CONFIGURED:
        return
    if log_path:
        path = Path(log_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = RotatingFileHandler(
            path,
            maxBytes=LOG_FILE_MAX_BYTES,
            backupCount=LOG_FILE_BACKUPS,
            encoding="utf-8",
        )
    else:
        handler = logging.StreamHandler()
    numeric_level = logging.getLevelName(str(level).upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO
    logging.basicConfig(level=numeric_level, format=LOG_FORMAT, handlers=[handler])
    _LOGGER.setLevel(numeric_level)
    _CONFIGURED = True


def new_trace_id() -> str:
    return uuid4().hex[:16]


def set_trace_id(trace_id: str) -> Token:
    return _TRACE_ID.set(trace_id)


def reset_trace_id(token: Token) -> None:
    _TRACE_ID.reset(token)


def get_trace_id() -> str:
    return _TRACE_ID.get() or "-"


@contextmanager
def trace_scope(trace_id: Optional[str] = None) -> Iterator[str]:
    """Bind a trace id for one query; concurrent tasks each keep their own."""
    token = set_trace_id(trace_id or new_trace_id())
    try:
        yield get_trace_id()
    finally:
        reset_trace_id(token)


def summarize_text(text: object, limit: int = 400) -> str:
    """Single-line excerpt of a query or model reply for log payloads."""
    if not text:
        return ""
    flat = _WHITESPACE_RE.sub(" ", str(text)).strip()
    if len(flat) <= limit:
        return flat
    return flat[:limit].rstrip() + "..."


def _payload(event: str, fields: Dict[str, Any]) -> str:
    body = {"event": event, "trace_id": get_trace_id()}
    body.update({key: value for key, value in fields.items() if value is not None})
    return json.dumps(body, ensure_ascii=False, default=str)


def log_event(event: str, **fields: Any) -> None:
    _LOGGER.info(_payload(event, fields))


def log_warning(event: str, **fields: Any) -> None:
    _LOGGER.warning(_payload(event, fields))
