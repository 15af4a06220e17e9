"""
JSON-lines logging for job runs and listen sessions.

Every line carries `service`, `env`, `version`, the `correlation_id` of the
current job run or listen session, an `event_type` and any `extra=` fields
the caller attached (job id, subscription id, counters...).
"""

from __future__ import annotations

import json
import logging
import os
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Iterator, Optional

_CORRELATION_ID: ContextVar[Optional[str]] = ContextVar("bulknews_correlation_id", default=None)

# Attributes every LogRecord has; anything else on a record came from `extra=`.
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}

_MAX_MESSAGE_LEN = 4000
_MAX_TRACEBACK_LEN = 8000


def get_correlation_id() -> Optional[str]:
    return _CORRELATION_ID.get()


@contextmanager
def bind_correlation_id(*, correlation_id: str | None = None) -> Iterator[str]:
    """
    Bind a correlation id for the duration of a job run or listen session.

    Nested binds reuse the outer id unless an explicit one is given.
    """
    cid = correlation_id or get_correlation_id() or uuid.uuid4().hex
    token = _CORRELATION_ID.set(cid)
    try:
        yield cid
    finally:
        _CORRELATION_ID.reset(token)


class JsonLogFormatter(logging.Formatter):
    def __init__(self, *, service: str | None = None, env: str | None = None, version: str | None = None) -> None:
        super().__init__()
        self.service = service or os.getenv("BULKNEWS_SERVICE_NAME") or "bulknews"
        self.env = env or os.getenv("BULKNEWS_ENV") or "unknown"
        self.version = version or os.getenv("BULKNEWS_VERSION") or "unknown"

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        message = record.getMessage()
        if len(message) > _MAX_MESSAGE_LEN:
            message = message[: _MAX_MESSAGE_LEN - 3] + "..."

        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "severity": getattr(record, "severity", None) or record.levelname,
            "service": self.service,
            "env": self.env,
            "version": self.version,
            "correlation_id": getattr(record, "correlation_id", None) or get_correlation_id(),
            "event_type": getattr(record, "event_type", None) or "log",
            "message": message,
            "logger": record.name,
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)[-_MAX_TRACEBACK_LEN:]

        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS and key not in payload and not key.startswith("_"):
                payload[key] = value

        return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str)


def init_structured_logging(
    *,
    service: str | None = None,
    env: str | None = None,
    version: str | None = None,
    level: str | int | None = None,
) -> None:
    """
    Send JSON lines to stdout from the root logger. Calling it again
    replaces the handler installed by the previous call.
    """
    lvl = level or os.getenv("LOG_LEVEL", "INFO").upper()
    root = logging.getLogger()
    root.setLevel(lvl)
    for handler in [h for h in root.handlers if isinstance(h.formatter, JsonLogFormatter)]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(JsonLogFormatter(service=service, env=env, version=version))
    root.addHandler(handler)


def log_event(
    logger: logging.Logger,
    event_type: str,
    *,
    severity: str = "INFO",
    message: str | None = None,
    **fields: Any,
) -> None:
    """
    Log a semantic event. `fields` become top-level JSON keys, so they must
    not collide with LogRecord attributes.
    """
    level = logging.getLevelName(severity.upper())
    logger.log(level if isinstance(level, int) else logging.INFO, message or event_type, extra={"event_type": event_type, **fields})
