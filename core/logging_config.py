"""Structured JSON logging, tagged with the job a line was logged for.

Every log line emitted while a timer firing or a manual trigger is in
progress carries that job's key (and whatever else was bound with it),
so one grep over the JSON stream reconstructs a single user's history.
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Generator

# Bound for the duration of one firing; empty outside of any job
_job_context: contextvars.ContextVar[dict[str, Any]] = contextvars.ContextVar(
    "job_context", default={}
)

# Attributes every LogRecord has; anything else arrived through extra=
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}

# Libraries that log each job submission or HTTP request at INFO
_CHATTY_LOGGERS = ("apscheduler", "httpx")


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return str(value)


class JsonFormatter(logging.Formatter):
    """One JSON object per line: ts, level, logger, msg, job context, extras."""

    def format(self, record: logging.LogRecord) -> str:
        data: dict[str, Any] = {
            "ts":      datetime.fromtimestamp(record.created, tz=timezone.utc)
                       .isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level":   record.levelname,
            "logger":  record.name,
            "msg":     record.getMessage(),
            "job_key": "-",
        }
        data.update(_job_context.get())
        data.update(
            (key, val) for key, val in vars(record).items()
            if key not in _RECORD_ATTRS and not key.startswith("_")
        )
        if record.exc_info:
            data["exc"] = self.formatException(record.exc_info)
        return json.dumps(data, default=_json_default)


def setup_json_logging(level: str = "INFO") -> None:
    """Replace root logger's handlers with a JSON formatter on stdout."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


@contextmanager
def job_context(job_key: str, **fields: Any) -> Generator[None, None, None]:
    """Tag every line logged inside the block with *job_key* and *fields*.

    Nested blocks extend the outer context; the outer one is restored on exit.
    """
    token = _job_context.set({**_job_context.get(), "job_key": job_key, **fields})
    try:
        yield
    finally:
        _job_context.reset(token)
