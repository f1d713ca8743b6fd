"""Structured logging for the ranking workers.

Every record emitted while a job runs is tagged with that job's id, type and
user, taken from a context variable the worker sets around each job. This
lets one user's ranking runs be followed across the pipeline, persistence
and cache modules without threading ids through every call.

Controlled via RANKING_LOG_FORMAT env var: "json" (default) or "text".
"""

import json
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any

LOG_FORMATS = ("json", "text")

_job_fields: ContextVar[dict[str, Any] | None] = ContextVar("ranking_job_fields", default=None)


@contextmanager
def job_context(**fields: Any) -> Iterator[None]:
    """Attach fields (job_id, job_type, user_id, ...) to every record in this block."""
    merged = dict(_job_fields.get() or {})
    merged.update({key: value for key, value in fields.items() if value is not None})
    token = _job_fields.set(merged)
    try:
        yield
    finally:
        _job_fields.reset(token)


def current_job_context() -> dict[str, Any]:
    return dict(_job_fields.get() or {})


class JobContextFilter(logging.Filter):
    """Copy the running job's fields onto records as rank_* attributes.

    Explicit ``extra={"rank_...": ...}`` values on a record take precedence.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in current_job_context().items():
            attr = f"rank_{key}"
            if not hasattr(record, attr):
                setattr(record, attr, value)
        return True


def _rank_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {key: value for key, value in record.__dict__.items() if key.startswith("rank_")}


class JSONFormatter(logging.Formatter):
    """One JSON object per line; rank_* fields become top-level keys."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(_rank_fields(record))
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Plain lines with the job fields appended as key=value pairs."""

    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)s %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = _rank_fields(record)
        if not fields:
            return line
        tags = " ".join(f"{key.removeprefix('rank_')}={value}" for key, value in sorted(fields.items()))
        # Keep any traceback after the tags
        head, sep, tail = line.partition("\n")
        return f"{head} [{tags}]{sep}{tail}"


def setup_logging(log_format: str, level: int = logging.INFO) -> None:
    """Install a single stderr handler on the root logger."""
    if log_format not in LOG_FORMATS:
        raise ValueError(f"log_format must be one of {LOG_FORMATS}, got {log_format!r}")

    root = logging.getLogger()
    root.setLevel(level)
    for existing in root.handlers[:]:
        root.removeHandler(existing)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.addFilter(JobContextFilter())
    handler.setFormatter(JSONFormatter() if log_format == "json" else TextFormatter())
    root.addHandler(handler)
