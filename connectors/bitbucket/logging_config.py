"""Structured JSON logging for the ``bitbucket`` logger tree."""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Optional, Sequence, TextIO

# Context fields that callers attach through ``extra={...}``
EXTRA_FIELDS = (
    "workspace",
    "workspace_id",
    "resource_type",
    "resource_id",
    "principal_id",
    "entitlement",
    "records",
    "duration_s",
    "run_id",
)


class JsonFormatter(logging.Formatter):
    """Emit one JSON object per log line.

    Upstream failures carry their exception type and, for HTTP errors, the
    status code as top-level keys next to the traceback.
    """

    def __init__(self, fields: Sequence[str] = EXTRA_FIELDS) -> None:
        super().__init__()
        self.fields = tuple(fields)

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in self.fields:
            val = getattr(record, key, None)
            if val is not None:
                entry[key] = val

        exc = record.exc_info[1] if record.exc_info else None
        if exc is not None:
            entry["error_type"] = type(exc).__name__
            status_code = getattr(exc, "status_code", None)
            if status_code is not None:
                entry["status_code"] = status_code
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def configure_logging(level: str = "INFO", stream: Optional[TextIO] = None) -> None:
    """Route every ``bitbucket.*`` logger to one JSON handler (stderr by default)."""
    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setFormatter(JsonFormatter())
    tree = logging.getLogger("bitbucket")
    tree.setLevel(getattr(logging, level.upper(), logging.INFO))
    tree.handlers.clear()
    tree.addHandler(handler)
    tree.propagate = False
