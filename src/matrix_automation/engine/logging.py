"""Structured logging configuration.

Every record is written to stderr as one JSON object per line. Fields passed
through ``extra={...}`` are nested under ``"extra"`` so they never collide
with the fixed keys.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

PACKAGE_LOGGER = "matrix_automation"

# Attributes every LogRecord carries; anything else on a record came from `extra`.
_STANDARD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))
) | {"message", "asctime"}

_NOISY_LOGGERS = ("urllib3", "uvicorn.access")


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {
        key: value
        for key, value in vars(record).items()
        if key not in _STANDARD_ATTRS and not key.startswith("_")
    }


class JsonFormatter(logging.Formatter):
    """Render a record as a single-line JSON object."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }

        fields = _extra_fields(record)
        if fields:
            entry["extra"] = fields
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        # Paths, enums and the like are rendered with str().
        return json.dumps(entry, ensure_ascii=False, default=str)


def configure_logging(level: str, *, debug: bool = False) -> None:
    """Install the JSON handler on the root logger.

    Calling it again replaces the previous handlers. ``debug`` lowers this
    package's logger to DEBUG whatever ``level`` says.
    """

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)

    handler = logging.StreamHandler(stream=sys.stderr)
    handler.setFormatter(JsonFormatter())
    root.addHandler(handler)
    root.setLevel(level.upper())

    if debug:
        logging.getLogger(PACKAGE_LOGGER).setLevel(logging.DEBUG)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(root.level, logging.INFO))
