"""Logging setup for the dispatch gateway.

Gateway modules log through ``logging.getLogger(__name__)`` and attach
``extra={"provider": ..., "label": ...}`` to per-attempt events. Both
formatters below surface those fields.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import TextIO

from llm_conductor.core.config import Settings, settings as default_settings

CONTEXT_FIELDS = ("provider", "label", "request_id")
CONSOLE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s%(context)s"

# Third-party loggers that are chatty at INFO
_QUIET_LOGGERS = ("httpx", "httpcore")


def _context(record: logging.LogRecord) -> dict[str, str]:
    return {name: value for name in CONTEXT_FIELDS if (value := getattr(record, name, None))}


class ConsoleFormatter(logging.Formatter):
    """Human-readable lines; gateway context is appended as ``[key=value ...]``."""

    def __init__(self):
        super().__init__(CONSOLE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        context = _context(record)
        record.context = " [" + " ".join(f"{k}={v}" for k, v in context.items()) + "]" if context else ""
        return super().format(record)


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for log shippers."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_context(record),
        }
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


def setup_logging(settings: Settings | None = None, stream: TextIO | None = None) -> None:
    """Install a single root handler configured from ``LOG_LEVEL`` / ``LOG_JSON``.

    Logs go to stderr by default so command output on stdout stays clean.
    """
    settings = settings or default_settings
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(JSONFormatter() if settings.log_json else ConsoleFormatter())

    root = logging.getLogger()
    for existing in root.handlers[:]:
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
