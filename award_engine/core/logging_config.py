"""
Logging setup for the award engine.

Services log through ``logging.getLogger(__name__)`` and attach lifecycle
context with ``extra=`` (requisition, actor, status change, outcome).
``configure_logging`` decides how those records are rendered:

    DEBUG / TESTING   console lines, context appended as key=value
    otherwise         one JSON object per line for log shipping

LOG_LEVEL overrides the level (default DEBUG outside production).
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

CONTEXT_FIELDS = (
    "requisition_id",
    "transaction_id",
    "quotation_id",
    "actor_id",
    "action",
    "from_status",
    "to_status",
    "strategy",
    "outcome",
)


def _context(record: logging.LogRecord) -> dict:
    return {
        key: getattr(record, key)
        for key in CONTEXT_FIELDS
        if getattr(record, key, None) is not None
    }


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            **_context(record),
        }
        if record.exc_info and record.exc_info[0] is not None:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


_LEVEL_COLORS = {
    "DEBUG": "\033[36m",
    "INFO": "\033[32m",
    "WARNING": "\033[33m",
    "ERROR": "\033[31m",
    "CRITICAL": "\033[1;31m",
}
_RESET = "\033[0m"


class ConsoleFormatter(logging.Formatter):
    """``12:00:01 INFO  award_engine.services.x: message  requisition_id=4 outcome=promoted``"""

    def __init__(self, color: bool = False):
        super().__init__()
        self.color = color

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        level = f"{record.levelname:<5}"
        if self.color and record.levelname in _LEVEL_COLORS:
            level = f"{_LEVEL_COLORS[record.levelname]}{level}{_RESET}"
        line = f"{ts} {level} {record.name}: {record.getMessage()}"
        context = _context(record)
        if context:
            line += "  " + " ".join(f"{k}={v}" for k, v in context.items())
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app) -> None:
    """Install one stderr handler on the root logger for ``app``'s environment."""
    readable = app.config.get("DEBUG", False) or app.config.get("TESTING", False)
    level_name = os.getenv("LOG_LEVEL", "DEBUG" if readable else "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    if readable:
        # Colors only on a terminal
        handler.setFormatter(ConsoleFormatter(color=sys.stderr.isatty()))
    else:
        handler.setFormatter(JSONFormatter())

    root = logging.getLogger()
    # Re-creating the app (tests, CLI) must not stack handlers
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not app.config.get("TESTING", False):
        app.logger.info("Logging configured (%s, %s)", level_name, "console" if readable else "json")
