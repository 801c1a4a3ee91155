"""
Logging utilities for Ticket Printer.

- RequestIdFilter attaches request_id and path inside a Flask request, and
  the worker's current job id outside of one
- JsonFormatter emits structured logs when TICKETPRINTER_JSON_LOGS=true
- configure_logging() sets up the root logger with journald or console output
"""

from __future__ import annotations

import contextvars
import logging
import os
from typing import Optional

# Set by the printer worker while a job runs so BLE logs can be correlated.
current_job_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("current_job_id", default=None)


class RequestIdFilter(logging.Filter):
    """
    Attach request_id and path to log records. Outside a Flask request the
    worker job id (if any) is used as request_id.
    """

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        record.request_id = current_job_id.get() or "-"
        record.path = "-"
        try:
            from flask import g, has_request_context, request  # lazy import

            if has_request_context():
                record.request_id = getattr(g, "request_id", "-")
                record.path = request.path
        except Exception:
            pass
        return True


class JsonFormatter(logging.Formatter):
    """
    Minimal JSON formatter: timestamp, level, logger, message, request_id,
    path, and the formatted traceback when present.
    """

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        from json import dumps

        base = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "request_id": getattr(record, "request_id", "-"),
        }
        path = getattr(record, "path", None)
        if path not in (None, "-"):
            base["path"] = path
        if record.exc_info:
            base["exc"] = self.formatException(record.exc_info)
        return dumps(base, ensure_ascii=False)


def _level_from_env() -> int:
    name = os.environ.get("TICKETPRINTER_LOG_LEVEL", "INFO").upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def configure_logging() -> logging.Logger:
    """
    Configure root logging for the application.

    Behavior:
    - Root level from TICKETPRINTER_LOG_LEVEL (default INFO)
    - Clears existing handlers to avoid duplicates on repeated factory calls
    - JSON or plain formatter based on TICKETPRINTER_JSON_LOGS
    - systemd JournalHandler when available, StreamHandler otherwise
    - bleak's own logger capped at WARNING unless we run at DEBUG
    - Flask's app logger propagates to root

    Returns the configured root logger.
    """
    root = logging.getLogger()
    level = _level_from_env()
    root.setLevel(level)
    root.handlers = []

    json_logs = os.environ.get("TICKETPRINTER_JSON_LOGS", "false").lower() in ("1", "true", "yes")
    formatter: logging.Formatter
    if json_logs:
        formatter = JsonFormatter()
    else:
        formatter = logging.Formatter("[%(asctime)s] %(levelname)s %(request_id)s %(name)s: %(message)s")

    try:
        from systemd.journal import JournalHandler  # type: ignore

        handler: logging.Handler = JournalHandler(SYSLOG_IDENTIFIER="ticket-printer")
    except Exception:
        handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    handler.addFilter(RequestIdFilter())
    root.addHandler(handler)

    if level > logging.DEBUG:
        logging.getLogger("bleak").setLevel(logging.WARNING)

    flask_logger = logging.getLogger("flask.app")
    flask_logger.handlers = []
    flask_logger.propagate = True

    return root


__all__ = ["JsonFormatter", "RequestIdFilter", "configure_logging", "current_job_id"]
