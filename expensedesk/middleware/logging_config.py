"""
Logging setup for Expense Desk.

Two output shapes share one handler on the root logger:
    json      one object per line, for the log shipper in deployed envs
    readable  coloured single line with the domain context appended

``LOG_FORMAT`` picks the shape ("auto" means json unless DEBUG or TESTING);
``LOG_LEVEL`` picks the threshold.  Services pass domain context through
``extra=`` (``event_type``, ``project_id``, ``expense_id`` ...) and both
formatters surface whatever is present.
"""

import json
import logging
import sys
from datetime import datetime, timezone

# Request attributes written by the timing middleware
_REQUEST_FIELDS = ("request_id", "method", "path", "status", "duration_ms", "remote_addr")

# Domain attributes written by services and jobs
_DOMAIN_FIELDS = (
    "event_type",
    "user_id",
    "recipient_id",
    "project_id",
    "expense_id",
    "delegation_id",
    "chat_id",
    "job_name",
)


def _present(record: logging.LogRecord, fields) -> dict:
    values = {}
    for key in fields:
        val = getattr(record, key, None)
        if val is not None:
            values[key] = val
    return values


class JSONFormatter(logging.Formatter):
    """One JSON object per record; request and domain extras become top-level keys."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "where": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        entry.update(_present(record, _REQUEST_FIELDS))
        entry.update(_present(record, _DOMAIN_FIELDS))
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Coloured console line: ``HH:MM:SS LEVEL logger: message [k=v ...]``."""

    LEVEL_COLORS = {
        "DEBUG": "\033[2m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[1;31m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelname, "")
        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        line = f"{color}{stamp} {record.levelname:<7}{self.RESET} {record.name}: {record.getMessage()}"

        context = _present(record, _DOMAIN_FIELDS)
        if context:
            line += " [" + " ".join(f"{k}={v}" for k, v in context.items()) + "]"
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            line += f" ({duration:.0f}ms)"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _resolve_format(app) -> str:
    fmt = str(app.config.get("LOG_FORMAT", "auto")).lower()
    if fmt in ("json", "readable"):
        return fmt
    if app.config.get("DEBUG") or app.config.get("TESTING"):
        return "readable"
    return "json"


def configure_logging(app):
    """Install a single stderr handler on the root logger for ``app``.

    Handlers are replaced rather than appended, since the test suite builds
    the app more than once per process.
    """
    fmt = _resolve_format(app)
    default_level = "DEBUG" if app.config.get("DEBUG") else "INFO"
    level_name = str(app.config.get("LOG_LEVEL") or default_level).upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if fmt == "json" else ReadableFormatter())
    handler.setLevel(level)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    # Per-request access lines come from the timing middleware instead
    for chatty in ("werkzeug", "urllib3", "sqlalchemy.engine"):
        logging.getLogger(chatty).setLevel(logging.WARNING)

    app.logger.setLevel(level)
    if not app.config.get("TESTING"):
        app.logger.info("Logging ready: level=%s format=%s", level_name, fmt)
