"""
Logging setup for the portal.

Records carry two kinds of context through ``extra={...}``:
    request   → method, path, status, duration_ms, request_id, profile_id
    workflow  → client_id, form_id, job_name

Development prints one readable line with the workflow ids appended;
production emits one JSON object per record. LOG_LEVEL overrides the level.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

REQUEST_FIELDS = ("method", "path", "status", "duration_ms", "request_id", "profile_id")
WORKFLOW_FIELDS = ("client_id", "form_id", "job_name")

QUIET_LOGGERS = ("urllib3", "werkzeug", "sqlalchemy.engine", "PIL")


def _collect(record: logging.LogRecord, fields) -> dict:
    return {name: getattr(record, name) for name in fields if getattr(record, name, None) is not None}


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(_collect(record, WORKFLOW_FIELDS))
        request_ctx = _collect(record, REQUEST_FIELDS)
        if request_ctx:
            entry["request"] = request_ctx
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """``HH:MM:SS LEVEL logger: message [form=… client=…]`` for the terminal."""

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        line = f"{ts} {record.levelname:<8} {record.name}: {record.getMessage()}"
        ctx = _collect(record, WORKFLOW_FIELDS)
        if ctx:
            tags = " ".join(f"{key.removesuffix('_id').removesuffix('_name')}={val}" for key, val in ctx.items())
            line += f" [{tags}]"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install one stderr handler on the root logger; JSON outside debug and testing."""
    is_testing = app.config.get("TESTING", False)
    as_json = not app.config.get("DEBUG", False) and not is_testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if as_json else "DEBUG").upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if as_json else ReadableFormatter())

    # cleared so repeated app creation does not stack handlers
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not is_testing:
        app.logger.info("Logging configured: level=%s json=%s", level_name, as_json)
