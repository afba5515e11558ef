"""
Logging setup for the intel backend.

- LOG_LEVEL picks the root level (default INFO).
- LOG_JSON=1, or a hosted-platform marker (RAILWAY_ENVIRONMENT / VERCEL),
  switches to one JSON object per line.
- Pipeline code attaches job_id / symbol / phase / source through `extra=`;
  the JSON formatter lifts those onto the record so a single job can be
  followed across scheduler ticks. No payloads or secrets go into messages.
"""
import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# `extra=` keys promoted to top-level JSON fields.
CONTEXT_FIELDS = ("job_id", "symbol", "phase", "data_type", "source", "tier", "tick_id", "request_id")

# Third-party loggers that are chatty at INFO.
QUIET_LOGGERS: Dict[str, int] = {
    "uvicorn.access": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "tenacity": logging.WARNING,
}

TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def _default(obj: Any):
    if isinstance(obj, datetime):
        return obj.isoformat()
    # str-valued enums (JobStatus, JobPhase, ...)
    value = getattr(obj, "value", None)
    if value is not None:
        return value
    return str(obj)


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created, tz=timezone.utc)
        doc: Dict[str, Any] = {
            "ts": ts.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                doc[key] = value
        if record.exc_info and record.exc_info[0] is not None:
            doc["exception"] = self.formatException(record.exc_info)
        return json.dumps(doc, default=_default)


def _json_enabled() -> bool:
    flag = os.getenv("LOG_JSON", "").strip().lower()
    if flag in ("1", "true", "yes"):
        return True
    if flag in ("0", "false", "no"):
        return False
    return bool(os.getenv("RAILWAY_ENVIRONMENT") or os.getenv("VERCEL"))


def configure_logging(level: Optional[str] = None) -> None:
    """Replace root handlers with one stdout handler. Safe to call on reload."""
    name = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    resolved = logging.getLevelName(name)
    if not isinstance(resolved, int):
        resolved = logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(resolved)
    handler.setFormatter(JsonFormatter() if _json_enabled() else logging.Formatter(TEXT_FORMAT))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(resolved)

    for logger_name, logger_level in QUIET_LOGGERS.items():
        logging.getLogger(logger_name).setLevel(logger_level)
