"""
Structured logging configuration.

- Development / testing: colored one-liners, prefixed with the project scope
- Production: one JSON object per line
- Level and format come from the settings object (LOG_LEVEL / LOG_FORMAT)

Services pass scope through ``extra=``:

    logger.warning("Security event %s", kind, extra={"project_id": 3, "event_type": kind})
"""

import json
import logging
import sys
from datetime import datetime, timezone

# Extra attributes services attach via ``logger.warning(..., extra={...})``
STRUCTURED_FIELDS = (
    "project_id",
    "project_identifier",
    "agent_identifier",
    "entity_type",
    "entity_id",
    "event_type",
    "security_code",
)

NOISY_LOGGERS = ("sqlalchemy.engine", "alembic")


def _structured_extras(record: logging.LogRecord) -> dict:
    return {key: getattr(record, key) for key in STRUCTURED_FIELDS if getattr(record, key, None) is not None}


class JSONFormatter(logging.Formatter):
    """One JSON document per record, extras flattened in."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            **_structured_extras(record),
        }
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Colored development format: ``12:00:01 WARNING  logger [project]: message``."""

    COLORS = {
        "DEBUG": "\033[36m",      # cyan
        "INFO": "\033[32m",       # green
        "WARNING": "\033[33m",    # yellow
        "ERROR": "\033[31m",      # red
        "CRITICAL": "\033[35m",   # magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        project = getattr(record, "project_identifier", None)
        scope = f" [{project}]" if project else ""
        line = (
            f"{color}{datetime.now():%H:%M:%S} {record.levelname:<8}{self.RESET} "
            f"{record.name}{scope}: {record.getMessage()}"
        )
        if record.exc_info and record.exc_info[0] is not None:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def _is_production(settings) -> bool:
    return not getattr(settings, "DEBUG", False) and not getattr(settings, "TESTING", False)


def configure_logging(settings):
    """
    Install a single stderr handler on the root logger.

    Level: settings.LOG_LEVEL, else INFO in production and DEBUG otherwise.
    Format: settings.LOG_FORMAT ("json" | "readable"), else JSON in production only.

    Safe to call repeatedly; earlier root handlers are replaced. Returns
    the effective level.
    """
    production = _is_production(settings)
    level_name = getattr(settings, "LOG_LEVEL", None) or ("INFO" if production else "DEBUG")
    level = getattr(logging, level_name.upper(), logging.INFO)
    fmt = (getattr(settings, "LOG_FORMAT", None) or ("json" if production else "readable")).lower()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if fmt == "json" else ReadableFormatter())
    handler.setLevel(level)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if not getattr(settings, "TESTING", False):
        logging.getLogger("agile_backlog").info("Logging configured: level=%s format=%s", level_name, fmt)
    return level
