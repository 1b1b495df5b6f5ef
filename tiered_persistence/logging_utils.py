"""
Structured JSON logging for the persistence tiers.

Resolver, migration and diagnostics records carry the logical key, user
scope and tier as extra fields, so a log pipeline can follow one record
across the local cache and every remote backend.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, TextIO

LOGGER_ROOT = "tiered_persistence"

# Emitted first, in this order, when present on the record
CONTEXT_FIELDS = ("key", "scope", "source_scope", "tier", "latency_ms")

_RECORD_ATTRS = set(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


def _jsonable(value: Any) -> Any:
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return str(value)
    return value


class StructuredJsonFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level, logger, message, then
    the persistence context fields and any other extras."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for name in CONTEXT_FIELDS:
            if hasattr(record, name):
                entry[name] = _jsonable(getattr(record, name))
        if isinstance(entry.get("latency_ms"), float):
            entry["latency_ms"] = round(entry["latency_ms"], 2)

        for name, value in vars(record).items():
            if name in _RECORD_ATTRS or name in entry or name.startswith("_"):
                continue
            entry[name] = _jsonable(value)

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def configure_structured_logging(
    level: int = logging.INFO,
    logger_name: str | None = LOGGER_ROOT,
    stream: TextIO | None = None,
) -> logging.Logger:
    """Route a logger's records through :class:`StructuredJsonFormatter`.

    Logs go to stderr unless ``stream`` is given; stdout is left for
    command output such as a JSON status report. Existing handlers on the
    logger are replaced.
    """
    logger = logging.getLogger(logger_name)
    logger.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(StructuredJsonFormatter())
    logger.addHandler(handler)
    logger.setLevel(level)
    return logger


def get_persistence_logger(name: str) -> logging.Logger:
    """Logger named ``tiered_persistence.<name>``."""
    return logging.getLogger(f"{LOGGER_ROOT}.{name}")


class PersistenceLoggerAdapter(logging.LoggerAdapter):
    """Adds bound persistence context (key, scope, tier) to every record.

    Per-call ``extra`` values are merged over the bound context rather than
    replacing it.
    """

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        kwargs["extra"] = {**(self.extra or {}), **kwargs.get("extra", {})}
        return msg, kwargs

    def bind(self, **context: Any) -> "PersistenceLoggerAdapter":
        """Return a new adapter with additional context fields."""
        return PersistenceLoggerAdapter(self.logger, {**(self.extra or {}), **context})
