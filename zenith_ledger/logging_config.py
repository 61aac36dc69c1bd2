"""
Structured Logging Configuration Module

JSON log records for ledger mutations. Each record carries the action name,
the resource it touched ("account:<id>", "transaction:<id>", ...) and an
optional dict of structured details.
"""

import logging
import json
from datetime import datetime, timezone
from typing import Optional


LEDGER_FIELDS = ("action", "resource", "extra")

TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class JSONFormatter(logging.Formatter):
    """One JSON object per record, empty ledger fields left out"""

    def format(self, record):
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in LEDGER_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def _build_handler(log_format: str, log_file: Optional[str]) -> logging.Handler:
    handler = logging.FileHandler(log_file) if log_file else logging.StreamHandler()
    if log_format == "text":
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))
    else:
        handler.setFormatter(JSONFormatter())
    return handler


def setup_logging(level: str = "INFO", logger_name: str = "zenith_ledger",
                  log_format: str = "json", log_file: Optional[str] = None) -> logging.Logger:
    """
    Attach a single handler to the ledger logger.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        logger_name: Logger to configure; child loggers inherit it
        log_format: "json" for structured records, "text" for plain lines
        log_file: Append to this file instead of stderr

    Returns:
        The configured logger
    """
    logger = logging.getLogger(logger_name)

    # Reconfiguring replaces earlier handlers instead of stacking them
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()

    logger.addHandler(_build_handler(log_format, log_file))
    logger.setLevel(getattr(logging, level.upper()))
    logger.propagate = False
    return logger


def get_logger(name: str = "zenith_ledger") -> logging.Logger:
    """Get logger instance"""
    return logging.getLogger(name)


def log_action(logger: logging.Logger, level: str, message: str,
               action: Optional[str] = None, resource: Optional[str] = None,
               extra: Optional[dict] = None):
    """
    Emit a record with the ledger fields attached.

    Args:
        logger: Logger instance
        level: Level name (info, warning, error, ...)
        message: Human-readable message
        action: Operation name, e.g. "add_transaction"
        resource: Touched entity, e.g. "account:asset-bank"
        extra: Additional structured details
    """
    levelno = getattr(logging, level.upper())
    if not logger.isEnabledFor(levelno):
        return

    fields = {"action": action, "resource": resource, "extra": extra or None}
    logger.log(levelno, message, extra={k: v for k, v in fields.items() if v is not None})
