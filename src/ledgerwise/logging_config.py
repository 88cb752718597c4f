"""Structured logging: a readable console stream plus a rotating JSON log file.

Ledger code passes identifiers through ``extra=``. The JSON formatter lifts the
well-known entity ids into a ``context`` object so log lines can be grepped by
transaction, invoice, subscription or budget; every other extra field lands in
``extra``.
"""

from __future__ import annotations

import json
import logging
import logging.handlers
from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any

from .config import BaseConfig

ROOT_LOGGER_NAME = "ledgerwise"
LOG_FILE_NAME = "ledgerwise.log"
LOG_MAX_BYTES = 10 * 1024 * 1024
LOG_BACKUP_COUNT = 5

CONTEXT_KEYS = (
    "user_id",
    "transaction_id",
    "invoice_id",
    "subscription_id",
    "income_id",
    "budget_id",
)

# Attributes every LogRecord carries; anything else came in through ``extra=``.
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}

_DEV_FORMAT = "[%(asctime)s] %(levelname)-8s [%(name)s.%(funcName)s:%(lineno)d] %(message)s"
_PLAIN_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return format(value, "f")
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


class JSONFormatter(logging.Formatter):
    """Render a record as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "function": record.funcName,
            "line": record.lineno,
        }

        fields = {key: value for key, value in vars(record).items() if key not in _RECORD_ATTRS}
        context = {key: fields.pop(key) for key in CONTEXT_KEYS if key in fields}
        if context:
            payload["context"] = context
        if fields:
            payload["extra"] = fields

        if record.exc_info and record.exc_info[0] is not None:
            exc_type, exc_value, _ = record.exc_info
            payload["exception"] = {
                "type": exc_type.__name__,
                "message": str(exc_value),
                "traceback": self.formatException(record.exc_info),
            }

        return json.dumps(payload, default=_json_default)


def _console_handler(dev_mode: bool) -> logging.Handler:
    handler = logging.StreamHandler()
    if dev_mode:
        handler.setLevel(logging.INFO)
        handler.setFormatter(logging.Formatter(_DEV_FORMAT, datefmt="%H:%M:%S"))
    else:
        handler.setLevel(logging.WARNING)
        handler.setFormatter(logging.Formatter(_PLAIN_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    return handler


def _json_file_handler(log_file: Path) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        filename=log_file,
        maxBytes=LOG_MAX_BYTES,
        backupCount=LOG_BACKUP_COUNT,
        encoding="utf-8",
    )
    handler.setLevel(logging.INFO)
    handler.setFormatter(JSONFormatter())
    return handler


def setup_logging(config: BaseConfig) -> logging.Logger:
    """Attach the console and JSON file handlers to the ``ledgerwise`` logger.

    Calling it again replaces the handlers instead of stacking duplicates.

    Args:
        config: Application configuration with DATA_DIR and DEV_MODE

    Returns:
        The configured ``ledgerwise`` logger
    """
    log_file = Path(config.DATA_DIR) / "logs" / LOG_FILE_NAME
    log_file.parent.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(logging.INFO)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    logger.addHandler(_console_handler(config.DEV_MODE))
    logger.addHandler(_json_file_handler(log_file))

    logger.info(
        "Logging initialized",
        extra={"dev_mode": config.DEV_MODE, "log_file": str(log_file)},
    )
    return logger


def get_logger(name: str) -> logging.Logger:
    """Return ``ledgerwise.<name>``; already-qualified names pass through."""
    if name == ROOT_LOGGER_NAME or name.startswith(f"{ROOT_LOGGER_NAME}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
