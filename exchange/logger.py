import json
import logging
import sys
from typing import Optional

from .config import get_settings


def setup_logger(name: str = "exchange", level: Optional[str] = None) -> logging.Logger:
    """Configure the application logger and return it.

    Args:
        name: logger name (default: exchange)
        level: log level; falls back to the LOG_LEVEL setting
    """
    if level is None:
        level = get_settings().LOG_LEVEL

    log_level = getattr(logging, level.upper(), logging.INFO)

    logger = logging.getLogger(name)
    logger.setLevel(log_level)

    if logger.handlers:
        logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)
    logger.propagate = False

    # Loggers outside the package (search, uvicorn) go through the root logger
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        root_logger.addHandler(handler)
        root_logger.setLevel(log_level)

    return logger


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class JsonFormatter(logging.Formatter):
    """Single-line JSON records: datetime, level, logger, message, plus any of
    the known extra fields and the formatted traceback when present."""

    extra_keys = ("request_id", "item_id", "user_id", "kind", "amount", "status")

    def __init__(self) -> None:
        super().__init__(datefmt="%Y-%m-%dT%H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        log_record: dict[str, object] = {
            "datetime": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in self.extra_keys:
            if hasattr(record, key):
                log_record[key] = str(getattr(record, key))

        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(log_record, ensure_ascii=False)
