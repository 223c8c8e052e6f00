"""Logging configuration."""

import json
import logging
import os
import sys
from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

# Streaming responses make these very chatty
QUIET_LOGGERS = ("anthropic", "httpx", "uvicorn.access")


class LogConfig(BaseModel):
    """Logging configuration for the service."""

    level: LogLevel = "INFO"
    json_logging: bool = False
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    date_format: str = "%Y-%m-%d %H:%M:%S"


class JsonFormatter(logging.Formatter):
    """One JSON object per record, for log collectors."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def _env_level() -> str:
    return os.getenv("LOG_LEVEL", "INFO").upper()


def setup_logging(config: LogConfig | None = None) -> None:
    """Configure the root logger once at startup.

    Args:
        config: Logging options; defaults to the LOG_LEVEL env var with plain text output
    """
    if config is None:
        config = LogConfig(level=_env_level())

    handler = logging.StreamHandler(sys.stdout)
    if config.json_logging:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(config.format, datefmt=config.date_format))

    logging.basicConfig(level=config.level, handlers=[handler], force=True)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str, level: str | None = None) -> logging.Logger:
    """Get a logger for a specific module.

    Args:
        name: Module name (typically __name__)
        level: Explicit level, overrides the LOG_LEVEL env var

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel((level or _env_level()).upper())
    return logger
