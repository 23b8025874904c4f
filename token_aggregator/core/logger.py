"""
Logging System Module

Provides structured logging with JSON formatting for production and
human-readable formatting for development.
"""

import logging
import logging.handlers
import sys
from typing import Optional
from pathlib import Path
from datetime import datetime, timezone
from zoneinfo import ZoneInfo
import json

from pythonjsonlogger.json import JsonFormatter

# Libraries that log every request at INFO
_NOISY_LOGGERS = {
    "aiohttp.access": logging.WARNING,
    "aiohttp.client": logging.WARNING,
    "redis": logging.WARNING,
    "uvicorn.access": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
}


class CustomJsonFormatter(JsonFormatter):
    """JSON formatter with timestamp, level and source location fields"""

    def __init__(self, *args, local_tz=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.local_tz = local_tz or timezone.utc

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        if not log_record.get('timestamp'):
            created = datetime.fromtimestamp(record.created, tz=timezone.utc)
            log_record['timestamp'] = created.astimezone(self.local_tz).isoformat()

        if log_record.get('level'):
            log_record['level'] = log_record['level'].upper()
        else:
            log_record['level'] = record.levelname

        log_record['logger'] = record.name
        log_record['module'] = record.module
        log_record['function'] = record.funcName
        log_record['line'] = record.lineno

    def json_dumps(self, obj):
        return json.dumps(obj, ensure_ascii=False, default=str)


class ColoredFormatter(logging.Formatter):
    """Console format with a coloured level column"""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
        "RESET": "\033[0m",
    }

    def __init__(self, *args, local_tz=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.local_tz = local_tz or timezone.utc

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        ts = created.astimezone(self.local_tz).strftime("%Y-%m-%d %H:%M:%S")

        color = self.COLORS.get(record.levelname, "")
        reset = self.COLORS["RESET"]
        level = f"{color}{record.levelname:<7}{reset}"
        location = f"{record.name}:{record.funcName}:{record.lineno}"
        message = super().format(record)
        return f"{ts} | {level} | {message} | {location}"


class PlainFormatter(logging.Formatter):
    """Plain text format for log files: time | level | message | location"""

    def __init__(self, *args, local_tz=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.local_tz = local_tz or timezone.utc

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        ts = created.astimezone(self.local_tz).strftime("%Y-%m-%d %H:%M:%S")

        location = f"{record.name}:{record.funcName}:{record.lineno}"
        message = super().format(record)
        return f"{ts} | {record.levelname:<7} | {message} | {location}"


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    environment: str = "dev",
    timezone_name: str = "UTC"
) -> None:
    """
    Setup logging configuration for the entire application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Path to log file (optional)
        environment: Environment (dev/test/prod). prod logs JSON everywhere.
        timezone_name: Timezone used for rendered timestamps
    """
    try:
        local_tz = ZoneInfo(timezone_name)
    except Exception:
        local_tz = timezone.utc

    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    level = getattr(logging, log_level.upper(), logging.INFO)
    root_logger.setLevel(level)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    if environment == "prod":
        console_handler.setFormatter(
            CustomJsonFormatter('%(timestamp)s %(level)s %(name)s %(message)s', local_tz=local_tz)
        )
    else:
        console_handler.setFormatter(ColoredFormatter('%(message)s', local_tz=local_tz))
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        # One file per day, e.g. token_aggregator.log.2026-10-18
        file_handler = logging.handlers.TimedRotatingFileHandler(
            filename=log_file,
            when="midnight",
            interval=1,
            backupCount=7,
            utc=True,
            encoding="utf-8",
        )
        file_handler.suffix = "%Y-%m-%d"
        file_handler.setLevel(level)
        if environment == "prod":
            file_handler.setFormatter(
                CustomJsonFormatter('%(timestamp)s %(level)s %(name)s %(message)s', local_tz=local_tz)
            )
        else:
            file_handler.setFormatter(PlainFormatter('%(message)s', local_tz=local_tz))
        root_logger.addHandler(file_handler)

    for name, noisy_level in _NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(noisy_level)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a module.

    Args:
        name: Logger name (typically __name__ of the module)

    Example:
        logger = get_logger(__name__)
        logger.info("Snapshot refreshed")
    """
    return logging.getLogger(name)


def init_logging_from_config() -> None:
    """Initialize logging using configuration from environment"""
    from token_aggregator.core.config import get_config

    try:
        config = get_config()
        setup_logging(
            log_level=config.log_level,
            log_file=config.log_file,
            environment=config.environment,
            timezone_name=config.timezone
        )
        get_logger(__name__).info(
            "Logging initialized: level=%s, environment=%s, timezone=%s",
            config.log_level,
            config.environment,
            config.timezone,
        )
    except Exception as e:
        # Config failed to load; keep the process observable anyway
        logging.basicConfig(
            level=logging.INFO,
            format='%(asctime)s | %(levelname)s | %(name)s | %(message)s'
        )
        logging.error("Failed to initialize logging from config: %s", e)
