"""Logging setup for the lead automation worker.

Two output modes share the same records: JSON lines for production log
collectors and a compact human-readable line for local development. Fields
passed through ``extra={...}`` are carried in both modes, which is how the
pipeline attaches task and lead identifiers to its log lines.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# Attributes every LogRecord carries; anything else came in through ``extra``.
_STANDARD_ATTRS = {
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "thread", "threadName",
    "message", "taskName",
}

NOISY_LOGGERS = [
    "httpx",
    "httpcore",
    "openai",
    "urllib3",
    "sqlalchemy.engine",
    "uvicorn.access",
]


def extract_extra_fields(record: logging.LogRecord) -> Dict[str, Any]:
    """Collect the ``extra`` fields attached to a log record."""
    fields: Dict[str, Any] = {}
    for key, value in record.__dict__.items():
        if key in _STANDARD_ATTRS or key.startswith("_"):
            continue
        try:
            json.dumps(value)
            fields[key] = value
        except (TypeError, ValueError):
            fields[key] = str(value)
    return fields


class StructuredFormatter(logging.Formatter):
    """Formatter that renders each record as one JSON object."""

    def __init__(self, service_name: str = "leadflow"):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
            "service": self.service_name,
            "source": {
                "file": record.filename,
                "line": record.lineno,
                "function": record.funcName,
            },
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        extra_fields = extract_extra_fields(record)
        if extra_fields:
            log_data["extra"] = extra_fields

        return json.dumps(log_data, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Single-line formatter for development, with extra fields as key=value."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors and sys.stdout.isatty()

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        level = record.levelname

        if self.use_colors:
            level_str = f"{self.COLORS.get(level, '')}{level:8}{self.RESET}"
        else:
            level_str = f"{level:8}"

        formatted = f"[{timestamp}] {level_str} [{record.name}] {record.getMessage()}"

        extra_fields = extract_extra_fields(record)
        if extra_fields:
            pairs = " ".join(f"{k}={v}" for k, v in extra_fields.items())
            formatted = f"{formatted} | {pairs}"

        if record.exc_info:
            formatted += f"\n{self.formatException(record.exc_info)}"

        return formatted


def setup_logging(
    level: Optional[str] = None,
    structured: Optional[bool] = None,
    service_name: str = "leadflow",
) -> logging.Logger:
    """Configure the root logger for the worker.

    Args:
        level: Log level name. Defaults to the configured LOG_LEVEL.
        structured: Emit JSON lines. Defaults to LOG_FORMAT == "json".
        service_name: Service name stamped on structured records.

    Returns:
        The ``leadflow`` package logger.
    """
    from .config import config

    level_name = (level or config.LOG_LEVEL).upper()
    log_level = getattr(logging, level_name, logging.INFO)

    if structured is None:
        structured = config.LOG_FORMAT.lower() == "json"

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Remove existing handlers to avoid duplicates
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    if structured:
        console_handler.setFormatter(StructuredFormatter(service_name=service_name))
    else:
        console_handler.setFormatter(HumanReadableFormatter())
    root_logger.addHandler(console_handler)

    _configure_third_party_loggers(log_level)

    logger = logging.getLogger("leadflow")
    logger.debug(
        "Logging initialized",
        extra={"log_level": level_name, "structured": structured},
    )
    return logger


def _configure_third_party_loggers(log_level: int) -> None:
    """Keep client libraries at WARNING unless we are debugging."""
    third_party_level = logging.WARNING if log_level > logging.DEBUG else log_level
    for logger_name in NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(third_party_level)
