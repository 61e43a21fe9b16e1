# gemini_chat/logging_config.py
"""
Logging setup shared by the API process and the Celery workers.

Console output is either JSON (for log shippers) or a colored one-line format
for local development. Business events (signups, quota rejections, bot replies)
go through a dedicated "business" logger.
"""

import logging
import sys
import json
import traceback
from pathlib import Path
from datetime import datetime, timezone
from typing import Any
from logging.handlers import RotatingFileHandler, TimedRotatingFileHandler

from .config import settings


class StructuredFormatter(logging.Formatter):
    """JSON formatter; fields passed via extra={"extra_data": ...} are nested under "extra"."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if hasattr(record, "extra_data"):
            log_data["extra"] = record.extra_data

        if getattr(record, "user_id", None) is not None:
            log_data["user_id"] = record.user_id

        if getattr(record, "request_id", None):
            log_data["request_id"] = record.request_id

        if getattr(record, "job_key", None):
            log_data["job_key"] = record.job_key

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": traceback.format_exception(*record.exc_info)
            }

        return json.dumps(log_data, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Colored console formatter for development"""

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
    }
    RESET = '\033[0m'

    def format(self, record: logging.LogRecord) -> str:
        levelname = record.levelname
        if settings.ENVIRONMENT == "development":
            color = self.COLORS.get(levelname, self.RESET)
            levelname = f"{color}{levelname:8s}{self.RESET}"
        else:
            levelname = f"{levelname:8s}"

        timestamp = datetime.fromtimestamp(record.created).strftime('%Y-%m-%d %H:%M:%S')
        message = f"{timestamp} | {levelname} | {record.name:28s} | {record.getMessage()}"

        if getattr(record, "user_id", None) is not None:
            message += f" [user={record.user_id}]"

        if getattr(record, "request_id", None):
            message += f" [req={record.request_id[:8]}]"

        if getattr(record, "job_key", None):
            message += f" [job={record.job_key[:12]}]"

        if record.exc_info:
            message += f"\n{self.formatException(record.exc_info)}"

        return message


def setup_logging():
    """
    Configure the root logger. Call once per process: at API startup and
    from the Celery worker bootstrap.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    if settings.LOG_FORMAT == "json":
        console_handler.setFormatter(StructuredFormatter())
    else:
        console_handler.setFormatter(HumanReadableFormatter())
    root_logger.addHandler(console_handler)

    if settings.ENABLE_FILE_LOGGING:
        log_dir = Path("logs")
        log_dir.mkdir(exist_ok=True)

        file_handler = RotatingFileHandler(
            log_dir / "app.log",
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
            encoding="utf-8"
        )
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(StructuredFormatter())
        root_logger.addHandler(file_handler)

        error_handler = TimedRotatingFileHandler(
            log_dir / "errors.log",
            when="midnight",
            backupCount=30,
            encoding="utf-8"
        )
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(StructuredFormatter())
        root_logger.addHandler(error_handler)

        business_handler = RotatingFileHandler(
            log_dir / "business.log",
            maxBytes=10 * 1024 * 1024,
            backupCount=10,
            encoding="utf-8"
        )
        business_handler.setFormatter(StructuredFormatter())
        business_logger.addHandler(business_handler)

    # Third-party noise
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("celery").setLevel(logging.INFO)
    logging.getLogger("kombu").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("google_genai").setLevel(logging.WARNING)
    logging.getLogger("stripe").setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        "Logging configured",
        extra={
            "extra_data": {
                "environment": settings.ENVIRONMENT,
                "log_level": settings.LOG_LEVEL,
                "log_format": settings.LOG_FORMAT,
                "file_logging": settings.ENABLE_FILE_LOGGING
            }
        }
    )


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


business_logger = logging.getLogger("business")


def log_business_event(event_type: str, user_id: Any = None, **kwargs: Any):
    """
    Record a business event (signup, quota rejection, reply persisted, upgrade)

    Usage:
        log_business_event("chatroom_created", user_id=7, chatroom_id=42)
    """
    business_logger.info(
        f"Business Event: {event_type}",
        extra={
            "user_id": user_id,
            "extra_data": {
                "event_type": event_type,
                **kwargs
            }
        }
    )
