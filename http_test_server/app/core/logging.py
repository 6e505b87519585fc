"""Structured logging configuration for the test server.

This module provides a structured logging setup using Python's standard
logging module with JSON formatting for machine-readable output.
"""

import json
import logging
import logging.config
import sys
from contextvars import ContextVar
from datetime import datetime
from typing import Any, Dict, Optional

# Request ID of the request being handled by the current task
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging.

    Outputs log records as JSON objects for consumption by log aggregation
    systems.
    """

    # Contextual fields for request tracking
    CONTEXT_FIELDS = [
        "request_id",    # Request ID from X-Request-Id header
        "method",        # HTTP method
        "path",          # Request path
        "remote_addr",   # Client address
        "user_agent",    # Client user agent
        "status_code",   # HTTP response status
        "duration_ms",   # Request duration in milliseconds
    ]

    # LogRecord attributes that are never copied into "extra"
    RESERVED_ATTRS = frozenset((
        "name", "msg", "args", "levelname", "levelno", "pathname",
        "filename", "module", "exc_info", "exc_text", "stack_info",
        "lineno", "funcName", "created", "msecs", "relativeCreated",
        "thread", "threadName", "processName", "process", "message",
        "asctime", "taskName",
    ))

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON.

        Args:
            record: Log record to format

        Returns:
            JSON string representation of the log record
        """
        record.message = record.getMessage()

        log_data: Dict[str, Any] = {
            "timestamp": datetime.now().astimezone().isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.message,
            "source": {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            },
        }

        for field in self.CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_data[field] = value

        extra = {
            key: value
            for key, value in record.__dict__.items()
            if key not in self.RESERVED_ATTRS and key not in self.CONTEXT_FIELDS
        }
        if extra:
            log_data["extra"] = extra

        if record.exc_info and record.exc_info != (None, None, None):
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str, ensure_ascii=False)


class ContextFilter(logging.Filter):
    """Logging filter that adds contextual fields to log records.

    The request ID comes from the context variable set by the request ID
    middleware, so every record logged while handling a request carries it.
    """

    CONTEXT_DEFAULTS = {
        "method": None,
        "path": None,
        "remote_addr": None,
        "user_agent": None,
        "status_code": None,
        "duration_ms": None,
    }

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = request_id_var.get() or "-"
        for field, default in self.CONTEXT_DEFAULTS.items():
            if not hasattr(record, field):
                setattr(record, field, default)
        return True


def get_logging_config(log_level: str = "INFO", log_format: str = "text") -> Dict[str, Any]:
    """Get logging configuration dictionary.

    Args:
        log_level: Level name for the package and uvicorn loggers
        log_format: One of ``text``, ``structured`` or ``json``

    Returns:
        Logging configuration dict compatible with logging.config.dictConfig
    """
    log_level = log_level.upper()
    log_format = log_format.lower()

    formatters: Dict[str, Any] = {
        "standard": {
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        },
        "structured": {
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s - request_id=%(request_id)s"
        },
    }

    if log_format == "json":
        formatters["json"] = {
            "()": "http_test_server.app.core.logging.JSONFormatter",
        }
        default_formatter = "json"
    else:
        default_formatter = "structured" if log_format == "structured" else "standard"

    handlers = {
        "console": {
            "class": "logging.StreamHandler",
            "level": log_level,
            "formatter": default_formatter,
            "stream": sys.stdout,
            "filters": ["context"],
        },
    }

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": formatters,
        "filters": {
            "context": {
                "()": "http_test_server.app.core.logging.ContextFilter",
            },
        },
        "handlers": handlers,
        "loggers": {
            "http_test_server": {
                "level": log_level,
                "handlers": ["console"],
                "propagate": False,
            },
            "uvicorn": {
                "level": log_level,
                "handlers": ["console"],
                "propagate": False,
            },
        },
        "root": {
            "level": log_level,
            "handlers": ["console"],
        },
    }


def setup_logging(log_level: str = "INFO", log_format: str = "text") -> None:
    """Configure logging for the test server."""
    logging.config.dictConfig(get_logging_config(log_level, log_format))


def get_logger(name: str = "http_test_server") -> logging.Logger:
    """Get a logger instance with the specified name.

    Args:
        name: Logger name, defaults to "http_test_server"

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)
