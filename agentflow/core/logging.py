"""Logging configuration for the workflow engine."""

import logging
import sys
import json
import traceback
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Optional, Dict, Any
from pathlib import Path


# Each asyncio task gets its own copy, so concurrent executions and
# parallel branches never see each other's context.
_logging_context: ContextVar[Dict[str, Any]] = ContextVar("agentflow_logging_context", default={})


class StructuredFormatter(logging.Formatter):
    """Formatter emitting one JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno
        }

        if record.exc_info:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": traceback.format_exception(*record.exc_info)
            }

        if hasattr(record, 'extra_fields'):
            log_entry.update(record.extra_fields)

        return json.dumps(log_entry, default=str)


class ExecutionContextFilter(logging.Filter):
    """Filter copying the current execution context onto every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        fields = dict(_logging_context.get())
        fields.update(getattr(record, 'extra_fields', {}) or {})
        record.extra_fields = fields
        return True


_context_filter = ExecutionContextFilter()


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    log_format: Optional[str] = None,
    structured: bool = False,
    max_size: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5
) -> logging.Logger:
    """
    Configure logging for the workflow engine.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file path for log output
        log_format: Custom log format string
        structured: Whether to use structured JSON logging
        max_size: Maximum log file size in bytes before rotation
        backup_count: Number of backup files to keep

    Returns:
        Root logger instance
    """
    if structured:
        formatter = StructuredFormatter()
    else:
        if log_format is None:
            log_format = "%(asctime)s - %(name)s - %(levelname)s - [%(module)s:%(funcName)s:%(lineno)d] - %(message)s"

        formatter = logging.Formatter(
            fmt=log_format,
            datefmt="%Y-%m-%d %H:%M:%S"
        )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(_context_filter)
    root_logger.addHandler(console_handler)

    if log_file:
        from logging.handlers import RotatingFileHandler

        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_size,
            backupCount=backup_count
        )
        file_handler.setFormatter(formatter)
        file_handler.addFilter(_context_filter)
        root_logger.addHandler(file_handler)

    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    logging.getLogger("agentflow.core").setLevel(logging.DEBUG if level.upper() == "DEBUG" else logging.INFO)
    logging.getLogger("agentflow.api").setLevel(logging.INFO)

    return root_logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance for the given name."""
    return logging.getLogger(name)


def get_logging_context() -> Dict[str, Any]:
    """Return a copy of the context fields bound to the current task."""
    return dict(_logging_context.get())


def set_logging_context(**kwargs):
    """Set context fields for all subsequent log messages in this task."""
    _logging_context.set({**_logging_context.get(), **kwargs})


def clear_logging_context():
    """Clear all logging context fields for this task."""
    _logging_context.set({})


@contextmanager
def logging_context(**kwargs):
    """Bind context fields for the duration of a block."""
    token = _logging_context.set({**_logging_context.get(), **kwargs})
    try:
        yield
    finally:
        _logging_context.reset(token)


def log_with_context(logger: logging.Logger, level: int, message: str, **context):
    """Log a message with additional context fields."""
    extra = {"extra_fields": context}
    logger.log(level, message, extra=extra)


class RetryLogger:
    """Logger for step retry attempts."""

    def __init__(self, component_name: str):
        self.logger = get_logger(f"agentflow.recovery.{component_name}")
        self.component_name = component_name

    def log_retry_attempt(self, operation: str, error: Exception, attempt: int, max_attempts: int, delay: float):
        """Log a retry about to happen."""
        log_with_context(
            self.logger, logging.WARNING,
            f"Retry {attempt}/{max_attempts} for {operation} in {delay:.3f}s",
            component=self.component_name,
            operation=operation,
            error_type=type(error).__name__,
            error_message=str(error),
            attempt=attempt,
            max_attempts=max_attempts
        )

    def log_retry_success(self, operation: str, retries_used: int):
        """Log success after one or more retries."""
        log_with_context(
            self.logger, logging.INFO,
            f"{operation} succeeded after {retries_used} retries",
            component=self.component_name,
            operation=operation,
            retries_used=retries_used,
            recovery_status="success"
        )

    def log_retry_exhausted(self, operation: str, final_error: Exception, retries_used: int):
        """Log a failure that retries could not fix."""
        log_with_context(
            self.logger, logging.ERROR,
            f"{operation} failed after {retries_used} retries",
            component=self.component_name,
            operation=operation,
            error_type=type(final_error).__name__,
            error_message=str(final_error),
            retries_used=retries_used,
            recovery_status="failed"
        )
