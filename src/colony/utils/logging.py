"""
Logging and error framework for the colony orchestrator.

This module provides:
- Structured (JSON) logging configuration
- The exception hierarchy shared by every component
- Context-aware loggers that carry the component and instance name
"""

import json
import logging
import sys
import traceback
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any


class LogLevel(str, Enum):
    """Log level enumeration for type safety."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogContext(str, Enum):
    """Log context categories for structured logging."""

    COLONY = "colony"
    REGISTRY = "registry"
    SPECIES = "species"
    PIPELINE = "pipeline"
    SUPERVISOR = "supervisor"
    PROCESS = "process"
    CONFIG = "config"
    WEB = "web"
    CLI = "cli"


class ColonyException(Exception):
    """Base exception class for all colony errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}
        self.timestamp = datetime.now(UTC)


class ValidationError(ColonyException):
    """A spawn or kill request is missing or has malformed fields."""

    pass


class ConflictError(ColonyException):
    """The requested instance name is already registered."""

    pass


class NotFoundError(ColonyException):
    """The requested instance name is not registered."""

    pass


class RegistryError(ColonyException):
    """Errors raised while reading or writing the instance registry."""

    pass


class ProvisioningError(ColonyException):
    """A provisioning stage failed."""

    def __init__(
        self, message: str, stage: str, context: dict[str, Any] | None = None
    ):
        super().__init__(message, context)
        self.stage = stage


class SupervisorError(ColonyException):
    """The external process manager failed to start or stop a process."""

    pass


class ConfigurationError(ColonyException):
    """Errors related to configuration and setup."""

    pass


class StructuredFormatter(logging.Formatter):
    """Formatter emitting one JSON object per record."""

    # Attributes every LogRecord carries; anything else came in via ``extra``.
    _STANDARD_FIELDS = frozenset(
        {
            "name",
            "msg",
            "args",
            "levelname",
            "levelno",
            "pathname",
            "filename",
            "module",
            "exc_info",
            "exc_text",
            "stack_info",
            "lineno",
            "funcName",
            "created",
            "msecs",
            "relativeCreated",
            "thread",
            "threadName",
            "processName",
            "process",
            "taskName",
            "message",
        }
    )

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for key, value in record.__dict__.items():
            if key not in self._STANDARD_FIELDS and not key.startswith("_"):
                log_data[key] = value

        if record.exc_info and record.exc_info[0] is not None:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": traceback.format_exception(*record.exc_info),
            }

        return json.dumps(log_data, default=str)


class ContextualLogger:
    """Logger with context management for structured logging."""

    def __init__(self, name: str, context: LogContext):
        self.logger = logging.getLogger(name)
        self.context = context.value

    def _log(
        self,
        level: int,
        message: str,
        extra_context: dict[str, Any] | None = None,
        exc_info: BaseException | None = None,
    ) -> None:
        extra: dict[str, Any] = {"context": self.context}
        if extra_context:
            extra.update(extra_context)
        self.logger.log(level, message, extra=extra, exc_info=exc_info)

    def debug(self, message: str, **kwargs: Any) -> None:
        """Log debug message with context."""
        self._log(logging.DEBUG, message, kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        """Log info message with context."""
        self._log(logging.INFO, message, kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        """Log warning message with context."""
        self._log(logging.WARNING, message, kwargs)

    def error(
        self, message: str, exception: BaseException | None = None, **kwargs: Any
    ) -> None:
        """Log error message with context and optional exception."""
        self._log(logging.ERROR, message, kwargs, exc_info=exception)


def get_logger(name: str, context: LogContext) -> ContextualLogger:
    """Get a contextual logger instance."""
    return ContextualLogger(name, context)


def setup_logging(
    log_level: str | LogLevel = LogLevel.INFO,
    log_file: Path | None = None,
    enable_structured: bool = True,
    enable_console: bool = True,
) -> None:
    """
    Setup logging for the orchestrator process.

    Args:
        log_level: Minimum log level to capture
        log_file: Optional file path for log output
        enable_structured: Use JSON structured logging format
        enable_console: Enable console output (stderr, so CLI JSON output stays clean)
    """
    if isinstance(log_level, LogLevel):
        log_level = log_level.value

    if enable_structured:
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    handlers: list[logging.Handler] = []

    if enable_console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper()))
    for handler in handlers:
        root_logger.addHandler(handler)

    # Suppress noisy third-party loggers
    logging.getLogger("git").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("libtmux").setLevel(logging.WARNING)
