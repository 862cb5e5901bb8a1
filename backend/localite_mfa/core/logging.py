# ruff: noqa: A005
"""Structured logging for the MFA core.

Built on structlog. Every call takes keyword context
(``logger.info("SMS code sent", uid=uid, phone=phone)``) and every event
passes through two processors before rendering:

- SensitiveDataFilter: masks verification codes, TOTP secrets and tokens,
  and reduces phone numbers to their last four digits
- MessageLengthFilter: truncates runaway event messages

Request-wide context (a uid, a correlation id) is bound with
``log_context`` or ``log_operation`` and merged from
``structlog.contextvars`` into every event on the same task.
"""

import logging
import re
import sys
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any
from uuid import uuid4

import structlog
from structlog.contextvars import merge_contextvars
from structlog.typing import EventDict, WrappedLogger

from localite_mfa.core.enums import Environment, LogFormat, LogLevel
from localite_mfa.core.errors import ConfigurationError


PACKAGE_LOGGER = "localite_mfa"


# =====================================================================================
# CONFIGURATION
# =====================================================================================


@dataclass
class LogConfig:
    """
    Logging settings for one process.

    The environment decides the renderer: console output while developing,
    terse key=value lines in tests and JSON everywhere else.

    Usage Example:
        config = LogConfig(level=LogLevel.DEBUG, environment=Environment.DEVELOPMENT)
        configure_logging(config)
    """

    level: LogLevel = LogLevel.INFO
    format: LogFormat = LogFormat.JSON
    environment: Environment = Environment.DEVELOPMENT
    include_timestamps: bool = True
    include_callsite: bool = False
    mask_sensitive_data: bool = True
    max_message_length: int = 10000

    def __post_init__(self):
        if self.max_message_length < 1000:
            raise ConfigurationError(
                "Maximum message length must be at least 1000 characters",
                config_key="max_message_length",
            )

        if self.environment == Environment.DEVELOPMENT:
            self.format = LogFormat.CONSOLE
            self.include_callsite = True
        elif self.environment == Environment.TESTING:
            self.level = LogLevel.WARNING
            self.format = LogFormat.PLAIN
        elif self.environment == Environment.PRODUCTION:
            self.format = LogFormat.JSON
            self.include_callsite = False
            # Codes and secrets must never reach production sinks
            self.mask_sensitive_data = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "level": self.level.level_name,
            "format": self.format.value,
            "environment": self.environment.value,
            "include_timestamps": self.include_timestamps,
            "include_callsite": self.include_callsite,
            "mask_sensitive_data": self.mask_sensitive_data,
        }


# =====================================================================================
# PROCESSORS
# =====================================================================================


class SensitiveDataFilter:
    """
    structlog processor masking MFA credentials in event fields.

    Field names are matched, not values: ``code``, ``codes``, ``backup_code``
    and anything mentioning a secret, token, password, credential or otp is
    replaced by the mask. ``phone`` fields keep their last four digits so
    support staff can still tell numbers apart. Nested dicts are filtered too.
    """

    MASK = "***"

    SENSITIVE_FIELDS = (
        re.compile(r"^(code|codes|backup_code)$", re.IGNORECASE),
        re.compile(r"secret|token|password|credential|otp", re.IGNORECASE),
    )
    PHONE_FIELDS = re.compile(r"^(phone|phone_number)$", re.IGNORECASE)

    def __call__(
        self, logger: WrappedLogger, method_name: str, event_dict: EventDict
    ) -> EventDict:
        return self.filter(event_dict)

    def filter(self, record: dict[str, Any]) -> dict[str, Any]:
        masked = {}
        for key, value in record.items():
            if value is None:
                masked[key] = None
            elif any(pattern.search(key) for pattern in self.SENSITIVE_FIELDS):
                masked[key] = self.MASK
            elif self.PHONE_FIELDS.match(key):
                masked[key] = self.mask_phone(value)
            elif isinstance(value, dict):
                masked[key] = self.filter(value)
            else:
                masked[key] = value
        return masked

    @classmethod
    def mask_phone(cls, value: Any) -> str:
        """``+886912345678`` -> ``*********5678``."""
        phone = str(value)
        if len(phone) < 7:
            return cls.MASK
        return "*" * (len(phone) - 4) + phone[-4:]


class MessageLengthFilter:
    """structlog processor truncating long event messages."""

    def __init__(self, max_length: int = 10000, suffix: str = "... [TRUNCATED]"):
        self.max_length = max_length
        self.suffix = suffix

    def __call__(
        self, logger: WrappedLogger, method_name: str, event_dict: EventDict
    ) -> EventDict:
        return self.filter(event_dict, key="event")

    def filter(self, record: dict[str, Any], key: str = "message") -> dict[str, Any]:
        message = record.get(key)
        if not isinstance(message, str) or len(message) <= self.max_length:
            return record
        record = dict(record)
        record[key] = message[: self.max_length - len(self.suffix)] + self.suffix
        record["message_truncated"] = True
        return record


def build_processors(config: LogConfig) -> list[Any]:
    """Processor chain for ``config``, renderer last."""
    processors: list[Any] = [
        merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
    ]

    if config.include_timestamps:
        processors.append(structlog.processors.TimeStamper(fmt="iso", utc=True))

    if config.include_callsite:
        processors.append(
            structlog.processors.CallsiteParameterAdder(
                parameters=[
                    structlog.processors.CallsiteParameter.MODULE,
                    structlog.processors.CallsiteParameter.FUNC_NAME,
                    structlog.processors.CallsiteParameter.LINENO,
                ]
            )
        )

    if config.mask_sensitive_data:
        processors.append(SensitiveDataFilter())
    processors.append(MessageLengthFilter(config.max_message_length))

    processors.extend(
        [
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
        ]
    )

    if config.format == LogFormat.JSON:
        processors.append(structlog.processors.JSONRenderer(sort_keys=True))
    elif config.format == LogFormat.CONSOLE:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))
    else:
        processors.append(structlog.processors.KeyValueRenderer(key_order=["event"]))

    return processors


# =====================================================================================
# LOGGER
# =====================================================================================


class StructuredLogger:
    """
    Logger handed out by ``get_logger``.

    Resolves the structlog logger lazily, so module-level loggers created at
    import time pick up whatever configuration is active when they first log.
    """

    def __init__(self, name: str):
        self.name = name

    def _emit(self, level: str, event: str, /, **kwargs: Any) -> None:
        try:
            getattr(structlog.get_logger(self.name), level)(event, **kwargs)
        except Exception as e:
            # A broken renderer must not take the MFA flow down with it
            fallback = logging.getLogger(self.name)
            fallback.error("Structured logging failed: %s", e)
            fallback.log(getattr(logging, level.replace("exception", "error").upper()), event)

    def debug(self, event: str, /, **kwargs: Any) -> None:
        self._emit("debug", event, **kwargs)

    def info(self, event: str, /, **kwargs: Any) -> None:
        self._emit("info", event, **kwargs)

    def warning(self, event: str, /, **kwargs: Any) -> None:
        self._emit("warning", event, **kwargs)

    def error(self, event: str, /, **kwargs: Any) -> None:
        self._emit("error", event, **kwargs)

    def critical(self, event: str, /, **kwargs: Any) -> None:
        self._emit("critical", event, **kwargs)

    def exception(self, event: str, /, **kwargs: Any) -> None:
        """Log at error level with the active exception's traceback."""
        self._emit("exception", event, **kwargs)


# =====================================================================================
# GLOBAL CONFIGURATION
# =====================================================================================


_loggers: dict[str, StructuredLogger] = {}


def configure_logging(config: LogConfig | None = None) -> LogConfig:
    """
    Configure structlog and the stdlib root handler.

    Args:
        config: Logging configuration; read from settings when omitted

    Returns:
        LogConfig: The configuration now in effect
    """
    if config is None:
        try:
            from localite_mfa.core.config import get_settings

            config = get_settings().logging
        except ConfigurationError:
            config = LogConfig()

    structlog.configure(
        processors=build_processors(config),
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout)
    logging.getLogger(PACKAGE_LOGGER).setLevel(config.level.to_logging_level())
    if config.environment.is_production:
        logging.getLogger("httpx").setLevel(logging.WARNING)

    return config


def get_logger(name: str) -> StructuredLogger:
    """
    Get the logger for a module.

    Args:
        name: Logger name (usually __name__)
    """
    if name not in _loggers:
        _loggers[name] = StructuredLogger(name)
    return _loggers[name]


# =====================================================================================
# CONTEXT
# =====================================================================================


def log_context(**kwargs: Any) -> None:
    """Bind context variables for all subsequent events on this task."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


@contextmanager
def log_operation(operation: str, **kwargs: Any) -> Iterator[str]:
    """
    Bind an operation name and id for the duration of a block.

    Logs the elapsed time at debug level on exit.

    Args:
        operation: Operation name such as ``mfa.verify``
        **kwargs: Additional context variables

    Yields:
        The generated operation id
    """
    operation_id = str(uuid4())
    context = {"operation": operation, "operation_id": operation_id, **kwargs}
    tokens = structlog.contextvars.bind_contextvars(**context)
    started = time.perf_counter()
    try:
        yield operation_id
    finally:
        get_logger(PACKAGE_LOGGER).debug(
            "Operation finished",
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        structlog.contextvars.reset_contextvars(**tokens)


__all__ = [
    "LogConfig",
    "MessageLengthFilter",
    "SensitiveDataFilter",
    "StructuredLogger",
    "build_processors",
    "clear_context",
    "configure_logging",
    "get_logger",
    "log_context",
    "log_operation",
]
