"""
Exception hierarchy for the MFA core.

Verification outcomes are never exceptions: providers report them as
``MFAResult`` values. The classes here cover what cannot be expressed as an
outcome, such as a missing uid, a broken configuration or an unreachable store.

    MFAError
    ├── ValidationError
    └── InfrastructureError
        ├── ConfigurationError
        ├── StoreUnavailableError
        └── ConcurrentUpdateError
"""

from enum import Enum
from typing import Any

import structlog

REDACTED = "***REDACTED***"
REDACTED_KEYS = ("secret", "token", "password", "credential", "code", "otp", "phone")


class ErrorSeverity(Enum):
    """How loudly an error is reported when raised."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def log_method(self) -> str:
        return {
            ErrorSeverity.LOW: "info",
            ErrorSeverity.MEDIUM: "warning",
            ErrorSeverity.HIGH: "error",
            ErrorSeverity.CRITICAL: "critical",
        }[self]


def redact(details: dict[str, Any]) -> dict[str, Any]:
    """Copy of ``details`` with credential-like keys replaced."""
    cleaned = {}
    for key, value in details.items():
        if any(marker in key.lower() for marker in REDACTED_KEYS):
            cleaned[key] = REDACTED
        elif isinstance(value, dict):
            cleaned[key] = redact(value)
        else:
            cleaned[key] = value
    return cleaned


class MFAError(Exception):
    """
    Base exception for the MFA core.

    Subclasses set ``default_code``, ``severity`` and ``retryable``. The error
    reports itself through structlog when constructed, with redacted details.
    """

    default_code = "MFA_ERROR"
    severity = ErrorSeverity.MEDIUM
    retryable = False

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = self.default_code
        self.details: dict[str, Any] = dict(details or {})
        self.context: dict[str, Any] = {}
        if cause is not None:
            self.__cause__ = cause
        self._report()

    def _report(self) -> None:
        logger = structlog.get_logger("localite_mfa.errors")
        getattr(logger, self.severity.log_method)(
            self.message,
            error_code=self.code,
            error_class=type(self).__name__,
            retryable=self.retryable,
            details=redact(self.details),
        )

    def with_context(self, **context: Any) -> "MFAError":
        """Attach caller context; returns self so it can be raised inline."""
        self.context.update(context)
        return self

    def to_dict(self, include_context: bool = False) -> dict[str, Any]:
        data: dict[str, Any] = {"error": self.code, "message": self.message}
        if self.details:
            data["details"] = redact(self.details)
        if self.retryable:
            data["retryable"] = True
        if include_context and self.context:
            data["context"] = redact(self.context)
        return data

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class ValidationError(MFAError):
    """A caller passed an unusable argument."""

    default_code = "VALIDATION_ERROR"
    severity = ErrorSeverity.LOW

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message, details={"field": field} if field else None)


class InfrastructureError(MFAError):
    default_code = "INFRASTRUCTURE_ERROR"
    severity = ErrorSeverity.HIGH
    retryable = True


class ConfigurationError(InfrastructureError):
    """Settings are missing or out of range. Not retryable."""

    default_code = "CONFIGURATION_ERROR"
    severity = ErrorSeverity.CRITICAL
    retryable = False

    def __init__(self, message: str, config_key: str | None = None) -> None:
        super().__init__(
            message, details={"config_key": config_key} if config_key else None
        )


class StoreUnavailableError(InfrastructureError):
    """The key-value store could not complete ``operation``."""

    default_code = "STORE_UNAVAILABLE"

    def __init__(
        self, operation: str, message: str, cause: BaseException | None = None
    ) -> None:
        super().__init__(
            f"Store {operation} failed: {message}",
            details={"operation": operation},
            cause=cause,
        )
        self.operation = operation


class ConcurrentUpdateError(InfrastructureError):
    """A compare-and-set loop lost to other writers on every retry."""

    default_code = "CONCURRENT_UPDATE"
    severity = ErrorSeverity.MEDIUM

    def __init__(self, record: str, attempts: int) -> None:
        super().__init__(
            f"{record} changed concurrently {attempts} times, giving up",
            details={"record": record, "attempts": attempts},
        )
