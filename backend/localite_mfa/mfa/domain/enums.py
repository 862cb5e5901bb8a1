"""MFA domain enumerations."""

from enum import Enum


class MFAMethod(Enum):
    """Multi-factor authentication method enumeration."""

    TOTP = "totp"  # Time-based One-Time Password
    SMS = "sms"
    BACKUP_CODE = "backup_code"

    @classmethod
    def parse(cls, value: "str | MFAMethod") -> "MFAMethod | None":
        """Resolve a method from its wire value, ``None`` when unknown."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            return None


class MFAStatusKind(Enum):
    """Overall MFA enrollment state for a user."""

    DISABLED = "disabled"
    PENDING = "pending"
    ENABLED = "enabled"


class VerificationResult(Enum):
    """Result kinds returned by every MFA operation.

    Callers branch on these values, never on the human-readable message.
    """

    SUCCESS = "success"
    INVALID_CODE = "invalid_code"
    EXPIRED = "expired"
    TOO_MANY_ATTEMPTS = "too_many_attempts"
    RATE_LIMITED = "rate_limited"
    NOT_SET_UP = "not_set_up"
    ALREADY_ENABLED = "already_enabled"
    STORE_UNAVAILABLE = "store_unavailable"
    INVALID_PHONE = "invalid_phone"
    DELIVERY_FAILED = "delivery_failed"

    @property
    def is_success(self) -> bool:
        return self == VerificationResult.SUCCESS

    @property
    def is_retryable(self) -> bool:
        """Check if the caller may retry the same request later."""
        return self in {
            VerificationResult.RATE_LIMITED,
            VerificationResult.STORE_UNAVAILABLE,
            VerificationResult.DELIVERY_FAILED,
        }


class CounterWindow(Enum):
    """Attempt-limiting windows."""

    SHORT = "short"
    DAILY = "daily"
