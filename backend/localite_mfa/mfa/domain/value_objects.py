"""
MFA Value Objects

Immutable results exchanged between the MFA subsystems and their callers.
"""

from dataclasses import dataclass, field
from typing import Any

from localite_mfa.mfa.domain.enums import VerificationResult


@dataclass(frozen=True)
class MFAResult:
    """
    Outcome of any MFA operation.

    Verification failures are returned as results, never raised. Callers
    branch on ``result``; ``message`` is for humans only.
    """

    success: bool
    result: VerificationResult
    message: str
    data: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.success != self.result.is_success:
            raise ValueError("success flag must agree with the result kind")

    @classmethod
    def ok(cls, message: str, **data: Any) -> "MFAResult":
        return cls(True, VerificationResult.SUCCESS, message, data)

    @classmethod
    def fail(
        cls, result: VerificationResult, message: str, **data: Any
    ) -> "MFAResult":
        return cls(False, result, message, data)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "result": self.result.value,
            "message": self.message,
            **self.data,
        }


@dataclass(frozen=True)
class SMSDeliveryReceipt:
    """Answer of an SMS delivery channel for one message."""

    success: bool
    message_id: str | None = None
    error: str | None = None

    def __post_init__(self) -> None:
        if self.success and not self.message_id:
            raise ValueError("Successful delivery requires a message id")


@dataclass(frozen=True)
class AttemptCounts:
    """Current short-window and daily counter values for a user and method."""

    short: int
    daily: int

    def __post_init__(self) -> None:
        if self.short < 0 or self.daily < 0:
            raise ValueError("Attempt counts cannot be negative")
